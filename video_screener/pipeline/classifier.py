"""
Client for the external image content classifier.

Submits one JPEG at a time to a Hugging Face inference endpoint and
normalizes the response. When no credentials are configured the pipeline
uses MockClassifier instead.
"""

import logging
import random
from dataclasses import dataclass
from typing import Optional

import httpx

from ..errors import ClassificationError
from ..models import ClassificationResult, SensitivityFlag, Verdict
from .labels import LabelVocabulary, get_vocabulary, normalize_scores

logger = logging.getLogger("video_screener")

PLACEHOLDER_KEYS = {"your_huggingface_api_key_here", "changeme"}


@dataclass(frozen=True)
class ClassifierAvailability:
    """Whether real classification can be attempted, and why not if it can't"""
    available: bool
    api_key: str = ""
    reason: str = ""
    
    @classmethod
    def configured(cls, api_key: str) -> 'ClassifierAvailability':
        return cls(available=True, api_key=api_key)
    
    @classmethod
    def unavailable(cls, reason: str) -> 'ClassifierAvailability':
        return cls(available=False, reason=reason)
    
    @classmethod
    def from_api_key(cls, api_key: Optional[str]) -> 'ClassifierAvailability':
        key = (api_key or "").strip()
        if not key:
            return cls.unavailable("HUGGINGFACE_API_KEY is not set")
        if key in PLACEHOLDER_KEYS:
            return cls.unavailable("HUGGINGFACE_API_KEY is a placeholder value")
        return cls.configured(key)
    
    def __repr__(self) -> str:
        # Keep the key out of logs
        return f"ClassifierAvailability(available={self.available}, reason={self.reason!r})"


class ClassifierClient:
    """Synchronous HTTP client for a binary image content classifier"""
    
    def __init__(self, availability: ClassifierAvailability,
                 base_url: str = "https://router.huggingface.co/hf-inference/models",
                 model: str = "Falconsai/nsfw_image_detection",
                 timeout: float = 30.0,
                 vocabulary: Optional[LabelVocabulary] = None,
                 http_client: Optional[httpx.Client] = None):
        if not availability.available:
            raise ValueError(f"Classifier is not available: {availability.reason}")
        self.availability = availability
        self.model = model
        self.url = f"{base_url.rstrip('/')}/{model}"
        self.timeout = timeout
        self.vocabulary = vocabulary or get_vocabulary("v1")
        self._client = http_client or httpx.Client(
            timeout=httpx.Timeout(timeout, connect=min(timeout, 10.0))
        )
    
    def classify(self, image: bytes) -> ClassificationResult:
        """
        Classify one image.
        
        Raises:
            ClassificationError: on network errors, timeouts, non-200
                responses or malformed bodies
        """
        try:
            response = self._client.post(
                self.url,
                content=image,
                headers={
                    'Authorization': f"Bearer {self.availability.api_key}",
                    'Content-Type': 'image/jpeg'
                },
                timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise ClassificationError(f"Classifier timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise ClassificationError(f"Classifier request failed: {e}") from e
        
        if response.status_code != 200:
            raise ClassificationError(
                f"Classifier returned status {response.status_code}: {response.text[:200]}"
            )
        
        try:
            payload = response.json()
        except ValueError as e:
            raise ClassificationError(f"Classifier returned invalid JSON: {e}") from e
        
        return normalize_scores(payload, self.vocabulary)
    
    def close(self) -> None:
        self._client.close()


class MockClassifier:
    """
    Produces a plausible, non-authoritative verdict when the real
    classifier cannot be used: 70% safe, confidence in [0.7, 0.99].
    """
    
    def __init__(self, rng: Optional[random.Random] = None, confidence_cap: float = 0.99):
        self.rng = rng or random.Random()
        self.confidence_cap = confidence_cap
    
    def verdict(self, reason: str) -> Verdict:
        is_safe = self.rng.random() > 0.3
        confidence = min(self.rng.random() * 0.3 + 0.7, self.confidence_cap)
        
        return Verdict(
            sensitivity_flag=SensitivityFlag.SAFE if is_safe else SensitivityFlag.FLAGGED,
            confidence=round(confidence, 3),
            detected_issues=[] if is_safe else ["Potentially sensitive content detected"],
            details={
                'mock': True,
                'reason': reason,
                'model': 'mock'
            }
        )
