"""
Decision policy: turns per-frame classification results into a Verdict.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from ..errors import AllClassificationsFailedError
from ..models import ClassificationResult, SensitivityFlag, Verdict

logger = logging.getLogger("video_screener")


@dataclass(frozen=True)
class DecisionPolicy:
    frame_threshold: float = 0.6
    average_threshold: float = 0.5
    confidence_boost: float = 1.1
    confidence_cap: float = 0.99
    
    def is_frame_flagged(self, nsfw_score: float) -> bool:
        return nsfw_score > self.frame_threshold
    
    def decide(self, average_nsfw_score: float, flagged_frame_count: int) -> Tuple[SensitivityFlag, float]:
        """
        Safe iff no frame was flagged and the average stays under the
        threshold. Confidence scales with how far the average supports the
        chosen label, capped at confidence_cap.
        """
        is_safe = flagged_frame_count == 0 and average_nsfw_score < self.average_threshold
        
        if is_safe:
            confidence = (1 - average_nsfw_score) * self.confidence_boost
        else:
            confidence = average_nsfw_score * self.confidence_boost
        confidence = round(max(0.0, min(confidence, self.confidence_cap)), 3)
        
        flag = SensitivityFlag.SAFE if is_safe else SensitivityFlag.FLAGGED
        return flag, confidence
    
    def criteria(self) -> dict:
        return {
            'threshold': f"{self.average_threshold:.0%} average NSFW score",
            'frameThreshold': f"{self.frame_threshold:.0%} individual frame score"
        }


@dataclass
class VerdictAccumulator:
    """Collects frame results one at a time and produces the final Verdict"""
    policy: DecisionPolicy = field(default_factory=DecisionPolicy)
    successful: int = 0
    failed: int = 0
    flagged_frames: int = 0
    total_nsfw_score: float = 0.0
    issues: List[str] = field(default_factory=list)
    
    def add(self, frame_index: int, result: ClassificationResult) -> bool:
        """Record a classified frame; returns True if the frame is flagged"""
        self.successful += 1
        self.total_nsfw_score += result.nsfw_score
        
        if self.policy.is_frame_flagged(result.nsfw_score):
            self.flagged_frames += 1
            self.issues.append(
                f"Frame {frame_index}: High sensitivity content detected "
                f"({result.nsfw_score * 100:.1f}% confidence)"
            )
            return True
        return False
    
    def record_failure(self, frame_index: int, error: Exception) -> None:
        self.failed += 1
        logger.debug(f"Frame {frame_index} counted as failed: {error}")
    
    @property
    def average_nsfw_score(self) -> float:
        if not self.successful:
            return 0.0
        return self.total_nsfw_score / self.successful
    
    def finalize(self, total_frames: int, model: Optional[str] = None) -> Verdict:
        """
        Raises:
            AllClassificationsFailedError: if no frame was classified
        """
        if self.successful == 0:
            raise AllClassificationsFailedError(
                f"All {total_frames} frame classifications failed"
            )
        
        average = self.average_nsfw_score
        flag, confidence = self.policy.decide(average, self.flagged_frames)
        
        return Verdict(
            sensitivity_flag=flag,
            confidence=confidence,
            detected_issues=[] if flag == SensitivityFlag.SAFE else list(self.issues),
            details={
                'totalFramesAnalyzed': total_frames,
                'successfulAnalyses': self.successful,
                'failedAnalyses': self.failed,
                'flaggedFrames': self.flagged_frames,
                'averageNsfwScore': round(average, 4),
                'model': model,
                'criteria': self.policy.criteria()
            }
        )
