"""
Sensitivity analysis sub-pipeline.

Samples frames, classifies them one by one against the external
classifier, and reduces the results to a Verdict. Every failure inside
this stage degrades to the mock classifier rather than failing the job.
"""

import logging
import time
from typing import Callable, List, Optional

from .broadcast import JobProgress
from .config import WorkerConfig
from .errors import AllClassificationsFailedError, ClassificationError, ExtractionError
from .models import Frame, Verdict
from .pipeline.classifier import ClassifierAvailability, ClassifierClient, MockClassifier
from .pipeline.frames import FrameSampler
from .pipeline.policy import DecisionPolicy, VerdictAccumulator

logger = logging.getLogger("video_screener")

EXTRACTION_PROGRESS = 25
CLASSIFY_START = 30
CLASSIFY_SPAN = 60
MOCK_STEPS = (
    (50, "analyzing content"),
    (70, "analyzing content"),
    (90, "finalizing analysis"),
)


class SensitivityAnalyzer:
    """Runs frame sampling and classification for one job at a time"""
    
    def __init__(self, config: WorkerConfig, sampler: FrameSampler,
                 availability: ClassifierAvailability,
                 classifier: Optional[ClassifierClient] = None,
                 policy: Optional[DecisionPolicy] = None,
                 mock: Optional[MockClassifier] = None,
                 sleep: Callable[[float], None] = time.sleep):
        if availability.available and classifier is None:
            raise ValueError("A ClassifierClient is required when the classifier is available")
        self.config = config
        self.sampler = sampler
        self.availability = availability
        self.classifier = classifier
        self.policy = policy or DecisionPolicy(
            frame_threshold=config.FRAME_FLAG_THRESHOLD,
            average_threshold=config.AVERAGE_FLAG_THRESHOLD
        )
        self.mock = mock or MockClassifier(confidence_cap=self.policy.confidence_cap)
        self._sleep = sleep
    
    def analyze(self, video_path: str, job_id: str, duration: Optional[float],
                progress: JobProgress) -> Verdict:
        """
        Produce a Verdict for a video.
        
        Args:
            video_path: Path to the stored video
            job_id: Job identifier, also names the frame archive
            duration: Known duration in seconds, or None to probe
            progress: Reporter for this job's progress channel
            
        Returns:
            Verdict from the real classifier, or a mock verdict on fallback
        """
        if not self.availability.available:
            logger.warning(
                f"Classifier unavailable for job {job_id} ({self.availability.reason}); using mock analysis"
            )
            return self._mock_verdict(job_id, progress, f"classifier unavailable: {self.availability.reason}")
        
        count = self.config.FRAMES_PER_VIDEO
        progress.update(EXTRACTION_PROGRESS, f"extracting {count} frames")
        
        try:
            frames = self.sampler.extract(video_path, job_id, n=count, duration=duration)
        except ExtractionError as e:
            logger.warning(f"Frame extraction failed for job {job_id}, using mock analysis: {e}")
            return self._mock_verdict(job_id, progress, f"frame extraction failed: {e}")
        
        try:
            return self.classify(job_id, frames, progress)
        except AllClassificationsFailedError as e:
            logger.warning(f"{e} for job {job_id}; using mock analysis")
            return self._mock_verdict(job_id, progress, str(e))
    
    def classify(self, job_id: str, frames: List[Frame], progress: JobProgress) -> Verdict:
        """
        Classify frames sequentially and aggregate.
        
        Raises:
            AllClassificationsFailedError: if no frame could be classified
        """
        accumulator = VerdictAccumulator(policy=self.policy)
        total = len(frames)
        delay = self.config.CLASSIFIER_DELAY_MS / 1000.0
        
        for position, frame in enumerate(frames):
            progress.update(
                CLASSIFY_START + CLASSIFY_SPAN * (position + 1) / total,
                f"analyzing frame {position + 1}/{total}"
            )
            
            try:
                result = self.classifier.classify(frame.data)
            except ClassificationError as e:
                logger.error(f"Error analyzing frame {frame.index} for job {job_id}: {e}")
                accumulator.record_failure(frame.index, e)
            else:
                flagged = accumulator.add(frame.index, result)
                logger.info(
                    f"Job {job_id} frame {frame.index}: NSFW={result.nsfw_score * 100:.1f}%, "
                    f"Normal={result.normal_score * 100:.1f}%{' (flagged)' if flagged else ''}"
                )
            
            # Upstream rate limit
            if delay and position < total - 1:
                self._sleep(delay)
        
        verdict = accumulator.finalize(total, model=self.classifier.model)
        
        logger.info(
            f"Analysis summary for job {job_id}: {verdict.sensitivity_flag.value.upper()}, "
            f"average NSFW {accumulator.average_nsfw_score * 100:.2f}%, "
            f"flagged {accumulator.flagged_frames}/{total}, confidence {verdict.confidence * 100:.1f}%"
        )
        logger.info(f"{total} frames kept for review for job {job_id}")
        return verdict
    
    def _mock_verdict(self, job_id: str, progress: JobProgress, reason: str) -> Verdict:
        delay = self.config.MOCK_STEP_DELAY_MS / 1000.0
        for value, stage in MOCK_STEPS:
            if delay:
                self._sleep(delay)
            progress.update(value, stage)
        
        verdict = self.mock.verdict(reason)
        logger.info(
            f"Mock analysis for job {job_id}: {verdict.sensitivity_flag.value}, "
            f"confidence {verdict.confidence * 100:.1f}%"
        )
        return verdict
    
    def close(self) -> None:
        """Release the classifier's HTTP connections"""
        if self.classifier is not None:
            self.classifier.close()
