"""
Pipeline orchestration and execution management.

Drives one job through pending -> processing -> completed/failed,
persists each transition, and publishes progress and terminal events.
Coordinates between MetadataExtractor, SensitivityAnalyzer and the
job store.
"""

import time
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Any, Set

from .adapters.base import JobStore
from .broadcast import JobProgress, ProgressBroadcaster
from .errors import JobAlreadyRunningError, JobNotFoundError, PersistenceError
from .logging_setup import log_exception
from .models import JobStatus, SensitivityFlag, Verdict, VideoJob, VideoMetadata, ensure_transition
from .pipeline.metadata import MetadataExtractor
from .processor import SensitivityAnalyzer

logger = logging.getLogger("video_screener")


def completion_message(verdict: Verdict) -> str:
    percent = f"{verdict.confidence * 100:.1f}%"
    if verdict.sensitivity_flag == SensitivityFlag.SAFE:
        return f"Video is SAFE ({percent} confidence)"
    return f"Video FLAGGED ({percent} confidence)"


class PipelineOrchestrator:
    """Manages pipeline execution flow and coordination"""
    
    def __init__(self, store: JobStore, broadcaster: ProgressBroadcaster,
                 extractor: MetadataExtractor, analyzer: SensitivityAnalyzer):
        self.store = store
        self.broadcaster = broadcaster
        self.extractor = extractor
        self.analyzer = analyzer
        self._active_lock = threading.Lock()
        self._active_jobs: Set[str] = set()
        self._stats_lock = threading.Lock()
        self.stats = self._empty_stats()
    
    @staticmethod
    def _empty_stats() -> Dict[str, Any]:
        return {
            'jobs_completed': 0,
            'jobs_failed': 0,
            'mock_fallbacks': 0,
            'total_processing_time': 0.0,
            'start_time': datetime.now()
        }
    
    @contextmanager
    def _claim(self, job_id: str):
        """Hold an in-process claim on job_id for the duration of a run"""
        with self._active_lock:
            if job_id in self._active_jobs:
                raise JobAlreadyRunningError(f"Pipeline already running for job {job_id}")
            self._active_jobs.add(job_id)
        try:
            yield
        finally:
            with self._active_lock:
                self._active_jobs.discard(job_id)
    
    def is_running(self, job_id: str) -> bool:
        with self._active_lock:
            return job_id in self._active_jobs
    
    def run(self, video_path: str, job_id: str) -> VideoJob:
        """
        Execute the complete screening pipeline for one job.
        
        Args:
            video_path: Path to the stored video
            job_id: ID of a job in pending status
            
        Returns:
            The completed VideoJob
            
        Raises:
            JobAlreadyRunningError, JobNotFoundError, InvalidTransitionError:
                if the job cannot be started; nothing is persisted
            ProbeError, PersistenceError: after the job has been marked failed
        """
        with self._claim(job_id):
            job = self.store.find_by_id(job_id)
            if job is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            ensure_transition(job.status, JobStatus.PROCESSING)
            
            return self._execute(video_path, job_id)
    
    def _execute(self, video_path: str, job_id: str) -> VideoJob:
        start_time = time.time()
        progress = JobProgress(self.broadcaster, job_id)
        started = False
        
        try:
            logger.info(f"Executing pipeline for job {job_id}: {video_path}")
            
            self.store.update_by_id(job_id, status=JobStatus.PROCESSING, process_progress=0)
            started = True
            progress.update(0, "starting")
            
            # Step 1: metadata
            progress.update(20, "extracting metadata")
            metadata = self.extractor.probe(video_path)
            
            # Step 2: frame sampling and classification (25-90%)
            verdict = self.analyzer.analyze(video_path, job_id, metadata.duration, progress)
            
            # Step 3: finalize
            progress.update(100, "finalizing")
            job = self.store.update_by_id(
                job_id,
                status=JobStatus.COMPLETED,
                process_progress=100,
                sensitivity_flag=verdict.sensitivity_flag,
                metadata=metadata,
                duration=metadata.duration,
                processed_at=datetime.now(timezone.utc)
            )
            
        except Exception as e:
            log_exception(logger, f"Pipeline failed for job {job_id}: {e}")
            self._handle_failure(job_id, progress, e, persist=started)
            self._record(time.time() - start_time, failed=True, mock=False)
            raise
        
        self._broadcast_completion(progress, verdict, metadata)
        elapsed = time.time() - start_time
        self._record(elapsed, failed=False, mock=verdict.is_mock)
        
        logger.info(
            f"Pipeline completed for job {job_id} in {elapsed:.2f}s: "
            f"{verdict.sensitivity_flag.value} ({verdict.confidence * 100:.1f}%)"
        )
        return job
    
    def _broadcast_completion(self, progress: JobProgress, verdict: Verdict,
                              metadata: VideoMetadata) -> None:
        details = dict(verdict.details)
        details.update({
            'duration': metadata.duration,
            'resolution': metadata.resolution,
            'codec': metadata.codec
        })
        progress.complete(
            sensitivity_flag=verdict.sensitivity_flag.value,
            confidence=verdict.confidence,
            detected_issues=verdict.detected_issues,
            details=details,
            message=completion_message(verdict)
        )
    
    def _handle_failure(self, job_id: str, progress: JobProgress, error: Exception,
                        persist: bool = True) -> None:
        """
        Persist the failed status and publish the failure event.
        
        Only status, error message and timestamp are written so a failed
        job never carries partial metadata or a verdict. Nothing is written
        when the job never reached processing.
        """
        message = str(error) or error.__class__.__name__
        if persist:
            try:
                self.store.update_by_id(
                    job_id,
                    status=JobStatus.FAILED,
                    error_message=message,
                    processed_at=datetime.now(timezone.utc)
                )
            except (PersistenceError, JobNotFoundError) as e:
                log_exception(logger, f"Could not persist failure for job {job_id}: {e}")
        
        if progress.terminal is None:
            progress.fail(message)
    
    def _record(self, elapsed: float, failed: bool, mock: bool) -> None:
        with self._stats_lock:
            if failed:
                self.stats['jobs_failed'] += 1
            else:
                self.stats['jobs_completed'] += 1
            if mock:
                self.stats['mock_fallbacks'] += 1
            self.stats['total_processing_time'] += elapsed
    
    def get_stats(self) -> Dict[str, Any]:
        """Get orchestrator statistics"""
        with self._stats_lock:
            stats = dict(self.stats)
        with self._active_lock:
            active = sorted(self._active_jobs)
        
        finished = stats['jobs_completed'] + stats['jobs_failed']
        uptime = (datetime.now() - stats['start_time']).total_seconds()
        
        return {
            'jobs_completed': stats['jobs_completed'],
            'jobs_failed': stats['jobs_failed'],
            'mock_fallbacks': stats['mock_fallbacks'],
            'total_processing_time': stats['total_processing_time'],
            'average_processing_time': stats['total_processing_time'] / finished if finished else 0,
            'uptime_seconds': uptime,
            'success_rate': stats['jobs_completed'] / finished if finished else 0,
            'active_jobs': active
        }
    
    def reset_stats(self) -> None:
        """Reset orchestrator statistics"""
        with self._stats_lock:
            self.stats = self._empty_stats()
        logger.info("Orchestrator statistics reset")
    
    def close(self) -> None:
        self.analyzer.close()
