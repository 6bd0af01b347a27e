"""
Main worker service.

Wires configuration, the job store, the progress broadcaster and the
pipeline together, and dispatches each uploaded video to a bounded
thread pool without waiting for it to finish.
"""

import os
import uuid
import signal
import sys
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Dict, Any, List

from .adapters.base import JobStore
from .adapters.memory_adapter import InMemoryJobStore
from .adapters.postgres_adapter import PostgresJobStore
from .broadcast import ProgressBroadcaster
from .config import WorkerConfig
from .logging_setup import setup_logging, log_exception
from .models import VideoJob
from .orchestrator import PipelineOrchestrator
from .pipeline.classifier import ClassifierAvailability, ClassifierClient
from .pipeline.frames import FrameSampler
from .pipeline.labels import get_vocabulary
from .pipeline.metadata import MetadataExtractor
from .pipeline.util import get_file_size, guess_mime_type
from .processor import SensitivityAnalyzer

logger = logging.getLogger("video_screener")


def build_orchestrator(config: WorkerConfig, store: JobStore,
                       broadcaster: ProgressBroadcaster) -> PipelineOrchestrator:
    """Assemble the pipeline components described by config"""
    availability = ClassifierAvailability.from_api_key(config.HUGGINGFACE_API_KEY)
    classifier = None
    if availability.available:
        classifier = ClassifierClient(
            availability,
            base_url=config.CLASSIFIER_BASE_URL,
            model=config.CLASSIFIER_MODEL,
            timeout=config.CLASSIFIER_TIMEOUT_S,
            vocabulary=get_vocabulary(config.CLASSIFIER_VOCABULARY)
        )
        logger.info(f"Classifier configured: {config.CLASSIFIER_MODEL}")
    else:
        logger.warning(f"Classifier unavailable ({availability.reason}); every job will use mock analysis")
    
    extractor = MetadataExtractor(timeout=config.PROBE_TIMEOUT_S)
    sampler = FrameSampler(
        config.DATA_DIR,
        size=config.frame_dimensions,
        timeout=config.EXTRACT_TIMEOUT_S,
        extractor=extractor
    )
    analyzer = SensitivityAnalyzer(config, sampler, availability, classifier=classifier)
    return PipelineOrchestrator(store, broadcaster, extractor, analyzer)


class WorkerService:
    """Main worker service with thread-pool dispatch"""
    
    def __init__(self, config: Optional[WorkerConfig] = None,
                 store: Optional[JobStore] = None,
                 broadcaster: Optional[ProgressBroadcaster] = None,
                 orchestrator: Optional[PipelineOrchestrator] = None):
        self.config = config or WorkerConfig.from_env()
        self.store = store
        self.broadcaster = broadcaster or ProgressBroadcaster()
        self.orchestrator = orchestrator
        self.executor: Optional[ThreadPoolExecutor] = None
        self.health_server = None
        self.running = False
        self._stopped = threading.Event()
        self._inflight_lock = threading.Lock()
        self._inflight: Dict[str, Future] = {}
    
    def initialize(self):
        """Initialize store, pipeline and worker pool based on configuration"""
        try:
            # Setup logging
            setup_logging(self.config.LOG_LEVEL, self.config.DATA_DIR)
            
            # Validate configuration
            self.config.validate()
            
            # Initialize store
            if self.store is None:
                self.store = self._create_store()
            self.store.connect()
            
            # Initialize pipeline
            if self.orchestrator is None:
                self.orchestrator = build_orchestrator(self.config, self.store, self.broadcaster)
            
            self.executor = ThreadPoolExecutor(
                max_workers=self.config.MAX_CONCURRENT_JOBS,
                thread_name_prefix="screener"
            )
            
            # Start HTTP server if enabled
            if self.config.ENABLE_HTTP_SERVER:
                from .http_server import start_health_server
                self.health_server = start_health_server(self)
            
            logger.info(
                f"Worker service initialized: {self.config.STORE_TYPE} store, "
                f"{self.config.MAX_CONCURRENT_JOBS} workers"
            )
            
        except Exception as e:
            log_exception(logger, f"Failed to initialize worker service: {e}")
            raise
    
    def _create_store(self) -> JobStore:
        """Create the job store based on configuration"""
        
        if self.config.STORE_TYPE == "postgres":
            config = self.config.STORE_CONFIG
            return PostgresJobStore(
                database_url=config["database_url"],
                pool_size=config.get("connection_pool_size", 5),
                timeout=config.get("connection_timeout", 10)
            )
        
        elif self.config.STORE_TYPE == "memory":
            return InMemoryJobStore()
        
        else:
            raise ValueError(f"Unsupported store type: {self.config.STORE_TYPE}")
    
    def submit_upload(self, video_path: str, title: str = "", job_id: Optional[str] = None,
                      mime_type: Optional[str] = None) -> VideoJob:
        """
        Register a stored video as a pending job and start screening it.
        
        Returns immediately with the pending job; processing continues
        in the background.
        """
        if not os.path.isfile(video_path):
            raise FileNotFoundError(f"Video file not found: {video_path}")
        
        job = self.store.create(VideoJob(
            id=job_id or uuid.uuid4().hex,
            path=video_path,
            title=title or os.path.basename(video_path),
            size_bytes=get_file_size(video_path) or 0,
            mime_type=mime_type or guess_mime_type(video_path)
        ))
        self.dispatch(video_path, job.id)
        return job
    
    def dispatch(self, video_path: str, job_id: str) -> Future:
        """
        Schedule the pipeline for a job and return without waiting.
        
        Callers are not expected to wait on the future. A second dispatch
        while the job is queued or running returns the existing future.
        """
        if self.executor is None:
            raise RuntimeError("Worker service not initialized. Call initialize() first.")
        
        with self._inflight_lock:
            existing = self._inflight.get(job_id)
            if existing is not None and not existing.done():
                logger.warning(f"Job {job_id} already dispatched; ignoring duplicate")
                return existing
            
            future = self.executor.submit(self.orchestrator.run, video_path, job_id)
            self._inflight[job_id] = future
        
        future.add_done_callback(lambda f, job_id=job_id: self._on_done(job_id, f))
        logger.info(f"Dispatched job {job_id}")
        return future
    
    def _on_done(self, job_id: str, future: Future) -> None:
        with self._inflight_lock:
            if self._inflight.get(job_id) is future:
                del self._inflight[job_id]
        
        if future.cancelled():
            logger.warning(f"Job {job_id} was cancelled before it started")
            return
        
        error = future.exception()
        if error is not None:
            # Not retried; a failed job must be resubmitted
            logger.error(f"Background processing error for job {job_id}: {error}")
        else:
            logger.info(f"Background processing finished for job {job_id}")
    
    def inflight_jobs(self) -> List[str]:
        with self._inflight_lock:
            return sorted(self._inflight)
    
    def cancel(self, job_id: str) -> bool:
        """Cancel a dispatched job that has not started yet"""
        with self._inflight_lock:
            future = self._inflight.get(job_id)
        if future is None:
            return False
        cancelled = future.cancel()
        if cancelled:
            logger.info(f"Cancelled queued job {job_id}")
        return cancelled
    
    def start(self):
        """Block until stop() is called"""
        if self.running:
            logger.warning("Worker service is already running")
            return
        
        self.running = True
        logger.info("Worker service started, waiting for jobs...")
        self._stopped.wait()
    
    def request_stop(self):
        """Wake start() so the caller can run stop(); safe from a signal handler"""
        self.running = False
        self._stopped.set()
    
    def stop(self):
        """
        Stop the worker service.
        
        Running jobs are allowed to finish and queued ones are cancelled
        before the classifier and the store are closed.
        """
        self.request_stop()
        
        # Stop HTTP server
        if self.health_server:
            self.health_server.stop()
        
        if self.executor:
            self.executor.shutdown(wait=True, cancel_futures=True)
            self.executor = None
        
        if self.orchestrator:
            self.orchestrator.close()
        
        if self.store:
            self.store.close()
        
        logger.info("Worker service stopped")
    
    def get_stats(self) -> Dict[str, Any]:
        """Get worker statistics"""
        stats = {
            'running': self.running,
            'config': {
                'store_type': self.config.STORE_TYPE,
                'frames_per_video': self.config.FRAMES_PER_VIDEO,
                'max_concurrent_jobs': self.config.MAX_CONCURRENT_JOBS
            },
            'inflight_jobs': self.inflight_jobs()
        }
        
        if self.orchestrator:
            stats['orchestrator'] = self.orchestrator.get_stats()
        
        return stats


def main():
    """Main entry point"""
    worker = WorkerService()
    
    def signal_handler(signum, frame):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}, shutting down...")
        worker.request_stop()
    
    # Setup signal handlers
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
    
    try:
        worker.initialize()
        worker.start()
    except Exception as e:
        log_exception(logger, f"Worker failed to start: {str(e)}")
        sys.exit(1)
    finally:
        worker.stop()


if __name__ == "__main__":
    main()
