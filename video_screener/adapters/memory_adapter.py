"""
In-memory job store.

Used for local development and tests. A single lock guards every read and
write so partial updates are atomic per document.
"""

import copy
import logging
import threading
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from ..errors import JobNotFoundError
from ..models import VideoJob
from .base import (
    JobStore, check_fields, check_listing, matches_filters, normalize_filters, sort_jobs, summarize_jobs
)

logger = logging.getLogger("video_screener")


class InMemoryJobStore(JobStore):
    """Thread-safe dictionary-backed implementation of JobStore"""
    
    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: Dict[str, VideoJob] = {}
    
    def create(self, job: VideoJob) -> VideoJob:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already exists")
            stored = copy.deepcopy(job)
            if stored.created_at is None:
                stored.created_at = datetime.now(timezone.utc)
            self._jobs[job.id] = stored
            logger.info(f"Created job {job.id} ({stored.status.value})")
            return copy.deepcopy(stored)
    
    def find_by_id(self, job_id: str) -> Optional[VideoJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None
    
    def update_by_id(self, job_id: str, **fields: Any) -> VideoJob:
        check_fields(fields)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            for name, value in fields.items():
                setattr(job, name, copy.deepcopy(value))
            # Re-run enum coercion for status/flag strings
            job.__post_init__()
            return copy.deepcopy(job)
    
    def find(self, filters: Optional[Dict[str, Any]] = None, sort_by: str = 'created_at',
             order: str = 'desc', skip: int = 0, limit: int = 10) -> List[VideoJob]:
        filters = normalize_filters(filters)
        check_listing(sort_by, order, skip, limit)
        with self._lock:
            matching = [job for job in self._jobs.values() if matches_filters(job, filters)]
            page = sort_jobs(matching, sort_by, order)[skip:skip + limit]
            return copy.deepcopy(page)
    
    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        filters = normalize_filters(filters)
        with self._lock:
            return sum(1 for job in self._jobs.values() if matches_filters(job, filters))
    
    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return summarize_jobs(list(self._jobs.values()))
