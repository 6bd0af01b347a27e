"""
Abstract base class for the job document store.

Defines the interface every store must implement so the pipeline can run
against different backends. The store is treated as a reliable map from
job id to record with atomic, last-write-wins partial updates.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional, Dict, Any, Iterable, List

from ..models import VideoJob, JobStatus, SensitivityFlag

UPDATABLE_FIELDS = frozenset({
    'status',
    'process_progress',
    'sensitivity_flag',
    'metadata',
    'duration',
    'error_message',
    'processed_at',
    'title',
})


def check_fields(fields: Dict[str, Any]) -> None:
    """Reject updates to unknown or immutable fields"""
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")


FILTER_FIELDS = frozenset({'status', 'sensitivity_flag', 'search'})

SORTABLE_FIELDS = (
    'created_at',
    'processed_at',
    'title',
    'duration',
    'size_bytes',
    'status',
    'sensitivity_flag',
    'process_progress',
)

SORT_ORDERS = ('asc', 'desc')


def normalize_filters(filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Validate listing filters and coerce them to their stored types.
    
    Empty values are dropped; status and sensitivity_flag become enums
    and search is a case-insensitive title substring.
    
    Raises:
        ValueError: on an unknown filter or an invalid status/flag
    """
    filters = {name: value for name, value in (filters or {}).items() if value not in (None, '')}
    unknown = set(filters) - FILTER_FIELDS
    if unknown:
        raise ValueError(f"Cannot filter on: {', '.join(sorted(unknown))}")
    
    if 'status' in filters:
        filters['status'] = JobStatus(filters['status'])
    if 'sensitivity_flag' in filters:
        filters['sensitivity_flag'] = SensitivityFlag(filters['sensitivity_flag'])
    if 'search' in filters:
        search = str(filters['search']).strip()
        if search:
            filters['search'] = search
        else:
            del filters['search']
    return filters


def check_listing(sort_by: str, order: str, skip: int, limit: int) -> None:
    """Reject sort keys, orders and page bounds the stores cannot honour"""
    if sort_by not in SORTABLE_FIELDS:
        raise ValueError(f"Cannot sort by {sort_by!r}; expected one of {', '.join(SORTABLE_FIELDS)}")
    if order not in SORT_ORDERS:
        raise ValueError(f"Sort order must be 'asc' or 'desc', got {order!r}")
    if skip < 0:
        raise ValueError(f"skip must be >= 0, got {skip}")
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")


def matches_filters(job: VideoJob, filters: Dict[str, Any]) -> bool:
    """Apply normalized filters to one job"""
    if 'status' in filters and job.status != filters['status']:
        return False
    if 'sensitivity_flag' in filters and job.sensitivity_flag != filters['sensitivity_flag']:
        return False
    if 'search' in filters and filters['search'].casefold() not in (job.title or '').casefold():
        return False
    return True


def sort_jobs(jobs: List[VideoJob], sort_by: str, order: str) -> List[VideoJob]:
    """
    Order jobs by one field, ties broken by id.
    
    Jobs without a value for the field sort last in either direction.
    """
    def value(job):
        raw = getattr(job, sort_by)
        return raw.value if isinstance(raw, Enum) else raw
    
    present = sorted((job for job in jobs if value(job) is not None), key=lambda job: job.id)
    present.sort(key=value, reverse=(order == 'desc'))
    missing = sorted((job for job in jobs if value(job) is None), key=lambda job: job.id)
    return present + missing


def summarize_jobs(jobs: Iterable[VideoJob]) -> Dict[str, Any]:
    """Count jobs by status and flag"""
    stats = {
        'totalVideos': 0,
        'pending': 0,
        'processing': 0,
        'completed': 0,
        'failed': 0,
        'safe': 0,
        'flagged': 0,
        'totalSize': 0
    }
    for job in jobs:
        stats['totalVideos'] += 1
        stats[job.status.value] += 1
        if job.sensitivity_flag != SensitivityFlag.PENDING:
            stats[job.sensitivity_flag.value] += 1
        stats['totalSize'] += job.size_bytes or 0
    return stats


class JobStore(ABC):
    """Abstract base class for job document stores"""
    
    def connect(self) -> None:
        """Open connections; no-op by default"""
    
    def close(self) -> None:
        """Release connections; no-op by default"""
    
    @abstractmethod
    def create(self, job: VideoJob) -> VideoJob:
        """
        Insert a new job record.
        
        Args:
            job: Job to store, normally in pending status
            
        Returns:
            The stored job, with created_at populated
        """
        pass
    
    @abstractmethod
    def find_by_id(self, job_id: str) -> Optional[VideoJob]:
        """
        Get a job by id.
        
        Returns:
            VideoJob if found, None otherwise
        """
        pass
    
    @abstractmethod
    def update_by_id(self, job_id: str, **fields: Any) -> VideoJob:
        """
        Atomically apply a partial update.
        
        Args:
            job_id: ID of the job
            **fields: Fields from UPDATABLE_FIELDS
            
        Returns:
            The updated job
            
        Raises:
            JobNotFoundError: if no such job exists
            PersistenceError: if the backend fails
        """
        pass
    
    @abstractmethod
    def find(self, filters: Optional[Dict[str, Any]] = None, sort_by: str = 'created_at',
             order: str = 'desc', skip: int = 0, limit: int = 10) -> List[VideoJob]:
        """
        List jobs matching filters, one page at a time.
        
        Args:
            filters: Optional status, sensitivity_flag and search (title substring)
            sort_by: One of SORTABLE_FIELDS
            order: 'asc' or 'desc'
            skip: Number of matching jobs to skip
            limit: Maximum number of jobs to return
            
        Raises:
            ValueError: on an invalid filter, sort or page bound
            PersistenceError: if the backend fails
        """
        pass
    
    @abstractmethod
    def count(self, filters: Optional[Dict[str, Any]] = None) -> int:
        """Number of jobs matching filters, ignoring paging"""
        pass
    
    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        """
        Get aggregate counts for monitoring.
        
        Returns:
            Dictionary with totals by status and sensitivity flag
        """
        pass
    
    def ping(self) -> bool:
        """Health check; stores with a connection override this"""
        return True
