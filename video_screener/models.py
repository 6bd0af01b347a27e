"""
Domain models for the video screener.

Defines the job record persisted in the document store and the transient
values passed between pipeline stages.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List

from .errors import InvalidTransitionError


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SensitivityFlag(str, Enum):
    PENDING = "pending"
    SAFE = "safe"
    FLAGGED = "flagged"


ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}


def ensure_transition(current: JobStatus, new: JobStatus) -> None:
    """Raise InvalidTransitionError unless current -> new is a forward move"""
    current = JobStatus(current)
    new = JobStatus(new)
    if new not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransitionError(
            f"Cannot move job from '{current.value}' to '{new.value}'"
        )


@dataclass
class VideoMetadata:
    """Technical attributes reported by the media inspection tool"""
    duration: float = 0.0
    width: Optional[int] = None
    height: Optional[int] = None
    fps: float = 0.0
    bitrate: int = 0
    codec: Optional[str] = None

    @property
    def resolution(self) -> str:
        if self.width and self.height:
            return f"{self.width}x{self.height}"
        return "unknown"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['VideoMetadata']:
        if not data:
            return None
        return cls(
            duration=float(data.get('duration') or 0.0),
            width=data.get('width'),
            height=data.get('height'),
            fps=float(data.get('fps') or 0.0),
            bitrate=int(data.get('bitrate') or 0),
            codec=data.get('codec'),
        )


@dataclass
class VideoJob:
    """One video's journey through the pipeline"""
    id: str
    path: str
    title: str = ""
    size_bytes: int = 0
    mime_type: str = "video/mp4"
    status: JobStatus = JobStatus.PENDING
    process_progress: int = 0
    sensitivity_flag: SensitivityFlag = SensitivityFlag.PENDING
    metadata: Optional[VideoMetadata] = None
    duration: float = 0.0
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = JobStatus(self.status)
        self.sensitivity_flag = SensitivityFlag(self.sensitivity_flag)
        if isinstance(self.metadata, dict):
            self.metadata = VideoMetadata.from_dict(self.metadata)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses"""
        return {
            'id': self.id,
            'title': self.title,
            'size': self.size_bytes,
            'mimeType': self.mime_type,
            'status': self.status.value,
            'processProgress': self.process_progress,
            'sensitivityFlag': self.sensitivity_flag.value,
            'metadata': self.metadata.to_dict() if self.metadata else None,
            'duration': self.duration,
            'errorMessage': self.error_message,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
            'processedAt': self.processed_at.isoformat() if self.processed_at else None,
        }


@dataclass
class Frame:
    """A still sampled from a video; archived on disk and held in memory"""
    index: int
    data: bytes
    path: str
    timestamp: float = 0.0


@dataclass
class ClassificationResult:
    """Normalized classifier output for one frame"""
    nsfw_score: float
    normal_score: float
    raw: Any = None


@dataclass
class Verdict:
    """Final sensitivity decision for a job"""
    sensitivity_flag: SensitivityFlag
    confidence: float
    detected_issues: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_mock(self) -> bool:
        return bool(self.details.get('mock'))
