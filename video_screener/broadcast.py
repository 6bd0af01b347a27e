"""
Progress broadcasting.

A publish/subscribe channel per job id. The orchestrator publishes
progress, completion and failure events; any number of listeners
(websocket sessions, loggers, tests) may subscribe. Events are delivered
synchronously in publish order and are never buffered for late joiners.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .logging_setup import log_exception

logger = logging.getLogger("video_screener")


class _Event(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)
    
    job_id: str
    
    def to_message(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode='json')


class ProgressEvent(_Event):
    event: Literal["progress"] = "progress"
    progress: int = Field(ge=0, le=100)
    stage: str
    status: Literal["processing"] = "processing"


class CompletionEvent(_Event):
    event: Literal["completed"] = "completed"
    status: Literal["completed"] = "completed"
    sensitivity_flag: str
    confidence: float
    detected_issues: List[str] = Field(default_factory=list)
    details: Dict[str, Any] = Field(default_factory=dict)
    message: str


class FailureEvent(_Event):
    event: Literal["failed"] = "failed"
    status: Literal["failed"] = "failed"
    error: str


Event = Union[ProgressEvent, CompletionEvent, FailureEvent]
Listener = Callable[[Event], None]


@dataclass(frozen=True)
class Subscription:
    """Handle returned by subscribe(); pass it back to cancel"""
    job_id: str
    listener: Listener
    broadcaster: 'ProgressBroadcaster'
    
    def cancel(self) -> None:
        self.broadcaster.unsubscribe(self.job_id, self.listener)


class _Channel:
    def __init__(self):
        self.lock = threading.RLock()
        self.listeners: List[Listener] = []


class ProgressBroadcaster:
    """Thread-safe per-job publish/subscribe hub"""
    
    def __init__(self):
        self._lock = threading.Lock()
        self._channels: Dict[str, _Channel] = {}
    
    def _channel(self, job_id: str, create: bool) -> Optional[_Channel]:
        with self._lock:
            channel = self._channels.get(job_id)
            if channel is None and create:
                channel = self._channels[job_id] = _Channel()
            return channel
    
    def subscribe(self, job_id: str, listener: Listener) -> Subscription:
        while True:
            channel = self._channel(job_id, create=True)
            with channel.lock:
                channel.listeners.append(listener)
            # A channel holding listeners is never dropped, so once it is
            # still registered after the append the subscription is live
            with self._lock:
                if self._channels.get(job_id) is channel:
                    break
            with channel.lock:
                channel.listeners.remove(listener)
        logger.debug(f"Listener subscribed to job {job_id}")
        return Subscription(job_id, listener, self)
    
    def unsubscribe(self, job_id: str, listener: Listener) -> None:
        channel = self._channel(job_id, create=False)
        if channel is None:
            return
        with channel.lock:
            if listener in channel.listeners:
                channel.listeners.remove(listener)
            empty = not channel.listeners
        if empty:
            with self._lock:
                if self._channels.get(job_id) is channel and not channel.listeners:
                    del self._channels[job_id]
        logger.debug(f"Listener unsubscribed from job {job_id}")
    
    def subscriber_count(self, job_id: str) -> int:
        channel = self._channel(job_id, create=False)
        if channel is None:
            return 0
        with channel.lock:
            return len(channel.listeners)
    
    def publish(self, job_id: str, event: Event) -> None:
        """Deliver event to every current subscriber of job_id"""
        channel = self._channel(job_id, create=False)
        if channel is None:
            return
        
        # Holding the channel lock keeps per-job ordering across threads
        with channel.lock:
            for listener in list(channel.listeners):
                try:
                    listener(event)
                except Exception as e:
                    log_exception(logger, f"Progress listener for job {job_id} raised: {e}")


class JobProgress:
    """
    Progress reporter bound to one job.
    
    Progress never decreases, and exactly one terminal event
    (completion or failure) may be published.
    """
    
    def __init__(self, broadcaster: ProgressBroadcaster, job_id: str):
        self.broadcaster = broadcaster
        self.job_id = job_id
        self.progress = 0
        self.stage = ""
        self.terminal: Optional[str] = None
    
    def update(self, progress: float, stage: str) -> int:
        """Publish a progress event; returns the value actually published"""
        if self.terminal:
            raise RuntimeError(f"Job {self.job_id} already {self.terminal}; no further progress")
        
        value = min(max(int(round(progress)), self.progress, 0), 100)
        self.progress = value
        self.stage = stage
        logger.debug(f"Job {self.job_id} progress: {stage} ({value}%)")
        self.broadcaster.publish(
            self.job_id, ProgressEvent(job_id=self.job_id, progress=value, stage=stage)
        )
        return value
    
    def complete(self, **fields) -> CompletionEvent:
        self._mark_terminal("completed")
        event = CompletionEvent(job_id=self.job_id, **fields)
        self.broadcaster.publish(self.job_id, event)
        return event
    
    def fail(self, error: str) -> FailureEvent:
        self._mark_terminal("failed")
        event = FailureEvent(job_id=self.job_id, error=error)
        self.broadcaster.publish(self.job_id, event)
        return event
    
    def _mark_terminal(self, outcome: str) -> None:
        if self.terminal:
            raise RuntimeError(f"Job {self.job_id} already {self.terminal}")
        self.terminal = outcome
