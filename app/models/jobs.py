import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from app.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """
    Job lifecycle states.

    pending -> running is immediate on submission.
    running -> completed | failed | cancelled
    pending -> failed | cancelled
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING})


@dataclass(frozen=True)
class Job:
    """A tracked unit of asynchronous recomputation work."""
    dataset_id: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    parameters: dict[str, Any] = field(default_factory=dict)
    options: dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    cancel_reason: Optional[str] = None
    triggered_by: str = "user"
    schedule_id: Optional[str] = None

    @property
    def finished_at(self) -> Optional[datetime]:
        return self.completed_at or self.cancelled_at

    def with_changes(self, **changes) -> "Job":
        return replace(self, **changes)


class JobRow(Base):
    __tablename__ = "jobs"

    # Insertion order for listing
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, index=True, nullable=False)
    dataset_id = Column(String, index=True, nullable=False)
    parameters = Column(JSON, nullable=False, default=dict)
    options = Column(JSON, nullable=False, default=dict)
    status = Column(String(16), index=True, nullable=False)
    progress = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    triggered_by = Column(String(16), default="user")
    schedule_id = Column(String(36), index=True, nullable=True)
