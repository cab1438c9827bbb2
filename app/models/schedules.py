import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from app.database import Base
from app.models.jobs import utcnow


@dataclass(frozen=True)
class Schedule:
    """A recurring cron trigger that spawns jobs for a dataset."""
    dataset_id: str
    cadence: str
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    parameters: dict[str, Any] = field(default_factory=dict)
    timezone: str = "UTC"
    enabled: bool = True
    max_concurrent: int = 1
    retain_days: int = 30
    created_at: datetime = field(default_factory=utcnow)
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None

    def with_changes(self, **changes) -> "Schedule":
        return replace(self, **changes)


class ScheduleRow(Base):
    __tablename__ = "schedules"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(36), unique=True, index=True, nullable=False)
    dataset_id = Column(String, index=True, nullable=False)
    cadence = Column(String, nullable=False)
    parameters = Column(JSON, nullable=False, default=dict)
    timezone = Column(String, nullable=False, default="UTC")
    enabled = Column(Boolean, nullable=False, default=True)
    max_concurrent = Column(Integer, nullable=False, default=1)
    retain_days = Column(Integer, nullable=False, default=30)
    created_at = Column(DateTime(timezone=True), nullable=False)
    next_run_at = Column(DateTime(timezone=True), nullable=True)
    last_run_at = Column(DateTime(timezone=True), nullable=True)
