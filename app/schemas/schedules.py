from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, Field

from app.schemas.jobs import CamelModel, StrictCamelModel


class ScheduleParameters(StrictCamelModel):
    algorithm: Optional[str] = None
    iterations: Optional[int] = Field(default=None, ge=1)
    threshold: Optional[float] = Field(default=None, ge=0, le=1)


class ScheduleOptions(StrictCamelModel):
    timezone: str = "UTC"
    enabled: bool = True
    max_concurrent: int = Field(default=1, ge=1, le=10)
    retain_results: int = Field(default=30, ge=1, le=365, description="Days")


class ScheduleRequest(StrictCamelModel):
    dataset_id: str = Field(..., min_length=1)
    # "schedule" is accepted for older clients
    cadence: str = Field(..., min_length=1, validation_alias=AliasChoices("cadence", "schedule"))
    parameters: Optional[ScheduleParameters] = None
    options: Optional[ScheduleOptions] = None


class ScheduleUpdateOptions(StrictCamelModel):
    enabled: Optional[bool] = None
    timezone: Optional[str] = None


class ScheduleUpdateRequest(StrictCamelModel):
    cadence: Optional[str] = Field(default=None, min_length=1, validation_alias=AliasChoices("cadence", "schedule"))
    parameters: Optional[ScheduleParameters] = None
    options: Optional[ScheduleUpdateOptions] = None


class ScheduleResponse(CamelModel):
    id: str
    dataset_id: str
    cadence: str
    parameters: dict[str, Any] = {}
    timezone: str
    enabled: bool
    max_concurrent: int
    retain_days: int
    created_at: datetime
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None


class ScheduleListResponse(CamelModel):
    items: list[ScheduleResponse]
    total: int
