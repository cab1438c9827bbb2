from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl
from pydantic.alias_generators import to_camel

from app.models.jobs import JobStatus


class CamelModel(BaseModel):
    """snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StrictCamelModel(CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class RecomputeParameters(StrictCamelModel):
    algorithm: Optional[str] = None
    iterations: Optional[int] = Field(default=None, ge=1)
    threshold: Optional[float] = Field(default=None, ge=0, le=1)
    optimization_level: Optional[Literal["low", "medium", "high"]] = None
    parallelism: Optional[int] = Field(default=None, ge=1, le=32)


class RecomputeOptions(StrictCamelModel):
    priority: Literal["low", "normal", "high", "critical"] = "normal"
    timeout: Optional[int] = Field(default=None, ge=1000, le=3600000, description="Milliseconds")
    retry_on_failure: bool = True
    max_retries: int = Field(default=3, ge=0, le=5)
    notify_on_complete: bool = False
    webhook_url: Optional[HttpUrl] = None


class RecomputeRequest(StrictCamelModel):
    dataset_id: str = Field(..., min_length=1)
    parameters: Optional[RecomputeParameters] = None
    options: Optional[RecomputeOptions] = None


class CancelRequest(StrictCamelModel):
    reason: Optional[str] = None


class FailRequest(StrictCamelModel):
    error: str = Field(..., min_length=1)


class ProgressRequest(StrictCamelModel):
    progress: int


class JobStateResponse(CamelModel):
    job_id: str
    status: JobStatus
    message: Optional[str] = None


class JobStatusResponse(CamelModel):
    job_id: str
    dataset_id: str
    status: JobStatus
    progress: int
    triggered_by: str = "user"
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    error: Optional[str] = None


class JobSummary(JobStatusResponse):
    parameters: dict[str, Any] = {}
    schedule_id: Optional[str] = None


class JobResultMetadata(CamelModel):
    job_id: str
    dataset_id: str
    completed_at: str


class JobResultResponse(CamelModel):
    result: dict[str, Any]
    metadata: JobResultMetadata


class JobPendingResponse(CamelModel):
    message: str = "Computation still in progress"
    status: JobStatus
    progress: int


class Pagination(CamelModel):
    page: int
    limit: int
    total: int


class JobHistoryResponse(CamelModel):
    jobs: list[JobSummary]
    pagination: Pagination


class MetricsResponse(CamelModel):
    total: int
    pending: int
    running: int
    completed: int
    failed: int
    cancelled: int
    average_computation_time_ms: Optional[float] = None
    success_rate: Optional[float] = None
    active_schedules: int
