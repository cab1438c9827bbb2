"""
Shapes Job records into response payloads.

All functions here are pure: they read the job and build a new schema
object, never touching the record itself.
"""

from datetime import datetime
from typing import Optional

from app.models.jobs import Job, JobStatus
from app.schemas.jobs import (
    JobPendingResponse,
    JobResultMetadata,
    JobResultResponse,
    JobStatusResponse,
    JobSummary,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def format_result(job: Job) -> JobResultResponse:
    """Result payload for a completed job."""
    if job.status != JobStatus.COMPLETED:
        raise ValueError(f"Job {job.id} has no result in status {job.status.value}")
    return JobResultResponse(
        result=dict(job.result or {}),
        metadata=JobResultMetadata(
            job_id=job.id,
            dataset_id=job.dataset_id,
            completed_at=_iso(job.completed_at),
        ),
    )


def format_pending(job: Job) -> JobPendingResponse:
    return JobPendingResponse(status=job.status, progress=job.progress)


def format_status(job: Job) -> JobStatusResponse:
    return JobStatusResponse(
        job_id=job.id,
        dataset_id=job.dataset_id,
        status=job.status,
        progress=job.progress,
        triggered_by=job.triggered_by,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        cancelled_at=job.cancelled_at,
        cancel_reason=job.cancel_reason,
        error=job.error,
    )


def format_summary(job: Job) -> JobSummary:
    return JobSummary(
        **format_status(job).model_dump(),
        parameters=dict(job.parameters),
        schedule_id=job.schedule_id,
    )
