from typing import Literal, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import JSONResponse

from app.api.deps import get_job_service
from app.models.jobs import JobStatus
from app.schemas.jobs import (
    CancelRequest,
    FailRequest,
    JobHistoryResponse,
    JobPendingResponse,
    JobResultResponse,
    JobStateResponse,
    JobStatusResponse,
    MetricsResponse,
    Pagination,
    ProgressRequest,
    RecomputeRequest,
)
from app.security import require_permission
from app.services.job_service import JobService
from app.services.result_formatter import format_status, format_summary

router = APIRouter()


@router.post(
    "/recompute",
    response_model=JobStateResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(require_permission("compute"))],
)
def trigger_recomputation(request: RecomputeRequest, service: JobService = Depends(get_job_service)):
    """Starts a recomputation job. Returns as soon as the job is recorded."""
    job = service.submit(
        request.dataset_id,
        parameters=request.parameters.model_dump(mode="json", exclude_none=True) if request.parameters else None,
        options=request.options.model_dump(mode="json", exclude_none=True) if request.options else None,
        triggered_by="user",
    )
    return JobStateResponse(job_id=job.id, status=job.status, message="Computation initiated")


@router.get(
    "/status/{job_id}",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_permission("read"))],
)
def get_status(job_id: str, service: JobService = Depends(get_job_service)):
    """Retrieves the status of a specific job."""
    return format_status(service.get_status(job_id))


@router.get(
    "/results/{job_id}",
    response_model=JobResultResponse,
    responses={202: {"model": JobPendingResponse, "description": "Computation still in progress"}},
    dependencies=[Depends(require_permission("read"))],
)
def get_results(job_id: str, service: JobService = Depends(get_job_service)):
    result = service.get_result(job_id)
    if isinstance(result, JobPendingResponse):
        return JSONResponse(
            status_code=status.HTTP_202_ACCEPTED,
            content=result.model_dump(mode="json", by_alias=True),
        )
    return result


@router.post(
    "/cancel/{job_id}",
    response_model=JobStateResponse,
    dependencies=[Depends(require_permission("compute", "cancel"))],
)
def cancel_job(
    job_id: str,
    request: Optional[CancelRequest] = Body(default=None),
    service: JobService = Depends(get_job_service),
):
    job = service.cancel(job_id, reason=request.reason if request else None)
    return JobStateResponse(job_id=job.id, status=job.status, message="Computation cancelled")


@router.post(
    "/fail/{job_id}",
    response_model=JobStateResponse,
    dependencies=[Depends(require_permission("compute"))],
)
def fail_job(job_id: str, request: FailRequest, service: JobService = Depends(get_job_service)):
    """Reports that a job's underlying work failed."""
    job = service.fail(job_id, request.error)
    return JobStateResponse(job_id=job.id, status=job.status, message="Computation marked as failed")


@router.post(
    "/progress/{job_id}",
    response_model=JobStatusResponse,
    response_model_exclude_none=True,
    dependencies=[Depends(require_permission("compute"))],
)
def report_progress(job_id: str, request: ProgressRequest, service: JobService = Depends(get_job_service)):
    return format_status(service.update_progress(job_id, request.progress))


@router.get(
    "/history",
    response_model=JobHistoryResponse,
    dependencies=[Depends(require_permission("read"))],
)
def get_history(
    status_filter: Optional[JobStatus] = Query(None, alias="status"),
    dataset_id: Optional[str] = Query(None, alias="datasetId"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: Literal["createdAt", "startedAt", "completedAt", "status"] = Query("createdAt", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("asc", alias="sortOrder"),
    service: JobService = Depends(get_job_service),
):
    """Paged job history in creation order unless another sort key is given."""
    result = service.list_jobs(
        status=status_filter,
        dataset_id=dataset_id,
        page=page,
        limit=limit,
        sort_by=SORT_FIELDS[sort_by],
        sort_order=sort_order,
    )
    return JobHistoryResponse(
        jobs=[format_summary(job) for job in result.items],
        pagination=Pagination(page=page, limit=limit, total=result.total),
    )


SORT_FIELDS = {
    "createdAt": "created_at",
    "startedAt": "started_at",
    "completedAt": "completed_at",
    "status": "status",
}


@router.get(
    "/metrics",
    response_model=MetricsResponse,
    dependencies=[Depends(require_permission("read"))],
)
def get_metrics(service: JobService = Depends(get_job_service)):
    return MetricsResponse(**service.metrics())
