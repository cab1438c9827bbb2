from dataclasses import asdict

from fastapi import APIRouter, Depends, Response, status

from app.api.deps import get_job_service
from app.models.schedules import Schedule
from app.schemas.schedules import ScheduleListResponse, ScheduleRequest, ScheduleResponse, ScheduleUpdateRequest
from app.security import require_permission
from app.services.job_service import JobService

router = APIRouter()


def _to_response(schedule: Schedule) -> ScheduleResponse:
    return ScheduleResponse(**asdict(schedule))


@router.post(
    "/schedule",
    response_model=ScheduleResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_permission("compute", "schedule"))],
)
def create_schedule(request: ScheduleRequest, service: JobService = Depends(get_job_service)):
    """Registers a recurring recomputation for a dataset."""
    schedule = service.schedule(
        request.dataset_id,
        request.cadence,
        parameters=request.parameters.model_dump(exclude_none=True) if request.parameters else None,
        options=request.options.model_dump() if request.options else None,
    )
    return _to_response(schedule)


@router.get(
    "/schedules",
    response_model=ScheduleListResponse,
    dependencies=[Depends(require_permission("read"))],
)
def list_schedules(service: JobService = Depends(get_job_service)):
    items = [_to_response(s) for s in service.list_schedules()]
    return ScheduleListResponse(items=items, total=len(items))


@router.get(
    "/schedules/{schedule_id}",
    response_model=ScheduleResponse,
    dependencies=[Depends(require_permission("read"))],
)
def get_schedule(schedule_id: str, service: JobService = Depends(get_job_service)):
    return _to_response(service.get_schedule(schedule_id))


@router.patch(
    "/schedules/{schedule_id}",
    response_model=ScheduleResponse,
    dependencies=[Depends(require_permission("compute", "schedule"))],
)
def update_schedule(schedule_id: str, request: ScheduleUpdateRequest, service: JobService = Depends(get_job_service)):
    options = request.options
    schedule = service.update_schedule(
        schedule_id,
        cadence=request.cadence,
        parameters=request.parameters.model_dump(exclude_none=True) if request.parameters else None,
        enabled=options.enabled if options else None,
        timezone=options.timezone if options else None,
    )
    return _to_response(schedule)


@router.delete(
    "/schedules/{schedule_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_permission("compute", "schedule"))],
)
def delete_schedule(schedule_id: str, service: JobService = Depends(get_job_service)):
    """Removes a schedule. Jobs it already spawned are left alone."""
    service.delete_schedule(schedule_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
