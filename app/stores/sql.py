import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import func, select, text, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.database import Base, make_engine, make_session_factory
from app.exceptions import NotFoundError
from app.models.jobs import Job, JobRow, JobStatus
from app.models.schedules import Schedule, ScheduleRow
from app.stores.base import SORTABLE_FIELDS, JobFilter, JobPage, JobStore

logger = logging.getLogger(__name__)

JOB_FIELDS = (
    "id", "dataset_id", "parameters", "options", "status", "progress",
    "created_at", "started_at", "completed_at", "cancelled_at",
    "result", "error", "cancel_reason", "triggered_by", "schedule_id",
)
SCHEDULE_FIELDS = (
    "id", "dataset_id", "cadence", "parameters", "timezone", "enabled",
    "max_concurrent", "retain_days", "created_at", "next_run_at", "last_run_at",
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo; everything we write is UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, JobStatus) else value


def _job_from_row(row: JobRow) -> Job:
    return Job(
        id=row.id,
        dataset_id=row.dataset_id,
        parameters=dict(row.parameters or {}),
        options=dict(row.options or {}),
        status=JobStatus(row.status),
        progress=row.progress,
        created_at=_aware(row.created_at),
        started_at=_aware(row.started_at),
        completed_at=_aware(row.completed_at),
        cancelled_at=_aware(row.cancelled_at),
        result=row.result,
        error=row.error,
        cancel_reason=row.cancel_reason,
        triggered_by=row.triggered_by,
        schedule_id=row.schedule_id,
    )


def _schedule_from_row(row: ScheduleRow) -> Schedule:
    return Schedule(
        id=row.id,
        dataset_id=row.dataset_id,
        cadence=row.cadence,
        parameters=dict(row.parameters or {}),
        timezone=row.timezone,
        enabled=row.enabled,
        max_concurrent=row.max_concurrent,
        retain_days=row.retain_days,
        created_at=_aware(row.created_at),
        next_run_at=_aware(row.next_run_at),
        last_run_at=_aware(row.last_run_at),
    )


class SqlJobStore(JobStore):
    """
    SQLAlchemy-backed store.
    Transitions are conditional UPDATEs, so they stay atomic across workers sharing the database.
    """

    def __init__(self, database_url: str):
        self.engine = make_engine(database_url)
        self.SessionLocal = make_session_factory(self.engine)
        Base.metadata.create_all(bind=self.engine)

    def put(self, job: Job) -> Job:
        with self.SessionLocal() as db:
            db.add(JobRow(**{name: _column_value(getattr(job, name)) for name in JOB_FIELDS}))
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise ValueError(f"Job {job.id} already exists") from e
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self.SessionLocal() as db:
            row = db.execute(select(JobRow).where(JobRow.id == job_id)).scalar_one_or_none()
            return _job_from_row(row) if row else None

    def list(self, filter=None):
        filter = filter or JobFilter()
        query = select(JobRow)
        if filter.status:
            if isinstance(filter.status, frozenset):
                query = query.where(JobRow.status.in_([s.value for s in filter.status]))
            else:
                query = query.where(JobRow.status == filter.status.value)
        if filter.dataset_id:
            query = query.where(JobRow.dataset_id == filter.dataset_id)
        if filter.schedule_id:
            query = query.where(JobRow.schedule_id == filter.schedule_id)

        descending = filter.sort_order == "desc"
        if filter.sort_by in SORTABLE_FIELDS:
            column = getattr(JobRow, filter.sort_by)
            query = query.order_by(column.is_(None), column.desc() if descending else column.asc(), JobRow.seq)
        else:
            query = query.order_by(JobRow.seq.desc() if descending else JobRow.seq)

        with self.SessionLocal() as db:
            total = db.execute(select(func.count()).select_from(query.order_by(None).subquery())).scalar_one()
            if filter.limit is not None:
                query = query.offset(filter.offset).limit(filter.limit)
            rows = db.execute(query).scalars().all()
            return JobPage(items=[_job_from_row(r) for r in rows], total=total)

    def delete(self, job_id: str) -> bool:
        with self.SessionLocal() as db:
            row = db.execute(select(JobRow).where(JobRow.id == job_id)).scalar_one_or_none()
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True

    def _conditional_update(self, job_id: str, conditions, values) -> Optional[Job]:
        with self.SessionLocal() as db:
            result = db.execute(
                update(JobRow)
                .where(JobRow.id == job_id, *conditions)
                .values(**{k: _column_value(v) for k, v in values.items()})
            )
            db.commit()
            row = db.execute(select(JobRow).where(JobRow.id == job_id)).scalar_one_or_none()
            if row is None:
                raise NotFoundError("Job", job_id)
            if result.rowcount == 0:
                return None
            return _job_from_row(row)

    def compare_and_set(self, job_id, expected, changes):
        statuses = [s.value for s in expected]
        return self._conditional_update(job_id, [JobRow.status.in_(statuses)], changes)

    def advance_progress(self, job_id, progress):
        return self._conditional_update(
            job_id,
            [JobRow.status == JobStatus.RUNNING.value, JobRow.progress <= progress],
            {"progress": progress},
        )

    def count_by_status(self):
        counts = {status: 0 for status in JobStatus}
        with self.SessionLocal() as db:
            for status, count in db.execute(select(JobRow.status, func.count()).group_by(JobRow.status)):
                counts[JobStatus(status)] = count
        return counts

    def put_schedule(self, schedule: Schedule) -> Schedule:
        with self.SessionLocal() as db:
            db.add(ScheduleRow(**{name: getattr(schedule, name) for name in SCHEDULE_FIELDS}))
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                raise ValueError(f"Schedule {schedule.id} already exists") from e
        return schedule

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        with self.SessionLocal() as db:
            row = db.execute(select(ScheduleRow).where(ScheduleRow.id == schedule_id)).scalar_one_or_none()
            return _schedule_from_row(row) if row else None

    def save_schedule(self, schedule: Schedule) -> Schedule:
        with self.SessionLocal() as db:
            row = db.execute(select(ScheduleRow).where(ScheduleRow.id == schedule.id)).scalar_one_or_none()
            if row is None:
                raise NotFoundError("Schedule", schedule.id)
            for name in SCHEDULE_FIELDS:
                setattr(row, name, getattr(schedule, name))
            db.commit()
        return schedule

    def list_schedules(self):
        with self.SessionLocal() as db:
            rows = db.execute(select(ScheduleRow).order_by(ScheduleRow.seq)).scalars().all()
            return [_schedule_from_row(r) for r in rows]

    def delete_schedule(self, schedule_id: str) -> bool:
        with self.SessionLocal() as db:
            row = db.execute(select(ScheduleRow).where(ScheduleRow.id == schedule_id)).scalar_one_or_none()
            if row is None:
                return False
            db.delete(row)
            db.commit()
            return True

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database ping failed: {e}")
            return False
