import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union

from app.config import config
from app.exceptions import CapacityExceededError, InvalidStateError, NotFoundError, ValidationFailedError
from app.jobs.recompute_job import run_recompute
from app.models.jobs import ACTIVE_STATUSES, TERMINAL_STATUSES, Job, JobStatus, utcnow
from app.models.schedules import Schedule
from app.scheduler import SchedulingPort, TimerHandle, next_run_time, scheduling_port
from app.schemas.jobs import JobPendingResponse, JobResultResponse
from app.services.result_formatter import format_pending, format_result
from app.services.slack_service import SlackService, slack_service
from app.services.webhook_service import WebhookService, webhook_service
from app.stores.base import JobFilter, JobPage, JobStore
from app.stores.memory import InMemoryJobStore

logger = logging.getLogger(__name__)


class JobService:
    """
    Owns the job lifecycle. Status changes are compare-and-set against the store,
    so a timer firing after a cancel never overwrites a terminal state.
    """

    def __init__(
        self,
        store: JobStore,
        scheduler: SchedulingPort,
        slack: Optional[SlackService] = None,
        webhooks: Optional[WebhookService] = None,
        completion_delay: Optional[float] = None,
        max_running_jobs: Optional[int] = None,
        retention_hours: Optional[float] = None,
        compute: Callable[[Job], dict] = run_recompute,
    ):
        self.store = store
        self.scheduler = scheduler
        self.slack = slack
        self.webhooks = webhooks
        self.completion_delay = config.COMPUTATION_DELAY_SECONDS if completion_delay is None else completion_delay
        self.max_running_jobs = config.MAX_RUNNING_JOBS if max_running_jobs is None else max_running_jobs
        self.retention_hours = config.JOB_RETENTION_HOURS if retention_hours is None else retention_hours
        self.compute = compute

        self._timers: dict[str, TimerHandle] = {}
        self._schedule_handles: dict[str, TimerHandle] = {}
        self._lock = threading.RLock()
        self._submit_lock = threading.RLock()

    def submit(
        self,
        dataset_id: str,
        parameters: Optional[dict] = None,
        options: Optional[dict] = None,
        triggered_by: str = "user",
        schedule_id: Optional[str] = None,
    ) -> Job:
        """Records a running job and arms its completion timer. Does not wait for completion."""
        with self._submit_lock:
            counts = self.store.count_by_status()
            active = sum(counts[s] for s in ACTIVE_STATUSES)
            if active >= self.max_running_jobs:
                logger.warning(f"Rejecting job for dataset {dataset_id}: {active} jobs already running")
                raise CapacityExceededError(active, self.max_running_jobs)

            now = utcnow()
            job = Job(
                dataset_id=dataset_id,
                parameters=dict(parameters or {}),
                options=dict(options or {}),
                status=JobStatus.RUNNING,
                progress=0,
                created_at=now,
                started_at=now,
                triggered_by=triggered_by,
                schedule_id=schedule_id,
            )
            self.store.put(job)

        job_id = job.id
        with self._lock:
            self._timers[job_id] = self.scheduler.after(self.completion_delay, lambda: self._complete(job_id))

        logger.info(f"Job {job_id} started for dataset {dataset_id} (triggered by {triggered_by})")
        self._notify(job, "🔄 Computation Started", "Running", f"Dataset: {dataset_id}\nTriggered by: {triggered_by}")
        return job

    def _complete(self, job_id):
        """Completion timer callback. Only a still-running job is completed."""
        with self._lock:
            self._timers.pop(job_id, None)

        job = self.store.get(job_id)
        if job is None:
            logger.warning(f"Completion fired for unknown job {job_id}")
            return None
        if job.status != JobStatus.RUNNING:
            logger.info(f"Job {job_id} is {job.status.value}; completion discarded")
            return None

        try:
            result = self.compute(job)
        except Exception as e:
            logger.exception(f"Computation for job {job_id} raised: {e}")
            return self._transition_from_timer(
                job_id,
                {"status": JobStatus.FAILED, "error": str(e), "completed_at": utcnow()},
            )

        completed = self._transition_from_timer(
            job_id,
            {"status": JobStatus.COMPLETED, "progress": 100, "result": result, "completed_at": utcnow()},
        )
        if completed:
            self._send_completion_webhook(completed)
        return completed

    def _transition_from_timer(self, job_id, changes):
        try:
            job = self.store.compare_and_set(job_id, {JobStatus.RUNNING}, changes)
        except NotFoundError:
            logger.warning(f"Job {job_id} was removed before its timer fired")
            return None
        if job is None:
            logger.info(f"Job {job_id} left running state before its timer fired; nothing to do")
            return None

        logger.info(f"Job {job_id} {job.status.value}")
        if job.status == JobStatus.COMPLETED:
            self._notify(job, "✅ Computation Completed", "Completed", f"Result: {job.result}")
        else:
            self._notify(job, "❌ Computation Failed", "Failed", f"Error: {job.error}")
        return job

    def cancel(self, job_id: str, reason: Optional[str] = None) -> Job:
        """Cancels a pending or running job. InvalidStateError once it is terminal."""
        job = self._terminate(
            job_id,
            {"status": JobStatus.CANCELLED, "cancelled_at": utcnow(), "cancel_reason": reason},
            "cancellable",
        )
        logger.info(f"Job {job_id} cancelled" + (f": {reason}" if reason else ""))
        self._notify(job, "🛑 Computation Cancelled", "Cancelled", reason or "Cancelled by user")
        return job

    def fail(self, job_id: str, error: str) -> Job:
        job = self._terminate(
            job_id,
            {"status": JobStatus.FAILED, "error": error, "completed_at": utcnow()},
            "failable",
        )
        logger.info(f"Job {job_id} failed: {error}")
        self._notify(job, "❌ Computation Failed", "Failed", f"Error: {error}")
        return job

    def _terminate(self, job_id, changes, verb):
        job = self.store.compare_and_set(job_id, ACTIVE_STATUSES, changes)
        if job is None:
            current = self.get_status(job_id)
            raise InvalidStateError(
                f"Job {job_id} is not {verb} in status {current.status.value}",
                current_status=current.status.value,
            )
        self._disarm(job_id)
        return job

    def _disarm(self, job_id):
        with self._lock:
            handle = self._timers.pop(job_id, None)
        if handle:
            handle.cancel()

    def update_progress(self, job_id: str, progress: int) -> Job:
        """Raises a running job's progress. Progress never decreases and 100 is reserved for completion."""
        if not 0 <= progress < 100:
            raise ValidationFailedError(f"Progress must be between 0 and 99, got {progress}", field="progress")

        job = self.store.advance_progress(job_id, progress)
        if job is None:
            current = self.get_status(job_id)
            if current.status != JobStatus.RUNNING:
                raise InvalidStateError(
                    f"Job {job_id} is not running (status {current.status.value})",
                    current_status=current.status.value,
                )
            raise InvalidStateError(f"Progress of job {job_id} cannot go from {current.progress} to {progress}")
        return job

    def get_status(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    def get_result(self, job_id: str) -> Union[JobResultResponse, JobPendingResponse]:
        job = self.get_status(job_id)
        if job.status == JobStatus.COMPLETED:
            return format_result(job)
        return format_pending(job)

    def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        dataset_id: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
        sort_by: Optional[str] = None,
        sort_order: str = "asc",
    ) -> JobPage:
        return self.store.list(JobFilter(
            status=status,
            dataset_id=dataset_id,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        ))

    def purge_finished(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        removed = 0
        for job in self.store.list(JobFilter(status=TERMINAL_STATUSES)).items:
            retain_days = job.options.get("retain_days")
            retention = timedelta(days=retain_days) if retain_days else timedelta(hours=self.retention_hours)
            finished = job.finished_at
            if finished and now - finished > retention and self.store.delete(job.id):
                removed += 1
        if removed:
            logger.info(f"Purged {removed} finished jobs")
        return removed

    def start_purging(self, interval_minutes: Optional[int] = None) -> TimerHandle:
        minutes = interval_minutes or config.PURGE_INTERVAL_MINUTES
        return self.scheduler.interval(minutes * 60, self.purge_finished)

    def metrics(self) -> dict[str, Any]:
        counts = self.store.count_by_status()
        completed_jobs = self.store.list(JobFilter(status=JobStatus.COMPLETED)).items
        durations = [
            (j.completed_at - j.started_at).total_seconds() * 1000
            for j in completed_jobs
            if j.completed_at and j.started_at
        ]
        completed = counts[JobStatus.COMPLETED]
        failed = counts[JobStatus.FAILED]
        return {
            "total": sum(counts.values()),
            **{status.value: count for status, count in counts.items()},
            "average_computation_time_ms": round(sum(durations) / len(durations), 2) if durations else None,
            "success_rate": round(completed / (completed + failed), 4) if completed + failed else None,
            "active_schedules": sum(1 for s in self.store.list_schedules() if s.enabled),
        }

    def schedule(
        self,
        dataset_id: str,
        cadence: str,
        parameters: Optional[dict] = None,
        options: Optional[dict] = None,
    ) -> Schedule:
        """Registers a recurring cron trigger. Jobs are only created when it comes due."""
        options = dict(options or {})
        tz = options.get("timezone") or "UTC"
        enabled = options.get("enabled", True)
        next_run = next_run_time(cadence, tz)

        schedule = Schedule(
            dataset_id=dataset_id,
            cadence=cadence,
            parameters=dict(parameters or {}),
            timezone=tz,
            enabled=enabled,
            max_concurrent=options.get("max_concurrent", 1),
            retain_days=options.get("retain_results", 30),
            next_run_at=next_run if enabled else None,
        )
        self.store.put_schedule(schedule)
        if schedule.enabled:
            self._arm_schedule(schedule)
        logger.info(f"Schedule {schedule.id} created for dataset {dataset_id}: '{cadence}' ({tz})")
        return schedule

    def get_schedule(self, schedule_id: str) -> Schedule:
        schedule = self.store.get_schedule(schedule_id)
        if schedule is None:
            raise NotFoundError("Schedule", schedule_id)
        return schedule

    def list_schedules(self) -> list[Schedule]:
        return self.store.list_schedules()

    def update_schedule(
        self,
        schedule_id: str,
        cadence: Optional[str] = None,
        parameters: Optional[dict] = None,
        enabled: Optional[bool] = None,
        timezone: Optional[str] = None,
    ) -> Schedule:
        schedule = self.get_schedule(schedule_id)
        cadence = cadence or schedule.cadence
        tz = timezone or schedule.timezone
        enabled = schedule.enabled if enabled is None else enabled
        next_run = next_run_time(cadence, tz)

        updated = schedule.with_changes(
            cadence=cadence,
            timezone=tz,
            parameters=dict(parameters) if parameters is not None else schedule.parameters,
            enabled=enabled,
            next_run_at=next_run if enabled else None,
        )
        self.store.save_schedule(updated)
        self._disarm_schedule(schedule_id)
        if updated.enabled:
            self._arm_schedule(updated)
        logger.info(f"Schedule {schedule_id} updated (enabled={enabled}, cadence='{cadence}')")
        return updated

    def delete_schedule(self, schedule_id: str) -> None:
        self.get_schedule(schedule_id)
        self._disarm_schedule(schedule_id)
        self.store.delete_schedule(schedule_id)
        logger.info(f"Schedule {schedule_id} deleted")

    def run_schedule(self, schedule_id: str) -> Optional[Job]:
        """Due event for a schedule: spawns a job unless disabled or at its concurrency limit."""
        schedule = self.store.get_schedule(schedule_id)
        if schedule is None or not schedule.enabled:
            logger.info(f"Schedule {schedule_id} is missing or disabled; skipping run")
            return None

        job = None
        with self._submit_lock:
            active = self.store.list(JobFilter(status=ACTIVE_STATUSES, schedule_id=schedule_id)).total
            if active >= schedule.max_concurrent:
                logger.warning(
                    f"Schedule {schedule_id} already has {active} running jobs (max {schedule.max_concurrent}); skipping run"
                )
            else:
                try:
                    job = self.submit(
                        schedule.dataset_id,
                        schedule.parameters,
                        {"retain_days": schedule.retain_days},
                        triggered_by="schedule",
                        schedule_id=schedule_id,
                    )
                except CapacityExceededError as e:
                    logger.warning(f"Schedule {schedule_id} run skipped: {e.message}")

        now = utcnow()
        current = self.store.get_schedule(schedule_id)
        if current is not None:
            try:
                self.store.save_schedule(current.with_changes(
                    last_run_at=now if job else current.last_run_at,
                    next_run_at=next_run_time(current.cadence, current.timezone, now) if current.enabled else None,
                ))
            except NotFoundError:
                logger.info(f"Schedule {schedule_id} was deleted during its run")
        return job

    def restore_schedules(self) -> int:
        """Arms every enabled stored schedule. Called once at startup."""
        restored = 0
        for schedule in self.store.list_schedules():
            if schedule.enabled:
                self._arm_schedule(schedule)
                restored += 1
        if restored:
            logger.info(f"Restored {restored} schedules")
        return restored

    def _arm_schedule(self, schedule):
        schedule_id = schedule.id
        handle = self.scheduler.every(schedule.cadence, schedule.timezone, lambda: self.run_schedule(schedule_id))
        with self._lock:
            previous = self._schedule_handles.pop(schedule_id, None)
            self._schedule_handles[schedule_id] = handle
        if previous:
            previous.cancel()

    def _disarm_schedule(self, schedule_id):
        with self._lock:
            handle = self._schedule_handles.pop(schedule_id, None)
        if handle:
            handle.cancel()

    def _notify(self, job, title, status, message):
        if not self.slack:
            return
        try:
            self.slack.send_job_status(title=title, status=status, message=f"Job ID: {job.id}\n{message}")
        except Exception as e:
            logger.error(f"Slack notification for job {job.id} failed: {e}")

    def _send_completion_webhook(self, job):
        url = job.options.get("webhook_url")
        if not (self.webhooks and url and job.options.get("notify_on_complete")):
            return
        payload = {"event": "computation.completed", **format_result(job).model_dump(mode="json", by_alias=True)}
        self.webhooks.post(url, payload)


def build_store() -> JobStore:
    if config.DATABASE_URL:
        from app.stores.sql import SqlJobStore
        logger.info("Using SQL job store")
        return SqlJobStore(config.DATABASE_URL)
    return InMemoryJobStore()


job_service = JobService(
    store=build_store(),
    scheduler=scheduling_port,
    slack=slack_service,
    webhooks=webhook_service,
)
