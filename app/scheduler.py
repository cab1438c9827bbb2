from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import logging
import uuid

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from app.exceptions import ValidationFailedError

logger = logging.getLogger(__name__)


def cron_trigger(cadence: str, tz: str = "UTC") -> CronTrigger:
    """Parses a 5-field crontab expression, raising ValidationFailedError when it is malformed."""
    try:
        return CronTrigger.from_crontab(cadence, timezone=tz)
    except Exception as e:
        raise ValidationFailedError(f"Invalid schedule '{cadence}' ({tz}): {e}", field="cadence") from e


def next_run_time(cadence: str, tz: str = "UTC", now: Optional[datetime] = None) -> Optional[datetime]:
    now = now or datetime.now(timezone.utc)
    fire_time = cron_trigger(cadence, tz).get_next_fire_time(None, now)
    return fire_time.astimezone(timezone.utc) if fire_time else None


class TimerHandle(ABC):
    @abstractmethod
    def cancel(self) -> None:
        """Prevents the callback from firing again. Safe to call more than once."""


class SchedulingPort(ABC):
    """Timer capability the job service uses to simulate asynchronous work."""

    @abstractmethod
    def after(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
        """Fires callback once after delay_seconds."""

    @abstractmethod
    def every(self, cadence: str, tz: str, callback: Callable[[], None]) -> TimerHandle:
        """Fires callback whenever the crontab expression is due."""

    @abstractmethod
    def interval(self, seconds: float, callback: Callable[[], None]) -> TimerHandle:
        """Fires callback every `seconds`."""

    @property
    def running(self) -> bool:
        return True


class APSchedulerHandle(TimerHandle):
    def __init__(self, scheduler: BaseScheduler, job_id: str):
        self._scheduler = scheduler
        self.job_id = job_id

    def cancel(self) -> None:
        try:
            self._scheduler.remove_job(self.job_id)
        except JobLookupError:
            # already fired or removed
            pass


class APSchedulerPort(SchedulingPort):
    def __init__(self, scheduler: BaseScheduler):
        self.scheduler = scheduler

    def after(self, delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
        run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        job = self.scheduler.add_job(
            callback,
            DateTrigger(run_date=run_date),
            id=f"timer-{uuid.uuid4()}",
            misfire_grace_time=None,
        )
        return APSchedulerHandle(self.scheduler, job.id)

    def every(self, cadence: str, tz: str, callback: Callable[[], None]) -> TimerHandle:
        job = self.scheduler.add_job(
            callback,
            cron_trigger(cadence, tz),
            id=f"cron-{uuid.uuid4()}",
            misfire_grace_time=3600,
            coalesce=True,
        )
        return APSchedulerHandle(self.scheduler, job.id)

    def interval(self, seconds: float, callback: Callable[[], None]) -> TimerHandle:
        job = self.scheduler.add_job(
            callback,
            "interval",
            seconds=seconds,
            id=f"interval-{uuid.uuid4()}",
            coalesce=True,
        )
        return APSchedulerHandle(self.scheduler, job.id)

    @property
    def running(self) -> bool:
        return self.scheduler.running


scheduler = AsyncIOScheduler(timezone="UTC")
scheduling_port = APSchedulerPort(scheduler)


def start_scheduler():
    """
    Starts the scheduler. Timers armed before startup are held as pending jobs and run once it starts.
    """
    if not scheduler.running:
        try:
            scheduler.start()
            logger.info("APScheduler started.")
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")


def stop_scheduler():
    """
    Shuts down the scheduler.
    """
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler stopped.")
