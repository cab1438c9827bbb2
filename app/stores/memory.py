import threading
from typing import Optional

from app.exceptions import NotFoundError
from app.models.jobs import Job, JobStatus
from app.models.schedules import Schedule
from app.stores.base import JobFilter, JobPage, JobStore, sort_jobs


class InMemoryJobStore(JobStore):
    """
    Dict-backed store for single-process deployments and tests.
    Dicts keep insertion order, which is the default listing order.
    """

    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._schedules: dict[str, Schedule] = {}
        self._lock = threading.Lock()

    def put(self, job: Job) -> Job:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} already exists")
            self._jobs[job.id] = job
            return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def list(self, filter=None):
        filter = filter or JobFilter()
        with self._lock:
            jobs = [j for j in self._jobs.values() if filter.matches(j)]

        jobs = sort_jobs(jobs, filter.sort_by, filter.sort_order)
        total = len(jobs)
        if filter.limit is not None:
            jobs = jobs[filter.offset:filter.offset + filter.limit]
        return JobPage(items=jobs, total=total)

    def delete(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def compare_and_set(self, job_id, expected, changes):
        expected = frozenset(expected)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError("Job", job_id)
            if job.status not in expected:
                return None
            updated = job.with_changes(**changes)
            self._jobs[job_id] = updated
            return updated

    def advance_progress(self, job_id, progress):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError("Job", job_id)
            if job.status != JobStatus.RUNNING or job.progress > progress:
                return None
            updated = job.with_changes(progress=progress)
            self._jobs[job_id] = updated
            return updated

    def count_by_status(self):
        counts = {status: 0 for status in JobStatus}
        with self._lock:
            for job in self._jobs.values():
                counts[job.status] += 1
        return counts

    def put_schedule(self, schedule: Schedule) -> Schedule:
        with self._lock:
            if schedule.id in self._schedules:
                raise ValueError(f"Schedule {schedule.id} already exists")
            self._schedules[schedule.id] = schedule
            return schedule

    def get_schedule(self, schedule_id: str) -> Optional[Schedule]:
        with self._lock:
            return self._schedules.get(schedule_id)

    def save_schedule(self, schedule: Schedule) -> Schedule:
        with self._lock:
            if schedule.id not in self._schedules:
                raise NotFoundError("Schedule", schedule.id)
            self._schedules[schedule.id] = schedule
            return schedule

    def list_schedules(self):
        with self._lock:
            return list(self._schedules.values())

    def delete_schedule(self, schedule_id: str) -> bool:
        with self._lock:
            return self._schedules.pop(schedule_id, None) is not None
