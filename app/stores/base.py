"""
Job store interface.

Every status change goes through compare_and_set, so a late timer callback
can never overwrite a transition that already happened.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from app.models.jobs import JobStatus

SORTABLE_FIELDS = ("created_at", "started_at", "completed_at", "status")


@dataclass
class JobFilter:
    # a single JobStatus or a frozenset of them
    status: object = None
    dataset_id: Optional[str] = None
    schedule_id: Optional[str] = None
    page: int = 1
    limit: Optional[int] = None
    sort_by: Optional[str] = None
    sort_order: str = "asc"

    def matches(self, job) -> bool:
        if self.dataset_id and job.dataset_id != self.dataset_id:
            return False
        if self.schedule_id and job.schedule_id != self.schedule_id:
            return False
        if self.status:
            if isinstance(self.status, frozenset):
                return job.status in self.status
            return job.status == self.status
        return True

    @property
    def offset(self):
        if self.limit is None:
            return 0
        return (self.page - 1) * self.limit


@dataclass
class JobPage:
    items: list
    total: int


def sort_jobs(jobs, sort_by, sort_order):
    """Sorts jobs already in insertion order. Missing values always go last."""
    reverse = sort_order == "desc"
    if not sort_by:
        return list(reversed(jobs)) if reverse else list(jobs)

    def value(job):
        v = getattr(job, sort_by)
        return v.value if isinstance(v, JobStatus) else v

    present = [j for j in jobs if value(j) is not None]
    missing = [j for j in jobs if value(j) is None]
    present.sort(key=value, reverse=reverse)
    return present + missing


class JobStore(ABC):
    """Job and schedule persistence. Implementations must be thread-safe."""

    @abstractmethod
    def put(self, job):
        """Inserts a new job. ValueError if the id is taken."""

    @abstractmethod
    def get(self, job_id):
        ...

    @abstractmethod
    def list(self, filter=None):
        ...

    @abstractmethod
    def delete(self, job_id):
        ...

    @abstractmethod
    def compare_and_set(self, job_id, expected, changes):
        """
        Applies changes only if the job's status is one of expected.
        Returns the updated job, or None when the status did not match.
        Raises NotFoundError for an unknown job.
        """

    @abstractmethod
    def advance_progress(self, job_id, progress):
        """Same contract as compare_and_set, for a running job whose stored progress is not higher."""

    @abstractmethod
    def count_by_status(self):
        ...

    @abstractmethod
    def put_schedule(self, schedule):
        ...

    @abstractmethod
    def get_schedule(self, schedule_id):
        ...

    @abstractmethod
    def save_schedule(self, schedule):
        """Replaces an existing schedule. NotFoundError if it is unknown."""

    @abstractmethod
    def list_schedules(self):
        ...

    @abstractmethod
    def delete_schedule(self, schedule_id):
        ...

    def ping(self):
        return True
