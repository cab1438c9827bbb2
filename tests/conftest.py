"""
Shared fixtures.

ManualScheduler stands in for APScheduler so tests decide exactly when a
completion timer or a cron schedule fires.
"""

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_job_service
from app.scheduler import SchedulingPort, TimerHandle, cron_trigger
from app.security import ApiKeyIdentityProvider, get_identity_provider
from app.services.job_service import JobService
from app.stores.memory import InMemoryJobStore
from main import app

ADMIN_KEY = "admin-test-key"
READER_KEY = "reader-test-key"
CANCEL_KEY = "cancel-test-key"


class ManualTimer(TimerHandle):
    def __init__(self, callback, delay=None, cadence=None):
        self.callback = callback
        self.delay = delay
        self.cadence = cadence
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True

    def fire(self):
        """Runs the callback even if cancelled, to replay late timers."""
        self.fired = True
        return self.callback()


class ManualScheduler(SchedulingPort):
    def __init__(self):
        self.timers: list[ManualTimer] = []
        self.crons: list[ManualTimer] = []
        self.intervals: list[ManualTimer] = []

    def after(self, delay_seconds, callback):
        timer = ManualTimer(callback, delay=delay_seconds)
        self.timers.append(timer)
        return timer

    def every(self, cadence, tz, callback):
        cron_trigger(cadence, tz)
        timer = ManualTimer(callback, cadence=cadence)
        self.crons.append(timer)
        return timer

    def interval(self, seconds, callback):
        timer = ManualTimer(callback, delay=seconds)
        self.intervals.append(timer)
        return timer

    def elapse(self):
        """Fires every armed, not yet fired one-shot timer, as if the delay had passed."""
        results = []
        for timer in list(self.timers):
            if not timer.cancelled and not timer.fired:
                results.append(timer.fire())
        return results

    def active_crons(self):
        return [t for t in self.crons if not t.cancelled]


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def service(store, scheduler):
    return JobService(store=store, scheduler=scheduler, completion_delay=5, max_running_jobs=10)


@pytest.fixture
def client(service):
    provider = ApiKeyIdentityProvider({
        ADMIN_KEY: {"read", "compute", "cancel", "schedule"},
        READER_KEY: {"read"},
        CANCEL_KEY: {"cancel"},
    })
    app.dependency_overrides[get_job_service] = lambda: service
    app.dependency_overrides[get_identity_provider] = lambda: provider
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"X-API-Key": ADMIN_KEY}


@pytest.fixture
def reader_headers():
    return {"X-API-Key": READER_KEY}
