"""Health check routes."""

import os
import platform
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.api.deps import get_job_service
from app.config import config
from app.services.job_service import JobService

router = APIRouter()

STARTED_AT = time.monotonic()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _dependencies(service: JobService) -> dict:
    return {
        "store": service.store.ping(),
        "scheduler": service.scheduler.running,
    }


@router.get("")
async def basic_check():
    """Health check endpoint."""
    return {"status": "healthy", "timestamp": _now(), "service": config.SERVICE_NAME}


@router.get("/live")
async def liveness_check():
    return {"status": "alive", "timestamp": _now()}


@router.get("/ready")
def readiness_check(service: JobService = Depends(get_job_service)):
    dependencies = _dependencies(service)
    if all(dependencies.values()):
        return {"status": "ready"}
    return JSONResponse(status_code=503, content={"status": "not ready", "services": dependencies})


@router.get("/detailed")
def detailed_check(service: JobService = Depends(get_job_service)):
    dependencies = _dependencies(service)
    # the store is required; a stopped scheduler only delays completions
    if all(dependencies.values()):
        overall = "healthy"
    elif dependencies["store"]:
        overall = "degraded"
    else:
        overall = "unhealthy"

    return JSONResponse(
        status_code=200 if overall == "healthy" else 503,
        content={
            "status": overall,
            "timestamp": _now(),
            "service": config.SERVICE_NAME,
            "version": config.SERVICE_VERSION,
            "uptime": round(time.monotonic() - STARTED_AT, 3),
            "system": {
                "platform": platform.system(),
                "arch": platform.machine(),
                "python_version": platform.python_version(),
                "cpu_count": os.cpu_count(),
            },
            "process": {"pid": os.getpid()},
            "dependencies": dependencies,
        },
    )
