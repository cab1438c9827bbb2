from fastapi import FastAPI
import logging

from app.api.routers import health, jobs, schedules
from app.config import config
from app.exceptions import install_exception_handlers
from app.scheduler import start_scheduler, stop_scheduler
from app.services.job_service import job_service

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="[%(asctime)s] [%(process)d] [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S %z",
)

logger = logging.getLogger(__name__)

api_prefix = '/api/v1'

app = FastAPI(title="Autonomy Compute API", version=config.SERVICE_VERSION)
install_exception_handlers(app)

@app.on_event("startup")
async def startup_event():
    job_service.restore_schedules()
    job_service.start_purging()
    start_scheduler()
    logger.info(f"{config.SERVICE_NAME} {config.SERVICE_VERSION} started")

@app.on_event("shutdown")
async def shutdown_event():
    stop_scheduler()

@app.get("/")
async def read_index():
    return {
        "service": config.SERVICE_NAME,
        "version": config.SERVICE_VERSION,
        "docs": "/docs",
        "health": "/health",
        "endpoints": {"autonomy": f"{api_prefix}/autonomy"},
    }

app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(health.router, prefix=f'{api_prefix}/health', tags=["health"])
app.include_router(jobs.router, prefix=f'{api_prefix}/autonomy', tags=["autonomy"])
app.include_router(schedules.router, prefix=f'{api_prefix}/autonomy', tags=["schedules"])
