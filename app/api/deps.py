from app.services.job_service import JobService, job_service


def get_job_service() -> JobService:
    return job_service
