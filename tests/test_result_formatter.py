import pytest

from app.models.jobs import Job, JobStatus, utcnow
from app.services.result_formatter import format_pending, format_result, format_status, format_summary


def completed_job(**kwargs):
    now = utcnow()
    return Job(
        dataset_id="d1",
        status=JobStatus.COMPLETED,
        progress=100,
        created_at=now,
        started_at=now,
        completed_at=now,
        result={"accuracy": 0.91, "iterations": 100, "convergence": True},
        **kwargs,
    )


def test_format_result():
    job = completed_job()
    response = format_result(job)

    assert response.result == job.result
    assert response.metadata.job_id == job.id
    assert response.metadata.dataset_id == "d1"
    assert response.metadata.completed_at == job.completed_at.isoformat()

    body = response.model_dump(mode="json", by_alias=True)
    assert set(body["metadata"]) == {"jobId", "datasetId", "completedAt"}


def test_format_result_does_not_share_the_result_dict():
    job = completed_job()
    format_result(job).result["accuracy"] = 0
    assert job.result["accuracy"] == 0.91


@pytest.mark.parametrize("status", [JobStatus.RUNNING, JobStatus.CANCELLED, JobStatus.FAILED])
def test_format_result_requires_completed_job(status):
    job = Job(dataset_id="d1", status=status)
    with pytest.raises(ValueError):
        format_result(job)


def test_format_pending():
    job = Job(dataset_id="d1", status=JobStatus.RUNNING, progress=40)
    body = format_pending(job).model_dump(mode="json")
    assert body == {"message": "Computation still in progress", "status": "running", "progress": 40}


def test_format_status_and_summary():
    job = completed_job(parameters={"iterations": 100}, triggered_by="schedule", schedule_id="s1")

    status = format_status(job).model_dump(by_alias=True, exclude_none=True)
    assert status["jobId"] == job.id
    assert status["triggeredBy"] == "schedule"
    assert "cancelledAt" not in status

    summary = format_summary(job)
    assert summary.parameters == {"iterations": 100}
    assert summary.schedule_id == "s1"
