API = "/api/v1/autonomy"


def submit(client, headers, dataset_id="dataset-1", **body):
    response = client.post(f"{API}/recompute", json={"datasetId": dataset_id, **body}, headers=headers)
    assert response.status_code == 202
    return response.json()["jobId"]


class TestAuth:
    def test_missing_key(self, client):
        response = client.post(f"{API}/recompute", json={"datasetId": "d1"})
        assert response.status_code == 401
        assert response.json()["error"] == "AUTHENTICATION_ERROR"

    def test_unknown_key(self, client):
        response = client.get(f"{API}/history", headers={"X-API-Key": "nope"})
        assert response.status_code == 401

    def test_missing_permission(self, client, reader_headers):
        response = client.post(f"{API}/recompute", json={"datasetId": "d1"}, headers=reader_headers)
        assert response.status_code == 403
        assert response.json()["error"] == "AUTHORIZATION_ERROR"

    def test_cancel_permission_is_enough_to_cancel(self, client, admin_headers):
        job_id = submit(client, admin_headers)
        response = client.post(f"{API}/cancel/{job_id}", headers={"X-API-Key": "cancel-test-key"})
        assert response.status_code == 200


class TestRecompute:
    def test_submit_returns_running_job(self, client, admin_headers):
        response = client.post(
            f"{API}/recompute",
            json={
                "datasetId": "dataset-1",
                "parameters": {"iterations": 50, "optimizationLevel": "high"},
                "options": {"priority": "high"},
            },
            headers=admin_headers,
        )

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "running"
        assert body["message"] == "Computation initiated"
        assert body["jobId"]

    def test_validation_errors(self, client, admin_headers):
        for body in (
            {},
            {"datasetId": ""},
            {"datasetId": "d1", "parameters": {"iterations": 0}},
            {"datasetId": "d1", "parameters": {"threshold": 1.5}},
            {"datasetId": "d1", "options": {"priority": "urgent"}},
            {"datasetId": "d1", "options": {"timeout": 10}},
            {"datasetId": "d1", "unexpected": True},
        ):
            response = client.post(f"{API}/recompute", json=body, headers=admin_headers)
            assert response.status_code == 422, body
            assert response.json()["error"] == "VALIDATION_ERROR"

    def test_capacity_exceeded(self, client, admin_headers, service):
        service.max_running_jobs = 1
        submit(client, admin_headers)
        response = client.post(f"{API}/recompute", json={"datasetId": "d2"}, headers=admin_headers)
        assert response.status_code == 429
        assert response.json()["error"] == "CAPACITY_EXCEEDED"


class TestLifecycle:
    def test_status_then_result(self, client, admin_headers, reader_headers, scheduler):
        job_id = submit(client, admin_headers)

        status = client.get(f"{API}/status/{job_id}", headers=reader_headers).json()
        assert status["status"] == "running"
        assert status["progress"] == 0
        assert status["datasetId"] == "dataset-1"
        assert "completedAt" not in status

        pending = client.get(f"{API}/results/{job_id}", headers=reader_headers)
        assert pending.status_code == 202
        assert pending.json() == {"message": "Computation still in progress", "status": "running", "progress": 0}

        scheduler.elapse()

        done = client.get(f"{API}/results/{job_id}", headers=reader_headers)
        assert done.status_code == 200
        body = done.json()
        assert body["result"]["convergence"] is True
        assert body["result"]["iterations"] == 100
        assert body["metadata"]["jobId"] == job_id
        assert body["metadata"]["datasetId"] == "dataset-1"
        assert body["metadata"]["completedAt"]

        status = client.get(f"{API}/status/{job_id}", headers=reader_headers).json()
        assert status["status"] == "completed"
        assert status["progress"] == 100

    def test_cancel(self, client, admin_headers, scheduler):
        job_id = submit(client, admin_headers)

        response = client.post(f"{API}/cancel/{job_id}", json={"reason": "superseded"}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        scheduler.elapse()
        status = client.get(f"{API}/status/{job_id}", headers=admin_headers).json()
        assert status["status"] == "cancelled"
        assert status["cancelReason"] == "superseded"
        assert status["cancelledAt"]

        again = client.post(f"{API}/cancel/{job_id}", headers=admin_headers)
        assert again.status_code == 409
        assert again.json()["error"] == "INVALID_STATE"
        assert again.json()["details"]["status"] == "cancelled"

    def test_fail(self, client, admin_headers):
        job_id = submit(client, admin_headers)
        response = client.post(f"{API}/fail/{job_id}", json={"error": "worker crashed"}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "failed"

        status = client.get(f"{API}/status/{job_id}", headers=admin_headers).json()
        assert status["error"] == "worker crashed"

    def test_progress(self, client, admin_headers):
        job_id = submit(client, admin_headers)
        url = f"{API}/progress/{job_id}"

        response = client.post(url, json={"progress": 60}, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["progress"] == 60

        assert client.post(url, json={"progress": 20}, headers=admin_headers).status_code == 409
        out_of_range = client.post(url, json={"progress": 100}, headers=admin_headers)
        assert out_of_range.status_code == 422
        assert out_of_range.json()["details"]["field"] == "progress"

    def test_unknown_job(self, client, admin_headers):
        for method, path in (
            ("get", f"{API}/status/missing"),
            ("get", f"{API}/results/missing"),
            ("post", f"{API}/cancel/missing"),
        ):
            response = getattr(client, method)(path, headers=admin_headers)
            assert response.status_code == 404
            body = response.json()
            assert body["error"] == "NOT_FOUND"
            assert "missing" in body["message"]


class TestHistoryAndMetrics:
    def test_history_filter_and_pagination(self, client, admin_headers, scheduler):
        ids = [submit(client, admin_headers, dataset_id=f"d{i}") for i in range(3)]
        scheduler.elapse()
        submit(client, admin_headers, dataset_id="d3")

        response = client.get(
            f"{API}/history", params={"status": "completed", "page": 1, "limit": 2}, headers=admin_headers
        )
        assert response.status_code == 200
        body = response.json()
        assert [j["jobId"] for j in body["jobs"]] == ids[:2]
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 3}

        by_dataset = client.get(f"{API}/history", params={"datasetId": "d3"}, headers=admin_headers).json()
        assert by_dataset["pagination"]["total"] == 1
        assert by_dataset["jobs"][0]["status"] == "running"

    def test_history_sorting(self, client, admin_headers):
        ids = [submit(client, admin_headers, dataset_id=f"d{i}") for i in range(3)]
        body = client.get(
            f"{API}/history", params={"sortBy": "createdAt", "sortOrder": "desc"}, headers=admin_headers
        ).json()
        created = [j["createdAt"] for j in body["jobs"]]
        assert created == sorted(created, reverse=True)
        assert {j["jobId"] for j in body["jobs"]} == set(ids)

    def test_history_rejects_bad_query(self, client, admin_headers):
        assert client.get(f"{API}/history", params={"status": "done"}, headers=admin_headers).status_code == 422
        assert client.get(f"{API}/history", params={"limit": 500}, headers=admin_headers).status_code == 422
        assert client.get(f"{API}/history", params={"page": 0}, headers=admin_headers).status_code == 422

    def test_metrics(self, client, admin_headers, scheduler):
        submit(client, admin_headers)
        cancelled = submit(client, admin_headers)
        client.post(f"{API}/cancel/{cancelled}", headers=admin_headers)
        scheduler.elapse()

        body = client.get(f"{API}/metrics", headers=admin_headers).json()
        assert body["total"] == 2
        assert body["completed"] == 1
        assert body["cancelled"] == 1
        assert body["successRate"] == 1.0
        assert body["activeSchedules"] == 0


class TestSchedules:
    def test_schedule_lifecycle(self, client, admin_headers, scheduler):
        response = client.post(
            f"{API}/schedule",
            json={
                "datasetId": "d1",
                "schedule": "0 2 * * *",
                "parameters": {"iterations": 20},
                "options": {"maxConcurrent": 2, "retainResults": 14},
            },
            headers=admin_headers,
        )
        assert response.status_code == 201
        created = response.json()
        assert created["cadence"] == "0 2 * * *"
        assert created["maxConcurrent"] == 2
        assert created["retainDays"] == 14
        assert created["enabled"] is True
        assert created["nextRunAt"]
        schedule_id = created["id"]

        listing = client.get(f"{API}/schedules", headers=admin_headers).json()
        assert listing["total"] == 1
        assert listing["items"][0]["id"] == schedule_id

        patched = client.patch(
            f"{API}/schedules/{schedule_id}", json={"options": {"enabled": False}}, headers=admin_headers
        ).json()
        assert patched["enabled"] is False
        assert patched["nextRunAt"] is None
        assert scheduler.active_crons() == []

        assert client.delete(f"{API}/schedules/{schedule_id}", headers=admin_headers).status_code == 204
        assert client.get(f"{API}/schedules/{schedule_id}", headers=admin_headers).status_code == 404

    def test_update_validates_parameters(self, client, admin_headers, service):
        created = client.post(
            f"{API}/schedule", json={"datasetId": "d1", "cadence": "0 * * * *"}, headers=admin_headers
        ).json()
        url = f"{API}/schedules/" + created["id"]

        for parameters in ({"iterations": 0}, {"bogus": 1}, {"threshold": 2}):
            response = client.patch(url, json={"parameters": parameters}, headers=admin_headers)
            assert response.status_code == 422, parameters
            assert response.json()["error"] == "VALIDATION_ERROR"

        ok = client.patch(url, json={"parameters": {"iterations": 5}}, headers=admin_headers)
        assert ok.status_code == 200
        assert ok.json()["parameters"] == {"iterations": 5}

        job = service.run_schedule(created["id"])
        assert job.parameters == {"iterations": 5}

    def test_invalid_cadence(self, client, admin_headers):
        response = client.post(
            f"{API}/schedule", json={"datasetId": "d1", "cadence": "whenever"}, headers=admin_headers
        )
        assert response.status_code == 422
        assert response.json()["details"]["field"] == "cadence"

    def test_reader_cannot_schedule(self, client, reader_headers):
        response = client.post(
            f"{API}/schedule", json={"datasetId": "d1", "cadence": "0 * * * *"}, headers=reader_headers
        )
        assert response.status_code == 403


class TestHealth:
    def test_basic_and_live(self, client):
        assert client.get("/health").json()["status"] == "healthy"
        assert client.get("/api/v1/health/live").json()["status"] == "alive"

    def test_ready(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    def test_detailed(self, client):
        body = client.get("/health/detailed").json()
        assert body["status"] == "healthy"
        assert body["dependencies"] == {"store": True, "scheduler": True}

    def test_index(self, client):
        assert client.get("/").json()["endpoints"]["autonomy"] == API
