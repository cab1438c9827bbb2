import json
from unittest.mock import MagicMock

import httpx
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError

from app.models.jobs import JobStatus
from app.services.job_service import JobService
from app.services.slack_service import SlackService
from app.services.webhook_service import WebhookService
from app.stores.memory import InMemoryJobStore

HOOK_URL = "https://hooks.example.com/done"


def webhook_with(handler):
    return WebhookService(timeout=1, transport=httpx.MockTransport(handler))


class TestWebhookService:
    def test_posts_json_payload(self):
        received = []

        def handler(request):
            received.append(request)
            return httpx.Response(200)

        assert webhook_with(handler).post(HOOK_URL, {"event": "computation.completed", "jobId": "j1"})

        assert len(received) == 1
        assert received[0].method == "POST"
        assert str(received[0].url) == HOOK_URL
        assert received[0].headers["content-type"] == "application/json"
        assert json.loads(received[0].content) == {"event": "computation.completed", "jobId": "j1"}

    def test_server_error_returns_false(self, caplog):
        service = webhook_with(lambda request: httpx.Response(503))
        assert service.post(HOOK_URL, {}) is False
        assert "Webhook delivery" in caplog.text

    def test_transport_error_returns_false(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        assert webhook_with(handler).post(HOOK_URL, {}) is False

    def test_failed_webhook_leaves_job_completed(self, scheduler):
        webhooks = webhook_with(lambda request: httpx.Response(500))
        service = JobService(store=InMemoryJobStore(), scheduler=scheduler, webhooks=webhooks, completion_delay=1)
        job = service.submit("d1", options={"notify_on_complete": True, "webhook_url": HOOK_URL})

        scheduler.elapse()

        done = service.get_status(job.id)
        assert done.status == JobStatus.COMPLETED
        assert done.result is not None


def slack_client():
    return MagicMock(spec=WebClient)


class TestSlackService:
    def test_disabled_without_token(self):
        service = SlackService(token="", channel="C123", mentions="")
        assert not service.enabled
        assert service.send_job_status("Started", "Running", "Job ID: j1") is None

    def test_disabled_without_channel(self):
        client = slack_client()
        service = SlackService(token="xoxb-test", channel="", mentions="", client=client)

        assert not service.enabled
        service.send_job_status("Started", "Running", "Job ID: j1")
        client.chat_postMessage.assert_not_called()

    def test_sends_status_blocks(self):
        client = slack_client()
        service = SlackService(token="xoxb-test", channel="C123", mentions="U1", client=client)

        service.send_job_status("✅ Computation Completed", "Completed", "Job ID: j1")

        kwargs = client.chat_postMessage.call_args.kwargs
        assert kwargs["channel"] == "C123"
        assert kwargs["text"] == "✅ Computation Completed: Completed"
        assert kwargs["blocks"][0]["text"]["text"] == "✅ Computation Completed"
        assert "*Status:* Completed" in kwargs["blocks"][1]["text"]["text"]
        assert not any("Attention" in str(block) for block in kwargs["blocks"])
        assert kwargs["blocks"][-1]["type"] == "context"

    def test_failure_mentions(self):
        client = slack_client()
        service = SlackService(token="xoxb-test", channel="C123", mentions="U1, U2", client=client)

        service.send_job_status("❌ Computation Failed", "Failed", "Error: boom")

        blocks = client.chat_postMessage.call_args.kwargs["blocks"]
        assert blocks[2]["text"]["text"] == "🚨 Attention: <@U1> <@U2>"

    def test_api_error_is_logged(self, caplog):
        client = slack_client()
        client.chat_postMessage.side_effect = SlackApiError("failed", {"error": "channel_not_found"})
        service = SlackService(token="xoxb-test", channel="C123", mentions="", client=client)

        assert service.send_job_status("Started", "Running", "Job ID: j1") is None
        assert "channel_not_found" in caplog.text

    def test_api_error_leaves_job_running(self, scheduler):
        client = slack_client()
        client.chat_postMessage.side_effect = SlackApiError("failed", {"error": "not_in_channel"})
        slack = SlackService(token="xoxb-test", channel="C123", mentions="", client=client)
        service = JobService(store=InMemoryJobStore(), scheduler=scheduler, slack=slack, completion_delay=1)

        job = service.submit("d1")
        assert service.get_status(job.id).status == JobStatus.RUNNING

        scheduler.elapse()
        assert service.get_status(job.id).status == JobStatus.COMPLETED
        assert client.chat_postMessage.call_count == 2
