import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest

from content_pipeline.errors import NotificationError
from content_pipeline.models import DeploymentFormat, ProcessingJob, ProcessingStatus
from content_pipeline.notifier import WebhookNotifier

JOB = ProcessingJob(
    job_id="job_1",
    game_id="demo-1",
    municipality_id="malmo",
    formats=[DeploymentFormat.WEB],
    status=ProcessingStatus.FAILED,
    progress=30,
    errors=["boom"],
    start_time=datetime(2024, 5, 1, tzinfo=timezone.utc),
)


def test_notify_posts_camel_case_job() -> None:
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(204)

    ok = asyncio.run(WebhookNotifier(transport=httpx.MockTransport(handler)).notify("https://hooks.example.org/x", JOB))

    assert ok is True
    assert received[0]["jobId"] == "job_1"
    assert received[0]["status"] == "failed"
    assert received[0]["errors"] == ["boom"]


def test_notify_swallows_delivery_failures() -> None:
    notifier = WebhookNotifier(transport=httpx.MockTransport(lambda request: httpx.Response(500)))

    assert asyncio.run(notifier.notify("https://hooks.example.org/x", JOB)) is False


def test_send_raises_notification_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    notifier = WebhookNotifier(transport=httpx.MockTransport(handler))

    with pytest.raises(NotificationError):
        asyncio.run(notifier.send("https://hooks.example.org/x", JOB))
