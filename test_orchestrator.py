import asyncio
import json

import httpx
import pytest

from content_pipeline.branding import BrandingResolver
from content_pipeline.deployment import ArtifactPublisher
from content_pipeline.errors import InvalidTransitionError, QueueFullError
from content_pipeline.job_store import InMemoryJobStore
from content_pipeline.models import DeploymentFormat, Priority, ProcessingOptions, ProcessingStatus
from content_pipeline.notifier import WebhookNotifier
from content_pipeline.orchestrator import SHUTDOWN_ERROR, JobOrchestrator
from content_pipeline.packager import PackageBuilder

BASE = "https://games.example.org"


class RecordingPublisher(ArtifactPublisher):
    def __init__(self, delay: float = 0):
        self.published = []
        self.delay = delay

    async def publish(self, target, package) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.published.append((package.game_id, target.url))


class RecordingStore(InMemoryJobStore):
    """Remembers every (status, progress) a job was saved with."""

    def __init__(self):
        super().__init__()
        self.history = {}

    async def set_job(self, job) -> bool:
        self.history.setdefault(job.job_id, []).append((job.status, job.progress))
        return await super().set_job(job)


def make_orchestrator(**kwargs) -> JobOrchestrator:
    kwargs.setdefault("store", RecordingStore())
    kwargs.setdefault("branding", BrandingResolver())
    kwargs.setdefault("publisher", RecordingPublisher())
    kwargs.setdefault("worker_count", 2)
    kwargs.setdefault("base_url", BASE)
    return JobOrchestrator(**kwargs)


async def run_one(orchestrator: JobOrchestrator, manifest, options, processing_options=None):
    async with orchestrator:
        job = await orchestrator.submit(manifest, options, processing_options)
        await orchestrator.drain()
        return job, await orchestrator.get_status(job.job_id)


def test_valid_submission_completes(manifest, make_options) -> None:
    async def scenario():
        orchestrator = make_orchestrator()
        accepted, final = await run_one(orchestrator, manifest, make_options())
        return orchestrator, accepted, final

    orchestrator, accepted, final = asyncio.run(scenario())

    assert accepted.status == ProcessingStatus.RECEIVED
    assert accepted.progress == 0
    assert accepted.job_id.startswith("job_")
    assert final.status == ProcessingStatus.COMPLETED
    assert final.progress == 100
    assert final.message == "Game successfully deployed"
    assert final.deployment_urls == {"web": f"{BASE}/eu-north-1/malmo/demo-1/"}
    assert final.end_time is not None and final.end_time >= final.start_time
    assert orchestrator.publisher.published == [("demo-1", f"{BASE}/eu-north-1/malmo/demo-1/")]


def test_invalid_manifest_fails_at_validation(manifest, make_options) -> None:
    del manifest["gameId"]

    async def scenario():
        return await run_one(make_orchestrator(), manifest, make_options())

    accepted, final = asyncio.run(scenario())

    assert accepted.status == ProcessingStatus.RECEIVED
    assert final.status == ProcessingStatus.FAILED
    assert final.progress == 10
    assert "Missing required field: gameId" in final.errors
    assert final.deployment_urls is None
    assert final.end_time is not None


def test_every_requested_format_gets_a_url(manifest, make_options) -> None:
    options = make_options(formats=("web", "scorm", "pwa"), municipality_id="berlin", markets=("germany",),
                           branding_level="full")

    async def scenario():
        return await run_one(make_orchestrator(), manifest, options)

    _, final = asyncio.run(scenario())

    assert final.status == ProcessingStatus.COMPLETED
    assert final.deployment_urls == {
        "web": f"{BASE}/eu-central-1/berlin/demo-1/",
        "scorm": f"{BASE}/eu-central-1/scorm/berlin/demo-1/scorm-package.zip",
        "pwa": f"{BASE}/eu-central-1/apps/berlin/demo-1/",
    }


def test_unknown_municipality_still_completes(manifest, make_options) -> None:
    async def scenario():
        return await run_one(make_orchestrator(), manifest, make_options(municipality_id="Ystad kommun"))

    _, final = asyncio.run(scenario())

    assert final.status == ProcessingStatus.COMPLETED
    assert final.deployment_urls["web"] == f"{BASE}/eu-north-1/ystadkommun/demo-1/"


def test_progress_and_status_only_move_forward(manifest, make_options) -> None:
    async def scenario():
        orchestrator = make_orchestrator()
        _, final = await run_one(orchestrator, manifest, make_options())
        return orchestrator.store.history[final.job_id]

    history = asyncio.run(scenario())

    statuses = [status for status, _ in history]
    progress = [value for _, value in history]
    assert statuses == [
        ProcessingStatus.RECEIVED,
        ProcessingStatus.VALIDATING,
        ProcessingStatus.PROCESSING,
        ProcessingStatus.BRANDING,
        ProcessingStatus.PACKAGING,
        ProcessingStatus.DEPLOYING,
        ProcessingStatus.COMPLETED,
    ]
    assert progress == [0, 10, 30, 50, 70, 90, 100]


def test_terminal_jobs_cannot_change(manifest, make_options) -> None:
    async def scenario():
        orchestrator = make_orchestrator()
        _, final = await run_one(orchestrator, manifest, make_options())
        with pytest.raises(InvalidTransitionError):
            await orchestrator._advance(final.job_id, ProcessingStatus.DEPLOYING, 90, "again")
        await orchestrator._fail(final.job_id, ["late failure"])
        return await orchestrator.get_status(final.job_id)

    job = asyncio.run(scenario())

    assert job.status == ProcessingStatus.COMPLETED
    assert job.errors is None


def test_full_queue_rejects_submission(manifest, make_options) -> None:
    async def scenario():
        orchestrator = make_orchestrator(queue_maxsize=1)
        await orchestrator.submit(manifest, make_options())
        with pytest.raises(QueueFullError):
            await orchestrator.submit(manifest, make_options())
        return await orchestrator.list_jobs(), orchestrator.queue_size

    jobs, queued = asyncio.run(scenario())

    assert len(jobs) == 1
    assert queued == 1


def test_high_priority_jobs_run_first(make_manifest, make_options) -> None:
    async def scenario():
        orchestrator = make_orchestrator(worker_count=1)
        for game_id, priority in (("low", Priority.LOW), ("normal", Priority.NORMAL), ("high", Priority.HIGH)):
            await orchestrator.submit(make_manifest(gameId=game_id), make_options(),
                                      ProcessingOptions(priority=priority))
        async with orchestrator:
            await orchestrator.drain()
        return [game_id for game_id, _ in orchestrator.publisher.published]

    assert asyncio.run(scenario()) == ["high", "normal", "low"]


def test_job_exceeding_deadline_is_failed(manifest, make_options) -> None:
    async def scenario():
        orchestrator = make_orchestrator(publisher=RecordingPublisher(delay=30), job_timeout=1.0)
        return await run_one(orchestrator, manifest, make_options())

    _, final = asyncio.run(scenario())

    assert final.status == ProcessingStatus.FAILED
    assert final.errors == ["Job exceeded 1s deadline"]
    assert final.progress == 90


def test_packaging_failure_fails_the_job(manifest, make_options) -> None:
    def broken(_manifest):
        raise RuntimeError("disk full")

    async def scenario():
        orchestrator = make_orchestrator(packager=PackageBuilder({DeploymentFormat.SCORM: broken}))
        return await run_one(orchestrator, manifest, make_options(formats=("web", "scorm")))

    _, final = asyncio.run(scenario())

    assert final.status == ProcessingStatus.FAILED
    assert final.progress == 70
    assert any("disk full" in e for e in final.errors)
    assert final.deployment_urls is None


def test_partial_packaging_when_allowed(manifest, make_options) -> None:
    def broken(_manifest):
        raise RuntimeError("disk full")

    async def scenario():
        orchestrator = make_orchestrator(
            packager=PackageBuilder({DeploymentFormat.SCORM: broken}),
            allow_partial_packaging=True,
        )
        return await run_one(orchestrator, manifest, make_options(formats=("web", "scorm")))

    _, final = asyncio.run(scenario())

    assert final.status == ProcessingStatus.COMPLETED
    assert set(final.deployment_urls) == {"web"}
    assert any("disk full" in w for w in final.warnings)


def test_dry_run_resolves_urls_without_publishing(manifest, make_options) -> None:
    async def scenario():
        orchestrator = make_orchestrator()
        _, final = await run_one(orchestrator, manifest, make_options(), ProcessingOptions(dry_run=True))
        return orchestrator, final

    orchestrator, final = asyncio.run(scenario())

    assert final.status == ProcessingStatus.COMPLETED
    assert "web" in final.deployment_urls
    assert orchestrator.publisher.published == []


def test_webhook_receives_final_record(manifest, make_options) -> None:
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(json.loads(request.content))
        return httpx.Response(200)

    async def scenario():
        orchestrator = make_orchestrator(notifier=WebhookNotifier(transport=httpx.MockTransport(handler)))
        return await run_one(orchestrator, manifest, make_options(),
                             ProcessingOptions(webhook_url="https://hooks.example.org/done"))

    _, final = asyncio.run(scenario())

    assert len(received) == 1
    assert received[0]["jobId"] == final.job_id
    assert received[0]["status"] == "completed"


def test_webhook_failure_does_not_change_outcome(manifest, make_options) -> None:
    notifier = WebhookNotifier(transport=httpx.MockTransport(lambda request: httpx.Response(500)))

    async def scenario():
        orchestrator = make_orchestrator(notifier=notifier)
        return await run_one(orchestrator, manifest, make_options(),
                             ProcessingOptions(webhook_url="https://hooks.example.org/done"))

    _, final = asyncio.run(scenario())

    assert final.status == ProcessingStatus.COMPLETED


def test_concurrent_jobs_are_independent(make_manifest, make_options) -> None:
    async def scenario():
        orchestrator = make_orchestrator(worker_count=3)
        async with orchestrator:
            good = await orchestrator.submit(make_manifest(gameId="good"), make_options())
            bad = await orchestrator.submit(make_manifest(scenes=[]), make_options())
            other = await orchestrator.submit(make_manifest(gameId="other"), make_options(formats=("pwa",)))
            await orchestrator.drain()
            return [await orchestrator.get_status(j.job_id) for j in (good, bad, other)]

    good, bad, other = asyncio.run(scenario())

    assert good.status == ProcessingStatus.COMPLETED
    assert bad.status == ProcessingStatus.FAILED
    assert other.status == ProcessingStatus.COMPLETED
    assert set(other.deployment_urls) == {"pwa"}


def test_worker_count_must_be_positive() -> None:
    with pytest.raises(ValueError):
        JobOrchestrator(store=InMemoryJobStore(), worker_count=0)


def test_stop_fails_running_and_queued_jobs(make_manifest, make_options) -> None:
    async def scenario():
        orchestrator = make_orchestrator(worker_count=1, publisher=RecordingPublisher(delay=30))
        orchestrator.start()
        jobs = [await orchestrator.submit(make_manifest(gameId=f"game-{i}"), make_options()) for i in range(3)]
        for _ in range(500):
            running = await orchestrator.get_status(jobs[0].job_id)
            if running.status == ProcessingStatus.DEPLOYING:
                break
            await asyncio.sleep(0.01)
        await orchestrator.stop()
        return [await orchestrator.get_status(j.job_id) for j in jobs], orchestrator.queue_size

    finals, queued = asyncio.run(scenario())

    assert queued == 0
    assert [j.status for j in finals] == [ProcessingStatus.FAILED] * 3
    assert all(j.errors == [SHUTDOWN_ERROR] for j in finals)
    assert all(j.end_time is not None for j in finals)
    assert finals[0].progress == 90
    assert [j.progress for j in finals[1:]] == [0, 0]


def test_stop_without_workers_fails_queued_jobs(manifest, make_options) -> None:
    async def scenario():
        orchestrator = make_orchestrator()
        job = await orchestrator.submit(manifest, make_options())
        await orchestrator.stop()
        return await orchestrator.get_status(job.job_id)

    job = asyncio.run(scenario())

    assert job.status == ProcessingStatus.FAILED
    assert job.errors == [SHUTDOWN_ERROR]


def test_manifest_with_wrong_field_types_fails_at_validation(manifest, make_options) -> None:
    manifest["scenes"][0]["messages"][0]["characterId"] = 5
    manifest["theme"] = "dark"

    async def scenario():
        return await run_one(make_orchestrator(), manifest, make_options())

    _, final = asyncio.run(scenario())

    assert final.status == ProcessingStatus.FAILED
    assert final.progress == 10
    assert any(e.startswith("Invalid field theme") for e in final.errors)
