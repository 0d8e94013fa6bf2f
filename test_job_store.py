import asyncio
import json
from datetime import datetime, timedelta, timezone

import httpx

from content_pipeline.job_store import InMemoryJobStore, KVJobStore
from content_pipeline.models import DeploymentFormat, ProcessingJob, ProcessingStatus


def make_job(job_id: str, minutes: int = 0, **changes) -> ProcessingJob:
    job = ProcessingJob(
        job_id=job_id,
        game_id="demo-1",
        municipality_id="malmo",
        formats=[DeploymentFormat.WEB],
        start_time=datetime(2024, 5, 1, tzinfo=timezone.utc) + timedelta(minutes=minutes),
    )
    return job.model_copy(update=changes)


class FakeKV:
    """Just enough of the Upstash REST command API for the store."""

    def __init__(self):
        self.values = {}
        self.sets = {}
        self.fail = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            return httpx.Response(503)
        assert request.headers["Authorization"] == "Bearer token"
        command = request.url.path.rsplit("/", 1)[-1]
        args = json.loads(request.content)
        if command == "set":
            self.values[args[0]] = args[1]
            result = "OK"
        elif command == "get":
            result = self.values.get(args[0])
        elif command == "del":
            result = int(self.values.pop(args[0], None) is not None)
        elif command == "sadd":
            self.sets.setdefault(args[0], set()).update(args[1:])
            result = 1
        elif command == "srem":
            self.sets.get(args[0], set()).difference_update(args[1:])
            result = 1
        elif command == "smembers":
            result = sorted(self.sets.get(args[0], set()))
        else:
            return httpx.Response(400, json={"error": f"unknown command {command}"})
        return httpx.Response(200, json={"result": result})


def kv_store(fake: FakeKV) -> KVJobStore:
    return KVJobStore("https://kv.example.org", "token", transport=httpx.MockTransport(fake.handler))


def test_in_memory_round_trip_and_isolation(store) -> None:
    async def scenario():
        job = make_job("job_a")
        await store.set_job(job)
        job.warnings.append("mutated after save")

        fetched = await store.get_job("job_a")
        fetched.warnings.append("mutated after load")
        return fetched, await store.get_job("job_a")

    fetched, again = asyncio.run(scenario())

    assert fetched.job_id == "job_a"
    assert again.warnings == []


def test_in_memory_lists_in_start_order_and_deletes(store) -> None:
    async def scenario():
        await store.set_job(make_job("late", minutes=5))
        await store.set_job(make_job("early", minutes=1))
        ordered = [j.job_id for j in await store.list_jobs()]
        await store.delete_job("early")
        await store.delete_job("missing")
        return ordered, [j.job_id for j in await store.list_jobs()], await store.get_job("early")

    ordered, remaining, deleted = asyncio.run(scenario())

    assert ordered == ["early", "late"]
    assert remaining == ["late"]
    assert deleted is None


def test_kv_store_round_trip() -> None:
    fake = FakeKV()
    store = kv_store(fake)
    completed = make_job(
        "job_kv",
        status=ProcessingStatus.COMPLETED,
        progress=100,
        deployment_urls={"web": "https://games.example.org/eu-north-1/malmo/demo-1/"},
    )

    async def scenario():
        assert await store.set_job(make_job("job_other", minutes=-1))
        assert await store.set_job(completed)
        return await store.get_job("job_kv"), await store.list_jobs()

    fetched, listed = asyncio.run(scenario())

    assert fetched == completed
    assert [j.job_id for j in listed] == ["job_other", "job_kv"]
    assert "job:job_kv" in fake.values
    assert json.loads(fake.values["job:job_kv"])["deploymentUrls"]["web"].endswith("/demo-1/")


def test_kv_store_delete() -> None:
    fake = FakeKV()
    store = kv_store(fake)

    async def scenario():
        await store.set_job(make_job("job_kv"))
        await store.delete_job("job_kv")
        return await store.get_job("job_kv"), await store.list_jobs()

    fetched, listed = asyncio.run(scenario())

    assert fetched is None
    assert listed == []


def test_kv_store_degrades_on_http_errors() -> None:
    fake = FakeKV()
    fake.fail = True
    store = kv_store(fake)

    async def scenario():
        return await store.set_job(make_job("job_kv")), await store.get_job("job_kv"), await store.list_jobs()

    stored, fetched, listed = asyncio.run(scenario())

    assert stored is False
    assert fetched is None
    assert listed == []
