"""
Job record storage.
InMemoryJobStore serves tests and single-instance runs; KVJobStore keeps jobs in Vercel KV
so they survive restarts and are shared across instances.
"""
import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import httpx

from .models import ProcessingJob
from .settings import KV_REST_API_TOKEN, KV_REST_API_URL, has_kv_storage

logger = logging.getLogger(__name__)


class JobStore(ABC):
    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[ProcessingJob]:
        """Return the stored record, or None when unknown."""

    @abstractmethod
    async def set_job(self, job: ProcessingJob) -> bool:
        """Persist the record; return False if it could not be stored."""

    @abstractmethod
    async def list_jobs(self) -> List[ProcessingJob]:
        """Return every stored record ordered by start time."""

    @abstractmethod
    async def delete_job(self, job_id: str) -> None:
        """Remove the record if it exists."""


class InMemoryJobStore(JobStore):
    """Keeps copies so callers can never mutate a stored record in place."""

    def __init__(self):
        self._jobs: Dict[str, ProcessingJob] = {}

    async def get_job(self, job_id: str) -> Optional[ProcessingJob]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def set_job(self, job: ProcessingJob) -> bool:
        self._jobs[job.job_id] = job.model_copy(deep=True)
        return True

    async def list_jobs(self) -> List[ProcessingJob]:
        return sorted((j.model_copy(deep=True) for j in self._jobs.values()), key=lambda j: j.start_time)

    async def delete_job(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)


class KVJobStore(JobStore):
    INDEX_KEY = "jobs:index"

    def __init__(self, url: str = KV_REST_API_URL, token: str = KV_REST_API_TOKEN,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.kv_rest_api_url = url.rstrip("/")
        self.kv_rest_api_token = token
        self.transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.kv_rest_api_token}",
            "Content-Type": "application/json"
        }

    async def _command(self, command: str, args: list):
        async with httpx.AsyncClient(timeout=10, transport=self.transport) as client:
            response = await client.post(
                f"{self.kv_rest_api_url}/{command}",
                headers=self._headers(),
                json=args
            )
            response.raise_for_status()
            return response.json().get("result")

    async def set_job(self, job: ProcessingJob) -> bool:
        """Store job data in KV"""
        try:
            await self._command("set", [f"job:{job.job_id}", json.dumps(job.to_payload())])
            await self._command("sadd", [self.INDEX_KEY, job.job_id])
            logger.debug(f"Stored job {job.job_id} in KV")
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to store job {job.job_id} in KV: {e}")
            return False

    async def get_job(self, job_id: str) -> Optional[ProcessingJob]:
        """Retrieve job data from KV"""
        try:
            result = await self._command("get", [f"job:{job_id}"])
        except httpx.HTTPError as e:
            logger.error(f"Failed to retrieve job {job_id} from KV: {e}")
            return None

        if not result:
            logger.info(f"Job {job_id} not found in KV")
            return None
        return ProcessingJob.model_validate(json.loads(result))

    async def list_jobs(self) -> List[ProcessingJob]:
        try:
            job_ids = await self._command("smembers", [self.INDEX_KEY]) or []
        except httpx.HTTPError as e:
            logger.error(f"Failed to list jobs from KV: {e}")
            return []

        jobs = []
        for job_id in job_ids:
            job = await self.get_job(job_id)
            if job:
                jobs.append(job)
        return sorted(jobs, key=lambda j: j.start_time)

    async def delete_job(self, job_id: str) -> None:
        try:
            await self._command("del", [f"job:{job_id}"])
            await self._command("srem", [self.INDEX_KEY, job_id])
        except httpx.HTTPError as e:
            logger.error(f"Failed to delete job {job_id} from KV: {e}")


def default_store() -> JobStore:
    if has_kv_storage():
        logger.info("KV storage enabled")
        return KVJobStore()
    logger.warning("KV storage not configured - falling back to in-memory storage")
    return InMemoryJobStore()
