import logging
from typing import Optional

import httpx

from .errors import NotificationError
from .models import ProcessingJob
from .settings import WEBHOOK_TIMEOUT_S

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Best-effort POST of a final job record to a submitter's webhook."""

    def __init__(self, timeout: float = WEBHOOK_TIMEOUT_S, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    async def send(self, url: str, job: ProcessingJob) -> None:
        """Raise NotificationError on any delivery failure."""
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=job.to_payload())
                response.raise_for_status()
        except httpx.HTTPError as e:
            raise NotificationError(f"Webhook delivery to {url} failed: {e}") from e

    async def notify(self, url: str, job: ProcessingJob) -> bool:
        try:
            await self.send(url, job)
        except NotificationError as e:
            logger.warning(f"Webhook notification for job {job.job_id} failed: {e.message}")
            return False
        logger.info(f"Webhook notified for job {job.job_id} ({job.status.value})")
        return True
