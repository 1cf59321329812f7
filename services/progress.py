import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol, Set

import httpx

from config.constants import WEBHOOK_MAX_RETRIES, WEBHOOK_RETRY_BASE_DELAY, WEBHOOK_TIMEOUT_SECONDS
from config.logger import get_logger
from models.job import DownloadJob
from utils.webhook import generate_webhook_signature, serialize_payload

logger = get_logger(__name__)


class ProgressSink(Protocol):
    async def push(
        self, job_id: str, owner_ref: str, status_text: str, percentage: float
    ) -> None: ...

    async def notify_completed(self, job_id: str, owner_ref: str, summary: str) -> None: ...

    async def notify_failed(self, job_id: str, owner_ref: str, error: str) -> None: ...


class NullProgressSink:
    async def push(self, job_id: str, owner_ref: str, status_text: str, percentage: float) -> None:
        return None

    async def notify_completed(self, job_id: str, owner_ref: str, summary: str) -> None:
        return None

    async def notify_failed(self, job_id: str, owner_ref: str, error: str) -> None:
        return None

    async def close(self) -> None:
        return None


class LoggingProgressSink:
    """Writes progress events to the log instead of delivering them anywhere"""

    async def push(self, job_id: str, owner_ref: str, status_text: str, percentage: float) -> None:
        logger.info(
            "Job progress",
            job_id=job_id,
            owner_ref=owner_ref,
            status=status_text,
            percentage=round(percentage, 1),
        )

    async def notify_completed(self, job_id: str, owner_ref: str, summary: str) -> None:
        logger.info("Job completed", job_id=job_id, owner_ref=owner_ref, summary=summary)

    async def notify_failed(self, job_id: str, owner_ref: str, error: str) -> None:
        logger.warning("Job failed", job_id=job_id, owner_ref=owner_ref, error=error)

    async def close(self) -> None:
        return None


class WebhookProgressSink:
    """POSTs signed progress events to a single webhook endpoint.

    Bodies are ``{"event", "timestamp", "data"}`` serialized with sorted keys;
    when a secret is set, ``X-Webhook-Signature`` carries the HMAC-SHA256 of
    the exact body. Receivers check it with
    ``utils.webhook.verify_webhook_signature``. Failed deliveries are retried
    with a linear back-off and give up quietly after ``max_retries`` attempts.
    """

    def __init__(
        self,
        webhook_url: str,
        webhook_secret: str = "",
        max_retries: int = WEBHOOK_MAX_RETRIES,
        retry_base_delay: float = WEBHOOK_RETRY_BASE_DELAY,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        if not webhook_url:
            raise ValueError("webhook_url is required")
        self.webhook_url = webhook_url
        self.webhook_secret = webhook_secret
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self._client = http_client or httpx.AsyncClient(timeout=WEBHOOK_TIMEOUT_SECONDS)
        self._owns_client = http_client is None

    async def push(self, job_id: str, owner_ref: str, status_text: str, percentage: float) -> None:
        await self.send(
            "job.progress",
            {
                "job_id": job_id,
                "owner_ref": owner_ref,
                "status": status_text,
                "percentage": round(percentage, 2),
            },
        )

    async def notify_completed(self, job_id: str, owner_ref: str, summary: str) -> None:
        await self.send(
            "job.completed",
            {"job_id": job_id, "owner_ref": owner_ref, "status": "completed", "summary": summary},
        )

    async def notify_failed(self, job_id: str, owner_ref: str, error: str) -> None:
        await self.send(
            "job.failed",
            {"job_id": job_id, "owner_ref": owner_ref, "status": "failed", "error": error},
        )

    async def send(self, event_type: str, data: Dict[str, Any]) -> bool:
        payload = {"event": event_type, "timestamp": time.time(), "data": data}
        body = serialize_payload(payload)
        headers = {
            "Content-Type": "application/json",
            "User-Agent": "TrackDownloader/1.0",
        }
        signature = generate_webhook_signature(payload, self.webhook_secret)
        if signature:
            headers["X-Webhook-Signature"] = signature

        for attempt in range(self.max_retries):
            try:
                response = await self._client.post(self.webhook_url, content=body, headers=headers)
                if response.is_success:
                    logger.debug("Webhook sent", event=event_type, job_id=data.get("job_id"))
                    return True
                logger.warning(
                    "Webhook rejected",
                    event=event_type,
                    status_code=response.status_code,
                    body=response.text[:200],
                )
            except httpx.HTTPError as e:
                logger.warning("Webhook attempt failed", event=event_type, attempt=attempt + 1, error=str(e))

            if attempt < self.max_retries - 1:
                await asyncio.sleep(self.retry_base_delay * (attempt + 1))

        logger.error("Webhook failed after all attempts", event=event_type, attempts=self.max_retries)
        return False

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class ProgressReporter:
    """Throttled, fire-and-forget front for a progress sink.

    publish() is safe to call from the hot path of the batch processor: it
    never awaits and never raises because of the sink. Jobs without an owner
    are never pushed.
    """

    def __init__(
        self,
        sink: Optional[ProgressSink] = None,
        update_interval_ms: int = 3000,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.sink = sink or NullProgressSink()
        self.update_interval = update_interval_ms / 1000
        self.enabled = enabled
        self._clock = clock
        self._last_sent: Dict[str, float] = {}
        self._pending: Set[asyncio.Task] = set()

    def _should_send(self, job: DownloadJob) -> bool:
        return self.enabled and job.has_owner

    def publish(
        self, job: DownloadJob, status_text: str, percentage: float, force: bool = False
    ) -> bool:
        """Schedule a progress push; returns False when it was skipped or throttled"""
        if not self._should_send(job):
            return False

        now = self._clock()
        last = self._last_sent.get(job.id)
        if not force and percentage < 100 and last is not None and now - last < self.update_interval:
            return False

        self._last_sent[job.id] = now
        self._schedule(
            self.sink.push(job.id, job.owner_ref, status_text, percentage), "progress", job.id
        )
        return True

    def completed(self, job: DownloadJob, summary: str) -> bool:
        self._last_sent.pop(job.id, None)
        if not self._should_send(job):
            return False
        self._schedule(self.sink.notify_completed(job.id, job.owner_ref, summary), "completed", job.id)
        return True

    def failed(self, job: DownloadJob, error: str) -> bool:
        self._last_sent.pop(job.id, None)
        if not self._should_send(job):
            return False
        self._schedule(self.sink.notify_failed(job.id, job.owner_ref, error), "failed", job.id)
        return True

    def _schedule(self, push: Awaitable[None], event: str, job_id: str) -> None:
        task = asyncio.ensure_future(push)
        self._pending.add(task)
        task.add_done_callback(lambda t: self._finished(t, event, job_id))

    def _finished(self, task: asyncio.Task, event: str, job_id: str) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Progress push failed", event=event, job_id=job_id, error=str(error))

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def flush(self) -> None:
        """Wait for every scheduled push to finish"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.flush()
        close = getattr(self.sink, "close", None)
        if close is not None:
            await close()


def create_progress_sink(webhook_url: str = "", webhook_secret: str = "") -> ProgressSink:
    if webhook_url:
        return WebhookProgressSink(webhook_url, webhook_secret)
    return LoggingProgressSink()
