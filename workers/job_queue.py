import asyncio
from typing import Any, Dict

from config.logger import get_logger

logger = get_logger(__name__)


class JobQueue:
    """FIFO hand-off of job ids from submission to the dispatcher.

    The backlog is unbounded; admission control happens in the dispatcher.
    Each id is delivered to exactly one dequeue() call.
    """

    def __init__(self, name: str = "downloads"):
        self.name = name
        self._queue: "asyncio.Queue[str]" = asyncio.Queue()

    def enqueue(self, job_id: str) -> None:
        self._queue.put_nowait(job_id)
        logger.debug("Enqueued download job", job_id=job_id, queue_length=self._queue.qsize())

    async def dequeue(self) -> str:
        """Wait for the next job id. Cancelling the caller abandons the wait."""
        return await self._queue.get()

    def __len__(self) -> int:
        return self._queue.qsize()

    def get_queue_info(self) -> Dict[str, Any]:
        return {"name": self.name, "length": len(self)}
