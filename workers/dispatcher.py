import asyncio
from typing import Dict, Optional

from config.constants import DISPATCHER_ERROR_BACKOFF_SECONDS
from config.logger import get_logger
from workers.batch_processor import DownloadProcessor
from workers.job_queue import JobQueue

logger = get_logger(__name__)


class DownloadDispatcher:
    """Single consumer loop that admits queued jobs up to a parallel limit.

    Each admitted job runs in its own task; the loop goes straight back to the
    queue once the task is spawned. When the limit is reached the loop holds
    the dequeued id until a running job finishes.
    """

    def __init__(
        self,
        queue: JobQueue,
        processor: DownloadProcessor,
        max_parallel_jobs: int = 10,
        shutdown_grace_seconds: float = 30,
        error_backoff_seconds: float = DISPATCHER_ERROR_BACKOFF_SECONDS,
    ):
        if max_parallel_jobs < 1:
            raise ValueError("max_parallel_jobs must be at least 1")
        self.queue = queue
        self.processor = processor
        self.max_parallel_jobs = max_parallel_jobs
        self.shutdown_grace_seconds = shutdown_grace_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self._tasks: Dict[str, asyncio.Task] = {}
        self._slot_freed = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def is_active(self, job_id: str) -> bool:
        return job_id in self._tasks

    def start(self) -> None:
        if self.is_running:
            return
        self._loop_task = asyncio.create_task(self._run(), name="download-dispatcher")
        logger.info("Download dispatcher started", max_parallel_jobs=self.max_parallel_jobs)

    async def _run(self) -> None:
        while True:
            try:
                job_id = await self.queue.dequeue()
                await self._wait_for_capacity()
                self._spawn(job_id)
            except asyncio.CancelledError:
                logger.info("Download dispatcher loop stopped")
                raise
            except Exception as e:  # pylint: disable=broad-except
                logger.error("Error in dispatcher loop", error=str(e), exc_info=True)
                await asyncio.sleep(self.error_backoff_seconds)

    async def _wait_for_capacity(self) -> None:
        while len(self._tasks) >= self.max_parallel_jobs:
            self._slot_freed.clear()
            await self._slot_freed.wait()

    def _spawn(self, job_id: str) -> None:
        task = asyncio.create_task(self._run_job(job_id), name=f"download-{job_id}")
        self._tasks[job_id] = task
        # runs even when the task is cancelled before its first step
        task.add_done_callback(lambda finished: self._job_finished(job_id, finished))
        logger.info("Admitted job", job_id=job_id, active_jobs=len(self._tasks))

    def _job_finished(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        if task.cancelled():
            self.processor.abandon(job_id)
        self._slot_freed.set()

    async def _run_job(self, job_id: str) -> None:
        try:
            await self.processor.process(job_id)
        except asyncio.CancelledError:
            logger.warning("Job task cancelled", job_id=job_id)
            raise
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Unhandled error processing job", job_id=job_id, error=str(e), exc_info=True)

    def cancel_job(self, job_id: str) -> bool:
        """Cancel a running job; it ends Failed once its task unwinds"""
        task = self._tasks.get(job_id)
        if task is None or task.done():
            return False
        task.cancel()
        logger.info("Cancellation requested", job_id=job_id)
        return True

    async def stop(self, grace_seconds: Optional[float] = None) -> None:
        """Stop admitting jobs and give running ones a grace period to finish"""
        grace = self.shutdown_grace_seconds if grace_seconds is None else grace_seconds

        if self._loop_task is not None:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        running = list(self._tasks.values())
        if not running:
            logger.info("Download dispatcher stopped")
            return

        logger.info("Waiting for running jobs", count=len(running), grace_seconds=grace)
        _, pending = await asyncio.wait(running, timeout=grace)
        if pending:
            logger.warning("Jobs still running after grace period, cancelling", count=len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        logger.info("Download dispatcher stopped")
