import copy
import io
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from config.logger import get_logger
from models.job import DownloadJob
from utils.exceptions import NotFoundError

logger = get_logger(__name__)


@dataclass(frozen=True)
class Artifact:
    content: bytes
    filename: str
    media_type: str

    @property
    def size(self) -> int:
        return len(self.content)

    def open(self) -> io.BytesIO:
        return io.BytesIO(self.content)


class JobStore:
    """In-memory store for download jobs and their result artifacts.

    Jobs are copied on the way in and on the way out, so callers never share a
    mutable record; they change their own copy and write it back with update().
    Writes are last-writer-wins. Artifacts live independently of job records.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._jobs: Dict[str, DownloadJob] = {}
        self._artifacts: Dict[str, Artifact] = {}

    def put(self, job: DownloadJob) -> None:
        if job is None:
            raise ValueError("job is required")
        with self._lock:
            self._jobs[job.id] = copy.copy(job)

    def get(self, job_id: str) -> Optional[DownloadJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.copy(job) if job is not None else None

    def update(self, job: DownloadJob) -> None:
        self.put(job)

    def put_artifact(self, job_id: str, artifact: Artifact) -> None:
        if artifact is None:
            raise ValueError("artifact is required")
        with self._lock:
            self._artifacts[job_id] = artifact

    def get_artifact(self, job_id: str) -> Artifact:
        with self._lock:
            artifact = self._artifacts.get(job_id)
        if artifact is None:
            raise NotFoundError(
                f"Result for job {job_id} was not found. The job may not be completed yet."
            )
        return artifact

    def delete_artifact(self, job_id: str) -> bool:
        with self._lock:
            return self._artifacts.pop(job_id, None) is not None

    def delete(self, job_id: str) -> bool:
        with self._lock:
            self._artifacts.pop(job_id, None)
            return self._jobs.pop(job_id, None) is not None

    @property
    def job_count(self) -> int:
        with self._lock:
            return len(self._jobs)

    @property
    def artifact_count(self) -> int:
        with self._lock:
            return len(self._artifacts)

    def get_all_jobs(self) -> List[DownloadJob]:
        with self._lock:
            return [copy.copy(job) for job in self._jobs.values()]

    def clear(self) -> None:
        with self._lock:
            self._jobs.clear()
            self._artifacts.clear()

    def evict_expired(self, max_age_seconds: float, now: Optional[float] = None) -> int:
        """Drop finished jobs (and their artifacts) that completed before the cutoff"""
        cutoff = (now if now is not None else time.time()) - max_age_seconds
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.is_terminal and job.completed_at is not None and job.completed_at < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
                self._artifacts.pop(job_id, None)

        if expired:
            logger.info("Evicted expired jobs", count=len(expired))
        return len(expired)
