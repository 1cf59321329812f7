import pytest

from config.config import DownloadSettings
from services.job_store import JobStore
from workers.job_queue import JobQueue


@pytest.fixture
def settings() -> DownloadSettings:
    return DownloadSettings(
        max_concurrent_downloads=2,
        max_parallel_jobs=2,
        min_delay_between_downloads_ms=0,
        download_timeout_seconds=1,
        enable_retry=True,
        max_retry_attempts=3,
        retry_delay_milliseconds=0,
        shutdown_grace_seconds=0.1,
    )


@pytest.fixture
def store() -> JobStore:
    return JobStore()


@pytest.fixture
def queue() -> JobQueue:
    return JobQueue()
