import asyncio
import io
import zipfile
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from config.config import DownloadSettings
from config.constants import ARCHIVE_MANIFEST_NAME, ARCHIVE_MEDIA_TYPE, AUDIO_MEDIA_TYPE
from config.logger import get_logger
from models.job import DownloadJob
from models.track import TrackMetadata
from services.audio_fetcher import AudioFetcher
from services.job_store import Artifact, JobStore
from services.progress import ProgressReporter
from utils.exceptions import FetchError
from utils.filenames import sanitize_filename
from workers.retry import fetch_with_retry

logger = get_logger(__name__)


@dataclass(frozen=True)
class ItemOutcome:
    """Result of one item of a batch. Failures are data, not exceptions."""

    index: int
    track: TrackMetadata
    content: Optional[bytes] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.content is not None

    @property
    def number(self) -> int:
        return self.index + 1


def archive_entry_name(outcome: ItemOutcome) -> str:
    return f"{outcome.number:02d} - {sanitize_filename(outcome.track.name)}.mp3"


def build_error_manifest(
    failures: Sequence[ItemOutcome], generated_at: Optional[datetime] = None
) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    lines = [
        "Download Error Report",
        "=" * 50,
        "",
        f"Failed downloads: {len(failures)}",
        f"Generated: {generated_at:%Y-%m-%d %H:%M:%S} UTC",
        "",
    ]
    for failure in failures:
        lines.append(f"Track #{failure.number:02d}: {failure.track.name}")
        lines.append(f"  Artist: {failure.track.artist_line}")
        lines.append(f"  Error: {failure.error or 'Unknown error'}")
        lines.append("")
    return "\n".join(lines)


def build_archive(successes: Sequence[ItemOutcome], failures: Sequence[ItemOutcome]) -> bytes:
    """Zip the successful items in item order, plus a manifest when anything failed"""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=1) as archive:
        for outcome in sorted(successes, key=lambda o: o.index):
            archive.writestr(archive_entry_name(outcome), outcome.content)
        if failures:
            manifest = build_error_manifest(sorted(failures, key=lambda o: o.index))
            archive.writestr(ARCHIVE_MANIFEST_NAME, manifest)
    return buffer.getvalue()


class DownloadProcessor:
    """Runs one job from Processing to a terminal state.

    The processor works on its own copy of the job and is the only writer of
    that job while it runs: every progress change is applied to the copy and
    written back to the store. Exactly one of complete()/fail() is reached per
    job, including when the surrounding task is cancelled.
    """

    def __init__(
        self,
        store: JobStore,
        fetcher: AudioFetcher,
        settings: Optional[DownloadSettings] = None,
        reporter: Optional[ProgressReporter] = None,
    ):
        self.store = store
        self.fetcher = fetcher
        self.settings = settings or DownloadSettings()
        self.reporter = reporter or ProgressReporter()

    async def process(self, job_id: str) -> Optional[DownloadJob]:
        job = self.store.get(job_id)
        if job is None:
            logger.error("Job not found in store", job_id=job_id)
            return None

        if not job.start_processing():
            logger.warning("Job already started, skipping", job_id=job_id, status=job.status.value)
            return job

        logger.info("Starting job", job_id=job_id, track_count=job.total_count)
        self.store.update(job)
        self.reporter.publish(job, "Processing started", 0, force=True)

        try:
            if job.is_multi_item:
                artifact = await self._process_batch(job)
            else:
                artifact = await self._process_single(job)

            self.store.put_artifact(job.id, artifact)
            job.complete()
            self.store.update(job)
            self.reporter.completed(job, self._caption(job))
            logger.info("Job completed", job_id=job_id, filename=artifact.filename, size=artifact.size)
        except asyncio.CancelledError:
            logger.warning("Job was cancelled", job_id=job_id)
            self._finish_failed(job, "Job was cancelled", "Download was cancelled")
            raise
        except Exception as e:  # pylint: disable=broad-except
            logger.error("Error processing job", job_id=job_id, error=str(e), exc_info=True)
            message = str(e) or type(e).__name__
            self._finish_failed(job, message, message)

        return job

    def abandon(self, job_id: str, error_message: str = "Job was cancelled") -> Optional[DownloadJob]:
        """Fail a job whose task ended before process() could settle it.

        A task cancelled before its first step never runs process(), so the
        stored job would otherwise stay Pending. Terminal jobs are left alone.
        """
        job = self.store.get(job_id)
        if job is None or job.is_terminal:
            return job
        logger.warning("Job task ended before the job finished", job_id=job_id, status=job.status.value)
        self._finish_failed(job, error_message, "Download was cancelled")
        return job

    def _finish_failed(self, job: DownloadJob, error_message: str, notice: str) -> None:
        self.store.delete_artifact(job.id)
        if job.fail(error_message):
            self.store.update(job)
            self.reporter.failed(job, notice)

    @staticmethod
    def _caption(job: DownloadJob) -> str:
        if job.is_multi_item:
            return f"{job.item_kind.value.capitalize()}\n{job.total_count} tracks"
        track = job.items[0]
        return f"{track.name}\n{track.artist_line}"

    async def _process_single(self, job: DownloadJob) -> Artifact:
        track = job.items[0]
        logger.info("Downloading single track", job_id=job.id, track=track.name)

        def on_progress(percentage: float) -> None:
            if job.is_terminal:
                return
            job.update_progress(percentage, track.name)
            self.store.update(job)
            if self.settings.enable_detailed_progress:
                self.reporter.publish(job, f"Downloading: {track.name}", job.progress)

        content = await fetch_with_retry(self.fetcher, track, on_progress, self.settings)

        job.complete_item()
        self.store.update(job)
        return Artifact(
            content=content,
            filename=f"{sanitize_filename(track.name)}.mp3",
            media_type=AUDIO_MEDIA_TYPE,
        )

    async def _process_batch(self, job: DownloadJob) -> Artifact:
        concurrency = self.settings.max_concurrent_downloads
        logger.info(
            "Downloading tracks concurrently",
            job_id=job.id,
            track_count=job.total_count,
            max_concurrency=concurrency,
        )

        gate = asyncio.Semaphore(concurrency)
        outcomes: List[ItemOutcome] = await asyncio.gather(
            *(self._download_item(job, index, track, gate) for index, track in enumerate(job.items))
        )

        successes = [outcome for outcome in outcomes if outcome.success]
        failures = [outcome for outcome in outcomes if not outcome.success]
        logger.info(
            "Concurrent downloads finished",
            job_id=job.id,
            succeeded=len(successes),
            failed=len(failures),
            total=job.total_count,
        )

        if not successes:
            raise FetchError(
                f"All {job.total_count} items failed to download: {failures[0].error or 'Unknown error'}"
            )

        loop = asyncio.get_running_loop()
        content = await loop.run_in_executor(None, build_archive, successes, failures)
        return Artifact(
            content=content,
            filename=f"{job.item_kind.value}_{job.id.replace('-', '')}.zip",
            media_type=ARCHIVE_MEDIA_TYPE,
        )

    async def _download_item(
        self, job: DownloadJob, index: int, track: TrackMetadata, gate: asyncio.Semaphore
    ) -> ItemOutcome:
        total = job.total_count
        number = index + 1

        async with gate:
            if self.settings.min_delay_between_downloads_ms > 0 and index > 0:
                await asyncio.sleep(self.settings.min_delay_between_downloads_ms / 1000)

            logger.info("Processing track", job_id=job.id, number=number, total=total, track=track.name)
            job.update_progress(index / total * 100, track.name)
            self.store.update(job)
            if self.settings.enable_detailed_progress:
                self.reporter.publish(
                    job, f"Downloading: {track.name} ({number}/{total})", job.progress
                )

            def on_progress(percentage: float) -> None:
                if job.is_terminal:
                    return
                job.update_progress((index + percentage / 100) / total * 100, track.name)
                self.store.update(job)

            try:
                content = await fetch_with_retry(self.fetcher, track, on_progress, self.settings)
            except Exception as e:  # pylint: disable=broad-except
                logger.warning(
                    "Failed to download track",
                    job_id=job.id,
                    number=number,
                    track=track.name,
                    error=str(e),
                )
                outcome = ItemOutcome(index=index, track=track, error=str(e) or type(e).__name__)
            else:
                logger.info("Downloaded track", job_id=job.id, number=number, total=total, track=track.name)
                outcome = ItemOutcome(index=index, track=track, content=content)

        job.complete_item()
        self.store.update(job)
        return outcome
