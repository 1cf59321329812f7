from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Optional

from config.constants import ARTIST_TOP_TRACKS_LIMIT
from config.logger import get_logger
from models.job import DownloadJob, JobStatus
from models.track import ItemKind, TrackMetadata
from services.catalog import SpotifyCatalog
from services.job_store import Artifact, JobStore
from utils.exceptions import JobNotReadyError, NotFoundError, ServiceUnavailableError, ValidationError
from workers.job_queue import JobQueue

if TYPE_CHECKING:
    from workers.dispatcher import DownloadDispatcher

logger = get_logger(__name__)


@dataclass(frozen=True)
class SubmittedJob:
    job_id: str
    status: str
    message: str


@dataclass(frozen=True)
class JobStatusView:
    job_id: str
    item_kind: str
    status: str
    progress: float
    current_item_label: Optional[str]
    completed_count: int
    total_count: int
    error_message: Optional[str]
    created_at: float
    completed_at: Optional[float]

    @classmethod
    def from_job(cls, job: DownloadJob) -> "JobStatusView":
        return cls(
            job_id=job.id,
            item_kind=job.item_kind.value,
            status=job.status.value,
            progress=round(job.progress, 2),
            current_item_label=job.current_item_label,
            completed_count=job.completed_count,
            total_count=job.total_count,
            error_message=job.error_message,
            created_at=job.created_at,
            completed_at=job.completed_at,
        )


class DownloadService:
    """Entry point for submitting jobs and reading their status and results"""

    def __init__(
        self,
        store: JobStore,
        queue: JobQueue,
        catalog: Optional[SpotifyCatalog] = None,
        dispatcher: Optional["DownloadDispatcher"] = None,
    ):
        self.store = store
        self.queue = queue
        self.catalog = catalog
        self.dispatcher = dispatcher

    def submit(
        self,
        item_kind: ItemKind,
        tracks: Iterable[TrackMetadata],
        owner_ref: Optional[str] = None,
    ) -> str:
        # raises ValidationError before anything is stored
        job = DownloadJob.create(item_kind, tracks, owner_ref)
        self.store.put(job)
        self.queue.enqueue(job.id)
        logger.info(
            "Job submitted",
            job_id=job.id,
            item_kind=item_kind.value,
            track_count=job.total_count,
        )
        return job.id

    def _require_catalog(self) -> SpotifyCatalog:
        if self.catalog is None:
            raise ServiceUnavailableError("Spotify catalog is not configured")
        return self.catalog

    async def submit_track(self, spotify_id: str, owner_ref: Optional[str] = None) -> SubmittedJob:
        track = await self._require_catalog().get_track(spotify_id)
        job_id = self.submit(ItemKind.TRACK, [track], owner_ref)
        return SubmittedJob(job_id, "Queued", f"Download job created for track: {track.name}")

    async def submit_album(self, spotify_id: str, owner_ref: Optional[str] = None) -> SubmittedJob:
        album = await self._require_catalog().get_album(spotify_id)
        if not album.tracks:
            raise ValidationError("The album does not contain any tracks")
        job_id = self.submit(ItemKind.ALBUM, album.tracks, owner_ref)
        return SubmittedJob(
            job_id,
            "Queued",
            f"Download job created for album: {album.name} ({len(album.tracks)} tracks)",
        )

    async def submit_artist(self, spotify_id: str, owner_ref: Optional[str] = None) -> SubmittedJob:
        catalog = self._require_catalog()
        artist = await catalog.get_artist(spotify_id)
        top_tracks = await catalog.get_artist_top_tracks(artist.id, limit=ARTIST_TOP_TRACKS_LIMIT)
        if not top_tracks:
            raise ValidationError("The artist does not have any top tracks available")
        job_id = self.submit(ItemKind.ARTIST, top_tracks, owner_ref)
        return SubmittedJob(
            job_id,
            "Queued",
            f"Download job created for artist: {artist.name} ({len(top_tracks)} top tracks)",
        )

    def _get_job(self, job_id: str) -> DownloadJob:
        job = self.store.get(job_id)
        if job is None:
            raise NotFoundError(f"Download job with ID {job_id} was not found")
        return job

    def get_status(self, job_id: str) -> JobStatusView:
        return JobStatusView.from_job(self._get_job(job_id))

    def get_artifact(self, job_id: str) -> Artifact:
        job = self._get_job(job_id)
        if job.status != JobStatus.COMPLETED:
            raise JobNotReadyError(
                f"Download job {job_id} is {job.status.value}; no file is available",
                status=job.status.value,
            )
        try:
            return self.store.get_artifact(job_id)
        except NotFoundError as e:
            raise JobNotReadyError(str(e), status=job.status.value) from e

    def cancel(self, job_id: str) -> JobStatusView:
        """Cancel a queued or running job. Finished jobs are returned unchanged."""
        job = self._get_job(job_id)
        if job.is_terminal:
            return JobStatusView.from_job(job)

        if self.dispatcher is not None and self.dispatcher.cancel_job(job_id):
            # the job is marked Failed once its task unwinds
            return JobStatusView.from_job(job)

        if job.fail("Job was cancelled"):
            self.store.update(job)
            logger.info("Queued job cancelled", job_id=job_id)
        return JobStatusView.from_job(job)
