import dataclasses
import time
from typing import Dict, Literal, Optional
from urllib.parse import quote

from fastapi import FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from config.logger import get_logger
from models.request import (
    AlbumResponse,
    ArtistResponse,
    CatalogDownloadRequest,
    DownloadRequest,
    JobStatusResponse,
    SubmittedJobResponse,
    TrackPayload,
)
from services.catalog import SpotifyCatalog
from services.dependencies import CatalogDep, DispatcherDep, DownloadServiceDep, JobStoreDep, QueueDep
from services.downloads import DownloadService, JobStatusView, SubmittedJob
from services.job_store import JobStore
from utils.exceptions import (
    CatalogError,
    DownloadServiceError,
    FetchTimeoutError,
    JobNotReadyError,
    NotFoundError,
    ServiceUnavailableError,
    ValidationError,
)
from workers.dispatcher import DownloadDispatcher
from workers.job_queue import JobQueue

logger = get_logger(__name__)


class HealthResponse(BaseModel):
    status: str
    timestamp: float
    queue_length: int
    active_jobs: int
    stored_jobs: int
    services: Dict[str, bool]


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


def register_error_handlers(app: FastAPI):
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(_: Request, exc: ValidationError):
        return _error(status.HTTP_400_BAD_REQUEST, exc)

    @app.exception_handler(JobNotReadyError)
    async def job_not_ready_handler(_: Request, exc: JobNotReadyError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"error": str(exc), "status": exc.status},
        )

    @app.exception_handler(NotFoundError)
    async def not_found_handler(_: Request, exc: NotFoundError):
        return _error(status.HTTP_404_NOT_FOUND, exc)

    @app.exception_handler(FetchTimeoutError)
    async def timeout_handler(_: Request, exc: FetchTimeoutError):
        return _error(status.HTTP_504_GATEWAY_TIMEOUT, exc)

    @app.exception_handler(CatalogError)
    async def catalog_error_handler(_: Request, exc: CatalogError):
        return _error(status.HTTP_502_BAD_GATEWAY, exc)

    @app.exception_handler(ServiceUnavailableError)
    async def service_unavailable_handler(_: Request, exc: ServiceUnavailableError):
        return _error(status.HTTP_503_SERVICE_UNAVAILABLE, exc)

    @app.exception_handler(DownloadServiceError)
    async def service_error_handler(_: Request, exc: DownloadServiceError):
        logger.error("Download service error", error=str(exc), kind=exc.kind.value)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, exc)

    @app.exception_handler(ValueError)
    async def value_error_handler(_: Request, exc: ValueError):
        return _error(status.HTTP_400_BAD_REQUEST, exc)

    @app.exception_handler(Exception)
    async def general_exception_handler(_: Request, exc: Exception):
        logger.error("Unexpected error", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"},
        )


def _content_disposition(filename: str) -> str:
    fallback = filename.encode("ascii", "replace").decode("ascii").replace('"', "_")
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename)}"


def _submitted(job: SubmittedJob) -> SubmittedJobResponse:
    return SubmittedJobResponse(job_id=job.job_id, status=job.status, message=job.message)


def _status(view: JobStatusView) -> JobStatusResponse:
    return JobStatusResponse(**dataclasses.asdict(view))


def _require(dependency, name: str):
    if dependency is None:
        raise ServiceUnavailableError(f"{name} is not available")
    return dependency


def register_routes(app: FastAPI, config):
    async def _verify_api_key(request: Request):
        if not config.api_secret_key:
            return

        authorization = request.headers.get("Authorization")
        if not authorization or not authorization.startswith("Bearer "):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing API key",
                headers={"WWW-Authenticate": "Bearer"},
            )

        token = authorization.replace("Bearer ", "")
        if not token or token != config.api_secret_key:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid or missing API key",
                headers={"WWW-Authenticate": "Bearer"},
            )

    @app.post(
        "/api/downloads/track",
        status_code=status.HTTP_202_ACCEPTED,
        response_model=SubmittedJobResponse,
    )
    async def download_track(
        request: Request,
        body: CatalogDownloadRequest,
        downloads: Optional[DownloadService] = DownloadServiceDep,
    ):
        await _verify_api_key(request)
        service = _require(downloads, "Download service")
        return _submitted(await service.submit_track(body.spotify_id, body.owner_ref))

    @app.post(
        "/api/downloads/album",
        status_code=status.HTTP_202_ACCEPTED,
        response_model=SubmittedJobResponse,
    )
    async def download_album(
        request: Request,
        body: CatalogDownloadRequest,
        downloads: Optional[DownloadService] = DownloadServiceDep,
    ):
        await _verify_api_key(request)
        service = _require(downloads, "Download service")
        return _submitted(await service.submit_album(body.spotify_id, body.owner_ref))

    @app.post(
        "/api/downloads/artist",
        status_code=status.HTTP_202_ACCEPTED,
        response_model=SubmittedJobResponse,
    )
    async def download_artist(
        request: Request,
        body: CatalogDownloadRequest,
        downloads: Optional[DownloadService] = DownloadServiceDep,
    ):
        await _verify_api_key(request)
        service = _require(downloads, "Download service")
        return _submitted(await service.submit_artist(body.spotify_id, body.owner_ref))

    @app.post(
        "/api/downloads",
        status_code=status.HTTP_202_ACCEPTED,
        response_model=SubmittedJobResponse,
    )
    async def submit_download(
        request: Request,
        body: DownloadRequest,
        downloads: Optional[DownloadService] = DownloadServiceDep,
    ):
        await _verify_api_key(request)
        service = _require(downloads, "Download service")
        tracks = [track.to_metadata() for track in body.tracks]
        job_id = service.submit(body.item_kind, tracks, body.owner_ref)
        return SubmittedJobResponse(
            job_id=job_id,
            status="Queued",
            message=f"Download job created for {len(tracks)} track{'s' if len(tracks) != 1 else ''}",
        )

    @app.get("/api/downloads/{job_id}", response_model=JobStatusResponse)
    async def get_download_status(
        request: Request, job_id: str, downloads: Optional[DownloadService] = DownloadServiceDep
    ):
        await _verify_api_key(request)
        service = _require(downloads, "Download service")
        return _status(service.get_status(job_id))

    @app.get("/api/downloads/{job_id}/file")
    async def download_file(
        request: Request, job_id: str, downloads: Optional[DownloadService] = DownloadServiceDep
    ):
        await _verify_api_key(request)
        service = _require(downloads, "Download service")
        artifact = service.get_artifact(job_id)
        return Response(
            content=artifact.content,
            media_type=artifact.media_type,
            headers={"Content-Disposition": _content_disposition(artifact.filename)},
        )

    @app.delete(
        "/api/downloads/{job_id}",
        status_code=status.HTTP_202_ACCEPTED,
        response_model=JobStatusResponse,
    )
    async def cancel_download(
        request: Request, job_id: str, downloads: Optional[DownloadService] = DownloadServiceDep
    ):
        await _verify_api_key(request)
        service = _require(downloads, "Download service")
        return _status(service.cancel(job_id))

    @app.get("/api/spotify/search")
    async def search_catalog(
        request: Request,
        q: str = Query(..., min_length=1, max_length=200),
        type: Literal["track", "album", "artist"] = "track",  # pylint: disable=redefined-builtin
        limit: int = Query(20, ge=1, le=50),
        catalog: Optional[SpotifyCatalog] = CatalogDep,
    ):
        await _verify_api_key(request)
        catalog = _require(catalog, "Spotify catalog")

        if type == "album":
            items = [AlbumResponse.from_metadata(a) for a in await catalog.search_albums(q, limit)]
        elif type == "artist":
            items = [ArtistResponse.from_metadata(a) for a in await catalog.search_artists(q, limit)]
        else:
            items = [TrackPayload.from_metadata(t) for t in await catalog.search_tracks(q, limit)]

        return {"type": type, "query": q, "items": items}

    @app.get("/api/spotify/tracks/{track_id}", response_model=TrackPayload)
    async def get_catalog_track(
        request: Request, track_id: str, catalog: Optional[SpotifyCatalog] = CatalogDep
    ):
        await _verify_api_key(request)
        catalog = _require(catalog, "Spotify catalog")
        return TrackPayload.from_metadata(await catalog.get_track(track_id))

    @app.get("/api/spotify/albums/{album_id}", response_model=AlbumResponse)
    async def get_catalog_album(
        request: Request, album_id: str, catalog: Optional[SpotifyCatalog] = CatalogDep
    ):
        await _verify_api_key(request)
        catalog = _require(catalog, "Spotify catalog")
        return AlbumResponse.from_metadata(await catalog.get_album(album_id))

    @app.get("/api/spotify/artists/{artist_id}", response_model=ArtistResponse)
    async def get_catalog_artist(
        request: Request, artist_id: str, catalog: Optional[SpotifyCatalog] = CatalogDep
    ):
        await _verify_api_key(request)
        catalog = _require(catalog, "Spotify catalog")
        return ArtistResponse.from_metadata(await catalog.get_artist(artist_id))

    @app.get("/health", response_model=HealthResponse)
    async def health_check(
        store: Optional[JobStore] = JobStoreDep,
        queue: Optional[JobQueue] = QueueDep,
        dispatcher: Optional[DownloadDispatcher] = DispatcherDep,
        catalog: Optional[SpotifyCatalog] = CatalogDep,
    ):
        return HealthResponse(
            status="healthy" if dispatcher is not None and dispatcher.is_running else "degraded",
            timestamp=time.time(),
            queue_length=len(queue) if queue is not None else 0,
            active_jobs=dispatcher.active_count if dispatcher is not None else 0,
            stored_jobs=store.job_count if store is not None else 0,
            services={
                "dispatcher_running": dispatcher is not None and dispatcher.is_running,
                "spotify_configured": catalog is not None,
            },
        )
