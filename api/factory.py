import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config.config import Config
from config.logger import get_logger
from services.audio_fetcher import YoutubeAudioFetcher
from services.catalog import create_spotify_catalog
from services.dependencies import services
from services.downloads import DownloadService
from services.job_store import JobStore
from services.progress import ProgressReporter, create_progress_sink
from services.proxies import WebshareProxyProvider, create_proxy_provider
from utils.exceptions import ProxyError
from workers.batch_processor import DownloadProcessor
from workers.dispatcher import DownloadDispatcher
from workers.job_queue import JobQueue

logger = get_logger(__name__)


def setup_services(config: Config) -> None:
    """Wire the in-memory pipeline into the shared service container"""
    downloads = config.downloads
    progress = config.progress

    services.store = JobStore()
    services.queue = JobQueue()
    services.proxies = create_proxy_provider(config.proxy)
    services.fetcher = YoutubeAudioFetcher(config.youtube, config.audio, proxies=services.proxies)
    services.reporter = ProgressReporter(
        create_progress_sink(progress.webhook_url, progress.webhook_secret),
        update_interval_ms=progress.update_interval_ms,
        enabled=progress.enabled,
    )

    if config.spotify.configured:
        services.catalog = create_spotify_catalog(config.spotify)
    else:
        services.catalog = None
        logger.warning("Spotify credentials not configured - catalog endpoints disabled")

    processor = DownloadProcessor(services.store, services.fetcher, downloads, services.reporter)
    services.dispatcher = DownloadDispatcher(
        services.queue,
        processor,
        max_parallel_jobs=downloads.max_parallel_jobs,
        shutdown_grace_seconds=downloads.shutdown_grace_seconds,
    )
    services.downloads = DownloadService(
        services.store, services.queue, services.catalog, services.dispatcher
    )
    logger.info(
        "Services initialized",
        max_parallel_jobs=downloads.max_parallel_jobs,
        max_concurrent_downloads=downloads.max_concurrent_downloads,
        webhook_enabled=bool(progress.webhook_url),
    )


async def run_eviction_loop(store: JobStore, ttl_seconds: int, interval_seconds: int) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        store.evict_expired(ttl_seconds)


def configure_middleware(app: FastAPI, _config) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )


def create_lifespan_manager(config: Config):
    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        # Startup
        setup_services(config)

        if services.catalog:
            await services.catalog.tokens.start()

        if isinstance(services.proxies, WebshareProxyProvider):
            try:
                await services.proxies.refresh()
            except ProxyError as e:
                logger.error("Proxy list unavailable, using direct connections", error=str(e))

        services.dispatcher.start()

        eviction_task: Optional[asyncio.Task] = None
        downloads = config.downloads
        if downloads.job_ttl_seconds > 0:
            eviction_task = asyncio.create_task(
                run_eviction_loop(
                    services.store, downloads.job_ttl_seconds, downloads.cleanup_interval
                )
            )
            logger.info(
                "Job eviction enabled",
                ttl_seconds=downloads.job_ttl_seconds,
                interval_seconds=downloads.cleanup_interval,
            )

        # Shutdown
        yield

        if eviction_task is not None:
            eviction_task.cancel()
            try:
                await eviction_task
            except asyncio.CancelledError:
                pass

        await services.close(downloads.shutdown_grace_seconds)

    return lifespan


def create_base_app(config: Config) -> FastAPI:
    return FastAPI(
        version="1.0.0",
        title="Track Downloader API",
        description="API for downloading catalog tracks, albums and artists as MP3 files",
        docs_url="/docs" if config.debug else None,
        redoc_url="/redoc" if config.debug else None,
    )
