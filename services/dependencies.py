from typing import Optional

from fastapi import Depends

from services.audio_fetcher import YoutubeAudioFetcher
from services.catalog import SpotifyCatalog
from services.downloads import DownloadService
from services.job_store import JobStore
from services.progress import ProgressReporter
from services.proxies import ProxyProvider, WebshareProxyProvider
from workers.dispatcher import DownloadDispatcher
from workers.job_queue import JobQueue


class Services:
    def __init__(self):
        self.store: Optional[JobStore] = None
        self.queue: Optional[JobQueue] = None
        self.catalog: Optional[SpotifyCatalog] = None
        self.fetcher: Optional[YoutubeAudioFetcher] = None
        self.proxies: Optional[ProxyProvider] = None
        self.reporter: Optional[ProgressReporter] = None
        self.dispatcher: Optional[DownloadDispatcher] = None
        self.downloads: Optional[DownloadService] = None

    async def close(self, grace_seconds: Optional[float] = None):
        """Stop the dispatcher first, then release the clients the jobs were using"""
        if self.dispatcher:
            await self.dispatcher.stop(grace_seconds)
        if self.reporter:
            await self.reporter.aclose()
        if self.fetcher:
            await self.fetcher.close()
        if isinstance(self.proxies, WebshareProxyProvider):
            await self.proxies.aclose()
        if self.catalog:
            await self.catalog.aclose()


services = Services()


DownloadServiceDep = Depends(lambda: services.downloads)
CatalogDep = Depends(lambda: services.catalog)
JobStoreDep = Depends(lambda: services.store)
QueueDep = Depends(lambda: services.queue)
DispatcherDep = Depends(lambda: services.dispatcher)
