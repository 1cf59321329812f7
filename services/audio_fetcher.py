import asyncio
import shutil
import subprocess
import threading
import time
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, TypeVar

import httpx
import yt_dlp
from yt_dlp.utils import DownloadError, ExtractorError

from config.config import AudioSettings, YouTubeSettings
from config.constants import ABORT_POLL_SECONDS, DOWNLOAD_PROGRESS_SHARE, FFMPEG_TIMEOUT_SECONDS
from config.logger import get_logger
from models.track import TrackMetadata
from services.proxies import NullProxyProvider, ProxyProvider
from utils.exceptions import DownloadCancelledError, FetchError, ValidationError

logger = get_logger(__name__)

ProgressCallback = Callable[[float], None]
T = TypeVar("T")


class AudioFetcher(Protocol):
    async def fetch(
        self, query: str, track: TrackMetadata, on_progress: ProgressCallback
    ) -> bytes: ...


def backoff_delay(base_seconds: float, failed_attempt: int, exponential: bool) -> float:
    """Delay to wait after the given (1-based) attempt failed"""
    if exponential:
        return base_seconds * (2 ** (failed_attempt - 1))
    return base_seconds


class YoutubeAudioFetcher:
    """Finds a track on YouTube, downloads its audio and tags it as MP3.

    yt-dlp and ffmpeg block, so they run in worker threads. Progress from those
    threads is handed back to the event loop before the callback runs. A
    cancelled fetch does not return until its worker thread has stopped, so
    the working directory is never removed under a running download.
    """

    def __init__(
        self,
        youtube: Optional[YouTubeSettings] = None,
        audio: Optional[AudioSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        proxies: Optional[ProxyProvider] = None,
    ):
        self.youtube = youtube or YouTubeSettings()
        self.audio = audio or AudioSettings()
        self.working_dir = Path(self.youtube.working_dir)
        self.proxies = proxies or NullProxyProvider()
        self._http_client = http_client
        self._owns_http_client = http_client is None

    def _get_base_ydl_opts(self) -> Dict[str, Any]:
        opts = {
            "quiet": True,
            "no_warnings": True,
            "noprogress": True,
            "socket_timeout": self.youtube.socket_timeout_seconds,
        }
        proxy = self.proxies.get_proxy()
        if proxy:
            opts["proxy"] = proxy
        return opts

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=30.0, follow_redirects=True)
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def _run_blocking(
        self, func: Callable[..., T], *args: Any, abort: Optional[threading.Event] = None
    ) -> T:
        """Run a blocking step in a thread; on cancel, signal it and wait for it to exit"""
        worker = asyncio.get_running_loop().run_in_executor(None, func, *args)
        try:
            return await asyncio.shield(worker)
        except asyncio.CancelledError:
            if abort is not None:
                abort.set()
            await asyncio.wait({worker})
            if not worker.cancelled() and worker.exception() is not None:
                logger.debug("Abandoned step stopped", error=str(worker.exception()))
            raise

    async def fetch(
        self, query: str, track: TrackMetadata, on_progress: ProgressCallback
    ) -> bytes:
        if not query or not query.strip():
            raise ValidationError("Search query cannot be empty")

        loop = asyncio.get_running_loop()
        abort = threading.Event()

        def report(percentage: float) -> None:
            if not abort.is_set():
                loop.call_soon_threadsafe(on_progress, percentage)

        job_dir = self.working_dir / uuid.uuid4().hex
        job_dir.mkdir(parents=True, exist_ok=True)

        try:
            logger.info("Starting YouTube download", query=query, track=track.name)
            video_url = await self._resolve_video(query)
            audio_file = await self._run_blocking(
                self._download_audio, video_url, job_dir, report, abort, abort=abort
            )
            cover_file = await self._download_cover(track, job_dir)
            tagged_file = await self._run_blocking(
                self._tag_audio, audio_file, track, cover_file, job_dir, abort, abort=abort
            )
            on_progress(100.0)
            content = tagged_file.read_bytes()
            logger.info("Downloaded and converted track", track=track.name, size=len(content))
            return content
        except asyncio.CancelledError:
            abort.set()
            logger.warning("Download was cancelled", query=query)
            raise
        finally:
            shutil.rmtree(job_dir, ignore_errors=True)

    async def _resolve_video(self, query: str) -> str:
        """Find the first search result, retrying transient extractor failures"""
        max_retries = self.youtube.max_retries
        base_delay = self.youtube.retry_delay_milliseconds / 1000

        for attempt in range(1, max_retries + 1):
            try:
                return await self._run_blocking(self._search_video, query)
            except FetchError as e:
                if attempt == max_retries:
                    raise
                delay = backoff_delay(base_delay, attempt, self.youtube.use_exponential_backoff)
                logger.warning(
                    "Video lookup failed, retrying",
                    attempt=attempt,
                    max_retries=max_retries,
                    delay=delay,
                    error=str(e),
                )
                await asyncio.sleep(delay)

        raise FetchError("Failed to find a video after all retry attempts")

    def _search_video(self, query: str) -> str:
        try:
            with yt_dlp.YoutubeDL({**self._get_base_ydl_opts(), "extract_flat": True}) as ydl:
                search_results = ydl.extract_info(f"ytsearch1:{query}", download=False)
        except (DownloadError, ExtractorError) as e:
            raise FetchError(f"YouTube search failed: {str(e)}") from e

        entries = (search_results or {}).get("entries") or []
        if not entries:
            raise FetchError(f"No video found for query: {query}")

        first_entry = entries[0]
        video_url = first_entry.get("webpage_url") or first_entry.get("url")
        if not video_url and first_entry.get("id"):
            video_url = f"https://www.youtube.com/watch?v={first_entry['id']}"
        if not video_url:
            raise FetchError(f"Search result for '{query}' has no URL")
        return video_url

    def _download_audio(
        self,
        video_url: str,
        job_dir: Path,
        report: ProgressCallback,
        abort: threading.Event,
    ) -> Path:
        def progress_hook(status: Dict[str, Any]) -> None:
            if abort.is_set():
                raise DownloadCancelledError("Download was cancelled")
            if status.get("status") != "downloading":
                return
            total = status.get("total_bytes") or status.get("total_bytes_estimate")
            if total:
                downloaded = status.get("downloaded_bytes") or 0
                report(min(downloaded / total, 1.0) * DOWNLOAD_PROGRESS_SHARE)

        def postprocessor_hook(_status: Dict[str, Any]) -> None:
            if abort.is_set():
                raise DownloadCancelledError("Download was cancelled")

        ydl_opts = {
            **self._get_base_ydl_opts(),
            "format": "bestaudio[ext=webm]/bestaudio[ext=m4a]/bestaudio",
            "outtmpl": str(job_dir / "source.%(ext)s"),
            "progress_hooks": [progress_hook],
            "postprocessor_hooks": [postprocessor_hook],
            "postprocessors": [
                {
                    "key": "FFmpegExtractAudio",
                    "preferredcodec": "mp3",
                    "preferredquality": str(self.audio.bitrate),
                }
            ],
        }

        try:
            with yt_dlp.YoutubeDL(ydl_opts) as ydl:
                ydl.download([video_url])
        except (DownloadError, ExtractorError) as e:
            if abort.is_set():
                raise DownloadCancelledError("Download was cancelled") from e
            raise FetchError(f"YouTube download failed: {str(e)}") from e
        except OSError as e:
            raise FetchError(f"File system error during download: {str(e)}") from e

        audio_file = job_dir / "source.mp3"
        if not audio_file.exists():
            available_files = [f.name for f in job_dir.iterdir() if f.is_file()]
            raise FetchError(f"Converted audio not found. Found files: {available_files}")
        return audio_file

    async def _download_cover(self, track: TrackMetadata, job_dir: Path) -> Optional[Path]:
        if not self.audio.embed_album_art or not track.cover_url:
            return None

        try:
            client = await self._get_http_client()
            response = await client.get(track.cover_url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("Failed to download cover image, continuing without it", error=str(e))
            return None

        cover_file = job_dir / "cover.jpg"
        cover_file.write_bytes(response.content)
        return cover_file

    def build_ffmpeg_command(
        self, source: Path, target: Path, track: TrackMetadata, cover_file: Optional[Path]
    ) -> List[str]:
        command = ["ffmpeg", "-y", "-loglevel", "error", "-i", str(source)]
        if cover_file is not None:
            command += ["-i", str(cover_file), "-map", "0:a", "-map", "1:v", "-c:v", "copy"]
            command += ["-metadata:s:v", "title=Album cover"]
            command += ["-metadata:s:v", "comment=Cover (front)", "-disposition:v:0", "attached_pic"]

        command += ["-c:a", "libmp3lame", "-b:a", f"{self.audio.bitrate}k"]
        if self.audio.sample_rate > 0:
            command += ["-ar", str(self.audio.sample_rate)]
        if self.audio.normalize_audio:
            command += ["-af", "loudnorm"]

        command += ["-id3v2_version", "3"]
        command += ["-metadata", f"title={track.name}"]
        command += ["-metadata", f"album={track.album}"]
        command += ["-metadata", f"artist={track.artist_line}"]
        if track.duration_ms > 0:
            duration = timedelta(milliseconds=track.duration_ms)
            command += ["-metadata", f"duration={duration}"]

        command.append(str(target))
        return command

    def _tag_audio(
        self,
        source: Path,
        track: TrackMetadata,
        cover_file: Optional[Path],
        job_dir: Path,
        abort: threading.Event,
    ) -> Path:
        target = job_dir / "tagged.mp3"
        command = self.build_ffmpeg_command(source, target, track, cover_file)
        try:
            process = subprocess.Popen(command, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)
        except OSError as e:
            raise FetchError(f"Failed to convert audio: {str(e)}") from e

        deadline = time.monotonic() + FFMPEG_TIMEOUT_SECONDS
        while True:
            try:
                _, stderr = process.communicate(timeout=ABORT_POLL_SECONDS)
                break
            except subprocess.TimeoutExpired:
                if abort.is_set():
                    process.kill()
                    process.communicate()
                    raise DownloadCancelledError("Audio conversion was cancelled")
                if time.monotonic() >= deadline:
                    process.kill()
                    process.communicate()
                    raise FetchError(
                        f"Failed to convert audio: ffmpeg timed out after {FFMPEG_TIMEOUT_SECONDS} seconds"
                    )

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip() if stderr else ""
            raise FetchError(
                f"Failed to convert audio: {message or f'ffmpeg exited with code {process.returncode}'}"
            )
        return target
