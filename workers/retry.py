import asyncio
from typing import Optional

from config.config import DownloadSettings
from config.logger import get_logger
from models.track import TrackMetadata
from services.audio_fetcher import AudioFetcher, ProgressCallback, backoff_delay
from utils.exceptions import DownloadCancelledError, FetchTimeoutError, RetriesExhaustedError

logger = get_logger(__name__)


async def fetch_with_retry(
    fetcher: AudioFetcher,
    track: TrackMetadata,
    on_progress: ProgressCallback,
    settings: DownloadSettings,
) -> bytes:
    """Fetch one track, retrying failed or timed-out attempts.

    Every attempt gets a fresh deadline of ``download_timeout_seconds``. A
    timeout on the last attempt raises FetchTimeoutError; any other failure on
    the last attempt raises RetriesExhaustedError. Cancellation of the calling
    task is never retried.

    This retry counter is independent of whatever retrying the fetcher does
    internally (e.g. re-resolving a search result).
    """
    max_attempts = settings.attempts
    timeout = settings.download_timeout_seconds
    base_delay = settings.retry_delay_milliseconds / 1000
    last_error: Optional[BaseException] = None

    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            delay = backoff_delay(base_delay, attempt - 1, settings.retry_exponential_backoff)
            logger.info(
                "Retrying track download",
                track=track.name,
                attempt=attempt,
                max_attempts=max_attempts,
                delay=delay,
            )
            await asyncio.sleep(delay)

        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                content = await fetcher.fetch(track.search_query, track, on_progress)
        except TimeoutError as e:
            if not deadline.expired():
                last_error = e
                logger.warning(
                    "Track download attempt failed",
                    track=track.name,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(e),
                )
                continue

            if attempt == max_attempts:
                raise FetchTimeoutError(
                    f"Download timed out after {timeout:g} seconds", timeout_seconds=timeout
                ) from e

            last_error = e
            logger.warning(
                "Track download attempt timed out",
                track=track.name,
                attempt=attempt,
                max_attempts=max_attempts,
                timeout=timeout,
            )
        except DownloadCancelledError:
            raise
        except Exception as e:  # pylint: disable=broad-except
            last_error = e
            logger.warning(
                "Track download attempt failed",
                track=track.name,
                attempt=attempt,
                max_attempts=max_attempts,
                error=str(e),
                error_type=type(e).__name__,
            )
        else:
            if attempt > 1:
                logger.info("Track downloaded after retry", track=track.name, attempt=attempt)
            return content

    raise RetriesExhaustedError(max_attempts, last_error)
