import asyncio
from typing import Any, Callable, Dict, List, Optional

import httpx

from config.config import SpotifySettings
from config.constants import ARTIST_TOP_TRACKS_LIMIT, SPOTIFY_SEARCH_LIMIT, TOKEN_REFRESH_RETRY_SECONDS
from config.logger import get_logger
from models.track import (
    AlbumMetadata,
    ArtistMetadata,
    TrackMetadata,
    TrackShape,
    map_album,
    map_artist,
    map_track,
)
from utils.exceptions import CatalogError, NotFoundError, ValidationError

logger = get_logger(__name__)

SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_URL = "https://api.spotify.com/v1"
MAX_SEARCH_LIMIT = 50


class SpotifyTokenProvider:
    """Owns the client-credentials access token and keeps it fresh.

    After every refresh the next deadline is recomputed: ``expires_in`` minus
    the configured buffer on success, a fixed retry delay on failure. The
    background task is started by start() and stopped by aclose().
    """

    def __init__(
        self,
        settings: SpotifySettings,
        http_client: Optional[httpx.AsyncClient] = None,
        token_url: str = SPOTIFY_TOKEN_URL,
    ):
        self.settings = settings
        self.token_url = token_url
        self._client = http_client or httpx.AsyncClient(timeout=30.0)
        self._owns_client = http_client is None
        self._access_token: Optional[str] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self.next_refresh_in: Optional[float] = None

    @property
    def has_token(self) -> bool:
        return self._access_token is not None

    async def start(self) -> None:
        if self._refresh_task is not None:
            return
        delay = await self._refresh_or_retry()
        self._refresh_task = asyncio.create_task(self._refresh_loop(delay))
        logger.info("Spotify token refresher started", next_refresh_in=delay)

    async def _refresh_loop(self, delay: float) -> None:
        while True:
            await asyncio.sleep(delay)
            delay = await self._refresh_or_retry()

    async def _refresh_or_retry(self) -> float:
        try:
            expires_in = await self.refresh()
        except CatalogError as e:
            logger.error("Spotify token refresh failed", error=str(e))
            self.next_refresh_in = float(TOKEN_REFRESH_RETRY_SECONDS)
        else:
            self.next_refresh_in = float(
                max(expires_in - self.settings.token_refresh_buffer_seconds, 1)
            )
        return self.next_refresh_in

    async def refresh(self) -> int:
        """Fetch a new access token and return its lifetime in seconds"""
        if not self.settings.configured:
            raise CatalogError("Spotify credentials are not configured")

        async with self._lock:
            try:
                response = await self._client.post(
                    self.token_url,
                    data={"grant_type": "client_credentials"},
                    auth=(self.settings.client_id, self.settings.client_secret),
                )
                response.raise_for_status()
                payload = response.json()
            except httpx.HTTPError as e:
                raise CatalogError(f"Failed to obtain Spotify access token: {str(e)}") from e
            except ValueError as e:
                raise CatalogError("Spotify token response was not valid JSON") from e

            token = payload.get("access_token")
            if not token:
                raise CatalogError("Spotify token response did not contain an access token")

            self._access_token = token
            expires_in = int(payload.get("expires_in") or 3600)
            logger.debug("Spotify token refreshed", expires_in=expires_in)
            return expires_in

    async def token(self) -> str:
        if self._access_token is None:
            await self.refresh()
        return self._access_token

    def invalidate(self) -> None:
        self._access_token = None

    async def aclose(self) -> None:
        if self._refresh_task is not None:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None
        if self._owns_client:
            await self._client.aclose()


class SpotifyCatalog:
    """Read-only lookups against the Spotify Web API"""

    def __init__(
        self,
        tokens: SpotifyTokenProvider,
        market: str = "US",
        http_client: Optional[httpx.AsyncClient] = None,
        base_url: str = SPOTIFY_API_URL,
    ):
        self.tokens = tokens
        self.market = market
        self.base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=30.0)
        self._owns_client = http_client is None

    async def aclose(self) -> None:
        await self.tokens.aclose()
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, url: str, params: Optional[Dict[str, Any]], not_found: str) -> Dict[str, Any]:
        for attempt in range(2):
            headers = {"Authorization": f"Bearer {await self.tokens.token()}"}
            try:
                response = await self._client.get(url, params=params, headers=headers)
            except httpx.HTTPError as e:
                logger.error("Spotify request failed", url=url, error=str(e))
                raise CatalogError(f"Spotify request failed: {str(e)}") from e

            # an expired token gets one fresh attempt
            if response.status_code == 401 and attempt == 0:
                self.tokens.invalidate()
                continue
            break

        if response.status_code in (400, 404):
            logger.warning("Spotify resource not found", url=url, status_code=response.status_code)
            raise NotFoundError(not_found)
        if response.is_error:
            logger.error("Spotify request rejected", url=url, status_code=response.status_code)
            raise CatalogError(f"Spotify request failed with status {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise CatalogError("Spotify response was not valid JSON") from e

    async def _get(self, path: str, not_found: str, **params: Any) -> Dict[str, Any]:
        return await self._request(f"{self.base_url}/{path}", params or None, not_found)

    @staticmethod
    def _require(value: str, what: str) -> str:
        if not value or not value.strip():
            raise ValidationError(f"{what} cannot be empty")
        return value.strip()

    async def get_track(self, track_id: str) -> TrackMetadata:
        track_id = self._require(track_id, "Track ID")
        payload = await self._get(f"tracks/{track_id}", f"Track with ID {track_id} was not found")
        return map_track(TrackShape.FULL_TRACK, payload)

    async def get_album(self, album_id: str) -> AlbumMetadata:
        """Album metadata with its complete track listing (all pages)"""
        album_id = self._require(album_id, "Album ID")
        not_found = f"Album with ID {album_id} was not found"
        payload = await self._get(f"albums/{album_id}", not_found)

        page = payload.get("tracks") or {}
        items: List[Dict[str, Any]] = list(page.get("items") or [])
        next_url = page.get("next")
        while next_url:
            page = await self._request(next_url, None, not_found)
            items.extend(page.get("items") or [])
            next_url = page.get("next")

        album = map_album(payload, items)
        logger.info("Fetched album", album_id=album_id, track_count=len(album.tracks))
        return album

    async def get_artist(self, artist_id: str) -> ArtistMetadata:
        artist_id = self._require(artist_id, "Artist ID")
        payload = await self._get(f"artists/{artist_id}", f"Artist with ID {artist_id} was not found")
        return map_artist(payload)

    async def get_artist_top_tracks(
        self, artist_id: str, limit: int = ARTIST_TOP_TRACKS_LIMIT
    ) -> List[TrackMetadata]:
        artist_id = self._require(artist_id, "Artist ID")
        payload = await self._get(
            f"artists/{artist_id}/top-tracks",
            f"Artist with ID {artist_id} was not found",
            market=self.market,
        )
        limit = min(max(limit, 0), ARTIST_TOP_TRACKS_LIMIT)
        tracks = [
            map_track(TrackShape.FULL_TRACK, item)
            for item in payload.get("tracks") or []
            if item and item.get("id")
        ][:limit]
        if not tracks:
            logger.warning("No top tracks found for artist", artist_id=artist_id)
        return tracks

    async def _search(
        self, query: str, item_type: str, limit: int, mapper: Callable[[Dict[str, Any]], Any]
    ) -> List[Any]:
        query = self._require(query, "Search query")
        payload = await self._get(
            "search",
            "Search returned no results",
            q=query,
            type=item_type,
            limit=min(max(limit, 1), MAX_SEARCH_LIMIT),
        )
        items = (payload.get(f"{item_type}s") or {}).get("items") or []
        return [mapper(item) for item in items if item and item.get("id")]

    async def search_tracks(self, query: str, limit: int = SPOTIFY_SEARCH_LIMIT) -> List[TrackMetadata]:
        return await self._search(
            query, "track", limit, lambda item: map_track(TrackShape.FULL_TRACK, item)
        )

    async def search_albums(self, query: str, limit: int = SPOTIFY_SEARCH_LIMIT) -> List[AlbumMetadata]:
        return await self._search(query, "album", limit, map_album)

    async def search_artists(self, query: str, limit: int = SPOTIFY_SEARCH_LIMIT) -> List[ArtistMetadata]:
        return await self._search(query, "artist", limit, map_artist)


def create_spotify_catalog(settings: SpotifySettings) -> SpotifyCatalog:
    tokens = SpotifyTokenProvider(settings)
    return SpotifyCatalog(tokens, market=settings.market)
