import asyncio

import httpx
import pytest
import pytest_asyncio

from config.config import SpotifySettings
from services.catalog import SPOTIFY_TOKEN_URL, SpotifyCatalog, SpotifyTokenProvider
from utils.exceptions import CatalogError, NotFoundError, ValidationError

API = "https://api.spotify.com/v1"


def _track(track_id, name="Song"):
    return {
        "id": track_id,
        "name": name,
        "duration_ms": 1000,
        "artists": [{"name": "Band"}],
        "album": {"name": "Record", "images": [{"url": "https://i/cover", "width": 640}]},
    }


class FakeSpotify:
    """Routes MockTransport requests to canned Spotify responses"""

    def __init__(self):
        self.requests = []
        self.tokens_issued = 0
        self.token_status = 200
        self.routes = {}

    def __call__(self, request):
        self.requests.append(request)
        url = str(request.url)
        if url == SPOTIFY_TOKEN_URL:
            if self.token_status != 200:
                return httpx.Response(self.token_status)
            self.tokens_issued += 1
            return httpx.Response(
                200, json={"access_token": f"token-{self.tokens_issued}", "expires_in": 3600}
            )

        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, json={"error": {"status": 404}})
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    @property
    def api_requests(self):
        return [r for r in self.requests if str(r.url) != SPOTIFY_TOKEN_URL]


@pytest.fixture
def spotify():
    return FakeSpotify()


@pytest_asyncio.fixture
async def client(spotify):
    async with httpx.AsyncClient(transport=httpx.MockTransport(spotify)) as http_client:
        yield http_client


@pytest.fixture
def spotify_settings():
    return SpotifySettings(client_id="id", client_secret="secret", token_refresh_buffer_seconds=60)


@pytest.fixture
def catalog(client, spotify_settings):
    tokens = SpotifyTokenProvider(spotify_settings, http_client=client)
    return SpotifyCatalog(tokens, market="GB", http_client=client)


@pytest.mark.asyncio
async def test_get_track_sends_bearer_token(catalog, spotify):
    spotify.routes["/v1/tracks/t1"] = _track("t1")

    track = await catalog.get_track("t1")

    assert track.name == "Song"
    assert track.cover_url == "https://i/cover"
    assert spotify.api_requests[0].headers["Authorization"] == "Bearer token-1"


@pytest.mark.asyncio
async def test_missing_track_raises_not_found(catalog):
    with pytest.raises(NotFoundError, match="Track with ID nope was not found"):
        await catalog.get_track("nope")


@pytest.mark.asyncio
async def test_server_error_raises_catalog_error(catalog, spotify):
    spotify.routes["/v1/tracks/t1"] = lambda request: httpx.Response(503)

    with pytest.raises(CatalogError):
        await catalog.get_track("t1")


@pytest.mark.asyncio
async def test_blank_ids_are_rejected_without_a_request(catalog, spotify):
    for lookup in (catalog.get_track, catalog.get_album, catalog.get_artist):
        with pytest.raises(ValidationError):
            await lookup("  ")

    with pytest.raises(ValidationError):
        await catalog.search_tracks("")

    assert spotify.requests == []


@pytest.mark.asyncio
async def test_album_follows_track_pages(catalog, spotify):
    spotify.routes["/v1/albums/a1"] = {
        "id": "a1",
        "name": "Record",
        "release_date": "2020-01-01",
        "total_tracks": 3,
        "artists": [{"name": "Band"}],
        "images": [{"url": "https://i/cover", "width": 640}],
        "tracks": {
            "items": [{"id": "t1", "name": "One", "artists": [{"name": "Band"}]}],
            "next": f"{API}/albums/a1/tracks?offset=1",
        },
    }
    spotify.routes["/v1/albums/a1/tracks"] = {
        "items": [
            {"id": "t2", "name": "Two", "artists": [{"name": "Band"}]},
            {"id": "t3", "name": "Three", "artists": [{"name": "Band"}]},
        ],
        "next": None,
    }

    album = await catalog.get_album("a1")

    assert [track.name for track in album.tracks] == ["One", "Two", "Three"]
    assert all(track.album == "Record" for track in album.tracks)
    assert all(track.cover_url == "https://i/cover" for track in album.tracks)


@pytest.mark.asyncio
async def test_artist_top_tracks_use_market_and_limit(catalog, spotify):
    spotify.routes["/v1/artists/ar1/top-tracks"] = {
        "tracks": [_track(f"t{i}", f"Hit {i}") for i in range(12)]
    }

    tracks = await catalog.get_artist_top_tracks("ar1")

    assert len(tracks) == 10
    assert spotify.api_requests[0].url.params["market"] == "GB"


@pytest.mark.asyncio
async def test_get_artist(catalog, spotify):
    spotify.routes["/v1/artists/ar1"] = {"id": "ar1", "name": "Band", "popularity": 50, "genres": ["rock"]}

    artist = await catalog.get_artist("ar1")

    assert artist.name == "Band"
    assert artist.genres == ("rock",)


@pytest.mark.asyncio
async def test_search_tracks(catalog, spotify):
    spotify.routes["/v1/search"] = {"tracks": {"items": [_track("t1"), None, _track("t2", "Other")]}}

    tracks = await catalog.search_tracks("song", limit=5)

    assert [track.id for track in tracks] == ["t1", "t2"]
    params = spotify.api_requests[0].url.params
    assert params["q"] == "song"
    assert params["type"] == "track"
    assert params["limit"] == "5"


@pytest.mark.asyncio
async def test_search_artists_and_albums(catalog, spotify):
    spotify.routes["/v1/search"] = lambda request: httpx.Response(
        200,
        json={
            "artists": {"items": [{"id": "ar1", "name": "Band"}]},
            "albums": {"items": [{"id": "a1", "name": "Record", "artists": []}]},
        },
    )

    artists = await catalog.search_artists("band")
    albums = await catalog.search_albums("record")

    assert [artist.id for artist in artists] == ["ar1"]
    assert [album.id for album in albums] == ["a1"]


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_once(catalog, spotify):
    attempts = []

    def track_route(request):
        attempts.append(request.headers["Authorization"])
        if len(attempts) == 1:
            return httpx.Response(401)
        return httpx.Response(200, json=_track("t1"))

    spotify.routes["/v1/tracks/t1"] = track_route

    await catalog.get_track("t1")

    assert attempts == ["Bearer token-1", "Bearer token-2"]


@pytest.mark.asyncio
async def test_token_provider_schedules_refresh_before_expiry(client, spotify_settings):
    tokens = SpotifyTokenProvider(spotify_settings, http_client=client)

    await tokens.start()
    try:
        assert tokens.has_token
        assert tokens.next_refresh_in == 3600 - 60
        assert await tokens.token() == "token-1"
    finally:
        await tokens.aclose()


@pytest.mark.asyncio
async def test_token_provider_retries_after_failure(client, spotify, spotify_settings):
    spotify.token_status = 500
    tokens = SpotifyTokenProvider(spotify_settings, http_client=client)

    await tokens.start()
    try:
        assert not tokens.has_token
        assert tokens.next_refresh_in == 60
        with pytest.raises(CatalogError):
            await tokens.token()
    finally:
        await tokens.aclose()


@pytest.mark.asyncio
async def test_background_refresh_replaces_token(client, spotify):
    settings = SpotifySettings(client_id="id", client_secret="secret", token_refresh_buffer_seconds=3600)
    tokens = SpotifyTokenProvider(settings, http_client=client)

    await tokens.start()
    try:
        # a buffer larger than the lifetime clamps the next refresh to one second
        assert tokens.next_refresh_in == 1
        await asyncio.sleep(1.1)
        assert await tokens.token() == "token-2"
    finally:
        await tokens.aclose()


@pytest.mark.asyncio
async def test_unconfigured_credentials(client):
    tokens = SpotifyTokenProvider(SpotifySettings(), http_client=client)

    with pytest.raises(CatalogError, match="not configured"):
        await tokens.refresh()
