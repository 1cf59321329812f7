import pytest
from fastapi.testclient import TestClient

from api.routes import create_fastapi_app
from config.config import Config
from models.track import ItemKind
from services.dependencies import services
from services.downloads import DownloadService
from services.job_store import Artifact, JobStore
from tests.helpers import make_track
from workers.job_queue import JobQueue

TRACK = {
    "id": "t1",
    "name": "Song",
    "duration_ms": 1000,
    "album": "Record",
    "artists": ["Band"],
}


class StubCatalog:
    async def get_track(self, track_id):
        return make_track(1, name="Catalog Song")

    async def search_tracks(self, query, limit=20):
        return [make_track(1, name=query)]


@pytest.fixture
def wired_services():
    store = JobStore()
    queue = JobQueue()
    services.store = store
    services.queue = queue
    services.catalog = StubCatalog()
    services.downloads = DownloadService(store, queue, services.catalog)
    yield services
    services.store = None
    services.queue = None
    services.catalog = None
    services.downloads = None


def _client(api_secret_key=""):
    config = Config(_env_file=None, api_secret_key=api_secret_key, debug=False)
    # no context manager: the lifespan (dispatcher, real clients) is not started
    return TestClient(create_fastapi_app(config))


def _complete(store, job_id, artifact):
    job = store.get(job_id)
    job.start_processing()
    job.complete()
    store.update(job)
    store.put_artifact(job_id, artifact)


def test_submit_tracks(wired_services):
    response = _client().post(
        "/api/downloads", json={"item_kind": "playlist", "tracks": [TRACK, {**TRACK, "id": "t2"}]}
    )

    assert response.status_code == 202
    body = response.json()
    assert body["status"] == "Queued"
    assert body["message"] == "Download job created for 2 tracks"
    job = wired_services.store.get(body["job_id"])
    assert job.item_kind == ItemKind.PLAYLIST
    assert len(wired_services.queue) == 1


def test_submit_without_tracks_is_rejected(wired_services):
    response = _client().post("/api/downloads", json={"item_kind": "album", "tracks": []})

    assert response.status_code == 400
    assert response.json() == {"error": "At least one track is required"}
    assert wired_services.store.job_count == 0


def test_submit_from_catalog(wired_services):
    response = _client().post("/api/downloads/track", json={"spotify_id": "t1", "owner_ref": "42"})

    assert response.status_code == 202
    assert response.json()["message"] == "Download job created for track: Catalog Song"


def test_status_of_unknown_job(wired_services):
    response = _client().get("/api/downloads/missing")

    assert response.status_code == 404
    assert "missing" in response.json()["error"]


def test_status_of_pending_job(wired_services):
    job_id = wired_services.downloads.submit(ItemKind.ALBUM, [make_track(1), make_track(2)])

    response = _client().get(f"/api/downloads/{job_id}")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "pending"
    assert body["total_count"] == 2
    assert body["completed_count"] == 0


def test_file_not_ready(wired_services):
    job_id = wired_services.downloads.submit(ItemKind.TRACK, [make_track()])

    response = _client().get(f"/api/downloads/{job_id}/file")

    assert response.status_code == 409
    assert response.json()["status"] == "pending"


def test_download_completed_file(wired_services):
    job_id = wired_services.downloads.submit(ItemKind.TRACK, [make_track()])
    _complete(wired_services.store, job_id, Artifact(b"mp3-bytes", "Café.mp3", "audio/mpeg"))

    response = _client().get(f"/api/downloads/{job_id}/file")

    assert response.status_code == 200
    assert response.content == b"mp3-bytes"
    assert response.headers["content-type"] == "audio/mpeg"
    assert "filename*=UTF-8''Caf%C3%A9.mp3" in response.headers["content-disposition"]


def test_cancel_pending_job(wired_services):
    job_id = wired_services.downloads.submit(ItemKind.TRACK, [make_track()])

    response = _client().delete(f"/api/downloads/{job_id}")

    assert response.status_code == 202
    assert response.json()["status"] == "failed"
    assert response.json()["error_message"] == "Job was cancelled"


def test_catalog_search(wired_services):
    response = _client().get("/api/spotify/search", params={"q": "hello", "type": "track"})

    assert response.status_code == 200
    body = response.json()
    assert body["type"] == "track"
    assert body["items"][0]["name"] == "hello"


def test_catalog_unavailable(wired_services):
    wired_services.catalog = None

    response = _client().get("/api/spotify/tracks/t1")

    assert response.status_code == 503


def test_api_key_required_when_configured(wired_services):
    client = _client(api_secret_key="secret-key")

    assert client.get("/api/downloads/missing").status_code == 401
    assert (
        client.get(
            "/api/downloads/missing", headers={"Authorization": "Bearer wrong"}
        ).status_code
        == 401
    )
    assert (
        client.get(
            "/api/downloads/missing", headers={"Authorization": "Bearer secret-key"}
        ).status_code
        == 404
    )


def test_health(wired_services):
    wired_services.downloads.submit(ItemKind.TRACK, [make_track()])

    response = _client().get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["queue_length"] == 1
    assert body["stored_jobs"] == 1
    assert body["active_jobs"] == 0
    assert body["status"] == "degraded"
    assert body["services"]["spotify_configured"] is True
