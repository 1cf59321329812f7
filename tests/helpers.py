import asyncio
from typing import Any, Dict, Iterable, List, Optional, Tuple

from models.track import TrackMetadata

# scripted outcome that blocks until the fetch is cancelled or times out
HANG = object()


def make_track(index: int = 1, name: Optional[str] = None, artists: Iterable[str] = ("Artist",)) -> TrackMetadata:
    return TrackMetadata(
        id=f"track-{index}",
        name=name or f"Track {index}",
        duration_ms=180_000,
        album="Album",
        artists=tuple(artists),
    )


def make_tracks(count: int) -> List[TrackMetadata]:
    return [make_track(i) for i in range(1, count + 1)]


def audio_for(track: TrackMetadata) -> bytes:
    return f"audio:{track.id}".encode()


class FakeFetcher:
    """Fetcher driven by a per-track script of outcomes.

    Each script entry is consumed by one call: bytes are returned, exceptions
    are raised and HANG blocks. Once a script runs out every call succeeds.
    """

    def __init__(
        self,
        scripts: Optional[Dict[str, List[Any]]] = None,
        delays: Optional[Dict[str, float]] = None,
        default_delay: float = 0.0,
    ):
        self.scripts = {key: list(value) for key, value in (scripts or {}).items()}
        self.delays = delays or {}
        self.default_delay = default_delay
        self.calls: List[str] = []
        self.queries: List[str] = []
        self.active = 0
        self.max_active = 0
        self.completed_order: List[str] = []

    async def fetch(self, query, track, on_progress):
        self.calls.append(track.id)
        self.queries.append(query)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            on_progress(50.0)
            delay = self.delays.get(track.id, self.default_delay)
            if delay:
                await asyncio.sleep(delay)

            script = self.scripts.get(track.id)
            outcome = script.pop(0) if script else None
            if outcome is HANG:
                await asyncio.Event().wait()
            if isinstance(outcome, BaseException):
                raise outcome

            on_progress(100.0)
            self.completed_order.append(track.id)
            return outcome if outcome is not None else audio_for(track)
        finally:
            self.active -= 1

    def call_count(self, track_id: str) -> int:
        return self.calls.count(track_id)


class RecordingSink:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.pushes: List[Tuple[str, str, str, float]] = []
        self.completions: List[Tuple[str, str, str]] = []
        self.failures: List[Tuple[str, str, str]] = []

    async def push(self, job_id, owner_ref, status_text, percentage):
        if self.fail:
            raise RuntimeError("sink unavailable")
        self.pushes.append((job_id, owner_ref, status_text, percentage))

    async def notify_completed(self, job_id, owner_ref, summary):
        self.completions.append((job_id, owner_ref, summary))

    async def notify_failed(self, job_id, owner_ref, error):
        self.failures.append((job_id, owner_ref, error))

    async def close(self):
        return None

    @property
    def status_texts(self) -> List[str]:
        return [push[2] for push in self.pushes]


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(interval)


