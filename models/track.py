from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple


class ItemKind(Enum):
    TRACK = "track"
    ALBUM = "album"
    ARTIST = "artist"
    PLAYLIST = "playlist"


@dataclass(frozen=True)
class TrackMetadata:
    id: str
    name: str
    duration_ms: int
    album: str
    artists: Tuple[str, ...]
    preview_url: Optional[str] = None
    cover_url: Optional[str] = None

    def __post_init__(self):
        # accept any iterable of artist names but store an immutable tuple
        object.__setattr__(self, "artists", tuple(self.artists))

    @property
    def search_query(self) -> str:
        return f"{self.name} {' '.join(self.artists)} official audio"

    @property
    def artist_line(self) -> str:
        return ", ".join(self.artists)


@dataclass(frozen=True)
class AlbumMetadata:
    id: str
    name: str
    release_date: str
    total_tracks: int
    artists: Tuple[str, ...]
    cover_url: Optional[str] = None
    tracks: Tuple[TrackMetadata, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ArtistMetadata:
    id: str
    name: str
    popularity: int = 0
    genres: Tuple[str, ...] = field(default_factory=tuple)
    image_url: Optional[str] = None


class TrackShape(Enum):
    """Catalog payload shapes that carry track data.

    FULL_TRACK objects embed their album; ALBUM_TRACK objects come from an
    album's track listing and need the album passed in as context.
    """

    FULL_TRACK = "full_track"
    ALBUM_TRACK = "album_track"


def pick_cover_url(images: Optional[Iterable[Dict[str, Any]]]) -> Optional[str]:
    """Return the URL of the widest image, if any"""
    candidates = [image for image in images or [] if image and image.get("url")]
    if not candidates:
        return None
    widest = max(candidates, key=lambda image: image.get("width") or 0)
    return widest["url"]


def _artist_names(payload: Dict[str, Any]) -> List[str]:
    return [artist["name"] for artist in payload.get("artists") or [] if artist.get("name")]


def map_full_track(payload: Dict[str, Any]) -> TrackMetadata:
    album = payload.get("album") or {}
    return TrackMetadata(
        id=payload["id"],
        name=payload["name"],
        duration_ms=int(payload.get("duration_ms") or 0),
        album=album.get("name") or "Unknown Album",
        artists=_artist_names(payload),
        preview_url=payload.get("preview_url"),
        cover_url=pick_cover_url(album.get("images")),
    )


def map_album_track(
    payload: Dict[str, Any], album_name: str, cover_url: Optional[str] = None
) -> TrackMetadata:
    return TrackMetadata(
        id=payload["id"],
        name=payload["name"],
        duration_ms=int(payload.get("duration_ms") or 0),
        album=album_name,
        artists=_artist_names(payload),
        preview_url=payload.get("preview_url"),
        cover_url=cover_url,
    )


_TRACK_MAPPERS: Dict[TrackShape, Callable[..., TrackMetadata]] = {
    TrackShape.FULL_TRACK: map_full_track,
    TrackShape.ALBUM_TRACK: map_album_track,
}


def map_track(shape: TrackShape, payload: Dict[str, Any], **context: Any) -> TrackMetadata:
    return _TRACK_MAPPERS[shape](payload, **context)


def map_album(payload: Dict[str, Any], track_items: Iterable[Dict[str, Any]] = ()) -> AlbumMetadata:
    cover_url = pick_cover_url(payload.get("images"))
    tracks = tuple(
        map_track(TrackShape.ALBUM_TRACK, item, album_name=payload["name"], cover_url=cover_url)
        for item in track_items
        if item and item.get("id")
    )
    return AlbumMetadata(
        id=payload["id"],
        name=payload["name"],
        release_date=payload.get("release_date") or "",
        total_tracks=int(payload.get("total_tracks") or len(tracks)),
        artists=tuple(_artist_names(payload)),
        cover_url=cover_url,
        tracks=tracks,
    )


def map_artist(payload: Dict[str, Any]) -> ArtistMetadata:
    return ArtistMetadata(
        id=payload["id"],
        name=payload["name"],
        popularity=int(payload.get("popularity") or 0),
        genres=tuple(payload.get("genres") or ()),
        image_url=pick_cover_url(payload.get("images")),
    )
