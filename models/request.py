from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from models.track import AlbumMetadata, ArtistMetadata, ItemKind, TrackMetadata


def sanitize_input(input_str: str, max_length: int) -> str:
    if not isinstance(input_str, str):
        raise ValueError("Input must be a string")

    cleaned = input_str.strip()
    if not cleaned:
        raise ValueError("Input cannot be empty")

    if len(cleaned) > max_length:
        raise ValueError(f"Input too long (max {max_length} characters)")

    return cleaned


class CatalogDownloadRequest(BaseModel):
    spotify_id: str = Field(..., min_length=1, max_length=64)
    owner_ref: Optional[str] = Field(default=None, max_length=128)

    @field_validator("spotify_id")
    @classmethod
    def validate_spotify_id(cls, v):
        return sanitize_input(v, 64)


class TrackPayload(BaseModel):
    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=300)
    duration_ms: int = Field(default=0, ge=0)
    album: str = "Unknown Album"
    artists: List[str] = Field(default_factory=list)
    preview_url: Optional[str] = None
    cover_url: Optional[str] = None

    def to_metadata(self) -> TrackMetadata:
        return TrackMetadata(
            id=self.id,
            name=self.name,
            duration_ms=self.duration_ms,
            album=self.album,
            artists=tuple(self.artists),
            preview_url=self.preview_url,
            cover_url=self.cover_url,
        )

    @classmethod
    def from_metadata(cls, track: TrackMetadata) -> "TrackPayload":
        return cls(
            id=track.id,
            name=track.name,
            duration_ms=track.duration_ms,
            album=track.album,
            artists=list(track.artists),
            preview_url=track.preview_url,
            cover_url=track.cover_url,
        )


class DownloadRequest(BaseModel):
    """Direct submission of already-resolved tracks"""

    item_kind: ItemKind = ItemKind.TRACK
    tracks: List[TrackPayload] = Field(default_factory=list)
    owner_ref: Optional[str] = Field(default=None, max_length=128)


class SubmittedJobResponse(BaseModel):
    job_id: str
    status: str
    message: str


class JobStatusResponse(BaseModel):
    job_id: str
    item_kind: str
    status: str
    progress: float
    current_item_label: Optional[str] = None
    completed_count: int
    total_count: int
    error_message: Optional[str] = None
    created_at: float
    completed_at: Optional[float] = None


class AlbumResponse(BaseModel):
    id: str
    name: str
    release_date: str
    total_tracks: int
    artists: List[str]
    cover_url: Optional[str] = None
    tracks: List[TrackPayload] = Field(default_factory=list)

    @classmethod
    def from_metadata(cls, album: AlbumMetadata) -> "AlbumResponse":
        return cls(
            id=album.id,
            name=album.name,
            release_date=album.release_date,
            total_tracks=album.total_tracks,
            artists=list(album.artists),
            cover_url=album.cover_url,
            tracks=[TrackPayload.from_metadata(track) for track in album.tracks],
        )


class ArtistResponse(BaseModel):
    id: str
    name: str
    popularity: int = 0
    genres: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None

    @classmethod
    def from_metadata(cls, artist: ArtistMetadata) -> "ArtistResponse":
        return cls(
            id=artist.id,
            name=artist.name,
            popularity=artist.popularity,
            genres=list(artist.genres),
            image_url=artist.image_url,
        )
