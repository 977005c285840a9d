# sonium/domain/models.py

"""Core domain models for the album catalog, ratings and collections."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

UNKNOWN_RELEASE_DATE = "Unknown"
UNKNOWN_ARTIST = "Unknown Artist"


def utc_now() -> datetime:
    """Default clock: timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Return value in UTC; naive datetimes are assumed to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(slots=True)
class Album:
    """A single album record in the shared catalog."""

    album_id: str
    title: str
    artist: str
    artist_id: str | None = None
    release_date: str = UNKNOWN_RELEASE_DATE  # ISO date, may be partial ("1997")
    cover_url: str | None = None
    rating: float | None = None  # provider-supplied display rating
    genres: list[str] = field(default_factory=list)
    source_provider: str | None = None


@dataclass(slots=True)
class CatalogSnapshot:
    """Committed catalog state: albums keyed by id plus the refresh timestamp."""

    albums: dict[str, Album] = field(default_factory=dict)
    last_refreshed_at: datetime | None = None


@dataclass(slots=True)
class Rating:
    """Rating and listened state for one (user, album) pair."""

    user_id: str
    album_id: str
    rating: float | None
    listened: bool
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class CollectionEntry:
    """Membership of an album in a user's personal collection."""

    user_id: str
    album_id: str
    added_at: datetime


@dataclass(slots=True)
class User:
    user_id: str
    username: str
    created_at: datetime


class SortOption(str, Enum):
    DATE_DESC = "date-desc"
    DATE_ASC = "date-asc"
    RATING_DESC = "rating-desc"
    RATING_ASC = "rating-asc"


@dataclass(slots=True)
class CollectionItem:
    """A collection entry joined with the user's rating/listened state."""

    album_id: str
    added_at: datetime
    rating: float | None
    listened: bool


@dataclass(slots=True)
class UserStats:
    albums_rated: int
    average_rating: str  # one decimal, "0.0" when nothing is rated
    albums_listened: int


@dataclass(slots=True)
class AlbumRanking:
    album_id: str
    average_rating: float
    num_ratings: int


class RefreshStatus(str, Enum):
    SKIPPED = "skipped"
    REFRESHED = "refreshed"
    FAILED = "failed"


@dataclass(slots=True)
class RefreshResult:
    """Outcome of one refresh_if_stale() call."""

    status: RefreshStatus
    provider: str | None = None
    merged: int = 0
    errors: list[str] = field(default_factory=list)
