# sonium/catalog/store.py

"""The shared album catalog: merge-upsert, ordering and read queries."""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from sonium.catalog.search import normalize_query, rank_matches
from sonium.domain.decades import (
    in_decade,
    normalize_release_date,
    parse_release_date,
    release_year,
)
from sonium.domain.models import UNKNOWN_RELEASE_DATE, Album, CatalogSnapshot
from sonium.errors import InvalidInput

logger = logging.getLogger(__name__)

AlbumInput = Album | Mapping[str, Any]

_OVERLAY_FIELDS = (
    "title",
    "artist",
    "artist_id",
    "release_date",
    "cover_url",
    "rating",
    "genres",
    "source_provider",
)

_CAMEL_ALIASES = {
    "artistId": "artist_id",
    "releaseDate": "release_date",
    "coverUrl": "cover_url",
    "sourceProvider": "source_provider",
}


def sort_albums(albums: Iterable[Album]) -> tuple[Album, ...]:
    """Newest release first; undated albums last, in insertion order."""
    dated: list[tuple[tuple[int, int, int], Album]] = []
    undated: list[Album] = []
    for album in albums:
        key = parse_release_date(album.release_date)
        if key is None:
            undated.append(album)
        else:
            dated.append((key, album))

    # list.sort is stable for reverse=True as well.
    dated.sort(key=lambda pair: pair[0], reverse=True)
    return tuple(album for _, album in dated) + tuple(undated)


def _is_omitted(name: str, value: Any) -> bool:
    if value is None:
        return True
    if name == "genres":
        return not value
    if name == "release_date":
        return value == UNKNOWN_RELEASE_DATE
    return False


def _patch_from(item: AlbumInput) -> tuple[str, dict[str, Any]]:
    """Split an Album or partial mapping into (album_id, overlay fields)."""
    if isinstance(item, Album):
        album_id: Any = item.album_id
        fields = {name: getattr(item, name) for name in _OVERLAY_FIELDS}
        fields["genres"] = list(item.genres)
    else:
        album_id = item.get("album_id") or item.get("albumId") or item.get("id")
        fields = {}
        for key, value in item.items():
            name = _CAMEL_ALIASES.get(key, key)
            if name in _OVERLAY_FIELDS:
                fields[name] = value
        if fields.get("release_date") is not None:
            fields["release_date"] = normalize_release_date(fields["release_date"])
        if fields.get("genres") is not None:
            fields["genres"] = [str(g) for g in fields["genres"]]

    if album_id is None or not str(album_id).strip():
        msg = "album_id must not be blank."
        raise InvalidInput(msg)

    present = {k: v for k, v in fields.items() if not _is_omitted(k, v)}
    return str(album_id), present


def _overlay(existing: Album | None, album_id: str, fields: dict[str, Any]) -> Album:
    if existing is not None:
        return replace(existing, **fields)

    if not fields.get("title") or not fields.get("artist"):
        msg = f"new album {album_id!r} needs a title and an artist."
        raise InvalidInput(msg)
    return Album(album_id=album_id, **fields)


@dataclass(frozen=True, slots=True)
class _Committed:
    albums: Mapping[str, Album]
    ordered: tuple[Album, ...]
    last_refreshed_at: datetime | None


class CatalogStore:
    """In-memory catalog keyed by album id.

    Writers are serialised by an internal lock and publish a new immutable
    snapshot on commit; readers always see the last committed snapshot and
    never block. Returned Album objects belong to that snapshot and must be
    treated as read-only.
    """

    def __init__(self, snapshot: CatalogSnapshot | None = None) -> None:
        self._lock = threading.Lock()
        albums = dict(snapshot.albums) if snapshot is not None else {}
        refreshed = snapshot.last_refreshed_at if snapshot is not None else None
        self._committed = _Committed(albums, sort_albums(albums.values()), refreshed)

    # -- writes ------------------------------------------------------------

    def merge_upsert(self, item: AlbumInput, source_provider: str | None = None) -> Album:
        """Insert a new album or overlay non-null fields onto the stored one."""
        return self.merge_many([item], source_provider=source_provider)[0]

    def merge_many(
        self,
        items: Iterable[AlbumInput],
        source_provider: str | None = None,
    ) -> list[Album]:
        """Merge a batch and commit it as one snapshot.

        An invalid item rejects the whole batch before anything is committed.
        """
        patches = [_patch_from(item) for item in items]

        with self._lock:
            current = self._committed
            albums = dict(current.albums)
            merged: list[Album] = []
            for album_id, fields in patches:
                if source_provider is not None:
                    fields = {**fields, "source_provider": source_provider}
                album = _overlay(albums.get(album_id), album_id, fields)
                albums[album_id] = album
                merged.append(album)

            self._committed = _Committed(
                albums, sort_albums(albums.values()), current.last_refreshed_at
            )

        logger.debug("Merged %d albums (catalog size %d)", len(merged), len(albums))
        return merged

    def mark_refreshed(self, when: datetime) -> None:
        with self._lock:
            current = self._committed
            self._committed = _Committed(current.albums, current.ordered, when)

    # -- reads -------------------------------------------------------------

    @property
    def snapshot(self) -> CatalogSnapshot:
        current = self._committed
        return CatalogSnapshot(
            albums=dict(current.albums),
            last_refreshed_at=current.last_refreshed_at,
        )

    @property
    def last_refreshed_at(self) -> datetime | None:
        return self._committed.last_refreshed_at

    def __len__(self) -> int:
        return len(self._committed.albums)

    def __contains__(self, album_id: object) -> bool:
        return album_id in self._committed.albums

    def get(self, album_id: str) -> Album | None:
        return self._committed.albums.get(album_id)

    def all_albums(self) -> list[Album]:
        return list(self._committed.ordered)

    def search_local(self, query: str) -> list[Album]:
        """Ranked local matches; a blank query returns the whole catalog."""
        ordered = self._committed.ordered
        if not normalize_query(query):
            return list(ordered)
        return rank_matches(ordered, query)

    def albums_by_decade(self, label: str) -> list[Album]:
        return [a for a in self._committed.ordered if in_decade(a.release_date, label)]

    def albums_by_year(self, year: int) -> list[Album]:
        return [a for a in self._committed.ordered if release_year(a.release_date) == year]

    def albums_by_genre(self, genre: str) -> list[Album]:
        wanted = genre.strip().casefold()
        return [
            a
            for a in self._committed.ordered
            if any(g.casefold() == wanted for g in a.genres)
        ]

    def genre_counts(self) -> list[tuple[str, int]]:
        """Return (genre, count) pairs, by descending count then name."""
        counter: Counter[str] = Counter()
        for album in self._committed.ordered:
            for genre in album.genres:
                counter[genre] += 1
        return sorted(counter.items(), key=lambda x: (-x[1], x[0]))
