# sonium/io/storage.py

"""JSONL-file persistence for the catalog, ratings, collections and users.

Each store lives in its own file and is always read and written whole.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from sonium.domain.decades import normalize_release_date
from sonium.domain.models import (
    Album,
    CatalogSnapshot,
    CollectionEntry,
    Rating,
    User,
    as_utc,
)
from sonium.io.jsonl import iter_jsonl_objects, write_jsonl_atomic

logger = logging.getLogger(__name__)

CATALOG_FILE = "catalog.jsonl"
RATINGS_FILE = "ratings.jsonl"
COLLECTIONS_FILE = "collections.jsonl"
USERS_FILE = "users.jsonl"

_META_KEY = "_meta"


def _parse_ts(value: str | None) -> datetime | None:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value))


def _required_ts(value: str | None) -> datetime:
    ts = _parse_ts(value)
    if ts is None:
        msg = "missing timestamp"
        raise ValueError(msg)
    return ts


def _ts_to_str(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def album_from_raw(raw: dict[str, Any]) -> Album:
    """Convert a stored JSON dict into an Album instance."""
    return Album(
        album_id=str(raw["album_id"]),
        title=raw["title"],
        artist=raw["artist"],
        artist_id=raw.get("artist_id"),
        release_date=normalize_release_date(raw.get("release_date")),
        cover_url=raw.get("cover_url"),
        rating=raw.get("rating"),
        genres=list(raw.get("genres", [])),
        source_provider=raw.get("source_provider"),
    )


def album_to_raw(album: Album) -> dict[str, Any]:
    """Convert an Album into a JSON-serialisable dict."""
    return {
        "album_id": album.album_id,
        "title": album.title,
        "artist": album.artist,
        "artist_id": album.artist_id,
        "release_date": album.release_date,
        "cover_url": album.cover_url,
        "rating": album.rating,
        "genres": album.genres,
        "source_provider": album.source_provider,
    }


def _rating_from_raw(raw: dict[str, Any]) -> Rating:
    return Rating(
        user_id=raw["user_id"],
        album_id=raw["album_id"],
        rating=raw.get("rating"),
        listened=bool(raw.get("listened", False)),
        created_at=_required_ts(raw["created_at"]),
        updated_at=_required_ts(raw["updated_at"]),
    )


def _rating_to_raw(rating: Rating) -> dict[str, Any]:
    return {
        "user_id": rating.user_id,
        "album_id": rating.album_id,
        "rating": rating.rating,
        "listened": rating.listened,
        "created_at": _ts_to_str(rating.created_at),
        "updated_at": _ts_to_str(rating.updated_at),
    }


class JsonlStorage:
    """Persistence backend storing one JSONL file per store under data_dir."""

    def __init__(self, data_dir: Path | str) -> None:
        self._data_dir = Path(data_dir)

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def _path(self, name: str) -> Path:
        return self._data_dir / name

    # -- catalog -----------------------------------------------------------

    def load_catalog_snapshot(self) -> CatalogSnapshot:
        snapshot = CatalogSnapshot()
        for obj in iter_jsonl_objects(self._path(CATALOG_FILE)):
            meta = obj.get(_META_KEY)
            if isinstance(meta, dict):
                try:
                    snapshot.last_refreshed_at = _parse_ts(meta.get("last_refreshed_at"))
                except (TypeError, ValueError) as exc:
                    logger.warning("Ignoring invalid catalog refresh time %r: %s", meta, exc)
                continue
            try:
                album = album_from_raw(obj)
            except KeyError as exc:
                logger.warning("Skipping catalog record without %s: %r", exc, obj)
                continue
            snapshot.albums[album.album_id] = album

        logger.info(
            "Loaded catalog snapshot with %d albums (last refresh: %s)",
            len(snapshot.albums),
            snapshot.last_refreshed_at,
        )
        return snapshot

    def save_catalog_snapshot(self, snapshot: CatalogSnapshot) -> None:
        header = {
            _META_KEY: {"last_refreshed_at": _ts_to_str(snapshot.last_refreshed_at)}
        }
        rows = [header, *(album_to_raw(a) for a in snapshot.albums.values())]
        write_jsonl_atomic(self._path(CATALOG_FILE), rows)
        logger.debug("Saved %d albums to %s", len(snapshot.albums), self._data_dir)

    # -- ratings -----------------------------------------------------------

    def load_ratings(self) -> list[Rating]:
        ratings: list[Rating] = []
        for obj in iter_jsonl_objects(self._path(RATINGS_FILE)):
            try:
                ratings.append(_rating_from_raw(obj))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping invalid rating record %r: %s", obj, exc)
        return ratings

    def save_ratings(self, ratings: list[Rating]) -> None:
        write_jsonl_atomic(
            self._path(RATINGS_FILE), (_rating_to_raw(r) for r in ratings)
        )

    # -- collections -------------------------------------------------------

    def load_collections(self) -> list[CollectionEntry]:
        entries: list[CollectionEntry] = []
        for obj in iter_jsonl_objects(self._path(COLLECTIONS_FILE)):
            try:
                entries.append(
                    CollectionEntry(
                        user_id=obj["user_id"],
                        album_id=obj["album_id"],
                        added_at=_required_ts(obj["added_at"]),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping invalid collection record %r: %s", obj, exc)
        return entries

    def save_collections(self, entries: list[CollectionEntry]) -> None:
        write_jsonl_atomic(
            self._path(COLLECTIONS_FILE),
            (
                {
                    "user_id": e.user_id,
                    "album_id": e.album_id,
                    "added_at": _ts_to_str(e.added_at),
                }
                for e in entries
            ),
        )

    # -- users -------------------------------------------------------------

    def load_users(self) -> list[User]:
        users: list[User] = []
        for obj in iter_jsonl_objects(self._path(USERS_FILE)):
            try:
                users.append(
                    User(
                        user_id=obj["user_id"],
                        username=obj["username"],
                        created_at=_required_ts(obj["created_at"]),
                    )
                )
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping invalid user record %r: %s", obj, exc)
        return users

    def save_users(self, users: list[User]) -> None:
        write_jsonl_atomic(
            self._path(USERS_FILE),
            (
                {
                    "user_id": u.user_id,
                    "username": u.username,
                    "created_at": _ts_to_str(u.created_at),
                }
                for u in users
            ),
        )
