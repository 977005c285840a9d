# sonium/ratings/service.py

"""Ratings, listened state and collections, plus the statistics built on them."""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from numbers import Real

from sonium.catalog.store import CatalogStore
from sonium.domain.decades import decade_range, in_decade
from sonium.domain.models import (
    AlbumRanking,
    CollectionEntry,
    CollectionItem,
    Rating,
    SortOption,
    UserStats,
    utc_now,
)
from sonium.errors import InvalidInput
from sonium.ratings.store import CollectionStore, KeyedLocks, RatingStore

logger = logging.getLogger(__name__)

MIN_RATING = 0.0
MAX_RATING = 5.0


def validate_rating(value: object) -> float:
    """Return the rating as float or raise InvalidInput (never clamps)."""
    if isinstance(value, bool) or not isinstance(value, Real):
        msg = f"rating must be a number, got {value!r}."
        raise InvalidInput(msg)

    rating = float(value)
    if math.isnan(rating) or not MIN_RATING <= rating <= MAX_RATING:
        msg = f"rating must be between {MIN_RATING:g} and {MAX_RATING:g}, got {value!r}."
        raise InvalidInput(msg)
    return rating


def _require_id(name: str, value: str) -> None:
    if not isinstance(value, str) or not value.strip():
        msg = f"{name} must not be blank."
        raise InvalidInput(msg)


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class RatingService:
    """Per-user state machine over (user, album) plus aggregate queries.

    Mutations of one (user, album) pair are serialised by a per-pair lock;
    different pairs proceed in parallel. When a mutation touches both
    stores, the rating is written before the collection entry on add and
    the entry is removed before the rating on delete, so collection views
    never show a half-applied change.
    """

    def __init__(
        self,
        ratings: RatingStore,
        collections: CollectionStore,
        catalog: CatalogStore | None = None,
        *,
        clock: Callable[[], datetime] = utc_now,
        locks: KeyedLocks | None = None,
    ) -> None:
        self._ratings = ratings
        self._collections = collections
        self._catalog = catalog
        self._clock = clock
        self._locks = locks if locks is not None else KeyedLocks()

    # -- mutations ---------------------------------------------------------

    def add_to_collection(self, user_id: str, album_id: str) -> bool:
        """Add an album to the user's collection; False if it was already there."""
        _require_id("user_id", user_id)
        _require_id("album_id", album_id)

        with self._locks.hold((user_id, album_id)):
            added = self._collections.add(
                CollectionEntry(user_id=user_id, album_id=album_id, added_at=self._clock())
            )
            if added:
                self._collections.persist()
        return added

    def rate(self, user_id: str, album_id: str, rating: object) -> Rating:
        """Set the user's rating, adding the album to the collection if needed.

        Re-rating overwrites the previous value.
        """
        _require_id("user_id", user_id)
        _require_id("album_id", album_id)
        value = validate_rating(rating)

        with self._locks.hold((user_id, album_id)):
            now = self._clock()
            existing = self._ratings.get(user_id, album_id)
            if existing is None:
                record = Rating(
                    user_id=user_id,
                    album_id=album_id,
                    rating=value,
                    listened=True,
                    created_at=now,
                    updated_at=now,
                )
            else:
                record = replace(existing, rating=value, updated_at=now)

            self._ratings.put(record)
            added = self._ensure_membership(user_id, album_id, now)
            self._ratings.persist()
            if added:
                self._collections.persist()

        logger.debug("User %s rated %s: %.1f", user_id, album_id, value)
        return record

    def toggle_listened(self, user_id: str, album_id: str) -> bool:
        """Flip the listened flag and return its new value.

        Without a rating record, one is created as listened (and the album is
        collected). A record left unrated and unlistened is deleted.
        """
        _require_id("user_id", user_id)
        _require_id("album_id", album_id)

        with self._locks.hold((user_id, album_id)):
            now = self._clock()
            existing = self._ratings.get(user_id, album_id)
            added = False

            if existing is None:
                listened = True
                self._ratings.put(
                    Rating(
                        user_id=user_id,
                        album_id=album_id,
                        rating=None,
                        listened=True,
                        created_at=now,
                        updated_at=now,
                    )
                )
                added = self._ensure_membership(user_id, album_id, now)
            else:
                listened = not existing.listened
                if existing.rating is None and not listened:
                    self._ratings.delete(user_id, album_id)
                else:
                    self._ratings.put(replace(existing, listened=listened, updated_at=now))
                    added = self._ensure_membership(user_id, album_id, now)

            self._ratings.persist()
            if added:
                self._collections.persist()

        return listened

    def remove_from_collection(self, user_id: str, album_id: str) -> bool:
        """Remove the album and any rating for it; True if anything was removed."""
        _require_id("user_id", user_id)
        _require_id("album_id", album_id)

        with self._locks.hold((user_id, album_id)):
            removed_entry = self._collections.remove(user_id, album_id)
            removed_rating = self._ratings.delete(user_id, album_id)
            if removed_entry:
                self._collections.persist()
            if removed_rating:
                self._ratings.persist()

        return removed_entry or removed_rating

    def _ensure_membership(self, user_id: str, album_id: str, now: datetime) -> bool:
        return self._collections.add(
            CollectionEntry(user_id=user_id, album_id=album_id, added_at=now)
        )

    # -- per-user lookups --------------------------------------------------

    def user_rating(self, user_id: str, album_id: str) -> float | None:
        record = self._ratings.get(user_id, album_id)
        return record.rating if record is not None else None

    def is_in_collection(self, user_id: str, album_id: str) -> bool:
        return self._collections.contains(user_id, album_id)

    def is_listened(self, user_id: str, album_id: str) -> bool:
        record = self._ratings.get(user_id, album_id)
        return record.listened if record is not None else False

    # -- aggregates --------------------------------------------------------

    def average_rating_for_album(self, album_id: str) -> float:
        """Mean of all users' non-null ratings, 0.0 if there are none."""
        return _mean(self._rating_values(album_id))

    def rating_count_for_album(self, album_id: str) -> int:
        return len(self._rating_values(album_id))

    def _rating_values(self, album_id: str) -> list[float]:
        return [
            r.rating for r in self._ratings.for_album(album_id) if r.rating is not None
        ]

    def user_collection(
        self,
        user_id: str,
        sort_option: SortOption | str = SortOption.DATE_DESC,
    ) -> list[CollectionItem]:
        """Collection entries joined with rating state, in the requested order.

        Unrated entries sort as 0 for rating orders; ties keep insertion order.
        """
        try:
            option = SortOption(sort_option)
        except ValueError as exc:
            msg = f"Unknown sort option: {sort_option!r}"
            raise InvalidInput(msg) from exc

        items = []
        for entry in self._collections.entries_for(user_id):
            record = self._ratings.get(user_id, entry.album_id)
            items.append(
                CollectionItem(
                    album_id=entry.album_id,
                    added_at=entry.added_at,
                    rating=record.rating if record is not None else None,
                    listened=record.listened if record is not None else False,
                )
            )

        if option is SortOption.DATE_DESC:
            return sorted(items, key=lambda i: i.added_at, reverse=True)
        if option is SortOption.DATE_ASC:
            return sorted(items, key=lambda i: i.added_at)
        if option is SortOption.RATING_DESC:
            return sorted(items, key=lambda i: i.rating or 0.0, reverse=True)
        return sorted(items, key=lambda i: i.rating or 0.0)

    def user_stats(self, user_id: str) -> UserStats:
        records = self._ratings.for_user(user_id)
        rated = [r.rating for r in records if r.rating is not None]
        return UserStats(
            albums_rated=len(rated),
            average_rating=f"{_mean(rated):.1f}",
            albums_listened=sum(1 for r in records if r.listened),
        )

    def top_albums(self, decade_filter: str = "all", limit: int = 10) -> list[AlbumRanking]:
        """Albums ranked by mean rating, then by number of ratings.

        The decade filter joins against the catalog's release dates; albums
        the catalog does not know are dropped by any filter other than "all".
        """
        bounds = decade_range(decade_filter)
        if limit < 0:
            msg = "limit must be non-negative."
            raise InvalidInput(msg)

        grouped: dict[str, list[float]] = {}
        for record in self._ratings.all():
            if record.rating is None:
                continue
            grouped.setdefault(record.album_id, []).append(record.rating)

        rankings = sorted(
            (
                AlbumRanking(
                    album_id=album_id,
                    average_rating=_mean(values),
                    num_ratings=len(values),
                )
                for album_id, values in grouped.items()
            ),
            key=lambda r: (-r.average_rating, -r.num_ratings),
        )

        if bounds is not None:
            rankings = [r for r in rankings if self._album_in_decade(r.album_id, decade_filter)]

        return rankings[:limit]

    def _album_in_decade(self, album_id: str, decade_filter: str) -> bool:
        if self._catalog is None:
            return False
        album = self._catalog.get(album_id)
        return album is not None and in_decade(album.release_date, decade_filter)
