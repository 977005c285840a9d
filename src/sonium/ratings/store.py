# sonium/ratings/store.py

"""Per-user rating, collection and user records with whole-store persistence."""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable, Hashable, Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime

from sonium.domain.models import CollectionEntry, Rating, User, utc_now
from sonium.errors import InvalidInput
from sonium.io.storage import JsonlStorage

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    holders: int = 0


class KeyedLocks:
    """One lock per key, alive only while someone holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, _LockEntry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _LockEntry()
            entry.holders += 1

        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[key]


class RatingStore:
    """Ratings keyed by (user_id, album_id), in insertion order."""

    def __init__(
        self,
        ratings: Iterable[Rating] = (),
        storage: JsonlStorage | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._persist_lock = threading.Lock()
        self._storage = storage
        self._ratings: dict[tuple[str, str], Rating] = {
            (r.user_id, r.album_id): r for r in ratings
        }

    @classmethod
    def from_storage(cls, storage: JsonlStorage) -> "RatingStore":
        return cls(storage.load_ratings(), storage=storage)

    def get(self, user_id: str, album_id: str) -> Rating | None:
        with self._lock:
            return self._ratings.get((user_id, album_id))

    def put(self, rating: Rating) -> None:
        with self._lock:
            self._ratings[(rating.user_id, rating.album_id)] = rating

    def delete(self, user_id: str, album_id: str) -> bool:
        with self._lock:
            return self._ratings.pop((user_id, album_id), None) is not None

    def for_album(self, album_id: str) -> list[Rating]:
        with self._lock:
            return [r for r in self._ratings.values() if r.album_id == album_id]

    def for_user(self, user_id: str) -> list[Rating]:
        with self._lock:
            return [r for r in self._ratings.values() if r.user_id == user_id]

    def all(self) -> list[Rating]:
        with self._lock:
            return list(self._ratings.values())

    def persist(self) -> None:
        if self._storage is None:
            return
        # Snapshot inside the persist lock so the last write is the newest state.
        with self._persist_lock:
            self._storage.save_ratings(self.all())


class CollectionStore:
    """Per-user album memberships, in the order they were added."""

    def __init__(
        self,
        entries: Iterable[CollectionEntry] = (),
        storage: JsonlStorage | None = None,
    ) -> None:
        self._lock = threading.Lock()
        self._persist_lock = threading.Lock()
        self._storage = storage
        self._entries: dict[str, dict[str, CollectionEntry]] = {}
        for entry in entries:
            self._entries.setdefault(entry.user_id, {})[entry.album_id] = entry

    @classmethod
    def from_storage(cls, storage: JsonlStorage) -> "CollectionStore":
        return cls(storage.load_collections(), storage=storage)

    def add(self, entry: CollectionEntry) -> bool:
        """Add the entry unless the album is already collected; True if added."""
        with self._lock:
            albums = self._entries.setdefault(entry.user_id, {})
            if entry.album_id in albums:
                return False
            albums[entry.album_id] = entry
            return True

    def remove(self, user_id: str, album_id: str) -> bool:
        with self._lock:
            albums = self._entries.get(user_id)
            if not albums or album_id not in albums:
                return False
            del albums[album_id]
            return True

    def contains(self, user_id: str, album_id: str) -> bool:
        with self._lock:
            return album_id in self._entries.get(user_id, {})

    def entries_for(self, user_id: str) -> list[CollectionEntry]:
        with self._lock:
            return list(self._entries.get(user_id, {}).values())

    def all(self) -> list[CollectionEntry]:
        with self._lock:
            return [e for albums in self._entries.values() for e in albums.values()]

    def persist(self) -> None:
        if self._storage is None:
            return
        with self._persist_lock:
            self._storage.save_collections(self.all())


class UserStore:
    """Users created lazily on first login, unique by case-insensitive name."""

    def __init__(
        self,
        users: Iterable[User] = (),
        storage: JsonlStorage | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._lock = threading.Lock()
        self._storage = storage
        self._clock = clock
        self._by_id: dict[str, User] = {u.user_id: u for u in users}
        self._by_name: dict[str, User] = {
            u.username.casefold(): u for u in self._by_id.values()
        }

    @classmethod
    def from_storage(
        cls,
        storage: JsonlStorage,
        clock: Callable[[], datetime] = utc_now,
    ) -> "UserStore":
        return cls(storage.load_users(), storage=storage, clock=clock)

    def get(self, user_id: str) -> User | None:
        with self._lock:
            return self._by_id.get(user_id)

    def get_or_create(self, username: str) -> User:
        name = username.strip()
        if not name:
            msg = "username must not be blank."
            raise InvalidInput(msg)

        with self._lock:
            user = self._by_name.get(name.casefold())
            if user is not None:
                return user

            user = User(user_id=uuid.uuid4().hex, username=name, created_at=self._clock())
            self._by_id[user.user_id] = user
            self._by_name[name.casefold()] = user
            if self._storage is not None:
                self._storage.save_users(list(self._by_id.values()))

        logger.info("Created user %s (%s)", user.username, user.user_id)
        return user
