# sonium/catalog/sync.py

"""Catalog synchronization: staleness-gated refresh, provider fallback, search."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import replace
from datetime import datetime, timedelta

from sonium.catalog.search import normalize_query
from sonium.catalog.store import CatalogStore
from sonium.domain.models import Album, RefreshResult, RefreshStatus, as_utc, utc_now
from sonium.io.storage import JsonlStorage
from sonium.providers.base import AlbumProvider, FallbackStep, run_fallback_chain
from sonium.providers.covers import CoverResolver

logger = logging.getLogger(__name__)

DEFAULT_STALENESS = timedelta(hours=24)
DEFAULT_RECENT_LIMIT = 50
DEFAULT_SEARCH_LIMIT = 25


class CatalogSyncEngine:
    """Keeps the catalog store fresh from an ordered chain of providers.

    Refreshes and search fallbacks are serialised by one lock, so merges
    never interleave. Local reads go straight to the store's committed
    snapshot and never wait for a provider call.
    """

    def __init__(
        self,
        store: CatalogStore,
        providers: Sequence[AlbumProvider],
        *,
        search_providers: Sequence[AlbumProvider] | None = None,
        cover_resolver: CoverResolver | None = None,
        storage: JsonlStorage | None = None,
        clock: Callable[[], datetime] = utc_now,
        staleness: timedelta = DEFAULT_STALENESS,
        recent_limit: int = DEFAULT_RECENT_LIMIT,
    ) -> None:
        if staleness <= timedelta(0):
            msg = "staleness must be positive."
            raise ValueError(msg)

        self._store = store
        self._providers = list(providers)
        self._search_providers = (
            list(search_providers) if search_providers is not None else self._providers[1:]
        )
        self._cover_resolver = cover_resolver
        self._storage = storage
        self._clock = clock
        self._staleness = staleness
        self._recent_limit = recent_limit
        self._lock = threading.Lock()

    @property
    def store(self) -> CatalogStore:
        return self._store

    @property
    def providers(self) -> tuple[AlbumProvider, ...]:
        return tuple(self._providers)

    def is_stale(self, now: datetime | None = None) -> bool:
        now = as_utc(now or self._clock())
        last = self._store.last_refreshed_at
        return last is None or now - as_utc(last) >= self._staleness

    def refresh_if_stale(self, now: datetime | None = None) -> RefreshResult:
        """Refresh the catalog from the first provider that yields albums.

        Skips without touching any provider while the catalog is fresh.
        On failure the refresh timestamp stays unchanged so the next call
        retries.
        """
        now = as_utc(now or self._clock())
        if not self.is_stale(now):
            logger.info("Catalog is up to date, skipping refresh")
            return RefreshResult(status=RefreshStatus.SKIPPED)

        with self._lock:
            # Another caller may have refreshed while we waited.
            if not self.is_stale(now):
                logger.info("Catalog was refreshed concurrently, skipping refresh")
                return RefreshResult(status=RefreshStatus.SKIPPED)
            return self._refresh(now)

    def refresh(self, now: datetime | None = None) -> RefreshResult:
        """Refresh regardless of staleness."""
        now = as_utc(now or self._clock())
        with self._lock:
            return self._refresh(now)

    def search(self, query: str, limit: int = DEFAULT_SEARCH_LIMIT) -> list[Album]:
        """Search the local catalog, falling back to provider search on a miss.

        A blank query returns the full catalog. Provider results are merged
        into the catalog so the next identical search is answered locally.
        """
        local = self._store.search_local(query)
        if local or not normalize_query(query):
            return local

        with self._lock:
            local = self._store.search_local(query)
            if local:
                return local

            text = query.strip()
            steps = [
                FallbackStep(p.name, self._search_step(p, text, limit))
                for p in self._search_providers
            ]
            outcome = run_fallback_chain(steps)
            if outcome.winner is None:
                logger.info("No provider results for query %r", text)
                return []

            merged = self._store.merge_many(outcome.winner.albums)
            self._persist_after_search()

        logger.info(
            "Search %r: merged %d albums from %s",
            text,
            len(merged),
            outcome.winner.provider,
        )
        return list({album.album_id: album for album in merged}.values())

    def resolve_cover(self, album_id: str) -> str | None:
        if self._cover_resolver is None:
            album = self._store.get(album_id)
            return album.cover_url if album is not None else None
        return self._cover_resolver.resolve_cover(album_id)

    def _refresh(self, now: datetime) -> RefreshResult:
        logger.info("Updating album catalog...")
        steps = [
            FallbackStep(p.name, self._recent_step(p)) for p in self._providers
        ]
        outcome = run_fallback_chain(steps)
        errors = [str(e) for e in outcome.errors]

        if outcome.exhausted_with_errors:
            logger.error(
                "Catalog refresh failed, all providers exhausted: %s",
                "; ".join(errors),
            )
            return RefreshResult(status=RefreshStatus.FAILED, errors=errors)

        winner = outcome.winner
        albums = winner.albums if winner is not None else []
        merged = self._store.merge_many(albums)

        if self._storage is not None:
            snapshot = self._store.snapshot
            snapshot.last_refreshed_at = now
            try:
                self._storage.save_catalog_snapshot(snapshot)
            except OSError as exc:
                logger.error("Could not persist catalog snapshot: %s", exc)
                return RefreshResult(
                    status=RefreshStatus.FAILED,
                    provider=winner.provider if winner else None,
                    errors=[*errors, str(exc)],
                )
        self._store.mark_refreshed(now)

        logger.info(
            "Catalog updated from %s: %d albums merged, %d albums available",
            winner.provider if winner else "no provider",
            len(merged),
            len(self._store),
        )
        return RefreshResult(
            status=RefreshStatus.REFRESHED,
            provider=winner.provider if winner else None,
            merged=len(merged),
            errors=errors,
        )

    def _recent_step(self, provider: AlbumProvider) -> Callable[[], list[Album]]:
        def fetch() -> list[Album]:
            albums = provider.fetch_recent(self._recent_limit, 0)
            return self._with_covers(albums) if provider.enrich_covers else albums

        return fetch

    def _search_step(
        self,
        provider: AlbumProvider,
        query: str,
        limit: int,
    ) -> Callable[[], list[Album]]:
        def fetch() -> list[Album]:
            albums = provider.search(query, limit)
            return self._with_covers(albums) if provider.enrich_covers else albums

        return fetch

    def _with_covers(self, albums: list[Album]) -> list[Album]:
        if self._cover_resolver is None:
            return albums

        enriched: list[Album] = []
        for album in albums:
            if album.cover_url:
                enriched.append(album)
                continue
            url = self._cover_resolver.resolve_cover(album.album_id)
            enriched.append(replace(album, cover_url=url) if url else album)
        return enriched

    def _persist_after_search(self) -> None:
        if self._storage is None:
            return
        try:
            self._storage.save_catalog_snapshot(self._store.snapshot)
        except OSError as exc:
            logger.error("Could not persist catalog snapshot after search: %s", exc)
