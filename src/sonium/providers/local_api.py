# sonium/providers/local_api.py

"""Primary provider: the album API backed by the local database."""

from __future__ import annotations

import logging
import random
import time
from typing import Any

import httpx

from sonium.domain.decades import normalize_release_date
from sonium.domain.models import UNKNOWN_ARTIST, Album
from sonium.errors import MalformedProviderData, ProviderUnavailable
from sonium.providers.base import RawRecord, normalize_batch

logger = logging.getLogger(__name__)

PROVIDER_NAME = "local"
DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_RETRIES = 2


def album_from_local(raw: RawRecord) -> Album:
    """Normalise one row of the local album API."""
    album_id = raw.get("id")
    title = raw.get("title")
    if album_id is None or not title:
        msg = f"record missing id/title: {raw!r}"
        raise MalformedProviderData(PROVIDER_NAME, msg)

    rating = raw.get("average_rating")
    try:
        rating = float(rating) if rating is not None else None
    except (TypeError, ValueError):
        rating = None

    genres = raw.get("genres") or []
    return Album(
        album_id=str(album_id),
        title=str(title),
        artist=raw.get("artist") or UNKNOWN_ARTIST,
        artist_id=str(raw["artist_id"]) if raw.get("artist_id") else None,
        release_date=normalize_release_date(raw.get("release_date")),
        cover_url=raw.get("cover_image_url") or None,
        rating=rating,
        genres=[str(g) for g in genres if g],
        source_provider=PROVIDER_NAME,
    )


class LocalApiProvider:
    """HTTP client for the local album API (/api/albums/...)."""

    name = PROVIDER_NAME
    enrich_covers = False

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if max_retries < 0:
            msg = "max_retries must be non-negative."
            raise ValueError(msg)

        self._max_retries = max_retries
        self._client = httpx.Client(
            base_url=base_url,
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> "LocalApiProvider":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def fetch_recent(self, limit: int, offset: int = 0) -> list[Album]:
        rows = self._get_rows(
            "/api/albums/recent", {"limit": limit, "offset": offset}
        )
        return normalize_batch(self.name, rows, album_from_local)

    def search(self, query: str, limit: int = 25) -> list[Album]:
        rows = self._get_rows("/api/albums/search", {"query": query})
        return normalize_batch(self.name, rows[:limit], album_from_local)

    def _get_rows(self, path: str, params: dict[str, Any]) -> list[RawRecord]:
        """GET a JSON list, retrying 5xx responses and transport errors.

        404 means "nothing there" and returns an empty list.
        """
        for attempt in range(1, self._max_retries + 2):
            try:
                response = self._client.get(path, params=params)
                if response.status_code == 404:
                    logger.info("Local API %s returned 404.", path)
                    return []
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                if 500 <= status < 600 and attempt <= self._max_retries:
                    logger.warning(
                        "Server error for %s (status=%s, attempt=%s/%s). Retrying...",
                        path,
                        status,
                        attempt,
                        self._max_retries,
                    )
                    _sleep_backoff(attempt)
                    continue
                raise ProviderUnavailable(self.name, f"HTTP {status} for {path}") from exc
            except httpx.RequestError as exc:
                if attempt <= self._max_retries:
                    logger.warning(
                        "Request error for %s (attempt=%s/%s): %s. Retrying...",
                        path,
                        attempt,
                        self._max_retries,
                        exc,
                    )
                    _sleep_backoff(attempt)
                    continue
                raise ProviderUnavailable(self.name, f"{path}: {exc}") from exc
            except ValueError as exc:
                raise MalformedProviderData(self.name, f"invalid JSON from {path}") from exc

            if not isinstance(data, list):
                msg = f"expected a list from {path}, got {type(data).__name__}"
                raise MalformedProviderData(self.name, msg)
            return [row for row in data if isinstance(row, dict)]

        # Shouldn't be reached, but keeps mypy happy.
        raise ProviderUnavailable(self.name, f"{path}: retries exhausted")


def _sleep_backoff(attempt: int) -> None:
    """Sleep for a short exponential backoff based on the attempt number."""
    base = 0.5
    max_sleep = 5.0
    delay = min(max_sleep, base * (2 ** (attempt - 1)))
    jitter = random.uniform(0.0, 0.25 * delay)
    time.sleep(delay + jitter)
