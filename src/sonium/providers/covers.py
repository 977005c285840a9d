# sonium/providers/covers.py

"""
Cover art lookup: Cover Art Archive client and the best-effort resolver.

Cover Art Archive is keyed by MusicBrainz release ids. Not every release has
artwork, so a 404 is an expected answer, not an error.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import requests

if TYPE_CHECKING:
    from sonium.catalog.store import CatalogStore

logger = logging.getLogger(__name__)

CAA_BASE_URL = "https://coverartarchive.org"


def _front_image_url(data: dict[str, Any]) -> str | None:
    """Pick the front cover from a CAA release listing (500px thumbnail preferred)."""
    images = [img for img in data.get("images") or [] if isinstance(img, dict)]
    if not images:
        return None

    front = next((img for img in images if img.get("front")), images[0])
    thumbnails = front.get("thumbnails") or {}
    return thumbnails.get("500") or thumbnails.get("large") or front.get("image")


class CoverArtArchiveClient:
    """Dedicated artwork service. fetch_cover() never raises."""

    def __init__(self, *, user_agent: str, timeout: float = 10.0) -> None:
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._timeout = timeout

    def fetch_cover(self, album_id: str) -> str | None:
        url = f"{CAA_BASE_URL}/release/{album_id}"
        try:
            response = requests.get(url, headers=self._headers, timeout=self._timeout)
            if response.status_code == 404:
                logger.debug("No cover art for %s", album_id)
                return None
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            logger.warning("Cover Art Archive lookup failed for %s: %s", album_id, exc)
            return None

        if not isinstance(data, dict):
            return None
        return _front_image_url(data)


class CoverResolver:
    """Resolve artwork: stored catalog URL first, then the artwork service.

    Returns None when no artwork exists anywhere; callers show a placeholder.
    """

    def __init__(
        self,
        store: CatalogStore,
        service: CoverArtArchiveClient | None = None,
    ) -> None:
        self._store = store
        self._service = service

    def resolve_cover(self, album_id: str) -> str | None:
        album = self._store.get(album_id)
        if album is not None and album.cover_url:
            return album.cover_url

        if self._service is None:
            return None
        return self._service.fetch_cover(album_id)
