# sonium/providers/spotify.py

"""Commercial catalog provider backed by the Spotify Web API."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from sonium.domain.decades import normalize_release_date
from sonium.domain.models import UNKNOWN_ARTIST, Album
from sonium.errors import MalformedProviderData, ProviderUnavailable
from sonium.providers.base import RawRecord, normalize_batch

logger = logging.getLogger(__name__)

PROVIDER_NAME = "spotify"
TOKEN_URL = "https://accounts.spotify.com/api/token"
API_BASE_URL = "https://api.spotify.com/v1"

# Refresh the token slightly before Spotify expires it.
_TOKEN_EXPIRY_MARGIN = 30.0


def album_from_spotify(raw: RawRecord) -> Album:
    """Normalise one Spotify simplified album object."""
    album_id = raw.get("id")
    title = raw.get("name")
    if not album_id or not title:
        msg = f"album missing id/name: {raw!r}"
        raise MalformedProviderData(PROVIDER_NAME, msg)

    artists = raw.get("artists") or []
    first_artist = artists[0] if artists else {}
    images = raw.get("images") or []

    return Album(
        album_id=str(album_id),
        title=str(title),
        artist=first_artist.get("name") or UNKNOWN_ARTIST,
        artist_id=first_artist.get("id"),
        release_date=normalize_release_date(raw.get("release_date")),
        cover_url=images[0].get("url") if images else None,
        genres=[str(g) for g in raw.get("genres") or [] if g],
        source_provider=PROVIDER_NAME,
    )


class SpotifyProvider:
    """Client-credentials client for new releases and album search."""

    name = PROVIDER_NAME
    enrich_covers = False

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        market: str = "US",
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._credentials = (client_id, client_secret)
        self._market = market
        self._client = httpx.Client(timeout=timeout, transport=transport)
        self._token: str | None = None
        self._token_expires_at = 0.0

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> "SpotifyProvider":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    def fetch_recent(self, limit: int, offset: int = 0) -> list[Album]:
        # Spotify caps page size at 50.
        data = self._api_get(
            "/browse/new-releases",
            {"limit": min(limit, 50), "offset": offset, "country": self._market},
        )
        return normalize_batch(self.name, self._items(data), album_from_spotify)

    def search(self, query: str, limit: int = 25) -> list[Album]:
        data = self._api_get(
            "/search",
            {"q": query, "type": "album", "limit": min(limit, 50), "market": self._market},
        )
        return normalize_batch(self.name, self._items(data), album_from_spotify)

    def _items(self, data: dict[str, Any]) -> list[RawRecord]:
        albums = data.get("albums")
        if not isinstance(albums, dict):
            raise MalformedProviderData(self.name, "response has no 'albums' object")
        items = albums.get("items") or []
        return [item for item in items if isinstance(item, dict)]

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        try:
            response = self._client.post(
                TOKEN_URL,
                data={"grant_type": "client_credentials"},
                auth=self._credentials,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(self.name, f"token request failed: {exc}") from exc
        except ValueError as exc:
            raise MalformedProviderData(self.name, "invalid token response") from exc

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise MalformedProviderData(self.name, "token response has no access_token")

        expires_in = float(payload.get("expires_in", 3600))
        self._token = token
        self._token_expires_at = time.monotonic() + expires_in - _TOKEN_EXPIRY_MARGIN
        logger.debug("Obtained Spotify token valid for %.0fs", expires_in)
        return token

    def _api_get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        token = self._access_token()
        try:
            response = self._client.get(
                f"{API_BASE_URL}{path}",
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
            if response.status_code == 401:
                # Token revoked or expired early; the next call fetches a new one.
                self._token = None
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise ProviderUnavailable(self.name, f"{path}: {exc}") from exc
        except ValueError as exc:
            raise MalformedProviderData(self.name, f"invalid JSON from {path}") from exc

        if not isinstance(data, dict):
            raise MalformedProviderData(self.name, f"unexpected payload from {path}")
        return data
