# sonium/providers/musicbrainz.py

"""
Secondary provider: thin wrapper around the MusicBrainz WS/2 release search.

You *must* set a sensible USER_AGENT_* configuration before using this module
(see sonium.config); MusicBrainz blocks anonymous clients.
"""

from __future__ import annotations

import calendar
import logging
import time
import warnings
from collections.abc import Callable, Iterable
from datetime import date, datetime
from typing import Any

import requests
from urllib3.exceptions import InsecureRequestWarning

from sonium.domain.decades import normalize_release_date
from sonium.domain.models import UNKNOWN_ARTIST, Album, utc_now
from sonium.errors import MalformedProviderData, ProviderUnavailable
from sonium.providers.base import RawRecord, normalize_batch

logger = logging.getLogger(__name__)

PROVIDER_NAME = "musicbrainz"
BASE_URL = "https://musicbrainz.org/ws/2"

_RATE_LIMIT_SECONDS = 1.0

RAW_TAG_TO_GENRE: dict[str, str] = {
    "indie rock": "indie_rock",
    "indie": "indie_rock",
    "alternative rock": "alternative_rock",
    "alternative": "alternative_rock",
    "rock": "rock",
    "electronic": "electronic",
    "electronica": "electronic",
    "hip hop": "hip_hop",
    "hip-hop": "hip_hop",
    "rap": "hip_hop",
    "jazz": "jazz",
    "metal": "metal",
    "black metal": "black_metal",
    "death metal": "death_metal",
    "pop": "pop",
    "synthpop": "synth_pop",
    "synth pop": "synth_pop",
    "post-rock": "post_rock",
    "post rock": "post_rock",
    "shoegaze": "shoegaze",
    "dream pop": "dream_pop",
    "r&b": "rnb",
    "soul": "soul",
    "folk": "folk",
    "punk": "punk",
    "grunge": "grunge",
}


def map_tags_to_genres(
    tags: Iterable[str],
    mapping: dict[str, str] | None = None,
) -> list[str]:
    """Map raw MusicBrainz tags to internal canonical genre names."""
    if mapping is None:
        mapping = RAW_TAG_TO_GENRE

    genres: list[str] = []
    for raw in tags:
        key = raw.strip().lower()
        genre = mapping.get(key)
        if genre and genre not in genres:
            genres.append(genre)

    return genres


def _extract_tag_names(entity: dict[str, Any]) -> list[str]:
    """Extract normalized tag names from a release or release-group dict."""
    tags: list[str] = []

    # Some endpoints use "tags", older examples "tag-list"
    raw_tags = entity.get("tags") or entity.get("tag-list") or []

    for tag in raw_tags:
        name = tag.get("name")
        if not name:
            continue
        tags.append(name.strip().lower())

    return tags


def album_from_release(raw: RawRecord) -> Album:
    """Normalise one MusicBrainz release into an Album.

    Cover art is not part of the release payload; it is filled in later by
    the cover resolver.
    """
    mbid = raw.get("id")
    title = raw.get("title")
    if not mbid or not title:
        msg = f"release missing id/title: {raw!r}"
        raise MalformedProviderData(PROVIDER_NAME, msg)

    credits = raw.get("artist-credit") or []
    first_artist = (credits[0].get("artist") or {}) if credits else {}

    tags = _extract_tag_names(raw) + _extract_tag_names(raw.get("release-group") or {})

    return Album(
        album_id=str(mbid),
        title=str(title),
        artist=first_artist.get("name") or UNKNOWN_ARTIST,
        artist_id=first_artist.get("id"),
        release_date=normalize_release_date(raw.get("date")),
        genres=map_tags_to_genres(tags),
        source_provider=PROVIDER_NAME,
    )


def months_before(day: date, months: int) -> date:
    """Return the same day `months` calendar months earlier (clamped to month end)."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month0 = divmod(month_index, 12)
    month = month0 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def _escape_query(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


class MusicBrainzProvider:
    """Release lookups against the MusicBrainz registry."""

    name = PROVIDER_NAME
    enrich_covers = True

    def __init__(
        self,
        *,
        user_agent: str,
        window_months: int = 3,
        timeout: float = 10.0,
        verify_tls: bool = True,
        clock: Callable[[], datetime] = utc_now,
        min_interval: float = _RATE_LIMIT_SECONDS,
    ) -> None:
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._window_months = window_months
        self._timeout = timeout
        self._verify_tls = verify_tls
        self._clock = clock
        self._min_interval = min_interval
        self._last_call_ts: float | None = None

        if not verify_tls:
            # Suppress only this specific warning when we *intentionally* skip verification
            warnings.filterwarnings("ignore", category=InsecureRequestWarning)
            logger.warning(
                "MusicBrainz TLS verification is DISABLED (MB_VERIFY_TLS=false). "
                "Do not use this setting in production."
            )

    def fetch_recent(self, limit: int, offset: int = 0) -> list[Album]:
        """Releases from the trailing window (default: last 3 months)."""
        since = months_before(self._clock().date(), self._window_months)
        params = {
            "query": f"date:[{since.isoformat()} TO *]",
            "fmt": "json",
            "limit": limit,
            "offset": offset,
        }
        data = self._get("/release", params)
        return normalize_batch(self.name, self._releases(data), album_from_release)

    def search(self, query: str, limit: int = 25) -> list[Album]:
        text = _escape_query(query.strip())
        params = {
            "query": f'release:"{text}" OR artist:"{text}"',
            "fmt": "json",
            "limit": limit,
        }
        data = self._get("/release", params)
        return normalize_batch(self.name, self._releases(data), album_from_release)

    def _releases(self, data: dict[str, Any]) -> list[RawRecord]:
        releases = data.get("releases")
        if releases is None:
            return []
        if not isinstance(releases, list):
            raise MalformedProviderData(self.name, "'releases' is not a list")
        return [r for r in releases if isinstance(r, dict)]

    def _sleep_if_needed(self) -> None:
        if self._last_call_ts is None:
            return

        elapsed = time.time() - self._last_call_ts
        if elapsed < self._min_interval:
            time.sleep(self._min_interval - elapsed)

    def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        self._sleep_if_needed()
        url = f"{BASE_URL}{path}"

        try:
            response = requests.get(
                url,
                headers=self._headers,
                params=params,
                timeout=self._timeout,
                verify=self._verify_tls,
            )
            self._last_call_ts = time.time()
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.JSONDecodeError as exc:
            raise MalformedProviderData(self.name, f"invalid JSON from {path}") from exc
        except requests.RequestException as exc:
            raise ProviderUnavailable(self.name, f"{path}: {exc}") from exc

        if not isinstance(data, dict):
            raise MalformedProviderData(self.name, f"unexpected payload from {path}")
        return data
