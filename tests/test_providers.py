from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

import httpx
import pytest
import requests

from sonium.catalog.store import CatalogStore
from sonium.domain.models import Album
from sonium.errors import MalformedProviderData, ProviderUnavailable
from sonium.providers import musicbrainz
from sonium.providers.base import normalize_batch
from sonium.providers.covers import CoverArtArchiveClient, CoverResolver
from sonium.providers.local_api import LocalApiProvider, album_from_local
from sonium.providers.musicbrainz import (
    MusicBrainzProvider,
    album_from_release,
    map_tags_to_genres,
    months_before,
)
from sonium.providers.spotify import SpotifyProvider
from sonium.ratings.service import RatingService
from sonium.ratings.store import CollectionStore, RatingStore

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code: int = 200, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self) -> Any:
        return self._payload


# ---------------------------------------------------------------------------
# Local API (httpx)
# ---------------------------------------------------------------------------


def _local(handler, **kwargs) -> LocalApiProvider:
    return LocalApiProvider(
        "http://local.test",
        max_retries=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_local_fetch_recent_normalizes_rows() -> None:
    seen: list[httpx.URL] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url)
        return httpx.Response(
            200,
            json=[
                {
                    "id": 4,
                    "title": "Nevermind",
                    "artist": "Nirvana",
                    "release_date": "1991-09-24",
                    "cover_image_url": "http://img/4.jpg",
                    "average_rating": "4.5",
                },
                {"id": 5, "title": "No Date", "artist": None, "cover_image_url": ""},
            ],
        )

    with _local(handler) as provider:
        albums = provider.fetch_recent(20, 40)

    assert seen[0].path == "/api/albums/recent"
    assert seen[0].params["limit"] == "20"
    assert seen[0].params["offset"] == "40"
    assert albums[0] == Album(
        album_id="4",
        title="Nevermind",
        artist="Nirvana",
        release_date="1991-09-24",
        cover_url="http://img/4.jpg",
        rating=4.5,
        source_provider="local",
    )
    assert albums[1].artist == "Unknown Artist"
    assert albums[1].release_date == "Unknown"
    assert albums[1].cover_url is None


def test_local_timestamp_release_dates_keep_their_date() -> None:
    rows = [
        {"id": 1, "title": "Undated", "artist": "X"},
        {"id": 2, "title": "Nevermind", "artist": "Nirvana",
         "release_date": "1991-09-24T00:00:00.000Z"},
        {"id": 3, "title": "In Rainbows", "artist": "Radiohead",
         "release_date": "2007-10-10T00:00:00.000Z"},
    ]
    with _local(lambda request: httpx.Response(200, json=rows)) as provider:
        albums = provider.fetch_recent(10)

    assert [a.release_date for a in albums] == ["Unknown", "1991-09-24", "2007-10-10"]

    store = CatalogStore()
    store.merge_many(albums)
    assert [a.album_id for a in store.all_albums()] == ["3", "2", "1"]
    assert [a.album_id for a in store.albums_by_decade("1990s")] == ["2"]

    service = RatingService(RatingStore(), CollectionStore(), store)
    service.rate("u1", "2", 5)
    service.rate("u1", "3", 4)
    assert [r.album_id for r in service.top_albums("1990s")] == ["2"]


def test_local_server_error_is_unavailable() -> None:
    with _local(lambda request: httpx.Response(503)) as provider:
        with pytest.raises(ProviderUnavailable):
            provider.fetch_recent(10)


def test_local_timeout_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with _local(handler) as provider:
        with pytest.raises(ProviderUnavailable):
            provider.search("nirvana")


def test_local_not_found_is_empty_and_bad_payload_is_malformed() -> None:
    with _local(lambda request: httpx.Response(404)) as provider:
        assert provider.fetch_recent(10) == []
    with _local(lambda request: httpx.Response(200, json={"rows": []})) as provider:
        with pytest.raises(MalformedProviderData):
            provider.fetch_recent(10)
    with _local(lambda request: httpx.Response(200, text="<html>")) as provider:
        with pytest.raises(MalformedProviderData):
            provider.fetch_recent(10)


def test_normalize_batch_skips_malformed_records() -> None:
    rows = [{"id": 1, "title": "Ok", "artist": "A"}, {"title": "missing id"}]
    assert [a.album_id for a in normalize_batch("local", rows, album_from_local)] == ["1"]

    with pytest.raises(MalformedProviderData):
        normalize_batch("local", [{"title": "missing id"}], album_from_local)
    assert normalize_batch("local", [], album_from_local) == []


# ---------------------------------------------------------------------------
# MusicBrainz (requests)
# ---------------------------------------------------------------------------


def test_months_before_clamps_to_month_end() -> None:
    assert months_before(date(2026, 10, 19), 3) == date(2026, 7, 19)
    assert months_before(date(2026, 5, 31), 3) == date(2026, 2, 28)
    assert months_before(date(2026, 2, 15), 3) == date(2025, 11, 15)


def test_album_from_release() -> None:
    album = album_from_release(
        {
            "id": "mbid-1",
            "title": "Kid A",
            "date": "2000-10-02",
            "artist-credit": [{"artist": {"id": "art-1", "name": "Radiohead"}}],
            "release-group": {"tags": [{"name": "Electronic"}, {"name": "art rock"}]},
            "tags": [{"name": "alternative rock"}],
        }
    )
    assert album.album_id == "mbid-1"
    assert album.artist == "Radiohead"
    assert album.artist_id == "art-1"
    assert album.genres == ["alternative_rock", "electronic"]
    assert album.cover_url is None
    assert album.source_provider == "musicbrainz"

    with pytest.raises(MalformedProviderData):
        album_from_release({"id": "no-title"})


def test_map_tags_to_genres_deduplicates() -> None:
    assert map_tags_to_genres(["Indie", "indie rock", "unknown"]) == ["indie_rock"]


def test_musicbrainz_fetch_recent_uses_trailing_window(monkeypatch) -> None:
    captured: dict[str, Any] = {}

    def fake_get(url, headers=None, params=None, timeout=None, verify=None):
        captured.update(url=url, headers=headers, params=params, timeout=timeout)
        return FakeResponse(200, {"releases": [{"id": "r1", "title": "New", "date": "2026-09"}]})

    monkeypatch.setattr(musicbrainz.requests, "get", fake_get)
    provider = MusicBrainzProvider(
        user_agent="sonium-tests/1.0 (mailto:test@example.com)",
        clock=lambda: NOW,
        timeout=3.0,
        min_interval=0.0,
    )

    albums = provider.fetch_recent(25, 0)

    assert captured["url"] == "https://musicbrainz.org/ws/2/release"
    assert captured["params"]["query"] == "date:[2026-07-19 TO *]"
    assert captured["params"]["limit"] == 25
    assert captured["timeout"] == 3.0
    assert captured["headers"]["User-Agent"].startswith("sonium-tests/")
    assert [a.album_id for a in albums] == ["r1"]


def test_musicbrainz_errors_map_to_provider_errors(monkeypatch) -> None:
    provider = MusicBrainzProvider(user_agent="ua", min_interval=0.0)

    def timeout(*args, **kwargs):
        raise requests.Timeout("read timed out")

    monkeypatch.setattr(musicbrainz.requests, "get", timeout)
    with pytest.raises(ProviderUnavailable):
        provider.search("Nevermind")

    monkeypatch.setattr(
        musicbrainz.requests, "get", lambda *a, **kw: FakeResponse(503, {})
    )
    with pytest.raises(ProviderUnavailable):
        provider.search("Nevermind")

    monkeypatch.setattr(
        musicbrainz.requests, "get", lambda *a, **kw: FakeResponse(200, {"releases": "nope"})
    )
    with pytest.raises(MalformedProviderData):
        provider.search("Nevermind")


def test_musicbrainz_search_query_escapes_quotes(monkeypatch) -> None:
    captured: dict[str, Any] = {}

    def fake_get(url, headers=None, params=None, timeout=None, verify=None):
        captured.update(params=params)
        return FakeResponse(200, {"releases": []})

    monkeypatch.setattr(musicbrainz.requests, "get", fake_get)
    provider = MusicBrainzProvider(user_agent="ua", min_interval=0.0)

    assert provider.search(' say "hi" ') == []
    assert captured["params"]["query"] == 'release:"say \\"hi\\"" OR artist:"say \\"hi\\""'


# ---------------------------------------------------------------------------
# Spotify (httpx)
# ---------------------------------------------------------------------------


def test_spotify_reuses_token_and_normalizes_albums() -> None:
    token_requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "accounts.spotify.com":
            token_requests.append(request)
            return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})
        assert request.headers["Authorization"] == "Bearer tok"
        return httpx.Response(
            200,
            json={
                "albums": {
                    "items": [
                        {
                            "id": "sp-1",
                            "name": "Blonde",
                            "release_date": "2016-08-20",
                            "artists": [{"id": "fo", "name": "Frank Ocean"}],
                            "images": [{"url": "https://i.scdn.co/blonde.jpg"}],
                        }
                    ]
                }
            },
        )

    with SpotifyProvider("id", "secret", transport=httpx.MockTransport(handler)) as provider:
        recent = provider.fetch_recent(100)
        found = provider.search("blonde")

    assert len(token_requests) == 1
    assert recent == found
    assert recent[0].cover_url == "https://i.scdn.co/blonde.jpg"
    assert recent[0].artist_id == "fo"
    assert recent[0].source_provider == "spotify"


def test_spotify_token_failure_is_unavailable() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(400))
    with SpotifyProvider("id", "bad", transport=transport) as provider:
        with pytest.raises(ProviderUnavailable):
            provider.fetch_recent(10)


# ---------------------------------------------------------------------------
# Cover Art Archive
# ---------------------------------------------------------------------------


def test_cover_art_archive_prefers_front_thumbnail(monkeypatch) -> None:
    payload = {
        "images": [
            {"front": False, "image": "http://caa/back.jpg", "thumbnails": {}},
            {"front": True, "image": "http://caa/front.jpg",
             "thumbnails": {"500": "http://caa/front-500.jpg"}},
        ]
    }
    monkeypatch.setattr(
        "sonium.providers.covers.requests.get",
        lambda *a, **kw: FakeResponse(200, payload),
    )
    assert CoverArtArchiveClient(user_agent="ua").fetch_cover("r1") == "http://caa/front-500.jpg"


def test_cover_art_archive_never_raises(monkeypatch) -> None:
    client = CoverArtArchiveClient(user_agent="ua")

    monkeypatch.setattr(
        "sonium.providers.covers.requests.get", lambda *a, **kw: FakeResponse(404)
    )
    assert client.fetch_cover("r1") is None

    def boom(*args, **kwargs):
        raise requests.ConnectionError("unreachable")

    monkeypatch.setattr("sonium.providers.covers.requests.get", boom)
    assert client.fetch_cover("r1") is None


def test_cover_resolver_without_service() -> None:
    store = CatalogStore()
    store.merge_upsert(Album(album_id="a", title="A", artist="X", cover_url="http://a.jpg"))
    resolver = CoverResolver(store)

    assert resolver.resolve_cover("a") == "http://a.jpg"
    assert resolver.resolve_cover("b") is None
