from __future__ import annotations

from datetime import datetime, timezone

import pytest

from sonium.catalog.store import CatalogStore
from sonium.domain.models import Album, CatalogSnapshot
from sonium.errors import InvalidInput


def _album(album_id: str, title: str, artist: str, date: str = "Unknown", **kw) -> Album:
    return Album(album_id=album_id, title=title, artist=artist, release_date=date, **kw)


def test_merge_overlay_preserves_omitted_fields() -> None:
    store = CatalogStore()
    store.merge_upsert({"album_id": "a", "title": "T1", "artist": "X"})

    merged = store.merge_upsert({"album_id": "a", "title": "T2"})

    assert merged.title == "T2"
    assert merged.artist == "X"
    assert store.get("a") == merged


def test_merge_does_not_erase_known_values() -> None:
    store = CatalogStore()
    store.merge_upsert(
        _album("a", "OK Computer", "Radiohead", "1997-05-21",
               cover_url="http://img/a.jpg", genres=["alternative_rock"])
    )

    merged = store.merge_upsert(
        _album("a", "OK Computer", "Radiohead", source_provider="musicbrainz")
    )

    assert merged.release_date == "1997-05-21"
    assert merged.cover_url == "http://img/a.jpg"
    assert merged.genres == ["alternative_rock"]
    assert merged.source_provider == "musicbrainz"


def test_merge_accepts_camel_case_patch() -> None:
    store = CatalogStore()
    store.merge_upsert({"albumId": "a", "title": "T", "artist": "X", "releaseDate": "2001"})
    assert store.get("a").release_date == "2001"


def test_merge_is_idempotent() -> None:
    batch = [
        _album("a", "Nevermind", "Nirvana", "1991-09-24"),
        _album("b", "Blonde", "Frank Ocean", "2016-08-20"),
    ]
    once = CatalogStore()
    once.merge_many(batch)
    twice = CatalogStore()
    twice.merge_many(batch)
    twice.merge_many(batch)

    assert once.snapshot == twice.snapshot
    assert once.all_albums() == twice.all_albums()


def test_new_album_requires_title_and_artist() -> None:
    store = CatalogStore()
    with pytest.raises(InvalidInput):
        store.merge_upsert({"album_id": "a", "title": "Only a title"})
    with pytest.raises(InvalidInput):
        store.merge_upsert({"title": "No id", "artist": "X"})
    assert len(store) == 0


def test_invalid_item_rejects_whole_batch() -> None:
    store = CatalogStore()
    with pytest.raises(InvalidInput):
        store.merge_many([_album("a", "T", "X"), {"album_id": " ", "title": "T"}])
    assert "a" not in store


def test_sort_newest_first_unknown_last_in_insertion_order() -> None:
    store = CatalogStore()
    store.merge_many(
        [
            _album("u1", "First Unknown", "A"),
            _album("old", "Abbey Road", "The Beatles", "1969-09-26"),
            _album("u2", "Second Unknown", "B"),
            _album("new", "Blonde", "Frank Ocean", "2016-08-20"),
            _album("mid", "Kid A", "Radiohead", "2000"),
        ]
    )

    assert [a.album_id for a in store.all_albums()] == ["new", "mid", "old", "u1", "u2"]


def test_search_local_ranks_exact_title_then_artist() -> None:
    store = CatalogStore()
    store.merge_many(
        [
            _album("1", "Live at Nirvana Club", "Various", "2020"),
            _album("2", "Nevermind", "Nirvana", "1991"),
            _album("3", "Nirvana", "Some Band", "1980"),
        ]
    )

    results = store.search_local("nirvana")

    assert [a.album_id for a in results] == ["3", "2", "1"]


def test_search_local_blank_query_returns_catalog() -> None:
    store = CatalogStore()
    store.merge_many([_album("1", "Thriller", "Michael Jackson", "1982")])
    assert store.search_local("   ") == store.all_albums()
    assert store.search_local("zzz") == []


def test_queries_by_decade_year_and_genre() -> None:
    store = CatalogStore()
    store.merge_many(
        [
            _album("1", "Nevermind", "Nirvana", "1991-09-24", genres=["grunge", "rock"]),
            _album("2", "OK Computer", "Radiohead", "1997", genres=["rock"]),
            _album("3", "Blonde", "Frank Ocean", "2016", genres=["rnb"]),
        ]
    )

    assert [a.album_id for a in store.albums_by_decade("1990s")] == ["2", "1"]
    assert [a.album_id for a in store.albums_by_year(2016)] == ["3"]
    assert [a.album_id for a in store.albums_by_genre("ROCK")] == ["2", "1"]
    assert store.genre_counts() == [("rock", 2), ("grunge", 1), ("rnb", 1)]


def test_store_loads_snapshot() -> None:
    ts = datetime(2026, 10, 1, tzinfo=timezone.utc)
    snapshot = CatalogSnapshot(
        albums={"a": _album("a", "T", "X", "1999")},
        last_refreshed_at=ts,
    )
    store = CatalogStore(snapshot)

    assert store.last_refreshed_at == ts
    assert "a" in store
    assert store.get("missing") is None
