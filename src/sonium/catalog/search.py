# sonium/catalog/search.py

"""Case-insensitive substring search over album title and artist."""

from __future__ import annotations

from collections.abc import Iterable

from sonium.domain.models import Album


def normalize_query(query: str | None) -> str:
    return (query or "").strip().casefold()


def matches(album: Album, needle: str) -> bool:
    return needle in album.title.casefold() or needle in album.artist.casefold()


def _rank(album: Album, needle: str) -> int:
    if album.title.casefold() == needle:
        return 0
    if album.artist.casefold() == needle:
        return 1
    return 2


def rank_matches(albums: Iterable[Album], query: str) -> list[Album]:
    """Filter and rank albums for a query.

    Exact title matches come first, then exact artist matches, then every
    other substring match. Within each group the input order is kept, so
    pass albums in catalog sort order.
    """
    needle = normalize_query(query)
    hits = [album for album in albums if matches(album, needle)]
    return sorted(hits, key=lambda album: _rank(album, needle))
