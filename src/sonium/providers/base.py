# sonium/providers/base.py

"""Provider protocol, uniform provider results and the fallback chain."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from sonium.domain.models import Album
from sonium.errors import MalformedProviderData, ProviderError

logger = logging.getLogger(__name__)

RawRecord = dict[str, Any]


class AlbumProvider(Protocol):
    """An external source of album metadata, normalised to Album records.

    Implementations raise ProviderUnavailable or MalformedProviderData.
    """

    name: str
    enrich_covers: bool

    def fetch_recent(self, limit: int, offset: int = 0) -> list[Album]: ...

    def search(self, query: str, limit: int = 25) -> list[Album]: ...


@dataclass(slots=True)
class ProviderResult:
    """Either the albums a provider returned or the error it failed with."""

    provider: str
    albums: list[Album] = field(default_factory=list)
    error: ProviderError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class FallbackStep:
    provider: str
    fetch: Callable[[], list[Album]]


@dataclass(slots=True)
class ChainOutcome:
    """Result of walking a fallback chain.

    `winner` is the first step that produced at least one album, or None
    when the chain was exhausted.
    """

    winner: ProviderResult | None
    attempts: list[ProviderResult]

    @property
    def errors(self) -> list[ProviderError]:
        return [a.error for a in self.attempts if a.error is not None]

    @property
    def exhausted_with_errors(self) -> bool:
        return self.winner is None and bool(self.errors)


def call_provider(provider: str, fetch: Callable[[], list[Album]]) -> ProviderResult:
    """Run one provider call and wrap its outcome in a ProviderResult."""
    try:
        albums = fetch()
    except ProviderError as exc:
        logger.warning("Provider %s failed: %s", provider, exc)
        return ProviderResult(provider=provider, error=exc)

    logger.debug("Provider %s returned %d albums", provider, len(albums))
    return ProviderResult(provider=provider, albums=albums)


def run_fallback_chain(steps: Sequence[FallbackStep]) -> ChainOutcome:
    """Try steps in order, stopping at the first one that yields albums."""
    attempts: list[ProviderResult] = []
    for step in steps:
        result = call_provider(step.provider, step.fetch)
        attempts.append(result)
        if result.ok and result.albums:
            return ChainOutcome(winner=result, attempts=attempts)
        if result.ok:
            logger.info("Provider %s returned no albums, falling back", step.provider)

    return ChainOutcome(winner=None, attempts=attempts)


def normalize_batch(
    provider: str,
    records: Iterable[RawRecord],
    normalize: Callable[[RawRecord], Album],
) -> list[Album]:
    """Normalise raw records, skipping malformed ones.

    Raises MalformedProviderData only if every record in a non-empty batch
    is malformed.
    """
    albums: list[Album] = []
    skipped = 0
    for raw in records:
        try:
            albums.append(normalize(raw))
        except MalformedProviderData as exc:
            skipped += 1
            logger.warning("Skipping malformed record from %s: %s", provider, exc)

    if skipped and not albums:
        msg = f"all {skipped} records were malformed"
        raise MalformedProviderData(provider, msg)

    return albums
