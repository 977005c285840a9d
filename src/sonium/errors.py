# sonium/errors.py

"""Exception types shared by the catalog and rating services."""

from __future__ import annotations


class SoniumError(Exception):
    """Base class for all errors raised by this package."""


class ProviderError(SoniumError):
    """A provider step in the fallback chain could not deliver albums."""

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderUnavailable(ProviderError):
    """Network failure, timeout or non-success response from a provider."""


class MalformedProviderData(ProviderError):
    """A provider response is missing required fields."""


class InvalidInput(SoniumError, ValueError):
    """Caller supplied a value the operation cannot accept (nothing applied)."""
