# sonium/config.py

"""Shared configuration and environment setup."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from os import getenv
from pathlib import Path

from dotenv import load_dotenv

from sonium.errors import InvalidInput

load_dotenv(override=True)

DEFAULT_STALENESS_HOURS = 24.0
DEFAULT_WINDOW_MONTHS = 3
DEFAULT_HTTP_TIMEOUT = 10.0
DEFAULT_LOCAL_API_URL = "http://localhost:3000"


def get_project_root() -> Path:
    """Return the project root directory.

    Prefers SONIUM_PROJECT_ROOT env var. Falls back to current working directory.
    """
    if root := getenv("SONIUM_PROJECT_ROOT"):
        return Path(root).resolve()
    return Path.cwd()


@dataclass(slots=True)
class Settings:
    """Runtime settings for the catalog and rating services."""

    data_dir: Path
    staleness: timedelta = timedelta(hours=DEFAULT_STALENESS_HOURS)
    mb_window_months: int = DEFAULT_WINDOW_MONTHS
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    local_api_url: str = DEFAULT_LOCAL_API_URL
    user_agent: str = "sonium/0.1.0 (mailto:you@example.com)"
    mb_verify_tls: bool = True
    spotify_client_id: str | None = None
    spotify_client_secret: str | None = None
    spotify_market: str = "US"

    @property
    def spotify_enabled(self) -> bool:
        return bool(self.spotify_client_id and self.spotify_client_secret)


def _float_env(name: str, default: float) -> float:
    raw = getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        msg = f"{name} must be a number, got {raw!r}."
        raise InvalidInput(msg) from exc
    if value <= 0:
        msg = f"{name} must be positive, got {raw!r}."
        raise InvalidInput(msg)
    return value


def load_settings(data_dir: Path | str | None = None) -> Settings:
    """Build Settings from the environment (and .env, loaded at import)."""
    if data_dir is None:
        env_dir = getenv("SONIUM_DATA_DIR")
        data_dir = Path(env_dir) if env_dir else get_project_root() / "data"

    app = getenv("USER_AGENT_APP", "sonium")
    version = getenv("USER_AGENT_VERSION", "0.1.0")
    contact = getenv("USER_AGENT_CONTACT", "mailto:you@example.com")

    return Settings(
        data_dir=Path(data_dir),
        staleness=timedelta(
            hours=_float_env("SONIUM_STALENESS_HOURS", DEFAULT_STALENESS_HOURS)
        ),
        mb_window_months=int(
            _float_env("SONIUM_MB_WINDOW_MONTHS", DEFAULT_WINDOW_MONTHS)
        ),
        http_timeout=_float_env("SONIUM_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
        local_api_url=getenv("SONIUM_LOCAL_API_URL", DEFAULT_LOCAL_API_URL),
        user_agent=f"{app}/{version} ({contact})",
        mb_verify_tls=getenv("MB_VERIFY_TLS", "true").lower() == "true",
        spotify_client_id=getenv("SPOTIFY_CLIENT_ID") or None,
        spotify_client_secret=getenv("SPOTIFY_CLIENT_SECRET") or None,
        spotify_market=getenv("SPOTIFY_MARKET", "US"),
    )
