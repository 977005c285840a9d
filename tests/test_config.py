from __future__ import annotations

from datetime import timedelta
from pathlib import Path

import pytest

from sonium.config import get_project_root, load_settings
from sonium.errors import InvalidInput


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in (
        "SONIUM_PROJECT_ROOT",
        "SONIUM_DATA_DIR",
        "SONIUM_STALENESS_HOURS",
        "SONIUM_MB_WINDOW_MONTHS",
        "SONIUM_HTTP_TIMEOUT",
        "SPOTIFY_CLIENT_ID",
        "SPOTIFY_CLIENT_SECRET",
        "MB_VERIFY_TLS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("SONIUM_PROJECT_ROOT", str(tmp_path))

    settings = load_settings()

    assert get_project_root() == tmp_path.resolve()
    assert settings.data_dir == tmp_path.resolve() / "data"
    assert settings.staleness == timedelta(hours=24)
    assert settings.mb_window_months == 3
    assert settings.http_timeout == 10.0
    assert settings.mb_verify_tls is True
    assert settings.spotify_enabled is False


def test_environment_overrides(monkeypatch) -> None:
    monkeypatch.setenv("SONIUM_DATA_DIR", "/srv/sonium")
    monkeypatch.setenv("SONIUM_STALENESS_HOURS", "6")
    monkeypatch.setenv("SONIUM_HTTP_TIMEOUT", "2.5")
    monkeypatch.setenv("MB_VERIFY_TLS", "false")
    monkeypatch.setenv("SPOTIFY_CLIENT_ID", "id")
    monkeypatch.setenv("SPOTIFY_CLIENT_SECRET", "secret")

    settings = load_settings()

    assert settings.data_dir == Path("/srv/sonium")
    assert settings.staleness == timedelta(hours=6)
    assert settings.http_timeout == 2.5
    assert settings.mb_verify_tls is False
    assert settings.spotify_enabled is True


def test_explicit_data_dir_wins(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("SONIUM_DATA_DIR", "/srv/sonium")
    assert load_settings(tmp_path).data_dir == tmp_path


@pytest.mark.parametrize("value", ["soon", "-1", "0"])
def test_invalid_numbers_are_rejected(monkeypatch, value: str) -> None:
    monkeypatch.setenv("SONIUM_STALENESS_HOURS", value)
    with pytest.raises(InvalidInput):
        load_settings()
