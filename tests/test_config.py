"""Configuration tests."""

from __future__ import annotations

import pytest

from crystalfootball import config


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()


def test_settings_read_environment(monkeypatch) -> None:
    monkeypatch.setenv("SITE_URL", "https://crystal.example/")
    monkeypatch.setenv("ADMIN_WHATSAPP_E164_LIST", "+96170000001, +96170000002,")
    monkeypatch.setenv("REMINDER_DAYS_AHEAD", "3")
    settings = config.get_settings()
    assert settings.dashboard_url == "https://crystal.example/dashboard"
    assert settings.renew_url == "https://crystal.example/packages"
    assert settings.admin_whatsapp_numbers == ["+96170000001", "+96170000002"]
    assert settings.reminder_days_ahead == 3


def test_get_settings_is_cached() -> None:
    assert config.get_settings() is config.get_settings()


def test_admin_api_key_required(monkeypatch) -> None:
    monkeypatch.delenv("CRYSTAL_ADMIN_API_KEY", raising=False)
    monkeypatch.setattr(config, "get_settings", lambda: config.Settings(_env_file=None))
    with pytest.raises(RuntimeError, match="CRYSTAL_ADMIN_API_KEY"):
        config.get_admin_api_key()
    monkeypatch.setenv("CRYSTAL_ADMIN_API_KEY", "secret")
    assert config.get_admin_api_key() == "secret"
