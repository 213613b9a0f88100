from __future__ import annotations

from config import Settings


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("COURT_COUNT", "4")
    monkeypatch.setenv("ALLOWED_DURATIONS", "[60, 120]")
    monkeypatch.setenv("SOME_OTHER_SERVICE_URL", "http://example.invalid")

    settings = Settings()

    assert settings.court_count == 4
    assert settings.allowed_durations == [60, 120]
    assert settings.horizon_days == 15


def test_settings_accept_field_names_and_aliases():
    assert Settings(court_count=2).court_count == 2
    assert Settings(COURT_COUNT=5).court_count == 5


def test_tokens_default_to_empty():
    settings = Settings()
    assert settings.admin_token == ""
    assert settings.cron_secret == ""
