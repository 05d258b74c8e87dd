from __future__ import annotations

from api.config import Settings


def test_settings_read_aliases_and_nested_aws(monkeypatch):
    monkeypatch.setenv("SESSION_TTL_HOURS", "12")
    monkeypatch.setenv("S3_AVATARS_BUCKET", "team-avatars")
    monkeypatch.setenv("CRON_SECRET", "nightly")

    settings = Settings(_env_file=None)

    assert settings.session_ttl_hours == 12
    assert settings.aws.avatars_bucket == "team-avatars"
    assert settings.cron_secret == "nightly"


def test_unknown_environment_keys_are_ignored(monkeypatch):
    monkeypatch.setenv("SESSION_SECRET", "legacy")

    settings = Settings(_env_file=None)

    assert "session_secret" not in Settings.model_fields
    assert not hasattr(settings, "session_secret")
