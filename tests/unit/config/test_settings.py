"""Tests for settings and project policy."""

import pytest
from pydantic import ValidationError

from authcore.config import OAuthProviderConfig, ProjectPolicy, Settings
from authcore.config.base import DEFAULT_SESSION_DURATION


class TestSettings:
    """Environment-driven settings."""

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.session_duration == DEFAULT_SESSION_DURATION
        assert settings.log_level == "INFO"
        assert settings.smtp_enabled

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("AUTHCORE_PASSWORD_HISTORY", "5")
        monkeypatch.setenv("AUTHCORE_LOG_LEVEL", "debug")

        settings = Settings(_env_file=None)

        assert settings.password_history == 5
        assert settings.log_level == "DEBUG"

    def test_rejects_unknown_log_format(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, log_format="xml")

    def test_rejects_negative_counters(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, users_limit=-1)


class TestProjectPolicy:
    """Per-project policy."""

    def test_from_settings_with_overrides(self):
        settings = Settings(_env_file=None, users_limit=10, session_alerts=True)

        policy = ProjectPolicy.from_settings(settings, project_id="p1", max_sessions=3)

        assert policy.project_id == "p1"
        assert policy.limit == 10
        assert policy.session_alerts
        assert policy.max_sessions == 3

    def test_provider_lookup(self):
        policy = ProjectPolicy(
            oauth_providers={"github": OAuthProviderConfig(enabled=True, app_id="id")}
        )

        assert policy.provider("github").enabled
        assert not policy.provider("github").configured
        assert policy.provider("google") is None

    def test_allowed_hostnames_include_project_url(self):
        policy = ProjectPolicy(url="https://app.example.com/base", hostnames=["*.example.org"])

        assert policy.allowed_hostnames == ["*.example.org", "app.example.com"]
