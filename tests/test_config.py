"""Tests for settings validation."""

import pytest

from sessionvault.config import Settings
from sessionvault.errors import ConfigurationFailure
from sessionvault.main import create_app


def _settings(secret: str) -> Settings:
    settings = Settings()
    settings.JWT_SECRET = secret
    return settings


class TestSettingsValidate:
    def test_accepts_strong_secret(self):
        _settings("x" * 48).validate()

    @pytest.mark.parametrize(
        "secret",
        [
            "",
            "too-short",
            "changeme-changeme-changeme-changeme-1234",
            "please-change-me-in-production-0123456789",
        ],
    )
    def test_rejects_weak_secret(self, secret: str):
        with pytest.raises(ConfigurationFailure):
            _settings(secret).validate()

    def test_create_app_fails_closed(self, session_factory):
        with pytest.raises(ConfigurationFailure):
            create_app(_settings(""), session_factory=session_factory)
