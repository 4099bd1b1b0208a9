"""
Tests for the public health endpoint and settings validation.
"""

import pytest
from fastapi.testclient import TestClient

from pennybook.config import Settings
from pennybook.main import app

client = TestClient(app)


def test_health_is_public():
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "pennybook-backend"}


class TestSettingsValidation:
    """Test Settings.validate()."""

    def test_missing_supabase_url(self, monkeypatch):
        monkeypatch.setattr(Settings, "SUPABASE_URL", "")

        with pytest.raises(ValueError, match="SUPABASE_URL"):
            Settings.validate()

    def test_cap_must_be_positive(self, monkeypatch):
        monkeypatch.setattr(Settings, "RECURRING_MAX_PER_TEMPLATE", 0)

        with pytest.raises(ValueError, match="RECURRING_MAX_PER_TEMPLATE"):
            Settings.validate()

    def test_unknown_calendar_timezone(self, monkeypatch):
        monkeypatch.setattr(Settings, "CALENDAR_TIMEZONE", "Mars/Olympus_Mons")

        with pytest.raises(ValueError, match="CALENDAR_TIMEZONE"):
            Settings.validate()

    def test_valid_settings(self):
        Settings.validate()

    def test_jwks_url_is_derived(self):
        assert Settings().SUPABASE_JWKS_URL == "http://localhost:54321/auth/v1/.well-known/jwks.json"
