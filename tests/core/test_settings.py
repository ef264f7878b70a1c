"""Tests for fireway.settings module.

Covers:
- Defaults
- FIREWAY_* environment overrides
- Emulator host aliases
- Service account templating
"""

import pytest
from pydantic import ValidationError

from fireway.settings import FirewaySettings, get_settings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("FIRESTORE_EMULATOR_HOST", raising=False)
    monkeypatch.delenv("FIREWAY_EMULATOR_HOST", raising=False)
    monkeypatch.delenv("FIREWAY_HISTORY_COLLECTION", raising=False)


class TestDefaults:
    def test_history_collection(self):
        assert FirewaySettings().history_collection == "fireway"

    def test_token_lifetime_is_fifteen_minutes(self):
        assert FirewaySettings().token_lifetime == 900

    def test_cloud_platform_scope(self):
        assert FirewaySettings().scopes == ["https://www.googleapis.com/auth/cloud-platform"]

    def test_no_emulator(self):
        assert FirewaySettings().emulator_host is None


class TestEnvOverride:
    def test_history_collection_from_env(self, monkeypatch):
        monkeypatch.setenv("FIREWAY_HISTORY_COLLECTION", "migrations")
        assert FirewaySettings().history_collection == "migrations"

    def test_list_from_env(self, monkeypatch):
        monkeypatch.setenv("FIREWAY_LOCAL_SEARCH_PROJECTS", '["dev-a", "dev-b"]')
        assert FirewaySettings().local_search_projects == ["dev-a", "dev-b"]

    @pytest.mark.parametrize("var", ["FIRESTORE_EMULATOR_HOST", "FIREWAY_EMULATOR_HOST"])
    def test_emulator_host(self, monkeypatch, var):
        monkeypatch.setenv(var, "localhost:8080")
        assert FirewaySettings().emulator_host == "localhost:8080"

    def test_invalid_grace_period(self, monkeypatch):
        monkeypatch.setenv("FIREWAY_GRACE_PERIOD", "-1")
        with pytest.raises(ValidationError):
            FirewaySettings()


def test_principal_for():
    settings = FirewaySettings()
    assert settings.principal_for("acme-prod") == "main-service-account@acme-prod.iam.gserviceaccount.com"


def test_get_settings_is_cached():
    get_settings.cache_clear()
    try:
        assert get_settings() is get_settings()
    finally:
        get_settings.cache_clear()
