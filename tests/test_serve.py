"""Tests for configuration loading and the app factory."""

from __future__ import annotations

import inspect

import pytest

from hookvault.config import Settings, get_settings
from hookvault.errors import ConfigurationError
from hookvault.ingress import read_signed_body
from hookvault.purger import daily_deadline, purge_before
from hookvault.query import iter_listing
from hookvault.serve import create_app
from hookvault.store import MemoryArchiveStore, create_store
from hookvault.tasks.dispatcher import InMemoryTaskQueue


class TestSettings:
    def test_defaults(self):
        s = Settings(_env_file=None)
        assert s.ingress_cap == 8 * 1024 * 1024
        assert s.max_blob_size == 1_048_576
        assert s.max_response_size == 30 * 1024 * 1024
        assert s.retention_days == 365
        assert s.purge_page_size == 100

    def test_module_defaults_follow_settings(self):
        s = Settings(_env_file=None)
        assert inspect.signature(read_signed_body).parameters["cap"].default == s.ingress_cap
        assert inspect.signature(iter_listing).parameters["max_size"].default == s.max_response_size
        assert inspect.signature(purge_before).parameters["page_size"].default == s.purge_page_size
        assert inspect.signature(daily_deadline).parameters["retention_days"].default == s.retention_days

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("HOOKVAULT_APP_KEY", "from-env")
        monkeypatch.setenv("HOOKVAULT_RETENTION_DAYS", "90")
        monkeypatch.setenv("HOOKVAULT_DENIED_RESOURCE_TYPES", '["secrets"]')
        s = Settings(_env_file=None)
        assert s.app_key == "from-env"
        assert s.retention_days == 90
        assert s.denied_resource_types == ["secrets"]

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()

    def test_require_app_key(self):
        with pytest.raises(ConfigurationError):
            Settings(_env_file=None, app_key="").require_app_key()


class TestAppFactory:
    def test_missing_app_key_refuses_to_start(self):
        with pytest.raises(ConfigurationError):
            create_app(
                Settings(_env_file=None, app_key="", backend="memory"),
                store=MemoryArchiveStore(),
                dispatcher=InMemoryTaskQueue(),
            )

    def test_memory_backend(self):
        store = create_store(Settings(_env_file=None, backend="memory"))
        assert isinstance(store, MemoryArchiveStore)

    def test_routes_registered(self, app):
        paths = {route.path for route in app.routes}
        assert {
            "/r",
            "/r/",
            "/task/process-hook",
            "/task/save-resource",
            "/task/purge-before",
            "/task/purge-step",
            "/cron/daily",
            "/purge",
        } <= paths
        [listing] = [route for route in app.routes if getattr(route, "path", None) == "/l"]
        assert {route.path for route in listing.routes} >= {
            "/{resource_type}",
            "/{resource_type}/{resource_id}",
        }

    def test_unknown_task_kind_is_404(self, client):
        assert client.post("/task/not-a-kind", headers={"X-Task-Name": "t"}).status_code == 404
