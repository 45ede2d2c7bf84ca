"""Shared pytest fixtures for the portal test suite."""

import pytest


@pytest.fixture(autouse=True)
def _isolate_portal_env(monkeypatch, tmp_path):
    """Point every test at a private data directory and default settings."""
    monkeypatch.setenv("DATA_DIR", str(tmp_path / "data"))
    for name in (
        "PORT",
        "PORTAL_PORT",
        "PORTAL_HOST",
        "PORTAL_STORAGE",
        "PORTAL_INDEX_PATH",
        "PORTAL_AI_TIMEOUT_SECONDS",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store(tmp_path):
    from bpm_portal.storage.sqlite_store import PortalStore

    portal_store = PortalStore(str(tmp_path / "store" / "portal.sqlite3"))
    portal_store.initialize()
    return portal_store
