from __future__ import annotations

import pytest

from wafscope.core.config import get_settings
from wafscope.providers.notes.factory import reset_notes_store
from wafscope.services import telemetry


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    # Tests never talk to Azure or Postgres unless a test opts in.
    monkeypatch.setenv("RESOURCE_API_PROVIDER", "fake")
    monkeypatch.setenv("NOTES_STORE_PROVIDER", "memory")
    monkeypatch.setenv("EXT_RETRY_BACKOFF_MS", "1")
    get_settings.cache_clear()
    reset_notes_store()
    telemetry.reset()
    yield
    get_settings.cache_clear()
    reset_notes_store()
