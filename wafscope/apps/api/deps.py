from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends

from wafscope.core.config import get_settings
from wafscope.persistence.db import get_session
from wafscope.providers.arm.base import ResourceClientFactory
from wafscope.providers.arm.factory import get_resource_client_factory
from wafscope.providers.notes.base import NotesStore
from wafscope.providers.notes.factory import get_notes_store
from wafscope.services.notes_overlay import NotesOverlayEnricher
from wafscope.services.notes_writer import NotesWriteService
from wafscope.services.scanner import ResourceHierarchyScanner


async def get_notes_store_dep() -> AsyncGenerator[NotesStore, None]:
    # One AsyncSession per request, opened only when notes live in SQL.
    settings = get_settings()
    if (settings.notes_store_provider or "sql").lower() == "sql":
        async with get_session() as session:
            yield get_notes_store(session)
        return
    yield get_notes_store()


def get_client_factory_dep() -> ResourceClientFactory:
    return get_resource_client_factory()


def get_scanner(
    client_factory: ResourceClientFactory = Depends(get_client_factory_dep),
    store: NotesStore = Depends(get_notes_store_dep),
) -> ResourceHierarchyScanner:
    settings = get_settings()
    enricher = NotesOverlayEnricher(store, settings.notes_key_scheme)
    return ResourceHierarchyScanner(client_factory, enricher)


def get_notes_writer(store: NotesStore = Depends(get_notes_store_dep)) -> NotesWriteService:
    return NotesWriteService(store, get_settings().notes_key_scheme)
