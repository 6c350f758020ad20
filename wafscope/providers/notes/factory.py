from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from wafscope.core.config import get_settings
from wafscope.core.errors import ProviderConfigError
from wafscope.providers.notes.azure_table import AzureTableNotesStore
from wafscope.providers.notes.base import NotesStore
from wafscope.providers.notes.memory import InMemoryNotesStore
from wafscope.providers.notes.sql import SqlNotesStore


# One process-wide memory store so notes survive across requests in dev mode.
_memory_store: InMemoryNotesStore | None = None
_table_store: AzureTableNotesStore | None = None


def get_notes_store(session: AsyncSession | None = None) -> NotesStore:
    global _memory_store, _table_store
    settings = get_settings()
    provider = (settings.notes_store_provider or "sql").lower()

    if provider == "sql":
        if session is None:
            raise ProviderConfigError("sql notes store requires a database session")
        return SqlNotesStore(session)
    if provider == "memory":
        if _memory_store is None:
            _memory_store = InMemoryNotesStore()
        return _memory_store
    if provider == "azure_table":
        if _table_store is None:
            _table_store = AzureTableNotesStore(
                connection_string=settings.azure_storage_connection_string,
                table_name=settings.notes_table_name,
            )
        return _table_store

    raise ProviderConfigError(f"Unsupported notes store provider: {provider}")


def reset_notes_store() -> None:
    global _memory_store, _table_store
    _memory_store = None
    _table_store = None
