from __future__ import annotations

import asyncio
import logging
import time

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from wafscope.core.errors import NotesStoreError
from wafscope.domain.models import WafNote
from wafscope.domain.notes import NoteLookup, NoteRecord
from wafscope.persistence.repos import notes as notes_repo
from wafscope.providers.notes.base import record_columns, record_from_columns
from wafscope.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


def _to_record(note: WafNote) -> NoteRecord:
    columns = {
        "notes_content": note.notes_content,
        "entity_type": note.entity_type,
        "tenant_id": note.tenant_id,
        "subscription_id": note.subscription_id,
        "resource_group_name": note.resource_group_name,
        "waf_policy_name": note.waf_policy_name,
        "custom_rule_name": note.custom_rule_name,
        "match_condition_index": note.match_condition_index,
        "match_value": note.match_value,
        "managed_rule_set_type": note.managed_rule_set_type,
        "managed_rule_set_version": note.managed_rule_set_version,
        "rule_group_name": note.rule_group_name,
        "rule_id": note.rule_id,
    }
    return record_from_columns(note.partition_key, note.row_key, columns, updated_at=note.updated_at)


class SqlNotesStore:
    """Notes store backed by the ``waf_notes`` table through one AsyncSession."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        # AsyncSession forbids concurrent operations; the scanner fans out per resource group.
        self._lock = asyncio.Lock()

    async def get(self, partition_key: str, row_key: str) -> NoteLookup:
        start = time.monotonic()
        try:
            async with self._lock:
                note = await notes_repo.get_note(self._session, partition_key, row_key)
        except SQLAlchemyError as exc:
            self._record("sql.get", start, success=False)
            raise NotesStoreError(
                f"failed to read note partition_key={partition_key!r} row_key={row_key!r}"
            ) from exc
        self._record("sql.get", start, success=True)
        if note is None:
            return NoteLookup.missing()
        return NoteLookup.of(_to_record(note))

    async def query_partition(self, partition_key: str) -> list[NoteRecord]:
        start = time.monotonic()
        try:
            async with self._lock:
                notes = await notes_repo.list_partition(self._session, partition_key)
        except SQLAlchemyError as exc:
            self._record("sql.query_partition", start, success=False)
            raise NotesStoreError(f"failed to query notes partition_key={partition_key!r}") from exc
        self._record("sql.query_partition", start, success=True)
        return [_to_record(note) for note in notes]

    async def upsert(self, record: NoteRecord) -> None:
        start = time.monotonic()
        async with self._lock:
            try:
                await notes_repo.upsert_note(
                    self._session,
                    partition_key=record.partition_key,
                    row_key=record.row_key,
                    values=record_columns(record),
                )
                await self._session.commit()
            except SQLAlchemyError as exc:
                await self._session.rollback()
                self._record("sql.upsert", start, success=False)
                raise NotesStoreError(
                    f"failed to upsert note partition_key={record.partition_key!r} row_key={record.row_key!r}"
                ) from exc
        self._record("sql.upsert", start, success=True)
        logger.info(
            "note_upserted partition_key=%s row_key=%s", record.partition_key, record.row_key
        )

    @staticmethod
    def _record(integration: str, start: float, *, success: bool) -> None:
        record_external_call(
            integration=f"notes.{integration}",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=success,
        )
