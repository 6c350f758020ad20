from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from wafscope.core.errors import InvalidEntityTypeError, NoteKeyError, NotesStoreError
from wafscope.domain.notes import EntityType, NoteFields, NoteKey, NoteLookup, NoteRecord, parse_entity_type
from wafscope.providers.notes.base import NotesStore
from wafscope.services import note_keys
from wafscope.services.note_keys import KeyScheme
from wafscope.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


INVALID_ENTITY_TYPE = "INVALID_ENTITY_TYPE"
MISSING_KEY_FIELDS = "MISSING_KEY_FIELDS"
NOTES_STORE_ERROR = "NOTES_STORE_ERROR"


@dataclass(frozen=True)
class SaveNoteResult:
    ok: bool
    key: NoteKey | None = None
    error_code: str | None = None
    message: str = ""
    client_error: bool = False
    content: str | None = None


class NotesWriteService:
    def __init__(self, store: NotesStore, key_scheme: KeyScheme | str = KeyScheme.LEGACY) -> None:
        self._store = store
        self._scheme = note_keys.parse_key_scheme(key_scheme)

    async def save_note(
        self,
        entity_type: EntityType | str | None,
        fields: NoteFields,
        content: str | None,
    ) -> SaveNoteResult:
        """Upsert the note for one node, replacing any previous content.

        Validation failures come back as client errors before the store is
        touched; store failures come back as ``NOTES_STORE_ERROR``.
        """
        try:
            kind = parse_entity_type(entity_type)
        except InvalidEntityTypeError as exc:
            increment_counter("notes_rejected_total")
            return SaveNoteResult(
                ok=False, error_code=INVALID_ENTITY_TYPE, message=str(exc), client_error=True
            )
        try:
            key = note_keys.derive_key(kind, fields, self._scheme)
        except NoteKeyError as exc:
            increment_counter("notes_rejected_total")
            return SaveNoteResult(
                ok=False, error_code=MISSING_KEY_FIELDS, message=str(exc), client_error=True
            )

        # Content is stored verbatim; "" is an explicit clear, not a delete.
        text = content if content is not None else ""
        record = NoteRecord(
            key=key,
            content=text,
            entity_type=kind,
            fields=fields,
            updated_at=datetime.now(timezone.utc),
        )
        try:
            await self._store.upsert(record)
        except NotesStoreError as exc:
            logger.warning(
                "note_save_failed entity_type=%s partition_key=%s row_key=%s",
                kind.value,
                key.partition_key,
                key.row_key,
                exc_info=exc,
            )
            increment_counter("notes_store_errors_total")
            return SaveNoteResult(
                ok=False, key=key, error_code=NOTES_STORE_ERROR, message=str(exc), client_error=False
            )
        increment_counter("notes_saved_total")
        logger.info(
            "note_saved entity_type=%s partition_key=%s row_key=%s",
            kind.value,
            key.partition_key,
            key.row_key,
        )
        return SaveNoteResult(ok=True, key=key, message="Notes saved successfully.", content=text)

    def key_for(self, entity_type: EntityType | str | None, fields: NoteFields) -> NoteKey:
        return note_keys.derive_key(entity_type, fields, self._scheme)

    async def get_note(self, entity_type: EntityType | str | None, fields: NoteFields) -> NoteLookup:
        # Raises NoteKeyError / NotesStoreError; the HTTP layer maps them.
        key = self.key_for(entity_type, fields)
        return await self._store.get(key.partition_key, key.row_key)
