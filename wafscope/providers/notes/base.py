from __future__ import annotations

from datetime import datetime
from typing import Protocol

from wafscope.core.errors import InvalidEntityTypeError
from wafscope.domain.notes import (
    EntityType,
    NoteFields,
    NoteKey,
    NoteLookup,
    NoteRecord,
    parse_entity_type,
)


class NotesStore(Protocol):
    """Key-value store for notes addressed by (partition key, row key).

    Implementations raise ``NotesStoreError`` on transport/store failures.
    A missing record is not a failure: ``get`` returns ``NoteLookup(found=False)``.
    """

    async def get(self, partition_key: str, row_key: str) -> NoteLookup:
        ...

    async def upsert(self, record: NoteRecord) -> None:
        ...

    async def query_partition(self, partition_key: str) -> list[NoteRecord]:
        ...


def record_columns(record: NoteRecord) -> dict[str, object]:
    # Column values shared by the SQL and table backends (snake_case names).
    fields = record.fields
    return {
        "notes_content": record.content,
        "entity_type": record.entity_type.value,
        "tenant_id": fields.tenant_id or None,
        "subscription_id": fields.subscription_id or None,
        "resource_group_name": fields.resource_group_name or None,
        "waf_policy_name": fields.policy_name or None,
        "custom_rule_name": fields.custom_rule_name or None,
        "match_condition_index": fields.match_condition_index,
        "match_value": fields.match_value or None,
        "managed_rule_set_type": fields.rule_set_type or None,
        "managed_rule_set_version": fields.rule_set_version or None,
        "rule_group_name": fields.rule_group_name or None,
        "rule_id": fields.rule_id or None,
    }


def record_from_columns(
    partition_key: str,
    row_key: str,
    columns: dict[str, object],
    updated_at: datetime | None = None,
) -> NoteRecord:
    def _text(name: str) -> str:
        value = columns.get(name)
        return "" if value is None else str(value)

    index = columns.get("match_condition_index")
    try:
        entity_type = parse_entity_type(_text("entity_type"))
    except InvalidEntityTypeError:
        # Rows written by other tools may carry unknown kinds; infer from key shape.
        if partition_key == row_key:
            entity_type = EntityType.POLICY
        elif row_key.startswith("MC_"):
            entity_type = EntityType.MATCH_VALUE
        else:
            entity_type = EntityType.CUSTOM_RULE
    return NoteRecord(
        key=NoteKey(partition_key, row_key),
        content=_text("notes_content"),
        entity_type=entity_type,
        fields=NoteFields(
            policy_name=_text("waf_policy_name"),
            custom_rule_name=_text("custom_rule_name"),
            match_condition_index=int(index) if index is not None else None,
            match_value=_text("match_value"),
            rule_set_type=_text("managed_rule_set_type"),
            rule_set_version=_text("managed_rule_set_version"),
            rule_group_name=_text("rule_group_name"),
            rule_id=_text("rule_id"),
            tenant_id=_text("tenant_id"),
            subscription_id=_text("subscription_id"),
            resource_group_name=_text("resource_group_name"),
        ),
        updated_at=updated_at,
    )
