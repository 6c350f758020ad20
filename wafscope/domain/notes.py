from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import NamedTuple, Optional

from wafscope.core.errors import InvalidEntityTypeError


class EntityType(str, Enum):
    POLICY = "Policy"
    CUSTOM_RULE = "CustomRule"
    MANAGED_RULE_OVERRIDE = "ManagedRuleOverride"
    MATCH_VALUE = "MatchValue"


# Spellings emitted by the legacy notes front end.
_ENTITY_TYPE_ALIASES = {"WafPolicy": EntityType.POLICY}


def parse_entity_type(value: str | EntityType | None) -> EntityType:
    if isinstance(value, EntityType):
        return value
    if value is None:
        raise InvalidEntityTypeError("entity type is required")
    raw = str(value).strip()
    if raw in _ENTITY_TYPE_ALIASES:
        return _ENTITY_TYPE_ALIASES[raw]
    try:
        return EntityType(raw)
    except ValueError as exc:
        raise InvalidEntityTypeError(f"unknown entity type: {raw!r}") from exc


class NoteKey(NamedTuple):
    partition_key: str
    row_key: str


@dataclass(frozen=True)
class NoteFields:
    """Identifying fields of an annotated node.

    Only the identifying fields feed key derivation. ``tenant_id``,
    ``subscription_id`` and ``resource_group_name`` are denormalised context
    kept on the stored record for people browsing the table.
    """

    policy_name: str = ""
    custom_rule_name: str = ""
    match_condition_index: Optional[int] = None
    match_value: str = ""
    rule_set_type: str = ""
    rule_set_version: str = ""
    rule_group_name: str = ""
    rule_id: str = ""
    tenant_id: str = ""
    subscription_id: str = ""
    resource_group_name: str = ""


@dataclass(frozen=True)
class NoteRecord:
    key: NoteKey
    content: str
    entity_type: EntityType
    fields: NoteFields = NoteFields()
    updated_at: datetime | None = None

    @property
    def partition_key(self) -> str:
        return self.key.partition_key

    @property
    def row_key(self) -> str:
        return self.key.row_key


@dataclass(frozen=True)
class NoteLookup:
    record: NoteRecord | None
    found: bool

    @classmethod
    def missing(cls) -> "NoteLookup":
        return cls(record=None, found=False)

    @classmethod
    def of(cls, record: NoteRecord) -> "NoteLookup":
        return cls(record=record, found=True)

    @property
    def content(self) -> str | None:
        # None means "no annotation"; an explicitly cleared note yields "".
        return self.record.content if self.record is not None else None
