"""Composite key derivation for WAF notes.

A note is addressed by ``(partition_key, row_key)``. The partition key is the
*parent* of the annotated node so that every note below a custom rule, or below
a managed rule group, can be fetched with a single partition query.

| entity              | partition key                    | row key              |
|---------------------|----------------------------------|----------------------|
| Policy              | policy                           | policy               |
| CustomRule          | policy_rule                      | rule                 |
| ManagedRuleOverride | policy_ruleSetType_version_group | enc(ruleId)          |
| MatchValue          | policy_rule                      | MC_{index}_enc(value)|

Both the notes overlay (read path) and the notes writer (write path) must go
through this module; any divergence silently orphans saved notes.
"""
from __future__ import annotations

from enum import Enum
from urllib.parse import quote, unquote

from wafscope.core.errors import NoteKeyError
from wafscope.domain.notes import EntityType, NoteFields, NoteKey, parse_entity_type


SEPARATOR = "_"
MATCH_VALUE_PREFIX = "MC"


class KeyScheme(str, Enum):
    # legacy: raw segments joined by "_", only rule ids and match values encoded.
    LEGACY = "legacy"
    # strict: every segment encoded, "_" included, so segment boundaries are unambiguous.
    STRICT = "strict"


def parse_key_scheme(value: str | KeyScheme | None) -> KeyScheme:
    if isinstance(value, KeyScheme):
        return value
    try:
        return KeyScheme((value or KeyScheme.LEGACY.value).strip().lower())
    except ValueError as exc:
        raise NoteKeyError(f"unknown notes key scheme: {value!r}") from exc


def encode_segment(value: str) -> str:
    """Percent-encode everything outside the RFC 3986 unreserved set."""
    return quote(value, safe="")


def decode_segment(value: str) -> str:
    return unquote(value)


def _strict(value: str) -> str:
    return encode_segment(value).replace(SEPARATOR, "%5F")


def _segment(value: str, scheme: KeyScheme) -> str:
    return _strict(value) if scheme is KeyScheme.STRICT else value


def _join(*segments: str, scheme: KeyScheme) -> str:
    return SEPARATOR.join(_segment(segment, scheme) for segment in segments)


def policy_key(policy_name: str, scheme: KeyScheme = KeyScheme.LEGACY) -> NoteKey:
    segment = _segment(policy_name, scheme)
    return NoteKey(segment, segment)


def custom_rule_partition(
    policy_name: str, custom_rule_name: str, scheme: KeyScheme = KeyScheme.LEGACY
) -> str:
    return _join(policy_name, custom_rule_name, scheme=scheme)


def custom_rule_key(
    policy_name: str, custom_rule_name: str, scheme: KeyScheme = KeyScheme.LEGACY
) -> NoteKey:
    return NoteKey(
        custom_rule_partition(policy_name, custom_rule_name, scheme),
        _segment(custom_rule_name, scheme),
    )


def rule_group_partition(
    policy_name: str,
    rule_set_type: str,
    rule_set_version: str,
    rule_group_name: str,
    scheme: KeyScheme = KeyScheme.LEGACY,
) -> str:
    # Fixed order: policy, rule set type, rule set version, rule group.
    return _join(policy_name, rule_set_type, rule_set_version, rule_group_name, scheme=scheme)


def managed_rule_row_key(rule_id: str, scheme: KeyScheme = KeyScheme.LEGACY) -> str:
    return _strict(rule_id) if scheme is KeyScheme.STRICT else encode_segment(rule_id)


def match_value_row_key(
    match_condition_index: int, match_value: str, scheme: KeyScheme = KeyScheme.LEGACY
) -> str:
    encoded = _strict(match_value) if scheme is KeyScheme.STRICT else encode_segment(match_value)
    return f"{MATCH_VALUE_PREFIX}{SEPARATOR}{int(match_condition_index)}{SEPARATOR}{encoded}"


def parse_match_value_row_key(row_key: str) -> tuple[int, str]:
    """Split ``MC_{index}_{encoded}`` back into ``(index, raw value)``."""
    prefix, sep, rest = row_key.partition(SEPARATOR)
    if prefix != MATCH_VALUE_PREFIX or not sep:
        raise NoteKeyError(f"not a match value row key: {row_key!r}")
    index_text, sep, encoded = rest.partition(SEPARATOR)
    if not sep or not index_text.isdigit():
        raise NoteKeyError(f"not a match value row key: {row_key!r}")
    return int(index_text), decode_segment(encoded)


def _require(entity_type: EntityType, fields: NoteFields, *names: str) -> None:
    missing = [name for name in names if not getattr(fields, name)]
    if missing:
        raise NoteKeyError(f"{entity_type.value} note requires {', '.join(missing)}")


def derive_key(
    entity_type: EntityType | str,
    fields: NoteFields,
    scheme: KeyScheme | str = KeyScheme.LEGACY,
) -> NoteKey:
    """Derive the store key for a note on the entity described by ``fields``.

    Raises ``InvalidEntityTypeError`` for unknown kinds and ``NoteKeyError``
    when an identifying field required by the kind is missing.
    """
    kind = parse_entity_type(entity_type)
    resolved = parse_key_scheme(scheme)

    if kind is EntityType.POLICY:
        _require(kind, fields, "policy_name")
        return policy_key(fields.policy_name, resolved)

    if kind is EntityType.CUSTOM_RULE:
        _require(kind, fields, "policy_name", "custom_rule_name")
        return custom_rule_key(fields.policy_name, fields.custom_rule_name, resolved)

    if kind is EntityType.MANAGED_RULE_OVERRIDE:
        _require(
            kind,
            fields,
            "policy_name",
            "rule_set_type",
            "rule_set_version",
            "rule_group_name",
            "rule_id",
        )
        return NoteKey(
            rule_group_partition(
                fields.policy_name,
                fields.rule_set_type,
                fields.rule_set_version,
                fields.rule_group_name,
                resolved,
            ),
            managed_rule_row_key(fields.rule_id, resolved),
        )

    # MatchValue
    _require(kind, fields, "policy_name", "custom_rule_name", "match_value")
    index = fields.match_condition_index
    if index is None or int(index) < 0:
        raise NoteKeyError("MatchValue note requires a non-negative match_condition_index")
    return NoteKey(
        custom_rule_partition(fields.policy_name, fields.custom_rule_name, resolved),
        match_value_row_key(index, fields.match_value, resolved),
    )
