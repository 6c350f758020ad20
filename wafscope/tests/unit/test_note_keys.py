from __future__ import annotations

import pytest

from wafscope.core.errors import InvalidEntityTypeError, NoteKeyError
from wafscope.domain.notes import EntityType, NoteFields, NoteKey
from wafscope.services import note_keys
from wafscope.services.note_keys import KeyScheme, derive_key


def test_match_value_key_for_saved_ip() -> None:
    fields = NoteFields(
        policy_name="edge-waf-01",
        custom_rule_name="blockBadIp",
        match_condition_index=0,
        match_value="203.0.113.5",
    )
    assert derive_key(EntityType.MATCH_VALUE, fields) == NoteKey("edge-waf-01_blockBadIp", "MC_0_203.0.113.5")


def test_managed_rule_override_key() -> None:
    fields = NoteFields(
        policy_name="edge-waf-01",
        rule_set_type="OWASP",
        rule_set_version="3.2",
        rule_group_name="SQLI",
        rule_id="942100",
    )
    assert derive_key("ManagedRuleOverride", fields) == NoteKey("edge-waf-01_OWASP_3.2_SQLI", "942100")


def test_policy_and_custom_rule_keys() -> None:
    fields = NoteFields(policy_name="edge-waf-01", custom_rule_name="blockBadIp")
    assert derive_key(EntityType.POLICY, fields) == NoteKey("edge-waf-01", "edge-waf-01")
    assert derive_key(EntityType.CUSTOM_RULE, fields) == NoteKey("edge-waf-01_blockBadIp", "blockBadIp")


def test_waf_policy_alias_is_policy() -> None:
    fields = NoteFields(policy_name="edge-waf-01")
    assert derive_key("WafPolicy", fields) == derive_key(EntityType.POLICY, fields)


def test_derivation_is_deterministic() -> None:
    fields = NoteFields(
        policy_name="p",
        custom_rule_name="r",
        match_condition_index=2,
        match_value="/admin?x=1&y=ü",
    )
    keys = {derive_key(EntityType.MATCH_VALUE, fields) for _ in range(5)}
    assert len(keys) == 1


def test_match_values_are_percent_encoded_and_reversible() -> None:
    raw = "/login path?q=a&b=c/ü"
    row_key = note_keys.match_value_row_key(3, raw)
    assert row_key.startswith("MC_3_")
    assert "/" not in row_key and " " not in row_key and "?" not in row_key
    assert note_keys.parse_match_value_row_key(row_key) == (3, raw)


def test_encode_segment_keeps_unreserved_characters() -> None:
    assert note_keys.encode_segment("AZaz09-_.~") == "AZaz09-_.~"
    assert note_keys.encode_segment("a b/c") == "a%20b%2Fc"
    assert note_keys.decode_segment(note_keys.encode_segment("é#%")) == "é#%"


def test_parse_match_value_row_key_rejects_other_rows() -> None:
    with pytest.raises(NoteKeyError):
        note_keys.parse_match_value_row_key("blockBadIp")
    with pytest.raises(NoteKeyError):
        note_keys.parse_match_value_row_key("MC_x_value")


def test_sibling_match_values_get_distinct_keys() -> None:
    base = dict(policy_name="p", custom_rule_name="r", match_condition_index=0)
    first = derive_key(EntityType.MATCH_VALUE, NoteFields(match_value="a_b", **base))
    second = derive_key(EntityType.MATCH_VALUE, NoteFields(match_value="a b", **base))
    third = derive_key(EntityType.MATCH_VALUE, NoteFields(match_value="a_b", **{**base, "match_condition_index": 1}))
    assert len({first, second, third}) == 3


def test_legacy_scheme_collides_when_names_contain_separator() -> None:
    left = NoteFields(policy_name="p_x", custom_rule_name="y", match_condition_index=0, match_value="v")
    right = NoteFields(policy_name="p", custom_rule_name="x_y", match_condition_index=0, match_value="v")
    assert derive_key(EntityType.MATCH_VALUE, left) == derive_key(EntityType.MATCH_VALUE, right)


def test_strict_scheme_separates_names_containing_separator() -> None:
    left = NoteFields(policy_name="p_x", custom_rule_name="y", match_condition_index=0, match_value="v")
    right = NoteFields(policy_name="p", custom_rule_name="x_y", match_condition_index=0, match_value="v")
    left_key = derive_key(EntityType.MATCH_VALUE, left, KeyScheme.STRICT)
    right_key = derive_key(EntityType.MATCH_VALUE, right, "strict")
    assert left_key != right_key
    assert left_key.partition_key == "p%5Fx_y"
    assert right_key.partition_key == "p_x%5Fy"


def test_strict_scheme_matches_legacy_for_plain_names() -> None:
    fields = NoteFields(
        policy_name="edgewaf01",
        rule_set_type="OWASP",
        rule_set_version="3.2",
        rule_group_name="SQLI",
        rule_id="942100",
    )
    assert derive_key(EntityType.MANAGED_RULE_OVERRIDE, fields, KeyScheme.STRICT) == derive_key(
        EntityType.MANAGED_RULE_OVERRIDE, fields
    )


@pytest.mark.parametrize(
    "entity_type, fields",
    [
        (EntityType.POLICY, NoteFields()),
        (EntityType.CUSTOM_RULE, NoteFields(policy_name="p")),
        (EntityType.MANAGED_RULE_OVERRIDE, NoteFields(policy_name="p", rule_set_type="OWASP")),
        (EntityType.MATCH_VALUE, NoteFields(policy_name="p", custom_rule_name="r", match_value="v")),
        (
            EntityType.MATCH_VALUE,
            NoteFields(policy_name="p", custom_rule_name="r", match_condition_index=-1, match_value="v"),
        ),
    ],
)
def test_missing_fields_raise_key_error(entity_type: EntityType, fields: NoteFields) -> None:
    with pytest.raises(NoteKeyError):
        derive_key(entity_type, fields)


def test_unknown_entity_type_raises_invalid_entity_type() -> None:
    with pytest.raises(InvalidEntityTypeError):
        derive_key("Firewall", NoteFields(policy_name="p"))


def test_unknown_key_scheme_is_rejected() -> None:
    with pytest.raises(NoteKeyError):
        note_keys.parse_key_scheme("base64")
