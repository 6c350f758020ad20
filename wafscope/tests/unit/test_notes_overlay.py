from __future__ import annotations

import asyncio

import pytest

from wafscope.domain.notes import EntityType, NoteFields, NoteRecord
from wafscope.providers.notes.memory import InMemoryNotesStore
from wafscope.services.note_keys import KeyScheme, derive_key
from wafscope.services.notes_overlay import NotesOverlayEnricher
from wafscope.services.policy_mapper import map_policy
from wafscope.tests.utils.waf_fixtures import SUB_PROD, policy_json


def _policy():
    return map_policy(policy_json(), "Prod", SUB_PROD, "rg-edge")


def _note(entity_type: EntityType, content: str, scheme: KeyScheme = KeyScheme.LEGACY, **fields) -> NoteRecord:
    note_fields = NoteFields(**fields)
    return NoteRecord(
        key=derive_key(entity_type, note_fields, scheme),
        content=content,
        entity_type=entity_type,
        fields=note_fields,
    )


@pytest.mark.asyncio
async def test_enrich_without_notes_leaves_everything_empty() -> None:
    store = InMemoryNotesStore()
    enriched = await NotesOverlayEnricher(store).enrich(_policy())
    assert enriched.notes is None
    rule = enriched.custom_rules[0]
    assert rule.notes is None
    assert all(value.notes is None for value in rule.match_conditions[0].match_values)
    overrides = enriched.managed_rule_sets[0].rule_group_overrides[0].rules
    assert all(override.notes is None for override in overrides)


@pytest.mark.asyncio
async def test_enrich_attaches_notes_at_every_level() -> None:
    store = InMemoryNotesStore(
        records=[
            _note(EntityType.POLICY, "owned by edge team", policy_name="edge-waf-01"),
            _note(EntityType.CUSTOM_RULE, "temporary block", policy_name="edge-waf-01", custom_rule_name="blockBadIp"),
            _note(
                EntityType.MATCH_VALUE,
                "scanner seen 2024-03",
                policy_name="edge-waf-01",
                custom_rule_name="blockBadIp",
                match_condition_index=0,
                match_value="203.0.113.5",
            ),
            _note(
                EntityType.MANAGED_RULE_OVERRIDE,
                "false positives on search",
                policy_name="edge-waf-01",
                rule_set_type="OWASP",
                rule_set_version="3.2",
                rule_group_name="SQLI",
                rule_id="942100",
            ),
        ]
    )
    enriched = await NotesOverlayEnricher(store).enrich(_policy())

    assert enriched.notes == "owned by edge team"
    rule = enriched.custom_rules[0]
    assert rule.notes == "temporary block"
    values = rule.match_conditions[0].match_values
    assert values[0].notes == "scanner seen 2024-03"
    assert values[1].notes is None
    overrides = enriched.managed_rule_sets[0].rule_group_overrides[0].rules
    assert overrides[0].notes == "false positives on search"
    assert overrides[1].notes is None


@pytest.mark.asyncio
async def test_enrich_does_not_mutate_input() -> None:
    policy = _policy()
    store = InMemoryNotesStore(records=[_note(EntityType.POLICY, "x", policy_name="edge-waf-01")])
    enriched = await NotesOverlayEnricher(store).enrich(policy)
    assert enriched.notes == "x"
    assert policy.notes is None


@pytest.mark.asyncio
async def test_explicit_empty_note_is_distinct_from_absence() -> None:
    store = InMemoryNotesStore(records=[_note(EntityType.POLICY, "", policy_name="edge-waf-01")])
    enriched = await NotesOverlayEnricher(store).enrich(_policy())
    assert enriched.notes == ""


@pytest.mark.asyncio
async def test_one_partition_query_per_custom_rule_and_group() -> None:
    rules = [
        {
            "name": f"rule{index}",
            "priority": index,
            "ruleType": "MatchRule",
            "action": "Block",
            "matchConditions": [
                {"matchVariable": "RemoteAddr", "operator": "IPMatch", "matchValue": ["a", "b", "c"]},
                {"matchVariable": "RequestUri", "operator": "Contains", "matchValue": ["/x", "/y"]},
            ],
        }
        for index in range(3)
    ]
    policy = map_policy(policy_json(custom_rules=rules), "Prod", SUB_PROD, "rg-edge")
    store = InMemoryNotesStore()
    await NotesOverlayEnricher(store).enrich(policy)
    # 3 custom rules + 1 rule group override.
    assert store.query_calls == 4
    # 1 policy + 3 custom rules; match values and managed rules never cost a point get.
    assert store.get_calls == 4


@pytest.mark.asyncio
async def test_failed_partition_query_only_blanks_that_subtree() -> None:
    store = InMemoryNotesStore(
        records=[
            _note(EntityType.POLICY, "policy note", policy_name="edge-waf-01"),
            _note(
                EntityType.MANAGED_RULE_OVERRIDE,
                "override note",
                policy_name="edge-waf-01",
                rule_set_type="OWASP",
                rule_set_version="3.2",
                rule_group_name="SQLI",
                rule_id="942100",
            ),
        ],
        fail_partitions={"edge-waf-01_blockBadIp"},
    )
    enriched, report = await NotesOverlayEnricher(store).enrich_with_report(_policy())
    assert enriched.notes == "policy note"
    assert enriched.custom_rules[0].notes is None
    assert enriched.managed_rule_sets[0].rule_group_overrides[0].rules[0].notes == "override note"
    assert not report.ok
    assert {failure.scope for failure in report.failures} == {"custom_rule:edge-waf-01/blockBadIp"}


@pytest.mark.asyncio
async def test_strict_scheme_reads_strict_keys() -> None:
    rules = [{"name": "block_bad", "priority": 1, "ruleType": "MatchRule", "action": "Block",
              "matchConditions": [{"matchVariable": "RemoteAddr", "operator": "IPMatch", "matchValue": ["10.0.0.1"]}]}]
    policy = map_policy(policy_json("edge_waf", custom_rules=rules), "Prod", SUB_PROD, "rg-edge")
    store = InMemoryNotesStore(
        records=[
            _note(
                EntityType.MATCH_VALUE,
                "strict note",
                KeyScheme.STRICT,
                policy_name="edge_waf",
                custom_rule_name="block_bad",
                match_condition_index=0,
                match_value="10.0.0.1",
            )
        ]
    )
    legacy = await NotesOverlayEnricher(store).enrich(policy)
    strict = await NotesOverlayEnricher(store, KeyScheme.STRICT).enrich(policy)
    assert legacy.custom_rules[0].match_conditions[0].match_values[0].notes is None
    assert strict.custom_rules[0].match_conditions[0].match_values[0].notes == "strict note"


class _CancellingStore(InMemoryNotesStore):
    async def get(self, partition_key: str, row_key: str):
        raise asyncio.CancelledError()


@pytest.mark.asyncio
async def test_cancellation_is_not_swallowed() -> None:
    with pytest.raises(asyncio.CancelledError):
        await NotesOverlayEnricher(_CancellingStore()).enrich(_policy())
