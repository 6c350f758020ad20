from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace

from wafscope.domain.notes import NoteKey
from wafscope.domain.waf import (
    CustomRule,
    ManagedRuleSet,
    MatchCondition,
    RuleGroupOverride,
    WafPolicy,
)
from wafscope.providers.notes.base import NotesStore
from wafscope.services import note_keys
from wafscope.services.note_keys import KeyScheme


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EnrichmentFailure:
    scope: str
    message: str


@dataclass
class EnrichmentReport:
    failures: list[EnrichmentFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class NotesOverlayEnricher:
    """Attach stored notes to a mapped policy tree.

    Store traffic per policy is one point get for the policy, one point get
    plus one partition query per custom rule, and one partition query per rule
    group override. Lookup failures only blank the notes of the affected
    sub-tree; they are logged and collected on the report.
    """

    def __init__(self, store: NotesStore, key_scheme: KeyScheme | str = KeyScheme.LEGACY) -> None:
        self._store = store
        self._scheme = note_keys.parse_key_scheme(key_scheme)

    async def enrich(self, policy: WafPolicy) -> WafPolicy:
        enriched, _ = await self.enrich_with_report(policy)
        return enriched

    async def enrich_with_report(self, policy: WafPolicy) -> tuple[WafPolicy, EnrichmentReport]:
        report = EnrichmentReport()
        policy_notes = await self._point_note(
            note_keys.policy_key(policy.name, self._scheme), f"policy:{policy.name}", report
        )
        custom_rules = tuple(
            [await self._enrich_custom_rule(policy.name, rule, report) for rule in policy.custom_rules]
        )
        rule_sets = tuple(
            [await self._enrich_rule_set(policy.name, rule_set, report) for rule_set in policy.managed_rule_sets]
        )
        enriched = replace(
            policy,
            notes=policy_notes,
            custom_rules=custom_rules,
            managed_rule_sets=rule_sets,
        )
        return enriched, report

    async def _point_note(self, key: NoteKey, scope: str, report: EnrichmentReport) -> str | None:
        try:
            lookup = await self._store.get(key.partition_key, key.row_key)
        except Exception as exc:  # noqa: BLE001 - one failed lookup must not sink the policy
            self._record_failure(report, scope, exc)
            return None
        return lookup.content if lookup.found else None

    async def _partition_notes(self, partition_key: str, scope: str, report: EnrichmentReport) -> dict[str, str]:
        try:
            records = await self._store.query_partition(partition_key)
        except Exception as exc:  # noqa: BLE001 - one failed query must not sink the policy
            self._record_failure(report, scope, exc)
            return {}
        return {record.row_key: record.content for record in records}

    async def _enrich_custom_rule(
        self, policy_name: str, rule: CustomRule, report: EnrichmentReport
    ) -> CustomRule:
        scope = f"custom_rule:{policy_name}/{rule.name}"
        rule_notes = await self._point_note(
            note_keys.custom_rule_key(policy_name, rule.name, self._scheme), scope, report
        )
        partition_notes = await self._partition_notes(
            note_keys.custom_rule_partition(policy_name, rule.name, self._scheme), scope, report
        )
        conditions = tuple(
            self._join_match_values(index, condition, partition_notes)
            for index, condition in enumerate(rule.match_conditions)
        )
        return replace(rule, notes=rule_notes, match_conditions=conditions)

    def _join_match_values(
        self, index: int, condition: MatchCondition, partition_notes: dict[str, str]
    ) -> MatchCondition:
        values = tuple(
            replace(
                value,
                notes=partition_notes.get(
                    note_keys.match_value_row_key(index, value.value, self._scheme)
                ),
            )
            for value in condition.match_values
        )
        return replace(condition, match_values=values)

    async def _enrich_rule_set(
        self, policy_name: str, rule_set: ManagedRuleSet, report: EnrichmentReport
    ) -> ManagedRuleSet:
        overrides = tuple(
            [
                await self._enrich_group(policy_name, rule_set, group, report)
                for group in rule_set.rule_group_overrides
            ]
        )
        return replace(rule_set, rule_group_overrides=overrides)

    async def _enrich_group(
        self,
        policy_name: str,
        rule_set: ManagedRuleSet,
        group: RuleGroupOverride,
        report: EnrichmentReport,
    ) -> RuleGroupOverride:
        partition_key = note_keys.rule_group_partition(
            policy_name,
            rule_set.rule_set_type,
            rule_set.rule_set_version,
            group.rule_group_name,
            self._scheme,
        )
        scope = (
            f"rule_group:{policy_name}/{rule_set.rule_set_type}/"
            f"{rule_set.rule_set_version}/{group.rule_group_name}"
        )
        partition_notes = await self._partition_notes(partition_key, scope, report)
        rules = tuple(
            replace(
                rule,
                notes=partition_notes.get(note_keys.managed_rule_row_key(rule.rule_id, self._scheme)),
            )
            for rule in group.rules
        )
        return replace(group, rules=rules)

    @staticmethod
    def _record_failure(report: EnrichmentReport, scope: str, exc: Exception) -> None:
        logger.warning("notes_lookup_failed scope=%s", scope, exc_info=exc)
        report.failures.append(EnrichmentFailure(scope=scope, message=str(exc) or exc.__class__.__name__))
