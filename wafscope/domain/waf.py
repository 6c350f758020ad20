from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class RuleAction(str, Enum):
    ALLOW = "Allow"
    BLOCK = "Block"
    LOG = "Log"
    REDIRECT = "Redirect"
    ANOMALY_SCORING = "AnomalyScoring"
    JS_CHALLENGE = "JSChallenge"
    CAPTCHA = "CAPTCHA"

    @classmethod
    def _missing_(cls, value: object) -> Optional["RuleAction"]:
        # ARM casing is not stable across api-versions.
        if isinstance(value, str):
            lowered = value.lower()
            for member in cls:
                if member.value.lower() == lowered:
                    return member
        return None


class RuleType(str, Enum):
    MATCH_RULE = "MatchRule"
    RATE_LIMIT_RULE = "RateLimitRule"

    @classmethod
    def _missing_(cls, value: object) -> Optional["RuleType"]:
        if isinstance(value, str):
            lowered = value.lower()
            for member in cls:
                if member.value.lower() == lowered:
                    return member
        return None


RULE_STATE_DISABLED = "Disabled"


@dataclass(frozen=True)
class Tenant:
    tenant_id: str
    display_name: str


@dataclass(frozen=True)
class Subscription:
    subscription_id: str
    display_name: str
    tenant_id: str | None = None


@dataclass(frozen=True)
class ResourceGroup:
    name: str
    resource_id: str
    subscription_id: str


@dataclass(frozen=True)
class Exclusion:
    match_variable: str
    selector_match_operator: str
    selector: str


@dataclass(frozen=True)
class ManagedRuleOverride:
    rule_id: str
    state: str
    action: str | None = None
    exclusions: tuple[Exclusion, ...] = ()
    notes: str | None = None

    @property
    def exclusion_count(self) -> int:
        return len(self.exclusions)

    @property
    def is_disabled(self) -> bool:
        return self.state.lower() == RULE_STATE_DISABLED.lower()


@dataclass(frozen=True)
class RuleGroupOverride:
    rule_group_name: str
    rules: tuple[ManagedRuleOverride, ...] = ()
    exclusions: tuple[Exclusion, ...] = ()

    @property
    def disabled_rules(self) -> tuple[str, ...]:
        # Derived from rules so it can never drift from the full override list.
        return tuple(rule.rule_id for rule in self.rules if rule.is_disabled)


@dataclass(frozen=True)
class ManagedRuleSet:
    rule_set_type: str
    rule_set_version: str
    rule_set_action: str | None = None
    rule_group_overrides: tuple[RuleGroupOverride, ...] = ()
    exclusions: tuple[Exclusion, ...] = ()


@dataclass(frozen=True)
class MatchValue:
    value: str
    notes: str | None = None


@dataclass(frozen=True)
class MatchCondition:
    match_variable: str
    operator: str
    selector: str | None = None
    match_values: tuple[MatchValue, ...] = ()
    transforms: tuple[str, ...] = ()
    negate_condition: bool = False


@dataclass(frozen=True)
class CustomRule:
    name: str
    priority: int
    action: RuleAction
    rule_type: RuleType
    enabled_state: str | None = None
    rate_limit_duration_in_minutes: int | None = None
    rate_limit_threshold: int | None = None
    match_conditions: tuple[MatchCondition, ...] = ()
    notes: str | None = None


@dataclass(frozen=True)
class PolicySettings:
    enabled_state: str | None = None
    mode: str | None = None
    redirect_url: str | None = None
    custom_block_response_status_code: int | None = None
    request_body_check: str | None = None


@dataclass(frozen=True)
class WafPolicy:
    name: str
    policy_type: str
    subscription_name: str
    subscription_id: str
    resource_group_name: str
    resource_id: str | None = None
    location: str | None = None
    sku: str | None = None
    policy_settings: PolicySettings = field(default_factory=PolicySettings)
    associated_resources: tuple[str, ...] = ()
    managed_rule_sets: tuple[ManagedRuleSet, ...] = ()
    custom_rules: tuple[CustomRule, ...] = ()
    notes: str | None = None
