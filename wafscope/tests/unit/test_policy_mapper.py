from __future__ import annotations

import pytest

from wafscope.core.config import WAF_POLICY_TYPE_LABEL
from wafscope.core.errors import PolicyMappingError
from wafscope.domain.waf import RuleAction, RuleType
from wafscope.services.policy_mapper import map_policy, map_resource_group, map_subscription, map_tenant
from wafscope.tests.utils.waf_fixtures import SUB_PROD, policy_json


def _map(raw: dict) -> object:
    return map_policy(raw, "Prod", SUB_PROD, "rg-edge")


def test_map_policy_full_tree() -> None:
    policy = _map(policy_json())
    assert policy.name == "edge-waf-01"
    assert policy.policy_type == WAF_POLICY_TYPE_LABEL
    assert policy.subscription_name == "Prod"
    assert policy.resource_group_name == "rg-edge"
    assert policy.sku == "Premium_AzureFrontDoor"
    assert policy.policy_settings.mode == "Prevention"
    assert policy.policy_settings.custom_block_response_status_code == 403
    assert len(policy.associated_resources) == 1
    assert policy.notes is None

    rule = policy.custom_rules[0]
    assert rule.name == "blockBadIp"
    assert rule.priority == 10
    assert rule.action is RuleAction.BLOCK
    assert rule.rule_type is RuleType.MATCH_RULE
    condition = rule.match_conditions[0]
    assert [value.value for value in condition.match_values] == ["203.0.113.5", "198.51.100.0/24"]
    assert condition.transforms == ()

    rule_set = policy.managed_rule_sets[0]
    assert (rule_set.rule_set_type, rule_set.rule_set_version) == ("OWASP", "3.2")
    group = rule_set.rule_group_overrides[0]
    assert group.rule_group_name == "SQLI"
    assert [rule.rule_id for rule in group.rules] == ["942100", "942110"]
    assert group.disabled_rules == ("942100",)


def test_absent_collections_map_to_empty_tuples() -> None:
    raw = {"name": "bare-policy", "properties": {}}
    policy = _map(raw)
    assert policy.custom_rules == ()
    assert policy.managed_rule_sets == ()
    assert policy.associated_resources == ()
    assert policy.policy_settings.mode is None


def test_null_nested_collections_are_normalised() -> None:
    raw = policy_json(
        managed_rule_sets=[
            {
                "ruleSetType": "Microsoft_DefaultRuleSet",
                "ruleSetVersion": "2.1",
                "ruleGroupOverrides": [{"ruleGroupName": "PHP", "rules": None, "exclusions": None}],
                "exclusions": None,
            }
        ],
        custom_rules=[],
    )
    policy = _map(raw)
    group = policy.managed_rule_sets[0].rule_group_overrides[0]
    assert group.rules == ()
    assert group.disabled_rules == ()
    assert group.exclusions == ()


def test_declaration_order_is_preserved() -> None:
    rules = [
        {"name": name, "priority": priority, "ruleType": "MatchRule", "action": "Allow"}
        for name, priority in [("zeta", 30), ("alpha", 10), ("mid", 20)]
    ]
    policy = _map(policy_json(custom_rules=rules))
    assert [rule.name for rule in policy.custom_rules] == ["zeta", "alpha", "mid"]


def test_override_exclusions_and_missing_state() -> None:
    raw = policy_json(
        managed_rule_sets=[
            {
                "ruleSetType": "OWASP",
                "ruleSetVersion": "3.2",
                "ruleGroupOverrides": [
                    {
                        "ruleGroupName": "XSS",
                        "rules": [
                            {
                                "ruleId": "941100",
                                "exclusions": [
                                    {
                                        "matchVariable": "RequestCookieNames",
                                        "selectorMatchOperator": "Equals",
                                        "selector": "session",
                                    }
                                ],
                            }
                        ],
                    }
                ],
            }
        ]
    )
    override = _map(raw).managed_rule_sets[0].rule_group_overrides[0].rules[0]
    assert override.state == "Enabled"
    assert override.exclusion_count == 1
    assert override.exclusions[0].selector == "session"
    assert not override.is_disabled


def test_rule_action_parse_is_case_insensitive() -> None:
    rules = [{"name": "rl", "priority": 1, "ruleType": "ratelimitrule", "action": "block",
              "rateLimitThreshold": 100, "rateLimitDurationInMinutes": 1}]
    rule = _map(policy_json(custom_rules=rules)).custom_rules[0]
    assert rule.action is RuleAction.BLOCK
    assert rule.rule_type is RuleType.RATE_LIMIT_RULE
    assert rule.rate_limit_threshold == 100


@pytest.mark.parametrize(
    "raw",
    [
        {"properties": {}},
        {"name": "p", "properties": "not-an-object"},
        policy_json(custom_rules=[{"priority": 1, "ruleType": "MatchRule", "action": "Block"}]),
        policy_json(custom_rules=[{"name": "r", "ruleType": "MatchRule", "action": "Block"}]),
        policy_json(custom_rules=[{"name": "r", "priority": 1, "ruleType": "MatchRule", "action": "Explode"}]),
        policy_json(managed_rule_sets=[{"ruleSetType": "OWASP"}]),
        policy_json(managed_rule_sets=[{"ruleSetType": "OWASP", "ruleSetVersion": "3.2",
                                         "ruleGroupOverrides": [{"rules": []}]}]),
        policy_json(managed_rule_sets=[{"ruleSetType": "OWASP", "ruleSetVersion": "3.2",
                                         "ruleGroupOverrides": [{"ruleGroupName": "SQLI", "rules": [{}]}]}]),
    ],
)
def test_malformed_policies_raise_mapping_error(raw: dict) -> None:
    with pytest.raises(PolicyMappingError):
        _map(raw)


def test_directory_record_helpers() -> None:
    tenant = map_tenant({"tenantId": "t-1"})
    assert tenant.display_name == "t-1"
    subscription = map_subscription({"subscriptionId": "s-1", "displayName": "Prod"}, tenant_id="t-1")
    assert subscription.tenant_id == "t-1"
    group = map_resource_group({"name": "rg-edge"}, "s-1")
    assert group.resource_id == "/subscriptions/s-1/resourceGroups/rg-edge"
