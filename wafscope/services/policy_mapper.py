from __future__ import annotations

from typing import Any, Mapping

from wafscope.core.config import WAF_POLICY_TYPE_LABEL
from wafscope.core.errors import PolicyMappingError
from wafscope.domain.waf import (
    CustomRule,
    Exclusion,
    ManagedRuleOverride,
    ManagedRuleSet,
    MatchCondition,
    MatchValue,
    PolicySettings,
    ResourceGroup,
    RuleAction,
    RuleGroupOverride,
    RuleType,
    Subscription,
    Tenant,
    WafPolicy,
)


# Link collections that tie a global Front Door policy to the endpoints it protects.
_ASSOCIATION_LINK_FIELDS = ("frontendEndpointLinks", "securityPolicyLinks", "routingRuleLinks")


def _as_list(value: Any, where: str) -> list[Any]:
    # Absent collections normalise to empty; anything else must be a list.
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    raise PolicyMappingError(f"{where} must be a list")


def _as_mapping(value: Any, where: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if isinstance(value, Mapping):
        return value
    raise PolicyMappingError(f"{where} must be an object")


def _required_str(record: Mapping[str, Any], key: str, where: str) -> str:
    value = record.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise PolicyMappingError(f"{where}.{key} is required")
    return str(value)


def _optional_str(record: Mapping[str, Any], key: str) -> str | None:
    value = record.get(key)
    return None if value is None else str(value)


def _optional_int(record: Mapping[str, Any], key: str, where: str) -> int | None:
    value = record.get(key)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise PolicyMappingError(f"{where}.{key} must be an integer") from exc


def _map_exclusions(value: Any, where: str) -> tuple[Exclusion, ...]:
    exclusions = []
    for index, raw in enumerate(_as_list(value, where)):
        item = _as_mapping(raw, f"{where}[{index}]")
        exclusions.append(
            Exclusion(
                match_variable=str(item.get("matchVariable") or ""),
                selector_match_operator=str(item.get("selectorMatchOperator") or ""),
                selector=str(item.get("selector") or ""),
            )
        )
    return tuple(exclusions)


def _map_rule_override(raw: Any, where: str) -> ManagedRuleOverride:
    item = _as_mapping(raw, where)
    return ManagedRuleOverride(
        rule_id=_required_str(item, "ruleId", where),
        # ARM omits enabledState on overrides that only carry an action or exclusions.
        state=str(item.get("enabledState") or "Enabled"),
        action=_optional_str(item, "action"),
        exclusions=_map_exclusions(item.get("exclusions"), f"{where}.exclusions"),
    )


def _map_group_override(raw: Any, where: str) -> RuleGroupOverride:
    item = _as_mapping(raw, where)
    rules = tuple(
        _map_rule_override(rule, f"{where}.rules[{index}]")
        for index, rule in enumerate(_as_list(item.get("rules"), f"{where}.rules"))
    )
    return RuleGroupOverride(
        rule_group_name=_required_str(item, "ruleGroupName", where),
        rules=rules,
        exclusions=_map_exclusions(item.get("exclusions"), f"{where}.exclusions"),
    )


def _map_rule_set(raw: Any, where: str) -> ManagedRuleSet:
    item = _as_mapping(raw, where)
    overrides = tuple(
        _map_group_override(group, f"{where}.ruleGroupOverrides[{index}]")
        for index, group in enumerate(
            _as_list(item.get("ruleGroupOverrides"), f"{where}.ruleGroupOverrides")
        )
    )
    return ManagedRuleSet(
        rule_set_type=_required_str(item, "ruleSetType", where),
        rule_set_version=_required_str(item, "ruleSetVersion", where),
        rule_set_action=_optional_str(item, "ruleSetAction"),
        rule_group_overrides=overrides,
        exclusions=_map_exclusions(item.get("exclusions"), f"{where}.exclusions"),
    )


def _map_match_condition(raw: Any, where: str) -> MatchCondition:
    item = _as_mapping(raw, where)
    values = tuple(
        MatchValue(value=str(value))
        for value in _as_list(item.get("matchValue"), f"{where}.matchValue")
    )
    transforms = tuple(
        str(transform) for transform in _as_list(item.get("transforms"), f"{where}.transforms")
    )
    return MatchCondition(
        match_variable=_required_str(item, "matchVariable", where),
        operator=_required_str(item, "operator", where),
        selector=_optional_str(item, "selector"),
        match_values=values,
        transforms=transforms,
        negate_condition=bool(item.get("negateCondition") or False),
    )


def _parse_action(value: Any, where: str) -> RuleAction:
    try:
        return RuleAction(value)
    except ValueError as exc:
        raise PolicyMappingError(f"{where}.action {value!r} is not a known rule action") from exc


def _parse_rule_type(value: Any, where: str) -> RuleType:
    try:
        return RuleType(value)
    except ValueError as exc:
        raise PolicyMappingError(f"{where}.ruleType {value!r} is not a known rule type") from exc


def _map_custom_rule(raw: Any, where: str) -> CustomRule:
    item = _as_mapping(raw, where)
    priority = _optional_int(item, "priority", where)
    if priority is None:
        raise PolicyMappingError(f"{where}.priority is required")
    conditions = tuple(
        _map_match_condition(condition, f"{where}.matchConditions[{index}]")
        for index, condition in enumerate(
            _as_list(item.get("matchConditions"), f"{where}.matchConditions")
        )
    )
    return CustomRule(
        name=_required_str(item, "name", where),
        priority=priority,
        action=_parse_action(item.get("action"), where),
        rule_type=_parse_rule_type(item.get("ruleType"), where),
        enabled_state=_optional_str(item, "enabledState"),
        rate_limit_duration_in_minutes=_optional_int(item, "rateLimitDurationInMinutes", where),
        rate_limit_threshold=_optional_int(item, "rateLimitThreshold", where),
        match_conditions=conditions,
    )


def _map_policy_settings(value: Any) -> PolicySettings:
    item = _as_mapping(value, "properties.policySettings")
    return PolicySettings(
        enabled_state=_optional_str(item, "enabledState"),
        mode=_optional_str(item, "mode"),
        redirect_url=_optional_str(item, "redirectUrl"),
        custom_block_response_status_code=_optional_int(
            item, "customBlockResponseStatusCode", "properties.policySettings"
        ),
        request_body_check=_optional_str(item, "requestBodyCheck"),
    )


def _map_associations(properties: Mapping[str, Any]) -> tuple[str, ...]:
    linked: list[str] = []
    for field_name in _ASSOCIATION_LINK_FIELDS:
        for index, raw in enumerate(_as_list(properties.get(field_name), f"properties.{field_name}")):
            link = _as_mapping(raw, f"properties.{field_name}[{index}]")
            link_id = link.get("id")
            if link_id and link_id not in linked:
                linked.append(str(link_id))
    return tuple(linked)


def map_policy(
    raw_policy: Mapping[str, Any],
    subscription_name: str,
    subscription_id: str,
    resource_group_name: str,
) -> WafPolicy:
    """Normalise one Front Door WAF policy (ARM REST JSON) into a ``WafPolicy``.

    Raises ``PolicyMappingError`` when identity fields are missing or a
    collection has the wrong shape; no partially built policy is returned.
    """
    if not isinstance(raw_policy, Mapping):
        raise PolicyMappingError("policy record must be an object")
    name = _required_str(raw_policy, "name", "policy")
    properties = _as_mapping(raw_policy.get("properties"), "properties")

    managed_rules = _as_mapping(properties.get("managedRules"), "properties.managedRules")
    rule_sets = tuple(
        _map_rule_set(rule_set, f"managedRuleSets[{index}]")
        for index, rule_set in enumerate(
            _as_list(managed_rules.get("managedRuleSets"), "properties.managedRules.managedRuleSets")
        )
    )

    custom_rules_block = _as_mapping(properties.get("customRules"), "properties.customRules")
    custom_rules = tuple(
        _map_custom_rule(rule, f"customRules[{index}]")
        for index, rule in enumerate(
            _as_list(custom_rules_block.get("rules"), "properties.customRules.rules")
        )
    )

    sku = _as_mapping(raw_policy.get("sku"), "sku")
    return WafPolicy(
        name=name,
        policy_type=WAF_POLICY_TYPE_LABEL,
        subscription_name=subscription_name,
        subscription_id=subscription_id,
        resource_group_name=resource_group_name,
        resource_id=_optional_str(raw_policy, "id"),
        location=_optional_str(raw_policy, "location"),
        sku=_optional_str(sku, "name"),
        policy_settings=_map_policy_settings(properties.get("policySettings")),
        associated_resources=_map_associations(properties),
        managed_rule_sets=rule_sets,
        custom_rules=custom_rules,
    )


def map_tenant(raw: Mapping[str, Any]) -> Tenant:
    tenant_id = _required_str(raw, "tenantId", "tenant")
    # Tenants without a display name are shown by id.
    return Tenant(tenant_id=tenant_id, display_name=str(raw.get("displayName") or tenant_id))


def map_subscription(raw: Mapping[str, Any], tenant_id: str | None = None) -> Subscription:
    subscription_id = _required_str(raw, "subscriptionId", "subscription")
    return Subscription(
        subscription_id=subscription_id,
        display_name=str(raw.get("displayName") or subscription_id),
        tenant_id=_optional_str(raw, "tenantId") or tenant_id,
    )


def map_resource_group(raw: Mapping[str, Any], subscription_id: str) -> ResourceGroup:
    name = _required_str(raw, "name", "resourceGroup")
    return ResourceGroup(
        name=name,
        resource_id=str(
            raw.get("id") or f"/subscriptions/{subscription_id}/resourceGroups/{name}"
        ),
        subscription_id=subscription_id,
    )
