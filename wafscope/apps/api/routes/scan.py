from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict, Field

from wafscope.apps.api.deps import get_scanner
from wafscope.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from wafscope.apps.api.response import SuccessEnvelope, success_response
from wafscope.domain.waf import RuleAction, RuleType
from wafscope.services.scanner import IssueKind, ResourceHierarchyScanner, ScanStatus


router = APIRouter(tags=["waf"], responses=DEFAULT_ERROR_RESPONSES)


class _FromDomain(BaseModel):
    # Domain objects are frozen dataclasses; read them attribute by attribute.
    model_config = ConfigDict(from_attributes=True)


class TenantResponse(_FromDomain):
    tenant_id: str
    display_name: str


class SubscriptionResponse(_FromDomain):
    subscription_id: str
    display_name: str
    tenant_id: str | None = None


class ExclusionResponse(_FromDomain):
    match_variable: str
    selector_match_operator: str
    selector: str


class ManagedRuleOverrideResponse(_FromDomain):
    rule_id: str
    state: str
    action: str | None = None
    exclusions: list[ExclusionResponse] = Field(default_factory=list)
    exclusion_count: int = 0
    notes: str | None = None


class RuleGroupOverrideResponse(_FromDomain):
    rule_group_name: str
    rules: list[ManagedRuleOverrideResponse] = Field(default_factory=list)
    disabled_rules: list[str] = Field(default_factory=list)
    exclusions: list[ExclusionResponse] = Field(default_factory=list)


class ManagedRuleSetResponse(_FromDomain):
    rule_set_type: str
    rule_set_version: str
    rule_set_action: str | None = None
    rule_group_overrides: list[RuleGroupOverrideResponse] = Field(default_factory=list)
    exclusions: list[ExclusionResponse] = Field(default_factory=list)


class MatchValueResponse(_FromDomain):
    value: str
    notes: str | None = None


class MatchConditionResponse(_FromDomain):
    match_variable: str
    operator: str
    selector: str | None = None
    match_values: list[MatchValueResponse] = Field(default_factory=list)
    transforms: list[str] = Field(default_factory=list)
    negate_condition: bool = False


class CustomRuleResponse(_FromDomain):
    name: str
    priority: int
    action: RuleAction
    rule_type: RuleType
    enabled_state: str | None = None
    rate_limit_duration_in_minutes: int | None = None
    rate_limit_threshold: int | None = None
    match_conditions: list[MatchConditionResponse] = Field(default_factory=list)
    notes: str | None = None


class PolicySettingsResponse(_FromDomain):
    enabled_state: str | None = None
    mode: str | None = None
    redirect_url: str | None = None
    custom_block_response_status_code: int | None = None
    request_body_check: str | None = None


class WafPolicyResponse(_FromDomain):
    name: str
    policy_type: str
    subscription_name: str
    subscription_id: str
    resource_group_name: str
    resource_id: str | None = None
    location: str | None = None
    sku: str | None = None
    policy_settings: PolicySettingsResponse
    associated_resources: list[str] = Field(default_factory=list)
    managed_rule_sets: list[ManagedRuleSetResponse] = Field(default_factory=list)
    custom_rules: list[CustomRuleResponse] = Field(default_factory=list)
    notes: str | None = None


class ScanIssueResponse(_FromDomain):
    kind: IssueKind
    scope: str
    message: str
    code: str | None = None


class ScanResponse(_FromDomain):
    status: ScanStatus
    policies: list[WafPolicyResponse]
    issues: list[ScanIssueResponse]


class ScanRequest(BaseModel):
    tenant_id: str | None = None
    subscription_id: str | None = None
    resource_group_name: str | None = None


@router.get("/tenants", response_model=SuccessEnvelope[list[TenantResponse]] | list[TenantResponse])
async def list_tenants(
    request: Request,
    scanner: ResourceHierarchyScanner = Depends(get_scanner),
) -> dict:
    tenants = await scanner.list_tenants()
    return success_response(
        request=request, data=[TenantResponse.model_validate(tenant) for tenant in tenants]
    )


@router.get(
    "/tenants/{tenant_id}/subscriptions",
    response_model=SuccessEnvelope[list[SubscriptionResponse]] | list[SubscriptionResponse],
)
async def list_subscriptions(
    tenant_id: str,
    request: Request,
    scanner: ResourceHierarchyScanner = Depends(get_scanner),
) -> dict:
    subscriptions = await scanner.list_subscriptions(tenant_id)
    return success_response(
        request=request,
        data=[SubscriptionResponse.model_validate(subscription) for subscription in subscriptions],
    )


@router.get(
    "/tenants/{tenant_id}/subscriptions/{subscription_id}/resource-groups",
    response_model=SuccessEnvelope[list[str]] | list[str],
)
async def list_resource_groups(
    tenant_id: str,
    subscription_id: str,
    request: Request,
    scanner: ResourceHierarchyScanner = Depends(get_scanner),
) -> dict:
    # Only groups holding at least one WAF policy, for the scope picker.
    names = await scanner.list_resource_groups_with_waf_policies(tenant_id, subscription_id)
    return success_response(request=request, data=names)


@router.post("/waf/scan", response_model=SuccessEnvelope[ScanResponse] | ScanResponse)
async def scan_waf_policies(
    payload: ScanRequest,
    request: Request,
    scanner: ResourceHierarchyScanner = Depends(get_scanner),
) -> dict:
    # Partial and failed scans still answer 200; the status field carries the outcome.
    result = await scanner.scan(
        payload.tenant_id,
        subscription_id=payload.subscription_id,
        resource_group_name=payload.resource_group_name,
    )
    return success_response(request=request, data=ScanResponse.model_validate(result))
