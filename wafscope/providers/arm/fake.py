from __future__ import annotations

import asyncio
import copy
import json
from pathlib import Path
from typing import Any

from wafscope.core.errors import ResourceApiError
from wafscope.domain.waf import ResourceGroup, Subscription, Tenant
from wafscope.services.policy_mapper import map_resource_group, map_subscription, map_tenant


def _scope(*parts: str) -> str:
    return "/".join(parts)


class FakeResourceDirectory:
    """In-memory tenant/subscription/resource-group/policy tree.

    The fixture mirrors ARM payloads::

        {"tenants": [{"tenantId": "...", "displayName": "...",
                      "subscriptions": [{"subscriptionId": "...", "displayName": "...",
                                         "resourceGroups": [{"name": "...",
                                                             "policies": [<ARM policy JSON>]}]}]}]}

    ``failures`` maps "<operation>:<scope>" to an error message, for example
    ``"get_waf_policy:sub-1/rg-a/pol-x"``. ``delays`` maps the same keys to
    seconds to sleep before answering.
    """

    def __init__(
        self,
        data: dict[str, Any],
        failures: dict[str, str] | None = None,
        delays: dict[str, float] | None = None,
    ) -> None:
        self._data = copy.deepcopy(data)
        self.failures = dict(failures or {})
        self.delays = dict(delays or {})
        self.calls: list[str] = []
        self.closed_clients = 0

    @classmethod
    def from_file(cls, path: str | Path) -> "FakeResourceDirectory":
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(
            payload.get("directory", payload),
            failures=payload.get("failures"),
            delays=payload.get("delays"),
        )

    async def _enter(self, operation: str, scope: str = "") -> None:
        key = f"{operation}:{scope}" if scope else operation
        self.calls.append(key)
        delay = self.delays.get(key)
        if delay:
            await asyncio.sleep(delay)
        message = self.failures.get(key)
        if message is not None:
            raise ResourceApiError(message)

    def _tenants(self) -> list[dict[str, Any]]:
        return list(self._data.get("tenants") or [])

    def _subscriptions(self, tenant_id: str | None) -> list[tuple[str, dict[str, Any]]]:
        found = []
        for tenant in self._tenants():
            if tenant_id is None or tenant.get("tenantId") == tenant_id:
                for subscription in tenant.get("subscriptions") or []:
                    found.append((str(tenant.get("tenantId")), subscription))
        return found

    def _resource_groups(self, tenant_id: str | None, subscription_id: str) -> list[dict[str, Any]] | None:
        for _, subscription in self._subscriptions(tenant_id):
            if subscription.get("subscriptionId") == subscription_id:
                return list(subscription.get("resourceGroups") or [])
        return None

    def _policies(self, tenant_id: str | None, subscription_id: str, resource_group_name: str) -> list[dict[str, Any]]:
        for group in self._resource_groups(tenant_id, subscription_id) or []:
            if group.get("name") == resource_group_name:
                return list(group.get("policies") or [])
        return []

    async def list_tenants(self) -> list[Tenant]:
        await self._enter("list_tenants")
        return [map_tenant(tenant) for tenant in self._tenants()]

    def client_for(self, tenant_id: str | None) -> "FakeScopedResourceClient":
        key = f"client_for:{tenant_id or 'default'}"
        self.calls.append(key)
        message = self.failures.get(key)
        if message is not None:
            raise ResourceApiError(message)
        return FakeScopedResourceClient(self, tenant_id)


class FakeScopedResourceClient:
    def __init__(self, directory: FakeResourceDirectory, tenant_id: str | None) -> None:
        self._directory = directory
        self._tenant_id = tenant_id

    async def list_subscriptions(self) -> list[Subscription]:
        await self._directory._enter("list_subscriptions", self._tenant_id or "default")
        return [
            map_subscription(subscription, tenant_id=tenant_id)
            for tenant_id, subscription in self._directory._subscriptions(self._tenant_id)
        ]

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        await self._directory._enter("get_subscription", subscription_id)
        for tenant_id, subscription in self._directory._subscriptions(self._tenant_id):
            if subscription.get("subscriptionId") == subscription_id:
                return map_subscription(subscription, tenant_id=tenant_id)
        return None

    async def list_resource_groups(self, subscription_id: str) -> list[ResourceGroup]:
        await self._directory._enter("list_resource_groups", subscription_id)
        groups = self._directory._resource_groups(self._tenant_id, subscription_id)
        if groups is None:
            raise ResourceApiError(f"subscription {subscription_id} not found")
        return [map_resource_group(group, subscription_id) for group in groups]

    async def get_resource_group(
        self, subscription_id: str, resource_group_name: str
    ) -> ResourceGroup | None:
        await self._directory._enter("get_resource_group", _scope(subscription_id, resource_group_name))
        for group in self._directory._resource_groups(self._tenant_id, subscription_id) or []:
            if group.get("name") == resource_group_name:
                return map_resource_group(group, subscription_id)
        return None

    async def list_waf_policy_names(
        self, subscription_id: str, resource_group_name: str
    ) -> list[str]:
        await self._directory._enter(
            "list_waf_policy_names", _scope(subscription_id, resource_group_name)
        )
        policies = self._directory._policies(self._tenant_id, subscription_id, resource_group_name)
        return [str(policy.get("name")) for policy in policies]

    async def get_waf_policy(
        self, subscription_id: str, resource_group_name: str, policy_name: str
    ) -> dict[str, Any]:
        await self._directory._enter(
            "get_waf_policy", _scope(subscription_id, resource_group_name, policy_name)
        )
        for policy in self._directory._policies(self._tenant_id, subscription_id, resource_group_name):
            if policy.get("name") == policy_name:
                return copy.deepcopy(policy)
        raise ResourceApiError(
            f"WAF policy {_scope(subscription_id, resource_group_name, policy_name)} not found"
        )

    async def close(self) -> None:
        self._directory.closed_clients += 1
