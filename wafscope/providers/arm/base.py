from __future__ import annotations

from typing import Any, Protocol

from wafscope.domain.waf import ResourceGroup, Subscription, Tenant


class ScopedResourceClient(Protocol):
    """Resource API client bound to one tenant (or to the caller's default tenant).

    Calls raise ``ResourceApiError`` (``ResourceAuthError`` for credential or
    permission failures). Point lookups return ``None`` when the resource does
    not exist instead of raising.
    """

    async def list_subscriptions(self) -> list[Subscription]:
        ...

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        ...

    async def list_resource_groups(self, subscription_id: str) -> list[ResourceGroup]:
        ...

    async def get_resource_group(
        self, subscription_id: str, resource_group_name: str
    ) -> ResourceGroup | None:
        ...

    async def list_waf_policy_names(
        self, subscription_id: str, resource_group_name: str
    ) -> list[str]:
        ...

    async def get_waf_policy(
        self, subscription_id: str, resource_group_name: str, policy_name: str
    ) -> dict[str, Any]:
        ...

    async def close(self) -> None:
        ...


class ResourceClientFactory(Protocol):
    async def list_tenants(self) -> list[Tenant]:
        ...

    def client_for(self, tenant_id: str | None) -> ScopedResourceClient:
        ...
