from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from azure.core.exceptions import (
    AzureError,
    ClientAuthenticationError,
    HttpResponseError,
    ResourceNotFoundError,
    ServiceRequestError,
    ServiceResponseError,
)

from wafscope.core.errors import ProviderConfigError, ResourceApiError, ResourceAuthError
from wafscope.domain.waf import ResourceGroup, Subscription, Tenant
from wafscope.services.policy_mapper import map_resource_group, map_subscription, map_tenant
from wafscope.services.resilience import default_retryable, retry_async
from wafscope.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


def _retryable(exc: Exception) -> bool:
    if isinstance(exc, (ServiceRequestError, ServiceResponseError)):
        return True
    return default_retryable(exc)


def _translate(exc: Exception, what: str) -> ResourceApiError:
    if isinstance(exc, ClientAuthenticationError):
        return ResourceAuthError(f"{what}: authentication failed")
    if isinstance(exc, HttpResponseError) and exc.status_code in {401, 403}:
        return ResourceAuthError(f"{what}: access denied (HTTP {exc.status_code})")
    if isinstance(exc, HttpResponseError) and exc.status_code is not None:
        return ResourceApiError(f"{what}: HTTP {exc.status_code}")
    return ResourceApiError(f"{what}: {exc.__class__.__name__}")


def _default_credential(tenant_id: str | None) -> Any:
    try:
        from azure.identity.aio import (
            AzureCliCredential,
            ChainedTokenCredential,
            DefaultAzureCredential,
            EnvironmentCredential,
            ManagedIdentityCredential,
        )
    except Exception as exc:  # pragma: no cover - environment-specific import
        raise ProviderConfigError("azure-identity is not available. Install azure-identity.") from exc

    if not tenant_id:
        return DefaultAzureCredential()
    # Tenant-pinned chain: service principal from env, managed identity, then the CLI login.
    return ChainedTokenCredential(
        EnvironmentCredential(),
        ManagedIdentityCredential(),
        AzureCliCredential(tenant_id=tenant_id),
    )


async def _call(integration: str, what: str, func: Callable[[], Awaitable[Any]]) -> Any:
    start = time.monotonic()
    try:
        result = await retry_async(func, retryable=_retryable, name=integration)
    except ResourceNotFoundError:
        record_external_call(
            integration=integration,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        raise
    except AzureError as exc:
        record_external_call(
            integration=integration,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=False,
        )
        raise _translate(exc, what) from exc
    except (TimeoutError, asyncio.TimeoutError) as exc:
        record_external_call(
            integration=integration,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=False,
        )
        raise ResourceApiError(f"{what}: timed out") from exc
    record_external_call(
        integration=integration,
        latency_ms=(time.monotonic() - start) * 1000.0,
        success=True,
    )
    return result


class AzureScopedResourceClient:
    def __init__(
        self,
        tenant_id: str | None,
        credential: Any | None = None,
        credential_factory: Callable[[str | None], Any] | None = None,
    ) -> None:
        self._tenant_id = tenant_id
        self._credential = credential or (credential_factory or _default_credential)(tenant_id)
        self._subscription_client: Any | None = None
        self._resource_clients: dict[str, Any] = {}
        self._frontdoor_clients: dict[str, Any] = {}
        # Policies returned by the last list per (subscription, resource group).
        self._policy_cache: dict[tuple[str, str], dict[str, dict[str, Any]]] = {}

    def _subscriptions(self) -> Any:
        if self._subscription_client is None:
            from azure.mgmt.resource.subscriptions.aio import SubscriptionClient

            self._subscription_client = SubscriptionClient(self._credential)
        return self._subscription_client

    def _resources(self, subscription_id: str) -> Any:
        client = self._resource_clients.get(subscription_id)
        if client is None:
            from azure.mgmt.resource.resources.aio import ResourceManagementClient

            client = ResourceManagementClient(self._credential, subscription_id)
            self._resource_clients[subscription_id] = client
        return client

    def _frontdoor(self, subscription_id: str) -> Any:
        client = self._frontdoor_clients.get(subscription_id)
        if client is None:
            from azure.mgmt.frontdoor.aio import FrontDoorManagementClient

            client = FrontDoorManagementClient(self._credential, subscription_id)
            self._frontdoor_clients[subscription_id] = client
        return client

    async def list_subscriptions(self) -> list[Subscription]:
        client = self._subscriptions()

        async def _list() -> list[Any]:
            return [item async for item in client.subscriptions.list()]

        items = await _call("arm.list_subscriptions", "list subscriptions", _list)
        return [
            map_subscription(item.serialize(keep_readonly=True), tenant_id=self._tenant_id)
            for item in items
        ]

    async def get_subscription(self, subscription_id: str) -> Subscription | None:
        client = self._subscriptions()
        try:
            item = await _call(
                "arm.get_subscription",
                f"get subscription {subscription_id}",
                lambda: client.subscriptions.get(subscription_id),
            )
        except ResourceNotFoundError:
            return None
        return map_subscription(item.serialize(keep_readonly=True), tenant_id=self._tenant_id)

    async def list_resource_groups(self, subscription_id: str) -> list[ResourceGroup]:
        client = self._resources(subscription_id)

        async def _list() -> list[Any]:
            return [item async for item in client.resource_groups.list()]

        items = await _call(
            "arm.list_resource_groups", f"list resource groups in {subscription_id}", _list
        )
        return [map_resource_group(item.serialize(keep_readonly=True), subscription_id) for item in items]

    async def get_resource_group(
        self, subscription_id: str, resource_group_name: str
    ) -> ResourceGroup | None:
        client = self._resources(subscription_id)
        try:
            item = await _call(
                "arm.get_resource_group",
                f"get resource group {subscription_id}/{resource_group_name}",
                lambda: client.resource_groups.get(resource_group_name),
            )
        except ResourceNotFoundError:
            return None
        return map_resource_group(item.serialize(keep_readonly=True), subscription_id)

    async def list_waf_policy_names(
        self, subscription_id: str, resource_group_name: str
    ) -> list[str]:
        client = self._frontdoor(subscription_id)

        async def _list() -> list[Any]:
            return [item async for item in client.policies.list(resource_group_name)]

        try:
            items = await _call(
                "arm.list_waf_policies",
                f"list WAF policies in {subscription_id}/{resource_group_name}",
                _list,
            )
        except ResourceNotFoundError:
            # A resource group deleted mid-scan simply has no policies.
            items = []
        policies = {item.name: item.serialize(keep_readonly=True) for item in items if item.name}
        self._policy_cache[(subscription_id, resource_group_name)] = policies
        return list(policies)

    async def get_waf_policy(
        self, subscription_id: str, resource_group_name: str, policy_name: str
    ) -> dict[str, Any]:
        cached = self._policy_cache.get((subscription_id, resource_group_name), {})
        if policy_name in cached:
            return cached[policy_name]
        client = self._frontdoor(subscription_id)
        what = f"get WAF policy {subscription_id}/{resource_group_name}/{policy_name}"
        try:
            item = await _call(
                "arm.get_waf_policy",
                what,
                lambda: client.policies.get(resource_group_name, policy_name),
            )
        except ResourceNotFoundError as exc:
            raise ResourceApiError(f"{what}: not found") from exc
        return item.serialize(keep_readonly=True)

    async def close(self) -> None:
        clients = [self._subscription_client, *self._resource_clients.values(), *self._frontdoor_clients.values()]
        for client in clients:
            if client is not None:
                await client.close()
        self._subscription_client = None
        self._resource_clients.clear()
        self._frontdoor_clients.clear()
        self._policy_cache.clear()
        close = getattr(self._credential, "close", None)
        if close is not None:
            await close()


class AzureResourceClientFactory:
    """Builds tenant-scoped ARM clients from Azure credentials."""

    def __init__(self, credential_factory: Callable[[str | None], Any] | None = None) -> None:
        self._credential_factory = credential_factory or _default_credential

    async def list_tenants(self) -> list[Tenant]:
        from azure.mgmt.resource.subscriptions.aio import SubscriptionClient

        credential = self._credential_factory(None)
        client = SubscriptionClient(credential)

        async def _list() -> list[Any]:
            return [item async for item in client.tenants.list()]

        try:
            items = await _call("arm.list_tenants", "list tenants", _list)
        finally:
            await client.close()
            close = getattr(credential, "close", None)
            if close is not None:
                await close()
        return [map_tenant(item.serialize(keep_readonly=True)) for item in items]

    def client_for(self, tenant_id: str | None) -> AzureScopedResourceClient:
        logger.debug("arm_client_created tenant_id=%s", tenant_id or "default")
        return AzureScopedResourceClient(tenant_id, credential_factory=self._credential_factory)
