from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable

from wafscope.core.config import get_settings
from wafscope.domain.waf import ResourceGroup, Subscription, Tenant, WafPolicy
from wafscope.providers.arm.base import ResourceClientFactory, ScopedResourceClient
from wafscope.services.notes_overlay import NotesOverlayEnricher
from wafscope.services.policy_mapper import map_policy
from wafscope.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


class ScanStatus(str, Enum):
    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


class IssueKind(str, Enum):
    ENUMERATION = "enumeration"
    FETCH = "fetch"
    MAPPING = "mapping"
    ENRICHMENT = "enrichment"
    IDENTITY_RESOLUTION = "identity_resolution"
    DEADLINE = "deadline"


RESOURCE_GROUP_NOT_FOUND = "resource_group_not_found"


@dataclass(frozen=True)
class ScanIssue:
    kind: IssueKind
    scope: str
    message: str
    code: str | None = None


@dataclass(frozen=True)
class ScanResult:
    policies: tuple[WafPolicy, ...]
    status: ScanStatus
    issues: tuple[ScanIssue, ...] = ()


class _ScanAborted(Exception):
    def __init__(self, issue: ScanIssue) -> None:
        super().__init__(issue.message)
        self.issue = issue


@dataclass
class _ScanState:
    policies: list[WafPolicy] = field(default_factory=list)
    issues: list[ScanIssue] = field(default_factory=list)
    failed: bool = False

    def add_issue(self, kind: IssueKind, scope: str, message: str, code: str | None = None) -> None:
        self.issues.append(ScanIssue(kind=kind, scope=scope, message=message, code=code))


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


def _describe(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


def _sort_key(policy: WafPolicy) -> tuple[str, str, str]:
    return (
        policy.subscription_name.lower(),
        policy.resource_group_name.lower(),
        policy.name.lower(),
    )


class ResourceHierarchyScanner:
    """Walk tenant -> subscription -> resource group -> WAF policy and build the inventory.

    Resource groups are scanned concurrently up to ``max_concurrency``. Below
    the root every failure is isolated to the smallest affected unit and
    recorded on the result; the result status tells callers whether the list
    is complete.
    """

    def __init__(
        self,
        client_factory: ResourceClientFactory,
        enricher: NotesOverlayEnricher,
        max_concurrency: int | None = None,
        timeout_s: float | None = None,
    ) -> None:
        settings = get_settings()
        self._client_factory = client_factory
        self._enricher = enricher
        self._max_concurrency = max(1, max_concurrency or settings.scan_max_concurrency)
        self._timeout_s = settings.scan_timeout_s if timeout_s is None else timeout_s

    async def scan(
        self,
        tenant_id: str | None,
        subscription_id: str | None = None,
        resource_group_name: str | None = None,
    ) -> ScanResult:
        tenant_id = _clean(tenant_id)
        subscription_id = _clean(subscription_id)
        resource_group_name = _clean(resource_group_name)
        state = _ScanState()
        logger.info(
            "scan_started tenant_id=%s subscription_id=%s resource_group=%s",
            tenant_id,
            subscription_id,
            resource_group_name,
        )

        try:
            client = self._client_factory.client_for(tenant_id)
        except Exception as exc:  # noqa: BLE001 - isolate to this scope
            logger.warning("scan_client_unavailable tenant_id=%s", tenant_id, exc_info=exc)
            state.failed = True
            state.add_issue(IssueKind.IDENTITY_RESOLUTION, f"tenant:{tenant_id or 'default'}", _describe(exc))
            return self._finish(state)

        try:
            finished = await self._run_with_deadline(
                self._scan_tree(client, state, subscription_id, resource_group_name)
            )
            if not finished:
                logger.warning("scan_deadline_expired timeout_s=%s", self._timeout_s)
                state.failed = True
                state.add_issue(
                    IssueKind.DEADLINE,
                    f"tenant:{tenant_id or 'default'}",
                    f"scan exceeded {self._timeout_s}s",
                )
        except _ScanAborted as exc:
            state.failed = True
            state.issues.append(exc.issue)
        except Exception as exc:  # noqa: BLE001 - keep the policies gathered so far
            logger.error("scan_aborted tenant_id=%s", tenant_id, exc_info=exc)
            state.failed = True
            state.add_issue(
                IssueKind.ENUMERATION,
                f"tenant:{tenant_id or 'default'}",
                _describe(exc),
            )
        finally:
            await self._close(client)
        return self._finish(state)

    async def _run_with_deadline(self, body: Awaitable[None]) -> bool:
        """Run the tree walk; return False when the scan deadline cut it short.

        Timeouts raised inside the walk propagate as ordinary errors so they
        are never mistaken for the scan deadline. Every group task has settled
        before this returns.
        """
        task = asyncio.ensure_future(body)
        timeout = self._timeout_s if self._timeout_s and self._timeout_s > 0 else None
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout)
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.wait({task})
            raise
        if task in done:
            task.result()
            return True
        task.cancel()
        await asyncio.wait({task})
        return False

    async def _scan_tree(
        self,
        client: ScopedResourceClient,
        state: _ScanState,
        subscription_id: str | None,
        resource_group_name: str | None,
    ) -> None:
        subscriptions = await self._resolve_subscriptions(client, subscription_id)
        targets: list[tuple[Subscription, ResourceGroup]] = []
        for subscription in subscriptions:
            targets.extend(await self._resolve_groups(client, state, subscription, resource_group_name))

        if resource_group_name and not targets and not any(
            issue.kind is IssueKind.ENUMERATION for issue in state.issues
        ):
            scope = f"resource_group:{subscription_id or '*'}/{resource_group_name}"
            logger.warning("scan_resource_group_not_found scope=%s", scope)
            state.add_issue(
                IssueKind.IDENTITY_RESOLUTION,
                scope,
                f"resource group {resource_group_name!r} not found",
                code=RESOURCE_GROUP_NOT_FOUND,
            )

        semaphore = asyncio.Semaphore(self._max_concurrency)

        async def _bounded(subscription: Subscription, group: ResourceGroup) -> None:
            scope = f"resource_group:{subscription.subscription_id}/{group.name}"
            async with semaphore:
                try:
                    await self._scan_group(client, state, subscription, group)
                except Exception as exc:  # noqa: BLE001 - one group must not abort its siblings
                    logger.warning("scan_group_failed scope=%s", scope, exc_info=exc)
                    state.add_issue(IssueKind.ENUMERATION, scope, _describe(exc))

        await asyncio.gather(*(_bounded(subscription, group) for subscription, group in targets))

    async def _resolve_subscriptions(
        self, client: ScopedResourceClient, subscription_id: str | None
    ) -> list[Subscription]:
        if subscription_id:
            scope = f"subscription:{subscription_id}"
            try:
                subscription = await client.get_subscription(subscription_id)
            except Exception as exc:  # noqa: BLE001 - isolate to this scope
                logger.warning("scan_subscription_unresolved %s", scope, exc_info=exc)
                raise _ScanAborted(ScanIssue(IssueKind.IDENTITY_RESOLUTION, scope, _describe(exc))) from exc
            if subscription is None:
                logger.warning("scan_subscription_unresolved %s", scope)
                raise _ScanAborted(
                    ScanIssue(IssueKind.IDENTITY_RESOLUTION, scope, "subscription not found")
                )
            return [subscription]
        try:
            return await client.list_subscriptions()
        except Exception as exc:  # noqa: BLE001 - isolate to this scope
            logger.warning("scan_subscriptions_unavailable", exc_info=exc)
            raise _ScanAborted(ScanIssue(IssueKind.ENUMERATION, "subscriptions", _describe(exc))) from exc

    async def _resolve_groups(
        self,
        client: ScopedResourceClient,
        state: _ScanState,
        subscription: Subscription,
        resource_group_name: str | None,
    ) -> list[tuple[Subscription, ResourceGroup]]:
        sub_id = subscription.subscription_id
        if resource_group_name:
            try:
                group = await client.get_resource_group(sub_id, resource_group_name)
            except Exception as exc:  # noqa: BLE001 - isolate to this scope
                logger.warning(
                    "scan_resource_group_lookup_failed subscription_id=%s resource_group=%s",
                    sub_id,
                    resource_group_name,
                    exc_info=exc,
                )
                state.add_issue(
                    IssueKind.ENUMERATION, f"resource_group:{sub_id}/{resource_group_name}", _describe(exc)
                )
                return []
            return [(subscription, group)] if group is not None else []
        try:
            groups = await client.list_resource_groups(sub_id)
        except Exception as exc:  # noqa: BLE001 - isolate to this scope
            logger.warning("scan_resource_groups_unavailable subscription_id=%s", sub_id, exc_info=exc)
            state.add_issue(IssueKind.ENUMERATION, f"subscription:{sub_id}", _describe(exc))
            return []
        return [(subscription, group) for group in groups]

    async def _scan_group(
        self,
        client: ScopedResourceClient,
        state: _ScanState,
        subscription: Subscription,
        group: ResourceGroup,
    ) -> None:
        sub_id = subscription.subscription_id
        group_scope = f"resource_group:{sub_id}/{group.name}"
        try:
            names = await client.list_waf_policy_names(sub_id, group.name)
        except Exception as exc:  # noqa: BLE001 - isolate to this scope
            logger.warning("scan_policies_unavailable scope=%s", group_scope, exc_info=exc)
            state.add_issue(IssueKind.ENUMERATION, group_scope, _describe(exc))
            return

        for name in names:
            scope = f"policy:{sub_id}/{group.name}/{name}"
            try:
                raw = await client.get_waf_policy(sub_id, group.name, name)
            except Exception as exc:  # noqa: BLE001 - isolate to this scope
                logger.warning("scan_policy_skipped scope=%s reason=fetch", scope, exc_info=exc)
                state.add_issue(IssueKind.FETCH, scope, _describe(exc))
                continue
            try:
                policy = map_policy(raw, subscription.display_name, sub_id, group.name)
            except Exception as exc:  # noqa: BLE001 - PolicyMappingError or a malformed payload
                logger.warning("scan_policy_skipped scope=%s reason=mapping", scope, exc_info=exc)
                state.add_issue(IssueKind.MAPPING, scope, _describe(exc))
                continue
            enriched, report = await self._enricher.enrich_with_report(policy)
            for failure in report.failures:
                state.add_issue(IssueKind.ENRICHMENT, failure.scope, failure.message)
            state.policies.append(enriched)

    async def _close(self, client: ScopedResourceClient) -> None:
        try:
            await client.close()
        except Exception as exc:  # noqa: BLE001 - closing must not mask the scan result
            logger.warning("scan_client_close_failed", exc_info=exc)

    @staticmethod
    def _finish(state: _ScanState) -> ScanResult:
        if state.failed:
            status = ScanStatus.FAILED
        elif state.issues:
            status = ScanStatus.PARTIAL
        else:
            status = ScanStatus.SUCCEEDED
        policies = tuple(sorted(state.policies, key=_sort_key))
        increment_counter("scans_total")
        increment_counter(f"scans_{status.value}_total")
        increment_counter("scan_policies_total", len(policies))
        increment_counter("scan_issues_total", len(state.issues))
        logger.info(
            "scan_finished status=%s policies=%s issues=%s",
            status.value,
            len(policies),
            len(state.issues),
        )
        return ScanResult(policies=policies, status=status, issues=tuple(state.issues))

    async def list_tenants(self) -> list[Tenant]:
        try:
            tenants = await self._client_factory.list_tenants()
        except Exception as exc:  # noqa: BLE001 - isolate to this scope
            logger.warning("tenants_unavailable", exc_info=exc)
            return []
        return sorted(tenants, key=lambda tenant: (tenant.display_name or tenant.tenant_id).lower())

    async def list_subscriptions(self, tenant_id: str | None) -> list[Subscription]:
        tenant_id = _clean(tenant_id)
        try:
            client = self._client_factory.client_for(tenant_id)
        except Exception as exc:  # noqa: BLE001 - isolate to this scope
            logger.warning("subscriptions_unavailable tenant_id=%s", tenant_id, exc_info=exc)
            return []
        try:
            subscriptions = await client.list_subscriptions()
        except Exception as exc:  # noqa: BLE001 - isolate to this scope
            logger.warning("subscriptions_unavailable tenant_id=%s", tenant_id, exc_info=exc)
            return []
        finally:
            await self._close(client)
        return sorted(subscriptions, key=lambda subscription: subscription.display_name.lower())

    async def list_resource_groups_with_waf_policies(
        self, tenant_id: str | None, subscription_id: str
    ) -> list[str]:
        """Names of resource groups in a subscription that hold at least one WAF policy."""
        tenant_id = _clean(tenant_id)
        subscription_id = (subscription_id or "").strip()
        try:
            client = self._client_factory.client_for(tenant_id)
        except Exception as exc:  # noqa: BLE001 - isolate to this scope
            logger.warning("resource_groups_unavailable tenant_id=%s", tenant_id, exc_info=exc)
            return []
        try:
            try:
                groups = await client.list_resource_groups(subscription_id)
            except Exception as exc:  # noqa: BLE001 - isolate to this scope
                logger.warning(
                    "resource_groups_unavailable subscription_id=%s", subscription_id, exc_info=exc
                )
                return []

            semaphore = asyncio.Semaphore(self._max_concurrency)

            async def _has_policies(group: ResourceGroup) -> bool:
                async with semaphore:
                    try:
                        return bool(await client.list_waf_policy_names(subscription_id, group.name))
                    except Exception as exc:  # noqa: BLE001 - isolate to this scope
                        logger.warning(
                            "resource_group_policies_unavailable subscription_id=%s resource_group=%s",
                            subscription_id,
                            group.name,
                            exc_info=exc,
                        )
                        return False

            flags = await asyncio.gather(*(_has_policies(group) for group in groups))
        finally:
            await self._close(client)
        names = {group.name for group, flag in zip(groups, flags) if flag}
        return sorted(names, key=str.lower)
