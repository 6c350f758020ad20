from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict

from wafscope.core.config import get_settings
from wafscope.core.logging import configure_logging
from wafscope.persistence.db import dispose_engine, get_session
from wafscope.providers.arm.factory import get_resource_client_factory
from wafscope.providers.notes.factory import get_notes_store
from wafscope.services.notes_overlay import NotesOverlayEnricher
from wafscope.services.scanner import ResourceHierarchyScanner, ScanResult, ScanStatus


EXIT_CODES = {
    ScanStatus.SUCCEEDED: 0,
    ScanStatus.PARTIAL: 3,
    ScanStatus.FAILED: 4,
}


def _print_summary(result: ScanResult) -> None:
    print(f"status={result.status.value} policies={len(result.policies)} issues={len(result.issues)}")
    for policy in result.policies:
        print(
            f"policy subscription={policy.subscription_name} resource_group={policy.resource_group_name} "
            f"name={policy.name} custom_rules={len(policy.custom_rules)} "
            f"managed_rule_sets={len(policy.managed_rule_sets)} notes={policy.notes!r}"
        )
    for issue in result.issues:
        print(f"issue kind={issue.kind.value} scope={issue.scope} message={issue.message}")


async def _scan(tenant: str | None, subscription: str | None, resource_group: str | None) -> ScanResult:
    settings = get_settings()
    client_factory = get_resource_client_factory()
    if settings.notes_store_provider.lower() == "sql":
        async with get_session() as session:
            enricher = NotesOverlayEnricher(get_notes_store(session), settings.notes_key_scheme)
            result = await ResourceHierarchyScanner(client_factory, enricher).scan(
                tenant, subscription, resource_group
            )
        await dispose_engine()
        return result
    enricher = NotesOverlayEnricher(get_notes_store(), settings.notes_key_scheme)
    return await ResourceHierarchyScanner(client_factory, enricher).scan(tenant, subscription, resource_group)


def main() -> None:
    parser = argparse.ArgumentParser(description="Inventory Front Door WAF policies with their notes")
    parser.add_argument("--tenant", default=None, help="Tenant id; omit for the credential's default tenant")
    parser.add_argument("--subscription", default=None)
    parser.add_argument("--resource-group", default=None)
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON")
    args = parser.parse_args()
    configure_logging()

    result = asyncio.run(_scan(args.tenant, args.subscription, args.resource_group))
    if args.json:
        print(json.dumps(asdict(result), indent=2, default=str))
    else:
        _print_summary(result)
    sys.exit(EXIT_CODES[result.status])


if __name__ == "__main__":
    main()
