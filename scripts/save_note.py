from __future__ import annotations

import argparse
import asyncio
import sys

from wafscope.core.config import get_settings
from wafscope.core.logging import configure_logging
from wafscope.domain.notes import EntityType, NoteFields
from wafscope.persistence.db import dispose_engine, get_session
from wafscope.providers.notes.factory import get_notes_store
from wafscope.services.notes_writer import NotesWriteService, SaveNoteResult


async def _save(entity_type: str, fields: NoteFields, content: str) -> SaveNoteResult:
    settings = get_settings()
    if settings.notes_store_provider.lower() == "sql":
        async with get_session() as session:
            writer = NotesWriteService(get_notes_store(session), settings.notes_key_scheme)
            result = await writer.save_note(entity_type, fields, content)
        await dispose_engine()
        return result
    writer = NotesWriteService(get_notes_store(), settings.notes_key_scheme)
    return await writer.save_note(entity_type, fields, content)


def main() -> None:
    parser = argparse.ArgumentParser(description="Save a note on a WAF policy node")
    parser.add_argument("--entity-type", required=True, choices=[kind.value for kind in EntityType])
    parser.add_argument("--policy", required=True)
    parser.add_argument("--custom-rule", default="")
    parser.add_argument("--match-condition-index", type=int, default=None)
    parser.add_argument("--match-value", default="")
    parser.add_argument("--rule-set-type", default="")
    parser.add_argument("--rule-set-version", default="")
    parser.add_argument("--rule-group", default="")
    parser.add_argument("--rule-id", default="")
    parser.add_argument("--tenant", default="")
    parser.add_argument("--subscription", default="")
    parser.add_argument("--resource-group", default="")
    parser.add_argument("--content", required=True, help='Note text; "" clears the note')
    args = parser.parse_args()
    configure_logging()

    fields = NoteFields(
        policy_name=args.policy,
        custom_rule_name=args.custom_rule,
        match_condition_index=args.match_condition_index,
        match_value=args.match_value,
        rule_set_type=args.rule_set_type,
        rule_set_version=args.rule_set_version,
        rule_group_name=args.rule_group,
        rule_id=args.rule_id,
        tenant_id=args.tenant,
        subscription_id=args.subscription,
        resource_group_name=args.resource_group,
    )
    result = asyncio.run(_save(args.entity_type, fields, args.content))
    if not result.ok:
        print(f"error_code={result.error_code} message={result.message}", file=sys.stderr)
        sys.exit(2 if result.client_error else 1)
    assert result.key is not None
    print(f"partition_key={result.key.partition_key}")
    print(f"row_key={result.key.row_key}")


if __name__ == "__main__":
    main()
