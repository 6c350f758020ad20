from __future__ import annotations

import pytest

from wafscope.core.errors import NoteKeyError
from wafscope.domain.notes import EntityType, NoteFields, NoteKey
from wafscope.providers.notes.memory import InMemoryNotesStore
from wafscope.services.notes_writer import (
    INVALID_ENTITY_TYPE,
    MISSING_KEY_FIELDS,
    NOTES_STORE_ERROR,
    NotesWriteService,
)


MATCH_VALUE_FIELDS = NoteFields(
    policy_name="edge-waf-01",
    custom_rule_name="blockBadIp",
    match_condition_index=0,
    match_value="203.0.113.5",
    subscription_id="sub-1",
    resource_group_name="rg-edge",
)


@pytest.mark.asyncio
async def test_save_match_value_note() -> None:
    store = InMemoryNotesStore()
    result = await NotesWriteService(store).save_note("MatchValue", MATCH_VALUE_FIELDS, "known scanner")
    assert result.ok
    assert result.key == NoteKey("edge-waf-01_blockBadIp", "MC_0_203.0.113.5")
    [record] = store.records()
    assert record.content == "known scanner"
    assert record.entity_type is EntityType.MATCH_VALUE
    assert record.fields.resource_group_name == "rg-edge"
    assert record.updated_at is not None


@pytest.mark.asyncio
async def test_unknown_entity_type_rejected_before_store() -> None:
    store = InMemoryNotesStore()
    result = await NotesWriteService(store).save_note("FirewallRule", MATCH_VALUE_FIELDS, "x")
    assert not result.ok
    assert result.client_error
    assert result.error_code == INVALID_ENTITY_TYPE
    assert store.upsert_calls == 0
    assert store.get_calls == 0 and store.query_calls == 0


@pytest.mark.asyncio
async def test_missing_key_fields_is_client_error() -> None:
    store = InMemoryNotesStore()
    result = await NotesWriteService(store).save_note(
        EntityType.CUSTOM_RULE, NoteFields(policy_name="edge-waf-01"), "x"
    )
    assert result.error_code == MISSING_KEY_FIELDS
    assert result.client_error
    assert store.upsert_calls == 0


@pytest.mark.asyncio
async def test_store_failure_is_not_a_client_error() -> None:
    store = InMemoryNotesStore(fail_writes=True)
    result = await NotesWriteService(store).save_note(EntityType.POLICY, NoteFields(policy_name="p"), "x")
    assert not result.ok
    assert result.error_code == NOTES_STORE_ERROR
    assert not result.client_error
    assert result.key == NoteKey("p", "p")


@pytest.mark.asyncio
async def test_save_replaces_and_empty_content_clears() -> None:
    store = InMemoryNotesStore()
    writer = NotesWriteService(store)
    fields = NoteFields(policy_name="edge-waf-01")
    await writer.save_note(EntityType.POLICY, fields, "first")
    await writer.save_note(EntityType.POLICY, fields, "second")
    lookup = await writer.get_note(EntityType.POLICY, fields)
    assert lookup.found and lookup.content == "second"

    await writer.save_note(EntityType.POLICY, fields, None)
    lookup = await writer.get_note(EntityType.POLICY, fields)
    assert lookup.found
    assert lookup.content == ""
    assert len(store.records()) == 1


@pytest.mark.asyncio
async def test_get_note_absent_and_invalid() -> None:
    writer = NotesWriteService(InMemoryNotesStore())
    lookup = await writer.get_note(EntityType.POLICY, NoteFields(policy_name="nope"))
    assert not lookup.found
    assert lookup.content is None
    with pytest.raises(NoteKeyError):
        await writer.get_note(EntityType.MATCH_VALUE, NoteFields(policy_name="p"))


@pytest.mark.asyncio
async def test_strict_writer_keys() -> None:
    writer = NotesWriteService(InMemoryNotesStore(), "strict")
    result = await writer.save_note(
        EntityType.CUSTOM_RULE, NoteFields(policy_name="edge_waf", custom_rule_name="r"), "x"
    )
    assert result.key == NoteKey("edge%5Fwaf_r", "r")
