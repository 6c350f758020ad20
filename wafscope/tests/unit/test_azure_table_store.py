from __future__ import annotations

import pytest
from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from wafscope.core.errors import NotesStoreError, ProviderConfigError
from wafscope.domain.notes import EntityType, NoteFields, NoteRecord
from wafscope.providers.notes.azure_table import AzureTableNotesStore
from wafscope.services.note_keys import derive_key


class _Entity(dict):
    metadata: dict = {}


class FakeTableClient:
    def __init__(self) -> None:
        self.entities: dict[tuple[str, str], dict] = {}
        self.filters: list[str] = []
        self.fail = False

    async def get_entity(self, partition_key: str, row_key: str):
        if self.fail:
            raise HttpResponseError(message="forbidden")
        entity = self.entities.get((partition_key, row_key))
        if entity is None:
            raise ResourceNotFoundError(message="not found")
        return _Entity(entity)

    def query_entities(self, query_filter: str):
        self.filters.append(query_filter)
        partition_key = query_filter.split("'", 1)[1].rsplit("'", 1)[0].replace("''", "'")

        async def _iter():
            for (pk, _), entity in sorted(self.entities.items()):
                if pk == partition_key:
                    yield _Entity(entity)

        return _iter()

    async def upsert_entity(self, entity: dict, mode=None):
        self.entities[(entity["PartitionKey"], entity["RowKey"])] = dict(entity)

    async def close(self) -> None:
        return None


def _record(content: str = "known scanner") -> NoteRecord:
    fields = NoteFields(
        policy_name="edge-waf-01",
        custom_rule_name="blockBadIp",
        match_condition_index=0,
        match_value="203.0.113.5",
        subscription_id="sub-1",
    )
    return NoteRecord(
        key=derive_key(EntityType.MATCH_VALUE, fields),
        content=content,
        entity_type=EntityType.MATCH_VALUE,
        fields=fields,
    )


def test_requires_connection_string() -> None:
    with pytest.raises(ProviderConfigError):
        AzureTableNotesStore(connection_string=None, table_name="WafPolicy")


@pytest.mark.asyncio
async def test_upsert_writes_legacy_entity_columns() -> None:
    client = FakeTableClient()
    store = AzureTableNotesStore(connection_string=None, table_name="WafPolicy", client=client)
    await store.upsert(_record())
    entity = client.entities[("edge-waf-01_blockBadIp", "MC_0_203.0.113.5")]
    assert entity["NotesContent"] == "known scanner"
    assert entity["EntityType"] == "MatchValue"
    assert entity["WafPolicyName"] == "edge-waf-01"
    assert entity["MatchConditionIndex"] == 0
    assert entity["SubscriptionId"] == "sub-1"
    assert "RuleId" not in entity


@pytest.mark.asyncio
async def test_get_and_query_round_trip() -> None:
    client = FakeTableClient()
    store = AzureTableNotesStore(connection_string=None, table_name="WafPolicy", client=client)
    await store.upsert(_record())

    lookup = await store.get("edge-waf-01_blockBadIp", "MC_0_203.0.113.5")
    assert lookup.found
    assert lookup.record.fields.match_value == "203.0.113.5"
    assert (await store.get("edge-waf-01_blockBadIp", "MC_0_198.51.100.1")).found is False

    records = await store.query_partition("edge-waf-01_blockBadIp")
    assert [record.row_key for record in records] == ["MC_0_203.0.113.5"]


@pytest.mark.asyncio
async def test_query_filter_escapes_quotes() -> None:
    client = FakeTableClient()
    store = AzureTableNotesStore(connection_string=None, table_name="WafPolicy", client=client)
    await store.query_partition("o'brien_rule")
    assert client.filters == ["PartitionKey eq 'o''brien_rule'"]


@pytest.mark.asyncio
async def test_legacy_rows_without_entity_type_are_inferred() -> None:
    client = FakeTableClient()
    client.entities[("edge-waf-01", "edge-waf-01")] = {
        "PartitionKey": "edge-waf-01",
        "RowKey": "edge-waf-01",
        "NotesContent": "from the old tool",
    }
    store = AzureTableNotesStore(connection_string=None, table_name="WafPolicy", client=client)
    lookup = await store.get("edge-waf-01", "edge-waf-01")
    assert lookup.record.entity_type is EntityType.POLICY
    assert lookup.content == "from the old tool"


@pytest.mark.asyncio
async def test_store_errors_are_translated() -> None:
    client = FakeTableClient()
    client.fail = True
    store = AzureTableNotesStore(connection_string=None, table_name="WafPolicy", client=client)
    with pytest.raises(NotesStoreError):
        await store.get("p", "p")
