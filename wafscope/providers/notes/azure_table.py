from __future__ import annotations

import logging
import time
from typing import Any

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError

from wafscope.core.errors import NotesStoreError, ProviderConfigError
from wafscope.domain.notes import NoteLookup, NoteRecord
from wafscope.providers.notes.base import record_columns, record_from_columns
from wafscope.services.resilience import retry_async
from wafscope.services.telemetry import record_external_call


logger = logging.getLogger(__name__)


# Entity property names used by the legacy notes table; keep them for data compatibility.
_ENTITY_COLUMNS = {
    "notes_content": "NotesContent",
    "entity_type": "EntityType",
    "tenant_id": "TenantId",
    "subscription_id": "SubscriptionId",
    "resource_group_name": "ResourceGroupName",
    "waf_policy_name": "WafPolicyName",
    "custom_rule_name": "CustomRuleName",
    "match_condition_index": "MatchConditionIndex",
    "match_value": "MatchValue",
    "managed_rule_set_type": "ManagedRuleSetType",
    "managed_rule_set_version": "ManagedRuleSetVersion",
    "rule_group_name": "RuleGroupName",
    "rule_id": "RuleId",
}


def _to_entity(record: NoteRecord) -> dict[str, Any]:
    entity: dict[str, Any] = {"PartitionKey": record.partition_key, "RowKey": record.row_key}
    for column, value in record_columns(record).items():
        if value is not None:
            entity[_ENTITY_COLUMNS[column]] = value
    return entity


def _from_entity(entity: Any) -> NoteRecord:
    columns = {column: entity.get(prop) for column, prop in _ENTITY_COLUMNS.items()}
    metadata = getattr(entity, "metadata", None) or {}
    return record_from_columns(
        str(entity["PartitionKey"]),
        str(entity["RowKey"]),
        columns,
        updated_at=metadata.get("timestamp"),
    )


def _odata_quote(value: str) -> str:
    return value.replace("'", "''")


class AzureTableNotesStore:
    """Notes store on Azure Table Storage (``azure-data-tables`` async client)."""

    def __init__(
        self,
        connection_string: str | None,
        table_name: str,
        client: Any | None = None,
    ) -> None:
        if client is None and not connection_string:
            raise ProviderConfigError("AZURE_STORAGE_CONNECTION_STRING is required for the azure_table notes store")
        self._connection_string = connection_string
        self._table_name = table_name
        self._client = client
        self._table_ready = client is not None

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        from azure.data.tables.aio import TableClient

        self._client = TableClient.from_connection_string(
            self._connection_string, table_name=self._table_name
        )
        return self._client

    async def _ensure_table(self) -> Any:
        client = self._get_client()
        if self._table_ready:
            return client
        try:
            await client.create_table()
            logger.info("notes_table_created table=%s", self._table_name)
        except ResourceExistsError:
            pass
        except AzureError as exc:
            raise NotesStoreError(f"failed to create notes table {self._table_name!r}") from exc
        self._table_ready = True
        return client

    async def get(self, partition_key: str, row_key: str) -> NoteLookup:
        client = await self._ensure_table()
        start = time.monotonic()
        try:
            entity = await retry_async(
                lambda: client.get_entity(partition_key=partition_key, row_key=row_key),
                name="notes.table.get",
            )
        except ResourceNotFoundError:
            self._record("get", start, success=True)
            return NoteLookup.missing()
        except Exception as exc:
            self._record("get", start, success=False)
            raise NotesStoreError(
                f"failed to read note partition_key={partition_key!r} row_key={row_key!r}"
            ) from exc
        self._record("get", start, success=True)
        return NoteLookup.of(_from_entity(entity))

    async def query_partition(self, partition_key: str) -> list[NoteRecord]:
        client = await self._ensure_table()
        start = time.monotonic()
        query_filter = f"PartitionKey eq '{_odata_quote(partition_key)}'"

        async def _collect() -> list[Any]:
            return [entity async for entity in client.query_entities(query_filter)]

        try:
            entities = await retry_async(_collect, name="notes.table.query_partition")
        except Exception as exc:
            self._record("query_partition", start, success=False)
            raise NotesStoreError(f"failed to query notes partition_key={partition_key!r}") from exc
        self._record("query_partition", start, success=True)
        return [_from_entity(entity) for entity in entities]

    async def upsert(self, record: NoteRecord) -> None:
        from azure.data.tables import UpdateMode

        client = await self._ensure_table()
        start = time.monotonic()
        entity = _to_entity(record)
        try:
            await retry_async(
                lambda: client.upsert_entity(entity=entity, mode=UpdateMode.REPLACE),
                name="notes.table.upsert",
            )
        except Exception as exc:
            self._record("upsert", start, success=False)
            raise NotesStoreError(
                f"failed to upsert note partition_key={record.partition_key!r} row_key={record.row_key!r}"
            ) from exc
        self._record("upsert", start, success=True)
        logger.info(
            "note_upserted partition_key=%s row_key=%s", record.partition_key, record.row_key
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    @staticmethod
    def _record(operation: str, start: float, *, success: bool) -> None:
        record_external_call(
            integration=f"notes.table.{operation}",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=success,
        )
