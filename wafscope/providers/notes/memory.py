from __future__ import annotations

from wafscope.core.errors import NotesStoreError
from wafscope.domain.notes import NoteLookup, NoteRecord


class InMemoryNotesStore:
    def __init__(
        self,
        records: list[NoteRecord] | None = None,
        fail_partitions: set[str] | None = None,
        fail_writes: bool = False,
    ) -> None:
        self._records: dict[tuple[str, str], NoteRecord] = {}
        for record in records or []:
            self._records[(record.partition_key, record.row_key)] = record
        # Partitions whose reads raise, for exercising failure isolation.
        self.fail_partitions = set(fail_partitions or ())
        self.fail_writes = fail_writes
        # Call counts let tests assert the batching contract.
        self.get_calls = 0
        self.query_calls = 0
        self.upsert_calls = 0

    async def get(self, partition_key: str, row_key: str) -> NoteLookup:
        self.get_calls += 1
        if partition_key in self.fail_partitions:
            raise NotesStoreError(f"injected read failure partition_key={partition_key!r}")
        record = self._records.get((partition_key, row_key))
        if record is None:
            return NoteLookup.missing()
        return NoteLookup.of(record)

    async def query_partition(self, partition_key: str) -> list[NoteRecord]:
        self.query_calls += 1
        if partition_key in self.fail_partitions:
            raise NotesStoreError(f"injected read failure partition_key={partition_key!r}")
        return sorted(
            (record for (pk, _), record in self._records.items() if pk == partition_key),
            key=lambda record: record.row_key,
        )

    async def upsert(self, record: NoteRecord) -> None:
        self.upsert_calls += 1
        if self.fail_writes:
            raise NotesStoreError("injected write failure")
        self._records[(record.partition_key, record.row_key)] = record

    def records(self) -> list[NoteRecord]:
        return list(self._records.values())
