from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from wafscope.domain.models import WafNote


async def get_note(session: AsyncSession, partition_key: str, row_key: str) -> WafNote | None:
    result = await session.execute(
        select(WafNote).where(WafNote.partition_key == partition_key, WafNote.row_key == row_key)
    )
    return result.scalar_one_or_none()


async def list_partition(session: AsyncSession, partition_key: str) -> list[WafNote]:
    # Stable ordering keeps partition reads deterministic.
    result = await session.execute(
        select(WafNote).where(WafNote.partition_key == partition_key).order_by(WafNote.row_key)
    )
    return list(result.scalars().all())


def _insert_for(session: AsyncSession):
    # Postgres in production, sqlite for dev and tests; both speak ON CONFLICT.
    dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
    return sqlite_insert if dialect == "sqlite" else pg_insert


async def upsert_note(
    session: AsyncSession,
    *,
    partition_key: str,
    row_key: str,
    values: dict[str, Any],
) -> WafNote:
    # Full replace: every column not supplied is reset to NULL.
    row = {column: values.get(column) for column in _REPLACEABLE_COLUMNS}
    if row["notes_content"] is None:
        row["notes_content"] = ""
    row["updated_at"] = datetime.now(timezone.utc)

    # Race-safe upsert: concurrent first saves of one key resolve to last-write-wins.
    insert = _insert_for(session)
    stmt = insert(WafNote).values(partition_key=partition_key, row_key=row_key, **row)
    stmt = stmt.on_conflict_do_update(
        index_elements=[WafNote.partition_key, WafNote.row_key],
        set_=row,
    )
    await session.execute(stmt)

    result = await session.execute(
        select(WafNote)
        .where(WafNote.partition_key == partition_key, WafNote.row_key == row_key)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


_REPLACEABLE_COLUMNS = (
    "notes_content",
    "entity_type",
    "tenant_id",
    "subscription_id",
    "resource_group_name",
    "waf_policy_name",
    "custom_rule_name",
    "match_condition_index",
    "match_value",
    "managed_rule_set_type",
    "managed_rule_set_version",
    "rule_group_name",
    "rule_id",
)
