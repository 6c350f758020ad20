from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class WafNote(Base):
    __tablename__ = "waf_notes"
    # Load server-generated timestamps on flush; async sessions cannot lazy-load them.
    __mapper_args__ = {"eager_defaults": True}

    # Composite key mirrors the partition/row addressing of the table store.
    partition_key: Mapped[str] = mapped_column(String(1024), primary_key=True)
    row_key: Mapped[str] = mapped_column(String(1024), primary_key=True)
    notes_content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    # Denormalised context for inspection only; never part of a lookup.
    tenant_id: Mapped[str | None] = mapped_column(String, nullable=True)
    subscription_id: Mapped[str | None] = mapped_column(String, nullable=True)
    resource_group_name: Mapped[str | None] = mapped_column(String, nullable=True)
    waf_policy_name: Mapped[str | None] = mapped_column(String, nullable=True)
    custom_rule_name: Mapped[str | None] = mapped_column(String, nullable=True)
    match_condition_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    match_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    managed_rule_set_type: Mapped[str | None] = mapped_column(String, nullable=True)
    managed_rule_set_version: Mapped[str | None] = mapped_column(String, nullable=True)
    rule_group_name: Mapped[str | None] = mapped_column(String, nullable=True)
    rule_id: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
