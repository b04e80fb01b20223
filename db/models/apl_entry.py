"""
db/models/apl_entry.py

Canonical APL entry: one product's eligibility in one state over a date range.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from db.base import Base, JSONVariant, TimestampMixin


class APLEntryRecord(Base, TimestampMixin):
    __tablename__ = "apl_entries"

    id: Mapped[str] = mapped_column(
        String(80),
        primary_key=True,
        comment="apl_{state}_{upc}_{YYYYMMDD}",
    )
    state: Mapped[str] = mapped_column(String(2), nullable=False)
    upc: Mapped[str] = mapped_column(String(14), nullable=False)
    eligible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    benefit_category: Mapped[str] = mapped_column(String(255), nullable=False)
    benefit_subcategory: Mapped[str | None] = mapped_column(String(255), nullable=True)
    participant_types: Mapped[list[str] | None] = mapped_column(
        JSONVariant,
        nullable=True,
        comment="NULL means all participant groups",
    )
    size_restriction: Mapped[dict[str, Any] | None] = mapped_column(JSONVariant, nullable=True)
    brand_restriction: Mapped[dict[str, Any] | None] = mapped_column(JSONVariant, nullable=True)
    additional_restrictions: Mapped[dict[str, Any] | None] = mapped_column(JSONVariant, nullable=True)
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiration_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    data_source: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="fis, conduent, state, manual, usda",
    )
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    product_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    brand: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("state", "upc", "effective_date", name="uq_apl_entries_state_upc_effective_date"),
        Index("ix_apl_entries_state_upc", "state", "upc"),
        Index("ix_apl_entries_benefit_category", "benefit_category"),
    )
