"""Daily consumption rollups produced from normalized POS sales."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import JSON, Date, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pos_sync.db.base import Base, TimestampMixin


def _location_key(context) -> str:
    return context.get_current_parameters().get("location_id") or ""


class ConsumptionRecord(Base, TimestampMixin):
    """One aggregated row per (client, location, day)."""

    __tablename__ = "consumption_records"
    __table_args__ = (
        Index("ix_consumption_client_date", "client_id", "consumption_date"),
        UniqueConstraint("client_id", "consumption_date", "location_key", name="uq_consumption_client_day"),
        {"extend_existing": True},
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    location_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    # location_id with NULL folded to "", so the unique key also covers the main location
    location_key: Mapped[str] = mapped_column(String(100), nullable=False, default=_location_key)
    consumption_date: Mapped[date] = mapped_column(Date, nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    total_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    average_order_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    top_categories: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    payment_methods: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    # provider, sync_timestamp, sales_count, peak_hour, customer_count
    sync_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return (
            f"<ConsumptionRecord client={self.client_id} "
            f"date={self.consumption_date} location={self.location_id}>"
        )
