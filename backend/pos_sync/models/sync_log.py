"""Sync run history and per-client pause state."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from pos_sync.db.base import Base, UTCDateTime


class PosSyncLog(Base):
    """A single sync attempt for one client."""

    __tablename__ = "pos_sync_logs"
    __table_args__ = {'extend_existing': True}

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    pos_type: Mapped[str] = mapped_column(String(50), nullable=False)
    operation: Mapped[str] = mapped_column(String(50), nullable=False, default="sync_sales")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="running", index=True)  # running, success, error

    records_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_success: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_retry_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=func.now(), nullable=False
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)


class PosSyncStatus(Base):
    """Rolling health of a client's sync: failure streak and auto-pause."""

    __tablename__ = "pos_sync_status"
    __table_args__ = {'extend_existing': True}

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    pos_type: Mapped[str] = mapped_column(String(50), nullable=False)
    consecutive_failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_syncs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_failures: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_paused: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    pause_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    paused_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    paused_until: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    last_success_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    last_failure_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
