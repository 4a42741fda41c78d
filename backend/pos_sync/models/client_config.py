"""Per-client POS provider configuration."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import JSON, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from pos_sync.db.base import Base, TimestampMixin


class PosClientConfig(Base, TimestampMixin):
    """Which POS a client uses and the credentials to reach it."""

    __tablename__ = "pos_client_configs"
    __table_args__ = {'extend_existing': True}

    id: Mapped[int] = mapped_column(primary_key=True)
    client_id: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    pos_type: Mapped[str] = mapped_column(String(50), nullable=False)  # fudo, bistrosoft
    pos_config: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)  # api_key, base_url, store_id...
    location_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
