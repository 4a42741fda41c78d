"""Consumption and client configuration schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ConsumptionRecordResponse(BaseModel):
    """Stored daily consumption rollup."""

    id: int
    client_id: str
    location_id: Optional[str] = None
    consumption_date: date
    total_amount: Decimal
    total_items: int
    average_order_value: Decimal
    top_categories: List[str]
    payment_methods: Dict[str, float]
    sync_metadata: Dict[str, Any]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PosClientConfigUpdate(BaseModel):
    pos_type: str = Field(..., min_length=1, max_length=50)
    pos_config: Dict[str, Any] = Field(default_factory=dict)
    location_id: Optional[str] = None
    is_active: bool = True


class PosClientConfigResponse(BaseModel):
    """Client configuration as returned by the API. Secrets are masked."""

    client_id: str
    pos_type: str
    pos_config: Dict[str, Any]
    location_id: Optional[str] = None
    is_active: bool

    model_config = {"from_attributes": True}


class ConnectionTestResponse(BaseModel):
    client_id: str
    pos_type: str
    connected: bool
