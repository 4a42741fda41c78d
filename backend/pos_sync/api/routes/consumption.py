"""Consumption read routes."""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, status

from pos_sync.db.session import DbSession
from pos_sync.schemas.consumption import ConsumptionRecordResponse
from pos_sync.services.consumption_service import ConsumptionAggregator, SqlConsumptionStore
from pos_sync.services.pos.base import DateRange

router = APIRouter()


@router.get("/{client_id}", response_model=List[ConsumptionRecordResponse])
def get_client_consumption(
    client_id: str,
    db: DbSession,
    date_from: Optional[date] = Query(None),
    date_to: Optional[date] = Query(None),
    location_id: Optional[str] = Query(None),
):
    """Daily consumption for a client, newest first."""
    date_range = None
    if date_from or date_to:
        if not (date_from and date_to):
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="date_from and date_to must be given together",
            )
        if date_from > date_to:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="date_from must not be after date_to",
            )
        date_range = DateRange.parse(date_from, date_to)

    aggregator = ConsumptionAggregator(SqlConsumptionStore(db))
    return aggregator.get_client_consumption(client_id, date_range, location_id)
