"""Odoo ERP propagation routes."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, status

from pos_sync.api.deps import AppSettings, Odoo
from pos_sync.core.exceptions import InvalidDateRangeError, SyncError
from pos_sync.db.session import DbSession
from pos_sync.schemas.sync import CleanupRequestBody, CleanupResponse, PushRequestBody, PushResult
from pos_sync.services.consumption_service import ConsumptionAggregator, SqlConsumptionStore
from pos_sync.services.erp.push_sync import ErpPushSyncService, PushSyncConfig
from pos_sync.services.pos.base import DateRange

logger = logging.getLogger(__name__)

router = APIRouter()


def _service(client: Odoo, settings: AppSettings, db: Optional[DbSession] = None) -> ErpPushSyncService:
    aggregator = ConsumptionAggregator(SqlConsumptionStore(db)) if db is not None else None
    return ErpPushSyncService(client, PushSyncConfig.from_settings(settings), aggregator)


@router.post("/push/{client_id}", response_model=PushResult)
async def push_consumption(
    client_id: str,
    db: DbSession,
    client: Odoo,
    settings: AppSettings,
    body: Optional[PushRequestBody] = None,
):
    """Push a client's stored consumption to Odoo."""
    body = body or PushRequestBody()
    date_range = None
    if body.date_from or body.date_to:
        try:
            if not (body.date_from and body.date_to):
                raise InvalidDateRangeError("date_from and date_to must be given together")
            date_range = DateRange.parse(body.date_from, body.date_to)
            date_range.validate(max_days=366)
        except InvalidDateRangeError as e:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    service = _service(client, settings, db)
    try:
        return await service.push_consumption(client_id, date_range, body.location_id)
    finally:
        await service.disconnect()


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_old_records(client: Odoo, settings: AppSettings, body: Optional[CleanupRequestBody] = None):
    """Delete processed Odoo consumption records older than ``days_old``."""
    days_old = body.days_old if body else settings.odoo_cleanup_days
    service = _service(client, settings)
    try:
        result = await service.cleanup_old_records(days_old)
    except SyncError as e:
        logger.error(f"Odoo cleanup failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    finally:
        await service.disconnect()
    return CleanupResponse(**result)


@router.get("/status/{client_id}")
async def get_erp_status(client_id: str, client: Odoo, settings: AppSettings):
    """Dashboard summary of the client's latest Odoo records."""
    service = _service(client, settings)
    try:
        summary = await service.get_sync_status(client_id)
    except SyncError as e:
        logger.error(f"Odoo status for {client_id} failed: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))
    finally:
        await service.disconnect()
    return {"client_id": client_id, **summary}
