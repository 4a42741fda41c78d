"""POS provider catalog, client configuration and sync routes."""

from __future__ import annotations

from typing import Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query, status

from pos_sync.api.deps import AppSettings, Registry
from pos_sync.core.exceptions import InvalidDateRangeError, UnknownProviderError
from pos_sync.db.session import DbSession, SessionFactory
from pos_sync.schemas.consumption import (
    ConnectionTestResponse,
    PosClientConfigResponse,
    PosClientConfigUpdate,
)
from pos_sync.schemas.sync import (
    BulkSyncRequestBody,
    ResumeResponse,
    SyncLogResponse,
    SyncRequestBody,
    SyncResult,
)
from pos_sync.services.pos.base import DateRange
from pos_sync.services.pos_sync_service import PosSyncService, mask_pos_config, sync_multiple_clients

router = APIRouter()


def _config_response(record) -> PosClientConfigResponse:
    return PosClientConfigResponse(
        client_id=record.client_id,
        pos_type=record.pos_type,
        pos_config=mask_pos_config(record.pos_config),
        location_id=record.location_id,
        is_active=record.is_active,
    )


@router.get("/providers")
def list_providers(registry: Registry):
    """List registered POS providers and their capabilities."""
    return [descriptor.to_dict() for descriptor in registry.list_providers()]


@router.get("/providers/{provider_id}")
def get_provider(provider_id: str, registry: Registry):
    try:
        return registry.descriptor(provider_id).to_dict()
    except UnknownProviderError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.put("/clients/{client_id}/config", response_model=PosClientConfigResponse)
def save_client_config(
    client_id: str,
    body: PosClientConfigUpdate,
    db: DbSession,
    registry: Registry,
    settings: AppSettings,
):
    service = PosSyncService(db, registry, config=settings)
    try:
        record = service.save_client_config(
            client_id, body.pos_type, body.pos_config, body.location_id, body.is_active
        )
    except UnknownProviderError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return _config_response(record)


@router.get("/clients/{client_id}/config", response_model=PosClientConfigResponse)
def get_client_config(client_id: str, db: DbSession, registry: Registry, settings: AppSettings):
    record = PosSyncService(db, registry, config=settings).get_client_config(client_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client POS configuration not found")
    return _config_response(record)


@router.post("/clients/{client_id}/test-connection", response_model=ConnectionTestResponse)
async def test_connection(client_id: str, db: DbSession, registry: Registry, settings: AppSettings):
    service = PosSyncService(db, registry, config=settings)
    record = service.get_client_config(client_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client POS configuration not found")
    try:
        connected = await service.test_connection(client_id)
    except UnknownProviderError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    return ConnectionTestResponse(client_id=client_id, pos_type=record.pos_type, connected=connected)


@router.post("/clients/{client_id}/sync", response_model=SyncResult)
async def trigger_sync(
    client_id: str,
    db: DbSession,
    registry: Registry,
    settings: AppSettings,
    body: Optional[SyncRequestBody] = None,
):
    """
    Run a sync for one client now.

    Without a date range the window starts at the provider's last sync, or
    24 hours back when the provider does not track one.
    """
    body = body or SyncRequestBody()
    service = PosSyncService(db, registry, config=settings)
    if service.get_client_config(client_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client POS configuration not found")

    date_range = None
    if body.date_from and body.date_to:
        try:
            date_range = DateRange.parse(body.date_from, body.date_to)
            date_range.validate(settings.pos_max_range_days)
        except InvalidDateRangeError as e:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))

    return await service.run_client_sync(
        client_id, force=body.force, date_range=date_range, batch_size=body.batch_size
    )


@router.get("/clients/{client_id}/sync-logs", response_model=List[SyncLogResponse])
def list_sync_logs(
    client_id: str,
    db: DbSession,
    registry: Registry,
    settings: AppSettings,
    limit: int = Query(50, ge=1, le=500),
    log_status: Optional[str] = Query(None, alias="status"),
):
    service = PosSyncService(db, registry, config=settings)
    return service.sync_log.get_sync_logs(client_id, limit=limit, status=log_status)


@router.post("/clients/{client_id}/resume", response_model=ResumeResponse)
def resume_sync(client_id: str, db: DbSession, registry: Registry, settings: AppSettings):
    service = PosSyncService(db, registry, config=settings)
    return ResumeResponse(client_id=client_id, resumed=service.sync_log.resume_sync(client_id))


@router.post("/sync", response_model=Dict[str, SyncResult])
async def trigger_bulk_sync(
    body: BulkSyncRequestBody,
    session_factory: SessionFactory,
    registry: Registry,
    settings: AppSettings,
):
    """Sync several clients concurrently. A failure for one client never fails the call."""
    client_ids = list(dict.fromkeys(body.client_ids))
    return await sync_multiple_clients(
        session_factory, registry, client_ids, force=body.force, config=settings
    )
