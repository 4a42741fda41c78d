"""Client-level POS sync.

Ties a client's stored POS configuration to the orchestrator, stores the
fetched sales as daily consumption and keeps the sync log and pause state up
to date.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from pos_sync.core.config import Settings, settings as default_settings
from pos_sync.core.exceptions import UnknownProviderError
from pos_sync.models.client_config import PosClientConfig
from pos_sync.schemas.sync import SyncResult, SyncState
from pos_sync.services.consumption_service import (
    ConsumptionAggregator,
    ConsumptionBatchHandler,
    SqlConsumptionStore,
)
from pos_sync.services.pos.base import DateRange
from pos_sync.services.pos.registry import AdapterRegistry
from pos_sync.services.sync_log_service import SyncLogService
from pos_sync.services.sync_orchestrator import SyncOrchestrator, SyncRequest

logger = logging.getLogger(__name__)

SECRET_KEYS = ("api_key", "password", "secret", "token")


def mask_pos_config(pos_config: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a provider config with credentials hidden."""
    masked = {}
    for key, value in (pos_config or {}).items():
        if any(secret in key.lower() for secret in SECRET_KEYS) and value:
            text = str(value)
            masked[key] = f"***{text[-4:]}" if len(text) > 8 else "***"
        else:
            masked[key] = value
    return masked


class PosSyncService:
    """Runs POS syncs for configured clients."""

    def __init__(
        self,
        db: Session,
        registry: AdapterRegistry,
        config: Optional[Settings] = None,
        adapter_options: Optional[Dict[str, Any]] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.db = db
        self.registry = registry
        self.config = config or default_settings
        self.adapter_options = adapter_options or {}
        self.clock = clock
        self.sync_log = SyncLogService(db, self.config, clock=clock)

    # ------------------------------------------------------------------
    # Client configuration
    # ------------------------------------------------------------------

    def get_client_config(self, client_id: str) -> Optional[PosClientConfig]:
        return self.db.scalars(
            select(PosClientConfig).where(PosClientConfig.client_id == client_id)
        ).first()

    def save_client_config(
        self,
        client_id: str,
        pos_type: str,
        pos_config: Dict[str, Any],
        location_id: Optional[str] = None,
        is_active: bool = True,
    ) -> PosClientConfig:
        if not self.registry.is_valid_provider(pos_type):
            raise UnknownProviderError(pos_type, [d.provider_id for d in self.registry.list_providers()])
        record = self.get_client_config(client_id)
        if record is None:
            record = PosClientConfig(client_id=client_id)
            self.db.add(record)
        record.pos_type = pos_type
        record.pos_config = dict(pos_config)
        record.location_id = location_id
        record.is_active = is_active
        self.db.commit()
        self.db.refresh(record)
        logger.info(f"Saved {pos_type} configuration for client {client_id}")
        return record

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def _rejected(self, client_id: str, provider: str, message: str) -> SyncResult:
        logger.warning(f"Sync for {client_id} not started: {message}")
        return SyncResult(
            success=False,
            state=SyncState.FAILED,
            client_id=client_id,
            provider=provider,
            errors=[message],
            timestamp=self.clock(),
        )

    async def test_connection(self, client_id: str) -> bool:
        config = self.get_client_config(client_id)
        if config is None:
            raise LookupError(f"No POS configuration for client {client_id}")
        try:
            adapter = self.registry.create_adapter(config.pos_type, config.pos_config, **self.adapter_options)
        except ValueError as e:
            logger.error(f"Client {client_id}: invalid {config.pos_type} configuration: {e}")
            return False
        return await adapter.validate_connection()

    async def run_client_sync(
        self,
        client_id: str,
        force: bool = False,
        date_range: Optional[DateRange] = None,
        batch_size: Optional[int] = None,
    ) -> SyncResult:
        config = self.get_client_config(client_id)
        if config is None or not config.is_active:
            return self._rejected(client_id, config.pos_type if config else "unknown", "No active POS configuration")

        if not force:
            permission = self.sync_log.can_sync(client_id)
            if not permission.allowed:
                until = permission.next_allowed_at.isoformat() if permission.next_allowed_at else "later"
                return self._rejected(client_id, config.pos_type, f"Sync paused: {permission.reason} (until {until})")

        log_id = self.sync_log.start_sync(
            client_id,
            config.pos_type,
            "sync_sales",
            {"forced": force, "batch_size": batch_size},
        )

        aggregator = ConsumptionAggregator(SqlConsumptionStore(self.db), clock=self.clock)
        orchestrator = SyncOrchestrator(
            self.registry,
            batch_handler=ConsumptionBatchHandler(aggregator),
            batch_delay_ms=self.config.sync_batch_delay_ms,
            default_window_hours=self.config.sync_default_window_hours,
            default_batch_size=self.config.sync_default_batch_size,
            clock=self.clock,
            adapter_options=self.adapter_options,
        )
        try:
            result = await orchestrator.run(
                SyncRequest(
                    client_id=client_id,
                    pos_type=config.pos_type,
                    pos_config=dict(config.pos_config or {}),
                    date_range=date_range,
                    batch_size=batch_size,
                    location_id=config.location_id,
                )
            )
        except Exception as e:
            # Close the log so the failure counts toward auto-pause
            self.db.rollback()
            self.sync_log.log_error(log_id, str(e) or type(e).__name__, error_code="exception")
            raise

        summary = {
            "records_created": result.records_created,
            "records_updated": result.records_updated,
            "duration_ms": result.duration,
        }
        if result.success:
            self.sync_log.log_success(log_id, result.records_processed, result.records_processed, summary)
        else:
            self.sync_log.log_error(
                log_id,
                "; ".join(result.errors[:5]),
                error_code=result.state.value,
                records_processed=result.records_processed,
                records_failed=len(result.errors),
                metadata=summary,
            )
        return result


async def sync_multiple_clients(
    session_factory: Callable[[], Session],
    registry: AdapterRegistry,
    client_ids: List[str],
    force: bool = False,
    config: Optional[Settings] = None,
    adapter_options: Optional[Dict[str, Any]] = None,
) -> Dict[str, SyncResult]:
    """Sync several clients concurrently, each with its own session."""

    async def sync_one(client_id: str) -> SyncResult:
        db = session_factory()
        try:
            service = PosSyncService(db, registry, config=config, adapter_options=adapter_options)
            return await service.run_client_sync(client_id, force=force)
        finally:
            db.close()

    outcomes = await asyncio.gather(*(sync_one(c) for c in client_ids), return_exceptions=True)
    results: Dict[str, SyncResult] = {}
    for client_id, outcome in zip(client_ids, outcomes):
        if isinstance(outcome, BaseException):
            logger.error(f"Sync for {client_id} raised {type(outcome).__name__}: {outcome}")
            outcome = SyncResult(
                success=False,
                state=SyncState.FAILED,
                client_id=client_id,
                provider="unknown",
                errors=[str(outcome)],
                timestamp=datetime.now(timezone.utc),
            )
        results[client_id] = outcome
    logger.info(
        f"Multi-client sync finished: {sum(r.success for r in results.values())}/{len(results)} succeeded"
    )
    return results
