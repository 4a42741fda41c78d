# Services module

from pos_sync.services.consumption_service import (
    ConsumptionAggregator,
    ConsumptionBatchHandler,
    SqlConsumptionStore,
)
from pos_sync.services.sync_orchestrator import SyncOrchestrator, SyncRequest
from pos_sync.services.sync_log_service import SyncLogService
from pos_sync.services.pos_sync_service import PosSyncService, sync_multiple_clients

__all__ = [
    "ConsumptionAggregator",
    "ConsumptionBatchHandler",
    "SqlConsumptionStore",
    "SyncOrchestrator",
    "SyncRequest",
    "SyncLogService",
    "PosSyncService",
    "sync_multiple_clients",
]
