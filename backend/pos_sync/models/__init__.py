"""SQLAlchemy models."""

from pos_sync.models.client_config import PosClientConfig
from pos_sync.models.consumption import ConsumptionRecord
from pos_sync.models.sync_log import PosSyncLog, PosSyncStatus

__all__ = [
    "ConsumptionRecord",
    "PosClientConfig",
    "PosSyncLog",
    "PosSyncStatus",
]
