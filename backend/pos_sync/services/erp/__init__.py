"""ERP propagation (Odoo)."""

from pos_sync.services.erp.odoo_client import OdooClient
from pos_sync.services.erp.push_sync import ErpPushSyncService, PushSyncConfig

__all__ = ["ErpPushSyncService", "OdooClient", "PushSyncConfig"]
