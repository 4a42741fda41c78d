"""Shared FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, status

from pos_sync.core.config import Settings, get_settings
from pos_sync.services.erp.odoo_client import OdooClient
from pos_sync.services.pos.registry import AdapterRegistry, get_registry

Registry = Annotated[AdapterRegistry, Depends(get_registry)]
AppSettings = Annotated[Settings, Depends(get_settings)]


def get_odoo_client(settings: AppSettings) -> OdooClient:
    """Odoo client built from settings; 503 when Odoo is not configured."""
    if not settings.odoo_configured:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Odoo integration is not configured",
        )
    return OdooClient(
        settings.odoo_url,
        settings.odoo_database,
        settings.odoo_username,
        settings.odoo_password,
        timeout=settings.odoo_timeout_seconds,
    )


Odoo = Annotated[OdooClient, Depends(get_odoo_client)]
