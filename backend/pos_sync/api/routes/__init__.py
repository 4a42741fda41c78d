"""API routes."""

from fastapi import APIRouter

from pos_sync.api.routes import consumption, erp, pos_sync

api_router = APIRouter()

api_router.include_router(pos_sync.router, prefix="/pos", tags=["pos"])
api_router.include_router(consumption.router, prefix="/consumption", tags=["consumption"])
api_router.include_router(erp.router, prefix="/erp", tags=["erp"])
