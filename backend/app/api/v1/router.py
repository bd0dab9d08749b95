"""API v1 router combining all endpoint routers."""

from fastapi import APIRouter

from app.api.v1 import deltas, snapshots

api_router = APIRouter()

api_router.include_router(snapshots.router, prefix="/snapshots", tags=["snapshots"])
api_router.include_router(deltas.router, prefix="/deltas", tags=["deltas"])
