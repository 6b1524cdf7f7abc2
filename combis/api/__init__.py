"""API routes for Combis."""

from fastapi import APIRouter

from .notifications import router as notifications_router
from .votes import router as votes_router
from .websocket import router as websocket_router

# Main API router
api_router = APIRouter()

api_router.include_router(votes_router)
api_router.include_router(notifications_router)

# Mounted at the application root (/ws), outside the API prefix
__all__ = ["api_router", "websocket_router"]
