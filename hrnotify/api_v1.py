"""API v1 router: all JSON endpoints under /api/v1 prefix."""

from fastapi import APIRouter, Depends

from .dependencies import require_api_token
from .guard.routes import router as events_router
from .inapp.routes import router as notifications_router
from .queue.routes import router as queue_router

api_v1_router = APIRouter(prefix="/api/v1", tags=["api-v1"], dependencies=[Depends(require_api_token)])

api_v1_router.include_router(events_router)
api_v1_router.include_router(queue_router)
api_v1_router.include_router(notifications_router)
