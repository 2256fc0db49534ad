"""Shared FastAPI dependencies."""

import hmac

from fastapi import HTTPException, Request

from .config import settings
from .dispatcher.service import Dispatcher
from .guard.service import CompletionGuard

API_TOKEN_HEADER = "X-API-Token"


def require_api_token(request: Request) -> None:
    """Reject calls without the operator token when one is configured."""
    if not settings.api_token:
        return
    supplied = request.headers.get(API_TOKEN_HEADER, "")
    if not hmac.compare_digest(supplied.encode(), settings.api_token.encode()):
        raise HTTPException(status_code=401, detail="Invalid or missing API token")


def get_guard(request: Request) -> CompletionGuard:
    """Get the completion guard from app state."""
    return request.app.state.guard


def get_dispatcher(request: Request) -> Dispatcher:
    """Get the dispatcher from app state; 503 when no mail transport is configured."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        raise HTTPException(status_code=503, detail="Mail transport not configured")
    return dispatcher
