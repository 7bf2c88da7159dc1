"""Health and system status endpoints."""

from fastapi import APIRouter, Depends, Request
from datetime import datetime, timezone

from backlog_pilot.api.deps import get_rate_limiter, get_session_registry
from backlog_pilot.services.rate_limiter import RateLimiter
from backlog_pilot.services.suggestion import SessionRegistry

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Service health check — reports integration status."""
    integrations = getattr(request.app.state, "integrations", {})
    return {
        "status": "ok",
        "version": "0.1.0",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "integrations": integrations,
    }


@router.get("/stats")
async def system_stats(
    limiter: RateLimiter = Depends(get_rate_limiter),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """In-process counters: live rate-limit windows and suggestion sessions."""
    return {
        "rate_limit_windows": len(limiter),
        "suggestion_sessions": len(registry),
    }
