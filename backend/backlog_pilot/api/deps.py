"""Shared FastAPI dependencies: identity, process-scoped state, budgets."""

from functools import lru_cache

from fastapi import Header, HTTPException, Request

from backlog_pilot.clients.base import ICompletionService
from backlog_pilot.clients.hltb import HltbConfigCache
from backlog_pilot.clients.llm import ChatCompletionClient
from backlog_pilot.config import settings
from backlog_pilot.services.game_store import IGameStore, SqlGameStore
from backlog_pilot.services.rate_limiter import RateLimitBudget, RateLimiter
from backlog_pilot.services.suggestion import SessionRegistry


# ── Process-scoped state ─────────────────────────────────────────

@lru_cache
def get_rate_limiter() -> RateLimiter:
    return RateLimiter()


@lru_cache
def get_hltb_cache() -> HltbConfigCache:
    return HltbConfigCache(ttl_seconds=settings.hltb_config_ttl_seconds)


@lru_cache
def get_session_registry() -> SessionRegistry:
    return SessionRegistry()


# ── Per-request collaborators ────────────────────────────────────

def get_store() -> IGameStore:
    from backlog_pilot.database import async_session
    return SqlGameStore(async_session)


def get_completion() -> ICompletionService:
    if not settings.has_llm:
        raise HTTPException(503, "AI suggestions not configured")
    return ChatCompletionClient(
        base_url=settings.llm_base_url,
        api_key=settings.llm_api_key,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        max_tokens=settings.llm_max_tokens,
        timeout=settings.llm_timeout,
    )


def get_user_id(x_user_id: int = Header(..., description="Numeric user key, validated upstream")) -> int:
    """Identity is established by the auth proxy in front of this service."""
    if x_user_id <= 0:
        raise HTTPException(401, "Unauthorized")
    return x_user_id


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


# ── Rate limit budgets ───────────────────────────────────────────

STATUS_BUDGET = RateLimitBudget(settings.rate_limit_status, settings.rate_limit_status_window_ms)
SYNC_BUDGET = RateLimitBudget(settings.rate_limit_sync, settings.rate_limit_sync_window_ms)
REFRESH_BUDGET = RateLimitBudget(settings.rate_limit_refresh, settings.rate_limit_refresh_window_ms)
SUGGESTION_BUDGET = RateLimitBudget(settings.rate_limit_suggestion, settings.rate_limit_suggestion_window_ms)


def enforce_rate_limit(limiter: RateLimiter, key: str, budget: RateLimitBudget) -> None:
    """Raise 429 with Retry-After when ``key`` is over its budget."""
    result = limiter.check_budget(key, budget)
    if not result.allowed:
        raise HTTPException(
            429,
            "Too many requests. Please wait before trying again.",
            headers={
                "Retry-After": str(limiter.retry_after_seconds(result)),
                "X-RateLimit-Limit": str(result.limit),
                "X-RateLimit-Remaining": "0",
            },
        )
