"""Suggestion endpoints — one-shot suggest plus the reroll session flow."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from backlog_pilot.api.deps import (
    SUGGESTION_BUDGET, client_ip, enforce_rate_limit, get_completion,
    get_rate_limiter, get_session_registry, get_store, get_user_id,
)
from backlog_pilot.api.games import game_summary
from backlog_pilot.clients.base import ICompletionService
from backlog_pilot.config import settings
from backlog_pilot.errors import (
    BacklogPilotError, CompletionServiceError, CompletionTimeoutError,
    CooldownActiveError, InvalidTransitionError, MalformedReplyError,
    NoEligibleGamesError, RateLimitedError, SuggestionIntegrityError,
)
from backlog_pilot.services.game_store import IGameStore
from backlog_pilot.services.prompt import Energy, Mood, Preferences, TimeCommitment
from backlog_pilot.services.rate_limiter import RateLimiter
from backlog_pilot.services.suggestion import (
    SessionRegistry, Suggestion, SuggestionService, SuggestionSession,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class SuggestRequest(BaseModel):
    mood: Mood
    energy: Energy
    time: TimeCommitment
    exclude_ids: list[int] = Field(default_factory=list)
    prior_reasonings: list[str] = Field(default_factory=list)

    def preferences(self) -> Preferences:
        return Preferences(self.mood, self.energy, self.time)


class RerollRecord(BaseModel):
    app_id: int = Field(..., gt=0)


def to_http_error(error: BacklogPilotError) -> HTTPException:
    """Map a core error onto the status code the client expects."""
    if isinstance(error, NoEligibleGamesError):
        return HTTPException(400, "No eligible games in backlog")
    if isinstance(error, CooldownActiveError):
        return HTTPException(409, str(error), headers={"Retry-After": str(error.remaining)})
    if isinstance(error, InvalidTransitionError):
        return HTTPException(409, str(error))
    if isinstance(error, RateLimitedError):
        retry_after = int(error.retry_after or settings.sync_default_retry_after)
        return HTTPException(429, str(error), headers={"Retry-After": str(retry_after)})
    if isinstance(error, CompletionTimeoutError):
        return HTTPException(504, "AI request timed out")
    if isinstance(error, CompletionServiceError):
        return HTTPException(503, "AI service unavailable")
    if isinstance(error, (MalformedReplyError, SuggestionIntegrityError)):
        return HTTPException(502, "AI returned an unusable suggestion")
    return HTTPException(500, str(error))


def suggestion_payload(suggestion: Optional[Suggestion]) -> Optional[dict]:
    if suggestion is None:
        return None
    return {"game": game_summary(suggestion.game), "reasoning": suggestion.reasoning}


def session_payload(session_id: str, session: SuggestionSession) -> dict:
    return {
        "session_id": session_id,
        "phase": session.phase.value,
        "suggestion": suggestion_payload(session.suggestion),
        "excluded_ids": list(session.excluded_ids),
        "cooldown_remaining": session.cooldown_remaining,
    }


# ── One-shot ─────────────────────────────────────────────────────

@router.post("/suggest")
async def suggest(
    body: SuggestRequest,
    request: Request,
    user_id: int = Depends(get_user_id),
    store: IGameStore = Depends(get_store),
    completion: ICompletionService = Depends(get_completion),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Pick one backlog game for the given mood, energy and time."""
    enforce_rate_limit(limiter, f"suggest:{client_ip(request)}", SUGGESTION_BUDGET)
    service = SuggestionService(store, completion)
    try:
        result = await service.suggest(
            user_id, body.preferences(), body.exclude_ids, body.prior_reasonings,
        )
    except BacklogPilotError as e:
        raise to_http_error(e)
    return suggestion_payload(result)


@router.post("/suggest/reroll")
async def record_reroll(
    body: RerollRecord,
    user_id: int = Depends(get_user_id),
    store: IGameStore = Depends(get_store),
):
    """Count a skipped suggestion. The skip count shows up in later prompts."""
    count = await store.increment_reroll(user_id, body.app_id)
    if count is None:
        raise HTTPException(404, "Game not in library")
    return {"success": True, "reroll_count": count}


# ── Sessions ─────────────────────────────────────────────────────

def _open_session(user_id: int, store: IGameStore, completion: ICompletionService) -> SuggestionSession:
    service = SuggestionService(store, completion)

    async def run(preferences, excluded_ids, prior_reasonings):
        return await service.suggest(user_id, preferences, excluded_ids, prior_reasonings)

    async def on_reroll(app_id: int):
        return await service.record_reroll(user_id, app_id)

    return SuggestionSession(
        run, on_reroll=on_reroll, cooldown_seconds=settings.suggestion_cooldown_seconds,
    )


def _lookup(registry: SessionRegistry, user_id: int, session_id: str) -> SuggestionSession:
    session = registry.get(user_id, session_id)
    if session is None:
        raise HTTPException(404, "Session not found")
    return session


@router.post("/suggest/sessions")
async def start_session(
    body: SuggestRequest,
    request: Request,
    user_id: int = Depends(get_user_id),
    store: IGameStore = Depends(get_store),
    completion: ICompletionService = Depends(get_completion),
    limiter: RateLimiter = Depends(get_rate_limiter),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Answer all three questions at once and get the first suggestion."""
    enforce_rate_limit(limiter, f"suggest:{client_ip(request)}", SUGGESTION_BUDGET)
    session = _open_session(user_id, store, completion)
    session.select_mood(body.mood)
    session.select_energy(body.energy)
    await session.select_time(body.time)
    if session.error is not None:
        raise to_http_error(session.error)

    session_id = registry.add(user_id, session)
    logger.debug(f"User {user_id}: opened suggestion session {session_id}")
    return session_payload(session_id, session)


@router.post("/suggest/sessions/{session_id}/reroll")
async def reroll_session(
    session_id: str,
    request: Request,
    user_id: int = Depends(get_user_id),
    limiter: RateLimiter = Depends(get_rate_limiter),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Skip the current pick. 409 while the cooldown is running."""
    session = _lookup(registry, user_id, session_id)
    if session.is_on_cooldown:
        raise to_http_error(CooldownActiveError(session.cooldown_remaining))
    enforce_rate_limit(limiter, f"suggest:{client_ip(request)}", SUGGESTION_BUDGET)
    try:
        await session.reroll()
    except (CooldownActiveError, InvalidTransitionError) as e:
        raise to_http_error(e)
    if session.error is not None:
        raise to_http_error(session.error)
    return session_payload(session_id, session)


@router.get("/suggest/sessions/{session_id}")
async def get_session(
    session_id: str,
    user_id: int = Depends(get_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
):
    return session_payload(session_id, _lookup(registry, user_id, session_id))


@router.delete("/suggest/sessions/{session_id}")
async def close_session(
    session_id: str,
    user_id: int = Depends(get_user_id),
    registry: SessionRegistry = Depends(get_session_registry),
):
    """Pick or abandon: drops exclusions and cooldown with the session."""
    if not registry.discard(user_id, session_id):
        raise HTTPException(404, "Session not found")
    return {"success": True}
