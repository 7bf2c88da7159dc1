"""Library endpoints — metadata sync, status lifecycle, refresh, shelves."""

import asyncio
import json
import logging
import math
from dataclasses import asdict
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from backlog_pilot.api.deps import (
    REFRESH_BUDGET, STATUS_BUDGET, SYNC_BUDGET,
    client_ip, enforce_rate_limit, get_hltb_cache, get_rate_limiter,
    get_store, get_user_id,
)
from backlog_pilot.clients.hltb import HltbClient, HltbConfigCache
from backlog_pilot.clients.steam_store import SteamStoreClient
from backlog_pilot.clients.steam_web import SteamWebClient
from backlog_pilot.config import settings
from backlog_pilot.errors import InvalidStatusError, RateLimitedError
from backlog_pilot.services.game_store import IGameStore, LibraryEntry
from backlog_pilot.services.library import LibraryService
from backlog_pilot.services.metadata_sync import MetadataSyncService, SyncTarget
from backlog_pilot.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncRequest(BaseModel):
    app_ids: Optional[list[int]] = None   # None = every unsynced entry


class StatusUpdate(BaseModel):
    app_id: int = Field(..., gt=0)
    status: str


class RefreshRequest(BaseModel):
    steam_id: str = Field(..., min_length=1)


def get_sync_service(
    store: IGameStore = Depends(get_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
    hltb_cache: HltbConfigCache = Depends(get_hltb_cache),
) -> MetadataSyncService:
    """Build service stack for metadata sync."""
    steam = SteamStoreClient(
        base_url=settings.steam_store_url,
        timeout=settings.steam_store_timeout,
        default_retry_after=settings.sync_default_retry_after,
    )
    hltb = HltbClient(
        base_url=settings.hltb_base_url,
        cache=hltb_cache,
        timeout=settings.hltb_timeout,
        short_result_hours=settings.hltb_short_result_hours,
    )
    return MetadataSyncService(
        store=store,
        steam=steam,
        hltb=hltb,
        rate_limiter=limiter,
        sync_budget=SYNC_BUDGET,
        batch_size=settings.sync_batch_size,
        max_attempts=settings.sync_max_attempts,
        max_backoff=settings.sync_max_backoff_seconds,
        default_retry_after=settings.sync_default_retry_after,
        freshness_days=settings.metadata_freshness_days,
        review_confidence=settings.review_confidence_threshold,
        review_prior=settings.review_prior_score,
    )


def get_steam_web() -> SteamWebClient:
    if not settings.has_steam_web_api:
        raise HTTPException(503, "Steam Web API not configured")
    return SteamWebClient(
        settings.steam_api_key,
        base_url=settings.steam_api_url,
        timeout=settings.steam_api_timeout,
    )


def game_summary(game: Optional[LibraryEntry]) -> Optional[dict]:
    if game is None:
        return None
    return {
        "app_id": game.app_id,
        "name": game.name,
        "header_image": game.header_image,
        "main_story_hours": game.main_story_hours,
        "genres": game.genres,
    }


# ── Metadata sync ────────────────────────────────────────────────

@router.post("/games/sync")
async def sync_games(
    body: Optional[SyncRequest] = None,
    user_id: int = Depends(get_user_id),
    service: MetadataSyncService = Depends(get_sync_service),
):
    """Sync unsynced library titles. Streams NDJSON progress, then a summary line."""
    entries = await service.store.list_unsynced(user_id)
    if body and body.app_ids is not None:
        wanted = set(body.app_ids)
        entries = [e for e in entries if e.app_id in wanted]
    targets = [SyncTarget(app_id=e.app_id, name=e.name) for e in entries]

    queue: asyncio.Queue = asyncio.Queue()

    async def on_progress(current: int, total: int, title: str) -> None:
        await queue.put({"event": "progress", "current": current, "total": total, "title": title})

    async def run() -> None:
        try:
            summary = await service.sync_titles(user_id, targets, on_progress)
            await queue.put({"event": "complete", **summary})
        except Exception as e:
            logger.error(f"Sync batch for user {user_id} crashed: {e}")
            await queue.put({"event": "error", "detail": str(e)})
        finally:
            await queue.put(None)

    async def stream():
        task = asyncio.create_task(run())
        try:
            while (event := await queue.get()) is not None:
                yield json.dumps(event) + "\n"
        finally:
            await task

    return StreamingResponse(stream(), media_type="application/x-ndjson")


@router.post("/games/sync/{app_id}")
async def sync_game(
    app_id: int,
    user_id: int = Depends(get_user_id),
    service: MetadataSyncService = Depends(get_sync_service),
):
    """Sync one title. 429 with Retry-After when throttled, so callers can back off."""
    entry = await service.store.get_entry(user_id, app_id)
    if entry is None:
        raise HTTPException(404, "Game not in library")

    try:
        outcome = await service.sync_title(user_id, SyncTarget(app_id=app_id, name=entry.name))
    except RateLimitedError as e:
        retry_after = math.ceil(e.retry_after or service.default_retry_after)
        raise HTTPException(429, str(e), headers={"Retry-After": str(retry_after)})

    synced = await service.store.get_entry(user_id, app_id)
    return {"success": True, "outcome": outcome.value, "game": asdict(synced) if synced else None}


# ── Status lifecycle ─────────────────────────────────────────────

@router.post("/games/status")
async def update_status(
    update: StatusUpdate,
    request: Request,
    user_id: int = Depends(get_user_id),
    store: IGameStore = Depends(get_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Set backlog / playing / finished / dropped / hidden."""
    enforce_rate_limit(limiter, f"game-status:{client_ip(request)}", STATUS_BUDGET)
    try:
        updated = await LibraryService(store).set_status(user_id, update.app_id, update.status)
    except InvalidStatusError as e:
        raise HTTPException(400, str(e))
    if not updated:
        raise HTTPException(404, "Game not in library")
    return {"success": True}


@router.get("/games/playing")
async def currently_playing(
    user_id: int = Depends(get_user_id),
    store: IGameStore = Depends(get_store),
):
    game = await LibraryService(store).get_currently_playing(user_id)
    return {"game": game_summary(game)}


# ── Library refresh ──────────────────────────────────────────────

@router.post("/games/refresh")
async def refresh_library(
    body: RefreshRequest,
    request: Request,
    user_id: int = Depends(get_user_id),
    store: IGameStore = Depends(get_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
    steam_web: SteamWebClient = Depends(get_steam_web),
):
    """Import owned games that are not in the library yet."""
    enforce_rate_limit(limiter, f"steam-refresh:{client_ip(request)}", REFRESH_BUDGET)
    try:
        added = await LibraryService(store, steam_web).refresh_library(user_id, body.steam_id)
    except httpx.HTTPError as e:
        logger.error(f"Steam owned-games fetch failed for user {user_id}: {e}")
        raise HTTPException(502, "Steam API failed")
    return {"success": True, "new_games": added}


# ── Shelves ──────────────────────────────────────────────────────

@router.get("/games/shelves")
async def shelves(
    user_id: int = Depends(get_user_id),
    store: IGameStore = Depends(get_store),
):
    """Short, weekend and highly-rated backlog picks."""
    result = await LibraryService(store).get_shelves(user_id)
    return {name: [asdict(g) for g in games] for name, games in result.items()}


@router.get("/games/random")
async def random_pick(
    user_id: int = Depends(get_user_id),
    store: IGameStore = Depends(get_store),
):
    game = await LibraryService(store).random_pick(user_id)
    if game is None:
        raise HTTPException(404, "No eligible games")
    return {"game": game_summary(game)}
