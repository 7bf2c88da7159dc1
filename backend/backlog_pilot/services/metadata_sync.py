"""Metadata sync service.

Enriches a user's library entries with storefront metadata, review
scores and HowLongToBeat completion times, going through the shared
cross-user metadata cache first.
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional

from backlog_pilot.clients.base import ICompletionTimeProvider
from backlog_pilot.clients.steam_store import SteamStoreClient
from backlog_pilot.errors import RateLimitedError
from backlog_pilot.services.game_store import GameMetadata, IGameStore
from backlog_pilot.services.rate_limiter import RateLimitBudget, RateLimiter
from backlog_pilot.services.scoring import is_metadata_fresh, weighted_review_score

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], Awaitable[None]]


@dataclass
class SyncTarget:
    """A library title waiting for metadata."""
    app_id: int
    name: str = ""


class SyncOutcome(str, Enum):
    SYNCED = "synced"          # fetched fresh and persisted
    CACHED = "cached"          # served from shared metadata
    MISSING = "missing"        # storefront has no data, marked synced anyway
    FAILED = "failed"          # unexpected error, left unsynced
    THROTTLED = "throttled"    # retries exhausted, left unsynced


class MetadataSyncService:
    """Syncs storefront + HLTB metadata into the shared cache and user libraries."""

    def __init__(
        self,
        store: IGameStore,
        steam: SteamStoreClient,
        hltb: ICompletionTimeProvider,
        rate_limiter: Optional[RateLimiter] = None,
        sync_budget: Optional[RateLimitBudget] = None,
        batch_size: int = 3,
        max_attempts: int = 5,
        max_backoff: float = 15.0,
        default_retry_after: float = 10.0,
        freshness_days: int = 7,
        review_confidence: int = 100,
        review_prior: int = 70,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.store = store
        self.steam = steam
        self.hltb = hltb
        self.rate_limiter = rate_limiter
        self.sync_budget = sync_budget
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.max_backoff = max_backoff
        self.default_retry_after = default_retry_after
        self.freshness_days = freshness_days
        self.review_confidence = review_confidence
        self.review_prior = review_prior
        self._sleep = sleep
        self._now = now

    # ── Single title ─────────────────────────────────────────────

    def is_cache_usable(self, meta: GameMetadata) -> bool:
        """Fresh, and complete enough (games need a completion time)."""
        return is_metadata_fresh(meta.synced_at, self._now(), self.freshness_days) and (
            meta.type != "game" or meta.main_story_hours is not None
        )

    async def sync_title(self, user_id: int, target: SyncTarget) -> SyncOutcome:
        """Resolve metadata for one title and apply it to the user's entry.

        Raises RateLimitedError when the sync budget or the storefront
        throttles; the batch driver retries those.
        """
        self._check_budget(user_id)

        cached = await self.store.get_shared_metadata(target.app_id)
        if cached and self.is_cache_usable(cached):
            await self.store.apply_metadata(user_id, target.app_id, cached)
            return SyncOutcome.CACHED

        details = await self.steam.get_catalog_details(target.app_id)
        catalog = self.steam.extract_metadata(details) if details else None
        if catalog is None:
            # Delisted or region-locked: nothing to fetch, don't retry forever
            await self.store.mark_synced(user_id, target.app_id)
            return SyncOutcome.MISSING

        hours = reviews = None
        if catalog.type == "game":
            hours, reviews = await asyncio.gather(
                self.hltb.get_main_story_hours(target.name or catalog.name or ""),
                self.steam.get_review_data(target.app_id),
            )

        meta = GameMetadata(
            app_id=target.app_id,
            type=catalog.type,
            name=catalog.name or target.name or None,
            genres=catalog.genres,
            categories=catalog.categories,
            description=catalog.description,
            release_date=catalog.release_date,
            header_image=catalog.header_image,
            review_score=reviews.score if reviews else None,
            review_count=reviews.count if reviews else None,
            review_weighted=(
                weighted_review_score(reviews.score, reviews.count, self.review_confidence, self.review_prior)
                if reviews else None
            ),
            main_story_hours=hours,
            synced_at=self._now(),
        )
        await self.store.upsert_shared_metadata(meta)
        await self.store.apply_metadata(user_id, target.app_id, meta)
        return SyncOutcome.SYNCED

    def _check_budget(self, user_id: int) -> None:
        if not (self.rate_limiter and self.sync_budget):
            return
        result = self.rate_limiter.check_budget(f"sync:{user_id}", self.sync_budget)
        if not result.allowed:
            raise RateLimitedError(
                "Sync budget exhausted",
                retry_after=self.rate_limiter.retry_after_seconds(result),
            )

    async def sync_title_with_retry(self, user_id: int, target: SyncTarget) -> SyncOutcome:
        """sync_title with backoff on throttling. Never raises."""
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await self.sync_title(user_id, target)
            except RateLimitedError as e:
                if attempt == self.max_attempts:
                    break
                delay = min(e.retry_after or self.default_retry_after, self.max_backoff)
                logger.info(
                    f"Sync throttled for app_id={target.app_id} "
                    f"(attempt {attempt}/{self.max_attempts}), retrying in {delay:.0f}s"
                )
                await self._sleep(delay)
            except Exception as e:
                logger.warning(f"Sync failed for app_id={target.app_id}: {e}")
                return SyncOutcome.FAILED

        logger.warning(f"Sync gave up on app_id={target.app_id} after {self.max_attempts} throttled attempts")
        return SyncOutcome.THROTTLED

    # ── Batches ──────────────────────────────────────────────────

    async def sync_titles(
        self,
        user_id: int,
        targets: list[SyncTarget],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> dict:
        """Sync titles in groups of ``batch_size``, each group fully concurrent.

        Args:
            user_id: Library owner
            targets: Titles to sync
            progress_callback: async fn(current, total, title) for progress reporting

        Returns:
            {"synced": N, "cached": N, "missing": N, "failed": N, "throttled": N, "total": N}
        """
        total = len(targets)
        completed = 0

        async def run(target: SyncTarget) -> SyncOutcome:
            nonlocal completed
            outcome = await self.sync_title_with_retry(user_id, target)
            completed += 1
            if progress_callback:
                try:
                    await progress_callback(completed, total, target.name)
                except Exception as e:
                    logger.debug(f"Progress callback failed: {e}")
            return outcome

        counts: Counter[SyncOutcome] = Counter()
        for i in range(0, total, self.batch_size):
            group = targets[i:i + self.batch_size]
            counts.update(await asyncio.gather(*(run(t) for t in group)))

        summary = {outcome.value: counts[outcome] for outcome in SyncOutcome}
        summary["total"] = total
        logger.info(
            f"User {user_id}: synced {summary['synced']}, cached {summary['cached']}, "
            f"missing {summary['missing']}, failed {summary['failed']}, "
            f"throttled {summary['throttled']} of {total}"
        )
        return summary

    async def sync_unsynced(
        self,
        user_id: int,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> dict:
        """Sync every library entry not yet marked synced."""
        entries = await self.store.list_unsynced(user_id)
        targets = [SyncTarget(app_id=e.app_id, name=e.name) for e in entries]
        return await self.sync_titles(user_id, targets, progress_callback)
