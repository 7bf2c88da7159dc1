"""Library lifecycle: status changes, owned-games refresh and shelves.

Shelves are the pre-filtered lists shown next to the suggestion flow:
short games, weekend games and highly rated games, all drawn from the
backlog and ranked by the weighted review score.
"""

import logging
import random
from typing import Optional

from backlog_pilot.clients.steam_web import SteamWebClient
from backlog_pilot.errors import InvalidStatusError
from backlog_pilot.services.game_store import (
    SINGLE_PLAYER, VALID_STATUSES, IGameStore, LibraryEntry,
)

logger = logging.getLogger(__name__)

SHORT_GAME_MIN_HOURS = 1
SHORT_GAME_MAX_HOURS = 5
WEEKEND_GAME_MIN_HOURS = 5     # exclusive: exactly 5h belongs to short games
WEEKEND_GAME_MAX_HOURS = 12
MAX_PLAYTIME_MINUTES = 240
RANDOM_PICK_MAX_PLAYTIME_MINUTES = 120
SHELF_SIZE = 10


# ── Shelf filters ────────────────────────────────────────────────

def _is_shelf_base_eligible(game: LibraryEntry, max_playtime: int = MAX_PLAYTIME_MINUTES) -> bool:
    return (
        game.type == "game"
        and game.effective_status == "backlog"
        and SINGLE_PLAYER in (game.categories or [])
        and (game.playtime_forever or 0) <= max_playtime
    )


def is_short_game_eligible(game: LibraryEntry) -> bool:
    return (
        _is_shelf_base_eligible(game)
        and game.review_weighted is not None
        and game.main_story_hours is not None
        and SHORT_GAME_MIN_HOURS <= game.main_story_hours <= SHORT_GAME_MAX_HOURS
    )


def is_weekend_game_eligible(game: LibraryEntry) -> bool:
    return (
        _is_shelf_base_eligible(game)
        and game.review_weighted is not None
        and game.main_story_hours is not None
        and WEEKEND_GAME_MIN_HOURS < game.main_story_hours <= WEEKEND_GAME_MAX_HOURS
    )


def is_highly_rated_eligible(game: LibraryEntry) -> bool:
    return _is_shelf_base_eligible(game) and game.review_weighted is not None


def is_random_pick_eligible(game: LibraryEntry) -> bool:
    """Looser than the shelves on score and length, stricter on playtime."""
    return _is_shelf_base_eligible(game, RANDOM_PICK_MAX_PLAYTIME_MINUTES)


def _by_score(games: list[LibraryEntry]) -> list[LibraryEntry]:
    return sorted(games, key=lambda g: -(g.review_weighted or 0))


def build_shelves(games: list[LibraryEntry], size: int = SHELF_SIZE) -> dict[str, list[LibraryEntry]]:
    """Short, weekend and highly-rated shelves.

    Highly-rated skips anything already shown on the other two shelves.
    """
    short = _by_score([g for g in games if is_short_game_eligible(g)])[:size]
    weekend = _by_score([g for g in games if is_weekend_game_eligible(g)])[:size]
    shown = {g.app_id for g in short} | {g.app_id for g in weekend}
    highly_rated = _by_score(
        [g for g in games if is_highly_rated_eligible(g) and g.app_id not in shown]
    )[:size]
    return {"short": short, "weekend": weekend, "highly_rated": highly_rated}


# ── Service ──────────────────────────────────────────────────────

class LibraryService:
    """Status changes and library maintenance for one store."""

    def __init__(self, store: IGameStore, steam_web: Optional[SteamWebClient] = None):
        self.store = store
        self.steam_web = steam_web

    async def set_status(self, user_id: int, app_id: int, status: str) -> bool:
        """Change a game's lifecycle status. At most one game is "playing"."""
        if status not in VALID_STATUSES:
            raise InvalidStatusError(f"Invalid status: {status!r}")
        updated = await self.store.set_status(user_id, app_id, status)
        if updated:
            logger.debug(f"User {user_id}: app_id={app_id} -> {status}")
        return updated

    async def get_currently_playing(self, user_id: int) -> Optional[LibraryEntry]:
        playing = await self.store.list_by_status(user_id, "playing", limit=1)
        return playing[0] if playing else None

    async def refresh_library(self, user_id: int, steam_id: str) -> int:
        """Import owned games missing from the library. Returns how many were added."""
        if self.steam_web is None:
            raise RuntimeError("Steam Web API is not configured")
        owned = await self.steam_web.get_owned_games(steam_id)
        added = await self.store.add_entries(user_id, owned)
        logger.info(f"User {user_id}: {len(owned)} owned games, {added} new")
        return added

    async def get_shelves(self, user_id: int) -> dict[str, list[LibraryEntry]]:
        return build_shelves(await self.store.list_entries(user_id))

    async def random_pick(self, user_id: int, rng: Optional[random.Random] = None) -> Optional[LibraryEntry]:
        pool = [g for g in await self.store.list_entries(user_id) if is_random_pick_eligible(g)]
        if not pool:
            return None
        return (rng or random).choice(pool)
