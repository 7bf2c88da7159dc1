"""
Shared fixtures: an in-memory game store, fake clocks and fake services.
"""
from dataclasses import replace
from typing import Optional

import pytest

from backlog_pilot.clients.base import ICompletionService, OwnedGame
from backlog_pilot.services.game_store import (
    DENORMALIZED_FIELDS, GameMetadata, IGameStore, LibraryEntry,
)


class InMemoryGameStore(IGameStore):
    """Dict-backed IGameStore with the same semantics as SqlGameStore."""

    def __init__(self):
        self.shared: dict[int, GameMetadata] = {}
        self.entries: dict[tuple[int, int], LibraryEntry] = {}

    def add(self, entry: LibraryEntry) -> LibraryEntry:
        self.entries[(entry.user_id, entry.app_id)] = entry
        return entry

    async def get_shared_metadata(self, app_id: int) -> Optional[GameMetadata]:
        return self.shared.get(app_id)

    async def upsert_shared_metadata(self, meta: GameMetadata) -> None:
        self.shared[meta.app_id] = replace(meta)

    async def apply_metadata(self, user_id: int, app_id: int, meta: GameMetadata) -> None:
        entry = self.entries.get((user_id, app_id))
        if entry is None:
            return
        for name in DENORMALIZED_FIELDS:
            setattr(entry, name, getattr(meta, name))
        entry.metadata_synced = True

    async def mark_synced(self, user_id: int, app_id: int) -> None:
        entry = self.entries.get((user_id, app_id))
        if entry is not None:
            entry.metadata_synced = True

    async def get_entry(self, user_id: int, app_id: int) -> Optional[LibraryEntry]:
        return self.entries.get((user_id, app_id))

    async def list_entries(self, user_id: int) -> list[LibraryEntry]:
        return sorted((e for e in self.entries.values() if e.user_id == user_id), key=lambda e: e.name)

    async def list_unsynced(self, user_id: int) -> list[LibraryEntry]:
        return [e for e in await self.list_entries(user_id) if not e.metadata_synced]

    async def list_by_status(self, user_id: int, status: str, limit: int = 20) -> list[LibraryEntry]:
        return [e for e in await self.list_entries(user_id) if e.status == status][:limit]

    async def set_status(self, user_id: int, app_id: int, status: str) -> bool:
        entry = self.entries.get((user_id, app_id))
        if entry is None:
            return False
        if status == "playing":
            for other in await self.list_by_status(user_id, "playing"):
                other.status = "backlog"
        entry.status = status
        return True

    async def increment_reroll(self, user_id: int, app_id: int) -> Optional[int]:
        entry = self.entries.get((user_id, app_id))
        if entry is None:
            return None
        entry.reroll_count += 1
        return entry.reroll_count

    async def add_entries(self, user_id: int, games: list[OwnedGame]) -> int:
        added = 0
        for g in games:
            if (user_id, g.app_id) in self.entries:
                continue
            self.add(LibraryEntry(
                user_id=user_id, app_id=g.app_id, name=g.name,
                playtime_forever=g.playtime_forever, img_icon_url=g.img_icon_url,
            ))
            added += 1
        return added


class FakeCompletion(ICompletionService):
    """Returns queued replies in order and records every prompt."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeClock:
    """Manually advanced clock, usable for seconds or milliseconds."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, amount: float) -> None:
        self.now += amount


def make_game(app_id: int, name: Optional[str] = None, user_id: int = 1, **overrides) -> LibraryEntry:
    """A synced, single-player backlog game unless overridden."""
    values = dict(
        user_id=user_id,
        app_id=app_id,
        name=name or f"Game {app_id}",
        metadata_synced=True,
        type="game",
        genres=["Action"],
        categories=["Single-player"],
        review_weighted=80,
        main_story_hours=8.0,
    )
    values.update(overrides)
    return LibraryEntry(**values)


@pytest.fixture
def store():
    return InMemoryGameStore()


@pytest.fixture
def clock():
    return FakeClock()
