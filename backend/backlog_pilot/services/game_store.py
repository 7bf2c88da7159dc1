"""Record store for shared metadata and per-user library entries.

``IGameStore`` is the contract the core reads and writes through;
``SqlGameStore`` implements it on async SQLAlchemy. Each store call runs
in its own session so concurrent sync tasks never share one.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update, and_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backlog_pilot.clients.base import OwnedGame
from backlog_pilot.models.tables import LibraryGame, SharedGameMetadata

VALID_STATUSES = ("backlog", "playing", "finished", "dropped", "hidden")
SINGLE_PLAYER = "Single-player"


# ── Records ──────────────────────────────────────────────────────

@dataclass
class GameMetadata:
    """Shared, cross-user metadata for one title."""
    app_id: int
    type: str = "unknown"
    name: Optional[str] = None
    genres: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    description: Optional[str] = None
    release_date: Optional[str] = None
    header_image: Optional[str] = None
    review_score: Optional[int] = None
    review_count: Optional[int] = None
    review_weighted: Optional[int] = None
    main_story_hours: Optional[float] = None
    platform: str = "steam"
    synced_at: Optional[datetime] = None


# Fields copied from shared metadata onto a library entry
DENORMALIZED_FIELDS = (
    "type", "genres", "categories", "description", "release_date", "header_image",
    "review_score", "review_count", "review_weighted", "main_story_hours",
)


@dataclass
class LibraryEntry:
    """A game in one user's library."""
    user_id: int
    app_id: int
    name: str = ""
    playtime_forever: int = 0
    img_icon_url: Optional[str] = None
    status: Optional[str] = None
    reroll_count: int = 0
    metadata_synced: bool = False
    type: Optional[str] = None
    genres: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    description: Optional[str] = None
    release_date: Optional[str] = None
    header_image: Optional[str] = None
    review_score: Optional[int] = None
    review_count: Optional[int] = None
    review_weighted: Optional[int] = None
    main_story_hours: Optional[float] = None

    @property
    def effective_status(self) -> str:
        return self.status or "backlog"


def is_suggestion_candidate(entry: LibraryEntry) -> bool:
    """Backlog, single-player, full game."""
    return (
        entry.type == "game"
        and entry.effective_status == "backlog"
        and SINGLE_PLAYER in (entry.categories or [])
    )


# ── Interface ────────────────────────────────────────────────────

class IGameStore(ABC):
    """User-scoped access to library entries and the shared metadata cache."""

    @abstractmethod
    async def get_shared_metadata(self, app_id: int) -> Optional[GameMetadata]:
        ...

    @abstractmethod
    async def upsert_shared_metadata(self, meta: GameMetadata) -> None:
        """Insert or overwrite by app id. Last writer wins."""
        ...

    @abstractmethod
    async def apply_metadata(self, user_id: int, app_id: int, meta: GameMetadata) -> None:
        """Copy resolved metadata onto the user's entry and mark it synced."""
        ...

    @abstractmethod
    async def mark_synced(self, user_id: int, app_id: int) -> None:
        """Mark synced without touching metadata (no upstream data)."""
        ...

    @abstractmethod
    async def get_entry(self, user_id: int, app_id: int) -> Optional[LibraryEntry]:
        ...

    @abstractmethod
    async def list_entries(self, user_id: int) -> list[LibraryEntry]:
        ...

    @abstractmethod
    async def list_unsynced(self, user_id: int) -> list[LibraryEntry]:
        ...

    @abstractmethod
    async def list_by_status(self, user_id: int, status: str, limit: int = 20) -> list[LibraryEntry]:
        ...

    @abstractmethod
    async def set_status(self, user_id: int, app_id: int, status: str) -> bool:
        """Set lifecycle status; "playing" demotes any other playing entry. False if missing."""
        ...

    @abstractmethod
    async def increment_reroll(self, user_id: int, app_id: int) -> Optional[int]:
        """Bump the reroll counter. Returns the new value, None if missing."""
        ...

    @abstractmethod
    async def add_entries(self, user_id: int, games: list[OwnedGame]) -> int:
        """Insert games not yet in the library. Returns how many were added."""
        ...

    async def get_suggestion_candidates(self, user_id: int) -> list[LibraryEntry]:
        """Eligible backlog games, best weighted score first, unscored last."""
        entries = [e for e in await self.list_entries(user_id) if is_suggestion_candidate(e)]
        entries.sort(key=lambda e: (e.review_weighted is None, -(e.review_weighted or 0)))
        return entries


# ── SQL implementation ───────────────────────────────────────────

def _to_metadata(row: SharedGameMetadata) -> GameMetadata:
    return GameMetadata(
        app_id=row.app_id,
        type=row.type,
        name=row.name,
        genres=list(row.genres or []),
        categories=list(row.categories or []),
        description=row.description,
        release_date=row.release_date,
        header_image=row.header_image,
        review_score=row.review_score,
        review_count=row.review_count,
        review_weighted=row.review_weighted,
        main_story_hours=row.main_story_hours,
        platform=row.platform,
        synced_at=row.synced_at,
    )


def _to_entry(row: LibraryGame) -> LibraryEntry:
    values = {f.name: getattr(row, f.name) for f in fields(LibraryEntry)}
    values["genres"] = list(row.genres or [])
    values["categories"] = list(row.categories or [])
    values["playtime_forever"] = row.playtime_forever or 0
    values["reroll_count"] = row.reroll_count or 0
    return LibraryEntry(**values)


class SqlGameStore(IGameStore):
    """IGameStore over async SQLAlchemy (PostgreSQL in production)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._sessions = session_factory

    @staticmethod
    def _insert(session: AsyncSession, table):
        dialect = session.get_bind().dialect.name
        return (pg_insert if dialect == "postgresql" else sqlite_insert)(table)

    @staticmethod
    def _entry_filter(user_id: int, app_id: int):
        return and_(LibraryGame.user_id == user_id, LibraryGame.app_id == app_id)

    # ── Shared metadata ──────────────────────────────────────────

    async def get_shared_metadata(self, app_id: int) -> Optional[GameMetadata]:
        async with self._sessions() as session:
            row = await session.get(SharedGameMetadata, app_id)
            return _to_metadata(row) if row else None

    async def upsert_shared_metadata(self, meta: GameMetadata) -> None:
        values = {
            "platform": meta.platform,
            "type": meta.type,
            "name": meta.name,
            "genres": meta.genres,
            "categories": meta.categories,
            "description": meta.description,
            "release_date": meta.release_date,
            "header_image": meta.header_image,
            "review_score": meta.review_score,
            "review_count": meta.review_count,
            "review_weighted": meta.review_weighted,
            "main_story_hours": meta.main_story_hours,
            "synced_at": meta.synced_at,
        }
        async with self._sessions() as session, session.begin():
            stmt = self._insert(session, SharedGameMetadata).values(app_id=meta.app_id, **values)
            stmt = stmt.on_conflict_do_update(index_elements=["app_id"], set_=values)
            await session.execute(stmt)

    # ── Library entries ──────────────────────────────────────────

    async def apply_metadata(self, user_id: int, app_id: int, meta: GameMetadata) -> None:
        values = {name: getattr(meta, name) for name in DENORMALIZED_FIELDS}
        async with self._sessions() as session, session.begin():
            await session.execute(
                update(LibraryGame)
                .where(self._entry_filter(user_id, app_id))
                .values(metadata_synced=True, **values)
            )

    async def mark_synced(self, user_id: int, app_id: int) -> None:
        async with self._sessions() as session, session.begin():
            await session.execute(
                update(LibraryGame)
                .where(self._entry_filter(user_id, app_id))
                .values(metadata_synced=True)
            )

    async def get_entry(self, user_id: int, app_id: int) -> Optional[LibraryEntry]:
        async with self._sessions() as session:
            result = await session.execute(select(LibraryGame).where(self._entry_filter(user_id, app_id)))
            row = result.scalar_one_or_none()
            return _to_entry(row) if row else None

    async def list_entries(self, user_id: int) -> list[LibraryEntry]:
        async with self._sessions() as session:
            result = await session.execute(
                select(LibraryGame).where(LibraryGame.user_id == user_id).order_by(LibraryGame.name)
            )
            return [_to_entry(row) for row in result.scalars()]

    async def list_unsynced(self, user_id: int) -> list[LibraryEntry]:
        async with self._sessions() as session:
            result = await session.execute(
                select(LibraryGame).where(
                    and_(LibraryGame.user_id == user_id, LibraryGame.metadata_synced.is_(False))
                )
            )
            return [_to_entry(row) for row in result.scalars()]

    async def list_by_status(self, user_id: int, status: str, limit: int = 20) -> list[LibraryEntry]:
        async with self._sessions() as session:
            result = await session.execute(
                select(LibraryGame)
                .where(and_(LibraryGame.user_id == user_id, LibraryGame.status == status))
                .limit(limit)
            )
            return [_to_entry(row) for row in result.scalars()]

    async def set_status(self, user_id: int, app_id: int, status: str) -> bool:
        async with self._sessions() as session, session.begin():
            target = await session.execute(
                select(LibraryGame.id).where(self._entry_filter(user_id, app_id))
            )
            if target.scalar_one_or_none() is None:
                return False
            if status == "playing":
                await session.execute(
                    update(LibraryGame)
                    .where(and_(
                        LibraryGame.user_id == user_id,
                        LibraryGame.status == "playing",
                        LibraryGame.app_id != app_id,
                    ))
                    .values(status="backlog")
                )
            await session.execute(
                update(LibraryGame).where(self._entry_filter(user_id, app_id)).values(status=status)
            )
            return True

    async def increment_reroll(self, user_id: int, app_id: int) -> Optional[int]:
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                update(LibraryGame)
                .where(self._entry_filter(user_id, app_id))
                .values(reroll_count=LibraryGame.reroll_count + 1)
                .returning(LibraryGame.reroll_count)
            )
            return result.scalar_one_or_none()

    async def add_entries(self, user_id: int, games: list[OwnedGame]) -> int:
        if not games:
            return 0
        async with self._sessions() as session, session.begin():
            existing = await session.execute(
                select(LibraryGame.app_id).where(LibraryGame.user_id == user_id)
            )
            known = set(existing.scalars())
            new_games = list({g.app_id: g for g in games if g.app_id not in known}.values())
            session.add_all(
                LibraryGame(
                    user_id=user_id,
                    app_id=g.app_id,
                    name=g.name,
                    playtime_forever=g.playtime_forever,
                    img_icon_url=g.img_icon_url,
                )
                for g in new_games
            )
            return len(new_games)
