"""SQLAlchemy ORM models — all database tables."""

from datetime import datetime
from typing import Optional
from sqlalchemy import (
    Integer, BigInteger, String, Text, Boolean, DateTime, Float,
    Index, UniqueConstraint, JSON,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from backlog_pilot.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JsonList = JSON().with_variant(JSONB(), "postgresql")


# ── Shared metadata cache ────────────────────────────────────────

class SharedGameMetadata(Base):
    """Per-title metadata shared by every user's library. A cache, never deleted."""
    __tablename__ = "shared_game_metadata"

    app_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    platform: Mapped[str] = mapped_column(String(20), default="steam")
    type: Mapped[str] = mapped_column(String(20), default="unknown")  # game | dlc | software | unknown
    name: Mapped[Optional[str]] = mapped_column(String(500))
    genres: Mapped[Optional[list]] = mapped_column(JsonList)
    categories: Mapped[Optional[list]] = mapped_column(JsonList)
    description: Mapped[Optional[str]] = mapped_column(Text)
    release_date: Mapped[Optional[str]] = mapped_column(String(100))
    header_image: Mapped[Optional[str]] = mapped_column(String(500))
    review_score: Mapped[Optional[int]] = mapped_column(Integer)
    review_count: Mapped[Optional[int]] = mapped_column(Integer)
    review_weighted: Mapped[Optional[int]] = mapped_column(Integer)
    main_story_hours: Mapped[Optional[float]] = mapped_column(Float)
    synced_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


# ── User libraries ───────────────────────────────────────────────

class LibraryGame(Base):
    """A game in one user's library, with denormalized metadata."""
    __tablename__ = "library_games"
    __table_args__ = (
        UniqueConstraint("user_id", "app_id"),
        Index("idx_library_games_user_status", "user_id", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    app_id: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(500), default="")
    img_icon_url: Mapped[Optional[str]] = mapped_column(String(200))

    # User-owned
    playtime_forever: Mapped[int] = mapped_column(Integer, default=0)   # minutes
    status: Mapped[Optional[str]] = mapped_column(String(20))           # None = backlog
    reroll_count: Mapped[int] = mapped_column(Integer, default=0)
    metadata_synced: Mapped[bool] = mapped_column(Boolean, default=False)

    # Denormalized from SharedGameMetadata at sync time
    type: Mapped[Optional[str]] = mapped_column(String(20))
    genres: Mapped[Optional[list]] = mapped_column(JsonList)
    categories: Mapped[Optional[list]] = mapped_column(JsonList)
    description: Mapped[Optional[str]] = mapped_column(Text)
    release_date: Mapped[Optional[str]] = mapped_column(String(100))
    header_image: Mapped[Optional[str]] = mapped_column(String(500))
    review_score: Mapped[Optional[int]] = mapped_column(Integer)
    review_count: Mapped[Optional[int]] = mapped_column(Integer)
    review_weighted: Mapped[Optional[int]] = mapped_column(Integer)
    main_story_hours: Mapped[Optional[float]] = mapped_column(Float)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
