"""Data transfer objects and abstract interfaces for external services.

Clients return these DTOs so services never touch a third party's JSON
shape directly.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional


# ── Data Transfer Objects ────────────────────────────────────────

@dataclass
class CatalogMetadata:
    """Semantic fields extracted from a storefront app-details payload."""
    type: str                   # "game" | "dlc" | "software" | "unknown"
    name: Optional[str] = None
    genres: list[str] = field(default_factory=list)
    categories: list[str] = field(default_factory=list)
    description: Optional[str] = None
    release_date: Optional[str] = None
    header_image: Optional[str] = None


@dataclass
class ReviewSummary:
    """Aggregate storefront reviews."""
    score: int                  # 0-100, share of positive reviews
    count: int                  # total reviews, > 0


@dataclass
class OwnedGame:
    """A game owned by a user on the library provider."""
    app_id: int
    name: str
    playtime_forever: int = 0   # minutes
    img_icon_url: Optional[str] = None


# ── Abstract Interfaces ──────────────────────────────────────────

class ICompletionService(ABC):
    """One-shot text completion (language model)."""

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """Send a single prompt, return the model's free-text reply."""
        ...


class ICompletionTimeProvider(ABC):
    """Answers "how long is the main story of this title"."""

    @abstractmethod
    async def get_main_story_hours(self, title: str) -> Optional[float]:
        """Hours to finish the main story, or None when unknown."""
        ...
