"""Re-export all SQLAlchemy models for import convenience."""

from backlog_pilot.models.tables import (  # noqa: F401
    SharedGameMetadata, LibraryGame,
)
