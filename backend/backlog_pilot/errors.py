"""Domain exceptions raised by services and translated by the API layer.

"Not found upstream" is never an exception: clients return None for it.
"""

from typing import Optional


class BacklogPilotError(Exception):
    """Base class for every error the core raises on purpose."""


# ── Throttling ───────────────────────────────────────────────────

class RateLimitedError(BacklogPilotError):
    """An inbound budget or an upstream service refused the call."""

    def __init__(self, message: str = "Too many requests", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


# ── Suggestions ──────────────────────────────────────────────────

class NoEligibleGamesError(BacklogPilotError):
    """Nothing left to suggest after filtering and exclusions."""


class CompletionServiceError(BacklogPilotError):
    """The completion service could not be reached or returned an error."""


class CompletionTimeoutError(CompletionServiceError):
    """The completion service did not answer in time."""


class MalformedReplyError(BacklogPilotError):
    """The model reply could not be trusted as a suggestion."""


class NoJsonFoundError(MalformedReplyError):
    pass


class InvalidAppIdError(MalformedReplyError):
    pass


class InvalidReasoningError(MalformedReplyError):
    pass


class SuggestionIntegrityError(BacklogPilotError):
    """The model picked a game that is not in the eligible set."""

    def __init__(self, app_id: int):
        super().__init__(f"Suggested app_id {app_id} is not an eligible backlog game")
        self.app_id = app_id


class CooldownActiveError(BacklogPilotError):
    """Reroll requested before the cooldown expired."""

    def __init__(self, remaining: int):
        super().__init__(f"Reroll available in {remaining}s")
        self.remaining = remaining


class InvalidTransitionError(BacklogPilotError):
    """A session action is not allowed in the current phase."""


# ── Library ──────────────────────────────────────────────────────

class InvalidStatusError(BacklogPilotError):
    pass
