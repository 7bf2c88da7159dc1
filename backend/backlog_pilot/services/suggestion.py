"""Suggestion service and the suggest → reroll → pick session.

``SuggestionService`` is stateless: one call, one suggestion.
``SuggestionSession`` walks a user through the three preference questions
and tracks exclusions, prior reasonings and the reroll cooldown.
"""

import asyncio
import logging
import math
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional

from backlog_pilot.clients.base import ICompletionService
from backlog_pilot.errors import (
    BacklogPilotError, CooldownActiveError, InvalidTransitionError,
    MalformedReplyError, SuggestionIntegrityError,
)
from backlog_pilot.services.game_store import IGameStore, LibraryEntry
from backlog_pilot.services.prompt import (
    Energy, Mood, Preferences, TimeCommitment, build_prompt, parse_reply,
)

logger = logging.getLogger(__name__)

HISTORY_FETCH_LIMIT = 20


@dataclass
class Suggestion:
    game: LibraryEntry
    reasoning: str


class SuggestionService:
    """Builds the prompt, asks the model, and verifies its pick."""

    def __init__(self, store: IGameStore, completion: ICompletionService):
        self.store = store
        self.completion = completion

    async def suggest(
        self,
        user_id: int,
        preferences: Preferences,
        exclude_ids: Iterable[int] = (),
        prior_reasonings: Optional[list[str]] = None,
    ) -> Suggestion:
        """One suggestion from the user's backlog.

        Raises NoEligibleGamesError, CompletionServiceError,
        MalformedReplyError or SuggestionIntegrityError. There is no
        fallback game.
        """
        excluded = set(exclude_ids)
        candidates = await self.store.get_suggestion_candidates(user_id)
        finished = await self.store.list_by_status(user_id, "finished", HISTORY_FETCH_LIMIT)
        dropped = await self.store.list_by_status(user_id, "dropped", HISTORY_FETCH_LIMIT)

        prompt = build_prompt(
            preferences,
            candidates,
            [g.name for g in finished],
            [g.name for g in dropped],
            excluded,
            prior_reasonings,
        )

        reply = await self.completion.complete(prompt)
        try:
            parsed = parse_reply(reply)
        except MalformedReplyError as e:
            logger.error(f"Unusable model reply for user {user_id}: {e} | {reply[:200]!r}")
            raise

        eligible = {g.app_id: g for g in candidates if g.app_id not in excluded}
        game = eligible.get(parsed.app_id)
        if game is None:
            logger.error(f"Model suggested app_id={parsed.app_id} outside the eligible set for user {user_id}")
            raise SuggestionIntegrityError(parsed.app_id)

        return Suggestion(game=game, reasoning=parsed.reasoning)

    async def record_reroll(self, user_id: int, app_id: int) -> Optional[int]:
        """Count a skip against the title. Returns the new count."""
        return await self.store.increment_reroll(user_id, app_id)


# ── Session state machine ────────────────────────────────────────

class Phase(str, Enum):
    COLLECTING_MOOD = "collecting_mood"
    COLLECTING_ENERGY = "collecting_energy"
    COLLECTING_TIME = "collecting_time"
    LOADING = "loading"
    RESULT = "result"


SuggestFn = Callable[[Preferences, list[int], list[str]], Awaitable[Suggestion]]
RerollHook = Callable[[int], Awaitable[object]]


class SuggestionSession:
    """mood → energy → time → loading → result, then reroll or reset.

    The cooldown is an expiry timestamp on ``clock``; nothing ticks in the
    background. ``countdown()`` is there for callers that want to display it.
    """

    def __init__(
        self,
        suggest: SuggestFn,
        on_reroll: Optional[RerollHook] = None,
        cooldown_seconds: int = 15,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._suggest = suggest
        self._on_reroll = on_reroll
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock
        self._sleep = sleep
        self.reset()

    def reset(self) -> None:
        """End the session: clears answers, exclusions and cooldown."""
        self.phase = Phase.COLLECTING_MOOD
        self.mood: Optional[Mood] = None
        self.energy: Optional[Energy] = None
        self.time: Optional[TimeCommitment] = None
        self.excluded_ids: list[int] = []
        self.prior_reasonings: list[str] = []
        self.suggestion: Optional[Suggestion] = None
        self.error: Optional[BacklogPilotError] = None
        self._cooldown_until = 0.0

    # ── Answers ──────────────────────────────────────────────────

    @property
    def preferences(self) -> Optional[Preferences]:
        if self.mood and self.energy and self.time:
            return Preferences(self.mood, self.energy, self.time)
        return None

    def _require(self, phase: Phase) -> None:
        if self.phase != phase:
            raise InvalidTransitionError(f"Expected phase {phase.value}, session is in {self.phase.value}")

    def select_mood(self, mood: Mood) -> None:
        self._require(Phase.COLLECTING_MOOD)
        self.mood = Mood(mood)
        self.phase = Phase.COLLECTING_ENERGY

    def select_energy(self, energy: Energy) -> None:
        self._require(Phase.COLLECTING_ENERGY)
        self.energy = Energy(energy)
        self.phase = Phase.COLLECTING_TIME

    async def select_time(self, time_commitment: TimeCommitment) -> Optional[Suggestion]:
        """Last answer; fetches the first suggestion straight away."""
        self._require(Phase.COLLECTING_TIME)
        self.time = TimeCommitment(time_commitment)
        return await self._fetch()

    def go_back(self) -> None:
        if self.phase == Phase.COLLECTING_ENERGY:
            self.energy = self.time = None
            self.phase = Phase.COLLECTING_MOOD
        elif self.phase == Phase.COLLECTING_TIME:
            self.time = None
            self.phase = Phase.COLLECTING_ENERGY
        else:
            raise InvalidTransitionError(f"Cannot go back from {self.phase.value}")

    # ── Suggest / reroll ─────────────────────────────────────────

    async def _fetch(self) -> Optional[Suggestion]:
        self.phase = Phase.LOADING
        self.error = None
        try:
            self.suggestion = await self._suggest(
                self.preferences, list(self.excluded_ids), list(self.prior_reasonings)
            )
        except BacklogPilotError as e:
            self.error = e
            return None
        finally:
            self.phase = Phase.RESULT
        return self.suggestion

    @property
    def cooldown_remaining(self) -> int:
        """Whole seconds until reroll is allowed again."""
        return max(0, math.ceil(self._cooldown_until - self._clock()))

    @property
    def is_on_cooldown(self) -> bool:
        return self.cooldown_remaining > 0

    async def reroll(self) -> Optional[Suggestion]:
        """Exclude the current pick and ask again with the same preferences.

        Raises:
            CooldownActiveError: a reroll happened less than the cooldown ago.
            InvalidTransitionError: there is no suggestion to reroll.
        """
        remaining = self.cooldown_remaining
        if remaining > 0:
            raise CooldownActiveError(remaining)
        if self.phase != Phase.RESULT or self.suggestion is None:
            raise InvalidTransitionError("Nothing to reroll")

        # Claim the cooldown before the first await so overlapping calls are rejected
        self._cooldown_until = self._clock() + self.cooldown_seconds

        current = self.suggestion
        newly_excluded = current.game.app_id not in self.excluded_ids
        if newly_excluded:
            self.excluded_ids.append(current.game.app_id)
            self.prior_reasonings.append(current.reasoning)

        if self._on_reroll and newly_excluded:
            try:
                await self._on_reroll(current.game.app_id)
            except Exception as e:
                logger.warning(f"Failed to record reroll for app_id={current.game.app_id}: {e}")

        return await self._fetch()

    async def countdown(self) -> AsyncIterator[int]:
        """Yield the remaining cooldown once per second, ending with 0."""
        while (remaining := self.cooldown_remaining) > 0:
            yield remaining
            await self._sleep(1)
        yield 0


# ── Session registry ─────────────────────────────────────────────

@dataclass
class _SessionSlot:
    user_id: int
    session: SuggestionSession
    last_used: float = field(default_factory=time.monotonic)


class SessionRegistry:
    """In-process store of live suggestion sessions, keyed by opaque id."""

    def __init__(self, idle_ttl_seconds: float = 3600, clock: Callable[[], float] = time.monotonic):
        self.idle_ttl_seconds = idle_ttl_seconds
        self._clock = clock
        self._slots: dict[str, _SessionSlot] = {}

    def add(self, user_id: int, session: SuggestionSession) -> str:
        self.purge_idle()
        session_id = uuid.uuid4().hex
        self._slots[session_id] = _SessionSlot(user_id, session, self._clock())
        return session_id

    def get(self, user_id: int, session_id: str) -> Optional[SuggestionSession]:
        slot = self._slots.get(session_id)
        if slot is None or slot.user_id != user_id:
            return None
        slot.last_used = self._clock()
        return slot.session

    def discard(self, user_id: int, session_id: str) -> bool:
        slot = self._slots.get(session_id)
        if slot is None or slot.user_id != user_id:
            return False
        slot.session.reset()
        del self._slots[session_id]
        return True

    def purge_idle(self) -> int:
        cutoff = self._clock() - self.idle_ttl_seconds
        stale = [sid for sid, slot in self._slots.items() if slot.last_used < cutoff]
        for sid in stale:
            del self._slots[sid]
        return len(stale)

    def __len__(self) -> int:
        return len(self._slots)
