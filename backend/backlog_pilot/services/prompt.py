"""Suggestion prompt building and model reply parsing.

The prompt is deterministic for a given input: same backlog, history and
preferences always render the same text.
"""

import json
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from backlog_pilot.errors import (
    InvalidAppIdError, InvalidReasoningError, MalformedReplyError,
    NoEligibleGamesError, NoJsonFoundError,
)
from backlog_pilot.services.game_store import LibraryEntry

HISTORY_LIMIT = 10


# ── Preferences ──────────────────────────────────────────────────

class Mood(str, Enum):
    ADRENALINE = "adrenaline"
    ENGAGED = "engaged"
    CHILL = "chill"
    POWER = "power"
    EMOTIONAL = "emotional"
    CURIOUS = "curious"


class Energy(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TimeCommitment(str, Enum):
    SHORT = "short"
    MEDIUM = "medium"
    LONG = "long"


@dataclass(frozen=True)
class Preferences:
    mood: Mood
    energy: Energy
    time: TimeCommitment


MOOD_DESCRIPTIONS = {
    Mood.ADRENALINE: "fast, demanding, focus-heavy, skill or reaction based gameplay",
    Mood.ENGAGED: "thinking, planning, problem-solving, meaningful choices",
    Mood.CHILL: "low pressure, cozy, forgiving gameplay with no stress",
    Mood.POWER: "power fantasy, feeling strong and overpowered, tearing through enemies",
    Mood.EMOTIONAL: "story-first, atmospheric, character-driven, memorable moments",
    Mood.CURIOUS: "weird, experimental, unique mechanics they have not seen before",
}

ENERGY_DESCRIPTIONS = {
    Energy.HIGH: "complex systems to learn, optimization, deep mechanics",
    Energy.MEDIUM: "familiar mechanics with some light thinking required",
    Energy.LOW: "minimal cognitive load, react-only, comfortable and easy to play",
}

TIME_DESCRIPTIONS = {
    TimeCommitment.SHORT: "1-5 hours to complete OR games playable in short sessions (roguelikes count!)",
    TimeCommitment.MEDIUM: "5-12 hours total, perfect for a few evenings",
    TimeCommitment.LONG: "20+ hours, deep commitment, epic adventures",
}


# ── Prompt ───────────────────────────────────────────────────────

def format_game_line(game: LibraryEntry) -> str:
    """One backlog line: name, id, genres, length, playtime, rating, skips."""
    parts = [f'"{game.name}" (ID: {game.app_id})']
    if game.genres:
        parts.append(f"Genres: {', '.join(game.genres)}")
    if game.main_story_hours:
        parts.append(f"Length: {game.main_story_hours:g}h")
    if game.playtime_forever > 0:
        parts.append(f"Already played: {int(game.playtime_forever / 60 + 0.5)}h")
    else:
        parts.append("Never played")
    if game.review_weighted is not None:
        parts.append(f"Rating: {game.review_weighted}%")
    if game.reroll_count > 0:
        plural = "s" if game.reroll_count > 1 else ""
        parts.append(f"(Skipped {game.reroll_count} time{plural} before)")
    return " | ".join(parts)


def _history_line(label: str, hint: str, names: list[str], empty: str) -> str:
    if not names:
        return empty
    line = f"**Games they {label}** ({hint}): {', '.join(names[:HISTORY_LIMIT])}"
    if len(names) > HISTORY_LIMIT:
        line += f" and {len(names) - HISTORY_LIMIT} more"
    return line


def build_prompt(
    preferences: Preferences,
    candidates: list[LibraryEntry],
    finished: list[str],
    dropped: list[str],
    excluded_ids: Iterable[int] = (),
    prior_reasonings: Optional[list[str]] = None,
) -> str:
    """Render the recommendation brief for the completion service.

    Raises:
        NoEligibleGamesError: every candidate is excluded (or there are none).
    """
    excluded = set(excluded_ids)
    eligible = [g for g in candidates if g.app_id not in excluded]
    if not eligible:
        raise NoEligibleGamesError("No eligible games to suggest")

    prior_reasonings = prior_reasonings or []
    games_list = "\n".join(format_game_line(g) for g in eligible)

    sections = [
        "You are a game recommendation assistant helping a user pick their next game "
        "from their Steam backlog.",
        "## USER'S CURRENT MOOD & PREFERENCES",
        f"**Desired feeling:** {MOOD_DESCRIPTIONS[Mood(preferences.mood)]}\n"
        f"**Mental energy level:** {ENERGY_DESCRIPTIONS[Energy(preferences.energy)]}\n"
        f"**Time commitment:** {TIME_DESCRIPTIONS[TimeCommitment(preferences.time)]}",
        f"## THEIR BACKLOG ({len(eligible)} eligible games)",
        games_list,
        "## USER'S GAMING HISTORY (use this to personalize your recommendation)",
        _history_line(
            "FINISHED",
            "they liked these enough to complete them, similar games are likely safe picks",
            finished,
            "No finished games yet.",
        ),
        _history_line(
            "DROPPED",
            "they lost interest, be cautious with similar styles or genres",
            dropped,
            "No dropped games.",
        ),
        '**Playtime patterns in backlog:** "Already played" means they tried it and may want '
        "to continue. \"Never played\" games are completely fresh.",
        "## YOUR TASK",
        "Pick ONE game from the backlog that best matches the current mood, energy, and time "
        "preferences. Consider:\n"
        "- Their history matters: finished similar games are a strong signal, dropped similar "
        "games call for caution.\n"
        "- Games they already started may be good to continue; fresh games suit new experiences.\n"
        "- Games skipped before should be deprioritized, not excluded.\n"
        "- Higher-rated games are generally safer picks.\n"
        "- Match the time commitment (roguelikes work for short sessions even if total length is long).\n"
        "- Match the mood and genre.",
        "Write the reasoning in second person, speaking directly to the user (\"you/your\"). "
        "Reference their history when relevant.",
    ]

    if prior_reasonings:
        quoted = "\n".join(f'{i}. "{r}"' for i, r in enumerate(prior_reasonings, start=1))
        sections.append(
            "AVOID REPETITION: The user has rerolled. These are your previous suggestions. "
            "Do NOT repeat the same reasoning patterns or reference the same games from their "
            f"history:\n{quoted}\n"
            "Use DIFFERENT examples from their history and vary your reasoning style."
        )

    sections.append(
        "Respond with ONLY a single valid JSON object in this exact format:\n"
        "{\n"
        '  "app_id": <integer ID of the chosen game>,\n'
        '  "reasoning": "<non-empty string: 2-3 sentences on why this game fits your mood, '
        'energy level and time>"\n'
        "}"
    )
    return "\n\n".join(sections)


# ── Reply parsing ────────────────────────────────────────────────

@dataclass
class ParsedReply:
    app_id: int
    reasoning: str


def extract_json_object(text: str) -> Optional[str]:
    """First balanced ``{...}`` in ``text``, ignoring braces inside strings."""
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return text[start:i + 1]
    return None


def parse_reply(text: str) -> ParsedReply:
    """Parse the model's answer into an app id and reasoning.

    Tolerates prose and markdown code fences around the JSON object.
    """
    candidate = extract_json_object(text or "")
    if candidate is None:
        raise NoJsonFoundError("No JSON object found in model reply")

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise MalformedReplyError(f"Model reply is not valid JSON: {e}") from e

    app_id = parsed.get("app_id")
    if isinstance(app_id, bool) or not isinstance(app_id, (int, float)):
        raise InvalidAppIdError(f"Invalid app_id in model reply: {app_id!r}")
    if isinstance(app_id, float):
        if not app_id.is_integer():
            raise InvalidAppIdError(f"Non-integer app_id in model reply: {app_id!r}")
        app_id = int(app_id)

    reasoning = parsed.get("reasoning")
    if not isinstance(reasoning, str) or not reasoning.strip():
        raise InvalidReasoningError("Missing or empty reasoning in model reply")

    return ParsedReply(app_id=app_id, reasoning=reasoning)
