"""
Tests for suggestion prompt building and reply parsing
"""
import pytest

from backlog_pilot.errors import (
    InvalidAppIdError, InvalidReasoningError, MalformedReplyError,
    NoEligibleGamesError, NoJsonFoundError,
)
from backlog_pilot.services.prompt import (
    MOOD_DESCRIPTIONS, Energy, Mood, Preferences, TimeCommitment,
    build_prompt, extract_json_object, format_game_line, parse_reply,
)
from tests.conftest import make_game

PREFS = Preferences(Mood.CHILL, Energy.LOW, TimeCommitment.SHORT)


class TestFormatGameLine:
    """One line per backlog game"""

    def test_full_line(self):
        game = make_game(
            620, "Portal 2", genres=["Action", "Puzzle"], main_story_hours=8.5,
            playtime_forever=95, review_weighted=91, reroll_count=2,
        )
        assert format_game_line(game) == (
            '"Portal 2" (ID: 620) | Genres: Action, Puzzle | Length: 8.5h | '
            "Already played: 2h | Rating: 91% | (Skipped 2 times before)"
        )

    def test_minimal_line(self):
        game = make_game(1, "Mystery", genres=[], main_story_hours=None, review_weighted=None)
        assert format_game_line(game) == '"Mystery" (ID: 1) | Never played'

    def test_single_skip(self):
        assert format_game_line(make_game(1, reroll_count=1)).endswith("(Skipped 1 time before)")


class TestBuildPrompt:
    """Deterministic recommendation brief"""

    def test_contains_preferences_and_games(self):
        prompt = build_prompt(PREFS, [make_game(1, "Stardew Valley"), make_game(2, "Celeste")], [], [])

        assert MOOD_DESCRIPTIONS[Mood.CHILL] in prompt
        assert "THEIR BACKLOG (2 eligible games)" in prompt
        assert '"Stardew Valley" (ID: 1)' in prompt
        assert "No finished games yet." in prompt
        assert "No dropped games." in prompt
        assert prompt.rstrip().endswith("}")

    def test_is_deterministic(self):
        games = [make_game(1), make_game(2)]
        assert build_prompt(PREFS, games, ["A"], ["B"]) == build_prompt(PREFS, games, ["A"], ["B"])

    def test_excluded_games_are_left_out(self):
        prompt = build_prompt(PREFS, [make_game(1, "Keep"), make_game(2, "Skip")], [], [], excluded_ids=[2])

        assert '"Keep"' in prompt
        assert '"Skip"' not in prompt
        assert "(1 eligible games)" in prompt

    def test_everything_excluded_raises(self):
        with pytest.raises(NoEligibleGamesError):
            build_prompt(PREFS, [make_game(1)], [], [], excluded_ids=[1])

    def test_no_candidates_raises(self):
        with pytest.raises(NoEligibleGamesError):
            build_prompt(PREFS, [], [], [])

    def test_history_is_capped_at_ten(self):
        finished = [f"Finished {i}" for i in range(14)]
        prompt = build_prompt(PREFS, [make_game(1)], finished, ["Dropped 1"])

        assert "Finished 9" in prompt
        assert "Finished 10," not in prompt
        assert "and 4 more" in prompt
        assert "Dropped 1" in prompt

    def test_repetition_block_only_with_prior_reasonings(self):
        games = [make_game(1)]
        assert "AVOID REPETITION" not in build_prompt(PREFS, games, [], [], prior_reasonings=[])

        prompt = build_prompt(PREFS, games, [], [], prior_reasonings=["You loved Hades.", "Cozy vibes."])
        assert "AVOID REPETITION" in prompt
        assert '1. "You loved Hades."' in prompt
        assert '2. "Cozy vibes."' in prompt


class TestParseReply:
    """Model reply validation"""

    def test_plain_json(self):
        parsed = parse_reply('{"app_id": 620, "reasoning": "You want puzzles."}')
        assert parsed.app_id == 620
        assert parsed.reasoning == "You want puzzles."

    def test_prose_and_code_fences(self):
        text = 'Sure! Here you go:\n```json\n{"app_id": 42, "reasoning": "Short {and} sweet."}\n```\nEnjoy.'
        assert parse_reply(text).app_id == 42

    def test_nested_object_is_kept_whole(self):
        text = '{"app_id": 7, "reasoning": "ok", "extra": {"a": 1}} trailing {"app_id": 8}'
        assert parse_reply(text).app_id == 7

    def test_integral_float_is_accepted(self):
        assert parse_reply('{"app_id": 620.0, "reasoning": "ok"}').app_id == 620

    def test_no_json(self):
        with pytest.raises(NoJsonFoundError):
            parse_reply("I think you should play Portal 2.")

    def test_empty_reply(self):
        with pytest.raises(NoJsonFoundError):
            parse_reply("")

    def test_unbalanced_braces(self):
        with pytest.raises(NoJsonFoundError):
            parse_reply('{"app_id": 1, "reasoning": "cut off')

    def test_invalid_json(self):
        with pytest.raises(MalformedReplyError):
            parse_reply("{app_id: 1, reasoning: 'single quotes'}")

    @pytest.mark.parametrize("app_id", ['"620"', "true", "null", "620.5", "[620]"])
    def test_invalid_app_id(self, app_id):
        with pytest.raises(InvalidAppIdError):
            parse_reply(f'{{"app_id": {app_id}, "reasoning": "ok"}}')

    def test_missing_app_id(self):
        with pytest.raises(InvalidAppIdError):
            parse_reply('{"reasoning": "ok"}')

    @pytest.mark.parametrize("reasoning", ['""', '"   "', "42", "null"])
    def test_invalid_reasoning(self, reasoning):
        with pytest.raises(InvalidReasoningError):
            parse_reply(f'{{"app_id": 1, "reasoning": {reasoning}}}')

    def test_specific_errors_are_malformed_replies(self):
        assert issubclass(InvalidAppIdError, MalformedReplyError)
        assert issubclass(NoJsonFoundError, MalformedReplyError)

    def test_extract_ignores_braces_in_strings(self):
        assert extract_json_object('x {"a": "}"} y') == '{"a": "}"}'
