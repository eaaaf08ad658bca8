"""
Tests for the automated player loop and the LLM move chooser.
"""

import json
import random
from types import SimpleNamespace

import pytest

from game_2048 import Direction, GameState
from llm_plays_2048 import (
    get_llm_move,
    get_move_tool_schema,
    make_llm_chooser,
    parse_direction,
    play_game,
    random_policy,
)


def stub_rng(draws):
    it = iter(draws)
    return lambda: next(it)


# Two 2s in the top-left corner: (0, 0) then (0, 1)
OPENING_DRAWS = [0.0, 0.05, 0.0, 0.05]


def fixed_chooser(*directions):
    it = iter(directions)
    return lambda state: (Direction(next(it)), None)


def read_log(path):
    with open(path) as f:
        return json.load(f)


class FakeCompletions:
    """Stands in for client.chat.completions, replaying canned messages."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(choices=[SimpleNamespace(message=reply)])


def fake_client(replies):
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(replies)))


def text_reply(content):
    return SimpleNamespace(content=content, tool_calls=None)


def tool_reply(direction, call_id="call_1", content=""):
    function = SimpleNamespace(name="make_move", arguments=json.dumps({"direction": direction}))
    return SimpleNamespace(content=content, tool_calls=[SimpleNamespace(id=call_id, function=function)])


def start_state():
    grid = [[2, 2, 0, 0], [0] * 4, [0] * 4, [0] * 4]
    return GameState(grid=grid, score=0, won=False, over=False)


@pytest.mark.parametrize("text, expected", [
    ("I will go left.\n\nFINAL_RESPONSE: LEFT", Direction.LEFT),
    ("final_response: down", Direction.DOWN),
    ("FINAL_RESPONSE:UP", Direction.UP),
    ("Let's go right", None),
    ("", None),
    (None, None),
])
def test_parse_direction(text, expected):
    assert parse_direction(text) == expected


def test_tool_schema_lists_all_directions():
    schema = get_move_tool_schema()
    enum = schema["function"]["parameters"]["properties"]["direction"]["enum"]
    assert enum == ["up", "down", "left", "right"]


def test_random_policy_maps_draws_to_directions():
    choose = random_policy(stub_rng([0.0, 0.3, 0.6, 0.99, 1.0]))
    chosen = [choose(None)[0] for _ in range(5)]
    assert chosen == [Direction.UP, Direction.DOWN, Direction.LEFT, Direction.RIGHT, Direction.RIGHT]


class TestPlayGame:

    def test_logs_accepted_move_and_final_stats(self, tmp_path):
        log_file = tmp_path / "logs" / "game_log_test.json"
        # after LEFT the only new tile lands on (0, 1)
        rng = stub_rng(OPENING_DRAWS + [0.0, 0.05])

        state = play_game(fixed_chooser("left"), log_file=str(log_file), rng=rng, max_moves=1)

        assert state.score == 4
        assert state.grid[0] == [4, 2, 0, 0]

        log = read_log(log_file)
        assert [entry.get("action") for entry in log[:-1]] == ["INITIAL", "LEFT"]
        assert log[0]["game_state"][0] == [2, 2, 0, 0]
        assert log[1]["current_score"] == 4
        assert log[1]["max_tile"] == 4
        assert log[-1] == {
            "final_score": 4,
            "max_tile": 4,
            "won": False,
            "game_end_reason": "max_moves_reached",
            "total_moves": 1,
        }

    def test_stops_after_consecutive_invalid_moves(self, tmp_path):
        log_file = tmp_path / "game_log_invalid.json"
        feedback_calls = []

        def feedback(direction, response_data, state, valid):
            feedback_calls.append((direction, valid))

        state = play_game(
            fixed_chooser("up", "up", "up"),
            log_file=str(log_file),
            rng=stub_rng(OPENING_DRAWS),
            max_consecutive_invalid_moves=2,
            feedback=feedback,
        )

        assert state.score == 0
        log = read_log(log_file)
        assert [entry.get("invalid_move") for entry in log[1:-1]] == [True, True]
        assert log[-1]["game_end_reason"] == "too_many_invalid_moves_2"
        assert log[-1]["total_moves"] == 0
        assert feedback_calls == [(Direction.UP, False)]

    def test_chooser_error_ends_game(self, tmp_path):
        log_file = tmp_path / "game_log_error.json"

        def broken_chooser(state):
            raise ValueError("boom")

        play_game(broken_chooser, log_file=str(log_file), rng=stub_rng(OPENING_DRAWS))

        log = read_log(log_file)
        assert len(log) == 2
        assert log[-1]["game_end_reason"] == "error: boom"

    def test_random_game_runs_to_the_end(self, tmp_path):
        log_file = tmp_path / "game_log_random.json"
        state = play_game(
            random_policy(random.Random(1).random),
            log_file=str(log_file),
            rng=random.Random(0).random,
            max_moves=5000,
            max_consecutive_invalid_moves=50,
        )

        log = read_log(log_file)
        final = log[-1]
        assert final["final_score"] == state.score
        assert final["game_end_reason"] in ("no_moves_available", "too_many_invalid_moves_50")
        scores = [entry["current_score"] for entry in log[:-1]]
        assert scores == sorted(scores)


class TestGetLLMMove:

    def test_retries_until_direction_is_parsed(self):
        client = fake_client([text_reply("hmm"), text_reply("FINAL_RESPONSE: LEFT")])
        messages = []

        direction, response_data = get_llm_move(client, start_state(), messages, max_retries=3)

        assert direction == Direction.LEFT
        assert response_data == {"llm_reasoning": "FINAL_RESPONSE: LEFT"}
        assert [m["role"] for m in messages] == ["user", "assistant"]
        assert "Here are the rules" in messages[0]["content"]
        assert "Score: 0" in messages[0]["content"]

    def test_api_errors_are_retried(self):
        client = fake_client([RuntimeError("rate limited"), text_reply("FINAL_RESPONSE: UP")])
        direction, _ = get_llm_move(client, start_state(), [], max_retries=2)
        assert direction == Direction.UP

    def test_raises_after_max_retries(self):
        client = fake_client([text_reply("no idea")] * 2)
        with pytest.raises(ValueError):
            get_llm_move(client, start_state(), [], max_retries=2)

    def test_function_calling(self):
        client = fake_client([tool_reply("down", content="going down")])
        messages = []

        direction, response_data = get_llm_move(client, start_state(), messages, use_function_calling=True)

        assert direction == Direction.DOWN
        assert response_data["llm_reasoning"] == "going down"
        assert response_data["tool_call"]["id"] == "call_1"
        assert messages[-1]["tool_calls"][0]["id"] == "call_1"
        assert client.chat.completions.calls[0]["tools"] == [get_move_tool_schema()]

    def test_follow_up_prompt_omits_rules(self):
        messages = [{"role": "user", "content": "earlier"}, {"role": "assistant", "content": "earlier"}]
        client = fake_client([text_reply("FINAL_RESPONSE: RIGHT")])
        get_llm_move(client, start_state(), messages)
        assert "Here are the rules" not in messages[2]["content"]


class TestLLMChooser:

    def test_keeps_only_recent_valid_exchanges(self):
        client = fake_client([text_reply("FINAL_RESPONSE: LEFT"), text_reply("FINAL_RESPONSE: RIGHT")])
        choose_move, feedback = make_llm_chooser(client, context_window_moves=1)
        state = start_state()

        direction, data = choose_move(state)
        feedback(direction, data, state, True)
        direction, data = choose_move(state)
        feedback(direction, data, state, True)

        sent = client.chat.completions.calls[-1]["messages"]
        assert [m["role"] for m in sent] == ["user", "assistant"]
        assert sent[1]["content"] == "FINAL_RESPONSE: RIGHT"

    def test_invalid_move_feedback_in_function_calling_mode(self):
        client = fake_client([tool_reply("up", call_id="call_9"), tool_reply("left", call_id="call_10")])
        choose_move, feedback = make_llm_chooser(client, use_function_calling=True)
        state = start_state()

        direction, data = choose_move(state)
        feedback(direction, data, state, False)
        choose_move(state)

        sent = client.chat.completions.calls[-1]["messages"]
        tool_messages = [m for m in sent if m["role"] == "tool"]
        assert tool_messages[0]["tool_call_id"] == "call_9"
        assert "Invalid move" in tool_messages[0]["content"]
