"""Tests for lifecycle decoding and the game state machine."""

import json
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from stash_agent.decision_agent import DecisionAgent
from stash_agent.errors import EventDecodeError, ForecastError, SubmissionError, PlatformError
from stash_agent.lifecycle import (
    JOINED,
    WATCHING,
    GameLifecycleHandler,
    decode_game,
    decode_message,
)
from stash_agent.models import Asset, Forecast, GameSession, HistoryEntry, Participant, UP, DOWN
from stash_agent.storage import HistoryStore

AGENT = "Pinky 🧠"


class FakePlatform:
    def __init__(self, assets=None, join_error=None, assets_error=None):
        self.assets = assets if assets is not None else [Asset("A"), Asset("B"), Asset("C")]
        self.join_error = join_error
        self.assets_error = assets_error
        self.wagers = []
        self.asset_requests = 0

    def fetch_assets(self):
        self.asset_requests += 1
        if self.assets_error is not None:
            raise self.assets_error
        return list(self.assets)

    def join_game(self, wager):
        self.wagers.append(wager)
        if self.join_error is not None:
            raise self.join_error
        return {"ok": True}


class FakeForecastClient:
    def __init__(self, forecasts=None):
        self.forecasts = forecasts or {
            "A": Forecast("A", UP, 0.9),
            "B": Forecast("B", DOWN, 0.6),
            "C": Forecast("C", UP, 0.3),
        }

    def fetch_forecast(self, symbol):
        if symbol not in self.forecasts:
            raise ForecastError(symbol, "no model")
        return self.forecasts[symbol]


class ScriptedReasoner:
    def __init__(self, response='[{"token": "A", "prediction": 1}, {"token": "B", "prediction": -1}]'):
        self.response = response
        self.prompts = []

    def __call__(self, prompt, schema):
        self.prompts.append(prompt)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response


def _handler(platform=None, reasoner=None, store=None, forecasts=None, executor=None):
    return GameLifecycleHandler(
        platform=platform or FakePlatform(),
        forecast_client=FakeForecastClient(forecasts),
        decision_agent=DecisionAgent(reasoner=reasoner or ScriptedReasoner(), expected_selections=3),
        store=store if store is not None else HistoryStore(),
        username=AGENT,
        stake_amount=1000,
        history_window=3,
        forecast_workers=3,
        executor=executor,
    )


def _message(payload, event="game_update"):
    return json.dumps({"topic": "games:lobby", "event": event, "payload": payload})


def _waiting(game_id="g1", participants=()):
    return _message({
        "id": game_id,
        "state": "waiting_for_players",
        "participants": [{"username": u, "tokens": 1000, "coins": {}} for u in participants],
    })


def _ended(game_id="g1", prices=None, rankings=None):
    return _message({
        "id": game_id,
        "state": "ended",
        "participants": [],
        "rankings": rankings if rankings is not None else [
            {"username": "rival", "rank": 1, "points": 90, "tokens": 1000},
            {"username": AGENT, "rank": 2, "points": 50, "tokens": 1000},
        ],
        "prices": prices if prices is not None else {"A": [1.0, 1.1], "B": [2.0, 1.8]},
    })


# Decoding

def test_decode_message_ignores_other_events():
    assert decode_message(_message({}, event="phx_reply")) is None
    assert decode_message(json.dumps({"event": "heartbeat", "payload": {}})) is None


def test_decode_message_builds_game_session():
    game = decode_message(_ended())

    assert game.id == "g1"
    assert game.state == "ended"
    assert game.find_ranking(AGENT).rank == 2
    assert game.find_ranking(AGENT).points == 50
    assert game.price_series == {"A": [1.0, 1.1], "B": [2.0, 1.8]}


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {"state": "ended"},
        {"id": "g1"},
        {"id": "g1", "state": "ended", "participants": "nobody"},
        {"id": "g1", "state": "ended", "participants": [{"tokens": 5}]},
        {"id": "g1", "state": "ended", "rankings": [{"username": "x", "rank": "first", "points": 1}]},
        {"id": "g1", "state": "ended", "rankings": [{"username": "x", "rank": 1}]},
        {"id": "g1", "state": "ended", "prices": {"A": [1.0, "up"]}},
        {"id": "g1", "state": "ended", "prices": [1.0, 2.0]},
    ],
)
def test_decode_game_rejects_malformed_payloads(payload):
    with pytest.raises(EventDecodeError):
        decode_game(payload)


def test_decode_message_rejects_non_json():
    with pytest.raises(EventDecodeError):
        decode_message("{not json")


def test_has_participant_is_case_insensitive():
    game = GameSession(id="g", state="waiting_for_players", participants=[Participant("PINKY 🧠")])

    assert game.has_participant(AGENT)


# Joining

def test_new_game_runs_pipeline_and_joins_with_decision():
    platform = FakePlatform()
    reasoner = ScriptedReasoner()
    handler = _handler(platform=platform, reasoner=reasoner)

    handler.handle_message(_waiting("g1"))

    prompt = reasoner.prompts[0]
    assert prompt.index("symbol: A,") < prompt.index("symbol: B,") < prompt.index("symbol: C,")
    assert "Previous game outcome" not in prompt

    assert len(platform.wagers) == 1
    wager = platform.wagers[0]
    assert wager.game_id == "g1"
    assert wager.selections == {"A": 1, "B": -1}
    assert wager.stake_amount == 1000

    assert handler.state == JOINED
    assert handler.active_game_id == "g1"
    assert handler.active_predictions == {"A": 1, "B": -1}


def test_no_join_when_already_a_participant():
    platform = FakePlatform()
    reasoner = ScriptedReasoner()
    handler = _handler(platform=platform, reasoner=reasoner)

    handler.handle_message(_waiting("g1", participants=["rival", "pinky 🧠"]))

    assert platform.wagers == []
    assert platform.asset_requests == 0
    assert reasoner.prompts == []
    assert handler.state == WATCHING


def test_duplicate_waiting_event_for_joined_game_is_ignored():
    platform = FakePlatform()
    handler = _handler(platform=platform)

    handler.handle_message(_waiting("g1"))
    handler.handle_message(_waiting("g1"))

    assert len(platform.wagers) == 1


def test_decision_failure_submits_nothing_and_returns_to_watching():
    platform = FakePlatform()
    handler = _handler(platform=platform, reasoner=ScriptedReasoner('[{"token": "A", "prediction": 5}]'))

    handler.handle_message(_waiting("g1"))

    assert platform.wagers == []
    assert handler.state == WATCHING


def test_reasoning_call_failure_aborts_game():
    platform = FakePlatform()
    handler = _handler(platform=platform, reasoner=ScriptedReasoner(TimeoutError("slow")))

    handler.handle_message(_waiting("g1"))

    assert platform.wagers == []
    assert handler.state == WATCHING


def test_submission_failure_returns_to_watching():
    platform = FakePlatform(join_error=SubmissionError("g1", "rejected", 409))
    handler = _handler(platform=platform)

    handler.handle_message(_waiting("g1"))

    assert len(platform.wagers) == 1
    assert handler.state == WATCHING
    assert handler.active_predictions == {}


def test_asset_listing_failure_aborts_game():
    platform = FakePlatform(assets_error=PlatformError("503"))
    handler = _handler(platform=platform)

    handler.handle_message(_waiting("g1"))

    assert platform.wagers == []
    assert handler.state == WATCHING


def test_all_forecasts_failing_aborts_game():
    platform = FakePlatform(assets=[Asset("X"), Asset("Y")])
    reasoner = ScriptedReasoner()
    handler = _handler(platform=platform, reasoner=reasoner)

    handler.handle_message(_waiting("g1"))

    assert reasoner.prompts == []
    assert platform.wagers == []
    assert handler.state == WATCHING


def test_malformed_message_is_dropped():
    handler = _handler()

    assert handler.handle_message("garbage") is None
    assert handler.state == WATCHING


def test_new_game_while_joined_abandons_stale_game():
    platform = FakePlatform()
    store = HistoryStore()
    handler = _handler(platform=platform, store=store)

    handler.handle_message(_waiting("g1"))
    handler.handle_message(_waiting("g2"))

    assert [w.game_id for w in platform.wagers] == ["g1", "g2"]
    assert handler.active_game_id == "g2"
    assert len(store) == 0

    handler.handle_message(_ended("g1"))
    assert handler.active_game_id == "g2"
    assert len(store) == 0


# Scoring

def test_end_of_joined_game_appends_history_and_returns_to_watching():
    store = HistoryStore()
    handler = _handler(store=store)

    handler.handle_message(_waiting("g1"))
    handler.handle_message(_ended("g1"))

    assert [(e.symbol, e.predicted_direction, e.success, e.points_earned, e.rank) for e in store.all_entries()] == [
        ("A", 1, True, 50, 2),
        ("B", -1, True, 50, 2),
    ]
    assert handler.state == WATCHING
    assert handler.active_predictions == {}


def test_end_without_own_ranking_still_returns_to_watching():
    store = HistoryStore()
    handler = _handler(store=store)

    handler.handle_message(_waiting("g1"))
    handler.handle_message(_ended("g1", rankings=[{"username": "rival", "rank": 1, "points": 90}]))

    assert len(store) == 0
    assert handler.state == WATCHING


def test_end_of_untracked_game_is_ignored():
    store = HistoryStore()
    handler = _handler(store=store)

    handler.handle_message(_ended("other"))

    assert len(store) == 0
    assert handler.state == WATCHING


def test_history_feeds_the_next_decision():
    reasoner = ScriptedReasoner()
    handler = _handler(reasoner=reasoner)

    handler.handle_message(_waiting("g1"))
    handler.handle_message(_ended("g1"))
    handler.handle_message(_waiting("g2"))

    second_prompt = reasoner.prompts[1]
    assert "Previous game outcome:\nRanking: 2\n" in second_prompt
    assert "A (1) Success true Points 50" in second_prompt
    assert "B (-1) Success true Points 50" in second_prompt


def test_history_window_limits_feedback():
    store = HistoryStore()
    for i in range(5):
        store.append(HistoryEntry(f"OLD{i}", UP, False, 0.0, 9))
    reasoner = ScriptedReasoner()
    handler = _handler(reasoner=reasoner, store=store)

    handler.handle_message(_waiting("g1"))

    prompt = reasoner.prompts[0]
    assert "OLD1 " not in prompt
    assert all(f"OLD{i} (1)" in prompt for i in (2, 3, 4))


def test_connection_loss_keeps_game_tracked():
    store = HistoryStore()
    handler = _handler(store=store)

    handler.handle_message(_waiting("g1"))
    handler.on_connection_lost()

    assert handler.state == JOINED

    handler.handle_message(_ended("g1"))
    assert len(store) == 2


def test_pipeline_runs_on_executor():
    platform = FakePlatform()
    store = HistoryStore()

    with ThreadPoolExecutor(max_workers=1) as executor:
        handler = _handler(platform=platform, store=store, executor=executor)
        join = handler.handle_message(_waiting("g1"))
        join.result(timeout=5)
        assert handler.handle_message(_ended("g1")) is None

    assert len(platform.wagers) == 1
    assert len(store) == 2


class SlowHistoryStore(HistoryStore):
    def extend(self, entries):
        time.sleep(0.3)
        super().extend(entries)


def test_next_game_is_joined_after_slow_scoring_with_parallel_workers():
    platform = FakePlatform()
    store = SlowHistoryStore()

    with ThreadPoolExecutor(max_workers=2) as executor:
        handler = _handler(platform=platform, store=store, executor=executor)
        handler.handle_message(_waiting("g1")).result(timeout=5)

        assert handler.handle_message(_ended("g1")) is None
        assert handler.state == WATCHING

        handler.handle_message(_waiting("g2")).result(timeout=5)

    assert [w.game_id for w in platform.wagers] == ["g1", "g2"]
    assert len(store) == 2
    assert handler.active_game_id == "g2"
