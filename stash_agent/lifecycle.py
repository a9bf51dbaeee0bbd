"""
Game lifecycle handling.

This module decodes lifecycle messages from the lobby connection and drives a
small state machine over them: a game waiting for players triggers the join
pipeline (assets -> forecasts -> decision -> wager), and the end of the joined
game triggers outcome scoring into the history store.

States:
    watching -> joining -> joined -> scoring -> watching

Only one game is tracked at a time.
"""

import json
import logging
import threading
from concurrent.futures import Executor, Future
from dataclasses import dataclass, field
from typing import Any, Optional

from stash_agent.config import Config
from stash_agent.decision_agent import DecisionAgent
from stash_agent.errors import AgentError, EventDecodeError, PlatformError
from stash_agent.forecaster import ForecastClient, aggregate_forecasts
from stash_agent.models import (
    Decision,
    GameSession,
    Participant,
    Ranking,
    WAITING_FOR_PLAYERS,
    ENDED,
)
from stash_agent.platform_client import PlatformClient
from stash_agent.scorer import score_game
from stash_agent.storage import HistoryStore
from stash_agent.submitter import submit_wager
from stash_agent.utils import is_number

# Configure module logger
logger = logging.getLogger(__name__)

GAME_UPDATE_EVENT = "game_update"

WATCHING = "watching"
JOINING = "joining"
JOINED = "joined"
SCORING = "scoring"


# Message decoding

def decode_message(raw: str | bytes) -> Optional[GameSession]:
    """
    Decode a lobby message into a game snapshot.

    Args:
        raw: Text frame received from the lobby connection

    Returns:
        GameSession for "game_update" messages, None for any other event

    Raises:
        EventDecodeError: If the frame is not JSON or the payload is malformed
    """
    try:
        message = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise EventDecodeError(f"message is not valid JSON: {e}") from e

    if not isinstance(message, dict):
        raise EventDecodeError(f"expected a message object, got {type(message).__name__}")

    if message.get("event") != GAME_UPDATE_EVENT:
        return None

    return decode_game(message.get("payload"))


def decode_game(payload: Any) -> GameSession:
    """
    Decode a game_update payload with strict type checks.

    Raises:
        EventDecodeError: On missing identifiers or wrongly typed fields
    """
    if not isinstance(payload, dict):
        raise EventDecodeError("game_update payload must be an object")

    game_id = payload.get("id")
    state = payload.get("state")
    if not isinstance(game_id, str) or not game_id:
        raise EventDecodeError("game_update payload has no id")
    if not isinstance(state, str) or not state:
        raise EventDecodeError(f"game {game_id} has no state")

    raw_participants = payload.get("participants") or []
    if not isinstance(raw_participants, list):
        raise EventDecodeError(f"game {game_id}: participants must be a list")

    participants = [_decode_participant(game_id, p) for p in raw_participants]

    rankings = None
    if payload.get("rankings") is not None:
        if not isinstance(payload["rankings"], list):
            raise EventDecodeError(f"game {game_id}: rankings must be a list")
        rankings = [_decode_ranking(game_id, r) for r in payload["rankings"]]

    price_series = None
    if payload.get("prices") is not None:
        price_series = _decode_prices(game_id, payload["prices"])

    return GameSession(
        id=game_id,
        state=state,
        participants=participants,
        rankings=rankings,
        price_series=price_series,
    )


def _decode_participant(game_id: str, data: Any) -> Participant:
    if not isinstance(data, dict) or not isinstance(data.get("username"), str):
        raise EventDecodeError(f"game {game_id}: participant without username")

    coins = data.get("coins") or {}
    if not isinstance(coins, dict):
        raise EventDecodeError(f"game {game_id}: participant coins must be an object")

    stake = data.get("tokens")
    return Participant(
        username=data["username"],
        stake=float(stake) if is_number(stake) else None,
        selections={k: float(v) for k, v in coins.items() if is_number(v)},
    )


def _decode_ranking(game_id: str, data: Any) -> Ranking:
    if not isinstance(data, dict) or not isinstance(data.get("username"), str):
        raise EventDecodeError(f"game {game_id}: ranking without username")

    rank = data.get("rank")
    points = data.get("points")
    if not is_number(rank) or not float(rank).is_integer():
        raise EventDecodeError(f"game {game_id}: invalid rank {rank!r}")
    if not is_number(points):
        raise EventDecodeError(f"game {game_id}: invalid points {points!r}")

    stake = data.get("tokens")
    return Ranking(
        username=data["username"],
        rank=int(rank),
        points=points,
        stake=float(stake) if is_number(stake) else None,
    )


def _decode_prices(game_id: str, data: Any) -> dict[str, list[float]]:
    if not isinstance(data, dict):
        raise EventDecodeError(f"game {game_id}: prices must be an object")

    series: dict[str, list[float]] = {}
    for symbol, prices in data.items():
        if not isinstance(prices, list) or not all(is_number(p) for p in prices):
            raise EventDecodeError(f"game {game_id}: price series for {symbol} must be a list of numbers")
        series[symbol] = [float(p) for p in prices]
    return series


# State machine

@dataclass
class GameContext:
    """The game currently tracked by the handler, with its submitted predictions."""
    game_id: str
    state: str
    predictions: Decision = field(default_factory=dict)


class GameLifecycleHandler:
    """
    State machine driven by lifecycle events for a single active game.

    Pipelines run on the given executor so the connection's read loop is
    never blocked by network calls. The active game context is owned by the
    handler and guarded by a lock; the lock is never held across a network
    call.
    """

    def __init__(
        self,
        platform: PlatformClient,
        forecast_client: ForecastClient,
        decision_agent: DecisionAgent,
        store: HistoryStore,
        username: Optional[str] = None,
        stake_amount: Optional[int] = None,
        history_window: Optional[int] = None,
        forecast_workers: Optional[int] = None,
        executor: Optional[Executor] = None,
    ):
        self.platform = platform
        self.forecast_client = forecast_client
        self.decision_agent = decision_agent
        self.store = store
        self.username = username or Config.AGENT_USERNAME
        self.stake_amount = stake_amount or Config.STAKE_AMOUNT
        self.history_window = Config.HISTORY_WINDOW if history_window is None else history_window
        self.forecast_workers = forecast_workers
        self.executor = executor

        self._lock = threading.Lock()
        self._context: Optional[GameContext] = None

    @property
    def state(self) -> str:
        with self._lock:
            return self._context.state if self._context else WATCHING

    @property
    def active_game_id(self) -> Optional[str]:
        with self._lock:
            return self._context.game_id if self._context else None

    @property
    def active_predictions(self) -> Decision:
        with self._lock:
            return dict(self._context.predictions) if self._context else {}

    def handle_message(self, raw: str | bytes) -> Optional[Future]:
        """
        Entry point for raw frames from the lobby connection.

        Malformed messages are logged and dropped. Join pipelines run on the
        executor when one is configured, inline otherwise. End-of-game scoring
        makes no network calls and always runs inline, so the next game's
        event is only handled once scoring has returned to watching.

        Returns:
            The submitted Future, or None if nothing was scheduled
        """
        try:
            game = decode_message(raw)
        except EventDecodeError as e:
            logger.warning(f"Dropping malformed lifecycle message: {e}")
            return None

        if game is None:
            return None

        if self.executor is None or game.state == ENDED:
            self.process_update(game)
            return None

        return self.executor.submit(self.process_update, game)

    def process_update(self, game: GameSession) -> None:
        """Process a game update, logging any unexpected failure instead of raising."""
        try:
            self.on_game_update(game)
        except Exception as e:
            logger.error(f"Unhandled error processing game {game.id}: {e}", exc_info=True)

    def on_game_update(self, game: GameSession) -> None:
        """Route a decoded game update to the matching transition."""
        if game.state == WAITING_FOR_PLAYERS:
            self._on_waiting_for_players(game)
        elif game.state == ENDED:
            self._on_game_ended(game)
        else:
            logger.debug(f"Ignoring game {game.id} in state {game.state}")

    def on_connection_lost(self) -> None:
        """Record that the lobby connection dropped; the tracked game stays unscored."""
        with self._lock:
            context = self._context

        if context is None:
            logger.info("Lobby connection lost while watching")
        else:
            logger.warning(
                f"Lobby connection lost while game {context.game_id} is {context.state}; "
                f"it stays unscored until its end event arrives"
            )

    def _on_waiting_for_players(self, game: GameSession) -> None:
        if game.has_participant(self.username):
            logger.info(f"Already participating in game {game.id}; not joining again")
            return

        with self._lock:
            previous = self._context
            if previous is not None:
                if previous.game_id == game.id:
                    logger.info(f"Game {game.id} is already {previous.state}; ignoring duplicate event")
                    return
                if previous.state != JOINED:
                    logger.warning(
                        f"Ignoring new game {game.id}: game {previous.game_id} is still {previous.state}"
                    )
                    return
                logger.warning(
                    f"Abandoning unscored game {previous.game_id} "
                    f"(predictions {previous.predictions}) to join game {game.id}"
                )

            context = GameContext(game_id=game.id, state=JOINING)
            self._context = context

        logger.info(f"New game {game.id}: joining")

        try:
            decision = self._run_join_pipeline(game.id)

        except AgentError as e:
            logger.error(f"Abandoning game {game.id}: {type(e).__name__}: {e}")
            self._release(context)
            return

        except Exception as e:
            logger.error(f"Abandoning game {game.id} after unexpected error: {e}", exc_info=True)
            self._release(context)
            return

        with self._lock:
            if self._context is context:
                context.predictions = decision
                context.state = JOINED

        logger.info(f"Joined game {game.id} with predictions: {decision}")

    def _run_join_pipeline(self, game_id: str) -> Decision:
        """Fetch assets, forecast, decide and submit, in that order."""
        assets = self.platform.fetch_assets()
        if not assets:
            raise PlatformError("platform listed no assets")

        forecasts = aggregate_forecasts(assets, self.forecast_client, self.forecast_workers)
        history = self.store.recent_window(self.history_window)

        decision = self.decision_agent.decide(forecasts, history)
        submit_wager(self.platform, game_id, decision, self.stake_amount)

        return decision

    def _on_game_ended(self, game: GameSession) -> None:
        with self._lock:
            context = self._context
            if context is None or context.game_id != game.id:
                logger.debug(f"Ignoring end of untracked game {game.id}")
                return
            if context.state != JOINED:
                logger.warning(f"Game {game.id} ended while {context.state}; nothing to score")
                return
            context.state = SCORING
            predictions = dict(context.predictions)

        try:
            entries = score_game(predictions, game, self.username)
            self.store.extend(entries)
            logger.info(f"Scored {len(entries)} predictions for game {game.id}")
            logger.info(f"Game history size: {len(self.store)}")

        except Exception as e:
            logger.error(f"Error scoring game {game.id}: {e}", exc_info=True)

        finally:
            self._release(context)

    def _release(self, context: GameContext) -> None:
        """Return to watching if the given context is still the tracked one."""
        with self._lock:
            if self._context is context:
                self._context = None
