"""
Outcome scoring for a finished game.

Compares each submitted prediction with the realized price move and records
the agent's rank and points alongside it.
"""

import logging

from stash_agent.models import Decision, GameSession, HistoryEntry, UP, DOWN, direction_label
from stash_agent.utils import utc_now

# Configure module logger
logger = logging.getLogger(__name__)


def realized_direction(prices: list[float]) -> int:
    """Direction of the move from the first to the last price; a flat move counts as DOWN."""
    return UP if prices[-1] > prices[0] else DOWN


def score_game(predictions: Decision, game: GameSession, username: str) -> list[HistoryEntry]:
    """
    Score the active predictions against an ended game.

    Symbols without a price series of at least two samples are skipped. If
    the agent is missing from the rankings the whole pass is skipped, since
    rank and points are part of every entry.

    Args:
        predictions: Symbol -> direction submitted for this game
        game: Ended game with rankings and price series
        username: The agent's own username

    Returns:
        One HistoryEntry per scored symbol, in prediction order
    """
    if not game.rankings or not game.price_series:
        logger.warning(f"Game {game.id} ended without rankings or prices; nothing to score")
        return []

    ranking = game.find_ranking(username)
    if ranking is None:
        logger.warning(f"{username} not found in rankings for game {game.id}; skipping scoring")
        return []

    recorded_at = utc_now()
    entries: list[HistoryEntry] = []

    for symbol, prediction in predictions.items():
        prices = game.prices_for(symbol)
        if not prices or len(prices) < 2:
            logger.info(f"Insufficient price data for {symbol} in game {game.id}; skipping")
            continue

        actual = realized_direction(prices)
        success = prediction == actual

        logger.info(
            f"Token {symbol}: {'CORRECT' if success else 'WRONG'} prediction "
            f"(predicted {direction_label(prediction)}, went {direction_label(actual)})"
        )

        entries.append(HistoryEntry(
            symbol=symbol,
            predicted_direction=prediction,
            success=success,
            points_earned=ranking.points,
            rank=ranking.rank,
            game_id=game.id,
            recorded_at=recorded_at,
        ))

    return entries
