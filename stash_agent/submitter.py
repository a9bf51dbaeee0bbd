"""
Wager submission for a single game.
"""

import logging
from typing import Any, Optional

from stash_agent.config import Config
from stash_agent.errors import SubmissionError
from stash_agent.models import Decision, Wager, UP, DOWN
from stash_agent.platform_client import PlatformClient

# Configure module logger
logger = logging.getLogger(__name__)


def submit_wager(
    client: PlatformClient,
    game_id: str,
    decision: Decision,
    stake_amount: Optional[int] = None,
) -> Any:
    """
    Package a decision into a join request and submit it.

    Submission is fire-and-confirm: a rejected or failed request is raised to
    the caller and never retried.

    Args:
        client: Platform client
        game_id: Game to join
        decision: Validated symbol -> direction mapping
        stake_amount: Tokens to stake. If None, uses Config.STAKE_AMOUNT

    Returns:
        The platform's confirmation payload

    Raises:
        SubmissionError: If the decision is empty or malformed, or the
            platform rejects the request
    """
    if not decision:
        raise SubmissionError(game_id, "refusing to submit an empty decision")

    bad = {symbol: d for symbol, d in decision.items() if d not in (UP, DOWN)}
    if bad:
        raise SubmissionError(game_id, f"refusing to submit malformed directions: {bad}")

    wager = Wager(
        game_id=game_id,
        selections=dict(decision),
        stake_amount=stake_amount or Config.STAKE_AMOUNT,
    )

    logger.info(f"Joining game {game_id} with {wager.selections} (stake {wager.stake_amount})")
    confirmation = client.join_game(wager)
    logger.debug(f"Join confirmation for game {game_id}: {confirmation}")

    return confirmation
