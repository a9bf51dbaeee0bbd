"""
Data models for the prediction game agent.

This module defines the core dataclasses used throughout the application
for representing assets, forecasts, games, wagers and outcome history.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

# Directions as submitted to the platform and returned by the reasoning service
UP = 1
DOWN = -1

# Mapping of asset symbol -> direction (UP or DOWN) chosen for one game
Decision = dict[str, int]

# Game states reported by lifecycle events
WAITING_FOR_PLAYERS = "waiting_for_players"
ENDED = "ended"


def direction_label(direction: int) -> str:
    """Human-readable label for a direction value."""
    return "UP" if direction > 0 else "DOWN"


@dataclass(frozen=True)
class Asset:
    """
    Represents a tradable asset listed by the game platform.

    Attributes:
        symbol: Ticker symbol (identity, compared case-insensitively)
        display_name: Human-readable asset name
        description: Asset description
        icon_ref: Logo/icon reference
    """
    symbol: str
    display_name: str = ""
    description: str = ""
    icon_ref: str = ""

    @property
    def key(self) -> str:
        """Case-insensitive identity of the asset."""
        return self.symbol.casefold()


@dataclass
class Forecast:
    """
    Represents a directional forecast for one asset from the signal service.

    Attributes:
        symbol: Asset symbol the forecast applies to
        direction: UP or DOWN
        confidence: Forecast confidence (0.0 to 1.0)
        current_price: Price at forecast time
        predicted_price: Forecast target price
        sample_count: Number of data points used by the forecaster
        observed_pct_change: Observed price change percentage
        timestamp: Forecast timestamp as reported by the service
    """
    symbol: str
    direction: int
    confidence: float
    current_price: Optional[float] = None
    predicted_price: Optional[float] = None
    sample_count: Optional[int] = None
    observed_pct_change: Optional[float] = None
    timestamp: Optional[str] = None


@dataclass
class Participant:
    """A player who joined a game, with their stake and selections."""
    username: str
    stake: Optional[float] = None
    selections: dict[str, float] = field(default_factory=dict)


@dataclass
class Ranking:
    """A player's final standing in an ended game."""
    username: str
    rank: int
    points: float
    stake: Optional[float] = None


@dataclass
class GameSession:
    """
    Snapshot of a game as reported by a lifecycle event.

    Attributes:
        id: Game identifier
        state: Reported game state ("waiting_for_players", "ended", ...)
        participants: Players currently in the game
        rankings: Final rankings (only on ended games)
        price_series: Realized prices per symbol, oldest first (only on ended games)
    """
    id: str
    state: str
    participants: list[Participant] = field(default_factory=list)
    rankings: Optional[list[Ranking]] = None
    price_series: Optional[dict[str, list[float]]] = None

    def has_participant(self, username: str) -> bool:
        """Check whether a username already appears among the participants."""
        wanted = username.casefold()
        return any(p.username.casefold() == wanted for p in self.participants)

    def prices_for(self, symbol: str) -> Optional[list[float]]:
        """Return the price series for a symbol, matching case-insensitively."""
        if not self.price_series:
            return None
        if symbol in self.price_series:
            return self.price_series[symbol]
        wanted = symbol.casefold()
        for key, prices in self.price_series.items():
            if key.casefold() == wanted:
                return prices
        return None

    def find_ranking(self, username: str) -> Optional[Ranking]:
        """Return the ranking entry for a username, or None if absent."""
        wanted = username.casefold()
        for ranking in self.rankings or []:
            if ranking.username.casefold() == wanted:
                return ranking
        return None


@dataclass
class Wager:
    """
    A join request for a game.

    Attributes:
        game_id: Game to join
        selections: Chosen symbol -> direction mapping
        stake_amount: Tokens staked on the selections
    """
    game_id: str
    selections: Decision
    stake_amount: int

    def to_payload(self) -> dict:
        """Request body expected by the platform's join endpoint."""
        return {
            "game": {
                "coins": dict(self.selections),
                "tokens": self.stake_amount,
            }
        }


@dataclass(frozen=True)
class HistoryEntry:
    """
    Outcome of one per-asset prediction in a finished game.

    Attributes:
        symbol: Asset symbol
        predicted_direction: Direction the agent wagered on
        success: Whether the realized move matched the prediction
        points_earned: Points the agent earned in that game
        rank: The agent's final rank in that game
        game_id: Game the prediction belonged to
        recorded_at: When the outcome was scored
    """
    symbol: str
    predicted_direction: int
    success: bool
    points_earned: float
    rank: int
    game_id: str = ""
    recorded_at: Optional[datetime] = None
