"""
Failure kinds raised by the agent's pipeline stages.

Per-asset forecast failures and scoring gaps are recovered where they occur;
decision, platform and submission failures abort only the affected game.
"""


class AgentError(Exception):
    """Base agent exception."""


class ForecastError(AgentError):
    """Raised when a forecast for a single asset cannot be obtained."""

    def __init__(self, symbol: str, message: str):
        super().__init__(f"{symbol}: {message}")
        self.symbol = symbol


class PlatformError(AgentError):
    """Raised when the game platform returns unusable data (e.g. the asset list)."""


class DecisionError(AgentError):
    """Raised when the reasoning service fails or its output does not match the schema."""


class SubmissionError(AgentError):
    """Raised when a join request is rejected or cannot be delivered."""

    def __init__(self, game_id: str, message: str, status_code: int | None = None):
        super().__init__(f"game {game_id}: {message}")
        self.game_id = game_id
        self.status_code = status_code


class EventDecodeError(AgentError):
    """Raised when a lifecycle message payload is malformed."""
