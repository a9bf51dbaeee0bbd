"""
Decision agent for choosing which assets to wager on using Gemini.

This module turns the cycle's forecasts and the recent outcome history into a
brief for the reasoning service, requests a schema-constrained answer, and
strictly validates that answer into a symbol -> direction mapping. Any output
that does not match the schema fails the whole decision; a partial mapping is
never returned.
"""

import json
import logging
from typing import Any, Callable, Optional

import requests
from requests.exceptions import RequestException, Timeout

from stash_agent.config import Config
from stash_agent.errors import DecisionError
from stash_agent.models import Decision, Forecast, HistoryEntry, UP, DOWN
from stash_agent.utils import is_number, strip_code_fences

# Configure module logger
logger = logging.getLogger(__name__)

# Reasoning call: (prompt, response_schema) -> raw response text
Reasoner = Callable[[str, dict], str]

RESPONSE_SCHEMA: dict = {
    "description": "List of token entries for the game",
    "type": "ARRAY",
    "items": {
        "type": "OBJECT",
        "properties": {
            "token": {
                "type": "STRING",
                "description": "Token symbol",
                "nullable": False,
            },
            "prediction": {
                "type": "NUMBER",
                "description": "Prediction for the token, 1 for up -1 for down",
                "nullable": False,
            },
        },
        "required": ["token", "prediction"],
    },
}

_ITEM_FIELDS = frozenset(RESPONSE_SCHEMA["items"]["required"])


class DecisionAgent:
    """
    Builds the decision brief, calls the reasoning service and validates its answer.
    """

    def __init__(
        self,
        reasoner: Optional[Reasoner] = None,
        expected_selections: Optional[int] = None,
    ):
        """
        Args:
            reasoner: Reasoning call. If None, uses call_gemini_api
            expected_selections: Number of selections the game expects. If
                None, uses Config.EXPECTED_SELECTIONS
        """
        self.reasoner = reasoner or call_gemini_api
        self.expected_selections = expected_selections or Config.EXPECTED_SELECTIONS

    def decide(self, forecasts: list[Forecast], history: list[HistoryEntry]) -> Decision:
        """
        Produce a decision for one game.

        Args:
            forecasts: Forecasts sorted by descending confidence
            history: Recent outcome window, oldest first

        Returns:
            Validated symbol -> direction mapping

        Raises:
            DecisionError: If there is nothing to decide on, the reasoning
                call fails, or its output does not match the schema
        """
        if not forecasts:
            raise DecisionError("no forecasts available to decide on")

        prompt = build_prompt(forecasts, history, self.expected_selections)
        logger.debug(f"Decision prompt:\n{prompt}")

        try:
            response_text = self.reasoner(prompt, RESPONSE_SCHEMA)
        except DecisionError:
            raise
        except Exception as e:
            raise DecisionError(f"reasoning call failed: {e}") from e

        decision = parse_decision(
            response_text,
            known_symbols=[f.symbol for f in forecasts],
            max_selections=self.expected_selections,
        )

        if len(decision) < self.expected_selections:
            logger.warning(
                f"Reasoning service selected {len(decision)} of {self.expected_selections} "
                f"expected assets; wagering on the reduced selection"
            )

        logger.info(f"Decision: {decision}")
        return decision


def build_prompt(
    forecasts: list[Forecast],
    history: list[HistoryEntry],
    expected_selections: int = 3,
) -> str:
    """
    Build the natural-language brief for the reasoning service.

    One line per forecast in the given order, followed by the previous game's
    outcome when history is available.

    Args:
        forecasts: Forecasts sorted by descending confidence
        history: Recent outcome window, oldest first
        expected_selections: Number of assets to select

    Returns:
        Prompt string
    """
    lines = [
        f"You are an agent playing a meme coin price prediction game. You have to select "
        f"{expected_selections} tokens and predict whether the price will go up or down for "
        f"the next 60 seconds. Below are the results of a time series forecast for each token. "
        f"If your previous game ranking is 1 and you won, you might consider the same picks. "
        f"When considering the previous game outcome, the Points are important (the higher "
        f"positive number the better).",
        "",
    ]

    for forecast in forecasts:
        lines.append(
            f"symbol: {forecast.symbol}, direction: {forecast.direction} "
            f"(1 means up, -1 means down), confidence: {forecast.confidence}"
        )

    if history:
        lines.append("")
        lines.append("Previous game outcome:")
        lines.append(f"Ranking: {history[-1].rank}")
        for entry in history:
            lines.append(
                f"{entry.symbol} ({entry.predicted_direction}) "
                f"Success {str(entry.success).lower()} Points {_format_points(entry.points_earned)}"
            )

    return "\n".join(lines) + "\n"


def _format_points(points: float) -> str:
    return str(int(points)) if float(points).is_integer() else str(points)


def parse_decision(
    response_text: Optional[str],
    known_symbols: Optional[list[str]] = None,
    max_selections: Optional[int] = None,
) -> Decision:
    """
    Strictly parse reasoning output into a decision.

    The text must be a JSON array of objects with exactly the fields "token"
    (non-empty string) and "prediction" (1 or -1). Duplicate tokens resolve
    to their last occurrence. Tokens are matched case-insensitively against
    known_symbols and normalized to the known spelling.

    Args:
        response_text: Raw response text
        known_symbols: Symbols eligible for selection (None disables the check)
        max_selections: Upper bound on the number of selections (None disables)

    Returns:
        Non-empty symbol -> direction mapping

    Raises:
        DecisionError: On any deviation from the schema or the bounds above
    """
    if not response_text or not response_text.strip():
        raise DecisionError("empty response from reasoning service")

    try:
        data = json.loads(strip_code_fences(response_text))
    except json.JSONDecodeError as e:
        logger.debug(f"Failed to parse text: {response_text[:500]}")
        raise DecisionError(f"response is not valid JSON: {e}") from e

    if not isinstance(data, list):
        raise DecisionError(f"expected a JSON array, got {type(data).__name__}")

    canonical: Optional[dict[str, str]] = None
    if known_symbols is not None:
        canonical = {symbol.casefold(): symbol for symbol in known_symbols}

    decision: Decision = {}

    for idx, item in enumerate(data):
        token, prediction = _validate_item(item, idx)

        if canonical is not None:
            if token.casefold() not in canonical:
                raise DecisionError(f"item {idx}: unknown token {token!r}")
            token = canonical[token.casefold()]

        if token in decision:
            logger.warning(f"Duplicate selection for {token}; keeping the last occurrence")
            del decision[token]
        decision[token] = prediction

    if not decision:
        raise DecisionError("reasoning service selected no assets")

    if max_selections is not None and len(decision) > max_selections:
        raise DecisionError(
            f"reasoning service selected {len(decision)} assets, at most {max_selections} allowed"
        )

    return decision


def _validate_item(item: Any, idx: int) -> tuple[str, int]:
    """Validate one array element and return (token, direction)."""
    if not isinstance(item, dict):
        raise DecisionError(f"item {idx}: expected an object, got {type(item).__name__}")

    keys = set(item)
    if keys != _ITEM_FIELDS:
        missing = sorted(_ITEM_FIELDS - keys)
        extra = sorted(keys - _ITEM_FIELDS)
        raise DecisionError(f"item {idx}: missing fields {missing}, unexpected fields {extra}")

    token = item["token"]
    if not isinstance(token, str) or not token.strip():
        raise DecisionError(f"item {idx}: token must be a non-empty string")

    prediction = item["prediction"]
    if not is_number(prediction) or prediction not in (UP, DOWN):
        raise DecisionError(f"item {idx}: prediction must be 1 or -1, got {prediction!r}")

    return token.strip(), int(prediction)


def call_gemini_api(prompt: str, schema: dict) -> str:
    """
    Call the Gemini generateContent API with a strict response schema.

    Args:
        prompt: Decision brief
        schema: Response schema the output must follow

    Returns:
        Response text from the first candidate

    Raises:
        DecisionError: If the key is missing, the request fails, or the
            response has no text
    """
    if not Config.GEMINI_API_KEY:
        raise DecisionError("GEMINI_API_KEY not configured")

    url = f"{Config.GEMINI_API_URL.rstrip('/')}/models/{Config.GEMINI_MODEL}:generateContent"

    payload = {
        "contents": [
            {
                "role": "user",
                "parts": [{"text": prompt}],
            }
        ],
        "generationConfig": {
            "temperature": Config.GEMINI_TEMPERATURE,
            "responseMimeType": "application/json",
            "responseSchema": schema,
        },
    }

    try:
        logger.debug(f"Calling Gemini API with model {Config.GEMINI_MODEL}")

        response = requests.post(
            url,
            json=payload,
            headers={"x-goog-api-key": Config.GEMINI_API_KEY, "Content-Type": "application/json"},
            timeout=Config.REASONING_TIMEOUT,
        )
        response.raise_for_status()
        data = response.json()

    except Timeout as e:
        raise DecisionError(f"Gemini API request timed out after {Config.REASONING_TIMEOUT}s") from e

    except RequestException as e:
        if e.response is not None:
            logger.error(f"Gemini API error response ({e.response.status_code}): {e.response.text[:500]}")
        raise DecisionError(f"Gemini API request failed: {e}") from e

    except ValueError as e:
        raise DecisionError("Gemini API returned a non-JSON body") from e

    try:
        parts = data["candidates"][0]["content"]["parts"]
        text = "".join(part.get("text", "") for part in parts)
    except (KeyError, IndexError, TypeError, AttributeError) as e:
        logger.debug(f"Response data: {json.dumps(data, indent=2)[:500]}")
        raise DecisionError("unexpected Gemini API response structure") from e

    logger.debug(f"Received response of length {len(text)}")
    return text
