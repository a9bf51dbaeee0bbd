"""
Utility functions for the prediction game agent.

This module provides shared helper utilities used across the codebase.
All functions are pure helpers with no domain logic.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

# Configure module logger
logger = logging.getLogger(__name__)


def strip_code_fences(text: str) -> str:
    """
    Remove a surrounding markdown code block from model output.

    Reasoning services occasionally wrap JSON output in ```json fences even
    when a JSON response type was requested. Nothing else is altered, so the
    remaining text must still parse strictly.

    Args:
        text: Raw response text

    Returns:
        Text with leading/trailing code fences and whitespace removed
    """
    text = text.strip()

    if text.startswith("```json"):
        text = text[7:]
    elif text.startswith("```"):
        text = text[3:]

    if text.endswith("```"):
        text = text[:-3]

    return text.strip()


def utc_now() -> datetime:
    """Current UTC time as a timezone-aware datetime."""
    return datetime.now(timezone.utc)


def epoch_millis() -> int:
    """Current time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def is_number(value: Any) -> bool:
    """True for ints and floats, excluding booleans."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def safe_float(value: Any, default: Optional[float] = None) -> Optional[float]:
    """
    Safely convert a value to float with a default fallback.

    Handles None, strings, integers, and floats. Returns default on failure.

    Args:
        value: Value to convert (string, int, float, or None)
        default: Default value if conversion fails (default: None)

    Returns:
        Float value or default if conversion fails
    """
    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, (int, float)):
        return float(value)

    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            logger.debug(f"Could not convert '{value}' to float, using default {default}")
            return default

    return default


def safe_int(value: Any, default: Optional[int] = None) -> Optional[int]:
    """Safely convert a value to int, accepting integral floats and numeric strings."""
    number = safe_float(value)
    if number is None or not number.is_integer():
        return default
    return int(number)
