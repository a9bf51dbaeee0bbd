"""
Configuration management for the prediction game agent.

This module handles all configuration loading from environment variables
and provides type-safe access to configuration values throughout the application.
"""

import os
from typing import Optional
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


class Config:
    """
    Centralized configuration class for the game agent.

    All configuration values are loaded from environment variables with
    sensible defaults where appropriate. API keys must be provided via
    environment variables.
    """

    # API Keys (required)
    STASH_API_KEY: Optional[str] = os.getenv("STASH_API_KEY")
    GEMINI_API_KEY: Optional[str] = os.getenv("GEMINI_API_KEY")

    # Game Platform Configuration
    PLATFORM_API_URL: str = os.getenv("PLATFORM_API_URL", "https://funstash.ngrok.dev")
    PLATFORM_WS_URL: str = os.getenv(
        "PLATFORM_WS_URL",
        "wss://funstash.ngrok.dev/ws/websocket"
    )
    LOBBY_TOPIC: str = os.getenv("LOBBY_TOPIC", "games:lobby")
    AGENT_USERNAME: str = os.getenv("AGENT_USERNAME", "Pinky 🧠")

    # Forecast Service Configuration
    FORECAST_API_URL: str = os.getenv("FORECAST_API_URL", "http://localhost:8000")
    FORECAST_MAX_WORKERS: int = int(os.getenv("FORECAST_MAX_WORKERS", "8"))

    # Reasoning Service Configuration
    GEMINI_API_URL: str = os.getenv(
        "GEMINI_API_URL",
        "https://generativelanguage.googleapis.com/v1beta"
    )
    GEMINI_MODEL: str = os.getenv("GEMINI_MODEL", "gemini-1.5-pro")
    GEMINI_TEMPERATURE: float = float(os.getenv("GEMINI_TEMPERATURE", "0.4"))

    # Game Parameters
    STAKE_AMOUNT: int = int(os.getenv("STAKE_AMOUNT", "1000"))
    EXPECTED_SELECTIONS: int = int(os.getenv("EXPECTED_SELECTIONS", "3"))
    HISTORY_WINDOW: int = int(os.getenv("HISTORY_WINDOW", "3"))
    PIPELINE_MAX_WORKERS: int = int(os.getenv("PIPELINE_MAX_WORKERS", "2"))

    # Connection Configuration (seconds)
    HEARTBEAT_INTERVAL_SECONDS: int = int(os.getenv("HEARTBEAT_INTERVAL_SECONDS", "30"))
    RECONNECT_MAX_BACKOFF_SECONDS: float = float(os.getenv("RECONNECT_MAX_BACKOFF_SECONDS", "30"))

    # Request Timeouts (seconds)
    API_TIMEOUT: int = int(os.getenv("API_TIMEOUT", "30"))
    REASONING_TIMEOUT: int = int(os.getenv("REASONING_TIMEOUT", "60"))

    # History Persistence (optional)
    HISTORY_DB_PATH: Optional[Path] = Path(os.getenv("HISTORY_DB_PATH", "")) if os.getenv("HISTORY_DB_PATH") else None

    # Logging Configuration
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: Optional[Path] = Path(os.getenv("LOG_FILE", "logs/agent.log")) if os.getenv("LOG_FILE") else None

    @classmethod
    def validate(cls) -> tuple[bool, list[str]]:
        """
        Validate that all required configuration values are present.

        Returns:
            tuple: (is_valid, list_of_errors)
        """
        errors: list[str] = []

        if not cls.STASH_API_KEY:
            errors.append("STASH_API_KEY is required but not set")

        if not cls.GEMINI_API_KEY:
            errors.append("GEMINI_API_KEY is required but not set")

        if not cls.AGENT_USERNAME.strip():
            errors.append("AGENT_USERNAME cannot be empty")

        # Validate numeric ranges
        if cls.STAKE_AMOUNT <= 0:
            errors.append("STAKE_AMOUNT must be positive")

        if cls.EXPECTED_SELECTIONS < 1:
            errors.append("EXPECTED_SELECTIONS must be at least 1")

        if cls.HISTORY_WINDOW < 0:
            errors.append("HISTORY_WINDOW cannot be negative")

        if cls.FORECAST_MAX_WORKERS < 1:
            errors.append("FORECAST_MAX_WORKERS must be at least 1")

        if cls.PIPELINE_MAX_WORKERS < 1:
            errors.append("PIPELINE_MAX_WORKERS must be at least 1")

        if cls.HEARTBEAT_INTERVAL_SECONDS < 1:
            errors.append("HEARTBEAT_INTERVAL_SECONDS must be at least 1")

        if not (0.0 <= cls.GEMINI_TEMPERATURE <= 2.0):
            errors.append("GEMINI_TEMPERATURE must be between 0.0 and 2.0")

        return (len(errors) == 0, errors)

    @classmethod
    def ensure_directories(cls) -> None:
        """
        Ensure all required directories exist.

        Creates directories for the history database and logs if they don't exist.
        """
        if cls.HISTORY_DB_PATH:
            cls.HISTORY_DB_PATH.parent.mkdir(parents=True, exist_ok=True)
        if cls.LOG_FILE:
            cls.LOG_FILE.parent.mkdir(parents=True, exist_ok=True)
