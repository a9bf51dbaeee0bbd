"""
Main entry point for the prediction game agent.

This module wires the components together and runs the agent:
1. Connect to the platform lobby and keep the subscription alive
2. On a new game: fetch assets, forecast, decide, and join
3. On the joined game's end: score the outcome into the history log
"""

import argparse
import logging
import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from stash_agent.config import Config
from stash_agent.decision_agent import DecisionAgent
from stash_agent.forecaster import ForecastClient
from stash_agent.lifecycle import GameLifecycleHandler
from stash_agent.models import direction_label
from stash_agent.platform_client import PlatformClient
from stash_agent.storage import HistoryStore
from stash_agent.transport import LobbyConnection


# Configure logging
def setup_logging() -> None:
    """Configure logging for the application."""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_level = getattr(logging, Config.LOG_LEVEL.upper(), logging.INFO)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]

    if Config.LOG_FILE:
        Config.ensure_directories()
        handlers.append(logging.FileHandler(Config.LOG_FILE, encoding="utf-8"))

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=handlers
    )

    # The scheduler logs every heartbeat run at INFO
    logging.getLogger("apscheduler").setLevel(logging.WARNING)


logger = logging.getLogger(__name__)


def build_handler(executor: Optional[ThreadPoolExecutor] = None) -> GameLifecycleHandler:
    """
    Build the lifecycle handler with its collaborators from configuration.

    Args:
        executor: Executor for game pipelines (None runs them inline)

    Returns:
        Configured GameLifecycleHandler
    """
    Config.ensure_directories()

    return GameLifecycleHandler(
        platform=PlatformClient(),
        forecast_client=ForecastClient(),
        decision_agent=DecisionAgent(),
        store=HistoryStore(Config.HISTORY_DB_PATH),
        executor=executor,
    )


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the game agent.

    Returns:
        Exit code (0 for success, 1 for failure, 130 when interrupted)
    """
    parser = argparse.ArgumentParser(
        description="Prediction Game Agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run the agent
  python -m stash_agent.main

  # Validate configuration and exit
  python -m stash_agent.main --check-config

  # Print the persisted outcome history (requires HISTORY_DB_PATH)
  python -m stash_agent.main --history
        """
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate configuration and exit"
    )
    parser.add_argument(
        "--history",
        action="store_true",
        help="Print the persisted outcome history and exit"
    )

    args = parser.parse_args(argv)

    setup_logging()

    is_valid, errors = Config.validate()

    if args.check_config:
        if is_valid:
            print("Configuration OK")
            return 0
        for error in errors:
            print(f"  - {error}")
        return 1

    if args.history:
        return _print_history()

    if not is_valid:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        return 1

    return _run_agent()


def _print_history() -> int:
    if not Config.HISTORY_DB_PATH:
        print("HISTORY_DB_PATH is not set; history is only kept in memory")
        return 1

    store = HistoryStore(Config.HISTORY_DB_PATH)
    entries = store.all_entries()

    print(f"\n{len(entries)} history entries:")
    for entry in entries:
        recorded = entry.recorded_at.isoformat() if entry.recorded_at else "-"
        print(
            f"  {recorded}  game {entry.game_id}  {entry.symbol:<10} "
            f"{direction_label(entry.predicted_direction):<4} "
            f"{'CORRECT' if entry.success else 'WRONG':<7} rank {entry.rank} points {entry.points_earned}"
        )
    return 0


def _run_agent() -> int:
    """
    Run until interrupted.

    Returns:
        Exit code
    """
    logger.info("Starting game agent")

    stop_event = threading.Event()
    received: list[int] = []

    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        received.append(signum)
        stop_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    executor = ThreadPoolExecutor(max_workers=Config.PIPELINE_MAX_WORKERS, thread_name_prefix="game")
    connection: Optional[LobbyConnection] = None

    try:
        handler = build_handler(executor)
        connection = LobbyConnection(handler.handle_message, handler.on_connection_lost)
        connection.start()

        logger.info(f"Agent running as {handler.username}. Press Ctrl+C to stop.")

        while not stop_event.wait(1):
            pass

        if signal.SIGINT in received:
            logger.info("Agent interrupted by user")
            return 130
        return 0

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1

    finally:
        if connection is not None:
            connection.stop()
        executor.shutdown(wait=True)
        logger.info("Agent stopped")


if __name__ == "__main__":
    sys.exit(main())
