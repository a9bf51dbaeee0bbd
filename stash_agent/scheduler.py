"""
Heartbeat scheduling for the lobby connection.

This module uses APScheduler to emit the liveness message on a fixed interval
while the connection is open. It handles overlap prevention and graceful
shutdown.
"""

import logging
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR

from stash_agent.config import Config

# Configure module logger
logger = logging.getLogger(__name__)


class HeartbeatScheduler:
    """
    Periodic runner for the heartbeat callable.

    One scheduler instance can be started and stopped repeatedly, once per
    connection.
    """

    def __init__(self, send_heartbeat: Callable[[], None], interval_seconds: Optional[int] = None):
        """
        Args:
            send_heartbeat: Callable that sends one liveness message
            interval_seconds: Seconds between heartbeats. If None, uses
                Config.HEARTBEAT_INTERVAL_SECONDS
        """
        self.send_heartbeat = send_heartbeat
        self.interval_seconds = interval_seconds or Config.HEARTBEAT_INTERVAL_SECONDS
        self.scheduler: Optional[BackgroundScheduler] = None
        self._job_id = "heartbeat_job"

    @property
    def is_running(self) -> bool:
        return self.scheduler is not None

    def start(self) -> bool:
        """
        Start emitting heartbeats.

        Returns:
            True if the scheduler started, False if it was already running
        """
        if self.is_running:
            logger.debug("Heartbeat scheduler is already running")
            return False

        scheduler = BackgroundScheduler()
        scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)
        scheduler.add_job(
            func=self.send_heartbeat,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=self._job_id,
            name="Lobby Heartbeat",
            replace_existing=True,
            max_instances=1,  # Skip a beat rather than overlap
        )
        scheduler.start()
        self.scheduler = scheduler

        logger.info(f"Heartbeat started with {self.interval_seconds}s interval")
        return True

    def stop(self) -> bool:
        """
        Stop emitting heartbeats.

        Returns:
            True if a running scheduler was stopped, False otherwise
        """
        if not self.is_running:
            return False

        try:
            self.scheduler.shutdown(wait=False)
            logger.info("Heartbeat stopped")
            return True

        except Exception as e:
            logger.error(f"Error stopping heartbeat scheduler: {e}", exc_info=True)
            return False

        finally:
            self.scheduler = None

    def _on_job_executed(self, event) -> None:
        """
        Event listener for job execution events.

        Args:
            event: APScheduler event object
        """
        if event.exception:
            logger.error(f"Heartbeat failed: {event.exception}")
        else:
            logger.debug("Heartbeat sent")
