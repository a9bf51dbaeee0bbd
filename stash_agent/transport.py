"""
Lobby connection adapter.

Keeps a websocket-client connection to the platform's lobby open on a
background thread: joins the lobby topic on open, sends heartbeats while
connected, reconnects with capped backoff, and hands every text frame to a
callback. It knows nothing about games.
"""

import json
import logging
import threading
from typing import Callable, Optional

import websocket  # websocket-client

from stash_agent.config import Config
from stash_agent.scheduler import HeartbeatScheduler
from stash_agent.utils import epoch_millis

# Configure module logger
logger = logging.getLogger(__name__)


def lobby_join_message(topic: str, api_key: str) -> dict:
    """Subscription message for the lobby topic."""
    return {
        "topic": topic,
        "event": "phx_join",
        "ref": None,
        "payload": {"api_key": api_key},
    }


def heartbeat_message() -> dict:
    """Liveness message sent on a fixed interval."""
    return {
        "topic": "phoenix",
        "event": "heartbeat",
        "payload": {},
        "ref": epoch_millis(),
    }


class LobbyConnection:
    """
    Persistent, self-reconnecting lobby subscription.
    """

    def __init__(
        self,
        on_message: Callable[[str], None],
        on_disconnect: Optional[Callable[[], None]] = None,
        *,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        topic: Optional[str] = None,
        heartbeat_interval: Optional[int] = None,
        max_backoff: Optional[float] = None,
    ):
        self.on_message = on_message
        self.on_disconnect = on_disconnect
        self.url = url or Config.PLATFORM_WS_URL
        self.api_key = api_key or Config.STASH_API_KEY or ""
        self.topic = topic or Config.LOBBY_TOPIC
        self.max_backoff = max_backoff or Config.RECONNECT_MAX_BACKOFF_SECONDS

        self._heartbeat = HeartbeatScheduler(self._send_heartbeat, heartbeat_interval)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._app: Optional[websocket.WebSocketApp] = None
        self._lock = threading.RLock()
        self._backoff = 1.0

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._stop.clear()
            self._thread = threading.Thread(target=self._run, name="lobby-connection", daemon=True)
            self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        with self._lock:
            app = self._app
            thread = self._thread

        if app is not None:
            app.keep_running = False
            app.close()

        self._heartbeat.stop()

        if thread is not None:
            thread.join(timeout=timeout)

    def send(self, message: dict) -> bool:
        """Send a JSON message if connected; returns False when there is no open socket."""
        with self._lock:
            app = self._app
        if app is None or app.sock is None or not app.sock.connected:
            logger.debug(f"Not connected; dropping {message.get('event')} message")
            return False
        app.send(json.dumps(message))
        return True

    def _run(self) -> None:
        self._backoff = 1.0
        while not self._stop.is_set():
            app = websocket.WebSocketApp(
                self.url,
                on_open=self._on_open,
                on_message=lambda _ws, msg: self._on_frame(msg),
                on_error=lambda _ws, err: logger.warning(f"Lobby connection error: {err}"),
                on_close=lambda _ws, code, msg: self._on_close(code, msg),
            )
            with self._lock:
                self._app = app

            try:
                logger.info(f"Connecting to {self.url}")
                app.run_forever()
            except Exception as e:
                logger.warning(f"Lobby connection failed: {e}")
            finally:
                with self._lock:
                    if self._app is app:
                        self._app = None

            if self._stop.is_set():
                break

            logger.info(f"Reconnecting in {self._backoff:.1f}s")
            self._stop.wait(self._backoff)
            self._backoff = min(self._backoff * 2, self.max_backoff)

    def _on_open(self, _ws) -> None:
        logger.info("Connected to lobby")
        self._backoff = 1.0
        self.send(lobby_join_message(self.topic, self.api_key))
        self._heartbeat.start()

    def _on_frame(self, message: str) -> None:
        try:
            self.on_message(message)
        except Exception:
            logger.exception("Lobby message handler failed")

    def _on_close(self, code, reason) -> None:
        logger.info(f"Disconnected from lobby (code={code}, reason={reason})")
        self._heartbeat.stop()
        if self.on_disconnect is not None:
            try:
                self.on_disconnect()
            except Exception:
                logger.exception("Disconnect handler failed")

    def _send_heartbeat(self) -> None:
        self.send(heartbeat_message())
