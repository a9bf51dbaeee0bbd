"""
History store for scored prediction outcomes.

This module keeps the append-only log of per-asset outcomes that feeds back
into future decisions. The log lives in memory for the whole process and can
optionally be mirrored to SQLite so it survives restarts.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from stash_agent.models import HistoryEntry

# Configure module logger
logger = logging.getLogger(__name__)


class HistoryStore:
    """
    Append-only, chronologically ordered log of prediction outcomes.

    `append` and `extend` are the only mutators; entries are never modified
    or removed.
    Appends and reads are serialized with a lock so the store can be shared
    between the pipeline threads.
    """

    def __init__(self, db_path: Optional[Path] = None):
        """
        Initialize the store.

        Args:
            db_path: Optional SQLite file to mirror entries into. Existing
                entries are loaded in append order.
        """
        self.db_path = db_path
        self._entries: list[HistoryEntry] = []
        self._lock = threading.Lock()

        if self.db_path is not None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._initialize_database()
            self._entries.extend(self._load_entries())
            logger.info(f"Loaded {len(self._entries)} history entries from {self.db_path}")

    def append(self, entry: HistoryEntry) -> None:
        """Append one outcome to the end of the log."""
        self.extend([entry])

    def extend(self, entries: Iterable[HistoryEntry]) -> None:
        """
        Append several outcomes, preserving their order.

        The batch is all-or-nothing: it is written to SQLite in one
        transaction before any entry becomes visible in memory.
        """
        batch = list(entries)
        if not batch:
            return

        with self._lock:
            if self.db_path is not None:
                self._persist(batch)
            self._entries.extend(batch)

    def recent_window(self, k: int) -> list[HistoryEntry]:
        """
        Return the most recent entries in chronological order.

        Args:
            k: Maximum number of entries to return

        Returns:
            The last min(k, len) entries, oldest first. Empty for k <= 0.
        """
        if k <= 0:
            return []
        with self._lock:
            return list(self._entries[-k:])

    def all_entries(self) -> list[HistoryEntry]:
        """Return a copy of the full log."""
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    # SQLite mirror

    @contextmanager
    def _get_connection(self):
        """
        Context manager for database connections.

        Ensures proper connection handling and transaction management.
        """
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _initialize_database(self) -> None:
        """Create the history table if it doesn't exist."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    game_id TEXT NOT NULL,
                    symbol TEXT NOT NULL,
                    predicted_direction INTEGER NOT NULL,
                    success INTEGER NOT NULL,
                    points_earned REAL NOT NULL,
                    rank INTEGER NOT NULL,
                    recorded_at TEXT
                )
            """)

    def _persist(self, entries: list[HistoryEntry]) -> None:
        with self._get_connection() as conn:
            conn.executemany("""
                INSERT INTO history
                (game_id, symbol, predicted_direction, success, points_earned, rank, recorded_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, [
                (
                    entry.game_id,
                    entry.symbol,
                    entry.predicted_direction,
                    int(entry.success),
                    entry.points_earned,
                    entry.rank,
                    entry.recorded_at.isoformat() if entry.recorded_at else None,
                )
                for entry in entries
            ])

    def _load_entries(self) -> list[HistoryEntry]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM history ORDER BY id").fetchall()
        return [self._row_to_entry(row) for row in rows]

    def _row_to_entry(self, row: sqlite3.Row) -> HistoryEntry:
        """Convert database row to HistoryEntry object."""
        recorded_at = None
        if row["recorded_at"]:
            try:
                recorded_at = datetime.fromisoformat(row["recorded_at"])
            except ValueError:
                pass

        return HistoryEntry(
            symbol=row["symbol"],
            predicted_direction=row["predicted_direction"],
            success=bool(row["success"]),
            points_earned=row["points_earned"],
            rank=row["rank"],
            game_id=row["game_id"],
            recorded_at=recorded_at,
        )
