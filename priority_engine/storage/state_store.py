"""
Key-value State Store for the priority engine.

Two tiers:
- Session tier: in-process dict, cleared per process/session
- Durable tier: SQLite table surviving across sessions

Values are JSON-encoded. Every accessor is async so callers treat storage
as a suspension point, the same way they treat graph calls.

Database location: ~/.incremental-priority/state.db
"""

from __future__ import annotations

import copy
import json
import sqlite3
from pathlib import Path
from typing import Any

from loguru import logger


class StateStore:
    """
    Session + durable key-value persistence.

    Handles:
    - Session-scoped collections (priority records, incremental items, seen sets)
    - Durable preferences (interleave ratio, randomness, cooldown)
    - Shield history snapshots
    """

    DEFAULT_DB_PATH = Path.home() / ".incremental-priority" / "state.db"

    def __init__(self, db_path: Path | None = None):
        """
        Initialize the state store.

        Args:
            db_path: Custom database path (defaults to ~/.incremental-priority/state.db)
        """
        self.db_path = db_path or self.DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._session: dict[str, Any] = {}
        self._conn: sqlite3.Connection | None = None
        self._init_schema()

        logger.debug(f"StateStore initialized at {self.db_path}")

    @property
    def conn(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(str(self.db_path))
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _init_schema(self) -> None:
        """Initialize database schema."""
        cursor = self.conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        self.conn.commit()

    # =========================================================================
    # Session Tier
    # =========================================================================

    async def get_session(self, key: str, default: Any = None) -> Any:
        """
        Read a session-scoped value.

        Returns a deep copy so callers cannot mutate stored state in place;
        all writes go through set_session.
        """
        if key not in self._session:
            return default
        return copy.deepcopy(self._session[key])

    async def set_session(self, key: str, value: Any) -> None:
        if value is None:
            self._session.pop(key, None)
        else:
            self._session[key] = copy.deepcopy(value)

    async def clear_session(self) -> None:
        self._session.clear()

    # =========================================================================
    # Durable Tier
    # =========================================================================

    async def get_durable(self, key: str, default: Any = None) -> Any:
        cursor = self.conn.cursor()
        cursor.execute("SELECT value FROM kv_store WHERE key = ?", (key,))
        row = cursor.fetchone()
        if row is None or row["value"] is None:
            return default
        try:
            return json.loads(row["value"])
        except (TypeError, json.JSONDecodeError) as e:
            logger.warning(f"Discarding undecodable value under '{key}': {e}")
            return default

    async def set_durable(self, key: str, value: Any) -> None:
        """
        Write a durable value. None deletes the key.

        Args:
            key: Storage key
            value: JSON-serializable value
        """
        cursor = self.conn.cursor()
        if value is None:
            cursor.execute("DELETE FROM kv_store WHERE key = ?", (key,))
        else:
            cursor.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = CURRENT_TIMESTAMP
                """,
                (key, json.dumps(value)),
            )
        self.conn.commit()

    def close(self) -> None:
        """Close database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None
