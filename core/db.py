"""
Document Store - Persistence Collaborator

Key-value document storage on top of SQLite. Each key (securities, accounts,
settings, historicals, exchange_rates) maps to one JSON document.

Architecture:
- SQLite: single `documents` table, one row per key
- JSON: documents are plain structured records (dates as strings, numbers as decimal strings)

Copyright (c) 2026 Andreas Wagner. All rights reserved.
"""

import json
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, List, Optional

from utils.logging_config import setup_logger

logger = setup_logger(__name__)


KNOWN_KEYS = frozenset([
    'securities',
    'accounts',
    'settings',
    'historicals',
    'exchange_rates',
])


class DocumentStore:
    """
    Persistent JSON documents keyed by collection name.

    Provides:
    - load(key): parsed document or None when never saved
    - save(key, value): replaces the document for key
    """

    def __init__(self, db_path: Path = None):
        """
        Initialize document store.

        Args:
            db_path: Path to SQLite database file (defaults to ./data/portfolio.db).
                Use ":memory:" for an ephemeral store.
        """
        if db_path is None:
            db_path = Path("data") / "portfolio.db"

        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._conn: Optional[sqlite3.Connection] = None
        self._init_database()

    @property
    def conn(self) -> sqlite3.Connection:
        """Get SQLite connection (creates if needed)."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, timeout=30.0, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            logger.info(f"SQLite connection opened: {self.db_path}")
        return self._conn

    def _init_database(self):
        """Create the documents table if it doesn't exist."""
        with self._lock:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
            """)
            self.conn.commit()

    def load(self, key: str) -> Optional[Any]:
        """
        Load the document saved under key.

        Returns:
            Parsed JSON document, or None if nothing was saved yet
        """
        self._check_key(key)
        with self._lock:
            row = self.conn.execute(
                "SELECT value FROM documents WHERE key = ?", (key,)
            ).fetchone()
        if row is None:
            return None
        return json.loads(row['value'])

    def save(self, key: str, value: Any) -> None:
        """Replace the document saved under key."""
        self._check_key(key)
        payload = json.dumps(value, sort_keys=True)
        with self._lock:
            self.conn.execute(
                """
                INSERT INTO documents (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, payload, datetime.now().isoformat()),
            )
            self.conn.commit()
        logger.debug(f"Saved document '{key}' ({len(payload)} bytes)")

    def keys(self) -> List[str]:
        with self._lock:
            rows = self.conn.execute("SELECT key FROM documents ORDER BY key").fetchall()
        return [row['key'] for row in rows]

    def close(self):
        """Close the SQLite connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("SQLite connection closed")

    @staticmethod
    def _check_key(key: str):
        if key not in KNOWN_KEYS:
            raise KeyError(f"Unknown document key: '{key}'")
