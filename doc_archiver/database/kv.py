"""
Key/value persistence over the archive database.

Each namespace (records, policies, audit log, connected folder) is one row
holding a JSON document. Writes commit immediately.
"""
import json
import sqlite3
import logging
from datetime import datetime, UTC
from typing import Any, List

from ..exceptions import PersistenceError

class KeyValueStore:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def get(self, key: str, default: Any = None) -> Any:
        """Returns the decoded value for key, or default if missing or unreadable."""
        try:
            cur = self.conn.cursor()
            cur.execute("SELECT value FROM kv WHERE key = ?", (key,))
            row = cur.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to read '{key}': {e}") from e

        if row is None:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            logging.error(f"Stored value for '{key}' is not valid JSON, ignoring it: {e}")
            return default

    def set(self, key: str, value: Any):
        now_iso = datetime.now(UTC).isoformat()
        try:
            payload = json.dumps(value, ensure_ascii=False)
            with self.conn:
                self.conn.execute("""
                    INSERT INTO kv (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """, (key, payload, now_iso))
        except (TypeError, ValueError, sqlite3.Error) as e:
            raise PersistenceError(f"Failed to write '{key}': {e}") from e

    def delete(self, key: str):
        try:
            with self.conn:
                self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise PersistenceError(f"Failed to delete '{key}': {e}") from e

    def keys(self) -> List[str]:
        cur = self.conn.cursor()
        cur.execute("SELECT key FROM kv ORDER BY key")
        return [row[0] for row in cur.fetchall()]

