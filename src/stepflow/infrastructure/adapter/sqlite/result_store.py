import sqlite3
import threading

import msgspec

from stepflow.application.port import ResultStore
from stepflow.domain.entity import ExecutionResult
from stepflow.domain.value_object import utc_now


class SQLiteResultStore(ResultStore):
    """SQLite-based store for the latest execution result per step id."""

    def __init__(self, db_path: str = ":memory:"):
        """
        Initialize the SQLite result store.

        :param db_path: Path to SQLite database file (defaults to in-memory)
        :type db_path: str
        """
        self.db_path = db_path
        self._conn = None
        self._lock = threading.Lock()
        self._encoder = msgspec.json.Encoder()
        self._decoder = msgspec.json.Decoder(ExecutionResult)
        self._init_database()

    def _get_connection(self):
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        return self._conn

    def _init_database(self):
        """Initialize the database schema."""
        with self._lock:
            conn = self._get_connection()
            conn.execute("""
                CREATE TABLE IF NOT EXISTS execution_results (
                    step_id TEXT PRIMARY KEY,
                    result TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.commit()

    def set(self, key: str, value: ExecutionResult):
        """
        Store a result under the given step id, replacing any previous one.

        :param key: The step id
        :type key: str
        :param value: The result to store
        :type value: ExecutionResult
        """
        result_json = self._encoder.encode(value).decode("utf-8")
        with self._lock:
            conn = self._get_connection()
            conn.execute(
                "INSERT OR REPLACE INTO execution_results (step_id, result, updated_at) VALUES (?, ?, ?)",
                (key, result_json, utc_now()),
            )
            conn.commit()

    def get(self, key: str) -> ExecutionResult:
        """
        Retrieve a result by step id.

        :param key: The step id
        :type key: str
        :returns: The stored result
        :rtype: ExecutionResult
        :raises KeyError: If the key is not found
        """
        with self._lock:
            cursor = self._get_connection().execute("SELECT result FROM execution_results WHERE step_id = ?", (key,))
            row = cursor.fetchone()

        if row is None:
            raise KeyError(f"Key '{key}' not found")
        return self._decoder.decode(row[0].encode("utf-8"))

    def clear(self) -> None:
        with self._lock:
            conn = self._get_connection()
            conn.execute("DELETE FROM execution_results")
            conn.commit()

    def keys(self) -> list[str]:
        with self._lock:
            cursor = self._get_connection().execute("SELECT step_id FROM execution_results ORDER BY step_id")
            rows = cursor.fetchall()
        return [row[0] for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __del__(self):
        """Close the database connection on cleanup."""
        if self._conn:
            self._conn.close()
