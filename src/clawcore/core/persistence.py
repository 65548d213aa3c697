"""
SQLite persistence for the memory tiers and workflows.

Handles:
- Schema creation behind a fatal initialization barrier
- Lock-serialized reads and writes from the event loop and worker threads
- Transactions spanning several statements
"""

import sqlite3
import threading
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..exceptions import PersistenceError
from ..utils.logging import get_logger

SCHEMA: tuple[str, ...] = (
    """CREATE TABLE IF NOT EXISTS conversations (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        role TEXT NOT NULL,
        content TEXT NOT NULL,
        timestamp INTEGER NOT NULL,
        metadata TEXT,
        is_pruned INTEGER DEFAULT 0
    )""",
    """CREATE TABLE IF NOT EXISTS facts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        content TEXT NOT NULL,
        embedding TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        source_message_id INTEGER,
        type TEXT NOT NULL DEFAULT 'chat_fact',
        metadata TEXT,
        FOREIGN KEY (source_message_id) REFERENCES conversations(id)
    )""",
    """CREATE TABLE IF NOT EXISTS summaries (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        content TEXT NOT NULL,
        last_pruned_id INTEGER NOT NULL,
        timestamp INTEGER NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS usage (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        model TEXT NOT NULL,
        prompt_tokens INTEGER NOT NULL,
        completion_tokens INTEGER NOT NULL,
        total_tokens INTEGER NOT NULL,
        cost_usd TEXT,
        timestamp INTEGER NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS workflows (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        status TEXT NOT NULL,
        plan TEXT,
        current_step INTEGER DEFAULT 0,
        result TEXT,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS entities (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        description TEXT,
        metadata TEXT,
        created_at INTEGER NOT NULL
    )""",
    "CREATE UNIQUE INDEX IF NOT EXISTS idx_entities_name ON entities(name)",
    """CREATE TABLE IF NOT EXISTS relationships (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        subject_id INTEGER NOT NULL,
        predicate TEXT NOT NULL,
        object_id INTEGER NOT NULL,
        metadata TEXT,
        created_at INTEGER NOT NULL,
        FOREIGN KEY (subject_id) REFERENCES entities(id),
        FOREIGN KEY (object_id) REFERENCES entities(id)
    )""",
    "CREATE INDEX IF NOT EXISTS idx_conversations_pruned ON conversations(is_pruned, id)",
    "CREATE INDEX IF NOT EXISTS idx_facts_type ON facts(type)",
    "CREATE TABLE IF NOT EXISTS _health_check (id INTEGER PRIMARY KEY, ts INTEGER)",
)


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


class Database:
    """
    Single-writer SQLite store shared by every component.

    All statements run under one re-entrant lock, so the connection can be used
    from the event loop and from ``asyncio.to_thread`` workers alike.

    Example:
        db = Database("data/memory.db")
        db.initialize()
        rows = db.query("SELECT id FROM conversations WHERE is_pruned = 0")
    """

    def __init__(self, path: Path | str):
        """
        Open the connection. Schema creation happens in initialize().

        Args:
            path: Database file, or ":memory:"
        """
        self.path = str(path)
        self.logger = get_logger(__name__)
        self._lock = threading.RLock()
        self._initialized = False

        if self.path != ":memory:":
            try:
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise PersistenceError(
                    f"Failed to create database directory: {e}", details={"path": self.path}
                ) from e

        try:
            self._conn = sqlite3.connect(self.path, check_same_thread=False, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = DELETE")
            self._conn.execute("PRAGMA foreign_keys = ON")
        except sqlite3.Error as e:
            raise PersistenceError(
                f"Failed to open database: {e}", details={"path": self.path}
            ) from e

        self.logger.info("database_opened", path=self.path)

    @property
    def initialized(self) -> bool:
        return self._initialized

    def initialize(self) -> None:
        """
        Create the schema and verify it with a health-check write.

        Idempotent. Any failure raises PersistenceError; callers treat it as
        fatal and must not serve traffic.
        """
        with self._lock:
            if self._initialized:
                return

            for sql in SCHEMA:
                try:
                    self._conn.execute(sql)
                except sqlite3.Error as e:
                    self.logger.critical("schema_error", statement=sql.split("(")[0].strip(), error=str(e))
                    raise PersistenceError(
                        f"Schema error: {e}", details={"statement": sql[:40]}
                    ) from e

            try:
                row = self._conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name='conversations'"
                ).fetchone()
                if row is None:
                    raise PersistenceError("Table [conversations] failed to build")
                self._conn.execute("INSERT INTO _health_check (ts) VALUES (?)", (now_ms(),))
            except sqlite3.Error as e:
                raise PersistenceError(f"Post-init verification failed: {e}") from e

            self._initialized = True
            self.logger.info("database_initialized", path=self.path)

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """
        Run one write statement.

        Returns:
            lastrowid for inserts, otherwise the affected row count
        """
        with self._lock:
            try:
                cursor = self._conn.execute(sql, params)
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as e:
                raise PersistenceError(f"Write failed: {e}", details={"sql": sql[:60]}) from e
            if sql.lstrip().upper().startswith("INSERT"):
                return cursor.lastrowid or 0
            return cursor.rowcount

    def query(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        """Run a read statement and return all rows."""
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as e:
                raise PersistenceError(f"Read failed: {e}", details={"sql": sql[:60]}) from e

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        """Run a read statement and return the first row, if any."""
        rows = self.query(sql, params)
        return rows[0] if rows else None

    def scalar(self, sql: str, params: Sequence[Any] = (), default: Any = 0) -> Any:
        row = self.query_one(sql, params)
        if row is None or row[0] is None:
            return default
        return row[0]

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Hold the lock and wrap the enclosed statements in BEGIN/COMMIT.

        Rolls back and re-raises on any exception.
        """
        with self._lock:
            self._conn.execute("BEGIN")
            try:
                yield self._conn
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            else:
                self._conn.execute("COMMIT")

    def close(self) -> None:
        with self._lock:
            self._conn.close()
            self.logger.debug("database_closed", path=self.path)
