"""SQLite management utilities."""

from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

DEFAULT_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA foreign_keys=ON;",
    "PRAGMA temp_store=MEMORY;",
    "PRAGMA busy_timeout=5000;",
)


class SQLiteDatabase:
    """Thin wrapper around sqlite3 shared by the pipeline, services and writer threads.

    One connection is opened lazily and every statement runs under a re-entrant lock,
    so ``transaction()`` keeps the unit of work exclusive across threads.
    """

    def __init__(self, db_path: Path, read_only: bool = False) -> None:
        self.db_path = db_path.expanduser()
        self.read_only = read_only
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()
        self._depth = 0

    def connect(self) -> sqlite3.Connection:
        with self._lock:
            if self._connection is None:
                if not self.read_only:
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                if self.read_only:
                    uri = f"file:{self.db_path}?mode=ro"
                    self._connection = sqlite3.connect(uri, uri=True, check_same_thread=False)
                else:
                    self._connection = sqlite3.connect(self.db_path, check_same_thread=False)
                self._connection.row_factory = sqlite3.Row
                for pragma in DEFAULT_PRAGMAS:
                    self._connection.execute(pragma)
            return self._connection

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    def __enter__(self) -> "SQLiteDatabase":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.commit()
        else:
            self.rollback()
        self.close()

    def commit(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.commit()

    def rollback(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.rollback()

    def executescript(self, script: str) -> None:
        with self._lock:
            conn = self.connect()
            conn.executescript(script)

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        """Run a single statement and commit unless a transaction is open."""
        with self._lock:
            conn = self.connect()
            cursor = conn.execute(sql, params or [])
            if self._depth == 0:
                conn.commit()
            return cursor

    def executemany(self, sql: str, seq_of_params: Iterable[Sequence[Any]]) -> sqlite3.Cursor:
        with self._lock:
            conn = self.connect()
            cursor = conn.executemany(sql, seq_of_params)
            if self._depth == 0:
                conn.commit()
            return cursor

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        with self._lock:
            conn = self.connect()
            return conn.execute(sql, params or []).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Row | None:
        rows = self.query(sql, params)
        return rows[0] if rows else None

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Cursor]:
        with self._lock:
            conn = self.connect()
            if self._depth > 0:
                # Nested units of work join the outer transaction.
                cursor = conn.cursor()
                self._depth += 1
                try:
                    yield cursor
                finally:
                    self._depth -= 1
                    cursor.close()
                return
            cursor = conn.cursor()
            self._depth = 1
            try:
                yield cursor
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                self._depth = 0
                cursor.close()

    def ensure_schema(self, schema_sql: str | None = None) -> None:
        if schema_sql is None:
            schema_path = Path(__file__).with_name("schema.sql")
            schema_sql = schema_path.read_text(encoding="utf-8")
        self.executescript(schema_sql)


__all__ = ["SQLiteDatabase"]
