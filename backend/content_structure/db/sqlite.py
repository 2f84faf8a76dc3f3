"""SQLite management utilities."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

DEFAULT_PRAGMAS = (
    "PRAGMA journal_mode=WAL;",
    "PRAGMA synchronous=NORMAL;",
    "PRAGMA temp_store=MEMORY;",
)


@dataclass(slots=True)
class PhysicalColumn:
    name: str
    sql_type: str
    pk: int


def quote_ident(name: str) -> str:
    """Quote an SQL identifier."""
    return '"' + name.replace('"', '""') + '"'


class SQLiteDatabase:
    """Thin wrapper around sqlite3 providing pragmatic defaults.

    One writer process per database file is assumed; sqlite's own file
    locking is the only guard against concurrent writers.
    """

    def __init__(self, db_path: Path, read_only: bool = False) -> None:
        self.db_path = db_path.expanduser()
        self.read_only = read_only
        self._connection: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        if self._connection is None:
            if not self.read_only:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            if self.read_only:
                uri = f"file:{self.db_path}?mode=ro"
                self._connection = sqlite3.connect(uri, uri=True)
            else:
                self._connection = sqlite3.connect(self.db_path)
                for pragma in DEFAULT_PRAGMAS:
                    self._connection.execute(pragma)
            self._connection.row_factory = sqlite3.Row
        return self._connection

    def close(self) -> None:
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
        if self._connection is not None:
            self._connection.commit()

    def rollback(self) -> None:
        if self._connection is not None:
            self._connection.rollback()

    def execute(self, sql: str, params: Sequence[Any] | None = None) -> sqlite3.Cursor:
        conn = self.connect()
        return conn.execute(sql, params or [])

    def executemany(self, sql: str, seq_of_params: Iterable[Sequence[Any]]) -> sqlite3.Cursor:
        conn = self.connect()
        return conn.executemany(sql, seq_of_params)

    def query(self, sql: str, params: Sequence[Any] | None = None) -> list[sqlite3.Row]:
        cursor = self.execute(sql, params)
        return cursor.fetchall()

    @contextmanager
    def transaction(self, begin: bool = False) -> Iterator[sqlite3.Cursor]:
        """Commit on success, roll back on error.

        ``begin`` opens the transaction explicitly so DDL statements, which
        sqlite3 otherwise runs in autocommit, roll back as well.
        """
        conn = self.connect()
        cursor = conn.cursor()
        if begin and not conn.in_transaction:
            cursor.execute("BEGIN")
        try:
            yield cursor
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            cursor.close()

    # Introspection ----------------------------------------------------

    def list_tables(self) -> list[str]:
        rows = self.query(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
        )
        return [row["name"] for row in rows]

    def table_exists(self, table: str) -> bool:
        row = self.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            [table],
        ).fetchone()
        return row is not None

    def table_columns(self, table: str) -> list[PhysicalColumn]:
        rows = self.query(f"PRAGMA table_info({quote_ident(table)})")
        return [PhysicalColumn(name=row["name"], sql_type=row["type"], pk=row["pk"]) for row in rows]

    def primary_key(self, table: str) -> list[str]:
        """Primary-key column names in key order."""
        columns = [column for column in self.table_columns(table) if column.pk > 0]
        return [column.name for column in sorted(columns, key=lambda column: column.pk)]

    def count_rows(self, table: str) -> int:
        row = self.execute(f"SELECT COUNT(*) AS count FROM {quote_ident(table)}").fetchone()
        return int(row["count"]) if row else 0


def iter_rows(cursor: sqlite3.Cursor) -> Iterator[sqlite3.Row]:
    """Yield rows from a cursor lazily."""
    while True:
        row = cursor.fetchone()
        if row is None:
            break
        yield row


__all__ = ["SQLiteDatabase", "PhysicalColumn", "iter_rows", "quote_ident"]
