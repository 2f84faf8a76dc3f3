"""Reconcile the physical sqlite schema with the declarative catalog.

Each declared table is created when absent. When the ordered primary key of
the existing table differs from the catalog, the table is rebuilt: a
temporary table with the new definition receives every column the old and
new layouts share, the old table is dropped and the temporary one renamed.
Declared columns still missing afterwards are added, defaulting to NULL.
"""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass, field
from typing import Literal

from content_structure.core.errors import SchemaMigrationError
from content_structure.core.logging import get_logger
from content_structure.db.catalog import SchemaManager, TableSpec
from content_structure.db.sqlite import SQLiteDatabase, quote_ident

logger = get_logger(__name__)

MigrationAction = Literal["created", "rebuilt", "altered", "unchanged"]

_REBUILD_SUFFIX = "__rebuild"


@dataclass
class MigrationResult:
    """Outcome of reconciling one table."""

    table: str
    action: MigrationAction
    added_columns: list[str] = field(default_factory=list)
    copied_columns: list[str] = field(default_factory=list)
    dropped_rows: int = 0


class TableMigrator:
    """Applies the create / rebuild / add-column steps for catalog tables."""

    def __init__(self, db: SQLiteDatabase, schema: SchemaManager) -> None:
        self.db = db
        self.schema = schema

    def reconcile(self) -> list[MigrationResult]:
        results: list[MigrationResult] = []
        try:
            with self.db.transaction(begin=True):
                for table in self.schema.tables:
                    results.append(self.reconcile_table(table))
        except sqlite3.DatabaseError as exc:
            raise SchemaMigrationError(f"Schema reconciliation failed: {exc}") from exc
        for result in results:
            if result.action != "unchanged":
                logger.info(
                    "Table %s %s (added=%s, copied=%s)",
                    result.table,
                    result.action,
                    result.added_columns,
                    result.copied_columns,
                )
        return results

    def reconcile_table(self, table: TableSpec) -> MigrationResult:
        if not self.db.table_exists(table.name):
            self.db.execute(table.create_sql())
            return MigrationResult(table=table.name, action="created")

        result = MigrationResult(table=table.name, action="unchanged")
        if self.db.primary_key(table.name) != table.primary_key:
            self._rebuild(table, result)
        added = self._add_missing_columns(table)
        if added:
            result.added_columns = added
            if result.action == "unchanged":
                result.action = "altered"
        return result

    def _rebuild(self, table: TableSpec, result: MigrationResult) -> None:
        temp_name = f"{table.name}{_REBUILD_SUFFIX}"
        old_columns = {column.name for column in self.db.table_columns(table.name)}
        copied = [
            column.name
            for column in table.columns
            if column.name in old_columns and not column.autoincrement
        ]
        before = self.db.count_rows(table.name)
        self.db.execute(f"DROP TABLE IF EXISTS {quote_ident(temp_name)}")
        self.db.execute(table.create_sql(temp_name))
        if copied:
            column_sql = ", ".join(quote_ident(name) for name in copied)
            self.db.execute(
                f"INSERT OR IGNORE INTO {quote_ident(temp_name)} ({column_sql}) "
                f"SELECT {column_sql} FROM {quote_ident(table.name)}"
            )
        after = self.db.count_rows(temp_name)
        self.db.execute(f"DROP TABLE {quote_ident(table.name)}")
        self.db.execute(f"ALTER TABLE {quote_ident(temp_name)} RENAME TO {quote_ident(table.name)}")
        result.action = "rebuilt"
        result.copied_columns = copied
        result.dropped_rows = before - after
        if result.dropped_rows:
            logger.warning(
                "Rebuilding %s dropped %d rows colliding on key %s",
                table.name,
                result.dropped_rows,
                table.primary_key,
            )

    def _add_missing_columns(self, table: TableSpec) -> list[str]:
        existing = {column.name for column in self.db.table_columns(table.name)}
        added: list[str] = []
        for column in table.columns:
            if column.name in existing:
                continue
            if column.primary:
                # a key column can only appear through a rebuild
                raise SchemaMigrationError(f"Primary key column {table.name}.{column.name} missing after rebuild")
            self.db.execute(
                f"ALTER TABLE {quote_ident(table.name)} ADD COLUMN {quote_ident(column.name)} {column.sql_type}"
            )
            added.append(column.name)
        return added


def reconcile_schema(db: SQLiteDatabase, schema: SchemaManager) -> list[MigrationResult]:
    """Bring every catalog table of ``schema`` in line with ``db``."""
    return TableMigrator(db, schema).reconcile()


__all__ = ["MigrationResult", "TableMigrator", "reconcile_schema"]
