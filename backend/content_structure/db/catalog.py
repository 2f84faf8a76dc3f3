"""Declarative schema catalog and typed column metadata."""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Any, Literal, Mapping, Sequence

import orjson
import yaml
from pydantic import BaseModel, Field, ValidationError

from content_structure.core.errors import CatalogError
from content_structure.core.logging import get_logger
from content_structure.db.sqlite import quote_ident

logger = get_logger(__name__)

DEFAULT_CATALOG_PATH = Path(__file__).with_name("catalog.yaml")
STRUCTURE_DATASET = "structure"
REQUIRED_TABLES = ("documents", "assets", "blobs", "items", "versions")

ColumnType = Literal["string", "int", "boolean", "blob", "string_list", "object_list"]

SQL_TYPES: Mapping[str, str] = {
    "string": "TEXT",
    "int": "INTEGER",
    "boolean": "INTEGER",
    "blob": "BLOB",
    "string_list": "TEXT",
    "object_list": "TEXT",
}

LIST_TYPES = frozenset({"string_list", "object_list"})


class ColumnSpec(BaseModel):
    name: str
    type: ColumnType
    primary: bool = False
    autoincrement: bool = False

    @property
    def sql_type(self) -> str:
        return SQL_TYPES[self.type]


class TableSpec(BaseModel):
    name: str
    columns: list[ColumnSpec] = Field(default_factory=list)

    @property
    def primary_key(self) -> list[str]:
        return [column.name for column in self.columns if column.primary]

    @property
    def column_names(self) -> list[str]:
        return [column.name for column in self.columns]

    @property
    def insertable_columns(self) -> list[str]:
        """Columns written on insert; autoincrement keys are left to sqlite."""
        return [column.name for column in self.columns if not (column.primary and column.autoincrement)]

    def column(self, name: str) -> ColumnSpec | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def create_sql(self, name: str | None = None) -> str:
        table_name = name or self.name
        primary = self.primary_key
        definitions: list[str] = []
        for column in self.columns:
            definition = f"{quote_ident(column.name)} {column.sql_type}"
            if column.autoincrement and primary == [column.name]:
                definition += " PRIMARY KEY AUTOINCREMENT"
            definitions.append(definition)
        autoincrement_key = len(primary) == 1 and any(
            column.autoincrement for column in self.columns if column.name == primary[0]
        )
        if primary and not autoincrement_key:
            definitions.append(f"PRIMARY KEY ({', '.join(quote_ident(col) for col in primary)})")
        return f"CREATE TABLE {quote_ident(table_name)} ({', '.join(definitions)})"


class DatasetSpec(BaseModel):
    name: str
    tables: list[TableSpec] = Field(default_factory=list)


class Catalog(BaseModel):
    datasets: list[DatasetSpec] = Field(default_factory=list)

    def dataset(self, name: str) -> DatasetSpec:
        for dataset in self.datasets:
            if dataset.name == name:
                return dataset
        raise CatalogError(f"Catalog has no dataset named '{name}'")


def load_catalog(path: Path | None = None) -> Catalog:
    """Load and validate a catalog YAML file (packaged default if ``path`` is None)."""
    catalog_path = path or DEFAULT_CATALOG_PATH
    try:
        with catalog_path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise CatalogError(f"Cannot read catalog {catalog_path}: {exc}") from exc
    try:
        return Catalog.model_validate(raw)
    except ValidationError as exc:
        raise CatalogError(f"Invalid catalog {catalog_path}: {exc}") from exc


class SchemaManager:
    """Typed view over one catalog dataset, used by migrations and the writer."""

    def __init__(
        self,
        catalog: Catalog,
        dataset: str = STRUCTURE_DATASET,
        required_tables: Sequence[str] = REQUIRED_TABLES,
    ) -> None:
        self.catalog = catalog
        self.dataset = catalog.dataset(dataset)
        self._tables = {table.name: table for table in self.dataset.tables}
        missing = [name for name in required_tables if name not in self._tables]
        if missing:
            raise CatalogError(f"Dataset '{dataset}' is missing required tables: {', '.join(missing)}")

    @classmethod
    def from_path(cls, path: Path | None = None) -> "SchemaManager":
        return cls(load_catalog(path))

    @property
    def tables(self) -> list[TableSpec]:
        return list(self.dataset.tables)

    def table(self, name: str) -> TableSpec:
        try:
            return self._tables[name]
        except KeyError:
            raise CatalogError(f"Dataset '{self.dataset.name}' has no table '{name}'") from None

    def has_table(self, name: str) -> bool:
        return name in self._tables

    def columns(self, table: str) -> list[str]:
        return self.table(table).column_names

    def sql_types(self, table: str) -> dict[str, str]:
        return {column.name: column.sql_type for column in self.table(table).columns}

    def insertable_columns(self, table: str) -> list[str]:
        return self.table(table).insertable_columns

    def insert_sql(self, table: str, verb: str = "INSERT") -> str:
        columns = self.insertable_columns(table)
        column_sql = ", ".join(quote_ident(column) for column in columns)
        placeholders = ", ".join("?" for _ in columns)
        return f"{verb} INTO {quote_ident(table)} ({column_sql}) VALUES ({placeholders})"

    def serialize_row(self, table: str, row: Mapping[str, Any]) -> tuple[Any, ...]:
        """Order and coerce ``row`` values for :meth:`insert_sql`."""
        spec = self.table(table)
        values: list[Any] = []
        for name in spec.insertable_columns:
            column = spec.column(name)
            values.append(serialize_value(column.type, row.get(name)))  # type: ignore[union-attr]
        return tuple(values)

    def parse_row(self, table: str, row: Mapping[str, Any]) -> dict[str, Any]:
        spec = self.table(table)
        parsed: dict[str, Any] = {}
        for key in row.keys():
            column = spec.column(key)
            parsed[key] = parse_value(column.type, row[key]) if column else row[key]
        return parsed


def serialize_value(column_type: str, value: Any) -> Any:
    if value is None:
        return None
    if column_type in LIST_TYPES:
        if column_type == "string_list" and not isinstance(value, (list, tuple, set)):
            value = [value]
        if isinstance(value, set):
            value = sorted(value)
        return orjson.dumps(value, default=str).decode("utf-8")
    if column_type == "boolean":
        return 1 if value else 0
    if column_type == "int":
        try:
            return int(value)
        except (TypeError, ValueError):
            logger.warning("Dropping non-integer value %r", value)
            return None
    if column_type == "blob":
        return bytes(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value if isinstance(value, str) else str(value)


def parse_value(column_type: str, value: Any) -> Any:
    if column_type in LIST_TYPES:
        if value is None:
            return []
        try:
            return orjson.loads(value)
        except orjson.JSONDecodeError:
            return []
    if column_type == "boolean" and value is not None:
        return bool(value)
    return value


__all__ = [
    "Catalog",
    "ColumnSpec",
    "DatasetSpec",
    "TableSpec",
    "SchemaManager",
    "load_catalog",
    "serialize_value",
    "parse_value",
    "DEFAULT_CATALOG_PATH",
    "REQUIRED_TABLES",
]
