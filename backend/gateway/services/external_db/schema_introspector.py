"""
Schema Introspector
Reads table and column metadata of an external database at request time.
"""
from dataclasses import dataclass, field
import re
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.engine.reflection import Inspector
from sqlalchemy.exc import SQLAlchemyError

from gateway.connections.connection_resolver import connect
from gateway.core.errors import ExecutionError, SchemaError

logger = structlog.get_logger()

FALLBACK_PRIMARY_KEY = "id"

SYSTEM_FIELDS = (
    "created_at",
    "updated_at",
    "created_date",
    "updated_date",
    "createdAt",
    "updatedAt",
    "timestamp",
    "last_modified",
    "lastModified",
)

_IN_LIST = re.compile(r"\bIN\s*\(([^)]*)\)", re.IGNORECASE)
_ARRAY_LIST = re.compile(r"\bARRAY\s*\[([^\]]*)\]", re.IGNORECASE)
_QUOTED_VALUE = re.compile(r"'((?:[^']|'')*)'")


@dataclass(frozen=True)
class ColumnDescriptor:
    """Column metadata."""
    name: str
    type: str
    nullable: bool
    default_value: Optional[str] = None
    allowed_values: Optional[List[str]] = None


@dataclass
class TableSchema:
    """Columns and inferred primary key of one table."""
    table_name: str
    columns: List[ColumnDescriptor] = field(default_factory=list)
    primary_key: str = FALLBACK_PRIMARY_KEY

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    def has_column(self, name: str) -> bool:
        return any(c.name == name for c in self.columns)

    def get_column(self, name: str) -> ColumnDescriptor:
        for column in self.columns:
            if column.name == name:
                return column
        raise SchemaError(
            f"Column '{name}' does not exist on table '{self.table_name}'",
            {"table": self.table_name, "column": name}
        )

    @property
    def has_primary_key_column(self) -> bool:
        return self.has_column(self.primary_key)


def primary_key_of(columns: List[ColumnDescriptor], table_name: Optional[str] = None) -> str:
    """
    Infer the primary key column.

    Order: a column named "id", then "<table>_id", then a column whose
    default draws from a sequence. Falls back to "id" even when no such
    column exists.
    """
    names = [c.name for c in columns]

    if "id" in names:
        return "id"

    if table_name and f"{table_name}_id" in names:
        return f"{table_name}_id"

    for column in columns:
        if column.default_value and "nextval" in column.default_value.lower():
            return column.name

    return FALLBACK_PRIMARY_KEY


def is_system_field(name: str) -> bool:
    """Whether a column is maintained by the database rather than by users."""
    lowered = name.lower()
    return any(field_name.lower() in lowered for field_name in SYSTEM_FIELDS)


def editable_columns(schema: TableSchema) -> List[ColumnDescriptor]:
    """Columns shown on create/edit forms."""
    return [
        c for c in schema.columns
        if not is_system_field(c.name) and c.name != schema.primary_key
    ]


def parse_check_values(sqltext: str, column_name: str) -> Optional[List[str]]:
    """
    Extract the allowed literals of a CHECK constraint on one column.

    Understands `col IN ('a', 'b')` and PostgreSQL's rendering of it,
    `(col)::text = ANY (ARRAY['a'::text, 'b'::text])`.
    """
    if not re.search(r'(?<![\w"])"?' + re.escape(column_name) + r'"?(?![\w"])', sqltext):
        return None

    match = _IN_LIST.search(sqltext) or _ARRAY_LIST.search(sqltext)
    if not match:
        return None

    values = [v.replace("''", "'") for v in _QUOTED_VALUE.findall(match.group(1))]
    return values or None


class SchemaIntrospector:
    """Lists tables and columns of the default schema of an external database."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def _check_constraints(self, inspector: Inspector, table: str) -> List[Dict[str, Any]]:
        try:
            return inspector.get_check_constraints(table)
        except NotImplementedError:
            return []

    def _read_table(self, inspector: Inspector, table: str) -> TableSchema:
        checks = self._check_constraints(inspector, table)

        columns = []
        for col in inspector.get_columns(table):
            allowed_values = None
            enums = getattr(col["type"], "enums", None)
            if enums:
                allowed_values = list(enums)
            else:
                for check in checks:
                    allowed_values = parse_check_values(check.get("sqltext") or "", col["name"])
                    if allowed_values:
                        break

            columns.append(ColumnDescriptor(
                name=col["name"],
                type=str(col["type"]),
                nullable=bool(col.get("nullable", True)),
                default_value=str(col["default"]) if col.get("default") is not None else None,
                allowed_values=allowed_values,
            ))

        return TableSchema(
            table_name=table,
            columns=columns,
            primary_key=primary_key_of(columns, table)
        )

    def list_tables(self) -> List[TableSchema]:
        """Every table of the default schema with its columns."""
        try:
            with connect(self.engine) as conn:
                inspector = inspect(conn)
                tables = [self._read_table(inspector, name) for name in sorted(inspector.get_table_names())]
        except SQLAlchemyError as e:
            logger.error("schema_introspection_failed", error=str(e))
            raise ExecutionError(f"Failed to read database schema: {e}")

        logger.info("schema_introspected", tables=len(tables))
        return tables

    def get_table(self, table: str) -> TableSchema:
        """
        Read one table.

        Raises:
            SchemaError: The table does not exist
        """
        try:
            with connect(self.engine) as conn:
                inspector = inspect(conn)
                if table not in inspector.get_table_names():
                    raise SchemaError(f"Table '{table}' does not exist", {"table": table})
                return self._read_table(inspector, table)
        except SQLAlchemyError as e:
            logger.error("schema_introspection_failed", table=table, error=str(e))
            raise ExecutionError(f"Failed to read table '{table}': {e}")

    def table_names(self) -> List[str]:
        try:
            with connect(self.engine) as conn:
                return inspect(conn).get_table_names()
        except SQLAlchemyError as e:
            raise ExecutionError(f"Failed to list tables: {e}")
