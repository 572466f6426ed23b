"""
Query Executor
Builds and runs parameterized statements over tables whose schema is only
known at request time.
"""
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

import structlog
from sqlalchemy import bindparam, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from gateway.connections.connection_resolver import connect
from gateway.core.errors import ExecutionError, SchemaError, ValidationError
from gateway.services.external_db.identifiers import quote_identifier, quote_identifiers
from gateway.services.external_db.schema_introspector import TableSchema

logger = structlog.get_logger()

SORT_DIRECTIONS = {
    "ascending": "ASC",
    "ascend": "ASC",
    "descending": "DESC",
    "descend": "DESC",
}

EXPORT_PAGE_SIZE = 1000

LIKE_ESCAPE = "!"


@dataclass
class QueryRequest:
    """One page of a filtered, sorted table read."""
    table: str
    page: int = 1
    page_size: int = 20
    search_query: Optional[str] = None
    search_fields: Optional[List[str]] = None
    sort_field: Optional[str] = None
    sort_order: str = "ascending"


class _Params:
    """Positional bind parameter names, so column names never reach bind names."""

    def __init__(self):
        self.values: Dict[str, Any] = {}

    def bind(self, value: Any) -> str:
        name = f"p{len(self.values)}"
        self.values[name] = value
        return f":{name}"


def driver_message(error: SQLAlchemyError) -> str:
    """The database's own error text, without SQLAlchemy's statement dump."""
    orig = getattr(error, "orig", None)
    return str(orig) if orig is not None else str(error)


def escape_like(value: str) -> str:
    """Make %, _ and the escape character match themselves in a LIKE pattern."""
    for char in (LIKE_ESCAPE, "%", "_"):
        value = value.replace(char, LIKE_ESCAPE + char)
    return value


def check_columns(schema: TableSchema, names: Sequence[str]) -> None:
    unknown = [name for name in names if not schema.has_column(name)]
    if unknown:
        raise SchemaError(
            f"Unknown column(s) on table '{schema.table_name}': {', '.join(map(str, unknown))}",
            {"table": schema.table_name, "columns": unknown}
        )


class QueryExecutor:
    """Reads and mutates rows of one external database."""

    def __init__(self, engine: Engine):
        self.engine = engine

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _where_clause(self, schema: TableSchema, request: QueryRequest, params: _Params) -> str:
        search = (request.search_query or "").strip()
        if not search:
            return ""

        fields = request.search_fields or schema.column_names
        check_columns(schema, fields)

        pattern = params.bind(f"%{escape_like(search)}%")
        predicates = [
            f"LOWER(CAST({quote_identifier(name)} AS TEXT)) LIKE LOWER({pattern}) ESCAPE '{LIKE_ESCAPE}'"
            for name in fields
        ]
        return " WHERE " + " OR ".join(predicates)

    def _tiebreak(self, schema: TableSchema, exclude: Optional[str] = None) -> List[str]:
        """Order terms that make row order total: the key, else every column."""
        if schema.has_primary_key_column:
            if schema.primary_key == exclude:
                return []
            return [f"{quote_identifier(schema.primary_key)} ASC"]
        # Cast so columns without an ordering operator (json, point) still sort
        return [
            f"CAST({quote_identifier(name)} AS TEXT) ASC"
            for name in schema.column_names
            if name != exclude
        ]

    def _order_clause(self, schema: TableSchema, request: QueryRequest) -> str:
        direction = SORT_DIRECTIONS.get((request.sort_order or "ascending").lower())
        if direction is None:
            raise ValidationError(
                f"Invalid sort order '{request.sort_order}'",
                {"allowed": sorted(SORT_DIRECTIONS)}
            )

        if request.sort_field:
            check_columns(schema, [request.sort_field])
            # Tie-break so pages neither overlap nor skip rows
            terms = [f"{quote_identifier(request.sort_field)} {direction}"]
            terms += self._tiebreak(schema, exclude=request.sort_field)
        elif schema.has_primary_key_column:
            terms = [f"{quote_identifier(schema.primary_key)} {direction}"]
        else:
            terms = self._tiebreak(schema)

        return " ORDER BY " + ", ".join(terms) if terms else ""

    def list_rows(self, schema: TableSchema, request: QueryRequest) -> Dict[str, Any]:
        """
        Read one page of rows.

        Returns:
            {"rows": [...], "total": int} where total counts every row that
            matches the filter, independent of the page.
        """
        if request.page < 1 or request.page_size < 1:
            raise ValidationError(
                "page and page_size must be at least 1",
                {"page": request.page, "page_size": request.page_size}
            )

        params = _Params()
        table = quote_identifier(schema.table_name)
        where = self._where_clause(schema, request, params)
        order = self._order_clause(schema, request)

        count_params = dict(params.values)
        limit = params.bind(request.page_size)
        offset = params.bind((request.page - 1) * request.page_size)

        select_sql = f"SELECT * FROM {table}{where}{order} LIMIT {limit} OFFSET {offset}"
        count_sql = f"SELECT COUNT(*) FROM {table}{where}"

        try:
            with connect(self.engine) as conn:
                rows = [dict(row._mapping) for row in conn.execute(text(select_sql), params.values)]
                total = conn.execute(text(count_sql), count_params).scalar() or 0
        except SQLAlchemyError as e:
            logger.error("row_query_failed", table=schema.table_name, error=driver_message(e))
            raise ExecutionError(driver_message(e), {"table": schema.table_name})

        return {"rows": rows, "total": int(total)}

    def export_rows(self, schema: TableSchema, request: QueryRequest) -> Iterator[Dict[str, Any]]:
        """Yield every row matching the request's filter, page by page."""
        page = 1
        while True:
            page_request = QueryRequest(
                table=request.table,
                page=page,
                page_size=EXPORT_PAGE_SIZE,
                search_query=request.search_query,
                search_fields=request.search_fields,
                sort_field=request.sort_field,
                sort_order=request.sort_order,
            )
            result = self.list_rows(schema, page_request)
            yield from result["rows"]
            if len(result["rows"]) < EXPORT_PAGE_SIZE:
                break
            page += 1

    # ------------------------------------------------------------------
    # Single-row writes
    # ------------------------------------------------------------------

    def insert_row(
        self,
        schema: TableSchema,
        values: Dict[str, Any],
        upsert_key: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Insert one row and return it as stored.

        When upsert_key is given and present in values the row is upserted
        on that column instead.
        """
        if upsert_key and upsert_key in values:
            return self.upsert_row(schema, values, upsert_key)

        check_columns(schema, list(values))
        table = quote_identifier(schema.table_name)
        params = _Params()

        if values:
            placeholders = ", ".join(params.bind(v) for v in values.values())
            sql = f"INSERT INTO {table} ({quote_identifiers(values)}) VALUES ({placeholders}) RETURNING *"
        else:
            sql = f"INSERT INTO {table} DEFAULT VALUES RETURNING *"

        row = self._write_returning(schema, sql, params, "insert")
        return {"primary_key_value": row.get(schema.primary_key), "row": row}

    def upsert_row(self, schema: TableSchema, values: Dict[str, Any], key: str) -> Dict[str, Any]:
        """Insert one row, or update the existing row with the same key."""
        check_columns(schema, list(values) + [key])
        if key not in values:
            raise ValidationError(f"Upsert key '{key}' missing from values", {"key": key})

        table = quote_identifier(schema.table_name)
        params = _Params()
        placeholders = ", ".join(params.bind(v) for v in values.values())

        update_cols = [c for c in values if c != key] or [key]
        update_clause = ", ".join(
            f"{quote_identifier(c)} = EXCLUDED.{quote_identifier(c)}" for c in update_cols
        )

        sql = (
            f"INSERT INTO {table} ({quote_identifiers(values)}) VALUES ({placeholders}) "
            f"ON CONFLICT ({quote_identifier(key)}) DO UPDATE SET {update_clause} RETURNING *"
        )
        row = self._write_returning(schema, sql, params, "upsert")
        return {"primary_key_value": row.get(schema.primary_key), "row": row}

    def _write_returning(self, schema: TableSchema, sql: str, params: _Params, operation: str) -> Dict[str, Any]:
        try:
            with connect(self.engine, transactional=True) as conn:
                row = conn.execute(text(sql), params.values).mappings().first()
        except SQLAlchemyError as e:
            logger.warning(f"row_{operation}_failed", table=schema.table_name, error=driver_message(e))
            raise ExecutionError(driver_message(e), {"table": schema.table_name, "operation": operation})

        logger.info(f"row_{operation}ed", table=schema.table_name)
        return dict(row) if row is not None else {}

    def update_row(
        self,
        schema: TableSchema,
        primary_key_value: Any,
        values: Dict[str, Any]
    ) -> bool:
        """
        Update the row identified by its current primary key value.

        The primary key itself is not editable: a value equal to the current
        one is ignored, any other value is rejected.

        Returns:
            True when a row was updated
        """
        pk = schema.primary_key
        values = dict(values)

        if pk in values:
            if str(values[pk]) != str(primary_key_value):
                raise ValidationError(
                    f"Primary key '{pk}' cannot be modified",
                    {"table": schema.table_name, "primary_key": pk}
                )
            del values[pk]

        if not values:
            raise ValidationError("No columns to update", {"table": schema.table_name})

        check_columns(schema, list(values) + [pk])
        params = _Params()
        assignments = ", ".join(f"{quote_identifier(c)} = {params.bind(v)}" for c, v in values.items())
        where = f"{quote_identifier(pk)} = {params.bind(primary_key_value)}"
        sql = f"UPDATE {quote_identifier(schema.table_name)} SET {assignments} WHERE {where}"

        try:
            with connect(self.engine, transactional=True) as conn:
                result = conn.execute(text(sql), params.values)
        except SQLAlchemyError as e:
            logger.warning("row_update_failed", table=schema.table_name, error=driver_message(e))
            raise ExecutionError(driver_message(e), {"table": schema.table_name, "operation": "update"})

        updated = result.rowcount > 0
        logger.info("row_updated", table=schema.table_name, updated=updated)
        return updated

    # ------------------------------------------------------------------
    # Multi-row writes
    # ------------------------------------------------------------------

    def delete_rows(self, schema: TableSchema, ids: List[Any], primary_key: Optional[str] = None) -> int:
        """Delete rows whose key column is in ids. Returns the number deleted."""
        key = primary_key or schema.primary_key
        check_columns(schema, [key])
        if not ids:
            return 0

        sql = text(
            f"DELETE FROM {quote_identifier(schema.table_name)} WHERE {quote_identifier(key)} IN :ids"
        ).bindparams(bindparam("ids", expanding=True))

        try:
            with connect(self.engine, transactional=True) as conn:
                result = conn.execute(sql, {"ids": list(ids)})
        except SQLAlchemyError as e:
            logger.warning("rows_delete_failed", table=schema.table_name, error=driver_message(e))
            raise ExecutionError(driver_message(e), {"table": schema.table_name, "operation": "delete"})

        logger.info("rows_deleted", table=schema.table_name, deleted=result.rowcount)
        return result.rowcount

    def clear_table(self, schema: TableSchema) -> int:
        """Delete every row of a table. Returns the number deleted."""
        sql = f"DELETE FROM {quote_identifier(schema.table_name)}"
        try:
            with connect(self.engine, transactional=True) as conn:
                result = conn.execute(text(sql))
        except SQLAlchemyError as e:
            logger.warning("table_clear_failed", table=schema.table_name, error=driver_message(e))
            raise ExecutionError(driver_message(e), {"table": schema.table_name, "operation": "clear"})

        logger.info("table_cleared", table=schema.table_name, deleted=result.rowcount)
        return result.rowcount

    def bulk_insert(
        self,
        schema: TableSchema,
        rows: List[Dict[str, Any]],
        upsert_key: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Insert one batch of rows in a single transaction.

        A failing batch is rolled back as a whole, so inserted counts only
        rows that were committed.

        Returns:
            {"inserted": int, "failed": int, "errors": [str, ...]}
        """
        if not rows:
            return {"inserted": 0, "failed": 0, "errors": []}

        all_columns = {name for row in rows for name in row}
        check_columns(schema, sorted(all_columns) + ([upsert_key] if upsert_key else []))

        # Rows with the same key set share one executemany
        groups: Dict[tuple, List[Dict[str, Any]]] = {}
        for row in rows:
            groups.setdefault(tuple(row.keys()), []).append(row)

        table = quote_identifier(schema.table_name)

        try:
            with connect(self.engine, transactional=True) as conn:
                for columns, group in groups.items():
                    if not columns:
                        for _ in group:
                            conn.execute(text(f"INSERT INTO {table} DEFAULT VALUES"))
                        continue

                    bind_names = [f"p{i}" for i in range(len(columns))]
                    sql = (
                        f"INSERT INTO {table} ({quote_identifiers(columns)}) "
                        f"VALUES ({', '.join(':' + name for name in bind_names)})"
                    )
                    if upsert_key and upsert_key in columns:
                        update_cols = [c for c in columns if c != upsert_key] or [upsert_key]
                        sql += (
                            f" ON CONFLICT ({quote_identifier(upsert_key)}) DO UPDATE SET "
                            + ", ".join(
                                f"{quote_identifier(c)} = EXCLUDED.{quote_identifier(c)}"
                                for c in update_cols
                            )
                        )

                    conn.execute(
                        text(sql),
                        [dict(zip(bind_names, (row[c] for c in columns))) for row in group]
                    )
        except SQLAlchemyError as e:
            message = driver_message(e)
            logger.warning(
                "batch_insert_failed",
                table=schema.table_name,
                rows=len(rows),
                error=message
            )
            return {"inserted": 0, "failed": len(rows), "errors": [message]}

        logger.info("batch_inserted", table=schema.table_name, rows=len(rows), upsert=bool(upsert_key))
        return {"inserted": len(rows), "failed": 0, "errors": []}
