"""
Table API Routes
Schema-agnostic browsing and editing of external database tables.
"""
from itertools import chain, islice
from urllib.parse import quote
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.engine import Engine
import structlog

from gateway.api.deps import get_external_engine, get_table_schema
from gateway.config import settings
from gateway.core.auth import Actor, get_current_actor
from gateway.core.errors import ValidationError
from gateway.schemas.database import (
    BatchInsertRequest, BatchInsertResponse, ClearTableResponse, ColumnResponse,
    ImportReportResponse, ResetDatabaseRequest, ResetDatabaseResponse,
    RowDeleteRequest, RowDeleteResponse, RowInsertRequest, RowInsertResponse,
    RowQueryRequest, RowQueryResponse, RowUpdateRequest, RowUpdateResponse,
    SortOrder, TableListResponse, TableResponse
)
from gateway.services.data_import.csv_codec import iter_csv_lines
from gateway.services.data_import.import_orchestrator import ImportOrchestrator
from gateway.services.external_db.database_reset import DatabaseReset
from gateway.services.external_db.query_executor import QueryExecutor, QueryRequest
from gateway.services.external_db.schema_introspector import (
    SchemaIntrospector, TableSchema, editable_columns, is_system_field
)

router = APIRouter()
logger = structlog.get_logger()


def content_disposition(filename: str) -> str:
    """Attachment header with an ASCII fallback name and the exact UTF-8 name."""
    fallback = "".join(
        c if c.isascii() and c.isprintable() and c not in '"\\' else "_"
        for c in filename
    )
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(filename, safe='')}"


def to_table_response(schema: TableSchema) -> TableResponse:
    return TableResponse(
        table_name=schema.table_name,
        primary_key=schema.primary_key,
        columns=[
            ColumnResponse(
                name=c.name,
                type=c.type,
                nullable=c.nullable,
                default_value=c.default_value,
                allowed_values=c.allowed_values,
                is_system_field=is_system_field(c.name)
            )
            for c in schema.columns
        ],
        editable_columns=[c.name for c in editable_columns(schema)]
    )


@router.get("/tables", response_model=TableListResponse)
def list_tables(
    engine: Engine = Depends(get_external_engine),
    current_actor: Actor = Depends(get_current_actor)
):
    """List every table with its columns."""
    tables = SchemaIntrospector(engine).list_tables()
    return TableListResponse(tables=[to_table_response(t) for t in tables])


@router.get("/tables/{table}", response_model=TableResponse)
def get_table(
    schema: TableSchema = Depends(get_table_schema),
    current_actor: Actor = Depends(get_current_actor)
):
    """Get the columns and primary key of one table."""
    return to_table_response(schema)


@router.post("/tables/{table}/rows/query", response_model=RowQueryResponse)
def query_rows(
    table: str,
    payload: RowQueryRequest,
    schema: TableSchema = Depends(get_table_schema),
    engine: Engine = Depends(get_external_engine),
    current_actor: Actor = Depends(get_current_actor)
):
    """Read one page of rows."""
    request = QueryRequest(
        table=table,
        page=payload.page,
        page_size=payload.page_size,
        search_query=payload.search_query,
        search_fields=payload.search_fields,
        sort_field=payload.sort_field,
        sort_order=payload.sort_order.value
    )
    return QueryExecutor(engine).list_rows(schema, request)


@router.post("/tables/{table}/rows", response_model=RowInsertResponse)
def insert_row(
    payload: RowInsertRequest,
    schema: TableSchema = Depends(get_table_schema),
    engine: Engine = Depends(get_external_engine),
    current_actor: Actor = Depends(get_current_actor)
):
    """Insert one row."""
    return QueryExecutor(engine).insert_row(schema, payload.values, payload.upsert_key)


@router.put("/tables/{table}/rows", response_model=RowUpdateResponse)
def update_row(
    payload: RowUpdateRequest,
    schema: TableSchema = Depends(get_table_schema),
    engine: Engine = Depends(get_external_engine),
    current_actor: Actor = Depends(get_current_actor)
):
    """Update one row identified by its primary key value."""
    updated = QueryExecutor(engine).update_row(schema, payload.primary_key_value, payload.values)
    return RowUpdateResponse(success=updated)


@router.delete("/tables/{table}/rows", response_model=RowDeleteResponse)
def delete_rows(
    payload: RowDeleteRequest,
    schema: TableSchema = Depends(get_table_schema),
    engine: Engine = Depends(get_external_engine),
    current_actor: Actor = Depends(get_current_actor)
):
    """Delete rows by key value."""
    deleted = QueryExecutor(engine).delete_rows(schema, payload.ids, payload.primary_key)

    logger.info(
        "rows_deleted_via_api",
        table=schema.table_name,
        deleted=deleted,
        user=current_actor.email
    )
    return RowDeleteResponse(deleted=deleted)


@router.post("/tables/{table}/batch", response_model=BatchInsertResponse)
def batch_insert(
    payload: BatchInsertRequest,
    schema: TableSchema = Depends(get_table_schema),
    engine: Engine = Depends(get_external_engine),
    current_actor: Actor = Depends(get_current_actor)
):
    """Insert one batch of rows in a single transaction."""
    if len(payload.rows) > settings.BATCH_INSERT_MAX_ROWS:
        raise ValidationError(
            f"At most {settings.BATCH_INSERT_MAX_ROWS} rows per batch",
            {"rows": len(payload.rows)}
        )
    result = QueryExecutor(engine).bulk_insert(schema, payload.rows, payload.upsert_key)
    result["errors"] = result["errors"][:settings.IMPORT_MAX_ERRORS]
    return result


@router.post("/tables/{table}/clear", response_model=ClearTableResponse)
def clear_table(
    schema: TableSchema = Depends(get_table_schema),
    engine: Engine = Depends(get_external_engine),
    current_actor: Actor = Depends(get_current_actor)
):
    """Delete every row of a table."""
    deleted = QueryExecutor(engine).clear_table(schema)

    logger.info("table_cleared_via_api", table=schema.table_name, deleted=deleted, user=current_actor.email)
    return ClearTableResponse(table=schema.table_name, deleted=deleted)


@router.post("/tables/{table}/import", response_model=ImportReportResponse)
def import_csv(
    file: UploadFile = File(...),
    schema: TableSchema = Depends(get_table_schema),
    engine: Engine = Depends(get_external_engine),
    current_actor: Actor = Depends(get_current_actor)
):
    """
    Import a CSV file in sequential batches.

    Stops at the first failing batch; 409 with the import report when that
    happens, rows from earlier batches stay committed.
    """
    try:
        content = file.file.read().decode("utf-8-sig")
    except UnicodeDecodeError:
        raise ValidationError("CSV file must be UTF-8 encoded", {"filename": file.filename})

    job = ImportOrchestrator(QueryExecutor(engine)).import_csv(schema, content, raise_on_failure=True)

    logger.info(
        "csv_imported",
        table=schema.table_name,
        filename=file.filename,
        success_count=job.success_count,
        user=current_actor.email
    )
    return job.to_dict()


@router.get("/tables/{table}/export")
def export_csv(
    table: str,
    search_query: Optional[str] = Query(None),
    sort_field: Optional[str] = Query(None),
    sort_order: SortOrder = Query(SortOrder.ASCENDING),
    schema: TableSchema = Depends(get_table_schema),
    engine: Engine = Depends(get_external_engine),
    current_actor: Actor = Depends(get_current_actor)
):
    """Export the (filtered) rows of a table as CSV."""
    request = QueryRequest(
        table=table,
        search_query=search_query,
        sort_field=sort_field,
        sort_order=sort_order.value
    )
    rows = QueryExecutor(engine).export_rows(schema, request)
    # Pull the first page now so query errors surface as JSON, not a broken stream
    first = list(islice(rows, 1))

    return StreamingResponse(
        iter_csv_lines(chain(first, rows), schema.column_names),
        media_type="text/csv",
        headers={"Content-Disposition": content_disposition(f"{schema.table_name}.csv")}
    )


@router.post("/reset", response_model=ResetDatabaseResponse)
def reset_database(
    payload: Optional[ResetDatabaseRequest] = None,
    engine: Engine = Depends(get_external_engine),
    current_actor: Actor = Depends(get_current_actor)
):
    """Drop every table, then re-run the supplied migration files."""
    files = [f.model_dump() for f in payload.migration_files] if payload else []
    result = DatabaseReset(engine).reset(files)

    logger.warning(
        "database_reset",
        tables_dropped=result["tables_dropped"],
        files_executed=result["files_executed"],
        user=current_actor.email
    )
    return result
