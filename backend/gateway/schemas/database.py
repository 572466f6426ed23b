"""
External Database Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Any, Dict
from enum import Enum


class SortOrder(str, Enum):
    ASCENDING = "ascending"
    DESCENDING = "descending"
    ASCEND = "ascend"
    DESCEND = "descend"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

class ConnectionSettingsUpdate(BaseModel):
    """Connection settings of one environment."""
    database_url: str = Field(..., min_length=1)
    jwt_secret: Optional[str] = None


class ConnectionSettingsResponse(BaseModel):
    application_id: str
    environment: str
    configured: bool
    database_url: Optional[str] = Field(None, description="Connection URL with the password hidden")
    has_jwt_secret: bool = False


class ConnectionTestResponse(BaseModel):
    is_healthy: bool
    response_time_ms: int
    dialect: Optional[str] = None
    error_message: Optional[str] = None


# ---------------------------------------------------------------------------
# Tables
# ---------------------------------------------------------------------------

class ColumnResponse(BaseModel):
    name: str
    type: str
    nullable: bool
    default_value: Optional[str] = None
    allowed_values: Optional[List[str]] = None
    is_system_field: bool = False


class TableResponse(BaseModel):
    table_name: str
    primary_key: str
    columns: List[ColumnResponse]
    editable_columns: List[str] = []


class TableListResponse(BaseModel):
    tables: List[TableResponse]


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------

class RowQueryRequest(BaseModel):
    """Paginated, filtered, sorted read of one table."""
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=1000)
    search_query: Optional[str] = None
    search_fields: Optional[List[str]] = None
    sort_field: Optional[str] = None
    sort_order: SortOrder = SortOrder.ASCENDING


class RowQueryResponse(BaseModel):
    rows: List[Dict[str, Any]]
    total: int


class RowInsertRequest(BaseModel):
    values: Dict[str, Any]
    upsert_key: Optional[str] = None


class RowInsertResponse(BaseModel):
    primary_key_value: Any = None
    row: Dict[str, Any]


class RowUpdateRequest(BaseModel):
    primary_key_value: Any
    values: Dict[str, Any]


class RowUpdateResponse(BaseModel):
    success: bool


class RowDeleteRequest(BaseModel):
    primary_key: Optional[str] = None
    ids: List[Any] = Field(..., min_length=1)


class RowDeleteResponse(BaseModel):
    deleted: int


class BatchInsertRequest(BaseModel):
    rows: List[Dict[str, Any]]
    upsert_key: Optional[str] = None


class BatchInsertResponse(BaseModel):
    inserted: int
    failed: int
    errors: List[str] = []


class ClearTableResponse(BaseModel):
    table: str
    deleted: int


# ---------------------------------------------------------------------------
# Import / reset
# ---------------------------------------------------------------------------

class ImportReportResponse(BaseModel):
    state: str
    total: int
    batch_size: int
    batches_run: int
    processed_count: int
    success_count: int
    failure_count: int
    error: Optional[str] = None
    errors: List[str] = []
    stopped: bool
    upsert_key: Optional[str] = None


class MigrationFile(BaseModel):
    path: str
    content: str = ""


class ResetDatabaseRequest(BaseModel):
    migration_files: List[MigrationFile] = []


class ResetDatabaseResponse(BaseModel):
    tables_dropped: int
    tables: List[str]
    files_executed: int = 0
    migration_error: Optional[str] = None
