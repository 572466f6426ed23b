"""
Schemas Package
"""
from gateway.schemas.database import (
    SortOrder,
    ConnectionSettingsUpdate, ConnectionSettingsResponse, ConnectionTestResponse,
    ColumnResponse, TableResponse, TableListResponse,
    RowQueryRequest, RowQueryResponse,
    RowInsertRequest, RowInsertResponse, RowUpdateRequest, RowUpdateResponse,
    RowDeleteRequest, RowDeleteResponse, BatchInsertRequest, BatchInsertResponse,
    ClearTableResponse, ImportReportResponse,
    MigrationFile, ResetDatabaseRequest, ResetDatabaseResponse
)
from gateway.schemas.sql import (
    SQLRequest, SQLResult, SQLResultColumn,
    SqlAuditLogResponse, SqlHistoryResponse
)

__all__ = [
    # Database
    "SortOrder",
    "ConnectionSettingsUpdate", "ConnectionSettingsResponse", "ConnectionTestResponse",
    "ColumnResponse", "TableResponse", "TableListResponse",
    "RowQueryRequest", "RowQueryResponse",
    "RowInsertRequest", "RowInsertResponse", "RowUpdateRequest", "RowUpdateResponse",
    "RowDeleteRequest", "RowDeleteResponse", "BatchInsertRequest", "BatchInsertResponse",
    "ClearTableResponse", "ImportReportResponse",
    "MigrationFile", "ResetDatabaseRequest", "ResetDatabaseResponse",
    # SQL
    "SQLRequest", "SQLResult", "SQLResultColumn",
    "SqlAuditLogResponse", "SqlHistoryResponse",
]
