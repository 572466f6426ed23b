"""
SQL Execution Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Any, Dict
from datetime import datetime


class SQLRequest(BaseModel):
    """Ad-hoc SQL execution request."""
    sql_statement: str = Field(..., min_length=1)


class SQLResultColumn(BaseModel):
    """Column info in SQL result."""
    name: str
    data_type: str


class SQLResult(BaseModel):
    """SQL execution result."""
    rows: List[Dict[str, Any]] = []
    row_count: int = 0
    fields: List[SQLResultColumn] = []
    execution_time_ms: int
    truncated: bool = False
    sql_type: str


class SqlAuditLogResponse(BaseModel):
    id: int
    application_id: str
    environment: str
    sql_statement: str
    sql_type: str
    status: str
    error_message: Optional[str] = None
    rows_affected: Optional[int] = None
    execution_time_ms: Optional[int] = None
    actor_email: str
    created_at: datetime

    class Config:
        from_attributes = True


class SqlHistoryResponse(BaseModel):
    logs: List[SqlAuditLogResponse]
    total: int
