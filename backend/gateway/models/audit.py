"""
SQL Audit Log Model
"""
from sqlalchemy import Column, Integer, String, DateTime, Text, Index
from sqlalchemy.sql import func
import enum

from gateway.database import Base


class SqlType(str, enum.Enum):
    """Statement types recognised by the ad-hoc SQL executor."""
    SELECT = "SELECT"
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    UNKNOWN = "UNKNOWN"


class SqlAuditStatus(str, enum.Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


class SqlAuditLog(Base):
    """Append-only record of one ad-hoc SQL execution attempt."""
    __tablename__ = "sql_audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    # Scope
    application_id = Column(String(255), nullable=False)
    environment = Column(String(20), nullable=False)

    # Statement
    sql_statement = Column(Text, nullable=False)
    sql_type = Column(String(20), nullable=False)

    # Outcome
    status = Column(String(20), nullable=False)
    error_message = Column(Text)
    rows_affected = Column(Integer)
    execution_time_ms = Column(Integer)

    # Actor
    actor_email = Column(String(255), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("ix_sql_audit_logs_scope", "application_id", "environment", "created_at"),
    )
