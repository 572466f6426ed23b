"""
Audit Service
Append-only store of ad-hoc SQL executions, scoped per application and
environment.
"""
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
import structlog

from gateway.models.audit import SqlAuditLog, SqlAuditStatus

logger = structlog.get_logger()


class AuditService:
    """Service for creating and querying SQL audit log entries"""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        application_id: str,
        environment: str,
        sql_statement: str,
        sql_type: str,
        status: SqlAuditStatus,
        actor_email: str,
        error_message: Optional[str] = None,
        rows_affected: Optional[int] = None,
        execution_time_ms: Optional[int] = None
    ) -> SqlAuditLog:
        """
        Create an audit log entry

        Args:
            application_id: Application the statement ran against
            environment: preview or production
            sql_statement: Statement text as submitted
            sql_type: Detected statement type
            status: SUCCESS or FAILURE
            actor_email: Email of the user who ran the statement
            error_message: Database error text (if failed)
            rows_affected: Rows matched or changed
            execution_time_ms: Wall-clock execution time

        Returns:
            Created SqlAuditLog instance
        """
        entry = SqlAuditLog(
            application_id=application_id,
            environment=getattr(environment, "value", environment),
            sql_statement=sql_statement,
            sql_type=getattr(sql_type, "value", sql_type),
            status=status.value,
            error_message=error_message,
            rows_affected=rows_affected,
            execution_time_ms=execution_time_ms,
            actor_email=actor_email,
        )

        try:
            self.db.add(entry)
            self.db.commit()
            self.db.refresh(entry)
        except SQLAlchemyError:
            self.db.rollback()
            raise

        return entry

    def list(
        self,
        application_id: str,
        environment: str,
        limit: int = 50,
        offset: int = 0
    ) -> Dict[str, Any]:
        """Entries of one scope, newest first, with the scope's total count."""
        query = self.db.query(SqlAuditLog).filter(
            SqlAuditLog.application_id == application_id,
            SqlAuditLog.environment == getattr(environment, "value", environment)
        )

        total = query.count()
        logs = query.order_by(
            SqlAuditLog.created_at.desc(),
            SqlAuditLog.id.desc()
        ).offset(offset).limit(limit).all()

        return {"logs": logs, "total": total}
