"""
SQL Execution Engine - ad-hoc statements against external databases
"""
import time
import re
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
import structlog

from gateway.config import settings
from gateway.connections.connection_resolver import connect
from gateway.core.errors import DatabaseConnectionError, ExecutionError, StatementTypeError
from gateway.models.audit import SqlAuditStatus, SqlType
from gateway.services.audit_service import AuditService
from gateway.services.external_db.query_executor import driver_message

logger = structlog.get_logger()

# Rows pulled per round trip when counting past the returned window
FETCH_CHUNK_SIZE = 1000


class QueryValidator:
    """Validate and classify SQL statements."""

    ALLOWED_TYPES = (SqlType.SELECT, SqlType.INSERT, SqlType.UPDATE, SqlType.DELETE)

    # Blocked anywhere outside comments, literals and quoted identifiers
    DANGEROUS_KEYWORDS = ("DROP", "TRUNCATE", "ALTER", "CREATE", "GRANT", "REVOKE")

    LEADING_KEYWORD = re.compile(r"^\s*([A-Za-z]+)\b")

    # One alternation, so whichever token starts first wins ('--' is a literal).
    # Backslash escapes only inside E'...' strings; a dollar quote or E prefix
    # glued to an identifier is part of that identifier.
    NON_CODE = re.compile(
        r"--[^\n]*"
        r"|/\*.*?\*/"
        r"|(?<![A-Za-z0-9_$])\$([A-Za-z_][A-Za-z0-9_]*|)\$.*?\$\1\$"
        r"|(?<![A-Za-z0-9_$])[Ee]'(?:[^'\\]|\\.|'')*'"
        r"|'(?:[^']|'')*'"
        r'|"(?:[^"]|"")*"'
        r"|`(?:[^`]|``)*`",
        re.DOTALL
    )

    @classmethod
    def get_sql_type(cls, sql: str) -> SqlType:
        """Determine the type of a statement from its leading keyword."""
        match = cls.LEADING_KEYWORD.match(sql or "")
        if not match:
            return SqlType.UNKNOWN
        try:
            return SqlType(match.group(1).upper())
        except ValueError:
            return SqlType.UNKNOWN

    @classmethod
    def strip_literals_and_comments(cls, sql: str) -> str:
        return cls.NON_CODE.sub(" ", sql)

    @classmethod
    def validate(cls, sql: str) -> SqlType:
        """
        Check a statement before it is sent anywhere.

        Returns:
            The statement type

        Raises:
            StatementTypeError: Empty, multi-statement, not allow-listed, or
                containing a blocked keyword
        """
        if not sql or not sql.strip():
            raise StatementTypeError("SQL statement is empty")

        sql_type = cls.get_sql_type(sql)
        if sql_type not in cls.ALLOWED_TYPES:
            raise StatementTypeError(
                "Only SELECT, INSERT, UPDATE, and DELETE statements are allowed",
                sql_type.value
            )

        sanitized = cls.strip_literals_and_comments(sql)

        if re.search(r";\s*\S", sanitized):
            raise StatementTypeError("Multiple statements are not allowed", sql_type.value)

        for keyword in cls.DANGEROUS_KEYWORDS:
            if re.search(rf"\b{keyword}\b", sanitized, re.IGNORECASE):
                raise StatementTypeError(f'Dangerous keyword "{keyword}" is not allowed', sql_type.value)

        return sql_type


def unique_column_names(names: List[str]) -> List[str]:
    """Suffix repeated result column names: id, id_2, id_3."""
    seen: Dict[str, int] = {}
    taken = set(names)
    result = []
    for name in names:
        count = seen.get(name, 0) + 1
        seen[name] = count
        if count == 1:
            result.append(name)
            continue
        candidate = f"{name}_{count}"
        while candidate in taken:
            count += 1
            candidate = f"{name}_{count}"
        seen[name] = count
        taken.add(candidate)
        result.append(candidate)
    return result


def infer_data_type(rows: List[Dict[str, Any]], column: str) -> str:
    for row in rows:
        value = row.get(column)
        if value is not None:
            return type(value).__name__
    return "unknown"


class SQLEngine:
    """Runs one validated statement and records it in the audit log."""

    def __init__(
        self,
        engine: Engine,
        audit_service: AuditService,
        max_rows: int = None,
        statement_timeout_ms: int = None
    ):
        self.engine = engine
        self.audit_service = audit_service
        self.max_rows = max_rows or settings.SQL_MAX_ROWS
        self.statement_timeout_ms = statement_timeout_ms or settings.SQL_STATEMENT_TIMEOUT_MS

    def _run(self, sql: str, sql_type: SqlType) -> Tuple[List[str], List[tuple], int, int]:
        """
        Execute one statement, keeping at most max_rows result rows.

        Returns:
            (columns, kept rows, rows the statement returned, rows affected)
        """
        # Sent verbatim: no bind parameter parsing of ':' and no '%' formatting
        options = {"no_parameters": True}
        if sql_type == SqlType.SELECT:
            options["stream_results"] = True

        with connect(self.engine, transactional=True) as conn:
            if conn.dialect.name == "postgresql":
                conn.exec_driver_sql(f"SET LOCAL statement_timeout = {int(self.statement_timeout_ms)}")

            result = conn.exec_driver_sql(sql, execution_options=options)
            columns, records, returned = [], [], 0
            if result.returns_rows:
                columns = list(result.keys())
                records = result.fetchmany(self.max_rows)
                returned = len(records)
                # Count the remainder without holding it
                chunk = result.fetchmany(FETCH_CHUNK_SIZE)
                while chunk:
                    returned += len(chunk)
                    chunk = result.fetchmany(FETCH_CHUNK_SIZE)

            if sql_type == SqlType.SELECT or (result.rowcount is None or result.rowcount < 0):
                affected = returned
            else:
                affected = result.rowcount

        return columns, records, returned, affected

    def _audit(self, application_id: str, environment: str, sql: str, sql_type: SqlType,
               status: SqlAuditStatus, actor_email: str, **kwargs) -> None:
        try:
            self.audit_service.append(
                application_id=application_id,
                environment=environment,
                sql_statement=sql,
                sql_type=sql_type,
                status=status,
                actor_email=actor_email,
                **kwargs
            )
        except SQLAlchemyError as e:
            logger.error(
                "sql_audit_write_failed",
                application_id=application_id,
                environment=environment,
                status=status.value,
                error=str(e)
            )

    def execute(
        self,
        application_id: str,
        environment: str,
        sql: str,
        actor_email: str
    ) -> Dict[str, Any]:
        """
        Validate, execute and audit one statement.

        Rejected statements never reach the database and are not audited.
        Statements the database rejects are audited as FAILURE and raised as
        ExecutionError with the database's message; a connection that cannot
        be established is audited as FAILURE and raised as
        DatabaseConnectionError.

        Returns:
            {rows, row_count, fields, execution_time_ms, truncated, sql_type}
        """
        environment = getattr(environment, "value", environment)
        sql_type = QueryValidator.validate(sql)

        start_time = time.time()
        try:
            columns, records, returned, affected = self._run(sql, sql_type)
        except (SQLAlchemyError, DatabaseConnectionError) as e:
            execution_time_ms = int((time.time() - start_time) * 1000)
            message = e.message if isinstance(e, DatabaseConnectionError) else driver_message(e)
            logger.warning(
                "sql_execution_failed",
                application_id=application_id,
                environment=environment,
                sql_type=sql_type.value,
                error=message
            )
            self._audit(
                application_id, environment, sql, sql_type, SqlAuditStatus.FAILURE, actor_email,
                error_message=message,
                execution_time_ms=execution_time_ms
            )
            if isinstance(e, DatabaseConnectionError):
                raise
            raise ExecutionError(message, {"sql_type": sql_type.value})

        execution_time_ms = int((time.time() - start_time) * 1000)

        names = unique_column_names(columns)
        truncated = returned > len(records)
        rows = [dict(zip(names, record)) for record in records]
        row_count = returned if returned or sql_type == SqlType.SELECT else affected

        self._audit(
            application_id, environment, sql, sql_type, SqlAuditStatus.SUCCESS, actor_email,
            rows_affected=affected,
            execution_time_ms=execution_time_ms
        )

        logger.info(
            "sql_executed",
            application_id=application_id,
            environment=environment,
            sql_type=sql_type.value,
            row_count=row_count,
            truncated=truncated,
            duration_ms=execution_time_ms
        )

        return {
            "rows": rows,
            "row_count": row_count,
            "fields": [{"name": n, "data_type": infer_data_type(rows, n)} for n in names],
            "execution_time_ms": execution_time_ms,
            "truncated": truncated,
            "sql_type": sql_type.value,
        }
