"""
Database Reset
Drops every table of the default schema and optionally re-runs the
application's SQL migration files.
"""
import posixpath
import re
from typing import Any, Dict, List, Optional

import structlog
from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from gateway.connections.connection_resolver import connect
from gateway.core.errors import ExecutionError
from gateway.services.external_db.identifiers import quote_identifier
from gateway.services.external_db.query_executor import driver_message

logger = structlog.get_logger()

_LEADING_NUMBER = re.compile(r"^(\d+)")


def migration_order(path: str) -> int:
    """Numeric prefix of a migration file name, e.g. 20240101_init.sql -> 20240101."""
    match = _LEADING_NUMBER.match(posixpath.basename(path))
    return int(match.group(1)) if match else 0


def select_migrations(files: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """SQL files under a migrations/ directory, in execution order."""
    migrations = [
        f for f in files
        if f.get("path") and "migrations/" in f["path"] and f["path"].endswith(".sql")
    ]
    return sorted(migrations, key=lambda f: migration_order(f["path"]))


def run_script(conn: Connection, content: str) -> None:
    """Execute a file that may hold several statements."""
    if conn.dialect.name == "sqlite":
        # sqlite3 only runs multi-statement text through executescript
        conn.connection.driver_connection.executescript(content)
    else:
        conn.exec_driver_sql(content, execution_options={"no_parameters": True})


class DatabaseReset:
    """Drop-and-recreate of an external database."""

    def __init__(self, engine: Engine):
        self.engine = engine
        self.logger = logger.bind(component="database_reset")

    def drop_all_tables(self) -> List[str]:
        """Drop every table of the default schema. Returns the dropped names."""
        cascade = " CASCADE" if self.engine.dialect.name == "postgresql" else ""
        try:
            with connect(self.engine, transactional=True) as conn:
                tables = inspect(conn).get_table_names()
                for table in tables:
                    conn.execute(text(f"DROP TABLE IF EXISTS {quote_identifier(table)}{cascade}"))
        except SQLAlchemyError as e:
            self.logger.error("drop_tables_failed", error=driver_message(e))
            raise ExecutionError(driver_message(e), {"operation": "reset"})

        self.logger.info("tables_dropped", count=len(tables))
        return tables

    def run_migrations(self, files: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Run migration files one by one, stopping at the first failure.

        Returns:
            {"files_executed": int, "migration_error": Optional[str]}
        """
        migrations = select_migrations(files)
        executed = 0
        error: Optional[str] = None
        # Raw DBAPI errors from executescript are not wrapped by SQLAlchemy
        dbapi_error = self.engine.dialect.loaded_dbapi.Error

        for migration in migrations:
            try:
                with connect(self.engine, transactional=True) as conn:
                    run_script(conn, migration.get("content") or "")
                executed += 1
                self.logger.info("migration_executed", path=migration["path"])
            except SQLAlchemyError as e:
                error = f"Failed to execute {migration['path']}: {driver_message(e)}"
                break
            except dbapi_error as e:
                error = f"Failed to execute {migration['path']}: {e}"
                break

        if error:
            self.logger.warning("migration_failed", files_executed=executed, error=error)

        return {"files_executed": executed, "migration_error": error}

    def reset(self, migration_files: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """Drop all tables, then re-run migrations when files are supplied."""
        tables = self.drop_all_tables()

        result = {
            "tables_dropped": len(tables),
            "tables": tables,
            "files_executed": 0,
            "migration_error": None,
        }
        if migration_files:
            result.update(self.run_migrations(migration_files))

        return result
