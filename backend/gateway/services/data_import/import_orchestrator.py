"""
Import Orchestrator
Runs a CSV import as a sequence of bulk-insert batches and stops at the first
batch that reports failures. Batches committed before the failure stay
committed.
"""
from dataclasses import dataclass, field
import enum
import threading
from typing import Any, Dict, List, Optional, Tuple

import structlog

from gateway.config import settings
from gateway.core.errors import GatewayError, PartialImportFailure, ValidationError
from gateway.services.data_import.csv_codec import ParsedCsv, parse_csv, rows_to_records
from gateway.services.external_db.query_executor import QueryExecutor
from gateway.services.external_db.schema_introspector import TableSchema, is_system_field

logger = structlog.get_logger()


class ImportState(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    STOPPED_ON_ERROR = "STOPPED_ON_ERROR"
    CANCELLED = "CANCELLED"


def batch_size_for(total_rows: int) -> int:
    """Rows per batch for an import of total_rows rows."""
    if total_rows < 500:
        return 50
    if total_rows < 2000:
        return 100
    if total_rows < 10000:
        return 200
    return 500


@dataclass
class BatchImportJob:
    """State and running totals of one import."""
    rows: List[Dict[str, Any]]
    batch_size: int
    upsert_key: Optional[str] = None
    processed_count: int = 0
    success_count: int = 0
    failure_count: int = 0
    batches_run: int = 0
    errors: List[str] = field(default_factory=list)
    state: ImportState = ImportState.PENDING
    stop_event: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def total(self) -> int:
        return len(self.rows)

    @property
    def total_batches(self) -> int:
        return (self.total + self.batch_size - 1) // self.batch_size

    @property
    def stopped(self) -> bool:
        return self.state in (ImportState.STOPPED_ON_ERROR, ImportState.CANCELLED)

    @property
    def first_error(self) -> Optional[str]:
        return self.errors[0] if self.errors else None

    def request_stop(self) -> None:
        """Ask the job to stop before its next batch; a running batch completes."""
        self.stop_event.set()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "total": self.total,
            "batch_size": self.batch_size,
            "batches_run": self.batches_run,
            "processed_count": self.processed_count,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "error": self.first_error,
            "errors": list(self.errors),
            "stopped": self.stopped,
            "upsert_key": self.upsert_key,
        }


def build_import_rows(parsed: ParsedCsv, schema: TableSchema) -> Tuple[List[Dict[str, Any]], Optional[str]]:
    """
    Turn parsed CSV into insertable rows.

    Only headers that are table columns, not system fields and not the
    primary key are imported. When the CSV carries the primary key column
    it is included too and the import becomes an upsert on it.

    Returns:
        (rows, upsert_key)
    """
    if not parsed.headers or not parsed.rows:
        raise ValidationError("No data to import")

    pk = schema.primary_key
    importable = [
        h for h in parsed.headers
        if schema.has_column(h) and not is_system_field(h) and h != pk
    ]
    if not importable:
        raise ValidationError(
            "No valid columns to import",
            {"headers": parsed.headers, "table": schema.table_name}
        )

    upsert_key = None
    columns = list(importable)
    if pk in parsed.headers:
        columns.append(pk)
        upsert_key = pk

    return rows_to_records(parsed, columns), upsert_key


class ImportOrchestrator:
    """Drives batch imports through a QueryExecutor."""

    def __init__(self, executor: QueryExecutor, max_errors: int = None):
        self.executor = executor
        self.max_errors = max_errors or settings.IMPORT_MAX_ERRORS

    def create_job(self, rows: List[Dict[str, Any]], upsert_key: Optional[str] = None) -> BatchImportJob:
        return BatchImportJob(rows=rows, batch_size=batch_size_for(len(rows)), upsert_key=upsert_key)

    def run(self, job: BatchImportJob, schema: TableSchema) -> BatchImportJob:
        """
        Run every batch of a job in order.

        The stop flag is checked before each batch. The first batch that
        reports a failure moves the job to STOPPED_ON_ERROR and no further
        batch is sent.
        """
        log = logger.bind(component="import_orchestrator", table=schema.table_name)
        job.state = ImportState.IN_PROGRESS
        log.info(
            "import_started",
            rows=job.total,
            batch_size=job.batch_size,
            batches=job.total_batches,
            upsert_key=job.upsert_key
        )

        for start in range(0, job.total, job.batch_size):
            if job.stop_event.is_set():
                job.state = ImportState.CANCELLED
                log.info("import_cancelled", batches_run=job.batches_run)
                break

            batch = job.rows[start:start + job.batch_size]
            job.batches_run += 1

            try:
                result = self.executor.bulk_insert(schema, batch, upsert_key=job.upsert_key)
            except GatewayError as e:
                result = {"inserted": 0, "failed": len(batch), "errors": [e.message]}

            job.processed_count += len(batch)
            job.success_count += result["inserted"]
            job.failure_count += result["failed"]
            remaining = self.max_errors - len(job.errors)
            if remaining > 0:
                job.errors.extend(result["errors"][:remaining])

            log.info(
                "batch_imported",
                batch_num=job.batches_run,
                inserted=result["inserted"],
                failed=result["failed"]
            )

            if result["failed"] > 0:
                job.state = ImportState.STOPPED_ON_ERROR
                log.warning(
                    "import_stopped_on_error",
                    batch_num=job.batches_run,
                    success_count=job.success_count,
                    error=job.first_error
                )
                break
        else:
            job.state = ImportState.COMPLETED

        if job.state == ImportState.COMPLETED:
            log.info("import_completed", success_count=job.success_count)

        return job

    def import_csv(
        self,
        schema: TableSchema,
        content: str,
        raise_on_failure: bool = False
    ) -> BatchImportJob:
        """
        Parse CSV text and import it into a table.

        Raises:
            ValidationError: Nothing importable in the file
            PartialImportFailure: raise_on_failure is set and a batch failed
        """
        rows, upsert_key = build_import_rows(parse_csv(content), schema)
        job = self.run(self.create_job(rows, upsert_key), schema)

        if raise_on_failure and job.state == ImportState.STOPPED_ON_ERROR:
            raise PartialImportFailure(
                f"Import stopped due to error: {job.first_error}. "
                f"Imported {job.success_count}/{job.total} rows",
                job
            )
        return job
