"""
Tests for batched CSV import
"""
import pytest
from sqlalchemy import text

from gateway.core.errors import PartialImportFailure, SchemaError, ValidationError
from gateway.services.data_import.csv_codec import ParsedCsv
from gateway.services.data_import.import_orchestrator import (
    ImportOrchestrator, ImportState, batch_size_for, build_import_rows
)
from gateway.services.external_db.query_executor import QueryExecutor
from gateway.services.external_db.schema_introspector import (
    ColumnDescriptor, SchemaIntrospector, TableSchema
)


def make_schema(*names, primary_key="id"):
    return TableSchema(
        table_name="items",
        columns=[ColumnDescriptor(name=n, type="TEXT", nullable=True) for n in names],
        primary_key=primary_key
    )


class FakeExecutor:
    """Records batches; reports failure for the configured batch numbers."""

    def __init__(self, failing_batches=(), raising_batches=()):
        self.failing_batches = set(failing_batches)
        self.raising_batches = set(raising_batches)
        self.batches = []

    def bulk_insert(self, schema, rows, upsert_key=None):
        self.batches.append(list(rows))
        number = len(self.batches)
        if number in self.raising_batches:
            raise SchemaError("Unknown column(s) on table 'items': bogus")
        if number in self.failing_batches:
            return {"inserted": 0, "failed": len(rows), "errors": [f"batch {number} failed"]}
        return {"inserted": len(rows), "failed": 0, "errors": []}


class TestBatchSize:
    """Test adaptive batch sizing thresholds"""

    @pytest.mark.parametrize("total,expected", [
        (0, 50), (1, 50), (499, 50),
        (500, 100), (1999, 100),
        (2000, 200), (9999, 200),
        (10000, 500), (250000, 500),
    ])
    def test_thresholds(self, total, expected):
        assert batch_size_for(total) == expected


class TestBuildImportRows:
    """Test column selection for imports"""

    def test_keeps_only_importable_headers(self):
        schema = make_schema("id", "name", "qty", "created_at")
        parsed = ParsedCsv(
            headers=["name", "unknown", "created_at", "qty"],
            rows=[["a", "x", "2024-01-01", "1"]]
        )
        rows, upsert_key = build_import_rows(parsed, schema)
        assert rows == [{"name": "a", "qty": "1"}]
        assert upsert_key is None

    def test_primary_key_in_data_triggers_upsert(self):
        schema = make_schema("id", "name")
        parsed = ParsedCsv(headers=["id", "name"], rows=[["7", "a"]])
        rows, upsert_key = build_import_rows(parsed, schema)
        assert rows == [{"name": "a", "id": "7"}]
        assert upsert_key == "id"

    def test_missing_values_become_none(self):
        schema = make_schema("id", "name", "qty")
        parsed = ParsedCsv(headers=["name", "qty"], rows=[["a"]])
        rows, _ = build_import_rows(parsed, schema)
        assert rows == [{"name": "a", "qty": None}]

    def test_no_data(self):
        with pytest.raises(ValidationError):
            build_import_rows(ParsedCsv(headers=["name"], rows=[]), make_schema("id", "name"))

    def test_no_importable_columns(self):
        parsed = ParsedCsv(headers=["id", "updated_at", "other"], rows=[["1", "x", "y"]])
        with pytest.raises(ValidationError):
            build_import_rows(parsed, make_schema("id", "name", "updated_at"))


class TestImportOrchestrator:
    """Test sequential batch execution and stop policy"""

    def rows(self, n):
        return [{"name": f"row{i}"} for i in range(n)]

    def test_completes_all_batches(self):
        executor = FakeExecutor()
        orchestrator = ImportOrchestrator(executor)
        job = orchestrator.run(orchestrator.create_job(self.rows(120)), make_schema("id", "name"))

        assert job.state == ImportState.COMPLETED
        assert job.batch_size == 50
        assert [len(b) for b in executor.batches] == [50, 50, 20]
        assert job.success_count == 120
        assert job.stopped is False

    def test_stops_after_failing_batch(self):
        executor = FakeExecutor(failing_batches={9})
        orchestrator = ImportOrchestrator(executor)
        job = orchestrator.run(orchestrator.create_job(self.rows(1200)), make_schema("id", "name"))

        assert job.batch_size == 100
        assert job.total_batches == 12
        assert len(executor.batches) == 9
        assert job.batches_run == 9
        assert job.success_count == 800
        assert job.failure_count == 100
        assert job.stopped is True
        assert job.state == ImportState.STOPPED_ON_ERROR
        assert job.first_error == "batch 9 failed"

    def test_gateway_error_stops_import(self):
        executor = FakeExecutor(raising_batches={2})
        orchestrator = ImportOrchestrator(executor)
        job = orchestrator.run(orchestrator.create_job(self.rows(150)), make_schema("id", "name"))

        assert job.state == ImportState.STOPPED_ON_ERROR
        assert job.success_count == 50
        assert "bogus" in job.first_error
        assert len(executor.batches) == 2

    def test_stop_flag_checked_before_each_batch(self):
        executor = FakeExecutor()
        orchestrator = ImportOrchestrator(executor)
        job = orchestrator.create_job(self.rows(200))

        original = executor.bulk_insert

        def stop_after_first(schema, rows, upsert_key=None):
            result = original(schema, rows, upsert_key)
            job.request_stop()
            return result

        executor.bulk_insert = stop_after_first
        orchestrator.run(job, make_schema("id", "name"))

        assert job.state == ImportState.CANCELLED
        assert job.batches_run == 1
        assert job.success_count == 50
        assert job.stopped is True

    def test_errors_are_capped(self):
        executor = FakeExecutor(failing_batches={1})
        orchestrator = ImportOrchestrator(executor, max_errors=1)
        job = orchestrator.run(orchestrator.create_job(self.rows(10)), make_schema("id", "name"))
        assert job.errors == ["batch 1 failed"]

    def test_report(self):
        executor = FakeExecutor(failing_batches={2})
        orchestrator = ImportOrchestrator(executor)
        job = orchestrator.run(orchestrator.create_job(self.rows(100)), make_schema("id", "name"))
        report = job.to_dict()

        assert report["state"] == "STOPPED_ON_ERROR"
        assert report["success_count"] == 50
        assert report["failure_count"] == 50
        assert report["stopped"] is True
        assert report["error"] == "batch 2 failed"
        assert report["total"] == 100


class TestCsvImportAgainstDatabase:
    """Test imports that really commit batches"""

    @pytest.fixture
    def items(self, external_engine):
        with external_engine.begin() as conn:
            conn.execute(text(
                "CREATE TABLE items (id INTEGER PRIMARY KEY, qty INTEGER, name TEXT NOT NULL, "
                "updated_at TIMESTAMP)"
            ))
        return SchemaIntrospector(external_engine).get_table("items")

    def count(self, engine):
        with engine.connect() as conn:
            return conn.execute(text("SELECT COUNT(*) FROM items")).scalar()

    def test_failing_batch_keeps_earlier_batches(self, external_engine, items):
        lines = ["qty,name"]
        for i in range(1200):
            # Row 850 lacks a name, so the ninth batch of 100 violates NOT NULL
            lines.append(str(i) if i == 850 else f"{i},item{i}")
        orchestrator = ImportOrchestrator(QueryExecutor(external_engine))

        job = orchestrator.import_csv(items, "\n".join(lines))

        assert job.success_count == 800
        assert job.failure_count > 0
        assert job.stopped is True
        assert job.batches_run == 9
        assert "NOT NULL" in job.first_error.upper()
        assert self.count(external_engine) == 800

    def test_raise_on_failure(self, external_engine, items):
        orchestrator = ImportOrchestrator(QueryExecutor(external_engine))
        with pytest.raises(PartialImportFailure) as exc:
            orchestrator.import_csv(items, "qty,name\n1,a\n2", raise_on_failure=True)
        assert exc.value.report.success_count == 0
        assert exc.value.status_code == 409

    def test_upsert_when_primary_key_present(self, external_engine, items):
        orchestrator = ImportOrchestrator(QueryExecutor(external_engine))
        orchestrator.import_csv(items, "id,name,qty\n1,a,1\n2,b,2")
        job = orchestrator.import_csv(items, "id,name,qty\n1,changed,5\n3,c,3")

        assert job.upsert_key == "id"
        assert job.state == ImportState.COMPLETED
        assert self.count(external_engine) == 3
        with external_engine.connect() as conn:
            assert conn.execute(text("SELECT name FROM items WHERE id = 1")).scalar() == "changed"

    def test_system_columns_skipped(self, external_engine, items):
        orchestrator = ImportOrchestrator(QueryExecutor(external_engine))
        job = orchestrator.import_csv(items, "name,updated_at\na,2020-01-01")

        assert job.success_count == 1
        with external_engine.connect() as conn:
            assert conn.execute(text("SELECT updated_at FROM items")).scalar() is None
