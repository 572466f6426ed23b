"""
Tests for the SQL audit log store
"""
from gateway.models.audit import SqlAuditStatus
from gateway.services.audit_service import AuditService


def append(service, sql, status=SqlAuditStatus.SUCCESS, app="app-1", env="preview", **kwargs):
    return service.append(
        application_id=app,
        environment=env,
        sql_statement=sql,
        sql_type="SELECT",
        status=status,
        actor_email="dev@example.com",
        **kwargs
    )


class TestAuditService:
    """Test append and newest-first listing"""

    def test_append_persists_entry(self, db_session):
        service = AuditService(db_session)
        entry = append(service, "SELECT 1", rows_affected=1, execution_time_ms=4)

        assert entry.id is not None
        assert entry.created_at is not None
        assert entry.status == "SUCCESS"
        assert entry.rows_affected == 1

    def test_list_newest_first(self, db_session):
        service = AuditService(db_session)
        append(service, "SELECT 1")
        append(service, "SELECT broken", status=SqlAuditStatus.FAILURE, error_message="syntax error")

        result = service.list("app-1", "preview")

        assert result["total"] == 2
        assert [e.sql_statement for e in result["logs"]] == ["SELECT broken", "SELECT 1"]
        assert [e.status for e in result["logs"]] == ["FAILURE", "SUCCESS"]
        assert result["logs"][0].error_message == "syntax error"

    def test_pagination_keeps_total(self, db_session):
        service = AuditService(db_session)
        for i in range(5):
            append(service, f"SELECT {i}")

        page = service.list("app-1", "preview", limit=2, offset=2)

        assert page["total"] == 5
        assert [e.sql_statement for e in page["logs"]] == ["SELECT 2", "SELECT 1"]

    def test_scoped_by_application_and_environment(self, db_session):
        service = AuditService(db_session)
        append(service, "SELECT 'preview'")
        append(service, "SELECT 'production'", env="production")
        append(service, "SELECT 'other'", app="app-2")

        assert [e.sql_statement for e in service.list("app-1", "preview")["logs"]] == ["SELECT 'preview'"]
        assert [e.sql_statement for e in service.list("app-1", "production")["logs"]] == ["SELECT 'production'"]
        assert service.list("app-3", "preview") == {"logs": [], "total": 0}
