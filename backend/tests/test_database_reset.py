"""
Tests for dropping tables and re-running migrations
"""
from sqlalchemy import inspect, text

from gateway.services.external_db.database_reset import (
    DatabaseReset, migration_order, select_migrations
)

MIGRATIONS = [
    {"path": "supabase/migrations/2_add_posts.sql", "content": "CREATE TABLE posts (id INTEGER PRIMARY KEY, author_id INTEGER);"},
    {"path": "README.md", "content": "# docs"},
    {"path": "supabase/migrations/1_init.sql", "content": "CREATE TABLE authors (id INTEGER PRIMARY KEY, name TEXT);\nCREATE INDEX ix_authors_name ON authors (name);"},
    {"path": "supabase/seed.sql", "content": "INSERT INTO authors (name) VALUES ('x');"},
]


class TestMigrationSelection:
    """Test migration discovery and ordering"""

    def test_numeric_prefix(self):
        assert migration_order("migrations/20240101_init.sql") == 20240101
        assert migration_order("migrations/init.sql") == 0

    def test_only_sql_under_migrations_in_order(self):
        paths = [f["path"] for f in select_migrations(MIGRATIONS)]
        assert paths == ["supabase/migrations/1_init.sql", "supabase/migrations/2_add_posts.sql"]

    def test_numeric_not_lexical_order(self):
        files = [
            {"path": "migrations/10_b.sql", "content": ""},
            {"path": "migrations/9_a.sql", "content": ""},
        ]
        assert [f["path"] for f in select_migrations(files)] == ["migrations/9_a.sql", "migrations/10_b.sql"]


class TestDatabaseReset:
    """Test reset against a real database"""

    def table_names(self, engine):
        return set(inspect(engine).get_table_names())

    def test_drops_every_table(self, external_engine):
        with external_engine.begin() as conn:
            conn.execute(text('CREATE TABLE "Mixed" (id INTEGER PRIMARY KEY)'))

        result = DatabaseReset(external_engine).reset()

        assert result["tables_dropped"] == 2
        assert set(result["tables"]) == {"people", "Mixed"}
        assert result["files_executed"] == 0
        assert result["migration_error"] is None
        assert self.table_names(external_engine) == set()

    def test_reruns_migrations(self, external_engine):
        result = DatabaseReset(external_engine).reset(MIGRATIONS)

        assert result["files_executed"] == 2
        assert result["migration_error"] is None
        assert self.table_names(external_engine) == {"authors", "posts"}

    def test_stops_at_failing_migration(self, external_engine):
        files = [
            {"path": "migrations/1_ok.sql", "content": "CREATE TABLE a (id INTEGER);"},
            {"path": "migrations/2_bad.sql", "content": "CREATE TABLE oops (;"},
            {"path": "migrations/3_never.sql", "content": "CREATE TABLE c (id INTEGER);"},
        ]

        result = DatabaseReset(external_engine).reset(files)

        assert result["tables_dropped"] == 1
        assert result["files_executed"] == 1
        assert result["migration_error"].startswith("Failed to execute migrations/2_bad.sql")
        assert self.table_names(external_engine) == {"a"}
