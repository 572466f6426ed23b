"""
Tests for schema introspection
"""
import pytest
from sqlalchemy import text

from gateway.core.errors import SchemaError
from gateway.services.external_db.schema_introspector import (
    ColumnDescriptor, SchemaIntrospector, TableSchema, editable_columns,
    is_system_field, parse_check_values, primary_key_of
)


def column(name, default=None):
    return ColumnDescriptor(name=name, type="TEXT", nullable=True, default_value=default)


class TestPrimaryKeyInference:
    """Test primary key inference order"""

    def test_id_column_wins(self):
        columns = [column("orders_id"), column("id"), column("seq", "nextval('s')")]
        assert primary_key_of(columns, "orders") == "id"

    def test_table_id_column(self):
        columns = [column("name"), column("orders_id")]
        assert primary_key_of(columns, "orders") == "orders_id"

    def test_sequence_default(self):
        columns = [column("name"), column("code", "nextval('code_seq'::regclass)")]
        assert primary_key_of(columns, "orders") == "code"

    def test_fallback_when_nothing_matches(self):
        assert primary_key_of([column("name"), column("email")], "orders") == "id"

    def test_without_table_name(self):
        assert primary_key_of([column("id"), column("name")]) == "id"


class TestSystemFields:
    """Test system field classification"""

    @pytest.mark.parametrize("name", [
        "created_at", "UPDATED_AT", "createdAt", "lastModified", "event_timestamp", "my_created_date"
    ])
    def test_system_fields(self, name):
        assert is_system_field(name)

    @pytest.mark.parametrize("name", ["id", "name", "created_by", "status"])
    def test_regular_fields(self, name):
        assert not is_system_field(name)

    def test_editable_columns_exclude_pk_and_system_fields(self):
        schema = TableSchema(
            table_name="people",
            columns=[column("id"), column("name"), column("created_at"), column("email")],
            primary_key="id"
        )
        assert [c.name for c in editable_columns(schema)] == ["name", "email"]


class TestCheckConstraintValues:
    """Test allowed-value extraction from CHECK constraints"""

    def test_in_list(self):
        assert parse_check_values("status IN ('active', 'inactive')", "status") == ["active", "inactive"]

    def test_postgres_array_rendering(self):
        sqltext = "((status)::text = ANY ((ARRAY['draft'::character varying, 'live'::character varying])::text[]))"
        assert parse_check_values(sqltext, "status") == ["draft", "live"]

    def test_escaped_quote(self):
        assert parse_check_values("kind IN ('it''s', 'plain')", "kind") == ["it's", "plain"]

    def test_other_column_ignored(self):
        assert parse_check_values("status IN ('a', 'b')", "kind") is None

    def test_non_list_constraint(self):
        assert parse_check_values("qty >= 0", "qty") is None


class TestSchemaIntrospector:
    """Test introspection against a real database"""

    def test_list_tables(self, external_engine):
        with external_engine.begin() as conn:
            conn.execute(text("CREATE TABLE orders (orders_id INTEGER PRIMARY KEY, total NUMERIC NOT NULL)"))

        tables = SchemaIntrospector(external_engine).list_tables()
        by_name = {t.table_name: t for t in tables}

        assert set(by_name) == {"people", "orders"}
        assert by_name["people"].primary_key == "id"
        assert by_name["orders"].primary_key == "orders_id"
        assert by_name["people"].column_names == ["id", "userName", "email", "status", "created_at"]

    def test_column_details(self, external_engine):
        schema = SchemaIntrospector(external_engine).get_table("people")

        user_name = schema.get_column("userName")
        assert user_name.nullable is False
        assert "TEXT" in user_name.type.upper()
        assert schema.get_column("email").nullable is True
        assert schema.get_column("created_at").default_value is not None

    def test_unknown_table(self, external_engine):
        with pytest.raises(SchemaError):
            SchemaIntrospector(external_engine).get_table("missing")

    def test_unknown_column(self, external_engine):
        schema = SchemaIntrospector(external_engine).get_table("people")
        with pytest.raises(SchemaError):
            schema.get_column("nope")

    def test_table_names_are_case_sensitive(self, external_engine):
        with external_engine.begin() as conn:
            conn.execute(text('CREATE TABLE "CamelCase" ("Id" INTEGER PRIMARY KEY, "Value" TEXT)'))

        schema = SchemaIntrospector(external_engine).get_table("CamelCase")
        assert schema.column_names == ["Id", "Value"]
        # "Id" is not "id"; nothing else matches either
        assert schema.primary_key == "id"
        assert not schema.has_primary_key_column
