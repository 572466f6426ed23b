"""
Shared API dependencies: environment, connection config, external engine,
table schema.
"""
from fastapi import Depends, Query
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from gateway.connections.connection_resolver import connection_resolver
from gateway.connections.env_config import ConnectionConfig, EnvConfigStore, parse_environment
from gateway.database import get_app_db
from gateway.models.application import Environment
from gateway.services.external_db.schema_introspector import SchemaIntrospector, TableSchema


def get_environment(
    environment: str = Query(Environment.PREVIEW.value, description="preview or production")
) -> Environment:
    return parse_environment(environment)


def get_connection_config(
    application_id: str,
    environment: Environment = Depends(get_environment),
    db: Session = Depends(get_app_db)
) -> ConnectionConfig:
    """Connection config of the request's scope; 503 when not configured."""
    return EnvConfigStore(db).get_connection_config(application_id, environment)


def get_external_engine(config: ConnectionConfig = Depends(get_connection_config)) -> Engine:
    return connection_resolver.resolve(config)


def get_table_schema(table: str, engine: Engine = Depends(get_external_engine)) -> TableSchema:
    """Schema of the path's table, read fresh for every request; 404 when unknown."""
    return SchemaIntrospector(engine).get_table(table)
