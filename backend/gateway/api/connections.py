"""
Connection Settings API Routes
Per-environment database connection settings of an application.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import structlog

from gateway.api.deps import get_connection_config, get_environment
from gateway.connections.connection_resolver import connection_resolver
from gateway.connections.env_config import (
    DATABASE_URL_KEY, JWT_SECRET_KEY, ConnectionConfig, EnvConfigStore, mask_secret
)
from gateway.core.auth import Actor, get_current_actor
from gateway.database import get_app_db
from gateway.models.application import Environment
from gateway.schemas.database import (
    ConnectionSettingsResponse, ConnectionSettingsUpdate, ConnectionTestResponse
)

router = APIRouter()
logger = structlog.get_logger()


def stored_settings_response(db: Session, application_id: str, environment: Environment) -> ConnectionSettingsResponse:
    values = EnvConfigStore(db).get_env_settings(application_id, environment)
    database_url = values.get(DATABASE_URL_KEY)

    return ConnectionSettingsResponse(
        application_id=application_id,
        environment=environment.value,
        configured=bool(database_url),
        database_url=mask_secret(database_url),
        has_jwt_secret=bool(values.get(JWT_SECRET_KEY))
    )


@router.get("/settings", response_model=ConnectionSettingsResponse)
def get_connection_settings(
    application_id: str,
    environment: Environment = Depends(get_environment),
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_app_db)
):
    """Get the connection settings of one environment, password hidden."""
    return stored_settings_response(db, application_id, environment)


@router.put("/settings", response_model=ConnectionSettingsResponse)
def update_connection_settings(
    application_id: str,
    payload: ConnectionSettingsUpdate,
    environment: Environment = Depends(get_environment),
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_app_db)
):
    """Save the connection settings of one environment."""
    EnvConfigStore(db).save_connection_config(
        application_id,
        environment,
        payload.database_url,
        payload.jwt_secret
    )

    logger.info(
        "connection_settings_updated",
        application_id=application_id,
        environment=environment.value,
        user=current_actor.email
    )

    return stored_settings_response(db, application_id, environment)


@router.post("/settings/test", response_model=ConnectionTestResponse)
def test_connection(
    config: ConnectionConfig = Depends(get_connection_config),
    current_actor: Actor = Depends(get_current_actor)
):
    """Test the configured connection of one environment."""
    result = connection_resolver.check(config)
    return ConnectionTestResponse(
        is_healthy=result.is_healthy,
        response_time_ms=result.response_time_ms,
        dialect=result.dialect,
        error_message=result.error_message
    )
