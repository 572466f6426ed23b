"""
Environment Config Store - per (application, environment) connection settings

Settings records come in two shapes. Older records are flat and only ever
described the preview environment:

    {"DATABASE_URL": "...", "JWT_SECRET": "..."}

Newer records keep one dict per environment:

    {"preview": {...}, "production": {...}}

Everything outside this module sees a single flat view for one environment.
"""
import copy
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError
from sqlalchemy.orm import Session

from gateway.connections.connection_resolver import connection_resolver
from gateway.core.crypto import decrypt_value, encrypt_value
from gateway.core.errors import DatabaseConnectionError, ValidationError
from gateway.models.application import ApplicationSettings, Environment

logger = structlog.get_logger()

DATABASE_URL_KEY = "DATABASE_URL"
JWT_SECRET_KEY = "JWT_SECRET"
SECRET_KEYS = (DATABASE_URL_KEY, JWT_SECRET_KEY)

# Managed providers whose client libraries need a signing secret next to the URL
PROVIDERS_REQUIRING_SECONDARY = ("supabase",)


@dataclass(frozen=True)
class ConnectionConfig:
    """Resolved connection settings for one (application, environment) scope."""
    application_id: str
    environment: Environment
    connection_secret: str
    secondary_secret: Optional[str] = None


def parse_environment(value: Union[str, Environment]) -> Environment:
    """Coerce a raw environment name, rejecting anything but preview/production."""
    try:
        return Environment(value)
    except ValueError:
        raise ValidationError(
            f"Unknown environment '{value}'",
            {"allowed": [e.value for e in Environment]}
        )


def is_per_environment(raw: Any) -> bool:
    return isinstance(raw, dict) and (
        Environment.PREVIEW.value in raw or Environment.PRODUCTION.value in raw
    )


def normalize_env_settings(raw: Any, environment: Union[str, Environment]) -> Dict[str, Any]:
    """
    Flat view of the stored settings for one environment.

    The flat legacy shape belongs to preview only; production reads it as
    empty so preview credentials never leak into production.
    """
    environment = Environment(environment)

    if not isinstance(raw, dict):
        return {}

    if is_per_environment(raw):
        scoped = raw.get(environment.value)
        return dict(scoped) if isinstance(scoped, dict) else {}

    if environment == Environment.PREVIEW:
        return dict(raw)
    return {}


def mask_secret(connection_secret: Optional[str]) -> Optional[str]:
    """Render a connection URL with its password hidden."""
    if not connection_secret:
        return None
    try:
        return make_url(connection_secret).render_as_string(hide_password=True)
    except ArgumentError:
        return "***"


def requires_secondary_secret(connection_secret: str) -> bool:
    lowered = connection_secret.lower()
    return any(provider in lowered for provider in PROVIDERS_REQUIRING_SECONDARY)


class EnvConfigStore:
    """Reads and writes connection settings kept on the application settings record."""

    def __init__(self, db: Session):
        self.db = db

    def _get_record(self, application_id: str) -> Optional[ApplicationSettings]:
        return self.db.query(ApplicationSettings).filter(
            ApplicationSettings.application_id == application_id
        ).first()

    def get_env_settings(
        self,
        application_id: str,
        environment: Union[str, Environment]
    ) -> Dict[str, Optional[str]]:
        """Decrypted flat settings for one environment (missing keys are None)."""
        environment = parse_environment(environment)
        record = self._get_record(application_id)
        flat = normalize_env_settings(record.env_settings if record else None, environment)

        return {key: decrypt_value(flat.get(key)) for key in SECRET_KEYS}

    def get_connection_config(
        self,
        application_id: str,
        environment: Union[str, Environment]
    ) -> ConnectionConfig:
        """
        Resolve the connection config of a scope.

        Raises:
            DatabaseConnectionError: Nothing (usable) is configured for the scope
        """
        environment = parse_environment(environment)
        values = self.get_env_settings(application_id, environment)

        connection_secret = values.get(DATABASE_URL_KEY)
        secondary_secret = values.get(JWT_SECRET_KEY)

        if not connection_secret:
            raise DatabaseConnectionError(
                "Database connection not configured",
                {"application_id": application_id, "environment": environment.value}
            )

        if requires_secondary_secret(connection_secret) and not secondary_secret:
            raise DatabaseConnectionError(
                "Database configuration incomplete: JWT_SECRET is required for this provider",
                {"application_id": application_id, "environment": environment.value}
            )

        return ConnectionConfig(
            application_id=application_id,
            environment=environment,
            connection_secret=connection_secret,
            secondary_secret=secondary_secret,
        )

    def save_connection_config(
        self,
        application_id: str,
        environment: Union[str, Environment],
        connection_secret: Optional[str],
        secondary_secret: Optional[str] = None
    ) -> ApplicationSettings:
        """
        Store the connection settings of one environment.

        A flat record is updated in place for preview and converted to the
        per-environment shape the first time production is saved.
        """
        environment = parse_environment(environment)
        record = self._get_record(application_id)
        if record is None:
            record = ApplicationSettings(application_id=application_id, env_settings={})
            self.db.add(record)

        current = copy.deepcopy(record.env_settings) if isinstance(record.env_settings, dict) else {}
        new_values = {
            DATABASE_URL_KEY: encrypt_value(connection_secret) if connection_secret else None,
            JWT_SECRET_KEY: encrypt_value(secondary_secret) if secondary_secret else None,
        }

        if is_per_environment(current):
            scoped = current.get(environment.value)
            scoped = dict(scoped) if isinstance(scoped, dict) else {}
            scoped.update(new_values)
            current[environment.value] = scoped
            updated = current
        elif environment == Environment.PREVIEW:
            current.update(new_values)
            updated = current
        else:
            updated = {
                Environment.PREVIEW.value: current,
                Environment.PRODUCTION.value: new_values,
            }
            logger.info(
                "env_settings_migrated",
                application_id=application_id,
                shape="per_environment"
            )

        # Reassign so the JSON column is flagged dirty
        record.env_settings = updated
        self.db.commit()
        self.db.refresh(record)

        connection_resolver.invalidate(application_id, environment)

        logger.info(
            "connection_config_saved",
            application_id=application_id,
            environment=environment.value,
            has_secondary_secret=bool(secondary_secret)
        )
        return record
