"""
Connections Package - external database configuration and pooling
"""
from gateway.connections.connection_resolver import (
    connection_resolver, ConnectionResolver, HealthCheckResult, connect
)
from gateway.connections.env_config import (
    ConnectionConfig, EnvConfigStore, normalize_env_settings, parse_environment
)

__all__ = [
    "connection_resolver",
    "ConnectionResolver",
    "HealthCheckResult",
    "connect",
    "ConnectionConfig",
    "EnvConfigStore",
    "normalize_env_settings",
    "parse_environment",
]
