"""
Core Package
"""
from gateway.core.auth import Actor, get_current_actor, verify_token
from gateway.core.errors import (
    GatewayError, DatabaseConnectionError, SchemaError, ValidationError,
    StatementTypeError, ExecutionError, PartialImportFailure, UnauthorizedError
)

__all__ = [
    # Auth
    "Actor", "get_current_actor", "verify_token",
    # Errors
    "GatewayError", "DatabaseConnectionError", "SchemaError", "ValidationError",
    "StatementTypeError", "ExecutionError", "PartialImportFailure", "UnauthorizedError",
]
