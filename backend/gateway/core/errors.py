"""
Gateway error taxonomy.

Every failure in the gateway is scoped to one request or one import job.
Configuration and validation errors are raised before any statement reaches
the external database; execution errors carry the database's own message.
"""
from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base class for all gateway errors."""

    status_code = 500
    error_type = "gateway_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {"detail": self.message, "error_type": self.error_type}
        if self.details:
            payload["details"] = self.details
        return payload


class DatabaseConnectionError(GatewayError, ConnectionError):
    """Connection secret missing, malformed, unreachable or rejected."""

    status_code = 503
    error_type = "connection_error"


class SchemaError(GatewayError):
    """Unknown table or column."""

    status_code = 404
    error_type = "schema_error"


class ValidationError(GatewayError):
    """Request rejected before any network call."""

    status_code = 400
    error_type = "validation_error"


class StatementTypeError(ValidationError):
    """Ad-hoc SQL outside the allow-listed statement types."""

    error_type = "statement_type_error"

    def __init__(self, message: str, sql_type: str = "UNKNOWN"):
        super().__init__(message, {"sql_type": sql_type})
        self.sql_type = sql_type


class ExecutionError(GatewayError):
    """The external database rejected the statement."""

    status_code = 400
    error_type = "execution_error"


class PartialImportFailure(GatewayError):
    """Bulk import stopped after a failing batch; earlier batches stay committed."""

    status_code = 409
    error_type = "partial_import_failure"

    def __init__(self, message: str, report: Any):
        super().__init__(message, report.to_dict())
        self.report = report


class UnauthorizedError(GatewayError):
    """Missing or invalid bearer token."""

    status_code = 401
    error_type = "unauthorized"
