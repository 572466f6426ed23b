"""
Models Package - Export all SQLAlchemy models
"""
from gateway.models.application import ApplicationSettings, Environment
from gateway.models.audit import SqlAuditLog, SqlAuditStatus, SqlType

__all__ = [
    # Application settings
    "ApplicationSettings",
    "Environment",

    # Audit
    "SqlAuditLog",
    "SqlAuditStatus",
    "SqlType",
]
