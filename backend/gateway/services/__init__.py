"""
Services Package
"""
from gateway.services.sql_engine import SQLEngine, QueryValidator
from gateway.services.audit_service import AuditService

__all__ = [
    "SQLEngine", "QueryValidator",
    "AuditService",
]
