"""
API Package
"""
from gateway.api import connections, tables, sql

__all__ = ["connections", "tables", "sql"]
