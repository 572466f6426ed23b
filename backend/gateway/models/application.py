"""
Application Settings Model - per-application database configuration record
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from gateway.database import Base
import enum


class Environment(str, enum.Enum):
    """Deployment environments with independent credentials and audit history."""
    PREVIEW = "preview"
    PRODUCTION = "production"


class ApplicationSettings(Base):
    """
    Settings record of a generated application.

    env_settings holds either the legacy flat shape
    {"DATABASE_URL": ..., "JWT_SECRET": ...} (preview only) or the
    per-environment shape {"preview": {...}, "production": {...}}.
    """
    __tablename__ = "application_settings"

    id = Column(Integer, primary_key=True, index=True)
    application_id = Column(String(255), nullable=False, unique=True, index=True)
    env_settings = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
