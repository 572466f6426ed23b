"""
Database connection and session management for the gateway's own database.

The gateway database holds application settings records (per-environment
connection configuration) and the SQL audit log. External databases attached
by users are never reached through this module; see gateway.connections.
"""
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from contextlib import contextmanager
from typing import Any, Dict, Generator

from gateway.config import settings


def engine_options(database_url: str) -> Dict[str, Any]:
    """Engine keyword arguments appropriate for the URL's backend."""
    if database_url.startswith("sqlite"):
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout sees an empty database
            options["poolclass"] = StaticPool
        return options

    return {
        "pool_size": 20,
        "max_overflow": 30,
        "pool_pre_ping": True,
        "connect_args": {"connect_timeout": 10},
    }


app_engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **engine_options(settings.DATABASE_URL)
)

AppSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=app_engine)

Base = declarative_base()


def get_app_db() -> Generator[Session, None, None]:
    """Dependency for gateway DB session."""
    db = AppSessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def get_app_db_context() -> Generator[Session, None, None]:
    """Context manager for gateway DB session."""
    db = AppSessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
