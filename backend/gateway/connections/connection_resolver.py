"""
Connection Resolver - one pooled engine per distinct connection secret

Scopes (application, environment) that carry the same secret share a pool.
When the secret of a scope changes, the next resolve builds a new pool and
the old one is disposed once no other scope refers to it. Disposal only closes
idle connections; work already running on the old pool finishes undisturbed.
"""
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
import hashlib
import threading
import time
from typing import TYPE_CHECKING, Dict, Generator, Optional, Tuple

import structlog
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import ArgumentError, DBAPIError

from gateway.config import settings
from gateway.core.errors import DatabaseConnectionError

if TYPE_CHECKING:
    from gateway.connections.env_config import ConnectionConfig

logger = structlog.get_logger()

ScopeKey = Tuple[str, str]


def secret_fingerprint(secret: str) -> str:
    """Short stable identifier of a secret, safe to log."""
    return hashlib.sha256(secret.encode()).hexdigest()[:12]


def normalize_secret(secret: str) -> str:
    """Accept the postgres:// scheme used by most hosting providers."""
    secret = secret.strip()
    if secret.startswith("postgres://"):
        return "postgresql://" + secret[len("postgres://"):]
    return secret


@dataclass
class PoolEntry:
    engine: Engine
    last_used: float = field(default_factory=time.monotonic)


@dataclass
class HealthCheckResult:
    """Health check result."""
    is_healthy: bool
    response_time_ms: int
    error_message: Optional[str] = None
    dialect: Optional[str] = None
    timestamp: datetime = None

    def __post_init__(self):
        if self.timestamp is None:
            self.timestamp = datetime.utcnow()


class ConnectionResolver:
    """
    Maps connection secrets to pooled SQLAlchemy engines.

    All bookkeeping happens under one lock; engines themselves are thread-safe
    and are used outside of it.
    """

    def __init__(
        self,
        pool_size: int = None,
        max_overflow: int = None,
        connect_timeout: int = None
    ):
        self.pool_size = pool_size or settings.EXTERNAL_POOL_SIZE
        self.max_overflow = max_overflow if max_overflow is not None else settings.EXTERNAL_MAX_OVERFLOW
        self.connect_timeout = connect_timeout or settings.EXTERNAL_CONNECT_TIMEOUT
        self._pools: Dict[str, PoolEntry] = {}
        self._scopes: Dict[ScopeKey, str] = {}
        self._lock = threading.Lock()

    def _create_engine(self, secret: str) -> Engine:
        try:
            url = make_url(secret)
        except ArgumentError as e:
            raise DatabaseConnectionError(f"Malformed database connection string: {e}")

        options = {"pool_pre_ping": True}
        backend = url.get_backend_name()
        if backend == "sqlite":
            options["connect_args"] = {"check_same_thread": False}
        else:
            options["pool_size"] = self.pool_size
            options["max_overflow"] = self.max_overflow
            if backend == "postgresql":
                options["connect_args"] = {"connect_timeout": self.connect_timeout}

        try:
            return create_engine(url, **options)
        except (ArgumentError, ImportError) as e:
            raise DatabaseConnectionError(f"Unsupported database connection string: {e}")

    def resolve(self, config: "ConnectionConfig") -> Engine:
        """
        Get the pooled engine for a connection config, creating it if needed.

        Raises:
            DatabaseConnectionError: The secret cannot be turned into an engine
        """
        secret = normalize_secret(config.connection_secret)
        scope = (config.application_id, str(getattr(config.environment, "value", config.environment)))
        stale: Optional[Engine] = None

        with self._lock:
            previous = self._scopes.get(scope)
            if previous is not None and previous != secret:
                del self._scopes[scope]
                stale = self._release(previous)
                logger.info(
                    "connection_secret_changed",
                    application_id=scope[0],
                    environment=scope[1],
                    old_pool=secret_fingerprint(previous),
                    new_pool=secret_fingerprint(secret)
                )

            entry = self._pools.get(secret)
            if entry is None:
                entry = PoolEntry(engine=self._create_engine(secret))
                self._pools[secret] = entry
                logger.info(
                    "connection_pool_created",
                    pool=secret_fingerprint(secret),
                    dialect=entry.engine.dialect.name
                )

            entry.last_used = time.monotonic()
            self._scopes[scope] = secret

        if stale is not None:
            stale.dispose()

        return entry.engine

    def _release(self, secret: str) -> Optional[Engine]:
        """Drop a pool nobody refers to any more. Caller holds the lock."""
        if secret in self._scopes.values():
            return None
        entry = self._pools.pop(secret, None)
        return entry.engine if entry else None

    def invalidate(self, application_id: str, environment) -> None:
        """Forget the pool of a scope, e.g. after its settings were saved."""
        scope = (application_id, str(getattr(environment, "value", environment)))
        with self._lock:
            secret = self._scopes.pop(scope, None)
            stale = self._release(secret) if secret else None

        if stale is not None:
            stale.dispose()
            logger.info(
                "connection_pool_invalidated",
                application_id=scope[0],
                environment=scope[1]
            )

    def evict_idle(self, max_idle_seconds: int = None) -> int:
        """
        Dispose pools not used for max_idle_seconds.

        Returns:
            Number of pools evicted
        """
        max_idle = max_idle_seconds if max_idle_seconds is not None else settings.EXTERNAL_POOL_IDLE_SECONDS
        cutoff = time.monotonic() - max_idle
        evicted = []

        with self._lock:
            for secret, entry in list(self._pools.items()):
                if entry.last_used <= cutoff:
                    evicted.append(entry.engine)
                    del self._pools[secret]
                    for scope in [s for s, v in self._scopes.items() if v == secret]:
                        del self._scopes[scope]

        for engine in evicted:
            engine.dispose()

        if evicted:
            logger.info("idle_pools_evicted", count=len(evicted))

        return len(evicted)

    def dispose_all(self) -> None:
        """Close every pool."""
        with self._lock:
            engines = [entry.engine for entry in self._pools.values()]
            self._pools.clear()
            self._scopes.clear()

        for engine in engines:
            engine.dispose()
        logger.info("connection_pools_disposed", count=len(engines))

    def pool_count(self) -> int:
        with self._lock:
            return len(self._pools)

    def check(self, config: "ConnectionConfig") -> HealthCheckResult:
        """Run SELECT 1 against the scope's database and time it."""
        start_time = time.time()
        try:
            engine = self.resolve(config)
            with connect(engine) as conn:
                conn.execute(text("SELECT 1"))
            return HealthCheckResult(
                is_healthy=True,
                response_time_ms=int((time.time() - start_time) * 1000),
                dialect=engine.dialect.name
            )
        except (DatabaseConnectionError, DBAPIError) as e:
            message = e.message if isinstance(e, DatabaseConnectionError) else str(e.orig or e)
            logger.warning(
                "connection_check_failed",
                application_id=config.application_id,
                error=message
            )
            return HealthCheckResult(
                is_healthy=False,
                response_time_ms=int((time.time() - start_time) * 1000),
                error_message=message
            )


@contextmanager
def connect(engine: Engine, transactional: bool = False) -> Generator[Connection, None, None]:
    """
    Check out a connection for one statement or one transaction.

    Failures while establishing the connection are reported as
    DatabaseConnectionError; failures of statements run on it propagate
    unchanged.
    """
    try:
        conn = engine.connect()
    except DBAPIError as e:
        raise DatabaseConnectionError(
            f"Could not connect to database: {e.orig or e}",
            {"dialect": engine.dialect.name}
        )

    with conn:
        if transactional:
            with conn.begin():
                yield conn
        else:
            yield conn


# Global connection resolver instance
connection_resolver = ConnectionResolver()
