"""
External Database Gateway - FastAPI Main Application
"""
from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from contextlib import asynccontextmanager
import asyncio
import structlog
import time

from gateway.config import settings
from gateway.database import Base, app_engine
from gateway.connections.connection_resolver import connection_resolver
from gateway.core.auth import get_current_actor
from gateway.core.errors import GatewayError
import gateway.models  # noqa: F401  registers tables on Base.metadata

# Configure structured logging
structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.add_log_level,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = structlog.get_logger()


async def evict_idle_pools():
    """Periodically dispose external pools nobody used recently."""
    interval = max(settings.EXTERNAL_POOL_IDLE_SECONDS // 2, 30)
    while True:
        await asyncio.sleep(interval)
        await asyncio.to_thread(connection_resolver.evict_idle)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    # Startup
    logger.info("application_startup", version=settings.APP_VERSION)

    try:
        Base.metadata.create_all(bind=app_engine)
        logger.info("database_initialized")
    except Exception as e:
        logger.warning("database_init_failed", error=str(e))

    eviction_task = asyncio.create_task(evict_idle_pools())

    yield

    # Shutdown
    eviction_task.cancel()
    connection_resolver.dispose_all()
    logger.info("application_shutdown")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="External Database Gateway - browse, query, import and audit attached databases",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Request timing middleware
@app.middleware("http")
async def add_process_time_header(request: Request, call_next):
    """Add request timing to response headers."""
    start_time = time.time()
    response = await call_next(request)
    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    return response


# Exception handlers
@app.exception_handler(GatewayError)
async def gateway_exception_handler(request: Request, exc: GatewayError):
    """Translate gateway errors into their HTTP status."""
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "gateway_error",
        error_type=exc.error_type,
        error=exc.message,
        path=request.url.path
    )
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters."""
    logger.warning("request_validation_failed", errors=exc.errors(), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=jsonable_encoder({
            "detail": "Invalid request",
            "error_type": "request_validation_error",
            "details": {"errors": exc.errors()}
        })
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Anything that escaped the gateway error taxonomy."""
    logger.error("unhandled_exception", error=str(exc), error_class=type(exc).__name__, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": str(exc) if settings.DEBUG else "Internal server error",
            "error_type": "internal_error"
        }
    )


# Health check endpoint
@app.get("/health", tags=["System"])
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "app": settings.APP_NAME,
        "external_pools": connection_resolver.pool_count()
    }


@app.get("/", tags=["System"])
async def root():
    """Root endpoint."""
    return {
        "message": "External Database Gateway API",
        "version": settings.APP_VERSION,
        "docs": "/docs"
    }


# Import and include routers
from gateway.api import connections, tables, sql

DATABASE_PREFIX = "/api/databases/{application_id}"
authenticated = [Depends(get_current_actor)]

app.include_router(connections.router, prefix=DATABASE_PREFIX, tags=["Connection Settings"], dependencies=authenticated)
app.include_router(tables.router, prefix=DATABASE_PREFIX, tags=["Tables"], dependencies=authenticated)
app.include_router(sql.router, prefix=DATABASE_PREFIX, tags=["SQL"], dependencies=authenticated)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "gateway.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG
    )
