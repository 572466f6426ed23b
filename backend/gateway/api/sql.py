"""
SQL Execution API Routes
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from gateway.api.deps import get_environment, get_external_engine
from gateway.core.auth import Actor, get_current_actor
from gateway.database import get_app_db
from gateway.models.application import Environment
from gateway.schemas.sql import SQLRequest, SQLResult, SqlHistoryResponse
from gateway.services.audit_service import AuditService
from gateway.services.sql_engine import SQLEngine

router = APIRouter()


@router.post("/sql/execute", response_model=SQLResult)
def execute_sql(
    application_id: str,
    request: SQLRequest,
    environment: Environment = Depends(get_environment),
    engine: Engine = Depends(get_external_engine),
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_app_db)
):
    """Execute a single SELECT, INSERT, UPDATE or DELETE statement."""
    sql_engine = SQLEngine(engine, AuditService(db))
    return sql_engine.execute(
        application_id,
        environment,
        request.sql_statement,
        current_actor.email
    )


@router.get("/sql/history", response_model=SqlHistoryResponse)
def get_sql_history(
    application_id: str,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    environment: Environment = Depends(get_environment),
    current_actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_app_db)
):
    """Get executed statements of one environment, newest first."""
    return AuditService(db).list(application_id, environment, limit=limit, offset=offset)
