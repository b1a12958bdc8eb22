"""
Quality query endpoints: create (with validation run), list, detail, update,
delete, run and execution history
"""

from fastapi import APIRouter, Depends, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from typing import List, Optional
import uuid
import logging

from api.dependencies import get_current_user_id, get_repository, get_runner
from core.exceptions import (
    NotFoundOrUnauthorized,
    PersistenceError,
    QueryAlreadyRunning,
    QueryConnectionError,
    QueryExecutionError,
    UnsupportedConnectionType,
)
from models.quality_query import QualityQuery
from pipeline.repository import QARepository
from pipeline.runner import QualityCheckRunner
from schemas.api import (
    AlertOutcomeResponse,
    DeleteResponse,
    ExecutionResultResponse,
    QualityQueryCreate,
    QualityQueryResponse,
    QualityQueryUpdate,
    RunQueryResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Quality Queries"])


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")


async def _check_statement(
    runner: QualityCheckRunner,
    connection_id: int,
    user_id: int,
    sql: str,
    validate: bool,
    request_id: str
) -> Optional[JSONResponse]:
    """
    Check access to the connection and, when validate is set, run the
    statement once with the validation budget.

    Returns:
        A 400 response for connection or statement failures, else None
    """
    try:
        if validate:
            result_set = await runner.validate(connection_id, user_id, sql)
            logger.info(f"[{request_id}] Validation run returned {result_set.row_count} rows")
        else:
            await runner.resolver.resolve(connection_id, user_id)
    except QueryConnectionError as e:
        return JSONResponse(
            status_code=400,
            content={"error": e.message, "connectionError": True}
        )
    except QueryExecutionError as e:
        return JSONResponse(
            status_code=400,
            content={"error": e.message, "validationError": True}
        )
    return None


@router.post("/queries", response_model=QualityQueryResponse, status_code=201)
async def create_query(
    payload: QualityQueryCreate,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository),
    runner: QualityCheckRunner = Depends(get_runner)
):
    """
    Create a quality query.

    When validate_query is set, the statement is executed once with the
    validation budget before anything is saved; the result is discarded.
    """
    request_id = _request_id(request)
    logger.info(f"[{request_id}] POST /queries - connection={payload.connection_id}, category={payload.category}")

    rejection = await _check_statement(
        runner, payload.connection_id, user_id, payload.query, payload.validate_query, request_id
    )
    if rejection is not None:
        return rejection

    query = QualityQuery(
        user_id=user_id,
        connection_id=payload.connection_id,
        space_id=payload.space_id,
        name=payload.name,
        description=payload.description,
        category=payload.category,
        query=payload.query,
        thresholds={name: rule.model_dump() for name, rule in payload.thresholds.items()},
        expected_result=payload.expected_result or {},
        enabled=payload.enabled,
        execution_frequency=payload.execution_frequency,
    )
    query = await repository.create_query(query)

    logger.info(f"[{request_id}] Created quality query {query.id}")
    return QualityQueryResponse.model_validate(query)


@router.get("/queries", response_model=List[QualityQueryResponse])
async def list_queries(
    connection_id: Optional[int] = Query(None, description="Filter by connection"),
    category: Optional[str] = Query(None, description="Filter by category"),
    space_id: Optional[int] = Query(None, description="Filter by space"),
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository)
):
    queries = await repository.list_queries(
        user_id,
        connection_id=connection_id,
        category=category,
        space_id=space_id
    )
    return [QualityQueryResponse.model_validate(q) for q in queries]


@router.get("/queries/{query_id}", response_model=QualityQueryResponse)
async def get_query(
    query_id: int,
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository)
):
    query = await repository.get_query(query_id, user_id)
    return QualityQueryResponse.model_validate(query)


@router.put("/queries/{query_id}", response_model=QualityQueryResponse)
async def update_query(
    query_id: int,
    payload: QualityQueryUpdate,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository),
    runner: QualityCheckRunner = Depends(get_runner)
):
    """
    Update a quality query. Ownership and schedule timestamps cannot be
    changed here.
    """
    request_id = _request_id(request)
    query = await repository.get_query(query_id, user_id)
    changes = payload.changes()
    logger.info(f"[{request_id}] PUT /queries/{query_id} - fields={sorted(changes)}")

    if "connection_id" in changes or (payload.validate_query and "query" in changes):
        rejection = await _check_statement(
            runner,
            changes.get("connection_id", query.connection_id),
            user_id,
            changes.get("query", query.query),
            payload.validate_query,
            request_id
        )
        if rejection is not None:
            return rejection

    query = await repository.apply_query_changes(query, changes)

    logger.info(f"[{request_id}] Updated quality query {query_id}")
    return QualityQueryResponse.model_validate(query)


@router.delete("/queries/{query_id}", response_model=DeleteResponse)
async def delete_query(
    query_id: int,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository),
    runner: QualityCheckRunner = Depends(get_runner)
):
    """Delete a quality query with its execution history and alert rules"""
    request_id = _request_id(request)
    await repository.get_query(query_id, user_id)

    if runner.registry.is_running(query_id):
        raise QueryAlreadyRunning(
            f"Query {query_id} is running and cannot be deleted",
            context={"query_id": query_id}
        )

    await repository.delete_query(query_id)

    logger.info(f"[{request_id}] Deleted quality query {query_id}")
    return DeleteResponse(message="Query deleted successfully")


@router.get("/queries/{query_id}/results", response_model=List[ExecutionResultResponse])
async def get_query_results(
    query_id: int,
    limit: int = Query(10, ge=1, le=100, description="Number of recent executions to return"),
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository)
):
    """Most recent executions first"""
    await repository.get_query(query_id, user_id)
    results = await repository.list_execution_results(query_id, limit=limit)
    return [ExecutionResultResponse.model_validate(r) for r in results]


@router.get("/queries/{query_id}/history", response_model=List[ExecutionResultResponse])
async def get_query_history(
    query_id: int,
    limit: int = Query(50, ge=1, le=500, description="Number of executions to return"),
    user_id: int = Depends(get_current_user_id),
    repository: QARepository = Depends(get_repository)
):
    """Run history of a query, most recent first"""
    await repository.get_query(query_id, user_id)
    results = await repository.list_execution_results(query_id, limit=limit)
    return [ExecutionResultResponse.model_validate(r) for r in results]


@router.post("/queries/{query_id}/run", response_model=RunQueryResponse)
async def run_query(
    query_id: int,
    request: Request,
    user_id: int = Depends(get_current_user_id),
    runner: QualityCheckRunner = Depends(get_runner)
):
    """
    Run a quality query now.

    Returns 200 for every completed run, including status=error runs caused
    by connection or statement failures. Connection lookup failures are
    recorded too, then reported as 404 (not found) or 400 (unsupported type).
    """
    request_id = _request_id(request)
    logger.info(f"[{request_id}] POST /queries/{query_id}/run - user={user_id}")

    try:
        outcome = await runner.run(query_id, user_id)
    except PersistenceError as e:
        logger.error(f"[{request_id}] {e.message}", extra={"error_context": e.to_dict()})
        body = {"success": False, "error": e.message}
        if e.outcome is not None:
            body["execution"] = e.outcome.to_execution_dict()
        return JSONResponse(status_code=e.status_code, content=jsonable_encoder(body))

    execution = outcome.to_execution_dict()

    if isinstance(outcome.error, (NotFoundOrUnauthorized, UnsupportedConnectionType)):
        return JSONResponse(
            status_code=outcome.error.status_code,
            content=jsonable_encoder({
                "success": False,
                "error": outcome.error.message,
                "execution": execution
            })
        )

    return RunQueryResponse(
        success=True,
        execution=ExecutionResultResponse(**execution),
        alerts=[AlertOutcomeResponse(**a.to_dict()) for a in outcome.alerts]
    )
