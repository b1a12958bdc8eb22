# ============================================================================
# File: pipeline/runner.py
# Description: Quality check orchestrator
# ============================================================================
"""
Quality check runner - orchestrates one run of a quality query.

Stages:
1. Resolve - connection record -> descriptor
2. Execute - run the statement under the execution budget
3. Measure - category metrics from the result set
4. Evaluate - thresholds decide success / warning
5. Record - persist the result and reschedule the query
6. Alert - evaluate alert rules for warning / error runs

Connection and query failures never escape the runner: they become an
``error`` execution record. Only lookup, concurrency and persistence
failures are raised.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import logging
import time

from core.config import settings
from core.exceptions import (
    ExecutionError,
    NotFoundOrUnauthorized,
    PersistenceError,
    QAException,
    UnsupportedConnectionType,
)
from models.base import ExecutionStatus
from models.quality_query import QualityQuery
from pipeline.alerts import AlertEvaluator, AlertOutcome
from pipeline.connections import ConnectionResolver
from pipeline.executor import QueryExecutor, QueryResultSet
from pipeline.locks import QueryRunRegistry, query_runs
from pipeline.metrics import calculate_metrics
from pipeline.notifier import NotificationDispatcher
from pipeline.recorder import ExecutionRecorder
from pipeline.repository import QARepository
from pipeline.thresholds import evaluate_thresholds

logger = logging.getLogger(__name__)


@dataclass
class ExecutionOutcome:
    """In-memory result of one run"""
    query_id: int
    status: ExecutionStatus
    result: Optional[Dict[str, Any]]
    metrics: Dict[str, Any]
    execution_duration: int
    error_message: Optional[str] = None
    execution_id: Optional[int] = None
    # Stage exception behind an error status, if any
    error: Optional[QAException] = None
    alerts: List[AlertOutcome] = field(default_factory=list)

    def to_execution_dict(self) -> Dict[str, Any]:
        return {
            "id": self.execution_id,
            "queryId": self.query_id,
            "status": self.status.value,
            "result": self.result,
            "metrics": self.metrics,
            "executionDuration": self.execution_duration,
            "errorMessage": self.error_message,
        }


class QualityCheckRunner:
    """
    Run quality queries end to end.

    Responsibilities:
    - Exactly one execution record per run, failed runs included
    - At most one concurrent run per query
    - Best-effort alerting that never changes the reported status
    """

    def __init__(
        self,
        repository: QARepository,
        executor: Optional[QueryExecutor] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        registry: Optional[QueryRunRegistry] = None
    ):
        self.repository = repository
        self.resolver = ConnectionResolver(repository)
        self.executor = executor or QueryExecutor()
        self.recorder = ExecutionRecorder(repository)
        self.alert_evaluator = AlertEvaluator(repository, dispatcher)
        self.registry = registry or query_runs

    async def run(self, query_id: int, user_id: int) -> ExecutionOutcome:
        """
        Run a query owned by user_id.

        Raises:
            NotFoundOrUnauthorized: Query missing or not owned by user_id
            QueryAlreadyRunning: Another run of the query is in progress
            PersistenceError: The run could not be recorded (outcome attached)
        """
        query = await self.repository.get_query(query_id, user_id)

        async with self.registry.hold(query_id):
            return await self._run(query, user_id)

    async def _run(self, query: QualityQuery, user_id: int) -> ExecutionOutcome:
        # Read once: a rollback during alerting expires the mapped query
        query_id = query.id
        category = query.category
        thresholds = query.thresholds
        frequency = query.execution_frequency
        connection_id = query.connection_id
        sql = query.query

        logger.info(f"Running quality query {query_id} ({query.name}, category={category})")

        start_time = time.perf_counter()
        result_set: Optional[QueryResultSet] = None
        stage_error: Optional[QAException] = None
        error_message: Optional[str] = None

        # --------------------------------------------------
        # RESOLVE + EXECUTE
        # --------------------------------------------------
        try:
            descriptor = await self.resolver.resolve(connection_id, user_id)
            result_set = await self.executor.execute(
                descriptor,
                sql,
                settings.QA_EXECUTION_TIMEOUT_SECONDS
            )
        except (NotFoundOrUnauthorized, UnsupportedConnectionType) as e:
            stage_error = e
            error_message = f"Connection error: {e.message}"
        except ExecutionError as e:
            stage_error = e
            error_message = e.message

        duration_ms = int((time.perf_counter() - start_time) * 1000)

        # --------------------------------------------------
        # MEASURE + EVALUATE
        # --------------------------------------------------
        if result_set is None:
            status = ExecutionStatus.ERROR
            metrics: Dict[str, Any] = {}
            result = None
            logger.warning(f"Quality query {query_id} failed: {error_message}")
        else:
            metrics = calculate_metrics(category, result_set)
            threshold = evaluate_thresholds(metrics, thresholds)
            status = ExecutionStatus.SUCCESS if threshold.valid else ExecutionStatus.WARNING
            error_message = threshold.reason
            result = result_set.to_dict()

        outcome = ExecutionOutcome(
            query_id=query_id,
            status=status,
            result=result,
            metrics=metrics,
            execution_duration=duration_ms,
            error_message=error_message,
            error=stage_error
        )

        # --------------------------------------------------
        # RECORD
        # --------------------------------------------------
        try:
            execution = await self.recorder.record(
                query_id=query_id,
                frequency=frequency,
                status=status,
                result=result,
                metrics=metrics,
                duration_ms=duration_ms,
                error_message=error_message
            )
        except PersistenceError as e:
            e.outcome = outcome
            raise

        outcome.execution_id = execution_id = execution.id

        # --------------------------------------------------
        # ALERT
        # --------------------------------------------------
        outcome.alerts = await self.alert_evaluator.evaluate(
            query_id=query_id,
            execution_result_id=execution_id,
            metrics=metrics,
            status=status
        )

        logger.info(
            f"Quality query {query_id} completed: status={status.value}, "
            f"rows={result_set.row_count if result_set else 0}, duration={duration_ms}ms"
        )
        return outcome

    async def validate(self, connection_id: int, user_id: int, sql: str) -> QueryResultSet:
        """
        Validation-only run before saving a query. Nothing is persisted.

        Raises:
            NotFoundOrUnauthorized, UnsupportedConnectionType,
            QueryConnectionError, QueryExecutionError
        """
        descriptor = await self.resolver.resolve(connection_id, user_id)
        return await self.executor.validate(descriptor, sql)
