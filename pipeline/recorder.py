"""
Execution recorder: persist a run's outcome and advance the query's schedule.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Union
import logging

from dateutil.relativedelta import relativedelta

from core.exceptions import PersistenceError
from models.base import ExecutionFrequency, ExecutionStatus
from models.execution_result import ExecutionResult
from pipeline.repository import QARepository

logger = logging.getLogger(__name__)

FREQUENCY_INTERVALS = {
    ExecutionFrequency.HOURLY.value: timedelta(hours=1),
    ExecutionFrequency.DAILY.value: timedelta(days=1),
    ExecutionFrequency.WEEKLY.value: timedelta(weeks=1),
    ExecutionFrequency.MONTHLY.value: relativedelta(months=1),
}


def compute_next_execution_time(
    frequency: Union[str, ExecutionFrequency, None],
    now: datetime
) -> Optional[datetime]:
    """
    Next scheduled run for a frequency, or None for manual / unknown frequencies.

    Monthly advances by one calendar month (Jan 31 -> Feb 28/29).
    """
    if isinstance(frequency, ExecutionFrequency):
        frequency = frequency.value

    interval = FREQUENCY_INTERVALS.get(frequency)
    if interval is None:
        return None
    return now + interval


class ExecutionRecorder:
    """
    Writes exactly one ExecutionResult per run and reschedules the query.

    Both writes are committed together, whatever the run's status.
    """

    def __init__(self, repository: QARepository):
        self.repository = repository

    async def record(
        self,
        query_id: int,
        frequency: Union[str, ExecutionFrequency, None],
        status: ExecutionStatus,
        result: Optional[Dict[str, Any]],
        metrics: Dict[str, Any],
        duration_ms: int,
        error_message: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ExecutionResult:
        """
        Persist a run.

        Returns:
            The stored ExecutionResult (with id)

        Raises:
            PersistenceError: Insert or schedule update failed (rolled back)
        """
        now = now or datetime.utcnow()
        next_execution_time = compute_next_execution_time(frequency, now)

        execution = ExecutionResult(
            query_id=query_id,
            execution_time=now,
            status=status.value,
            result=result,
            metrics=metrics,
            execution_duration=duration_ms,
            error_message=error_message
        )

        try:
            await self.repository.insert_execution_result(execution)
            await self.repository.update_query_schedule(query_id, now, next_execution_time)
            await self.repository.commit()
        except Exception as e:
            logger.error(f"Failed to record execution for query {query_id}: {str(e)}")
            await self.repository.rollback()
            raise PersistenceError(
                "Failed to record execution result",
                context={
                    "query_id": query_id,
                    "status": status.value,
                    "operation": "INSERT/UPDATE",
                    "table_name": "db_qa_execution_results"
                },
                original_exception=e
            )

        logger.info(
            f"Recorded execution {execution.id} for query {query_id}: status={status.value}, "
            f"duration={duration_ms}ms, next run={next_execution_time.isoformat() if next_execution_time else 'manual'}"
        )
        return execution
