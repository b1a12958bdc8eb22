"""
End-to-end runs of the quality check pipeline over the in-memory repository
"""

import pytest
from core.config import settings
from core.exceptions import QueryConnectionError
from models.base import ExecutionStatus
from pipeline.alerts import AlertOutcomeState
from pipeline.runner import QualityCheckRunner
from conftest import FakeExecutor, make_result_set


def _runner(repository, executor, dispatcher, registry):
    return QualityCheckRunner(repository, executor=executor, dispatcher=dispatcher, registry=registry)


@pytest.mark.asyncio
async def test_completeness_run_without_thresholds(repository, dispatcher, registry, completeness_rows):
    """4 rows, 2 nulls across 2 columns, no thresholds -> success"""
    executor = FakeExecutor(make_result_set(completeness_rows))

    outcome = await _runner(repository, executor, dispatcher, registry).run(42, user_id=7)

    assert outcome.status == ExecutionStatus.SUCCESS
    assert outcome.error_message is None
    assert outcome.metrics["overall_completeness"] == 75.0
    assert outcome.metrics["rowCount"] == 4
    assert outcome.alerts == []

    assert len(repository.results) == 1
    stored = repository.results[0]
    assert stored.id == outcome.execution_id
    assert stored.status == "success"
    assert stored.result["rowCount"] == 4
    assert stored.metrics == outcome.metrics

    # Run budget from configuration
    assert executor.calls[0][2] == settings.QA_EXECUTION_TIMEOUT_SECONDS


@pytest.mark.asyncio
async def test_threshold_breach_is_warning(repository, dispatcher, registry, completeness_rows):
    repository.queries[42].thresholds = {"overall_completeness": {"operator": ">=", "value": 90}}
    executor = FakeExecutor(make_result_set(completeness_rows))

    outcome = await _runner(repository, executor, dispatcher, registry).run(42, user_id=7)

    assert outcome.status == ExecutionStatus.WARNING
    assert outcome.error_message == "overall_completeness value 75 fails threshold (>= 90)"
    assert repository.results[0].error_message == outcome.error_message


@pytest.mark.asyncio
async def test_warning_fires_alert_on_each_channel(repository, dispatcher, registry, completeness_rows):
    repository.queries[42].thresholds = {"overall_completeness": {"operator": ">=", "value": 90}}
    repository.add_alert(alert_id=5, condition={"status": "warning"}, channels=["email", "slack"])
    executor = FakeExecutor(make_result_set(completeness_rows))

    outcome = await _runner(repository, executor, dispatcher, registry).run(42, user_id=7)

    assert [a.state for a in outcome.alerts] == [AlertOutcomeState.FIRED]
    assert len(repository.notifications) == 2
    assert {n.content["executionResultId"] for n in repository.notifications} == {outcome.execution_id}
    assert repository.alerts[5].execution_result_id == outcome.execution_id
    assert len(dispatcher.dispatched) == 2


@pytest.mark.asyncio
async def test_success_does_not_alert(repository, dispatcher, registry, completeness_rows):
    repository.add_alert(condition={"metric": "overall_completeness", "operator": "<", "value": 100})
    executor = FakeExecutor(make_result_set(completeness_rows))

    outcome = await _runner(repository, executor, dispatcher, registry).run(42, user_id=7)

    assert outcome.status == ExecutionStatus.SUCCESS
    assert outcome.alerts == []
    assert repository.notifications == []


@pytest.mark.asyncio
async def test_zero_row_uniqueness_check(repository, dispatcher, registry):
    repository.queries[42].category = "data_uniqueness"
    repository.queries[42].thresholds = {"duplicate_count": {"operator": "=", "value": 0}}

    outcome = await _runner(repository, FakeExecutor(make_result_set([])), dispatcher, registry).run(42, user_id=7)

    assert outcome.status == ExecutionStatus.SUCCESS
    assert outcome.metrics == {"rowCount": 0, "duplicate_count": 0, "duplicate_details": []}


@pytest.mark.asyncio
async def test_every_run_appends_a_record(repository, dispatcher, registry, completeness_rows):
    runner = _runner(repository, FakeExecutor(make_result_set(completeness_rows)), dispatcher, registry)

    first = await runner.run(42, user_id=7)
    second = await runner.run(42, user_id=7)

    assert len(repository.results) == 2
    assert first.execution_id != second.execution_id


@pytest.mark.asyncio
async def test_scheduled_query_is_rescheduled(repository, dispatcher, registry, completeness_rows):
    repository.queries[42].execution_frequency = "hourly"

    await _runner(repository, FakeExecutor(make_result_set(completeness_rows)), dispatcher, registry).run(42, user_id=7)

    query = repository.queries[42]
    assert query.last_execution_time is not None
    assert (query.next_execution_time - query.last_execution_time).total_seconds() == 3600


@pytest.mark.asyncio
async def test_uniqueness_run_reports_every_duplicate_row(repository, dispatcher, registry):
    """3 duplicate rows, no thresholds -> success with count and details"""
    repository.queries[42].category = "data_uniqueness"
    duplicates = [
        {"email": "a@example.com", "occurrences": 2},
        {"email": "b@example.com", "occurrences": 3},
        {"email": "c@example.com", "occurrences": 2},
    ]

    outcome = await _runner(repository, FakeExecutor(make_result_set(duplicates)), dispatcher, registry).run(42, user_id=7)

    assert outcome.status == ExecutionStatus.SUCCESS
    assert outcome.error_message is None
    assert outcome.metrics == {
        "rowCount": 3,
        "duplicate_count": 3,
        "duplicate_details": duplicates,
    }
    assert repository.results[0].status == "success"
    assert repository.results[0].metrics == outcome.metrics


@pytest.mark.asyncio
async def test_error_run_notifies_each_channel_once(repository, dispatcher, registry):
    """Error run with one status=error rule on email and slack -> 2 notification rows"""
    repository.add_alert(alert_id=5, condition={"status": "error"}, channels=["email", "slack"])
    executor = FakeExecutor(error=QueryConnectionError("connect ECONNREFUSED 10.0.0.5:5432"))

    outcome = await _runner(repository, executor, dispatcher, registry).run(42, user_id=7)

    assert outcome.status == ExecutionStatus.ERROR
    assert len(repository.results) == 1
    assert len(repository.notifications) == 2
    assert sorted(n.channel for n in repository.notifications) == ["email", "slack"]
    assert {n.alert_id for n in repository.notifications} == {5}
    assert {n.content["executionResultId"] for n in repository.notifications} == {repository.results[0].id}
    assert outcome.alerts[0].notifications_sent == 2
