"""
Quality check pipeline components.

Modules:
    connections: Connection lookup, access check and TLS policy
    executor: Bounded single-statement execution against external databases
    metrics: Category-specific metric calculation
    thresholds: Threshold rules deciding success / warning
    recorder: Execution persistence and rescheduling
    alerts: Alert rule evaluation
    notifier: Notification dispatch over channels
    locks: At-most-one concurrent run per query
    repository: Application store access
    runner: Orchestrator wiring the stages together
    scheduler: APScheduler integration for scheduled runs

Architecture:
    Connection Resolver → Query Executor → Metric Calculator →
    Threshold Evaluator → Execution Recorder → Alert Evaluator & Notifier

    Failures in the first two stages short-circuit measuring and evaluating
    but still reach the recorder, so every run leaves exactly one
    execution record.

Usage:
    from pipeline.repository import SQLAlchemyQARepository
    from pipeline.runner import QualityCheckRunner

    runner = QualityCheckRunner(SQLAlchemyQARepository(session))
    outcome = await runner.run(query_id=42, user_id=7)
    print(outcome.status, outcome.metrics)
"""

__all__ = [
    "ConnectionResolver",
    "QueryExecutor",
    "calculate_metrics",
    "evaluate_thresholds",
    "ExecutionRecorder",
    "AlertEvaluator",
    "QualityCheckRunner",
    "QAScheduler",
]
