"""
Pydantic schemas for request validation and response serialization.

Schemas:
    api: API endpoint request/response schemas for quality queries,
        executions, alert rules and health

Execution payloads use the camelCase keys the dashboard UI reads
(queryId, executionDuration, errorMessage); everything else is snake_case.

Usage:
    from schemas.api import QualityQueryCreate, RunQueryResponse
"""

__all__ = [
    "QualityQueryCreate",
    "QualityQueryResponse",
    "ExecutionResultResponse",
    "RunQueryResponse",
    "AlertRuleCreate",
    "AlertRuleResponse",
    "AlertNotificationResponse",
    "HealthCheckResponse",
]
