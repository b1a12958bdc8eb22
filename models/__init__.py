"""
SQLAlchemy ORM models for the application store.

Models:
    base: Base declarative class and shared enums
    connection: External data source descriptors and space membership
    quality_query: User-defined quality checks and their schedule
    execution_result: Append-only record of every check run
    alert: Alert rules and the notifications they produced

Relationships:
    - Connection → QualityQuery (one-to-many)
    - QualityQuery → ExecutionResult (one-to-many, append-only)
    - QualityQuery → AlertRule (one-to-many)
    - AlertRule → AlertNotification (one-to-many, one row per channel per trigger)
"""

from models.base import Base
from models.connection import Connection, SpaceMember
from models.quality_query import QualityQuery
from models.execution_result import ExecutionResult
from models.alert import AlertRule, AlertNotification

__all__ = [
    "Base",
    "Connection",
    "SpaceMember",
    "QualityQuery",
    "ExecutionResult",
    "AlertRule",
    "AlertNotification",
]
