from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite test store)
JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# ENUMS
# ============================================================================

class ConnectionType(str, enum.Enum):
    """External data source types"""
    SQL = "sql"
    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    REST = "rest"
    CSV = "csv"


class QueryCategory(str, enum.Enum):
    """Quality check categories"""
    COMPLETENESS = "data_completeness"
    CONSISTENCY = "data_consistency"
    ACCURACY = "data_accuracy"
    INTEGRITY = "data_integrity"
    TIMELINESS = "data_timeliness"
    UNIQUENESS = "data_uniqueness"
    RELATIONSHIP = "data_relationship"
    SENSITIVE_EXPOSURE = "sensitive_data_exposure"


class ExecutionFrequency(str, enum.Enum):
    """How often a quality check is rerun automatically"""
    MANUAL = "manual"
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ExecutionStatus(str, enum.Enum):
    """Outcome of one quality check run"""
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class AlertStatus(str, enum.Enum):
    """Alert rule lifecycle"""
    ACTIVE = "active"
    RESOLVED = "resolved"
    SNOOZED = "snoozed"


class AlertSeverity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class NotificationChannel(str, enum.Enum):
    EMAIL = "email"
    SLACK = "slack"
    WEBHOOK = "webhook"


class NotificationStatus(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"
