from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, ForeignKey, Index
from datetime import datetime
from models.base import Base, JSONType, AlertStatus, AlertSeverity


class AlertRule(Base):
    """
    Condition on a quality check's outcome that triggers notifications.

    condition is either {"status": "<status>"} or
    {"metric": "<name>", "operator": ">", "value": <number>}.
    """
    __tablename__ = "db_qa_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    query_id = Column(Integer, ForeignKey("db_qa_queries.id"), nullable=False, index=True)
    space_id = Column(Integer, nullable=True)

    # Last execution result that fired the rule
    execution_result_id = Column(Integer, ForeignKey("db_qa_execution_results.id"), nullable=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    severity = Column(String(20), nullable=False, default=AlertSeverity.MEDIUM.value)
    condition = Column(JSONType, nullable=False)
    status = Column(String(20), nullable=False, default=AlertStatus.ACTIVE.value)
    enabled = Column(Boolean, nullable=False, default=True)

    notification_channels = Column(JSONType, nullable=False, default=list)
    email_recipients = Column(Text, nullable=True)
    slack_webhook = Column(Text, nullable=True)
    custom_webhook = Column(Text, nullable=True)

    last_triggered_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_qa_alert_query_status", "query_id", "status"),
    )


class AlertNotification(Base):
    """Audit record of one notification per channel per trigger. Append-only."""
    __tablename__ = "db_qa_alert_notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_id = Column(Integer, ForeignKey("db_qa_alerts.id"), nullable=False, index=True)

    channel = Column(String(20), nullable=False)
    sent_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    status = Column(String(20), nullable=False)
    content = Column(JSONType, nullable=False, default=dict)
    error_message = Column(Text, nullable=True)
