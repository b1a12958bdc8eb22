from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from models.base import Base, JSONType, ExecutionFrequency


class QualityQuery(Base):
    """
    User-defined data quality check.

    Purpose:
    - SQL run against a registered connection
    - Category decides which metrics are derived from the result set
    - Thresholds decide between success and warning

    last_execution_time / next_execution_time are written only by the
    execution recorder.
    """
    __tablename__ = "db_qa_queries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    connection_id = Column(Integer, ForeignKey("connections.id"), nullable=False, index=True)
    space_id = Column(Integer, nullable=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False)
    query = Column(Text, nullable=False)

    # {"metric": {"operator": ">=", "value": 90}}
    thresholds = Column(JSONType, nullable=False, default=dict)
    expected_result = Column(JSONType, nullable=True, default=dict)

    enabled = Column(Boolean, nullable=False, default=True)
    execution_frequency = Column(String(20), nullable=False, default=ExecutionFrequency.MANUAL.value)
    last_execution_time = Column(DateTime, nullable=True)
    next_execution_time = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    connection = relationship("Connection", lazy="raise")
    execution_results = relationship("ExecutionResult", back_populates="query", lazy="raise")

    __table_args__ = (
        Index("idx_qa_query_schedule", "enabled", "execution_frequency", "next_execution_time"),
    )
