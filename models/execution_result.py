from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime
from models.base import Base, JSONType


class ExecutionResult(Base):
    """
    One row per quality check run. Append-only.

    Purpose:
    - Audit trail of every run, failed runs included
    - Result snapshot (rows + field descriptors) and derived metrics
    - Reference target for alert rules that fired
    """
    __tablename__ = "db_qa_execution_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    query_id = Column(Integer, ForeignKey("db_qa_queries.id"), nullable=False, index=True)

    execution_time = Column(DateTime, nullable=False, default=datetime.utcnow)
    status = Column(String(20), nullable=False)

    # {"rows": [...], "rowCount": n, "fields": [{"name", "typeId", "tableId"}]}
    result = Column(JSONType, nullable=True)
    metrics = Column(JSONType, nullable=False, default=dict)

    execution_duration = Column(Integer, nullable=True)  # ms
    error_message = Column(Text, nullable=True)

    query = relationship("QualityQuery", back_populates="execution_results", lazy="raise")

    __table_args__ = (
        Index("idx_qa_result_query_time", "query_id", "execution_time"),
    )
