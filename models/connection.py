from sqlalchemy import Column, Integer, String, DateTime, Index
from datetime import datetime
from models.base import Base, JSONType, ConnectionType


class Connection(Base):
    """
    Named external data source a quality check runs against.

    config holds host, port, database, username, sslMode and either a
    literal password or a password_ref ("env:NAME").
    Read-only to the quality check pipeline.
    """
    __tablename__ = "connections"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False, index=True)
    space_id = Column(Integer, nullable=True, index=True)

    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False, default=ConnectionType.SQL.value)
    config = Column(JSONType, nullable=False, default=dict)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class SpaceMember(Base):
    """Membership of a user in a shared space"""
    __tablename__ = "space_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    space_id = Column(Integer, nullable=False)
    user_id = Column(Integer, nullable=False)
    joined_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_space_member", "space_id", "user_id", unique=True),
    )
