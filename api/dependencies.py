"""
FastAPI dependencies: sessions, caller identity and pipeline wiring
"""

from typing import AsyncGenerator, Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import async_session_maker
from core.exceptions import AuthenticationRequired
from pipeline.executor import QueryExecutor
from pipeline.notifier import HttpNotificationDispatcher, NotificationDispatcher
from pipeline.repository import QARepository, SQLAlchemyQARepository
from pipeline.runner import QualityCheckRunner

_executor = QueryExecutor()
_dispatcher = HttpNotificationDispatcher()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Application store session per request"""
    async with async_session_maker() as session:
        yield session


async def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> int:
    """
    Caller identity supplied by the upstream authentication layer.

    Raises:
        HTTPException(401): Header missing or not an integer id
    """
    if not x_user_id or not x_user_id.strip().isdigit():
        error = AuthenticationRequired("Authentication required")
        raise HTTPException(status_code=error.status_code, detail=error.message)
    return int(x_user_id)


def get_repository(db: AsyncSession = Depends(get_db)) -> QARepository:
    return SQLAlchemyQARepository(db)


def get_executor() -> QueryExecutor:
    return _executor


def get_dispatcher() -> NotificationDispatcher:
    return _dispatcher


def get_runner(
    repository: QARepository = Depends(get_repository),
    executor: QueryExecutor = Depends(get_executor),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> QualityCheckRunner:
    return QualityCheckRunner(repository, executor=executor, dispatcher=dispatcher)
