"""
Repository interface over the application store, and its SQLAlchemy
implementation.

All filters are built from SQLAlchemy expressions; no value is ever
interpolated into SQL text.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select, update, delete, and_, or_, exists
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundOrUnauthorized, PersistenceError
from models.alert import AlertRule, AlertNotification
from models.base import AlertStatus, ExecutionFrequency
from models.connection import Connection, SpaceMember
from models.execution_result import ExecutionResult
from models.quality_query import QualityQuery

logger = logging.getLogger(__name__)


class QARepository(ABC):
    """
    Data access used by the quality check pipeline and the API.

    Writes are staged until commit(); callers own the transaction boundary.
    """

    # --------------------------------------------------------------
    # Pipeline operations
    # --------------------------------------------------------------

    @abstractmethod
    async def get_query(self, query_id: int, user_id: int) -> QualityQuery:
        """
        Raises:
            NotFoundOrUnauthorized: Query missing or not owned by user_id
        """

    @abstractmethod
    async def get_connection(self, connection_id: int) -> Optional[Connection]:
        pass

    @abstractmethod
    async def user_in_space(self, user_id: int, space_id: int) -> bool:
        pass

    @abstractmethod
    async def insert_execution_result(self, result: ExecutionResult) -> int:
        """Stage an execution result and return its id"""

    @abstractmethod
    async def update_query_schedule(
        self,
        query_id: int,
        last_execution_time: datetime,
        next_execution_time: Optional[datetime]
    ) -> None:
        pass

    @abstractmethod
    async def list_active_alert_rules(self, query_id: int) -> List[AlertRule]:
        pass

    @abstractmethod
    async def update_alert_rule(self, alert_id: int, execution_result_id: int, updated_at: datetime) -> None:
        pass

    @abstractmethod
    async def insert_alert_notification(self, notification: AlertNotification) -> int:
        pass

    @abstractmethod
    async def list_due_queries(self, now: datetime) -> List[QualityQuery]:
        pass

    @abstractmethod
    async def commit(self) -> None:
        pass

    @abstractmethod
    async def rollback(self) -> None:
        pass

    # --------------------------------------------------------------
    # API operations
    # --------------------------------------------------------------

    @abstractmethod
    async def create_query(self, query: QualityQuery) -> QualityQuery:
        pass

    @abstractmethod
    async def list_queries(
        self,
        user_id: int,
        connection_id: Optional[int] = None,
        category: Optional[str] = None,
        space_id: Optional[int] = None
    ) -> List[QualityQuery]:
        pass

    @abstractmethod
    async def list_execution_results(self, query_id: int, limit: int = 10) -> List[ExecutionResult]:
        pass

    @abstractmethod
    async def create_alert_rule(self, rule: AlertRule) -> AlertRule:
        pass

    @abstractmethod
    async def list_alert_rules(self, user_id: int, query_id: Optional[int] = None) -> List[AlertRule]:
        pass

    @abstractmethod
    async def get_alert_rule(self, alert_id: int, user_id: int) -> AlertRule:
        """
        Raises:
            NotFoundOrUnauthorized: Alert missing or not owned by user_id
        """

    @abstractmethod
    async def set_alert_enabled(self, alert_id: int, enabled: bool) -> None:
        pass

    @abstractmethod
    async def list_alert_notifications(self, alert_id: int, limit: int = 50) -> List[AlertNotification]:
        pass

    @abstractmethod
    async def apply_query_changes(self, query: QualityQuery, changes: Dict[str, Any]) -> QualityQuery:
        """Set the given fields on query, commit, and return it refreshed"""

    @abstractmethod
    async def delete_query(self, query_id: int) -> None:
        """Delete a query with its execution results, alert rules and notifications"""

    @abstractmethod
    async def get_execution_results(self, execution_ids: List[int]) -> List[ExecutionResult]:
        pass

    @abstractmethod
    async def apply_alert_rule_changes(self, rule: AlertRule, changes: Dict[str, Any]) -> AlertRule:
        pass

    @abstractmethod
    async def delete_alert_rule(self, alert_id: int) -> None:
        """Delete an alert rule and its notifications"""


class SQLAlchemyQARepository(QARepository):
    """QARepository backed by an AsyncSession on the application store"""

    def __init__(self, db_session: AsyncSession):
        self.db = db_session

    async def get_query(self, query_id: int, user_id: int) -> QualityQuery:
        result = await self.db.execute(
            select(QualityQuery).where(
                and_(
                    QualityQuery.id == query_id,
                    QualityQuery.user_id == user_id
                )
            )
        )
        query = result.scalar_one_or_none()
        if query is None:
            raise NotFoundOrUnauthorized(
                "Query not found",
                context={"resource": "query", "resource_id": query_id, "user_id": user_id}
            )
        return query

    async def get_connection(self, connection_id: int) -> Optional[Connection]:
        result = await self.db.execute(
            select(Connection).where(Connection.id == connection_id)
        )
        return result.scalar_one_or_none()

    async def user_in_space(self, user_id: int, space_id: int) -> bool:
        result = await self.db.execute(
            select(
                exists().where(
                    and_(
                        SpaceMember.space_id == space_id,
                        SpaceMember.user_id == user_id
                    )
                )
            )
        )
        return bool(result.scalar())

    async def insert_execution_result(self, result: ExecutionResult) -> int:
        self.db.add(result)
        await self.db.flush()
        return result.id

    async def update_query_schedule(
        self,
        query_id: int,
        last_execution_time: datetime,
        next_execution_time: Optional[datetime]
    ) -> None:
        await self.db.execute(
            update(QualityQuery)
            .where(QualityQuery.id == query_id)
            .values(
                last_execution_time=last_execution_time,
                next_execution_time=next_execution_time,
                updated_at=last_execution_time
            )
        )

    async def list_active_alert_rules(self, query_id: int) -> List[AlertRule]:
        result = await self.db.execute(
            select(AlertRule).where(
                and_(
                    AlertRule.query_id == query_id,
                    AlertRule.status == AlertStatus.ACTIVE.value,
                    AlertRule.enabled.is_(True)
                )
            ).order_by(AlertRule.id)
        )
        return list(result.scalars().all())

    async def update_alert_rule(self, alert_id: int, execution_result_id: int, updated_at: datetime) -> None:
        await self.db.execute(
            update(AlertRule)
            .where(AlertRule.id == alert_id)
            .values(
                execution_result_id=execution_result_id,
                updated_at=updated_at,
                last_triggered_at=updated_at
            )
        )

    async def insert_alert_notification(self, notification: AlertNotification) -> int:
        self.db.add(notification)
        await self.db.flush()
        return notification.id

    async def list_due_queries(self, now: datetime) -> List[QualityQuery]:
        result = await self.db.execute(
            select(QualityQuery).where(
                and_(
                    QualityQuery.enabled.is_(True),
                    QualityQuery.execution_frequency != ExecutionFrequency.MANUAL.value,
                    or_(
                        QualityQuery.next_execution_time.is_(None),
                        QualityQuery.next_execution_time <= now
                    )
                )
            ).order_by(QualityQuery.next_execution_time.asc().nulls_first())
        )
        return list(result.scalars().all())

    async def commit(self) -> None:
        await self.db.commit()

    async def rollback(self) -> None:
        await self.db.rollback()

    async def create_query(self, query: QualityQuery) -> QualityQuery:
        self.db.add(query)
        await self.db.commit()
        await self.db.refresh(query)
        return query

    async def list_queries(
        self,
        user_id: int,
        connection_id: Optional[int] = None,
        category: Optional[str] = None,
        space_id: Optional[int] = None
    ) -> List[QualityQuery]:
        filters = [QualityQuery.user_id == user_id]

        if connection_id is not None:
            filters.append(QualityQuery.connection_id == connection_id)

        if category:
            filters.append(QualityQuery.category == category)

        if space_id is not None:
            filters.append(QualityQuery.space_id == space_id)

        result = await self.db.execute(
            select(QualityQuery)
            .where(and_(*filters))
            .order_by(QualityQuery.updated_at.desc())
        )
        return list(result.scalars().all())

    async def list_execution_results(self, query_id: int, limit: int = 10) -> List[ExecutionResult]:
        result = await self.db.execute(
            select(ExecutionResult)
            .where(ExecutionResult.query_id == query_id)
            .order_by(ExecutionResult.execution_time.desc(), ExecutionResult.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def create_alert_rule(self, rule: AlertRule) -> AlertRule:
        self.db.add(rule)
        await self.db.commit()
        await self.db.refresh(rule)
        return rule

    async def list_alert_rules(self, user_id: int, query_id: Optional[int] = None) -> List[AlertRule]:
        filters = [AlertRule.user_id == user_id]
        if query_id is not None:
            filters.append(AlertRule.query_id == query_id)

        result = await self.db.execute(
            select(AlertRule).where(and_(*filters)).order_by(AlertRule.updated_at.desc())
        )
        return list(result.scalars().all())

    async def get_alert_rule(self, alert_id: int, user_id: int) -> AlertRule:
        result = await self.db.execute(
            select(AlertRule).where(
                and_(
                    AlertRule.id == alert_id,
                    AlertRule.user_id == user_id
                )
            )
        )
        rule = result.scalar_one_or_none()
        if rule is None:
            raise NotFoundOrUnauthorized(
                "Alert not found or access denied",
                context={"resource": "alert", "resource_id": alert_id, "user_id": user_id}
            )
        return rule

    async def set_alert_enabled(self, alert_id: int, enabled: bool) -> None:
        await self.db.execute(
            update(AlertRule)
            .where(AlertRule.id == alert_id)
            .values(enabled=enabled, updated_at=datetime.utcnow())
        )
        await self.db.commit()

    async def list_alert_notifications(self, alert_id: int, limit: int = 50) -> List[AlertNotification]:
        result = await self.db.execute(
            select(AlertNotification)
            .where(AlertNotification.alert_id == alert_id)
            .order_by(AlertNotification.sent_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def apply_query_changes(self, query: QualityQuery, changes: Dict[str, Any]) -> QualityQuery:
        for name, value in changes.items():
            setattr(query, name, value)
        query.updated_at = datetime.utcnow()

        await self.db.commit()
        await self.db.refresh(query)
        return query

    async def delete_query(self, query_id: int) -> None:
        alert_ids = select(AlertRule.id).where(AlertRule.query_id == query_id)

        try:
            await self.db.execute(
                delete(AlertNotification).where(AlertNotification.alert_id.in_(alert_ids))
            )
            await self.db.execute(delete(AlertRule).where(AlertRule.query_id == query_id))
            await self.db.execute(delete(ExecutionResult).where(ExecutionResult.query_id == query_id))
            await self.db.execute(delete(QualityQuery).where(QualityQuery.id == query_id))
            await self.db.commit()
        except Exception as e:
            logger.error(f"Failed to delete query {query_id}: {str(e)}")
            await self.db.rollback()
            raise PersistenceError(
                "Failed to delete query",
                context={"query_id": query_id, "operation": "DELETE", "table_name": "db_qa_queries"},
                original_exception=e
            )

    async def get_execution_results(self, execution_ids: List[int]) -> List[ExecutionResult]:
        if not execution_ids:
            return []

        result = await self.db.execute(
            select(ExecutionResult).where(ExecutionResult.id.in_(execution_ids))
        )
        return list(result.scalars().all())

    async def apply_alert_rule_changes(self, rule: AlertRule, changes: Dict[str, Any]) -> AlertRule:
        for name, value in changes.items():
            setattr(rule, name, value)
        rule.updated_at = datetime.utcnow()

        await self.db.commit()
        await self.db.refresh(rule)
        return rule

    async def delete_alert_rule(self, alert_id: int) -> None:
        try:
            await self.db.execute(delete(AlertNotification).where(AlertNotification.alert_id == alert_id))
            await self.db.execute(delete(AlertRule).where(AlertRule.id == alert_id))
            await self.db.commit()
        except Exception as e:
            logger.error(f"Failed to delete alert rule {alert_id}: {str(e)}")
            await self.db.rollback()
            raise PersistenceError(
                "Failed to delete alert",
                context={"alert_id": alert_id, "operation": "DELETE", "table_name": "db_qa_alerts"},
                original_exception=e
            )
