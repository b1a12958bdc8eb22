"""
Pytest configuration and fixtures
"""

import os
import pytest
import pytest_asyncio
from datetime import datetime
from itertools import count
from typing import Any, AsyncGenerator, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from core.exceptions import NotFoundOrUnauthorized
from models.alert import AlertRule, AlertNotification
from models.base import AlertStatus, Base, ExecutionFrequency
from models.connection import Connection
from models.execution_result import ExecutionResult
from models.quality_query import QualityQuery
from pipeline.connections import ConnectionDescriptor
from pipeline.executor import QueryResultSet
from pipeline.locks import QueryRunRegistry
from pipeline.notifier import DeliveryResult, NotificationDispatcher
from pipeline.repository import QARepository


class InMemoryQARepository(QARepository):
    """
    QARepository over plain dicts.

    Staged writes become visible only on commit(); rollback() discards them.
    Set fail_on to an operation name to make that call raise.
    """

    def __init__(self):
        self.connections: Dict[int, Connection] = {}
        self.space_members = set()
        self.queries: Dict[int, QualityQuery] = {}
        self.results: List[ExecutionResult] = []
        self.alerts: Dict[int, AlertRule] = {}
        self.notifications: List[AlertNotification] = []
        self.fail_on: Optional[str] = None
        self.commits = 0
        self.rollbacks = 0
        self._ids = count(1)
        self._pending: List[Any] = []

    def _maybe_fail(self, operation: str):
        if self.fail_on == operation:
            raise RuntimeError(f"{operation} failed")

    # -- seeding helpers ---------------------------------------------------

    def add_connection(self, connection_id=1, user_id=7, type="postgresql", config=None, space_id=None):
        connection = Connection(
            id=connection_id,
            user_id=user_id,
            space_id=space_id,
            name=f"conn-{connection_id}",
            type=type,
            config=config if config is not None else {
                "host": "db.internal",
                "port": 5432,
                "database": "shop",
                "username": "qa",
                "password": "secret",
                "sslMode": "disable",
            },
        )
        self.connections[connection_id] = connection
        return connection

    def add_query(self, query_id=42, user_id=7, connection_id=1, category="data_completeness",
                  thresholds=None, execution_frequency=ExecutionFrequency.MANUAL.value,
                  enabled=True, next_execution_time=None):
        query = QualityQuery(
            id=query_id,
            user_id=user_id,
            connection_id=connection_id,
            name=f"query-{query_id}",
            category=category,
            query="SELECT email, phone FROM customers",
            thresholds=thresholds or {},
            expected_result={},
            enabled=enabled,
            execution_frequency=execution_frequency,
            next_execution_time=next_execution_time,
            created_at=datetime.utcnow(),
            updated_at=datetime.utcnow(),
        )
        self.queries[query_id] = query
        return query

    def add_alert(self, alert_id=5, query_id=42, user_id=7, condition=None, channels=None,
                  status=AlertStatus.ACTIVE.value, enabled=True, **kwargs):
        rule = AlertRule(
            id=alert_id,
            user_id=user_id,
            query_id=query_id,
            name=f"alert-{alert_id}",
            severity="high",
            condition=condition if condition is not None else {"status": "warning"},
            status=status,
            enabled=enabled,
            notification_channels=channels if channels is not None else ["email"],
            created_at=datetime.utcnow(),
            updated_at=datetime.utcnow(),
            **kwargs
        )
        self.alerts[alert_id] = rule
        return rule

    # -- QARepository ------------------------------------------------------

    async def get_query(self, query_id, user_id):
        self._maybe_fail("get_query")
        query = self.queries.get(query_id)
        if query is None or query.user_id != user_id:
            raise NotFoundOrUnauthorized("Query not found", context={"resource_id": query_id})
        return query

    async def get_connection(self, connection_id):
        self._maybe_fail("get_connection")
        return self.connections.get(connection_id)

    async def user_in_space(self, user_id, space_id):
        return (space_id, user_id) in self.space_members

    async def insert_execution_result(self, result):
        self._maybe_fail("insert_execution_result")
        result.id = next(self._ids)
        self._pending.append(("result", result))
        return result.id

    async def update_query_schedule(self, query_id, last_execution_time, next_execution_time):
        self._maybe_fail("update_query_schedule")
        self._pending.append(("schedule", (query_id, last_execution_time, next_execution_time)))

    async def list_active_alert_rules(self, query_id):
        self._maybe_fail("list_active_alert_rules")
        return [
            rule for rule in sorted(self.alerts.values(), key=lambda r: r.id)
            if rule.query_id == query_id and rule.status == AlertStatus.ACTIVE.value and rule.enabled
        ]

    async def update_alert_rule(self, alert_id, execution_result_id, updated_at):
        self._maybe_fail("update_alert_rule")
        self._pending.append(("alert", (alert_id, execution_result_id, updated_at)))

    async def insert_alert_notification(self, notification):
        self._maybe_fail("insert_alert_notification")
        notification.id = next(self._ids)
        self._pending.append(("notification", notification))
        return notification.id

    async def list_due_queries(self, now):
        return [
            q for q in self.queries.values()
            if q.enabled
            and q.execution_frequency != ExecutionFrequency.MANUAL.value
            and (q.next_execution_time is None or q.next_execution_time <= now)
        ]

    async def commit(self):
        self._maybe_fail("commit")
        for kind, item in self._pending:
            if kind == "result":
                self.results.append(item)
            elif kind == "schedule":
                query_id, last, nxt = item
                self.queries[query_id].last_execution_time = last
                self.queries[query_id].next_execution_time = nxt
            elif kind == "alert":
                alert_id, execution_result_id, updated_at = item
                rule = self.alerts[alert_id]
                rule.execution_result_id = execution_result_id
                rule.updated_at = updated_at
                rule.last_triggered_at = updated_at
            elif kind == "notification":
                self.notifications.append(item)
        self._pending = []
        self.commits += 1

    async def rollback(self):
        self._pending = []
        self.rollbacks += 1

    async def create_query(self, query):
        query.id = next(self._ids)
        query.created_at = query.updated_at = datetime.utcnow()
        self.queries[query.id] = query
        return query

    async def list_queries(self, user_id, connection_id=None, category=None, space_id=None):
        queries = [q for q in self.queries.values() if q.user_id == user_id]
        if connection_id is not None:
            queries = [q for q in queries if q.connection_id == connection_id]
        if category:
            queries = [q for q in queries if q.category == category]
        if space_id is not None:
            queries = [q for q in queries if q.space_id == space_id]
        return queries

    async def list_execution_results(self, query_id, limit=10):
        results = [r for r in self.results if r.query_id == query_id]
        return list(reversed(results))[:limit]

    async def create_alert_rule(self, rule):
        rule.id = next(self._ids)
        rule.created_at = rule.updated_at = datetime.utcnow()
        self.alerts[rule.id] = rule
        return rule

    async def list_alert_rules(self, user_id, query_id=None):
        rules = [r for r in self.alerts.values() if r.user_id == user_id]
        if query_id is not None:
            rules = [r for r in rules if r.query_id == query_id]
        return rules

    async def get_alert_rule(self, alert_id, user_id):
        rule = self.alerts.get(alert_id)
        if rule is None or rule.user_id != user_id:
            raise NotFoundOrUnauthorized("Alert not found or access denied", context={"resource_id": alert_id})
        return rule

    async def set_alert_enabled(self, alert_id, enabled):
        self.alerts[alert_id].enabled = enabled

    async def list_alert_notifications(self, alert_id, limit=50):
        return [n for n in self.notifications if n.alert_id == alert_id][:limit]

    async def apply_query_changes(self, query, changes):
        for name, value in changes.items():
            setattr(query, name, value)
        query.updated_at = datetime.utcnow()
        return query

    async def delete_query(self, query_id):
        self._maybe_fail("delete_query")
        alert_ids = {a.id for a in self.alerts.values() if a.query_id == query_id}
        self.notifications = [n for n in self.notifications if n.alert_id not in alert_ids]
        self.alerts = {k: a for k, a in self.alerts.items() if k not in alert_ids}
        self.results = [r for r in self.results if r.query_id != query_id]
        del self.queries[query_id]

    async def get_execution_results(self, execution_ids):
        return [r for r in self.results if r.id in execution_ids]

    async def apply_alert_rule_changes(self, rule, changes):
        for name, value in changes.items():
            setattr(rule, name, value)
        rule.updated_at = datetime.utcnow()
        return rule

    async def delete_alert_rule(self, alert_id):
        self.notifications = [n for n in self.notifications if n.alert_id != alert_id]
        del self.alerts[alert_id]


class FakeExecutor:
    """Stands in for QueryExecutor; returns result_set or raises error"""

    def __init__(self, result_set: Optional[QueryResultSet] = None, error: Optional[Exception] = None):
        self.result_set = result_set or QueryResultSet()
        self.error = error
        self.calls = []

    async def execute(self, descriptor: ConnectionDescriptor, sql: str, timeout_seconds=None):
        self.calls.append((descriptor, sql, timeout_seconds))
        if self.error is not None:
            raise self.error
        return self.result_set

    async def validate(self, descriptor, sql):
        return await self.execute(descriptor, sql, 5.0)


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self, fail_channels=()):
        self.fail_channels = set(fail_channels)
        self.dispatched = []

    async def dispatch(self, channel, rule, payload):
        self.dispatched.append((channel, rule.id, payload))
        if channel in self.fail_channels:
            return DeliveryResult(delivered=False, error=f"{channel} unreachable")
        return DeliveryResult(delivered=True)


def make_result_set(rows: List[Dict[str, Any]]) -> QueryResultSet:
    fields = [{"name": name, "typeId": 25, "tableId": None} for name in (rows[0].keys() if rows else [])]
    return QueryResultSet(rows=rows, row_count=len(rows), fields=fields)


@pytest.fixture
def repository():
    repo = InMemoryQARepository()
    repo.add_connection()
    repo.add_query()
    return repo


@pytest.fixture
def registry():
    return QueryRunRegistry()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def completeness_rows():
    """4 rows x 2 columns with 2 nulls: 75% overall"""
    return [
        {"email": "a@example.com", "phone": "555-0100"},
        {"email": None, "phone": "555-0101"},
        {"email": "c@example.com", "phone": None},
        {"email": "d@example.com", "phone": "555-0103"},
    ]


# ============================================================================
# Application store on a real async session
# ============================================================================

# In-memory SQLite unless a PostgreSQL test database is configured
TEST_DATABASE_URL = os.getenv("QA_TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create test database engine"""
    if TEST_DATABASE_URL.startswith("sqlite"):
        # One shared connection so every session sees the same in-memory database
        engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for tests"""
    session_maker = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def seeded_session(db_session):
    """Connection 1 and manual completeness query 42, both owned by user 7"""
    db_session.add(Connection(
        id=1,
        user_id=7,
        name="shop",
        type="postgresql",
        config={
            "host": "db.internal",
            "port": 5432,
            "database": "shop",
            "username": "qa",
            "password": "secret",
            "sslMode": "disable",
        },
    ))
    await db_session.flush()
    db_session.add(QualityQuery(
        id=42,
        user_id=7,
        connection_id=1,
        name="Customer contact completeness",
        category="data_completeness",
        query="SELECT email, phone FROM customers",
        thresholds={},
        execution_frequency=ExecutionFrequency.MANUAL.value,
    ))
    await db_session.commit()
    return db_session
