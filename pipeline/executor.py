"""
Query executor: run one user SQL statement against an external database.

Every call creates its own single-connection pool and tears it down before
returning, so no session or credential outlives the run that used it. The
execution budget is enforced twice: as a server-side statement timeout, and
as an outer wall-clock guard that also bounds connection establishment.
"""

import asyncio
import logging
import ssl
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiomysql
import asyncpg
import pymysql
from fastapi.encoders import jsonable_encoder

from core.config import settings
from core.exceptions import QueryConnectionError, QueryExecutionError
from pipeline.connections import ConnectionDescriptor, TLSPolicy

logger = logging.getLogger(__name__)

# Outer guard slack so the server-side timeout reports first when it can
GUARD_GRACE_SECONDS = 1.0

MYSQL_EXECUTION_TIMEOUT_ERRNO = 3024


@dataclass
class QueryResultSet:
    """Normalized result of a statement"""
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    fields: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows": self.rows,
            "rowCount": self.row_count,
            "fields": self.fields,
        }


@dataclass
class _ExecutionState:
    connected: bool = False


def build_ssl_context(tls: TLSPolicy) -> Optional[ssl.SSLContext]:
    """SSL context for a TLS policy, or None when TLS is disabled"""
    if not tls.enabled:
        return None

    context = ssl.create_default_context()
    context.check_hostname = tls.check_hostname
    if not tls.verify_certificate:
        context.verify_mode = ssl.CERT_NONE
    return context


def _json_value(value: Any) -> Any:
    try:
        return jsonable_encoder(value, custom_encoder={bytes: lambda b: b.hex()})
    except (TypeError, ValueError):
        return str(value)


def normalize_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Convert driver values (Decimal, datetime, UUID, bytes, ...) to JSON-safe values"""
    return [
        {key: _json_value(value) for key, value in row.items()}
        for row in rows
    ]


class QueryExecutor:
    """
    Execute a single SQL statement under a wall-clock budget.

    Supported dialects:
    - postgresql (asyncpg)
    - mysql (aiomysql)
    """

    def __init__(self, connect_timeout: Optional[float] = None):
        self.connect_timeout = connect_timeout or settings.QA_CONNECT_TIMEOUT_SECONDS

    async def execute(
        self,
        descriptor: ConnectionDescriptor,
        sql: str,
        timeout_seconds: Optional[float] = None
    ) -> QueryResultSet:
        """
        Run sql against the connection described by descriptor.

        Args:
            descriptor: Resolved connection
            sql: Exactly one statement
            timeout_seconds: Execution budget (defaults to the QA run budget)

        Returns:
            QueryResultSet with JSON-safe rows

        Raises:
            QueryConnectionError: Connection could not be established
            QueryExecutionError: Statement failed or exceeded the budget
        """
        budget = timeout_seconds or settings.QA_EXECUTION_TIMEOUT_SECONDS
        backend = self._backend_for(descriptor)
        state = _ExecutionState()
        start_time = time.perf_counter()

        logger.info(
            f"Executing statement on connection {descriptor.connection_id} "
            f"({descriptor.dialect} {descriptor.host}:{descriptor.port}, budget={budget:g}s)"
        )

        try:
            result = await asyncio.wait_for(
                backend(descriptor, sql, budget, state),
                timeout=budget + GUARD_GRACE_SECONDS
            )
        except asyncio.TimeoutError as e:
            context = {"connection_id": descriptor.connection_id, "budget_seconds": budget}
            if not state.connected:
                raise QueryConnectionError(
                    f"timed out after {budget:g}s connecting to {descriptor.host}:{descriptor.port}",
                    context=context,
                    original_exception=e
                )
            raise QueryExecutionError(
                f"statement timed out after {budget:g}s",
                context=context,
                original_exception=e,
                timed_out=True
            )
        finally:
            elapsed_ms = int((time.perf_counter() - start_time) * 1000)
            logger.info(f"Execution on connection {descriptor.connection_id} finished in {elapsed_ms}ms")

        return result

    async def validate(self, descriptor: ConnectionDescriptor, sql: str) -> QueryResultSet:
        """Validation-only run with the short pre-save budget"""
        return await self.execute(descriptor, sql, settings.QA_VALIDATION_TIMEOUT_SECONDS)

    def _backend_for(self, descriptor: ConnectionDescriptor):
        if descriptor.dialect == "postgresql":
            return self._execute_postgresql
        if descriptor.dialect == "mysql":
            return self._execute_mysql
        raise QueryConnectionError(
            f"no driver for dialect {descriptor.dialect}",
            context={"connection_id": descriptor.connection_id}
        )

    # ------------------------------------------------------------------
    # PostgreSQL
    # ------------------------------------------------------------------

    async def _execute_postgresql(
        self,
        descriptor: ConnectionDescriptor,
        sql: str,
        budget: float,
        state: _ExecutionState
    ) -> QueryResultSet:
        context = {"connection_id": descriptor.connection_id, "dialect": "postgresql"}
        ssl_context = build_ssl_context(descriptor.tls)

        try:
            pool = await asyncpg.create_pool(
                host=descriptor.host,
                port=descriptor.port,
                user=descriptor.username,
                password=descriptor.password,
                database=descriptor.database,
                ssl=ssl_context if ssl_context is not None else False,
                min_size=1,
                max_size=1,
                timeout=min(self.connect_timeout, budget),
                command_timeout=budget,
                server_settings={
                    "statement_timeout": str(int(budget * 1000)),
                    "application_name": "beakdash-qa",
                },
            )
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise QueryConnectionError(str(e) or type(e).__name__, context=context, original_exception=e)

        state.connected = True
        released = False

        try:
            async with pool.acquire() as conn:
                try:
                    # Prepared statements reject multi-statement text
                    statement = await conn.prepare(sql)
                    records = await statement.fetch()
                except asyncpg.exceptions.QueryCanceledError as e:
                    raise QueryExecutionError(
                        f"statement timed out after {budget:g}s ({e})",
                        context=context,
                        original_exception=e,
                        timed_out=True
                    )
                except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
                    raise QueryExecutionError(str(e), context=context, original_exception=e)

                fields = [
                    {"name": attr.name, "typeId": attr.type.oid, "tableId": None}
                    for attr in statement.get_attributes()
                ]

            await pool.close()
            released = True
        finally:
            if not released:
                pool.terminate()

        rows = normalize_rows([dict(record) for record in records])
        return QueryResultSet(rows=rows, row_count=len(rows), fields=fields)

    # ------------------------------------------------------------------
    # MySQL
    # ------------------------------------------------------------------

    async def _execute_mysql(
        self,
        descriptor: ConnectionDescriptor,
        sql: str,
        budget: float,
        state: _ExecutionState
    ) -> QueryResultSet:
        context = {"connection_id": descriptor.connection_id, "dialect": "mysql"}

        try:
            pool = await aiomysql.create_pool(
                host=descriptor.host,
                port=descriptor.port,
                user=descriptor.username,
                password=descriptor.password or "",
                db=descriptor.database,
                ssl=build_ssl_context(descriptor.tls),
                minsize=1,
                maxsize=1,
                connect_timeout=min(self.connect_timeout, budget),
                autocommit=True,
            )
        except (OSError, asyncio.TimeoutError, pymysql.err.MySQLError) as e:
            raise QueryConnectionError(str(e) or type(e).__name__, context=context, original_exception=e)

        state.connected = True
        released = False

        try:
            async with pool.acquire() as conn:
                async with conn.cursor(aiomysql.DictCursor) as cursor:
                    try:
                        await cursor.execute("SET SESSION MAX_EXECUTION_TIME = %s", (int(budget * 1000),))
                        await cursor.execute(sql)
                        records = await cursor.fetchall()
                    except pymysql.err.MySQLError as e:
                        timed_out = bool(e.args) and e.args[0] == MYSQL_EXECUTION_TIMEOUT_ERRNO
                        message = f"statement timed out after {budget:g}s ({e})" if timed_out else str(e)
                        raise QueryExecutionError(
                            message,
                            context=context,
                            original_exception=e,
                            timed_out=timed_out
                        )

                    fields = [
                        {"name": column[0], "typeId": column[1], "tableId": None}
                        for column in (cursor.description or [])
                    ]

            pool.close()
            await pool.wait_closed()
            released = True
        finally:
            if not released:
                pool.terminate()

        rows = normalize_rows(list(records or []))
        return QueryResultSet(rows=rows, row_count=len(rows), fields=fields)
