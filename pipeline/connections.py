"""
Connection resolution: stored connection record -> ready-to-use descriptor.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

from core.exceptions import NotFoundOrUnauthorized, UnsupportedConnectionType
from core.secrets import resolve_password
from models.base import ConnectionType
from models.connection import Connection
from pipeline.repository import QARepository

logger = logging.getLogger(__name__)

# Connection types this pipeline can execute, mapped to the driver family
SUPPORTED_DIALECTS = {
    ConnectionType.SQL.value: "postgresql",
    ConnectionType.POSTGRESQL.value: "postgresql",
    ConnectionType.MYSQL.value: "mysql",
}

DEFAULT_PORTS = {
    "postgresql": 5432,
    "mysql": 3306,
}

VERIFYING_SSL_MODES = ("verify-full", "verify-ca")


@dataclass(frozen=True)
class TLSPolicy:
    """
    TLS settings derived from a connection's sslMode.

    disable turns TLS off. Every other mode turns it on, and only
    verify-full / verify-ca validate the peer certificate.
    """
    mode: str = "disable"
    enabled: bool = False
    verify_certificate: bool = False
    check_hostname: bool = False

    @classmethod
    def from_mode(cls, mode: Optional[str]) -> "TLSPolicy":
        mode = (mode or "disable").lower()
        if mode == "disable":
            return cls(mode=mode)
        return cls(
            mode=mode,
            enabled=True,
            verify_certificate=mode in VERIFYING_SSL_MODES,
            check_hostname=mode == "verify-full",
        )

    @property
    def lenient(self) -> bool:
        return self.enabled and not self.verify_certificate


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Everything the executor needs to open a connection"""
    connection_id: int
    name: str
    dialect: str
    host: str
    port: int
    database: Optional[str]
    username: Optional[str]
    password: Optional[str] = field(default=None, repr=False)
    tls: TLSPolicy = field(default_factory=TLSPolicy)


class ConnectionResolver:
    """
    Look up a connection for a caller and turn it into a ConnectionDescriptor.

    Access rule: the caller owns the connection, or the connection belongs to
    a space the caller is a member of.
    """

    def __init__(self, repository: QARepository):
        self.repository = repository

    async def resolve(self, connection_id: int, user_id: int) -> ConnectionDescriptor:
        """
        Raises:
            NotFoundOrUnauthorized: Connection missing or not visible to user_id
            UnsupportedConnectionType: Connection is not a SQL dialect
            SecretResolutionError: password_ref cannot be resolved
        """
        connection = await self.repository.get_connection(connection_id)

        if connection is None or not await self._can_access(connection, user_id):
            raise NotFoundOrUnauthorized(
                "Connection not found or access denied",
                context={
                    "resource": "connection",
                    "resource_id": connection_id,
                    "user_id": user_id
                }
            )

        dialect = SUPPORTED_DIALECTS.get((connection.type or "").lower())
        if dialect is None:
            raise UnsupportedConnectionType(
                f"Connection type {connection.type} not supported",
                context={
                    "connection_id": connection.id,
                    "connection_type": connection.type
                }
            )

        return self.build_descriptor(connection, dialect)

    async def _can_access(self, connection: Connection, user_id: int) -> bool:
        if connection.user_id == user_id:
            return True
        if connection.space_id is not None:
            return await self.repository.user_in_space(user_id, connection.space_id)
        return False

    def build_descriptor(self, connection: Connection, dialect: str) -> ConnectionDescriptor:
        config = connection.config or {}

        tls = TLSPolicy.from_mode(config.get("sslMode"))
        if tls.lenient:
            logger.warning(
                f"Connection {connection.id} ({connection.name}) uses sslMode={tls.mode}: "
                f"TLS enabled without certificate validation"
            )

        return ConnectionDescriptor(
            connection_id=connection.id,
            name=connection.name,
            dialect=dialect,
            host=config.get("host") or config.get("hostname") or "localhost",
            port=int(config.get("port") or DEFAULT_PORTS[dialect]),
            database=config.get("database"),
            username=config.get("username") or config.get("user"),
            password=resolve_password(config, connection.id),
            tls=tls,
        )
