"""Catalog access backends used by the provisioner and diagnostics."""

from __future__ import annotations

import logging
import ssl
from typing import Any, Awaitable, Callable, Protocol

import asyncpg
from sqlglot import exp

from .config import ConnectionConfig, TlsMode
from .errors import classify_error

LOG = logging.getLogger(__name__)


class DatabaseCatalog(Protocol):
    """Protocol implemented by catalog backends."""

    async def database_exists(self, name: str) -> bool:
        """Return True when a database with exactly this name exists."""

    async def create_database(self, name: str) -> None:
        """Issue the creation statement for ``name``."""

    async def list_databases(self) -> tuple[str, ...]:
        """Return non-template database names, sorted."""

    async def list_tables(self, schema: str) -> tuple[str, ...]:
        """Return table names in ``schema``, sorted."""

    async def close(self) -> None:
        """Release the underlying connection."""


CatalogFactory = Callable[[ConnectionConfig, str], Awaitable[DatabaseCatalog]]


def create_database_statement(name: str, *, dialect: str = "postgres") -> str:
    """Render ``CREATE DATABASE`` with ``name`` as a quoted identifier."""

    identifier = exp.to_identifier(name, quoted=True)
    return f"CREATE DATABASE {identifier.sql(dialect=dialect)}"


def ssl_option(mode: TlsMode) -> ssl.SSLContext | bool:
    """Translate a TlsMode into asyncpg's ``ssl`` argument."""

    if mode is TlsMode.OFF:
        return False
    # Encrypt without verifying the server certificate (self-signed/RDS dev setups).
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def connect_kwargs(config: ConnectionConfig, database: str) -> dict[str, Any]:
    """Keyword arguments for ``asyncpg.connect``."""

    return {
        "host": config.host,
        "port": config.port,
        "user": config.user,
        "password": config.secret() or None,
        "database": database,
        "ssl": ssl_option(config.tls_mode),
        "timeout": config.timeout,
        "command_timeout": config.timeout,
    }


class AsyncpgCatalog:
    """Catalog backend over a single asyncpg connection."""

    _EXISTS_QUERY = "SELECT 1 FROM pg_database WHERE datname = $1"

    _DATABASES_QUERY = """
        SELECT datname
        FROM pg_database
        WHERE datistemplate = false
        ORDER BY datname
    """

    _TABLES_QUERY = """
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = $1
        ORDER BY table_name
    """

    def __init__(self, conn: asyncpg.Connection, *, timeout: float, secret: str | None = None) -> None:
        self._conn = conn
        self._timeout = timeout
        self._secret = secret

    @classmethod
    async def connect(cls, config: ConnectionConfig, database: str) -> "AsyncpgCatalog":
        """Open a connection to ``database`` using ``config``."""

        LOG.debug("Connecting to %s:%s/%s as %s", config.host, config.port, database, config.user)
        try:
            conn = await asyncpg.connect(**connect_kwargs(config, database))
        except Exception as exc:
            raise classify_error(exc, secret=config.secret()) from exc
        return cls(conn, timeout=config.timeout, secret=config.secret())

    async def database_exists(self, name: str) -> bool:
        try:
            value = await self._conn.fetchval(self._EXISTS_QUERY, name, timeout=self._timeout)
        except Exception as exc:
            raise classify_error(exc, secret=self._secret) from exc
        return value is not None

    async def create_database(self, name: str) -> None:
        statement = create_database_statement(name)
        LOG.debug("Executing %s", statement)
        try:
            await self._conn.execute(statement, timeout=self._timeout)
        except Exception as exc:
            raise classify_error(exc, secret=self._secret) from exc

    async def list_databases(self) -> tuple[str, ...]:
        try:
            rows = await self._conn.fetch(self._DATABASES_QUERY, timeout=self._timeout)
        except Exception as exc:
            raise classify_error(exc, secret=self._secret) from exc
        return tuple(str(row["datname"]) for row in rows)

    async def list_tables(self, schema: str) -> tuple[str, ...]:
        try:
            rows = await self._conn.fetch(self._TABLES_QUERY, schema, timeout=self._timeout)
        except Exception as exc:
            raise classify_error(exc, secret=self._secret) from exc
        return tuple(str(row["table_name"]) for row in rows)

    async def close(self) -> None:
        try:
            await self._conn.close(timeout=self._timeout)
        except Exception:  # pragma: no cover - best effort cleanup
            LOG.debug("Graceful close failed; terminating connection", exc_info=True)
            self._conn.terminate()


async def open_catalog(config: ConnectionConfig, database: str) -> DatabaseCatalog:
    """Default catalog factory."""

    return await AsyncpgCatalog.connect(config, database)


__all__ = [
    "AsyncpgCatalog",
    "CatalogFactory",
    "DatabaseCatalog",
    "connect_kwargs",
    "create_database_statement",
    "open_catalog",
    "ssl_option",
]
