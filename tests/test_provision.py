"""Tests for the idempotent database provisioner."""

from __future__ import annotations

import asyncio

import pytest
from pydantic import SecretStr

from pgprovision.config import ConnectionConfig
from pgprovision.errors import ConfigurationError
from pgprovision.models import ProvisionOutcome
from pgprovision.provision import ensure_database_exists_async

SECRET = "5hup-gc(2>secret"


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class _PgError(Exception):
    def __init__(self, message: str, sqlstate: str) -> None:
        super().__init__(message)
        self.sqlstate = sqlstate


class _MemoryServer:
    """Shared in-memory catalog state standing in for a PostgreSQL server."""

    def __init__(self, databases: set[str] | None = None, *, barrier: asyncio.Barrier | None = None) -> None:
        self.databases = set(databases or {"postgres"})
        self.mutations: list[str] = []
        self.opened = 0
        self.closed = 0
        self.connected_to: list[str] = []
        self._barrier = barrier

    async def connect(self, config: ConnectionConfig, database: str) -> "_MemoryCatalog":
        self.opened += 1
        self.connected_to.append(database)
        return _MemoryCatalog(self)

    async def wait_at_barrier(self) -> None:
        if self._barrier is not None:
            await self._barrier.wait()


class _MemoryCatalog:
    def __init__(self, server: _MemoryServer) -> None:
        self._server = server

    async def database_exists(self, name: str) -> bool:
        exists = name in self._server.databases
        await self._server.wait_at_barrier()
        return exists

    async def create_database(self, name: str) -> None:
        self._server.mutations.append(name)
        if name in self._server.databases:
            raise _PgError(f'database "{name}" already exists', "42P04")
        self._server.databases.add(name)

    async def list_databases(self) -> tuple[str, ...]:
        return tuple(sorted(self._server.databases))

    async def list_tables(self, schema: str) -> tuple[str, ...]:
        return ()

    async def close(self) -> None:
        self._server.closed += 1


def _config(target: str | None = "servicetime") -> ConnectionConfig:
    return ConnectionConfig(
        host="db.internal",
        port=5432,
        user="postgres",
        credential=SecretStr(SECRET),
        admin_database="postgres",
        target_database=target,
    )


@pytest.mark.anyio
async def test_existing_database_is_reported_without_mutation() -> None:
    server = _MemoryServer({"postgres", "servicetime"})

    result = await ensure_database_exists_async(_config(), connect=server.connect)

    assert result.outcome is ProvisionOutcome.ALREADY_EXISTS
    assert result.ok is True
    assert server.mutations == []
    assert server.connected_to == ["postgres"]
    assert server.closed == server.opened == 1


@pytest.mark.anyio
async def test_missing_database_is_created_then_reported_as_existing() -> None:
    server = _MemoryServer()

    first = await ensure_database_exists_async(_config(), connect=server.connect)
    second = await ensure_database_exists_async(_config(), connect=server.connect)

    assert first.outcome is ProvisionOutcome.CREATED
    assert second.outcome is ProvisionOutcome.ALREADY_EXISTS
    assert server.mutations == ["servicetime"]
    assert "servicetime" in server.databases
    assert server.closed == 2


@pytest.mark.anyio
async def test_concurrent_creators_yield_one_created_and_one_existing() -> None:
    server = _MemoryServer(barrier=asyncio.Barrier(2))

    results = await asyncio.gather(
        ensure_database_exists_async(_config(), connect=server.connect),
        ensure_database_exists_async(_config(), connect=server.connect),
    )

    outcomes = sorted(result.outcome.value for result in results)
    assert outcomes == ["already_exists", "created"]
    assert server.mutations == ["servicetime", "servicetime"]
    raced = next(r for r in results if r.outcome is ProvisionOutcome.ALREADY_EXISTS)
    assert raced.detail and "concurrently" in raced.detail
    assert server.closed == 2


@pytest.mark.anyio
async def test_unique_violation_during_create_counts_as_existing() -> None:
    class _UniqueRaceCatalog(_MemoryCatalog):
        async def create_database(self, name: str) -> None:
            raise _PgError(
                'duplicate key value violates unique constraint "pg_database_datname_index"',
                "23505",
            )

    server = _MemoryServer()

    async def _connect(config: ConnectionConfig, database: str) -> _MemoryCatalog:
        await server.connect(config, database)
        return _UniqueRaceCatalog(server)

    result = await ensure_database_exists_async(_config(), connect=_connect)

    assert result.outcome is ProvisionOutcome.ALREADY_EXISTS


@pytest.mark.anyio
async def test_authentication_failure_is_reported_without_leaking_secret() -> None:
    async def _connect(config: ConnectionConfig, database: str) -> _MemoryCatalog:
        raise _PgError(f'password authentication failed for user "postgres" ({SECRET})', "28P01")

    result = await ensure_database_exists_async(_config(), connect=_connect)

    assert result.outcome is ProvisionOutcome.FAILED
    assert result.ok is False
    assert result.error == "AuthenticationError"
    assert result.detail is not None
    assert "password authentication failed" in result.detail
    assert SECRET not in result.detail
    assert SECRET not in str(result.as_dict())


@pytest.mark.anyio
async def test_unreachable_host_is_a_network_failure() -> None:
    async def _connect(config: ConnectionConfig, database: str) -> _MemoryCatalog:
        raise ConnectionRefusedError(111, "Connect call failed ('10.0.0.5', 5432)")

    result = await ensure_database_exists_async(_config(), connect=_connect)

    assert result.outcome is ProvisionOutcome.FAILED
    assert result.error == "NetworkError"


@pytest.mark.anyio
async def test_permission_denied_on_create_fails_and_releases_connection() -> None:
    class _NoPrivilegeCatalog(_MemoryCatalog):
        async def create_database(self, name: str) -> None:
            raise _PgError("permission denied to create database", "42501")

    server = _MemoryServer()

    async def _connect(config: ConnectionConfig, database: str) -> _MemoryCatalog:
        await server.connect(config, database)
        return _NoPrivilegeCatalog(server)

    result = await ensure_database_exists_async(_config(), connect=_connect)

    assert result.outcome is ProvisionOutcome.FAILED
    assert result.error == "AuthenticationError"
    assert server.closed == 1


@pytest.mark.anyio
async def test_connection_released_when_catalog_raises_unexpectedly() -> None:
    class _CancelledCatalog(_MemoryCatalog):
        async def database_exists(self, name: str) -> bool:
            raise asyncio.CancelledError()

    server = _MemoryServer()

    async def _connect(config: ConnectionConfig, database: str) -> _MemoryCatalog:
        await server.connect(config, database)
        return _CancelledCatalog(server)

    with pytest.raises(asyncio.CancelledError):
        await ensure_database_exists_async(_config(), connect=_connect)

    assert server.closed == 1


@pytest.mark.anyio
async def test_missing_target_is_a_configuration_error() -> None:
    server = _MemoryServer()

    with pytest.raises(ConfigurationError):
        await ensure_database_exists_async(_config(target=None), connect=server.connect)

    assert server.opened == 0
