"""Idempotent "create database if missing" orchestration."""

from __future__ import annotations

import asyncio
import logging

from .catalog import CatalogFactory, DatabaseCatalog, open_catalog
from .config import ConnectionConfig
from .errors import DuplicateResourceError, ProvisionError, classify_error
from .models import ProvisionOutcome, ProvisionResult

LOG = logging.getLogger(__name__)


async def ensure_database_exists_async(
    config: ConnectionConfig,
    *,
    connect: CatalogFactory = open_catalog,
) -> ProvisionResult:
    """Make sure ``config.target_database`` exists, creating it if absent.

    The catalog is checked first; a creation attempt that loses a race with a
    concurrent creator is reported as ``already_exists``. Operational failures
    are returned as ``failed`` results rather than raised.
    """

    target = config.require_target()
    secret = config.secret()
    try:
        catalog = await connect(config, config.admin_database)
    except Exception as exc:
        return _failed(target, classify_error(exc, secret=secret))
    try:
        return await _ensure(catalog, target, secret)
    finally:
        await catalog.close()


async def _ensure(catalog: DatabaseCatalog, target: str, secret: str) -> ProvisionResult:
    try:
        if await catalog.database_exists(target):
            LOG.info("Database %r already exists", target)
            return ProvisionResult(ProvisionOutcome.ALREADY_EXISTS, target)
        await catalog.create_database(target)
    except Exception as exc:
        error = classify_error(exc, secret=secret)
        if isinstance(error, DuplicateResourceError):
            LOG.info("Database %r was created concurrently", target)
            return ProvisionResult(
                ProvisionOutcome.ALREADY_EXISTS,
                target,
                detail="created concurrently by another session",
            )
        return _failed(target, error)
    LOG.info("Created database %r", target)
    return ProvisionResult(ProvisionOutcome.CREATED, target)


def _failed(target: str, error: ProvisionError) -> ProvisionResult:
    LOG.error("Provisioning %r failed: %s", target, error)
    return ProvisionResult(
        ProvisionOutcome.FAILED,
        target,
        detail=str(error),
        error=type(error).__name__,
    )


def ensure_database_exists(config: ConnectionConfig) -> ProvisionResult:
    """Synchronous wrapper around :func:`ensure_database_exists_async`."""

    return asyncio.run(ensure_database_exists_async(config))


__all__ = ["ensure_database_exists", "ensure_database_exists_async"]
