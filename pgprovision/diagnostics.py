"""Read-only catalog checks: list databases, verify expected tables."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

from .catalog import CatalogFactory, open_catalog
from .config import ConnectionConfig
from .errors import classify_error
from .models import DatabaseListing, TableCheck

LOG = logging.getLogger(__name__)


async def list_databases_async(
    config: ConnectionConfig,
    *,
    connect: CatalogFactory = open_catalog,
) -> DatabaseListing:
    """Connect to the administrative database and list user databases."""

    try:
        catalog = await connect(config, config.admin_database)
    except Exception as exc:
        error = classify_error(exc, secret=config.secret())
        LOG.error("Listing databases failed: %s", error)
        return DatabaseListing(ok=False, detail=str(error), error=type(error).__name__)
    try:
        databases = await catalog.list_databases()
    except Exception as exc:
        error = classify_error(exc, secret=config.secret())
        LOG.error("Listing databases failed: %s", error)
        return DatabaseListing(ok=False, detail=str(error), error=type(error).__name__)
    finally:
        await catalog.close()
    LOG.info("Found %d database(s)", len(databases))
    return DatabaseListing(ok=True, databases=tuple(sorted(databases)))


async def verify_tables_async(
    config: ConnectionConfig,
    expected: Iterable[str],
    *,
    schema: str = "public",
    connect: CatalogFactory = open_catalog,
) -> TableCheck:
    """Report which ``expected`` tables exist in the target database."""

    database = config.require_target()
    wanted = tuple(dict.fromkeys(expected))
    try:
        catalog = await connect(config, database)
    except Exception as exc:
        return _table_failure(config, database, schema, exc)
    try:
        present = set(await catalog.list_tables(schema))
    except Exception as exc:
        return _table_failure(config, database, schema, exc)
    finally:
        await catalog.close()
    found = tuple(sorted(name for name in wanted if name in present))
    missing = tuple(sorted(name for name in wanted if name not in present))
    if missing:
        LOG.warning("Missing tables in %s.%s: %s", database, schema, ", ".join(missing))
    return TableCheck(ok=not missing, database=database, schema=schema, found=found, missing=missing)


def _table_failure(config: ConnectionConfig, database: str, schema: str, exc: Exception) -> TableCheck:
    error = classify_error(exc, secret=config.secret())
    LOG.error("Table check on %s failed: %s", database, error)
    return TableCheck(
        ok=False,
        database=database,
        schema=schema,
        detail=str(error),
        error=type(error).__name__,
    )


def list_databases(config: ConnectionConfig) -> DatabaseListing:
    return asyncio.run(list_databases_async(config))


def verify_tables(config: ConnectionConfig, expected: Iterable[str], *, schema: str = "public") -> TableCheck:
    return asyncio.run(verify_tables_async(config, expected, schema=schema))


__all__ = ["list_databases", "list_databases_async", "verify_tables", "verify_tables_async"]
