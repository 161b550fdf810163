"""Command-line dispatcher for the provisioning and diagnostics commands."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable, Protocol, TextIO

from . import __version__
from .config import ConnectionConfig, TlsMode, load_config, load_environment, resolve_connection_config
from .diagnostics import list_databases, verify_tables
from .errors import ConfigurationError
from .logs import RedactingFilter, configure_logging
from .probe import probe
from .provision import ensure_database_exists

LOG = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


class CommandResult(Protocol):
    """Anything a command handler returns."""

    @property
    def ok(self) -> bool: ...

    def as_dict(self) -> dict[str, object]: ...


Handler = Callable[[argparse.Namespace, RedactingFilter], CommandResult]


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--config", type=Path, help="TOML config file (default: ~/.config/pgprovision/config.toml)")
    common.add_argument("--env-file", type=Path, help="dotenv file to read before the environment (default: ./.env)")
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging on stderr")

    endpoint = argparse.ArgumentParser(add_help=False)
    endpoint.add_argument("--host", help="Database host (env DB_HOST)")
    endpoint.add_argument("--port", type=int, help="Database port (env DB_PORT)")
    endpoint.add_argument("--timeout-ms", type=int, help="Connect/statement timeout in ms (env DB_TIMEOUT_MS)")

    database = argparse.ArgumentParser(add_help=False)
    database.add_argument("--user", help="Database role (env DB_USER)")
    database.add_argument("--admin-database", help="Bootstrap database to connect to (env DB_ADMIN_NAME)")
    database.add_argument(
        "--insecure-tls",
        action="store_true",
        help="Use TLS without verifying the server certificate (env DB_TLS=allow-insecure)",
    )
    database.add_argument(
        "--password-file",
        type=Path,
        help="File holding the credential (otherwise DB_PASSWORD or DB_PASSWORD_FILE)",
    )

    parser = argparse.ArgumentParser(prog="pgprovision", description=__doc__)
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    commands = parser.add_subparsers(dest="command", required=True)

    provision_cmd = commands.add_parser(
        "provision",
        parents=[common, endpoint, database],
        help="Create a database unless it already exists",
    )
    provision_cmd.add_argument("--database", help="Database to ensure (env DB_NAME)")
    provision_cmd.set_defaults(handler=_run_provision)

    probe_cmd = commands.add_parser(
        "probe",
        parents=[common, endpoint],
        help="Check that host:port accepts TCP connections",
    )
    probe_cmd.set_defaults(handler=_run_probe)

    databases_cmd = commands.add_parser(
        "databases",
        parents=[common, endpoint, database],
        help="Connect to the admin database and list databases",
    )
    databases_cmd.set_defaults(handler=_run_databases)

    tables_cmd = commands.add_parser(
        "tables",
        parents=[common, endpoint, database],
        help="Verify that expected tables exist in a database",
    )
    tables_cmd.add_argument("--database", help="Database to inspect (env DB_NAME)")
    tables_cmd.add_argument("--schema", default="public", help="Schema to inspect")
    tables_cmd.add_argument(
        "--expect",
        action="append",
        required=True,
        metavar="TABLE",
        help="Table that must exist (repeatable)",
    )
    tables_cmd.set_defaults(handler=_run_tables)
    return parser


def main(argv: list[str] | None = None, *, stdout: TextIO | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)
    redactor = configure_logging(verbose=args.verbose)
    handler: Handler = args.handler
    try:
        result = handler(args, redactor)
    except ConfigurationError as exc:
        LOG.error("%s", exc)
        return EXIT_USAGE
    print(json.dumps(result.as_dict()), file=stdout or sys.stdout)
    return EXIT_OK if result.ok else EXIT_FAILURE


def _connection_config(
    args: argparse.Namespace,
    redactor: RedactingFilter,
    *,
    require_credential: bool = True,
) -> ConnectionConfig:
    env = load_environment(args.env_file)
    file_config = load_config(args.config)
    overrides: dict[str, object] = {
        "host": args.host,
        "port": args.port,
        "timeout_ms": args.timeout_ms,
        "user": getattr(args, "user", None),
        "admin_database": getattr(args, "admin_database", None),
        "target_database": getattr(args, "database", None),
        "password_file": getattr(args, "password_file", None),
    }
    if getattr(args, "insecure_tls", False):
        overrides["tls_mode"] = TlsMode.ALLOW_INSECURE
    config = resolve_connection_config(
        overrides,
        env=env,
        file_config=file_config,
        require_credential=require_credential,
    )
    redactor.add_secret(config.secret())
    return config


def _run_provision(args: argparse.Namespace, redactor: RedactingFilter) -> CommandResult:
    config = _connection_config(args, redactor)
    config.require_target()
    return ensure_database_exists(config)


def _run_probe(args: argparse.Namespace, redactor: RedactingFilter) -> CommandResult:
    config = _connection_config(args, redactor, require_credential=False)
    return probe(config.host, config.port, config.timeout_ms)


def _run_databases(args: argparse.Namespace, redactor: RedactingFilter) -> CommandResult:
    return list_databases(_connection_config(args, redactor))


def _run_tables(args: argparse.Namespace, redactor: RedactingFilter) -> CommandResult:
    config = _connection_config(args, redactor)
    config.require_target()
    return verify_tables(config, args.expect, schema=args.schema)


if __name__ == "__main__":
    raise SystemExit(main())
