"""Result dataclasses produced once per command invocation."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum


class ProvisionOutcome(str, Enum):
    """Tagged outcome of a provisioning attempt."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    FAILED = "failed"


class ProbeOutcome(str, Enum):
    """Tagged outcome of a reachability probe."""

    REACHABLE = "reachable"
    TIMED_OUT = "timed_out"
    REFUSED = "refused"
    OTHER_ERROR = "other_error"


def _serialize(instance: object) -> dict[str, object]:
    data = asdict(instance)  # type: ignore[call-overload]
    for key, value in data.items():
        if isinstance(value, Enum):
            data[key] = value.value
        elif isinstance(value, tuple):
            data[key] = list(value)
    data["ok"] = instance.ok  # type: ignore[attr-defined]
    return data


@dataclass(frozen=True, slots=True)
class ProvisionResult:
    """Outcome of ``ensure_database_exists``."""

    outcome: ProvisionOutcome
    database: str
    detail: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is not ProvisionOutcome.FAILED

    def as_dict(self) -> dict[str, object]:
        return _serialize(self)


@dataclass(frozen=True, slots=True)
class ProbeResult:
    """Outcome of a single TCP connection attempt."""

    outcome: ProbeOutcome
    host: str
    port: int
    elapsed_ms: int
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is ProbeOutcome.REACHABLE

    def as_dict(self) -> dict[str, object]:
        return _serialize(self)


@dataclass(frozen=True, slots=True)
class DatabaseListing:
    """Databases visible from the administrative connection."""

    ok: bool
    databases: tuple[str, ...] = ()
    detail: str | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, object]:
        return _serialize(self)


@dataclass(frozen=True, slots=True)
class TableCheck:
    """Which expected tables exist in a database schema."""

    ok: bool
    database: str
    schema: str = "public"
    found: tuple[str, ...] = ()
    missing: tuple[str, ...] = ()
    detail: str | None = None
    error: str | None = None

    def as_dict(self) -> dict[str, object]:
        return _serialize(self)


__all__ = [
    "DatabaseListing",
    "ProbeOutcome",
    "ProbeResult",
    "ProvisionOutcome",
    "ProvisionResult",
    "TableCheck",
]
