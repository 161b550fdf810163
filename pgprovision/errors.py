"""Error taxonomy and raw-exception classification."""

from __future__ import annotations

import asyncpg

from .logs import redact

DUPLICATE_SQLSTATES = frozenset({"42P04", "23505"})
PRIVILEGE_SQLSTATES = frozenset({"42501"})
# 57P03 is cannot_connect_now (server starting up or resuming).
UNAVAILABLE_SQLSTATES = frozenset({"57P03"})


class ProvisionError(RuntimeError):
    """Base class for every failure the tool reports."""


class ConfigurationError(ProvisionError):
    """Raised for bad or missing arguments before any network attempt."""


class NetworkError(ProvisionError):
    """Host refused, timed out, or could not be resolved/reached."""


class AuthenticationError(ProvisionError):
    """Credential rejected or role lacks the required privilege."""


class DuplicateResourceError(ProvisionError):
    """The resource being created already exists."""


class UnknownError(ProvisionError):
    """Anything the classifier does not recognise."""


def sqlstate_of(exc: BaseException) -> str | None:
    """Return the SQLSTATE attached to a driver exception, if any."""

    value = getattr(exc, "sqlstate", None)
    return value if isinstance(value, str) else None


def classify_error(exc: BaseException, *, secret: str | None = None) -> ProvisionError:
    """Map a raw exception to the taxonomy, redacting ``secret`` from its message."""

    if isinstance(exc, ProvisionError):
        return exc
    message = redact(_describe(exc), secret)
    sqlstate = sqlstate_of(exc)
    if sqlstate is not None:
        if sqlstate in DUPLICATE_SQLSTATES:
            return DuplicateResourceError(message)
        if sqlstate.startswith("28") or sqlstate in PRIVILEGE_SQLSTATES:
            return AuthenticationError(message)
        if sqlstate.startswith("08") or sqlstate in UNAVAILABLE_SQLSTATES:
            return NetworkError(message)
        return UnknownError(message)
    if isinstance(exc, TimeoutError):
        return NetworkError(message)
    if isinstance(exc, (OSError, asyncpg.exceptions.ConnectionDoesNotExistError)):
        return NetworkError(message)
    return UnknownError(message)


def _describe(exc: BaseException) -> str:
    text = str(exc).strip()
    if isinstance(exc, TimeoutError) and not text:
        return "timed out"
    sqlstate = sqlstate_of(exc)
    if sqlstate and text:
        return f"{text} (SQLSTATE {sqlstate})"
    return text or type(exc).__name__


__all__ = [
    "AuthenticationError",
    "ConfigurationError",
    "DuplicateResourceError",
    "NetworkError",
    "ProvisionError",
    "UnknownError",
    "classify_error",
    "sqlstate_of",
]
