"""Single-shot TCP reachability probe."""

from __future__ import annotations

import asyncio
import errno
import logging
import socket
import time
from typing import Sequence

from .errors import ConfigurationError
from .models import ProbeOutcome, ProbeResult

LOG = logging.getLogger(__name__)


async def probe_async(host: str, port: int, timeout_ms: int) -> ProbeResult:
    """Attempt one TCP handshake with ``host:port`` bounded by ``timeout_ms``.

    Every resolved address is tried in order inside the same timeout; the
    result is ``refused`` only when every address refused.
    """

    _validate(host, port, timeout_ms)
    LOG.debug("Probing %s:%s (timeout %sms)", host, port, timeout_ms)
    failures: list[OSError] = []
    started = time.perf_counter()
    try:
        _reader, writer = await asyncio.wait_for(
            _open_first(host, port, failures),
            timeout=timeout_ms / 1000,
        )
    except TimeoutError:
        return _result(ProbeOutcome.TIMED_OUT, host, port, started, f"no handshake within {timeout_ms}ms")
    except OSError as exc:
        errors = failures or [exc]
        return _result(_classify_os_errors(errors), host, port, started, _describe(errors))
    elapsed = _elapsed_ms(started)
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:  # pragma: no cover - peer reset during close
        LOG.debug("Error while closing probe connection", exc_info=True)
    LOG.info("%s:%s reachable in %sms", host, port, elapsed)
    return ProbeResult(ProbeOutcome.REACHABLE, host, port, elapsed)


def probe(host: str, port: int, timeout_ms: int) -> ProbeResult:
    """Synchronous wrapper around :func:`probe_async`."""

    return asyncio.run(probe_async(host, port, timeout_ms))


async def _open_first(
    host: str,
    port: int,
    failures: list[OSError],
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM)
    if not infos:
        raise OSError(f"no addresses found for {host}")
    for _family, _type, _proto, _canonname, sockaddr in infos:
        try:
            return await asyncio.open_connection(sockaddr[0], port)
        except OSError as exc:
            LOG.debug("Connect to %s:%s failed: %s", sockaddr[0], port, exc)
            failures.append(exc)
    raise failures[-1]


def _validate(host: str, port: int, timeout_ms: int) -> None:
    if not host:
        raise ConfigurationError("A host is required.")
    try:
        host.encode("idna")
    except UnicodeError:
        raise ConfigurationError(f"Invalid host name {host!r}: empty or over-long label.") from None
    if not 1 <= port <= 65535:
        raise ConfigurationError(f"Port must be between 1 and 65535, got {port}.")
    if timeout_ms <= 0:
        raise ConfigurationError(f"Timeout must be positive, got {timeout_ms}ms.")


def _is_refusal(exc: OSError) -> bool:
    return isinstance(exc, ConnectionRefusedError) or exc.errno == errno.ECONNREFUSED


def _classify_os_errors(errors: Sequence[OSError]) -> ProbeOutcome:
    if errors and all(_is_refusal(exc) for exc in errors):
        return ProbeOutcome.REFUSED
    return ProbeOutcome.OTHER_ERROR


def _describe(errors: Sequence[OSError]) -> str:
    return "; ".join(str(exc) or type(exc).__name__ for exc in errors)


def _result(outcome: ProbeOutcome, host: str, port: int, started: float, detail: str) -> ProbeResult:
    LOG.warning("%s:%s %s: %s", host, port, outcome.value, detail)
    return ProbeResult(outcome, host, port, _elapsed_ms(started), detail)


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


__all__ = ["probe", "probe_async"]
