"""Logging setup with credential redaction."""

from __future__ import annotations

import logging
import re
import sys
from typing import Iterable

MASK = "***"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
# Secrets shorter than this are only masked as standalone tokens.
MIN_SUBSTRING_SECRET = 6


def _secret_pattern(secret: str) -> str:
    if len(secret) >= MIN_SUBSTRING_SECRET:
        return re.escape(secret)
    return rf"(?<![A-Za-z0-9]){re.escape(secret)}(?![A-Za-z0-9])"


def redact(text: str, secrets: str | Iterable[str] | None) -> str:
    """Replace every occurrence of the given secret(s) in ``text``.

    Short secrets are matched as whole tokens so that masking a one or two
    character credential does not shred the surrounding message.
    """

    if secrets is None:
        return text
    if isinstance(secrets, str):
        secrets = (secrets,)
    # Longest first so a secret containing another is masked whole.
    ordered = sorted({s for s in secrets if s}, key=len, reverse=True)
    if not ordered:
        return text
    pattern = "|".join(_secret_pattern(secret) for secret in ordered)
    return re.sub(pattern, MASK, text)


class RedactingFilter(logging.Filter):
    """Logging filter that scrubs known secrets from rendered records."""

    def __init__(self, secrets: Iterable[str] = ()) -> None:
        super().__init__()
        self._secrets: set[str] = {secret for secret in secrets if secret}

    def add_secret(self, secret: str | None) -> None:
        if secret:
            self._secrets.add(secret)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        rendered = record.getMessage()
        cleaned = redact(rendered, self._secrets)
        if cleaned != rendered:
            record.msg = cleaned
            record.args = None
        if record.exc_info and record.exc_info[1] is not None:
            exc_text = logging.Formatter().formatException(record.exc_info)
            record.exc_text = redact(exc_text, self._secrets)
            record.exc_info = None
        return True


def configure_logging(*, verbose: bool = False, stream=None) -> RedactingFilter:
    """Install a stderr handler on the package logger and return its filter."""

    logger = logging.getLogger("pgprovision")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    redactor = RedactingFilter()
    handler.addFilter(redactor)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    return redactor


__all__ = ["MASK", "RedactingFilter", "configure_logging", "redact"]
