"""Per-Run secret injection and log redaction."""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Generator

REDACTED = "***"

_EXC_FORMATTER = logging.Formatter()


class SecretRedactingFilter(logging.Filter):
    """Replace secret values in log records with ***."""

    def __init__(self, secrets: list[str]) -> None:
        super().__init__()
        # Longest first so a secret that contains another is fully masked.
        self._secrets = sorted({s for s in secrets if s}, key=len, reverse=True)

    def redact(self, text: str) -> str:
        for secret in self._secrets:
            text = text.replace(secret, REDACTED)
        return text

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secrets:
            return True
        message = record.getMessage()
        redacted = self.redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        # Formatters only fill exc_text when it is empty, so render the
        # traceback here and hand them the masked copy.
        if record.exc_info and not record.exc_text:
            record.exc_text = _EXC_FORMATTER.formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = self.redact(record.exc_text)
        if record.stack_info:
            record.stack_info = self.redact(record.stack_info)
        return True


@contextmanager
def injected_secrets(secrets: dict[str, str]) -> Generator[SecretRedactingFilter, None, None]:
    """Export secrets as environment variables for the duration of a Run.

    Previous values are restored on exit, and a redacting filter is attached
    to every root handler while the Run is active. The filter is yielded so
    callers can mask text they persist themselves.
    """
    saved = {name: os.environ.get(name) for name in secrets}
    redactor = SecretRedactingFilter(list(secrets.values()))
    handlers = list(logging.getLogger().handlers)
    for handler in handlers:
        handler.addFilter(redactor)

    os.environ.update(secrets)
    try:
        yield redactor
    finally:
        for name, value in saved.items():
            if value is None:
                os.environ.pop(name, None)
            else:
                os.environ[name] = value
        for handler in handlers:
            handler.removeFilter(redactor)
