"""Logging for the SDK's ``trusera.*`` loggers.

Library modules only create named loggers. Handlers belong to the host
application, or to :func:`configure_logging` when the CLI runs.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any

from trusera_sdk.sanitization import redact

LOGGER_ROOT = "trusera"
LOG_FORMAT_ENV = "TRUSERA_LOG_FORMAT"
TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Attributes every LogRecord has; anything else arrived through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{LOGGER_ROOT}.{name}")


def record_extras(record: logging.LogRecord) -> dict[str, Any]:
    """Return the ``extra=`` fields of ``record`` with credentials masked."""
    fields = {key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS and not key.startswith("_")}
    return redact(fields)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_extras(record),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=True, separators=(",", ":"), default=str)


def configure_logging(verbose: bool = False, json_format: bool | None = None) -> logging.Logger:
    """Attach a stderr handler to the ``trusera`` logger.

    Handlers on other loggers, the root logger included, are left alone.
    ``json_format`` defaults to ``TRUSERA_LOG_FORMAT`` (JSON unless it names
    another format).
    """
    if json_format is None:
        json_format = os.getenv(LOG_FORMAT_ENV, "json").lower() == "json"

    sdk_logger = logging.getLogger(LOGGER_ROOT)
    for handler in list(sdk_logger.handlers):
        sdk_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter() if json_format else logging.Formatter(TEXT_FORMAT))
    sdk_logger.addHandler(handler)
    sdk_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    return sdk_logger
