from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel

REDACTED = "[REDACTED]"

# Matched as substrings of the lower-cased key with "-" folded to "_",
# so "X-Api-Key" and "proxy-authorization" are caught too.
SENSITIVE_KEYS = frozenset({"api_key", "authorization", "cookie", "password", "secret", "token"})


def to_jsonable(value: Any) -> Any:
    """Return a JSON-safe deep copy of ``value``.

    Containers are rebuilt rather than shared, so the result is independent
    of later mutation of the input. Values with no JSON counterpart fall back
    to ``str()``.
    """
    if isinstance(value, BaseModel):
        return to_jsonable(value.model_dump(mode="json"))
    if isinstance(value, Mapping):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return str(value)


def to_json_object(value: Any) -> dict[str, Any]:
    if not isinstance(value, Mapping):
        raise ValueError("expected a mapping of string keys to values")
    return to_jsonable(value)


def is_sensitive_key(key: Any) -> bool:
    folded = str(key).lower().replace("-", "_")
    return any(secret in folded for secret in SENSITIVE_KEYS)


def redact(value: Any) -> Any:
    """Copy ``value`` with the values of credential-like keys masked."""
    if isinstance(value, Mapping):
        return {key: REDACTED if is_sensitive_key(key) else redact(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [redact(item) for item in value]
    return value
