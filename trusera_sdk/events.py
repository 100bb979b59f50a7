"""Event model shared by the client, the interceptor and the integrations."""

from __future__ import annotations

import copy
import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from trusera_sdk.enums import EventType
from trusera_sdk.sanitization import to_json_object


_EVENT_FIELDS = frozenset({"id", "type", "name", "payload", "metadata", "timestamp"})


def _new_event_id() -> str:
    return str(uuid.uuid4())


class Event(BaseModel):
    """Record of one observed action.

    Fields cannot be reassigned, but the ``payload`` and ``metadata`` dicts
    themselves stay mutable. Both are copied into fresh JSON-safe structures
    on construction, and :meth:`with_metadata` returns a deep copy, so the
    copy a client queues is unaffected by later changes to the caller's
    event.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=_new_event_id, min_length=1)
    type: EventType
    name: str = Field(min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("payload", "metadata", mode="before")
    @classmethod
    def copy_mapping(cls, value: Any) -> dict[str, Any]:
        return to_json_object(value)

    def with_metadata(self, **extra: Any) -> Event:
        merged = copy.deepcopy({**self.metadata, **extra})
        return self.model_copy(update={"metadata": merged}, deep=True)


class EventBatch(BaseModel):
    model_config = ConfigDict(extra="forbid")

    events: list[Event] = Field(min_length=1)


def create_event(
    event_type: EventType,
    name: str,
    payload: dict[str, Any] | None = None,
    metadata: dict[str, Any] | None = None,
) -> Event:
    """Build an event with a fresh id and capture timestamp.

    Use dotted names such as ``"openai.chat.completions"`` or
    ``"github.api.repos"``.
    """
    return Event(type=event_type, name=name, payload=payload or {}, metadata=metadata or {})


def is_valid_event(obj: Any) -> bool:
    if isinstance(obj, Event):
        return True
    if not isinstance(obj, dict) or not _EVENT_FIELDS <= obj.keys():
        return False
    try:
        Event.model_validate(obj)
    except ValidationError:
        return False
    return True
