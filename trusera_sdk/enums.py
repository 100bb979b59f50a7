from __future__ import annotations

from enum import Enum


class EventType(str, Enum):
    TOOL_CALL = "tool_call"
    LLM_INVOKE = "llm_invoke"
    DATA_ACCESS = "data_access"
    API_CALL = "api_call"
    FILE_WRITE = "file_write"
    DECISION = "decision"


class EnforcementMode(str, Enum):
    LOG = "log"
    WARN = "warn"
    BLOCK = "block"


class Decision(str, Enum):
    ALLOW = "Allow"
    DENY = "Deny"
