"""Trusera SDK: event tracking and outbound call interception for AI agents."""

from trusera_sdk.client import TruseraClient
from trusera_sdk.config import ClientConfig, InterceptorOptions, load_config
from trusera_sdk.constants import SDK_VERSION
from trusera_sdk.enums import Decision, EnforcementMode, EventType
from trusera_sdk.errors import (
    AlreadyInstalledError,
    ClosedClientError,
    ConfigError,
    PolicyViolationError,
    RegistrationError,
    TruseraError,
)
from trusera_sdk.events import Event, create_event, is_valid_event
from trusera_sdk.exclude import ExcludeMatcher
from trusera_sdk.interceptor import TruseraInterceptor
from trusera_sdk.policy import PolicyDecision, PolicyEvaluator
from trusera_sdk.transport import HttpxTransport, RequestDescriptor, fetch

__version__ = SDK_VERSION

__all__ = [
    "TruseraClient",
    "TruseraInterceptor",
    "ClientConfig",
    "InterceptorOptions",
    "load_config",
    "Event",
    "EventType",
    "EnforcementMode",
    "Decision",
    "create_event",
    "is_valid_event",
    "ExcludeMatcher",
    "PolicyDecision",
    "PolicyEvaluator",
    "HttpxTransport",
    "RequestDescriptor",
    "fetch",
    "TruseraError",
    "ConfigError",
    "ClosedClientError",
    "RegistrationError",
    "AlreadyInstalledError",
    "PolicyViolationError",
]
