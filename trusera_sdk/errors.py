from __future__ import annotations


class TruseraError(Exception):
    """Base class for errors raised by the SDK."""


class ConfigError(TruseraError, ValueError):
    """Raised when client or interceptor configuration is invalid."""


class ClosedClientError(TruseraError):
    """Raised when events are tracked on a client that has been closed."""


class RegistrationError(TruseraError):
    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"Failed to register agent: {status} {body}")
        self.status = status
        self.body = body


class AlreadyInstalledError(TruseraError):
    """Raised when a second interceptor tries to take over the transport."""


class PolicyViolationError(TruseraError):
    def __init__(self, reason: str, reasons: list[str] | None = None) -> None:
        super().__init__(f"Policy violation: {reason}")
        self.reason = reason
        self.reasons = list(reasons or [reason])


class DeliveryError(TruseraError):
    """A batch send was answered with a non-success status. Never surfaced to callers."""

    def __init__(self, status: int, body: str) -> None:
        super().__init__(f"collector rejected batch: {status} {body}")
        self.status = status
        self.body = body


class PolicyServiceError(TruseraError):
    """The policy endpoint answered with an error or an unreadable decision."""
