"""Interception of the process-wide HTTP entry point.

Once installed, every call made through :func:`trusera_sdk.transport.fetch`
is recorded as ``api_call`` events on a :class:`TruseraClient` and, in
``warn`` or ``block`` mode, checked against a remote policy first.
"""

from __future__ import annotations

import time
from typing import Any

import httpx
from pydantic import ValidationError

from trusera_sdk.client import TruseraClient
from trusera_sdk.config import InterceptorOptions, first_error_message
from trusera_sdk.constants import RESPONSE_HEADERS_TRACKED
from trusera_sdk.enums import EnforcementMode, EventType
from trusera_sdk.errors import ClosedClientError, ConfigError, PolicyViolationError
from trusera_sdk.events import Event, create_event
from trusera_sdk.exclude import ExcludeMatcher
from trusera_sdk.logging import get_logger
from trusera_sdk.policy import PolicyDecision, PolicyEvaluator
from trusera_sdk.transport import RequestDescriptor, Resource, Transport, describe_request, transport_slot

logger = get_logger("interceptor")


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 3)


class TruseraInterceptor:
    """Takes over the global transport to track and gate outbound calls.

    Only one interceptor instance may hold the transport at a time.
    Installing the same instance again does nothing; installing a second
    instance raises :class:`AlreadyInstalledError`.
    """

    def __init__(self) -> None:
        self._client: TruseraClient | None = None
        self._options = InterceptorOptions()
        self._matcher = ExcludeMatcher()
        self._next: Transport | None = None
        self._policy: PolicyEvaluator | None = None

    @property
    def installed(self) -> bool:
        return transport_slot().owner is self

    @property
    def options(self) -> InterceptorOptions:
        return self._options

    def install(self, client: TruseraClient, options: InterceptorOptions | None = None, **overrides: Any) -> None:
        slot = transport_slot()
        if slot.owner is self:
            self._log("Interceptor already installed")
            return

        try:
            resolved = InterceptorOptions.model_validate(
                {**(options.model_dump() if options else {}), **overrides}
            )
        except ValidationError as exc:
            raise ConfigError(first_error_message(exc)) from exc

        self._next = slot.install(self, self._intercept)
        self._client = client
        self._options = resolved
        self._matcher = ExcludeMatcher(resolved.exclude_patterns)
        self._policy = PolicyEvaluator(resolved.policy_url, self._next) if resolved.policy_url else None
        self._log(
            "Interceptor installed",
            enforcement=resolved.enforcement.value,
            policy_url=resolved.policy_url,
            exclude_patterns=resolved.exclude_patterns,
        )

    def uninstall(self) -> None:
        if transport_slot().uninstall(self):
            self._log("Interceptor uninstalled")
        self._next = None
        self._policy = None

    async def _intercept(self, resource: Resource, **init: Any) -> httpx.Response:
        assert self._next is not None
        call_next = self._next
        descriptor = describe_request(resource, init)

        excluded_by = self._matcher.match(descriptor.url)
        if excluded_by is not None:
            self._log("Request excluded", url=descriptor.url, pattern=excluded_by)
            return await call_next(resource, **init)

        start = create_event(
            EventType.API_CALL,
            f"http.{descriptor.method.lower()}",
            descriptor.model_dump(mode="json"),
            {"interceptor": "trusera", "enforcement": self._options.enforcement.value},
        )
        self._emit(start)

        decision = await self._check_policy(descriptor)
        if decision is not None and decision.denied:
            reason = decision.first_reason
            if self._options.enforcement is EnforcementMode.BLOCK:
                self._emit(self._follow_up(start, "blocked", reasons=decision.reasons))
                raise PolicyViolationError(reason, decision.reasons)
            logger.warning("Policy violation: %s", reason, extra={"url": descriptor.url, "method": descriptor.method})

        started = time.perf_counter()
        try:
            response = await call_next(resource, **init)
        except Exception as exc:
            self._emit(
                self._follow_up(
                    start,
                    "error",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    duration_ms=_elapsed_ms(started),
                )
            )
            raise

        self._emit(
            self._follow_up(
                start,
                "completed",
                status=response.status_code,
                status_text=response.reason_phrase,
                response_headers={
                    key: response.headers[key] for key in RESPONSE_HEADERS_TRACKED if key in response.headers
                },
                duration_ms=_elapsed_ms(started),
            )
        )
        return response

    async def _check_policy(self, descriptor: RequestDescriptor) -> PolicyDecision | None:
        if self._options.enforcement is EnforcementMode.LOG or self._policy is None:
            return None
        try:
            return await self._policy.evaluate(descriptor)
        except Exception as exc:
            logger.warning(
                "policy check failed, allowing request: %s",
                exc,
                extra={"url": descriptor.url, "policy_url": self._policy.policy_url},
            )
            return None

    def _follow_up(self, start: Event, outcome: str, **details: Any) -> Event:
        return create_event(start.type, f"{start.name}.{outcome}", {**start.payload, **details}, start.metadata)

    def _emit(self, event: Event) -> None:
        assert self._client is not None
        try:
            self._client.track(event)
        except ClosedClientError:
            self._log("Client closed; dropping event", event_name=event.name)

    def _log(self, message: str, **data: Any) -> None:
        if self._options.debug:
            logger.debug(message, extra=data)
