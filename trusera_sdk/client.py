"""Batching client that delivers events to the Trusera collector."""

from __future__ import annotations

import asyncio
import platform
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from trusera_sdk import transport
from trusera_sdk.config import ClientConfig, first_error_message
from trusera_sdk.constants import EVENTS_BATCH_PATH, REGISTER_PATH, SDK_VERSION
from trusera_sdk.errors import ClosedClientError, ConfigError, DeliveryError, RegistrationError
from trusera_sdk.event_queue import EventQueue
from trusera_sdk.events import Event, EventBatch
from trusera_sdk.logging import get_logger

logger = get_logger("client")


class RegisterAgentRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    framework: str
    metadata: dict[str, str]


class RegisterAgentResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    agent_id: str
    name: str | None = None
    created_at: str | None = None


class TruseraClient:
    """Buffers events and ships them to the collector in ordered batches.

    ``track`` never awaits. Batches go out when the queue reaches
    ``batch_size``, every ``flush_interval`` milliseconds while an event loop
    is running, on an explicit ``flush()``, and on ``close()``. A failed send
    puts the batch back at the head of the queue for the next attempt.

    Collector requests bypass any installed :class:`TruseraInterceptor`, so
    the client never records its own traffic.

    Example::

        client = TruseraClient("tsk_your_key_here", agent_id="my-agent-123")
        client.track(create_event(EventType.TOOL_CALL, "github.search", {"query": "AI"}))
        await client.close()
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        agent_id: str | None = None,
        flush_interval: int | None = None,
        batch_size: int | None = None,
        debug: bool = False,
        timeout_seconds: float | None = None,
    ) -> None:
        options: dict[str, Any] = {
            "api_key": api_key,
            "base_url": base_url,
            "agent_id": agent_id,
            "flush_interval": flush_interval,
            "batch_size": batch_size,
            "debug": debug,
            "timeout_seconds": timeout_seconds,
        }
        try:
            self.config = ClientConfig.model_validate({k: v for k, v in options.items() if v is not None})
        except ValidationError as exc:
            raise ConfigError(first_error_message(exc)) from exc

        self._agent_id = self.config.agent_id
        self._queue = EventQueue()
        self._closed = False
        self._timer_task: asyncio.Task[None] | None = None
        self._threshold_task: asyncio.Task[None] | None = None
        self._background: set[asyncio.Task[None]] = set()

        self._ensure_flush_timer()
        self._log("TruseraClient initialized", base_url=self.config.base_url, batch_size=self.config.batch_size)

    @classmethod
    def from_config(cls, config: ClientConfig) -> TruseraClient:
        return cls(**config.model_dump())

    @property
    def closed(self) -> bool:
        return self._closed

    async def register_agent(self, name: str, framework: str) -> str:
        """Register this agent with the collector and remember its id."""
        self._log("Registering agent", agent_name=name, framework=framework)
        body = RegisterAgentRequest(
            name=name,
            framework=framework,
            metadata={
                "sdk_version": SDK_VERSION,
                "runtime": "python",
                "runtime_version": platform.python_version(),
            },
        )
        response = await transport.direct_fetch(
            self._url(REGISTER_PATH),
            method="POST",
            headers=self._headers(),
            content=body.model_dump_json(),
            timeout=self.config.timeout_seconds,
        )
        if not response.is_success:
            raise RegistrationError(response.status_code, response.text)

        data = RegisterAgentResponse.model_validate(response.json())
        self._agent_id = data.agent_id
        self._log("Agent registered", agent_id=self._agent_id)
        return self._agent_id

    def track(self, event: Event) -> None:
        if self._closed:
            raise ClosedClientError("Cannot track events on closed client")

        enriched = event.with_metadata(agent_id=self._agent_id, sdk_version=SDK_VERSION)
        size = self._queue.append(enriched)
        self._log("Event tracked", event_type=event.type.value, event_name=event.name, queue_size=size)

        self._ensure_flush_timer()
        if size >= self.config.batch_size and (self._threshold_task is None or self._threshold_task.done()):
            self._threshold_task = self._spawn_flush()

    async def flush(self) -> None:
        """Send up to ``batch_size`` events from the head of the queue.

        Delivery failures are logged and the batch is requeued; nothing is
        raised to the caller.
        """
        if not self._queue:
            return

        batch = self._queue.take(self.config.batch_size)
        self._log("Flushing events", count=len(batch))
        try:
            await self._send_batch(batch)
        except asyncio.CancelledError:
            self._queue.requeue(batch)
            raise
        except DeliveryError as exc:
            logger.error("failed to send events: %s %s", exc.status, exc.body, extra={"count": len(batch)})
            self._queue.requeue(batch)
        except Exception as exc:
            logger.error("network error sending events: %s", exc, extra={"count": len(batch)})
            self._queue.requeue(batch)
        else:
            self._log("Events flushed successfully", count=len(batch))

    async def close(self) -> None:
        """Stop accepting events, stop the timer and drain the queue."""
        self._log("Closing client")
        self._closed = True
        await self._stop_flush_timer()

        pending = [task for task in self._background if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        while self._queue:
            before = len(self._queue)
            await self.flush()
            if len(self._queue) >= before:
                break

        if self._queue:
            logger.warning("client closed with %d undelivered events", len(self._queue))
        self._log("Client closed")

    def get_queue_size(self) -> int:
        return len(self._queue)

    def get_agent_id(self) -> str | None:
        return self._agent_id

    async def _send_batch(self, batch: list[Event]) -> None:
        response = await transport.direct_fetch(
            self._url(EVENTS_BATCH_PATH),
            method="POST",
            headers=self._headers(),
            content=EventBatch(events=batch).model_dump_json(),
            timeout=self.config.timeout_seconds,
        )
        if not response.is_success:
            raise DeliveryError(response.status_code, response.text)

    def _spawn_flush(self) -> asyncio.Task[None] | None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._log("No running event loop; batch waits for the next flush")
            return None
        task = loop.create_task(self.flush(), name="trusera-batch-flush")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _ensure_flush_timer(self) -> None:
        if self._closed:
            return
        if self._timer_task is not None and not self._timer_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._timer_task = loop.create_task(self._flush_loop(), name="trusera-flush-timer")

    async def _flush_loop(self) -> None:
        interval = self.config.flush_interval / 1000
        while True:
            await asyncio.sleep(interval)
            await self.flush()

    async def _stop_flush_timer(self) -> None:
        task = self._timer_task
        self._timer_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _url(self, path: str) -> str:
        return f"{self.config.base_url}{path}"

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.config.api_key}",
        }

    def _log(self, message: str, **data: Any) -> None:
        if self.config.debug:
            logger.debug(message, extra=data)
