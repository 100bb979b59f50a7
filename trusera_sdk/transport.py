"""The process-wide HTTP entry point.

All outbound calls made through :func:`fetch` go through whichever
transport currently occupies the slot. Only an interceptor's
``install``/``uninstall`` changes the occupant.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from trusera_sdk.constants import DEFAULT_TIMEOUT_SECONDS
from trusera_sdk.errors import AlreadyInstalledError
from trusera_sdk.sanitization import redact

Transport = Callable[..., Awaitable[httpx.Response]]
Resource = str | httpx.URL | httpx.Request
HeaderSource = httpx.Headers | Mapping[str, str] | Sequence[tuple[str, str]]


class HttpxTransport:
    """Default transport: one ``httpx.AsyncClient`` per call."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        verify: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self.verify = verify
        self._transport = transport

    async def __call__(
        self,
        resource: Resource,
        *,
        method: str | None = None,
        headers: HeaderSource | None = None,
        content: str | bytes | None = None,
        json: Any = None,
        params: Mapping[str, Any] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=timeout or self.timeout,
            verify=self.verify,
            transport=self._transport,
        ) as client:
            if isinstance(resource, httpx.Request):
                return await client.send(resource)
            return await client.request(
                (method or "GET").upper(),
                resource,
                headers=headers,
                content=content,
                json=json,
                params=params,
            )


class TransportSlot:
    """Single-slot registry for the active transport.

    Holds the current transport, the owner that installed it, and the one
    transport that was active before that install.
    """

    def __init__(self, transport: Transport) -> None:
        self._active: Transport = transport
        self._owner: object | None = None
        self._saved: Transport | None = None

    @property
    def active(self) -> Transport:
        return self._active

    @property
    def owner(self) -> object | None:
        return self._owner

    @property
    def underlying(self) -> Transport:
        """The transport beneath any installed interceptor."""
        return self._saved if self._owner is not None else self._active

    def install(self, owner: object, transport: Transport) -> Transport:
        """Put ``transport`` in the slot and return the transport it replaces."""
        if self._owner is owner:
            assert self._saved is not None
            return self._saved
        if self._owner is not None:
            raise AlreadyInstalledError("Another TruseraInterceptor is already installed")
        self._saved = self._active
        self._owner = owner
        self._active = transport
        return self._saved

    def uninstall(self, owner: object) -> bool:
        if self._owner is not owner:
            return False
        assert self._saved is not None
        self._active = self._saved
        self._saved = None
        self._owner = None
        return True


_slot = TransportSlot(HttpxTransport())


def transport_slot() -> TransportSlot:
    return _slot


def active_transport() -> Transport:
    return _slot.active


async def fetch(resource: Resource, **init: Any) -> httpx.Response:
    """Issue an HTTP call through the active transport."""
    return await _slot.active(resource, **init)


async def direct_fetch(resource: Resource, **init: Any) -> httpx.Response:
    """Issue an HTTP call that no installed interceptor sees.

    The SDK sends its own collector traffic this way, so those calls are
    never tracked or gated.
    """
    return await _slot.underlying(resource, **init)


class RequestDescriptor(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    method: str = "GET"
    url: str
    headers: dict[str, str] = Field(default_factory=dict)
    body: str | None = None


def normalize_headers(source: HeaderSource | None) -> dict[str, str]:
    if source is None:
        return {}
    if isinstance(source, httpx.Headers):
        return {key.lower(): value for key, value in source.items()}
    if isinstance(source, Mapping):
        return {str(key).lower(): str(value) for key, value in source.items()}
    return {str(key).lower(): str(value) for key, value in source}


def _descriptor_from_request(request: httpx.Request, init: Mapping[str, Any]) -> RequestDescriptor:
    headers = normalize_headers(request.headers)
    headers.update(normalize_headers(init.get("headers")))
    return RequestDescriptor(
        method=str(init.get("method") or request.method).upper(),
        url=str(request.url),
        headers=redact(headers),
    )


def _descriptor_from_url(url: str | httpx.URL, init: Mapping[str, Any]) -> RequestDescriptor:
    body = init.get("content")
    return RequestDescriptor(
        method=str(init.get("method") or "GET").upper(),
        url=str(url),
        headers=redact(normalize_headers(init.get("headers"))),
        body=body if isinstance(body, str) else None,
    )


def describe_request(resource: Resource, init: Mapping[str, Any]) -> RequestDescriptor:
    """Normalize the arguments of a :func:`fetch` call.

    Only string bodies are captured; bytes and streams are left alone so a
    single-use body is never consumed here. Credential headers such as
    ``authorization`` and ``cookie`` are masked.
    """
    if isinstance(resource, httpx.Request):
        return _descriptor_from_request(resource, init)
    return _descriptor_from_url(resource, init)
