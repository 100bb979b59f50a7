from __future__ import annotations

import asyncio
import json
import logging

import httpx
import pytest

from tests.conftest import FakeTransport
from trusera_sdk.enums import EnforcementMode
from trusera_sdk.errors import AlreadyInstalledError, ConfigError, PolicyViolationError
from trusera_sdk.interceptor import TruseraInterceptor
from trusera_sdk.transport import active_transport, fetch

POLICY_URL = "https://policy.example.com/evaluate"


@pytest.fixture()
def interceptor(fake_transport: FakeTransport):
    instance = TruseraInterceptor()
    try:
        yield instance
    finally:
        instance.uninstall()


@pytest.fixture()
def client(make_client):
    return make_client()


def _event_names(client) -> list[str]:
    return [event.name for event in client._queue.snapshot()]


def _deny(*reasons: str) -> httpx.Response:
    return httpx.Response(200, json={"decision": "Deny", "reasons": list(reasons)})


def test_install_replaces_transport(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    interceptor.install(client)
    assert active_transport() is not fake_transport
    assert interceptor.installed


def test_uninstall_restores_prior_transport(
    interceptor: TruseraInterceptor, fake_transport: FakeTransport, client
) -> None:
    interceptor.install(client)
    interceptor.uninstall()
    assert active_transport() is fake_transport
    assert not interceptor.installed


def test_uninstall_without_install_is_noop(interceptor: TruseraInterceptor, fake_transport: FakeTransport) -> None:
    interceptor.uninstall()
    assert active_transport() is fake_transport


def test_second_interceptor_is_rejected(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    interceptor.install(client)
    other = TruseraInterceptor()

    with pytest.raises(AlreadyInstalledError, match="Another TruseraInterceptor is already installed"):
        other.install(client)

    other.uninstall()
    assert interceptor.installed
    interceptor.uninstall()
    assert active_transport() is fake_transport

    other.install(client)
    assert other.installed
    other.uninstall()
    assert active_transport() is fake_transport


def test_reinstalling_same_interceptor_does_not_wrap_twice(
    interceptor: TruseraInterceptor, fake_transport: FakeTransport, client
) -> None:
    interceptor.install(client)
    wrapped = active_transport()
    interceptor.install(client)

    assert active_transport() is wrapped
    asyncio.run(fetch("https://api.example.com/test"))
    assert len(fake_transport.calls) == 1
    assert _event_names(client) == ["http.get", "http.get.completed"]

    interceptor.uninstall()
    assert active_transport() is fake_transport


def test_invalid_exclude_pattern_is_config_error(interceptor: TruseraInterceptor, client) -> None:
    with pytest.raises(ConfigError, match="invalid exclude pattern"):
        interceptor.install(client, exclude_patterns=["("])
    assert not interceptor.installed


def test_intercepts_and_forwards_call(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    interceptor.install(client)

    response = asyncio.run(fetch("https://api.example.com/test"))

    assert response.status_code == 200
    assert fake_transport.calls == [("https://api.example.com/test", {})]
    assert client.get_queue_size() == 2


def test_tracks_request_and_response(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    fake_transport.queue(httpx.Response(201, headers={"content-type": "application/json", "x-other": "1"}, json={}))
    interceptor.install(client, debug=True)

    asyncio.run(
        fetch(
            "https://api.example.com/users",
            method="post",
            headers={"X-Test": "value"},
            content='{"key": "value"}',
        )
    )

    assert fake_transport.calls[0][1] == {
        "method": "post",
        "headers": {"X-Test": "value"},
        "content": '{"key": "value"}',
    }
    start, completed = client._queue.snapshot()
    assert start.type.value == "api_call"
    assert start.name == "http.post"
    assert start.payload == {
        "method": "POST",
        "url": "https://api.example.com/users",
        "headers": {"x-test": "value"},
        "body": '{"key": "value"}',
    }
    assert completed.name == "http.post.completed"
    assert completed.payload["status"] == 201
    assert completed.payload["status_text"] == "Created"
    assert completed.payload["response_headers"]["content-type"] == "application/json"
    assert "x-other" not in completed.payload["response_headers"]
    assert completed.payload["duration_ms"] >= 0


def test_error_is_tracked_and_reraised(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    error = httpx.ConnectError("Network error")
    fake_transport.queue(error)
    interceptor.install(client)

    with pytest.raises(httpx.ConnectError) as excinfo:
        asyncio.run(fetch("https://api.example.com/test"))

    assert excinfo.value is error
    start, failed = client._queue.snapshot()
    assert failed.name == "http.get.error"
    assert failed.payload["error"] == "Network error"
    assert failed.payload["error_type"] == "ConnectError"


def test_handles_different_methods(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    interceptor.install(client)

    async def _run() -> None:
        await fetch("https://api.example.com/resource", method="PUT")
        await fetch("https://api.example.com/resource", method="DELETE")

    asyncio.run(_run())

    assert len(fake_transport.calls) == 2
    assert _event_names(client) == ["http.put", "http.put.completed", "http.delete", "http.delete.completed"]


def test_handles_url_object(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    interceptor.install(client)
    url = httpx.URL("https://api.example.com/test")

    asyncio.run(fetch(url))

    assert fake_transport.calls == [(url, {})]
    assert client._queue.snapshot()[0].payload["url"] == "https://api.example.com/test"


def test_handles_request_object(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    interceptor.install(client)
    request = httpx.Request("POST", "https://api.example.com/test", headers={"X-Custom": "value"}, content=b"raw")

    asyncio.run(fetch(request))

    assert fake_transport.calls[0][0] is request
    start = client._queue.snapshot()[0]
    assert start.name == "http.post"
    assert start.payload["headers"]["x-custom"] == "value"
    assert start.payload["body"] is None


def test_extracts_headers_from_headers_object(
    interceptor: TruseraInterceptor, fake_transport: FakeTransport, client
) -> None:
    interceptor.install(client)

    asyncio.run(
        fetch(
            "https://api.example.com/test",
            headers=httpx.Headers({"X-Custom": "value", "authorization": "Bearer token"}),
        )
    )

    headers = client._queue.snapshot()[0].payload["headers"]
    assert headers == {"x-custom": "value", "authorization": "[REDACTED]"}


def test_non_string_body_is_not_captured(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    interceptor.install(client)

    asyncio.run(fetch("https://api.example.com/upload", method="POST", content=b"\x00\x01"))

    assert client._queue.snapshot()[0].payload["body"] is None


def test_excluded_urls_are_invisible(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    interceptor.install(client, exclude_patterns=[r"^https://api\.trusera\.io/.*"])

    asyncio.run(fetch("https://api.trusera.io/events/batch"))
    assert client.get_queue_size() == 0
    assert len(fake_transport.calls) == 1

    asyncio.run(fetch("https://api.example.com/test"))
    assert client.get_queue_size() == 2


def test_multiple_exclude_patterns(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    interceptor.install(
        client,
        exclude_patterns=[r"^https://api\.trusera\.io/.*", r"^https://internal\.example\.com/.*"],
    )

    async def _run() -> None:
        await fetch("https://api.trusera.io/test")
        await fetch("https://internal.example.com/health")

    asyncio.run(_run())
    assert client.get_queue_size() == 0

    asyncio.run(fetch("https://external.example.com/api"))
    assert client.get_queue_size() == 2


def test_excluded_url_skips_policy(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    interceptor.install(
        client,
        enforcement=EnforcementMode.BLOCK,
        policy_url=POLICY_URL,
        exclude_patterns=[r"^https://api\.X/.*"],
    )

    asyncio.run(fetch("https://api.X/anything"))

    assert fake_transport.urls() == ["https://api.X/anything"]
    assert client.get_queue_size() == 0


def test_log_mode_never_calls_policy(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    fake_transport.queue(_deny("should not be consulted"))
    interceptor.install(client, enforcement="log", policy_url=POLICY_URL)

    response = asyncio.run(fetch("https://api.example.com/test"))

    assert response.is_success
    assert fake_transport.urls() == ["https://api.example.com/test"]


def test_warn_mode_logs_and_proceeds(
    interceptor: TruseraInterceptor, fake_transport: FakeTransport, client, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.WARNING)
    fake_transport.queue(_deny("Outbound payments API"), httpx.Response(200))
    interceptor.install(client, enforcement="warn", policy_url=POLICY_URL)

    response = asyncio.run(fetch("https://api.example.com/test"))

    assert response.is_success
    assert fake_transport.urls() == [POLICY_URL, "https://api.example.com/test"]
    assert "Policy violation: Outbound payments API" in caplog.text
    assert _event_names(client) == ["http.get", "http.get.completed"]


def test_block_mode_raises_before_real_call(
    interceptor: TruseraInterceptor, fake_transport: FakeTransport, client
) -> None:
    fake_transport.queue(_deny("Unauthorized API access", "second reason"))
    interceptor.install(client, enforcement="block", policy_url=POLICY_URL)

    with pytest.raises(PolicyViolationError, match="Policy violation: Unauthorized API access") as excinfo:
        asyncio.run(fetch("https://api.example.com/test"))

    assert excinfo.value.reasons == ["Unauthorized API access", "second reason"]
    assert fake_transport.urls() == [POLICY_URL]
    assert _event_names(client) == ["http.get", "http.get.blocked"]


def test_block_mode_allows_permitted_request(
    interceptor: TruseraInterceptor, fake_transport: FakeTransport, client
) -> None:
    fake_transport.queue(httpx.Response(200, json={"decision": "Allow"}), httpx.Response(200))
    interceptor.install(client, enforcement="block", policy_url=POLICY_URL)

    response = asyncio.run(fetch("https://api.example.com/test"))

    assert response.is_success
    assert fake_transport.urls() == [POLICY_URL, "https://api.example.com/test"]


def test_policy_receives_request_descriptor(
    interceptor: TruseraInterceptor, fake_transport: FakeTransport, client
) -> None:
    fake_transport.queue(httpx.Response(200, json={"decision": "Allow"}))
    interceptor.install(client, enforcement="block", policy_url=POLICY_URL)

    asyncio.run(fetch("https://api.example.com/items", method="DELETE"))

    policy_init = fake_transport.calls[0][1]
    assert policy_init["method"] == "POST"
    assert json.loads(policy_init["content"]) == {
        "method": "DELETE",
        "url": "https://api.example.com/items",
        "headers": {},
        "body": None,
    }


@pytest.mark.parametrize(
    "policy_failure",
    [RuntimeError("Policy service down"), httpx.ConnectError("refused"), httpx.Response(503, text="unavailable")],
)
def test_policy_failure_fails_open(
    interceptor: TruseraInterceptor,
    fake_transport: FakeTransport,
    client,
    caplog: pytest.LogCaptureFixture,
    policy_failure,
) -> None:
    caplog.set_level(logging.WARNING)
    fake_transport.queue(policy_failure, httpx.Response(200))
    interceptor.install(client, enforcement="block", policy_url=POLICY_URL)

    response = asyncio.run(fetch("https://api.example.com/test"))

    assert response.is_success
    assert fake_transport.urls() == [POLICY_URL, "https://api.example.com/test"]
    assert "policy check failed" in caplog.text


def test_closed_client_does_not_break_calls(
    interceptor: TruseraInterceptor, fake_transport: FakeTransport, client
) -> None:
    interceptor.install(client)
    asyncio.run(client.close())

    response = asyncio.run(fetch("https://api.example.com/test"))

    assert response.is_success
    assert client.get_queue_size() == 0


def test_client_traffic_is_not_tracked(interceptor: TruseraInterceptor, fake_transport: FakeTransport, client) -> None:
    interceptor.install(client)

    async def _run() -> None:
        await fetch("https://api.example.com/test")
        await client.flush()

    asyncio.run(_run())

    assert fake_transport.urls() == ["https://api.example.com/test", "https://api.trusera.io/api/v1/events/batch"]
    assert _event_names(client) == []
    sent = fake_transport.json_body(1)["events"]
    assert [event["name"] for event in sent] == ["http.get", "http.get.completed"]
    assert fake_transport.calls[1][1]["headers"]["Authorization"] == "Bearer tsk_test123"


def test_flushing_does_not_grow_queue(interceptor: TruseraInterceptor, fake_transport: FakeTransport, make_client) -> None:
    client = make_client(batch_size=1)
    interceptor.install(client)

    async def _run() -> list[int]:
        await fetch("https://api.example.com/test")
        sizes = []
        for _ in range(5):
            await client.flush()
            sizes.append(client.get_queue_size())
        return sizes

    assert asyncio.run(_run()) == [1, 0, 0, 0, 0]


def test_credential_headers_never_reach_events(
    interceptor: TruseraInterceptor, fake_transport: FakeTransport, client
) -> None:
    interceptor.install(client)

    asyncio.run(
        fetch(
            "https://api.example.com/test",
            headers={"Authorization": "Bearer secret", "Cookie": "session=1", "X-Api-Key": "k", "Accept": "*/*"},
        )
    )

    for event in client._queue.snapshot():
        assert event.payload["headers"] == {
            "authorization": "[REDACTED]",
            "cookie": "[REDACTED]",
            "x-api-key": "[REDACTED]",
            "accept": "*/*",
        }
    assert fake_transport.calls[0][1]["headers"]["Authorization"] == "Bearer secret"
