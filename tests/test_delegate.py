"""Tests for the remote conversational delegate."""

import json

import httpx
import pytest
import respx
from httpx import Response

from taskchat.config import EngineConfig
from taskchat.delegate import HttpDelegate, StubDelegate, get_delegate
from taskchat.errors import DelegateErrorKind, RemoteDelegateError

DELEGATE_URL = "https://assistant.example.com/v1/chat"


@pytest.mark.asyncio
async def test_reply_with_camel_case_flags():
    delegate = HttpDelegate(DELEGATE_URL, token="sk-test-token-123456")

    with respx.mock:
        route = respx.post(DELEGATE_URL).mock(
            return_value=Response(
                200,
                json={
                    "response": "I set up a plan for you.",
                    "entitiesCreated": [{"type": "project", "name": "Launch", "mode": "workflow"}],
                    "documentGenerated": True,
                    "milestonesCreated": True,
                },
            )
        )
        reply = await delegate.send_message("help me plan a launch")

    assert reply.response == "I set up a plan for you."
    assert reply.entities_created[0].name == "Launch"
    assert reply.document_generated
    assert reply.milestones_created
    assert not reply.priority_stream_created

    request = route.calls.last.request
    assert request.headers["Authorization"] == "Bearer sk-test-token-123456"
    assert json.loads(request.content) == {"message": "help me plan a launch"}


@pytest.mark.asyncio
async def test_no_authorization_header_without_token():
    delegate = HttpDelegate(DELEGATE_URL)

    with respx.mock:
        route = respx.post(DELEGATE_URL).mock(return_value=Response(200, json={"response": "hi"}))
        await delegate.send_message("hello")

    assert "Authorization" not in route.calls.last.request.headers


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "kind"),
    [
        (401, DelegateErrorKind.AUTH),
        (403, DelegateErrorKind.AUTH),
        (429, DelegateErrorKind.UPSTREAM_BUSY),
        (529, DelegateErrorKind.UPSTREAM_BUSY),
        (503, DelegateErrorKind.SERVICE_UNAVAILABLE),
        (500, DelegateErrorKind.GENERIC),
    ],
)
async def test_error_status_is_categorized(status, kind):
    delegate = HttpDelegate(DELEGATE_URL)

    with respx.mock:
        respx.post(DELEGATE_URL).mock(return_value=Response(status, text="upstream said no"))
        with pytest.raises(RemoteDelegateError) as exc_info:
            await delegate.send_message("hello")

    assert exc_info.value.kind == kind
    assert str(status) in str(exc_info.value)


@pytest.mark.asyncio
async def test_error_body_is_redacted():
    delegate = HttpDelegate(DELEGATE_URL)

    with respx.mock:
        respx.post(DELEGATE_URL).mock(return_value=Response(500, text="bad key sk-abcdefghijklmnop"))
        with pytest.raises(RemoteDelegateError) as exc_info:
            await delegate.send_message("hello")

    assert "sk-abcdefghijklmnop" not in str(exc_info.value)


@pytest.mark.asyncio
async def test_timeout_is_network_error():
    delegate = HttpDelegate(DELEGATE_URL, timeout=5)

    with respx.mock:
        respx.post(DELEGATE_URL).mock(side_effect=httpx.ReadTimeout("timed out"))
        with pytest.raises(RemoteDelegateError) as exc_info:
            await delegate.send_message("hello")

    assert exc_info.value.kind == DelegateErrorKind.NETWORK
    assert "5 seconds" in str(exc_info.value)


@pytest.mark.asyncio
async def test_connection_error_is_network_error():
    delegate = HttpDelegate(DELEGATE_URL)

    with respx.mock:
        respx.post(DELEGATE_URL).mock(side_effect=httpx.ConnectError("connection refused"))
        with pytest.raises(RemoteDelegateError) as exc_info:
            await delegate.send_message("hello")

    assert exc_info.value.kind == DelegateErrorKind.NETWORK


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "response",
    [
        Response(200, text="not json"),
        Response(200, json=["a", "list"]),
        Response(200, json={"reply": "missing response field"}),
    ],
)
async def test_malformed_reply_raises(response):
    delegate = HttpDelegate(DELEGATE_URL)

    with respx.mock:
        respx.post(DELEGATE_URL).mock(return_value=response)
        with pytest.raises(RemoteDelegateError) as exc_info:
            await delegate.send_message("hello")

    assert exc_info.value.kind == DelegateErrorKind.GENERIC


@pytest.mark.asyncio
async def test_error_field_in_payload_is_categorized():
    delegate = HttpDelegate(DELEGATE_URL)

    with respx.mock:
        respx.post(DELEGATE_URL).mock(return_value=Response(200, json={"error": "JWT expired"}))
        with pytest.raises(RemoteDelegateError) as exc_info:
            await delegate.send_message("hello")

    assert exc_info.value.kind == DelegateErrorKind.AUTH


@pytest.mark.asyncio
async def test_stub_delegate_records_messages():
    delegate = StubDelegate(reply="canned")

    reply = await delegate.send_message("what should I focus on?")

    assert reply.response == "canned"
    assert delegate.sent == ["what should I focus on?"]


class TestGetDelegate:
    """Provider selection."""

    def test_stub_by_default(self) -> None:
        assert isinstance(get_delegate(EngineConfig()), StubDelegate)

    def test_http_provider(self) -> None:
        config = EngineConfig(
            delegate_provider="http",
            delegate_url=DELEGATE_URL,
            delegate_token="token",
            delegate_timeout_seconds=12,
        )

        delegate = get_delegate(config)

        assert isinstance(delegate, HttpDelegate)
        assert delegate.url == DELEGATE_URL
        assert delegate.timeout == 12

    def test_http_provider_requires_url(self) -> None:
        with pytest.raises(ValueError, match="delegate_url"):
            get_delegate(EngineConfig(delegate_provider="http"))
