"""Tests for the backend builder HTTP client."""

from __future__ import annotations

import json

import httpx
import pytest

from schemas.platflow import BuilderConfig, ChatMessage
from services.builder_client import BackendBuilderClient
from services.pipeline.exceptions import BuilderServiceError


MESSAGES = [
    ChatMessage(id="m1", role="user", content="Build a todo app"),
    ChatMessage(role="assistant", content="Sure"),
]


def _client(handler) -> BackendBuilderClient:
    return BackendBuilderClient(timeout=5.0, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_posts_conversation_and_returns_payload():
    """Test the request body, headers and decoded response."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"files": ["index.html"]})

    config = BuilderConfig(
        backend_url="https://builder.test/run", api_key="secret", options={"framework": "vite"}
    )

    payload = await _client(handler).build(config, MESSAGES)

    assert payload == {"files": ["index.html"]}
    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == "https://builder.test/run"
    assert request.headers["Authorization"] == "Bearer secret"
    assert request.headers["Content-Type"] == "application/json"
    assert json.loads(request.content) == {
        "messages": [
            {"id": "m1", "role": "user", "content": "Build a todo app"},
            {"role": "assistant", "content": "Sure"},
        ],
        "builderOptions": {"framework": "vite"},
    }


@pytest.mark.asyncio
async def test_no_authorization_header_without_api_key():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={})

    await _client(handler).build(BuilderConfig(backend_url="https://builder.test"), MESSAGES)

    assert "Authorization" not in seen[0].headers
    assert json.loads(seen[0].content)["builderOptions"] == {}


@pytest.mark.asyncio
async def test_non_success_status_raises_with_status_code():
    client = _client(lambda request: httpx.Response(502, text="bad gateway"))

    with pytest.raises(BuilderServiceError) as excinfo:
        await client.build(BuilderConfig(backend_url="https://builder.test"), MESSAGES)

    assert excinfo.value.message == "Builder server returned status 502"
    assert excinfo.value.status_code == 502


@pytest.mark.asyncio
async def test_invalid_json_raises():
    client = _client(lambda request: httpx.Response(200, text="<html>"))

    with pytest.raises(BuilderServiceError, match="invalid JSON"):
        await client.build(BuilderConfig(backend_url="https://builder.test"), MESSAGES)


@pytest.mark.asyncio
async def test_connection_error_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BuilderServiceError) as excinfo:
        await _client(handler).build(
            BuilderConfig(backend_url="https://builder.test"), MESSAGES
        )

    assert excinfo.value.message.startswith("Builder server request failed")


@pytest.mark.asyncio
async def test_timeout_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(BuilderServiceError) as excinfo:
        await _client(handler).build(
            BuilderConfig(backend_url="https://builder.test"), MESSAGES
        )

    assert excinfo.value.message == "Builder server timed out after 5s"


@pytest.mark.asyncio
async def test_missing_url_raises():
    with pytest.raises(BuilderServiceError, match="not configured"):
        await _client(lambda r: httpx.Response(200)).build(BuilderConfig(), MESSAGES)
