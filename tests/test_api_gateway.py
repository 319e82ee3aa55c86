"""Tests for the retrying generative-content gateway."""

import json
from unittest.mock import AsyncMock

import httpx
import pytest

from qvoice_gateway.api_gateway import (
    RetryingApiGateway,
    backoff_bounds,
    backoff_delay_ms,
    extract_text,
)
from qvoice_gateway.errors import ApiStatusError, MalformedResponse, ServiceUnavailable

ENDPOINT = "https://example.test/v1beta/models/m:generateContent?key=secret"


def _response(status: int, body=None, text: str = None) -> httpx.Response:
    request = httpx.Request("POST", ENDPOINT)
    if text is not None:
        return httpx.Response(status, text=text, request=request)
    return httpx.Response(status, json=body if body is not None else {}, request=request)


def _candidate(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def gateway(sleeps):
    async def fake_sleep(seconds):
        sleeps.append(seconds)

    client = httpx.AsyncClient()
    client.post = AsyncMock()
    return RetryingApiGateway(api_key="secret", client=client, sleep=fake_sleep, jitter=lambda a, b: 0.0)


def test_backoff_bounds_double_per_attempt():
    assert backoff_bounds(0) == (1000.0, 2000.0)
    assert backoff_bounds(1) == (2000.0, 3000.0)
    assert backoff_bounds(2) == (4000.0, 5000.0)


def test_backoff_delay_within_bounds():
    for attempt in range(3):
        low, high = backoff_bounds(attempt)
        assert low <= backoff_delay_ms(attempt) <= high


def test_extract_text_reads_first_part():
    assert extract_text(_candidate("hi there")) == "hi there"


@pytest.mark.parametrize("body", [{}, {"candidates": []}, {"candidates": [{"content": {"parts": []}}]}, "nope"])
def test_extract_text_rejects_missing_text(body):
    with pytest.raises(MalformedResponse):
        extract_text(body)


@pytest.mark.asyncio
async def test_success_returns_body_without_sleep(gateway, sleeps):
    gateway._client.post.return_value = _response(200, _candidate("ok"))
    data = await gateway.call(ENDPOINT, {"contents": []})
    assert data == _candidate("ok")
    assert sleeps == []
    assert gateway._client.post.await_count == 1


@pytest.mark.asyncio
async def test_expect_text_returns_candidate_text(gateway):
    gateway._client.post.return_value = _response(200, _candidate("Agent Q here"))
    assert await gateway.call(ENDPOINT, {}, expect_text=True) == "Agent Q here"


@pytest.mark.asyncio
async def test_rate_limited_then_success(gateway, sleeps):
    gateway._client.post.side_effect = [_response(429), _response(429), _response(200, _candidate("ok"))]
    data = await gateway.call(ENDPOINT, {})
    assert data == _candidate("ok")
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_rate_limited_exhausts_attempts(gateway, sleeps):
    gateway._client.post.side_effect = [_response(429)] * 3
    with pytest.raises(ServiceUnavailable, match="Failed to connect to the AI service."):
        await gateway.call(ENDPOINT, {})
    assert gateway._client.post.await_count == 3
    # no backoff after the final attempt
    assert sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_non_retryable_status_fails_immediately(gateway, sleeps):
    gateway._client.post.return_value = _response(500, {"error": "boom"})
    with pytest.raises(ApiStatusError) as excinfo:
        await gateway.call(ENDPOINT, {})
    assert excinfo.value.status_code == 500
    assert "API call failed with status: 500" in str(excinfo.value)
    assert gateway._client.post.await_count == 1
    assert sleeps == []


@pytest.mark.asyncio
async def test_transport_errors_are_retried(gateway, sleeps):
    gateway._client.post.side_effect = [
        httpx.ConnectError("refused"),
        _response(200, _candidate("ok")),
    ]
    assert await gateway.call(ENDPOINT, {}, expect_text=True) == "ok"
    assert sleeps == [1.0]


@pytest.mark.asyncio
async def test_transport_errors_exhausted(gateway):
    gateway._client.post.side_effect = httpx.ConnectError("refused")
    with pytest.raises(ServiceUnavailable):
        await gateway.call(ENDPOINT, {}, max_attempts=2)
    assert gateway._client.post.await_count == 2


@pytest.mark.asyncio
async def test_response_schema_decodes_structured_text(gateway):
    payload = {"contents": [{"parts": [{"text": "q"}]}]}
    schema = {"type": "OBJECT", "properties": {"answer": {"type": "STRING"}}}
    gateway._client.post.return_value = _response(200, _candidate(json.dumps({"answer": "42"})))

    result = await gateway.call(ENDPOINT, payload, response_schema=schema)

    assert result == {"answer": "42"}
    sent = gateway._client.post.await_args.kwargs["json"]
    assert sent["generationConfig"]["responseMimeType"] == "application/json"
    assert sent["generationConfig"]["responseSchema"] == schema
    assert "generationConfig" not in payload


@pytest.mark.asyncio
async def test_response_schema_with_invalid_json_is_malformed(gateway):
    gateway._client.post.return_value = _response(200, _candidate("not json"))
    with pytest.raises(MalformedResponse):
        await gateway.call(ENDPOINT, {}, response_schema={"type": "OBJECT"})


@pytest.mark.asyncio
async def test_response_schema_missing_text_is_malformed(gateway):
    gateway._client.post.return_value = _response(200, {"candidates": []})
    with pytest.raises(MalformedResponse, match="Structured response missing or invalid."):
        await gateway.call(ENDPOINT, {}, response_schema={"type": "OBJECT"})


@pytest.mark.asyncio
async def test_non_json_body_is_malformed(gateway):
    gateway._client.post.return_value = _response(200, text="<html>")
    with pytest.raises(MalformedResponse):
        await gateway.call(ENDPOINT, {})


def test_rejects_zero_attempts():
    with pytest.raises(ValueError):
        RetryingApiGateway(max_attempts=0)


@pytest.mark.asyncio
@pytest.mark.parametrize("attempts", [0, -1])
async def test_rejects_invalid_attempts_override(gateway, attempts):
    with pytest.raises(ValueError):
        await gateway.call(ENDPOINT, {}, max_attempts=attempts)
    gateway._client.post.assert_not_awaited()
