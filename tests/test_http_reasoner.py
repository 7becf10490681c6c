"""Tests for the HTTP reasoner adapter using an in-process mock transport."""

import json

import httpx
import pytest

from thoughtgraph.errors import ReasonerError
from thoughtgraph.reasoner.base import ReasonMode
from thoughtgraph.reasoner.http import HttpReasoner

ENDPOINT = "http://reasoner.test"


def _reasoner(handler, max_retries: int = 1) -> HttpReasoner:
    return HttpReasoner(
        endpoint=ENDPOINT,
        timeout=5,
        max_retries=max_retries,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_plain_call_posts_prompt_and_mode() -> None:
    requests: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(json.loads(request.content))
        return httpx.Response(200, json={"text": "an answer"})

    reasoner = _reasoner(handler)
    try:
        assert await reasoner.reason("what is known?", ReasonMode.SEARCH) == "an answer"
    finally:
        await reasoner.close()

    assert requests == [{"prompt": "what is known?", "mode": "search"}]


@pytest.mark.asyncio
async def test_structured_call_prefers_data_then_text() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if b"with-data" in request.content:
            return httpx.Response(200, json={"data": {"importance": "high"}})
        return httpx.Response(200, json={"text": 'Sure: {"importance": 0.4}'})

    reasoner = _reasoner(handler)
    try:
        with_data = await reasoner.reason("with-data", ReasonMode.STRUCTURED)
        from_text = await reasoner.reason("from-text", ReasonMode.STRUCTURED)
    finally:
        await reasoner.close()

    assert with_data.get("importance") == "high"
    assert from_text.get("importance") == 0.4


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_surface_as_reasoner_error() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        return httpx.Response(503, text="unavailable")

    reasoner = _reasoner(handler, max_retries=2)
    try:
        with pytest.raises(ReasonerError) as exc_info:
            await reasoner.reason("anything")
    finally:
        await reasoner.close()

    assert attempts == 3
    assert isinstance(exc_info.value.cause, httpx.HTTPStatusError)


@pytest.mark.asyncio
async def test_transient_failure_recovers_on_retry() -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"text": "recovered"})

    reasoner = _reasoner(handler)
    try:
        assert await reasoner.reason("anything") == "recovered"
    finally:
        await reasoner.close()


@pytest.mark.asyncio
async def test_reason_batch_isolates_failures() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if b"bad" in request.content:
            return httpx.Response(500)
        return httpx.Response(200, json={"text": "ok"})

    reasoner = _reasoner(handler, max_retries=0)
    try:
        results = await reasoner.reason_batch(["good one", "bad one", "good two"])
    finally:
        await reasoner.close()

    assert results[0] == "ok"
    assert isinstance(results[1], ReasonerError)
    assert results[2] == "ok"
