"""Shared fixtures: client config and a scripted fake OpenRouter server."""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from openrouter_client.config import ClientConfig


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------

def completion_payload(content: str = "Hello!", model: str = "openai/gpt-4o-mini") -> dict:
    return {
        "id": "gen-1",
        "object": "chat.completion",
        "created": 1700000000,
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 20, "total_tokens": 30},
    }


def chunk_payload(
    content: str | None = None,
    finish_reason: str | None = None,
    chunk_id: str = "gen-1",
    usage: dict | None = None,
) -> dict:
    delta: dict[str, Any] = {}
    if content is not None:
        delta["content"] = content
    data: dict[str, Any] = {
        "id": chunk_id,
        "object": "chat.completion.chunk",
        "created": 1700000000,
        "model": "openai/gpt-4o-mini",
        "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
    }
    if usage:
        data["usage"] = usage
    return data


def sse_frame(payload: dict | str) -> bytes:
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return f"data: {text}\n\n".encode()


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in the given pieces, tracking consumption."""

    def __init__(self, parts: list[bytes]) -> None:
        self.parts = parts
        self.consumed = 0
        self.closed = False

    async def __aiter__(self):
        for part in self.parts:
            self.consumed += 1
            yield part

    async def aclose(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fake server
# ---------------------------------------------------------------------------

Responder = Callable[[httpx.Request], Any]


class FakeServer:
    """Scripted transport: each request pops the next responder.

    A responder is an ``httpx.Response``, an exception instance to raise,
    or a (sync or async) callable taking the request.  The last responder
    is reused once the script runs out.
    """

    def __init__(self, *responders: Any) -> None:
        self.responders = list(responders)
        self.requests: list[httpx.Request] = []

    @property
    def call_count(self) -> int:
        return len(self.requests)

    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.content]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        idx = min(len(self.requests) - 1, len(self.responders) - 1)
        responder = self.responders[idx]
        if isinstance(responder, BaseException):
            raise responder
        if isinstance(responder, httpx.Response):
            return responder
        result = responder(request)
        if hasattr(result, "__await__"):
            result = await result
        return result

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(
        api_key="test-key",
        base_url="https://openrouter.test/api/v1",
        model="openai/gpt-4o-mini",
    )


@pytest.fixture
def no_sleep():
    """Records backoff delays instead of sleeping."""
    delays: list[float] = []

    async def _sleep(delay: float) -> None:
        delays.append(delay)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep
