"""Tests for OpenRouterClient.chat and the non-streaming surface."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from openrouter_client.cancel import CancelToken
from openrouter_client.client import OpenRouterClient
from openrouter_client.config import ClientConfig
from openrouter_client.errors import ErrorKind, OpenRouterError
from openrouter_client.types import ChatMessage, RequestConfig, ToolDefinition

from conftest import FakeServer, completion_payload

HI = [{"role": "user", "content": "hi"}]


def ok(content: str = "Hello!"):
    return lambda request: httpx.Response(200, json=completion_payload(content))


def status(code: int, body: dict | None = None):
    if body is None:
        return lambda request: httpx.Response(code, text="upstream exploded")
    return lambda request: httpx.Response(code, json=body)


def make_client(config: ClientConfig, server: FakeServer, sleep=None) -> OpenRouterClient:
    kwargs = {"transport": server.transport}
    if sleep is not None:
        kwargs["sleep"] = sleep
    return OpenRouterClient(config, **kwargs)


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------

class TestConstruction:
    def test_missing_api_key(self):
        with pytest.raises(OpenRouterError) as exc_info:
            OpenRouterClient(ClientConfig(api_key=""))
        assert exc_info.value.kind is ErrorKind.CONFIGURATION
        assert exc_info.value.retryable is False

    async def test_headers(self, config):
        config = config.model_copy(update={"site_url": "https://ext.test", "site_title": "Helper"})
        server = FakeServer(ok())
        async with make_client(config, server) as client:
            await client.chat(HI)
        req = server.requests[0]
        assert req.headers["Authorization"] == "Bearer test-key"
        assert req.headers["Content-Type"] == "application/json"
        assert req.headers["HTTP-Referer"] == "https://ext.test"
        assert req.headers["X-Title"] == "Helper"
        assert req.url.path == "/api/v1/chat/completions"


# ---------------------------------------------------------------------------
# chat()
# ---------------------------------------------------------------------------

class TestChat:
    async def test_basic_chat(self, config):
        server = FakeServer(ok("World"))
        async with make_client(config, server) as client:
            result = await client.chat(HI)
        assert result.text == "World"
        assert result.usage.total_tokens == 30
        body = server.bodies()[0]
        assert body["model"] == "openai/gpt-4o-mini"
        assert body["stream"] is False
        assert body["messages"] == HI
        assert body["temperature"] == 0.7

    async def test_request_overrides(self, config):
        server = FakeServer(ok())
        tool = ToolDefinition(name="lookup", description="Look up", parameters={"q": {"type": "string"}})
        async with make_client(config, server) as client:
            await client.chat(
                [ChatMessage(role="user", content="hi")],
                RequestConfig(model="openai/gpt-4o", temperature=0.1, tools=[tool], tool_choice="auto"),
            )
        body = server.bodies()[0]
        assert body["model"] == "openai/gpt-4o"
        assert body["temperature"] == 0.1
        assert body["tool_choice"] == "auto"
        assert body["tools"][0]["function"]["name"] == "lookup"

    async def test_invalid_message_rejected_before_dispatch(self, config):
        server = FakeServer(ok())
        async with make_client(config, server) as client:
            with pytest.raises(OpenRouterError) as exc_info:
                await client.chat([{"role": "user", "content": ""}])
        assert exc_info.value.kind is ErrorKind.INVALID_REQUEST
        assert server.call_count == 0

    async def test_malformed_success_body(self, config):
        server = FakeServer(lambda r: httpx.Response(200, json={"choices": []}))
        async with make_client(config, server) as client:
            with pytest.raises(OpenRouterError) as exc_info:
                await client.chat(HI)
        assert exc_info.value.kind is ErrorKind.DECODE


class TestCaching:
    async def test_repeat_call_served_from_cache(self, config):
        server = FakeServer(ok("first"), ok("second"))
        async with make_client(config, server) as client:
            a = await client.chat(HI)
            b = await client.chat([{"role": "user", "content": "hi"}])
        assert server.call_count == 1
        assert a.text == b.text == "first"

    async def test_different_request_misses(self, config):
        server = FakeServer(ok("first"), ok("second"))
        async with make_client(config, server) as client:
            await client.chat(HI)
            b = await client.chat(HI, RequestConfig(temperature=0.0))
        assert server.call_count == 2
        assert b.text == "second"

    async def test_expired_entry_triggers_dispatch(self, config):
        config = config.model_copy(update={"cache_ttl": 0.0})
        server = FakeServer(ok("first"), ok("second"))
        async with make_client(config, server) as client:
            await client.chat(HI)
            await asyncio.sleep(0.01)
            b = await client.chat(HI)
        assert server.call_count == 2
        assert b.text == "second"

    async def test_cache_disabled(self, config):
        config = config.model_copy(update={"enable_cache": False})
        server = FakeServer(ok())
        async with make_client(config, server) as client:
            await client.chat(HI)
            await client.chat(HI)
        assert server.call_count == 2

    async def test_stream_flag_bypasses_cache(self, config):
        server = FakeServer(ok())
        async with make_client(config, server) as client:
            await client.chat(HI, RequestConfig(stream=True))
            await client.chat(HI, RequestConfig(stream=True))
        assert server.call_count == 2

    async def test_clear_cache(self, config):
        server = FakeServer(ok())
        async with make_client(config, server) as client:
            await client.chat(HI)
            client.clear_cache()
            await client.chat(HI)
        assert server.call_count == 2

    async def test_failures_not_cached(self, config, no_sleep):
        config = config.model_copy(update={"retries": 0})
        server = FakeServer(status(500), ok("recovered"))
        async with make_client(config, server, no_sleep) as client:
            with pytest.raises(OpenRouterError):
                await client.chat(HI)
            result = await client.chat(HI)
        assert result.text == "recovered"


class TestRetries:
    async def test_500_twice_then_success(self, config, no_sleep):
        server = FakeServer(status(500), status(500), ok("recovered"))
        async with make_client(config, server, no_sleep) as client:
            result = await client.chat(HI)
        assert result.text == "recovered"
        assert server.call_count == 3
        assert no_sleep.delays == [1.0, 2.0]

    async def test_429_retried(self, config, no_sleep):
        server = FakeServer(status(429, {"error": {"message": "slow down", "code": 429}}), ok())
        async with make_client(config, server, no_sleep) as client:
            await client.chat(HI)
        assert server.call_count == 2

    async def test_attempts_capped(self, config, no_sleep):
        server = FakeServer(status(503))
        async with make_client(config, server, no_sleep) as client:
            with pytest.raises(OpenRouterError) as exc_info:
                await client.chat(HI)
        assert server.call_count == config.retries + 1
        err = exc_info.value
        assert err.kind is ErrorKind.SERVER_FAULT
        assert err.status == 503
        assert err.message == "HTTP 503"
        assert err.retryable

    @pytest.mark.parametrize("code", [400, 401, 403])
    async def test_client_faults_not_retried(self, config, no_sleep, code):
        server = FakeServer(status(code, {"error": {"message": "nope", "code": "bad"}}))
        async with make_client(config, server, no_sleep) as client:
            with pytest.raises(OpenRouterError):
                await client.chat(HI)
        assert server.call_count == 1
        assert no_sleep.delays == []

    async def test_401_error_details(self, config, no_sleep):
        server = FakeServer(
            status(401, {"error": {"message": "invalid key", "code": "unauthorized"}}),
        )
        async with make_client(config, server, no_sleep) as client:
            with pytest.raises(OpenRouterError) as exc_info:
                await client.chat(HI)
        err = exc_info.value
        assert err.kind is ErrorKind.CLIENT_FAULT
        assert err.message == "invalid key"
        assert err.code == "unauthorized"
        assert err.status == 401
        assert err.retryable is False
        assert err.to_dict()["kind"] == "client_fault"
        assert server.call_count == 1

    async def test_transport_error_retried(self, config, no_sleep):
        server = FakeServer(httpx.ConnectError("refused"), ok("up"))
        async with make_client(config, server, no_sleep) as client:
            result = await client.chat(HI)
        assert result.text == "up"
        assert server.call_count == 2

    async def test_transport_error_wrapped(self, config, no_sleep):
        config = config.model_copy(update={"retries": 1})
        server = FakeServer(httpx.ConnectError("refused"))
        async with make_client(config, server, no_sleep) as client:
            with pytest.raises(OpenRouterError) as exc_info:
                await client.chat(HI)
        assert exc_info.value.kind is ErrorKind.TRANSPORT
        assert exc_info.value.retryable
        assert server.call_count == 2


class TestChatCancellation:
    async def test_timeout_aborts_without_retry(self, config, no_sleep):
        config = config.model_copy(update={"timeout": 0.05})

        async def slow(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json=completion_payload())

        server = FakeServer(slow)
        async with make_client(config, server, no_sleep) as client:
            with pytest.raises(OpenRouterError) as exc_info:
                await client.chat(HI)
        assert exc_info.value.kind is ErrorKind.ABORTED
        assert exc_info.value.code == "TIMEOUT"
        assert server.call_count == 1

    async def test_caller_signal_aborts(self, config, no_sleep):
        async def slow(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json=completion_payload())

        token = CancelToken()
        asyncio.get_running_loop().call_later(0.02, token.cancel)
        server = FakeServer(slow)
        async with make_client(config, server, no_sleep) as client:
            with pytest.raises(OpenRouterError) as exc_info:
                await client.chat(HI, RequestConfig(signal=token))
        assert exc_info.value.code == "ABORTED"
        assert exc_info.value.retryable is False
        assert server.call_count == 1

    async def test_pre_cancelled_signal_never_dispatches(self, config):
        token = CancelToken()
        token.cancel()
        server = FakeServer(ok())
        async with make_client(config, server) as client:
            with pytest.raises(OpenRouterError) as exc_info:
                await client.chat(HI, RequestConfig(signal=token))
        assert exc_info.value.is_aborted
        assert server.call_count == 0

    async def test_signal_interrupts_backoff(self, config):
        async def long_sleep(delay):
            await asyncio.sleep(30)

        token = CancelToken()
        asyncio.get_running_loop().call_later(0.02, token.cancel)
        server = FakeServer(status(503))
        async with make_client(config, server, long_sleep) as client:
            with pytest.raises(OpenRouterError) as exc_info:
                await asyncio.wait_for(client.chat(HI, RequestConfig(signal=token)), timeout=1)
        assert exc_info.value.is_aborted
        assert server.call_count == 1


# ---------------------------------------------------------------------------
# Models, cost, config updates
# ---------------------------------------------------------------------------

class TestListModels:
    async def test_parses_descriptors(self, config):
        payload = {
            "data": [
                {
                    "id": "openai/gpt-4o",
                    "name": "GPT-4o",
                    "description": "Omni",
                    "pricing": {"prompt": "0.000005", "completion": "0.000015"},
                    "context_length": 128000,
                },
                {"id": "meta-llama/llama-3-8b-instruct", "name": "Llama 3 8B"},
            ]
        }
        server = FakeServer(lambda r: httpx.Response(200, json=payload))
        async with make_client(config, server) as client:
            models = await client.list_models()
        assert server.requests[0].method == "GET"
        assert server.requests[0].url.path == "/api/v1/models"
        assert [m.id for m in models] == ["openai/gpt-4o", "meta-llama/llama-3-8b-instruct"]
        assert models[0].pricing.prompt == pytest.approx(0.000005)
        assert models[0].context_length == 128000
        assert models[1].pricing is None

    async def test_degraded_entries_fall_back(self, config, caplog):
        payload = {
            "data": [
                {"name": "no id"},
                {"id": "x/y", "name": "XY", "pricing": {"prompt": "free?"}},
            ]
        }
        server = FakeServer(lambda r: httpx.Response(200, json=payload))
        async with make_client(config, server) as client:
            models = await client.list_models()
        assert [m.id for m in models] == ["x/y"]
        assert models[0].pricing is None
        assert "Skipping malformed model descriptor" in caplog.text

    async def test_missing_data_list(self, config):
        server = FakeServer(lambda r: httpx.Response(200, json={"models": []}))
        async with make_client(config, server) as client:
            with pytest.raises(OpenRouterError) as exc_info:
                await client.list_models()
        assert exc_info.value.kind is ErrorKind.DECODE


class TestEstimateCost:
    def test_known_model(self):
        cost = OpenRouterClient.estimate_cost("openai/gpt-4o", 1000, 2000)
        assert cost == pytest.approx(0.005 + 0.03)

    def test_unknown_model(self):
        assert OpenRouterClient.estimate_cost("nobody/nothing", 1000, 1000) == 0.0


class TestUpdateConfig:
    async def test_update_model_and_headers(self, config):
        server = FakeServer(ok())
        async with make_client(config, server) as client:
            client.update_config(model="openai/gpt-4o", site_title="Renamed")
            await client.chat(HI)
        assert server.bodies()[0]["model"] == "openai/gpt-4o"
        assert server.requests[0].headers["X-Title"] == "Renamed"

    async def test_invalid_update_rejected(self, config):
        async with make_client(config, FakeServer(ok())) as client:
            with pytest.raises(OpenRouterError) as exc_info:
                client.update_config(temperature=9)
            assert exc_info.value.kind is ErrorKind.CONFIGURATION
            with pytest.raises(OpenRouterError):
                client.update_config(api_key="")
            assert client.config.temperature == 0.7
            assert client.config.api_key == "test-key"
