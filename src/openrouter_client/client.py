"""Async OpenRouter chat client.

Speaks the OpenAI-compatible ``/chat/completions`` dialect over
``httpx.AsyncClient``.  Exposes ``async def chat()`` for aggregated
responses and ``async def stream_chat()`` as an async generator of
:class:`StreamChunk`.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, AsyncIterator, Iterable, Mapping, Union

import httpx
from pydantic import ValidationError

from openrouter_client.cache import ResponseCache, fingerprint
from openrouter_client.cancel import ActiveRequestRegistry, CancelToken, run_cancellable
from openrouter_client.config import DEFAULT_MODEL, ClientConfig, resolve_request
from openrouter_client.errors import ErrorKind, OpenRouterError
from openrouter_client.pricing import estimate_cost as _estimate_cost
from openrouter_client.retry import Sleep, execute_with_retry
from openrouter_client.sse import iter_sse_chunks
from openrouter_client.types import (
    ChatMessage,
    CompletionResponse,
    ModelInfo,
    ModelPricing,
    RequestConfig,
    StreamChunk,
)

_logger = logging.getLogger(__name__)

MessageLike = Union[ChatMessage, Mapping[str, Any]]

_CONNECT_TIMEOUT = 30.0


def _coerce_messages(messages: Iterable[MessageLike]) -> list[ChatMessage]:
    """Accept dataclass or wire-dict messages and validate each one."""
    out: list[ChatMessage] = []
    for m in messages:
        if isinstance(m, ChatMessage):
            msg = m
        else:
            try:
                msg = ChatMessage.from_dict(dict(m))
            except (KeyError, TypeError, ValueError) as e:
                raise OpenRouterError.invalid_request(f"Invalid message: {e}") from e
        msg.validate()
        out.append(msg)
    if not out:
        raise OpenRouterError.invalid_request("At least one message is required")
    return out


def _error_from_response(resp: httpx.Response) -> OpenRouterError:
    """Map a non-2xx response to an :class:`OpenRouterError`.

    The body is decoded as ``{"error": {"message", "code"}}`` when
    possible; otherwise the message falls back to ``HTTP <status>``.
    """
    message: str | None = None
    code: str | None = None
    try:
        payload = resp.json()
    except ValueError:
        _logger.debug("Non-JSON error body for HTTP %d", resp.status_code)
        payload = None
    if isinstance(payload, dict) and isinstance(payload.get("error"), dict):
        err = payload["error"]
        if err.get("message"):
            message = str(err["message"])
        if err.get("code") is not None:
            code = str(err["code"])
    return OpenRouterError.from_status(resp.status_code, message, code)


def _parse_model_info(raw: dict[str, Any]) -> ModelInfo:
    pricing: ModelPricing | None = None
    raw_pricing = raw.get("pricing")
    if raw_pricing is not None:
        try:
            pricing = ModelPricing(
                prompt=float(raw_pricing["prompt"]),
                completion=float(raw_pricing["completion"]),
            )
        except (KeyError, TypeError, ValueError):
            _logger.warning("Unreadable pricing for model %s, leaving it unset", raw.get("id"))
    context_length = raw.get("context_length")
    return ModelInfo(
        id=raw["id"],
        name=raw.get("name") or raw["id"],
        description=raw.get("description"),
        pricing=pricing,
        context_length=int(context_length) if context_length is not None else None,
    )


async def _next_chunk(chunks: AsyncIterator[StreamChunk]) -> StreamChunk | None:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


class OpenRouterClient:
    """Async client for the OpenRouter chat completions API."""

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if not config.api_key:
            raise OpenRouterError.configuration("API key is required")
        self.config = config
        self._sleep = sleep
        self._cache: ResponseCache[CompletionResponse] = ResponseCache(
            max_size=config.cache_size, default_ttl=config.cache_ttl,
        )
        self._registry = ActiveRequestRegistry()
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers=self._headers(),
            timeout=httpx.Timeout(config.timeout, connect=_CONNECT_TIMEOUT),
            transport=transport,
        )

    async def __aenter__(self) -> OpenRouterClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.config.site_url:
            headers["HTTP-Referer"] = self.config.site_url
        if self.config.site_title:
            headers["X-Title"] = self.config.site_title
        return headers

    # ------------------------------------------------------------------
    # Non-streaming chat
    # ------------------------------------------------------------------

    async def chat(
        self,
        messages: Iterable[MessageLike],
        config: RequestConfig | None = None,
    ) -> CompletionResponse:
        """Send a chat request and return the aggregated response.

        Identical requests within the cache TTL are answered from the
        cache without touching the network.
        """
        msgs = _coerce_messages(messages)
        resolved = resolve_request(config, self.config)
        signal = config.signal if config else None

        cache_key: str | None = None
        if self.config.enable_cache and not resolved.stream:
            cache_key = fingerprint(msgs, resolved)
            cached = self._cache.get(cache_key)
            if cached is not None:
                _logger.debug("Cache hit for %s", cache_key[:12])
                return cached

        body = resolved.to_body(msgs, stream=False)
        data = await self._request_json("POST", "/chat/completions", body=body, signal=signal)
        try:
            response = CompletionResponse.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise OpenRouterError(
                f"Invalid completion response: {e}", kind=ErrorKind.DECODE,
            ) from e

        if cache_key is not None:
            self._cache.set(cache_key, response)
        return response

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        body: dict[str, Any] | None = None,
        signal: CancelToken | None = None,
    ) -> Any:
        async def attempt() -> Any:
            return await self._send_once(method, url, body, signal)

        return await execute_with_retry(
            attempt, self.config.retries, self.config.retry_delay,
            sleep=self._sleep, token=signal,
        )

    async def _send_once(
        self,
        method: str,
        url: str,
        body: dict[str, Any] | None,
        signal: CancelToken | None,
    ) -> Any:
        """One attempt, cancelled by the caller's signal or by the timeout."""
        token = CancelToken()
        unlink = token.link(signal)
        timer = asyncio.get_running_loop().call_later(
            self.config.timeout, token.cancel, "timeout",
        )
        try:
            resp = await run_cancellable(
                self._client.request(method, url, json=body), token,
            )
        except httpx.TransportError as e:
            raise OpenRouterError.transport(e) from e
        finally:
            timer.cancel()
            unlink()

        if not resp.is_success:
            raise _error_from_response(resp)
        try:
            return resp.json()
        except ValueError as e:
            raise OpenRouterError(
                "Response body is not valid JSON", kind=ErrorKind.DECODE,
                status=resp.status_code,
            ) from e

    # ------------------------------------------------------------------
    # Streaming chat
    # ------------------------------------------------------------------

    async def stream_chat(
        self,
        messages: Iterable[MessageLike],
        config: RequestConfig | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a chat completion.  Yields :class:`StreamChunk` in order.

        The request is tracked under ``config.request_id`` (or a generated
        id) so :meth:`cancel_request` can stop it.  Cancellation raises an
        ``ABORTED`` :class:`OpenRouterError`.  The response is closed and
        the id released on every exit path.
        """
        msgs = _coerce_messages(messages)
        resolved = resolve_request(config, self.config)
        signal = config.signal if config else None
        request_id = (config.request_id if config else None) or uuid.uuid4().hex

        token = CancelToken()
        self._registry.register(request_id, token)
        unlink = token.link(signal)
        response: httpx.Response | None = None
        chunks: AsyncIterator[StreamChunk] | None = None
        try:
            body = resolved.to_body(msgs, stream=True)

            async def attempt() -> httpx.Response:
                return await self._open_stream(body, token)

            response = await execute_with_retry(
                attempt, self.config.retries, self.config.retry_delay,
                sleep=self._sleep, token=token,
            )
            chunks = iter_sse_chunks(response.aiter_bytes())
            while True:
                chunk = await run_cancellable(_next_chunk(chunks), token)
                if chunk is None:
                    break
                token.raise_if_cancelled()
                yield chunk
        except httpx.TransportError as e:
            raise OpenRouterError.transport(e) from e
        finally:
            try:
                if chunks is not None:
                    await chunks.aclose()
                if response is not None:
                    await response.aclose()
            finally:
                unlink()
                self._registry.unregister(request_id)

    async def _open_stream(self, body: dict[str, Any], token: CancelToken) -> httpx.Response:
        request = self._client.build_request("POST", "/chat/completions", json=body)
        try:
            response = await run_cancellable(self._client.send(request, stream=True), token)
        except httpx.TransportError as e:
            raise OpenRouterError.transport(e) from e
        if response.is_success:
            return response
        try:
            await response.aread()
        finally:
            await response.aclose()
        raise _error_from_response(response)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    def cancel_request(self, request_id: str) -> bool:
        return self._registry.cancel(request_id)

    def cancel_all_requests(self) -> int:
        return self._registry.cancel_all()

    @property
    def active_request_count(self) -> int:
        return self._registry.count()

    def active_request_ids(self) -> list[str]:
        return self._registry.ids()

    # ------------------------------------------------------------------
    # Models, cost, config
    # ------------------------------------------------------------------

    async def list_models(self, signal: CancelToken | None = None) -> list[ModelInfo]:
        """Fetch the provider's model catalogue.

        Descriptors without an id are skipped; unreadable pricing is left
        unset.  Both are logged at WARNING and the call still succeeds.
        """
        data = await self._request_json("GET", "/models", signal=signal)
        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise OpenRouterError(
                "Models response has no data list", kind=ErrorKind.DECODE,
            )
        models: list[ModelInfo] = []
        for raw in entries:
            try:
                models.append(_parse_model_info(raw))
            except (KeyError, TypeError, ValueError) as e:
                _logger.warning("Skipping malformed model descriptor: %s", e)
        return models

    @staticmethod
    def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
        return _estimate_cost(model, input_tokens, output_tokens)

    def update_config(self, **changes: Any) -> None:
        """Apply validated changes to the client configuration."""
        try:
            new = ClientConfig.model_validate({**self.config.model_dump(), **changes})
        except ValidationError as e:
            raise OpenRouterError.configuration(f"Invalid configuration: {e}") from e
        if not new.api_key:
            raise OpenRouterError.configuration("API key is required")
        if new.cache_size != self.config.cache_size:
            self._cache = ResponseCache(max_size=new.cache_size, default_ttl=new.cache_ttl)
        else:
            self._cache.default_ttl = new.cache_ttl
        self.config = new
        self._client.base_url = new.base_url
        self._client.headers = self._headers()
        self._client.timeout = httpx.Timeout(new.timeout, connect=_CONNECT_TIMEOUT)

    def clear_cache(self) -> None:
        self._cache.clear()

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()


# ---------------------------------------------------------------------------
# One-shot helpers
# ---------------------------------------------------------------------------

async def send_message(
    messages: Iterable[MessageLike],
    api_key: str,
    model: str = DEFAULT_MODEL,
) -> str:
    """Single non-streaming request; returns the reply text."""
    async with OpenRouterClient(ClientConfig(api_key=api_key, model=model)) as client:
        response = await client.chat(messages)
    return response.text


async def stream_message(
    messages: Iterable[MessageLike],
    api_key: str,
    model: str = DEFAULT_MODEL,
    signal: CancelToken | None = None,
) -> AsyncIterator[str]:
    """Stream reply text deltas for a single request."""
    async with OpenRouterClient(ClientConfig(api_key=api_key, model=model)) as client:
        async for chunk in client.stream_chat(messages, RequestConfig(signal=signal)):
            if chunk.text:
                yield chunk.text
