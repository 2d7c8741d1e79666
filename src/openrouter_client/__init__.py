"""Async streaming chat client for OpenRouter."""

from openrouter_client.cache import ResponseCache, fingerprint
from openrouter_client.cancel import ActiveRequestRegistry, CancelToken
from openrouter_client.client import OpenRouterClient, send_message, stream_message
from openrouter_client.config import ClientConfig, load_config, resolve_request
from openrouter_client.errors import ErrorKind, OpenRouterError
from openrouter_client.pricing import MODEL_PRICING, estimate_cost
from openrouter_client.retry import execute_with_retry, is_retryable
from openrouter_client.sse import iter_sse_chunks
from openrouter_client.types import (
    ChatMessage,
    CompletionResponse,
    ContentPart,
    ModelInfo,
    NamedToolChoice,
    RequestConfig,
    StreamChunk,
    ToolCall,
    ToolDefinition,
)

__all__ = [
    "ActiveRequestRegistry",
    "CancelToken",
    "ChatMessage",
    "ClientConfig",
    "CompletionResponse",
    "ContentPart",
    "ErrorKind",
    "MODEL_PRICING",
    "ModelInfo",
    "NamedToolChoice",
    "OpenRouterClient",
    "OpenRouterError",
    "RequestConfig",
    "ResponseCache",
    "StreamChunk",
    "ToolCall",
    "ToolDefinition",
    "estimate_cost",
    "execute_with_retry",
    "fingerprint",
    "is_retryable",
    "iter_sse_chunks",
    "load_config",
    "resolve_request",
    "send_message",
    "stream_message",
]
