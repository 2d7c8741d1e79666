"""Shared data types for the OpenRouter client.

Wire records are parsed with ``from_dict`` and serialized with ``to_dict``.
Parsers raise ``KeyError`` / ``TypeError`` / ``ValueError`` on malformed
input; callers decide whether that is fatal (non-streaming responses) or
skippable (single stream frames).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Union

from openrouter_client.errors import OpenRouterError

if TYPE_CHECKING:
    from openrouter_client.cancel import CancelToken

Role = Literal["system", "user", "assistant", "tool"]
ImageDetail = Literal["low", "high", "auto"]

_ROLES = ("system", "user", "assistant", "tool")


# ---------------------------------------------------------------------------
# Message content
# ---------------------------------------------------------------------------

@dataclass
class ImageURL:
    url: str
    detail: ImageDetail | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"url": self.url}
        if self.detail:
            out["detail"] = self.detail
        return out


@dataclass
class ContentPart:
    """One part of a multi-part message: a text fragment or an image."""

    type: Literal["text", "image_url"]
    text: str | None = None
    image_url: ImageURL | None = None

    @classmethod
    def of_text(cls, text: str) -> ContentPart:
        return cls(type="text", text=text)

    @classmethod
    def of_image(cls, url: str, detail: ImageDetail | None = None) -> ContentPart:
        return cls(type="image_url", image_url=ImageURL(url=url, detail=detail))

    @property
    def is_empty(self) -> bool:
        if self.type == "text":
            return not self.text
        return self.image_url is None or not self.image_url.url

    def to_dict(self) -> dict[str, Any]:
        if self.type == "image_url" and self.image_url is not None:
            return {"type": "image_url", "image_url": self.image_url.to_dict()}
        return {"type": "text", "text": self.text or ""}

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ContentPart:
        ptype = raw["type"]
        if ptype == "text":
            return cls(type="text", text=raw.get("text", ""))
        if ptype == "image_url":
            img = raw["image_url"]
            return cls(
                type="image_url",
                image_url=ImageURL(url=img["url"], detail=img.get("detail")),
            )
        raise ValueError(f"Unknown content part type: {ptype!r}")


Content = Union[str, list[ContentPart]]


# ---------------------------------------------------------------------------
# Tool types
# ---------------------------------------------------------------------------

@dataclass
class FunctionCall:
    name: str
    arguments: str  # opaque; encoding is the caller's business


@dataclass
class ToolCall:
    """A complete tool invocation attached to an assistant message."""

    id: str
    function: FunctionCall
    type: Literal["function"] = "function"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {
                "name": self.function.name,
                "arguments": self.function.arguments,
            },
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ToolCall:
        func = raw["function"]
        return cls(
            id=raw["id"],
            function=FunctionCall(
                name=func["name"],
                arguments=func.get("arguments", "") or "",
            ),
        )


@dataclass
class ToolDefinition:
    """A function the model may call."""

    name: str
    description: str
    parameters: dict[str, Any] = field(default_factory=dict)
    required: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        params: dict[str, Any] = {"type": "object", "properties": self.parameters}
        if self.required:
            params["required"] = list(self.required)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": params,
            },
        }


@dataclass
class NamedToolChoice:
    """Force the model to call one specific function."""

    name: str

    def to_dict(self) -> dict[str, Any]:
        return {"type": "function", "function": {"name": self.name}}


ToolChoice = Union[Literal["auto", "none"], NamedToolChoice]


# ---------------------------------------------------------------------------
# Chat message
# ---------------------------------------------------------------------------

@dataclass
class ChatMessage:
    role: Role
    content: Content = ""
    name: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    def validate(self) -> None:
        """Check role and the non-empty content rule.

        An assistant message that carries tool calls may have empty
        content; every other message needs some content.
        """
        if self.role not in _ROLES:
            raise OpenRouterError.invalid_request(f"Unknown message role: {self.role!r}")
        if self.role == "assistant" and self.tool_calls:
            return
        if isinstance(self.content, str):
            empty = not self.content
        else:
            empty = not self.content or all(p.is_empty for p in self.content)
        if empty:
            raise OpenRouterError.invalid_request(
                f"Message with role {self.role!r} requires non-empty content",
            )

    @property
    def text(self) -> str:
        """Content flattened to plain text; image parts become ``[image_url]``."""
        if isinstance(self.content, str):
            return self.content
        return "".join(
            (p.text or "") if p.type == "text" else f"[{p.type}]"
            for p in self.content
        )

    def wire_content(self) -> Any:
        if isinstance(self.content, str):
            return self.content
        return [p.to_dict() for p in self.content]

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"role": self.role, "content": self.wire_content()}
        if self.name is not None:
            out["name"] = self.name
        if self.tool_calls:
            out["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            out["tool_call_id"] = self.tool_call_id
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ChatMessage:
        content = raw.get("content")
        if isinstance(content, list):
            content = [ContentPart.from_dict(p) for p in content]
        elif content is None:
            content = ""
        elif not isinstance(content, str):
            raise TypeError(f"Unsupported content type: {type(content).__name__}")
        tool_calls = raw.get("tool_calls")
        return cls(
            role=raw["role"],
            content=content,
            name=raw.get("name"),
            tool_calls=[ToolCall.from_dict(tc) for tc in tool_calls] if tool_calls else None,
            tool_call_id=raw.get("tool_call_id"),
        )


# ---------------------------------------------------------------------------
# Request configuration
# ---------------------------------------------------------------------------

@dataclass
class RequestConfig:
    """Per-call options.  ``None`` means "use the client default"."""

    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    tools: list[ToolDefinition] | None = None
    tool_choice: ToolChoice | None = None
    stream: bool = False
    signal: CancelToken | None = None
    request_id: str | None = None  # stream_chat only; generated when absent


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Usage:
        return cls(
            prompt_tokens=int(raw.get("prompt_tokens", 0) or 0),
            completion_tokens=int(raw.get("completion_tokens", 0) or 0),
            total_tokens=int(raw.get("total_tokens", 0) or 0),
        )


@dataclass
class Delta:
    """Partial message carried by one stream frame."""

    role: Role | None = None
    content: str | None = None
    # Fragments may lack id/name, so they stay as raw dicts.
    tool_calls: list[dict[str, Any]] | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Delta:
        if not isinstance(raw, dict):
            raise TypeError("delta must be an object")
        return cls(
            role=raw.get("role"),
            content=raw.get("content"),
            tool_calls=raw.get("tool_calls"),
        )


@dataclass
class ChunkChoice:
    index: int
    delta: Delta
    finish_reason: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ChunkChoice:
        return cls(
            index=int(raw.get("index", 0)),
            delta=Delta.from_dict(raw.get("delta") or {}),
            finish_reason=raw.get("finish_reason"),
        )


@dataclass
class StreamChunk:
    """One decoded ``data:`` frame of a streaming completion."""

    id: str
    created: int
    model: str
    choices: list[ChunkChoice] = field(default_factory=list)
    usage: Usage | None = None
    object: str = "chat.completion.chunk"

    @property
    def is_terminal(self) -> bool:
        return any(c.finish_reason is not None for c in self.choices)

    @property
    def text(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].delta.content or ""

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> StreamChunk:
        if not isinstance(raw, dict):
            raise TypeError("chunk must be an object")
        choices = raw["choices"]
        if not isinstance(choices, list):
            raise TypeError("choices must be a list")
        usage = raw.get("usage")
        return cls(
            id=str(raw.get("id", "")),
            created=int(raw.get("created", 0)),
            model=str(raw.get("model", "")),
            choices=[ChunkChoice.from_dict(c) for c in choices],
            usage=Usage.from_dict(usage) if usage else None,
            object=raw.get("object", "chat.completion.chunk"),
        )


@dataclass
class CompletionChoice:
    index: int
    message: ChatMessage
    finish_reason: str | None = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> CompletionChoice:
        return cls(
            index=int(raw.get("index", 0)),
            message=ChatMessage.from_dict(raw["message"]),
            finish_reason=raw.get("finish_reason"),
        )


@dataclass
class CompletionResponse:
    """Fully aggregated non-streaming completion."""

    id: str
    created: int
    model: str
    choices: list[CompletionChoice]
    usage: Usage
    object: str = "chat.completion"
    system_fingerprint: str | None = None

    @property
    def text(self) -> str:
        if not self.choices:
            return ""
        return self.choices[0].message.text

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> CompletionResponse:
        if not isinstance(raw, dict):
            raise TypeError("response must be an object")
        return cls(
            id=str(raw.get("id", "")),
            created=int(raw.get("created", 0)),
            model=str(raw.get("model", "")),
            choices=[CompletionChoice.from_dict(c) for c in raw["choices"]],
            usage=Usage.from_dict(raw["usage"]),
            object=raw.get("object", "chat.completion"),
            system_fingerprint=raw.get("system_fingerprint"),
        )


# ---------------------------------------------------------------------------
# Models endpoint
# ---------------------------------------------------------------------------

@dataclass
class ModelPricing:
    prompt: float
    completion: float


@dataclass
class ModelInfo:
    id: str
    name: str
    description: str | None = None
    pricing: ModelPricing | None = None
    context_length: int | None = None
