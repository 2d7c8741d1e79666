"""Client configuration and per-request option resolution.

Config discovery (first match wins):
  1. Explicit path passed to :func:`load_config`
  2. ``./openrouter.yaml``
  3. ``~/.openrouter/openrouter.yaml``
  4. Built-in defaults

``OPENROUTER_API_KEY`` fills ``api_key`` when the file leaves it empty.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Sequence

import yaml
from pydantic import BaseModel, Field

from openrouter_client.types import ChatMessage, RequestConfig, ToolChoice, ToolDefinition

_logger = logging.getLogger(__name__)

BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "anthropic/claude-3-sonnet-20240229"
API_KEY_ENV = "OPENROUTER_API_KEY"

CONFIG_FILENAME = "openrouter.yaml"


class ClientConfig(BaseModel):
    """Client-level defaults and behaviour knobs.

    Durations are in seconds.
    """

    api_key: str = ""
    base_url: str = BASE_URL
    model: str = DEFAULT_MODEL
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    max_tokens: int = Field(default=4096, gt=0)
    top_p: float = Field(default=1.0, ge=0.0, le=1.0)
    frequency_penalty: float = Field(default=0.0, ge=-2.0, le=2.0)
    presence_penalty: float = Field(default=0.0, ge=-2.0, le=2.0)
    # Attribution headers (HTTP-Referer / X-Title)
    site_url: str | None = None
    site_title: str | None = None
    timeout: float = Field(default=60.0, gt=0)
    retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=1.0, ge=0)
    enable_cache: bool = True
    cache_ttl: float = Field(default=300.0, ge=0)
    cache_size: int = Field(default=100, ge=1)

    model_config = {"extra": "forbid", "validate_assignment": True}


def load_config(
    config_path: str | Path | None = None,
) -> tuple[ClientConfig, Path | None]:
    """Load configuration from YAML.

    Returns ``(config, resolved_path)``; *resolved_path* is ``None`` when
    no file was found and defaults are used.  An explicit path that does
    not exist raises ``FileNotFoundError``.
    """
    if config_path is None:
        for candidate in (
            Path.cwd() / CONFIG_FILENAME,
            Path.home() / ".openrouter" / CONFIG_FILENAME,
        ):
            if candidate.exists():
                config_path = candidate
                break

    raw: dict[str, Any] = {}
    resolved: Path | None = None
    if config_path is not None:
        resolved = Path(config_path)
        if not resolved.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        _logger.info("Loading config from %s", resolved)
        with open(resolved) as f:
            raw = yaml.safe_load(f) or {}
        resolved = resolved.resolve()
    else:
        _logger.info("No config file found -- using defaults")

    if not raw.get("api_key"):
        env_key = os.environ.get(API_KEY_ENV, "")
        if env_key:
            raw["api_key"] = env_key

    return ClientConfig.model_validate(raw), resolved


# ---------------------------------------------------------------------------
# Per-request resolution
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ResolvedRequest:
    """A :class:`RequestConfig` with every sampling field filled in."""

    model: str
    temperature: float
    max_tokens: int
    top_p: float
    frequency_penalty: float
    presence_penalty: float
    tools: tuple[ToolDefinition, ...] | None = None
    tool_choice: ToolChoice | None = None
    stream: bool = False

    def to_body(self, messages: Sequence[ChatMessage], stream: bool) -> dict[str, Any]:
        """Wire body for ``POST /chat/completions``."""
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
            "stream": stream,
        }
        if self.tools:
            body["tools"] = [t.to_dict() for t in self.tools]
        if self.tool_choice is not None:
            if isinstance(self.tool_choice, str):
                body["tool_choice"] = self.tool_choice
            else:
                body["tool_choice"] = self.tool_choice.to_dict()
        return body


def _pick(value: Any, default: Any) -> Any:
    return default if value is None else value


def resolve_request(
    request: RequestConfig | None,
    defaults: ClientConfig,
) -> ResolvedRequest:
    """Merge per-call options over client defaults."""
    request = request or RequestConfig()
    return ResolvedRequest(
        model=_pick(request.model, defaults.model),
        temperature=_pick(request.temperature, defaults.temperature),
        max_tokens=_pick(request.max_tokens, defaults.max_tokens),
        top_p=_pick(request.top_p, defaults.top_p),
        frequency_penalty=_pick(request.frequency_penalty, defaults.frequency_penalty),
        presence_penalty=_pick(request.presence_penalty, defaults.presence_penalty),
        tools=tuple(request.tools) if request.tools else None,
        tool_choice=request.tool_choice,
        stream=request.stream,
    )
