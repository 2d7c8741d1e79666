"""Bounded, time-expiring response cache."""

from __future__ import annotations

import hashlib
import json
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, Sequence, TypeVar

if TYPE_CHECKING:
    from openrouter_client.config import ResolvedRequest
    from openrouter_client.types import ChatMessage

V = TypeVar("V")

DEFAULT_MAX_SIZE = 100
DEFAULT_TTL = 300.0  # seconds


@dataclass
class _Entry(Generic[V]):
    value: V
    expires_at: float


class ResponseCache(Generic[V]):
    """LRU cache with lazy per-entry expiry.

    The ``OrderedDict`` is kept in recency order: oldest first, most
    recently read or written last.  Eviction pops from the front.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: float = DEFAULT_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: OrderedDict[str, _Entry[V]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: str) -> V | None:
        with self._lock:
            entry = self._live_entry(key)
            if entry is None:
                return None
            self._entries.move_to_end(key)
            return entry.value

    def set(self, key: str, value: V, ttl: float | None = None) -> None:
        expires_at = self._clock() + (self.default_ttl if ttl is None else ttl)
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            elif len(self._entries) >= self.max_size:
                self._entries.popitem(last=False)
            self._entries[key] = _Entry(value=value, expires_at=expires_at)

    def has(self, key: str) -> bool:
        with self._lock:
            return self._live_entry(key) is not None

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _live_entry(self, key: str) -> _Entry[V] | None:
        # caller holds the lock
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() > entry.expires_at:
            del self._entries[key]
            return None
        return entry


def fingerprint(messages: Sequence[ChatMessage], resolved: ResolvedRequest) -> str:
    """Stable cache key for a non-streaming request.

    Only role/content of each message and the sampling fields that change
    the output take part.  Keys are sorted so field order never matters.
    """
    key_data: dict[str, Any] = {
        "messages": [
            {"role": m.role, "content": m.wire_content()} for m in messages
        ],
        "model": resolved.model,
        "temperature": resolved.temperature,
        "max_tokens": resolved.max_tokens,
        "top_p": resolved.top_p,
    }
    encoded = json.dumps(
        key_data, sort_keys=True, separators=(",", ":"), ensure_ascii=False,
    )
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()
