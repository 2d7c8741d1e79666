"""Cooperative cancellation and the registry of in-flight streams.

A :class:`CancelToken` plays both the controller and the signal role: the
owner calls :meth:`CancelToken.cancel`, workers poll ``cancelled`` or
``await wait()``.  Tokens can be linked so a child fires when its parent
does, which is how a caller-supplied signal is merged with the client's
own per-request token.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
from typing import Any, Awaitable, Callable, TypeVar

from openrouter_client.errors import OpenRouterError

_logger = logging.getLogger(__name__)

T = TypeVar("T")
Callback = Callable[[], None]


class CancelToken:
    """Cancellation controller/signal for one operation."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._reason: str | None = None
        self._callbacks: list[Callback] = []
        self._waiters: list[asyncio.Future[None]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> bool:
        """Fire the token.  Returns ``False`` if it had already fired.

        Callbacks run in registration order; an exception in one is
        logged and the rest still run.
        """
        with self._lock:
            if self._cancelled:
                return False
            self._cancelled = True
            self._reason = reason
            callbacks, self._callbacks = self._callbacks, []
            waiters, self._waiters = self._waiters, []

        for fut in waiters:
            _resolve_waiter(fut)
        for cb in callbacks:
            try:
                cb()
            except Exception:
                _logger.exception("Cancellation callback %r raised", cb)
        return True

    def add_callback(self, callback: Callback) -> Callable[[], None]:
        """Run *callback* on cancellation.  Returns a remover.

        If the token has already fired the callback runs immediately.
        """
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(callback)
                return lambda: self._remove_callback(callback)
        callback()
        return lambda: None

    def link(self, parent: CancelToken | None) -> Callable[[], None]:
        """Fire this token whenever *parent* fires.  Returns an unlinker."""
        if parent is None:
            return lambda: None
        return parent.add_callback(lambda: self.cancel(parent.reason or "cancelled"))

    async def wait(self) -> None:
        """Suspend until the token fires."""
        with self._lock:
            if self._cancelled:
                return
            fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
            self._waiters.append(fut)
        try:
            await fut
        finally:
            with self._lock:
                if fut in self._waiters:
                    self._waiters.remove(fut)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OpenRouterError.aborted(self._reason)

    def _remove_callback(self, callback: Callback) -> None:
        with self._lock:
            try:
                self._callbacks.remove(callback)
            except ValueError:
                pass


def _resolve_waiter(fut: asyncio.Future[None]) -> None:
    loop = fut.get_loop()
    if loop.is_closed():
        return

    def _set() -> None:
        if not fut.done():
            fut.set_result(None)

    try:
        running = asyncio.get_running_loop()
    except RuntimeError:
        running = None
    if running is loop:
        _set()
    else:
        loop.call_soon_threadsafe(_set)


async def run_cancellable(awaitable: Awaitable[T], token: CancelToken) -> T:
    """Await *awaitable* unless *token* fires first.

    On cancellation the pending work is cancelled and an ``ABORTED``
    :class:`OpenRouterError` is raised.  If the surrounding task is
    cancelled instead, the work is torn down before the
    ``CancelledError`` propagates.
    """
    if token.cancelled:
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        raise OpenRouterError.aborted(token.reason)
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(token.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        waiter.cancel()
        await _cancel_and_drain(task)
        raise
    if task.done():
        waiter.cancel()
        return task.result()

    await _cancel_and_drain(task)
    raise OpenRouterError.aborted(token.reason)


async def _cancel_and_drain(task: asyncio.Future[Any]) -> None:
    """Cancel *task* and wait until it has actually finished."""
    task.cancel()
    await asyncio.wait({task})
    if not task.cancelled() and task.exception() is not None:
        # the work failed while being torn down; the abort wins
        _logger.debug("Cancelled operation raised during shutdown", exc_info=task.exception())


# ---------------------------------------------------------------------------
# Active-request registry
# ---------------------------------------------------------------------------

class ActiveRequestRegistry:
    """Thread-safe map of request id to :class:`CancelToken`."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._tokens: dict[str, CancelToken] = {}

    def register(self, request_id: str, token: CancelToken) -> None:
        with self._lock:
            if request_id in self._tokens:
                raise OpenRouterError.invalid_request(
                    f"Request id already active: {request_id}",
                )
            self._tokens[request_id] = token

    def unregister(self, request_id: str) -> None:
        with self._lock:
            self._tokens.pop(request_id, None)

    def cancel(self, request_id: str) -> bool:
        """Fire and drop one token.  ``False`` if *request_id* is unknown."""
        with self._lock:
            token = self._tokens.pop(request_id, None)
        if token is None:
            return False
        token.cancel()
        return True

    def cancel_all(self) -> int:
        """Fire every tracked token and empty the registry.

        The map is swapped out under the lock, so a concurrent ``register``
        lands either in the cancelled batch or in the fresh map.
        """
        with self._lock:
            tokens, self._tokens = self._tokens, {}
        for request_id, token in tokens.items():
            try:
                token.cancel()
            except Exception:
                _logger.exception("Failed to cancel request %s", request_id)
        if tokens:
            _logger.info("Cancelled %d active request(s)", len(tokens))
        return len(tokens)

    def count(self) -> int:
        with self._lock:
            return len(self._tokens)

    def ids(self) -> list[str]:
        with self._lock:
            return list(self._tokens)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._tokens
