"""Structured error type for the OpenRouter client.

Every failure that leaves the client is an :class:`OpenRouterError`.
Callers dispatch on ``kind`` rather than on subclasses.
"""

from __future__ import annotations

import enum
from typing import Any


class ErrorKind(enum.Enum):
    """Failure categories surfaced by the client."""

    CONFIGURATION = "configuration"    # missing API key, bad config
    INVALID_REQUEST = "invalid_request"  # message invariants violated locally
    TRANSPORT = "transport"            # connection-level failure
    RATE_LIMITED = "rate_limited"      # HTTP 429
    SERVER_FAULT = "server_fault"      # HTTP 5xx
    CLIENT_FAULT = "client_fault"      # HTTP 4xx other than 429
    ABORTED = "aborted"                # caller cancel or internal timeout
    DECODE = "decode"                  # 2xx body that is not a valid response


ABORTED_CODE = "ABORTED"
TIMEOUT_CODE = "TIMEOUT"


class OpenRouterError(Exception):
    """Tagged client error carrying status, provider code and retryability."""

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.CLIENT_FAULT,
        status: int | None = None,
        code: str | None = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.status = status
        self.code = code
        self.retryable = retryable

    def __repr__(self) -> str:
        return (
            f"OpenRouterError({self.message!r}, kind={self.kind.value}, "
            f"status={self.status}, code={self.code!r}, "
            f"retryable={self.retryable})"
        )

    @property
    def is_aborted(self) -> bool:
        return self.kind is ErrorKind.ABORTED

    def to_dict(self) -> dict[str, Any]:
        """Plain structured form suitable for handing to a UI layer."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status": self.status,
            "code": self.code,
            "retryable": self.retryable,
        }

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def configuration(cls, message: str) -> OpenRouterError:
        return cls(message, kind=ErrorKind.CONFIGURATION)

    @classmethod
    def invalid_request(cls, message: str) -> OpenRouterError:
        return cls(message, kind=ErrorKind.INVALID_REQUEST)

    @classmethod
    def transport(cls, exc: BaseException) -> OpenRouterError:
        detail = str(exc) or type(exc).__name__
        return cls(f"Network error: {detail}", kind=ErrorKind.TRANSPORT, retryable=True)

    @classmethod
    def aborted(cls, reason: str | None = None) -> OpenRouterError:
        """Cancellation error.  A timeout reason gets its own code."""
        if reason == "timeout":
            return cls(
                "Request timed out",
                kind=ErrorKind.ABORTED,
                code=TIMEOUT_CODE,
            )
        return cls("Request was cancelled", kind=ErrorKind.ABORTED, code=ABORTED_CODE)

    @classmethod
    def from_status(
        cls,
        status: int,
        message: str | None = None,
        code: str | None = None,
    ) -> OpenRouterError:
        """Build the error for a non-2xx HTTP status.

        429 and 5xx are retryable, all other statuses are not.
        """
        if status == 429:
            kind = ErrorKind.RATE_LIMITED
        elif status >= 500:
            kind = ErrorKind.SERVER_FAULT
        else:
            kind = ErrorKind.CLIENT_FAULT
        retryable = status == 429 or status >= 500
        return cls(
            message or f"HTTP {status}",
            kind=kind,
            status=status,
            code=code,
            retryable=retryable,
        )
