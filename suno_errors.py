"""Error taxonomy for the Suno relay client.

Every error carries the phase that failed (handshake, renewal, transport,
timeout, queue task) and the public operation that triggered it, so callers
can tell token problems from network problems from remote rejections.
"""

from __future__ import annotations


class SunoError(Exception):
    """Base class for all client failures."""

    phase = "client"

    def __init__(self, message: str, *, operation: str | None = None) -> None:
        self.message = message
        self.operation = operation
        super().__init__(str(self))

    def __str__(self) -> str:
        where = f" during {self.operation}" if self.operation else ""
        return f"{self.phase} failed{where}: {self.message}"


class HandshakeError(SunoError):
    """Session discovery failed or returned no usable session id."""

    phase = "handshake"


class TokenRenewalError(SunoError):
    """Exchanging the session for a bearer token failed."""

    phase = "renewal"


class TransportError(SunoError):
    """Network-level failure talking to the studio API."""

    phase = "transport"

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        status_code: int | None = None,
    ) -> None:
        self.status_code = status_code
        super().__init__(message, operation=operation)


class RemoteRejectionError(TransportError):
    """The studio API answered with a non-success status."""


class RequestTimeoutError(SunoError, TimeoutError):
    """A bound network call exceeded its deadline."""

    phase = "timeout"


class RequestAbortedError(RequestTimeoutError):
    """A bound network call was stopped through its trace id."""


class QueueTaskError(SunoError):
    """A queued generation task produced an unusable result."""

    phase = "queue task"
