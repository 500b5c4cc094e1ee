"""Errors raised by the remote queue client.

Submission, polling and recovery catch these and return failures as data, so
they never escape a polling loop.
"""

from __future__ import annotations


class RelayError(RuntimeError):
    """Base error for remote queue interactions."""


class QueueTransportError(RelayError):
    """Network failure, non-2xx response or undecodable body."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class QueueProtocolError(RelayError):
    """Decodable response with a shape the queue contract does not allow."""


__all__ = [
    "QueueProtocolError",
    "QueueTransportError",
    "RelayError",
]
