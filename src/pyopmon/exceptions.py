"""Custom exception hierarchy for pyopmon."""

from __future__ import annotations


class OpmonError(Exception):
    """Base exception for all pyopmon errors."""


class OpmonConfigError(OpmonError):
    """Invalid or missing configuration."""


class OpmonTransportError(OpmonError):
    """Push channel failure (refused connection, non-200, stream closed).

    This is the only error class that drives the connector's reconnect
    state machine.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class OpmonDecodeError(OpmonError):
    """A single inbound message could not be decoded into an envelope.

    The message is dropped; the connection is unaffected.
    """

    def __init__(self, message: str, *, raw: str = "") -> None:
        self.raw = raw
        super().__init__(message)
