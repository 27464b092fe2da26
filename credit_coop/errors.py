"""Error taxonomy for the Secured Line client."""
from __future__ import annotations

from typing import Any


class CreditCoopError(Exception):
    """Base class for every error raised by this package."""


class ConfigurationError(CreditCoopError, ValueError):
    """Invalid construction input: unknown network, malformed key or address."""


class InterfaceMismatchError(CreditCoopError, TypeError):
    """A call does not match the shape declared by the contract interface."""


class RemoteQueryError(CreditCoopError):
    """A read failed at the transport or evaluation level.

    Reads are side-effect free, so the caller may retry; nothing here does.
    """

    def __init__(
        self,
        message: str,
        *,
        method: str = "",
        reason: str | None = None,
        data: str | None = None,
        tx_hash: str | None = None,
    ) -> None:
        super().__init__(message)
        self.method = method
        self.reason = reason
        self.data = data
        self.tx_hash = tx_hash


class SubmissionError(CreditCoopError):
    """A write could not be dispatched to the remote service."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class WriteRejectedError(CreditCoopError):
    """The contract executed the request and reverted it.

    ``reason`` is the remote-supplied code verbatim: the custom error name
    (``NoLiquidity``, ``PositionIsClosed``...), the ``Error(string)`` text or
    ``Panic(0x..)``.
    """

    def __init__(
        self,
        reason: str,
        *,
        function: str = "",
        error_args: tuple[Any, ...] = (),
        data: str | None = None,
        tx_hash: str | None = None,
    ) -> None:
        message = f"{function} reverted: {reason}" if function else f"reverted: {reason}"
        if error_args:
            message += f" {error_args}"
        super().__init__(message)
        self.reason = reason
        self.function = function
        self.error_args = error_args
        self.data = data
        self.tx_hash = tx_hash
