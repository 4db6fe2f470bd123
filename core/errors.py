"""
Error taxonomy for the swap pipeline.

Every stage raises a subclass of SwapError. None of them are retried by the
pipeline; the caller decides whether to run again.
"""
from __future__ import annotations

from typing import Optional


class ConfigError(ValueError):
    """Raised when required configuration is missing or malformed."""


class InvalidAmount(ValueError):
    """Raised when the swap amount is not positive in the input token's smallest unit."""


class SwapError(Exception):
    """Base class for terminal pipeline failures."""


class ResolutionFailure(SwapError):
    """Token metadata could not be read from the given address."""

    def __init__(self, address: str, reason: str) -> None:
        self.address = address
        self.reason = reason
        super().__init__(f"Cannot resolve token {address}: {reason}")


class DiscoveryFailure(SwapError):
    """The pool index returned nothing usable."""


class InsufficientBalance(SwapError):
    def __init__(self, symbol: str, required: int, available: int) -> None:
        self.symbol = symbol
        self.required = int(required)
        self.available = int(available)
        super().__init__(
            f"Not enough {symbol}. Needs {self.required}, but balance is {self.available}."
        )


class NoRouteFound(SwapError):
    """The routing service returned no usable path."""


class InsufficientGas(SwapError):
    def __init__(self, required: int, available: int) -> None:
        self.required = int(required)
        self.available = int(available)
        super().__init__(
            f"Not enough native balance for gas. Needs {self.required} wei, but balance is {self.available} wei."
        )


class ApprovalFailed(SwapError):
    def __init__(self, symbol: str, reason: str, tx_hash: Optional[str] = None) -> None:
        self.symbol = symbol
        self.reason = reason
        self.tx_hash = tx_hash
        suffix = f" (tx {tx_hash})" if tx_hash else ""
        super().__init__(f"Approval of {symbol} failed: {reason}{suffix}")


class SubmissionReverted(SwapError):
    def __init__(self, reason: str, tx_hash: Optional[str] = None) -> None:
        self.reason = reason
        self.tx_hash = tx_hash
        suffix = f" (tx {tx_hash})" if tx_hash else ""
        super().__init__(f"Swap reverted: {reason}{suffix}")


class StaleQuote(SubmissionReverted):
    """The route quote expired before the swap could be sent."""

    def __init__(self, deadline: int, now: int) -> None:
        self.deadline = int(deadline)
        self.now = int(now)
        super().__init__(f"route quote expired at {self.deadline} (now {self.now})")


class ConfirmationTimeout(SwapError):
    def __init__(self, tx_hash: str, timeout: float, confirmations: int = 0) -> None:
        self.tx_hash = tx_hash
        self.timeout = timeout
        self.confirmations = confirmations
        super().__init__(
            f"Transaction {tx_hash} not confirmed within {timeout:.0f}s "
            f"({confirmations} confirmations observed)"
        )
