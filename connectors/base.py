from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple


EXACT_INPUT = "EXACT_INPUT"


@dataclass(frozen=True)
class TransactionRequest:
    to: str
    sender: str
    data: bytes
    value: int
    gas_limit: int
    gas_price: int

    @property
    def gas_budget(self) -> int:
        """Worst-case native spend: gas at the declared price plus value."""
        return int(self.gas_limit) * int(self.gas_price) + int(self.value)


@dataclass(frozen=True)
class RouteRequest:
    token_in: str
    amount_in: int
    token_out: str
    recipient: str
    slippage_tolerance: Decimal
    deadline: int
    executor_variant: str
    trade_type: str = EXACT_INPUT


@dataclass(frozen=True)
class RouteDescriptor:
    """What a routing service hands back for one request."""
    calldata: bytes
    value: int
    quote: int
    minimum_out: int
    path: Tuple[str, ...]
    fees: Tuple[int, ...] = field(default_factory=tuple)
    path_symbols: Tuple[str, ...] = field(default_factory=tuple)


class LedgerReader(ABC):
    """
    Read-only view of the chain.

    Amounts are always integers in the token's smallest unit.
    """

    @abstractmethod
    def get_code(self, address: str) -> bytes:
        """Return deployed bytecode (empty for externally owned accounts)."""

    @abstractmethod
    def erc20_name(self, token: str) -> str: ...

    @abstractmethod
    def erc20_symbol(self, token: str) -> str: ...

    @abstractmethod
    def erc20_decimals(self, token: str) -> int: ...

    @abstractmethod
    def erc20_balance(self, token: str, owner: str) -> int: ...

    @abstractmethod
    def erc20_allowance(self, token: str, owner: str, spender: str) -> int: ...

    @abstractmethod
    def native_balance(self, owner: str) -> int: ...

    @abstractmethod
    def gas_price(self) -> int: ...

    @abstractmethod
    def block_number(self) -> int: ...

    @abstractmethod
    def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        """Return the receipt (with 'status' and 'blockNumber') or None while pending."""

    @abstractmethod
    def estimate_gas(self, sender: str, to: str, data: bytes, value: int) -> int: ...


class LedgerWriter(ABC):
    """State-mutating side of the chain. One signing account per writer."""

    @property
    @abstractmethod
    def address(self) -> str: ...

    @abstractmethod
    def approve(self, token: str, spender: str, amount: int) -> str:
        """Submit an ERC20 approve. Return tx hash."""

    @abstractmethod
    def send_transaction(self, request: TransactionRequest) -> str:
        """Sign and broadcast. Return tx hash."""


class PoolIndex(ABC):
    @abstractmethod
    def newest_pools(self, reference_asset: str, limit: int = 1) -> List[Dict[str, Any]]:
        """
        Return pool-creation events containing reference_asset, newest first.

        Each event is a dict with at least 'token0' and 'token1' addresses and
        'createdAtTimestamp'. Raise on transport or query errors.
        """


class RoutingService(ABC):
    @abstractmethod
    def route(self, request: RouteRequest) -> Optional[RouteDescriptor]:
        """Return the best route found, or None when no path exists."""
