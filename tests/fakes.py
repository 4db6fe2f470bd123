"""
In-memory collaborators for pipeline tests.

FakeLedger keeps an ordered ``events`` log of every state-mutating call and
every confirmation observed, so tests can assert on ordering.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from connectors.base import (
    LedgerReader,
    LedgerWriter,
    PoolIndex,
    RouteDescriptor,
    RouteRequest,
    RoutingService,
    TransactionRequest,
)
from core.config import SwapSettings


WALLET = "0x1111111111111111111111111111111111111111"
ROUTER = "0x2222222222222222222222222222222222222222"
TOKEN_A = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
TOKEN_B = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
REFERENCE = TOKEN_A

ONE = 10 ** 18


class FakeLedger(LedgerReader, LedgerWriter):
    def __init__(
        self,
        tokens: Optional[Dict[str, Tuple[str, str, int]]] = None,
        balances: Optional[Dict[str, int]] = None,
        allowances: Optional[Dict[str, int]] = None,
        native: int = 10 * ONE,
        gas_price: int = 10 ** 9,
        gas_estimate: int = 150_000,
        receipt_status: Optional[Dict[str, int]] = None,
        confirm_after_polls: int = 0,
        wallet: str = WALLET,
    ) -> None:
        # address -> (name, symbol, decimals)
        self.tokens = tokens if tokens is not None else {
            TOKEN_A: ("Token A", "TKA", 18),
            TOKEN_B: ("Token B", "TKB", 18),
        }
        self.balances = dict(balances or {})
        self.allowances = dict(allowances or {})
        self.native = native
        self._gas_price = gas_price
        self.gas_estimate = gas_estimate
        # kind -> status to report ("approval" / "swap")
        self.receipt_status = receipt_status or {}
        self.confirm_after_polls = confirm_after_polls
        self.wallet = wallet
        self.block = 100
        self.events: List[Tuple[str, Any]] = []
        self.sent: List[Tuple[str, Any]] = []
        self.metadata_reads = 0
        self.failing_reads: Dict[str, int] = {}
        self.estimate_error: Optional[Exception] = None
        self.never_mine = False
        self._pending: Dict[str, Dict[str, Any]] = {}
        self._polls: Dict[str, int] = {}

    # reader
    def get_code(self, address: str) -> bytes:
        return b"\x60\x80" if address in self.tokens else b""

    def _meta(self, address: str, index: int) -> Any:
        self.metadata_reads += 1
        remaining = self.failing_reads.get(address, 0)
        if remaining:
            self.failing_reads[address] = remaining - 1
            raise ConnectionError("Connection reset by peer")
        if address not in self.tokens:
            raise ValueError("execution reverted")
        return self.tokens[address][index]

    def erc20_name(self, token: str) -> str:
        return self._meta(token, 0)

    def erc20_symbol(self, token: str) -> str:
        return self._meta(token, 1)

    def erc20_decimals(self, token: str) -> int:
        return self._meta(token, 2)

    def erc20_balance(self, token: str, owner: str) -> int:
        return self.balances.get(token, 0)

    def erc20_allowance(self, token: str, owner: str, spender: str) -> int:
        return self.allowances.get(token, 0)

    def native_balance(self, owner: str) -> int:
        return self.native

    def gas_price(self) -> int:
        return self._gas_price

    def block_number(self) -> int:
        # Every head read advances the chain by one block
        self.block += 1
        return self.block

    def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        pending = self._pending.get(tx_hash)
        if pending is None or self.never_mine:
            return None
        polls = self._polls.get(tx_hash, 0)
        self._polls[tx_hash] = polls + 1
        if polls < self.confirm_after_polls:
            return None
        if "blockNumber" not in pending:
            pending["blockNumber"] = self.block
            if pending["status"] == 1 and pending["kind"] == "approval":
                self.allowances[pending["token"]] = pending["amount"]
            self.events.append(("mined", pending["kind"]))
        return {"status": pending["status"], "blockNumber": pending["blockNumber"], "transactionHash": tx_hash}

    def estimate_gas(self, sender: str, to: str, data: bytes, value: int) -> int:
        if self.estimate_error is not None:
            raise self.estimate_error
        return self.gas_estimate

    # writer
    @property
    def address(self) -> str:
        return self.wallet

    def _new_hash(self) -> str:
        return "0x" + f"{len(self.sent) + 1:064x}"

    def approve(self, token: str, spender: str, amount: int) -> str:
        tx_hash = self._new_hash()
        self.sent.append(("approval", (token, spender, amount)))
        self.events.append(("send", "approval"))
        self._pending[tx_hash] = {
            "kind": "approval",
            "status": self.receipt_status.get("approval", 1),
            "token": token,
            "amount": amount,
        }
        return tx_hash

    def send_transaction(self, request: TransactionRequest) -> str:
        tx_hash = self._new_hash()
        self.sent.append(("swap", request))
        self.events.append(("send", "swap"))
        self._pending[tx_hash] = {"kind": "swap", "status": self.receipt_status.get("swap", 1)}
        return tx_hash

    def tx_explorer_url(self, tx_hash: str) -> str:
        return f"https://explorer.test/tx/{tx_hash}"


class FakePoolIndex(PoolIndex):
    def __init__(self, events: Optional[List[Dict[str, Any]]] = None, error: Optional[Exception] = None) -> None:
        self.events = events if events is not None else [
            {
                "pool": "0x3333333333333333333333333333333333333333",
                "token0": TOKEN_A.lower(),
                "token1": TOKEN_B.lower(),
                "feeTier": "3000",
                "createdAtTimestamp": "1700000000",
                "createdAtBlockNumber": "18500000",
            }
        ]
        self.error = error
        self.calls: List[Tuple[str, int]] = []

    def newest_pools(self, reference_asset: str, limit: int = 1) -> List[Dict[str, Any]]:
        self.calls.append((reference_asset, limit))
        if self.error is not None:
            raise self.error
        return self.events[:limit]


class FakeRouting(RoutingService):
    def __init__(self, quote: int = 2 * ONE, available: bool = True, error: Optional[Exception] = None) -> None:
        self.quote = quote
        self.available = available
        self.error = error
        self.requests: List[RouteRequest] = []

    def route(self, request: RouteRequest) -> Optional[RouteDescriptor]:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if not self.available:
            return None
        min_out = int(Decimal(self.quote) * (Decimal(1) - Decimal(request.slippage_tolerance)))
        return RouteDescriptor(
            calldata=b"\x5a\xe4\x01\xdc" + b"\x00" * 32,
            value=0,
            quote=self.quote,
            minimum_out=min_out,
            path=(request.token_in, request.token_out),
            fees=(3000,),
            path_symbols=("TKA", "TKB"),
        )


def make_settings(**overrides: Any) -> SwapSettings:
    values: Dict[str, Any] = dict(
        rpc_url="http://localhost:8545",
        private_key="0x" + "11" * 32,
        swap_router_address=ROUTER,
        chain_id=1,
        slippage_percent=Decimal("5"),
        deadline_minutes=30,
        indexer_api_key="test-key",
        indexer_url="https://indexer.test/subgraph",
        reference_asset_address=REFERENCE,
        poll_interval=0.01,
        confirmation_timeout=5.0,
    )
    values.update(overrides)
    return SwapSettings(**values)
