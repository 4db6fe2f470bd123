"""
Swap execution state machine.

START -> ALLOWANCE_CHECKED -> [APPROVAL_PENDING -> APPROVAL_CONFIRMED]
      -> GAS_CHECKED -> SUBMITTED -> CONFIRMED | REVERTED

Failures before submission end in FAILED; a submitted swap that reverts or
times out ends in REVERTED. The typed error is raised to the caller.
Nothing here is retried: the swap is sent at most once per execution.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from connectors.base import LedgerReader, LedgerWriter, TransactionRequest
from core.errors import (
    ApprovalFailed,
    ConfirmationTimeout,
    StaleQuote,
    SubmissionReverted,
    SwapError,
)
from core.resilience import is_network_error
from strategies.preflight import check_gas, has_sufficient_allowance
from strategies.route_planner import RouteQuote, SwapIntent
from strategies.tx_tracker import TransactionTracker


MAX_UINT256 = 2 ** 256 - 1


class ExecutorState(str, Enum):
    START = "START"
    ALLOWANCE_CHECKED = "ALLOWANCE_CHECKED"
    APPROVAL_PENDING = "APPROVAL_PENDING"
    APPROVAL_CONFIRMED = "APPROVAL_CONFIRMED"
    GAS_CHECKED = "GAS_CHECKED"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    REVERTED = "REVERTED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class Confirmed:
    transaction_id: str
    block_number: Optional[int] = None
    confirmations: int = 0


@dataclass(frozen=True)
class Failed:
    error: SwapError

    @property
    def reason(self) -> str:
        return str(self.error)


SwapOutcome = Union[Confirmed, Failed]


@dataclass(frozen=True)
class ExecutorParams:
    approval_policy: str = "unlimited"
    min_confirmations: int = 2
    confirmation_timeout: float = 180.0
    poll_interval: float = 2.0
    gas_limit: Optional[int] = None
    max_gas_limit: int = 500_000
    gas_multiplier: float = 1.2

    @classmethod
    def from_settings(cls, settings: Any) -> "ExecutorParams":
        return cls(
            approval_policy=settings.approval_policy,
            min_confirmations=settings.min_confirmations,
            confirmation_timeout=settings.confirmation_timeout,
            poll_interval=settings.poll_interval,
            gas_limit=settings.gas_limit,
            max_gas_limit=settings.max_gas_limit,
        )


def _receipt_status(receipt: Dict[str, Any]) -> int:
    # Pre-Byzantium receipts carry no status; treat them as success
    return int(receipt.get("status", 1))


def await_confirmation(
    ledger: LedgerReader,
    tx_hash: str,
    min_confirmations: int,
    timeout: float,
    poll_interval: float,
    clock: Callable[[], float] = time.monotonic,
) -> Tuple[Dict[str, Any], int]:
    """
    Poll until tx_hash has a receipt buried min_confirmations deep.

    Returns (receipt, confirmations). A reverted receipt is returned
    immediately without waiting for depth. A network error while polling
    counts as "not yet observed". Raises ConfirmationTimeout once timeout
    seconds have passed.
    """
    deadline = clock() + float(timeout)
    confirmations = 0
    while True:
        try:
            receipt = ledger.get_receipt(tx_hash)
            head = ledger.block_number() if receipt is not None else None
        except Exception as e:
            if not is_network_error(e):
                raise
            print(f"⚠ Receipt poll for {tx_hash} failed, retrying: {e}")
            receipt = None
        if receipt is not None:
            if _receipt_status(receipt) == 0:
                return receipt, confirmations
            mined_in = receipt.get("blockNumber")
            if mined_in is not None:
                confirmations = max(0, int(head) - int(mined_in) + 1)
                if confirmations >= int(min_confirmations):
                    return receipt, confirmations
        if clock() >= deadline:
            raise ConfirmationTimeout(tx_hash, float(timeout), confirmations)
        time.sleep(poll_interval)


class SwapExecutor:
    """
    Drives one intent + quote through approval (only if needed), gas check,
    a single submission and a bounded confirmation wait.

    The ledger must be able to both read and sign.
    """

    def __init__(
        self,
        ledger: LedgerReader,
        params: Optional[ExecutorParams] = None,
        tracker: Optional[TransactionTracker] = None,
        clock: Callable[[], float] = time.time,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if not isinstance(ledger, LedgerWriter):
            raise TypeError("SwapExecutor needs a ledger that can sign transactions")
        self.ledger = ledger
        self.params = params or ExecutorParams()
        if self.params.approval_policy not in ("unlimited", "exact"):
            raise ValueError(f"Unknown approval policy: {self.params.approval_policy}")
        self.tracker = tracker or TransactionTracker()
        self.clock = clock
        self.monotonic = monotonic
        self.state = ExecutorState.START
        self.history: List[ExecutorState] = [ExecutorState.START]

    def _transition(self, state: ExecutorState) -> None:
        self.state = state
        self.history.append(state)

    def _await(self, tx_hash: str) -> Tuple[Dict[str, Any], int]:
        return await_confirmation(
            self.ledger,
            tx_hash,
            self.params.min_confirmations,
            self.params.confirmation_timeout,
            self.params.poll_interval,
            clock=self.monotonic,
        )

    def approval_amount(self, intent: SwapIntent) -> int:
        if self.params.approval_policy == "exact":
            return int(intent.input_amount)
        return MAX_UINT256

    def execute(self, intent: SwapIntent, quote: RouteQuote) -> Confirmed:
        try:
            return self._execute(intent, quote)
        except SwapError:
            if self.state != ExecutorState.REVERTED:
                self._transition(ExecutorState.FAILED)
            raise

    def _execute(self, intent: SwapIntent, quote: RouteQuote) -> Confirmed:
        token = intent.input_token
        spender = quote.router_address

        sufficient = has_sufficient_allowance(token, intent.caller, spender, intent.input_amount)
        self._transition(ExecutorState.ALLOWANCE_CHECKED)
        if sufficient:
            self.tracker.log(f"✓ Allowance for {token.symbol} already covers the swap")
        else:
            self._approve(intent, spender)

        request = self._build_request(intent, quote)

        now = self.clock()
        if quote.is_stale(now):
            raise StaleQuote(quote.deadline, int(now))

        check_gas(self.ledger, intent.caller, request)
        self._transition(ExecutorState.GAS_CHECKED)

        try:
            tx_hash = self.ledger.send_transaction(request)
        except Exception as e:
            raise SubmissionReverted(f"submission rejected: {e}") from e
        self._transition(ExecutorState.SUBMITTED)
        record = self.tracker.submitted("swap", tx_hash)

        try:
            receipt, confirmations = self._await(tx_hash)
        except ConfirmationTimeout as e:
            # Submitted but unconfirmed: it may still land, so never resend
            self.tracker.timed_out(record, str(e))
            self._transition(ExecutorState.REVERTED)
            raise

        if _receipt_status(receipt) == 0:
            self.tracker.reverted(record, "execution reverted")
            self._transition(ExecutorState.REVERTED)
            raise SubmissionReverted("execution reverted on-chain", tx_hash)

        block_number = receipt.get("blockNumber")
        self.tracker.confirmed(record, block_number, confirmations)
        self._transition(ExecutorState.CONFIRMED)
        return Confirmed(transaction_id=tx_hash, block_number=block_number, confirmations=confirmations)

    def _approve(self, intent: SwapIntent, spender: str) -> None:
        token = intent.input_token
        amount = self.approval_amount(intent)
        label = "unlimited" if amount == MAX_UINT256 else str(token.from_units(amount))
        self.tracker.log(f"Approving {label} {token.symbol} for router {spender}...")
        try:
            tx_hash = token.approve(spender, amount)
        except Exception as e:
            raise ApprovalFailed(token.symbol, f"approve submission rejected: {e}") from e
        self._transition(ExecutorState.APPROVAL_PENDING)
        record = self.tracker.submitted("approval", tx_hash)

        try:
            receipt, confirmations = self._await(tx_hash)
        except ConfirmationTimeout as e:
            self.tracker.timed_out(record, str(e))
            raise

        if _receipt_status(receipt) == 0:
            self.tracker.reverted(record, "approval reverted")
            raise ApprovalFailed(token.symbol, "approval transaction reverted", tx_hash)
        self.tracker.confirmed(record, receipt.get("blockNumber"), confirmations)

        if not has_sufficient_allowance(token, intent.caller, spender, intent.input_amount):
            raise ApprovalFailed(token.symbol, f"allowance still below {intent.input_amount} after confirmation", tx_hash)
        self._transition(ExecutorState.APPROVAL_CONFIRMED)

    def _gas_limit(self, intent: SwapIntent, quote: RouteQuote) -> int:
        if self.params.gas_limit:
            return int(self.params.gas_limit)
        try:
            estimate = self.ledger.estimate_gas(intent.caller, quote.router_address, quote.calldata, quote.value)
        except Exception as e:
            if is_network_error(e):
                raise
            # The node simulated the call and it reverted
            raise SubmissionReverted(f"gas estimation failed: {e}") from e
        padded = Decimal(int(estimate)) * Decimal(str(self.params.gas_multiplier))
        return min(int(padded), int(self.params.max_gas_limit))

    def _build_request(self, intent: SwapIntent, quote: RouteQuote) -> TransactionRequest:
        return TransactionRequest(
            to=quote.router_address,
            sender=intent.caller,
            data=quote.calldata,
            value=int(quote.value),
            gas_limit=self._gas_limit(intent, quote),
            gas_price=int(self.ledger.gas_price()),
        )
