"""
Tests for the swap executor state machine and confirmation waiting.
"""
from __future__ import annotations

from decimal import Decimal

import pytest

from core.errors import ApprovalFailed, ConfirmationTimeout, SubmissionReverted
from core.token_resolver import resolve_token
from strategies.route_planner import RouteQuote, SwapIntent
from strategies.swap_executor import (
    Confirmed,
    ExecutorParams,
    ExecutorState,
    Failed,
    SwapExecutor,
    await_confirmation,
)
from strategies.tx_tracker import TransactionTracker
from tests.fakes import ONE, ROUTER, TOKEN_A, TOKEN_B, WALLET, FakeLedger


NOW = 1_700_000_000


def _intent(ledger, amount=ONE):
    return SwapIntent(
        input_token=resolve_token(TOKEN_A, ledger),
        output_token=resolve_token(TOKEN_B, ledger),
        input_amount=amount,
        caller=WALLET,
        slippage_tolerance=Decimal("0.05"),
        deadline=NOW + 1800,
    )


def _quote(value=0):
    return RouteQuote(
        expected_output_amount=2 * ONE,
        minimum_output_amount=19 * ONE // 10,
        calldata=b"\x5a\xe4\x01\xdc",
        value=value,
        path=("TKA", "TKB"),
        router_address=ROUTER,
        deadline=NOW + 1800,
    )


def _executor(ledger, **params):
    params.setdefault("poll_interval", 0.01)
    params.setdefault("confirmation_timeout", 5.0)
    return SwapExecutor(ledger, ExecutorParams(**params), tracker=TransactionTracker(label="test"), clock=lambda: NOW)


def test_confirmation_waits_for_depth():
    ledger = FakeLedger(allowances={TOKEN_A: ONE})
    tx_hash = ledger.send_transaction(None)

    receipt, confirmations = await_confirmation(ledger, tx_hash, min_confirmations=4, timeout=5.0, poll_interval=0.01)

    assert receipt["status"] == 1
    assert confirmations == 4
    assert ledger.block - receipt["blockNumber"] + 1 == 4


def test_confirmation_waits_for_receipt():
    ledger = FakeLedger(confirm_after_polls=3)
    tx_hash = ledger.send_transaction(None)

    receipt, confirmations = await_confirmation(ledger, tx_hash, min_confirmations=1, timeout=5.0, poll_interval=0.01)

    assert receipt["transactionHash"] == tx_hash
    assert confirmations >= 1


def test_confirmation_timeout_uses_clock():
    ledger = FakeLedger()
    ledger.never_mine = True
    tx_hash = ledger.send_transaction(None)
    ticks = iter(range(0, 1000, 10))

    with pytest.raises(ConfirmationTimeout) as exc:
        await_confirmation(ledger, tx_hash, 2, timeout=30, poll_interval=0.0, clock=lambda: next(ticks))

    assert exc.value.tx_hash == tx_hash
    assert exc.value.confirmations == 0


def test_fixed_gas_limit_skips_estimation():
    ledger = FakeLedger(allowances={TOKEN_A: ONE})
    ledger.estimate_error = AssertionError("should not estimate")

    result = _executor(ledger, gas_limit=250_000).execute(_intent(ledger), _quote())

    assert isinstance(result, Confirmed)
    request = ledger.sent[0][1]
    assert request.gas_limit == 250_000
    assert request.gas_price == 10 ** 9


def test_estimate_is_padded_and_capped():
    ledger = FakeLedger(allowances={TOKEN_A: ONE}, gas_estimate=100_000)
    _executor(ledger).execute(_intent(ledger), _quote())
    assert ledger.sent[0][1].gas_limit == 120_000

    ledger = FakeLedger(allowances={TOKEN_A: ONE}, gas_estimate=1_000_000)
    _executor(ledger, max_gas_limit=400_000).execute(_intent(ledger), _quote())
    assert ledger.sent[0][1].gas_limit == 400_000


def test_estimation_revert_fails_before_submission():
    ledger = FakeLedger(allowances={TOKEN_A: ONE})
    ledger.estimate_error = ValueError("execution reverted: Too little received")
    executor = _executor(ledger)

    with pytest.raises(SubmissionReverted, match="Too little received"):
        executor.execute(_intent(ledger), _quote())

    assert ledger.sent == []
    assert executor.state == ExecutorState.FAILED


def test_estimation_network_error_propagates():
    ledger = FakeLedger(allowances={TOKEN_A: ONE})
    ledger.estimate_error = ConnectionError("Connection refused")

    with pytest.raises(ConnectionError):
        _executor(ledger).execute(_intent(ledger), _quote())
    assert ledger.sent == []


def test_rejected_submission_is_submission_reverted():
    ledger = FakeLedger(allowances={TOKEN_A: ONE})

    def reject(request):
        raise ValueError("nonce too low")

    ledger.send_transaction = reject

    with pytest.raises(SubmissionReverted, match="nonce too low"):
        _executor(ledger).execute(_intent(ledger), _quote())


def test_approval_timeout_never_sends_swap():
    ledger = FakeLedger()
    ledger.never_mine = True
    executor = _executor(ledger, confirmation_timeout=0.05)

    with pytest.raises(ConfirmationTimeout):
        executor.execute(_intent(ledger), _quote())

    assert [kind for kind, _ in ledger.sent] == ["approval"]
    assert executor.history[-2] == ExecutorState.APPROVAL_PENDING
    assert executor.tracker.records[0].status == "timeout"


def test_allowance_still_short_after_approval():
    ledger = FakeLedger()
    # Token ignores approve: allowance never moves
    original = ledger.get_receipt

    def receipt_without_allowance(tx_hash):
        result = original(tx_hash)
        ledger.allowances[TOKEN_A] = 0
        return result

    ledger.get_receipt = receipt_without_allowance

    with pytest.raises(ApprovalFailed, match="still below"):
        _executor(ledger).execute(_intent(ledger), _quote())
    assert [kind for kind, _ in ledger.sent] == ["approval"]


def test_value_is_forwarded_and_counted_for_gas():
    ledger = FakeLedger(allowances={TOKEN_A: ONE}, native=ONE)

    _executor(ledger, gas_limit=100_000).execute(_intent(ledger), _quote(value=ONE // 2))

    request = ledger.sent[0][1]
    assert request.value == ONE // 2
    assert request.gas_budget == 100_000 * 10 ** 9 + ONE // 2


def test_tracker_summary_after_approval_and_swap():
    ledger = FakeLedger()
    executor = _executor(ledger)

    executor.execute(_intent(ledger), _quote())

    summary = executor.tracker.get_summary()
    assert summary == {"total": 2, "approvals": 1, "swaps": 1, "confirmed": 2, "failed": 0}


def test_failed_reason_is_error_message():
    error = SubmissionReverted("execution reverted on-chain", "0xabc")
    outcome = Failed(error)

    assert outcome.reason == "Swap reverted: execution reverted on-chain (tx 0xabc)"


def test_executor_requires_signing_ledger():
    class ReadOnly:
        pass

    with pytest.raises(TypeError):
        SwapExecutor(ReadOnly())


def _flaky_receipts(ledger, failures):
    """First `failures` receipt polls after a send raise a connection reset."""
    original = ledger.get_receipt
    remaining = [failures]

    def get_receipt(tx_hash):
        if remaining[0] > 0:
            remaining[0] -= 1
            raise ConnectionError("Connection reset by peer")
        return original(tx_hash)

    ledger.get_receipt = get_receipt


def test_receipt_poll_network_error_keeps_waiting():
    ledger = FakeLedger(allowances={TOKEN_A: ONE})
    _flaky_receipts(ledger, failures=1)
    executor = _executor(ledger)

    result = executor.execute(_intent(ledger), _quote())

    assert isinstance(result, Confirmed)
    assert [kind for kind, _ in ledger.sent] == ["swap"]
    assert executor.state == ExecutorState.CONFIRMED


def test_receipt_poll_network_errors_until_deadline_time_out():
    ledger = FakeLedger(allowances={TOKEN_A: ONE})
    _flaky_receipts(ledger, failures=10 ** 6)
    executor = _executor(ledger, confirmation_timeout=0.05)

    with pytest.raises(ConfirmationTimeout):
        executor.execute(_intent(ledger), _quote())

    assert [kind for kind, _ in ledger.sent] == ["swap"]
    assert executor.state == ExecutorState.REVERTED
    assert executor.tracker.records[0].status == "timeout"


def test_approval_poll_network_error_keeps_waiting():
    ledger = FakeLedger()
    _flaky_receipts(ledger, failures=2)

    result = _executor(ledger).execute(_intent(ledger), _quote())

    assert isinstance(result, Confirmed)
    assert [kind for kind, _ in ledger.sent] == ["approval", "swap"]


def test_receipt_poll_non_network_error_propagates():
    ledger = FakeLedger()
    tx_hash = ledger.send_transaction(None)

    def broken(tx_hash):
        raise KeyError("blockHash")

    ledger.get_receipt = broken

    with pytest.raises(KeyError):
        await_confirmation(ledger, tx_hash, 1, timeout=5.0, poll_interval=0.01)
