"""
Pre-submission checks: token balance, router allowance and native gas.
"""
from __future__ import annotations

from connectors.base import LedgerReader, TransactionRequest
from core.errors import InsufficientBalance, InsufficientGas
from core.token_resolver import TokenHandle


def check_balance(token: TokenHandle, owner: str, required: int) -> int:
    """Raise InsufficientBalance when owner holds less than required. Returns the balance."""
    available = token.balance_of(owner)
    if available < int(required):
        raise InsufficientBalance(token.symbol, int(required), available)
    return available


def has_sufficient_allowance(token: TokenHandle, owner: str, spender: str, required: int) -> bool:
    """A short allowance is an expected branch, not an error."""
    return token.allowance(owner, spender) >= int(required)


def check_gas(ledger: LedgerReader, owner: str, request: TransactionRequest) -> int:
    """Native balance must cover gas_limit * gas_price + value. Returns the balance."""
    available = ledger.native_balance(owner)
    required = request.gas_budget
    if available < required:
        raise InsufficientGas(required, available)
    return available
