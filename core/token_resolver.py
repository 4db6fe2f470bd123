from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN, getcontext
from typing import List, Optional, Sequence

from web3 import Web3

from connectors.base import LedgerReader, LedgerWriter
from core.errors import ResolutionFailure
from core.resilience import RetryConfig, is_network_error, retry_call


@dataclass(frozen=True)
class TokenHandle:
    """
    Resolved ERC20 token bound to the ledger it was read from.

    Equality and hashing use the metadata only, so two resolutions of the
    same contract compare equal.
    """
    address: str
    name: str
    symbol: str
    decimals: int
    ledger: LedgerReader = field(compare=False, repr=False)

    def balance_of(self, owner: str) -> int:
        return int(self.ledger.erc20_balance(self.address, owner))

    def allowance(self, owner: str, spender: str) -> int:
        return int(self.ledger.erc20_allowance(self.address, owner, spender))

    def approve(self, spender: str, amount: int) -> str:
        """Submit approve(spender, amount). The allowance is only updated once the tx confirms."""
        if not isinstance(self.ledger, LedgerWriter):
            raise RuntimeError(f"Ledger for {self.symbol} cannot sign transactions")
        return self.ledger.approve(self.address, spender, int(amount))

    def to_units(self, amount: Decimal) -> int:
        """Human amount to smallest units, rounded down to avoid overspending."""
        getcontext().prec = 78
        scaled = Decimal(str(amount)) * (Decimal(10) ** self.decimals)
        return int(scaled.to_integral_value(rounding=ROUND_DOWN))

    def from_units(self, amount: int) -> Decimal:
        getcontext().prec = 78
        return Decimal(int(amount)) / (Decimal(10) ** self.decimals)


def resolve_token(address: str, ledger: LedgerReader, retry_config: Optional[RetryConfig] = None) -> TokenHandle:
    """
    Read name, symbol and decimals for a token contract.

    Network errors get one local retry (reads are idempotent); anything else
    surfaces as ResolutionFailure.
    """
    if not address or not Web3.is_address(str(address).lower()):
        raise ResolutionFailure(str(address), "not a valid address")
    checksum = Web3.to_checksum_address(address)
    config = retry_config or RetryConfig(max_attempts=2)

    def on_retry(attempt: int, error: Exception) -> None:
        print(f"[resolver] ⚠ read of {checksum} failed ({error}); retrying...")

    def read(fn, *args):
        return retry_call(fn, *args, retry_config=config, on_retry=on_retry)

    try:
        code = read(ledger.get_code, checksum)
    except Exception as e:
        raise ResolutionFailure(checksum, f"code lookup failed: {e}") from e
    if not code:
        raise ResolutionFailure(checksum, "no contract deployed at this address")

    try:
        name = read(ledger.erc20_name, checksum)
        symbol = read(ledger.erc20_symbol, checksum)
        decimals = read(ledger.erc20_decimals, checksum)
    except Exception as e:
        kind = "network error" if is_network_error(e) else "metadata call failed"
        raise ResolutionFailure(checksum, f"{kind}: {e}") from e

    if not symbol:
        raise ResolutionFailure(checksum, "empty symbol")
    decimals = int(decimals)
    if decimals < 0 or decimals > 255:
        raise ResolutionFailure(checksum, f"decimals out of range: {decimals}")

    return TokenHandle(address=checksum, name=str(name), symbol=str(symbol), decimals=decimals, ledger=ledger)


def resolve_tokens(addresses: Sequence[str], ledger: LedgerReader, retry_config: Optional[RetryConfig] = None) -> List[TokenHandle]:
    """Resolve several tokens in parallel; the first failure (in input order) is raised."""
    if not addresses:
        return []
    with ThreadPoolExecutor(max_workers=len(addresses)) as pool:
        futures = [pool.submit(resolve_token, a, ledger, retry_config) for a in addresses]
        return [f.result() for f in futures]
