from __future__ import annotations

import time
from decimal import Decimal
from typing import Callable, Optional

from connectors.base import LedgerReader, PoolIndex, RoutingService
from core.config import SwapSettings
from core.errors import InvalidAmount, SwapError
from core.token_resolver import resolve_tokens
from strategies.pool_discovery import discover_newest_pool
from strategies.preflight import check_balance
from strategies.route_planner import SwapIntent, plan_route
from strategies.swap_executor import Confirmed, ExecutorParams, Failed, SwapExecutor, SwapOutcome
from strategies.tx_tracker import TransactionTracker


class NewestPoolSwap:
    """
    Swaps a fixed amount of the newest pool's token0 into its token1.

    - Finds the most recently created pool for the reference asset
    - Resolves both tokens, checks balance, plans a route
    - Approves (only if needed), submits once and waits for confirmation
    """

    def __init__(
        self,
        settings: SwapSettings,
        amount: Decimal,
        ledger: LedgerReader,
        pool_index: PoolIndex,
        routing: RoutingService,
        tracker: Optional[TransactionTracker] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        amount = Decimal(str(amount))
        if not amount.is_finite() or amount <= 0:
            raise InvalidAmount(f"amount must be positive: {amount}")
        self.settings = settings
        self.amount = amount
        self.ledger = ledger
        self.pool_index = pool_index
        self.routing = routing
        self.clock = clock
        explorer = getattr(ledger, "tx_explorer_url", None)
        self.tracker = tracker or TransactionTracker(label=settings.label, explorer_url=explorer, clock=clock)
        self.executor: Optional[SwapExecutor] = None

    def _log(self, message: str) -> None:
        self.tracker.log(message)

    def run(self) -> SwapOutcome:
        try:
            outcome: SwapOutcome = self._run()
        except SwapError as e:
            self._log(f"✗ Swap failed: {e}")
            outcome = Failed(e)
        if self.tracker.records:
            self.tracker.print_summary()
        return outcome

    def _run(self) -> Confirmed:
        cfg = self.settings

        self._log(f"Looking up the newest pool for {cfg.reference_asset_address}...")
        pool = discover_newest_pool(cfg.reference_asset_address, self.pool_index)
        where = f" ({pool.pool_address})" if pool.pool_address else ""
        self._log(f"✓ Newest pool{where} created at {pool.discovered_at}")

        input_token, output_token = resolve_tokens(
            [pool.input_token_address, pool.output_token_address], self.ledger
        )
        self._log(f"✓ Tokens: {input_token.symbol} ({input_token.address}) -> {output_token.symbol} ({output_token.address})")

        amount_in = input_token.to_units(self.amount)
        if amount_in <= 0:
            raise InvalidAmount(f"{self.amount} is below the smallest unit of {input_token.symbol}")

        caller = self.ledger.address
        balance = check_balance(input_token, caller, amount_in)
        self._log(f"✓ Balance: {input_token.from_units(balance)} {input_token.symbol} (spending {self.amount})")

        intent = SwapIntent(
            input_token=input_token,
            output_token=output_token,
            input_amount=amount_in,
            caller=caller,
            slippage_tolerance=cfg.slippage_tolerance,
            deadline=cfg.deadline_from(self.clock()),
        )

        quote = plan_route(intent, self.routing, cfg.swap_router_address, cfg.router_variant)
        expected = output_token.from_units(quote.expected_output_amount)
        floor = output_token.from_units(quote.minimum_output_amount)
        self._log(f"✓ Route: {quote.describe()}")
        self._log(f"  Expected out: {expected} {output_token.symbol} (min {floor} at {cfg.slippage_percent}% slippage)")

        self.executor = SwapExecutor(
            self.ledger,
            ExecutorParams.from_settings(cfg),
            tracker=self.tracker,
            clock=self.clock,
        )
        result = self.executor.execute(intent, quote)
        self._log(f"✓ Swap confirmed: {result.transaction_id}")
        return result
