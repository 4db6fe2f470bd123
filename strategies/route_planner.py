from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Tuple

from connectors.base import EXACT_INPUT, RouteRequest, RoutingService
from core.errors import NoRouteFound
from core.token_resolver import TokenHandle


@dataclass(frozen=True)
class SwapIntent:
    input_token: TokenHandle
    output_token: TokenHandle
    input_amount: int
    caller: str
    slippage_tolerance: Decimal
    deadline: int

    def __post_init__(self) -> None:
        if int(self.input_amount) <= 0:
            raise ValueError(f"input_amount must be positive: {self.input_amount}")
        if not (Decimal(0) <= Decimal(self.slippage_tolerance) <= Decimal(1)):
            raise ValueError(f"slippage_tolerance must be within [0, 1]: {self.slippage_tolerance}")


@dataclass(frozen=True)
class RouteQuote:
    expected_output_amount: int
    minimum_output_amount: int
    calldata: bytes
    value: int
    path: Tuple[str, ...]
    router_address: str
    deadline: int

    def is_stale(self, now: float) -> bool:
        return int(now) >= int(self.deadline)

    def describe(self) -> str:
        return " -> ".join(self.path)


def plan_route(intent: SwapIntent, routing: RoutingService, router_address: str, executor_variant: str) -> RouteQuote:
    """
    Ask the routing service for an exact-input route and validate the answer.

    No retry: a missing route ends the run.
    """
    request = RouteRequest(
        token_in=intent.input_token.address,
        amount_in=int(intent.input_amount),
        token_out=intent.output_token.address,
        recipient=intent.caller,
        slippage_tolerance=intent.slippage_tolerance,
        deadline=int(intent.deadline),
        executor_variant=executor_variant,
        trade_type=EXACT_INPUT,
    )
    pair = f"{intent.input_token.symbol} -> {intent.output_token.symbol}"
    try:
        route = routing.route(request)
    except Exception as e:
        raise NoRouteFound(f"Routing service failed for {pair}: {e}") from e

    if route is None:
        raise NoRouteFound(f"No route found for the swap {pair}.")
    if not route.calldata:
        raise NoRouteFound(f"Route for {pair} has no call payload")
    if int(route.quote) <= 0:
        raise NoRouteFound(f"Route for {pair} quotes zero output")
    if not route.path:
        raise NoRouteFound(f"Route for {pair} has an empty path")

    symbols = tuple(route.path_symbols) if route.path_symbols else tuple(route.path)
    return RouteQuote(
        expected_output_amount=int(route.quote),
        minimum_output_amount=int(route.minimum_out),
        calldata=bytes(route.calldata),
        value=int(route.value),
        path=symbols,
        router_address=router_address,
        deadline=int(intent.deadline),
    )
