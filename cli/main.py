from __future__ import annotations

import argparse
from decimal import Decimal, InvalidOperation
from typing import List, Optional

from connectors.dex.uniswap import QuoterRoutingService, UniswapClient
from connectors.indexer.subgraph import SubgraphPoolIndex
from core.config import load_settings
from core.errors import ConfigError, InvalidAmount
from strategies.newest_pool_swap import NewestPoolSwap
from strategies.swap_executor import Confirmed


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def parse_amount(value: str) -> Decimal:
    try:
        amount = Decimal(value.strip())
    except (InvalidOperation, AttributeError):
        raise argparse.ArgumentTypeError(f"invalid amount: {value!r}")
    if not amount.is_finite() or amount <= 0:
        raise argparse.ArgumentTypeError(f"amount must be a positive number: {value!r}")
    return amount


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="newest-pool-swap",
        description="Swap a fixed amount into the most recently created Uniswap V3 pool.",
    )
    parser.add_argument("amount", type=parse_amount, help="amount of the input token to spend (human units, e.g. 1.5)")
    parser.add_argument("--env-file", default=None, help="path to a .env file (default: search from the working directory)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(dotenv_path=args.env_file)
    except ConfigError as e:
        print(f"Configuration error: {e}")
        return EXIT_USAGE

    print("Newest-pool swap")
    try:
        client = UniswapClient(
            rpc_url=settings.rpc_url,
            private_key=settings.private_key,
            chain_id=settings.chain_id,
            quoter_address=settings.quoter_address,
        )
    except RuntimeError as e:
        print(f"Error: {e}")
        return EXIT_FAILED

    pool_index = SubgraphPoolIndex(settings.indexer_url, settings.indexer_api_key)
    routing = QuoterRoutingService(client, settings.swap_router_address)

    try:
        strat = NewestPoolSwap(settings, args.amount, client, pool_index, routing)
        outcome = strat.run()
    except InvalidAmount as e:
        print(f"Error: {e}")
        return EXIT_USAGE
    except KeyboardInterrupt:
        print("Interrupted.")
        return EXIT_FAILED

    if isinstance(outcome, Confirmed):
        print(f"Swap confirmed: {outcome.transaction_id}")
        return EXIT_OK
    print(f"Swap failed: {outcome.reason}")
    return EXIT_FAILED


if __name__ == "__main__":
    raise SystemExit(main())
