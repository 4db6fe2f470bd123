from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from web3 import Web3

from connectors.base import PoolIndex
from core.errors import DiscoveryFailure


@dataclass(frozen=True)
class PoolReference:
    input_token_address: str
    output_token_address: str
    discovered_at: int  # pool creation block time, unix seconds
    pool_address: Optional[str] = None
    fee_tier: Optional[int] = None
    created_at_block: Optional[int] = None


def _optional_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _address(event: dict, key: str) -> str:
    value = event.get(key)
    if not value or not Web3.is_address(str(value).lower()):
        raise DiscoveryFailure(f"Newest pool event is missing a valid {key} address: {value!r}")
    return Web3.to_checksum_address(value)


def discover_newest_pool(reference_asset: str, pool_index: PoolIndex) -> PoolReference:
    """
    Return the most recently created pool that pairs reference_asset.

    token0 is the token spent, token1 the token bought.
    """
    try:
        events = pool_index.newest_pools(reference_asset, limit=1)
    except Exception as e:
        raise DiscoveryFailure(f"Pool index query failed: {e}") from e

    if not events:
        raise DiscoveryFailure(f"No pools found for reference asset {reference_asset}")

    event = events[0]
    token0 = _address(event, "token0")
    token1 = _address(event, "token1")
    if token0 == token1:
        raise DiscoveryFailure(f"Newest pool pairs {token0} with itself")

    created_at = _optional_int(event.get("createdAtTimestamp"))
    if created_at is None:
        raise DiscoveryFailure("Newest pool event has no creation timestamp")

    return PoolReference(
        input_token_address=token0,
        output_token_address=token1,
        discovered_at=created_at,
        pool_address=event.get("pool"),
        fee_tier=_optional_int(event.get("feeTier")),
        created_at_block=_optional_int(event.get("createdAtBlockNumber")),
    )
