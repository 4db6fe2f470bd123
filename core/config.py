from __future__ import annotations

import os
import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Mapping, Optional

from dotenv import load_dotenv
from web3 import Web3

from connectors.dex.uniswap import CHAIN_DEFAULTS, ROUTER_VARIANTS
from core.errors import ConfigError


APPROVAL_POLICIES = ("unlimited", "exact")


@dataclass(frozen=True)
class SwapSettings:
    """
    Everything the pipeline needs from the environment, read once at start-up.

    Components receive this object; none of them look at os.environ.
    """
    rpc_url: str
    private_key: str
    swap_router_address: str
    chain_id: int
    slippage_percent: Decimal
    deadline_minutes: int
    indexer_api_key: str
    indexer_url: str
    reference_asset_address: str
    quoter_address: Optional[str] = None
    router_variant: str = "swap_router_02"
    approval_policy: str = "unlimited"
    min_confirmations: int = 2
    confirmation_timeout: float = 180.0
    poll_interval: float = 2.0
    gas_limit: Optional[int] = None
    max_gas_limit: int = 500_000
    label: Optional[str] = None

    @property
    def slippage_tolerance(self) -> Decimal:
        """Slippage as a fraction in [0, 1]."""
        return self.slippage_percent / Decimal(100)

    def deadline_from(self, now: Optional[float] = None) -> int:
        start = time.time() if now is None else now
        return int(start) + int(self.deadline_minutes) * 60


def _required(env: Mapping[str, str], key: str) -> str:
    value = (env.get(key) or "").strip()
    if not value:
        raise ConfigError(f"{key} is not set")
    return value


def _int(env: Mapping[str, str], key: str, default: Optional[int]) -> Optional[int]:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}")


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = (env.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigError(f"{key} must be a number, got {raw!r}")


def _address(key: str, value: str) -> str:
    if not Web3.is_address(value.lower()):
        raise ConfigError(f"{key} is not a valid address: {value!r}")
    return Web3.to_checksum_address(value)


def load_settings(env: Optional[Mapping[str, str]] = None, dotenv_path: Optional[str] = None) -> SwapSettings:
    """
    Build SwapSettings from a mapping (defaults to os.environ after loading .env).
    """
    if env is None:
        load_dotenv(dotenv_path)
        env = os.environ

    rpc_url = _required(env, "RPC")
    if not rpc_url.startswith(("http://", "https://")):
        raise ConfigError("RPC must start with http:// or https://")

    private_key = _required(env, "WALLET_PRIVATE_KEY")
    pk_hex = private_key.lower().removeprefix("0x")
    if len(pk_hex) != 64:
        raise ConfigError("WALLET_PRIVATE_KEY must be 32 bytes of hex")
    try:
        bytes.fromhex(pk_hex)
    except ValueError:
        raise ConfigError("WALLET_PRIVATE_KEY must be 32 bytes of hex")

    chain_id = _int(env, "CHAIN_ID", 1)
    defaults = CHAIN_DEFAULTS.get(chain_id, {})

    router = _address("SWAP_ROUTER_ADDRESS", _required(env, "SWAP_ROUTER_ADDRESS"))

    raw_slippage = (env.get("SLIPPAGE_TOLERANCE") or "5").strip()
    try:
        slippage = Decimal(raw_slippage)
    except InvalidOperation:
        raise ConfigError(f"SLIPPAGE_TOLERANCE must be a percentage, got {raw_slippage!r}")
    if not slippage.is_finite() or slippage < 0 or slippage > 100:
        raise ConfigError("SLIPPAGE_TOLERANCE must be between 0 and 100")

    deadline_minutes = _int(env, "DEADLINE_IN_MINUTES", 30)
    if deadline_minutes <= 0:
        raise ConfigError("DEADLINE_IN_MINUTES must be positive")

    indexer_api_key = _required(env, "INDEXER_API_KEY")
    indexer_url = (env.get("INDEXER_URL") or defaults.get("SUBGRAPH_URL") or "").strip()
    if not indexer_url:
        raise ConfigError(f"INDEXER_URL is not set and chain {chain_id} has no default subgraph")

    reference_raw = (env.get("REFERENCE_ASSET_ADDRESS") or defaults.get("WETH") or "").strip()
    if not reference_raw:
        raise ConfigError(f"REFERENCE_ASSET_ADDRESS is not set and chain {chain_id} has no default")
    reference = _address("REFERENCE_ASSET_ADDRESS", reference_raw)

    quoter_raw = (env.get("QUOTER_ADDRESS") or defaults.get("QUOTER_V2") or "").strip()
    quoter = _address("QUOTER_ADDRESS", quoter_raw) if quoter_raw else None

    variant = (env.get("SWAP_ROUTER_VARIANT") or "swap_router_02").strip().lower()
    if variant not in ROUTER_VARIANTS:
        raise ConfigError(f"SWAP_ROUTER_VARIANT must be one of {', '.join(ROUTER_VARIANTS)}")

    policy = (env.get("APPROVAL_POLICY") or "unlimited").strip().lower()
    if policy not in APPROVAL_POLICIES:
        raise ConfigError(f"APPROVAL_POLICY must be one of {', '.join(APPROVAL_POLICIES)}")

    min_confirmations = _int(env, "MIN_CONFIRMATIONS", 2)
    if min_confirmations < 1:
        raise ConfigError("MIN_CONFIRMATIONS must be at least 1")

    timeout = _float(env, "CONFIRMATION_TIMEOUT_SECONDS", 180.0)
    if timeout <= 0:
        raise ConfigError("CONFIRMATION_TIMEOUT_SECONDS must be positive")

    gas_limit = _int(env, "GAS_LIMIT", None)
    max_gas_limit = _int(env, "MAX_GAS_LIMIT", 500_000)
    if gas_limit is not None and gas_limit <= 0:
        raise ConfigError("GAS_LIMIT must be positive")
    if max_gas_limit <= 0:
        raise ConfigError("MAX_GAS_LIMIT must be positive")

    return SwapSettings(
        rpc_url=rpc_url,
        private_key=private_key,
        swap_router_address=router,
        chain_id=chain_id,
        slippage_percent=slippage,
        deadline_minutes=deadline_minutes,
        indexer_api_key=indexer_api_key,
        indexer_url=indexer_url,
        reference_asset_address=reference,
        quoter_address=quoter,
        router_variant=variant,
        approval_policy=policy,
        min_confirmations=min_confirmations,
        confirmation_timeout=timeout,
        gas_limit=gas_limit,
        max_gas_limit=max_gas_limit,
        label=(env.get("WALLET_LABEL") or "").strip() or None,
    )
