from __future__ import annotations

from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import BadFunctionCallOutput, ContractLogicError, TransactionNotFound
from web3.middleware import ExtraDataToPOAMiddleware

from connectors.base import (
    EXACT_INPUT,
    LedgerReader,
    LedgerWriter,
    RouteDescriptor,
    RouteRequest,
    RoutingService,
    TransactionRequest,
)


ROUTER_VARIANTS = ("swap_router_02", "swap_router")

_GATEWAY = "https://gateway.thegraph.com/api/subgraphs/id/"

CHAIN_DEFAULTS: Dict[int, Dict[str, str]] = {
    1: {
        "WETH": "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2",
        "QUOTER_V2": "0x61fFE014bA17989E743c5F6cB21bF9697530B21e",
        "SWAP_ROUTER_02": "0x68b3465833fb72A70ecDF485E0e4C7bD8665Fc45",
        "SUBGRAPH_URL": _GATEWAY + "5zvR82QoaXYFyDEKLZ9t6v9adgnptxYpKpSbxtgVENFV",
        "EXPLORER": "https://etherscan.io/tx/",
    },
    8453: {
        "WETH": "0x4200000000000000000000000000000000000006",
        "QUOTER_V2": "0x3d4e44Eb1374240CE5F1B871ab261CD16335B76a",
        "SWAP_ROUTER_02": "0x2626664c2603336E57B271c5C0b26F421741e481",
        "SUBGRAPH_URL": _GATEWAY + "43Hwfi3dJSoGpyas9VwNoDAv55yjgGrPpNSmbQZArzMG",
        "EXPLORER": "https://basescan.org/tx/",
    },
    11155111: {
        "WETH": "0xfFf9976782d46CC05630D1f6eBAb18b2324d6B14",
        "QUOTER_V2": "0xEd1f6473345F45b75F8179591dd5bA1888cf2FB3",
        "SWAP_ROUTER_02": "0x3bFA4769FB09eefC5a80d6E87c3B9C650f7Ae48E",
        "EXPLORER": "https://sepolia.etherscan.io/tx/",
    },
}

ERC20_ABI: List[Dict] = [
    {"constant": True, "inputs": [{"name": "", "type": "address"}], "name": "balanceOf", "outputs": [{"name": "", "type": "uint256"}], "stateMutability": "view", "type": "function"},
    {"constant": True, "inputs": [], "name": "decimals", "outputs": [{"name": "", "type": "uint8"}], "stateMutability": "view", "type": "function"},
    {"constant": True, "inputs": [], "name": "symbol", "outputs": [{"name": "", "type": "string"}], "stateMutability": "view", "type": "function"},
    {"constant": True, "inputs": [], "name": "name", "outputs": [{"name": "", "type": "string"}], "stateMutability": "view", "type": "function"},
    {"constant": True, "inputs": [{"name": "owner", "type": "address"}, {"name": "spender", "type": "address"}], "name": "allowance", "outputs": [{"name": "", "type": "uint256"}], "stateMutability": "view", "type": "function"},
    {"constant": False, "inputs": [{"name": "spender", "type": "address"}, {"name": "amount", "type": "uint256"}], "name": "approve", "outputs": [{"name": "", "type": "bool"}], "stateMutability": "nonpayable", "type": "function"},
]

QUOTER_V2_ABI: List[Dict] = [
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "address", "name": "tokenIn", "type": "address"},
                    {"internalType": "address", "name": "tokenOut", "type": "address"},
                    {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
                    {"internalType": "uint24", "name": "fee", "type": "uint24"},
                    {"internalType": "uint160", "name": "sqrtPriceLimitX96", "type": "uint160"},
                ],
                "internalType": "struct IQuoterV2.QuoteExactInputSingleParams",
                "name": "params",
                "type": "tuple",
            }
        ],
        "name": "quoteExactInputSingle",
        "outputs": [
            {"internalType": "uint256", "name": "amountOut", "type": "uint256"},
            {"internalType": "uint160", "name": "sqrtPriceX96After", "type": "uint160"},
            {"internalType": "uint32", "name": "initializedTicksCrossed", "type": "uint32"},
            {"internalType": "uint256", "name": "gasEstimate", "type": "uint256"},
        ],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "bytes", "name": "path", "type": "bytes"},
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
        ],
        "name": "quoteExactInput",
        "outputs": [
            {"internalType": "uint256", "name": "amountOut", "type": "uint256"},
            {"internalType": "uint160[]", "name": "sqrtPriceX96AfterList", "type": "uint160[]"},
            {"internalType": "uint32[]", "name": "initializedTicksCrossedList", "type": "uint32[]"},
            {"internalType": "uint256", "name": "gasEstimate", "type": "uint256"},
        ],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# SwapRouter02 (IV3SwapRouter): no deadline in the params, deadline goes through multicall.
SWAP_ROUTER_02_ABI: List[Dict] = [
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "address", "name": "tokenIn", "type": "address"},
                    {"internalType": "address", "name": "tokenOut", "type": "address"},
                    {"internalType": "uint24", "name": "fee", "type": "uint24"},
                    {"internalType": "address", "name": "recipient", "type": "address"},
                    {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
                    {"internalType": "uint256", "name": "amountOutMinimum", "type": "uint256"},
                    {"internalType": "uint160", "name": "sqrtPriceLimitX96", "type": "uint160"},
                ],
                "internalType": "struct IV3SwapRouter.ExactInputSingleParams",
                "name": "params",
                "type": "tuple",
            }
        ],
        "name": "exactInputSingle",
        "outputs": [{"internalType": "uint256", "name": "amountOut", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "bytes", "name": "path", "type": "bytes"},
                    {"internalType": "address", "name": "recipient", "type": "address"},
                    {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
                    {"internalType": "uint256", "name": "amountOutMinimum", "type": "uint256"},
                ],
                "internalType": "struct IV3SwapRouter.ExactInputParams",
                "name": "params",
                "type": "tuple",
            }
        ],
        "name": "exactInput",
        "outputs": [{"internalType": "uint256", "name": "amountOut", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "deadline", "type": "uint256"},
            {"internalType": "bytes[]", "name": "data", "type": "bytes[]"},
        ],
        "name": "multicall",
        "outputs": [{"internalType": "bytes[]", "name": "", "type": "bytes[]"}],
        "stateMutability": "payable",
        "type": "function",
    },
]

# Original V3 SwapRouter: deadline lives inside the params struct.
SWAP_ROUTER_V3_ABI: List[Dict] = [
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "address", "name": "tokenIn", "type": "address"},
                    {"internalType": "address", "name": "tokenOut", "type": "address"},
                    {"internalType": "uint24", "name": "fee", "type": "uint24"},
                    {"internalType": "address", "name": "recipient", "type": "address"},
                    {"internalType": "uint256", "name": "deadline", "type": "uint256"},
                    {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
                    {"internalType": "uint256", "name": "amountOutMinimum", "type": "uint256"},
                    {"internalType": "uint160", "name": "sqrtPriceLimitX96", "type": "uint160"},
                ],
                "internalType": "struct ISwapRouter.ExactInputSingleParams",
                "name": "params",
                "type": "tuple",
            }
        ],
        "name": "exactInputSingle",
        "outputs": [{"internalType": "uint256", "name": "amountOut", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function",
    },
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "bytes", "name": "path", "type": "bytes"},
                    {"internalType": "address", "name": "recipient", "type": "address"},
                    {"internalType": "uint256", "name": "deadline", "type": "uint256"},
                    {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
                    {"internalType": "uint256", "name": "amountOutMinimum", "type": "uint256"},
                ],
                "internalType": "struct ISwapRouter.ExactInputParams",
                "name": "params",
                "type": "tuple",
            }
        ],
        "name": "exactInput",
        "outputs": [{"internalType": "uint256", "name": "amountOut", "type": "uint256"}],
        "stateMutability": "payable",
        "type": "function",
    },
]


def encode_v3_path(tokens: Sequence[str], fees: Sequence[int]) -> bytes:
    """Pack token, fee, token, ... into the V3 path layout (20 + 3 + 20 ... bytes)."""
    if len(tokens) < 2 or len(fees) != len(tokens) - 1:
        raise ValueError("Invalid path specification: require N tokens and N-1 fees")
    parts: List[bytes] = []
    for i, token in enumerate(tokens):
        addr = Web3.to_checksum_address(token)
        parts.append(bytes.fromhex(addr[2:]))
        if i < len(fees):
            parts.append(int(fees[i]).to_bytes(3, byteorder="big"))
    return b"".join(parts)


def minimum_out(amount_out: int, slippage_tolerance: Decimal) -> int:
    """Apply slippage to a quoted output, rounding down."""
    keep = Decimal(1) - Decimal(slippage_tolerance)
    return int((Decimal(int(amount_out)) * keep).to_integral_value(rounding=ROUND_DOWN))


class UniswapClient(LedgerReader, LedgerWriter):
    """
    web3.py client for a Uniswap V3 deployment: ERC20 reads, quoter calls,
    router calldata, signing and receipts.
    """

    DEFAULTS = CHAIN_DEFAULTS

    def __init__(self, rpc_url: str, private_key: Optional[str] = None, chain_id: int = 1, quoter_address: Optional[str] = None, web3: Optional[Web3] = None) -> None:
        if web3 is None:
            # Request timeout avoids indefinite hangs on slow RPCs
            web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": 15}))
            # Handles POA-style extraData on L2s and testnets
            web3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
            if not web3.is_connected():
                raise RuntimeError("Failed to connect to RPC provider")
        self.web3 = web3
        self.chain_id: int = chain_id
        self.defaults: Dict[str, str] = self.DEFAULTS.get(chain_id, {})
        self._account: Optional[LocalAccount] = Account.from_key(private_key) if private_key else None
        quoter = quoter_address or self.defaults.get("QUOTER_V2")
        self._quoter: Optional[Contract] = self.web3.eth.contract(address=self.to_checksum(quoter), abi=QUOTER_V2_ABI) if quoter else None

    def to_checksum(self, address: str) -> str:
        return self.web3.to_checksum_address(address)

    @property
    def address(self) -> str:
        return self._require_account().address

    @property
    def wrapped_native(self) -> Optional[str]:
        weth = self.defaults.get("WETH")
        return self.to_checksum(weth) if weth else None

    def tx_explorer_url(self, tx_hash: str) -> str:
        base = self.defaults.get("EXPLORER", "")
        return f"{base}{tx_hash}" if base else tx_hash

    def erc20(self, token: str) -> Contract:
        return self.web3.eth.contract(address=self.to_checksum(token), abi=ERC20_ABI)

    # ----------------------------
    # LedgerReader
    # ----------------------------
    def get_code(self, address: str) -> bytes:
        return bytes(self.web3.eth.get_code(self.to_checksum(address)))

    def erc20_name(self, token: str) -> str:
        return str(self.erc20(token).functions.name().call())

    def erc20_symbol(self, token: str) -> str:
        return str(self.erc20(token).functions.symbol().call())

    def erc20_decimals(self, token: str) -> int:
        return int(self.erc20(token).functions.decimals().call())

    def erc20_balance(self, token: str, owner: str) -> int:
        return int(self.erc20(token).functions.balanceOf(self.to_checksum(owner)).call())

    def erc20_allowance(self, token: str, owner: str, spender: str) -> int:
        return int(self.erc20(token).functions.allowance(self.to_checksum(owner), self.to_checksum(spender)).call())

    def native_balance(self, owner: str) -> int:
        return int(self.web3.eth.get_balance(self.to_checksum(owner)))

    def gas_price(self) -> int:
        return int(self.web3.eth.gas_price)

    def block_number(self) -> int:
        return int(self.web3.eth.block_number)

    def get_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        try:
            receipt = self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return dict(receipt)

    def estimate_gas(self, sender: str, to: str, data: bytes, value: int) -> int:
        tx = {"from": self.to_checksum(sender), "to": self.to_checksum(to), "data": Web3.to_hex(data), "value": int(value)}
        return int(self.web3.eth.estimate_gas(tx))

    # ----------------------------
    # LedgerWriter
    # ----------------------------
    def _require_account(self) -> LocalAccount:
        if self._account is None:
            raise RuntimeError("Private key is required for this operation")
        return self._account

    def _default_tx_params(self, gas_price: Optional[int] = None, gas_limit: Optional[int] = None) -> Dict:
        # 'pending' keeps the nonce ahead of transactions still in the mempool
        params = {"chainId": self.chain_id, "from": self.address, "nonce": self.web3.eth.get_transaction_count(self.address, "pending")}
        params["gasPrice"] = int(gas_price) if gas_price is not None else self.gas_price()
        if gas_limit is not None:
            params["gas"] = int(gas_limit)
        return params

    def _sign_and_send(self, tx: Dict) -> str:
        account = self._require_account()
        signed = account.sign_transaction(tx)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction)
        return self.web3.to_hex(tx_hash)

    def approve(self, token: str, spender: str, amount: int) -> str:
        contract = self.erc20(token)
        tx = contract.functions.approve(self.to_checksum(spender), int(amount)).build_transaction(self._default_tx_params())
        if "gas" not in tx:
            tx["gas"] = int(self.web3.eth.estimate_gas(tx))
        return self._sign_and_send(tx)

    def send_transaction(self, request: TransactionRequest) -> str:
        tx = self._default_tx_params(gas_price=request.gas_price, gas_limit=request.gas_limit)
        tx.update({
            "to": self.to_checksum(request.to),
            "data": Web3.to_hex(request.data),
            "value": int(request.value),
        })
        return self._sign_and_send(tx)

    # ----------------------------
    # Quotes and router calldata
    # ----------------------------
    def _require_quoter(self) -> Contract:
        if self._quoter is None:
            raise RuntimeError("QuoterV2 not configured for this chain/network")
        return self._quoter

    def quote_exact_input_single(self, token_in: str, token_out: str, fee: int, amount_in: int) -> int:
        params = (self.to_checksum(token_in), self.to_checksum(token_out), int(amount_in), int(fee), 0)
        out_amount, _, _, _ = self._require_quoter().functions.quoteExactInputSingle(params).call()
        return int(out_amount)

    def quote_exact_input_path(self, tokens: Sequence[str], fees: Sequence[int], amount_in: int) -> int:
        path = encode_v3_path(tokens, fees)
        out_amount, _, _, _ = self._require_quoter().functions.quoteExactInput(path, int(amount_in)).call()
        return int(out_amount)

    def encode_swap_calldata(self, variant: str, router: str, tokens: Sequence[str], fees: Sequence[int], recipient: str, amount_in: int, min_out: int, deadline: int) -> bytes:
        if variant not in ROUTER_VARIANTS:
            raise ValueError(f"Unknown router variant: {variant}")
        tokens = [self.to_checksum(t) for t in tokens]
        to_addr = self.to_checksum(recipient)
        if variant == "swap_router_02":
            contract = self.web3.eth.contract(address=self.to_checksum(router), abi=SWAP_ROUTER_02_ABI)
            if len(tokens) == 2:
                inner = contract.encode_abi("exactInputSingle", args=[(tokens[0], tokens[1], int(fees[0]), to_addr, int(amount_in), int(min_out), 0)])
            else:
                inner = contract.encode_abi("exactInput", args=[(encode_v3_path(tokens, fees), to_addr, int(amount_in), int(min_out))])
            data = contract.encode_abi("multicall", args=[int(deadline), [Web3.to_bytes(hexstr=inner)]])
        else:
            contract = self.web3.eth.contract(address=self.to_checksum(router), abi=SWAP_ROUTER_V3_ABI)
            if len(tokens) == 2:
                data = contract.encode_abi("exactInputSingle", args=[(tokens[0], tokens[1], int(fees[0]), to_addr, int(deadline), int(amount_in), int(min_out), 0)])
            else:
                data = contract.encode_abi("exactInput", args=[(encode_v3_path(tokens, fees), to_addr, int(deadline), int(amount_in), int(min_out))])
        return Web3.to_bytes(hexstr=data)


class QuoterRoutingService(RoutingService):
    """
    Best-effort exact-input router: quotes every direct fee tier and two-hop
    paths through the wrapped native token, keeps the largest output.
    """

    FEE_TIERS: Tuple[int, ...] = (100, 500, 3000, 10000)

    def __init__(self, client: Any, router_address: str, fee_tiers: Optional[Iterable[int]] = None, intermediates: Optional[Iterable[str]] = None) -> None:
        self.client = client
        self.router_address = router_address
        self.fee_tiers = tuple(fee_tiers) if fee_tiers is not None else self.FEE_TIERS
        if intermediates is None:
            weth = getattr(client, "wrapped_native", None)
            intermediates = [weth] if weth else []
        self.intermediates = [i for i in intermediates if i]

    def _limited_paths(self, token_in: str, token_out: str) -> List[List[str]]:
        paths: List[List[str]] = []
        skip = {token_in.lower(), token_out.lower()}
        for mid in self.intermediates:
            if mid.lower() not in skip:
                paths.append([token_in, mid, token_out])
        return paths

    def _candidates(self, token_in: str, token_out: str, amount_in: int) -> Iterable[Tuple[int, List[str], List[int]]]:
        for fee in self.fee_tiers:
            try:
                out = self.client.quote_exact_input_single(token_in, token_out, fee, amount_in)
            except (ContractLogicError, BadFunctionCallOutput):
                # No pool at this tier
                continue
            yield int(out), [token_in, token_out], [fee]
        for path in self._limited_paths(token_in, token_out):
            for first in self.fee_tiers:
                for second in self.fee_tiers:
                    fees = [first, second]
                    try:
                        out = self.client.quote_exact_input_path(path, fees, amount_in)
                    except (ContractLogicError, BadFunctionCallOutput):
                        continue
                    yield int(out), list(path), fees

    def route(self, request: RouteRequest) -> Optional[RouteDescriptor]:
        if request.trade_type != EXACT_INPUT:
            raise ValueError(f"Unsupported trade type: {request.trade_type}")
        best: Optional[Tuple[int, List[str], List[int]]] = None
        for candidate in self._candidates(request.token_in, request.token_out, int(request.amount_in)):
            if best is None or candidate[0] > best[0]:
                best = candidate
        if best is None or best[0] <= 0:
            return None
        quote, tokens, fees = best
        min_out = minimum_out(quote, request.slippage_tolerance)
        calldata = self.client.encode_swap_calldata(
            request.executor_variant,
            self.router_address,
            tokens,
            fees,
            request.recipient,
            int(request.amount_in),
            min_out,
            int(request.deadline),
        )
        return RouteDescriptor(
            calldata=calldata,
            value=0,
            quote=quote,
            minimum_out=min_out,
            path=tuple(tokens),
            fees=tuple(fees),
            path_symbols=tuple(self.client.erc20_symbol(t) for t in tokens),
        )
