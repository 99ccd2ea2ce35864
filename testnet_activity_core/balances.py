"""
Read-only balance, allowance and price-quote queries.

Amounts are handled as integers in each asset's smallest unit. Human-readable
decimal strings from configuration are converted with `to_raw_amount`.
"""
import logging
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from . import config as core_config
from .abi import ERC20_ABI, ROUTER_ABI
from .accounts import WalletHandle
from .chain import ChainClient, to_checksum
from .errors import ConfigurationError, OnChainRevert, RpcTransportError

logger = logging.getLogger(__name__)


def to_raw_amount(amount: str, decimals: int) -> int:
    """'0.005' with 18 decimals -> 5000000000000000. Excess precision is truncated."""
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ConfigurationError(f"Invalid token amount: {amount!r}") from e
    if value < 0:
        raise ConfigurationError(f"Token amounts cannot be negative: {amount!r}")
    return int(value.scaleb(decimals))


def format_amount(raw_amount: int, decimals: int) -> str:
    return format(Decimal(raw_amount).scaleb(-decimals).normalize(), "f")


class BalanceOracle:
    """
    Balance and quote accessor shared by executors and the rebalance policy.

    :param client: The ChainClient used for reads.
    :param tokens: Symbol -> ERC-20 address. The native symbol must not be listed here.
    """
    def __init__(self,
                 client: ChainClient,
                 tokens: Optional[Dict[str, str]] = None,
                 native_symbol: str = core_config.NATIVE_SYMBOL,
                 wrapped_native_symbol: str = core_config.WRAPPED_NATIVE_SYMBOL,
                 router_address: str = core_config.ROUTER_ADDRESS
                ):
        self.client = client
        self.tokens: Dict[str, str] = dict(core_config.TOKENS if tokens is None else tokens)
        self.native_symbol = native_symbol
        self.wrapped_native_symbol = wrapped_native_symbol
        self.router_address = router_address
        self._decimals_cache: Dict[str, int] = {}

    @property
    def tracked_symbols(self) -> List[str]:
        """Native asset first, then the configured tokens in configuration order."""
        return [self.native_symbol] + [symbol for symbol in self.tokens if symbol != self.native_symbol]

    def is_native(self, symbol: str) -> bool:
        return symbol == self.native_symbol

    def token_address(self, symbol: str) -> str:
        """ERC-20 address for a symbol; the native asset maps to its wrapped token."""
        lookup = self.wrapped_native_symbol if self.is_native(symbol) else symbol
        address = self.tokens.get(lookup)
        if not address:
            raise ConfigurationError(f"Token address not found for symbol: {lookup}")
        return to_checksum(address)

    def erc20(self, symbol: str):
        return self.client.contract(self.token_address(symbol), ERC20_ABI)

    async def get_decimals(self, symbol: str) -> int:
        if self.is_native(symbol):
            return core_config.NATIVE_DECIMALS
        if symbol not in self._decimals_cache:
            decimals = await self.client.call(f"decimals() on {symbol}", self.erc20(symbol).functions.decimals())
            self._decimals_cache[symbol] = int(decimals)
        return self._decimals_cache[symbol]

    async def get_native_balance(self, wallet: WalletHandle) -> int:
        return await self.client.get_balance(wallet.address)

    async def get_token_balance(self, wallet: WalletHandle, symbol: str) -> int:
        if self.is_native(symbol):
            return await self.get_native_balance(wallet)
        balance = await self.client.call(f"balanceOf() on {symbol}",
                                         self.erc20(symbol).functions.balanceOf(wallet.address))
        return int(balance)

    async def get_erc20_balance_at(self, wallet: WalletHandle, token_address: str) -> int:
        contract = self.client.contract(token_address, ERC20_ABI)
        return int(await self.client.call(f"balanceOf() on {token_address}",
                                          contract.functions.balanceOf(wallet.address)))

    async def get_balances(self, wallet: WalletHandle) -> Dict[str, int]:
        """
        Every tracked balance in raw units. A failed read is logged and reported
        as zero so one broken token contract does not hide the others.
        """
        balances: Dict[str, int] = {}
        for symbol in self.tracked_symbols:
            try:
                balances[symbol] = await self.get_token_balance(wallet, symbol)
            except (RpcTransportError, OnChainRevert, ConfigurationError) as e:
                logger.warning(f"Could not fetch {symbol} balance for wallet {wallet.address}: {e}")
                balances[symbol] = 0
        return balances

    async def get_allowance(self, wallet: WalletHandle, token_address: str, spender: str) -> int:
        contract = self.client.contract(token_address, ERC20_ABI)
        return int(await self.client.call(f"allowance() on {token_address}",
                                          contract.functions.allowance(wallet.address, to_checksum(spender))))

    async def get_amounts_out(self, amount_in: int, path: List[str]) -> List[int]:
        router = self.client.contract(self.router_address, ROUTER_ABI)
        checksummed_path = [to_checksum(address) for address in path]
        amounts = await self.client.call("getAmountsOut()", router.functions.getAmountsOut(amount_in, checksummed_path))
        return [int(amount) for amount in amounts]

    async def describe_balances(self, wallet: WalletHandle) -> Dict[str, str]:
        """Balances formatted in whole-token units, for display."""
        described: Dict[str, str] = {}
        for symbol, raw in (await self.get_balances(wallet)).items():
            try:
                decimals = await self.get_decimals(symbol)
            except (RpcTransportError, OnChainRevert):
                described[symbol] = f"{raw} (raw)"
                continue
            described[symbol] = format_amount(raw, decimals)
        return described
