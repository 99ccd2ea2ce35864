# testnet_activity_core/executors.py
"""
Action executors: each one builds and sends exactly one main transaction for
a wallet, given a gas quote. They are always driven through
`TransactionSubmitter.submit`, which supplies the quote and owns the retries.

Executors check balances before touching the network and raise a
`PreconditionFailure` when the action cannot succeed. Approvals and funding
transfers that must land before the main transaction are submitted (and
confirmed) as separate transactions through the same submitter.
"""
import abc
import enum
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from eth_account import Account

from . import config as core_config
from .abi import ERC20_ABI, FACTORY_ABI, ROUTER_ABI, ZERO_ADDRESS
from .accounts import WalletHandle
from .balances import BalanceOracle
from .chain import ChainClient, TransactionHandle, to_checksum
from .errors import (
    ConfigurationError,
    InsufficientAllowanceError,
    InsufficientBalanceError,
    OnChainRevert,
    RpcTransportError,
    ZeroAmountError,
)
from .gas import GasQuote
from .submitter import TransactionSubmitter

logger = logging.getLogger(__name__)

BPS_DENOMINATOR = 10000


class ActionCategory(enum.Enum):
    SWAP = "SWAP"
    ADD_LIQUIDITY = "ADD_LIQUIDITY"
    REMOVE_LIQUIDITY = "REMOVE_LIQUIDITY"
    SEND_AND_RECEIVE = "SEND_AND_RECEIVE"
    RANDOM_SEND = "RANDOM_SEND"
    CUSTOM_CONTRACT_CALL = "CUSTOM_CONTRACT_CALL"


def compute_min_output(expected_output: int, tolerance_bps: int) -> int:
    """Slippage floor: expected * (10000 - bps) // 10000, in integers."""
    if not 0 <= tolerance_bps <= BPS_DENOMINATOR:
        raise ValueError(f"Slippage tolerance must be within 0..{BPS_DENOMINATOR} bps, got {tolerance_bps}")
    return expected_output * (BPS_DENOMINATOR - tolerance_bps) // BPS_DENOMINATOR


def compute_burn_amount(balance: int, percentage: int) -> int:
    """
    Pool-share tokens to burn for a removal of `percentage` percent.

    :raises ConfigurationError: percentage outside 0..100.
    :raises ZeroAmountError: the computed amount is zero (empty balance or 0%).
    """
    if not 0 <= percentage <= 100:
        raise ConfigurationError(f"Removal percentage must be within 0..100, got {percentage}")
    amount = balance * percentage // 100
    if amount == 0:
        raise ZeroAmountError(f"Computed LP amount to remove is zero (balance {balance}, {percentage}%).")
    return amount


def estimate_gas_cost(gas_quote: GasQuote, gas_limit: int) -> int:
    """Worst-case fee for a transaction with this quote and gas limit."""
    return gas_limit * gas_quote.max_cost_per_gas


def new_throwaway_wallet() -> WalletHandle:
    account = Account.create()
    return WalletHandle(address=account.address, account=account)


# --- Action parameters ---

@dataclass(frozen=True)
class SwapParams:
    token_in: str
    token_out: str
    amount_in: int


@dataclass(frozen=True)
class AddLiquidityParams:
    token: str
    native_amount: int
    token_amount: int


@dataclass(frozen=True)
class RemoveLiquidityParams:
    token: str
    percentage: int


@dataclass(frozen=True)
class TransferParams:
    token: str
    amount: int
    address_count: int = 1
    funding_amount: int = 0 # Native sent to each fresh address so it can pay for the return transfer


# --- Custom contract call shapes ---

@dataclass(frozen=True)
class FunctionCall:
    """ABI function called with fixed arguments."""
    function_name: str
    args: Tuple[Any, ...] = ()
    value: int = 0


@dataclass(frozen=True)
class SelfAddressCall:
    """ABI function whose only argument is the acting wallet's address."""
    function_name: str
    value: int = 0


@dataclass(frozen=True)
class RawCall:
    """Pre-encoded calldata sent as-is."""
    data: str
    value: int = 0


CallShape = Union[FunctionCall, SelfAddressCall, RawCall]


@dataclass(frozen=True)
class CustomContract:
    name: str
    address: str
    abi: List[Dict[str, Any]] = field(default_factory=list)
    calls: Tuple[CallShape, ...] = ()

    def __post_init__(self):
        function_names = {entry.get("name") for entry in self.abi if entry.get("type") == "function"}
        for call in self.calls:
            if isinstance(call, (FunctionCall, SelfAddressCall)) and call.function_name not in function_names:
                raise ConfigurationError(
                    f"Function '{call.function_name}' not found in ABI of custom contract '{self.name}'."
                )

    @classmethod
    def from_config(cls, entry: Dict[str, Any]) -> "CustomContract":
        """
        Builds a contract from a config mapping:
        {"name", "address", "abi", "calls": [{"function", "args"} | {"function", "args": "self"} | {"data"}]}
        """
        try:
            name = entry.get("name", entry["address"])
            address = entry["address"]
        except KeyError as e:
            raise ConfigurationError(f"Custom contract entry is missing {e}") from e

        calls: List[CallShape] = []
        for call in entry.get("calls", []):
            value = int(call.get("value", 0))
            if "data" in call:
                calls.append(RawCall(data=call["data"], value=value))
            elif "function" not in call:
                raise ConfigurationError(f"Custom call on '{name}' needs either 'function' or 'data'.")
            elif call.get("args") == "self":
                calls.append(SelfAddressCall(function_name=call["function"], value=value))
            else:
                calls.append(FunctionCall(function_name=call["function"], args=tuple(call.get("args", ())), value=value))
        return cls(name=name, address=address, abi=list(entry.get("abi", [])), calls=tuple(calls))


@dataclass(frozen=True)
class CustomCallParams:
    contract: CustomContract
    call: CallShape


# --- Executors ---

class ActionExecutor(abc.ABC):
    """
    Base class for all executors.

    :param client: ChainClient used for contract bindings and sending.
    :param oracle: BalanceOracle used for pre-flight checks and quotes.
    :param submitter: Submits the approvals/funding transfers an action depends on.
    """
    category: ActionCategory

    def __init__(self,
                 client: ChainClient,
                 oracle: BalanceOracle,
                 submitter: TransactionSubmitter,
                 router_address: str = core_config.ROUTER_ADDRESS,
                 deadline_seconds: int = core_config.SWAP_DEADLINE_SECONDS
                ):
        self.client = client
        self.oracle = oracle
        self.submitter = submitter
        self.router_address = router_address
        self.deadline_seconds = deadline_seconds

    @abc.abstractmethod
    async def execute(self, wallet: WalletHandle, params: Any, gas_quote: GasQuote) -> TransactionHandle:
        pass

    def router(self):
        if not self.router_address:
            raise ConfigurationError("Router address is not configured.")
        return self.client.contract(self.router_address, ROUTER_ABI)

    def deadline(self) -> int:
        return int(time.time()) + self.deadline_seconds

    async def ensure_allowance(self,
                               wallet: WalletHandle,
                               token_address: str,
                               spender: str,
                               amount: int,
                               label: str
                              ) -> None:
        """
        Makes sure `spender` may move `amount` of the token for `wallet`,
        submitting and confirming an approval first when it may not.
        """
        current = await self.oracle.get_allowance(wallet, token_address, spender)
        if current >= amount:
            logger.info(f"{label} already approved for router ({current} >= {amount}).")
            return

        logger.info(f"Approving {amount} {label} for router...")
        token = self.client.contract(token_address, ERC20_ABI)
        await self.submitter.submit(
            lambda gas_quote: self.client.send_contract_transaction(
                wallet, token.functions.approve(to_checksum(spender), amount), core_config.GAS_LIMIT_ERC20, gas_quote),
            label=f"approve {label}",
        )

        granted = await self.oracle.get_allowance(wallet, token_address, spender)
        if granted < amount:
            raise InsufficientAllowanceError(f"Allowance for {label} is {granted} after approval, need {amount}.")


class SwapExecutor(ActionExecutor):
    category = ActionCategory.SWAP

    def __init__(self, *args, slippage_bps: int = core_config.SLIPPAGE_TOLERANCE_BPS, **kwargs):
        super().__init__(*args, **kwargs)
        self.slippage_bps = slippage_bps

    async def quote_min_output(self, amount_in: int, path: List[str]) -> int:
        try:
            amounts = await self.oracle.get_amounts_out(amount_in, path)
            expected = amounts[-1]
        except (RpcTransportError, OnChainRevert, IndexError) as e:
            logger.error(f"Failed to estimate swap output for slippage: {e}. Proceeding with 0 min output.")
            return 0
        min_output = compute_min_output(expected, self.slippage_bps)
        logger.info(f"Expected output {expected}, min output with {self.slippage_bps} bps slippage: {min_output}")
        return min_output

    async def execute(self, wallet: WalletHandle, params: SwapParams, gas_quote: GasQuote) -> TransactionHandle:
        if params.token_in == params.token_out:
            raise ConfigurationError(f"Cannot swap {params.token_in} for itself.")
        if params.amount_in <= 0:
            raise ZeroAmountError(f"Swap amount for {params.token_in} is zero.")

        native_in = self.oracle.is_native(params.token_in)
        native_out = self.oracle.is_native(params.token_out)
        balance_in = await self.oracle.get_token_balance(wallet, params.token_in)
        needed = params.amount_in
        if native_in:
            needed += estimate_gas_cost(gas_quote, core_config.GAS_LIMIT_COMPLEX)
        if balance_in < needed:
            raise InsufficientBalanceError(params.token_in, needed, balance_in)

        path = [self.oracle.token_address(params.token_in), self.oracle.token_address(params.token_out)]
        router = self.router()
        min_output = await self.quote_min_output(params.amount_in, path)

        logger.info(f"SWAP {wallet.short_address}: {params.amount_in} {params.token_in} -> {params.token_out}")
        if native_in:
            function = router.functions.swapExactETHForTokens(min_output, path, wallet.address, self.deadline())
            return await self.client.send_contract_transaction(
                wallet, function, core_config.GAS_LIMIT_COMPLEX, gas_quote, value=params.amount_in)

        await self.ensure_allowance(wallet, path[0], self.router_address, params.amount_in, params.token_in)
        if native_out:
            function = router.functions.swapExactTokensForETH(
                params.amount_in, min_output, path, wallet.address, self.deadline())
        else:
            function = router.functions.swapExactTokensForTokens(
                params.amount_in, min_output, path, wallet.address, self.deadline())
        return await self.client.send_contract_transaction(wallet, function, core_config.GAS_LIMIT_COMPLEX, gas_quote)


class AddLiquidityExecutor(ActionExecutor):
    category = ActionCategory.ADD_LIQUIDITY

    async def execute(self, wallet: WalletHandle, params: AddLiquidityParams, gas_quote: GasQuote) -> TransactionHandle:
        if params.native_amount <= 0 or params.token_amount <= 0:
            raise ZeroAmountError(f"Liquidity amounts must be positive for {params.token}.")

        token_address = self.oracle.token_address(params.token)
        native_balance = await self.oracle.get_native_balance(wallet)
        native_needed = params.native_amount + estimate_gas_cost(gas_quote, core_config.GAS_LIMIT_COMPLEX)
        if native_balance < native_needed:
            raise InsufficientBalanceError(self.oracle.native_symbol, native_needed, native_balance)
        token_balance = await self.oracle.get_token_balance(wallet, params.token)
        if token_balance < params.token_amount:
            raise InsufficientBalanceError(params.token, params.token_amount, token_balance)

        await self.ensure_allowance(wallet, token_address, self.router_address, params.token_amount, params.token)

        logger.info(f"ADD LIQUIDITY {wallet.short_address}: {params.native_amount} "
                    f"{self.oracle.native_symbol} + {params.token_amount} {params.token}")
        function = self.router().functions.addLiquidityETH(
            token_address, params.token_amount, 0, 0, wallet.address, self.deadline())
        return await self.client.send_contract_transaction(
            wallet, function, core_config.GAS_LIMIT_COMPLEX, gas_quote, value=params.native_amount)


class RemoveLiquidityExecutor(ActionExecutor):
    category = ActionCategory.REMOVE_LIQUIDITY

    def __init__(self, *args, lp_token_addresses: Optional[Dict[str, str]] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.lp_token_addresses: Dict[str, str] = dict(
            core_config.LP_TOKEN_ADDRESSES if lp_token_addresses is None else lp_token_addresses)

    async def resolve_lp_token(self, token: str) -> str:
        """LP token of the wrapped-native/`token` pair: configured override, else factory lookup (cached)."""
        if token in self.lp_token_addresses:
            return to_checksum(self.lp_token_addresses[token])

        router = self.router()
        factory_address = await self.client.call("router factory()", router.functions.factory())
        factory = self.client.contract(factory_address, FACTORY_ABI)
        pair = await self.client.call(
            f"getPair() for {token}",
            factory.functions.getPair(self.oracle.token_address(self.oracle.native_symbol),
                                      self.oracle.token_address(token)))
        if not pair or int(pair, 16) == int(ZERO_ADDRESS, 16):
            raise ConfigurationError(f"No liquidity pair exists for {self.oracle.native_symbol}/{token}.")
        self.lp_token_addresses[token] = pair
        return to_checksum(pair)

    async def execute(self, wallet: WalletHandle, params: RemoveLiquidityParams, gas_quote: GasQuote) -> TransactionHandle:
        lp_address = await self.resolve_lp_token(params.token)
        lp_balance = await self.oracle.get_erc20_balance_at(wallet, lp_address)
        amount = compute_burn_amount(lp_balance, params.percentage)

        await self.ensure_allowance(wallet, lp_address, self.router_address, amount, f"{params.token} LP")

        logger.info(f"REMOVE LIQUIDITY {wallet.short_address}: {amount} LP ({params.percentage}% of {lp_balance})")
        function = self.router().functions.removeLiquidityETH(
            self.oracle.token_address(params.token), amount, 0, 0, wallet.address, self.deadline())
        return await self.client.send_contract_transaction(wallet, function, core_config.GAS_LIMIT_COMPLEX, gas_quote)


class SendAndReceiveExecutor(ActionExecutor):
    """
    Funds fresh addresses with native gas money, sends them tokens, and has
    them send the tokens back. The last return transfer is the handle returned.
    """
    category = ActionCategory.SEND_AND_RECEIVE

    async def execute(self, wallet: WalletHandle, params: TransferParams, gas_quote: GasQuote) -> TransactionHandle:
        if params.amount <= 0 or params.address_count < 1:
            raise ZeroAmountError(f"Nothing to send for {params.token}.")

        token_balance = await self.oracle.get_token_balance(wallet, params.token)
        if token_balance < params.amount * params.address_count:
            raise InsufficientBalanceError(params.token, params.amount * params.address_count, token_balance)
        native_balance = await self.oracle.get_native_balance(wallet)
        per_address_cost = (params.funding_amount
                            + estimate_gas_cost(gas_quote, core_config.GAS_LIMIT_NATIVE)
                            + estimate_gas_cost(gas_quote, core_config.GAS_LIMIT_ERC20))
        if native_balance < per_address_cost * params.address_count:
            raise InsufficientBalanceError(self.oracle.native_symbol, per_address_cost * params.address_count,
                                           native_balance)

        token = self.oracle.erc20(params.token)
        handle: Optional[TransactionHandle] = None
        for index in range(params.address_count):
            receiver = new_throwaway_wallet()
            logger.info(f"SEND&RECEIVE {wallet.short_address}: {params.amount} {params.token} via {receiver.address}")

            await self.submitter.submit(
                lambda quote: self.client.send_native(
                    wallet, receiver.address, params.funding_amount, core_config.GAS_LIMIT_NATIVE, quote),
                label="fund receiver")
            await self.submitter.submit(
                lambda quote: self.client.send_contract_transaction(
                    wallet, token.functions.transfer(receiver.address, params.amount), core_config.GAS_LIMIT_ERC20, quote),
                label=f"send {params.token}")

            send_back = token.functions.transfer(wallet.address, params.amount)
            if index < params.address_count - 1:
                await self.submitter.submit(
                    lambda quote: self.client.send_contract_transaction(
                        receiver, send_back, core_config.GAS_LIMIT_ERC20, quote),
                    label=f"return {params.token}")
            else:
                handle = await self.client.send_contract_transaction(
                    receiver, send_back, core_config.GAS_LIMIT_ERC20, gas_quote)
        return handle


class RandomSendExecutor(ActionExecutor):
    """Sends a fixed token amount to freshly generated addresses."""
    category = ActionCategory.RANDOM_SEND

    async def execute(self, wallet: WalletHandle, params: TransferParams, gas_quote: GasQuote) -> TransactionHandle:
        if params.amount <= 0 or params.address_count < 1:
            raise ZeroAmountError(f"Nothing to send for {params.token}.")

        total = params.amount * params.address_count
        balance = await self.oracle.get_token_balance(wallet, params.token)
        if self.oracle.is_native(params.token):
            total += params.address_count * estimate_gas_cost(gas_quote, core_config.GAS_LIMIT_NATIVE)
        if balance < total:
            raise InsufficientBalanceError(params.token, total, balance)

        token = None if self.oracle.is_native(params.token) else self.oracle.erc20(params.token)

        async def send_to(recipient: str, quote: GasQuote) -> TransactionHandle:
            logger.info(f"RANDOM SEND {wallet.short_address}: {params.amount} {params.token} -> {recipient}")
            if token is None:
                return await self.client.send_native(wallet, recipient, params.amount, core_config.GAS_LIMIT_NATIVE, quote)
            return await self.client.send_contract_transaction(
                wallet, token.functions.transfer(recipient, params.amount), core_config.GAS_LIMIT_ERC20, quote)

        recipients = [new_throwaway_wallet().address for _ in range(params.address_count)]
        for recipient in recipients[:-1]:
            await self.submitter.submit(lambda quote: send_to(recipient, quote), label=f"send {params.token}")
        return await send_to(recipients[-1], gas_quote)


class CustomCallExecutor(ActionExecutor):
    category = ActionCategory.CUSTOM_CONTRACT_CALL

    def __init__(self, *args, contracts: Optional[Sequence[CustomContract]] = None,
                 gas_limit: int = core_config.GAS_LIMIT_CUSTOM_CONTRACT, **kwargs):
        super().__init__(*args, **kwargs)
        if contracts is None:
            contracts = [CustomContract.from_config(entry) for entry in core_config.CUSTOM_CONTRACTS]
        self.contracts = list(contracts)
        self.gas_limit = gas_limit

    def choose(self, rng: random.Random) -> CustomCallParams:
        """Picks a random configured contract, then a random call on it."""
        if not self.contracts:
            raise ConfigurationError("Custom contract call selected but no contracts are configured.")
        contract = rng.choice(self.contracts)
        if not contract.calls:
            raise ConfigurationError(f"Custom contract '{contract.name}' has no calls configured.")
        return CustomCallParams(contract=contract, call=rng.choice(contract.calls))

    async def execute(self, wallet: WalletHandle, params: CustomCallParams, gas_quote: GasQuote) -> TransactionHandle:
        contract, call = params.contract, params.call
        balance = await self.oracle.get_native_balance(wallet)
        needed = call.value + estimate_gas_cost(gas_quote, self.gas_limit)
        if balance < needed:
            raise InsufficientBalanceError(self.oracle.native_symbol, needed, balance)

        if isinstance(call, RawCall):
            logger.info(f"CUSTOM CALL {wallet.short_address}: raw call on {contract.name}")
            return await self.client.send_raw_call(wallet, contract.address, call.data, self.gas_limit, gas_quote,
                                                   value=call.value)

        if isinstance(call, SelfAddressCall):
            args: Tuple[Any, ...] = (wallet.address,)
        elif isinstance(call, FunctionCall):
            args = call.args
        else:
            raise ConfigurationError(f"Unsupported custom call shape: {call!r}")

        logger.info(f"CUSTOM CALL {wallet.short_address}: {contract.name}.{call.function_name}{args}")
        bound = self.client.contract(contract.address, contract.abi)
        function = getattr(bound.functions, call.function_name)(*args)
        return await self.client.send_contract_transaction(wallet, function, self.gas_limit, gas_quote,
                                                           value=call.value)
