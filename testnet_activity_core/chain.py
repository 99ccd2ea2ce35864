# testnet_activity_core/chain.py
"""
Handles communication with the EVM RPC endpoint: fee and balance reads,
contract calls, signing and sending, and receipt polling.

Every round-trip is bounded by a timeout and every failure leaves this module
as one of the typed errors in `errors.py`.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import (
    BadFunctionCallOutput,
    ContractLogicError,
    TransactionNotFound,
    Web3Exception,
)

from . import config as core_config
from .accounts import WalletHandle
from .errors import (
    ActivityAgentError,
    MalformedResponseError,
    OnChainRevert,
    RpcTransportError,
)
from .gas import FeeData, GasQuote

logger = logging.getLogger(__name__)


def to_checksum(address: str) -> str:
    return AsyncWeb3.to_checksum_address(address)

# Exceptions raised by web3 / aiohttp that we translate at the boundary.
_TRANSLATED_ERRORS = (Web3Exception, ValueError, aiohttp.ClientError, ConnectionError, OSError)


def classify_rpc_error(error: BaseException, description: str) -> ActivityAgentError:
    """Maps a raw web3 / transport exception onto the agent's error taxonomy."""
    if isinstance(error, ActivityAgentError):
        return error
    if isinstance(error, ContractLogicError):
        reason = getattr(error, "message", None) or str(error)
        return OnChainRevert(f"{description} reverted: {reason}", reason=reason)
    if isinstance(error, BadFunctionCallOutput):
        return MalformedResponseError(f"{description} returned undecodable data: {error}")
    if isinstance(error, ValueError) and not isinstance(error, Web3Exception):
        # web3 surfaces JSON decoding problems and node-side rejections as ValueError
        message = str(error)
        if "execution reverted" in message:
            return OnChainRevert(f"{description} reverted: {message}", reason=message)
        if "decode" in message.lower() or "json" in message.lower():
            return MalformedResponseError(f"{description} returned malformed data: {message}")
    return RpcTransportError(f"{description} failed: {error}")


@dataclass
class TransactionHandle:
    """A sent transaction: its hash plus a way to wait for its receipt."""
    tx_hash: str
    waiter: Callable[[], Awaitable[Mapping[str, Any]]] = field(repr=False)

    async def wait(self) -> Mapping[str, Any]:
        return await self.waiter()


class ChainClient:
    """
    Thin async wrapper around AsyncWeb3 for the single trusted RPC endpoint.

    :param rpc_url: JSON-RPC endpoint URL.
    :param call_timeout: Upper bound in seconds for any single RPC round-trip.
    :param receipt_poll_interval: Seconds between receipt lookups in `wait_for_receipt`.
    :param w3: Pre-built AsyncWeb3 instance (tests inject a mock here).
    """
    def __init__(self,
                 rpc_url: str = core_config.RPC_URL,
                 call_timeout: float = core_config.RPC_CALL_TIMEOUT_SECONDS,
                 receipt_poll_interval: float = core_config.RECEIPT_POLL_INTERVAL_SECONDS,
                 w3: Optional[AsyncWeb3] = None
                ):
        self.rpc_url = rpc_url
        self.call_timeout = call_timeout
        self.receipt_poll_interval = receipt_poll_interval
        self.w3 = w3 if w3 is not None else AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._chain_id: Optional[int] = None

    async def close(self) -> None:
        """Releases the provider's HTTP session."""
        await self.w3.provider.disconnect()

    async def _rpc(self, description: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.call_timeout)
        except asyncio.TimeoutError as e:
            raise RpcTransportError(f"{description} timed out after {self.call_timeout:.1f}s") from e
        except (ActivityAgentError, TransactionNotFound):
            raise
        except _TRANSLATED_ERRORS as e:
            raise classify_rpc_error(e, description) from e

    # --- Reads ---

    async def check_connection(self) -> int:
        """Verifies the endpoint answers and returns its chain id."""
        connected = await self._rpc("connection check", self.w3.is_connected())
        if not connected:
            raise RpcTransportError(f"Failed to connect to RPC endpoint at {self.rpc_url}")
        chain_id = await self.get_network()
        logger.info(f"Connected to {self.rpc_url} (chain id {chain_id})")
        return chain_id

    async def get_network(self) -> int:
        if self._chain_id is None:
            self._chain_id = int(await self._rpc("chain id lookup", self.w3.eth.chain_id))
        return self._chain_id

    async def get_fee_data(self) -> FeeData:
        latest_block = await self._rpc("latest block read", self.w3.eth.get_block("latest"))
        base_fee = latest_block.get("baseFeePerGas")
        gas_price = await self._rpc("gas price read", self.w3.eth.gas_price)

        priority_fee = None
        if base_fee is not None:
            priority_fee = await self._rpc("priority fee read", self.w3.eth.max_priority_fee)

        return FeeData(
            base_fee_per_gas=int(base_fee) if base_fee is not None else None,
            max_priority_fee_per_gas=int(priority_fee) if priority_fee is not None else None,
            gas_price=int(gas_price) if gas_price is not None else None,
        )

    async def get_balance(self, address: str) -> int:
        return int(await self._rpc(f"native balance read for {address}",
                                   self.w3.eth.get_balance(self.to_checksum(address))))

    def contract(self, address: str, abi: List[Dict[str, Any]]):
        return self.w3.eth.contract(address=self.to_checksum(address), abi=abi)

    async def call(self, description: str, contract_function) -> Any:
        """Executes a read-only contract call."""
        return await self._rpc(description, contract_function.call())

    async def get_receipt(self, tx_hash: str) -> Optional[Mapping[str, Any]]:
        """Returns the receipt, or None while the transaction is not mined yet."""
        try:
            return await self._rpc(f"receipt lookup for {tx_hash}", self.w3.eth.get_transaction_receipt(tx_hash))
        except TransactionNotFound:
            return None

    async def wait_for_receipt(self, tx_hash: str) -> Mapping[str, Any]:
        """
        Polls until the transaction is mined. Has no deadline of its own:
        callers bound it (the submitter races it against a timer).
        """
        while True:
            receipt = await self.get_receipt(tx_hash)
            if receipt is not None:
                return receipt
            await asyncio.sleep(self.receipt_poll_interval)

    # --- Writes ---

    async def _base_params(self, wallet: WalletHandle, gas_limit: int, gas_quote: GasQuote, value: int) -> Dict[str, Any]:
        nonce = await self._rpc(f"nonce lookup for {wallet.address}",
                                self.w3.eth.get_transaction_count(wallet.address, "pending"))
        params: Dict[str, Any] = {
            "from": wallet.address,
            "value": value,
            "gas": gas_limit,
            "nonce": nonce,
            "chainId": await self.get_network(),
        }
        params.update(gas_quote.as_tx_params())
        return params

    async def _sign_and_send(self, wallet: WalletHandle, tx_params: Dict[str, Any]) -> TransactionHandle:
        signed = wallet.account.sign_transaction(tx_params)
        tx_hash_bytes = await self._rpc(f"send from {wallet.address}",
                                        self.w3.eth.send_raw_transaction(signed.raw_transaction))
        tx_hash = AsyncWeb3.to_hex(tx_hash_bytes)
        return TransactionHandle(tx_hash=tx_hash, waiter=lambda: self.wait_for_receipt(tx_hash))

    async def send_native(self,
                          wallet: WalletHandle,
                          recipient: str,
                          value: int,
                          gas_limit: int,
                          gas_quote: GasQuote
                         ) -> TransactionHandle:
        """Plain value transfer of the gas-paying asset."""
        params = await self._base_params(wallet, gas_limit, gas_quote, value)
        params["to"] = self.to_checksum(recipient)
        return await self._sign_and_send(wallet, params)

    async def send_contract_transaction(self,
                                        wallet: WalletHandle,
                                        contract_function,
                                        gas_limit: int,
                                        gas_quote: GasQuote,
                                        value: int = 0
                                       ) -> TransactionHandle:
        """Builds, signs and sends a state-changing contract call."""
        params = await self._base_params(wallet, gas_limit, gas_quote, value)
        tx_params = await self._rpc(f"build {contract_function.fn_name}",
                                    contract_function.build_transaction(params))
        return await self._sign_and_send(wallet, tx_params)

    async def send_raw_call(self,
                            wallet: WalletHandle,
                            to: str,
                            data: str,
                            gas_limit: int,
                            gas_quote: GasQuote,
                            value: int = 0
                           ) -> TransactionHandle:
        """Sends pre-encoded calldata to a contract."""
        params = await self._base_params(wallet, gas_limit, gas_quote, value)
        params["to"] = self.to_checksum(to)
        params["data"] = data
        return await self._sign_and_send(wallet, params)

    to_checksum = staticmethod(to_checksum)
