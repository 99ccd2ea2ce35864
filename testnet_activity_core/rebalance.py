# testnet_activity_core/rebalance.py
"""
Keeps each wallet funded above the configured per-asset thresholds by
issuing at most one corrective swap per check.
"""
import logging
from typing import Dict, Optional

from . import config as core_config
from .accounts import WalletHandle
from .balances import BalanceOracle, format_amount, to_raw_amount
from .executors import SwapExecutor, SwapParams
from .ledger import ActivityLedger
from .submitter import TransactionSubmitter

logger = logging.getLogger(__name__)


class RebalancePolicy:
    """
    Threshold-driven corrective swaps.

    If the native (gas-paying) asset is under its threshold, the first
    configured asset holding at least twice its own threshold donates
    `donor_fraction_percent` of its balance. Otherwise the first asset under
    its threshold receives `native_fraction_percent` of the native balance,
    provided native holds at least twice its threshold.

    :param thresholds: Symbol -> minimum balance, as whole-token decimal strings.
                       Iteration order is the donor/recipient priority.
    """
    def __init__(self,
                 oracle: BalanceOracle,
                 submitter: TransactionSubmitter,
                 swap_executor: SwapExecutor,
                 ledger: ActivityLedger,
                 thresholds: Optional[Dict[str, str]] = None,
                 donor_fraction_percent: int = core_config.REBALANCE_DONOR_FRACTION_PERCENT,
                 native_fraction_percent: int = core_config.REBALANCE_NATIVE_FRACTION_PERCENT
                ):
        self.oracle = oracle
        self.submitter = submitter
        self.swap_executor = swap_executor
        self.ledger = ledger
        self.thresholds: Dict[str, str] = dict(core_config.REBALANCE_THRESHOLDS if thresholds is None else thresholds)
        self.donor_fraction_percent = donor_fraction_percent
        self.native_fraction_percent = native_fraction_percent

    async def raw_thresholds(self) -> Dict[str, int]:
        raw: Dict[str, int] = {}
        for symbol, threshold in self.thresholds.items():
            raw[symbol] = to_raw_amount(threshold, await self.oracle.get_decimals(symbol))
        return raw

    async def check_and_rebalance(self, wallet: WalletHandle) -> bool:
        """
        Runs one rebalance check for `wallet`. Never raises: failures are logged.

        :return: True if a corrective swap confirmed.
        """
        logger.info(f"Checking balances for rebalancing for wallet: {wallet.address}")
        try:
            return await self._check_and_rebalance(wallet)
        except Exception as e:
            logger.error(f"Rebalance check failed for wallet {wallet.address}: {e}")
            return False

    async def _check_and_rebalance(self, wallet: WalletHandle) -> bool:
        balances = await self.oracle.get_balances(wallet)
        thresholds = await self.raw_thresholds()
        native = self.oracle.native_symbol
        native_balance = balances.get(native, 0)
        native_threshold = thresholds.get(native, 0)

        if native_balance < native_threshold:
            logger.warning(f"{native} balance low ({format_amount(native_balance, core_config.NATIVE_DECIMALS)}). "
                           f"Attempting to acquire more {native}...")
            for symbol in self.thresholds:
                if symbol == native or balances.get(symbol, 0) < 2 * thresholds[symbol]:
                    continue
                amount = balances[symbol] * self.donor_fraction_percent // 100
                if amount <= 0:
                    logger.info(f"Calculated swap amount for {symbol} is zero. Skipping donor.")
                    continue
                return await self._swap(wallet, symbol, native, amount)
            logger.info(f"No asset holds enough to rebalance {native} for wallet {wallet.address}.")
            return False

        for symbol in self.thresholds:
            if symbol == native or balances.get(symbol, 0) >= thresholds[symbol]:
                continue
            logger.warning(f"{symbol} balance low ({balances.get(symbol, 0)} raw). Attempting to acquire more...")
            if native_balance < 2 * native_threshold:
                logger.info(f"Not enough {native} to rebalance {symbol} for wallet {wallet.address}.")
                return False
            amount = native_balance * self.native_fraction_percent // 100
            if amount <= 0:
                logger.info(f"Calculated {native} swap amount is zero. Skipping rebalance.")
                return False
            return await self._swap(wallet, native, symbol, amount)
        return False

    async def _swap(self, wallet: WalletHandle, token_in: str, token_out: str, amount: int) -> bool:
        logger.info(f"Rebalancing {wallet.short_address}: swapping {amount} {token_in} for {token_out}...")
        params = SwapParams(token_in=token_in, token_out=token_out, amount_in=amount)
        try:
            await self.submitter.submit(lambda gas_quote: self.swap_executor.execute(wallet, params, gas_quote),
                                        label=f"rebalance {token_in}->{token_out}")
        except Exception as e:
            logger.error(f"Failed to rebalance {token_out} for wallet {wallet.address}: {e}")
            return False
        self.ledger.record_rebalance()
        return True
