# testnet_activity_core/scheduler.py
"""
The per-wallet activity loop.

For every wallet, the scheduler runs {rebalance check, weighted action
selection, dispatch} under an outer retry budget. Each dispatched action goes
through `TransactionSubmitter.submit`, which has its own inner retries, so a
failure seen here has already been retried at the transaction level. An outer
retry re-runs the whole sequence and may pick a different action category.
"""
import asyncio
import logging
import random
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from . import config as core_config
from .accounts import WalletHandle
from .alerts import AlertSink
from .balances import BalanceOracle, to_raw_amount
from .errors import ConfigurationError, PreconditionFailure, ZeroAmountError
from .executors import (
    ActionCategory,
    ActionExecutor,
    AddLiquidityParams,
    BPS_DENOMINATOR,
    CustomCallExecutor,
    RemoveLiquidityParams,
    SwapParams,
    TransferParams,
)
from .ledger import ActivityLedger
from .rebalance import RebalancePolicy
from .submitter import TransactionSubmitter

logger = logging.getLogger(__name__)


def select_weighted_action(weights: Mapping[str, int], rng: random.Random) -> str:
    """
    Draws a category with probability proportional to its weight.

    Draws u in [0, total), then walks the categories in order subtracting each
    weight and returns the first one that takes u below zero.
    """
    if any(weight < 0 for weight in weights.values()):
        raise ConfigurationError(f"Action weights must be non-negative: {dict(weights)}")
    total = sum(weights.values())
    if total <= 0:
        raise ConfigurationError("Total action weight must be positive.")

    remaining = rng.random() * total
    chosen = None
    for category, weight in weights.items():
        if weight <= 0:
            continue
        chosen = category
        remaining -= weight
        if remaining < 0:
            return category
    # Float rounding can leave remaining at exactly 0 after the last category
    return chosen


def compute_swap_amount(balance: int, min_bps: int, max_bps: int, rng: random.Random) -> int:
    """A random fraction of `balance` between min_bps and max_bps (inclusive), in integers."""
    if not 0 <= min_bps <= max_bps <= BPS_DENOMINATOR:
        raise ConfigurationError(f"Invalid swap amount range: {min_bps}..{max_bps} bps")
    span = max_bps - min_bps + 1
    bps = min(min_bps + int(rng.random() * span), max_bps)
    return balance * bps // BPS_DENOMINATOR


class ActionScheduler:
    """
    Drives every wallet through one randomly chosen action per cycle.

    :param executors: One executor per enabled action category.
    :param weights: Category name -> integer weight; iteration order matters for selection.
    :param retry_on_precondition_failure: When False, a PreconditionFailure skips
        the wallet for this cycle instead of consuming another outer attempt.
    :param sleep: Awaitable sleep used for the outer retry delay (tests inject a recorder).
    :param clock: Monotonic clock used to bound `run`.
    """
    def __init__(self,
                 wallets: List[WalletHandle],
                 oracle: BalanceOracle,
                 submitter: TransactionSubmitter,
                 rebalance_policy: RebalancePolicy,
                 executors: Mapping[ActionCategory, ActionExecutor],
                 ledger: ActivityLedger,
                 alert_sink: AlertSink,
                 weights: Optional[Mapping[str, int]] = None,
                 rng: Optional[random.Random] = None,
                 outer_retries: int = core_config.OUTER_RETRIES_PER_WALLET,
                 outer_retry_delay: float = core_config.OUTER_RETRY_DELAY_SECONDS,
                 retry_on_precondition_failure: bool = core_config.RETRY_ON_PRECONDITION_FAILURE,
                 min_loop_interval: int = core_config.MIN_LOOP_INTERVAL_SECONDS,
                 max_loop_interval: int = core_config.MAX_LOOP_INTERVAL_SECONDS,
                 swap_min_bps: int = core_config.SWAP_AMOUNT_MIN_BPS,
                 swap_max_bps: int = core_config.SWAP_AMOUNT_MAX_BPS,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 clock: Callable[[], float] = time.monotonic
                ):
        if outer_retries < 1:
            raise ConfigurationError(f"outer_retries must be >= 1, got {outer_retries}")
        self.wallets = list(wallets)
        self.oracle = oracle
        self.submitter = submitter
        self.rebalance_policy = rebalance_policy
        self.executors: Dict[ActionCategory, ActionExecutor] = dict(executors)
        self.ledger = ledger
        self.alert_sink = alert_sink
        self.weights: Dict[str, int] = dict(core_config.ACTION_WEIGHTS if weights is None else weights)
        self.rng = rng or random.Random()
        self.outer_retries = outer_retries
        self.outer_retry_delay = outer_retry_delay
        self.retry_on_precondition_failure = retry_on_precondition_failure
        self.min_loop_interval = min_loop_interval
        self.max_loop_interval = max_loop_interval
        self.swap_min_bps = swap_min_bps
        self.swap_max_bps = swap_max_bps
        self._sleep = sleep
        self._clock = clock
        self._stop_event = asyncio.Event()
        self._validate_weights()

    def _validate_weights(self) -> None:
        for name, weight in self.weights.items():
            try:
                category = ActionCategory(name)
            except ValueError as e:
                raise ConfigurationError(f"Unknown action category in weights: {name}") from e
            if weight > 0 and category not in self.executors:
                raise ConfigurationError(f"No executor registered for weighted action {name}")
        if sum(self.weights.values()) <= 0:
            raise ConfigurationError("Total action weight must be positive.")

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def request_stop(self) -> None:
        """Stops the loop before the next wallet or cycle. In-flight transactions are left alone."""
        if not self._stop_event.is_set():
            logger.info("Stop requested. Finishing the current wallet...")
        self._stop_event.set()

    async def _alert(self, message: str, severity: str = "info") -> None:
        try:
            await self.alert_sink.notify(message, severity)
        except Exception as e:
            logger.error(f"Failed to send alert ({severity}): {e}")

    # --- Action parameters ---

    async def build_params(self, category: ActionCategory, wallet: WalletHandle) -> Any:
        """Sizes the selected action from configuration and the wallet's balances."""
        if category is ActionCategory.SWAP:
            candidates = [symbol for symbol in self.oracle.tokens
                          if symbol not in (self.oracle.native_symbol, self.oracle.wrapped_native_symbol)]
            if not candidates:
                raise ConfigurationError(f"No tokens configured to swap with {self.oracle.native_symbol}.")
            token = self.rng.choice(candidates)
            balance = await self.oracle.get_native_balance(wallet)
            amount = compute_swap_amount(balance, self.swap_min_bps, self.swap_max_bps, self.rng)
            if amount <= 0:
                raise ZeroAmountError(f"Calculated {self.oracle.native_symbol} swap amount is zero.")
            return SwapParams(token_in=self.oracle.native_symbol, token_out=token, amount_in=amount)

        if category is ActionCategory.ADD_LIQUIDITY:
            lp_config = core_config.ADD_LIQUIDITY_CONFIG
            token = str(lp_config["token"])
            return AddLiquidityParams(
                token=token,
                native_amount=to_raw_amount(str(lp_config["base_amount"]), core_config.NATIVE_DECIMALS),
                token_amount=to_raw_amount(str(lp_config["token_amount"]), await self.oracle.get_decimals(token)),
            )

        if category is ActionCategory.REMOVE_LIQUIDITY:
            remove_config = core_config.REMOVE_LIQUIDITY_CONFIG
            return RemoveLiquidityParams(token=str(remove_config["token"]), percentage=int(remove_config["percentage"]))

        if category is ActionCategory.SEND_AND_RECEIVE:
            send_config = core_config.SEND_AND_RECEIVE_CONFIG
            token = str(send_config["token"])
            return TransferParams(
                token=token,
                amount=to_raw_amount(str(send_config["send_amount"]), await self.oracle.get_decimals(token)),
                address_count=int(send_config["address_count"]),
                funding_amount=to_raw_amount(str(send_config["funding_amount"]), core_config.NATIVE_DECIMALS),
            )

        if category is ActionCategory.RANDOM_SEND:
            send_config = core_config.RANDOM_SEND_CONFIG
            token = str(send_config["token"])
            return TransferParams(
                token=token,
                amount=to_raw_amount(str(send_config["send_amount"]), await self.oracle.get_decimals(token)),
                address_count=int(send_config["address_count"]),
            )

        if category is ActionCategory.CUSTOM_CONTRACT_CALL:
            executor = self.executors[category]
            if not isinstance(executor, CustomCallExecutor):
                raise ConfigurationError("Custom contract calls need a CustomCallExecutor.")
            return executor.choose(self.rng)

        raise ConfigurationError(f"Unsupported action category: {category}")

    async def dispatch(self, wallet: WalletHandle, category: ActionCategory) -> None:
        executor = self.executors.get(category)
        if executor is None:
            raise ConfigurationError(f"No executor registered for {category.value}")
        params = await self.build_params(category, wallet)
        await self.submitter.submit(lambda gas_quote: executor.execute(wallet, params, gas_quote),
                                    label=f"{category.value} {wallet.short_address}")
        self.ledger.record_action_success(category.value)

    # --- Loop ---

    async def process_wallet(self, wallet: WalletHandle) -> bool:
        """
        Runs {rebalance, select, dispatch} for one wallet under the outer retry budget.

        :return: True if an action confirmed, False if the wallet was skipped.
        """
        logger.info(f"Processing Wallet: {wallet.address}")
        self.ledger.touch_wallet(wallet.address)

        retries_left = self.outer_retries
        last_error: Optional[Exception] = None
        while retries_left > 0:
            category: Optional[ActionCategory] = None
            try:
                await self.rebalance_policy.check_and_rebalance(wallet)
                category = ActionCategory(select_weighted_action(self.weights, self.rng))
                logger.info(f"Selected action for wallet {wallet.short_address}: {category.value}")
                await self.dispatch(wallet, category)
                return True
            except Exception as e:
                last_error = e
                retries_left -= 1
                self.ledger.record_action_failure()
                action_name = category.value if category else "action selection"
                logger.error(f"{action_name} failed for wallet {wallet.address}: {e}")
                if isinstance(e, PreconditionFailure) and not self.retry_on_precondition_failure:
                    logger.info(f"Skipping wallet {wallet.address} for this cycle: precondition not met.")
                    break
                if retries_left > 0:
                    logger.info(f"Retrying action for wallet {wallet.address} ({retries_left} retries left)...")
                    await self._sleep(self.outer_retry_delay)

        logger.error(f"Action failed after all retries for wallet {wallet.address}. Moving to next wallet/cycle.")
        await self._alert(
            f"Wallet {wallet.address} skipped this cycle after repeated failures. Last error: {last_error}", "error")
        return False

    async def run_cycle(self) -> int:
        """Processes every wallet once, then flushes the ledger. Returns the number of successful wallets."""
        successes = 0
        for wallet in self.wallets:
            if self.stop_requested:
                logger.info("Stop requested. Not starting another wallet.")
                break
            if await self.process_wallet(wallet):
                successes += 1
        logger.info(f"Cycle finished: {successes}/{len(self.wallets)} wallet(s) completed an action.")
        self.ledger.flush()
        return successes

    async def _wait_between_cycles(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run(self, duration: float = core_config.RUN_DURATION_SECONDS) -> None:
        """
        Repeats `run_cycle` with a random pause between cycles until `duration`
        seconds have elapsed or a stop is requested. Always flushes the ledger
        and sends a final alert.
        """
        logger.info(f"--- Starting {duration / 3600:.1f}-hour random loop ---")
        await self._alert(f"Activity loop started for {len(self.wallets)} wallet(s).", "info")
        start = self._clock()
        completed = False
        try:
            while not self.stop_requested and self._clock() - start < duration:
                await self.run_cycle()
                if self.stop_requested:
                    break
                pause = self.rng.randint(self.min_loop_interval, self.max_loop_interval)
                logger.info(f"Sleeping for {pause} seconds before next cycle.")
                await self._wait_between_cycles(pause)
            completed = not self.stop_requested
        finally:
            self.ledger.flush()
            self.ledger.report()
            if completed:
                logger.info("--- Random loop finished ---")
                await self._alert("Activity loop completed its scheduled run.", "info")
            else:
                await self._alert("Activity loop stopped before completion.", "warn")
