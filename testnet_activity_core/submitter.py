# testnet_activity_core/submitter.py
"""
The transaction-submission retry core.

`TransactionSubmitter.submit` takes an action closure ("send one transaction
given this gas quote"), prices it, sends it, races its confirmation against a
timer and retries with linear backoff and a rising gas buffer.

A timed-out transaction is abandoned, not cancelled: it may still be mined
after the retry's replacement transaction, so one logical action can end up
with two successful transactions on chain. No nonce-reuse detection is done.
"""
import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Mapping, Optional

from . import config as core_config
from .chain import TransactionHandle
from .errors import (
    ConfirmationTimeout,
    MissingTransactionError,
    NON_RETRYABLE_ERRORS,
    OnChainRevert,
)
from .gas import GasPriceEstimator, GasQuote
from .ledger import ActivityLedger

logger = logging.getLogger(__name__)

# "Submit one transaction given a gas quote". Owned by the submit() call that receives it.
ActionRequest = Callable[[GasQuote], Awaitable[Optional[TransactionHandle]]]
Receipt = Mapping[str, Any]
SleepFunction = Callable[[float], Awaitable[Any]]


class AttemptOutcome(enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED_ON_CHAIN = "reverted_on_chain"
    TIMED_OUT = "timed_out"
    RPC_ERROR = "rpc_error"
    NOT_SENT = "not_sent" # The closure failed before anything reached the network


@dataclass
class SubmissionAttempt:
    attempt_index: int
    gas_quote: Optional[GasQuote] = None
    transaction_handle: Optional[TransactionHandle] = None
    outcome: AttemptOutcome = AttemptOutcome.PENDING
    receipt: Optional[Receipt] = None
    error: Optional[BaseException] = None

    @property
    def tx_hash(self) -> Optional[str]:
        return self.transaction_handle.tx_hash if self.transaction_handle else None


class TransactionSubmitter:
    """
    Wraps chain-mutating actions with gas pricing, confirmation timeouts and retries.

    :param gas_estimator: Produces the attempt-indexed GasQuote.
    :param ledger: Receives one `record_transaction_sent` per attempt that reaches the network.
    :param sleep: Awaitable sleep used for backoff (tests inject a recorder).
    """
    def __init__(self,
                 gas_estimator: GasPriceEstimator,
                 ledger: ActivityLedger,
                 explorer_tx_url: str = core_config.EXPLORER_TX_URL,
                 default_max_retries: int = core_config.SUBMIT_MAX_RETRIES,
                 default_initial_backoff_ms: int = core_config.SUBMIT_INITIAL_BACKOFF_MS,
                 default_confirmation_timeout_ms: int = core_config.SUBMIT_CONFIRMATION_TIMEOUT_MS,
                 sleep: SleepFunction = asyncio.sleep
                ):
        self.gas_estimator = gas_estimator
        self.ledger = ledger
        self.explorer_tx_url = explorer_tx_url
        self.default_max_retries = default_max_retries
        self.default_initial_backoff_ms = default_initial_backoff_ms
        self.default_confirmation_timeout_ms = default_confirmation_timeout_ms
        self._sleep = sleep
        self.last_attempts: List[SubmissionAttempt] = []

    async def submit(self,
                     action: ActionRequest,
                     max_retries: Optional[int] = None,
                     initial_backoff_ms: Optional[int] = None,
                     confirmation_timeout_ms: Optional[int] = None,
                     label: str = "transaction"
                    ) -> Receipt:
        """
        Runs `action` until one of its transactions confirms with success status.

        :return: The successful receipt.
        :raises: The last observed error once `max_retries` attempts have failed.
                 Precondition and configuration errors are raised after the first attempt.
        """
        max_retries = self.default_max_retries if max_retries is None else max_retries
        initial_backoff_ms = self.default_initial_backoff_ms if initial_backoff_ms is None else initial_backoff_ms
        confirmation_timeout_ms = (self.default_confirmation_timeout_ms
                                   if confirmation_timeout_ms is None else confirmation_timeout_ms)
        if max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {max_retries}")

        attempts: List[SubmissionAttempt] = []
        try:
            return await self._submit_with_retries(action, attempts, max_retries, initial_backoff_ms,
                                                   confirmation_timeout_ms / 1000.0, label)
        finally:
            # Nested submits (approvals inside an action) also set this; the outermost call wins.
            self.last_attempts = attempts

    async def _submit_with_retries(self,
                                   action: ActionRequest,
                                   attempts: List[SubmissionAttempt],
                                   max_retries: int,
                                   initial_backoff_ms: int,
                                   confirmation_timeout_s: float,
                                   label: str
                                  ) -> Receipt:
        for attempt_index in range(max_retries):
            attempt = SubmissionAttempt(attempt_index=attempt_index)
            attempts.append(attempt)
            try:
                return await self._run_attempt(action, attempt, confirmation_timeout_s)
            except NON_RETRYABLE_ERRORS as e:
                attempt.error = e
                if attempt.outcome is AttemptOutcome.PENDING:
                    attempt.outcome = AttemptOutcome.NOT_SENT
                logger.warning(f"{label}: attempt {attempt_index + 1}/{max_retries} not retryable: {e}")
                raise
            except Exception as e:
                attempt.error = e
                if attempt.outcome is AttemptOutcome.PENDING:
                    attempt.outcome = AttemptOutcome.RPC_ERROR
                tx_info = f" (Tx: {attempt.tx_hash})" if attempt.tx_hash else ""
                logger.warning(f"{label}: attempt {attempt_index + 1}/{max_retries} failed{tx_info}. Error: {e}")
                if attempt_index >= max_retries - 1:
                    raise
                await self._sleep(initial_backoff_ms * (attempt_index + 1) / 1000.0)

        # range(max_retries) always returns or raises above
        raise AssertionError("unreachable")

    async def _run_attempt(self,
                           action: ActionRequest,
                           attempt: SubmissionAttempt,
                           confirmation_timeout_s: float
                          ) -> Receipt:
        attempt.gas_quote = await self.gas_estimator.estimate(attempt.attempt_index)

        handle = await action(attempt.gas_quote)
        if handle is None or not getattr(handle, "tx_hash", None):
            attempt.outcome = AttemptOutcome.NOT_SENT
            raise MissingTransactionError("Action did not return a transaction handle.")

        attempt.transaction_handle = handle
        self.ledger.record_transaction_sent()
        logger.info(f"Transaction sent: {self.explorer_tx_url}{handle.tx_hash}")

        try:
            receipt = await asyncio.wait_for(handle.wait(), timeout=confirmation_timeout_s)
        except asyncio.TimeoutError as e:
            # Only our wait is dropped; the transaction itself may still be mined.
            attempt.outcome = AttemptOutcome.TIMED_OUT
            raise ConfirmationTimeout(handle.tx_hash, confirmation_timeout_s) from e

        attempt.receipt = receipt
        if receipt.get("status") == 1:
            attempt.outcome = AttemptOutcome.CONFIRMED
            logger.info(f"Transaction confirmed: block {receipt.get('blockNumber')}")
            return receipt

        attempt.outcome = AttemptOutcome.REVERTED_ON_CHAIN
        raise OnChainRevert(f"Transaction failed on-chain (status {receipt.get('status')}): {handle.tx_hash}",
                            tx_hash=handle.tx_hash)
