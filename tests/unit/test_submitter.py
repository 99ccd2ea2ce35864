import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from testnet_activity_core.chain import TransactionHandle
from testnet_activity_core.errors import (
    ConfigurationError,
    ConfirmationTimeout,
    InsufficientBalanceError,
    MissingTransactionError,
    OnChainRevert,
    RpcTransportError,
)
from testnet_activity_core.gas import GasPriceEstimator, GasQuote
from testnet_activity_core.ledger import ActivityLedger
from testnet_activity_core.submitter import AttemptOutcome, TransactionSubmitter


def confirmed_handle(tx_hash, status=1, block_number=1):
    receipt = {"status": status, "blockNumber": block_number, "transactionHash": tx_hash}
    return TransactionHandle(tx_hash=tx_hash, waiter=AsyncMock(return_value=receipt))


def stalled_handle(tx_hash):
    async def never_mined():
        await asyncio.sleep(3600)
    return TransactionHandle(tx_hash=tx_hash, waiter=never_mined)


@pytest.fixture
def mock_estimator():
    """Fixture for a GasPriceEstimator whose quote encodes the attempt index."""
    estimator = Mock(spec=GasPriceEstimator)
    estimator.estimate = AsyncMock(side_effect=lambda attempt: GasQuote.legacy(100 * (attempt + 1)))
    return estimator


@pytest.fixture
def ledger():
    return ActivityLedger()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def submitter(mock_estimator, ledger, sleeps):
    async def record_sleep(seconds):
        sleeps.append(seconds)

    return TransactionSubmitter(
        gas_estimator=mock_estimator,
        ledger=ledger,
        explorer_tx_url="https://explorer.test/tx/",
        default_max_retries=3,
        default_initial_backoff_ms=1000,
        default_confirmation_timeout_ms=50,
        sleep=record_sleep,
    )


class TestTransactionSubmitter:
    def test_first_attempt_success(self, submitter, ledger, sleeps):
        """A first-try confirmation counts one transaction and never backs off."""
        action = AsyncMock(return_value=confirmed_handle("0xaaa"))

        receipt = asyncio.run(submitter.submit(action))

        assert receipt["status"] == 1
        assert ledger.stats.total_transactions == 1
        assert sleeps == []
        assert action.await_count == 1
        assert [a.outcome for a in submitter.last_attempts] == [AttemptOutcome.CONFIRMED]

    def test_action_receives_attempt_quote(self, submitter, mock_estimator):
        action = AsyncMock(return_value=confirmed_handle("0xaaa"))
        asyncio.run(submitter.submit(action))
        mock_estimator.estimate.assert_awaited_once_with(0)
        action.assert_awaited_once_with(GasQuote.legacy(100))

    def test_precondition_failure_not_retried(self, submitter, ledger, sleeps):
        """A closure that refuses to send is attempted once and never counted."""
        action = AsyncMock(side_effect=InsufficientBalanceError("XRP", 10, 1))

        with pytest.raises(InsufficientBalanceError):
            asyncio.run(submitter.submit(action))

        assert action.await_count == 1
        assert ledger.stats.total_transactions == 0
        assert sleeps == []
        assert submitter.last_attempts[0].outcome is AttemptOutcome.NOT_SENT

    def test_configuration_error_not_retried(self, submitter, ledger):
        action = AsyncMock(side_effect=ConfigurationError("router missing"))
        with pytest.raises(ConfigurationError):
            asyncio.run(submitter.submit(action))
        assert action.await_count == 1

    def test_missing_handle_not_retried(self, submitter, ledger):
        action = AsyncMock(return_value=None)
        with pytest.raises(MissingTransactionError):
            asyncio.run(submitter.submit(action))
        assert action.await_count == 1
        assert ledger.stats.total_transactions == 0

    def test_timeout_then_success(self, submitter, ledger, sleeps):
        """
        Attempt 1 stalls past the confirmation timeout, attempt 2 confirms:
        the attempt-2 receipt is returned and both sends are counted.
        """
        action = AsyncMock(side_effect=[stalled_handle("0x111"), confirmed_handle("0x222", block_number=7)])

        receipt = asyncio.run(submitter.submit(action))

        assert receipt["transactionHash"] == "0x222"
        assert receipt["blockNumber"] == 7
        assert ledger.stats.total_transactions == 2
        assert sleeps == [1.0]
        outcomes = [a.outcome for a in submitter.last_attempts]
        assert outcomes == [AttemptOutcome.TIMED_OUT, AttemptOutcome.CONFIRMED]
        assert isinstance(submitter.last_attempts[0].error, ConfirmationTimeout)

    def test_retry_uses_higher_gas(self, submitter):
        quotes = []

        async def action(gas_quote):
            quotes.append(gas_quote)
            if len(quotes) == 1:
                raise RpcTransportError("connection reset")
            return confirmed_handle("0xbbb")

        asyncio.run(submitter.submit(action))

        assert [q.gas_price for q in quotes] == [100, 200]

    def test_revert_is_retried_as_new_transaction(self, submitter, ledger):
        action = AsyncMock(side_effect=[confirmed_handle("0x111", status=0), confirmed_handle("0x222")])

        receipt = asyncio.run(submitter.submit(action))

        assert receipt["transactionHash"] == "0x222"
        assert ledger.stats.total_transactions == 2
        assert submitter.last_attempts[0].outcome is AttemptOutcome.REVERTED_ON_CHAIN

    def test_exhaustion_raises_last_error(self, submitter, ledger, sleeps):
        """Linear backoff between attempts and the final error surfaces unchanged in kind."""
        action = AsyncMock(side_effect=[
            RpcTransportError("first"),
            confirmed_handle("0x222", status=0),
            RpcTransportError("third"),
        ])

        with pytest.raises(RpcTransportError, match="third"):
            asyncio.run(submitter.submit(action))

        assert action.await_count == 3
        assert sleeps == [1.0, 2.0]
        assert ledger.stats.total_transactions == 1

    def test_exhaustion_on_revert_raises_revert(self, submitter):
        action = AsyncMock(return_value=confirmed_handle("0x333", status=0))
        with pytest.raises(OnChainRevert) as excinfo:
            asyncio.run(submitter.submit(action, max_retries=2))
        assert excinfo.value.tx_hash == "0x333"

    def test_fee_read_failure_counts_as_attempt(self, submitter, mock_estimator, sleeps):
        mock_estimator.estimate.side_effect = [RpcTransportError("fee read"), GasQuote.legacy(5)]
        action = AsyncMock(return_value=confirmed_handle("0xccc"))

        asyncio.run(submitter.submit(action))

        assert action.await_count == 1
        assert sleeps == [1.0]

    def test_per_call_overrides(self, submitter, sleeps):
        action = AsyncMock(side_effect=RpcTransportError("down"))
        with pytest.raises(RpcTransportError):
            asyncio.run(submitter.submit(action, max_retries=4, initial_backoff_ms=10))
        assert action.await_count == 4
        assert sleeps == [0.01, 0.02, 0.03]

    def test_invalid_max_retries(self, submitter):
        with pytest.raises(ValueError):
            asyncio.run(submitter.submit(AsyncMock(), max_retries=0))

    def test_nested_submit_keeps_outer_attempts(self, submitter):
        """An approval submitted from inside an action does not replace the outer attempt record."""
        async def action(gas_quote):
            await submitter.submit(AsyncMock(return_value=confirmed_handle("0xapprove")), label="approve")
            return confirmed_handle("0xmain")

        asyncio.run(submitter.submit(action))

        assert [a.tx_hash for a in submitter.last_attempts] == ["0xmain"]
