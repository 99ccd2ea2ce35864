"""
Exception taxonomy shared by every component of the activity agent.

The split matters to the retry layers: precondition and configuration errors
cannot be fixed by resubmitting with more gas, everything else can.
"""
from typing import Optional


class ActivityAgentError(Exception):
    """Base class for all errors raised by the agent core."""


class PreconditionFailure(ActivityAgentError):
    """An action refused to submit because a local precondition did not hold."""


class InsufficientBalanceError(PreconditionFailure):
    def __init__(self, symbol: str, needed: int, available: int):
        self.symbol = symbol
        self.needed = needed
        self.available = available
        super().__init__(f"Insufficient {symbol} balance. Needed {needed}, have {available}.")


class InsufficientAllowanceError(PreconditionFailure):
    """Spending authorization is still too low after an approval was confirmed."""


class ZeroAmountError(PreconditionFailure):
    """A computed transfer/burn amount came out as zero."""


class MissingTransactionError(PreconditionFailure):
    """The action closure returned without producing a transaction handle."""


class RpcTransportError(ActivityAgentError):
    """Network or connection failure while talking to the RPC endpoint."""


class MalformedResponseError(RpcTransportError):
    """The node answered, but the payload could not be decoded."""


class OnChainRevert(ActivityAgentError):
    """A call reverted, either at estimation time or after being mined."""

    def __init__(self, message: str, tx_hash: Optional[str] = None, reason: Optional[str] = None):
        self.tx_hash = tx_hash
        self.reason = reason
        super().__init__(message)


class ConfirmationTimeout(ActivityAgentError):
    """We stopped waiting for a receipt. The transaction may still be mined later."""

    def __init__(self, tx_hash: str, timeout_seconds: float):
        self.tx_hash = tx_hash
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Transaction confirmation timed out after {timeout_seconds:.1f}s: {tx_hash}")


class ConfigurationError(ActivityAgentError):
    """Missing or unusable configuration (addresses, ABIs, weights, wallets)."""


# Errors the submitter must never retry with a fresh gas quote.
NON_RETRYABLE_ERRORS = (PreconditionFailure, ConfigurationError)
