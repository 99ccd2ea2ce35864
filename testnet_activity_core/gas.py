"""
Fee data and buffered gas quotes.

A GasQuote is built fresh for every submission attempt. The buffer grows with
the attempt index so each retry outbids the previous, possibly stuck, one.
All arithmetic on wei amounts is integer arithmetic.
"""
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional

from . import config as core_config

logger = logging.getLogger(__name__)

GWEI: int = 10 ** 9


@dataclass(frozen=True)
class FeeData:
    """Raw fee suggestions as reported by the node. Any field may be absent."""
    base_fee_per_gas: Optional[int]
    max_priority_fee_per_gas: Optional[int]
    gas_price: Optional[int]

    @property
    def supports_eip1559(self) -> bool:
        # Same rule ethers uses: a block base fee plus a non-zero priority suggestion
        return self.base_fee_per_gas is not None and bool(self.max_priority_fee_per_gas)


@dataclass(frozen=True)
class GasQuote:
    """
    Either an EIP-1559 pair (max_fee_per_gas, max_priority_fee_per_gas)
    or a legacy gas_price. Exactly one shape is populated.
    """
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None
    gas_price: Optional[int] = None

    def __post_init__(self):
        has_1559 = self.max_fee_per_gas is not None or self.max_priority_fee_per_gas is not None
        has_legacy = self.gas_price is not None
        if has_1559 and has_legacy:
            raise ValueError("GasQuote cannot carry both EIP-1559 fields and a legacy gas price")
        if not has_1559 and not has_legacy:
            raise ValueError("GasQuote needs either EIP-1559 fields or a legacy gas price")
        if has_1559 and (self.max_fee_per_gas is None or self.max_priority_fee_per_gas is None):
            raise ValueError("EIP-1559 GasQuote needs both max_fee_per_gas and max_priority_fee_per_gas")
        for value in (self.max_fee_per_gas, self.max_priority_fee_per_gas, self.gas_price):
            if value is not None and (not isinstance(value, int) or isinstance(value, bool) or value < 0):
                raise ValueError(f"Gas amounts must be non-negative integers, got {value!r}")

    @classmethod
    def eip1559(cls, max_fee_per_gas: int, max_priority_fee_per_gas: int) -> "GasQuote":
        return cls(max_fee_per_gas=max_fee_per_gas, max_priority_fee_per_gas=max_priority_fee_per_gas)

    @classmethod
    def legacy(cls, gas_price: int) -> "GasQuote":
        return cls(gas_price=gas_price)

    @property
    def is_eip1559(self) -> bool:
        return self.gas_price is None

    @property
    def max_cost_per_gas(self) -> int:
        """Worst-case wei paid per unit of gas under this quote."""
        return self.max_fee_per_gas if self.is_eip1559 else self.gas_price

    def as_tx_params(self) -> Dict[str, int]:
        """Fee fields ready to merge into a web3 transaction dict."""
        if self.is_eip1559:
            return {
                "type": 2,
                "maxFeePerGas": self.max_fee_per_gas,
                "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            }
        return {"gasPrice": self.gas_price}

    def __repr__(self) -> str:
        if self.is_eip1559:
            return (f"GasQuote(maxFee={format_gwei(self.max_fee_per_gas)} gwei, "
                    f"maxPriority={format_gwei(self.max_priority_fee_per_gas)} gwei)")
        return f"GasQuote(gasPrice={format_gwei(self.gas_price)} gwei)"


def format_gwei(wei: int) -> str:
    whole, frac = divmod(wei, GWEI)
    return f"{whole}.{frac:09d}".rstrip("0").rstrip(".")


def buffer_multiplier(attempt_index: int,
                      base: float = core_config.GAS_BUFFER_BASE,
                      step: float = core_config.GAS_BUFFER_STEP) -> float:
    if attempt_index < 0:
        raise ValueError(f"attempt_index must be >= 0, got {attempt_index}")
    return base + attempt_index * step


def scale_by_buffer(value: int, buffer: float) -> int:
    """
    Multiply a wei amount by `buffer` without floating point on the amount:
    the buffer is turned into an integer percentage first, then the division
    truncates. The percentage rounds halves up (12.5% -> 13%), not to even.
    Amounts are never negative, so floor division truncates toward zero.
    """
    percent = int(Decimal(str(buffer * 100)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    return (value * percent) // 100


class GasPriceEstimator:
    """
    Turns the node's fee suggestions into a buffered GasQuote.

    :param fee_source: Anything with an async `get_fee_data() -> FeeData` (normally ChainClient).
    """
    def __init__(self,
                 fee_source,
                 buffer_base: float = core_config.GAS_BUFFER_BASE,
                 buffer_step: float = core_config.GAS_BUFFER_STEP,
                 default_base_fee: int = core_config.DEFAULT_BASE_FEE_WEI,
                 default_gas_price: int = core_config.DEFAULT_LEGACY_GAS_PRICE_WEI
                ):
        if buffer_step < 0:
            raise ValueError("buffer_step must be non-negative")
        self.fee_source = fee_source
        self.buffer_base = buffer_base
        self.buffer_step = buffer_step
        self.default_base_fee = default_base_fee
        self.default_gas_price = default_gas_price

    async def estimate(self, attempt_index: int) -> GasQuote:
        # A failed fee read propagates: guessing units here risks a stuck or absurdly priced transaction.
        fee_data = await self.fee_source.get_fee_data()
        buffer = buffer_multiplier(attempt_index, self.buffer_base, self.buffer_step)

        if fee_data.supports_eip1559:
            priority_fee = scale_by_buffer(fee_data.max_priority_fee_per_gas, buffer)
            base_fee = fee_data.base_fee_per_gas or self.default_base_fee
            max_fee = scale_by_buffer(base_fee, buffer) + priority_fee
            quote = GasQuote.eip1559(max_fee_per_gas=max_fee, max_priority_fee_per_gas=priority_fee)
            logger.info(f"Using EIP-1559 gas (attempt {attempt_index + 1}, buffer x{buffer:g}): "
                        f"max priority fee {format_gwei(priority_fee)} gwei, max fee {format_gwei(max_fee)} gwei")
            return quote

        gas_price = scale_by_buffer(fee_data.gas_price or self.default_gas_price, buffer)
        logger.info(f"Using legacy gas price (attempt {attempt_index + 1}, buffer x{buffer:g}): "
                    f"{format_gwei(gas_price)} gwei")
        return GasQuote.legacy(gas_price)
