"""Gas price computation with per-attempt escalation.

All monetary values are integers in wei. Multipliers are converted to basis
points before touching a price so no float ever multiplies a wei amount.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from errors import InvalidFeeParams

BPS = 10_000


@dataclass(frozen=True)
class FeeData:
    """Network fee snapshot as reported by the chain client."""

    gas_price: int
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    @property
    def supports_fee_market(self) -> bool:
        return self.max_fee_per_gas is not None and self.max_priority_fee_per_gas is not None


@dataclass(frozen=True)
class FeePolicy:
    gas_multiplier: Decimal
    max_gas_price: int
    priority_fee: int
    escalation_step: Decimal = Decimal("0.05")
    escalation_cycle: int = 10  # 0 = unbounded linear growth


@dataclass(frozen=True)
class FeeParams:
    price: int
    max_fee_per_gas: Optional[int] = None
    max_priority_fee_per_gas: Optional[int] = None

    def __post_init__(self):
        if self.max_fee_per_gas is not None and self.max_priority_fee_per_gas is not None:
            if self.max_fee_per_gas < self.max_priority_fee_per_gas:
                raise InvalidFeeParams(self.max_fee_per_gas, self.max_priority_fee_per_gas)

    @property
    def is_fee_market(self) -> bool:
        return self.max_fee_per_gas is not None

    def as_tx_fields(self) -> dict:
        if self.is_fee_market:
            return {
                "maxFeePerGas": self.max_fee_per_gas,
                "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            }
        return {"gasPrice": self.price}


def to_bps(value: Decimal) -> int:
    return int((Decimal(value) * BPS).to_integral_value(rounding=ROUND_DOWN))


def attempt_multiplier_bps(attempt_number: int, policy: FeePolicy) -> int:
    """1 + step * ((attempt - 1) mod cycle), in basis points.

    The first attempt is never escalated. With cycle 0 growth is linear.
    """
    if attempt_number < 1:
        raise ValueError(f"attempt_number must be >= 1, got {attempt_number}")
    steps = attempt_number - 1
    if policy.escalation_cycle > 0:
        steps %= policy.escalation_cycle
    return BPS + to_bps(policy.escalation_step) * steps


def compute_fee(fee_data: FeeData, attempt_number: int, policy: FeePolicy) -> FeeParams:
    candidate = (
        fee_data.gas_price
        * to_bps(policy.gas_multiplier)
        * attempt_multiplier_bps(attempt_number, policy)
        // (BPS * BPS)
    )
    final_price = min(candidate, policy.max_gas_price)

    if not fee_data.supports_fee_market:
        return FeeParams(price=final_price)

    priority = policy.priority_fee
    max_fee = priority * 2 if final_price < priority else final_price
    return FeeParams(price=final_price, max_fee_per_gas=max_fee, max_priority_fee_per_gas=priority)
