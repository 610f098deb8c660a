"""
Revenue split: gross amount → processor fee → platform commission / educator earnings.

Pure and deterministic. Refunds never call this; they prorate the split that
was stored on the original transaction.
"""
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal

from coursepay.config import CommissionConfig

ZERO = Decimal("0")

# (minimum amount, percentage points off the base rate), highest tier first
COMMISSION_TIERS: tuple[tuple[Decimal, Decimal], ...] = (
    (Decimal("500"), Decimal("5")),
    (Decimal("200"), Decimal("2")),
)


@dataclass(frozen=True)
class CommissionSplit:
    platform_commission: Decimal
    educator_earnings: Decimal
    processor_fee: Decimal
    net_amount: Decimal
    commission_percentage: Decimal


def commission_percentage(amount: Decimal, config: CommissionConfig) -> Decimal:
    """Base rate minus the discount of the highest tier the amount reaches."""
    for threshold, discount in COMMISSION_TIERS:
        if amount >= threshold:
            return config.platform_commission_percentage - discount
    return config.platform_commission_percentage


def processor_fee(amount: Decimal, config: CommissionConfig) -> Decimal:
    return config.processor_fixed_fee + config.processor_percentage_fee * amount


def split(amount: Decimal, educator_id: str | None, config: CommissionConfig) -> CommissionSplit:
    """
    Split a gross payment between platform and educator.

    educator_id is accepted for per-educator tiers; no overrides exist yet.
    """
    amount = Decimal(amount)
    if amount <= ZERO:
        raise ValueError("Amount must be positive")

    percentage = commission_percentage(amount, config)
    fee = processor_fee(amount, config)
    net = amount - fee

    raw_commission = (net * percentage / Decimal(100)).quantize(config.quantum, rounding=ROUND_HALF_UP)
    ceiling = (amount * config.maximum_commission_share).quantize(config.quantum, rounding=ROUND_DOWN)
    commission = min(max(raw_commission, config.minimum_commission), ceiling)

    # Earnings round down so that commission + earnings never exceeds the net amount
    earnings = max((net - commission).quantize(config.quantum, rounding=ROUND_DOWN), ZERO)

    return CommissionSplit(
        platform_commission=commission,
        educator_earnings=earnings,
        processor_fee=fee.quantize(config.quantum, rounding=ROUND_HALF_UP),
        net_amount=net.quantize(config.quantum, rounding=ROUND_HALF_UP),
        commission_percentage=percentage,
    )


def prorate(value: Decimal, ratio: Decimal, quantum: Decimal = Decimal("0.01")) -> Decimal:
    """Scale a stored split component by a refund ratio."""
    return (Decimal(value) * ratio).quantize(quantum, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """Decimal currency amount → integer cents, as the processor expects."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
