"""Commission Calculator.

The platform fee is snapshotted once, when a transaction is created, and
stored next to the amount. Totals shown later are derived from the two
stored fields, never from the live rate.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

# Amounts are stored as Numeric(18, 2)
MINOR_UNIT = Decimal("0.01")


def compute_commission(amount: Decimal, rate: Decimal) -> Decimal:
    """Return ``amount * rate`` rounded half-up to the currency minor unit.

    >>> compute_commission(Decimal("100000"), Decimal("0.05"))
    Decimal('5000.00')
    """
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")
    if rate < 0:
        raise ValueError(f"rate must not be negative, got {rate}")
    return (amount * rate).quantize(MINOR_UNIT, rounding=ROUND_HALF_UP)


def total_due(amount: Decimal, commission: Decimal) -> Decimal:
    """Amount the buyer transfers into escrow: the stored amount plus the stored fee."""
    return amount + commission
