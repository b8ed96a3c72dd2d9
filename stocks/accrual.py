"""Profit accrual math for stock purchases."""
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

CENT = Decimal('0.01')
SECONDS_PER_HOUR = Decimal(3600)


def hours_elapsed(since: datetime, now: datetime) -> Decimal:
    """Hours between two instants, never negative."""
    seconds = Decimal(str((now - since).total_seconds()))
    return max(Decimal(0), seconds / SECONDS_PER_HOUR)


def accrued_profit(amount_usd: Decimal, since: datetime, now: datetime, rate_per_hour: Decimal) -> Decimal:
    """Unrounded profit accrued on a purchase since its last claim."""
    return Decimal(amount_usd) * rate_per_hour * hours_elapsed(since, now)


def round_claim(amount: Decimal) -> Decimal:
    """Round a claim total to cents, half up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)
