"""Profit distribution for completed sales.

Splits a sale amount into platform, artist and producer shares. Each share
is rounded half-up to cents on its own, and whatever the rounding leaves
over is reported as ``remaining`` instead of being folded into a share.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from .domain import SaleStatus

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def _cents(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class DistributionRules:
    """Fractions of a sale assigned to each party (0.10 == 10%)."""

    platform_fee: Decimal = Decimal("0.10")
    artist_share: Decimal = Decimal("0.70")
    producer_share: Decimal = Decimal("0.20")

    def __post_init__(self):
        # floats go through str() so 0.1 stays 0.1
        for name in ("platform_fee", "artist_share", "producer_share"):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
        parts = (self.platform_fee, self.artist_share, self.producer_share)
        if any(p < 0 for p in parts):
            raise ValueError("NEGATIVE_DISTRIBUTION")
        if sum(parts) > 1:
            raise ValueError("DISTRIBUTION_EXCEEDS_100_PERCENT")


DEFAULT_RULES = DistributionRules()


@dataclass(frozen=True)
class ProfitBreakdown:
    total_amount: Decimal
    platform_fee: Decimal
    artist_share: Decimal
    producer_share: Decimal
    remaining: Decimal
    rules: DistributionRules = field(default=DEFAULT_RULES)
    status: str = SaleStatus.COMPLETED.value

    def as_dict(self) -> dict:
        return {
            "totalAmount": str(self.total_amount),
            "platformFee": {"percentage": _percent(self.rules.platform_fee, self.status), "amount": str(self.platform_fee)},
            "artistShare": {"percentage": _percent(self.rules.artist_share, self.status), "amount": str(self.artist_share)},
            "producerShare": {"percentage": _percent(self.rules.producer_share, self.status), "amount": str(self.producer_share)},
            "remaining": str(self.remaining),
            "status": self.status,
        }


def _percent(fraction: Decimal, status: str) -> str:
    if status != SaleStatus.COMPLETED.value:
        return "0"
    return format((Decimal(fraction) * 100).normalize(), "f")


def distribute(amount: Decimal, rules: DistributionRules | None = None) -> ProfitBreakdown:
    """Split ``amount`` according to ``rules`` (10/70/20 by default).

    Args:
        amount: Non-negative sale amount.
        rules: Optional distribution rules; validated on construction.

    Returns:
        ProfitBreakdown: Shares rounded to cents independently, with
        ``remaining = amount - platform_fee - artist_share - producer_share``.

    Raises:
        ValueError: ``NEGATIVE_AMOUNT`` for a negative amount.
    """
    rules = rules or DEFAULT_RULES
    amount = Decimal(amount)
    if amount < 0:
        raise ValueError("NEGATIVE_AMOUNT")

    platform = _cents(amount * rules.platform_fee)
    artist = _cents(amount * rules.artist_share)
    producer = _cents(amount * rules.producer_share)
    return ProfitBreakdown(
        total_amount=amount,
        platform_fee=platform,
        artist_share=artist,
        producer_share=producer,
        remaining=amount - platform - artist - producer,
        rules=rules,
    )


def sale_distribution(sale, rules: DistributionRules | None = None) -> ProfitBreakdown:
    """Distribution of one sale; all zeros tagged ``pending`` unless completed."""
    if sale.payment_status != SaleStatus.COMPLETED.value:
        return ProfitBreakdown(
            total_amount=Decimal(sale.price),
            platform_fee=ZERO,
            artist_share=ZERO,
            producer_share=ZERO,
            remaining=ZERO,
            rules=rules or DEFAULT_RULES,
            status="pending",
        )
    return distribute(sale.price, rules)


def total_profits(sales: Iterable, rules: DistributionRules | None = None) -> dict:
    """Aggregate the distribution of every completed sale in ``sales``."""
    totals = {
        "totalRevenue": ZERO,
        "platformFee": ZERO,
        "artistShare": ZERO,
        "producerShare": ZERO,
        "remaining": ZERO,
    }
    count = 0
    for sale in sales:
        if sale.payment_status != SaleStatus.COMPLETED.value:
            continue
        d = distribute(sale.price, rules)
        count += 1
        totals["totalRevenue"] += d.total_amount
        totals["platformFee"] += d.platform_fee
        totals["artistShare"] += d.artist_share
        totals["producerShare"] += d.producer_share
        totals["remaining"] += d.remaining

    out = {k: str(_cents(v)) for k, v in totals.items()}
    out["totalSales"] = count
    return out
