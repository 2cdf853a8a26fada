import datetime
from dataclasses import dataclass

from .config import settings


@dataclass(frozen=True)
class RefundTier:
    min_hours_notice: int
    percent: int


@dataclass(frozen=True)
class RefundPolicy:
    """
    Time-based retention. Tiers are matched from the most notice down; a
    cancellation with less notice than every tier refunds nothing.
    """
    tiers: tuple[RefundTier, ...]

    @classmethod
    def from_settings(cls) -> "RefundPolicy":
        return cls.from_pairs(settings.REFUND_TIERS)

    @classmethod
    def from_pairs(cls, pairs) -> "RefundPolicy":
        tiers = tuple(sorted(
            (RefundTier(int(hours), int(percent)) for hours, percent in pairs),
            key=lambda tier: tier.min_hours_notice,
            reverse=True,
        ))
        for tier in tiers:
            if not 0 <= tier.percent <= 100:
                raise ValueError(f"Refund percent out of range: {tier.percent}")
        # More notice may never refund less
        percents = [tier.percent for tier in tiers]
        if percents != sorted(percents, reverse=True):
            raise ValueError("Refund tiers must not refund more for shorter notice")
        return cls(tiers)

    def percent_for(self, hours_notice: float) -> int:
        for tier in self.tiers:
            if hours_notice > tier.min_hours_notice:
                return tier.percent
        return 0


def hours_until(start_date: datetime.date, now: datetime.datetime) -> float:
    check_in = datetime.datetime.combine(start_date, datetime.time.min)
    return (check_in - now).total_seconds() / 3600


def calculate_refund(
        total_price: int,
        start_date: datetime.date,
        deposit_amount: int,
        policy: RefundPolicy,
        now: datetime.datetime,
) -> int:
    """
    Refund owed for cancelling at ``now``. Only a full-refund tier gives the
    deposit back; otherwise the deposit is retained. Always within
    [0, total_price].
    """
    percent = policy.percent_for(hours_until(start_date, now))
    refund = total_price * percent // 100
    if percent < 100:
        refund = min(refund, total_price - max(deposit_amount, 0))
    return max(0, min(refund, total_price))
