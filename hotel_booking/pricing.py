import datetime
from decimal import Decimal, ROUND_HALF_UP

from . import models
from .rules import RuleCatalog


def round_half_up(value) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def stay_dates(start_date: datetime.date, end_date: datetime.date) -> list[datetime.date]:
    """Every night of a stay: start inclusive, check-out day exclusive."""
    return [start_date + datetime.timedelta(days=i) for i in range((end_date - start_date).days)]


def nightly_rate(catalog: RuleCatalog, day: datetime.date) -> int:
    base = catalog.price_per_night or 0
    for rule in catalog.rules_on(day):
        if rule.rule_type != models.SpecialDayRule.SPECIAL_RATE or not rule.rate_value:
            continue
        if rule.rate_type == models.RateType.MULTIPLIER:
            return round_half_up(base * rule.rate_value)
        if rule.rate_type == models.RateType.FIXED:
            return round_half_up(rule.rate_value)
    return base


def quote_total(catalog: RuleCatalog, start_date: datetime.date, end_date: datetime.date, rooms: int) -> int:
    return sum(nightly_rate(catalog, day) for day in stay_dates(start_date, end_date)) * rooms


def deposit_for(catalog: RuleCatalog, rooms: int, total_price: int) -> int:
    bracket = catalog.bracket_for(rooms)
    if bracket is None:
        return 0
    if bracket.type == models.DepositType.PERCENT:
        return round_half_up(Decimal(total_price) * Decimal(str(bracket.value)) / 100)
    return round_half_up(bracket.value)
