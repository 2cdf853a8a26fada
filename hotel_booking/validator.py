"""
Booking rule validator.

Every check runs even after an earlier one fails, so a caller can show all
the problems with a request at once. Only ``errors`` reject a booking;
``warnings`` (deposit required, special rates) let it proceed.
"""
import datetime

from . import models
from .outcomes import ValidationResult
from .pricing import deposit_for, quote_total, stay_dates
from .rules import RuleCatalog

MAX_NIGHTS = 365


def _format_dates(dates: list[datetime.date]) -> str:
    return ", ".join(d.isoformat() for d in dates)


def check_dates(start_date: datetime.date, end_date: datetime.date, today: datetime.date) -> list[str]:
    errors = []
    if start_date < today:
        errors.append("Check-in date cannot be in the past.")
    if end_date <= start_date:
        errors.append("Check-out date must be after check-in date.")

    nights = (end_date - start_date).days
    if nights < 1:
        errors.append("Booking must be for at least 1 night.")
    if nights > MAX_NIGHTS:
        errors.append(f"Booking cannot exceed {MAX_NIGHTS} nights.")
    return errors


def check_advance_window(catalog: RuleCatalog, days_in_advance: int) -> list[str]:
    window = catalog.window
    errors = []
    if days_in_advance > window.max_days_advance:
        errors.append(
            f"Booking too far in advance. {window.guest_type.value} guests can book up to "
            f"{window.max_days_advance} days ahead (maxDaysAdvance={window.max_days_advance}). "
            f"You are trying to book {days_in_advance} days in advance."
        )
    if days_in_advance < window.min_days_notice:
        errors.append(
            f"Insufficient notice period. {window.guest_type.value} guests require at least "
            f"{window.min_days_notice} day(s) advance notice (minDaysNotice={window.min_days_notice})."
        )
    return errors


def check_special_days(
        catalog: RuleCatalog,
        start_date: datetime.date,
        end_date: datetime.date,
) -> tuple[list[datetime.date], list[datetime.date]]:
    """Returns (blocked dates, special-rate dates) within the stay."""
    blocked, special_rate = [], []
    for day in stay_dates(start_date, end_date):
        rule_types = {rule.rule_type for rule in catalog.rules_on(day)}
        if models.SpecialDayRule.BLOCKED in rule_types:
            blocked.append(day)
        elif models.SpecialDayRule.SPECIAL_RATE in rule_types:
            special_rate.append(day)
    return blocked, special_rate


def validate_booking(
        catalog: RuleCatalog,
        guest_type: models.GuestType,
        room_type_id: int,
        start_date: datetime.date,
        end_date: datetime.date,
        rooms_booked: int,
        today: datetime.date | None = None,
) -> ValidationResult:
    today = today or datetime.date.today()
    errors: list[str] = []
    warnings: list[str] = []

    # 1. Date sanity
    errors.extend(check_dates(start_date, end_date, today))
    if rooms_booked < 1:
        errors.append("At least one room must be booked.")
    if catalog.price_per_night is None:
        errors.append(f"Room type {room_type_id} does not exist.")

    # 2. Advance window for this guest type
    days_in_advance = (start_date - today).days
    errors.extend(check_advance_window(catalog, days_in_advance))

    # 3. Group deposit
    total_price = quote_total(catalog, start_date, end_date, max(rooms_booked, 0))
    deposit_amount = deposit_for(catalog, rooms_booked, total_price)
    requires_deposit = catalog.bracket_for(rooms_booked) is not None
    if requires_deposit:
        bracket = catalog.bracket_for(rooms_booked)
        terms = f"{bracket.value:g}%" if bracket.type == models.DepositType.PERCENT else "a fixed"
        warnings.append(
            f"This is a group booking ({rooms_booked} rooms). {terms} deposit of "
            f"${deposit_amount / 100:.2f} is required before confirmation."
        )

    # 4. Blackout and special-rate days
    blocked, special_rate = check_special_days(catalog, start_date, end_date)
    if blocked:
        errors.append(
            f"Bookings are not allowed on the following date(s): {_format_dates(blocked)}. "
            f"These are blackout days."
        )
    if special_rate:
        warnings.append(
            f"Special rates apply on: {_format_dates(special_rate)}. "
            f"Final price differs from the standard nightly rate."
        )

    return ValidationResult(
        valid=not errors,
        errors=errors,
        warnings=warnings,
        requires_deposit=requires_deposit,
        deposit_amount=deposit_amount,
        total_price=total_price,
        nights=max((end_date - start_date).days, 0),
        days_in_advance=days_in_advance,
        blocked_dates=blocked,
        special_rate_dates=special_rate,
    )
