import datetime
from dataclasses import dataclass, field
from typing import Union

from . import models


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    requires_deposit: bool = False
    deposit_amount: int = 0
    total_price: int = 0
    nights: int = 0
    days_in_advance: int = 0
    blocked_dates: list[datetime.date] = field(default_factory=list)
    special_rate_dates: list[datetime.date] = field(default_factory=list)


@dataclass(frozen=True)
class Reservation:
    """Result of a ledger reserve attempt."""
    ok: bool
    conflict_dates: list[datetime.date] = field(default_factory=list)


@dataclass(frozen=True)
class BookingCreated:
    booking: models.Booking
    validation: ValidationResult
    converted_waitlist_ids: list[int] = field(default_factory=list)
    # True when an earlier identical request already created this booking
    replayed: bool = False


@dataclass(frozen=True)
class PolicyViolation:
    errors: list[str]
    warnings: list[str] = field(default_factory=list)
    blocked_dates: list[datetime.date] = field(default_factory=list)


@dataclass(frozen=True)
class CapacityConflict:
    conflict_dates: list[datetime.date]
    # False when the user already holds an active waitlist entry for this stay
    waitlist_available: bool = True


BookingOutcome = Union[BookingCreated, PolicyViolation, CapacityConflict]


@dataclass(frozen=True)
class CancellationResult:
    booking: models.Booking
    refund_amount: int
    released_dates: list[datetime.date]
    notified_waitlist_ids: list[int] = field(default_factory=list)
