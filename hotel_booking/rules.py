"""
Rule catalog: advance-booking windows, group deposit brackets and special
days.

Validation never reads these tables directly. ``load_rule_catalog`` takes an
immutable snapshot per call so administrative edits apply to the very next
request without any cache to invalidate.
"""
import datetime
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from . import models, schemas
from .errors import BookingValidationError, NotFoundError

logger = logging.getLogger("booking_service")

# Used when no booking_rules row exists for a guest type
DEFAULT_BOOKING_RULES = {
    models.GuestType.REGULAR: (90, 3),
    models.GuestType.VIP: (365, 2),
    models.GuestType.CORPORATE: (180, 1),
}


@dataclass(frozen=True)
class AdvanceWindow:
    guest_type: models.GuestType
    max_days_advance: int
    min_days_notice: int


@dataclass(frozen=True)
class DepositBracket:
    id: int
    min_rooms: int
    max_rooms: int
    type: models.DepositType
    value: float

    def contains(self, rooms: int) -> bool:
        return self.min_rooms <= rooms <= self.max_rooms


@dataclass(frozen=True)
class SpecialDayRule:
    date: datetime.date
    room_type_id: Optional[int]
    rule_type: models.SpecialDayRule
    rate_type: Optional[models.RateType]
    rate_value: Optional[float]
    description: Optional[str]


@dataclass(frozen=True)
class RuleCatalog:
    window: AdvanceWindow
    deposit_brackets: tuple[DepositBracket, ...]
    special_days: tuple[SpecialDayRule, ...]
    # Nightly rate of the requested room type; None if it does not exist
    price_per_night: Optional[int]

    def bracket_for(self, rooms: int) -> Optional[DepositBracket]:
        for bracket in self.deposit_brackets:
            if bracket.contains(rooms):
                return bracket
        return None

    def rules_on(self, day: datetime.date) -> list[SpecialDayRule]:
        """Rules for one date, room-specific ones first."""
        matches = [rule for rule in self.special_days if rule.date == day]
        return sorted(matches, key=lambda rule: rule.room_type_id is None)


# ----------------- Snapshot -----------------

def get_advance_window(db: Session, guest_type: models.GuestType) -> AdvanceWindow:
    rule = db.query(models.BookingRule).filter(models.BookingRule.guest_type == guest_type).first()
    if rule:
        return AdvanceWindow(guest_type, rule.max_days_advance, rule.min_days_notice)
    max_days, min_days = DEFAULT_BOOKING_RULES[guest_type]
    return AdvanceWindow(guest_type, max_days, min_days)


def load_rule_catalog(
        db: Session,
        guest_type: models.GuestType,
        room_type_id: int,
        start_date: datetime.date,
        end_date: datetime.date,
) -> RuleCatalog:
    brackets = db.query(models.DepositPolicy).filter(
        models.DepositPolicy.active.is_(True)
    ).order_by(models.DepositPolicy.min_rooms).all()

    special_days = db.query(models.SpecialDay).filter(
        models.SpecialDay.active.is_(True),
        models.SpecialDay.date >= start_date,
        models.SpecialDay.date < end_date,
        or_(models.SpecialDay.room_type_id == room_type_id, models.SpecialDay.room_type_id.is_(None)),
    ).order_by(models.SpecialDay.date).all()

    room_type = db.get(models.RoomType, room_type_id)

    return RuleCatalog(
        window=get_advance_window(db, guest_type),
        deposit_brackets=tuple(
            DepositBracket(p.id, p.min_rooms, p.max_rooms, p.type, p.value) for p in brackets
        ),
        special_days=tuple(
            SpecialDayRule(d.date, d.room_type_id, d.rule_type, d.rate_type, d.rate_value, d.description)
            for d in special_days
        ),
        price_per_night=room_type.price_per_night if room_type else None,
    )


# ----------------- Booking rules (advance windows) -----------------

def upsert_booking_rule(db: Session, guest_type: models.GuestType, rule: schemas.BookingRuleUpdate) -> models.BookingRule:
    if rule.max_days_advance <= rule.min_days_notice:
        raise BookingValidationError("max_days_advance must be greater than min_days_notice")

    db_rule = db.query(models.BookingRule).filter(models.BookingRule.guest_type == guest_type).first()
    if db_rule is None:
        db_rule = models.BookingRule(guest_type=guest_type)
        db.add(db_rule)
    db_rule.max_days_advance = rule.max_days_advance
    db_rule.min_days_notice = rule.min_days_notice

    db.commit()
    db.refresh(db_rule)
    logger.info(
        f"Booking window for {guest_type.value} set to "
        f"{rule.min_days_notice}-{rule.max_days_advance} days."
    )
    return db_rule


def list_advance_windows(db: Session) -> list[AdvanceWindow]:
    return [get_advance_window(db, guest_type) for guest_type in models.GuestType]


# ----------------- Deposit policies -----------------

def _find_overlapping_policy(db: Session, min_rooms: int, max_rooms: int, exclude_id: int | None = None):
    # Two closed ranges overlap when each starts before the other ends
    query = db.query(models.DepositPolicy).filter(
        models.DepositPolicy.active.is_(True),
        models.DepositPolicy.min_rooms <= max_rooms,
        models.DepositPolicy.max_rooms >= min_rooms,
    )
    if exclude_id is not None:
        query = query.filter(models.DepositPolicy.id != exclude_id)
    return query.first()


def _check_deposit_value(policy_type: models.DepositType, value: float):
    if policy_type == models.DepositType.PERCENT and not 0 < value <= 100:
        raise BookingValidationError("Percentage deposit must be greater than 0 and at most 100")
    if policy_type == models.DepositType.FIXED and value <= 0:
        raise BookingValidationError("Fixed deposit must be a positive amount")


def create_deposit_policy(db: Session, policy: schemas.DepositPolicyCreate) -> models.DepositPolicy:
    if policy.min_rooms > policy.max_rooms:
        raise BookingValidationError("Minimum rooms cannot be greater than maximum rooms")
    _check_deposit_value(policy.type, policy.value)

    if policy.active:
        overlapping = _find_overlapping_policy(db, policy.min_rooms, policy.max_rooms)
        if overlapping:
            raise BookingValidationError(
                f"Policy overlaps with existing policy for "
                f"{overlapping.min_rooms}-{overlapping.max_rooms} rooms"
            )

    db_policy = models.DepositPolicy(**policy.model_dump())
    db.add(db_policy)
    db.commit()
    db.refresh(db_policy)
    return db_policy


def set_deposit_policy_active(db: Session, policy_id: int, active: bool) -> models.DepositPolicy:
    db_policy = db.get(models.DepositPolicy, policy_id)
    if db_policy is None:
        raise NotFoundError(f"Deposit policy {policy_id} not found")

    if active and not db_policy.active:
        overlapping = _find_overlapping_policy(db, db_policy.min_rooms, db_policy.max_rooms, exclude_id=policy_id)
        if overlapping:
            raise BookingValidationError(
                f"Policy overlaps with existing policy for "
                f"{overlapping.min_rooms}-{overlapping.max_rooms} rooms"
            )

    db_policy.active = active
    db.commit()
    db.refresh(db_policy)
    return db_policy


def list_deposit_policies(db: Session, include_inactive: bool = False) -> list[models.DepositPolicy]:
    query = db.query(models.DepositPolicy)
    if not include_inactive:
        query = query.filter(models.DepositPolicy.active.is_(True))
    return query.order_by(models.DepositPolicy.min_rooms).all()


# ----------------- Special days -----------------

def create_special_day(db: Session, day: schemas.SpecialDayCreate) -> models.SpecialDay:
    if day.rule_type == models.SpecialDayRule.SPECIAL_RATE:
        if day.rate_type is None or day.rate_value is None:
            raise BookingValidationError("Special rate days need a rate_type and rate_value")
        if day.rate_value <= 0:
            raise BookingValidationError("rate_value must be positive")
    if day.room_type_id is not None and db.get(models.RoomType, day.room_type_id) is None:
        raise NotFoundError(f"Room type {day.room_type_id} not found")

    db_day = models.SpecialDay(**day.model_dump())
    db.add(db_day)
    db.commit()
    db.refresh(db_day)
    return db_day


def deactivate_special_day(db: Session, special_day_id: int) -> models.SpecialDay:
    db_day = db.get(models.SpecialDay, special_day_id)
    if db_day is None:
        raise NotFoundError(f"Special day {special_day_id} not found")
    db_day.active = False
    db.commit()
    db.refresh(db_day)
    return db_day


def list_special_days(
        db: Session,
        start_date: datetime.date,
        end_date: datetime.date,
        room_type_id: int | None = None,
) -> list[models.SpecialDay]:
    query = db.query(models.SpecialDay).filter(
        models.SpecialDay.active.is_(True),
        models.SpecialDay.date >= start_date,
        models.SpecialDay.date < end_date,
    )
    if room_type_id is not None:
        query = query.filter(
            or_(models.SpecialDay.room_type_id == room_type_id, models.SpecialDay.room_type_id.is_(None))
        )
    return query.order_by(models.SpecialDay.date).all()
