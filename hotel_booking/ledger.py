"""
Inventory ledger: one row per room type per night, reserved vs. total.

``reserve`` and ``release`` are the only code that changes reserved_rooms.
Both lock the rows they touch in ascending date order (a stable lock order
keeps two overlapping stays from deadlocking each other) and neither
commits: the caller commits them together with the booking row.
"""
import datetime
import logging

from sqlalchemy.orm import Session

from . import models
from .errors import BookingValidationError, LedgerIntegrityError, NotFoundError
from .outcomes import Reservation
from .pricing import stay_dates

logger = logging.getLogger("booking_service")


def _lock_days(db: Session, room_type_id: int, start_date: datetime.date, end_date: datetime.date) -> dict:
    rows = db.query(models.InventoryDay).filter(
        models.InventoryDay.room_type_id == room_type_id,
        models.InventoryDay.date >= start_date,
        models.InventoryDay.date < end_date,
    ).order_by(models.InventoryDay.date).with_for_update().all()
    return {row.date: row for row in rows}


def reserve(
        db: Session,
        room_type_id: int,
        start_date: datetime.date,
        end_date: datetime.date,
        rooms: int,
) -> Reservation:
    """
    Holds ``rooms`` on every night of [start_date, end_date), or on none.

    A night with no ledger row counts as a conflict: capacity is configured
    ahead of time and is never assumed.
    """
    if rooms < 1:
        raise BookingValidationError("rooms must be at least 1")
    dates = stay_dates(start_date, end_date)
    if not dates:
        raise BookingValidationError("end_date must be after start_date")

    locked = _lock_days(db, room_type_id, start_date, end_date)
    conflicts = [
        day for day in dates
        if day not in locked or locked[day].available_rooms < rooms
    ]
    if conflicts:
        logger.info(
            f"Reserve of {rooms} room(s) of type {room_type_id} rejected; "
            f"no capacity on {[d.isoformat() for d in conflicts]}."
        )
        return Reservation(ok=False, conflict_dates=conflicts)

    for day in dates:
        locked[day].reserved_rooms += rooms
    db.flush()
    return Reservation(ok=True)


def release(
        db: Session,
        room_type_id: int,
        start_date: datetime.date,
        end_date: datetime.date,
        rooms: int,
) -> list[datetime.date]:
    """
    Gives back ``rooms`` on every night of the range. Releasing more than is
    reserved means the ledger and the bookings disagree, which is raised,
    never clamped.
    """
    if rooms < 1:
        raise BookingValidationError("rooms must be at least 1")
    dates = stay_dates(start_date, end_date)
    locked = _lock_days(db, room_type_id, start_date, end_date)

    for day in dates:
        row = locked.get(day)
        if row is None or row.reserved_rooms < rooms:
            reserved = row.reserved_rooms if row else None
            logger.error(
                f"Ledger underflow: releasing {rooms} room(s) of type {room_type_id} "
                f"on {day.isoformat()} with reserved_rooms={reserved}."
            )
            raise LedgerIntegrityError(
                f"Cannot release {rooms} room(s) of type {room_type_id} on {day.isoformat()}: "
                f"only {reserved or 0} reserved"
            )

    for day in dates:
        locked[day].reserved_rooms -= rooms
    db.flush()
    return dates


def check_availability(
        db: Session,
        room_type_id: int | None,
        start_date: datetime.date,
        end_date: datetime.date,
        rooms: int = 1,
) -> bool:
    """
    True when every night of the range has at least ``rooms`` free. With
    ``room_type_id=None`` any single room type covering the whole stay will
    do. Read-only: takes no locks.
    """
    return bool(available_room_types(db, room_type_id, start_date, end_date, rooms))


def available_room_types(
        db: Session,
        room_type_id: int | None,
        start_date: datetime.date,
        end_date: datetime.date,
        rooms: int = 1,
) -> list[int]:
    dates = stay_dates(start_date, end_date)
    if not dates:
        return []

    query = db.query(models.InventoryDay).filter(
        models.InventoryDay.date >= start_date,
        models.InventoryDay.date < end_date,
    )
    if room_type_id is not None:
        query = query.filter(models.InventoryDay.room_type_id == room_type_id)

    free: dict[int, int] = {}
    for row in query.all():
        if row.available_rooms >= rooms:
            free[row.room_type_id] = free.get(row.room_type_id, 0) + 1
    return sorted(rt for rt, nights in free.items() if nights == len(dates))


def get_inventory(
        db: Session,
        room_type_id: int,
        start_date: datetime.date,
        end_date: datetime.date,
) -> list[models.InventoryDay]:
    return db.query(models.InventoryDay).filter(
        models.InventoryDay.room_type_id == room_type_id,
        models.InventoryDay.date >= start_date,
        models.InventoryDay.date < end_date,
    ).order_by(models.InventoryDay.date).all()


def set_capacity(
        db: Session,
        room_type_id: int,
        start_date: datetime.date,
        end_date: datetime.date,
        total_rooms: int,
) -> list[models.InventoryDay]:
    """
    Creates or resizes the ledger rows for a range. Shrinking a night below
    what is already reserved is refused for the whole range.
    Note: Does NOT commit.
    """
    if total_rooms < 0:
        raise BookingValidationError("total_rooms cannot be negative")
    if db.get(models.RoomType, room_type_id) is None:
        raise NotFoundError(f"Room type {room_type_id} not found")
    dates = stay_dates(start_date, end_date)
    if not dates:
        raise BookingValidationError("end_date must be after start_date")

    locked = _lock_days(db, room_type_id, start_date, end_date)
    too_small = [day for day, row in locked.items() if row.reserved_rooms > total_rooms]
    if too_small:
        raise BookingValidationError(
            f"Cannot set capacity to {total_rooms}: more rooms are already reserved on "
            f"{', '.join(d.isoformat() for d in sorted(too_small))}"
        )

    rows = []
    for day in dates:
        row = locked.get(day)
        if row is None:
            row = models.InventoryDay(room_type_id=room_type_id, date=day, total_rooms=total_rooms, reserved_rooms=0)
            db.add(row)
        else:
            row.total_rooms = total_rooms
        rows.append(row)
    db.flush()
    return rows
