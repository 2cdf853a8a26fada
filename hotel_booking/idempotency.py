"""
Duplicate-request detection for booking creation.

A create request maps to a deterministic key: the client's Idempotency-Key
header when it sends one, otherwise a hash of user, room type, dates and room
count. While the booking a key points at is still live (PROVISIONAL or
CONFIRMED), repeating the request returns that booking instead of reserving
inventory a second time.
"""
import hashlib

from sqlalchemy.orm import Session

from . import models, schemas
from .models import BookingStatus

LIVE_STATUSES = (BookingStatus.PROVISIONAL, BookingStatus.CONFIRMED)


def generate_key(user_id: int, booking: schemas.BookingCreate, client_key: str | None = None) -> str:
    if client_key:
        parts = ["client", str(user_id), client_key]
    else:
        parts = [
            str(user_id),
            str(booking.room_type_id),
            booking.start_date.isoformat(),
            booking.end_date.isoformat(),
            str(booking.rooms_booked),
        ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def find_live_booking(db: Session, key: str, lock: bool = False) -> models.Booking | None:
    query = db.query(models.IdempotencyKey).filter(models.IdempotencyKey.key == key)
    if lock:
        query = query.with_for_update()
    record = query.first()
    if record is None:
        return None
    booking = db.get(models.Booking, record.booking_id)
    if booking is None or booking.status not in LIVE_STATUSES:
        return None
    return booking


def remember(db: Session, key: str, booking: models.Booking) -> models.IdempotencyKey:
    """
    Points the key at a new booking, taking over a key whose earlier booking
    was cancelled or completed. Note: Does NOT commit.
    """
    record = db.query(models.IdempotencyKey).filter(
        models.IdempotencyKey.key == key
    ).with_for_update().first()
    if record is None:
        record = models.IdempotencyKey(key=key, user_id=booking.user_id, booking_id=booking.id)
        db.add(record)
    else:
        record.booking_id = booking.id
        record.created_at = models.utcnow()
    db.flush()
    return record

