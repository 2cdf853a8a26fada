import json
from sqlalchemy.orm import Session
from . import models
from .config import settings


def enqueue_event(db: Session, topic: str, payload: dict) -> models.OutboxEvent:
    """
    Adds an event to the outbox table.
    Note: Does NOT commit. The event is published only if the caller's
    transaction commits, and publishing failures never roll that back.
    """
    db_outbox_event = models.OutboxEvent(
        topic=topic,
        payload=json.dumps(payload, default=str),
        status="PENDING"
    )
    db.add(db_outbox_event)
    return db_outbox_event


def booking_event(db: Session, booking: models.Booking, event: str, **extra) -> models.OutboxEvent:
    payload = {
        "event": event,
        "booking_id": booking.id,
        "user_id": booking.user_id,
        "room_type_id": booking.room_type_id,
        "start_date": booking.start_date.isoformat(),
        "end_date": booking.end_date.isoformat(),
        "rooms_booked": booking.rooms_booked,
        "status": booking.status.value,
        **extra,
    }
    return enqueue_event(db, settings.KAFKA_BOOKING_TOPIC, payload)


def notify_waitlist_entry(db: Session, entry: models.WaitlistEntry) -> models.OutboxEvent:
    """The notification dispatcher hook: one message per NOTIFIED entry."""
    payload = {
        "event": "waitlist.notified",
        "waitlist_entry_id": entry.id,
        "user_id": entry.user_id,
        "room_type_id": entry.room_type_id,
        "start_date": entry.start_date.isoformat(),
        "end_date": entry.end_date.isoformat(),
        "expires_at": entry.expires_at.isoformat() if entry.expires_at else None,
    }
    return enqueue_event(db, settings.KAFKA_WAITLIST_TOPIC, payload)
