import asyncio
import datetime
import logging

from sqlalchemy.orm import Session

from . import crud, outbox, waitlist
from .config import settings
from .database import SessionLocal
from .errors import BookingIntegrityError
from .transactions import run_in_transaction

logger = logging.getLogger("booking_scheduler")


def run_waitlist_sweep(db: Session, now: datetime.datetime | None = None) -> tuple[list[int], list[int]]:
    """
    Expires NOTIFIED waitlist holds past their window and offers the rooms
    to the next entries in line. Returns (expired ids, newly notified ids).
    """
    expired, notified = run_in_transaction(db, lambda session: waitlist.expire_notified(session, now=now))
    return [entry.id for entry in expired], [entry.id for entry in notified]


def complete_finished_bookings(db: Session, today: datetime.date | None = None) -> list[int]:
    """
    Moves CONFIRMED bookings whose check-out date has arrived to COMPLETED.
    One booking failing its transition does not hold back the others.
    """
    today = today or datetime.date.today()
    due = crud.get_bookings_ending_by(db, today)
    if not due:
        logger.info("No confirmed bookings have reached check-out.")
        return []

    completed = []
    for booking_id in [booking.id for booking in due]:
        try:
            booking = crud.complete_booking(db, booking_id, today=today)
            outbox.booking_event(db, booking, "booking.completed")
            db.commit()
            completed.append(booking_id)
        except BookingIntegrityError as e:
            logger.error(f"Could not complete booking {booking_id}: {e}")
            db.rollback()

    logger.info(f"Completed {len(completed)} of {len(due)} bookings past check-out.")
    return completed


async def run_booking_scheduler(poll_interval: int | None = None):
    """
    Main background loop for the scheduler.
    """
    interval = poll_interval or settings.SCHEDULER_POLL_SECONDS
    while True:
        logger.info("Scheduler waking up to sweep waitlist holds and finished stays...")
        db: Session = SessionLocal()
        try:
            expired, notified = run_waitlist_sweep(db)
            if expired:
                logger.info(f"Expired waitlist entries {expired}; notified {notified}.")
            complete_finished_bookings(db)
        except Exception as e:
            logger.error(f"Error in booking scheduler loop: {e}")
            db.rollback()
        finally:
            db.close()

        await asyncio.sleep(interval)
