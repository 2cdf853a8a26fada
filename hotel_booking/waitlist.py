"""
Waitlist for stays that are currently sold out.

PENDING -> NOTIFIED -> CONVERTED | EXPIRED, or PENDING -> EXPIRED when the
guest withdraws. Notifying an entry does not reserve inventory; it opens a
hold window during which the freed rooms are not offered to the next entry
in line.
"""
import datetime
import logging
import math

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from . import models, outbox, schemas
from .config import settings
from .errors import (
    BookingValidationError, DuplicateWaitlistEntry, InvalidTransition, NotFoundError, PermissionDeniedError,
)
from .models import WaitlistStatus, utcnow
from .pricing import stay_dates
from .transactions import run_in_transaction

logger = logging.getLogger("booking_service")

ACTIVE_STATUSES = (WaitlistStatus.PENDING, WaitlistStatus.NOTIFIED)


def _same_room_type(column, room_type_id):
    return column.is_(None) if room_type_id is None else column == room_type_id


# ----------------- Join / withdraw -----------------

def find_active_entry(
        db: Session,
        user_id: int,
        room_type_id: int | None,
        start_date: datetime.date,
        end_date: datetime.date,
) -> models.WaitlistEntry | None:
    return db.query(models.WaitlistEntry).filter(
        models.WaitlistEntry.user_id == user_id,
        _same_room_type(models.WaitlistEntry.room_type_id, room_type_id),
        models.WaitlistEntry.start_date == start_date,
        models.WaitlistEntry.end_date == end_date,
        models.WaitlistEntry.status.in_(ACTIVE_STATUSES),
    ).first()


def join_waitlist(
        db: Session,
        user_id: int,
        guest_type: models.GuestType,
        request: schemas.WaitlistJoin,
        today: datetime.date | None = None,
) -> models.WaitlistEntry:
    today = today or datetime.date.today()
    if request.start_date < today:
        raise BookingValidationError("Check-in date cannot be in the past")
    if request.room_type_id is not None and db.get(models.RoomType, request.room_type_id) is None:
        raise NotFoundError(f"Room type {request.room_type_id} not found")

    if find_active_entry(db, user_id, request.room_type_id, request.start_date, request.end_date):
        raise DuplicateWaitlistEntry("You already have a waitlist entry for these dates and room type")

    entry = models.WaitlistEntry(
        user_id=user_id,
        room_type_id=request.room_type_id,
        start_date=request.start_date,
        end_date=request.end_date,
        guests=request.guests,
        guest_type=guest_type,
        notes=request.notes,
        status=WaitlistStatus.PENDING,
    )
    db.add(entry)
    db.flush()
    outbox.enqueue_event(db, settings.KAFKA_WAITLIST_TOPIC, {
        "event": "waitlist.joined",
        "waitlist_entry_id": entry.id,
        "user_id": user_id,
    })
    db.commit()
    db.refresh(entry)
    logger.info(f"User {user_id} joined the waitlist (entry {entry.id}).")
    return entry


def cancel_entry(db: Session, entry_id: int, user_id: int, now: datetime.datetime | None = None) -> models.WaitlistEntry:
    now = now or utcnow()

    def work(session: Session) -> models.WaitlistEntry:
        entry = session.query(models.WaitlistEntry).filter(
            models.WaitlistEntry.id == entry_id
        ).with_for_update().first()
        if entry is None:
            raise NotFoundError(f"Waitlist entry {entry_id} not found")
        if entry.user_id != user_id:
            raise PermissionDeniedError("You can only withdraw your own waitlist entries")
        if entry.status not in ACTIVE_STATUSES:
            raise InvalidTransition("Waitlist entry", entry.id, entry.status, WaitlistStatus.EXPIRED)

        was_holding = entry.status == WaitlistStatus.NOTIFIED
        entry.status = WaitlistStatus.EXPIRED
        session.flush()
        if was_holding:
            notify_available(session, entry.room_type_id, entry.start_date, entry.end_date, now=now)
        return entry

    entry = run_in_transaction(db, work)
    db.refresh(entry)
    return entry


# ----------------- Queries -----------------

def get_entry(db: Session, entry_id: int) -> models.WaitlistEntry:
    entry = db.get(models.WaitlistEntry, entry_id)
    if entry is None:
        raise NotFoundError(f"Waitlist entry {entry_id} not found")
    return entry


def waitlist_position(db: Session, entry: models.WaitlistEntry) -> int | None:
    """
    1-based FIFO rank among PENDING entries for the same room type and
    check-in date. Entries created in the same instant rank by id.
    """
    if entry.status != WaitlistStatus.PENDING:
        return None
    return db.query(models.WaitlistEntry).filter(
        models.WaitlistEntry.status == WaitlistStatus.PENDING,
        _same_room_type(models.WaitlistEntry.room_type_id, entry.room_type_id),
        models.WaitlistEntry.start_date == entry.start_date,
        or_(
            models.WaitlistEntry.created_at < entry.created_at,
            and_(
                models.WaitlistEntry.created_at == entry.created_at,
                models.WaitlistEntry.id <= entry.id,
            ),
        ),
    ).count()


def list_entries(db: Session, params: schemas.WaitlistFilter) -> list[models.WaitlistEntry]:
    query = db.query(models.WaitlistEntry)
    if params.user_id is not None:
        query = query.filter(models.WaitlistEntry.user_id == params.user_id)
    if params.room_type_id is not None:
        query = query.filter(models.WaitlistEntry.room_type_id == params.room_type_id)
    if params.status is not None:
        query = query.filter(models.WaitlistEntry.status == params.status)
    if params.start_from is not None:
        query = query.filter(models.WaitlistEntry.start_date >= params.start_from)
    if params.end_to is not None:
        query = query.filter(models.WaitlistEntry.end_date <= params.end_to)
    return query.order_by(
        models.WaitlistEntry.created_at, models.WaitlistEntry.id
    ).offset(params.skip).limit(params.limit).all()


# ----------------- Notification -----------------

def notify_entry(
        db: Session,
        entry: models.WaitlistEntry,
        now: datetime.datetime | None = None,
        hold_hours: int | None = None,
) -> models.WaitlistEntry:
    """
    PENDING -> NOTIFIED and queue the message for the notification
    dispatcher. Note: Does NOT commit.
    """
    if entry.status != WaitlistStatus.PENDING:
        raise InvalidTransition("Waitlist entry", entry.id, entry.status, WaitlistStatus.NOTIFIED)
    now = now or utcnow()
    hours = settings.WAITLIST_HOLD_HOURS if hold_hours is None else hold_hours

    entry.status = WaitlistStatus.NOTIFIED
    entry.notified_at = now
    entry.expires_at = now + datetime.timedelta(hours=hours)
    outbox.notify_waitlist_entry(db, entry)
    logger.info(f"Waitlist entry {entry.id} notified; hold expires at {entry.expires_at}.")
    return entry


def notify_entry_by_id(db: Session, entry_id: int, now: datetime.datetime | None = None) -> models.WaitlistEntry:
    def work(session: Session) -> models.WaitlistEntry:
        entry = session.query(models.WaitlistEntry).filter(
            models.WaitlistEntry.id == entry_id
        ).with_for_update().first()
        if entry is None:
            raise NotFoundError(f"Waitlist entry {entry_id} not found")
        return notify_entry(session, entry, now=now)

    entry = run_in_transaction(db, work)
    db.refresh(entry)
    return entry


class _FreeRooms:
    """
    Rooms on offer per (room type, night) while walking the queue: ledger
    availability minus what unexpired NOTIFIED entries have been promised.
    """

    def __init__(self, db: Session, start_date: datetime.date, end_date: datetime.date, now: datetime.datetime):
        self._free: dict[tuple[int, datetime.date], int] = {}
        for row in db.query(models.InventoryDay).filter(
                models.InventoryDay.date >= start_date,
                models.InventoryDay.date < end_date,
        ).all():
            self._free[(row.room_type_id, row.date)] = row.available_rooms
        self._max_guests = {
            rt.id: rt.max_guests for rt in db.query(models.RoomType).order_by(models.RoomType.id).all()
        }

        holding = db.query(models.WaitlistEntry).filter(
            models.WaitlistEntry.status == WaitlistStatus.NOTIFIED,
            models.WaitlistEntry.expires_at > now,
            models.WaitlistEntry.start_date < end_date,
            models.WaitlistEntry.end_date > start_date,
        ).order_by(models.WaitlistEntry.notified_at).all()
        # A hold may run past the loaded span; only the overlapping nights count
        for entry in holding:
            self.claim(entry, known_nights_only=True)

    def rooms_needed(self, entry: models.WaitlistEntry, room_type_id: int) -> int:
        return max(1, math.ceil(entry.guests / max(self._max_guests.get(room_type_id, 1), 1)))

    def fit(self, entry: models.WaitlistEntry, known_nights_only: bool = False) -> int | None:
        options = [entry.room_type_id] if entry.room_type_id is not None else list(self._max_guests)
        for room_type_id in options:
            nights = stay_dates(entry.start_date, entry.end_date)
            if known_nights_only:
                nights = [night for night in nights if (room_type_id, night) in self._free]
            need = self.rooms_needed(entry, room_type_id)
            if all(self._free.get((room_type_id, night), 0) >= need for night in nights):
                return room_type_id
        return None

    def claim(self, entry: models.WaitlistEntry, known_nights_only: bool = False) -> int | None:
        room_type_id = self.fit(entry, known_nights_only)
        if room_type_id is None:
            return None
        need = self.rooms_needed(entry, room_type_id)
        for night in stay_dates(entry.start_date, entry.end_date):
            key = (room_type_id, night)
            if key in self._free:
                self._free[key] -= need
        return room_type_id


def notify_available(
        db: Session,
        room_type_id: int | None,
        start_date: datetime.date,
        end_date: datetime.date,
        now: datetime.datetime | None = None,
) -> list[models.WaitlistEntry]:
    """
    Offers freed rooms to PENDING entries whose stay overlaps the freed range,
    oldest first, notifying every entry whose whole stay still fits.
    ``room_type_id=None`` means rooms of any type were freed.
    Note: Does NOT commit.
    """
    now = now or utcnow()
    query = db.query(models.WaitlistEntry).filter(
        models.WaitlistEntry.status == WaitlistStatus.PENDING,
        models.WaitlistEntry.start_date < end_date,
        models.WaitlistEntry.end_date > start_date,
    )
    if room_type_id is not None:
        query = query.filter(or_(
            models.WaitlistEntry.room_type_id == room_type_id,
            models.WaitlistEntry.room_type_id.is_(None),
        ))
    candidates = query.order_by(
        models.WaitlistEntry.created_at, models.WaitlistEntry.id
    ).with_for_update().all()
    if not candidates:
        return []

    span_start = min(entry.start_date for entry in candidates)
    span_end = max(entry.end_date for entry in candidates)
    free = _FreeRooms(db, span_start, span_end, now)

    notified = []
    for entry in candidates:
        if free.claim(entry) is None:
            continue
        notify_entry(db, entry, now=now)
        notified.append(entry)
    db.flush()
    return notified


# ----------------- Conversion / expiry -----------------

def convert_for_booking(
        db: Session,
        booking: models.Booking,
        now: datetime.datetime | None = None,
) -> list[models.WaitlistEntry]:
    """
    Marks the user's unexpired NOTIFIED entries for exactly this stay as
    CONVERTED. Note: Does NOT commit.
    """
    now = now or utcnow()
    entries = db.query(models.WaitlistEntry).filter(
        models.WaitlistEntry.user_id == booking.user_id,
        models.WaitlistEntry.status == WaitlistStatus.NOTIFIED,
        models.WaitlistEntry.expires_at > now,
        models.WaitlistEntry.start_date == booking.start_date,
        models.WaitlistEntry.end_date == booking.end_date,
        or_(
            models.WaitlistEntry.room_type_id == booking.room_type_id,
            models.WaitlistEntry.room_type_id.is_(None),
        ),
    ).with_for_update().all()

    for entry in entries:
        entry.status = WaitlistStatus.CONVERTED
        entry.converted_booking_id = booking.id
        logger.info(f"Waitlist entry {entry.id} converted into booking {booking.id}.")
    db.flush()
    return entries


def expire_notified(
        db: Session,
        now: datetime.datetime | None = None,
) -> tuple[list[models.WaitlistEntry], list[models.WaitlistEntry]]:
    """
    The hold-window sweep: NOTIFIED entries whose expires_at has passed
    become EXPIRED and their rooms are offered to the next entries in line.
    PENDING entries whose check-in date has gone by expire as well.
    Returns (expired, newly notified). Note: Does NOT commit.
    """
    now = now or utcnow()
    lapsed_holds = db.query(models.WaitlistEntry).filter(
        models.WaitlistEntry.status == WaitlistStatus.NOTIFIED,
        models.WaitlistEntry.expires_at <= now,
    ).order_by(models.WaitlistEntry.expires_at).with_for_update().all()
    stale = db.query(models.WaitlistEntry).filter(
        models.WaitlistEntry.status == WaitlistStatus.PENDING,
        models.WaitlistEntry.start_date < now.date(),
    ).order_by(models.WaitlistEntry.id).with_for_update().all()

    buckets = []
    for entry in lapsed_holds:
        entry.status = WaitlistStatus.EXPIRED
        bucket = (entry.room_type_id, entry.start_date, entry.end_date)
        # Nothing left to offer once check-in has passed
        if bucket not in buckets and entry.start_date >= now.date():
            buckets.append(bucket)
    for entry in stale:
        entry.status = WaitlistStatus.EXPIRED
    expired = lapsed_holds + stale
    db.flush()

    notified = []
    for room_type_id, start_date, end_date in buckets:
        notified.extend(notify_available(db, room_type_id, start_date, end_date, now=now))

    if expired:
        logger.info(f"Expired {len(expired)} waitlist hold(s); notified {len(notified)} next in line.")
    return expired, notified
