import json
from datetime import date, datetime, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy.orm import Session

from hotel_booking import crud, models, schemas, waitlist
from hotel_booking.config import settings
from hotel_booking.errors import (
    BookingValidationError, DuplicateWaitlistEntry, InvalidTransition, PermissionDeniedError,
)
from hotel_booking.models import GuestType, WaitlistStatus
from hotel_booking.outcomes import BookingCreated

TODAY = date(2026, 12, 1)
JAN_10 = date(2027, 1, 10)
JAN_13 = date(2027, 1, 13)
NOW = datetime(2026, 12, 1, 12, 0)


def join(db, user_id, room_type_id, start=JAN_10, end=JAN_13, guests=2):
    request = schemas.WaitlistJoin(room_type_id=room_type_id, start_date=start, end_date=end, guests=guests)
    return waitlist.join_waitlist(db, user_id, GuestType.REGULAR, request, today=TODAY)


def statuses(db, entry_ids):
    db.expire_all()
    return [db.get(models.WaitlistEntry, entry_id).status for entry_id in entry_ids]


# --- Join / position ---

def test_position_is_fifo_within_bucket(db_session: Session, room_type_id):
    ids = [join(db_session, user_id, room_type_id).id for user_id in range(1, 6)]

    positions = [waitlist.waitlist_position(db_session, db_session.get(models.WaitlistEntry, i)) for i in ids]

    assert positions == [1, 2, 3, 4, 5]
    assert waitlist.waitlist_position(db_session, db_session.get(models.WaitlistEntry, ids[2])) == 3


def test_position_ignores_other_buckets(db_session: Session, room_type_id):
    join(db_session, 1, room_type_id, start=JAN_10 + timedelta(days=1), end=JAN_13)
    join(db_session, 2, None)
    entry = join(db_session, 3, room_type_id)

    assert waitlist.waitlist_position(db_session, entry) == 1


def test_duplicate_join_is_rejected(db_session: Session, room_type_id):
    entry = join(db_session, 1, room_type_id)

    with pytest.raises(DuplicateWaitlistEntry):
        join(db_session, 1, room_type_id)

    waitlist.cancel_entry(db_session, entry.id, user_id=1)
    # A withdrawn entry no longer blocks a new one
    assert join(db_session, 1, room_type_id).status == WaitlistStatus.PENDING


def test_join_rejects_past_check_in(db_session: Session, room_type_id):
    request = schemas.WaitlistJoin(room_type_id=room_type_id, start_date=TODAY - timedelta(days=30),
                                   end_date=TODAY - timedelta(days=27))

    with pytest.raises(BookingValidationError):
        waitlist.join_waitlist(db_session, 1, GuestType.REGULAR, request, today=TODAY)
    assert db_session.query(models.WaitlistEntry).count() == 0

    # Check-in today is still allowed
    same_day = schemas.WaitlistJoin(room_type_id=room_type_id, start_date=TODAY, end_date=TODAY + timedelta(days=2))
    entry = waitlist.join_waitlist(db_session, 1, GuestType.REGULAR, same_day, today=TODAY)
    assert entry.status == WaitlistStatus.PENDING


@pytest.mark.parametrize("fields", [
    {"end_date": JAN_10 + timedelta(days=31)},
    {"guests": 11},
])
def test_join_request_bounds(room_type_id, fields):
    data = {"room_type_id": room_type_id, "start_date": JAN_10, "end_date": JAN_13, **fields}
    with pytest.raises(ValidationError):
        schemas.WaitlistJoin(**data)


def test_join_queues_event(db_session: Session, room_type_id):
    entry = join(db_session, 1, room_type_id)
    event = db_session.query(models.OutboxEvent).one()
    assert event.topic == settings.KAFKA_WAITLIST_TOPIC
    assert json.loads(event.payload) == {"event": "waitlist.joined", "waitlist_entry_id": entry.id, "user_id": 1}


def test_withdraw_checks_owner_and_state(db_session: Session, room_type_id):
    entry_id = join(db_session, 1, room_type_id).id

    with pytest.raises(PermissionDeniedError):
        waitlist.cancel_entry(db_session, entry_id, user_id=2)

    assert waitlist.cancel_entry(db_session, entry_id, user_id=1).status == WaitlistStatus.EXPIRED
    with pytest.raises(InvalidTransition):
        waitlist.cancel_entry(db_session, entry_id, user_id=1)


# --- Notification ---

def test_freed_rooms_notify_oldest_fitting_entries(db_session: Session, room_type_id, stock_inventory):
    stock_inventory(room_type_id, JAN_10, JAN_13, total_rooms=1)
    first = join(db_session, 1, room_type_id, guests=2).id
    # Needs two rooms of a two-guest type; only one is free
    too_big = join(db_session, 2, room_type_id, start=JAN_10, end=JAN_13 - timedelta(days=1), guests=4).id
    third = join(db_session, 3, room_type_id, start=JAN_10 + timedelta(days=1), end=JAN_13, guests=1).id

    notified = waitlist.notify_available(db_session, room_type_id, JAN_10, JAN_13, now=NOW)
    db_session.commit()

    assert [entry.id for entry in notified] == [first]
    assert statuses(db_session, [first, too_big, third]) == [
        WaitlistStatus.NOTIFIED, WaitlistStatus.PENDING, WaitlistStatus.PENDING,
    ]
    entry = db_session.get(models.WaitlistEntry, first)
    assert entry.notified_at == NOW
    assert entry.expires_at == NOW + timedelta(hours=settings.WAITLIST_HOLD_HOURS)
    # Notification does not reserve inventory
    assert {row.reserved_rooms for row in db_session.query(models.InventoryDay)} == {0}


def test_held_rooms_are_not_offered_twice(db_session: Session, room_type_id, stock_inventory):
    stock_inventory(room_type_id, JAN_10, JAN_13, total_rooms=1)
    first = join(db_session, 1, room_type_id).id
    waitlist.notify_available(db_session, room_type_id, JAN_10, JAN_13, now=NOW)
    db_session.commit()

    second = join(db_session, 2, room_type_id, guests=1).id
    notified = waitlist.notify_available(db_session, room_type_id, JAN_10, JAN_13, now=NOW + timedelta(hours=1))
    db_session.commit()

    assert notified == []
    assert statuses(db_session, [first, second]) == [WaitlistStatus.NOTIFIED, WaitlistStatus.PENDING]


def test_cancelled_booking_notifies_waitlist(db_session: Session, room_type_id, stock_inventory):
    stock_inventory(room_type_id, JAN_10, JAN_13, total_rooms=1)
    request = schemas.BookingCreate(room_type_id=room_type_id, start_date=JAN_10, end_date=JAN_13)
    booking_id = crud.create_booking(db_session, request, user_id=1, guest_type=GuestType.REGULAR, today=TODAY).booking.id
    waiting = join(db_session, 2, room_type_id).id

    result = crud.cancel_booking(db_session, booking_id, actor_id=1, now=NOW)

    assert result.notified_waitlist_ids == [waiting]
    events = [json.loads(e.payload)["event"] for e in db_session.query(models.OutboxEvent).order_by(models.OutboxEvent.id)]
    assert "waitlist.notified" in events


# --- Expiry sweep ---

def test_expired_hold_is_swept_and_next_entry_notified(db_session: Session, room_type_id, stock_inventory):
    stock_inventory(room_type_id, JAN_10, JAN_13, total_rooms=1)
    first = join(db_session, 1, room_type_id).id
    waitlist.notify_available(db_session, room_type_id, JAN_10, JAN_13, now=NOW)
    db_session.commit()
    second = join(db_session, 2, room_type_id).id
    third = join(db_session, 3, room_type_id).id

    later = NOW + timedelta(hours=settings.WAITLIST_HOLD_HOURS + 1)
    expired, notified = waitlist.expire_notified(db_session, now=later)
    db_session.commit()

    assert [entry.id for entry in expired] == [first]
    assert [entry.id for entry in notified] == [second]
    assert statuses(db_session, [first, second, third]) == [
        WaitlistStatus.EXPIRED, WaitlistStatus.NOTIFIED, WaitlistStatus.PENDING,
    ]
    # The expired entry no longer counts toward anyone's position
    assert waitlist.waitlist_position(db_session, db_session.get(models.WaitlistEntry, third)) == 1
    assert waitlist.waitlist_position(db_session, db_session.get(models.WaitlistEntry, first)) is None


def test_unexpired_hold_survives_sweep(db_session: Session, room_type_id, stock_inventory):
    stock_inventory(room_type_id, JAN_10, JAN_13, total_rooms=1)
    first = join(db_session, 1, room_type_id).id
    waitlist.notify_available(db_session, room_type_id, JAN_10, JAN_13, now=NOW)
    db_session.commit()

    expired, notified = waitlist.expire_notified(db_session, now=NOW + timedelta(hours=1))

    assert expired == [] and notified == []
    assert statuses(db_session, [first]) == [WaitlistStatus.NOTIFIED]


def test_sweep_expires_entries_past_check_in(db_session: Session, room_type_id, stock_inventory):
    stock_inventory(room_type_id, JAN_10, JAN_13, total_rooms=1)
    pending = join(db_session, 1, room_type_id).id
    holding = join(db_session, 2, room_type_id, start=JAN_13, end=JAN_13 + timedelta(days=2)).id
    waitlist.notify_entry_by_id(db_session, holding, now=NOW)
    later_stay = join(db_session, 3, room_type_id, start=JAN_13, end=JAN_13 + timedelta(days=1)).id

    expired, notified = waitlist.expire_notified(db_session, now=datetime(2027, 1, 11, 9, 0))
    db_session.commit()

    assert [entry.id for entry in expired] == [holding, pending]
    assert notified == []
    assert statuses(db_session, [pending, holding, later_stay]) == [
        WaitlistStatus.EXPIRED, WaitlistStatus.EXPIRED, WaitlistStatus.PENDING,
    ]
    assert waitlist.waitlist_position(db_session, db_session.get(models.WaitlistEntry, pending)) is None


# --- Conversion ---

def test_notified_entry_converts_on_matching_booking(db_session: Session, room_type_id, stock_inventory):
    stock_inventory(room_type_id, JAN_10, JAN_13, total_rooms=1)
    entry_id = join(db_session, 1, room_type_id).id
    waitlist.notify_entry_by_id(db_session, entry_id)

    request = schemas.BookingCreate(room_type_id=room_type_id, start_date=JAN_10, end_date=JAN_13)
    outcome = crud.create_booking(db_session, request, user_id=1, guest_type=GuestType.REGULAR, today=TODAY)

    assert isinstance(outcome, BookingCreated)
    assert outcome.converted_waitlist_ids == [entry_id]
    entry = db_session.get(models.WaitlistEntry, entry_id)
    assert entry.status == WaitlistStatus.CONVERTED
    assert entry.converted_booking_id == outcome.booking.id


def test_pending_entry_does_not_convert(db_session: Session, room_type_id, stock_inventory):
    stock_inventory(room_type_id, JAN_10, JAN_13, total_rooms=1)
    entry_id = join(db_session, 1, room_type_id).id

    request = schemas.BookingCreate(room_type_id=room_type_id, start_date=JAN_10, end_date=JAN_13)
    outcome = crud.create_booking(db_session, request, user_id=1, guest_type=GuestType.REGULAR, today=TODAY)

    assert outcome.converted_waitlist_ids == []
    assert statuses(db_session, [entry_id]) == [WaitlistStatus.PENDING]
