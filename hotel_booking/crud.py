"""
Booking lifecycle.

PROVISIONAL -> CONFIRMED -> COMPLETED, with CANCELLED reachable from
PROVISIONAL and CONFIRMED. A PROVISIONAL or CONFIRMED booking always has a
matching ledger reservation: the two are created in one transaction and
released in one transaction.
"""
import datetime
import logging

from sqlalchemy.orm import Session

from . import idempotency, ledger, models, outbox, schemas, waitlist
from .errors import BookingValidationError, InvalidTransition, NotFoundError, PermissionDeniedError
from .models import ActorRole, BookingStatus, utcnow
from .outcomes import (
    BookingCreated, BookingOutcome, CancellationResult, CapacityConflict, PolicyViolation, ValidationResult,
)
from .refunds import RefundPolicy, calculate_refund
from .rules import load_rule_catalog
from .transactions import run_in_transaction
from .validator import validate_booking

logger = logging.getLogger("booking_service")

ALLOWED_TRANSITIONS = {
    BookingStatus.PROVISIONAL: {BookingStatus.CONFIRMED, BookingStatus.CANCELLED},
    BookingStatus.CONFIRMED: {BookingStatus.CANCELLED, BookingStatus.COMPLETED},
    BookingStatus.CANCELLED: set(),
    BookingStatus.COMPLETED: set(),
}


def _transition(
        db: Session,
        booking: models.Booking,
        to_status: BookingStatus,
        action: str,
        actor_id: int | None,
        actor_role: ActorRole,
        reason: str | None = None,
):
    """Moves a booking one step and writes the audit row. Does NOT commit."""
    from_status = booking.status
    if to_status not in ALLOWED_TRANSITIONS[from_status]:
        logger.error(
            f"Rejected {action} of booking {booking.id} by {actor_role.value} {actor_id}: "
            f"already {from_status.value}."
        )
        raise InvalidTransition("Booking", booking.id, from_status, to_status)

    booking.status = to_status
    db.add(models.BookingAuditLog(
        booking_id=booking.id,
        actor_id=actor_id,
        actor_role=actor_role,
        action=action,
        from_status=from_status,
        to_status=to_status,
        reason=reason,
    ))


def _lock_booking(db: Session, booking_id: int) -> models.Booking:
    booking = db.query(models.Booking).filter(
        models.Booking.id == booking_id
    ).with_for_update().first()
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


# ----------------- Create -----------------

def preview_booking(
        db: Session,
        booking: schemas.BookingCreate,
        guest_type: models.GuestType,
        today: datetime.date | None = None,
):
    catalog = load_rule_catalog(db, guest_type, booking.room_type_id, booking.start_date, booking.end_date)
    return validate_booking(
        catalog, guest_type, booking.room_type_id,
        booking.start_date, booking.end_date, booking.rooms_booked, today=today,
    )


def _replay(existing: models.Booking) -> BookingCreated:
    validation = ValidationResult(
        valid=True,
        requires_deposit=existing.requires_deposit,
        deposit_amount=existing.deposit_amount,
        total_price=existing.total_price,
        nights=(existing.end_date - existing.start_date).days,
    )
    return BookingCreated(booking=existing, validation=validation, replayed=True)


def create_booking(
        db: Session,
        booking: schemas.BookingCreate,
        user_id: int,
        guest_type: models.GuestType,
        today: datetime.date | None = None,
        now: datetime.datetime | None = None,
        idempotency_key: str | None = None,
) -> BookingOutcome:
    """
    Validates the request against a fresh rule snapshot, then reserves the
    inventory and inserts the PROVISIONAL booking in a single transaction.

    A repeat of a request whose booking is still live returns that booking
    with ``replayed=True`` and reserves nothing.
    """
    key = idempotency.generate_key(user_id, booking, idempotency_key)
    existing = idempotency.find_live_booking(db, key)
    if existing is not None:
        logger.info(f"Duplicate create request from user {user_id}; replaying booking {existing.id}.")
        return _replay(existing)

    validation = preview_booking(db, booking, guest_type, today=today)
    if not validation.valid:
        logger.info(f"Booking request from user {user_id} rejected by policy: {validation.errors}")
        return PolicyViolation(
            errors=validation.errors,
            warnings=validation.warnings,
            blocked_dates=validation.blocked_dates,
        )

    def work(session: Session) -> BookingOutcome:
        # A concurrent duplicate may have committed since the first lookup
        earlier = idempotency.find_live_booking(session, key, lock=True)
        if earlier is not None:
            return _replay(earlier)

        reservation = ledger.reserve(
            session, booking.room_type_id, booking.start_date, booking.end_date, booking.rooms_booked
        )
        if not reservation.ok:
            queued = waitlist.find_active_entry(
                session, user_id, booking.room_type_id, booking.start_date, booking.end_date
            )
            return CapacityConflict(conflict_dates=reservation.conflict_dates, waitlist_available=queued is None)

        db_booking = models.Booking(
            user_id=user_id,
            room_type_id=booking.room_type_id,
            start_date=booking.start_date,
            end_date=booking.end_date,
            rooms_booked=booking.rooms_booked,
            guest_type=guest_type,
            status=BookingStatus.PROVISIONAL,
            total_price=validation.total_price,
            requires_deposit=validation.requires_deposit,
            deposit_amount=validation.deposit_amount,
        )
        session.add(db_booking)
        session.flush()

        session.add(models.BookingAuditLog(
            booking_id=db_booking.id,
            actor_id=user_id,
            actor_role=ActorRole.USER,
            action="CREATE",
            to_status=BookingStatus.PROVISIONAL,
        ))
        idempotency.remember(session, key, db_booking)
        converted = waitlist.convert_for_booking(session, db_booking, now=now)
        outbox.booking_event(session, db_booking, "booking.created")
        return BookingCreated(
            booking=db_booking,
            validation=validation,
            converted_waitlist_ids=[entry.id for entry in converted],
        )

    outcome = run_in_transaction(db, work)
    if isinstance(outcome, BookingCreated) and not outcome.replayed:
        db.refresh(outcome.booking)
        logger.info(
            f"Booking {outcome.booking.id} created PROVISIONAL for user {user_id}: "
            f"{outcome.booking.rooms_booked} room(s) of type {outcome.booking.room_type_id}."
        )
    return outcome


# ----------------- Payment outcomes -----------------

def confirm_booking(
        db: Session,
        booking_id: int,
        amount: int | None = None,
        actor_id: int | None = None,
        actor_role: ActorRole = ActorRole.PAYMENT,
        reason: str | None = None,
        now: datetime.datetime | None = None,
) -> models.Booking:
    """PROVISIONAL -> CONFIRMED. The inventory was already held; the ledger is untouched."""
    now = now or utcnow()

    def work(session: Session) -> models.Booking:
        booking = _lock_booking(session, booking_id)
        _transition(session, booking, BookingStatus.CONFIRMED, "CONFIRM", actor_id, actor_role, reason)
        paid = booking.total_price if amount is None else amount
        booking.paid_amount += paid
        booking.confirmed_at = now
        session.add(models.Payment(
            booking_id=booking.id,
            user_id=booking.user_id,
            kind=models.PaymentKind.PAYMENT,
            amount=paid,
            note=reason,
        ))
        outbox.booking_event(session, booking, "booking.confirmed")
        return booking

    booking = run_in_transaction(db, work)
    db.refresh(booking)
    logger.info(f"Booking {booking.id} confirmed by {actor_role.value}.")
    return booking


def mark_payment_failed(db: Session, booking_id: int, reason: str | None = None) -> models.Booking:
    """
    Records a failed settlement. The booking stays PROVISIONAL, still holding
    its rooms, so the guest can retry payment or cancel.
    """

    def work(session: Session) -> models.Booking:
        booking = _lock_booking(session, booking_id)
        if booking.status != BookingStatus.PROVISIONAL:
            raise InvalidTransition("Booking", booking.id, booking.status, "PAYMENT_FAILED")
        session.add(models.Payment(
            booking_id=booking.id,
            user_id=booking.user_id,
            kind=models.PaymentKind.FAILED,
            amount=0,
            note=reason,
        ))
        session.add(models.BookingAuditLog(
            booking_id=booking.id,
            actor_role=ActorRole.PAYMENT,
            action="PAYMENT_FAILED",
            from_status=booking.status,
            to_status=booking.status,
            reason=reason,
        ))
        return booking

    booking = run_in_transaction(db, work)
    db.refresh(booking)
    logger.warning(f"Payment failed for booking {booking.id}: {reason}")
    return booking


# ----------------- Cancel -----------------

def cancel_booking(
        db: Session,
        booking_id: int,
        actor_id: int | None,
        actor_role: ActorRole = ActorRole.USER,
        reason: str | None = None,
        refund_policy: RefundPolicy | None = None,
        now: datetime.datetime | None = None,
) -> CancellationResult:
    """
    Cancels in one transaction: release the full original range, set
    CANCELLED, record the refund, offer the rooms to the waitlist. The refund
    comes only from stored booking state, and the booking row is locked so a
    second cancel sees CANCELLED and fails instead of refunding twice.
    """
    now = now or utcnow()
    policy = refund_policy or RefundPolicy.from_settings()

    def work(session: Session) -> CancellationResult:
        booking = _lock_booking(session, booking_id)
        if actor_role == ActorRole.USER and booking.user_id != actor_id:
            raise PermissionDeniedError("You do not have permission to cancel this booking")
        if booking.status in (BookingStatus.PROVISIONAL, BookingStatus.CONFIRMED) and now.date() >= booking.start_date:
            raise BookingValidationError("Cannot cancel a booking that has already started")

        action = "CANCEL" if actor_role == ActorRole.USER else "FORCE_CANCEL"
        _transition(session, booking, BookingStatus.CANCELLED, action, actor_id, actor_role, reason)

        released = ledger.release(
            session, booking.room_type_id, booking.start_date, booking.end_date, booking.rooms_booked
        )

        refund = calculate_refund(booking.total_price, booking.start_date, booking.deposit_amount, policy, now)
        # Never hand back money that was not received
        refund = min(refund, booking.paid_amount)
        booking.refund_amount = refund
        booking.cancelled_at = now
        booking.cancellation_reason = reason
        if refund > 0:
            session.add(models.Payment(
                booking_id=booking.id,
                user_id=booking.user_id,
                kind=models.PaymentKind.REFUND,
                amount=-refund,
                note=reason or "Booking cancelled",
            ))

        notified = waitlist.notify_available(
            session, booking.room_type_id, booking.start_date, booking.end_date, now=now
        )
        outbox.booking_event(session, booking, "booking.cancelled", refund_amount=refund)
        return CancellationResult(
            booking=booking,
            refund_amount=refund,
            released_dates=released,
            notified_waitlist_ids=[entry.id for entry in notified],
        )

    result = run_in_transaction(db, work)
    db.refresh(result.booking)
    logger.info(
        f"Booking {result.booking.id} cancelled by {actor_role.value} {actor_id}; "
        f"refund {result.refund_amount} cents; {len(result.notified_waitlist_ids)} waitlist entries notified."
    )
    return result


# ----------------- Complete -----------------

def complete_booking(
        db: Session,
        booking_id: int,
        today: datetime.date | None = None,
) -> models.Booking:
    """CONFIRMED -> COMPLETED. Note: Does NOT commit."""
    today = today or datetime.date.today()
    booking = _lock_booking(db, booking_id)
    if booking.end_date > today:
        raise InvalidTransition("Booking", booking.id, booking.status, BookingStatus.COMPLETED)
    _transition(db, booking, BookingStatus.COMPLETED, "COMPLETE", None, ActorRole.SYSTEM)
    return booking


def get_bookings_ending_by(db: Session, today: datetime.date) -> list[models.Booking]:
    """CONFIRMED bookings whose check-out date has arrived."""
    return db.query(models.Booking).filter(
        models.Booking.status == BookingStatus.CONFIRMED,
        models.Booking.end_date <= today,
    ).all()


# ----------------- Queries -----------------

def get_booking(db: Session, booking_id: int, user_id: int | None = None) -> models.Booking:
    booking = db.get(models.Booking, booking_id)
    if booking is None:
        raise NotFoundError(f"Booking {booking_id} not found")
    if user_id is not None and booking.user_id != user_id:
        raise PermissionDeniedError("You do not have permission to view this booking")
    return booking


def get_bookings(db: Session, params: schemas.BookingFilter) -> list[models.Booking]:
    query = db.query(models.Booking)
    if params.user_id is not None:
        query = query.filter(models.Booking.user_id == params.user_id)
    if params.room_type_id is not None:
        query = query.filter(models.Booking.room_type_id == params.room_type_id)
    if params.status is not None:
        query = query.filter(models.Booking.status == params.status)
    if params.start_from is not None:
        query = query.filter(models.Booking.start_date >= params.start_from)
    if params.start_to is not None:
        query = query.filter(models.Booking.start_date <= params.start_to)
    return query.order_by(models.Booking.start_date, models.Booking.id).offset(params.skip).limit(params.limit).all()


def get_audit_log(db: Session, booking_id: int) -> list[models.BookingAuditLog]:
    return db.query(models.BookingAuditLog).filter(
        models.BookingAuditLog.booking_id == booking_id
    ).order_by(models.BookingAuditLog.id).all()


# ----------------- Room types -----------------

def create_room_type(db: Session, room_type: schemas.RoomTypeCreate) -> models.RoomType:
    db_room_type = models.RoomType(**room_type.model_dump())
    db.add(db_room_type)
    db.commit()
    db.refresh(db_room_type)
    return db_room_type


def get_room_types(db: Session) -> list[models.RoomType]:
    return db.query(models.RoomType).order_by(models.RoomType.id).all()
