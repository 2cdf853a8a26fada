import datetime
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Response, status
from sqlalchemy.orm import Session

from .. import crud, ledger, schemas
from ..auth import get_current_user_id_from_token, get_guest_type
from ..database import get_db
from ..models import ActorRole, BookingStatus, GuestType
from ..outcomes import CapacityConflict, PolicyViolation
from ..rate_limit import rate_limit

router = APIRouter(prefix="/bookings", tags=["Bookings"])


def policy_violation_response(outcome: PolicyViolation) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
        detail={
            "message": "Booking rules not satisfied.",
            "errors": outcome.errors,
            "warnings": outcome.warnings,
            "blocked_dates": [d.isoformat() for d in outcome.blocked_dates],
        },
    )


def capacity_conflict_response(outcome: CapacityConflict) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "message": "Booking conflict: no rooms left on some of these dates.",
            "conflict_dates": [d.isoformat() for d in outcome.conflict_dates],
            "waitlist_available": outcome.waitlist_available,
        },
    )


@router.post("/", response_model=schemas.BookingCreatedRead, status_code=status.HTTP_201_CREATED)
def create_booking(
        booking: schemas.BookingCreate,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        guest_type: Annotated[GuestType, Depends(get_guest_type)],
        response: Response,
        db: Session = Depends(get_db),
        idempotency_key: Optional[str] = Header(default=None, max_length=255),
        limit: None = Depends(rate_limit(times=30, minutes=1)),
):
    """
    Create a PROVISIONAL booking for the authenticated user.
    A 409 carries the sold-out dates so the client can offer the waitlist.
    Retrying an identical request (or one with the same Idempotency-Key)
    returns the existing booking with a 200.
    """
    outcome = crud.create_booking(
        db=db, booking=booking, user_id=user_id, guest_type=guest_type, idempotency_key=idempotency_key,
    )
    if isinstance(outcome, PolicyViolation):
        raise policy_violation_response(outcome)
    if isinstance(outcome, CapacityConflict):
        raise capacity_conflict_response(outcome)

    if outcome.replayed:
        response.status_code = status.HTTP_200_OK
    return schemas.BookingCreatedRead(
        booking=schemas.BookingRead.model_validate(outcome.booking),
        warnings=outcome.validation.warnings,
        converted_waitlist_ids=outcome.converted_waitlist_ids,
        replayed=outcome.replayed,
    )


@router.post("/validate", response_model=schemas.ValidationRead)
def validate_booking(
        booking: schemas.BookingCreate,
        guest_type: Annotated[GuestType, Depends(get_guest_type)],
        db: Session = Depends(get_db),
):
    """
    Dry run of the booking rules: every error and warning, the quoted price
    and any deposit, without touching inventory.
    """
    return crud.preview_booking(db, booking, guest_type)


@router.get("/availability", response_model=schemas.AvailabilityRead)
def check_availability(
        start_date: datetime.date,
        end_date: datetime.date,
        room_type_id: Optional[int] = None,
        rooms: int = Query(default=1, ge=1),
        db: Session = Depends(get_db),
):
    if end_date <= start_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Booking end date must be after start date."
        )
    room_type_ids = ledger.available_room_types(db, room_type_id, start_date, end_date, rooms)
    return schemas.AvailabilityRead(available=bool(room_type_ids), room_type_ids=room_type_ids)


@router.get("/", response_model=List[schemas.BookingRead])
def read_user_bookings(
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
        status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
        start_from: Optional[datetime.date] = None,
        start_to: Optional[datetime.date] = None,
        skip: int = 0,
        limit: int = 100,
        throttle: None = Depends(rate_limit(times=5, minutes=1)),
):
    """
    Get all bookings for the authenticated user.
    """
    params = schemas.BookingFilter(
        user_id=user_id, status=status_filter, start_from=start_from, start_to=start_to,
        skip=skip, limit=limit,
    )
    return crud.get_bookings(db=db, params=params)


@router.get("/{booking_id}", response_model=schemas.BookingRead)
def read_booking(
        booking_id: int,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
):
    return crud.get_booking(db, booking_id, user_id=user_id)


@router.post("/{booking_id}/cancel", response_model=schemas.CancellationRead)
def cancel_booking(
        booking_id: int,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        request: Optional[schemas.CancelRequest] = None,
        db: Session = Depends(get_db),
):
    """
    Cancel one of the user's bookings. The refund is computed from the stored
    booking, never from anything the client sends.
    """
    result = crud.cancel_booking(
        db, booking_id, actor_id=user_id, actor_role=ActorRole.USER,
        reason=request.reason if request else None,
    )
    return schemas.CancellationRead(
        booking=schemas.BookingRead.model_validate(result.booking),
        refund_amount=result.refund_amount,
        notified_waitlist_ids=result.notified_waitlist_ids,
    )
