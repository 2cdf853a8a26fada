from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from .. import crud, schemas
from ..auth import require_payment_service
from ..database import get_db
from ..models import ActorRole

# Called by the payment collaborator, not by guests
router = APIRouter(
    prefix="/payments",
    tags=["Payments"],
    dependencies=[Depends(require_payment_service)],
)


@router.post("/{booking_id}/settled", response_model=schemas.BookingRead)
def payment_settled(
        booking_id: int,
        payment: Optional[schemas.PaymentSettled] = None,
        db: Session = Depends(get_db),
):
    return crud.confirm_booking(
        db, booking_id,
        amount=payment.amount if payment else None,
        actor_role=ActorRole.PAYMENT,
        reason=payment.reference if payment else None,
    )


@router.post("/{booking_id}/failed", response_model=schemas.BookingRead)
def payment_failed(
        booking_id: int,
        payment: Optional[schemas.PaymentFailed] = None,
        db: Session = Depends(get_db),
):
    return crud.mark_payment_failed(db, booking_id, reason=payment.reason if payment else None)
