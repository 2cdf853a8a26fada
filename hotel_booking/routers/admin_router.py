import datetime
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import crud, ledger, rules, schemas, waitlist
from ..auth import require_admin
from ..booking_scheduler import run_waitlist_sweep
from ..database import get_db
from ..models import ActorRole, BookingStatus, GuestType, WaitlistStatus
from ..transactions import run_in_transaction

router = APIRouter(prefix="/admin", tags=["Administration"])

AdminId = Annotated[int, Depends(require_admin)]


# --- Room types and inventory ---

@router.post("/room-types", response_model=schemas.RoomTypeRead, status_code=status.HTTP_201_CREATED)
def create_room_type(room_type: schemas.RoomTypeCreate, admin_id: AdminId, db: Session = Depends(get_db)):
    return crud.create_room_type(db, room_type)


@router.get("/room-types", response_model=List[schemas.RoomTypeRead])
def list_room_types(admin_id: AdminId, db: Session = Depends(get_db)):
    return crud.get_room_types(db)


@router.put("/inventory", response_model=List[schemas.InventoryDayRead])
def set_inventory(update: schemas.InventoryUpdate, admin_id: AdminId, db: Session = Depends(get_db)):
    """
    Set total rooms for a room type over a date range. Added capacity is
    offered to the waitlist straight away.
    """
    def work(session: Session):
        rows = ledger.set_capacity(session, update.room_type_id, update.start_date, update.end_date, update.total_rooms)
        waitlist.notify_available(session, update.room_type_id, update.start_date, update.end_date)
        return rows

    run_in_transaction(db, work)
    return ledger.get_inventory(db, update.room_type_id, update.start_date, update.end_date)


@router.get("/inventory", response_model=List[schemas.InventoryDayRead])
def read_inventory(
        room_type_id: int,
        start_date: datetime.date,
        end_date: datetime.date,
        admin_id: AdminId,
        db: Session = Depends(get_db),
):
    return ledger.get_inventory(db, room_type_id, start_date, end_date)


# --- Rule catalog ---

@router.get("/rules", response_model=List[schemas.BookingRuleRead])
def read_booking_rules(admin_id: AdminId, db: Session = Depends(get_db)):
    return rules.list_advance_windows(db)


@router.put("/rules/{guest_type}", response_model=schemas.BookingRuleRead)
def update_booking_rule(
        guest_type: GuestType,
        rule: schemas.BookingRuleUpdate,
        admin_id: AdminId,
        db: Session = Depends(get_db),
):
    return rules.upsert_booking_rule(db, guest_type, rule)


@router.post("/deposit-policies", response_model=schemas.DepositPolicyRead, status_code=status.HTTP_201_CREATED)
def create_deposit_policy(policy: schemas.DepositPolicyCreate, admin_id: AdminId, db: Session = Depends(get_db)):
    return rules.create_deposit_policy(db, policy)


@router.get("/deposit-policies", response_model=List[schemas.DepositPolicyRead])
def list_deposit_policies(admin_id: AdminId, include_inactive: bool = False, db: Session = Depends(get_db)):
    return rules.list_deposit_policies(db, include_inactive=include_inactive)


@router.post("/deposit-policies/{policy_id}/activate", response_model=schemas.DepositPolicyRead)
def activate_deposit_policy(policy_id: int, admin_id: AdminId, db: Session = Depends(get_db)):
    return rules.set_deposit_policy_active(db, policy_id, True)


@router.delete("/deposit-policies/{policy_id}", response_model=schemas.DepositPolicyRead)
def deactivate_deposit_policy(policy_id: int, admin_id: AdminId, db: Session = Depends(get_db)):
    return rules.set_deposit_policy_active(db, policy_id, False)


@router.post("/special-days", response_model=schemas.SpecialDayRead, status_code=status.HTTP_201_CREATED)
def create_special_day(day: schemas.SpecialDayCreate, admin_id: AdminId, db: Session = Depends(get_db)):
    return rules.create_special_day(db, day)


@router.get("/special-days", response_model=List[schemas.SpecialDayRead])
def list_special_days(
        start_date: datetime.date,
        end_date: datetime.date,
        admin_id: AdminId,
        room_type_id: Optional[int] = None,
        db: Session = Depends(get_db),
):
    return rules.list_special_days(db, start_date, end_date, room_type_id)


@router.delete("/special-days/{special_day_id}", response_model=schemas.SpecialDayRead)
def deactivate_special_day(special_day_id: int, admin_id: AdminId, db: Session = Depends(get_db)):
    return rules.deactivate_special_day(db, special_day_id)


# --- Booking overrides ---

@router.get("/bookings", response_model=List[schemas.BookingRead])
def list_bookings(
        admin_id: AdminId,
        db: Session = Depends(get_db),
        user_id: Optional[int] = None,
        room_type_id: Optional[int] = None,
        status_filter: Optional[BookingStatus] = Query(default=None, alias="status"),
        start_from: Optional[datetime.date] = None,
        start_to: Optional[datetime.date] = None,
        skip: int = 0,
        limit: int = 100,
):
    params = schemas.BookingFilter(
        user_id=user_id, room_type_id=room_type_id, status=status_filter,
        start_from=start_from, start_to=start_to, skip=skip, limit=limit,
    )
    return crud.get_bookings(db, params)


@router.post("/bookings/{booking_id}/confirm", response_model=schemas.BookingRead)
def force_confirm_booking(
        booking_id: int,
        action: schemas.AdminBookingAction,
        admin_id: AdminId,
        db: Session = Depends(get_db),
):
    """Confirm without a settled payment (offline payment, comp stays)."""
    return crud.confirm_booking(
        db, booking_id, amount=0, actor_id=admin_id, actor_role=ActorRole.ADMIN, reason=action.reason,
    )


@router.post("/bookings/{booking_id}/cancel", response_model=schemas.CancellationRead)
def force_cancel_booking(
        booking_id: int,
        action: schemas.AdminBookingAction,
        admin_id: AdminId,
        db: Session = Depends(get_db),
):
    result = crud.cancel_booking(
        db, booking_id, actor_id=admin_id, actor_role=ActorRole.ADMIN, reason=action.reason,
    )
    return schemas.CancellationRead(
        booking=schemas.BookingRead.model_validate(result.booking),
        refund_amount=result.refund_amount,
        notified_waitlist_ids=result.notified_waitlist_ids,
    )


# --- Waitlist ---

@router.get("/waitlist", response_model=List[schemas.WaitlistRead])
def list_waitlist(
        admin_id: AdminId,
        db: Session = Depends(get_db),
        room_type_id: Optional[int] = None,
        status_filter: Optional[WaitlistStatus] = Query(default=None, alias="status"),
        start_from: Optional[datetime.date] = None,
        end_to: Optional[datetime.date] = None,
        skip: int = 0,
        limit: int = 100,
):
    params = schemas.WaitlistFilter(
        room_type_id=room_type_id, status=status_filter, start_from=start_from, end_to=end_to,
        skip=skip, limit=limit,
    )
    entries = waitlist.list_entries(db, params)
    reads = []
    for entry in entries:
        read = schemas.WaitlistRead.model_validate(entry)
        read.position = waitlist.waitlist_position(db, entry)
        reads.append(read)
    return reads


@router.post("/waitlist/{entry_id}/notify", response_model=schemas.WaitlistRead)
def notify_waitlist_entry(entry_id: int, admin_id: AdminId, db: Session = Depends(get_db)):
    return waitlist.notify_entry_by_id(db, entry_id)


@router.post("/waitlist/expire", response_model=schemas.SweepResult)
def expire_waitlist_holds(admin_id: AdminId, db: Session = Depends(get_db)):
    """Run the hold-expiry sweep now instead of waiting for the scheduler."""
    expired, notified = run_waitlist_sweep(db)
    return schemas.SweepResult(expired_ids=expired, notified_ids=notified)


@router.get("/bookings/{booking_id}/audit", response_model=List[schemas.AuditLogRead])
def read_booking_audit_log(booking_id: int, admin_id: AdminId, db: Session = Depends(get_db)):
    crud.get_booking(db, booking_id)
    return crud.get_audit_log(db, booking_id)
