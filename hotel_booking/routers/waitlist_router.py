from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from .. import models, schemas, waitlist
from ..auth import get_current_user_id_from_token, get_guest_type
from ..database import get_db
from ..errors import PermissionDeniedError
from ..models import GuestType, WaitlistStatus
from ..rate_limit import rate_limit

router = APIRouter(prefix="/waitlist", tags=["Waitlist"])


def to_read(db: Session, entry: models.WaitlistEntry) -> schemas.WaitlistRead:
    read = schemas.WaitlistRead.model_validate(entry)
    read.position = waitlist.waitlist_position(db, entry)
    return read


@router.post("/", response_model=schemas.WaitlistRead, status_code=status.HTTP_201_CREATED)
def join_waitlist(
        request: schemas.WaitlistJoin,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        guest_type: Annotated[GuestType, Depends(get_guest_type)],
        db: Session = Depends(get_db),
        limit: None = Depends(rate_limit(times=10, minutes=1)),
):
    entry = waitlist.join_waitlist(db, user_id, guest_type, request)
    return to_read(db, entry)


@router.get("/", response_model=List[schemas.WaitlistRead])
def read_user_waitlist(
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
        status_filter: Optional[WaitlistStatus] = Query(default=None, alias="status"),
        skip: int = 0,
        limit: int = 100,
):
    params = schemas.WaitlistFilter(user_id=user_id, status=status_filter, skip=skip, limit=limit)
    return [to_read(db, entry) for entry in waitlist.list_entries(db, params)]


@router.get("/{entry_id}", response_model=schemas.WaitlistRead)
def read_waitlist_entry(
        entry_id: int,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
):
    entry = waitlist.get_entry(db, entry_id)
    if entry.user_id != user_id:
        raise PermissionDeniedError("You can only view your own waitlist entries")
    return to_read(db, entry)


@router.post("/{entry_id}/cancel", response_model=schemas.WaitlistRead)
def withdraw_from_waitlist(
        entry_id: int,
        user_id: Annotated[int, Depends(get_current_user_id_from_token)],
        db: Session = Depends(get_db),
):
    entry = waitlist.cancel_entry(db, entry_id, user_id)
    return to_read(db, entry)
