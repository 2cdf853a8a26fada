from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional
import datetime

from .models import (
    ActorRole, BookingStatus, DepositType, GuestType, RateType, SpecialDayRule, WaitlistStatus,
)


class StayDates(BaseModel):
    start_date: datetime.date
    end_date: datetime.date

    @model_validator(mode="after")
    def check_order(self):
        if self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


# --- Bookings ---

class BookingBase(StayDates):
    room_type_id: int
    rooms_booked: int = Field(default=1, ge=1)


class BookingCreate(BookingBase):
    # user_id comes from the JWT, guest_type from the membership service
    pass


class BookingRead(BookingBase):
    id: int
    user_id: int
    guest_type: GuestType
    status: BookingStatus
    total_price: int
    requires_deposit: bool
    deposit_amount: int
    paid_amount: int
    refund_amount: int
    created_at: datetime.datetime
    confirmed_at: Optional[datetime.datetime] = None
    cancelled_at: Optional[datetime.datetime] = None

    model_config = ConfigDict(from_attributes=True)


class BookingCreatedRead(BaseModel):
    booking: BookingRead
    warnings: list[str] = []
    converted_waitlist_ids: list[int] = []
    replayed: bool = False


class BookingFilter(BaseModel):
    """Explicit query shape for listing bookings."""
    user_id: Optional[int] = None
    room_type_id: Optional[int] = None
    status: Optional[BookingStatus] = None
    start_from: Optional[datetime.date] = None
    start_to: Optional[datetime.date] = None
    skip: int = Field(default=0, ge=0)
    limit: int = Field(default=100, ge=1, le=500)

    @model_validator(mode="after")
    def check_bounds(self):
        if self.start_from and self.start_to and self.start_to < self.start_from:
            raise ValueError("start_to must not be before start_from")
        return self


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class CancellationRead(BaseModel):
    booking: BookingRead
    refund_amount: int
    notified_waitlist_ids: list[int] = []


class ValidationRead(BaseModel):
    valid: bool
    errors: list[str]
    warnings: list[str]
    requires_deposit: bool
    deposit_amount: int
    total_price: int
    nights: int
    days_in_advance: int

    model_config = ConfigDict(from_attributes=True)


class AvailabilityRead(BaseModel):
    available: bool
    room_type_ids: list[int]


class PaymentSettled(BaseModel):
    # Defaults to the booking's total price when omitted
    amount: Optional[int] = Field(default=None, gt=0)
    reference: Optional[str] = None


class PaymentFailed(BaseModel):
    reason: Optional[str] = None


# --- Waitlist ---

WAITLIST_MAX_NIGHTS = 30


class WaitlistJoin(StayDates):
    room_type_id: Optional[int] = None
    guests: int = Field(default=1, ge=1, le=10)
    notes: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def check_length(self):
        if (self.end_date - self.start_date).days > WAITLIST_MAX_NIGHTS:
            raise ValueError(f"Stay duration cannot exceed {WAITLIST_MAX_NIGHTS} days")
        return self


class WaitlistRead(BaseModel):
    id: int
    user_id: int
    room_type_id: Optional[int]
    start_date: datetime.date
    end_date: datetime.date
    guests: int
    guest_type: GuestType
    status: WaitlistStatus
    notified_at: Optional[datetime.datetime] = None
    expires_at: Optional[datetime.datetime] = None
    converted_booking_id: Optional[int] = None
    created_at: datetime.datetime
    position: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)


class WaitlistFilter(BaseModel):
    user_id: Optional[int] = None
    room_type_id: Optional[int] = None
    status: Optional[WaitlistStatus] = None
    start_from: Optional[datetime.date] = None
    end_to: Optional[datetime.date] = None
    skip: int = Field(default=0, ge=0)
    limit: int = Field(default=100, ge=1, le=500)


# --- Administration ---

class RoomTypeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    price_per_night: int = Field(gt=0)
    max_guests: int = Field(default=2, ge=1)


class RoomTypeRead(RoomTypeCreate):
    id: int

    model_config = ConfigDict(from_attributes=True)


class InventoryUpdate(StayDates):
    room_type_id: int
    total_rooms: int = Field(ge=0)


class InventoryDayRead(BaseModel):
    room_type_id: int
    date: datetime.date
    total_rooms: int
    reserved_rooms: int
    available_rooms: int

    model_config = ConfigDict(from_attributes=True)


class BookingRuleUpdate(BaseModel):
    max_days_advance: int = Field(ge=0)
    min_days_notice: int = Field(ge=0)


class BookingRuleRead(BookingRuleUpdate):
    guest_type: GuestType

    model_config = ConfigDict(from_attributes=True)


class DepositPolicyCreate(BaseModel):
    min_rooms: int = Field(ge=1)
    max_rooms: int = Field(ge=1)
    type: DepositType
    value: float
    active: bool = True


class DepositPolicyRead(DepositPolicyCreate):
    id: int

    model_config = ConfigDict(from_attributes=True)


class SpecialDayCreate(BaseModel):
    date: datetime.date
    room_type_id: Optional[int] = None
    rule_type: SpecialDayRule
    rate_type: Optional[RateType] = None
    rate_value: Optional[float] = None
    description: Optional[str] = None


class SpecialDayRead(SpecialDayCreate):
    id: int
    active: bool

    model_config = ConfigDict(from_attributes=True)


class AdminBookingAction(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class SweepResult(BaseModel):
    expired_ids: list[int]
    notified_ids: list[int]


class AuditLogRead(BaseModel):
    id: int
    booking_id: int
    actor_id: Optional[int] = None
    actor_role: ActorRole
    action: str
    from_status: Optional[BookingStatus] = None
    to_status: Optional[BookingStatus] = None
    reason: Optional[str] = None
    created_at: datetime.datetime

    model_config = ConfigDict(from_attributes=True)
