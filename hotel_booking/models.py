from sqlalchemy import (
    Column, Integer, Date, TIMESTAMP, String, Text, Index, Boolean, Float,
    ForeignKey, UniqueConstraint, CheckConstraint,
)
from sqlalchemy import Enum as SQLEnum
from enum import Enum as PyEnum
from .database import Base
import datetime


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, matching how TIMESTAMP columns round-trip."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)


# --- ENUMS ---
class GuestType(str, PyEnum):
    REGULAR = "REGULAR"
    VIP = "VIP"
    CORPORATE = "CORPORATE"


class BookingStatus(str, PyEnum):
    PROVISIONAL = "PROVISIONAL"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class WaitlistStatus(str, PyEnum):
    PENDING = "PENDING"
    NOTIFIED = "NOTIFIED"
    CONVERTED = "CONVERTED"
    EXPIRED = "EXPIRED"


class DepositType(str, PyEnum):
    PERCENT = "percent"
    FIXED = "fixed"


class SpecialDayRule(str, PyEnum):
    BLOCKED = "blocked"
    SPECIAL_RATE = "special_rate"


class RateType(str, PyEnum):
    MULTIPLIER = "multiplier"
    FIXED = "fixed"


class PaymentKind(str, PyEnum):
    PAYMENT = "PAYMENT"
    REFUND = "REFUND"
    FAILED = "FAILED"


class ActorRole(str, PyEnum):
    USER = "user"
    ADMIN = "admin"
    SYSTEM = "system"
    PAYMENT = "payment"


class RoomType(Base):
    __tablename__ = "room_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), unique=True, nullable=False)

    # Nightly rate in cents
    price_per_night = Column(Integer, nullable=False)
    max_guests = Column(Integer, nullable=False, default=2)

    created_at = Column(TIMESTAMP, default=utcnow)


class InventoryDay(Base):
    __tablename__ = "inventory_days"

    id = Column(Integer, primary_key=True, index=True)
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=False)
    date = Column(Date, nullable=False)

    total_rooms = Column(Integer, nullable=False)
    reserved_rooms = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("room_type_id", "date", name="uq_inventory_room_type_date"),
        CheckConstraint(
            "reserved_rooms >= 0 AND reserved_rooms <= total_rooms",
            name="ck_inventory_reserved_within_total",
        ),
    )

    @property
    def available_rooms(self) -> int:
        return self.total_rooms - self.reserved_rooms


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)

    # Users live in the auth service. No direct DB relationship is enforced.
    user_id = Column(Integer, index=True, nullable=False)
    room_type_id = Column(Integer, ForeignKey("room_types.id"), index=True, nullable=False)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    rooms_booked = Column(Integer, nullable=False, default=1)
    guest_type = Column(SQLEnum(GuestType), nullable=False, default=GuestType.REGULAR)

    status = Column(SQLEnum(BookingStatus), nullable=False, default=BookingStatus.PROVISIONAL)

    # All amounts in cents
    total_price = Column(Integer, nullable=False)
    requires_deposit = Column(Boolean, nullable=False, default=False)
    deposit_amount = Column(Integer, nullable=False, default=0)
    paid_amount = Column(Integer, nullable=False, default=0)
    refund_amount = Column(Integer, nullable=False, default=0)
    cancellation_reason = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP, default=utcnow)
    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)
    confirmed_at = Column(TIMESTAMP, nullable=True)
    cancelled_at = Column(TIMESTAMP, nullable=True)

    __table_args__ = (
        CheckConstraint("end_date > start_date", name="ck_booking_dates"),
        CheckConstraint("rooms_booked >= 1", name="ck_booking_rooms"),
        Index("ix_bookings_status_start", "status", "start_date"),
    )


class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"

    id = Column(Integer, primary_key=True, index=True)
    # SHA-256 hex of the request identity
    key = Column(String(64), unique=True, nullable=False)
    user_id = Column(Integer, index=True, nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), unique=True, nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow)


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), index=True, nullable=False)
    user_id = Column(Integer, nullable=False)

    kind = Column(SQLEnum(PaymentKind), nullable=False)
    # Refunds are stored as negative amounts
    amount = Column(Integer, nullable=False)
    note = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP, default=utcnow)


class BookingAuditLog(Base):
    __tablename__ = "booking_audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), index=True, nullable=False)

    actor_id = Column(Integer, nullable=True)
    actor_role = Column(SQLEnum(ActorRole), nullable=False)
    action = Column(String(50), nullable=False)
    from_status = Column(SQLEnum(BookingStatus), nullable=True)
    to_status = Column(SQLEnum(BookingStatus), nullable=True)
    reason = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP, default=utcnow)


class BookingRule(Base):
    __tablename__ = "booking_rules"

    id = Column(Integer, primary_key=True, index=True)
    guest_type = Column(SQLEnum(GuestType), unique=True, nullable=False)
    max_days_advance = Column(Integer, nullable=False)
    min_days_notice = Column(Integer, nullable=False)

    updated_at = Column(TIMESTAMP, default=utcnow, onupdate=utcnow)


class DepositPolicy(Base):
    __tablename__ = "deposit_policies"

    id = Column(Integer, primary_key=True, index=True)
    min_rooms = Column(Integer, nullable=False)
    max_rooms = Column(Integer, nullable=False)
    type = Column(SQLEnum(DepositType), nullable=False)
    # Percentage (0-100] for percent policies, cents for fixed ones
    value = Column(Float, nullable=False)
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(TIMESTAMP, default=utcnow)


class SpecialDay(Base):
    __tablename__ = "special_days"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    # NULL applies the rule to every room type
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=True)

    rule_type = Column(SQLEnum(SpecialDayRule), nullable=False)
    rate_type = Column(SQLEnum(RateType), nullable=True)
    rate_value = Column(Float, nullable=True)
    description = Column(Text, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    created_at = Column(TIMESTAMP, default=utcnow)


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, index=True, nullable=False)
    # NULL means "any room type"
    room_type_id = Column(Integer, ForeignKey("room_types.id"), nullable=True)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    guests = Column(Integer, nullable=False, default=1)
    guest_type = Column(SQLEnum(GuestType), nullable=False, default=GuestType.REGULAR)

    status = Column(SQLEnum(WaitlistStatus), nullable=False, default=WaitlistStatus.PENDING)
    notified_at = Column(TIMESTAMP, nullable=True)
    expires_at = Column(TIMESTAMP, nullable=True)
    converted_booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(TIMESTAMP, default=utcnow)

    # Position and notification both scan PENDING rows per bucket
    __table_args__ = (
        Index("ix_waitlist_bucket", "status", "room_type_id", "start_date", "created_at"),
    )


class OutboxEvent(Base):
    __tablename__ = "outbox_events"

    id = Column(Integer, primary_key=True, index=True)

    # Status to track if the event has been sent
    status = Column(String(20), default="PENDING", nullable=False)

    # The Kafka topic to send the message to
    topic = Column(String(255), nullable=False)

    # The full JSON payload to be sent
    payload = Column(Text, nullable=False)

    created_at = Column(TIMESTAMP, default=utcnow)

    # An index on 'status' will make the poller's query much faster
    __table_args__ = (
        Index('ix_outbox_events_status', 'status'),
    )
