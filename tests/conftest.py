import os

# Settings are read at import time, so the test environment goes in first
os.environ.setdefault("DATABASE_URL", "sqlite:///./test_hotel_booking.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ.setdefault("PAYMENT_SERVICE_KEY", "test-payment-key")
os.environ["RATE_LIMIT_ENABLED"] = "false"

import datetime
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from hotel_booking import models
from hotel_booking.auth import get_guest_type
from hotel_booking.config import settings
from hotel_booking.database import Base, SessionLocal, engine, get_db
from hotel_booking.main import app
from hotel_booking.models import GuestType


# --- Database Management Fixtures ---
@pytest.fixture(scope="function")
def db_session():
    """
    Fresh tables for every test. The ledger and lifecycle commit on their
    own, so a rollback wrapper would not isolate them.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


# --- Mocking External Services ---
@pytest.fixture(scope="function", autouse=True)
def mock_background_tasks(mocker):
    """
    Mocks the background tasks (poller and scheduler) that run on app lifespan.
    """
    mocker.patch("hotel_booking.main.run_outbox_poller", new_callable=AsyncMock)
    mocker.patch("hotel_booking.main.run_booking_scheduler", new_callable=AsyncMock)


@pytest.fixture
def guest_type():
    """Guest type the membership service would report; tests may override."""
    return {"value": GuestType.REGULAR}


# --- API Test Client Fixture ---
@pytest.fixture(scope="function")
def client(db_session, guest_type):
    def override_get_db():
        try:
            yield db_session
        finally:
            db_session.close()

    async def override_get_guest_type():
        return guest_type["value"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_guest_type] = override_get_guest_type

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()


# --- Auth helpers ---
def create_test_token(user_id: int = 1, role: str | None = None) -> str:
    payload = {"sub": str(user_id)}
    if role:
        payload["role"] = role
    token = jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return f"Bearer {token}"


@pytest.fixture
def auth_headers():
    return {"Authorization": create_test_token()}


@pytest.fixture
def admin_headers():
    return {"Authorization": create_test_token(user_id=99, role="admin")}


@pytest.fixture
def payment_headers():
    return {"X-Service-Key": settings.PAYMENT_SERVICE_KEY}


# --- Seed data ---
@pytest.fixture
def room_type_id(db_session):
    """A 'Deluxe' room type at $100.00 a night for two guests."""
    rt = models.RoomType(name="Deluxe", price_per_night=10_000, max_guests=2)
    db_session.add(rt)
    db_session.commit()
    return rt.id


@pytest.fixture
def stock_inventory(db_session):
    """Creates InventoryDay rows: stock_inventory(room_type_id, start, end, total, reserved=0)."""
    def _stock(room_type_id, start_date, end_date, total_rooms, reserved_rooms=0):
        day = start_date
        while day < end_date:
            db_session.add(models.InventoryDay(
                room_type_id=room_type_id, date=day, total_rooms=total_rooms, reserved_rooms=reserved_rooms,
            ))
            day += datetime.timedelta(days=1)
        db_session.commit()
    return _stock
