import json
from datetime import date, timedelta

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from hotel_booking import models
from hotel_booking.config import settings
from hotel_booking.models import GuestType

from conftest import create_test_token

START = date.today() + timedelta(days=20)
END = START + timedelta(days=3)


def booking_data(room_type_id, start=START, end=END, rooms=1):
    return {
        "room_type_id": room_type_id,
        "start_date": str(start),
        "end_date": str(end),
        "rooms_booked": rooms,
    }


def test_create_booking_success(client: TestClient, auth_headers, db_session: Session, room_type_id, stock_inventory):
    stock_inventory(room_type_id, START, END, total_rooms=5)

    response = client.post("/bookings/", json=booking_data(room_type_id, rooms=2), headers=auth_headers)

    assert response.status_code == 201
    data = response.json()
    assert data["booking"]["status"] == "PROVISIONAL"
    assert data["booking"]["user_id"] == 1
    assert data["booking"]["total_price"] == 60_000
    assert data["converted_waitlist_ids"] == []

    outbox_event = db_session.query(models.OutboxEvent).first()
    assert outbox_event.status == "PENDING"
    assert outbox_event.topic == settings.KAFKA_BOOKING_TOPIC
    payload = json.loads(outbox_event.payload)
    assert payload["event"] == "booking.created"
    assert payload["rooms_booked"] == 2


def test_create_booking_invalid_dates(client: TestClient, auth_headers, room_type_id):
    response = client.post("/bookings/", json=booking_data(room_type_id, end=START), headers=auth_headers)
    assert response.status_code == 422


def test_create_booking_sold_out(client: TestClient, auth_headers, room_type_id, stock_inventory):
    stock_inventory(room_type_id, START, END, total_rooms=1, reserved_rooms=1)

    response = client.post("/bookings/", json=booking_data(room_type_id), headers=auth_headers)

    assert response.status_code == 409
    detail = response.json()["detail"]
    assert detail["conflict_dates"] == [str(START + timedelta(days=i)) for i in range(3)]
    assert detail["waitlist_available"] is True


def test_create_booking_too_far_ahead(client: TestClient, auth_headers, guest_type, room_type_id, stock_inventory):
    far = date.today() + timedelta(days=120)
    stock_inventory(room_type_id, far, far + timedelta(days=2), total_rooms=5)
    data = booking_data(room_type_id, start=far, end=far + timedelta(days=2))

    response = client.post("/bookings/", json=data, headers=auth_headers)
    assert response.status_code == 422
    assert any("maxDaysAdvance=90" in error for error in response.json()["detail"]["errors"])

    guest_type["value"] = GuestType.VIP
    response = client.post("/bookings/", json=data, headers=auth_headers)
    assert response.status_code == 201


def test_create_booking_requires_token(client: TestClient, room_type_id):
    response = client.post("/bookings/", json=booking_data(room_type_id),
                           headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401


def test_validate_is_a_dry_run(client: TestClient, db_session: Session, auth_headers, room_type_id, stock_inventory):
    stock_inventory(room_type_id, START, END, total_rooms=5)

    response = client.post("/bookings/validate", json=booking_data(room_type_id), headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["valid"] is True
    assert data["total_price"] == 30_000
    assert data["nights"] == 3
    assert db_session.query(models.Booking).count() == 0


def test_availability(client: TestClient, room_type_id, stock_inventory):
    stock_inventory(room_type_id, START, END, total_rooms=2)

    response = client.get("/bookings/availability", params={
        "start_date": str(START), "end_date": str(END), "rooms": 2,
    })
    assert response.json() == {"available": True, "room_type_ids": [room_type_id]}

    response = client.get("/bookings/availability", params={
        "start_date": str(START), "end_date": str(END), "rooms": 3,
    })
    assert response.json() == {"available": False, "room_type_ids": []}

    response = client.get("/bookings/availability", params={"start_date": str(END), "end_date": str(START)})
    assert response.status_code == 400


def test_read_and_cancel_booking(client: TestClient, auth_headers, db_session: Session, room_type_id, stock_inventory):
    stock_inventory(room_type_id, START, END, total_rooms=5)
    booking_id = client.post("/bookings/", json=booking_data(room_type_id), headers=auth_headers).json()["booking"]["id"]

    assert client.get(f"/bookings/{booking_id}", headers=auth_headers).status_code == 200
    other_user = {"Authorization": create_test_token(user_id=2)}
    assert client.get(f"/bookings/{booking_id}", headers=other_user).status_code == 403
    assert client.post(f"/bookings/{booking_id}/cancel", headers=other_user).status_code == 403
    assert client.get("/bookings/999", headers=auth_headers).status_code == 404

    response = client.post(f"/bookings/{booking_id}/cancel", json={"reason": "change of plans"}, headers=auth_headers)
    assert response.status_code == 200
    assert response.json()["booking"]["status"] == "CANCELLED"
    assert response.json()["refund_amount"] == 0

    # A second cancel is a rejected duplicate transition
    response = client.post(f"/bookings/{booking_id}/cancel", headers=auth_headers)
    assert response.status_code == 500
    assert {row.reserved_rooms for row in db_session.query(models.InventoryDay)} == {0}


def test_list_user_bookings(client: TestClient, auth_headers, room_type_id, stock_inventory):
    stock_inventory(room_type_id, START, END, total_rooms=5)
    client.post("/bookings/", json=booking_data(room_type_id), headers=auth_headers)
    client.post("/bookings/", json=booking_data(room_type_id), headers={"Authorization": create_test_token(user_id=2)})

    response = client.get("/bookings/", headers=auth_headers)
    assert response.status_code == 200
    assert [b["user_id"] for b in response.json()] == [1]

    response = client.get("/bookings/", params={"status": "CONFIRMED"}, headers=auth_headers)
    assert response.json() == []


def test_retried_create_returns_same_booking(client: TestClient, auth_headers, db_session: Session,
                                             room_type_id, stock_inventory):
    stock_inventory(room_type_id, START, END, total_rooms=5)

    first = client.post("/bookings/", json=booking_data(room_type_id, rooms=2), headers=auth_headers)
    retry = client.post("/bookings/", json=booking_data(room_type_id, rooms=2), headers=auth_headers)

    assert first.status_code == 201
    assert retry.status_code == 200
    assert retry.json()["replayed"] is True
    assert retry.json()["booking"]["id"] == first.json()["booking"]["id"]
    assert {row.reserved_rooms for row in db_session.query(models.InventoryDay)} == {2}


def test_idempotency_key_header(client: TestClient, auth_headers, db_session: Session, room_type_id, stock_inventory):
    stock_inventory(room_type_id, START, END, total_rooms=5)

    first = client.post("/bookings/", json=booking_data(room_type_id),
                        headers={**auth_headers, "Idempotency-Key": "checkout-41"})
    retry = client.post("/bookings/", json=booking_data(room_type_id),
                        headers={**auth_headers, "Idempotency-Key": "checkout-41"})
    new_order = client.post("/bookings/", json=booking_data(room_type_id),
                            headers={**auth_headers, "Idempotency-Key": "checkout-42"})

    assert (first.status_code, retry.status_code, new_order.status_code) == (201, 200, 201)
    assert retry.json()["booking"]["id"] == first.json()["booking"]["id"]
    assert new_order.json()["booking"]["id"] != first.json()["booking"]["id"]
    assert db_session.query(models.Booking).count() == 2
