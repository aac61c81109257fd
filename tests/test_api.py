"""
Integration tests for the REST API endpoints.

Runs the real app against the SQLite test database.  The real-time
channel and the M-Pesa gateway are swapped out through dependency
overrides; no lifespan runs, so the sweeper never starts.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.api.middleware import limiter
from tests.conftest import DRIVER_ID, OTHER_PASSENGER_ID, PASSENGER_ID
from tests.test_settlement import FakeGateway

DRIVER = {"X-User-Id": str(DRIVER_ID), "X-User-Role": "driver"}
PASSENGER = {"X-User-Id": str(PASSENGER_ID), "X-User-Role": "passenger"}
OTHER = {"X-User-Id": str(OTHER_PASSENGER_ID)}

RIDE_BODY = {
    "origin": "Nairobi",
    "destination": "Nakuru",
    "departure_date": "2026-12-01",
    "departure_time": "07:30",
    "price_per_seat": "500.00",
    "total_seats": 3,
}


# ── Fixture ───────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(session_factory, channel):
    """AsyncClient backed by SQLite, a mock channel and a fake gateway."""

    async def _test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    from src.api.app import create_app
    from src.api.dependencies import get_channel, get_db, get_gateway

    app = create_app()
    app.dependency_overrides[get_db] = _test_db
    app.dependency_overrides[get_channel] = lambda: channel
    gateway = FakeGateway()
    app.dependency_overrides[get_gateway] = lambda: gateway
    limiter.reset()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await app.state.gateway.close()


async def _ride(client: AsyncClient, **overrides) -> dict:
    resp = await client.post("/api/v1/rides", json={**RIDE_BODY, **overrides}, headers=DRIVER)
    assert resp.status_code == 201
    return resp.json()


async def _book(client: AsyncClient, ride_id: int, seats: int = 1, headers=PASSENGER):
    return await client.post(
        "/api/v1/bookings", json={"ride_id": ride_id, "seats": seats}, headers=headers
    )


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_create_ride_returns_201(client: AsyncClient):
    data = await _ride(client)
    assert data["driver_id"] == DRIVER_ID
    assert data["status"] == "active"
    assert data["available_seats"] == 3
    assert data["price_per_seat"] == 500.0


@pytest.mark.asyncio
async def test_passenger_cannot_offer_ride(client: AsyncClient):
    resp = await client.post("/api/v1/rides", json=RIDE_BODY, headers=PASSENGER)
    assert resp.status_code == 403
    assert resp.json()["code"] == "unauthorized"


@pytest.mark.asyncio
async def test_missing_identity_header(client: AsyncClient):
    resp = await client.post("/api/v1/rides", json=RIDE_BODY)
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_invalid_departure_time(client: AsyncClient):
    resp = await client.post(
        "/api/v1/rides", json={**RIDE_BODY, "departure_time": "25:00"}, headers=DRIVER
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_get_ride_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/rides/9999")
    assert resp.status_code == 404
    assert resp.json() == {"detail": "Ride not found", "code": "not_found"}


@pytest.mark.asyncio
async def test_search_filters_full_rides(client: AsyncClient):
    open_ride = await _ride(client, total_seats=3)
    full_ride = await _ride(client, total_seats=1, destination="Naivasha")
    assert (await _book(client, full_ride["id"])).status_code == 201

    resp = await client.get("/api/v1/rides/search", params={"origin": "nairobi"})
    assert resp.status_code == 200
    assert [r["id"] for r in resp.json()] == [open_ride["id"]]


@pytest.mark.asyncio
async def test_booking_request_flow(client: AsyncClient):
    ride = await _ride(client)

    resp = await _book(client, ride["id"], seats=2)
    assert resp.status_code == 201
    booking = resp.json()
    assert booking["status"] == "pending"
    assert booking["total_amount"] == 1000.0

    requests = await client.get("/api/v1/bookings/requests", headers=DRIVER)
    assert [b["id"] for b in requests.json()] == [booking["id"]]

    resp = await client.patch(f"/api/v1/bookings/{booking['id']}/accept", headers=DRIVER)
    assert resp.status_code == 200
    assert resp.json()["status"] == "accepted"

    resp = await client.patch(f"/api/v1/bookings/{booking['id']}/accept", headers=DRIVER)
    assert resp.status_code == 409
    assert resp.json()["code"] == "invalid_state"

    mine = await client.get("/api/v1/bookings/mine", headers=PASSENGER)
    assert [b["status"] for b in mine.json()] == ["accepted"]

    ride_now = await client.get(f"/api/v1/rides/{ride['id']}")
    assert ride_now.json()["available_seats"] == 1


@pytest.mark.asyncio
async def test_booking_error_codes(client: AsyncClient):
    ride = await _ride(client, total_seats=1)

    resp = await _book(client, ride["id"], headers=DRIVER)
    assert resp.status_code == 400
    assert resp.json()["code"] == "self_booking_forbidden"

    assert (await _book(client, ride["id"])).status_code == 201

    resp = await _book(client, ride["id"])
    assert resp.status_code == 409
    assert resp.json()["code"] == "duplicate_booking"

    resp = await _book(client, ride["id"], headers=OTHER)
    assert resp.status_code == 409
    assert resp.json()["code"] == "insufficient_capacity"


@pytest.mark.asyncio
async def test_booking_visible_to_parties_only(client: AsyncClient):
    ride = await _ride(client)
    booking = (await _book(client, ride["id"])).json()

    for headers in (PASSENGER, DRIVER):
        resp = await client.get(f"/api/v1/bookings/{booking['id']}", headers=headers)
        assert resp.status_code == 200
    resp = await client.get(f"/api/v1/bookings/{booking['id']}", headers=OTHER)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_cancel_ride_cascades(client: AsyncClient, channel):
    ride = await _ride(client)
    await _book(client, ride["id"])
    await _book(client, ride["id"], headers=OTHER)

    resp = await client.patch(f"/api/v1/rides/{ride['id']}/cancel", headers=DRIVER)
    assert resp.status_code == 200
    data = resp.json()
    assert data["ride"]["status"] == "cancelled"
    assert {b["status"] for b in data["affected_bookings"]} == {"cancelled"}
    assert len(data["affected_bookings"]) == 2

    resp = await client.patch(f"/api/v1/rides/{ride['id']}/cancel", headers=DRIVER)
    assert resp.status_code == 409
    assert resp.json()["code"] == "already_terminal"

    notes = await client.get("/api/v1/notifications", headers=OTHER)
    assert notes.json()["unread_count"] == 1
    assert notes.json()["notifications"][0]["type"] == "ride_cancelled"


@pytest.mark.asyncio
async def test_delete_ride(client: AsyncClient):
    empty = await _ride(client)
    resp = await client.delete(f"/api/v1/rides/{empty['id']}", headers=DRIVER)
    assert resp.status_code == 204

    booked = await _ride(client)
    await _book(client, booked["id"])
    resp = await client.delete(f"/api/v1/rides/{booked['id']}", headers=DRIVER)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_payment_and_callback(client: AsyncClient):
    ride = await _ride(client)
    booking = (await _book(client, ride["id"])).json()

    resp = await client.post(
        "/api/v1/payments", json={"booking_id": booking["id"]}, headers=PASSENGER
    )
    assert resp.status_code == 409  # still pending

    await client.patch(f"/api/v1/bookings/{booking['id']}/accept", headers=DRIVER)
    resp = await client.post(
        "/api/v1/payments",
        json={"booking_id": booking["id"], "phone_number": "0712345678"},
        headers=PASSENGER,
    )
    assert resp.status_code == 202
    payment = resp.json()
    assert payment["status"] == "processing"
    assert payment["platform_fee"] == 25.0

    callback = {
        "Body": {
            "stkCallback": {
                "CheckoutRequestID": payment["checkout_request_id"],
                "ResultCode": 0,
                "ResultDesc": "The service request is processed successfully.",
                "CallbackMetadata": {
                    "Item": [{"Name": "MpesaReceiptNumber", "Value": "NLJ7RT61SV"}]
                },
            }
        }
    }
    resp = await client.post("/api/v1/payments/mpesa/callback", json=callback)
    assert resp.status_code == 200
    assert resp.json() == {"ResultCode": 0, "ResultDesc": "Accepted"}

    # A redelivered callback is still acknowledged.
    resp = await client.post("/api/v1/payments/mpesa/callback", json=callback)
    assert resp.status_code == 200

    resp = await client.get(f"/api/v1/bookings/{booking['id']}", headers=PASSENGER)
    assert resp.json()["payment_status"] == "paid"
    assert resp.json()["mpesa_receipt_number"] == "NLJ7RT61SV"


@pytest.mark.asyncio
async def test_malformed_callback_is_400(client: AsyncClient):
    resp = await client.post("/api/v1/payments/mpesa/callback", json={"Body": {}})
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_request"


@pytest.mark.asyncio
async def test_notifications_mark_read(client: AsyncClient):
    ride = await _ride(client)
    await _book(client, ride["id"])

    notes = (await client.get("/api/v1/notifications", headers=DRIVER)).json()
    assert notes["unread_count"] == 1
    note_id = notes["notifications"][0]["id"]

    resp = await client.patch(f"/api/v1/notifications/{note_id}/read", headers=PASSENGER)
    assert resp.status_code == 404

    resp = await client.patch(f"/api/v1/notifications/{note_id}/read", headers=DRIVER)
    assert resp.status_code == 200
    assert resp.json()["read"] is True

    resp = await client.patch("/api/v1/notifications/read-all", headers=DRIVER)
    assert resp.json() == {"updated": 0}


@pytest.mark.asyncio
async def test_seat_ledger(client: AsyncClient):
    ride = await _ride(client, total_seats=4)
    await _book(client, ride["id"], seats=3)

    resp = await client.get(f"/api/v1/admin/rides/{ride['id']}/seats")
    assert resp.status_code == 200
    ledger = resp.json()
    assert ledger["seats_held"] == 3
    assert ledger["available_seats"] == 1
    assert ledger["consistent"] is True


@pytest.mark.asyncio
async def test_driver_without_profile_row_offers_ride(client: AsyncClient):
    headers = {"X-User-Id": "77", "X-User-Role": "driver"}
    resp = await client.post("/api/v1/rides", json=RIDE_BODY, headers=headers)
    assert resp.status_code == 201
    ride = resp.json()

    newcomer = {"X-User-Id": "78", "X-User-Role": "passenger"}
    resp = await _book(client, ride["id"], headers=newcomer)
    assert resp.status_code == 201
    assert resp.json()["passenger_id"] == 78


@pytest.mark.asyncio
async def test_update_ride_price_keeps_booking_total(client: AsyncClient):
    ride = await _ride(client)
    booking = (await _book(client, ride["id"], seats=2)).json()

    resp = await client.patch(
        f"/api/v1/rides/{ride['id']}", json={"price_per_seat": "750.00"}, headers=DRIVER
    )
    assert resp.status_code == 200
    assert resp.json()["price_per_seat"] == 750.0

    resp = await client.get(f"/api/v1/bookings/{booking['id']}", headers=PASSENGER)
    assert resp.json()["total_amount"] == 1000.0

    resp = await client.patch(
        f"/api/v1/rides/{ride['id']}", json={"total_seats": 4}, headers=DRIVER
    )
    assert resp.status_code == 409
    assert resp.json()["code"] == "invalid_state"

    resp = await client.patch(
        f"/api/v1/rides/{ride['id']}", json={"description": "x"}, headers=PASSENGER
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_payment_views(client: AsyncClient):
    ride = await _ride(client)
    booking = (await _book(client, ride["id"])).json()
    await client.patch(f"/api/v1/bookings/{booking['id']}/accept", headers=DRIVER)
    payment = (
        await client.post(
            "/api/v1/payments", json={"booking_id": booking["id"]}, headers=PASSENGER
        )
    ).json()

    mine = await client.get("/api/v1/payments/mine", headers=PASSENGER)
    assert [p["id"] for p in mine.json()] == [payment["id"]]

    earnings = await client.get("/api/v1/payments/earnings", headers=DRIVER)
    assert earnings.json()["total_transactions"] == 0

    callback = {
        "Body": {
            "stkCallback": {
                "CheckoutRequestID": payment["checkout_request_id"],
                "ResultCode": 0,
                "ResultDesc": "The service request is processed successfully.",
            }
        }
    }
    await client.post("/api/v1/payments/mpesa/callback", json=callback)

    earnings = (await client.get("/api/v1/payments/earnings", headers=DRIVER)).json()
    assert earnings["total_transactions"] == 1
    assert earnings["total_earnings"] == 475.0
    assert earnings["payments"][0]["status"] == "succeeded"

    resp = await client.get(f"/api/v1/payments/{payment['id']}", headers=DRIVER)
    assert resp.status_code == 200
    assert resp.json()["driver_payout"] == 475.0
    resp = await client.get(f"/api/v1/payments/{payment['id']}", headers=OTHER)
    assert resp.status_code == 403
