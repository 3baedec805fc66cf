"""
Tests for booking endpoints.
"""

import uuid

import pytest
from httpx import AsyncClient

from tapn.models.booking import Booking
from tapn.models.venue import Venue

from helpers import bearer, booking_payload


@pytest.mark.asyncio
async def test_create_booking(client: AsyncClient, test_venue: Venue):
    """Pay-at-venue booking is created pending and returns a lookup token."""
    response = await client.post("/api/v1/bookings", json=booking_payload(test_venue.id))
    assert response.status_code == 200
    assert response.headers["X-RateLimit-Remaining"] == "2"

    data = response.json()
    assert data["success"] is True
    booking = data["booking"]
    assert booking["status"] == "pending"
    assert booking["start_time"] == "18:00"
    assert booking["end_time"] == "20:00"
    assert booking["guest_email"] == "jordan@example.com"
    uuid.UUID(booking["lookup_token"])
    assert "admin_notes" not in booking


@pytest.mark.asyncio
async def test_create_booking_validation_error(client: AsyncClient, test_venue: Venue):
    response = await client.post(
        "/api/v1/bookings",
        json=booking_payload(test_venue.id, start_time="20:00", end_time="19:00"),
    )
    assert response.status_code == 400
    assert response.json() == {"error": "End time must be after start time"}


@pytest.mark.asyncio
async def test_create_booking_wrong_body_type(client: AsyncClient, test_venue: Venue):
    payload = booking_payload(test_venue.id)
    payload["venue_id"] = 42
    response = await client.post("/api/v1/bookings", json=payload)
    assert response.status_code == 400
    assert response.json()["error"].startswith("venue_id")


@pytest.mark.asyncio
async def test_create_booking_conflict(client: AsyncClient, test_venue: Venue, confirmed_booking: Booking):
    response = await client.post(
        "/api/v1/bookings",
        json=booking_payload(test_venue.id, start_time="19:30", end_time="21:00"),
    )
    assert response.status_code == 400
    assert response.json()["error"] == (
        "This time slot is no longer available. Please select a different time."
    )


@pytest.mark.asyncio
async def test_back_to_back_booking(client: AsyncClient, test_venue: Venue, confirmed_booking: Booking):
    response = await client.post(
        "/api/v1/bookings",
        json=booking_payload(test_venue.id, start_time="20:00", end_time="22:00"),
    )
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_rate_limit(client: AsyncClient, test_venue: Venue):
    """The fourth request from one client inside the window gets 429."""
    headers = {"X-Forwarded-For": "203.0.113.7, 10.0.0.1"}
    for hour in (8, 10, 12):
        response = await client.post(
            "/api/v1/bookings",
            json=booking_payload(test_venue.id, start_time=f"{hour}:00", end_time=f"{hour + 1}:00"),
            headers=headers,
        )
        assert response.status_code == 200

    response = await client.post("/api/v1/bookings", json=booking_payload(test_venue.id), headers=headers)
    assert response.status_code == 429
    assert int(response.headers["Retry-After"]) >= 1
    assert response.headers["X-RateLimit-Remaining"] == "0"

    other = await client.post(
        "/api/v1/bookings",
        json=booking_payload(test_venue.id, start_time="14:00", end_time="15:00"),
        headers={"X-Forwarded-For": "198.51.100.2"},
    )
    assert other.status_code == 200


@pytest.mark.asyncio
async def test_bad_token_is_rejected(client: AsyncClient, test_venue: Venue):
    response = await client.post(
        "/api/v1/bookings",
        json=booking_payload(test_venue.id),
        headers={"Authorization": "Bearer not-a-jwt"},
    )
    assert response.status_code == 400
    assert response.json()["error"].startswith("Authentication error")


@pytest.mark.asyncio
async def test_partner_confirms_and_guest_looks_up(
    client: AsyncClient, test_venue: Venue, partner_id: str
):
    created = (await client.post("/api/v1/bookings", json=booking_payload(test_venue.id))).json()
    booking_id = created["booking"]["id"]
    token = created["booking"]["lookup_token"]

    response = await client.post(f"/api/v1/bookings/{booking_id}/confirm", headers=bearer(partner_id))
    assert response.status_code == 200
    assert response.json()["booking"] == {"id": booking_id, "status": "confirmed"}

    lookup = await client.get("/api/v1/bookings/lookup", params={"token": token})
    assert lookup.status_code == 200
    assert lookup.json()["booking"]["status"] == "confirmed"
    assert "guest_phone" not in lookup.json()["booking"]


@pytest.mark.asyncio
async def test_lookup_with_bad_token(client: AsyncClient, roles):
    response = await client.get("/api/v1/bookings/lookup", params={"token": "abc"})
    assert response.status_code == 400
    assert response.json() == {"error": "Invalid lookup token"}

    missing = await client.get("/api/v1/bookings/lookup", params={"token": str(uuid.uuid4())})
    assert missing.json() == {"error": "Booking not found"}


@pytest.mark.asyncio
async def test_member_cannot_confirm(client: AsyncClient, test_venue: Venue, member_id: str):
    created = (await client.post("/api/v1/bookings", json=booking_payload(test_venue.id))).json()
    response = await client.post(
        f"/api/v1/bookings/{created['booking']['id']}/confirm", headers=bearer(member_id)
    )
    assert response.status_code == 400
    assert "partner or an admin" in response.json()["error"]


@pytest.mark.asyncio
async def test_decline_then_cancel_is_terminal(
    client: AsyncClient, test_venue: Venue, partner_id: str, admin_id: str
):
    created = (await client.post("/api/v1/bookings", json=booking_payload(test_venue.id))).json()
    booking_id = created["booking"]["id"]

    declined = await client.post(
        f"/api/v1/bookings/{booking_id}/decline",
        json={"reason": "Private event"},
        headers=bearer(partner_id),
    )
    assert declined.status_code == 200
    assert declined.json()["booking"]["status"] == "rejected"

    cancelled = await client.post(
        "/api/v1/bookings/cancel",
        json={"bookingId": booking_id},
        headers=bearer(admin_id),
    )
    assert cancelled.status_code == 400
    assert cancelled.json() == {"error": "This booking is already rejected"}


@pytest.mark.asyncio
async def test_owner_cancels_own_booking(client: AsyncClient, test_venue: Venue, member_id: str):
    headers = bearer(member_id)
    created = (
        await client.post("/api/v1/bookings", json=booking_payload(test_venue.id), headers=headers)
    ).json()

    response = await client.post(
        "/api/v1/bookings/cancel",
        json={"bookingId": created["booking"]["id"], "reason": "Plans changed"},
        headers=headers,
    )
    assert response.status_code == 200
    assert response.json()["booking"]["status"] == "cancelled"
    assert response.json()["booking"]["payment_status"] == "pending"


@pytest.mark.asyncio
async def test_cancel_requires_authentication(client: AsyncClient, confirmed_booking: Booking):
    response = await client.post("/api/v1/bookings/cancel", json={"bookingId": confirmed_booking.id})
    assert response.status_code == 400
    assert response.json() == {"error": "Authentication required"}


@pytest.mark.asyncio
async def test_cancel_paid_booking_refunds(
    client: AsyncClient, gateway, confirmed_booking: Booking, admin_id: str
):
    response = await client.post(
        "/api/v1/bookings/cancel",
        json={"bookingId": confirmed_booking.id},
        headers=bearer(admin_id),
    )
    assert response.status_code == 200
    assert response.json()["booking"]["payment_status"] == "refunded"
    assert gateway.refunds == [confirmed_booking.stripe_payment_intent_id]


@pytest.mark.asyncio
async def test_admin_notes(client: AsyncClient, confirmed_booking: Booking, admin_id: str, partner_id: str):
    url = f"/api/v1/bookings/{confirmed_booking.id}/admin-notes"
    denied = await client.patch(url, json={"admin_notes": "VIP"}, headers=bearer(partner_id))
    assert denied.status_code == 400

    response = await client.patch(url, json={"admin_notes": "VIP"}, headers=bearer(admin_id))
    assert response.status_code == 200
    assert response.json()["booking"] == {"id": confirmed_booking.id, "admin_notes": "VIP"}


@pytest.mark.asyncio
async def test_listings(
    client: AsyncClient,
    test_venue: Venue,
    confirmed_booking: Booking,
    member_id: str,
    partner_id: str,
    admin_id: str,
):
    await client.post(
        "/api/v1/bookings",
        json=booking_payload(test_venue.id, start_time="08:00", end_time="09:00"),
        headers=bearer(member_id),
    )

    mine = await client.get("/api/v1/bookings/me", headers=bearer(member_id))
    assert mine.status_code == 200
    assert len(mine.json()["bookings"]) == 1
    assert mine.json()["bookings"][0]["admin_notes"] is None

    partner = await client.get("/api/v1/bookings/partner", headers=bearer(partner_id))
    assert len(partner.json()["bookings"]) == 2

    everything = await client.get(
        "/api/v1/bookings", params={"status": "confirmed"}, headers=bearer(admin_id)
    )
    assert [b["id"] for b in everything.json()["bookings"]] == [confirmed_booking.id]

    denied = await client.get("/api/v1/bookings", headers=bearer(member_id))
    assert denied.json() == {"error": "Admin access required"}


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["rate_limit"] == {"backend": "memory", "status": "ok"}


@pytest.mark.asyncio
async def test_cors_preflight(client: AsyncClient):
    response = await client.options(
        "/api/v1/bookings",
        headers={
            "Origin": "https://app.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "authorization, content-type",
        },
    )
    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] in ("*", "https://app.example.com")
    assert "POST" in response.headers["access-control-allow-methods"]
