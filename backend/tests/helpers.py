"""
Request builders shared by the endpoint and service tests.
"""

from datetime import date, timedelta

from tapn.core.security import create_access_token

BOOKING_DAY = date.today() + timedelta(days=7)


def booking_payload(venue_id: str, **overrides) -> dict:
    payload = {
        "venue_id": venue_id,
        "booking_date": BOOKING_DAY.isoformat(),
        "start_time": "18:00",
        "end_time": "20:00",
        "guest_count": 4,
        "total_price": 5000,
        "guest_name": "Jordan Lee",
        "guest_phone": "+1 555 123 4567",
        "guest_email": "jordan@example.com",
        "notes": "Window table",
    }
    payload.update(overrides)
    return payload


def bearer(user_id: str, email: str = "member@example.com") -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, email=email)}"}
