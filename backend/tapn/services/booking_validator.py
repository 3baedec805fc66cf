"""
Booking request validation and sanitization.

`validate_booking_request` is a pure function: raw request in, normalized
request out, or a ValidationError naming the first rule that failed.
Checks run in a fixed order (required fields, venue id, date, times,
guest count, price, name, phone, email) so callers always see the same
message for the same bad input.

Normalization is idempotent: validating `normalized.as_raw()` again
returns an equal value.
"""

import math
import re
from datetime import date
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from tapn.core.config import Settings, get_settings
from tapn.core.exceptions import FormatError, ValidationError
from tapn.schemas.booking import NormalizedBookingRequest, RawBookingRequest
from tapn.services.time_range import TimeRange, format_time

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
DATE_PATTERN = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")
NAME_PATTERN = re.compile(r"^[a-zA-Z\s\-'.]+$", re.ASCII)
PHONE_PATTERN = re.compile(r"^[0-9\s\-+()]{7,20}$", re.ASCII)
EMAIL_PATTERN = re.compile(
    r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+"
    r"@[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(?:\.[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
LEADING_INT_PATTERN = re.compile(r"^\s*([+-]?[0-9]+)")

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 100
MAX_EMAIL_LENGTH = 254


def sanitize_string(value: str) -> str:
    """Drop angle brackets and surrounding whitespace."""
    return value.replace("<", "").replace(">", "").strip()


def sanitize_notes(value: Optional[str], max_length: int) -> Optional[str]:
    if value is None:
        return None
    cleaned = sanitize_string(value)[:max_length].strip()
    return cleaned or None


def is_valid_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(UUID_PATTERN.match(value))


def is_valid_name(name: str) -> bool:
    return MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH and bool(NAME_PATTERN.match(name))


def is_valid_phone(phone: str) -> bool:
    return bool(PHONE_PATTERN.match(phone))


def is_valid_email(email: str) -> bool:
    return len(email) <= MAX_EMAIL_LENGTH and bool(EMAIL_PATTERN.match(email))


def _missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_date(value: str) -> date:
    if not DATE_PATTERN.match(value):
        raise FormatError("Invalid date format")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise FormatError("Invalid date format") from exc


def _parse_guest_count(value: Any) -> int:
    """Integer guest count; absent or unparseable values count as one guest."""
    if value is None or isinstance(value, bool):
        return 1
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 1
    if isinstance(value, str):
        match = LEADING_INT_PATTERN.match(value)
        return int(match.group(1)) if match else 1
    return 1


def _parse_price(value: Any, ceiling: int) -> int:
    """Price in minor currency units, rounded to a whole unit."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("Invalid price")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError("Invalid price")
    if value <= 0 or value > ceiling:
        raise ValidationError("Invalid price")
    amount = int(round(value))
    if amount < 1:
        raise ValidationError("Invalid price")
    return amount


def validate_booking_request(
    raw: Union[RawBookingRequest, dict],
    settings: Optional[Settings] = None,
) -> NormalizedBookingRequest:
    settings = settings or get_settings()

    if not isinstance(raw, RawBookingRequest):
        try:
            raw = RawBookingRequest.model_validate(raw)
        except PydanticValidationError as exc:
            raise ValidationError("Invalid booking request") from exc

    # 1. Required fields
    if any(
        _missing(value)
        for value in (raw.venue_id, raw.booking_date, raw.start_time, raw.end_time, raw.total_price)
    ):
        raise ValidationError("Missing required booking fields")
    if any(_missing(value) for value in (raw.guest_name, raw.guest_phone, raw.guest_email)):
        raise ValidationError("Guest contact information is required (name, phone, email)")

    # 2. Venue id
    venue_id = raw.venue_id.strip()
    if not is_valid_uuid(venue_id):
        raise FormatError("Invalid venue ID format")

    # 3. Date
    booking_date = _parse_date(raw.booking_date.strip())

    # 4. Times; end must be strictly after start, no midnight rollover
    time_range = TimeRange.parse(raw.start_time.strip(), raw.end_time.strip())

    # 5. Guest count
    guest_count = _parse_guest_count(raw.guest_count)
    if guest_count < 1 or guest_count > settings.MAX_GUEST_COUNT:
        raise ValidationError("Invalid guest count")

    # 6. Price
    total_price = _parse_price(raw.total_price, settings.MAX_BOOKING_PRICE)

    # 7-9. Contact snapshot, checked after sanitization
    guest_name = sanitize_string(raw.guest_name)
    guest_phone = sanitize_string(raw.guest_phone)
    guest_email = sanitize_string(raw.guest_email).lower()

    if not is_valid_name(guest_name):
        raise ValidationError(
            "Invalid name format. Please use letters, spaces, and basic punctuation only."
        )
    if not is_valid_phone(guest_phone):
        raise ValidationError("Invalid phone number format.")
    if not is_valid_email(guest_email):
        raise ValidationError("Invalid email address format.")

    user_id = None
    if not _missing(raw.user_id):
        user_id = raw.user_id.strip().lower()
        if not is_valid_uuid(user_id):
            raise FormatError("Invalid user ID format")

    return NormalizedBookingRequest(
        venue_id=venue_id.lower(),
        booking_date=booking_date,
        start_time=format_time(time_range.start),
        end_time=format_time(time_range.end),
        guest_count=guest_count,
        total_price=total_price,
        guest_name=guest_name,
        guest_phone=guest_phone,
        guest_email=guest_email,
        notes=sanitize_notes(raw.notes, settings.MAX_NOTES_LENGTH),
        user_id=user_id,
    )
