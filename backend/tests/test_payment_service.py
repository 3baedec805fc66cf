"""
Tests for payment intent creation and payment reconciliation, including
the compensating refund paths.
"""

import asyncio
import uuid
from datetime import time

import pytest
from sqlalchemy.exc import OperationalError
from structlog.testing import capture_logs

from tapn.core.config import get_settings
from tapn.core.exceptions import (
    BookingCreationFailed,
    Forbidden,
    InvalidTimeRange,
    InvalidPaymentReference,
    PaymentNotCompleted,
    RefundFailed,
    SlotTakenDuringPayment,
    SlotUnavailable,
    UpstreamTimeout,
)
from tapn.core.security import Actor
from tapn.services import booking_service, payment_service
from tapn.services.interfaces.memory_rate_limiter import InMemoryRateLimiter

from fakes import InMemoryBookingRepository
from helpers import BOOKING_DAY, booking_payload

MEMBER = Actor(user_id=str(uuid.uuid4()), email="member@example.com", roles=frozenset({"user"}))
STRANGER = Actor(user_id=str(uuid.uuid4()), roles=frozenset({"user"}))


@pytest.fixture
def limiter():
    return InMemoryRateLimiter(max_requests=10, window_seconds=600)


@pytest.fixture
def venue(repo):
    return repo.add_venue(owner_id=str(uuid.uuid4()))


async def _paid_intent(repo, gateway, limiter, venue, actor=None, **overrides):
    """Open an intent for the slot and mark it paid, as the client would."""
    receipt = await payment_service.create_payment_intent(
        repo, gateway, limiter, booking_payload(venue.id, **overrides), client_key="10.0.0.1", actor=actor
    )
    gateway.mark_succeeded(receipt.payment_intent_id)
    return receipt


# Intent creation

@pytest.mark.asyncio
async def test_intent_carries_the_normalized_booking(repo, gateway, limiter, venue):
    receipt = await payment_service.create_payment_intent(
        repo, gateway, limiter,
        booking_payload(venue.id, start_time="9:00", end_time="10:00", total_price=4999.5),
        client_key="10.0.0.1",
    )
    assert receipt.amount == 5000
    assert receipt.client_secret.startswith("secret_cus_")
    assert receipt.rate_limit.remaining == 9

    metadata = gateway.intents[receipt.payment_intent_id].metadata
    assert metadata["venue_id"] == venue.id
    assert metadata["booking_date"] == BOOKING_DAY.isoformat()
    assert metadata["start_time"] == "09:00"
    assert metadata["guest_count"] == "4"
    assert metadata["user_id"] == ""
    uuid.UUID(metadata["lookup_token"])
    assert repo.bookings == {}


@pytest.mark.asyncio
async def test_customer_is_reused_per_email(repo, gateway, limiter, venue):
    await payment_service.create_payment_intent(
        repo, gateway, limiter, booking_payload(venue.id), client_key="k"
    )
    await payment_service.create_payment_intent(
        repo, gateway, limiter, booking_payload(venue.id, start_time="08:00", end_time="09:00"), client_key="k"
    )
    assert list(gateway.customers) == ["jordan@example.com"]


@pytest.mark.asyncio
async def test_authenticated_intent_uses_account_email(repo, gateway, limiter, venue):
    receipt = await payment_service.create_payment_intent(
        repo, gateway, limiter, booking_payload(venue.id), client_key="k", actor=MEMBER
    )
    assert "member@example.com" in gateway.customers
    assert gateway.intents[receipt.payment_intent_id].metadata["user_id"] == MEMBER.user_id


@pytest.mark.asyncio
async def test_only_confirmed_bookings_block_prepaid(repo, gateway, limiter, venue):
    pending = await booking_service.create_pay_at_venue_booking(
        repo, limiter, booking_payload(venue.id), client_key="k"
    )
    receipt = await payment_service.create_payment_intent(
        repo, gateway, limiter, booking_payload(venue.id), client_key="k"
    )
    assert receipt.payment_intent_id

    pending.booking.status = "confirmed"
    with pytest.raises(SlotUnavailable):
        await payment_service.create_payment_intent(
            repo, gateway, limiter, booking_payload(venue.id), client_key="k"
        )


# Reconciliation

@pytest.mark.asyncio
async def test_reconcile_creates_confirmed_paid_booking(repo, gateway, limiter, venue):
    intent = await _paid_intent(repo, gateway, limiter, venue, actor=MEMBER)

    receipt = await payment_service.reconcile_payment(repo, gateway, intent.payment_intent_id, actor=MEMBER)
    booking = receipt.booking
    assert booking.status == "confirmed"
    assert booking.payment_status == "paid"
    assert booking.payment_method == "stripe"
    assert booking.stripe_payment_intent_id == intent.payment_intent_id
    assert booking.total_price == 5000
    assert booking.user_id == MEMBER.user_id
    assert receipt.lookup_token == gateway.intents[intent.payment_intent_id].metadata["lookup_token"]
    assert booking.lookup_token == receipt.lookup_token
    assert gateway.refunds == []


@pytest.mark.asyncio
async def test_reconcile_is_idempotent(repo, gateway, limiter, venue):
    intent = await _paid_intent(repo, gateway, limiter, venue)
    first = await payment_service.reconcile_payment(repo, gateway, intent.payment_intent_id)
    second = await payment_service.reconcile_payment(repo, gateway, intent.payment_intent_id)
    assert first.booking.id == second.booking.id
    assert len(repo.bookings) == 1
    assert gateway.refunds == []


@pytest.mark.asyncio
@pytest.mark.parametrize("reference", [None, "", "pi_short", "ch_" + "a" * 24, "pi_" + "a" * 23 + "!"])
async def test_invalid_payment_reference(repo, gateway, reference):
    with pytest.raises(InvalidPaymentReference) as exc:
        await payment_service.reconcile_payment(repo, gateway, reference)
    assert exc.value.message == "Invalid payment intent ID"


@pytest.mark.asyncio
async def test_unpaid_intent_is_not_reconciled(repo, gateway, limiter, venue):
    receipt = await payment_service.create_payment_intent(
        repo, gateway, limiter, booking_payload(venue.id), client_key="k"
    )
    with pytest.raises(PaymentNotCompleted) as exc:
        await payment_service.reconcile_payment(repo, gateway, receipt.payment_intent_id)
    assert exc.value.message == "Payment not completed. Status: requires_payment_method"
    assert repo.bookings == {}
    assert gateway.refunds == []


@pytest.mark.asyncio
async def test_other_users_payment_is_forbidden(repo, gateway, limiter, venue):
    intent = await _paid_intent(repo, gateway, limiter, venue, actor=MEMBER)
    with pytest.raises(Forbidden):
        await payment_service.reconcile_payment(repo, gateway, intent.payment_intent_id, actor=STRANGER)
    assert repo.bookings == {}
    assert gateway.refunds == []


@pytest.mark.asyncio
async def test_slot_taken_during_payment_is_refunded(repo, gateway, limiter, venue):
    first = await _paid_intent(repo, gateway, limiter, venue)
    second = await _paid_intent(repo, gateway, limiter, venue, start_time="19:00", end_time="21:00")
    await payment_service.reconcile_payment(repo, gateway, first.payment_intent_id)

    with pytest.raises(SlotTakenDuringPayment) as exc:
        await payment_service.reconcile_payment(repo, gateway, second.payment_intent_id)
    assert "refunded" in exc.value.message
    assert gateway.refunds == [second.payment_intent_id]
    assert len(repo.bookings) == 1


@pytest.mark.asyncio
async def test_concurrent_reconciliations_for_one_slot(repo, gateway, limiter, venue):
    """Two guests paid for the same slot: one booking, one refund."""
    first = await _paid_intent(repo, gateway, limiter, venue)
    second = await _paid_intent(repo, gateway, limiter, venue)

    results = await asyncio.gather(
        payment_service.reconcile_payment(repo, gateway, first.payment_intent_id),
        payment_service.reconcile_payment(repo, gateway, second.payment_intent_id),
        return_exceptions=True,
    )

    booked = [r for r in results if not isinstance(r, Exception)]
    failed = [r for r in results if isinstance(r, Exception)]
    assert len(booked) == 1
    assert len(failed) == 1
    assert isinstance(failed[0], SlotTakenDuringPayment)
    assert len(repo.bookings) == 1
    assert len(gateway.refunds) == 1
    assert gateway.refunds[0] != booked[0].booking.stripe_payment_intent_id


@pytest.mark.asyncio
async def test_insert_failure_after_charge_is_refunded(repo, gateway, limiter, venue):
    intent = await _paid_intent(repo, gateway, limiter, venue)
    repo.fail_inserts_with = OperationalError("INSERT", {}, Exception("connection reset"))

    with pytest.raises(BookingCreationFailed) as exc:
        await payment_service.reconcile_payment(repo, gateway, intent.payment_intent_id)
    assert exc.value.message == "Failed to create booking. Your payment has been refunded."
    assert gateway.refunds == [intent.payment_intent_id]
    assert repo.rollbacks == 1


@pytest.mark.asyncio
async def test_failed_refund_alerts_operator(repo, gateway, limiter, venue):
    first = await _paid_intent(repo, gateway, limiter, venue)
    second = await _paid_intent(repo, gateway, limiter, venue)
    await payment_service.reconcile_payment(repo, gateway, first.payment_intent_id)
    gateway.fail_refunds = True

    with capture_logs() as logs:
        with pytest.raises(RefundFailed):
            await payment_service.reconcile_payment(repo, gateway, second.payment_intent_id)

    alerts = [entry for entry in logs if entry["event"] == "charge_without_booking"]
    assert len(alerts) == 1
    assert alerts[0]["log_level"] == "critical"
    assert alerts[0]["payment_intent_id"] == second.payment_intent_id
    assert alerts[0]["manual_intervention_required"] is True


@pytest.mark.asyncio
async def test_metadata_is_revalidated(repo, gateway, venue):
    """A tampered intent is refunded rather than booked."""
    intent = gateway.add_intent(
        amount=5000,
        venue_id=venue.id,
        booking_date=BOOKING_DAY.isoformat(),
        start_time="20:00",
        end_time="18:00",
        guest_count="2",
        guest_name="Sam Carter",
        guest_phone="555 000 1111",
        guest_email="sam@example.com",
    )
    with pytest.raises(InvalidTimeRange) as exc:
        await payment_service.reconcile_payment(repo, gateway, intent.id)
    assert exc.value.message == "End time must be after start time"
    assert gateway.refunds == [intent.id]
    assert repo.bookings == {}


class SuspendingReadRepository(InMemoryBookingRepository):
    """Yields to the event loop before every payment-intent lookup."""

    async def get_by_payment_intent(self, payment_intent_id):
        await asyncio.sleep(0)
        return await super().get_by_payment_intent(payment_intent_id)


class StaleReadRepository(InMemoryBookingRepository):
    """Misses the first `stale_reads` payment-intent lookups, like a read
    that raced a commit from another process."""

    def __init__(self, stale_reads):
        super().__init__()
        self.stale_reads = stale_reads

    async def get_by_payment_intent(self, payment_intent_id):
        if self.stale_reads:
            self.stale_reads -= 1
            return None
        return await super().get_by_payment_intent(payment_intent_id)


class SlowOverlapRepository(InMemoryBookingRepository):
    slow = False

    async def find_overlapping(self, *args, **kwargs):
        if self.slow:
            await asyncio.sleep(1)
        return await super().find_overlapping(*args, **kwargs)


@pytest.mark.asyncio
async def test_double_confirm_of_one_intent_is_not_refunded(gateway, limiter):
    """A double-click on confirm: both calls get the one booking, no refund."""
    repo = SuspendingReadRepository()
    venue = repo.add_venue(owner_id=str(uuid.uuid4()))
    intent = await _paid_intent(repo, gateway, limiter, venue)

    first, second = await asyncio.gather(
        payment_service.reconcile_payment(repo, gateway, intent.payment_intent_id),
        payment_service.reconcile_payment(repo, gateway, intent.payment_intent_id),
    )
    assert first.booking.id == second.booking.id
    assert first.lookup_token == second.lookup_token
    assert len(repo.bookings) == 1
    booking = next(iter(repo.bookings.values()))
    assert (booking.status, booking.payment_status) == ("confirmed", "paid")
    assert gateway.refunds == []


@pytest.mark.asyncio
async def test_intent_committed_elsewhere_resolves_to_that_booking(gateway, limiter):
    """The unique payment-intent constraint catches a commit the lookups missed."""
    repo = StaleReadRepository(stale_reads=2)
    venue = repo.add_venue(owner_id=str(uuid.uuid4()))
    intent = await _paid_intent(repo, gateway, limiter, venue)
    committed = repo.add_booking(
        venue_id=venue.id,
        booking_date=BOOKING_DAY,
        start_time=time(18, 0),
        end_time=time(20, 0),
        guest_count=4,
        total_price=5000,
        status="confirmed",
        payment_status="paid",
        payment_method="stripe",
        stripe_payment_intent_id=intent.payment_intent_id,
        guest_name="Jordan Lee",
        guest_phone="+1 555 123 4567",
        guest_email="jordan@example.com",
    )

    receipt = await payment_service.reconcile_payment(repo, gateway, intent.payment_intent_id)
    assert receipt.booking.id == committed.id
    assert len(repo.bookings) == 1
    assert repo.rollbacks == 1
    assert gateway.refunds == []


@pytest.mark.asyncio
async def test_insert_timeout_after_charge_is_refunded(repo, gateway, limiter, venue):
    intent = await _paid_intent(repo, gateway, limiter, venue)
    repo.fail_inserts_with = UpstreamTimeout("Timed out waiting for booking insert. Please try again.")

    with pytest.raises(UpstreamTimeout):
        await payment_service.reconcile_payment(repo, gateway, intent.payment_intent_id)
    assert gateway.refunds == [intent.payment_intent_id]
    assert repo.bookings == {}
    assert repo.rollbacks == 1


@pytest.mark.asyncio
async def test_recheck_timeout_after_charge_is_refunded(gateway, limiter, monkeypatch):
    repo = SlowOverlapRepository()
    venue = repo.add_venue(owner_id=str(uuid.uuid4()))
    intent = await _paid_intent(repo, gateway, limiter, venue)
    repo.slow = True
    monkeypatch.setattr(get_settings(), "UPSTREAM_TIMEOUT_SECONDS", 0.01)

    with pytest.raises(UpstreamTimeout) as exc:
        await payment_service.reconcile_payment(repo, gateway, intent.payment_intent_id)
    assert exc.value.message == "Timed out waiting for availability check. Please try again."
    assert gateway.refunds == [intent.payment_intent_id]
    assert repo.bookings == {}
