"""
Locust Load Test Suite

Venues are not created through the API; seed one and export its id:
  export LOCUST_VENUE_ID=<venue uuid>

Run scenarios:
  locust -f locustfile.py --tags concurrency  # Many guests, one slot
  locust -f locustfile.py --tags throughput   # Guest lookups
  locust -f locustfile.py --tags edge         # Bad input
  locust -f locustfile.py --tags ratelimit    # One client over the cap
  locust -f locustfile.py                     # All tests
"""

import os
import random
import uuid
from datetime import date, timedelta

from locust import HttpUser, task, between, tag

VENUE_ID = os.environ.get("LOCUST_VENUE_ID", "")
CONTESTED_DAY = (date.today() + timedelta(days=30)).isoformat()

# Lookup tokens handed out by successful bookings
LOOKUP_TOKENS = []


def random_ip():
    return f"10.{random.randint(0, 255)}.{random.randint(0, 255)}.{random.randint(1, 254)}"


def booking_body(**overrides):
    body = {
        "venue_id": VENUE_ID,
        "booking_date": CONTESTED_DAY,
        "start_time": "18:00",
        "end_time": "20:00",
        "guest_count": random.randint(1, 8),
        "total_price": 5000,
        "guest_name": "Load Tester",
        "guest_phone": "+1 555 010 0000",
        "guest_email": f"load_{random.randint(10000, 99999)}@test.com",
    }
    body.update(overrides)
    return body


class ConcurrencyUser(HttpUser):
    """
    TEST 1: Concurrency - every user requests the same 18:00-20:00 slot

    Run: locust -f locustfile.py --tags concurrency -u 100 -r 50 --run-time 30s

    After test, verify no slot is promised twice:
      SELECT COUNT(*) FROM bookings
      WHERE venue_id = X AND booking_date = D AND status IN ('pending', 'confirmed');
    Should be 1 per API process
    """
    wait_time = between(0, 0.1)

    @tag("concurrency")
    @task
    def book_contested_slot(self):
        with self.client.post("/api/v1/bookings",
            json=booking_body(),
            headers={"X-Forwarded-For": random_ip()},
            catch_response=True
        ) as resp:
            if resp.status_code == 200:
                LOOKUP_TOKENS.append(resp.json()["booking"]["lookup_token"])
                resp.success()
            elif resp.status_code == 400 and "no longer available" in resp.text:
                resp.success()  # Expected: slot taken
            else:
                resp.failure(f"Unexpected: {resp.status_code} {resp.text}")


class ThroughputUser(HttpUser):
    """
    TEST 2: Throughput - guest lookups and health

    Run: locust -f locustfile.py --tags throughput -u 100 -r 20 --run-time 60s
    """
    wait_time = between(0.1, 0.5)

    @tag("throughput", "read")
    @task(10)
    def lookup_booking(self):
        token = random.choice(LOOKUP_TOKENS) if LOOKUP_TOKENS else str(uuid.uuid4())
        self.client.get("/api/v1/bookings/lookup", params={"token": token},
            name="/api/v1/bookings/lookup")

    @tag("throughput", "write")
    @task(2)
    def book_random_slot(self):
        """Spread bookings over many days so most succeed."""
        day = (date.today() + timedelta(days=random.randint(1, 365))).isoformat()
        hour = random.randint(6, 21)
        self.client.post("/api/v1/bookings",
            json=booking_body(booking_date=day, start_time=f"{hour}:00", end_time=f"{hour + 1}:30"),
            headers={"X-Forwarded-For": random_ip()},
            name="/api/v1/bookings [spread]")

    @tag("throughput")
    @task(1)
    def health_check(self):
        self.client.get("/health")


class EdgeCaseUser(HttpUser):
    """
    TEST 3: Edge cases - Bad input handling

    Run: locust -f locustfile.py --tags edge -u 20 -r 5 --run-time 30s

    Every request must come back as 400 with an error message, never 500.
    """
    wait_time = between(0.5, 1.5)

    def _expect_400(self, body=None, data=None, name=None):
        with self.client.post("/api/v1/bookings",
            json=body,
            data=data,
            headers={"X-Forwarded-For": random_ip()},
            name=name,
            catch_response=True
        ) as resp:
            if resp.status_code == 400 and "error" in resp.json():
                resp.success()
            else:
                resp.failure(f"Expected 400, got {resp.status_code}")

    @tag("edge")
    @task
    def end_before_start(self):
        self._expect_400(booking_body(start_time="20:00", end_time="18:00"), name="edge: time range")

    @tag("edge")
    @task
    def wraps_midnight(self):
        self._expect_400(booking_body(start_time="23:00", end_time="01:00"), name="edge: midnight")

    @tag("edge")
    @task
    def negative_price(self):
        self._expect_400(booking_body(total_price=-100), name="edge: price")

    @tag("edge")
    @task
    def too_many_guests(self):
        self._expect_400(booking_body(guest_count=101), name="edge: guests")

    @tag("edge")
    @task
    def unknown_venue(self):
        self._expect_400(booking_body(venue_id=str(uuid.uuid4())), name="edge: venue")

    @tag("edge")
    @task
    def malformed_json(self):
        self._expect_400(data="not json at all", name="edge: malformed")


class RateLimitedUser(HttpUser):
    """
    TEST 4: Rate limiting - one client address over the cap

    Run: locust -f locustfile.py --tags ratelimit -u 5 -r 5 --run-time 30s

    After the first RATE_LIMIT_MAX_REQUESTS requests every response is 429
    with a Retry-After header.
    """
    wait_time = between(0.1, 0.3)

    @tag("ratelimit")
    @task
    def same_client(self):
        with self.client.post("/api/v1/bookings",
            json=booking_body(start_time="06:00", end_time="07:00"),
            headers={"X-Forwarded-For": "198.51.100.77"},
            catch_response=True
        ) as resp:
            if resp.status_code == 429 and resp.headers.get("Retry-After"):
                resp.success()
            elif resp.status_code in (200, 400):
                resp.success()
            else:
                resp.failure(f"Unexpected: {resp.status_code}")
