"""
Common test fixtures for the booking API tests.

Provides a buyer and an organizer user, a JWT-authenticated client, a
ticketed event, and a pair of stub payment gateways that the booking
coordinator can be wired to without touching any provider.
"""
import itertools
from decimal import Decimal

import pytest
from django.apps import apps
from django.contrib.auth.models import User

from events.models import Event
from payments.gateways.base import InitiationResult, PaymentGateway, PaymentResult


@pytest.fixture
def user(db):
    """Create a test user."""
    return User.objects.create_user(username="u1", password="pass12345", email="u1@example.com")


@pytest.fixture
def organizer(db):
    return User.objects.create_user(username="org", password="pass12345", email="org@example.com")


@pytest.fixture
def staff_user(db):
    return User.objects.create_user(
        username="staff", password="pass12345", email="staff@example.com", is_staff=True
    )


@pytest.fixture
def auth_client(client, db, user):
    """Authenticate the Django test client using JWT tokens."""
    resp = client.post(
        "/api/token/",
        {"username": "u1", "password": "pass12345"},
        content_type="application/json",
    )
    assert resp.status_code == 200
    token = resp.json()["access"]
    client.defaults["HTTP_AUTHORIZATION"] = f"Bearer {token}"
    return client


@pytest.fixture
def event(db, organizer):
    """An event with ten seats at 500.00 each."""
    return Event.objects.create(
        title="Nairobi Jazz Night",
        venue="Carnivore Grounds",
        location="Nairobi",
        price=Decimal("500.00"),
        total_seats=10,
        organizer=organizer,
    )


@pytest.fixture
def buyer():
    return {"name": "Wanjiku Kamau", "email": "wanjiku@example.com", "phone": "0712345678"}


class StubGateway(PaymentGateway):
    """
    Scriptable gateway. `initiate` hands out sequential correlation ids
    unless `initiate_error` is set; polls return `poll_results` in order,
    then stay pending.
    """

    def __init__(self, method, checkout_url=None):
        self.method = method
        self.checkout_url = checkout_url
        self.initiate_error = None
        self.poll_results = []
        self.poll_calls = []
        self.initiated = []
        self._ids = itertools.count(1)

    def initiate(self, request):
        if self.initiate_error is not None:
            raise self.initiate_error
        self.initiated.append(request)
        return InitiationResult(
            correlation_id=f"{self.method}-corr-{next(self._ids)}",
            checkout_url=self.checkout_url,
            customer_message="Request accepted",
        )

    def poll_status(self, correlation_id):
        self.poll_calls.append(correlation_id)
        if self.poll_results:
            return self.poll_results.pop(0)
        return PaymentResult.pending(correlation_id)

    def parse_webhook(self, payload):
        return PaymentResult(
            status=payload["status"],
            correlation_id=payload["correlation_id"],
            transaction_id=payload.get("transaction_id", ""),
        )


@pytest.fixture
def gateways(db):
    """Swap the configured gateways for stubs for the duration of a test."""
    config = apps.get_app_config("payments")
    original = config.gateways
    stubs = {
        "mpesa": StubGateway("mpesa"),
        "pesapal": StubGateway("pesapal", checkout_url="https://pay.example.com/checkout/1"),
    }
    config.gateways = stubs
    yield stubs
    config.gateways = original


@pytest.fixture
def coordinator(gateways):
    from bookings.services import BookingCoordinator

    return BookingCoordinator(gateways=gateways)


@pytest.fixture
def processing_booking(coordinator, event, buyer):
    """A two-ticket M-Pesa booking waiting on the provider."""
    from bookings.services import BuyerDetails

    result = coordinator.create_booking(
        event_id=event.id,
        buyer=BuyerDetails(**buyer),
        quantity=2,
        payment_method="mpesa",
    )
    assert result.booking.payment_status == "processing"
    return result.booking
