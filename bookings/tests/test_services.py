"""
Tests for the booking coordinator.

Covers booking creation against inventory and provider initiation, and
settlement from webhooks and polls racing each other.  Provider adapters
are replaced by the scriptable stubs from the root conftest.
"""
from decimal import Decimal

import pytest

from bookings.exceptions import BookingValidationError
from bookings.models import Booking, PaymentAttempt, Ticket
from bookings.services import BuyerDetails, ReconcileOutcome
from events.inventory import EventNotFound, InsufficientInventory
from events.models import Event
from payments.gateways.base import PaymentResult
from payments.gateways.exceptions import ProviderDeclined, ProviderTransientError


def completed(correlation_id, receipt="QWE123RTY", amount=None):
    return PaymentResult(status="completed", correlation_id=correlation_id, transaction_id=receipt, amount=amount)


def failed(correlation_id, error="Request cancelled by user"):
    return PaymentResult(status="failed", correlation_id=correlation_id, error=error)


# -- creation -----------------------------------------------------------


@pytest.mark.django_db
def test_mpesa_booking_starts_processing(coordinator, gateways, event, buyer, user):
    result = coordinator.create_booking(event.id, BuyerDetails(**buyer), 2, "mpesa", user=user)

    booking = result.booking
    assert result.ok
    assert booking.payment_status == Booking.STATUS_PROCESSING
    assert booking.payment_reference == "mpesa-corr-1"
    assert booking.total_price == Decimal("1000.00")
    assert booking.buyer_phone == "254712345678"
    assert booking.user == user
    assert booking.commission_amount == Decimal("0.00")
    assert booking.organizer_amount == Decimal("0.00")

    request = gateways["mpesa"].initiated[0]
    assert request.reference == f"BOOKING-{booking.pk}"
    assert request.amount == Decimal("1000.00")
    assert request.phone == "254712345678"

    event.refresh_from_db()
    assert event.tickets_remaining == 8
    attempt = PaymentAttempt.objects.get(booking=booking)
    assert attempt.correlation_id == "mpesa-corr-1"
    assert attempt.is_active


@pytest.mark.django_db
def test_pesapal_booking_returns_checkout_url(coordinator, event, buyer):
    result = coordinator.create_booking(event.id, BuyerDetails(**{**buyer, "phone": ""}), 1, "pesapal")
    assert result.booking.payment_status == Booking.STATUS_PROCESSING
    assert result.booking.checkout_url == "https://pay.example.com/checkout/1"


@pytest.mark.django_db
def test_polling_scheduled_after_commit(coordinator, event, buyer, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks() as callbacks:
        coordinator.create_booking(event.id, BuyerDetails(**buyer), 1, "mpesa")
    assert len(callbacks) == 1


@pytest.mark.django_db
@pytest.mark.parametrize(
    "quantity,method,overrides,field",
    [
        (0, "mpesa", {}, "ticket_quantity"),
        (11, "mpesa", {}, "ticket_quantity"),
        (1, "paypal", {}, "payment_method"),
        (1, "mpesa", {"phone": "12345"}, "phone"),
        (1, "mpesa", {"name": " "}, "name"),
        (1, "pesapal", {"email": ""}, "email"),
    ],
)
def test_invalid_requests_have_no_side_effects(coordinator, gateways, event, buyer, quantity, method, overrides, field):
    with pytest.raises(BookingValidationError) as exc:
        coordinator.create_booking(event.id, BuyerDetails(**{**buyer, **overrides}), quantity, method)
    assert exc.value.field == field
    assert not Booking.objects.exists()
    event.refresh_from_db()
    assert event.tickets_remaining == 10
    assert gateways["mpesa"].initiated == [] and gateways["pesapal"].initiated == []


@pytest.mark.django_db
def test_unconfigured_method_rejected(coordinator, gateways, event, buyer):
    del gateways["pesapal"]
    with pytest.raises(BookingValidationError):
        coordinator.create_booking(event.id, BuyerDetails(**buyer), 1, "pesapal")


@pytest.mark.django_db
def test_unknown_event(coordinator, buyer):
    with pytest.raises(EventNotFound):
        coordinator.create_booking(424242, BuyerDetails(**buyer), 1, "mpesa")
    assert not Booking.objects.exists()


@pytest.mark.django_db
def test_sold_out_event_rejects_without_booking(coordinator, gateways, event, buyer):
    coordinator.create_booking(event.id, BuyerDetails(**buyer), 10, "mpesa")
    with pytest.raises(InsufficientInventory):
        coordinator.create_booking(event.id, BuyerDetails(**buyer), 1, "mpesa")
    assert Booking.objects.count() == 1
    assert len(gateways["mpesa"].initiated) == 1


@pytest.mark.django_db
@pytest.mark.parametrize(
    "error",
    [ProviderDeclined("Invalid Access Token", code="400.002.02"), ProviderTransientError("timed out")],
)
def test_initiation_failure_releases_seats(coordinator, gateways, event, buyer, error):
    gateways["mpesa"].initiate_error = error
    result = coordinator.create_booking(event.id, BuyerDetails(**buyer), 3, "mpesa")

    assert not result.ok
    assert result.error is error
    assert result.booking.payment_status == Booking.STATUS_FAILED
    assert result.booking.failure_reason
    event.refresh_from_db()
    assert event.tickets_remaining == 10
    assert not PaymentAttempt.objects.exists()


@pytest.mark.django_db
def test_unexpected_initiation_error_releases_seats(coordinator, gateways, event, buyer):
    gateways["mpesa"].initiate_error = RuntimeError("adapter bug")
    with pytest.raises(RuntimeError):
        coordinator.create_booking(event.id, BuyerDetails(**buyer), 2, "mpesa")

    booking = Booking.objects.get()
    assert booking.payment_status == Booking.STATUS_FAILED
    assert booking.failure_reason == "Payment could not be started"
    event.refresh_from_db()
    assert event.tickets_remaining == 10


@pytest.mark.django_db
def test_booking_swept_during_initiation_stays_failed(coordinator, gateways, event, buyer):
    from datetime import timedelta

    from payments.gateways.base import InitiationResult

    def slow_initiate(request):
        coordinator.sweep_processing(timedelta(0))
        return InitiationResult(correlation_id="ws_CO_late", customer_message="Request accepted")

    gateways["mpesa"].initiate = slow_initiate
    result = coordinator.create_booking(event.id, BuyerDetails(**buyer), 2, "mpesa")

    assert not result.ok
    assert result.booking.payment_status == Booking.STATUS_FAILED
    assert not PaymentAttempt.objects.exists()
    event.refresh_from_db()
    assert event.tickets_remaining == 10


# -- settlement ---------------------------------------------------------


@pytest.mark.django_db
def test_completion_splits_commission_and_issues_tickets(coordinator, processing_booking, event):
    outcome = coordinator.reconcile(completed(processing_booking.payment_reference), source="webhook")

    assert outcome == ReconcileOutcome.COMPLETED
    booking = Booking.objects.get(pk=processing_booking.pk)
    assert booking.payment_status == Booking.STATUS_COMPLETED
    assert booking.provider_transaction_id == "QWE123RTY"
    assert booking.commission_amount == Decimal("100.00")
    assert booking.organizer_amount == Decimal("900.00")
    assert booking.commission_amount + booking.organizer_amount == booking.total_price
    assert booking.completed_at is not None
    assert Ticket.objects.filter(booking=booking).count() == 2
    assert not PaymentAttempt.objects.filter(booking=booking, is_active=True).exists()

    event.refresh_from_db()
    assert event.tickets_remaining == 8


@pytest.mark.django_db
def test_failure_releases_seats(coordinator, processing_booking, event):
    outcome = coordinator.reconcile(failed(processing_booking.payment_reference))

    assert outcome == ReconcileOutcome.FAILED
    booking = Booking.objects.get(pk=processing_booking.pk)
    assert booking.payment_status == Booking.STATUS_FAILED
    assert booking.failure_reason == "Request cancelled by user"
    assert booking.commission_amount == Decimal("0.00")
    assert not Ticket.objects.filter(booking=booking).exists()
    event.refresh_from_db()
    assert event.tickets_remaining == 10


@pytest.mark.django_db
def test_repeated_signals_apply_once(coordinator, processing_booking, event):
    corr = processing_booking.payment_reference
    outcomes = [
        coordinator.reconcile(completed(corr), source="webhook"),
        coordinator.reconcile(completed(corr), source="poll"),
        coordinator.reconcile(failed(corr), source="poll"),
        coordinator.reconcile(completed(corr, receipt="OTHER"), source="webhook"),
    ]
    assert outcomes == [
        ReconcileOutcome.COMPLETED,
        ReconcileOutcome.DUPLICATE,
        ReconcileOutcome.DUPLICATE,
        ReconcileOutcome.DUPLICATE,
    ]
    booking = Booking.objects.get(pk=processing_booking.pk)
    assert booking.payment_status == Booking.STATUS_COMPLETED
    assert booking.provider_transaction_id == "QWE123RTY"
    assert Ticket.objects.filter(booking=booking).count() == 2
    event.refresh_from_db()
    assert event.tickets_remaining == 8


@pytest.mark.django_db
def test_failure_then_late_success_is_ignored(coordinator, processing_booking, event):
    corr = processing_booking.payment_reference
    assert coordinator.reconcile(failed(corr)) == ReconcileOutcome.FAILED
    assert coordinator.reconcile(failed(corr)) == ReconcileOutcome.DUPLICATE
    assert coordinator.reconcile(completed(corr)) == ReconcileOutcome.DUPLICATE

    event.refresh_from_db()
    assert event.tickets_remaining == 10
    assert not Ticket.objects.exists()


@pytest.mark.django_db
def test_pending_result_changes_nothing(coordinator, processing_booking):
    outcome = coordinator.reconcile(PaymentResult.pending(processing_booking.payment_reference))
    assert outcome == ReconcileOutcome.PENDING
    assert Booking.objects.get(pk=processing_booking.pk).payment_status == Booking.STATUS_PROCESSING


@pytest.mark.django_db
def test_unknown_correlation_is_unmatched(coordinator, processing_booking):
    assert coordinator.reconcile(completed("nope")) == ReconcileOutcome.UNMATCHED


@pytest.mark.django_db
def test_completion_schedules_notification_and_payout(
    coordinator, processing_booking, django_capture_on_commit_callbacks
):
    with django_capture_on_commit_callbacks() as callbacks:
        coordinator.reconcile(completed(processing_booking.payment_reference))
    assert len(callbacks) == 2


@pytest.mark.django_db
def test_commission_uses_current_settings(coordinator, processing_booking, settings):
    from bookings.models import CommissionSettings

    row = CommissionSettings.load()
    row.platform_fee_percentage = Decimal("0.2500")
    row.save()

    coordinator.reconcile(completed(processing_booking.payment_reference))
    booking = Booking.objects.get(pk=processing_booking.pk)
    assert booking.commission_amount == Decimal("250.00")
    assert booking.organizer_amount == Decimal("750.00")
    assert booking.platform_fee_percentage == Decimal("0.2500")


# -- signal sources -----------------------------------------------------


@pytest.mark.django_db
def test_webhook_completes_booking(coordinator, processing_booking):
    payload = {"status": "completed", "correlation_id": processing_booking.payment_reference, "transaction_id": "R1"}
    assert coordinator.handle_webhook("mpesa", payload) == ReconcileOutcome.COMPLETED
    assert coordinator.handle_webhook("mpesa", payload) == ReconcileOutcome.DUPLICATE


@pytest.mark.django_db
def test_webhook_for_unconfigured_method(coordinator, processing_booking):
    assert coordinator.handle_webhook("paypal", {}) == ReconcileOutcome.UNMATCHED


@pytest.mark.django_db
def test_webhook_on_wrong_provider_endpoint_is_unmatched(coordinator, gateways, processing_booking):
    payload = {"status": "completed", "correlation_id": processing_booking.payment_reference}
    assert coordinator.handle_webhook("pesapal", payload) == ReconcileOutcome.UNMATCHED
    assert gateways["pesapal"].poll_calls == []
    assert Booking.objects.get(pk=processing_booking.pk).payment_status == Booking.STATUS_PROCESSING


@pytest.mark.django_db
def test_pending_webhook_triggers_one_poll(coordinator, gateways, event, buyer):
    """Redirect flow: the notification arrives first and the status is fetched on the spot."""
    result = coordinator.create_booking(event.id, BuyerDetails(**buyer), 2, "pesapal")
    corr = result.booking.payment_reference
    gateway = gateways["pesapal"]
    gateway.poll_results = [completed(corr, receipt="PSP-1")]

    outcome = coordinator.handle_webhook("pesapal", {"status": "pending", "correlation_id": corr})
    assert outcome == ReconcileOutcome.COMPLETED
    assert gateway.poll_calls == [corr]

    # the background poller's next run finds nothing left to do
    assert coordinator.poll_once(result.booking.pk) == ReconcileOutcome.DUPLICATE
    assert gateway.poll_calls == [corr]
    assert Ticket.objects.filter(booking=result.booking).count() == 2


@pytest.mark.django_db
def test_poll_once_counts_attempts(coordinator, gateways, processing_booking):
    assert coordinator.poll_once(processing_booking.pk) == ReconcileOutcome.PENDING
    assert coordinator.poll_once(processing_booking.pk) == ReconcileOutcome.PENDING
    attempt = PaymentAttempt.objects.get(booking=processing_booking)
    assert attempt.poll_attempts == 2
    assert attempt.last_polled_at is not None


@pytest.mark.django_db
def test_poll_once_with_provider_error_is_pending(coordinator, gateways, processing_booking):
    def boom(correlation_id):
        raise ProviderTransientError("connection reset")

    gateways["mpesa"].poll_status = boom
    assert coordinator.poll_once(processing_booking.pk) == ReconcileOutcome.PENDING
    assert Booking.objects.get(pk=processing_booking.pk).payment_status == Booking.STATUS_PROCESSING


@pytest.mark.django_db
def test_status_refresh_polls_processing_booking(coordinator, gateways, processing_booking):
    gateways["mpesa"].poll_results = [completed(processing_booking.payment_reference)]

    assert coordinator.get_booking_status(processing_booking.pk).payment_status == Booking.STATUS_PROCESSING
    assert gateways["mpesa"].poll_calls == []

    booking = coordinator.get_booking_status(processing_booking.pk, refresh=True)
    assert booking.payment_status == Booking.STATUS_COMPLETED


@pytest.mark.django_db
def test_status_of_missing_booking(coordinator):
    with pytest.raises(Booking.DoesNotExist):
        coordinator.get_booking_status(999)


@pytest.mark.django_db
def test_sweep_polls_old_processing_bookings(coordinator, gateways, processing_booking):
    from datetime import timedelta

    from django.utils import timezone

    Booking.objects.filter(pk=processing_booking.pk).update(created_at=timezone.now() - timedelta(minutes=30))
    gateways["mpesa"].poll_results = [failed(processing_booking.payment_reference)]

    outcomes = coordinator.sweep_processing(timedelta(minutes=5))
    assert outcomes == {"failed": 1}
    assert Booking.objects.get(pk=processing_booking.pk).payment_status == Booking.STATUS_FAILED


@pytest.mark.django_db
def test_sweep_fails_abandoned_pending_bookings(coordinator, gateways, event, buyer):
    from datetime import timedelta

    from django.utils import timezone

    from events import inventory

    inventory.reserve(event.pk, 3)
    stuck = Booking.objects.create(
        event=event,
        buyer_name=buyer["name"],
        buyer_email=buyer["email"],
        ticket_quantity=3,
        total_price=Decimal("1500.00"),
        payment_method="mpesa",
    )
    fresh = Booking.objects.create(
        event=event,
        buyer_name=buyer["name"],
        buyer_email=buyer["email"],
        ticket_quantity=1,
        total_price=Decimal("500.00"),
        payment_method="mpesa",
    )
    Booking.objects.filter(pk=stuck.pk).update(created_at=timezone.now() - timedelta(minutes=30))

    assert coordinator.sweep_processing(timedelta(minutes=5)) == {"abandoned": 1}
    assert Booking.objects.get(pk=stuck.pk).payment_status == Booking.STATUS_FAILED
    assert Booking.objects.get(pk=fresh.pk).payment_status == Booking.STATUS_PENDING
    event.refresh_from_db()
    assert event.tickets_remaining == 10
    assert gateways["mpesa"].poll_calls == []


# -- scenarios ----------------------------------------------------------


@pytest.mark.django_db
def test_last_seat_goes_to_one_buyer(coordinator, buyer):
    event = Event.objects.create(title="Intimate Gig", price=Decimal("1000.00"), total_seats=1)

    first = coordinator.create_booking(event.id, BuyerDetails(**buyer), 1, "mpesa")
    with pytest.raises(InsufficientInventory):
        coordinator.create_booking(event.id, BuyerDetails(**buyer), 1, "mpesa")

    assert first.booking.payment_status == Booking.STATUS_PROCESSING
    event.refresh_from_db()
    assert event.tickets_remaining == 0

    coordinator.reconcile(failed(first.booking.payment_reference))
    event.refresh_from_db()
    assert event.tickets_remaining == 1


@pytest.mark.django_db
def test_thousand_shilling_single_ticket(coordinator, buyer):
    event = Event.objects.create(title="Workshop", price=Decimal("1000.00"), total_seats=50)
    result = coordinator.create_booking(event.id, BuyerDetails(**buyer), 1, "mpesa")
    coordinator.reconcile(completed(result.booking.payment_reference))

    booking = Booking.objects.get(pk=result.booking.pk)
    assert booking.commission_amount == Decimal("100.00")
    assert booking.organizer_amount == Decimal("900.00")
    assert booking.tickets.count() == 1


@pytest.mark.django_db(transaction=True)
def test_concurrent_bookings_for_limited_seats(settings, coordinator, gateways, event, buyer):
    import threading

    from django.db import connection

    settings.BOOKINGS_POLL_SCHEDULE = {"mpesa": []}
    barrier = threading.Barrier(15)
    outcomes = []

    def book():
        try:
            barrier.wait()
            coordinator.create_booking(event.id, BuyerDetails(**buyer), 1, "mpesa")
            outcomes.append("booked")
        except InsufficientInventory:
            outcomes.append("sold out")
        finally:
            connection.close()

    threads = [threading.Thread(target=book) for _ in range(15)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("booked") == 10
    assert outcomes.count("sold out") == 5
    assert Booking.objects.filter(payment_status=Booking.STATUS_PROCESSING).count() == 10
    event.refresh_from_db()
    assert event.tickets_remaining == 0
