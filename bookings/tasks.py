"""
Celery tasks for the bookings app.

Status polling is a chain of `poll_payment_status` runs, each scheduled
with the next countdown from ``BOOKINGS_POLL_SCHEDULE``.  A run that
finds the booking already settled simply stops, so a webhook winning the
race ends the chain without any explicit cancellation.
"""
from __future__ import annotations

import logging
from datetime import timedelta
from smtplib import SMTPException

from celery import shared_task
from django.apps import apps
from django.conf import settings

from .models import Booking, PaymentAttempt, Ticket
from .notifications import get_notifier
from .payouts import apply_payout_result, request_payout
from .services import ReconcileOutcome, get_coordinator

logger = logging.getLogger(__name__)

DEFAULT_POLL_SCHEDULE = [5, 10, 30, 60, 120]


def poll_schedule(payment_method: str) -> list:
    return list(getattr(settings, "BOOKINGS_POLL_SCHEDULE", {}).get(payment_method, DEFAULT_POLL_SCHEDULE))


def schedule_poll(booking_id: int, attempt: int) -> bool:
    """Queue poll number `attempt`, or mark polling exhausted.  Returns whether a poll was queued."""
    booking = Booking.objects.filter(pk=booking_id).only("payment_method", "payment_status", "payment_reference").first()
    if booking is None or booking.payment_status != Booking.STATUS_PROCESSING:
        return False

    schedule = poll_schedule(booking.payment_method)
    if attempt >= len(schedule):
        PaymentAttempt.objects.filter(booking_id=booking_id, correlation_id=booking.payment_reference).update(
            poll_exhausted=True
        )
        logger.info(
            "[BOOKING] polling exhausted for BOOKING-%s after %s attempts, still awaiting webhook",
            booking_id, attempt,
        )
        return False

    poll_payment_status.apply_async((booking_id, attempt), countdown=schedule[attempt])
    return True


@shared_task
def poll_payment_status(booking_id: int, attempt: int = 0) -> str:
    """Poll the provider once and queue the next poll while still pending."""
    if not Booking.objects.filter(pk=booking_id, payment_status=Booking.STATUS_PROCESSING).exists():
        return ReconcileOutcome.DUPLICATE.value

    outcome = get_coordinator().poll_once(booking_id)
    if outcome == ReconcileOutcome.PENDING:
        schedule_poll(booking_id, attempt + 1)
    return outcome.value


@shared_task
def process_payment_webhook(payment_method: str, payload: dict) -> str:
    outcome = get_coordinator().handle_webhook(payment_method, payload)
    logger.info("[BOOKING] %s webhook processed: %s", payment_method, outcome.value)
    return outcome.value


@shared_task(bind=True, autoretry_for=(SMTPException, ConnectionError), retry_backoff=True, max_retries=5)
def send_ticket_confirmation(self, booking_id: int) -> None:
    """Send the buyer their tickets through the configured notifier."""
    try:
        booking = Booking.objects.select_related("event").get(pk=booking_id)
    except Booking.DoesNotExist:
        return
    if booking.payment_status != Booking.STATUS_COMPLETED:
        return
    tickets = list(Ticket.objects.filter(booking=booking).order_by("sequence"))
    get_notifier().notify(booking, booking.event, tickets)


@shared_task
def payout_to_organizer(booking_id: int) -> str:
    gateway = apps.get_app_config("payments").gateways.get(Booking.METHOD_MPESA)
    return request_payout(booking_id, gateway)


@shared_task
def process_payout_result(payload: dict) -> str:
    gateway = apps.get_app_config("payments").gateways.get(Booking.METHOD_MPESA)
    if gateway is None:
        logger.warning("[PAYOUT] result callback received but M-Pesa is not configured")
        return "unmatched"
    return apply_payout_result(payload, gateway)


@shared_task
def reconcile_processing_bookings(older_than_minutes: int = 2) -> dict:
    """Periodic safety net for processing bookings nobody is polling."""
    return dict(get_coordinator().sweep_processing(timedelta(minutes=older_than_minutes)))
