"""
Booking coordinator.

Creates bookings against the seat inventory, starts payments with the
provider adapters, and settles each booking exactly once from whichever
signal arrives first: the provider's webhook or our own status poll.

Every settling write is a conditional UPDATE on
``payment_status = 'processing'``.  Whoever updates the row owns the
side effects (tickets, seat release, notification); everyone else sees
zero rows updated and reports a duplicate.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional

from django.apps import apps
from django.conf import settings
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from events import inventory
from events.inventory import EventNotFound
from events.models import Event
from payments.gateways.base import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    PaymentGateway,
    PaymentRequest,
    PaymentResult,
)
from payments.gateways.exceptions import PaymentProviderError
from payments.gateways.phone import normalize_msisdn

from .commission import calculate_commission
from .exceptions import BookingValidationError
from .models import Booking, CommissionSettings, PaymentAttempt
from .tickets import issue_tickets

logger = logging.getLogger(__name__)

PENDING_CONFIRMATION_MESSAGE = "Payment initiated, pending confirmation"


class ReconcileOutcome(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    PENDING = "pending"
    DUPLICATE = "duplicate"
    UNMATCHED = "unmatched"


@dataclass(frozen=True)
class BuyerDetails:
    name: str
    email: str
    phone: str = ""


@dataclass
class CheckoutResult:
    booking: Booking
    customer_message: str = ""
    error: Optional[PaymentProviderError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def status_message(booking: Booking) -> str:
    """Human readable state for the buyer."""
    if booking.payment_status == Booking.STATUS_COMPLETED:
        return "Payment confirmed, tickets issued"
    if booking.payment_status == Booking.STATUS_FAILED:
        return booking.failure_reason or "Payment failed"
    if booking.payment_status == Booking.STATUS_PROCESSING:
        exhausted = booking.payment_attempts.filter(is_active=True, poll_exhausted=True).exists()
        if booking.payment_method == Booking.METHOD_MPESA and not exhausted:
            return "Check your phone to complete the M-Pesa payment"
        return PENDING_CONFIRMATION_MESSAGE
    return "Booking created"


class BookingCoordinator:
    def __init__(self, gateways: dict[str, PaymentGateway], max_tickets: Optional[int] = None):
        self.gateways = gateways
        self.max_tickets = max_tickets or getattr(settings, "BOOKINGS_MAX_TICKETS_PER_BOOKING", 10)

    # -- creation -------------------------------------------------------

    def _validate(self, event_id, buyer: BuyerDetails, quantity, payment_method: str):
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
            raise BookingValidationError("Ticket quantity must be a positive whole number", field="ticket_quantity")
        if quantity > self.max_tickets:
            raise BookingValidationError(
                f"At most {self.max_tickets} tickets can be booked at once", field="ticket_quantity"
            )
        if payment_method not in dict(Booking.METHOD_CHOICES):
            raise BookingValidationError(f"Unknown payment method {payment_method!r}", field="payment_method")
        gateway = self.gateways.get(payment_method)
        if gateway is None:
            raise BookingValidationError(
                f"Payment method {payment_method} is not available", field="payment_method"
            )
        if not (buyer.name or "").strip():
            raise BookingValidationError("Buyer name is required", field="name")
        if not (buyer.email or "").strip():
            raise BookingValidationError("Buyer email is required", field="email")

        phone = (buyer.phone or "").strip()
        if payment_method == Booking.METHOD_MPESA:
            try:
                phone = normalize_msisdn(phone)
            except ValueError:
                raise BookingValidationError("Enter a valid Kenyan mobile number", field="phone")

        event = Event.objects.filter(pk=event_id).first()
        if event is None:
            raise EventNotFound(event_id)
        return event, gateway, phone

    def create_booking(
        self,
        event_id,
        buyer: BuyerDetails,
        quantity: int,
        payment_method: str,
        user=None,
    ) -> CheckoutResult:
        """
        Reserve seats, record a pending booking and start the payment.

        Raises BookingValidationError, EventNotFound or InsufficientInventory
        before anything is written.  Provider errors do not raise: the
        booking comes back failed with its seats already returned.  Any
        other error also fails the booking and releases its seats, then
        propagates.
        """
        event, gateway, phone = self._validate(event_id, buyer, quantity, payment_method)
        total = (event.price * quantity).quantize(Decimal("0.01"))

        with transaction.atomic():
            inventory.reserve(event.pk, quantity)
            booking = Booking.objects.create(
                event=event,
                user=user if getattr(user, "is_authenticated", False) else None,
                buyer_name=buyer.name.strip(),
                buyer_email=buyer.email.strip(),
                buyer_phone=phone,
                ticket_quantity=quantity,
                total_price=total,
                payment_method=payment_method,
                payment_status=Booking.STATUS_PENDING,
            )
        logger.info(
            "[BOOKING] created %s event=%s qty=%s total=%s method=%s",
            booking.reference, event.pk, quantity, total, payment_method,
        )

        request = PaymentRequest(
            reference=booking.reference,
            amount=total,
            description=f"{event.title} x{quantity}",
            phone=phone,
            email=booking.buyer_email,
            name=booking.buyer_name,
        )
        try:
            initiation = gateway.initiate(request)
        except PaymentProviderError as e:
            logger.warning("[BOOKING] initiation failed for %s: %s", booking.reference, e)
            self._fail_initiation(booking, e.message)
            booking.refresh_from_db()
            return CheckoutResult(booking=booking, customer_message=e.message, error=e)
        except Exception:
            logger.exception("[BOOKING] unexpected error starting payment for %s", booking.reference)
            self._fail_initiation(booking, "Payment could not be started")
            raise

        with transaction.atomic():
            updated = Booking.objects.filter(pk=booking.pk, payment_status=Booking.STATUS_PENDING).update(
                payment_status=Booking.STATUS_PROCESSING,
                payment_reference=initiation.correlation_id,
                checkout_url=initiation.checkout_url or "",
                updated_at=timezone.now(),
            )
            if not updated:
                # Swept as abandoned while the provider call was in flight.
                logger.error(
                    "[BOOKING] %s was failed before initiation returned; correlation_id=%s needs manual review",
                    booking.reference, initiation.correlation_id,
                )
                booking.refresh_from_db()
                error = PaymentProviderError("Booking expired before payment started", provider=payment_method)
                return CheckoutResult(booking=booking, customer_message=status_message(booking), error=error)
            PaymentAttempt.objects.create(
                booking=booking,
                provider=payment_method,
                correlation_id=initiation.correlation_id,
            )
            transaction.on_commit(lambda: _schedule_polling(booking.pk))

        booking.refresh_from_db()
        logger.info("[BOOKING] %s processing, correlation_id=%s", booking.reference, booking.payment_reference)
        return CheckoutResult(booking=booking, customer_message=initiation.customer_message)

    def _fail_initiation(self, booking: Booking, reason: str) -> bool:
        with transaction.atomic():
            updated = Booking.objects.filter(pk=booking.pk, payment_status=Booking.STATUS_PENDING).update(
                payment_status=Booking.STATUS_FAILED,
                failure_reason=(reason or "Payment could not be started")[:255],
                updated_at=timezone.now(),
            )
            if updated:
                inventory.release(booking.event_id, booking.ticket_quantity)
        return bool(updated)

    # -- settlement -----------------------------------------------------

    def find_booking(self, correlation_id: str = "", merchant_reference: str = "") -> Optional[Booking]:
        if correlation_id:
            attempt = PaymentAttempt.objects.select_related("booking").filter(correlation_id=correlation_id).first()
            if attempt is not None:
                return attempt.booking
            booking = Booking.objects.filter(payment_reference=correlation_id).first()
            if booking is not None:
                return booking
        if merchant_reference.startswith("BOOKING-"):
            pk = merchant_reference[len("BOOKING-"):]
            if pk.isdigit():
                return Booking.objects.filter(pk=int(pk)).first()
        return None

    def reconcile(
        self,
        result: PaymentResult,
        booking: Optional[Booking] = None,
        source: str = "poll",
    ) -> ReconcileOutcome:
        """
        Apply a provider result to its booking.  Safe to call any number of
        times with any mix of results: only the first terminal result for a
        processing booking changes anything.
        """
        if booking is None:
            booking = self.find_booking(result.correlation_id, result.merchant_reference)
        if booking is None:
            logger.warning(
                "[BOOKING] %s result for unknown correlation_id=%s", source, result.correlation_id
            )
            return ReconcileOutcome.UNMATCHED

        if result.status == STATUS_COMPLETED:
            return self._complete(booking, result, source)
        if result.status == STATUS_FAILED:
            return self._fail(booking, result, source)
        return ReconcileOutcome.PENDING

    def _complete(self, booking: Booking, result: PaymentResult, source: str) -> ReconcileOutcome:
        from . import tasks

        if result.amount is not None and result.amount != booking.total_price:
            logger.warning(
                "[BOOKING] %s amount mismatch: expected %s, provider reported %s",
                booking.reference, booking.total_price, result.amount,
            )

        with transaction.atomic():
            breakdown = calculate_commission(booking.total_price, CommissionSettings.load().as_policy())
            now = timezone.now()
            updated = Booking.objects.filter(pk=booking.pk, payment_status=Booking.STATUS_PROCESSING).update(
                payment_status=Booking.STATUS_COMPLETED,
                provider_transaction_id=result.transaction_id[:255],
                commission_amount=breakdown.fee,
                organizer_amount=breakdown.organizer_amount,
                platform_fee_percentage=breakdown.applied_percentage,
                failure_reason="",
                completed_at=now,
                updated_at=now,
            )
            if not updated:
                logger.info("[BOOKING] duplicate %s completion for %s ignored", source, booking.reference)
                return ReconcileOutcome.DUPLICATE

            PaymentAttempt.objects.filter(booking_id=booking.pk).update(is_active=False)
            booking.refresh_from_db()
            issue_tickets(booking)

            booking_id = booking.pk
            transaction.on_commit(lambda: tasks.send_ticket_confirmation.delay(booking_id))
            transaction.on_commit(lambda: tasks.payout_to_organizer.delay(booking_id))

        logger.info(
            "[BOOKING] %s completed via %s receipt=%s fee=%s organizer=%s",
            booking.reference, source, booking.provider_transaction_id,
            breakdown.fee, breakdown.organizer_amount,
        )
        return ReconcileOutcome.COMPLETED

    def _fail(self, booking: Booking, result: PaymentResult, source: str) -> ReconcileOutcome:
        with transaction.atomic():
            updated = Booking.objects.filter(pk=booking.pk, payment_status=Booking.STATUS_PROCESSING).update(
                payment_status=Booking.STATUS_FAILED,
                failure_reason=(result.error or "Payment failed")[:255],
                updated_at=timezone.now(),
            )
            if not updated:
                logger.info("[BOOKING] duplicate %s failure for %s ignored", source, booking.reference)
                return ReconcileOutcome.DUPLICATE
            PaymentAttempt.objects.filter(booking_id=booking.pk).update(is_active=False)
            inventory.release(booking.event_id, booking.ticket_quantity)

        logger.info("[BOOKING] %s failed via %s: %s", booking.reference, source, result.error)
        return ReconcileOutcome.FAILED

    # -- signal sources -------------------------------------------------

    def handle_webhook(self, payment_method: str, payload: dict) -> ReconcileOutcome:
        """
        Settle from a provider notification.  Notifications that do not
        carry a final status (Pesapal IPN) trigger one status poll.
        """
        gateway = self.gateways.get(payment_method)
        if gateway is None:
            logger.warning("[BOOKING] webhook for unconfigured method %s", payment_method)
            return ReconcileOutcome.UNMATCHED
        try:
            result = gateway.parse_webhook(payload)
        except ValueError as e:
            logger.warning("[BOOKING] unreadable %s webhook: %s", payment_method, e)
            return ReconcileOutcome.UNMATCHED

        booking = self.find_booking(result.correlation_id, result.merchant_reference)
        if booking is None:
            logger.warning(
                "[BOOKING] %s webhook for unknown correlation_id=%s", payment_method, result.correlation_id
            )
            return ReconcileOutcome.UNMATCHED
        if booking.payment_method != payment_method:
            logger.warning(
                "[BOOKING] %s webhook matched %s, which is paid by %s; ignored",
                payment_method, booking.reference, booking.payment_method,
            )
            return ReconcileOutcome.UNMATCHED

        if not result.is_terminal:
            if booking.payment_status != Booking.STATUS_PROCESSING:
                return ReconcileOutcome.DUPLICATE
            result = gateway.poll_status(booking.payment_reference or result.correlation_id)
        return self.reconcile(result, booking=booking, source="webhook")

    def poll_once(self, booking_id) -> ReconcileOutcome:
        """Ask the provider once where a processing booking stands."""
        booking = Booking.objects.filter(pk=booking_id).first()
        if booking is None:
            return ReconcileOutcome.UNMATCHED
        if booking.payment_status != Booking.STATUS_PROCESSING:
            return ReconcileOutcome.DUPLICATE
        gateway = self.gateways.get(booking.payment_method)
        if gateway is None:
            logger.warning("[BOOKING] cannot poll %s: %s not configured", booking.reference, booking.payment_method)
            return ReconcileOutcome.PENDING

        try:
            result = gateway.poll_status(booking.payment_reference)
        except PaymentProviderError as e:
            logger.info("[BOOKING] poll for %s inconclusive: %s", booking.reference, e)
            result = PaymentResult.pending(booking.payment_reference, error=str(e))

        PaymentAttempt.objects.filter(booking_id=booking.pk, correlation_id=booking.payment_reference).update(
            poll_attempts=F("poll_attempts") + 1,
            last_polled_at=timezone.now(),
        )
        return self.reconcile(result, booking=booking, source="poll")

    def get_booking_status(self, booking_id, refresh: bool = False) -> Booking:
        """
        Return the stored booking.  With `refresh`, a processing booking is
        polled once first, which also picks up bookings whose poller ran out.
        """
        booking = Booking.objects.select_related("event").filter(pk=booking_id).first()
        if booking is None:
            raise Booking.DoesNotExist(f"Booking {booking_id} does not exist")
        if refresh and booking.payment_status == Booking.STATUS_PROCESSING:
            self.poll_once(booking.pk)
            booking.refresh_from_db()
        return booking

    def sweep_processing(self, older_than: timedelta = timedelta(minutes=2)) -> Counter:
        """
        Poll every booking that has sat in processing for a while.  Bookings
        still pending past the cutoff never reached the provider, so they
        are failed and their seats returned.
        """
        cutoff = timezone.now() - older_than
        outcomes: Counter = Counter()
        stale = Booking.objects.filter(payment_status=Booking.STATUS_PENDING, created_at__lte=cutoff)
        for booking in list(stale):
            if self._fail_initiation(booking, "Payment was never started"):
                logger.warning("[BOOKING] %s abandoned before payment started, seats released", booking.reference)
                outcomes["abandoned"] += 1
        ids = Booking.objects.filter(
            payment_status=Booking.STATUS_PROCESSING, created_at__lte=cutoff
        ).values_list("pk", flat=True)
        for booking_id in list(ids):
            outcome = self.poll_once(booking_id)
            outcomes[outcome.value] += 1
        if outcomes:
            logger.info("[BOOKING] sweep finished: %s", dict(outcomes))
        return outcomes


def _schedule_polling(booking_id) -> None:
    from .tasks import schedule_poll

    schedule_poll(booking_id, 0)


def get_coordinator() -> BookingCoordinator:
    """Coordinator wired to the gateways the payments app built at startup."""
    return BookingCoordinator(gateways=apps.get_app_config("payments").gateways)
