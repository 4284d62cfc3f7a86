"""
Organizer payouts over M-Pesa B2C.

Once a booking completes, the organizer's share is sent to their
verified payout number.  `payout_status` only moves forward::

    none -> payout_pending -> payout_completed | payout_failed

Payouts are best effort: a failure is recorded, logged and reported to
the platform admin, and is not retried automatically.  The booking's
`payment_status` is never touched here.
"""
import logging

from django.utils import timezone

from payments.gateways.exceptions import PaymentProviderError
from payments.models import PayoutAccount

from .models import Booking
from .notifications import notify_admin

logger = logging.getLogger(__name__)


def _alert(booking_id, reason: str) -> None:
    notify_admin(
        subject=f"Organizer payout failed for BOOKING-{booking_id}",
        message=f"The payout for booking BOOKING-{booking_id} failed: {reason}",
    )


def request_payout(booking_id, gateway) -> str:
    """
    Start the payout for a completed booking.  Returns the resulting
    payout_status, or "skipped" when nothing was attempted.
    """
    booking = Booking.objects.select_related("event").filter(pk=booking_id).first()
    if booking is None or booking.payment_status != Booking.STATUS_COMPLETED:
        return "skipped"
    if booking.organizer_amount <= 0 or booking.event.organizer_id is None:
        return "skipped"
    account = PayoutAccount.objects.filter(user_id=booking.event.organizer_id, is_verified=True).first()
    if account is None:
        logger.info("[PAYOUT] organizer of %s has no verified payout account", booking.reference)
        return "skipped"
    if gateway is None or not hasattr(gateway, "request_payout"):
        logger.info("[PAYOUT] no payout-capable gateway configured, skipping %s", booking.reference)
        return "skipped"

    claimed = Booking.objects.filter(
        pk=booking.pk,
        payment_status=Booking.STATUS_COMPLETED,
        payout_status=Booking.PAYOUT_NONE,
    ).update(payout_status=Booking.PAYOUT_PENDING, updated_at=timezone.now())
    if not claimed:
        return "skipped"

    try:
        conversation_id = gateway.request_payout(
            phone=account.mpesa_phone,
            amount=booking.organizer_amount,
            reference=booking.reference,
            remarks=f"Ticket sales {booking.event.title}",
        )
    except (PaymentProviderError, ValueError) as e:
        logger.error("[PAYOUT] request for %s failed: %s", booking.reference, e)
        Booking.objects.filter(pk=booking.pk, payout_status=Booking.PAYOUT_PENDING).update(
            payout_status=Booking.PAYOUT_FAILED, updated_at=timezone.now()
        )
        _alert(booking.pk, str(e))
        return Booking.PAYOUT_FAILED

    Booking.objects.filter(pk=booking.pk).update(payout_reference=conversation_id, updated_at=timezone.now())
    logger.info("[PAYOUT] %s requested, conversation_id=%s", booking.reference, conversation_id)
    return Booking.PAYOUT_PENDING


def apply_payout_result(payload: dict, gateway) -> str:
    """Record the B2C result callback.  Returns the new payout_status or "unmatched"."""
    try:
        result = gateway.parse_payout_result(payload)
    except ValueError as e:
        logger.warning("[PAYOUT] unreadable result callback: %s", e)
        return "unmatched"

    booking = Booking.objects.filter(payout_reference=result.conversation_id).first() if result.conversation_id else None
    if booking is None:
        logger.warning("[PAYOUT] result for unknown conversation_id=%s", result.conversation_id)
        return "unmatched"

    new_status = Booking.PAYOUT_COMPLETED if result.succeeded else Booking.PAYOUT_FAILED
    updated = Booking.objects.filter(pk=booking.pk, payout_status=Booking.PAYOUT_PENDING).update(
        payout_status=new_status, updated_at=timezone.now()
    )
    if not updated:
        logger.info("[PAYOUT] duplicate result for %s ignored", booking.reference)
        return booking.payout_status

    if result.succeeded:
        logger.info("[PAYOUT] %s paid out, transaction=%s", booking.reference, result.transaction_id)
    else:
        logger.error("[PAYOUT] %s payout failed: %s", booking.reference, result.description)
        _alert(booking.pk, result.description or "declined by provider")
    return new_status
