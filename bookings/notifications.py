"""
Buyer notifications.

The coordinator only knows the `TicketNotifier` interface; the class
used is configured with ``BOOKINGS_NOTIFIER``.
"""
import logging

from django.conf import settings
from django.core.mail import send_mail
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


class TicketNotifier:
    def notify(self, booking, event, tickets) -> None:
        raise NotImplementedError


class EmailTicketNotifier(TicketNotifier):
    """Plain-text confirmation listing the buyer's scan codes."""

    def notify(self, booking, event, tickets) -> None:
        lines = [
            f"Hi {booking.buyer_name},",
            "",
            f"Your payment for {event.title} is confirmed.",
            f"Booking reference: {booking.reference}",
            f"Tickets: {booking.ticket_quantity}",
            f"Amount paid: KES {booking.total_price}",
        ]
        if event.venue:
            lines.append(f"Venue: {event.venue}")
        if event.starts_at:
            lines.append(f"Starts: {event.starts_at:%d %b %Y %H:%M}")
        lines += ["", "Present these codes at the entrance:"]
        lines += [f"  {t.sequence}. {t.scan_code}" for t in tickets]

        send_mail(
            subject=f"Your tickets for {event.title}",
            message="\n".join(lines),
            from_email=settings.DEFAULT_FROM_EMAIL,
            recipient_list=[booking.buyer_email],
        )
        logger.info("[BOOKING] confirmation sent for %s to %s", booking.reference, booking.buyer_email)


def get_notifier() -> TicketNotifier:
    path = getattr(settings, "BOOKINGS_NOTIFIER", "bookings.notifications.EmailTicketNotifier")
    return import_string(path)()


def notify_admin(subject: str, message: str) -> None:
    recipient = getattr(settings, "PLATFORM_ADMIN_EMAIL", "")
    if not recipient:
        logger.warning("[BOOKING] no PLATFORM_ADMIN_EMAIL configured, dropping alert %r", subject)
        return
    send_mail(
        subject=subject,
        message=message,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[recipient],
    )
