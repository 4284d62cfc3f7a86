"""
Ticket issuance for completed bookings.

Each booking gets exactly `ticket_quantity` tickets numbered from 1.
Scan codes are random; the unique index on `scan_code` is the final
word on collisions, and a collision simply means trying another code.
"""
import logging
import string
from typing import Callable, List, Optional

from django.db import IntegrityError, transaction
from django.utils.crypto import get_random_string

from .exceptions import TicketIssuanceConflict
from .models import Booking, Ticket

logger = logging.getLogger(__name__)

SCAN_CODE_PREFIX = "TKT-"
SCAN_CODE_LENGTH = 16
SCAN_CODE_ALPHABET = string.ascii_uppercase + string.digits
MAX_CODE_ATTEMPTS = 5


def generate_scan_code() -> str:
    return SCAN_CODE_PREFIX + get_random_string(SCAN_CODE_LENGTH, allowed_chars=SCAN_CODE_ALPHABET)


def _create_ticket(booking: Booking, sequence: int, code_factory: Callable[[], str]) -> Ticket:
    for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
        code = code_factory()
        if Ticket.objects.filter(scan_code=code).exists():
            logger.info("[TICKETS] scan code collision for booking %s, attempt %s", booking.pk, attempt)
            continue
        try:
            with transaction.atomic():
                return Ticket.objects.create(
                    booking=booking,
                    event_id=booking.event_id,
                    sequence=sequence,
                    scan_code=code,
                )
        except IntegrityError:
            # Lost a race for the same code, or another issuer got this sequence first.
            existing = Ticket.objects.filter(booking=booking, sequence=sequence).first()
            if existing is not None:
                return existing
            logger.info("[TICKETS] scan code taken concurrently for booking %s, attempt %s", booking.pk, attempt)
    raise TicketIssuanceConflict(
        f"No unused scan code for booking {booking.pk} after {MAX_CODE_ATTEMPTS} attempts"
    )


def issue_tickets(booking: Booking, code_factory: Optional[Callable[[], str]] = None) -> List[Ticket]:
    """
    Issue the booking's tickets, or return the ones it already has.

    Only completed bookings get tickets.  Calling this twice never yields
    more than `ticket_quantity` tickets.
    """
    if booking.payment_status != Booking.STATUS_COMPLETED:
        raise ValueError(f"Booking {booking.pk} is {booking.payment_status}, not completed")

    code_factory = code_factory or generate_scan_code
    existing = {t.sequence: t for t in Ticket.objects.filter(booking=booking)}
    if len(existing) >= booking.ticket_quantity:
        return sorted(existing.values(), key=lambda t: t.sequence)

    with transaction.atomic():
        for sequence in range(1, booking.ticket_quantity + 1):
            if sequence not in existing:
                existing[sequence] = _create_ticket(booking, sequence, code_factory)

    logger.info("[TICKETS] issued %s ticket(s) for booking %s", booking.ticket_quantity, booking.pk)
    return sorted(existing.values(), key=lambda t: t.sequence)
