"""
Seat inventory for events.

Reservations are taken with a single conditional UPDATE so that two
buyers racing for the last seat can never both succeed, whatever either
of them read beforehand.  Releases are clamped to the event's capacity.
"""
import logging

from django.db.models import F
from django.db.models.functions import Least

from .models import Event

logger = logging.getLogger(__name__)


class EventNotFound(Exception):
    """Raised when an event id does not resolve to an event."""

    def __init__(self, event_id):
        self.event_id = event_id
        super().__init__(f"Event {event_id} does not exist")


class InsufficientInventory(Exception):
    """Raised when an event cannot cover the requested number of seats."""

    def __init__(self, event_id, requested: int, available: int):
        self.event_id = event_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Only {available} ticket(s) left for event {event_id}, {requested} requested"
        )


def reserve(event_id, quantity: int) -> None:
    """
    Take `quantity` seats from the event or raise.

    Must run inside the caller's transaction when the reservation is tied
    to other writes (e.g. creating the booking), so both commit or neither.
    """
    if quantity <= 0:
        raise ValueError("quantity must be positive")

    updated = Event.objects.filter(pk=event_id, tickets_remaining__gte=quantity).update(
        tickets_remaining=F("tickets_remaining") - quantity
    )
    if updated:
        logger.debug("[INVENTORY] reserved %s seat(s) on event %s", quantity, event_id)
        return

    available = Event.objects.filter(pk=event_id).values_list("tickets_remaining", flat=True).first()
    if available is None:
        raise EventNotFound(event_id)
    raise InsufficientInventory(event_id, quantity, available)


def release(event_id, quantity: int) -> None:
    """Give `quantity` seats back, never exceeding `total_seats`."""
    if quantity <= 0:
        raise ValueError("quantity must be positive")

    updated = Event.objects.filter(pk=event_id).update(
        tickets_remaining=Least(F("tickets_remaining") + quantity, F("total_seats"))
    )
    if not updated:
        raise EventNotFound(event_id)
    logger.debug("[INVENTORY] released %s seat(s) on event %s", quantity, event_id)


def available(event_id) -> int:
    """Current number of unreserved seats."""
    remaining = Event.objects.filter(pk=event_id).values_list("tickets_remaining", flat=True).first()
    if remaining is None:
        raise EventNotFound(event_id)
    return remaining
