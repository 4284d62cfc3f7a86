"""
Models for the events app.

An `Event` carries a finite pool of seats.  `tickets_remaining` starts at
`total_seats` and is only ever changed through `events.inventory`, which
keeps it inside ``0 <= tickets_remaining <= total_seats``.  The database
enforces the same bounds with check constraints.
"""

from django.conf import settings
from django.db import models
from django.db.models import F, Q


class Event(models.Model):
    """A ticketed event with a fixed seat capacity."""
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True)
    venue = models.CharField(max_length=255, blank=True)
    location = models.CharField(max_length=255, blank=True)
    starts_at = models.DateTimeField(null=True, blank=True)
    price = models.DecimalField(max_digits=10, decimal_places=2, default=0)
    total_seats = models.PositiveIntegerField()
    tickets_remaining = models.PositiveIntegerField(blank=True)
    organizer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.SET_NULL,
        related_name="organized_events",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=Q(tickets_remaining__gte=0),
                name="event_tickets_remaining_non_negative",
            ),
            models.CheckConstraint(
                condition=Q(tickets_remaining__lte=F("total_seats")),
                name="event_tickets_remaining_within_capacity",
            ),
        ]

    def save(self, *args, **kwargs):
        if self.tickets_remaining is None:
            self.tickets_remaining = self.total_seats
        super().save(*args, **kwargs)

    @property
    def is_sold_out(self) -> bool:
        return self.tickets_remaining == 0

    def __str__(self) -> str:
        return f"{self.title} ({self.tickets_remaining}/{self.total_seats})"
