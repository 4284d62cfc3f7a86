"""
Platform revenue reporting.
"""
from decimal import Decimal

from django.db.models import Avg, Count, Sum

from .models import Booking

ZERO = Decimal("0.00")


def commission_summary(event_id=None) -> dict:
    """
    Totals over completed bookings plus a count of bookings per payment
    status.  Optionally restricted to a single event.
    """
    qs = Booking.objects.all()
    if event_id is not None:
        qs = qs.filter(event_id=event_id)

    completed = qs.filter(payment_status=Booking.STATUS_COMPLETED).aggregate(
        total_revenue=Sum("total_price"),
        total_commission=Sum("commission_amount"),
        total_organizer_amount=Sum("organizer_amount"),
        average_commission=Avg("commission_amount"),
        tickets_sold=Sum("ticket_quantity"),
        completed_bookings=Count("id"),
    )

    by_status = {value: 0 for value, _ in Booking.STATUS_CHOICES}
    for row in qs.values("payment_status").annotate(count=Count("id")):
        by_status[row["payment_status"]] = row["count"]

    average = completed["average_commission"]
    return {
        "total_revenue": completed["total_revenue"] or ZERO,
        "total_commission": completed["total_commission"] or ZERO,
        "total_organizer_amount": completed["total_organizer_amount"] or ZERO,
        "average_commission": Decimal(average).quantize(Decimal("0.01")) if average is not None else ZERO,
        "tickets_sold": completed["tickets_sold"] or 0,
        "completed_bookings": completed["completed_bookings"],
        "bookings_by_status": by_status,
    }
