"""
Poll every booking still waiting on its payment provider, and fail
bookings that never got as far as starting a payment.

Usage::

    python manage.py reconcile_processing_bookings --older-than 5
"""
from datetime import timedelta

from django.core.management.base import BaseCommand

from bookings.services import get_coordinator


class Command(BaseCommand):
    help = "Poll the payment provider once for each booking stuck in processing and fail abandoned pending ones."

    def add_arguments(self, parser):
        parser.add_argument(
            "--older-than",
            type=int,
            default=2,
            help="Only bookings created at least this many minutes ago (default: 2)",
        )

    def handle(self, *args, **options):
        outcomes = get_coordinator().sweep_processing(timedelta(minutes=options["older_than"]))
        if not outcomes:
            self.stdout.write("No processing bookings to reconcile.")
            return
        summary = ", ".join(f"{name}={count}" for name, count in sorted(outcomes.items()))
        self.stdout.write(self.style.SUCCESS(f"Reconciled {sum(outcomes.values())} booking(s): {summary}"))
