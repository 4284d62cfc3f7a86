class BookingValidationError(Exception):
    """Booking request rejected before anything was reserved or charged."""

    def __init__(self, message: str, field: str = ""):
        self.message = message
        self.field = field
        super().__init__(message)


class TicketIssuanceConflict(Exception):
    """Could not find an unused scan code after repeated attempts."""
