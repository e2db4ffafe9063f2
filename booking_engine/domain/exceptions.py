class BookingEngineError(Exception):
    """
    Base exception for all domain-level errors
    inside the booking reconciliation engine.
    """


class ValidationError(BookingEngineError):
    """Raised when a request is rejected before any mutation."""


class InvalidQuantityError(ValidationError):
    def __init__(self, quantity: int):
        self.quantity = quantity
        super().__init__(f"Quantity must be at least 1, got {quantity}")


class InvalidStateTransitionError(BookingEngineError):
    """
    Raised when an illegal booking or payment state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class InsufficientInventoryError(BookingEngineError):
    """Raised when the event cannot cover the requested quantity."""

    def __init__(self, event_id: str, requested: int, available: int):
        self.event_id = event_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient inventory for event {event_id}: "
            f"requested {requested}, available {available}"
        )


class NoVenueConfiguredError(BookingEngineError):
    """Raised when an event without a venue is booked and unbounded capacity is off."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} has no venue configured")


class EventNotFoundError(BookingEngineError):
    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event {event_id} not found")


class BookingNotFoundError(BookingEngineError):
    def __init__(self, booking_id: str):
        self.booking_id = booking_id
        super().__init__(f"Booking {booking_id} not found")


class BookingNotPayableError(BookingEngineError):
    """Raised when a payment session is requested for a finished booking."""


class TicketsNotIssuedError(BookingEngineError):
    """Raised when tickets are requested before payment is confirmed."""


class GatewayUnavailableError(BookingEngineError):
    """Raised when the payment gateway cannot open a checkout session."""


class UnverifiedWebhookError(BookingEngineError):
    """Raised when an inbound notification fails authenticity or shape checks."""


class InconsistentStateError(BookingEngineError):
    """Raised on data-integrity faults; the unit of work must be aborted."""
