"""
Typed exceptions for the sales ledger.

Callers catch by type, not by parsing messages. The booking and
lookup errors also subclass ValueError so code written against the
plain ValueError convention keeps working.
"""


class SalesLedgerError(Exception):
    """Base class for all sales ledger errors."""

    code: str = "SALES_LEDGER_ERROR"


class InvalidBookingError(SalesLedgerError, ValueError):
    """A booking cannot be turned into a ledger event."""

    code = "INVALID_BOOKING"

    def __init__(self, booking_id: str | None, reason: str):
        self.booking_id = booking_id
        self.reason = reason
        super().__init__(f"Booking {booking_id!r} is invalid: {reason}")


class NotFoundError(SalesLedgerError, ValueError):
    """No ledger event exists with the given id."""

    code = "LEDGER_EVENT_NOT_FOUND"

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Ledger event {event_id} not found")


class StoreError(SalesLedgerError):
    """
    The durable store failed to load or save.

    The in-memory state is left at its last-known-good value
    whenever this is raised.
    """

    code = "STORE_FAILURE"

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"Store {operation} failed: {cause}")


class UnbalancedEventError(SalesLedgerError, ValueError):
    """An event's split or line items do not add up to its amount."""

    code = "UNBALANCED_EVENT"

    def __init__(self, event_id: str, detail: str):
        self.event_id = event_id
        self.detail = detail
        super().__init__(f"Ledger event {event_id} does not balance: {detail}")
