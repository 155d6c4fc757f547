"""Domain errors raised by the reservation services."""

from typing import Optional


class ReservationValidationError(ValueError):
    """A write was rejected; nothing was persisted."""

    def __init__(self, message: str, missing_fields: Optional[list[str]] = None):
        self.missing_fields = missing_fields or []
        super().__init__(message)


class TransitionError(ReservationValidationError):
    """Requested status change is not allowed from the current status."""

    def __init__(self, previous: Optional[str], requested: str):
        self.previous = previous
        self.requested = requested
        if previous is None:
            message = f'Cannot create a reservation with status "{requested}"'
        else:
            message = f'Cannot change status from "{previous}" to "{requested}"'
        super().__init__(message)


class PaymentGatewayError(Exception):
    """The payment provider rejected or failed a request."""

    def __init__(self, message: str = "Payment provider request failed", status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class RelatedDocumentNotFound(LookupError):
    """A boat, location or coupon referenced by a reservation is missing."""

    def __init__(self, collection: str, id: Optional[str]):
        self.collection = collection
        self.id = id
        super().__init__(f"{collection} document not found: {id}")
