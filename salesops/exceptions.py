"""Domain exceptions.

Raised by the service layer when a business rule blocks an operation.
The API layer registers handlers in ``main.py`` that translate them into
HTTP responses.
"""

from typing import Optional


class SalesOpsError(Exception):
    """Base class for all domain errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class Forbidden(SalesOpsError):
    """The acting user's role may not perform this operation."""

    status_code = 403


class EntityNotFound(SalesOpsError):
    """The referenced invoice, order, quotation or product does not exist."""

    status_code = 404


class InvalidTransition(SalesOpsError):
    """The requested status is not reachable from the current status."""

    status_code = 400

    def __init__(self, current_status, requested_status):
        self.current_status = getattr(current_status, "value", current_status)
        self.requested_status = getattr(requested_status, "value", requested_status)
        super().__init__(
            f"Invalid status transition from {self.current_status} to {self.requested_status}"
        )


class ConversionError(SalesOpsError):
    """A quotation or sales order cannot be converted in its current state."""

    status_code = 400


class PersistenceFailure(SalesOpsError):
    """The record store rejected or failed the update."""

    status_code = 500


class TransientDeliveryFailure(SalesOpsError):
    """A single delivery attempt failed; the caller may retry."""

    def __init__(self, message: str, attempt: int, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.attempt = attempt
        self.cause = cause


class DeliveryFailure(SalesOpsError):
    """Every delivery attempt for a notification failed."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts
