"""
Error taxonomy for the order lifecycle.

Every error the services raise derives from ``OrderServiceError`` and carries a
stable ``code`` plus the HTTP status the API layer answers with.
"""


class OrderServiceError(Exception):
    code = "order_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(OrderServiceError):
    """Malformed input: empty reason, missing driver, bad quantities, bad pagination."""
    code = "validation_error"
    status_code = 400


class InvalidTransition(OrderServiceError):
    """Requested transition is not an edge from the order's current status."""
    code = "invalid_transition"
    status_code = 400


class InvalidAssignment(OrderServiceError):
    """Driver assignment attempted outside the allowed status window."""
    code = "invalid_assignment"
    status_code = 400


class NotFound(OrderServiceError):
    code = "not_found"
    status_code = 404


class DuplicateOrder(OrderServiceError):
    code = "duplicate_order"
    status_code = 409


class ConflictError(OrderServiceError):
    """Lost a race to a concurrent writer. Re-read the order before retrying."""
    code = "conflict"
    status_code = 409
