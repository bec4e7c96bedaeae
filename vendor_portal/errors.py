"""Error kinds raised by the order core.

The HTTP layer maps each kind to a status code (see main.py); the core only
classifies failures and never builds user-facing text beyond a short message.
"""


class OrderServiceError(Exception):
    kind = "error"
    status_code = 500

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context


class NotFoundError(OrderServiceError):
    kind = "not_found"
    status_code = 404


class ForbiddenError(OrderServiceError):
    """The caller has no portion in the order."""
    kind = "forbidden"
    status_code = 403


class InvalidTransitionError(OrderServiceError):
    kind = "invalid_transition"
    status_code = 409


class OrderNotUpdatableError(InvalidTransitionError):
    """The order is Completed or Cancelled, so no portion may change."""
    kind = "order_not_updatable"


class ConflictError(OrderServiceError):
    """Optimistic write kept losing races until the attempt budget ran out."""
    kind = "conflict"
    status_code = 409


class StoreTimeoutError(OrderServiceError):
    kind = "timeout"
    status_code = 504


class OrderValidationError(OrderServiceError):
    kind = "validation_error"
    status_code = 422
