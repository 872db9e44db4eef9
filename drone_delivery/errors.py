"""
Error taxonomy for the delivery core. Every operation either returns a value or raises one of these.
"""


class DeliveryError(Exception):
    """Base class. `reason` is the human-readable message returned to callers."""
    status_code = 500

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class ValidationError(DeliveryError):
    """Malformed or out-of-range input."""
    status_code = 400


class NotFoundError(DeliveryError):
    status_code = 404


class ConflictError(DeliveryError):
    """Duplicate drone code, or drone not free at assignment time."""
    status_code = 409


class UnauthorizedError(DeliveryError):
    status_code = 401

    def __init__(self, reason: str = "Authentication required"):
        super().__init__(reason)


class ForbiddenError(DeliveryError):
    status_code = 403

    def __init__(self, reason: str = "Access denied"):
        super().__init__(reason)


class InternalError(DeliveryError):
    status_code = 500

    def __init__(self, reason: str = "Internal server error"):
        super().__init__(reason)
