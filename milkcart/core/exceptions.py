"""
Domain exceptions raised by the service layer.

Services never return HTTP responses; they raise one of these and the API
layer maps the class to a status code (see ``http_status_for``).
"""
from typing import Optional, Dict, Any


class MilkCartError(Exception):
    """Base class for all business errors."""

    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(MilkCartError):
    """Malformed or missing input, invalid enum value, out-of-range date."""
    status_code = 400


class BusinessRuleError(MilkCartError):
    """Request is well formed but a business rule forbids it."""
    status_code = 400


class NotFoundError(MilkCartError):
    status_code = 404


class ConflictError(MilkCartError):
    """Duplicate record or a concurrent change got there first."""
    status_code = 409


class AuthenticationError(MilkCartError):
    status_code = 401


class PermissionDeniedError(MilkCartError):
    status_code = 403


class InsufficientStockError(BusinessRuleError):
    """Raised when a product cannot cover the requested quantity."""

    def __init__(self, product_name: str, available: int, required: int):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Required: {required}",
            details={"product": product_name, "available": available, "required": required},
        )


def http_status_for(exc: MilkCartError) -> int:
    return exc.status_code
