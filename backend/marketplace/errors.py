# Overview: Error taxonomy shared by services, routes, and the webhook dispatcher.

"""
Every domain failure is one of these classes. Services raise them; the
outermost handler (a route or run_operation) turns them into a Result and an
HTTP status. Messages are safe to show to users verbatim.
"""


class MarketplaceError(Exception):
    """Base class for expected, user-presentable failures."""
    status_code = 400


class UnauthorizedError(MarketplaceError):
    """No session or an invalid session."""
    status_code = 401


class ForbiddenError(MarketplaceError):
    """Authenticated, but the entity belongs to another store."""
    status_code = 403


class NotFoundError(MarketplaceError):
    status_code = 404


class ValidationError(MarketplaceError, ValueError):
    """400-level input problem (over-fulfillment, negative quantity, missing field)."""
    status_code = 400


class InsufficientStockError(MarketplaceError):
    """A reservation would take `available` below zero."""
    status_code = 409

    def __init__(self, message: str, *, variant_id: int | None = None, requested: int = 0, available: int = 0):
        super().__init__(message)
        self.variant_id = variant_id
        self.requested = requested
        self.available = available


class InvalidSignatureError(MarketplaceError):
    """Webhook payload failed signature verification. Never retried."""
    status_code = 400


class ConflictError(MarketplaceError, ValueError):
    """409-level business rule conflict (e.g., completing a completed draft)."""
    status_code = 409


class ProviderError(MarketplaceError):
    """The payment gateway call failed."""
    status_code = 502
