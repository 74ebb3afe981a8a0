from decimal import Decimal
from typing import Any, Dict, Optional


class EngineError(Exception):
    """
    Base class for every error the engine surfaces to its callers.
    `status_code` is what the HTTP layer answers with.
    """
    status_code: int = 500

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}


class ConfigurationError(EngineError):
    """Malformed schedule, settings or pricing rows. Fatal, needs an operator."""
    status_code = 500


class NotFoundError(EngineError):
    status_code = 404


class ValidationError(EngineError):
    """Malformed request input, rejected before touching the store."""
    status_code = 422


class ConflictError(EngineError):
    status_code = 409


class SlotUnavailable(ConflictError):
    """
    The requested range is taken (or no longer a valid slot).
    Callers must ask the guest to pick again; never auto-pick another slot.
    """


class PriceChanged(ConflictError):
    """Checkout-time price differs from the price the guest was shown."""

    def __init__(self, quoted_price: Decimal, current_price: Decimal):
        super().__init__(
            f"Price changed from {quoted_price} to {current_price}",
            {"quoted_price": str(quoted_price), "current_price": str(current_price)},
        )
        self.quoted_price = quoted_price
        self.current_price = current_price


class StoreError(EngineError):
    """The storage backend failed or answered with something unusable."""
    status_code = 502
