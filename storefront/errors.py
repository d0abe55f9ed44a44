# storefront/errors.py
from typing import Optional


class StorefrontError(Exception):
    """Base class for errors raised by the storefront core."""


class InvalidInput(StorefrontError):
    """Malformed order request or an order update that breaks the data model."""


class InvalidTransition(InvalidInput):
    """Status update that would move an order backwards."""


class NotFound(StorefrontError):
    pass


class GatewayFailure(StorefrontError):
    """A call to the store or to the payments API failed.

    ``status_code`` and ``detail`` are filled in when the remote side answered
    with an error response.
    """

    def __init__(self, message: str, status_code: Optional[int] = None, detail: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail


class Unconfigured(StorefrontError):
    """A required deployment setting is missing (feature switched off)."""
