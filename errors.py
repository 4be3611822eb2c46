"""
Error taxonomy shared by the catalog, cart and auth layers.

Every error carries a ``kind`` that the API layer copies into the failure
envelope so clients can tell an expired session from a bad form field.
"""
from typing import Optional


class MarketplaceError(Exception):
    kind = "unexpected"
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(MarketplaceError):
    kind = "validation"
    default_message = "Invalid request"


class AuthenticationError(MarketplaceError):
    kind = "authentication"
    default_message = "Not Authorized. Please login again"


class AuthorizationError(MarketplaceError):
    kind = "authorization"
    default_message = "You can only modify your own products"


class NotFoundError(MarketplaceError):
    kind = "not_found"
    default_message = "Product not found"


class UnexpectedError(MarketplaceError):
    pass
