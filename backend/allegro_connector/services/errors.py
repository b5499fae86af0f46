"""Error taxonomy shared by the Allegro integration services.

Remote failures carry the HTTP status and the raw response body so callers
can tell an expired grant (re-authorize) from rejected data (fix the offer)
from an outage (try later).
"""

from typing import Any, Optional


class AllegroApiError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class AllegroAuthError(AllegroApiError):
    """401/403 from Allegro: token expired, revoked or missing scopes."""


class AllegroValidationError(AllegroApiError):
    """400/422 from Allegro. ``body`` holds the remote error list verbatim."""


class AllegroNotFoundError(AllegroApiError):
    pass


class AllegroTransientError(AllegroApiError):
    """5xx or a connection failure."""


class AllegroTimeoutError(AllegroTransientError):
    pass


class TokenExchangeError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


class OAuthRequiredError(Exception):
    """The user has to (re-)authorize the application in Settings."""

    default_message = (
        "OAuth authorization required or token expired. Please go to Settings "
        "and re-authorize the application to access your Allegro offers."
    )

    def __init__(self, message: Optional[str] = None, user_id: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.user_id = user_id


class OfferNotFoundError(Exception):
    def __init__(self, offer_id: str):
        super().__init__(f"Offer with ID {offer_id} not found")
        self.offer_id = offer_id


class OfferDataError(Exception):
    """Malformed manual input, rejected before any network call."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details


class WarehouseError(Exception):
    pass


class CatalogError(Exception):
    pass
