from functools import lru_cache
from typing import Optional

from fastapi import Header, HTTPException, status

from allegro_connector.services.allegro_api_client import AllegroApiClient
from allegro_connector.services.allegro_oauth import AllegroOAuthClient, PendingAuthorizationStore
from allegro_connector.services.allegro_token_manager import AllegroTokenManager
from allegro_connector.services.errors import (
    AllegroApiError,
    AllegroTransientError,
    AllegroValidationError,
    OAuthRequiredError,
    OfferDataError,
    OfferNotFoundError,
    TokenExchangeError,
)
from allegro_connector.services.offer_import_service import OfferImportService
from allegro_connector.services.offer_sync_service import OfferSyncService
from allegro_connector.services.user_token_store import UserTokenStore
from allegro_connector.services.warehouse_client import WarehouseClient

SERVICE_ERRORS = (
    OfferNotFoundError,
    OAuthRequiredError,
    OfferDataError,
    AllegroApiError,
    TokenExchangeError,
)


@lru_cache
def get_oauth_client() -> AllegroOAuthClient:
    return AllegroOAuthClient()


@lru_cache
def get_pending_authorizations() -> PendingAuthorizationStore:
    return PendingAuthorizationStore()


@lru_cache
def get_token_manager() -> AllegroTokenManager:
    return AllegroTokenManager(oauth_client=get_oauth_client(), token_store=UserTokenStore())


@lru_cache
def get_api_client() -> AllegroApiClient:
    return AllegroApiClient()


@lru_cache
def get_import_service() -> OfferImportService:
    return OfferImportService(get_api_client(), get_token_manager())


@lru_cache
def get_sync_service() -> OfferSyncService:
    return OfferSyncService(get_api_client(), get_token_manager(), WarehouseClient())


def get_current_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Dashboard users are authenticated upstream; the gateway forwards the id."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "UNAUTHENTICATED", "message": "X-User-Id header is required"},
        )
    return x_user_id


def http_error(exc: Exception) -> HTTPException:
    """Translate service exceptions to HTTP errors with a ``{code, message, details}`` detail."""
    if isinstance(exc, OfferNotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": "OFFER_NOT_FOUND", "message": str(exc), "details": {"offer_id": exc.offer_id}},
        )
    if isinstance(exc, OAuthRequiredError):
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"code": "OAUTH_REQUIRED", "message": exc.message, "details": None},
        )
    if isinstance(exc, OfferDataError):
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_OFFER_DATA", "message": exc.message, "details": exc.details},
        )
    if isinstance(exc, AllegroValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"code": "REMOTE_VALIDATION_ERROR", "message": exc.message, "details": exc.body},
        )
    if isinstance(exc, AllegroTransientError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"code": "ALLEGRO_UNAVAILABLE", "message": exc.message, "details": None},
        )
    if isinstance(exc, (AllegroApiError, TokenExchangeError)):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"code": "ALLEGRO_ERROR", "message": exc.message, "details": exc.body},
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"code": "INTERNAL_ERROR", "message": str(exc), "details": None},
    )
