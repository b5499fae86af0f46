from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from allegro_connector.dependencies import (
    SERVICE_ERRORS,
    get_current_user_id,
    get_oauth_client,
    get_pending_authorizations,
    get_token_manager,
    http_error,
)
from allegro_connector.models.allegro import AllegroAuthorizationUrl
from allegro_connector.services.allegro_oauth import (
    AllegroOAuthClient,
    PendingAuthorizationStore,
    generate_pkce,
)
from allegro_connector.services.allegro_token_manager import AllegroTokenManager
from allegro_connector.utils.logger import allegro_logger, logger

router = APIRouter(prefix="/api/allegro/oauth", tags=["allegro-oauth"])


@router.get("/authorize", response_model=AllegroAuthorizationUrl)
async def authorize(
    redirect_uri: Optional[str] = Query(None),
    user_id: str = Depends(get_current_user_id),
    oauth_client: AllegroOAuthClient = Depends(get_oauth_client),
    pending: PendingAuthorizationStore = Depends(get_pending_authorizations),
):
    """Start the authorization-code flow (PKCE, S256)."""
    pkce = generate_pkce()
    try:
        url = oauth_client.get_authorization_url(pkce.code_challenge, pkce.state, redirect_uri)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)
    pending.add(user_id, pkce, redirect_uri)
    return AllegroAuthorizationUrl(url=url, state=pkce.state)


@router.get("/callback")
async def callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    pending: PendingAuthorizationStore = Depends(get_pending_authorizations),
    token_manager: AllegroTokenManager = Depends(get_token_manager),
):
    if error:
        allegro_logger.log_allegro_event("authorization_denied", "Allegro authorization denied", status="error", error=error)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "AUTHORIZATION_DENIED", "message": error, "details": None},
        )
    if not code or not state:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_CALLBACK", "message": "code and state are required", "details": None},
        )

    authorization = pending.pop(state)
    if authorization is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_STATE", "message": "Unknown or expired OAuth state", "details": None},
        )

    try:
        entry = await token_manager.authorize_user(
            authorization.user_id,
            code,
            authorization.code_verifier,
            authorization.redirect_uri,
        )
    except SERVICE_ERRORS as exc:
        raise http_error(exc)

    logger.info(f"Allegro authorization completed for user {authorization.user_id}")
    return {
        "authorized": True,
        "user_id": authorization.user_id,
        "expires_at": entry.expires_at.isoformat(),
        "scopes": entry.scopes,
    }


@router.post("/revoke")
async def revoke(
    user_id: str = Depends(get_current_user_id),
    token_manager: AllegroTokenManager = Depends(get_token_manager),
):
    token_manager.revoke(user_id)
    return {"revoked": True}


@router.get("/logs")
async def get_connection_logs(
    limit: Optional[int] = Query(100, description="Number of logs to retrieve"),
    user_id: str = Depends(get_current_user_id),
):
    logs = allegro_logger.get_logs(limit=limit)
    return {
        "logs": logs,
        "total": len(logs)
    }


@router.delete("/logs")
async def clear_connection_logs(user_id: str = Depends(get_current_user_id)):
    allegro_logger.clear_logs()
    return {"message": "Logs cleared successfully"}
