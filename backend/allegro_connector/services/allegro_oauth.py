import base64
import hashlib
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from allegro_connector.config import settings
from allegro_connector.models.allegro import AllegroTokenResponse
from allegro_connector.services.errors import TokenExchangeError
from allegro_connector.utils.logger import logger, allegro_logger


def _mask_prefix(value: Optional[str], length: int = 6) -> str:
    if not value:
        return "<none>"
    return value[:length] + ("..." if len(value) > length else "")


@dataclass
class PkceChallenge:
    code_verifier: str
    code_challenge: str
    state: str


def generate_pkce() -> PkceChallenge:
    """Create a PKCE verifier/challenge pair (S256) and a random CSRF state."""
    code_verifier = base64.urlsafe_b64encode(secrets.token_bytes(32)).rstrip(b"=").decode("ascii")
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    code_challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
    state = secrets.token_hex(16)
    return PkceChallenge(code_verifier=code_verifier, code_challenge=code_challenge, state=state)


@dataclass
class PendingAuthorization:
    user_id: str
    code_verifier: str
    redirect_uri: Optional[str]
    created_at: float


class PendingAuthorizationStore:
    """In-process map of OAuth ``state`` -> PKCE verifier, consumed by the callback."""

    def __init__(self, ttl_seconds: int = 600):
        self.ttl_seconds = ttl_seconds
        self._pending: Dict[str, PendingAuthorization] = {}

    def add(self, user_id: str, pkce: PkceChallenge, redirect_uri: Optional[str] = None) -> None:
        self._purge()
        self._pending[pkce.state] = PendingAuthorization(
            user_id=user_id,
            code_verifier=pkce.code_verifier,
            redirect_uri=redirect_uri,
            created_at=time.monotonic(),
        )

    def pop(self, state: str) -> Optional[PendingAuthorization]:
        self._purge()
        return self._pending.pop(state, None)

    def _purge(self) -> None:
        cutoff = time.monotonic() - self.ttl_seconds
        for state in [s for s, p in self._pending.items() if p.created_at < cutoff]:
            self._pending.pop(state, None)


class AllegroOAuthClient:
    """Talks to the Allegro token endpoint.

    All three grant types share one request path; every non-200 answer and
    every transport failure surfaces as :class:`TokenExchangeError` carrying
    the status and body Allegro returned.
    """

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        token_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id or settings.allegro_client_id
        self.client_secret = client_secret or settings.allegro_client_secret
        self.token_url = token_url or settings.allegro_token_url
        self._transport = transport

    def _basic_auth_header(self) -> str:
        if not self.client_id or not self.client_secret:
            allegro_logger.log_allegro_event(
                "token_request_error",
                "Allegro credentials not configured",
                status="error",
                error="ALLEGRO_CLIENT_ID or ALLEGRO_CLIENT_SECRET not set",
            )
            raise TokenExchangeError("Allegro credentials not configured")
        credentials = f"{self.client_id}:{self.client_secret}"
        return "Basic " + base64.b64encode(credentials.encode()).decode()

    def get_authorization_url(
        self,
        code_challenge: str,
        state: str,
        redirect_uri: Optional[str] = None,
        scopes: Optional[List[str]] = None,
    ) -> str:
        redirect = redirect_uri or settings.allegro_redirect_uri
        if not self.client_id or not redirect:
            raise TokenExchangeError("Allegro client id or redirect URI not configured")

        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect,
            "code_challenge_method": "S256",
            "code_challenge": code_challenge,
            "state": state,
        }
        scopes = scopes if scopes is not None else settings.allegro_oauth_scopes
        if scopes:
            params["scope"] = " ".join(scopes)

        allegro_logger.log_allegro_event(
            "authorization_url_generated",
            f"Generated Allegro authorization URL ({settings.ALLEGRO_ENVIRONMENT})",
            request_data={"redirect_uri": redirect, "scopes": scopes, "state": state},
            status="success",
        )
        return f"{settings.allegro_authorize_url}?{urlencode(params)}"

    async def _token_request(self, grant: str, data: Dict[str, Any]) -> AllegroTokenResponse:
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
            "Authorization": self._basic_auth_header(),
        }

        allegro_logger.log_allegro_event(
            "token_request",
            f"Requesting Allegro token via {grant}",
            request_data=dict(data),
        )

        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.post(self.token_url, headers=headers, data=data)
        except httpx.RequestError as exc:
            error_msg = f"HTTP request failed during {grant} token request: {exc}"
            allegro_logger.log_allegro_event(
                "token_request_error",
                "HTTP request error during token request",
                status="error",
                error=error_msg,
            )
            raise TokenExchangeError(error_msg) from exc

        try:
            response_body: Any = response.json()
        except ValueError:
            response_body = response.text

        if response.status_code != 200:
            error_detail = response_body if isinstance(response_body, (dict, list)) else str(response_body)[:2000]
            allegro_logger.log_allegro_event(
                "token_request_failed",
                f"Allegro token endpoint answered {response.status_code} for {grant}",
                response_data={"status_code": response.status_code, "body": error_detail},
                status="error",
                error=str(error_detail)[:500],
            )
            raise TokenExchangeError(
                f"Failed to obtain Allegro token ({grant}): HTTP {response.status_code}",
                status_code=response.status_code,
                body=error_detail,
            )

        if not isinstance(response_body, dict) or not response_body.get("access_token"):
            raise TokenExchangeError(
                "Allegro token response missing access_token",
                status_code=response.status_code,
                body=response_body,
            )

        token = AllegroTokenResponse(**response_body)
        allegro_logger.log_allegro_event(
            "token_request_success",
            f"Obtained Allegro token via {grant}",
            response_data={
                "access_token": token.access_token,
                "expires_in": token.expires_in,
                "has_refresh_token": token.refresh_token is not None,
            },
            status="success",
        )
        return token

    async def request_client_credentials(self) -> AllegroTokenResponse:
        return await self._token_request("client_credentials", {"grant_type": "client_credentials"})

    async def exchange_code(
        self,
        code: str,
        code_verifier: str,
        redirect_uri: Optional[str] = None,
    ) -> AllegroTokenResponse:
        logger.info(f"Exchanging Allegro authorization code {_mask_prefix(code)}")
        return await self._token_request(
            "authorization_code",
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri or settings.allegro_redirect_uri or "",
                "code_verifier": code_verifier,
            },
        )

    async def refresh(self, refresh_token: str) -> AllegroTokenResponse:
        return await self._token_request(
            "refresh_token",
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
        )
