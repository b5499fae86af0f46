"""Access-token lifecycle for the Allegro REST API.

Two kinds of grants are managed:

* the application token (``client_credentials``), cached under a single
  global key;
* per-user tokens (``authorization_code`` + ``refresh_token``), cached by
  user id and persisted encrypted through :class:`UserTokenStore`.

A cached token is handed out until ``now >= expires_at - safety_margin``.
At most one token request per key is in flight at any time: concurrent
callers await the same task and all receive the same token or the same
exception. Duplicate refreshes against Allegro would rotate the refresh
token twice and invalidate one of them.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from allegro_connector.config import settings
from allegro_connector.models.allegro import AllegroTokenResponse
from allegro_connector.services.allegro_oauth import AllegroOAuthClient
from allegro_connector.services.errors import OAuthRequiredError, TokenExchangeError
from allegro_connector.services.user_token_store import UserTokenStore
from allegro_connector.utils.logger import logger, token_fingerprint

APP_TOKEN_KEY = "__app__"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class CachedToken:
    access_token: str
    expires_at: datetime  # UTC
    refresh_token: Optional[str] = None
    scopes: List[str] = field(default_factory=list)


class AllegroTokenManager:

    def __init__(
        self,
        oauth_client: Optional[AllegroOAuthClient] = None,
        token_store: Optional[UserTokenStore] = None,
        safety_margin_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.oauth_client = oauth_client or AllegroOAuthClient()
        self.token_store = token_store
        self.safety_margin = timedelta(
            seconds=settings.TOKEN_SAFETY_MARGIN_SECONDS if safety_margin_seconds is None else safety_margin_seconds
        )
        self._clock = clock
        self._cache: Dict[str, CachedToken] = {}
        self._inflight: Dict[str, "asyncio.Future[CachedToken]"] = {}

    # ------------------------------------------------------------------
    # Cache helpers
    # ------------------------------------------------------------------

    def _is_fresh(self, entry: Optional[CachedToken]) -> bool:
        return entry is not None and self._clock() < entry.expires_at - self.safety_margin

    def _to_cached(self, token: AllegroTokenResponse, previous_refresh: Optional[str] = None) -> CachedToken:
        return CachedToken(
            access_token=token.access_token,
            expires_at=self._clock() + timedelta(seconds=token.expires_in),
            refresh_token=token.refresh_token or previous_refresh,
            scopes=(token.scope or "").split(),
        )

    async def _single_flight(self, key: str, factory: Callable[[], Awaitable[CachedToken]]) -> CachedToken:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task

            def _release(done, key=key):
                if self._inflight.get(key) is done:
                    self._inflight.pop(key, None)

            task.add_done_callback(_release)
        else:
            logger.info(f"Joining in-flight Allegro token request for key={key}")
        # shield: a cancelled waiter must not cancel the exchange other callers wait on
        return await asyncio.shield(task)

    def invalidate(self, key: str) -> None:
        self._cache.pop(key, None)

    # ------------------------------------------------------------------
    # Application token
    # ------------------------------------------------------------------

    async def get_access_token(self) -> str:
        entry = self._cache.get(APP_TOKEN_KEY)
        if self._is_fresh(entry):
            return entry.access_token
        entry = await self._single_flight(APP_TOKEN_KEY, self._fetch_app_token)
        return entry.access_token

    async def _fetch_app_token(self) -> CachedToken:
        token = await self.oauth_client.request_client_credentials()
        entry = self._to_cached(token)
        self._cache[APP_TOKEN_KEY] = entry
        logger.info(
            f"Cached Allegro application token token_hash={token_fingerprint(entry.access_token)} "
            f"expires_at={entry.expires_at.isoformat()}"
        )
        return entry

    # ------------------------------------------------------------------
    # User tokens
    # ------------------------------------------------------------------

    async def get_user_access_token(self, user_id: str) -> str:
        entry = self._cache.get(user_id)
        if self._is_fresh(entry):
            return entry.access_token
        entry = await self._single_flight(user_id, lambda: self._load_or_refresh(user_id))
        return entry.access_token

    async def refresh_user_token(self, user_id: str) -> str:
        """Force a refresh-token exchange, ignoring whatever is cached.

        If an exchange for this user is already running, its result is used
        instead of starting a second one.
        """
        if user_id in self._inflight:
            entry = await self._single_flight(user_id, lambda: self._load_or_refresh(user_id))
            return entry.access_token

        refresh_token = self._known_refresh_token(user_id)
        if not refresh_token:
            raise OAuthRequiredError(user_id=user_id)
        self.invalidate(user_id)
        logger.info(f"Forcing Allegro token refresh for user {user_id}")
        entry = await self._single_flight(user_id, lambda: self._refresh(user_id, refresh_token))
        return entry.access_token

    def _known_refresh_token(self, user_id: str) -> Optional[str]:
        entry = self._cache.get(user_id) or self._entry_from_store(user_id)
        return entry.refresh_token if entry else None

    def _entry_from_store(self, user_id: str) -> Optional[CachedToken]:
        stored = self.token_store.load(user_id) if self.token_store is not None else None
        if stored is None:
            return None
        return CachedToken(
            access_token=stored.access_token or "",
            expires_at=stored.expires_at or self._clock(),
            refresh_token=stored.refresh_token,
            scopes=stored.scopes,
        )

    async def _load_or_refresh(self, user_id: str) -> CachedToken:
        entry = self._cache.get(user_id)
        if entry is None:
            entry = self._entry_from_store(user_id)
            if entry is not None and entry.access_token and self._is_fresh(entry):
                self._cache[user_id] = entry
                return entry

        if entry is None or not entry.refresh_token:
            raise OAuthRequiredError(user_id=user_id)
        return await self._refresh(user_id, entry.refresh_token)

    async def _refresh(self, user_id: str, refresh_token: str) -> CachedToken:
        try:
            token = await self.oauth_client.refresh(refresh_token)
        except TokenExchangeError as exc:
            if exc.status_code in (400, 401):
                # invalid_grant: the refresh token was revoked or has expired
                logger.warning(f"Allegro refresh token rejected for user {user_id}: HTTP {exc.status_code}")
                self.invalidate(user_id)
                raise OAuthRequiredError(user_id=user_id) from exc
            raise
        entry = self._to_cached(token, previous_refresh=refresh_token)
        self._store_user_entry(user_id, entry)
        logger.info(
            f"Refreshed Allegro token for user {user_id} token_hash={token_fingerprint(entry.access_token)}"
        )
        return entry

    def _store_user_entry(self, user_id: str, entry: CachedToken) -> None:
        self._cache[user_id] = entry
        if self.token_store is not None:
            self.token_store.save(
                user_id,
                access_token=entry.access_token,
                refresh_token=entry.refresh_token,
                expires_at=entry.expires_at,
                scopes=entry.scopes,
            )

    async def authorize_user(
        self,
        user_id: str,
        code: str,
        code_verifier: str,
        redirect_uri: Optional[str] = None,
    ) -> CachedToken:
        """Exchange an authorization code and start caching the user's grant."""
        token = await self.oauth_client.exchange_code(code, code_verifier, redirect_uri)
        entry = self._to_cached(token)
        self._store_user_entry(user_id, entry)
        logger.info(f"Authorized Allegro user {user_id} token_hash={token_fingerprint(entry.access_token)}")
        return entry

    def revoke(self, user_id: str) -> None:
        self.invalidate(user_id)
        if self.token_store is not None:
            self.token_store.delete(user_id)
        logger.info(f"Revoked Allegro grant for user {user_id}")
