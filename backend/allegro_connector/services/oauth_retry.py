from typing import Awaitable, Callable, TypeVar

from allegro_connector.services.allegro_token_manager import AllegroTokenManager
from allegro_connector.services.errors import AllegroAuthError, OAuthRequiredError
from allegro_connector.utils.logger import logger

T = TypeVar("T")


class UserTokenSession:
    """Runs the Allegro calls of one logical operation with a user's token.

    The first 401/403 seen during the operation triggers a single forced
    refresh and a retry of the same call. The flag is never reset, so any
    later auth failure in the same operation raises :class:`OAuthRequiredError`.
    """

    def __init__(self, token_manager: AllegroTokenManager, user_id: str):
        self.token_manager = token_manager
        self.user_id = user_id
        self.refresh_attempted = False

    async def call(self, fn: Callable[[str], Awaitable[T]]) -> T:
        token = await self.token_manager.get_user_access_token(self.user_id)
        try:
            return await fn(token)
        except AllegroAuthError as exc:
            if self.refresh_attempted:
                logger.error(f"Allegro rejected the refreshed token for user {self.user_id}: HTTP {exc.status_code}")
                raise OAuthRequiredError(user_id=self.user_id) from exc
            self.refresh_attempted = True
            logger.warning(f"Allegro answered HTTP {exc.status_code} for user {self.user_id}, refreshing token once")

        token = await self.token_manager.refresh_user_token(self.user_id)
        try:
            return await fn(token)
        except AllegroAuthError as exc:
            logger.error(f"Allegro rejected the refreshed token for user {self.user_id}: HTTP {exc.status_code}")
            raise OAuthRequiredError(user_id=self.user_id) from exc
