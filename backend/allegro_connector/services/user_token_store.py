from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from allegro_connector.database import SessionLocal
from allegro_connector.db_models import AllegroUserToken
from allegro_connector.utils import crypto
from allegro_connector.utils.logger import logger


@dataclass
class StoredGrant:
    access_token: Optional[str]
    refresh_token: Optional[str]
    expires_at: Optional[datetime]
    scopes: List[str]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UserTokenStore:
    """Encrypted persistence of per-user authorization-code grants.

    Each call opens and closes its own session so the token manager can be
    used from request handlers and background tasks alike.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal):
        self._session_factory = session_factory

    def load(self, user_id: str) -> Optional[StoredGrant]:
        db = self._session_factory()
        try:
            row = db.query(AllegroUserToken).filter(AllegroUserToken.user_id == user_id).first()
            if not row:
                return None
            access_token = crypto.decrypt(row.access_token)
            refresh_token = crypto.decrypt(row.refresh_token)
            if not access_token and not refresh_token:
                logger.warning(f"Stored Allegro grant for user {user_id} could not be decrypted")
                return None
            return StoredGrant(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=_as_utc(row.expires_at),
                scopes=(row.scopes or "").split(),
            )
        finally:
            db.close()

    def save(
        self,
        user_id: str,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: datetime,
        scopes: Optional[List[str]] = None,
    ) -> None:
        db = self._session_factory()
        try:
            row = db.query(AllegroUserToken).filter(AllegroUserToken.user_id == user_id).first()
            if not row:
                row = AllegroUserToken(user_id=user_id)
                db.add(row)
            row.access_token = crypto.encrypt(access_token)
            # Allegro rotates refresh tokens, but keep the old one if a response omits it.
            if refresh_token:
                row.refresh_token = crypto.encrypt(refresh_token)
            row.expires_at = expires_at
            row.scopes = " ".join(scopes or [])
            db.commit()
            logger.info(f"Saved Allegro grant for user {user_id}, expires at {expires_at.isoformat()}")
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def delete(self, user_id: str) -> bool:
        db = self._session_factory()
        try:
            deleted = db.query(AllegroUserToken).filter(AllegroUserToken.user_id == user_id).delete()
            db.commit()
            return bool(deleted)
        finally:
            db.close()
