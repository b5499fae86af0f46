from sqlalchemy import Column, String, DateTime, Text
from sqlalchemy.sql import func
from allegro_connector.database import Base


class AllegroUserToken(Base):
    """Authorization-code grant of one user. Token columns hold ``ENC:v1:`` ciphertext."""

    __tablename__ = "allegro_user_tokens"

    user_id = Column(String(100), primary_key=True)
    access_token = Column(Text)
    refresh_token = Column(Text)
    expires_at = Column(DateTime(timezone=True))
    scopes = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
