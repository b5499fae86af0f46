from pydantic_settings import BaseSettings
from typing import Optional
import os
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    SECRET_KEY: str = "your-secret-key-change-in-production"
    JWT_SECRET: Optional[str] = None

    @property
    def secret_key(self) -> str:
        return self.JWT_SECRET or self.SECRET_KEY

    # Local SQLite is fine for development; production points this at Postgres.
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./allegro_connector.db")

    ALLEGRO_ENVIRONMENT: str = "sandbox"

    ALLEGRO_SANDBOX_CLIENT_ID: Optional[str] = None
    ALLEGRO_SANDBOX_CLIENT_SECRET: Optional[str] = None
    ALLEGRO_SANDBOX_REDIRECT_URI: Optional[str] = None

    ALLEGRO_PRODUCTION_CLIENT_ID: Optional[str] = None
    ALLEGRO_PRODUCTION_CLIENT_SECRET: Optional[str] = None
    ALLEGRO_PRODUCTION_REDIRECT_URI: Optional[str] = None

    # Comma-separated list. When empty the authorize URL carries no scope
    # parameter and Allegro grants the scopes configured for the app.
    ALLEGRO_OAUTH_SCOPES: Optional[str] = None

    # Per-attempt timeout for Allegro REST calls. Offer creation can be slow.
    ALLEGRO_REQUEST_TIMEOUT_SECONDS: float = 60.0

    # Tokens are refreshed this many seconds before they actually expire.
    TOKEN_SAFETY_MARGIN_SECONDS: int = 300

    OFFERS_PAGE_LIMIT: int = 100

    # Background propagation: additional attempts after a transient failure,
    # waiting attempt * SYNC_RETRY_BACKOFF_SECONDS before each one (5s, 10s).
    SYNC_MAX_RETRIES: int = 2
    SYNC_RETRY_BACKOFF_SECONDS: float = 5.0

    PRICE_CURRENCY_TARGET: str = "CZK"

    WAREHOUSE_SERVICE_URL: str = "http://warehouse-microservice:3201"
    DEFAULT_WAREHOUSE_ID: Optional[str] = None
    CATALOG_SERVICE_URL: str = "http://catalog-microservice:3200"
    MIGRATION_MAPPING_PATH: str = "tmp/migration/allegro-catalog-mapping.json"

    ALLOWED_ORIGINS: str = "http://localhost:5173,http://localhost:3000"

    class Config:
        env_file = None
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def allegro_client_id(self) -> Optional[str]:
        if self.ALLEGRO_ENVIRONMENT == "sandbox":
            return self.ALLEGRO_SANDBOX_CLIENT_ID
        return self.ALLEGRO_PRODUCTION_CLIENT_ID

    @property
    def allegro_client_secret(self) -> Optional[str]:
        if self.ALLEGRO_ENVIRONMENT == "sandbox":
            return self.ALLEGRO_SANDBOX_CLIENT_SECRET
        return self.ALLEGRO_PRODUCTION_CLIENT_SECRET

    @property
    def allegro_redirect_uri(self) -> Optional[str]:
        if self.ALLEGRO_ENVIRONMENT == "sandbox":
            return self.ALLEGRO_SANDBOX_REDIRECT_URI
        return self.ALLEGRO_PRODUCTION_REDIRECT_URI

    @property
    def allegro_api_base_url(self) -> str:
        if self.ALLEGRO_ENVIRONMENT == "sandbox":
            return "https://api.allegro.pl.allegrosandbox.pl"
        return "https://api.allegro.pl"

    @property
    def allegro_auth_base_url(self) -> str:
        if self.ALLEGRO_ENVIRONMENT == "sandbox":
            return "https://allegro.pl.allegrosandbox.pl/auth/oauth"
        return "https://allegro.pl/auth/oauth"

    @property
    def allegro_token_url(self) -> str:
        return f"{self.allegro_auth_base_url}/token"

    @property
    def allegro_authorize_url(self) -> str:
        return f"{self.allegro_auth_base_url}/authorize"

    @property
    def allegro_oauth_scopes(self) -> list:
        if not self.ALLEGRO_OAUTH_SCOPES:
            return []
        return [s.strip() for s in self.ALLEGRO_OAUTH_SCOPES.split(",") if s.strip()]


settings = Settings()
