import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from allegro_connector.database import Base
from allegro_connector.db_models import AllegroOffer, Product  # noqa: F401
from allegro_connector.models.allegro import AllegroTokenResponse
from allegro_connector.services.allegro_api_client import OfferPage
from allegro_connector.services.errors import OAuthRequiredError


@pytest.fixture
def session_factory():
    """In-memory SQLite shared by every session the test opens."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def sample_payload(offer_id: str = "1001", **overrides: Any) -> Dict[str, Any]:
    """Allegro product-offer document with every field validation looks at."""
    payload = {
        "id": offer_id,
        "name": f"Offer {offer_id}",
        "category": {"id": "257931"},
        "description": {
            "sections": [
                {"items": [{"type": "TEXT", "content": "<p>First paragraph</p>"}]},
                {"items": [{"type": "IMAGE", "url": "https://img/x.jpg"}, {"type": "TEXT", "content": "<p>Second</p>"}]},
            ]
        },
        "sellingMode": {"format": "BUY_NOW", "price": {"amount": "199.90", "currency": "CZK"}},
        "stock": {"available": 5, "unit": "UNIT"},
        "images": [{"url": "https://img/a.jpg"}, {"url": "https://img/b.jpg"}, {"url": "https://img/c.jpg"}],
        "parameters": [{"id": "11323", "values": ["Nowy"]}],
        "publication": {"status": "ACTIVE"},
        "delivery": {"shippingRates": {"id": "rates-1"}},
        "payments": {"invoice": "VAT"},
        "external": {"id": "sku-001"},
    }
    payload.update(overrides)
    return payload


class FakeOAuthClient:
    """Stands in for AllegroOAuthClient; counts exchanges and can be paused."""

    def __init__(self, expires_in: int = 3600):
        self.expires_in = expires_in
        self.calls: List[str] = []
        self.gate: Optional[asyncio.Event] = None
        self.error: Optional[Exception] = None
        self._counter = 0

    async def _issue(self, grant: str, refresh_token: Optional[str] = None) -> AllegroTokenResponse:
        self.calls.append(grant)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        self._counter += 1
        return AllegroTokenResponse(
            access_token=f"{grant}-access-{self._counter}",
            expires_in=self.expires_in,
            refresh_token=f"refresh-{self._counter}" if grant != "client_credentials" else None,
            scope="allegro:api:sale:offers:read allegro:api:sale:offers:write",
        )

    async def request_client_credentials(self):
        return await self._issue("client_credentials")

    async def exchange_code(self, code, code_verifier, redirect_uri=None):
        return await self._issue("authorization_code")

    async def refresh(self, refresh_token):
        return await self._issue("refresh_token", refresh_token)


class FakeTokenManager:
    """Hands out numbered tokens; ``refresh_user_token`` bumps the number."""

    def __init__(self, fail_refresh: bool = False):
        self.version = 1
        self.refresh_calls = 0
        self.fail_refresh = fail_refresh

    async def get_access_token(self) -> str:
        return "app-token"

    async def get_user_access_token(self, user_id: str) -> str:
        return f"user-token-{self.version}"

    async def refresh_user_token(self, user_id: str) -> str:
        self.refresh_calls += 1
        if self.fail_refresh:
            raise OAuthRequiredError(user_id=user_id)
        self.version += 1
        return f"user-token-{self.version}"


class FakeApiClient:
    """In-memory Allegro offer API.

    ``failures`` maps a method name to a list of exceptions raised, in order,
    before the call succeeds.
    """

    def __init__(self, offers: Optional[List[Dict[str, Any]]] = None):
        self.offers: Dict[str, Dict[str, Any]] = {str(o["id"]): o for o in (offers or [])}
        self.calls: List[tuple] = []
        self.failures: Dict[str, List[Exception]] = {}
        self.fail_when = None

    def _maybe_fail(self, name: str, token: str, *args: Any) -> None:
        self.calls.append((name, token) + args)
        if self.fail_when is not None:
            exc = self.fail_when(name, token, *args)
            if exc is not None:
                raise exc
        queue = self.failures.get(name)
        if queue:
            raise queue.pop(0)

    async def list_offers(self, token, limit=100, offset=0):
        self._maybe_fail("list_offers", token, offset)
        listed = list(self.offers.values())
        return OfferPage(
            offers=[{"id": o["id"], "name": o.get("name")} for o in listed[offset:offset + limit]],
            total_count=len(listed),
        )

    async def get_offer(self, token, offer_id):
        self._maybe_fail("get_offer", token, offer_id)
        return dict(self.offers[offer_id])

    async def update_offer(self, token, offer_id, payload):
        self._maybe_fail("update_offer", token, offer_id, payload)
        return payload

    async def set_stock(self, token, offer_id, quantity):
        self._maybe_fail("set_stock", token, offer_id, quantity)
        return {"stock": {"available": quantity}}

    async def delete_offer(self, token, offer_id):
        self._maybe_fail("delete_offer", token, offer_id)
        self.offers.pop(offer_id, None)


class FakeWarehouseClient:
    def __init__(self, error: Optional[Exception] = None):
        self.error = error
        self.stock_calls: List[tuple] = []

    async def get_default_warehouse_id(self) -> str:
        return "wh-1"

    async def set_stock(self, product_id, warehouse_id, quantity, reason=None):
        self.stock_calls.append((product_id, warehouse_id, quantity))
        if self.error is not None:
            raise self.error
        return {"productId": product_id, "quantity": quantity}


class ManualClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def fake_api():
    return FakeApiClient()


@pytest.fixture
def fake_tokens():
    return FakeTokenManager()
