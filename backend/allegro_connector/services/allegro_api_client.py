from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from allegro_connector.config import settings
from allegro_connector.services.errors import (
    AllegroApiError,
    AllegroAuthError,
    AllegroNotFoundError,
    AllegroTimeoutError,
    AllegroTransientError,
    AllegroValidationError,
)
from allegro_connector.utils.logger import logger

ALLEGRO_MEDIA_TYPE = "application/vnd.allegro.public.v1+json"


@dataclass
class OfferPage:
    offers: List[Dict[str, Any]] = field(default_factory=list)
    total_count: Optional[int] = None


class AllegroApiClient:
    """Stateless wrapper over the Allegro offer endpoints.

    Every call takes the bearer token explicitly and performs exactly one
    HTTP request. Non-2xx answers are raised as the matching
    :class:`AllegroApiError` subclass with the status code and decoded body
    attached; retrying is left to the caller.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.allegro_api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.ALLEGRO_REQUEST_TIMEOUT_SECONDS
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        token: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": ALLEGRO_MEDIA_TYPE,
        }
        if json_body is not None:
            headers["Content-Type"] = ALLEGRO_MEDIA_TYPE

        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(method, url, headers=headers, params=params, json=json_body)
        except httpx.TimeoutException as exc:
            logger.warning(f"Allegro {method} {path} timed out after {self.timeout}s")
            raise AllegroTimeoutError(f"Allegro request timed out: {method} {path}") from exc
        except httpx.RequestError as exc:
            logger.warning(f"Allegro {method} {path} failed: {type(exc).__name__}: {exc}")
            raise AllegroTransientError(f"Allegro request failed: {exc}") from exc

        if response.status_code == 204 or not response.content:
            body: Any = None
        else:
            try:
                body = response.json()
            except ValueError:
                body = response.text

        if response.status_code >= 400:
            self._raise_for_status(method, path, response.status_code, body)
        return body

    @staticmethod
    def _raise_for_status(method: str, path: str, status_code: int, body: Any) -> None:
        message = f"Allegro API {method} {path} failed with HTTP {status_code}"
        logger.error(f"{message}: {str(body)[:1000]}")
        if status_code in (401, 403):
            raise AllegroAuthError(message, status_code=status_code, body=body)
        if status_code in (400, 422):
            raise AllegroValidationError(message, status_code=status_code, body=body)
        if status_code == 404:
            raise AllegroNotFoundError(message, status_code=status_code, body=body)
        if status_code == 429 or status_code >= 500:
            raise AllegroTransientError(message, status_code=status_code, body=body)
        raise AllegroApiError(message, status_code=status_code, body=body)

    async def list_offers(self, token: str, limit: int = 100, offset: int = 0) -> OfferPage:
        body = await self._request("GET", "/sale/offers", token, params={"limit": limit, "offset": offset})
        body = body or {}
        offers = body.get("offers") or []
        total = body.get("totalCount")
        return OfferPage(offers=offers, total_count=int(total) if total is not None else None)

    async def get_offer(self, token: str, offer_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/sale/product-offers/{offer_id}", token)

    async def create_offer(self, token: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/sale/product-offers", token, json_body=payload)

    async def update_offer(self, token: str, offer_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", f"/sale/product-offers/{offer_id}", token, json_body=payload)

    async def delete_offer(self, token: str, offer_id: str) -> None:
        await self._request("DELETE", f"/sale/offers/{offer_id}", token)

    async def set_stock(self, token: str, offer_id: str, quantity: int) -> Dict[str, Any]:
        return await self._request(
            "PATCH",
            f"/sale/product-offers/{offer_id}",
            token,
            json_body={"stock": {"available": quantity}},
        )
