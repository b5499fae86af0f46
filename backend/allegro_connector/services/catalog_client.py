from typing import Any, Dict, Optional

import httpx

from allegro_connector.config import settings
from allegro_connector.services.errors import CatalogError


class CatalogClient:
    """HTTP client for the product catalog service (``{"success", "data"}`` envelopes)."""

    def __init__(self, base_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or settings.CATALOG_SERVICE_URL).rstrip("/")
        self._transport = transport

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        allow_404: bool = False,
    ) -> Any:
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.request(method, f"{self.base_url}{path}", params=params, json=json_body)
        except httpx.RequestError as exc:
            raise CatalogError(f"Catalog service {method} {path} unreachable: {exc}") from exc

        if allow_404 and response.status_code == 404:
            return None
        if response.status_code >= 400:
            try:
                message = response.json().get("message") or response.text
            except ValueError:
                message = response.text
            raise CatalogError(f"Catalog service {method} {path} failed with HTTP {response.status_code}: {message}")

        try:
            body = response.json()
        except ValueError:
            return None
        return body.get("data") if isinstance(body, dict) else body

    async def find_by_sku(self, sku: str) -> Optional[Dict[str, Any]]:
        return await self._request("GET", f"/api/products/sku/{sku}", allow_404=True)

    async def find_by_ean(self, ean: str) -> Optional[Dict[str, Any]]:
        items = await self._request("GET", "/api/products", params={"search": ean, "limit": 100}) or []
        return next((item for item in items if item.get("ean") == ean), None)

    async def find_product(self, sku: Optional[str], ean: Optional[str]) -> Optional[Dict[str, Any]]:
        if sku:
            found = await self.find_by_sku(sku)
            if found:
                return found
        if ean:
            return await self.find_by_ean(ean)
        return None

    async def create_product(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("POST", "/api/products", json_body=payload)

    async def update_product(self, product_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PUT", f"/api/products/{product_id}", json_body=payload)
