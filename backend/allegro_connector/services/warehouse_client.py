from typing import Any, Dict, List, Optional

import httpx

from allegro_connector.config import settings
from allegro_connector.services.errors import WarehouseError
from allegro_connector.utils.logger import logger


class WarehouseClient:
    """HTTP client for the warehouse stock service. Responses wrap payloads in ``data``."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        default_warehouse_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.WAREHOUSE_SERVICE_URL).rstrip("/")
        self.default_warehouse_id = default_warehouse_id or settings.DEFAULT_WAREHOUSE_ID
        self._transport = transport

    async def _request(self, method: str, path: str, json_body: Optional[Dict[str, Any]] = None) -> Any:
        try:
            async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
                response = await client.request(method, f"{self.base_url}{path}", json=json_body)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise WarehouseError(
                f"Warehouse service {method} {path} failed with HTTP {exc.response.status_code}: {exc.response.text[:500]}"
            ) from exc
        except httpx.RequestError as exc:
            raise WarehouseError(f"Warehouse service {method} {path} unreachable: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            return None
        return body.get("data") if isinstance(body, dict) else body

    async def set_stock(
        self,
        product_id: str,
        warehouse_id: str,
        quantity: int,
        reason: Optional[str] = None,
    ) -> Any:
        data = await self._request(
            "POST",
            "/api/stock/set",
            {"productId": product_id, "warehouseId": warehouse_id, "quantity": quantity, "reason": reason},
        )
        logger.info(f"Warehouse stock set product={product_id} warehouse={warehouse_id} quantity={quantity}")
        return data

    async def get_warehouses(self) -> List[Dict[str, Any]]:
        return await self._request("GET", "/api/warehouses") or []

    async def get_default_warehouse_id(self) -> str:
        if self.default_warehouse_id:
            return self.default_warehouse_id
        warehouses = await self.get_warehouses()
        if not warehouses or not warehouses[0].get("id"):
            raise WarehouseError("No warehouses available and DEFAULT_WAREHOUSE_ID is not set")
        self.default_warehouse_id = str(warehouses[0]["id"])
        return self.default_warehouse_id
