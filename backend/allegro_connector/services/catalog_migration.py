"""One-off migration of local products into the catalog and warehouse services.

Sources are the ``products`` table and Allegro offers that are not linked to
any product. Records are normalized (SKU trimmed and upper-cased, EAN reduced
to 8-14 digits), deduplicated by SKU/EAN with the same freshest-wins rule the
live stock sync uses, created or updated in the catalog, and their stock is
set in the default warehouse. A mapping file describing every migrated record
is written once at the end of a live run.
"""

import json
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from allegro_connector.config import settings
from allegro_connector.db_models import AllegroOffer, Product
from allegro_connector.services.catalog_client import CatalogClient
from allegro_connector.services.errors import CatalogError, WarehouseError
from allegro_connector.services.offer_transformer import raw_external_id
from allegro_connector.services.stock_reconciliation import (
    StockReport,
    report_from_offer,
    resolve_stock,
    resolve_stock_by_key,
)
from allegro_connector.services.warehouse_client import WarehouseClient
from allegro_connector.utils.logger import logger

SOURCE_PRODUCT = "Product"
SOURCE_OFFER = "AllegroOffer"


def normalize_sku(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    normalized = value.strip().upper()
    return normalized or None


def normalize_ean(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    digits = re.sub(r"\D", "", value)
    if len(digits) < 8 or len(digits) > 14:
        return None
    return digits


@dataclass
class MigrationRecord:
    source: str
    legacy_id: str
    sku: Optional[str]
    ean: Optional[str]
    name: Optional[str]
    stock_quantity: int
    updated_at: Optional[datetime] = None

    @property
    def dedupe_key(self) -> str:
        return self.sku or self.ean or f"__missing__{self.legacy_id}"

    def catalog_payload(self) -> Dict[str, Any]:
        return {
            "sku": self.sku or f"ALLEGRO-{self.legacy_id}",
            "title": self.name or "Product",
            "ean": self.ean,
            "isActive": True,
        }


@dataclass
class MigrationStats:
    total_records: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0
    stock_synced: int = 0
    stock_skipped: int = 0
    error_details: List[Dict[str, str]] = field(default_factory=list)


def dedupe_records(records: List[MigrationRecord]) -> List[MigrationRecord]:
    """Keep one record per SKU/EAN, chosen by freshest-wins on stock."""
    reports = [
        StockReport(key=record.dedupe_key, quantity=record.stock_quantity, updated_at=record.updated_at, source=str(i))
        for i, record in enumerate(records)
    ]
    winners = resolve_stock_by_key(reports)
    return [records[int(report.source)] for report in winners.values()]


class CatalogMigration:

    def __init__(
        self,
        db: Session,
        catalog_client: Optional[CatalogClient] = None,
        warehouse_client: Optional[WarehouseClient] = None,
        dry_run: bool = False,
        skip_stock: bool = False,
        mapping_path: Optional[str] = None,
    ):
        self.db = db
        self.catalog_client = catalog_client or CatalogClient()
        self.warehouse_client = warehouse_client or WarehouseClient()
        self.dry_run = dry_run
        self.skip_stock = skip_stock
        self.mapping_path = mapping_path or settings.MIGRATION_MAPPING_PATH
        self.default_warehouse_id: Optional[str] = None
        self.mappings: List[Dict[str, Any]] = []
        self.stats = MigrationStats()

    # ------------------------------------------------------------------
    # Record collection
    # ------------------------------------------------------------------

    def collect_records(self) -> List[MigrationRecord]:
        records: List[MigrationRecord] = []

        for product in self.db.query(Product).order_by(Product.created_at.asc()).all():
            reports = [report_from_offer(product.id, offer) for offer in product.offers]
            winner = resolve_stock(r for r in reports if r is not None)
            records.append(
                MigrationRecord(
                    source=SOURCE_PRODUCT,
                    legacy_id=product.id,
                    sku=normalize_sku(product.code or f"ALLEGRO-{product.id}"),
                    ean=normalize_ean(product.ean),
                    name=product.name,
                    stock_quantity=winner.quantity if winner else (product.stock_quantity or 0),
                    updated_at=(winner.updated_at if winner else None) or product.updated_at,
                )
            )

        unlinked = (
            self.db.query(AllegroOffer)
            .filter(AllegroOffer.product_id.is_(None))
            .order_by(AllegroOffer.created_at.asc())
            .all()
        )
        for offer in unlinked:
            records.append(
                MigrationRecord(
                    source=SOURCE_OFFER,
                    legacy_id=offer.id,
                    sku=normalize_sku(raw_external_id(offer.raw_data) or f"ALLEGRO-{offer.allegro_offer_id}"),
                    ean=None,
                    name=offer.title,
                    stock_quantity=offer.stock_quantity or 0,
                    updated_at=offer.updated_at or offer.last_synced_at,
                )
            )
        return records

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def _resolve_default_warehouse(self) -> None:
        if self.skip_stock or self.dry_run:
            return
        try:
            self.default_warehouse_id = await self.warehouse_client.get_default_warehouse_id()
        except WarehouseError as exc:
            logger.warning(f"Default warehouse not resolved, stock sync will be skipped: {exc}")
            self.default_warehouse_id = None

    async def run(self) -> MigrationStats:
        mode = "DRY-RUN" if self.dry_run else "LIVE"
        records = dedupe_records(self.collect_records())
        self.stats.total_records = len(records)
        logger.info(f"[{mode}] Migrating {len(records)} records to the catalog service")

        await self._resolve_default_warehouse()

        for index, record in enumerate(records, start=1):
            logger.info(f"[{index}/{len(records)}] {record.source} {record.legacy_id} sku={record.sku}")
            try:
                await self._migrate_record(record)
            except CatalogError as exc:
                self.stats.errors += 1
                self.stats.error_details.append(
                    {"legacy_id": record.legacy_id, "sku": record.sku or "", "error": str(exc)}
                )
                logger.error(f"Failed to migrate {record.source} {record.legacy_id}: {exc}")

        if not self.dry_run:
            self.db.commit()
        self.save_mappings()
        logger.info(
            f"[{mode}] Migration finished: created={self.stats.created} updated={self.stats.updated} "
            f"errors={self.stats.errors} stock_synced={self.stats.stock_synced} stock_skipped={self.stats.stock_skipped}"
        )
        return self.stats

    async def _migrate_record(self, record: MigrationRecord) -> None:
        existing = await self.catalog_client.find_product(record.sku, record.ean)
        payload = record.catalog_payload()

        if self.dry_run:
            catalog_product_id = existing["id"] if existing else f"dry-run-{record.legacy_id}"
        elif existing:
            catalog_product = await self.catalog_client.update_product(existing["id"], payload)
            catalog_product_id = (catalog_product or existing)["id"]
        else:
            catalog_product = await self.catalog_client.create_product(payload)
            if not catalog_product or not catalog_product.get("id"):
                raise CatalogError(f"Catalog service returned no id for sku {payload['sku']}")
            catalog_product_id = catalog_product["id"]

        if existing:
            self.stats.updated += 1
        else:
            self.stats.created += 1

        if record.source == SOURCE_PRODUCT and not self.dry_run:
            product = self.db.query(Product).filter(Product.id == record.legacy_id).first()
            if product:
                product.catalog_product_id = str(catalog_product_id)

        await self._sync_stock(str(catalog_product_id), record)

        self.mappings.append(
            {
                "source": record.source,
                "legacy_id": record.legacy_id,
                "sku": payload["sku"],
                "ean": record.ean,
                "catalog_product_id": str(catalog_product_id),
                "stock_quantity": record.stock_quantity,
            }
        )

    async def _sync_stock(self, catalog_product_id: str, record: MigrationRecord) -> None:
        if self.dry_run or self.skip_stock or not self.default_warehouse_id:
            self.stats.stock_skipped += 1
            return
        try:
            await self.warehouse_client.set_stock(
                catalog_product_id,
                self.default_warehouse_id,
                record.stock_quantity,
                reason=f"Initial migration from {record.source}",
            )
            self.stats.stock_synced += 1
        except WarehouseError as exc:
            self.stats.stock_skipped += 1
            logger.warning(f"Stock sync skipped for {catalog_product_id}: {exc}")

    def save_mappings(self) -> Optional[str]:
        if self.dry_run:
            logger.info(f"Dry-run: mapping not written (target: {self.mapping_path})")
            return None

        directory = os.path.dirname(self.mapping_path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        payload = {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "default_warehouse_id": self.default_warehouse_id,
            "total": len(self.mappings),
            "items": self.mappings,
        }
        with open(self.mapping_path, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
        logger.info(f"Mapping saved to {self.mapping_path}")
        return self.mapping_path
