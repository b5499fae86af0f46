#!/usr/bin/env python3
"""Migrate local products (and unlinked Allegro offers) to the catalog service.

For every record the catalog product is created or updated, its stock is set
in the default warehouse, and a mapping file is written at the end listing
legacy id, SKU/EAN, catalog product id and the stock that was sent.

Safe to re-run: existing catalog products are found by SKU, then EAN, and
updated in place.

Usage
  cd backend
  python scripts/migrate_products_to_catalog.py --dry-run
  python scripts/migrate_products_to_catalog.py --skip-stock --mapping-path tmp/migration/mapping.json
"""

import argparse
import asyncio
import sys
from pathlib import Path

SCRIPT_DIR = Path(__file__).resolve().parent
BACKEND_DIR = SCRIPT_DIR.parent
sys.path.insert(0, str(BACKEND_DIR))

from allegro_connector.database import SessionLocal  # noqa: E402
from allegro_connector.services.catalog_migration import CatalogMigration  # noqa: E402


async def run(dry_run: bool, skip_stock: bool, mapping_path: str = None) -> int:
    db = SessionLocal()
    try:
        migration = CatalogMigration(
            db,
            dry_run=dry_run,
            skip_stock=skip_stock,
            mapping_path=mapping_path,
        )
        stats = await migration.run()
    finally:
        db.close()

    print("=" * 60)
    print(f"Records:        {stats.total_records}")
    print(f"Created:        {stats.created}")
    print(f"Updated:        {stats.updated}")
    print(f"Errors:         {stats.errors}")
    print(f"Stock synced:   {stats.stock_synced}")
    print(f"Stock skipped:  {stats.stock_skipped}")
    print("=" * 60)
    for detail in stats.error_details:
        print(f"[ERROR] {detail['legacy_id']} sku={detail['sku']}: {detail['error']}")
    return 1 if stats.errors else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Migrate products to the catalog and warehouse services")
    parser.add_argument("--dry-run", action="store_true", help="Look up catalog products but create, update and write nothing")
    parser.add_argument("--skip-stock", action="store_true", help="Do not set warehouse stock")
    parser.add_argument("--mapping-path", default=None, help="Where to write the mapping JSON (default: MIGRATION_MAPPING_PATH)")
    args = parser.parse_args()

    if args.dry_run:
        print("Running in DRY-RUN mode - no changes will be made")
    sys.exit(asyncio.run(run(args.dry_run, args.skip_stock, args.mapping_path)))


if __name__ == "__main__":
    main()
