import csv
import io
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from allegro_connector.services import offer_store

CSV_HEADERS = [
    "Allegro Offer ID",
    "Title",
    "Price",
    "Currency",
    "Stock Quantity",
    "Status",
    "Publication Status",
    "Category ID",
    "Product Code",
    "Product Name",
    "Created At",
    "Last Synced At",
]


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def offer_row(offer) -> List[str]:
    product = offer.product
    return [
        _cell(offer.allegro_offer_id),
        _cell(offer.title),
        _cell(offer.price),
        _cell(offer.currency),
        _cell(offer.stock_quantity),
        _cell(offer.status),
        _cell(offer.publication_status),
        _cell(offer.category_id),
        _cell(product.code if product else None),
        _cell(product.name if product else None),
        _cell(offer.created_at),
        _cell(offer.last_synced_at),
    ]


def render_csv(rows: List[List[str]], headers: Optional[List[str]] = None) -> str:
    """Every field double-quoted, embedded quotes doubled, rows joined by ``\\n``."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(headers or CSV_HEADERS)
    writer.writerows(rows)
    return buffer.getvalue().rstrip("\n")


def export_csv(db: Session) -> str:
    """All stored offers, newest first."""
    return render_csv([offer_row(offer) for offer in offer_store.list_for_export(db)])
