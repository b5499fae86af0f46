"""Freshest-wins stock resolution.

When several sources report a stock quantity for the same product, the
report with the higher quantity wins; equal quantities go to the more recent
timestamp; a full tie keeps the report seen first. A missing timestamp counts
as older than any real one.

Both the live stock sync and the catalog migration resolve stock through
:func:`resolve_stock`.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional


@dataclass(frozen=True)
class StockReport:
    key: str
    quantity: int
    updated_at: Optional[datetime] = None
    source: Optional[str] = None


def _timestamp(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def freshest_wins(current: Optional[StockReport], candidate: StockReport) -> StockReport:
    if current is None:
        return candidate
    if candidate.quantity != current.quantity:
        return candidate if candidate.quantity > current.quantity else current
    if _timestamp(candidate.updated_at) > _timestamp(current.updated_at):
        return candidate
    return current


def resolve_stock(reports: Iterable[StockReport]) -> Optional[StockReport]:
    winner: Optional[StockReport] = None
    for report in reports:
        winner = freshest_wins(winner, report)
    return winner


def resolve_stock_by_key(reports: Iterable[StockReport]) -> Dict[str, StockReport]:
    resolved: Dict[str, StockReport] = {}
    for report in reports:
        resolved[report.key] = freshest_wins(resolved.get(report.key), report)
    return resolved


def report_from_offer(key: str, offer: Any) -> Optional[StockReport]:
    """Stock report of an offer row, or None when the offer has no stock value."""
    if offer.stock_quantity is None:
        return None
    return StockReport(
        key=key,
        quantity=int(offer.stock_quantity),
        updated_at=offer.updated_at or offer.last_synced_at,
        source=f"offer:{offer.allegro_offer_id}",
    )
