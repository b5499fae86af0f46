import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session, joinedload

from allegro_connector.db_models import AllegroOffer, SyncJob
from allegro_connector.models.allegro import SyncStatus, ValidationResult
from allegro_connector.services.errors import OfferNotFoundError

# Columns a local patch may write directly. ``attributes`` only lives in raw_data.
PATCHABLE_COLUMNS = (
    "title",
    "description",
    "category_id",
    "price",
    "currency",
    "stock_quantity",
    "images",
    "status",
    "publication_status",
    "delivery_options",
    "payment_options",
)

IMPORTED_COLUMNS = PATCHABLE_COLUMNS + ("raw_data",)


def get_offer(db: Session, offer_id: str) -> AllegroOffer:
    offer = db.query(AllegroOffer).filter(AllegroOffer.id == offer_id).first()
    if not offer:
        raise OfferNotFoundError(offer_id)
    return offer


def find_by_external_id(db: Session, allegro_offer_id: str) -> Optional[AllegroOffer]:
    return db.query(AllegroOffer).filter(AllegroOffer.allegro_offer_id == allegro_offer_id).first()


def upsert_offer(db: Session, data: Dict[str, Any], sync_source: str) -> Tuple[AllegroOffer, bool]:
    """Insert or update the row for ``data["allegro_offer_id"]``.

    The update path keeps the local id and local-only fields such as the
    product link. Returns ``(offer, created)``; the caller commits.
    """
    external_id = data["allegro_offer_id"]
    offer = find_by_external_id(db, external_id)
    created = offer is None
    if created:
        offer = AllegroOffer(allegro_offer_id=external_id)
        db.add(offer)

    for column in IMPORTED_COLUMNS:
        if column in data:
            setattr(offer, column, data[column])

    offer.sync_status = SyncStatus.SYNCED.value
    offer.sync_source = sync_source
    offer.sync_error = None
    offer.last_synced_at = datetime.now(timezone.utc)
    db.flush()
    return offer, created


def apply_local_patch(offer: AllegroOffer, patch: Dict[str, Any]) -> None:
    for column in PATCHABLE_COLUMNS:
        if column in patch:
            # An empty image list keeps the current images, locally as well as on Allegro.
            if column == "images" and not patch[column]:
                continue
            setattr(offer, column, patch[column])


def save_validation(db: Session, offer: AllegroOffer, result: ValidationResult) -> None:
    offer.validation_status = result.status.value
    offer.validation_errors = [issue.model_dump() for issue in result.errors]
    offer.last_validated_at = datetime.now(timezone.utc)
    db.flush()


def list_for_export(db: Session) -> List[AllegroOffer]:
    return (
        db.query(AllegroOffer)
        .options(joinedload(AllegroOffer.product))
        .order_by(AllegroOffer.created_at.desc(), AllegroOffer.allegro_offer_id.desc())
        .all()
    )


def list_linked_offers(db: Session, product_id: str) -> List[AllegroOffer]:
    return db.query(AllegroOffer).filter(AllegroOffer.product_id == product_id).all()


def record_sync_job(
    db: Session,
    *,
    user_id: str,
    job_type: str,
    job_status: str,
    sync_source: str,
    started_at: datetime,
    records_synced: int,
    records_failed: int,
    error_message: Optional[str] = None,
    sync_params: Optional[Dict[str, Any]] = None,
) -> SyncJob:
    job = SyncJob(
        user_id=user_id,
        job_type=job_type,
        job_status=job_status,
        sync_source=sync_source,
        started_at=started_at,
        completed_at=datetime.now(timezone.utc),
        records_synced=records_synced,
        records_failed=records_failed,
        error_message=error_message,
        sync_params=json.dumps(sync_params) if sync_params is not None else None,
    )
    db.add(job)
    db.commit()
    return job
