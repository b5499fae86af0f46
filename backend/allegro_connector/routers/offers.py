from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Query, Response, status
from sqlalchemy.orm import Session

from allegro_connector.database import get_db
from allegro_connector.dependencies import (
    SERVICE_ERRORS,
    get_current_user_id,
    get_import_service,
    get_sync_service,
    http_error,
)
from allegro_connector.models.allegro import (
    ApproveImportRequest,
    ImportPreview,
    ImportResult,
    OfferResponse,
    StockUpdate,
    SyncSource,
    ValidationResult,
)
from allegro_connector.services import offer_store
from allegro_connector.services.offer_export import export_csv
from allegro_connector.services.offer_import_service import OfferImportService
from allegro_connector.services.offer_sync_service import OfferSyncService
from allegro_connector.utils.logger import logger

router = APIRouter(prefix="/api/allegro/offers", tags=["allegro-offers"])


# ----------------------------------------------------------------------
# Import
# ----------------------------------------------------------------------

@router.get("/import/preview", response_model=ImportPreview)
async def preview_import(
    source: SyncSource = Query(SyncSource.ALLEGRO_API),
    user_id: str = Depends(get_current_user_id),
    importer: OfferImportService = Depends(get_import_service),
):
    """List the user's Allegro offers without storing anything."""
    try:
        return await importer.preview_import(user_id, source)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)


@router.post("/import/approve", response_model=ImportResult)
async def approve_import(
    request: ApproveImportRequest,
    source: SyncSource = Query(SyncSource.ALLEGRO_API),
    user_id: str = Depends(get_current_user_id),
    importer: OfferImportService = Depends(get_import_service),
    db: Session = Depends(get_db),
):
    try:
        return await importer.approve_import(db, user_id, request.offer_ids, source)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)


@router.post("/import", response_model=ImportResult)
async def import_all(
    source: SyncSource = Query(SyncSource.ALLEGRO_API),
    user_id: str = Depends(get_current_user_id),
    importer: OfferImportService = Depends(get_import_service),
    db: Session = Depends(get_db),
):
    try:
        return await importer.import_all(db, user_id, source)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)


@router.get("/import/sales-center/preview", response_model=ImportPreview)
async def preview_sales_center_import(
    user_id: str = Depends(get_current_user_id),
    importer: OfferImportService = Depends(get_import_service),
):
    try:
        return await importer.preview_import(user_id, SyncSource.SALES_CENTER)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)


@router.post("/import/sales-center/approve", response_model=ImportResult)
async def approve_sales_center_import(
    request: ApproveImportRequest,
    user_id: str = Depends(get_current_user_id),
    importer: OfferImportService = Depends(get_import_service),
    db: Session = Depends(get_db),
):
    try:
        return await importer.approve_import(db, user_id, request.offer_ids, SyncSource.SALES_CENTER)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)


@router.post("/import/sales-center", response_model=ImportResult)
async def import_sales_center(
    user_id: str = Depends(get_current_user_id),
    importer: OfferImportService = Depends(get_import_service),
    db: Session = Depends(get_db),
):
    try:
        return await importer.import_all(db, user_id, SyncSource.SALES_CENTER)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)


# ----------------------------------------------------------------------
# Export
# ----------------------------------------------------------------------

@router.get("/export/csv")
async def export_offers_csv(
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    content = export_csv(db)
    logger.info(f"CSV export requested by user {user_id}")
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="allegro-offers.csv"'},
    )


# ----------------------------------------------------------------------
# Single offer
# ----------------------------------------------------------------------

@router.get("/{offer_id}", response_model=OfferResponse)
async def get_offer(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    try:
        return offer_store.get_offer(db, offer_id)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)


@router.put("/{offer_id}", response_model=OfferResponse)
async def update_offer(
    offer_id: str,
    patch: Dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user_id),
    sync: OfferSyncService = Depends(get_sync_service),
    db: Session = Depends(get_db),
):
    """Save the change locally and push it to Allegro in the background."""
    try:
        return await sync.update_offer(db, offer_id, patch, user_id=user_id)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)


@router.put("/{offer_id}/stock", response_model=OfferResponse)
async def update_stock(
    offer_id: str,
    request: StockUpdate,
    user_id: str = Depends(get_current_user_id),
    sync: OfferSyncService = Depends(get_sync_service),
    db: Session = Depends(get_db),
):
    try:
        return await sync.update_stock(db, offer_id, request.quantity, user_id=user_id)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)


@router.post("/{offer_id}/validate", response_model=ValidationResult)
async def validate_offer(
    offer_id: str,
    refresh: bool = Query(False, description="Pull the current offer from Allegro before validating"),
    user_id: str = Depends(get_current_user_id),
    sync: OfferSyncService = Depends(get_sync_service),
    db: Session = Depends(get_db),
):
    try:
        return await sync.validate_offer(db, offer_id, user_id=user_id if refresh else None)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)


@router.post("/{offer_id}/sync-from-allegro", response_model=OfferResponse)
async def sync_from_allegro(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    sync: OfferSyncService = Depends(get_sync_service),
    db: Session = Depends(get_db),
):
    try:
        return await sync.sync_offer_from_allegro(db, offer_id, user_id)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)


@router.delete("/{offer_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_offer(
    offer_id: str,
    user_id: str = Depends(get_current_user_id),
    sync: OfferSyncService = Depends(get_sync_service),
    db: Session = Depends(get_db),
):
    try:
        await sync.delete_offer(db, offer_id, user_id=user_id)
    except SERVICE_ERRORS as exc:
        raise http_error(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
