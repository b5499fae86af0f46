from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from allegro_connector.config import settings
from allegro_connector.db_models import AllegroOffer
from allegro_connector.models.allegro import (
    ImportPreview,
    ImportResult,
    OfferPreviewItem,
    SyncSource,
)
from allegro_connector.services import offer_store
from allegro_connector.services.allegro_api_client import AllegroApiClient
from allegro_connector.services.allegro_token_manager import AllegroTokenManager
from allegro_connector.services.errors import AllegroApiError
from allegro_connector.services.oauth_retry import UserTokenSession
from allegro_connector.services.offer_transformer import extract_offer_data
from allegro_connector.services.offer_validation import validate_offer
from allegro_connector.utils.logger import logger


def store_remote_offer(db: Session, payload: Dict[str, Any], sync_source: str) -> Tuple[AllegroOffer, bool]:
    """Normalize an Allegro payload, upsert it by external id and re-validate it."""
    data = extract_offer_data(payload)
    offer, created = offer_store.upsert_offer(db, data, sync_source)
    offer_store.save_validation(db, offer, validate_offer(offer))
    return offer, created


class OfferImportService:
    """Preview/approve and full-catalog import of a user's Allegro offers."""

    def __init__(
        self,
        api_client: AllegroApiClient,
        token_manager: AllegroTokenManager,
        page_limit: Optional[int] = None,
    ):
        self.api_client = api_client
        self.token_manager = token_manager
        self.page_limit = page_limit or settings.OFFERS_PAGE_LIMIT

    async def _iter_pages(self, session: UserTokenSession) -> AsyncIterator[List[Dict[str, Any]]]:
        limit = self.page_limit
        offset = 0
        while True:
            page = await session.call(
                lambda token, offset=offset: self.api_client.list_offers(token, limit=limit, offset=offset)
            )
            logger.info(
                f"Fetched Allegro offers page user={session.user_id} offset={offset} "
                f"count={len(page.offers)} total={page.total_count}"
            )
            if not page.offers:
                break
            yield page.offers
            if len(page.offers) < limit:
                break
            offset += limit
            if page.total_count is not None and offset >= page.total_count:
                break

    async def preview_import(
        self,
        user_id: str,
        sync_source: SyncSource = SyncSource.ALLEGRO_API,
    ) -> ImportPreview:
        """Page through the whole listing and normalize it. Writes nothing."""
        session = UserTokenSession(self.token_manager, user_id)
        items: List[OfferPreviewItem] = []
        async for offers in self._iter_pages(session):
            for payload in offers:
                data = extract_offer_data(payload)
                if not data["allegro_offer_id"]:
                    continue
                items.append(OfferPreviewItem(**data))
        logger.info(f"Import preview for user {user_id} ({sync_source.value}): {len(items)} offers")
        return ImportPreview(items=items, total=len(items))

    async def approve_import(
        self,
        db: Session,
        user_id: str,
        external_ids: Iterable[str],
        sync_source: SyncSource = SyncSource.ALLEGRO_API,
    ) -> ImportResult:
        approved = {str(external_id) for external_id in external_ids}
        return await self._run_import(db, user_id, sync_source, "import_approved", approved)

    async def import_all(
        self,
        db: Session,
        user_id: str,
        sync_source: SyncSource = SyncSource.ALLEGRO_API,
    ) -> ImportResult:
        return await self._run_import(db, user_id, sync_source, "import_all", None)

    async def _run_import(
        self,
        db: Session,
        user_id: str,
        sync_source: SyncSource,
        job_type: str,
        approved: Optional[Set[str]],
    ) -> ImportResult:
        started_at = datetime.now(timezone.utc)
        result = ImportResult()
        session = UserTokenSession(self.token_manager, user_id)
        logger.info(
            f"Starting {job_type} for user {user_id} source={sync_source.value} "
            f"approved={len(approved) if approved is not None else 'all'}"
        )

        try:
            async for offers in self._iter_pages(session):
                for listed in offers:
                    external_id = listed.get("id")
                    if external_id is None:
                        continue
                    external_id = str(external_id)
                    if approved is not None and external_id not in approved:
                        continue
                    await self._import_one(db, session, external_id, sync_source, result)
        except Exception as exc:
            db.rollback()
            logger.error(f"{job_type} for user {user_id} aborted: {type(exc).__name__}: {exc}")
            offer_store.record_sync_job(
                db,
                user_id=user_id,
                job_type=job_type,
                job_status="failed",
                sync_source=sync_source.value,
                started_at=started_at,
                records_synced=result.total_imported,
                records_failed=result.total_failed,
                error_message=str(exc),
                sync_params={"approved_count": len(approved) if approved is not None else None},
            )
            raise

        offer_store.record_sync_job(
            db,
            user_id=user_id,
            job_type=job_type,
            job_status="completed",
            sync_source=sync_source.value,
            started_at=started_at,
            records_synced=result.total_imported,
            records_failed=result.total_failed,
            sync_params={"approved_count": len(approved) if approved is not None else None},
        )
        logger.info(
            f"Finished {job_type} for user {user_id}: imported={result.total_imported} "
            f"created={result.total_created} updated={result.total_updated} failed={result.total_failed}"
        )
        return result

    async def _import_one(
        self,
        db: Session,
        session: UserTokenSession,
        external_id: str,
        sync_source: SyncSource,
        result: ImportResult,
    ) -> None:
        # The listing returns an abbreviated shape; import the full document.
        try:
            detail = await session.call(lambda token: self.api_client.get_offer(token, external_id))
        except AllegroApiError as exc:
            result.total_failed += 1
            logger.warning(f"Skipping offer {external_id}: detail fetch failed with HTTP {exc.status_code}: {exc}")
            return

        detail = dict(detail or {})
        detail.setdefault("id", external_id)
        try:
            _, created = store_remote_offer(db, detail, sync_source.value)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            result.total_failed += 1
            logger.error(f"Failed to store offer {external_id}: {exc}")
            return

        result.total_imported += 1
        if created:
            result.total_created += 1
        else:
            result.total_updated += 1
