"""Local-first offer updates with asynchronous propagation to Allegro.

An update is committed locally with ``sync_status=PENDING`` and
``sync_source=MANUAL``, and returned to the caller right away. The remote
write then runs as a detached task that owns nothing but the row's sync
fields: on completion it re-reads the row in its own session and records
``SYNCED`` (merging the sent fields into ``raw_data`` and validating again)
or ``ERROR`` with a message.

Transient failures (timeouts, connection errors, 5xx) are retried
``SYNC_MAX_RETRIES`` times, waiting ``attempt * SYNC_RETRY_BACKOFF_SECONDS``
before each retry. Auth and validation failures are final.

Stock has its own path, :meth:`OfferSyncService.update_stock`, which only
sends the stock body and never rebuilds the full offer document.
"""

import asyncio
import json
from datetime import datetime, timezone
from enum import Enum
from types import SimpleNamespace
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from allegro_connector.config import settings
from allegro_connector.database import SessionLocal
from allegro_connector.db_models import AllegroOffer, Product
from allegro_connector.models.allegro import OfferUpdate, SyncSource, SyncStatus, ValidationResult
from allegro_connector.services import offer_store
from allegro_connector.services.allegro_api_client import AllegroApiClient
from allegro_connector.services.allegro_token_manager import AllegroTokenManager
from allegro_connector.services.errors import (
    AllegroApiError,
    AllegroNotFoundError,
    AllegroTransientError,
    AllegroValidationError,
    OAuthRequiredError,
    OfferDataError,
    TokenExchangeError,
    WarehouseError,
)
from allegro_connector.services.oauth_retry import UserTokenSession
from allegro_connector.services.offer_import_service import store_remote_offer
from allegro_connector.services.offer_transformer import (
    build_stock_payload,
    merge_raw_data_updates,
    transform_to_remote_format,
)
from allegro_connector.services.offer_validation import validate_offer
from allegro_connector.services.stock_reconciliation import report_from_offer, resolve_stock
from allegro_connector.services.warehouse_client import WarehouseClient
from allegro_connector.utils.logger import logger

Sender = Callable[[], Awaitable[Dict[str, Any]]]


class PropagationMode(str, Enum):
    BACKGROUND = "background"
    INLINE = "inline"


class BackgroundPropagator:
    """Keeps references to fire-and-forget tasks until they finish."""

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def submit(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            exc = task.exception()
            logger.error(f"Background task {task.get_name()} crashed: {type(exc).__name__}: {exc}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


def describe_error(exc: Exception) -> str:
    if isinstance(exc, AllegroValidationError):
        body = exc.body if isinstance(exc.body, str) else json.dumps(exc.body, default=str)
        return f"Allegro rejected the offer data (HTTP {exc.status_code}): {body}"[:4000]
    if isinstance(exc, OAuthRequiredError):
        return exc.message
    if isinstance(exc, AllegroApiError):
        return exc.message
    return str(exc)


def _offer_state(offer: AllegroOffer) -> SimpleNamespace:
    """Detached copy of the columns the payload builder falls back to."""
    return SimpleNamespace(
        category_id=offer.category_id,
        price=offer.price,
        currency=offer.currency,
        stock_quantity=offer.stock_quantity,
        images=list(offer.images or []),
        raw_data=offer.raw_data,
    )


class OfferSyncService:

    def __init__(
        self,
        api_client: AllegroApiClient,
        token_manager: AllegroTokenManager,
        warehouse_client: Optional[WarehouseClient] = None,
        propagator: Optional[BackgroundPropagator] = None,
        session_factory: Callable[[], Session] = SessionLocal,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        max_retries: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ):
        self.api_client = api_client
        self.token_manager = token_manager
        self.warehouse_client = warehouse_client or WarehouseClient()
        self.propagator = propagator or BackgroundPropagator()
        self.session_factory = session_factory
        self._sleep = sleep
        self.max_retries = settings.SYNC_MAX_RETRIES if max_retries is None else max_retries
        self.backoff_seconds = settings.SYNC_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds

    # ------------------------------------------------------------------
    # Remote call helpers
    # ------------------------------------------------------------------

    def _remote(self, user_id: Optional[str]) -> Callable[[Callable[[str], Awaitable[Any]]], Awaitable[Any]]:
        """Call wrapper using the user's grant, or the application token when no user is given."""
        if user_id:
            return UserTokenSession(self.token_manager, user_id).call

        async def _with_app_token(fn):
            return await fn(await self.token_manager.get_access_token())

        return _with_app_token

    async def _dispatch(self, mode: PropagationMode, coro: Awaitable[Any], name: str) -> None:
        if mode == PropagationMode.INLINE:
            await coro
        else:
            self.propagator.submit(coro, name=name)

    # ------------------------------------------------------------------
    # Field updates
    # ------------------------------------------------------------------

    async def update_offer(
        self,
        db: Session,
        offer_id: str,
        patch: Union[OfferUpdate, Dict[str, Any]],
        user_id: Optional[str] = None,
        mode: PropagationMode = PropagationMode.BACKGROUND,
    ) -> AllegroOffer:
        if not isinstance(patch, OfferUpdate):
            try:
                patch = OfferUpdate(**patch)
            except ValidationError as exc:
                details = exc.errors(include_url=False, include_context=False, include_input=False)
                raise OfferDataError("Invalid offer data", details=details) from exc
        changes = patch.changed_fields()

        offer = offer_store.get_offer(db, offer_id)
        if not changes:
            return offer

        logger.info(f"Updating offer {offer_id} ({offer.allegro_offer_id}) fields={sorted(changes)} user={user_id}")
        offer_store.apply_local_patch(offer, changes)
        self._mark_pending(db, offer)

        external_id = offer.allegro_offer_id
        state = _offer_state(offer)
        stored_raw = offer.raw_data
        call = self._remote(user_id)

        async def send() -> Dict[str, Any]:
            snapshot = await self._fetch_snapshot(call, external_id, stored_raw)
            payload = transform_to_remote_format(changes, state, snapshot)
            await call(lambda token: self.api_client.update_offer(token, external_id, payload))
            return payload

        # The linked product follows local stock even when the remote write fails.
        if "stock_quantity" in changes and offer.product_id:
            await self._reconcile_product_stock(db, offer.product_id, external_id, mode)

        await self._dispatch(
            mode,
            self._propagate(offer_id, changes, send, retry=mode == PropagationMode.BACKGROUND,
                            raise_errors=mode == PropagationMode.INLINE),
            name=f"offer-update-{offer_id}",
        )

        db.refresh(offer)
        return offer

    async def _fetch_snapshot(self, call, external_id: str, stored_raw: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        try:
            remote = await call(lambda token: self.api_client.get_offer(token, external_id))
        except (AllegroTransientError, AllegroNotFoundError) as exc:
            logger.warning(f"Using stored snapshot for offer {external_id}, remote fetch failed: {exc}")
            return stored_raw
        return remote if isinstance(remote, dict) and remote else stored_raw

    # ------------------------------------------------------------------
    # Stock fast path
    # ------------------------------------------------------------------

    async def update_stock(
        self,
        db: Session,
        offer_id: str,
        quantity: int,
        user_id: Optional[str] = None,
        mode: PropagationMode = PropagationMode.BACKGROUND,
    ) -> AllegroOffer:
        if quantity is None or quantity < 0:
            raise OfferDataError("Stock quantity must be 0 or greater", details={"quantity": quantity})

        offer = offer_store.get_offer(db, offer_id)
        logger.info(f"Updating stock of offer {offer_id} ({offer.allegro_offer_id}) to {quantity}")
        offer.stock_quantity = quantity
        self._mark_pending(db, offer)

        external_id = offer.allegro_offer_id
        call = self._remote(user_id)

        async def send() -> Dict[str, Any]:
            await call(lambda token: self.api_client.set_stock(token, external_id, quantity))
            return build_stock_payload(quantity)

        if offer.product_id:
            await self._reconcile_product_stock(db, offer.product_id, external_id, mode)

        await self._dispatch(
            mode,
            self._propagate(offer_id, {"stock_quantity": quantity}, send,
                            retry=mode == PropagationMode.BACKGROUND,
                            raise_errors=mode == PropagationMode.INLINE),
            name=f"offer-stock-{offer_id}",
        )

        db.refresh(offer)
        return offer

    def _mark_pending(self, db: Session, offer: AllegroOffer) -> None:
        offer.sync_status = SyncStatus.PENDING.value
        offer.sync_source = SyncSource.MANUAL.value
        offer.sync_error = None
        offer_store.save_validation(db, offer, validate_offer(offer))
        db.commit()

    # ------------------------------------------------------------------
    # Propagation
    # ------------------------------------------------------------------

    async def _propagate(
        self,
        offer_id: str,
        changes: Dict[str, Any],
        send: Sender,
        retry: bool = True,
        raise_errors: bool = False,
    ) -> None:
        attempt = 0
        while True:
            try:
                payload = await send()
                break
            except AllegroTransientError as exc:
                if not retry or attempt >= self.max_retries:
                    suffix = f" (gave up after {attempt + 1} attempts)" if retry else ""
                    self._complete(offer_id, changes, None, error=describe_error(exc) + suffix)
                    if raise_errors:
                        raise
                    return
                attempt += 1
                delay = attempt * self.backoff_seconds
                logger.warning(
                    f"Transient failure syncing offer {offer_id} ({exc}); retry {attempt}/{self.max_retries} in {delay}s"
                )
                await self._sleep(delay)
            except (AllegroApiError, OAuthRequiredError, TokenExchangeError) as exc:
                self._complete(offer_id, changes, None, error=describe_error(exc))
                if raise_errors:
                    raise
                return

        self._complete(offer_id, changes, payload)

    def _complete(
        self,
        offer_id: str,
        changes: Dict[str, Any],
        payload: Optional[Dict[str, Any]],
        error: Optional[str] = None,
    ) -> None:
        db = self.session_factory()
        try:
            offer = db.query(AllegroOffer).filter(AllegroOffer.id == offer_id).first()
            if not offer:
                logger.warning(f"Offer {offer_id} disappeared before its sync completed")
                return
            if error is not None:
                offer.sync_status = SyncStatus.ERROR.value
                offer.sync_error = error
                logger.error(f"Sync of offer {offer_id} failed: {error}")
            else:
                offer.raw_data = merge_raw_data_updates(offer.raw_data, changes, payload)
                offer_store.save_validation(db, offer, validate_offer(offer))
                offer.sync_status = SyncStatus.SYNCED.value
                offer.sync_error = None
                offer.last_synced_at = datetime.now(timezone.utc)
                logger.info(f"Offer {offer_id} synced to Allegro")
            db.commit()
        finally:
            db.close()

    # ------------------------------------------------------------------
    # Linked product / warehouse
    # ------------------------------------------------------------------

    async def _reconcile_product_stock(
        self,
        db: Session,
        product_id: str,
        external_id: str,
        mode: PropagationMode,
    ) -> None:
        product = db.query(Product).filter(Product.id == product_id).first()
        if not product:
            return
        reports = [report_from_offer(product_id, o) for o in offer_store.list_linked_offers(db, product_id)]
        winner = resolve_stock(r for r in reports if r is not None)
        if winner is None:
            return
        product.stock_quantity = winner.quantity
        db.commit()
        logger.info(f"Product {product_id} stock resolved to {winner.quantity} from {winner.source}")

        await self._dispatch(
            mode,
            self._push_warehouse_stock(product.warehouse_product_id, winner.quantity, external_id),
            name=f"warehouse-stock-{product_id}",
        )

    async def _push_warehouse_stock(self, warehouse_product_id: str, quantity: int, external_id: str) -> None:
        try:
            warehouse_id = await self.warehouse_client.get_default_warehouse_id()
            await self.warehouse_client.set_stock(
                warehouse_product_id,
                warehouse_id,
                quantity,
                reason=f"Allegro offer {external_id} stock update",
            )
        except WarehouseError as exc:
            # Picked up by the next reconciliation run.
            logger.error(f"Warehouse stock propagation failed for product {warehouse_product_id}: {exc}")

    # ------------------------------------------------------------------
    # Validation, pull and delete
    # ------------------------------------------------------------------

    async def validate_offer(self, db: Session, offer_id: str, user_id: Optional[str] = None) -> ValidationResult:
        offer = offer_store.get_offer(db, offer_id)
        if user_id:
            try:
                offer = await self.sync_offer_from_allegro(db, offer_id, user_id)
            except (AllegroTransientError, AllegroNotFoundError) as exc:
                logger.warning(f"Validating offer {offer_id} from local data, remote refresh failed: {exc}")
        result = validate_offer(offer)
        offer_store.save_validation(db, offer, result)
        db.commit()
        return result

    async def sync_offer_from_allegro(self, db: Session, offer_id: str, user_id: str) -> AllegroOffer:
        offer = offer_store.get_offer(db, offer_id)
        external_id = offer.allegro_offer_id
        session = UserTokenSession(self.token_manager, user_id)
        detail = await session.call(lambda token: self.api_client.get_offer(token, external_id))
        detail = dict(detail or {})
        detail.setdefault("id", external_id)
        source = SyncSource.SALES_CENTER if offer.sync_source == SyncSource.SALES_CENTER.value else SyncSource.ALLEGRO_API
        offer, _ = store_remote_offer(db, detail, source.value)
        db.commit()
        logger.info(f"Offer {offer_id} refreshed from Allegro")
        return offer

    async def delete_offer(self, db: Session, offer_id: str, user_id: Optional[str] = None) -> None:
        offer = offer_store.get_offer(db, offer_id)
        external_id = offer.allegro_offer_id
        try:
            await self._remote(user_id)(lambda token: self.api_client.delete_offer(token, external_id))
        except AllegroNotFoundError:
            logger.warning(f"Offer {external_id} already gone on Allegro, deleting local row")
        db.delete(offer)
        db.commit()
        logger.info(f"Deleted offer {offer_id} ({external_id})")
