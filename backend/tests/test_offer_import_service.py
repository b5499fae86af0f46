import pytest

from allegro_connector.db_models import AllegroOffer, Product, SyncJob
from allegro_connector.models.allegro import SyncSource
from allegro_connector.services.errors import AllegroAuthError, AllegroNotFoundError, OAuthRequiredError
from allegro_connector.services.offer_import_service import OfferImportService

from conftest import FakeApiClient, FakeTokenManager, sample_payload


def _listing(count: int = 6):
    return [sample_payload(str(1001 + i)) for i in range(count)]


def _service(api, tokens=None, page_limit=2):
    return OfferImportService(api, tokens or FakeTokenManager(), page_limit=page_limit)


def _list_offsets(api):
    return [call[2] for call in api.calls if call[0] == "list_offers"]


@pytest.mark.asyncio
async def test_preview_returns_normalized_offers_without_writing(db):
    api = FakeApiClient(_listing(5))

    preview = await _service(api).preview_import("user-1")

    assert preview.total == 5
    assert [item.allegro_offer_id for item in preview.items] == ["1001", "1002", "1003", "1004", "1005"]
    assert _list_offsets(api) == [0, 2, 4]
    assert db.query(AllegroOffer).count() == 0
    assert db.query(SyncJob).count() == 0


@pytest.mark.asyncio
async def test_approve_imports_only_approved_ids(db):
    api = FakeApiClient(_listing(6))

    result = await _service(api).approve_import(db, "user-1", ["1002", "1005"])

    assert result.total_imported == 2
    assert result.total_created == 2
    stored = {o.allegro_offer_id for o in db.query(AllegroOffer).all()}
    assert stored == {"1002", "1005"}
    detail_calls = [call[2] for call in api.calls if call[0] == "get_offer"]
    assert detail_calls == ["1002", "1005"]


@pytest.mark.asyncio
async def test_approve_updates_existing_row_and_keeps_product_link(db):
    product = Product(code="SKU-1", name="Camera")
    db.add(product)
    db.flush()
    existing = AllegroOffer(allegro_offer_id="1002", title="Old title", product_id=product.id)
    db.add(existing)
    db.commit()
    local_id = existing.id

    result = await _service(FakeApiClient(_listing(3))).approve_import(db, "user-1", ["1002"])

    assert result.total_updated == 1
    offer = db.query(AllegroOffer).filter(AllegroOffer.allegro_offer_id == "1002").one()
    assert offer.id == local_id
    assert offer.product_id == product.id
    assert offer.title == "Offer 1002"
    assert offer.validation_status == "READY"
    assert offer.sync_status == "SYNCED"


@pytest.mark.asyncio
async def test_import_all_is_idempotent(db):
    api = FakeApiClient(_listing(5))
    service = _service(api)

    first = await service.import_all(db, "user-1")
    snapshot = {o.allegro_offer_id: (o.id, o.validation_status, o.validation_errors) for o in db.query(AllegroOffer)}
    second = await service.import_all(db, "user-1")

    assert first.total_created == 5
    assert second.total_created == 0
    assert second.total_updated == 5
    assert db.query(AllegroOffer).count() == 5
    assert {o.allegro_offer_id: (o.id, o.validation_status, o.validation_errors) for o in db.query(AllegroOffer)} == snapshot


@pytest.mark.asyncio
async def test_import_records_sync_job(db):
    await _service(FakeApiClient(_listing(3))).import_all(db, "user-1", SyncSource.SALES_CENTER)

    job = db.query(SyncJob).one()
    assert job.job_type == "import_all"
    assert job.job_status == "completed"
    assert job.sync_source == "SALES_CENTER"
    assert job.records_synced == 3
    assert {o.sync_source for o in db.query(AllegroOffer)} == {"SALES_CENTER"}


@pytest.mark.asyncio
async def test_auth_failure_on_second_page_refreshes_once_and_retries_that_page(db):
    api = FakeApiClient(_listing(6))
    tokens = FakeTokenManager()
    api.fail_when = lambda name, token, *args: (
        AllegroAuthError("expired", status_code=401)
        if name == "list_offers" and args[0] == 2 and token == "user-token-1" else None
    )

    result = await _service(api, tokens).import_all(db, "user-1")

    assert tokens.refresh_calls == 1
    assert _list_offsets(api) == [0, 2, 2, 4]
    assert result.total_imported == 6


@pytest.mark.asyncio
async def test_second_auth_failure_aborts_import(db):
    api = FakeApiClient(_listing(6))
    tokens = FakeTokenManager()
    api.fail_when = lambda name, token, *args: (
        AllegroAuthError("forbidden", status_code=403) if name == "list_offers" and args[0] == 2 else None
    )

    with pytest.raises(OAuthRequiredError):
        await _service(api, tokens).import_all(db, "user-1")

    assert tokens.refresh_calls == 1
    assert 4 not in _list_offsets(api)
    job = db.query(SyncJob).one()
    assert job.job_status == "failed"
    assert "re-authorize" in job.error_message


@pytest.mark.asyncio
async def test_missing_detail_counts_as_failed_and_continues(db):
    api = FakeApiClient(_listing(3))
    api.fail_when = lambda name, token, *args: (
        AllegroNotFoundError("gone", status_code=404) if name == "get_offer" and args[0] == "1002" else None
    )

    result = await _service(api).import_all(db, "user-1")

    assert result.total_imported == 2
    assert result.total_failed == 1
    assert {o.allegro_offer_id for o in db.query(AllegroOffer)} == {"1001", "1003"}
