from decimal import Decimal
from types import SimpleNamespace

from allegro_connector.services.offer_transformer import (
    extract_description,
    extract_images,
    extract_offer_data,
    merge_parameters,
    merge_raw_data_updates,
    transform_to_remote_format,
)

from conftest import sample_payload


def _row(**overrides):
    values = dict(
        category_id="257931",
        price=Decimal("199.90"),
        currency="CZK",
        stock_quantity=5,
        images=["https://img/a.jpg", "https://img/b.jpg", "https://img/c.jpg"],
        raw_data=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_extract_offer_data_flattens_payload():
    data = extract_offer_data(sample_payload("1001"))

    assert data["allegro_offer_id"] == "1001"
    assert data["title"] == "Offer 1001"
    assert data["category_id"] == "257931"
    assert data["price"] == Decimal("199.90")
    assert data["currency"] == "CZK"
    assert data["stock_quantity"] == 5
    assert data["status"] == "ACTIVE"
    assert data["publication_status"] == "ACTIVE"
    assert data["images"] == ["https://img/a.jpg", "https://img/b.jpg", "https://img/c.jpg"]
    assert data["raw_data"]["external"] == {"id": "sku-001"}


def test_extract_offer_data_tolerates_sparse_payload():
    data = extract_offer_data({"id": 77, "sellingMode": "oops", "stock": {"available": "n/a"}})

    assert data["allegro_offer_id"] == "77"
    assert data["price"] is None
    assert data["currency"] is None
    assert data["stock_quantity"] is None
    assert data["images"] == []
    assert data["description"] is None


def test_missing_currency_defaults_when_price_present(monkeypatch):
    from allegro_connector.config import settings

    monkeypatch.setattr(settings, "PRICE_CURRENCY_TARGET", "PLN")
    data = extract_offer_data({"id": "1", "sellingMode": {"price": {"amount": "10"}}})

    assert data["currency"] == "PLN"


def test_description_keeps_text_items_in_order():
    description = sample_payload()["description"]

    assert extract_description(description) == "<p>First paragraph</p>\n\n<p>Second</p>"
    assert extract_description("plain") == "plain"
    assert extract_description({"sections": []}) is None


def test_image_sources_in_priority_order():
    assert extract_images({"images": ["https://a"], "primaryImage": {"url": "https://p"}}) == ["https://a"]
    assert extract_images({"images": [], "rawData": {"images": [{"url": "https://r"}]}}) == ["https://r"]
    assert extract_images({"primaryImage": {"url": "https://p"}}) == ["https://p"]
    assert extract_images({}) == []


def test_stock_only_patch_keeps_everything_else():
    raw = sample_payload("1001")

    payload = transform_to_remote_format({"stock_quantity": 9}, _row(raw_data=raw))

    assert payload["stock"] == {"available": 9, "unit": "UNIT"}
    assert payload["images"] == raw["images"]
    assert payload["category"] == {"id": "257931"}
    assert payload["sellingMode"] == raw["sellingMode"]
    assert payload["parameters"] == raw["parameters"]
    assert payload["name"] == "Offer 1001"


def test_empty_images_patch_keeps_current_images():
    raw = sample_payload("1001")

    payload = transform_to_remote_format({"images": []}, _row(raw_data=raw))

    assert [img["url"] for img in payload["images"]] == ["https://img/a.jpg", "https://img/b.jpg", "https://img/c.jpg"]


def test_row_columns_used_without_snapshot():
    payload = transform_to_remote_format({"title": "New title"}, _row())

    assert payload["name"] == "New title"
    assert payload["category"] == {"id": "257931"}
    assert payload["sellingMode"] == {"price": {"amount": "199.90", "currency": "CZK"}}
    assert payload["stock"] == {"available": 5}
    assert [img["url"] for img in payload["images"]] == ["https://img/a.jpg", "https://img/b.jpg", "https://img/c.jpg"]


def test_price_patch_keeps_selling_mode_format():
    raw = sample_payload("1001")

    payload = transform_to_remote_format({"price": Decimal("150.00")}, _row(raw_data=raw))

    assert payload["sellingMode"] == {"format": "BUY_NOW", "price": {"amount": "150.00", "currency": "CZK"}}


def test_description_patch_becomes_sections():
    payload = transform_to_remote_format({"description": "One\n\nTwo"}, _row(raw_data=sample_payload()))

    assert payload["description"] == {
        "sections": [
            {"items": [{"type": "TEXT", "content": "One"}]},
            {"items": [{"type": "TEXT", "content": "Two"}]},
        ]
    }


def test_parameters_merge_replaces_by_id():
    existing = [{"id": "1", "values": ["a"]}, {"id": "2", "values": ["b"]}, {"id": "1", "values": ["dup"]}]

    merged = merge_parameters(existing, [{"id": "2", "values": ["B"]}, {"id": "3", "values": ["c"]}])

    assert merged == [{"id": "1", "values": ["a"]}, {"id": "2", "values": ["B"]}, {"id": "3", "values": ["c"]}]
    assert len({p["id"] for p in merged}) == len(merged)


def test_parameters_without_id_are_all_kept():
    existing = [{"name": "Color", "values": ["red"]}, {"name": "Size", "values": ["M"]}, {"id": "1", "values": ["a"]}]

    merged = merge_parameters(existing, [{"id": "1", "values": ["b"]}])

    assert merged == [
        {"name": "Color", "values": ["red"]},
        {"name": "Size", "values": ["M"]},
        {"id": "1", "values": ["b"]},
    ]


def test_attribute_patch_merged_into_snapshot_parameters():
    raw = sample_payload("1001")

    payload = transform_to_remote_format(
        {"attributes": [{"id": "999", "values": ["x"]}]},
        _row(raw_data=raw),
    )

    assert payload["parameters"] == [{"id": "11323", "values": ["Nowy"]}, {"id": "999", "values": ["x"]}]


def test_merge_back_replaces_only_patched_keys():
    raw = sample_payload("1001")
    payload = transform_to_remote_format({"stock_quantity": 2}, _row(raw_data=raw))

    merged = merge_raw_data_updates(raw, {"stock_quantity": 2}, payload)

    assert merged["stock"] == {"available": 2, "unit": "UNIT"}
    assert merged["external"] == raw["external"]
    assert merged["images"] == raw["images"]
    assert raw["stock"] == {"available": 5, "unit": "UNIT"}


def test_merge_back_without_snapshot_stores_payload():
    payload = {"stock": {"available": 1}}

    assert merge_raw_data_updates(None, {"stock_quantity": 1}, payload) == payload
