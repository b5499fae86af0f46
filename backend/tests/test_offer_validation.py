from decimal import Decimal
from types import SimpleNamespace

import pytest

from allegro_connector.models.allegro import ValidationStatus
from allegro_connector.services.offer_validation import validate_offer


def _offer(**overrides):
    values = dict(
        title="Nikon D750 body",
        description="Full-frame DSLR",
        images=["https://img/a.jpg", "https://img/b.jpg", "https://img/c.jpg"],
        price=Decimal("24990.00"),
        stock_quantity=3,
        category_id="257931",
        delivery_options={"shippingRates": {"id": "rates-1"}},
        payment_options={"invoice": "VAT"},
        publication_status="ACTIVE",
        raw_data=None,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def test_complete_offer_is_ready():
    result = validate_offer(_offer())

    assert result.status == ValidationStatus.READY
    assert result.errors == []


def test_broken_offer_reports_every_error():
    result = validate_offer(_offer(
        title="",
        images=[],
        price=0,
        stock_quantity=-1,
        category_id="",
        delivery_options=None,
        payment_options=None,
        publication_status=None,
    ))

    errors = {i.type for i in result.errors if i.severity == "error"}
    warnings = {i.type for i in result.errors if i.severity == "warning"}
    assert result.status == ValidationStatus.ERRORS
    assert errors == {"MISSING_TITLE", "MISSING_IMAGES", "INVALID_PRICE", "INVALID_STOCK", "MISSING_CATEGORY"}
    assert warnings == {"MISSING_DELIVERY", "MISSING_PAYMENT"}


def test_zero_stock_is_only_a_warning():
    result = validate_offer(_offer(stock_quantity=0))

    assert result.status == ValidationStatus.WARNINGS
    assert result.codes() == ["OUT_OF_STOCK"]


def test_missing_stock_is_an_error():
    result = validate_offer(_offer(stock_quantity=None, publication_status=None))

    assert result.codes() == ["INVALID_STOCK"]


@pytest.mark.parametrize("images, expected", [
    (["https://a"], ["FEW_IMAGES"]),
    (["https://a", "https://b"], ["FEW_IMAGES"]),
    (["https://a", "https://b", "https://c"], []),
])
def test_few_images_warning(images, expected):
    assert validate_offer(_offer(images=images)).codes() == expected


def test_description_found_in_raw_snapshot():
    raw = {"description": {"sections": [{"items": [{"type": "TEXT", "content": "<p>From Allegro</p>"}]}]}}

    result = validate_offer(_offer(description=None, raw_data=raw))

    assert "MISSING_DESCRIPTION" not in result.codes()


def test_delivery_and_payment_found_in_raw_snapshot():
    raw = {"shippingRates": {"id": "r"}, "paymentOptions": ["transfer"]}

    result = validate_offer(_offer(delivery_options=None, payment_options=None, raw_data=raw))

    assert result.status == ValidationStatus.READY


def test_images_found_in_raw_snapshot():
    raw = {"images": [{"url": "https://r1"}, {"url": "https://r2"}, {"url": "https://r3"}]}

    assert validate_offer(_offer(images=[], raw_data=raw)).status == ValidationStatus.READY


def test_active_offer_with_errors_flagged():
    result = validate_offer(_offer(title=""))

    assert result.codes() == ["MISSING_TITLE", "ACTIVE_WITH_ERRORS"]


def test_inactive_offer_with_errors_not_flagged_as_active():
    result = validate_offer(_offer(title="", publication_status="INACTIVE"))

    assert result.codes() == ["MISSING_TITLE"]


def test_required_parameter_without_value():
    raw = {"parameters": [
        {"id": "1", "required": True, "values": []},
        {"id": "2", "required": True, "values": ["ok"]},
        {"id": "3", "required": False},
    ]}

    result = validate_offer(_offer(raw_data=raw, publication_status=None))

    assert result.codes() == ["MISSING_REQUIRED_ATTRIBUTES"]
    assert result.errors[0].message == "1 required attribute(s) missing"


def test_validation_is_deterministic():
    offer = _offer(price=0, images=["https://a"])

    assert validate_offer(offer) == validate_offer(offer)
