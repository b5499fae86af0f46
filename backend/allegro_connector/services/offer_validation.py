from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional

from allegro_connector.models.allegro import ValidationIssue, ValidationResult, ValidationStatus
from allegro_connector.services import offer_transformer

MIN_RECOMMENDED_IMAGES = 3


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _price_value(price: Any) -> Decimal:
    if price is None or price == "":
        return Decimal(0)
    try:
        return Decimal(str(price))
    except (InvalidOperation, ValueError):
        return Decimal(0)


def _error(code: str, message: str) -> ValidationIssue:
    return ValidationIssue(type=code, message=message, severity="error")


def _warning(code: str, message: str) -> ValidationIssue:
    return ValidationIssue(type=code, message=message, severity="warning")


def validate_offer(offer: Any) -> ValidationResult:
    """Compute publish readiness of an offer row (or anything with the same attributes).

    Pure: reads the offer, returns the result, persists nothing.
    """
    raw = offer.raw_data if isinstance(offer.raw_data, dict) else None
    issues: List[ValidationIssue] = []

    if _blank(offer.title):
        issues.append(_error("MISSING_TITLE", "Title is required"))

    if _blank(offer.description) and _blank(offer_transformer.raw_description(raw)):
        issues.append(_error("MISSING_DESCRIPTION", "Description is required"))

    images = offer_transformer.extract_images({"images": offer.images or [], "rawData": raw})
    if not images:
        issues.append(_error("MISSING_IMAGES", "At least one image is required"))
    elif len(images) < MIN_RECOMMENDED_IMAGES:
        issues.append(
            _warning("FEW_IMAGES", f"Only {len(images)} image(s) - consider adding more for better visibility")
        )

    if _price_value(offer.price) <= 0:
        issues.append(_error("INVALID_PRICE", "Price must be greater than 0"))

    if offer.stock_quantity is None or offer.stock_quantity < 0:
        issues.append(_error("INVALID_STOCK", "Stock quantity must be 0 or greater"))
    elif offer.stock_quantity == 0:
        issues.append(_warning("OUT_OF_STOCK", "Stock is 0 - offer may not be visible"))

    if _blank(offer.category_id):
        issues.append(_error("MISSING_CATEGORY", "Category is required"))

    if not offer_transformer.has_delivery_option(offer.delivery_options, raw):
        issues.append(_warning("MISSING_DELIVERY", "At least one delivery option is recommended"))

    if not offer_transformer.has_payment_option(offer.payment_options, raw):
        issues.append(_warning("MISSING_PAYMENT", "At least one payment option is recommended"))

    publication_status = offer.publication_status or offer_transformer.raw_publication_status(raw)
    if publication_status == "ACTIVE" and any(i.severity == "error" for i in issues):
        issues.append(_error("ACTIVE_WITH_ERRORS", "Offer is published but has validation errors"))

    missing_required = [
        p for p in offer_transformer.raw_parameters(raw)
        if p.get("required") is True and not p.get("values")
    ]
    if missing_required:
        issues.append(
            _error("MISSING_REQUIRED_ATTRIBUTES", f"{len(missing_required)} required attribute(s) missing")
        )

    if any(i.severity == "error" for i in issues):
        status = ValidationStatus.ERRORS
    elif issues:
        status = ValidationStatus.WARNINGS
    else:
        status = ValidationStatus.READY
    return ValidationResult(status=status, errors=issues)
