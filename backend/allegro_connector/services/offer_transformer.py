"""Conversion between Allegro offer payloads and local offer rows.

This module is the only place that knows the shape of the raw Allegro
document. Inbound, :func:`extract_offer_data` flattens a payload into local
column values and never raises on missing or oddly shaped fields. Outbound,
:func:`transform_to_remote_format` rebuilds a full update body from a partial
local patch, since the product-offer PATCH endpoint wants category, price,
stock, images and parameters on every call. :func:`merge_raw_data_updates`
folds a successful write back into the stored snapshot.
"""

import copy
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from allegro_connector.config import settings

# Local column -> top-level key of the Allegro document it is written to.
LOCAL_TO_REMOTE_KEYS = {
    "title": "name",
    "description": "description",
    "category_id": "category",
    "price": "sellingMode",
    "currency": "sellingMode",
    "stock_quantity": "stock",
    "images": "images",
    "attributes": "parameters",
    "publication_status": "publication",
    "delivery_options": "delivery",
    "payment_options": "payments",
}


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def default_currency() -> str:
    return settings.PRICE_CURRENCY_TARGET or "CZK"


# ----------------------------------------------------------------------
# Inbound
# ----------------------------------------------------------------------

def _image_url(image: Any) -> Optional[str]:
    if isinstance(image, str):
        return image or None
    if isinstance(image, dict):
        return image.get("url") or image.get("path")
    return None


def _image_urls(images: Iterable[Any]) -> List[str]:
    return [url for url in (_image_url(img) for img in images) if url]


def extract_images(payload: Optional[Dict[str, Any]]) -> List[str]:
    """Image URLs of a payload: ``images``, then ``rawData.images``, then ``primaryImage``."""
    payload = _as_dict(payload)

    urls = _image_urls(_as_list(payload.get("images")))
    if urls:
        return urls

    urls = _image_urls(_as_list(_as_dict(payload.get("rawData")).get("images")))
    if urls:
        return urls

    primary = _image_url(payload.get("primaryImage"))
    return [primary] if primary else []


def extract_description(description: Any) -> Optional[str]:
    """Flatten a description to text.

    Allegro sends descriptions as ``{"sections": [{"items": [...]}]}``. The
    content of every ``TEXT`` item is kept, in document order, separated by
    blank lines. Plain strings pass through.
    """
    if description is None:
        return None
    if isinstance(description, str):
        return description

    sections = _as_list(_as_dict(description).get("sections")) if isinstance(description, dict) else _as_list(description)
    parts = []
    for section in sections:
        for item in _as_list(_as_dict(section).get("items")):
            item = _as_dict(item)
            if item.get("type") == "TEXT" and isinstance(item.get("content"), str) and item["content"].strip():
                parts.append(item["content"])
    return "\n\n".join(parts) if parts else None


def _parse_price(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _parse_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def extract_offer_data(payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Normalize an Allegro offer payload into local column values."""
    payload = _as_dict(payload)
    price_info = _as_dict(_as_dict(payload.get("sellingMode")).get("price"))
    price = _parse_price(price_info.get("amount"))
    currency = price_info.get("currency") or (default_currency() if price is not None else None)
    publication_status = _as_dict(payload.get("publication")).get("status")

    return {
        "allegro_offer_id": str(payload["id"]) if payload.get("id") is not None else None,
        "title": payload.get("name"),
        "description": extract_description(payload.get("description")),
        "category_id": _as_dict(payload.get("category")).get("id"),
        "price": price,
        "currency": currency,
        "stock_quantity": _parse_int(_as_dict(payload.get("stock")).get("available")),
        "status": publication_status,
        "publication_status": publication_status,
        "images": extract_images(payload),
        "delivery_options": payload.get("delivery"),
        "payment_options": payload.get("payments"),
        "raw_data": copy.deepcopy(payload) if payload else None,
    }


# Raw snapshot lookups used by validation.

def raw_description(raw: Optional[Dict[str, Any]]) -> Optional[str]:
    return extract_description(_as_dict(raw).get("description"))


def raw_publication_status(raw: Optional[Dict[str, Any]]) -> Optional[str]:
    return _as_dict(_as_dict(raw).get("publication")).get("status")


def raw_external_id(raw: Optional[Dict[str, Any]]) -> Optional[str]:
    """Seller's own reference (SKU) attached to the offer, if any."""
    value = _as_dict(_as_dict(raw).get("external")).get("id")
    return str(value) if value else None


def raw_parameters(raw: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    raw = _as_dict(raw)
    params = _as_list(raw.get("parameters")) or _as_list(_as_dict(raw.get("product")).get("parameters"))
    return [p for p in params if isinstance(p, dict)]


def _has_option(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (list, dict, str)):
        return len(value) > 0
    return True


def has_delivery_option(delivery_options: Any, raw: Optional[Dict[str, Any]]) -> bool:
    raw = _as_dict(raw)
    return any(
        _has_option(candidate)
        for candidate in (delivery_options, raw.get("delivery"), raw.get("deliveryOptions"), raw.get("shippingRates"))
    )


def has_payment_option(payment_options: Any, raw: Optional[Dict[str, Any]]) -> bool:
    raw = _as_dict(raw)
    return any(
        _has_option(candidate)
        for candidate in (payment_options, raw.get("payments"), raw.get("paymentOptions"))
    )


# ----------------------------------------------------------------------
# Outbound
# ----------------------------------------------------------------------

def description_to_sections(text: str) -> Dict[str, Any]:
    paragraphs = [p.strip() for p in text.split("\n\n") if p.strip()]
    return {"sections": [{"items": [{"type": "TEXT", "content": p}]} for p in paragraphs]}


def merge_parameters(existing: Iterable[Dict[str, Any]], updates: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Replace parameters whose id is in ``updates``; keep every other one.

    The result holds each parameter id exactly once. Parameters without an
    id are kept as they are.
    """
    updated: Dict[str, Dict[str, Any]] = {}
    for param in updates:
        updated[str(param["id"])] = {"id": param["id"], "values": list(param.get("values") or [])}

    merged: List[Dict[str, Any]] = []
    seen = set()
    for param in existing:
        if param.get("id") is None:
            merged.append(copy.deepcopy(param))
            continue
        param_id = str(param["id"])
        if param_id in updated or param_id in seen:
            continue
        seen.add(param_id)
        merged.append(copy.deepcopy(param))
    merged.extend(updated.values())
    return merged


def transform_to_remote_format(
    patch: Dict[str, Any],
    existing: Any,
    snapshot: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Build the Allegro update body for a partial local patch.

    ``existing`` is the stored offer row; ``snapshot`` is the freshest known
    remote document (defaults to the row's ``raw_data``). Fields missing from
    ``patch`` are taken from the snapshot first and the row's columns second.
    """
    raw = _as_dict(snapshot if snapshot is not None else existing.raw_data)
    payload: Dict[str, Any] = {}

    if "title" in patch:
        payload["name"] = patch["title"]
    elif raw.get("name") is not None:
        payload["name"] = raw["name"]

    if "description" in patch:
        description = patch["description"]
        payload["description"] = description_to_sections(description) if isinstance(description, str) else description
    elif raw.get("description") is not None:
        payload["description"] = copy.deepcopy(raw["description"])

    if "category_id" in patch:
        payload["category"] = {"id": patch["category_id"]}
    elif _as_dict(raw.get("category")).get("id"):
        payload["category"] = {"id": raw["category"]["id"]}
    elif existing.category_id:
        payload["category"] = {"id": existing.category_id}

    if "price" in patch or "currency" in patch:
        amount = patch["price"] if patch.get("price") is not None else existing.price
        currency = patch.get("currency") or existing.currency or default_currency()
        payload["sellingMode"] = {
            **copy.deepcopy(_as_dict(raw.get("sellingMode"))),
            "price": {"amount": str(amount if amount is not None else 0), "currency": currency},
        }
    elif raw.get("sellingMode"):
        payload["sellingMode"] = copy.deepcopy(raw["sellingMode"])
    elif existing.price is not None:
        payload["sellingMode"] = {
            "price": {"amount": str(existing.price), "currency": existing.currency or default_currency()}
        }

    if "stock_quantity" in patch:
        payload["stock"] = {**copy.deepcopy(_as_dict(raw.get("stock"))), "available": patch["stock_quantity"]}
    elif raw.get("stock"):
        payload["stock"] = copy.deepcopy(raw["stock"])
    elif existing.stock_quantity is not None:
        payload["stock"] = {"available": existing.stock_quantity}

    # An empty image list in a patch keeps the current images; Allegro rejects offers without any.
    if patch.get("images"):
        payload["images"] = [{"url": url} for url in patch["images"]]
    elif _as_list(raw.get("images")):
        payload["images"] = copy.deepcopy(raw["images"])
    elif existing.images:
        payload["images"] = [{"url": url} for url in _image_urls(existing.images)]

    existing_params = raw_parameters(raw)
    if patch.get("attributes") is not None:
        payload["parameters"] = merge_parameters(existing_params, patch["attributes"])
    elif existing_params:
        payload["parameters"] = merge_parameters(existing_params, [])

    if "publication_status" in patch:
        payload["publication"] = {**copy.deepcopy(_as_dict(raw.get("publication"))), "status": patch["publication_status"]}
    elif raw.get("publication"):
        payload["publication"] = copy.deepcopy(raw["publication"])

    if "delivery_options" in patch:
        payload["delivery"] = patch["delivery_options"]
    elif raw.get("delivery"):
        payload["delivery"] = copy.deepcopy(raw["delivery"])

    if "payment_options" in patch:
        payload["payments"] = patch["payment_options"]
    elif raw.get("payments"):
        payload["payments"] = copy.deepcopy(raw["payments"])

    return payload


def build_stock_payload(quantity: int) -> Dict[str, Any]:
    return {"stock": {"available": quantity}}


def patched_remote_keys(patch: Dict[str, Any]) -> List[str]:
    keys = []
    for field_name in patch:
        key = LOCAL_TO_REMOTE_KEYS.get(field_name)
        if key and key not in keys:
            keys.append(key)
    return keys


def merge_raw_data_updates(
    existing_raw: Optional[Dict[str, Any]],
    applied_patch: Dict[str, Any],
    payload: Dict[str, Any],
) -> Dict[str, Any]:
    """Fold a successful remote write into the stored snapshot.

    Only the top-level keys touched by ``applied_patch`` are taken from the
    sent ``payload``; each one replaces the previous sub-object as a whole.
    Every other key of the snapshot is kept as it was.
    """
    if not existing_raw:
        return copy.deepcopy(payload)

    merged = copy.deepcopy(existing_raw)
    for key in patched_remote_keys(applied_patch):
        if key in payload:
            merged[key] = copy.deepcopy(payload[key])
    return merged
