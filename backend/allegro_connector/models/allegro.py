import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


class ValidationStatus(str, Enum):
    READY = "READY"
    WARNINGS = "WARNINGS"
    ERRORS = "ERRORS"


class SyncStatus(str, Enum):
    PENDING = "PENDING"
    SYNCED = "SYNCED"
    ERROR = "ERROR"


class SyncSource(str, Enum):
    MANUAL = "MANUAL"
    ALLEGRO_API = "ALLEGRO_API"
    SALES_CENTER = "SALES_CENTER"


class AllegroTokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    refresh_token: Optional[str] = None
    scope: Optional[str] = None


class AllegroAuthorizationUrl(BaseModel):
    url: str
    state: str


class OfferAttribute(BaseModel):
    id: str
    values: List[Any] = Field(default_factory=list)


class OfferUpdate(BaseModel):
    """Partial offer update. Only fields the caller actually sent are applied."""

    title: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    price: Optional[Decimal] = None
    currency: Optional[str] = None
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    images: Optional[List[str]] = None
    attributes: Optional[List[OfferAttribute]] = None
    status: Optional[str] = None
    publication_status: Optional[str] = None
    delivery_options: Optional[Any] = None
    payment_options: Optional[Any] = None

    @field_validator("price")
    @classmethod
    def _price_not_null(cls, value):
        if value is None:
            raise ValueError("price cannot be null")
        return value

    @field_validator("delivery_options", "payment_options", mode="before")
    @classmethod
    def _parse_json_blob(cls, value):
        # Manually entered blobs arrive as JSON text from forms and CSV imports.
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError(f"malformed JSON: {exc.msg} at position {exc.pos}") from exc
        return value

    def changed_fields(self) -> dict:
        return self.model_dump(exclude_unset=True)


class StockUpdate(BaseModel):
    quantity: int


class ValidationIssue(BaseModel):
    type: str
    message: str
    severity: str  # "error" or "warning"


class ValidationResult(BaseModel):
    status: ValidationStatus
    errors: List[ValidationIssue] = Field(default_factory=list)

    def codes(self) -> List[str]:
        return [issue.type for issue in self.errors]


class OfferPreviewItem(BaseModel):
    allegro_offer_id: str
    title: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    price: Optional[Decimal] = None
    currency: Optional[str] = None
    stock_quantity: Optional[int] = None
    status: Optional[str] = None
    publication_status: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    raw_data: Optional[dict] = None


class ImportPreview(BaseModel):
    items: List[OfferPreviewItem]
    total: int


class ImportResult(BaseModel):
    total_imported: int = 0
    total_created: int = 0
    total_updated: int = 0
    total_failed: int = 0


class ApproveImportRequest(BaseModel):
    offer_ids: List[str]


class OfferResponse(BaseModel):
    id: str
    allegro_offer_id: str
    product_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    category_id: Optional[str] = None
    price: Optional[Decimal] = None
    currency: Optional[str] = None
    stock_quantity: Optional[int] = None
    status: Optional[str] = None
    publication_status: Optional[str] = None
    images: Optional[List[str]] = None
    validation_status: Optional[str] = None
    validation_errors: Optional[List[ValidationIssue]] = None
    last_validated_at: Optional[datetime] = None
    sync_status: Optional[str] = None
    sync_source: Optional[str] = None
    sync_error: Optional[str] = None
    last_synced_at: Optional[datetime] = None

    class Config:
        from_attributes = True
