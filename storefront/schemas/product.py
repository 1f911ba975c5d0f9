"""Normalized product record — the typed shape every read path returns.

Platform payloads are mapped into ProductRecord at the boundary
(services/catalog_normalizer.py); mirror rows load into the same model
via from_attributes, so live and fallback reads look identical.
"""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..models.product import PreorderStatus, ProductType, StockStatus


class ProductRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    artist: str | None = None
    slug: str | None = None
    description: str | None = None
    price: Decimal = Decimal("0")
    currency: str | None = "GBP"
    image_url: str | None = None
    product_type: ProductType = ProductType.RECORD
    is_visible: bool = True
    available_at_location: bool = False
    is_from_square: bool = True
    stock_quantity: int = 0
    stock_status: StockStatus = StockStatus.OUT_OF_STOCK
    in_stock: bool = False
    is_preorder: bool = False
    preorder_release_date: date | None = None
    preorder_status: PreorderStatus = PreorderStatus.NONE
    last_synced_at: datetime | None = None
    platform_updated_at: str | None = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v

    @field_validator("price")
    @classmethod
    def _non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("price must not be negative")
        return v
