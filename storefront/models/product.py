"""Catalog mirror — one row per platform item variation (or locally authored product)."""

import enum
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Date, Index, Integer, Numeric, String, Text

from ..database import UTCDateTime
from .base import Base


class ProductType(str, enum.Enum):
    RECORD = "record"
    MERCH = "merch"
    VOUCHER = "voucher"
    ACCESSORY = "accessory"


class PreorderStatus(str, enum.Enum):
    NONE = "none"
    ACTIVE = "active"
    RELEASED = "released"


class StockStatus(str, enum.Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


class Product(Base):
    """Mirror of a platform catalog variation, annotated with sync metadata.

    Written only by the catalog sync (upsert keyed by id) and the preorder
    reconciler. is_visible, product_type and slug are admin-owned once set.
    """

    __tablename__ = "products"
    id = Column(String(64), primary_key=True)
    title = Column(String(255), nullable=False)
    artist = Column(String(255))
    slug = Column(String(80), unique=True)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    currency = Column(String(3), default="GBP")
    image_url = Column(String(500))
    product_type = Column(String(20), default=ProductType.RECORD.value)  # record | merch | voucher | accessory

    is_visible = Column(Boolean, nullable=False, default=True)
    available_at_location = Column(Boolean, nullable=False, default=False)
    is_from_square = Column(Boolean, nullable=False, default=False)

    stock_quantity = Column(Integer, nullable=False, default=0)
    stock_status = Column(String(20), default=StockStatus.OUT_OF_STOCK.value)
    in_stock = Column(Boolean, nullable=False, default=False)

    is_preorder = Column(Boolean, nullable=False, default=False)
    preorder_release_date = Column(Date)
    preorder_status = Column(String(20), nullable=False, default=PreorderStatus.NONE.value)  # none | active | released

    last_synced_at = Column(UTCDateTime)
    platform_updated_at = Column(String(40))
    created_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_products_storefront", "available_at_location", "is_visible"),
        Index("ix_products_preorder", "is_preorder", "preorder_status", "preorder_release_date"),
        Index("ix_products_synced", "is_from_square", "last_synced_at"),
    )
