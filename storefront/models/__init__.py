"""Database models — re-exports all models.

Import from here:  from storefront.models import Product, SyncLog
Or from submodules: from storefront.models.product import Product
"""

from .base import Base  # noqa: F401

# Catalog mirror
from .product import (  # noqa: F401
    PreorderStatus,
    Product,
    ProductType,
    StockStatus,
)

# Sync bookkeeping
from .sync import SyncLog  # noqa: F401
