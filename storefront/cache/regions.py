"""
cache/regions.py — Cache invalidation manager

Process-wide registry of named validity flags. Regions hold no data: they
only tell readers whether the mirror (or a memo built from it) may be
trusted without re-reading. One instance per process, built in the app
lifespan and stored on app.state.

Regions:
    products      catalog listing
    inventory     stock levels
    product:<id>  one product; tracked only while invalidated, dropped on
                  re-validation. Past MAX_PRODUCT_REGIONS they collapse
                  into one inventory invalidation.
    all           every region; valid again once all others are re-validated

Usage:
    cache.invalidate_products()
    if not cache.is_valid(PRODUCTS):
        ...re-read mirror...
        cache.mark_valid(PRODUCTS)
"""

import threading
from datetime import datetime, timezone

from loguru import logger

PRODUCTS = "products"
INVENTORY = "inventory"
ALL = "all"
FIXED_REGIONS = (PRODUCTS, INVENTORY, ALL)
MAX_PRODUCT_REGIONS = 1000

_PRODUCT_PREFIX = "product:"


def product_region(product_id: str) -> str:
    return f"{_PRODUCT_PREFIX}{product_id}"


class CacheInvalidationManager:
    def __init__(self):
        self._lock = threading.Lock()
        self._valid: dict[str, bool] = {PRODUCTS: True, INVENTORY: True, ALL: True}
        self._invalidated_at: dict[str, datetime | None] = dict.fromkeys(self._valid)

    def _invalidate(self, *regions: str) -> list[str]:
        """Flag regions invalid. Returns the ones whose state actually changed."""
        changed = []
        now = datetime.now(timezone.utc)
        with self._lock:
            for region in regions:
                if self._valid.get(region, True):
                    self._valid[region] = False
                    self._invalidated_at[region] = now
                    changed.append(region)
        if changed:
            logger.info("Cache invalidated: {}", ", ".join(changed))
        return changed

    def invalidate_products(self) -> None:
        self._invalidate(PRODUCTS)

    def invalidate_inventory(self) -> None:
        self._invalidate(INVENTORY)

    def invalidate_product(self, product_id: str) -> None:
        region = product_region(product_id)
        with self._lock:
            overflow = region not in self._valid and self._product_region_count() >= MAX_PRODUCT_REGIONS
            if overflow:
                self._drop_product_regions()
        if overflow:
            # An inventory invalidation covers every product region
            logger.warning("More than {} product regions pending; invalidating inventory", MAX_PRODUCT_REGIONS)
            self._invalidate(INVENTORY)
            return
        self._invalidate(region)

    def _product_region_count(self) -> int:
        return sum(1 for name in self._valid if name.startswith(_PRODUCT_PREFIX))

    def _drop_product_regions(self) -> None:
        """Caller holds the lock."""
        for name in [n for n in self._valid if n.startswith(_PRODUCT_PREFIX)]:
            del self._valid[name]
            self._invalidated_at.pop(name, None)

    def invalidate_all(self) -> None:
        with self._lock:
            regions = list(self._valid)
        self._invalidate(*regions, ALL)

    def is_valid(self, region: str) -> bool:
        """Unknown regions are valid: nothing has been invalidated there yet."""
        with self._lock:
            return self._valid.get(region, True)

    def mark_valid(self, region: str) -> None:
        with self._lock:
            if region == ALL:
                self._drop_product_regions()
                for name in self._valid:
                    self._valid[name] = True
                return
            if region in FIXED_REGIONS:
                self._valid[region] = True
            else:
                self._valid.pop(region, None)
                self._invalidated_at.pop(region, None)
            others = [v for name, v in self._valid.items() if name != ALL]
            if all(others):
                self._valid[ALL] = True

    def get_cache_info(self) -> dict:
        """Region -> state snapshot, for diagnostics."""
        with self._lock:
            return {
                name: {
                    "status": "valid" if valid else "invalidated",
                    "invalidated_at": (
                        self._invalidated_at[name].isoformat() if self._invalidated_at.get(name) else None
                    ),
                }
                for name, valid in sorted(self._valid.items())
            }
