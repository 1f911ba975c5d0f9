"""
test_cache_regions.py — Tests for the cache invalidation manager

Called by: pytest
Depends on: storefront.cache.regions
"""

import threading
from unittest.mock import patch

from storefront.cache.regions import ALL, INVENTORY, PRODUCTS, CacheInvalidationManager, product_region


def test_fixed_regions_start_valid(cache):
    info = cache.get_cache_info()
    assert set(info) == {PRODUCTS, INVENTORY, ALL}
    assert all(v["status"] == "valid" for v in info.values())
    assert all(v["invalidated_at"] is None for v in info.values())


def test_invalidate_product_creates_region(cache):
    cache.invalidate_product("VAR1")
    info = cache.get_cache_info()
    assert info["product:VAR1"]["status"] == "invalidated"
    assert info["product:VAR1"]["invalidated_at"] is not None
    assert info[PRODUCTS]["status"] == "valid"


def test_invalidate_twice_is_noop(cache):
    cache.invalidate_product("VAR1")
    before = cache.get_cache_info()
    cache.invalidate_product("VAR1")
    assert cache.get_cache_info() == before


def test_invalidate_products_and_inventory(cache):
    cache.invalidate_products()
    cache.invalidate_inventory()
    assert not cache.is_valid(PRODUCTS)
    assert not cache.is_valid(INVENTORY)
    assert cache.is_valid(ALL)


def test_invalidate_all_covers_every_known_region(cache):
    cache.invalidate_product("VAR1")
    cache.invalidate_all()
    info = cache.get_cache_info()
    assert {name for name, v in info.items() if v["status"] == "invalidated"} == {
        PRODUCTS, INVENTORY, ALL, "product:VAR1",
    }


def test_all_revalidates_once_every_region_is_valid(cache):
    cache.invalidate_all()
    cache.mark_valid(PRODUCTS)
    assert not cache.is_valid(ALL)
    cache.mark_valid(INVENTORY)
    assert cache.is_valid(ALL)


def test_mark_valid_all_revalidates_everything(cache):
    cache.invalidate_all()
    cache.mark_valid(ALL)
    assert cache.is_valid(PRODUCTS)
    assert cache.is_valid(INVENTORY)


def test_unknown_region_is_valid(cache):
    assert cache.is_valid(product_region("never-seen"))


def test_concurrent_invalidation_from_threads():
    cache = CacheInvalidationManager()
    threads = [threading.Thread(target=cache.invalidate_product, args=(f"V{i % 5}",)) for i in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    info = cache.get_cache_info()
    assert sorted(k for k in info if k.startswith("product:")) == [f"product:V{i}" for i in range(5)]


def test_revalidated_product_region_is_forgotten(cache):
    cache.invalidate_product("VAR1")
    cache.mark_valid(product_region("VAR1"))
    assert cache.is_valid(product_region("VAR1"))
    assert set(cache.get_cache_info()) == {PRODUCTS, INVENTORY, ALL}


def test_mark_valid_all_forgets_product_regions(cache):
    cache.invalidate_product("VAR1")
    cache.invalidate_product("VAR2")
    cache.mark_valid(ALL)
    assert set(cache.get_cache_info()) == {PRODUCTS, INVENTORY, ALL}
    assert cache.is_valid(product_region("VAR1"))


def test_product_regions_are_bounded(cache):
    with patch("storefront.cache.regions.MAX_PRODUCT_REGIONS", 3):
        for i in range(3):
            cache.invalidate_product(f"V{i}")
        assert cache.is_valid(INVENTORY)

        cache.invalidate_product("V3")

    info = cache.get_cache_info()
    assert not any(name.startswith("product:") for name in info)
    assert info[INVENTORY]["status"] == "invalidated"


def test_pending_product_region_does_not_count_twice(cache):
    with patch("storefront.cache.regions.MAX_PRODUCT_REGIONS", 1):
        cache.invalidate_product("V0")
        cache.invalidate_product("V0")
    assert not cache.is_valid(product_region("V0"))
    assert cache.is_valid(INVENTORY)
