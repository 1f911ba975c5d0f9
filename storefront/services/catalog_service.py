"""Catalog fetch service — live platform reads with mirror fallback.

Business Rules:
- A live pass pulls every catalog item at the location plus its inventory
  counts, normalizes, and upserts the lot in ONE transaction. Regions are
  invalidated only after the commit.
- At most one live pass per location runs at a time; overlapping callers
  (public and admin alike) await the same task.
- If the platform fails (retries exhausted, permanent error, not configured)
  reads degrade to the mirror. The fallback itself failing is a hard error,
  and so is a mirror older than mirror_max_staleness_hours.
- Public reads see available_at_location AND is_visible rows; admin reads
  see everything.

Called by: routers/catalog.py, routers/admin_sync.py, scheduler.py
Depends on: connectors/square.py, services/product_mirror.py, cache/regions.py
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from ..cache.regions import INVENTORY, PRODUCTS, CacheInvalidationManager, product_region
from ..connectors.square import PlatformError, PlatformNotConfiguredError, SquareConnector
from ..exceptions import MalformedRecordError, MirrorError, ProductNotFoundError, StaleMirrorError
from ..models import Product
from ..retry import RetryExhaustedError
from ..schemas.product import ProductRecord
from . import product_mirror
from .catalog_normalizer import collect_variation_ids, normalize_catalog_item

LIVE = "live"
CACHED = "cached"
DEGRADED = "degraded"

# Failures that degrade a read to the mirror instead of propagating
PLATFORM_FAILURES = (PlatformError, RetryExhaustedError)


@dataclass
class FetchResult:
    """Ordered products plus how they were obtained."""

    products: list[ProductRecord]
    outcome: str = LIVE
    synced_at: datetime | None = None
    error: str | None = None

    @property
    def degraded(self) -> bool:
        return self.outcome == DEGRADED

    def __iter__(self):
        return iter(self.products)

    def __len__(self):
        return len(self.products)

    def __getitem__(self, index):
        return self.products[index]


@dataclass
class SyncSummary:
    synced_at: datetime
    fetched: int = 0
    upserted: int = 0
    skipped: int = 0
    unavailable: int = 0
    product_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def counts(self) -> dict:
        return {
            "fetched": self.fetched,
            "upserted": self.upserted,
            "skipped": self.skipped,
            "unavailable": self.unavailable,
        }


@dataclass
class _Memo:
    products: list[ProductRecord]
    stored_at: float
    synced_at: datetime | None
    stale: bool = False


class CatalogService:
    """One instance per process (see main.py lifespan)."""

    def __init__(
        self,
        connector: SquareConnector,
        session_factory,
        cache: CacheInvalidationManager,
        max_staleness_hours: float = 24,
        cache_ttl_seconds: float = 300,
        low_stock_threshold: int = 3,
        clock=time.monotonic,
    ):
        self.connector = connector
        self.session_factory = session_factory
        self.cache = cache
        self.max_staleness_hours = max_staleness_hours
        self.cache_ttl_seconds = cache_ttl_seconds
        self.low_stock_threshold = low_stock_threshold
        self._clock = clock
        self._inflight: dict[str, asyncio.Task] = {}
        self._memo: dict[bool, _Memo] = {}
        self._inventory_checked: dict[str, float] = {}

    # ── Live sync ───────────────────────────────────────────────────

    async def sync_catalog(self) -> SyncSummary:
        """Run (or join) a live pass. Raises on platform or mirror failure."""
        key = self.connector.location_id
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(self._run_sync(), name=f"catalog-sync:{key}")
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug("Joining in-flight catalog sync for {}", key)
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    @property
    def sync_in_progress(self) -> bool:
        return bool(self._inflight)

    async def _run_sync(self) -> SyncSummary:
        started = datetime.now(timezone.utc)
        try:
            items = await self.connector.search_catalog_items()
            returned_ids = collect_variation_ids(items)
            counts = await self.connector.batch_inventory_counts(returned_ids)
        except PLATFORM_FAILURES as e:
            if not isinstance(e, PlatformNotConfiguredError):
                product_mirror.write_failed_sync_log(self.session_factory, started, [str(e)])
            raise

        summary = SyncSummary(synced_at=started, fetched=len(items))
        records: dict[str, ProductRecord] = {}
        for item in items:
            try:
                for record in normalize_catalog_item(
                    item, counts, self.connector.location_id, self.low_stock_threshold
                ):
                    records[record.id] = record
            except MalformedRecordError as e:
                logger.warning("Skipping catalog item: {}", e)
                summary.skipped += 1
                summary.errors.append(str(e))

        db = self.session_factory()
        try:
            summary.synced_at = datetime.now(timezone.utc)
            summary.upserted = product_mirror.upsert_products(db, list(records.values()), summary.synced_at)
            if records:
                # Skipped (malformed) variations were still returned, so they stay available
                summary.unavailable = product_mirror.mark_missing_unavailable(db, set(returned_ids))
            else:
                logger.warning("Catalog sync returned no usable records; leaving availability untouched")
            product_mirror.record_sync_log(db, "success", started, summary.counts(), summary.errors)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise MirrorError(f"Mirror write failed: {e}") from e
        finally:
            db.close()

        summary.product_ids = list(records)
        self.cache.invalidate_products()
        self.cache.invalidate_inventory()
        logger.info(
            "Catalog sync complete: {} items, {} upserted, {} skipped, {} now unavailable",
            summary.fetched, summary.upserted, summary.skipped, summary.unavailable,
        )
        return summary

    # ── Reads ───────────────────────────────────────────────────────

    async def fetch_products(self, for_admin: bool = False) -> FetchResult:
        """Live read, degrading to the mirror when the platform is unavailable."""
        try:
            summary = await self.sync_catalog()
        except PLATFORM_FAILURES as e:
            return self._fallback(for_admin, e)

        db = self.session_factory()
        try:
            products = product_mirror.read_products(db, for_admin, ids=summary.product_ids)
        finally:
            db.close()
        return FetchResult(products, LIVE, synced_at=summary.synced_at)

    def _fallback(self, for_admin: bool, error: Exception) -> FetchResult:
        db = self.session_factory()
        try:
            last_synced = product_mirror.latest_sync_time(db)
            if last_synced is not None and self.max_staleness_hours > 0:
                age = datetime.now(timezone.utc) - last_synced
                if age > timedelta(hours=self.max_staleness_hours):
                    logger.error("Platform unavailable and mirror is {} old; refusing to serve", age)
                    raise StaleMirrorError(last_synced, self.max_staleness_hours) from error
            products = product_mirror.read_products(db, for_admin)
        finally:
            db.close()

        logger.warning(
            "Degraded mode: serving {} products from mirror (last sync {}): {}",
            len(products), last_synced, error,
        )
        return FetchResult(products, DEGRADED, synced_at=last_synced, error=str(error))

    async def get_cached_products(self, for_admin: bool = False) -> FetchResult:
        """Memoized read: memo while fresh, mirror re-read after invalidation, else live."""
        self._apply_invalidation()
        memo = self._memo.get(for_admin)
        expired = memo is None or self._clock() - memo.stored_at >= self.cache_ttl_seconds

        if not expired and not memo.stale:
            return FetchResult(memo.products, CACHED, synced_at=memo.synced_at)

        if not expired:
            db = self.session_factory()
            try:
                memo.products = product_mirror.read_products(db, for_admin)
                memo.synced_at = product_mirror.latest_sync_time(db)
            finally:
                db.close()
            memo.stale = False
            return FetchResult(memo.products, CACHED, synced_at=memo.synced_at)

        result = await self.fetch_products(for_admin)
        if not result.degraded:
            self._apply_invalidation()
            self._memo[for_admin] = _Memo(result.products, self._clock(), result.synced_at)
        return result

    def _apply_invalidation(self) -> None:
        if not self.cache.is_valid(PRODUCTS):
            for memo in self._memo.values():
                memo.stale = True
            self.cache.mark_valid(PRODUCTS)

    async def get_product_inventory(self, product_id: str) -> FetchResult:
        """Current stock for one product, live when its inventory regions are stale."""
        if not self.cache.is_valid(INVENTORY):
            self._inventory_checked.clear()
            self.cache.mark_valid(INVENTORY)
        region = product_region(product_id)
        if not self.cache.is_valid(region):
            self._inventory_checked.pop(product_id, None)
            self.cache.mark_valid(region)

        db = self.session_factory()
        try:
            product = db.get(Product, product_id)
            if product is None:
                raise ProductNotFoundError(product_id)

            checked = self._inventory_checked.get(product_id)
            if not product.is_from_square or (
                checked is not None and self._clock() - checked < self.cache_ttl_seconds
            ):
                return FetchResult([ProductRecord.model_validate(product)], CACHED, product.last_synced_at)

            try:
                quantity = await self.connector.fetch_inventory_count(product_id)
            except PLATFORM_FAILURES as e:
                logger.warning("Inventory lookup for {} degraded to mirror: {}", product_id, e)
                return FetchResult(
                    [ProductRecord.model_validate(product)], DEGRADED, product.last_synced_at, error=str(e)
                )

            product_mirror.update_inventory(product, quantity, self.low_stock_threshold)
            db.commit()
            self._inventory_checked[product_id] = self._clock()
            return FetchResult([ProductRecord.model_validate(product)], LIVE, product.last_synced_at)
        except SQLAlchemyError as e:
            db.rollback()
            raise MirrorError(f"Inventory read failed for {product_id}: {e}") from e
        finally:
            db.close()

    # ── Diagnostics ─────────────────────────────────────────────────

    def sync_status(self) -> dict:
        db = self.session_factory()
        try:
            last_synced = product_mirror.latest_sync_time(db)
            counts = product_mirror.mirror_counts(db)
            last_log = product_mirror.last_sync_log(db)
        except SQLAlchemyError as e:
            raise MirrorError(f"Sync status read failed: {e}") from e
        finally:
            db.close()

        is_stale = last_synced is None
        if last_synced is not None and self.max_staleness_hours > 0:
            is_stale = datetime.now(timezone.utc) - last_synced > timedelta(hours=self.max_staleness_hours)

        return {
            "location_id": self.connector.location_id,
            "last_synced_at": last_synced.isoformat() if last_synced else None,
            "is_stale": is_stale,
            "sync_in_progress": self.sync_in_progress,
            "products": counts,
            "last_sync": (
                {
                    "status": last_log.status,
                    "started_at": last_log.started_at.isoformat(),
                    "duration_seconds": last_log.duration_seconds,
                    "row_counts": last_log.row_counts,
                    "errors": last_log.errors,
                }
                if last_log
                else None
            ),
        }
