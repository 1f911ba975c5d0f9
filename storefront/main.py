"""
Storefront sync core — FastAPI app.

The lifespan builds exactly one of each per-process service and stores it
on app.state:
  - cache:           CacheInvalidationManager
  - catalog_service: CatalogService (Square connector + product mirror)
  - job_manager:     BackgroundJobManager (catalog-sync, preorder-release)
  - is_admin:        admin check used by dependencies.require_admin
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from loguru import logger

from .cache.regions import CacheInvalidationManager
from .config import settings
from .connectors.square import RateLimiter, SquareConnector
from .database import SessionLocal, init_db
from .dependencies import default_is_admin
from .http_client import close_clients
from .logging_config import setup_logging
from .routers import admin_sync, catalog
from .scheduler import BackgroundJobManager, register_default_jobs
from .services.catalog_service import CatalogService


def build_catalog_service(cache: CacheInvalidationManager, session_factory=SessionLocal) -> CatalogService:
    connector = SquareConnector(
        access_token=settings.square_access_token,
        location_id=settings.square_location_id,
        base_url=settings.square_base_url,
        api_version=settings.square_api_version,
        timeout=settings.square_timeout_seconds,
        max_retries=settings.sync_max_retries,
        base_delay=settings.sync_retry_base_delay,
        rate_limiter=RateLimiter(settings.square_rate_limit_per_minute, 60),
    )
    return CatalogService(
        connector,
        session_factory,
        cache,
        max_staleness_hours=settings.mirror_max_staleness_hours,
        cache_ttl_seconds=settings.products_cache_ttl_seconds,
        low_stock_threshold=settings.low_stock_threshold,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    init_db()

    cache = CacheInvalidationManager()
    app.state.cache = cache
    app.state.catalog_service = build_catalog_service(cache)
    app.state.job_manager = BackgroundJobManager()
    if not hasattr(app.state, "is_admin"):
        app.state.is_admin = default_is_admin

    if not settings.square_access_token or not settings.square_location_id:
        logger.warning("Square credentials missing; catalog reads will serve the local mirror")

    register_default_jobs(app.state.job_manager, app.state.catalog_service, SessionLocal, cache, settings)
    logger.info("Storefront sync core started")
    yield

    await app.state.job_manager.stop_all_jobs()
    await close_clients()
    logger.info("Storefront sync core stopped")


app = FastAPI(title="Storefront Sync", version="1.0.0", lifespan=lifespan)
app.include_router(catalog.router)
app.include_router(admin_sync.router)


@app.get("/health")
def health():
    return {"status": "ok", "version": app.version}
