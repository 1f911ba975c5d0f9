"""
dependencies.py — Shared FastAPI Dependencies

The per-process service instances live on app.state (built in the
main.py lifespan). Routers reach them only through these functions, so
tests can swap any of them by assigning to app.state.

Business Rules:
- require_admin raises 403 unless app.state.is_admin(request) is true
- default_is_admin compares the X-Admin-Key header to ADMIN_API_KEY
  (constant-time); an empty ADMIN_API_KEY admits nobody

Called by: all routers
Depends on: config, cache/regions, services/catalog_service, scheduler
"""

import hmac

from fastapi import HTTPException, Request

from .cache.regions import CacheInvalidationManager
from .config import settings
from .scheduler import BackgroundJobManager
from .services.catalog_service import CatalogService


def default_is_admin(request: Request) -> bool:
    key = request.headers.get("x-admin-key")
    if not key or not settings.admin_api_key:
        return False
    return hmac.compare_digest(key, settings.admin_api_key)


def require_admin(request: Request) -> None:
    """Dependency: raises 403 if the caller is not an authorized admin."""
    is_admin = getattr(request.app.state, "is_admin", default_is_admin)
    if not is_admin(request):
        raise HTTPException(403, "Admin access required")


def get_catalog_service(request: Request) -> CatalogService:
    return request.app.state.catalog_service


def get_cache(request: Request) -> CacheInvalidationManager:
    return request.app.state.cache


def get_job_manager(request: Request) -> BackgroundJobManager:
    return request.app.state.job_manager
