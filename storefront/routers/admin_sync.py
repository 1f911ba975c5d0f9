"""Admin sync API — live catalog reads, sync control, jobs, cache and preorders.

Every route here requires require_admin. Refused job transitions return
{"success": false, ...} with HTTP 200; unknown job ids are 404.
"""

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, model_validator
from sqlalchemy.orm import Session

from ..cache.regions import CacheInvalidationManager
from ..database import get_db
from ..dependencies import get_cache, get_catalog_service, get_job_manager, require_admin
from ..exceptions import JobNotFoundError, MirrorError
from ..models import PreorderStatus
from ..scheduler import BackgroundJobManager
from ..services import preorder_service
from ..services.catalog_service import PLATFORM_FAILURES, CatalogService
from .catalog import fetch_payload

router = APIRouter(tags=["admin"], dependencies=[Depends(require_admin)])


# ── Schemas ──────────────────────────────────────────────────────────


class JobActionRequest(BaseModel):
    action: Literal["start", "stop", "execute"]
    job_id: str = Field(..., min_length=1)


class CacheInvalidateRequest(BaseModel):
    type: Literal["products", "inventory", "product", "all"]
    product_id: str | None = None

    @model_validator(mode="after")
    def _product_needs_id(self):
        if self.type == "product" and not self.product_id:
            raise ValueError("product_id is required for product invalidation")
        return self


# ── Catalog ──────────────────────────────────────────────────────────


@router.get("/api/admin/products")
async def api_admin_products(service: CatalogService = Depends(get_catalog_service)):
    try:
        result = await service.fetch_products(for_admin=True)
    except MirrorError as e:
        raise HTTPException(503, f"Mirror unavailable: {e}") from e
    return fetch_payload(result)


@router.post("/api/admin/sync")
async def api_sync_now(service: CatalogService = Depends(get_catalog_service)):
    try:
        summary = await service.sync_catalog()
    except PLATFORM_FAILURES as e:
        return {"success": False, "error": str(e)}
    except MirrorError as e:
        raise HTTPException(503, f"Mirror unavailable: {e}") from e
    return {
        "success": True,
        "synced_at": summary.synced_at.isoformat(),
        **summary.counts(),
        "errors": summary.errors,
    }


@router.get("/api/admin/sync/status")
def api_sync_status(service: CatalogService = Depends(get_catalog_service)):
    try:
        return service.sync_status()
    except MirrorError as e:
        raise HTTPException(503, f"Mirror unavailable: {e}") from e


# ── Background jobs ──────────────────────────────────────────────────


@router.get("/api/admin/background-jobs")
def api_list_jobs(job_id: str | None = None, jobs: BackgroundJobManager = Depends(get_job_manager)):
    if job_id:
        try:
            return {"success": True, "job": jobs.get_job_status(job_id)}
        except JobNotFoundError:
            raise HTTPException(404, f"Job {job_id} not found")
    return {"success": True, "jobs": jobs.get_all_jobs()}


@router.post("/api/admin/background-jobs")
async def api_control_job(body: JobActionRequest, jobs: BackgroundJobManager = Depends(get_job_manager)):
    try:
        jobs.get_job_status(body.job_id)
    except JobNotFoundError:
        raise HTTPException(404, f"Job {body.job_id} not found")

    if body.action == "start":
        ok = jobs.start_job(body.job_id)
        message = f"Job {body.job_id} started" if ok else f"Job {body.job_id} is already running"
    elif body.action == "stop":
        ok = jobs.stop_job(body.job_id)
        message = f"Job {body.job_id} stopped" if ok else f"Job {body.job_id} is not running"
    else:
        result = await jobs.execute_job_now(body.job_id)
        ok, message = result.success, result.message

    return {"success": ok, "message": message, "job": jobs.get_job_status(body.job_id)}


# ── Cache ────────────────────────────────────────────────────────────


@router.get("/api/admin/cache/invalidate")
def api_cache_info(cache: CacheInvalidationManager = Depends(get_cache)):
    return {
        "success": True,
        "cache_info": cache.get_cache_info(),
        "available_operations": ["products", "inventory", "product (requires product_id)", "all"],
    }


@router.post("/api/admin/cache/invalidate")
def api_cache_invalidate(body: CacheInvalidateRequest, cache: CacheInvalidationManager = Depends(get_cache)):
    if body.type == "products":
        cache.invalidate_products()
    elif body.type == "inventory":
        cache.invalidate_inventory()
    elif body.type == "product":
        cache.invalidate_product(body.product_id)
    else:
        cache.invalidate_all()
    return {"success": True, "message": f"Cache invalidated for: {body.type}"}


# ── Preorders ────────────────────────────────────────────────────────


@router.get("/api/admin/preorders/auto-update")
def api_preview_preorders(db: Session = Depends(get_db)):
    ready = preorder_service.preview_matured_preorders(db)
    return {
        "success": True,
        "ready_to_release": [p.model_dump(mode="json") for p in ready],
        "releasing_soon": [
            {
                **p.model_dump(mode="json"),
                "days_until_release": preorder_service.days_until_release(p.preorder_release_date),
            }
            for p in preorder_service.get_preorders_releasing_soon(db)
        ],
        "stats": preorder_service.preorder_stats(db),
    }


@router.post("/api/admin/preorders/auto-update")
def api_release_preorders(
    db: Session = Depends(get_db),
    cache: CacheInvalidationManager = Depends(get_cache),
):
    result = preorder_service.release_matured_preorders(db, cache)
    return {
        "success": not result.failed,
        "message": f"Released {len(result.released)} preorders",
        **result.as_dict(),
    }


@router.get("/api/admin/preorders")
def api_list_preorders(status: PreorderStatus = PreorderStatus.ACTIVE, db: Session = Depends(get_db)):
    return {
        "success": True,
        "status": status.value,
        "preorders": [p.model_dump(mode="json") for p in preorder_service.get_preorders_by_status(db, status)],
    }
