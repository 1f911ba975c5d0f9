"""Public catalog API — storefront product listing and per-product stock."""

from fastapi import APIRouter, Depends, HTTPException

from ..dependencies import get_catalog_service
from ..exceptions import MirrorError, ProductNotFoundError
from ..services.catalog_service import CatalogService, FetchResult

router = APIRouter(tags=["catalog"])


def fetch_payload(result: FetchResult) -> dict:
    return {
        "products": [p.model_dump(mode="json") for p in result],
        "count": len(result),
        "source": result.outcome,
        "degraded": result.degraded,
        "last_synced_at": result.synced_at.isoformat() if result.synced_at else None,
    }


@router.get("/api/products")
async def api_list_products(service: CatalogService = Depends(get_catalog_service)):
    try:
        result = await service.get_cached_products(for_admin=False)
    except MirrorError as e:
        raise HTTPException(503, "Catalog temporarily unavailable") from e
    return fetch_payload(result)


@router.get("/api/products/{product_id}/inventory")
async def api_product_inventory(product_id: str, service: CatalogService = Depends(get_catalog_service)):
    try:
        result = await service.get_product_inventory(product_id)
    except ProductNotFoundError:
        raise HTTPException(404, "Product not found")
    except MirrorError as e:
        raise HTTPException(503, "Inventory temporarily unavailable") from e

    product = result[0]
    if not product.is_visible:
        raise HTTPException(404, "Product not found")
    return {
        "product_id": product.id,
        "stock_quantity": product.stock_quantity,
        "stock_status": product.stock_status.value,
        "in_stock": product.in_stock,
        "available_at_location": product.available_at_location,
        "source": result.outcome,
    }
