"""Catalog sync administration routes."""
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from catalogsync.api.deps import get_catalog_client, get_processor, get_store
from catalogsync.catalog.client import CatalogClient
from catalogsync.catalog.export import render_csv
from catalogsync.catalog.processor import SyncProcessor
from catalogsync.catalog.store import ProductStore
from catalogsync.config import Settings, get_settings
from catalogsync.models.sync import SyncOperation

router = APIRouter()


class SyncRequest(BaseModel):
    product_id: str
    operation: SyncOperation = SyncOperation.UPDATE


class SyncAllRequest(BaseModel):
    batch_size: int = 50


class RetryRequest(BaseModel):
    id: Optional[int] = None  # dead-letter item id
    product_id: Optional[str] = None


@router.get("/status")
def sync_status(limit: int = 100, processor: SyncProcessor = Depends(get_processor)):
    """Counts per sync status plus the most recently touched records."""
    return processor.get_sync_status(limit)


@router.post("/sync")
async def sync_product(request: SyncRequest, processor: SyncProcessor = Depends(get_processor)):
    """Sync a single product now."""
    if request.operation == SyncOperation.RECONCILE:
        raise HTTPException(status_code=400, detail="RECONCILE is not a per-product operation")
    result = await processor.sync_product(request.product_id, request.operation)
    return JSONResponse(status_code=200 if result.success else 500, content=result.as_dict())


@router.post("/sync-all")
async def sync_all(
    request: Optional[SyncAllRequest] = None,
    processor: SyncProcessor = Depends(get_processor),
):
    """Push every local product. Used for the initial load."""
    batch_size = request.batch_size if request else 50
    return await processor.sync_all(batch_size=max(1, batch_size))


@router.get("/dead-letter")
def dead_letter(limit: int = 50, processor: SyncProcessor = Depends(get_processor)):
    items = processor.get_dead_letter_items(limit)
    return {"items": items, "total": len(items)}


@router.post("/retry")
async def retry(request: RetryRequest, processor: SyncProcessor = Depends(get_processor)):
    """Retry a dead-letter item by id, or re-sync a product by id."""
    if request.id is not None:
        result = await processor.retry_dead_letter_item(request.id, resolved_by="admin")
        if result is None:
            raise HTTPException(status_code=404, detail="Dead letter item not found")
    elif request.product_id:
        result = await processor.sync_product(request.product_id, SyncOperation.UPDATE)
    else:
        raise HTTPException(status_code=400, detail="id or product_id is required")
    return JSONResponse(status_code=200 if result.success else 500, content=result.as_dict())


@router.get("/logs")
def logs(
    product_id: Optional[str] = None,
    limit: int = 20,
    processor: SyncProcessor = Depends(get_processor),
):
    """Audit log for one product, or the most recent entries overall."""
    if product_id:
        return {"logs": processor.get_product_sync_logs(product_id, limit)}
    return {"logs": processor.get_recent_logs(limit)}


@router.get("/verify")
async def verify(client: CatalogClient = Depends(get_catalog_client)):
    """Check credentials and catalog access."""
    missing = client.validate_config()
    if missing:
        return JSONResponse(
            status_code=400,
            content={"connected": False, "error": f"Missing configuration: {', '.join(missing)}"},
        )

    result = await client.verify_access()
    if not result.ok:
        return JSONResponse(
            status_code=400,
            content={
                "connected": False,
                "error": result.error.message,
                "error_code": result.error.code,
            },
        )
    return {"connected": True, "catalog": result.data}


@router.get("/export-csv")
def export_csv(
    store: ProductStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Full catalog as CSV, for manual upload."""
    body = render_csv(store.fetch_all_products(), site_url=settings.site_url)
    filename = f"catalog-{datetime.utcnow():%Y-%m-%d}.csv"
    return Response(
        content=body,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
