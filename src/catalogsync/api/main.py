"""FastAPI application factory."""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from catalogsync.alerting.notifier import AlertService
from catalogsync.api.routes import catalog_sync, cron
from catalogsync.catalog.client import CatalogClient
from catalogsync.config import get_settings


def create_app() -> FastAPI:
    """Build and return the FastAPI app."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # One client per process: the rate budget is shared by every request
        settings = get_settings()
        app.state.catalog_client = CatalogClient.from_settings(settings)
        app.state.alerter = AlertService.from_settings(settings)
        yield
        await app.state.catalog_client.aclose()
        await app.state.alerter.aclose()

    app = FastAPI(
        title="Catalog Sync API",
        description="Storefront → external product catalog synchronization",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.include_router(catalog_sync.router, prefix="/catalog-sync", tags=["catalog-sync"])
    app.include_router(cron.router, prefix="/cron", tags=["cron"])

    return app


# Module-level app instance for uvicorn
app = create_app()
