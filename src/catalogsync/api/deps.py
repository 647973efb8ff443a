"""Shared FastAPI dependencies.

The catalog client and alert service live on app.state so every request in
the process shares one rate budget. Tests override these with
app.dependency_overrides.
"""
from fastapi import Depends, Request

from catalogsync.alerting.notifier import AlertService
from catalogsync.catalog.client import CatalogClient
from catalogsync.catalog.processor import SyncProcessor
from catalogsync.catalog.reconciliation import ReconciliationJob
from catalogsync.catalog.store import ProductStore
from catalogsync.config import Settings, get_settings
from catalogsync.db.engine import get_engine


def get_catalog_client(request: Request) -> CatalogClient:
    return request.app.state.catalog_client


def get_alerter(request: Request) -> AlertService:
    return request.app.state.alerter


def get_store(engine=Depends(get_engine)) -> ProductStore:
    return ProductStore(engine)


def get_processor(
    engine=Depends(get_engine),
    client: CatalogClient = Depends(get_catalog_client),
    alerter: AlertService = Depends(get_alerter),
    store: ProductStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> SyncProcessor:
    return SyncProcessor(client, engine, alerter, store=store, settings=settings)


def get_reconciliation_job(
    client: CatalogClient = Depends(get_catalog_client),
    alerter: AlertService = Depends(get_alerter),
    processor: SyncProcessor = Depends(get_processor),
    store: ProductStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> ReconciliationJob:
    return ReconciliationJob(
        client,
        processor,
        store,
        alerter,
        batch_size=settings.reconciliation_batch_size,
        settings=settings,
    )
