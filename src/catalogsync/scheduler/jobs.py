"""
APScheduler jobs for background catalog upkeep.

Nightly reconciliation catches drift that event-driven syncs missed
(a failed webhook, a product edited directly in the database, a manual
change in the catalog UI).

The scheduler runs inside the `python -m catalogsync run` process.
"""
import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from catalogsync.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine to pass to the reconciliation job.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler(timezone="UTC")

    scheduler.add_job(
        _nightly_reconciliation,
        trigger="cron",
        hour=settings.reconciliation_hour,
        minute=settings.reconciliation_minute,
        id="nightly_reconciliation",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _nightly_reconciliation(engine) -> None:
    """
    Nightly job: diff the local catalog against the remote one and fix drift.

    Idempotent. Never raises into the scheduler.
    """
    from catalogsync.alerting.notifier import AlertService
    from catalogsync.catalog.client import CatalogClient
    from catalogsync.catalog.processor import SyncProcessor
    from catalogsync.catalog.reconciliation import ReconciliationJob
    from catalogsync.catalog.store import ProductStore

    settings = get_settings()
    logger.info("Nightly reconciliation starting at %s", datetime.utcnow().isoformat())

    try:
        client = CatalogClient.from_settings(settings)
        alerter = AlertService.from_settings(settings)
        try:
            store = ProductStore(engine)
            processor = SyncProcessor(client, engine, alerter, store=store, settings=settings)
            job = ReconciliationJob(
                client,
                processor,
                store,
                alerter,
                batch_size=settings.reconciliation_batch_size,
                settings=settings,
            )
            result = await job.run()
        finally:
            await client.aclose()
            await alerter.aclose()

        logger.info(
            "Nightly reconciliation done: success=%s fixed=%d errors=%d",
            result.success, result.fixed, result.errors,
        )
    except Exception as exc:
        logger.error("Nightly reconciliation failed: %s", exc)
