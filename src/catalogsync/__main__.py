"""
Main entrypoint: scheduler process and one-shot maintenance commands.

FastAPI runs separately under uvicorn (admin surface + cron endpoint).

Usage:
    python -m catalogsync                 # starts the nightly reconciliation scheduler
    python -m catalogsync reconcile       # one reconciliation pass now
    python -m catalogsync sync-all        # push every product (initial load)
    python -m catalogsync verify          # check catalog credentials
    python -m catalogsync export PATH     # write the catalog CSV feed
    uvicorn catalogsync.api.main:app --host 0.0.0.0 --port 8000  # starts API
"""
import asyncio
import json
import logging
import sys

from catalogsync.config import get_settings
from catalogsync.errors import ConfigurationError

logging.basicConfig(
    level=getattr(logging, get_settings().log_level.upper(), logging.INFO),
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _build():
    """Wire client, alerter and processor the way the API process does."""
    from catalogsync.alerting.notifier import AlertService
    from catalogsync.catalog.client import CatalogClient
    from catalogsync.catalog.processor import SyncProcessor
    from catalogsync.db.engine import get_engine

    settings = get_settings()
    engine = get_engine()
    client = CatalogClient.from_settings(settings)
    alerter = AlertService.from_settings(settings)
    processor = SyncProcessor(client, engine, alerter, settings=settings)
    return client, alerter, processor


def _require_config(client) -> None:
    missing = client.validate_config()
    if missing:
        raise ConfigurationError(missing)


async def _run_scheduler() -> None:
    from catalogsync.db.engine import get_engine
    from catalogsync.scheduler.jobs import build_scheduler

    settings = get_settings()
    scheduler = build_scheduler(get_engine())
    scheduler.start()
    logger.info(
        "Scheduler started (nightly reconciliation at %02d:%02d UTC)",
        settings.reconciliation_hour,
        settings.reconciliation_minute,
    )
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down...")
    finally:
        scheduler.shutdown()


async def _reconcile() -> int:
    from catalogsync.catalog.reconciliation import ReconciliationJob

    settings = get_settings()
    client, alerter, processor = _build()
    try:
        job = ReconciliationJob(
            client,
            processor,
            processor.store,
            alerter,
            batch_size=settings.reconciliation_batch_size,
            settings=settings,
        )
        result = await job.run()
    finally:
        await client.aclose()
        await alerter.aclose()
    print(json.dumps(result.as_dict(), indent=2))
    return 0 if result.success else 1


async def _sync_all() -> int:
    client, alerter, processor = _build()
    try:
        _require_config(client)
        summary = await processor.sync_all()
    finally:
        await client.aclose()
        await alerter.aclose()
    print(json.dumps(summary, indent=2))
    return 0 if summary["failed"] == 0 else 1


async def _verify() -> int:
    from catalogsync.catalog.client import CatalogClient

    async with CatalogClient.from_settings(get_settings()) as client:
        _require_config(client)
        result = await client.verify_access()
    if not result.ok:
        logger.error("Catalog not reachable: %s", result.error.message)
        return 1
    print(json.dumps(result.data, indent=2))
    return 0


def _export(path: str) -> int:
    from catalogsync.catalog.export import write_csv
    from catalogsync.catalog.store import ProductStore
    from catalogsync.db.engine import get_engine

    products = ProductStore(get_engine()).fetch_all_products()
    count = write_csv(path, products, site_url=get_settings().site_url)
    logger.info("Exported %d products to %s", count, path)
    return 0


def main(argv) -> int:
    command = argv[0] if argv else "run"
    try:
        return _dispatch(command, argv)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return 1


def _dispatch(command: str, argv) -> int:
    if command == "run":
        asyncio.run(_run_scheduler())
        return 0
    if command == "reconcile":
        return asyncio.run(_reconcile())
    if command == "sync-all":
        return asyncio.run(_sync_all())
    if command == "verify":
        return asyncio.run(_verify())
    if command == "export" and len(argv) > 1:
        return _export(argv[1])
    print(__doc__)
    return 2


if __name__ == "__main__":
    sys.exit(main(sys.argv[1:]))
