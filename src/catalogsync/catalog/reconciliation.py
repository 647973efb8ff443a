"""
Nightly full-set reconciliation between the local store and the catalog.

Classification (keyed by product id == retailer_id):
  missing_in_meta   local only        → sync_product(id, UPDATE)
  orphaned_in_meta  remote only       → sync_product(retailer_id, DELETE)
  stale_in_meta     both, but differs → sync_product(id, UPDATE)

If the remote listing cannot be fetched in full, the run aborts before any
correction: a partial listing would make every unlisted product look missing.
"""
import asyncio
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from catalogsync.alerting.notifier import AlertKind
from catalogsync.catalog.transformer import change_summary, has_changed, transform
from catalogsync.config import get_settings
from catalogsync.models.sync import LogStatus, SyncOperation

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10
MISMATCH_MIN = 5
MISMATCH_RATIO = 0.05


@dataclass
class ReconciliationResult:
    success: bool = False
    skipped: bool = False
    aborted: bool = False
    error: Optional[str] = None
    total_products: int = 0
    total_remote: int = 0
    missing_in_meta: int = 0
    orphaned_in_meta: int = 0
    stale_in_meta: int = 0
    fixed: int = 0
    errors: int = 0
    duration_ms: int = 0
    missing_ids: List[str] = field(default_factory=list)
    orphaned_ids: List[str] = field(default_factory=list)
    stale_ids: List[str] = field(default_factory=list)

    @property
    def log_status(self) -> LogStatus:
        if not self.success:
            return LogStatus.FAILED
        return LogStatus.PARTIAL if self.errors else LogStatus.SUCCESS

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


def mismatch_threshold(total_products: int) -> float:
    return max(MISMATCH_MIN, total_products * MISMATCH_RATIO)


class ReconciliationJob:
    """Diffs both catalogs and corrects drift through the SyncProcessor."""

    def __init__(
        self,
        client,
        processor,
        store,
        alerter,
        batch_size: int = DEFAULT_BATCH_SIZE,
        settings=None,
    ):
        self.client = client
        self.processor = processor
        self.store = store
        self.alerter = alerter
        self.batch_size = max(1, batch_size)
        self.settings = settings or get_settings()

    async def run(self, should_abort: Optional[Callable[[], bool]] = None) -> ReconciliationResult:
        """
        Run one reconciliation pass.

        Args:
            should_abort: checked between correction batches; returning True
                stops further corrections (the run is still logged).

        Returns:
            ReconciliationResult. Remote failures are reported, not raised.
        """
        result = ReconciliationResult()

        if not self.settings.sync_enabled:
            logger.info("Sync disabled, skipping reconciliation")
            result.success = True
            result.skipped = True
            return result

        start = time.monotonic()
        logger.info("Reconciliation starting at %s", datetime.utcnow().isoformat())

        missing_config = self.client.validate_config()
        if missing_config:
            result.error = f"Missing catalog configuration: {', '.join(missing_config)}"
            return self._abort(result, start)

        products = self.store.fetch_all_products()
        result.total_products = len(products)

        listing = await self.client.list_all()
        if not listing.ok:
            result.error = f"Failed to fetch remote catalog: {listing.error.message}"
            return self._abort(result, start)

        remote = {item.retailer_id: item for item in listing.data}
        local = {p.id: p for p in products}
        result.total_remote = len(listing.data)

        for product in products:
            remote_item = remote.get(product.id)
            if remote_item is None:
                result.missing_ids.append(product.id)
            else:
                item = transform(product, site_url=self.settings.site_url)
                if has_changed(item, remote_item):
                    result.stale_ids.append(product.id)
                    logger.debug("Stale %s: %s", product.id, "; ".join(change_summary(item, remote_item)))
        result.orphaned_ids = [rid for rid in remote if rid not in local]

        result.missing_in_meta = len(result.missing_ids)
        result.orphaned_in_meta = len(result.orphaned_ids)
        result.stale_in_meta = len(result.stale_ids)
        logger.info(
            "Reconciliation diff: %d local, %d remote, %d missing, %d orphaned, %d stale",
            result.total_products, result.total_remote,
            result.missing_in_meta, result.orphaned_in_meta, result.stale_in_meta,
        )

        aborted = await self._correct(
            result.missing_ids + result.stale_ids, SyncOperation.UPDATE, result, should_abort
        )
        if not aborted:
            aborted = await self._correct(
                result.orphaned_ids, SyncOperation.DELETE, result, should_abort, batch_size=1
            )
        result.aborted = aborted
        result.success = True
        result.duration_ms = _elapsed_ms(start)

        self._write_log(result)
        logger.info(
            "Reconciliation finished in %dms: %d fixed, %d errors%s",
            result.duration_ms, result.fixed, result.errors, " (aborted)" if aborted else "",
        )

        await self._report(result)
        return result

    async def _correct(
        self,
        ids: List[str],
        operation: SyncOperation,
        result: ReconciliationResult,
        should_abort: Optional[Callable[[], bool]],
        batch_size: Optional[int] = None,
    ) -> bool:
        """Push corrections in concurrent batches. Returns True if aborted."""
        size = batch_size or self.batch_size
        for i in range(0, len(ids), size):
            if should_abort and should_abort():
                logger.warning("Reconciliation aborted with %d corrections pending", len(ids) - i)
                return True
            batch = ids[i:i + size]
            outcomes = await asyncio.gather(
                *(self.processor.sync_product(pid, operation) for pid in batch),
                return_exceptions=True,
            )
            for pid, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.error("Correction %s for %s raised: %s", operation.value, pid, outcome)
                    result.errors += 1
                elif outcome.success:
                    result.fixed += 1
                else:
                    result.errors += 1
        return False

    def _abort(self, result: ReconciliationResult, start: float) -> ReconciliationResult:
        result.success = False
        result.aborted = True
        result.duration_ms = _elapsed_ms(start)
        logger.error("Reconciliation aborted: %s", result.error)
        self._write_log(result)
        return result

    def _write_log(self, result: ReconciliationResult) -> None:
        error = result.error
        if error is None and result.errors:
            error = f"{result.errors} errors during reconciliation"
        self.processor.write_log_entry(
            product_id=None,
            retailer_id=None,
            operation=SyncOperation.RECONCILE,
            status=result.log_status,
            request_payload={
                "total_products": result.total_products,
                "total_remote": result.total_remote,
                "missing_in_meta": result.missing_in_meta,
                "orphaned_in_meta": result.orphaned_in_meta,
                "stale_in_meta": result.stale_in_meta,
                "fixed": result.fixed,
                "errors": result.errors,
                "aborted": result.aborted,
            },
            error_message=error,
            duration_ms=result.duration_ms,
        )

    async def _report(self, result: ReconciliationResult) -> None:
        counts = self.processor.get_activity_counts(datetime.utcnow() - timedelta(days=1))
        try:
            await self.alerter.send_daily_summary(
                {
                    "total_products": result.total_products,
                    "synced_today": counts["synced"],
                    "failed_today": counts["failed"],
                    "dead_letter_count": counts["dead_letter"],
                    "reconciliation": {
                        "missing_in_meta": result.missing_in_meta,
                        "orphaned_in_meta": result.orphaned_in_meta,
                        "stale_in_meta": result.stale_in_meta,
                        "fixed": result.fixed,
                    },
                }
            )
            if result.missing_in_meta + result.orphaned_in_meta > mismatch_threshold(result.total_products):
                await self.alerter.send_alert(
                    AlertKind.RECONCILIATION_MISMATCH,
                    {
                        "missing_in_meta": result.missing_in_meta,
                        "orphaned_in_meta": result.orphaned_in_meta,
                        "stale_in_meta": result.stale_in_meta,
                    },
                )
        except Exception as exc:
            logger.error("Reconciliation report could not be sent: %s", exc)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
