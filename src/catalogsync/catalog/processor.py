"""
SyncProcessor: pushes one product's change to the external catalog.

Flow for sync_product(product_id, CREATE|UPDATE):
  1. Kill switch off → logged no-op success
  2. Client config incomplete → CONFIG_ERROR, nothing sent
  3. Load product (absent → NOT_FOUND), validate (invalid → VALIDATION_ERROR)
  4. Transform → client.upsert()
  5. Success: SyncRecord synced, retry_count reset, SUCCESS log entry
  6. Failure: SyncRecord failed, retry_count + 1, FAILED log entry, and on the
     failure that reaches MAX_RETRIES one DeadLetterItem plus one alert

DELETE resolves the retailer_id from the SyncRecord and calls client.delete().
Deletes are best-effort: a failed delete is logged but never dead-lettered.

This class is the only writer of SyncRecord and SyncLogEntry rows. Calls for
different products may run concurrently; callers must not overlap calls for
the same product.
"""
import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlmodel import Session, select

from catalogsync.alerting.notifier import AlertKind
from catalogsync.catalog.result import ErrorKind
from catalogsync.catalog.store import ProductStore
from catalogsync.catalog.transformer import transform, validate
from catalogsync.config import get_settings
from catalogsync.models.sync import (
    DeadLetterItem,
    LogStatus,
    SyncLogEntry,
    SyncOperation,
    SyncRecord,
    SyncStatus,
)

logger = logging.getLogger(__name__)

MAX_RETRIES = 5


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    DELETED = "deleted"


# (current status, outcome) → next status. None = no SyncRecord yet.
TRANSITIONS: Dict[Tuple[Optional[SyncStatus], Outcome], SyncStatus] = {
    (None, Outcome.SUCCESS): SyncStatus.SYNCED,
    (None, Outcome.FAILURE): SyncStatus.FAILED,
    (SyncStatus.PENDING, Outcome.SUCCESS): SyncStatus.SYNCED,
    (SyncStatus.PENDING, Outcome.FAILURE): SyncStatus.FAILED,
    (SyncStatus.PENDING, Outcome.DELETED): SyncStatus.DELETED,
    (SyncStatus.SYNCED, Outcome.SUCCESS): SyncStatus.SYNCED,
    (SyncStatus.SYNCED, Outcome.FAILURE): SyncStatus.FAILED,
    (SyncStatus.SYNCED, Outcome.DELETED): SyncStatus.DELETED,
    (SyncStatus.FAILED, Outcome.SUCCESS): SyncStatus.SYNCED,
    (SyncStatus.FAILED, Outcome.FAILURE): SyncStatus.FAILED,
    (SyncStatus.FAILED, Outcome.DELETED): SyncStatus.DELETED,
    # A deleted product that reappears starts a fresh cycle
    (SyncStatus.DELETED, Outcome.SUCCESS): SyncStatus.SYNCED,
    (SyncStatus.DELETED, Outcome.FAILURE): SyncStatus.FAILED,
    (SyncStatus.DELETED, Outcome.DELETED): SyncStatus.DELETED,
}


def crossed_ceiling(before: int, after: int, ceiling: int = MAX_RETRIES) -> bool:
    """True only for the failure that takes retry_count up to the ceiling."""
    return before < ceiling <= after


@dataclass
class SyncResult:
    success: bool
    product_id: str
    retailer_id: str
    operation: SyncOperation
    external_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    duration_ms: int = 0
    skipped: bool = False
    dead_lettered: bool = False

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["operation"] = self.operation.value
        return data


class SyncProcessor:
    """Orchestrates CREATE/UPDATE/DELETE of single products against the catalog."""

    def __init__(
        self,
        client,
        engine,
        alerter,
        store: Optional[ProductStore] = None,
        settings=None,
        max_retries: int = MAX_RETRIES,
    ):
        """
        Args:
            client: CatalogClient instance shared by the whole process (or AsyncMock in tests).
            engine: SQLAlchemy engine (SQLModel create_engine result).
            alerter: AlertService instance (or AsyncMock in tests).
            store: ProductStore; defaults to one over the same engine.
            settings: Settings; defaults to get_settings().
            max_retries: failures before a product is dead-lettered.
        """
        self.client = client
        self.engine = engine
        self.alerter = alerter
        self.store = store or ProductStore(engine)
        self.settings = settings or get_settings()
        self.max_retries = max_retries

    async def sync_product(self, product_id: str, operation: SyncOperation) -> SyncResult:
        """
        Push one product's current state (or its deletion) to the catalog.

        Returns:
            SyncResult describing the outcome. Remote failures never raise.

        Raises:
            ValueError: for operations that do not apply to a single product.
            Any unexpected exception (after recording a FAILED log entry).
        """
        operation = SyncOperation(operation)
        handlers = {
            SyncOperation.CREATE: self._handle_upsert,
            SyncOperation.UPDATE: self._handle_upsert,
            SyncOperation.DELETE: self._handle_delete,
        }
        if operation not in handlers:
            raise ValueError(f"{operation.value} is not a per-product operation")

        start = time.monotonic()

        if not self.settings.sync_enabled:
            logger.info("Sync disabled, skipping %s for product %s", operation.value, product_id)
            return SyncResult(
                success=True,
                product_id=product_id,
                retailer_id=product_id,
                operation=operation,
                skipped=True,
                duration_ms=_elapsed_ms(start),
            )

        missing = self.client.validate_config()
        if missing:
            error = f"Missing catalog configuration: {', '.join(missing)}"
            logger.error("%s; %s for product %s blocked", error, operation.value, product_id)
            return self._terminal_failure(
                product_id, product_id, operation, ErrorKind.CONFIG_ERROR, error, start
            )

        try:
            return await handlers[operation](product_id, operation, start)
        except Exception as exc:
            self.write_log_entry(
                product_id=product_id,
                retailer_id=product_id,
                operation=operation,
                status=LogStatus.FAILED,
                error_message=str(exc),
                error_code=ErrorKind.UNKNOWN.value,
                duration_ms=_elapsed_ms(start),
            )
            raise

    async def retry_dead_letter_item(
        self, item_id: int, resolved_by: str = "manual"
    ) -> Optional[SyncResult]:
        """
        Re-attempt a dead-lettered product with a fresh retry budget.

        Returns:
            The SyncResult, or None if no dead-letter item has that id.
        """
        with Session(self.engine) as s:
            item = s.get(DeadLetterItem, item_id)
            if item is None:
                return None
            product_id, operation = item.product_id, item.operation

            record = s.exec(
                select(SyncRecord).where(SyncRecord.product_id == product_id)
            ).first()
            if record:
                record.retry_count = 0
                record.status = SyncStatus.PENDING
                record.updated_at = datetime.utcnow()
                s.add(record)
                s.commit()

        result = await self.sync_product(product_id, operation)

        if result.success and not result.skipped:
            with Session(self.engine) as s:
                item = s.get(DeadLetterItem, item_id)
                if not item.resolved:
                    item.resolved = True
                    item.resolved_at = datetime.utcnow()
                    item.resolved_by = resolved_by
                    s.add(item)
                    s.commit()
            logger.info("Dead-letter item %s resolved (product %s)", item_id, product_id)
        return result

    async def sync_all(self, batch_size: int = 50) -> Dict[str, Any]:
        """Full push of every local product as UPDATE, batch_size at a time."""
        products = self.store.fetch_all_products()
        summary: Dict[str, Any] = {"total": len(products), "success": 0, "failed": 0, "errors": []}

        for i in range(0, len(products), batch_size):
            batch = products[i:i + batch_size]
            results = await asyncio.gather(
                *(self.sync_product(p.id, SyncOperation.UPDATE) for p in batch),
                return_exceptions=True,
            )
            for product, result in zip(batch, results):
                if isinstance(result, Exception):
                    summary["failed"] += 1
                    summary["errors"].append({"product_id": product.id, "error": str(result)})
                elif result.success:
                    summary["success"] += 1
                else:
                    summary["failed"] += 1
                    summary["errors"].append({"product_id": product.id, "error": result.error})

        logger.info(
            "Full sync finished: %d ok, %d failed of %d",
            summary["success"], summary["failed"], summary["total"],
        )
        return summary

    # ─── Read-only views ──────────────────────────────────────────────────────

    def get_sync_status(self, limit: int = 100) -> Dict[str, Any]:
        """Counts per status and the most recently touched records (deleted excluded)."""
        with Session(self.engine) as s:
            rows = s.exec(
                select(SyncRecord.status, func.count())
                .where(SyncRecord.is_deleted == False)  # noqa: E712
                .group_by(SyncRecord.status)
            ).all()
            items = s.exec(
                select(SyncRecord)
                .where(SyncRecord.is_deleted == False)  # noqa: E712
                .order_by(SyncRecord.updated_at.desc())
                .limit(limit)
            ).all()

        counts = {SyncStatus(status).value: count for status, count in rows}
        return {
            "total": sum(counts.values()),
            "synced": counts.get("synced", 0),
            "failed": counts.get("failed", 0),
            "pending": counts.get("pending", 0),
            "items": list(items),
        }

    def get_dead_letter_items(self, limit: int = 50) -> List[DeadLetterItem]:
        """Unresolved dead-letter items, newest first."""
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(DeadLetterItem)
                    .where(DeadLetterItem.resolved == False)  # noqa: E712
                    .order_by(DeadLetterItem.created_at.desc(), DeadLetterItem.id.desc())
                    .limit(limit)
                ).all()
            )

    def get_product_sync_logs(self, product_id: str, limit: int = 20) -> List[SyncLogEntry]:
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(SyncLogEntry)
                    .where(SyncLogEntry.product_id == product_id)
                    .order_by(SyncLogEntry.created_at.desc(), SyncLogEntry.id.desc())
                    .limit(limit)
                ).all()
            )

    def get_recent_logs(self, limit: int = 20) -> List[SyncLogEntry]:
        with Session(self.engine) as s:
            return list(
                s.exec(
                    select(SyncLogEntry)
                    .order_by(SyncLogEntry.created_at.desc(), SyncLogEntry.id.desc())
                    .limit(limit)
                ).all()
            )

    def get_activity_counts(self, since: datetime) -> Dict[str, int]:
        """Per-product SUCCESS/FAILED log counts since `since`, plus open dead letters."""
        with Session(self.engine) as s:
            rows = s.exec(
                select(SyncLogEntry.status, func.count())
                .where(SyncLogEntry.created_at >= since)
                .where(SyncLogEntry.operation != SyncOperation.RECONCILE)
                .group_by(SyncLogEntry.status)
            ).all()
            dead_letters = s.exec(
                select(func.count())
                .select_from(DeadLetterItem)
                .where(DeadLetterItem.resolved == False)  # noqa: E712
            ).one()

        counts = {LogStatus(status).value: count for status, count in rows}
        return {
            "synced": counts.get("SUCCESS", 0),
            "failed": counts.get("FAILED", 0),
            "dead_letter": dead_letters,
        }

    # ─── Audit log ────────────────────────────────────────────────────────────

    def write_log_entry(
        self,
        *,
        product_id: Optional[str],
        retailer_id: Optional[str],
        operation: SyncOperation,
        status: LogStatus,
        request_payload: Any = None,
        response_payload: Any = None,
        error_message: Optional[str] = None,
        error_code: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> SyncLogEntry:
        """Append one audit row. Rows are never updated afterwards."""
        entry = SyncLogEntry(
            product_id=product_id,
            retailer_id=retailer_id,
            operation=operation,
            status=status,
            request_payload=request_payload,
            response_payload=response_payload,
            error_message=error_message,
            error_code=error_code,
            duration_ms=duration_ms,
        )
        with Session(self.engine) as s:
            s.add(entry)
            s.commit()
            s.refresh(entry)
        return entry

    # ─── Operation handlers ───────────────────────────────────────────────────

    async def _handle_upsert(
        self, product_id: str, operation: SyncOperation, start: float
    ) -> SyncResult:
        product = self.store.fetch_product(product_id)
        if product is None:
            return self._terminal_failure(
                product_id, product_id, operation, ErrorKind.NOT_FOUND,
                "Product not found in database", start,
            )

        validation = validate(product)
        if not validation.valid:
            error = f"Validation failed: {', '.join(validation.errors)}"
            # Terminal: marks the record failed without spending retry budget
            self._apply_outcome(product_id, product_id, Outcome.FAILURE, error=error, count_failure=False)
            return self._terminal_failure(
                product_id, product_id, operation, ErrorKind.VALIDATION_ERROR, error, start
            )

        item = transform(product, site_url=self.settings.site_url)
        payload = item.to_payload()
        result = await self.client.upsert(item)

        if result.ok:
            self._apply_outcome(product_id, item.retailer_id, Outcome.SUCCESS, external_id=result.data)
            self.write_log_entry(
                product_id=product_id,
                retailer_id=item.retailer_id,
                operation=operation,
                status=LogStatus.SUCCESS,
                request_payload=payload,
                response_payload={"id": result.data},
                duration_ms=_elapsed_ms(start),
            )
            logger.info("Synced product %s to catalog (%s)", product_id, result.data)
            return SyncResult(
                success=True,
                product_id=product_id,
                retailer_id=item.retailer_id,
                operation=operation,
                external_id=result.data,
                duration_ms=_elapsed_ms(start),
            )

        error = result.error
        before, after = self._apply_outcome(
            product_id, item.retailer_id, Outcome.FAILURE, error=error.message
        )
        self.write_log_entry(
            product_id=product_id,
            retailer_id=item.retailer_id,
            operation=operation,
            status=LogStatus.FAILED,
            request_payload=payload,
            response_payload=error.as_dict(),
            error_message=error.message,
            error_code=error.kind.value,
            duration_ms=_elapsed_ms(start),
        )
        logger.warning(
            "%s of product %s failed (%s, retry_count=%d): %s",
            operation.value, product_id, error.kind.value, after, error.message,
        )

        if error.kind == ErrorKind.AUTH_ERROR:
            await self._notify(AlertKind.AUTH_ERROR, {"product_id": product_id, "error": error.message})
        elif error.kind == ErrorKind.RATE_LIMIT:
            # Backoff exhausted while throttled
            await self._notify(
                AlertKind.RATE_LIMIT,
                {"product_id": product_id, "error": error.message, "retries": error.retries},
            )

        dead_lettered = False
        if crossed_ceiling(before, after, self.max_retries):
            await self._dead_letter(product_id, item.retailer_id, operation, payload, error, after)
            dead_lettered = True

        return SyncResult(
            success=False,
            product_id=product_id,
            retailer_id=item.retailer_id,
            operation=operation,
            error=error.message,
            error_code=error.kind.value,
            duration_ms=_elapsed_ms(start),
            dead_lettered=dead_lettered,
        )

    async def _handle_delete(
        self, product_id: str, operation: SyncOperation, start: float
    ) -> SyncResult:
        with Session(self.engine) as s:
            record = s.exec(
                select(SyncRecord).where(SyncRecord.product_id == product_id)
            ).first()
        retailer_id = record.retailer_id if record else product_id

        result = await self.client.delete(retailer_id)

        if not result.ok:
            error = result.error
            self.write_log_entry(
                product_id=product_id,
                retailer_id=retailer_id,
                operation=operation,
                status=LogStatus.FAILED,
                response_payload=error.as_dict(),
                error_message=error.message,
                error_code=error.kind.value,
                duration_ms=_elapsed_ms(start),
            )
            logger.warning("Delete of product %s failed: %s", product_id, error.message)
            if error.kind == ErrorKind.AUTH_ERROR:
                await self._notify(AlertKind.AUTH_ERROR, {"product_id": product_id, "error": error.message})
            return SyncResult(
                success=False,
                product_id=product_id,
                retailer_id=retailer_id,
                operation=operation,
                error=error.message,
                error_code=error.kind.value,
                duration_ms=_elapsed_ms(start),
            )

        self._apply_outcome(product_id, retailer_id, Outcome.DELETED)
        self.write_log_entry(
            product_id=product_id,
            retailer_id=retailer_id,
            operation=operation,
            status=LogStatus.SUCCESS,
            duration_ms=_elapsed_ms(start),
        )
        logger.info("Deleted product %s from catalog", product_id)
        return SyncResult(
            success=True,
            product_id=product_id,
            retailer_id=retailer_id,
            operation=operation,
            duration_ms=_elapsed_ms(start),
        )

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _apply_outcome(
        self,
        product_id: str,
        retailer_id: str,
        outcome: Outcome,
        *,
        error: Optional[str] = None,
        external_id: Optional[str] = None,
        count_failure: bool = True,
    ) -> Tuple[int, int]:
        """
        Move the product's SyncRecord through TRANSITIONS.

        Returns:
            (retry_count before, retry_count after).
        """
        with Session(self.engine) as s:
            record = s.exec(
                select(SyncRecord).where(SyncRecord.product_id == product_id)
            ).first()

            if record is None and outcome == Outcome.DELETED:
                return 0, 0  # never synced, nothing to mark

            current = record.status if record else None
            # Recreated products start a fresh retry cycle
            before = record.retry_count if record and current != SyncStatus.DELETED else 0
            if record is None:
                record = SyncRecord(product_id=product_id, retailer_id=retailer_id)

            now = datetime.utcnow()
            record.status = TRANSITIONS[(current, outcome)]
            if outcome == Outcome.SUCCESS:
                record.retry_count = 0
                record.last_error = None
                record.last_synced_at = now
                record.is_deleted = False
                if external_id:
                    record.external_id = external_id
            elif outcome == Outcome.FAILURE:
                record.retry_count = before + 1 if count_failure else before
                record.last_error = error
                record.is_deleted = False
            else:
                record.is_deleted = True
            record.updated_at = now

            s.add(record)
            s.commit()
            return before, record.retry_count

    async def _dead_letter(
        self,
        product_id: str,
        retailer_id: str,
        operation: SyncOperation,
        payload: Dict[str, Any],
        error,
        retry_count: int,
    ) -> None:
        """Snapshot the failing product into the dead-letter queue and alert once."""
        now = datetime.utcnow()
        with Session(self.engine) as s:
            item = s.exec(
                select(DeadLetterItem)
                .where(DeadLetterItem.product_id == product_id)
                .where(DeadLetterItem.resolved == False)  # noqa: E712
            ).first()
            if item is None:
                item = DeadLetterItem(product_id=product_id, max_retries=self.max_retries)
            # An open item from an earlier crossing is refreshed, not duplicated
            item.retailer_id = retailer_id
            item.operation = operation
            item.payload = payload
            item.error_message = error.message
            item.error_code = error.kind.value
            item.retry_count = retry_count
            item.last_attempt_at = now
            s.add(item)
            s.commit()

        logger.warning(
            "Product %s added to dead-letter queue after %d failures", product_id, retry_count
        )
        await self._notify(
            AlertKind.SYNC_FAILURE,
            {
                "product_id": product_id,
                "retailer_id": retailer_id,
                "error": error.message,
                "retry_count": retry_count,
            },
        )

    def _terminal_failure(
        self,
        product_id: str,
        retailer_id: str,
        operation: SyncOperation,
        kind: ErrorKind,
        error: str,
        start: float,
    ) -> SyncResult:
        self.write_log_entry(
            product_id=product_id,
            retailer_id=retailer_id,
            operation=operation,
            status=LogStatus.FAILED,
            error_message=error,
            error_code=kind.value,
            duration_ms=_elapsed_ms(start),
        )
        logger.warning("%s of product %s rejected: %s", operation.value, product_id, error)
        return SyncResult(
            success=False,
            product_id=product_id,
            retailer_id=retailer_id,
            operation=operation,
            error=error,
            error_code=kind.value,
            duration_ms=_elapsed_ms(start),
        )

    async def _notify(self, kind: AlertKind, payload: Dict[str, Any]) -> None:
        try:
            await self.alerter.send_alert(kind, payload)
        except Exception as exc:
            logger.error("Alert %s could not be sent: %s", kind.value, exc)


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
