"""Sync state, audit log and dead-letter models."""
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import JSON, Column, event, inspect
from sqlmodel import Field, SQLModel

from catalogsync.errors import ImmutableRecordError


class SyncOperation(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    RECONCILE = "RECONCILE"


class SyncStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    DELETED = "deleted"


class LogStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"  # reconciliation run with some failed corrections


class SyncRecord(SQLModel, table=True):
    """Current sync state of one product in the external catalog."""

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: str = Field(unique=True, index=True)
    retailer_id: str = Field(unique=True, index=True)
    external_id: Optional[str] = None
    status: SyncStatus = SyncStatus.PENDING
    last_synced_at: Optional[datetime] = None
    last_error: Optional[str] = None
    retry_count: int = 0
    is_deleted: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class SyncLogEntry(SQLModel, table=True):
    """Append-only audit row, one per attempted operation."""

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: Optional[str] = Field(default=None, index=True)  # None for RECONCILE
    retailer_id: Optional[str] = None
    operation: SyncOperation
    status: LogStatus
    request_payload: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    response_payload: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    duration_ms: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)


class DeadLetterItem(SQLModel, table=True):
    """A product that exhausted its retry budget, waiting for a manual retry."""

    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: str = Field(index=True)
    retailer_id: Optional[str] = None
    operation: SyncOperation
    payload: Optional[Any] = Field(default=None, sa_column=Column(JSON))
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    retry_count: int = 0
    max_retries: int = 5
    last_attempt_at: Optional[datetime] = None
    resolved: bool = False
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


# ─── Write guards ─────────────────────────────────────────────────────────────

@event.listens_for(SyncLogEntry, "before_update")
def _reject_log_update(mapper, connection, target):
    raise ImmutableRecordError(f"SyncLogEntry {target.id} is append-only")


@event.listens_for(SyncLogEntry, "before_delete")
def _reject_log_delete(mapper, connection, target):
    raise ImmutableRecordError(f"SyncLogEntry {target.id} is append-only")


@event.listens_for(DeadLetterItem, "before_update")
def _reject_unresolve(mapper, connection, target):
    history = inspect(target).attrs.resolved.history
    if history.deleted and history.deleted[0] and not target.resolved:
        raise ImmutableRecordError(
            f"DeadLetterItem {target.id} is resolved and cannot be reopened"
        )
