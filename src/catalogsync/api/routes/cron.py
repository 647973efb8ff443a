"""Scheduler-triggered routes, authenticated with a shared bearer secret."""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import JSONResponse

from catalogsync.api.deps import get_reconciliation_job
from catalogsync.catalog.reconciliation import ReconciliationJob
from catalogsync.config import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter()


def require_cron_secret(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """401 unless the request carries `Bearer {CRON_SECRET}`. No secret configured → always 401."""
    expected = f"Bearer {settings.cron_secret}"
    if not settings.cron_secret or not authorization or not hmac.compare_digest(
        authorization.encode(), expected.encode()
    ):
        logger.warning("Rejected cron request: missing or invalid secret")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/reconciliation", dependencies=[Depends(require_cron_secret)])
async def reconciliation(job: ReconciliationJob = Depends(get_reconciliation_job)):
    result = await job.run()
    if result.skipped:
        return {"message": "Sync disabled"}
    return JSONResponse(status_code=200 if result.success else 500, content=result.as_dict())
