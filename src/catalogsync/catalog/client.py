"""
Async client for the external product catalog (Graph API style).

All network I/O of the sync engine goes through CatalogClient:

  upsert(item)          POST   /{catalog_id}/products  (allow_upsert, keyed by retailer_id)
  delete(retailer_id)   DELETE /{catalog_id}/products  (unknown id counts as success)
  get_one(retailer_id)  GET    /{catalog_id}/products?filter=...
  list_all(page_size)   GET    /{catalog_id}/products, cursor-paginated, capped at 10,000
  verify_access()       GET    /{catalog_id}?fields=id,name,product_count

Every call goes through _request(), which owns:

  - a rolling one-hour call budget (RateLimiter). When the budget is spent the
    caller sleeps until the window resets instead of firing doomed requests.
    The budget is refreshed from the x-business-use-case-usage header.
  - retry with exponential backoff and ±25% jitter for transport failures and
    transient API error codes. Terminal errors return immediately.

Both are per-instance state: build one client per process and share it.
"""
import asyncio
import json
import logging
import random
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional

import httpx

from catalogsync.catalog.result import (
    RETRYABLE_KINDS,
    ApiError,
    ApiResult,
    ErrorKind,
)
from catalogsync.models.catalog import REMOTE_FIELDS, CatalogItem, RemoteCatalogItem

logger = logging.getLogger(__name__)

# ── Constants ─────────────────────────────────────────────────────────────────

DEFAULT_API_BASE = "https://graph.facebook.com/v21.0"
MAX_RETRIES = 5
BASE_DELAY = 1.0  # seconds
MAX_DELAY = 60.0  # seconds
JITTER = 0.25
RATE_LIMIT_CALLS_PER_HOUR = 200
RATE_LIMIT_WINDOW = 3600.0  # seconds
LIST_SAFETY_CAP = 10_000
USAGE_HEADER = "x-business-use-case-usage"

# Graph API error codes
RETRYABLE_ERROR_CODES = frozenset({1, 2, 4, 17, 32, 341, 368, 613})
RATE_LIMIT_ERROR_CODES = frozenset({4, 17, 32, 613})
AUTH_ERROR_CODES = frozenset({102, 190})
NOT_FOUND_ERROR_CODES = frozenset({803})
NOT_FOUND_SUBCODES = frozenset({33})  # code 100: object does not exist
VALIDATION_ERROR_CODES = frozenset({100})


def compute_backoff(attempt: int, rng: Callable[[], float] = random.random) -> float:
    """
    Delay in seconds before retry number `attempt` (0-based).

    min(BASE_DELAY * 2**attempt, MAX_DELAY) with ±25% jitter, never above MAX_DELAY.
    """
    delay = min(BASE_DELAY * (2 ** attempt), MAX_DELAY)
    jitter = delay * JITTER * (rng() * 2 - 1)
    return min(max(0.0, delay + jitter), MAX_DELAY)


def classify_error(status_code: int, body: Any) -> ApiError:
    """Map an HTTP error response onto the ErrorKind taxonomy."""
    err = body.get("error") if isinstance(body, dict) else None
    if not isinstance(err, dict):
        err = {}
    code = err.get("code")
    subcode = err.get("error_subcode")
    message = err.get("message") or f"HTTP {status_code}"

    if status_code == 401 or code in AUTH_ERROR_CODES:
        kind = ErrorKind.AUTH_ERROR
    elif status_code == 429 or code in RATE_LIMIT_ERROR_CODES:
        kind = ErrorKind.RATE_LIMIT
    elif status_code == 404 or code in NOT_FOUND_ERROR_CODES or (
        code in VALIDATION_ERROR_CODES and subcode in NOT_FOUND_SUBCODES
    ):
        kind = ErrorKind.NOT_FOUND
    elif code in RETRYABLE_ERROR_CODES:
        kind = ErrorKind.UNKNOWN
    elif status_code in (502, 503, 504):
        kind = ErrorKind.NETWORK_ERROR
    elif status_code == 403:
        kind = ErrorKind.AUTH_ERROR
    elif code in VALIDATION_ERROR_CODES or status_code in (400, 422):
        kind = ErrorKind.VALIDATION_ERROR
    else:
        kind = ErrorKind.UNKNOWN

    retryable = (
        code in RETRYABLE_ERROR_CODES
        or status_code == 429
        or status_code >= 500
    ) and kind in RETRYABLE_KINDS

    return ApiError(
        kind=kind,
        message=message,
        code=code,
        status_code=status_code,
        retryable=retryable,
    )


# ── Rate limiting ─────────────────────────────────────────────────────────────

class RateLimiter:
    """
    Rolling-window call budget.

    acquire() spends one call. When nothing is left and the window has not
    reset yet, it sleeps until the reset and starts a fresh window.
    """

    def __init__(
        self,
        calls_per_hour: int = RATE_LIMIT_CALLS_PER_HOUR,
        window_seconds: float = RATE_LIMIT_WINDOW,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        self.limit = calls_per_hour
        self.window = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.remaining = calls_per_hour
        self.reset_at = clock() + window_seconds

    def _reset(self, now: float) -> None:
        self.remaining = self.limit
        self.reset_at = now + self.window

    async def acquire(self) -> None:
        async with self._lock:
            now = self._clock()
            if now >= self.reset_at:
                self._reset(now)
            elif self.remaining <= 0:
                wait = self.reset_at - now
                logger.warning("Catalog rate budget spent, waiting %.0fs for reset", wait)
                await self._sleep(wait)
                self._reset(self._clock())
            self.remaining -= 1

    def update_from_headers(self, headers, business_id: str) -> None:
        """Refresh the budget from the usage header, if the API sent one."""
        raw = headers.get(USAGE_HEADER)
        if not raw or not business_id:
            return
        try:
            usage = json.loads(raw)
            entries = usage.get(business_id) or []
            if isinstance(entries, dict):
                entries = [entries]
            entry = entries[0] if isinstance(entries, list) and entries else {}
            call_count = int(entry.get("call_count", 0))
            regain_minutes = float(entry.get("estimated_time_to_regain_access") or 0)
        except (ValueError, TypeError, AttributeError, LookupError):
            logger.debug("Ignoring unparseable %s header: %r", USAGE_HEADER, raw)
            return

        self.remaining = max(0, self.limit - call_count)
        if regain_minutes:
            self.reset_at = self._clock() + regain_minutes * 60


# ── Client ────────────────────────────────────────────────────────────────────

class CatalogClient:
    """
    Async client over httpx.AsyncClient.

    Pass `http_client` to inject a transport (tests use httpx.MockTransport);
    `sleep`, `clock` and `rng` make backoff and throttling deterministic.
    """

    def __init__(
        self,
        access_token: str = "",
        catalog_id: str = "",
        business_id: str = "",
        base_url: str = DEFAULT_API_BASE,
        timeout: float = 30.0,
        calls_per_hour: int = RATE_LIMIT_CALLS_PER_HOUR,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Callable[[], float] = random.random,
    ):
        self.access_token = access_token
        self.catalog_id = catalog_id
        self.business_id = business_id
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._http = http_client or httpx.AsyncClient(timeout=timeout)
        self._sleep = sleep
        self._rng = rng
        self.rate_limiter = RateLimiter(calls_per_hour, clock=clock, sleep=sleep)

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "CatalogClient":
        return cls(
            access_token=settings.catalog_access_token,
            catalog_id=settings.catalog_id,
            business_id=settings.catalog_business_id,
            base_url=settings.catalog_api_base,
            timeout=settings.catalog_request_timeout,
            calls_per_hour=settings.rate_limit_calls_per_hour,
            **kwargs,
        )

    def validate_config(self) -> List[str]:
        """Return the names of missing settings (empty when fully configured)."""
        missing = []
        if not self.access_token:
            missing.append("CATALOG_ACCESS_TOKEN")
        if not self.catalog_id:
            missing.append("CATALOG_ID")
        if not self.business_id:
            missing.append("CATALOG_BUSINESS_ID")
        return missing

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "CatalogClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ── Operations ────────────────────────────────────────────────────────────

    async def upsert(self, item: CatalogItem) -> ApiResult[str]:
        """Create or update one item keyed by retailer_id. Returns the external id."""
        body = {**item.to_payload(), "allow_upsert": True}
        result = await self._request("POST", f"/{self.catalog_id}/products", json=body)
        if not result.ok:
            return result
        external_id = (result.data or {}).get("id")
        return ApiResult.success(str(external_id) if external_id is not None else None)

    async def delete(self, retailer_id: str) -> ApiResult[None]:
        """Remove an item. An id the catalog does not know is already deleted."""
        result = await self._request(
            "DELETE",
            f"/{self.catalog_id}/products",
            json={"retailer_id": retailer_id},
        )
        if result.ok:
            return ApiResult.success()
        if result.error.kind == ErrorKind.NOT_FOUND:
            logger.info("Delete of unknown retailer_id %s treated as success", retailer_id)
            return ApiResult.success()
        return result

    async def get_one(self, retailer_id: str) -> ApiResult[Optional[RemoteCatalogItem]]:
        """Fetch one item by retailer_id; data is None when the catalog has no such item."""
        params = {
            "filter": json.dumps({"retailer_id": {"eq": retailer_id}}),
            "fields": ",".join(REMOTE_FIELDS),
        }
        result = await self._request("GET", f"/{self.catalog_id}/products", params=params)
        if not result.ok:
            return result
        rows = (result.data or {}).get("data") or []
        return ApiResult.success(RemoteCatalogItem.from_api(rows[0]) if rows else None)

    async def list_all(self, page_size: int = 250) -> ApiResult[List[RemoteCatalogItem]]:
        """
        Fetch the whole catalog by following paging cursors.

        Stops when the API reports no next page or LIST_SAFETY_CAP items have
        been read. Any failed page fails the whole listing: a partial snapshot
        is never returned.
        """
        items: List[RemoteCatalogItem] = []
        cursor: Optional[str] = None

        while True:
            params = {"limit": page_size, "fields": ",".join(REMOTE_FIELDS)}
            if cursor:
                params["after"] = cursor
            result = await self._request("GET", f"/{self.catalog_id}/products", params=params)
            if not result.ok:
                return result

            page = result.data or {}
            items.extend(RemoteCatalogItem.from_api(raw) for raw in page.get("data") or [])

            if len(items) >= LIST_SAFETY_CAP:
                logger.warning(
                    "Catalog listing hit the %d item safety cap; stopping", LIST_SAFETY_CAP
                )
                items = items[:LIST_SAFETY_CAP]
                break

            paging = page.get("paging") or {}
            cursor = (paging.get("cursors") or {}).get("after")
            if not paging.get("next") or not cursor:
                break

        return ApiResult.success(items)

    async def verify_access(self) -> ApiResult[Dict[str, Any]]:
        """Cheap credentials/connectivity check against the catalog node."""
        return await self._request(
            "GET", f"/{self.catalog_id}", params={"fields": "id,name,product_count"}
        )

    # ── Transport ─────────────────────────────────────────────────────────────

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> ApiResult[Dict[str, Any]]:
        missing = self.validate_config()
        if missing:
            return ApiResult.failure(
                ApiError(
                    kind=ErrorKind.CONFIG_ERROR,
                    message=f"Missing catalog configuration: {', '.join(missing)}",
                )
            )

        url = path if path.startswith("http") else f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {self.access_token}"}
        retries = 0

        while True:
            await self.rate_limiter.acquire()
            try:
                response = await self._http.request(
                    method, url, params=params, json=json, headers=headers, timeout=self.timeout
                )
            except httpx.TimeoutException as exc:
                error = ApiError(
                    kind=ErrorKind.NETWORK_ERROR,
                    message=f"Request timed out: {exc}",
                    retryable=True,
                )
            except httpx.RequestError as exc:
                error = ApiError(
                    kind=ErrorKind.NETWORK_ERROR,
                    message=str(exc) or exc.__class__.__name__,
                    retryable=True,
                )
            else:
                self.rate_limiter.update_from_headers(response.headers, self.business_id)
                body = _json_body(response)
                if response.is_success:
                    return ApiResult.success(body)
                error = classify_error(response.status_code, body)

            if not error.retryable or retries >= MAX_RETRIES:
                if error.retryable:
                    logger.error(
                        "%s %s failed after %d retries: %s", method, path, retries, error.message
                    )
                return ApiResult.failure(replace(error, retries=retries))

            delay = compute_backoff(retries, self._rng)
            logger.info(
                "%s on %s %s (attempt %d/%d), retrying in %.1fs",
                error.kind.value, method, path, retries + 1, MAX_RETRIES, delay,
            )
            await self._sleep(delay)
            retries += 1


def _json_body(response: httpx.Response) -> Dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {"data": body}
