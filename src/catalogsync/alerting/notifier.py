"""
Operator alerts for the catalog sync pipeline.

Alerts are posted as Discord-style embeds to a single webhook. Sending is
fire-and-forget: every method catches its own failures, logs them, and
returns False. Nothing here may fail or block a sync.
"""
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

# Semaphore colors
COLOR_INFO = 0x1976D2
COLOR_WARNING = 0xF1C40F
COLOR_ERROR = 0xE74C3C


class AlertKind(str, Enum):
    SYNC_FAILURE = "sync_failure"
    AUTH_ERROR = "auth_error"
    RECONCILIATION_MISMATCH = "reconciliation_mismatch"
    RATE_LIMIT = "rate_limit"


_TITLES = {
    AlertKind.SYNC_FAILURE: "⚠️ Catalog sync failed for product {product_id}",
    AlertKind.AUTH_ERROR: "🚨 Catalog API authentication error",
    AlertKind.RECONCILIATION_MISMATCH: "⚠️ Catalog reconciliation mismatch detected",
    AlertKind.RATE_LIMIT: "⏳ Catalog API rate limit warning",
}

_COLORS = {
    AlertKind.SYNC_FAILURE: COLOR_WARNING,
    AlertKind.AUTH_ERROR: COLOR_ERROR,
    AlertKind.RECONCILIATION_MISMATCH: COLOR_WARNING,
    AlertKind.RATE_LIMIT: COLOR_WARNING,
}


class AlertService:
    """
    Posts alerts and daily summaries to a webhook.

    With no webhook configured, alerts are logged and dropped.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        dashboard_url: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.webhook_url = webhook_url
        self.dashboard_url = dashboard_url
        self._client = http_client or httpx.AsyncClient(timeout=10.0)

    @classmethod
    def from_settings(cls, settings, **kwargs) -> "AlertService":
        return cls(
            webhook_url=settings.alert_webhook_url,
            dashboard_url=settings.dashboard_url,
            **kwargs,
        )

    async def send_alert(self, kind: AlertKind, payload: Dict[str, Any]) -> bool:
        """Send one alert. Returns True if the webhook accepted it."""
        try:
            kind = AlertKind(kind)
            embed = {
                "title": _TITLES[kind].format(product_id=payload.get("product_id", "?")),
                "color": _COLORS[kind],
                "fields": _fields(payload),
                "timestamp": datetime.utcnow().isoformat(),
            }
            if kind == AlertKind.SYNC_FAILURE:
                embed["description"] = (
                    "Max retries reached; the product was added to the dead-letter queue."
                )
            elif kind == AlertKind.AUTH_ERROR:
                embed["description"] = (
                    "The catalog access token may be expired or invalid. "
                    "Generate a new token and update CATALOG_ACCESS_TOKEN."
                )
            if self.dashboard_url:
                embed["url"] = self.dashboard_url
            return await self._post({"embeds": [embed]}, what=f"alert {kind.value}")
        except Exception as exc:
            logger.error("Failed to build %s alert: %s", kind, exc)
            return False

    async def send_daily_summary(self, stats: Dict[str, Any]) -> bool:
        """Send the post-reconciliation daily summary."""
        try:
            failed = stats.get("failed_today", 0)
            dead = stats.get("dead_letter_count", 0)
            color = COLOR_ERROR if failed else COLOR_WARNING if dead else COLOR_INFO

            fields = [
                _field("Total products", stats.get("total_products", 0)),
                _field("Synced today", stats.get("synced_today", 0)),
                _field("Failed today", failed),
                _field("Dead-letter queue", dead),
            ]
            reconciliation = stats.get("reconciliation") or {}
            if reconciliation:
                fields.extend(
                    [
                        _field("Missing in catalog", reconciliation.get("missing_in_meta", 0)),
                        _field("Orphaned in catalog", reconciliation.get("orphaned_in_meta", 0)),
                        _field("Stale in catalog", reconciliation.get("stale_in_meta", 0)),
                        _field("Fixed automatically", reconciliation.get("fixed", 0)),
                    ]
                )

            embed = {
                "title": f"📊 Daily catalog sync summary - {datetime.utcnow():%Y-%m-%d}",
                "color": color,
                "fields": fields,
                "timestamp": datetime.utcnow().isoformat(),
            }
            if self.dashboard_url:
                embed["url"] = self.dashboard_url
            return await self._post({"embeds": [embed]}, what="daily summary")
        except Exception as exc:
            logger.error("Failed to build daily summary: %s", exc)
            return False

    async def _post(self, body: Dict[str, Any], what: str) -> bool:
        if not self.webhook_url:
            logger.info("Alert webhook not configured, skipping %s", what)
            return False
        try:
            response = await self._client.post(self.webhook_url, json=body)
        except Exception as exc:
            logger.error("Failed to send %s: %s", what, exc)
            return False

        if response.status_code in (200, 204):
            logger.info("Sent %s", what)
            return True
        logger.warning("Webhook rejected %s: HTTP %s", what, response.status_code)
        return False

    async def aclose(self) -> None:
        await self._client.aclose()


def _field(name: str, value: Any, inline: bool = True) -> Dict[str, Any]:
    return {"name": name, "value": str(value), "inline": inline}


def _fields(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    fields = []
    for key, value in payload.items():
        if value is None:
            continue
        text = str(value)
        # Discord field value limit
        fields.append(_field(key.replace("_", " ").capitalize(), text[:1024], inline=len(text) < 40))
    return fields
