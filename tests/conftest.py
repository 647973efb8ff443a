"""Shared test fixtures."""
import json
from decimal import Decimal
from typing import Any, Dict, Generator, List, Optional, Tuple
from unittest.mock import AsyncMock

import httpx
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from catalogsync.catalog.client import CatalogClient
from catalogsync.catalog.processor import SyncProcessor
from catalogsync.config import Settings

# Import all models so SQLModel.metadata knows about them
from catalogsync.models.product import Product  # noqa: F401
from catalogsync.models.sync import DeadLetterItem, SyncLogEntry, SyncRecord  # noqa: F401


class FakeCatalog:
    """
    In-memory stand-in for the catalog API, served through httpx.MockTransport.

    Items are keyed by retailer_id, so repeated upserts update in place. Set
    `failures` to a list of (status, body) tuples to make the next requests
    fail in order.
    """

    def __init__(self):
        self.items: Dict[str, Dict[str, Any]] = {}
        self.failures: List[Tuple[int, Dict[str, Any]]] = []
        self.requests: List[httpx.Request] = []
        self._next_id = 1000

    def add(self, retailer_id: str, **fields) -> Dict[str, Any]:
        self._next_id += 1
        item = {"id": str(self._next_id), "retailer_id": retailer_id, **fields}
        self.items[retailer_id] = item
        return item

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failures:
            status, body = self.failures.pop(0)
            return httpx.Response(status, json=body)

        path = request.url.path
        if request.method == "POST" and path.endswith("/products"):
            body = json.loads(request.content)
            body.pop("allow_upsert", None)
            existing = self.items.get(body["retailer_id"])
            if existing:
                existing.update(body)
                return httpx.Response(200, json={"id": existing["id"]})
            item = self.add(body.pop("retailer_id"), **body)
            return httpx.Response(200, json={"id": item["id"]})

        if request.method == "DELETE" and path.endswith("/products"):
            retailer_id = json.loads(request.content)["retailer_id"]
            if retailer_id not in self.items:
                return httpx.Response(
                    400,
                    json={"error": {"code": 100, "error_subcode": 33, "message": "Object does not exist"}},
                )
            del self.items[retailer_id]
            return httpx.Response(200, json={"success": True})

        if request.method == "GET" and path.endswith("/products"):
            params = request.url.params
            if "filter" in params:
                wanted = json.loads(params["filter"])["retailer_id"]["eq"]
                rows = [self.items[wanted]] if wanted in self.items else []
                return httpx.Response(200, json={"data": rows})

            limit = int(params.get("limit", 250))
            start = int(params.get("after", 0))
            rows = list(self.items.values())[start:start + limit]
            end = start + len(rows)
            paging: Dict[str, Any] = {"cursors": {"after": str(end)}}
            if end < len(self.items):
                paging["next"] = f"https://catalog.test/next?after={end}"
            return httpx.Response(200, json={"data": rows, "paging": paging})

        if request.method == "GET":
            return httpx.Response(
                200, json={"id": "cat1", "name": "Test catalog", "product_count": len(self.items)}
            )

        return httpx.Response(405, json={"error": {"message": "Method not allowed"}})


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="settings")
def settings_fixture() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        catalog_access_token="test-token",
        catalog_id="cat1",
        catalog_business_id="biz1",
        catalog_api_base="https://catalog.test/v21.0",
        site_url="https://shop.example.com",
        cron_secret="s3cret",
        sync_enabled=True,
    )


@pytest.fixture(name="fake_catalog")
def fake_catalog_fixture() -> FakeCatalog:
    return FakeCatalog()


@pytest.fixture(name="fake_sleep")
def fake_sleep_fixture() -> AsyncMock:
    """Replaces asyncio.sleep in the client so backoff costs no wall time."""
    return AsyncMock()


@pytest.fixture(name="catalog_client")
def catalog_client_fixture(settings, fake_catalog, fake_sleep) -> CatalogClient:
    return CatalogClient.from_settings(
        settings,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake_catalog.handler)),
        sleep=fake_sleep,
        rng=lambda: 0.5,  # zero jitter
    )


@pytest.fixture(name="alerter")
def alerter_fixture() -> AsyncMock:
    alerter = AsyncMock()
    alerter.send_alert.return_value = True
    alerter.send_daily_summary.return_value = True
    return alerter


@pytest.fixture(name="processor")
def processor_fixture(catalog_client, engine, alerter, settings) -> SyncProcessor:
    return SyncProcessor(catalog_client, engine, alerter, settings=settings)


@pytest.fixture(name="add_product")
def add_product_fixture(engine):
    """Factory: persist a valid Product, with any field overridden."""

    def _add(product_id: str = "p1", **overrides) -> Product:
        fields: Dict[str, Optional[Any]] = dict(
            id=product_id,
            name=f"Product {product_id}",
            description="A useful thing",
            price=Decimal("49.99"),
            category="Gadgets",
            image_url=f"https://cdn.example.com/{product_id}.jpg",
            images=[],
            in_stock=True,
        )
        fields.update(overrides)
        product = Product(**fields)
        with Session(engine) as s:
            s.add(product)
            s.commit()
            s.refresh(product)
        return product

    return _add
