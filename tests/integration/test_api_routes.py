"""Integration tests for /catalog-sync and /cron routes."""
import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from catalogsync.api.deps import get_alerter, get_catalog_client
from catalogsync.api.main import create_app
from catalogsync.catalog.processor import MAX_RETRIES
from catalogsync.config import get_settings
from catalogsync.db.engine import get_engine
from catalogsync.models.sync import DeadLetterItem, SyncOperation

REJECTED = (400, {"error": {"code": 100, "message": "Invalid parameter"}})


@pytest.fixture(name="client")
def client_fixture(engine, settings, catalog_client, alerter):
    app = create_app()
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_catalog_client] = lambda: catalog_client
    app.dependency_overrides[get_alerter] = lambda: alerter
    with TestClient(app) as c:
        yield c


class TestStatusRoutes:
    def test_status_empty(self, client):
        resp = client.get("/catalog-sync/status")
        assert resp.status_code == 200
        assert resp.json()["total"] == 0

    def test_sync_then_status(self, client, add_product):
        add_product("p1")
        resp = client.post("/catalog-sync/sync", json={"product_id": "p1", "operation": "CREATE"})
        assert resp.status_code == 200
        assert resp.json()["success"] is True

        status = client.get("/catalog-sync/status").json()
        assert status["synced"] == 1
        assert status["items"][0]["product_id"] == "p1"

    def test_sync_failure_is_500(self, client):
        resp = client.post("/catalog-sync/sync", json={"product_id": "ghost"})
        assert resp.status_code == 500
        assert resp.json()["error_code"] == "NOT_FOUND"

    def test_sync_rejects_reconcile(self, client):
        resp = client.post("/catalog-sync/sync", json={"product_id": "p1", "operation": "RECONCILE"})
        assert resp.status_code == 400

    def test_sync_requires_product_id(self, client):
        resp = client.post("/catalog-sync/sync", json={})
        assert resp.status_code == 422

    def test_sync_all(self, client, add_product):
        add_product("p1")
        add_product("p2")
        resp = client.post("/catalog-sync/sync-all", json={"batch_size": 1})
        assert resp.status_code == 200
        assert resp.json()["success"] == 2

    def test_logs(self, client, add_product):
        add_product("p1")
        client.post("/catalog-sync/sync", json={"product_id": "p1"})
        resp = client.get("/catalog-sync/logs", params={"product_id": "p1"})
        assert resp.status_code == 200
        logs = resp.json()["logs"]
        assert len(logs) == 1
        assert logs[0]["operation"] == "UPDATE"
        assert len(client.get("/catalog-sync/logs").json()["logs"]) == 1


class TestDeadLetterRoutes:
    def test_dead_letter_and_retry(self, client, add_product, fake_catalog, engine):
        add_product("p1")
        for _ in range(MAX_RETRIES):
            fake_catalog.failures = [REJECTED]
            client.post("/catalog-sync/sync", json={"product_id": "p1"})

        body = client.get("/catalog-sync/dead-letter").json()
        assert body["total"] == 1
        item_id = body["items"][0]["id"]

        resp = client.post("/catalog-sync/retry", json={"id": item_id})
        assert resp.status_code == 200
        with Session(engine) as s:
            item = s.get(DeadLetterItem, item_id)
        assert item.resolved
        assert item.resolved_by == "admin"
        assert client.get("/catalog-sync/dead-letter").json()["total"] == 0

    def test_retry_unknown_id(self, client):
        assert client.post("/catalog-sync/retry", json={"id": 42}).status_code == 404

    def test_retry_requires_target(self, client):
        assert client.post("/catalog-sync/retry", json={}).status_code == 400

    def test_retry_by_product_id(self, client, add_product):
        add_product("p1")
        resp = client.post("/catalog-sync/retry", json={"product_id": "p1"})
        assert resp.status_code == 200


class TestVerifyAndExport:
    def test_verify_connected(self, client):
        resp = client.get("/catalog-sync/verify")
        assert resp.status_code == 200
        assert resp.json()["connected"] is True
        assert resp.json()["catalog"]["id"] == "cat1"

    def test_verify_upstream_failure(self, client, fake_catalog):
        fake_catalog.failures = [(401, {"error": {"code": 190, "message": "Invalid token"}})]
        resp = client.get("/catalog-sync/verify")
        assert resp.status_code == 400
        assert resp.json() == {"connected": False, "error": "Invalid token", "error_code": 190}

    def test_export_csv(self, client, add_product):
        add_product("p1", name='Mug, "large"')
        resp = client.get("/catalog-sync/export-csv")
        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/csv")
        assert "attachment" in resp.headers["content-disposition"]
        lines = resp.text.splitlines()
        assert lines[0] == "retailer_id,name,description,price,currency,availability,image_url,url,condition,category"
        assert lines[1].startswith('p1,"Mug, ""large""",A useful thing,49.99,USD,in stock,')


class TestCronRoute:
    def test_missing_secret_is_401(self, client):
        assert client.post("/cron/reconciliation").status_code == 401

    def test_wrong_secret_is_401(self, client):
        resp = client.post("/cron/reconciliation", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_unconfigured_secret_is_401(self, client, settings):
        settings.cron_secret = ""
        resp = client.post("/cron/reconciliation", headers={"Authorization": "Bearer anything"})
        assert resp.status_code == 401

    def test_runs_reconciliation(self, client, add_product, fake_catalog):
        add_product("p1")
        resp = client.post("/cron/reconciliation", headers={"Authorization": "Bearer s3cret"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["missing_in_meta"] == 1
        assert "p1" in fake_catalog.items

    def test_kill_switch(self, client, settings, fake_catalog):
        settings.sync_enabled = False
        resp = client.post("/cron/reconciliation", headers={"Authorization": "Bearer s3cret"})
        assert resp.status_code == 200
        assert resp.json() == {"message": "Sync disabled"}
        assert fake_catalog.requests == []

    def test_kill_switch_keeps_reads_working(self, client, settings):
        settings.sync_enabled = False
        assert client.get("/catalog-sync/status").status_code == 200
