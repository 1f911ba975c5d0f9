"""
test_routers.py — HTTP tests for the public catalog and admin sync routers

The app's lifespan is not run (TestClient is used without a context
manager), so each test wires app.state by hand: a CatalogService over the
fake connector and the in-memory DB, a fresh cache, a job manager and an
is_admin check. get_db is overridden to the test session factory.

Called by: pytest
Depends on: storefront.main, storefront.routers.*
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from storefront.cache.regions import INVENTORY, PRODUCTS
from storefront.config import settings
from storefront.connectors.square import PlatformError
from storefront.database import get_db
from storefront.main import app
from storefront.scheduler import BackgroundJobManager
from storefront.services.catalog_service import CatalogService
from tests.factories import FakeConnector, make_item, make_preorder, make_product

ADMIN = {"x-admin-key": "letmein"}


@pytest.fixture()
def connector():
    return FakeConnector(
        items=[
            make_item("A", "Abbey Road", artist="The Beatles"),
            make_item("H", "Test Pressing", description="[HIDDEN FROM STORE]"),
        ],
        counts={"A-V": 5, "H-V": 1, "A": 2},
    )


@pytest.fixture()
def jobs():
    return BackgroundJobManager()


@pytest.fixture()
def client(connector, session_factory, cache, jobs):
    def _get_test_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.state.cache = cache
    app.state.catalog_service = CatalogService(connector, session_factory, cache)
    app.state.job_manager = jobs
    app.state.is_admin = lambda request: request.headers.get("x-admin-key") == "letmein"
    app.dependency_overrides[get_db] = _get_test_db
    yield TestClient(app)
    app.dependency_overrides.clear()
    for name in ("cache", "catalog_service", "job_manager", "is_admin"):
        delattr(app.state, name)


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


# ── Public catalog ───────────────────────────────────────────────────


class TestPublicProducts:
    def test_lists_visible_products_live(self, client):
        resp = client.get("/api/products")
        assert resp.status_code == 200
        data = resp.json()
        assert data["source"] == "live"
        assert data["degraded"] is False
        assert data["count"] == 1
        product = data["products"][0]
        assert product["id"] == "A-V"
        assert product["slug"] == "abbey-road-the-beatles"
        assert product["stock_status"] == "in_stock"
        assert data["last_synced_at"] is not None

    def test_second_read_is_served_from_cache(self, client, connector):
        client.get("/api/products")
        resp = client.get("/api/products")
        assert resp.json()["source"] == "cached"
        assert connector.search_calls == 1

    def test_platform_outage_serves_mirror(self, client, connector, db_session):
        make_product(db_session, "M1", title="Mirror Copy")
        connector.fail_with = PlatformError("upstream 500", status_code=500)

        data = client.get("/api/products").json()

        assert data["degraded"] is True
        assert data["source"] == "degraded"
        assert [p["id"] for p in data["products"]] == ["M1"]

    def test_stale_mirror_is_503(self, client, connector, db_session):
        make_product(db_session, "M1", last_synced_at=datetime.now(timezone.utc) - timedelta(hours=48))
        connector.fail_with = PlatformError("upstream 500", status_code=500)
        assert client.get("/api/products").status_code == 503


class TestProductInventory:
    def test_live_lookup(self, client, db_session):
        make_product(db_session, "A")
        resp = client.get("/api/products/A/inventory")
        assert resp.status_code == 200
        assert resp.json() == {
            "product_id": "A",
            "stock_quantity": 2,
            "stock_status": "low_stock",
            "in_stock": True,
            "available_at_location": True,
            "source": "live",
        }

    def test_unknown_product_is_404(self, client):
        assert client.get("/api/products/NOPE/inventory").status_code == 404

    def test_hidden_product_is_404(self, client, db_session):
        make_product(db_session, "H", is_visible=False)
        assert client.get("/api/products/H/inventory").status_code == 404


# ── Admin access ─────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/api/admin/products"),
        ("post", "/api/admin/sync"),
        ("get", "/api/admin/sync/status"),
        ("get", "/api/admin/background-jobs"),
        ("get", "/api/admin/cache/invalidate"),
        ("get", "/api/admin/preorders/auto-update"),
        ("get", "/api/admin/preorders"),
    ],
)
def test_admin_routes_require_admin(client, method, path):
    assert getattr(client, method)(path).status_code == 403


def test_default_admin_check_uses_api_key(client):
    from storefront.dependencies import default_is_admin

    app.state.is_admin = default_is_admin
    with patch.object(settings, "admin_api_key", "s3cret"):
        assert client.get("/api/admin/sync/status").status_code == 403
        assert client.get("/api/admin/sync/status", headers={"x-admin-key": "wrong"}).status_code == 403
        assert client.get("/api/admin/sync/status", headers={"x-admin-key": "s3cret"}).status_code == 200
    with patch.object(settings, "admin_api_key", ""):
        assert client.get("/api/admin/sync/status", headers={"x-admin-key": ""}).status_code == 403


# ── Admin catalog and sync ───────────────────────────────────────────


class TestAdminSync:
    def test_admin_products_include_hidden(self, client):
        data = client.get("/api/admin/products", headers=ADMIN).json()
        assert sorted(p["id"] for p in data["products"]) == ["A-V", "H-V"]

    def test_sync_now(self, client):
        data = client.post("/api/admin/sync", headers=ADMIN).json()
        assert data["success"] is True
        assert data["fetched"] == 2
        assert data["upserted"] == 2
        assert data["errors"] == []

    def test_sync_failure_reported(self, client, connector):
        connector.fail_with = PlatformError("unauthorized", status_code=401)
        resp = client.post("/api/admin/sync", headers=ADMIN)
        assert resp.status_code == 200
        assert resp.json() == {"success": False, "error": "unauthorized"}

    def test_sync_status(self, client):
        client.post("/api/admin/sync", headers=ADMIN)
        data = client.get("/api/admin/sync/status", headers=ADMIN).json()
        assert data["location_id"] == "LOC1"
        assert data["is_stale"] is False
        assert data["sync_in_progress"] is False
        assert data["products"]["total"] == 2
        assert data["last_sync"]["status"] == "success"


# ── Background jobs ──────────────────────────────────────────────────


class TestBackgroundJobs:
    @pytest.fixture(autouse=True)
    def _job(self, jobs):
        async def ping():
            return {"pinged": 1}

        jobs.register_job("ping", "Ping", 60, ping)

    def test_list_jobs(self, client):
        data = client.get("/api/admin/background-jobs", headers=ADMIN).json()
        assert [j["id"] for j in data["jobs"]] == ["ping"]

    def test_single_job_status(self, client):
        data = client.get("/api/admin/background-jobs?job_id=ping", headers=ADMIN).json()
        assert data["job"]["name"] == "Ping"
        assert data["job"]["is_running"] is False

    def test_unknown_job_is_404(self, client):
        assert client.get("/api/admin/background-jobs?job_id=nope", headers=ADMIN).status_code == 404
        resp = client.post("/api/admin/background-jobs", headers=ADMIN, json={"action": "start", "job_id": "nope"})
        assert resp.status_code == 404

    def test_execute_now(self, client):
        resp = client.post("/api/admin/background-jobs", headers=ADMIN, json={"action": "execute", "job_id": "ping"})
        data = resp.json()
        assert data["success"] is True
        assert data["message"] == "pinged=1"
        assert data["job"]["last_result"]["success"] is True

    def test_stop_job_not_running(self, client):
        resp = client.post("/api/admin/background-jobs", headers=ADMIN, json={"action": "stop", "job_id": "ping"})
        assert resp.status_code == 200
        assert resp.json()["success"] is False

    def test_unknown_action_rejected(self, client):
        resp = client.post("/api/admin/background-jobs", headers=ADMIN, json={"action": "pause", "job_id": "ping"})
        assert resp.status_code == 422


# ── Cache ────────────────────────────────────────────────────────────


class TestCacheInvalidation:
    def test_cache_info(self, client):
        data = client.get("/api/admin/cache/invalidate", headers=ADMIN).json()
        assert data["cache_info"][PRODUCTS]["status"] == "valid"
        assert "all" in data["available_operations"]

    def test_invalidate_products(self, client, cache):
        resp = client.post("/api/admin/cache/invalidate", headers=ADMIN, json={"type": "products"})
        assert resp.json()["success"] is True
        assert not cache.is_valid(PRODUCTS)
        assert cache.is_valid(INVENTORY)

    def test_invalidate_all(self, client, cache):
        client.post("/api/admin/cache/invalidate", headers=ADMIN, json={"type": "all"})
        assert not cache.is_valid(PRODUCTS)
        assert not cache.is_valid(INVENTORY)

    def test_product_invalidation_requires_id(self, client):
        resp = client.post("/api/admin/cache/invalidate", headers=ADMIN, json={"type": "product"})
        assert resp.status_code == 422

    def test_invalidation_rereads_mirror(self, client, connector, db_session, cache):
        client.get("/api/products")
        make_product(db_session, "LOCAL", title="Shop Tote", is_from_square=False)
        client.post("/api/admin/cache/invalidate", headers=ADMIN, json={"type": "products"})

        data = client.get("/api/products").json()

        assert data["source"] == "cached"
        assert sorted(p["id"] for p in data["products"]) == ["A-V", "LOCAL"]
        assert connector.search_calls == 1
        assert cache.is_valid(PRODUCTS)


# ── Preorders ────────────────────────────────────────────────────────


class TestPreorders:
    def test_preview_then_release(self, client, db_session, cache):
        today = datetime.now(timezone.utc).date()
        make_preorder(db_session, "P1", today - timedelta(days=1))
        make_preorder(db_session, "P2", today + timedelta(days=3))

        preview = client.get("/api/admin/preorders/auto-update", headers=ADMIN).json()
        assert [p["id"] for p in preview["ready_to_release"]] == ["P1"]
        assert [(p["id"], p["days_until_release"]) for p in preview["releasing_soon"]] == [("P2", 3)]
        assert preview["stats"]["ready_to_release"] == 1

        release = client.post("/api/admin/preorders/auto-update", headers=ADMIN).json()
        assert release["success"] is True
        assert release["released"] == ["P1"]
        assert not cache.is_valid(PRODUCTS)

        again = client.post("/api/admin/preorders/auto-update", headers=ADMIN).json()
        assert again["released"] == []

    def test_list_by_status(self, client, db_session):
        today = datetime.now(timezone.utc).date()
        make_preorder(db_session, "R", today - timedelta(days=10), status="released")
        make_preorder(db_session, "A", today + timedelta(days=10))

        released = client.get("/api/admin/preorders?status=released", headers=ADMIN).json()
        assert [p["id"] for p in released["preorders"]] == ["R"]
        active = client.get("/api/admin/preorders", headers=ADMIN).json()
        assert [p["id"] for p in active["preorders"]] == ["A"]

    def test_bad_status_rejected(self, client):
        assert client.get("/api/admin/preorders?status=bogus", headers=ADMIN).status_code == 422
