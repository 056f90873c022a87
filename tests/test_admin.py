# tests/test_admin.py
from typing import List, Optional

import httpx
import pytest

from mapproxy.core.config import Settings
from mapproxy.core.errors import StoreError
from mapproxy.main import create_app
from mapproxy.models.schemas import Mapping
from mapproxy.services.store import InMemoryMappingStore

pytestmark = pytest.mark.anyio


class SpyStore(InMemoryMappingStore):
    """Counts every store call so tests can prove the gate was never passed."""

    def __init__(self):
        super().__init__()
        self.touched = 0

    async def get(self, mapping_id: str) -> Optional[Mapping]:
        self.touched += 1
        return await super().get(mapping_id)

    async def put(self, mapping: Mapping) -> Mapping:
        self.touched += 1
        return await super().put(mapping)

    async def delete(self, mapping_id: str) -> bool:
        self.touched += 1
        return await super().delete(mapping_id)

    async def list(self) -> List[Mapping]:
        self.touched += 1
        return await super().list()


class BrokenStore(InMemoryMappingStore):
    async def get(self, mapping_id):
        raise StoreError("down")

    async def put(self, mapping):
        raise StoreError("down")

    async def delete(self, mapping_id):
        raise StoreError("down")

    async def list(self):
        raise StoreError("down")


@pytest.fixture
def store() -> SpyStore:
    return SpyStore()


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

class TestGate:
    @pytest.mark.parametrize("method,path", [
        ("GET", "/admin/mappings"),
        ("POST", "/admin/mappings"),
        ("PUT", "/admin/mappings/svc1"),
        ("DELETE", "/admin/mappings/svc1"),
    ])
    async def test_missing_credentials_challenged(self, client, store, method, path):
        resp = await client.request(method, path, json={"id": "svc1", "url": "http://b"})

        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == 'Basic realm="Restricted"'
        assert store.touched == 0

    async def test_wrong_password_challenged(self, client, store):
        resp = await client.get("/admin/mappings", auth=("admin", "wrong"))

        assert resp.status_code == 401
        assert resp.headers["www-authenticate"].startswith("Basic")
        assert store.touched == 0

    async def test_wrong_username_challenged(self, client, store, admin_auth):
        resp = await client.get("/admin/mappings", auth=("root", admin_auth[1]))

        assert resp.status_code == 401
        assert store.touched == 0

    async def test_bearer_scheme_challenged(self, client, store):
        resp = await client.get("/admin/mappings", headers={"Authorization": "Bearer abc"})

        assert resp.status_code == 401
        assert store.touched == 0

    async def test_garbled_basic_header_rejected(self, client, store):
        resp = await client.get("/admin/mappings", headers={"Authorization": "Basic !!!"})

        assert resp.status_code == 401
        assert store.touched == 0

    async def test_unset_password_locks_admin(self, outbound):
        spy = SpyStore()
        app = create_app(Settings(admin_username="admin", admin_password=""), store=spy, client=outbound)
        async with app.router.lifespan_context(app):
            transport = httpx.ASGITransport(app=app)
            async with httpx.AsyncClient(transport=transport, base_url="http://proxy.local") as c:
                resp = await c.get("/admin/mappings", auth=("admin", ""))

        assert resp.status_code == 401
        assert spy.touched == 0

    @pytest.mark.parametrize("method,path", [
        ("PATCH", "/admin/mappings"),
        ("PROPFIND", "/admin/mappings/svc1"),
        ("GET", "/admin/unknown"),
    ])
    async def test_unrouted_admin_request_challenged(self, client, store, method, path):
        resp = await client.request(method, path)

        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == 'Basic realm="Restricted"'
        assert store.touched == 0

    async def test_unrouted_admin_method_not_allowed(self, client, store, admin_auth):
        resp = await client.patch("/admin/mappings", auth=admin_auth)

        assert resp.status_code == 405
        assert "POST" in resp.headers["allow"]
        assert store.touched == 0

    async def test_unknown_admin_path_not_found(self, client, store, admin_auth):
        resp = await client.get("/admin/unknown", auth=admin_auth)

        assert resp.status_code == 404
        assert store.touched == 0

    async def test_valid_credentials_pass(self, client, admin_auth):
        resp = await client.get("/admin/mappings", auth=admin_auth)

        assert resp.status_code == 200
        assert resp.json() == []


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

class TestCrud:
    async def test_create_then_list(self, client, admin_auth):
        resp = await client.post(
            "/admin/mappings", json={"id": "svc1", "url": "http://backend.internal:9000"}, auth=admin_auth
        )
        assert resp.status_code == 200
        assert resp.json() == {"id": "svc1", "url": "http://backend.internal:9000"}

        listed = await client.get("/admin/mappings", auth=admin_auth)
        assert listed.json() == [{"id": "svc1", "url": "http://backend.internal:9000"}]

    async def test_create_duplicate_conflicts(self, client, store, admin_auth):
        await store.put(Mapping(id="svc1", url="http://a"))

        resp = await client.post("/admin/mappings", json={"id": "svc1", "url": "http://b"}, auth=admin_auth)

        assert resp.status_code == 409
        assert (await store.get("svc1")).url == "http://a"

    @pytest.mark.parametrize("payload", [
        {"id": "svc1", "url": ""},
        {"id": "", "url": "http://b"},
        {"id": "svc1"},
        {"url": "http://b"},
        {"id": "a/b", "url": "http://b"},
        {"id": "svc1", "url": "not a url"},
        {"id": "svc1", "url": "ftp://files.internal"},
    ])
    async def test_invalid_payload_not_persisted(self, client, store, admin_auth, payload):
        resp = await client.post("/admin/mappings", json=payload, auth=admin_auth)

        assert resp.status_code == 422
        assert await store.list() == []

    @pytest.mark.parametrize("reserved", ["admin", "health", "readyz", "metrics"])
    async def test_reserved_id_rejected(self, client, store, admin_auth, reserved):
        resp = await client.post("/admin/mappings", json={"id": reserved, "url": "http://b"}, auth=admin_auth)

        assert resp.status_code == 400
        assert await store.list() == []

    async def test_update_overwrites(self, client, store, admin_auth):
        await store.put(Mapping(id="svc1", url="http://old"))

        resp = await client.put("/admin/mappings/svc1", json={"url": "http://new"}, auth=admin_auth)

        assert resp.status_code == 200
        assert (await store.get("svc1")).url == "http://new"

    async def test_update_creates_when_missing(self, client, store, admin_auth):
        resp = await client.put("/admin/mappings/svc2", json={"url": "http://b"}, auth=admin_auth)

        assert resp.status_code == 200
        assert (await store.get("svc2")) == Mapping(id="svc2", url="http://b")

    async def test_update_path_id_wins_over_body(self, client, store, admin_auth):
        resp = await client.put(
            "/admin/mappings/svc1", json={"id": "other", "url": "http://b"}, auth=admin_auth
        )

        assert resp.json()["id"] == "svc1"
        assert await store.get("other") is None

    async def test_update_rejects_empty_url(self, client, store, admin_auth):
        await store.put(Mapping(id="svc1", url="http://old"))

        resp = await client.put("/admin/mappings/svc1", json={"url": ""}, auth=admin_auth)

        assert resp.status_code == 422
        assert (await store.get("svc1")).url == "http://old"

    async def test_delete(self, client, store, admin_auth):
        await store.put(Mapping(id="svc1", url="http://a"))

        resp = await client.delete("/admin/mappings/svc1", auth=admin_auth)

        assert resp.status_code == 200
        assert resp.json() == {"status": "deleted"}
        assert await store.get("svc1") is None

    async def test_delete_missing_is_404(self, client, admin_auth):
        resp = await client.delete("/admin/mappings/ghost", auth=admin_auth)

        assert resp.status_code == 404


class TestStoreFailures:
    @pytest.fixture
    def store(self):
        return BrokenStore()

    @pytest.mark.parametrize("method,path,body", [
        ("GET", "/admin/mappings", None),
        ("POST", "/admin/mappings", {"id": "svc1", "url": "http://b"}),
        ("PUT", "/admin/mappings/svc1", {"url": "http://b"}),
        ("DELETE", "/admin/mappings/svc1", None),
    ])
    async def test_store_error_is_500_without_details(self, client, admin_auth, method, path, body):
        resp = await client.request(method, path, json=body, auth=admin_auth)

        assert resp.status_code == 500
        assert "down" not in resp.text
