import time

import pytest
from fastapi.testclient import TestClient

from catalog_hub.config import settings
from catalog_hub.main_app import create_app

from conftest import IMG_HOST, SHOP_URL, category, product

AUTH = (settings.ADMIN_USER, settings.ADMIN_PASS)


@pytest.fixture
def client(engine, vault, store, woo, image_host):
    app = create_app(
        engine=engine,
        vault=vault,
        store=store,
        woo_transport=woo.transport(),
        image_transport=image_host.transport(),
    )
    with TestClient(app) as c:
        yield c


def _register(client, url=SHOP_URL, name="Main shop"):
    r = client.post("/api/shops", auth=AUTH, json={
        "name": name, "url": url, "consumerKey": "ck_abcdef0123456789", "consumerSecret": "cs_abcdef0123456789",
    })
    assert r.status_code == 201, r.text
    return r.json()


def _wait(client, job_id, timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = client.get(f"/api/sync/status/{job_id}", auth=AUTH).json()
        if job["status"] in ("completed", "failed"):
            return job
        time.sleep(0.05)
    raise AssertionError(f"job {job_id} did not finish")


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "running"
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["db"]["ok"] is True


def test_admin_auth_required(client):
    assert client.get("/api/shops").status_code == 401
    assert client.get("/api/shops", auth=("admin", "wrong")).status_code == 401
    assert client.post("/api/shops/sync/background", json={}).status_code == 401


def test_register_shop_never_exposes_credentials(client, vault, store):
    shop = _register(client)
    assert shop["url"] == SHOP_URL
    assert "consumer_key_enc" not in shop and "consumerKey" not in shop
    listed = client.get("/api/shops", auth=AUTH).json()["shops"]
    assert [s["id"] for s in listed] == [shop["id"]]
    assert "ck_abcdef" not in client.get(f"/api/shops/{shop['id']}", auth=AUTH).text
    assert store.bucket_ready


def test_register_rejects_duplicates_and_bad_urls(client):
    _register(client)
    r = client.post("/api/shops", auth=AUTH, json={
        "name": "Again", "url": SHOP_URL + "/", "consumerKey": "a", "consumerSecret": "b",
    })
    assert r.status_code == 409
    r = client.post("/api/shops", auth=AUTH, json={
        "name": "Bad", "url": "shop.test", "consumerKey": "a", "consumerSecret": "b",
    })
    assert r.status_code == 422


def test_unknown_shop_is_404(client):
    assert client.get("/api/shops/nope", auth=AUTH).status_code == 404
    r = client.post("/api/shops/sync/background", auth=AUTH, json={"shopId": "nope"})
    assert r.status_code == 404
    assert r.json()["detail"] == "Shop not found: nope"


def test_non_string_shop_id_is_422(client):
    r = client.post("/api/shops/sync/background", auth=AUTH, json={"shopId": 42})
    assert r.status_code == 422


def test_background_sync_end_to_end(client, woo):
    woo.categories = [category(1, "Kitchen")]
    woo.products = [product(10, "Mug", categories=[1], images=[f"{IMG_HOST}/mug.jpg"])]
    shop = _register(client)

    r = client.post("/api/shops/sync/background", auth=AUTH, json={"shopId": shop["id"]})
    assert r.status_code == 202
    body = r.json()
    assert body["accepted"] is True
    assert len(body["jobs"]) == 1
    job = _wait(client, body["jobs"][0]["id"])

    assert job["status"] == "completed", job
    assert job["shop_name"] == "Main shop"
    assert job["details"]["products"]["created"] == 1
    stages = [p["stage"] for p in job["progress"]]
    assert stages[-1] == "complete"

    r = client.get("/api/shops/sync/background", auth=AUTH, params={"jobId": job["id"]})
    assert r.json()["id"] == job["id"]
    assert [j["id"] for j in client.get("/api/sync/jobs", auth=AUTH).json()["jobs"]] == [job["id"]]


def test_sync_without_shop_id_queues_every_shop(client):
    _register(client, "https://one.test", "One")
    _register(client, "https://two.test", "Two")
    r = client.post("/api/shops/sync/background", auth=AUTH)
    assert r.status_code == 202
    jobs = r.json()["jobs"]
    assert [j["shop_name"] for j in jobs] == ["One", "Two"]
    for j in jobs:
        _wait(client, j["id"])
    listed = client.get("/api/shops/sync/background", auth=AUTH).json()["jobs"]
    assert {j["id"] for j in listed} == {j["id"] for j in jobs}


def test_unknown_job_is_404(client):
    assert client.get("/api/sync/status/nope", auth=AUTH).status_code == 404
    assert client.get("/api/shops/sync/background", auth=AUTH, params={"jobId": "nope"}).status_code == 404


def test_connection_test_updates_shop(client, woo):
    shop = _register(client)
    r = client.post(f"/api/shops/{shop['id']}/test", auth=AUTH)
    assert r.status_code == 200
    assert r.json()["ok"] is True
    assert r.json()["shop"]["status"] == "active"
    assert r.json()["shop"]["last_connection_ok"] is True

    woo.auth_ok = False
    r = client.post(f"/api/shops/{shop['id']}/test", auth=AUTH)
    assert r.json()["ok"] is False
    assert r.json()["authenticated"] is False
    assert r.json()["shop"]["status"] == "error"


def test_credentials_rotation_and_delete(client, woo):
    shop = _register(client)
    r = client.put(f"/api/shops/{shop['id']}/credentials", auth=AUTH,
                   json={"consumerKey": "ck_new", "consumerSecret": "cs_new"})
    assert r.status_code == 200
    client.post(f"/api/shops/{shop['id']}/test", auth=AUTH)
    assert woo.requests[-1].headers["authorization"].startswith("Basic ")

    assert client.delete(f"/api/shops/{shop['id']}", auth=AUTH).json()["deleted"] is True
    assert client.get(f"/api/shops/{shop['id']}", auth=AUTH).status_code == 404


def test_merge_requires_sources_and_target(client):
    r = client.post("/api/categories/merge", auth=AUTH, json={"sourceIds": [], "targetId": "x"})
    assert r.status_code == 422
    r = client.post("/api/brands/merge", auth=AUTH, json={"sourceIds": ["a"], "targetId": "missing"})
    assert r.status_code == 422
