import os
from typing import Any, Dict, List, Optional

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.pool import NullPool

from catalog_hub.db import create_engine
from catalog_hub.security.vault import CredentialVault
from catalog_hub.storage.object_store import ObjectStore

SHOP_URL = "https://shop.test"
IMG_HOST = "https://img.test"


# ---------------------------
# Object store double
# ---------------------------

class FakeObjectStore(ObjectStore):
    def __init__(self, bucket: str = "product-images"):
        self.bucket = bucket
        self.objects: Dict[str, tuple] = {}
        self.puts = 0
        self.fail = False
        self.bucket_ready = False

    async def ensure_bucket(self) -> None:
        self.bucket_ready = True

    def _check(self):
        if self.fail:
            raise ConnectionError("object store unavailable")

    async def put_object(self, path: str, data: bytes, content_type: str) -> str:
        self._check()
        self.objects[path] = (data, content_type)
        self.puts += 1
        return self.public_url(path)

    async def exists(self, path: str) -> bool:
        self._check()
        return path in self.objects

    async def delete_object(self, path: str) -> None:
        self._check()
        self.objects.pop(path, None)

    async def list_objects(self, prefix: str = "") -> List[str]:
        return [k for k in self.objects if k.startswith(prefix)]

    def public_url(self, path: str) -> str:
        return f"http://store.test/{self.bucket}/{path}"


# ---------------------------
# Image host double
# ---------------------------

class FakeImageHost:
    """Serves any https://img.test/*.jpg; paths listed in `broken` return 404."""

    def __init__(self):
        self.downloads: List[str] = []
        self.broken: set = set()
        self.content_type = "image/jpeg"
        self.body = b"\xff\xd8\xff" + b"x" * 64

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.downloads.append(url)
        if url in self.broken:
            return httpx.Response(404, text="not found")
        return httpx.Response(200, content=self.body, headers={"content-type": self.content_type})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# ---------------------------
# WooCommerce REST double
# ---------------------------

def category(id: int, name: str, parent: int = 0) -> Dict[str, Any]:
    return {"id": id, "name": name, "slug": name.lower(), "parent": parent, "menu_order": 0}


def product(id: int, name: str, *, type: str = "simple", sku: str = "", images: Optional[List[str]] = None,
            categories: Optional[List[int]] = None, brands: Optional[List[int]] = None,
            price: str = "10.00") -> Dict[str, Any]:
    return {
        "id": id,
        "name": name,
        "slug": name.lower().replace(" ", "-"),
        "type": type,
        "status": "publish",
        "sku": sku,
        "price": price,
        "regular_price": price,
        "sale_price": "",
        "manage_stock": False,
        "stock_quantity": None,
        "stock_status": "instock",
        "weight": "",
        "dimensions": {"length": "", "width": "", "height": ""},
        "categories": [{"id": c} for c in (categories or [])],
        "brands": [{"id": b} for b in (brands or [])],
        "images": [{"id": i, "src": src} for i, src in enumerate(images or [], start=1)],
    }


def variation(id: int, *, sku: str = "", price: str = "12.00", color: str = "Red",
              image: Optional[str] = None) -> Dict[str, Any]:
    return {
        "id": id,
        "sku": sku,
        "price": price,
        "regular_price": price,
        "sale_price": "",
        "manage_stock": "parent",
        "stock_status": "instock",
        "attributes": [{"id": 1, "name": "Color", "option": color}],
        "image": {"id": 99, "src": image} if image else None,
    }


class FakeWoo:
    def __init__(self):
        self.categories: List[Dict[str, Any]] = []
        self.brands: Optional[List[Dict[str, Any]]] = []
        self.products: List[Dict[str, Any]] = []
        self.variations: Dict[int, List[Dict[str, Any]]] = {}
        self.requests: List[httpx.Request] = []
        # path -> set of pages answering 500
        self.failing_pages: Dict[str, set] = {}
        self.auth_ok = True

    def _page(self, path: str, items: List[Dict[str, Any]], request: httpx.Request) -> httpx.Response:
        page = int(request.url.params.get("page", "1"))
        per_page = int(request.url.params.get("per_page", "10"))
        if page in self.failing_pages.get(path, set()):
            return httpx.Response(500, text="<!DOCTYPE html><html><title>Server error</title></html>")
        start = (page - 1) * per_page
        return httpx.Response(200, json=items[start:start + per_page])

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/wp-json/":
            return httpx.Response(200, json={"name": "Test shop"})
        if not self.auth_ok:
            return httpx.Response(401, json={"code": "woocommerce_rest_cannot_view"})
        if path == "/wp-json/wc/v3":
            return httpx.Response(200, json={"namespace": "wc/v3"})
        if path == "/wp-json/wc/v3/products/categories":
            return self._page(path, self.categories, request)
        if path == "/wp-json/wc/v3/products/brands":
            if self.brands is None:
                return httpx.Response(404, json={"code": "rest_no_route"})
            return self._page(path, self.brands, request)
        if path == "/wp-json/wc/v3/products":
            return self._page(path, self.products, request)
        if path.startswith("/wp-json/wc/v3/products/") and path.endswith("/variations"):
            pid = int(path.split("/")[-2])
            return self._page(path, self.variations.get(pid, []), request)
        return httpx.Response(404, json={"code": "rest_no_route"})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, path: str) -> int:
        return sum(1 for r in self.requests if r.url.path == path)


# ---------------------------
# Fixtures
# ---------------------------

@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'catalog.db'}"


@pytest.fixture
def engine(db_url):
    return create_engine(db_url, poolclass=NullPool)


@pytest.fixture
def sessionmaker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest.fixture
def vault():
    return CredentialVault(os.urandom(32))


@pytest.fixture
def store():
    return FakeObjectStore()


@pytest.fixture
def image_host():
    return FakeImageHost()


@pytest.fixture
def woo():
    return FakeWoo()
