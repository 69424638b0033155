import asyncio
import re

import httpx
import pytest

from catalog_hub.images.relocation import ImageRelocationService, object_path

from conftest import IMG_HOST

SHOP = "shop-1"


def _service(store, image_host, **kw):
    return ImageRelocationService(store, transport=image_host.transport(), timeout=5, **kw)


def test_object_path_is_deterministic():
    url = f"{IMG_HOST}/wp-content/uploads/Blue Mug (Large).PNG"
    a = object_path(url, SHOP)
    assert a == object_path(url, SHOP)
    assert re.fullmatch(r"shops/shop-1/[0-9a-f]{16}-blue-mug-large\.png", a)
    assert object_path(url, "shop-2") != a


def test_object_path_falls_back_to_jpg():
    assert object_path(f"{IMG_HOST}/image.php?id=3", SHOP).endswith("-image.jpg")
    assert object_path(f"{IMG_HOST}/", SHOP).endswith(".jpg")


def test_relocate_uploads_and_returns_public_url(store, image_host):
    svc = _service(store, image_host)
    url = asyncio.run(svc.relocate(f"{IMG_HOST}/a.jpg", SHOP))
    path = object_path(f"{IMG_HOST}/a.jpg", SHOP)
    assert url == store.public_url(path)
    data, ctype = store.objects[path]
    assert ctype == "image/jpeg"
    assert data == image_host.body


def test_relocate_is_exactly_once(store, image_host):
    svc = _service(store, image_host)

    async def run():
        first = await svc.relocate(f"{IMG_HOST}/a.jpg", SHOP)
        second = await svc.relocate(f"{IMG_HOST}/a.jpg", SHOP)
        return first, second

    first, second = asyncio.run(run())
    assert first == second
    assert len(image_host.downloads) == 1
    assert store.puts == 1


def test_non_image_content_is_refused(store, image_host):
    image_host.content_type = "text/html"
    svc = _service(store, image_host)
    assert asyncio.run(svc.relocate(f"{IMG_HOST}/a.jpg", SHOP)) is None
    assert store.objects == {}


def test_oversize_download_is_refused(store, image_host):
    svc = _service(store, image_host, max_bytes=10)
    assert asyncio.run(svc.relocate(f"{IMG_HOST}/big.jpg", SHOP)) is None
    assert store.objects == {}


def test_http_error_and_bad_urls_return_none(store, image_host):
    image_host.broken.add(f"{IMG_HOST}/gone.jpg")
    svc = _service(store, image_host)

    async def run():
        return [
            await svc.relocate(f"{IMG_HOST}/gone.jpg", SHOP),
            await svc.relocate("ftp://img.test/a.jpg", SHOP),
            await svc.relocate("not a url", SHOP),
            await svc.relocate("", SHOP),
        ]

    assert asyncio.run(run()) == [None, None, None, None]
    assert store.objects == {}


@pytest.mark.parametrize("url", [
    "https://img.test:abc/a.jpg",
    "https://xn--a/a.jpg",
    "https://img.test/a\x00b.jpg",
    "https://[::1/a.jpg",
])
def test_urls_the_http_client_rejects_return_none(store, image_host, url):
    svc = _service(store, image_host)
    assert asyncio.run(svc.relocate(url, SHOP)) is None
    assert store.objects == {}


def test_network_error_returns_none(store):
    def handler(request):
        raise httpx.ReadTimeout("timed out", request=request)

    svc = ImageRelocationService(store, transport=httpx.MockTransport(handler))
    assert asyncio.run(svc.relocate(f"{IMG_HOST}/a.jpg", SHOP)) is None


def test_store_failure_returns_none(store, image_host):
    store.fail = True
    svc = _service(store, image_host)
    assert asyncio.run(svc.relocate(f"{IMG_HOST}/a.jpg", SHOP)) is None


def test_product_images_dedupe_and_keep_order(store, image_host):
    image_host.broken.add(f"{IMG_HOST}/broken.jpg")
    svc = _service(store, image_host, concurrency=2)
    featured = f"{IMG_HOST}/front.jpg"
    gallery = [f"{IMG_HOST}/side.jpg", f"{IMG_HOST}/broken.jpg", featured, f"{IMG_HOST}/side.jpg", f"{IMG_HOST}/back.jpg"]

    res = asyncio.run(svc.sync_product_images(featured, gallery, SHOP))

    assert res.featured_image == store.public_url(object_path(featured, SHOP))
    assert res.gallery_images == [
        store.public_url(object_path(u, SHOP))
        for u in (f"{IMG_HOST}/side.jpg", featured, f"{IMG_HOST}/back.jpg")
    ]
    # front, side, broken, back: each fetched once
    assert sorted(image_host.downloads) == sorted(
        [featured, f"{IMG_HOST}/side.jpg", f"{IMG_HOST}/broken.jpg", f"{IMG_HOST}/back.jpg"]
    )
    assert [r.is_featured for r in res.relocated] == [True, False, False]
    assert res.relocated[0].file_size == len(image_host.body)


def test_product_without_images(store, image_host):
    svc = _service(store, image_host)
    res = asyncio.run(svc.sync_product_images(None, [], SHOP))
    assert res.featured_image is None
    assert res.gallery_images == [] and res.relocated == []
    assert image_host.downloads == []


def test_ensure_bucket_delegates(store, image_host):
    asyncio.run(_service(store, image_host).ensure_bucket())
    assert store.bucket_ready
