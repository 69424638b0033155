# catalog_hub/images/relocation.py
from __future__ import annotations

import asyncio
import hashlib
import logging
import os
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import urlparse

import httpx

from catalog_hub.config import settings
from catalog_hub.errors import RelocationFailure
from catalog_hub.storage.object_store import ObjectStore
from catalog_hub.sync.util import basename, dedupe_preserve_order, slugify

logger = logging.getLogger("uvicorn.error")

VALID_EXTENSIONS = {"jpg", "jpeg", "png", "gif", "webp", "svg"}
DEFAULT_EXTENSION = "jpg"


@dataclass
class RelocatedImage:
    source_url: str
    url: str
    object_name: str
    mime_type: Optional[str] = None
    file_size: Optional[int] = None
    is_featured: bool = False


@dataclass
class ProductImages:
    featured_image: Optional[str] = None
    gallery_images: List[str] = field(default_factory=list)
    relocated: List[RelocatedImage] = field(default_factory=list)


def object_path(source_url: str, shop_id: str) -> str:
    """
    shops/{shop_id}/{sha256(url)[:16]}-{slug}.{ext}
    Same source URL and shop always give the same path.
    """
    digest = hashlib.sha256(source_url.encode("utf-8")).hexdigest()[:16]
    stem, ext = os.path.splitext(basename(source_url))
    ext = ext.lstrip(".").lower()
    if ext not in VALID_EXTENSIONS:
        ext = DEFAULT_EXTENSION
    return f"shops/{shop_id}/{digest}-{slugify(stem)}.{ext}"


class ImageRelocationService:
    def __init__(
        self,
        store: ObjectStore,
        *,
        max_bytes: Optional[int] = None,
        timeout: Optional[float] = None,
        concurrency: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.store = store
        self.max_bytes = max_bytes or settings.IMAGE_MAX_BYTES
        self.timeout = timeout or settings.IMAGE_TIMEOUT
        self.concurrency = max(1, concurrency or settings.IMAGE_CONCURRENCY)
        self._transport = transport
        self._sem: Optional[asyncio.Semaphore] = None

    async def ensure_bucket(self) -> None:
        await self.store.ensure_bucket()

    async def _download(self, url: str) -> tuple[bytes, str]:
        async with httpx.AsyncClient(
            timeout=self.timeout, follow_redirects=True, transport=self._transport
        ) as client:
            async with client.stream("GET", url) as resp:
                if not resp.is_success:
                    raise RelocationFailure(f"download returned HTTP {resp.status_code}")
                ctype = (resp.headers.get("content-type") or "").split(";")[0].strip().lower()
                if not ctype.startswith("image/"):
                    raise RelocationFailure(f"disallowed content type {ctype or '?'}")
                declared = resp.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > self.max_bytes:
                    raise RelocationFailure(f"declared size {declared} exceeds {self.max_bytes} bytes")
                buf = bytearray()
                async for chunk in resp.aiter_bytes():
                    buf.extend(chunk)
                    if len(buf) > self.max_bytes:
                        raise RelocationFailure(f"body exceeds {self.max_bytes} bytes")
        if not buf:
            raise RelocationFailure("empty body")
        return bytes(buf), ctype

    async def _relocate(self, source_url: str, shop_id: str) -> RelocatedImage:
        try:
            parsed = urlparse(source_url or "")
            path = object_path(source_url, shop_id)
        except ValueError as e:
            raise RelocationFailure(f"invalid image URL {source_url!r}: {e}") from e
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise RelocationFailure(f"invalid image URL {source_url!r}")

        try:
            present = await self.store.exists(path)
        except Exception as e:
            raise RelocationFailure(f"store lookup failed: {e}") from e
        if present:
            return RelocatedImage(source_url=source_url, url=self.store.public_url(path), object_name=path)

        try:
            data, ctype = await self._download(source_url)
        except RelocationFailure:
            raise
        except Exception as e:
            # httpx rejects some URLs urlparse accepts (InvalidURL, IDNA errors)
            raise RelocationFailure(f"download failed: {e.__class__.__name__}: {e}") from e

        try:
            url = await self.store.put_object(path, data, ctype)
        except Exception as e:
            raise RelocationFailure(f"upload failed: {e}") from e
        logger.info("[IMG] relocated %s -> %s (%d bytes)", source_url, path, len(data))
        return RelocatedImage(source_url=source_url, url=url, object_name=path,
                              mime_type=ctype, file_size=len(data))

    async def relocate_image(self, source_url: str, shop_id: str) -> Optional[RelocatedImage]:
        if self._sem is None:
            self._sem = asyncio.Semaphore(self.concurrency)
        async with self._sem:
            try:
                return await self._relocate(source_url, shop_id)
            except RelocationFailure as e:
                logger.warning("[IMG] relocation failed for %s: %s", source_url, e)
                return None

    async def relocate(self, source_url: str, shop_id: str) -> Optional[str]:
        """Central URL for source_url, or None when it could not be relocated."""
        res = await self.relocate_image(source_url, shop_id)
        return res.url if res else None

    async def sync_product_images(
        self, featured: Optional[str], gallery: List[str], shop_id: str
    ) -> ProductImages:
        """
        Relocate a product's featured image and gallery. Identical URLs are
        fetched once; the gallery keeps input order and drops failures.
        """
        gallery = dedupe_preserve_order(gallery)
        urls = dedupe_preserve_order(([featured] if featured else []) + gallery)
        results = await asyncio.gather(*(self.relocate_image(u, shop_id) for u in urls))
        by_src = {u: r for u, r in zip(urls, results) if r is not None}

        out = ProductImages()
        if featured and featured in by_src:
            out.featured_image = by_src[featured].url
        out.gallery_images = [by_src[u].url for u in gallery if u in by_src]
        for u in urls:
            r = by_src.get(u)
            if r is not None:
                r.is_featured = (u == featured)
                out.relocated.append(r)
        return out
