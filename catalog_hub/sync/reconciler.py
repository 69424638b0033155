#==========================================================================================
# catalog_hub/sync/reconciler.py
# Pulls one shop's catalog from WooCommerce and reconciles it into the local store.
# Stages run strictly in order: categories -> brands -> products -> variants -> complete.
# Every page is committed on its own, so a failure keeps everything committed before it.
#==========================================================================================
from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_hub.config import settings
from catalog_hub.errors import RemoteApiError
from catalog_hub.images.relocation import ImageRelocationService, ProductImages
from catalog_hub.models.catalog import Brand, Category, Product, ProductVariant
from catalog_hub.sync import repository as repo
from catalog_hub.sync.repository import UpsertResult
from catalog_hub.sync.util import maybe_await
from catalog_hub.woo.client import WooClient, WooPage
from catalog_hub.woo.models import WooProduct, brand_row, category_row, product_row, variant_row

logger = logging.getLogger("uvicorn.error")

STAGE_CATEGORIES = "categories"
STAGE_BRANDS = "brands"
STAGE_PRODUCTS = "products"
STAGE_VARIANTS = "variants"
STAGE_COMPLETE = "complete"
STAGE_FAILED = "failed"


class SyncProgress(BaseModel):
    stage: str
    current: int = 0
    total: Optional[int] = None
    message: str = ""


class EntityCounts(BaseModel):
    created: int = 0
    updated: int = 0
    unchanged: int = 0


class SkippedItem(BaseModel):
    entity: str
    woocommerce_id: Optional[Union[int, str]] = None
    reason: str


class SyncSummary(BaseModel):
    shop_id: str
    categories: EntityCounts = Field(default_factory=EntityCounts)
    brands: EntityCounts = Field(default_factory=EntityCounts)
    products: EntityCounts = Field(default_factory=EntityCounts)
    variants: EntityCounts = Field(default_factory=EntityCounts)
    skipped: List[SkippedItem] = Field(default_factory=list)
    message: str = ""


ProgressCallback = Callable[[SyncProgress], Union[None, Awaitable[None]]]


class _Tally:
    """Local ids seen per outcome; a row touched on several pages counts once."""

    def __init__(self):
        self.created: Set[str] = set()
        self.updated: Set[str] = set()
        self.unchanged: Set[str] = set()

    def add(self, res: UpsertResult) -> None:
        self.created |= res.created
        self.updated |= res.updated
        self.unchanged |= res.unchanged

    def mark_updated(self, ids: Set[str]) -> None:
        self.updated |= ids - self.created

    def counts(self) -> EntityCounts:
        updated = self.updated - self.created
        unchanged = self.unchanged - self.created - updated
        return EntityCounts(created=len(self.created), updated=len(updated), unchanged=len(unchanged))


class CatalogReconciler:
    def __init__(
        self,
        shop_id: str,
        client: WooClient,
        sessionmaker: async_sessionmaker[AsyncSession],
        images: ImageRelocationService,
        *,
        per_page: Optional[int] = None,
        progress: Optional[ProgressCallback] = None,
        overwrite_images_with_null: Optional[bool] = None,
    ):
        self.shop_id = shop_id
        self.client = client
        self.sessionmaker = sessionmaker
        self.images = images
        self.per_page = per_page or settings.WC_PER_PAGE
        self.progress = progress
        self.overwrite_images_with_null = (
            settings.SYNC_OVERWRITE_IMAGES_WITH_NULL if overwrite_images_with_null is None
            else overwrite_images_with_null
        )
        self.stage: Optional[str] = None
        self.summary = SyncSummary(shop_id=shop_id)
        self._tallies: Dict[str, _Tally] = {
            STAGE_CATEGORIES: _Tally(),
            STAGE_BRANDS: _Tally(),
            STAGE_PRODUCTS: _Tally(),
            STAGE_VARIANTS: _Tally(),
        }

    # ---------------------------
    # Progress
    # ---------------------------

    async def _emit(self, stage: str, current: int = 0, total: Optional[int] = None, message: str = "") -> None:
        self.stage = stage
        if self.progress is None:
            return
        try:
            await maybe_await(self.progress(SyncProgress(stage=stage, current=current, total=total, message=message)))
        except Exception as e:
            logger.warning("[SYNC] progress callback failed at stage=%s: %s", stage, e)

    def _skip(self, entity: str, page: WooPage) -> None:
        for r in page.rejected:
            self.summary.skipped.append(SkippedItem(entity=entity, woocommerce_id=r.get("id"), reason=r.get("error", "")))

    def _finish_counts(self) -> None:
        self.summary.categories = self._tallies[STAGE_CATEGORIES].counts()
        self.summary.brands = self._tallies[STAGE_BRANDS].counts()
        self.summary.products = self._tallies[STAGE_PRODUCTS].counts()
        self.summary.variants = self._tallies[STAGE_VARIANTS].counts()

    # ---------------------------
    # Entry point
    # ---------------------------

    async def aclose(self) -> None:
        await self.client.aclose()

    async def run(self) -> SyncSummary:
        logger.info("[SYNC] shop=%s starting catalog sync", self.shop_id)
        try:
            await self._sync_categories()
            await self._sync_brands()
            await self._sync_products()
            await self._sync_variants()
        except Exception as e:
            self._finish_counts()
            logger.error("[SYNC] shop=%s failed during %s: %s", self.shop_id, self.stage, e)
            await self._emit(STAGE_FAILED, message=str(e))
            raise

        self._finish_counts()
        s = self.summary
        s.message = (
            f"Synced {sum(s.categories.model_dump().values())} categories, "
            f"{sum(s.brands.model_dump().values())} brands, "
            f"{sum(s.products.model_dump().values())} products, "
            f"{sum(s.variants.model_dump().values())} variants"
        )
        if s.skipped:
            s.message += f"; skipped {len(s.skipped)} malformed item(s)"
        logger.info("[SYNC] shop=%s complete: %s", self.shop_id, s.message)
        await self._emit(STAGE_COMPLETE, message=s.message)
        return s

    # ---------------------------
    # Stages
    # ---------------------------

    async def _sync_categories(self) -> None:
        await self._emit(STAGE_CATEGORIES, message="Fetching categories")
        tally = self._tallies[STAGE_CATEGORIES]
        remote_parents: Dict[str, str] = {}
        done = 0
        async for page in self.client.iter_pages(self.client.list_categories, per_page=self.per_page):
            self._skip("category", page)
            # roots first within a page
            items = sorted(page.items, key=lambda c: c.parent != 0)
            for c in items:
                remote_parents[str(c.id)] = str(c.parent or 0)
            async with self.sessionmaker() as session:
                async with session.begin():
                    tally.add(await repo.upsert_rows(session, Category, [category_row(c, self.shop_id) for c in items]))
            done += len(items)
            await self._emit(STAGE_CATEGORIES, done, message=f"Categories page {page.page}: {len(items)} item(s)")

        async with self.sessionmaker() as session:
            async with session.begin():
                changed, refused = await repo.link_category_parents(session, self.shop_id, remote_parents)
        tally.mark_updated(changed)
        for wc_id in refused:
            self.summary.skipped.append(SkippedItem(entity="category_parent", woocommerce_id=wc_id,
                                                    reason="parent link would create a cycle"))
        await self._emit(STAGE_CATEGORIES, done, done, message=f"{done} categories synced")

    async def _sync_brands(self) -> None:
        await self._emit(STAGE_BRANDS, message="Fetching brands")
        tally = self._tallies[STAGE_BRANDS]
        done = 0
        pages = 0
        try:
            async for page in self.client.iter_pages(self.client.list_brands, per_page=self.per_page):
                pages += 1
                self._skip("brand", page)
                async with self.sessionmaker() as session:
                    async with session.begin():
                        tally.add(await repo.upsert_rows(session, Brand, [brand_row(b, self.shop_id) for b in page.items]))
                done += len(page.items)
                await self._emit(STAGE_BRANDS, done, message=f"Brands page {page.page}: {len(page.items)} item(s)")
        except RemoteApiError as e:
            if e.status != 404 or pages:
                raise
            logger.info("[SYNC] shop=%s has no brands endpoint; skipping brands", self.shop_id)
            await self._emit(STAGE_BRANDS, 0, 0, message="Brands endpoint not available; skipped")
            return
        await self._emit(STAGE_BRANDS, done, done, message=f"{done} brands synced")

    def _apply_images(self, row: Dict[str, Any], dto: WooProduct, imgs: ProductImages,
                      current: Optional[Product]) -> None:
        featured, gallery = dto.image_urls()
        if featured is None:
            row["featured_image"] = None
        elif imgs.featured_image is not None or self.overwrite_images_with_null:
            row["featured_image"] = imgs.featured_image
        else:
            row["featured_image"] = current.featured_image if current is not None else None

        if not gallery or imgs.gallery_images or self.overwrite_images_with_null:
            row["gallery_images"] = list(imgs.gallery_images)
        else:
            row["gallery_images"] = list(current.gallery_images or []) if current is not None else []

    async def _sync_products(self) -> None:
        await self._emit(STAGE_PRODUCTS, message="Fetching products")
        tally = self._tallies[STAGE_PRODUCTS]
        done = 0
        async for page in self.client.iter_pages(self.client.list_products, per_page=self.per_page):
            self._skip("product", page)
            dtos: List[WooProduct] = list({p.id: p for p in page.items}.values())
            relocated = await asyncio.gather(*(
                self.images.sync_product_images(*p.image_urls(), self.shop_id) for p in dtos
            ))

            async with self.sessionmaker() as session:
                async with session.begin():
                    existing = await repo.load_existing(session, Product, self.shop_id, [str(p.id) for p in dtos])
                    rows = []
                    for dto, imgs in zip(dtos, relocated):
                        row = product_row(dto, self.shop_id)
                        self._apply_images(row, dto, imgs, existing.get(str(dto.id)))
                        rows.append(row)
                    res = await repo.upsert_rows(session, Product, rows, existing=existing)
                    tally.add(res)

                    categories = await repo.local_id_map(session, Category, self.shop_id)
                    brands = await repo.local_id_map(session, Brand, self.shop_id)
                    for dto, imgs in zip(dtos, relocated):
                        pid = res.ids[str(dto.id)]
                        await repo.relink_categories(
                            session, pid, [categories[str(t.id)] for t in dto.categories if str(t.id) in categories]
                        )
                        await repo.relink_brands(
                            session, pid, [brands[str(t.id)] for t in dto.brands if str(t.id) in brands]
                        )
                        await repo.register_media(session, self.shop_id, pid, imgs.relocated)

            done += len(dtos)
            await self._emit(STAGE_PRODUCTS, done, message=f"Products page {page.page}: {len(dtos)} item(s)")
        await self._emit(STAGE_PRODUCTS, done, done, message=f"{done} products synced")

    async def _variable_products(self) -> List[tuple[str, str]]:
        async with self.sessionmaker() as session:
            res = await session.execute(
                select(Product.woocommerce_id, Product.id)
                .where(Product.shop_id == self.shop_id, Product.type == "variable")
                .order_by(Product.created_at, Product.woocommerce_id)
            )
            return [(wc, pid) for wc, pid in res.all() if wc]

    async def _sync_variants(self) -> None:
        parents = await self._variable_products()
        total = len(parents)
        await self._emit(STAGE_VARIANTS, 0, total, message=f"Fetching variants for {total} variable product(s)")
        tally = self._tallies[STAGE_VARIANTS]
        for n, (wc_id, pid) in enumerate(parents, start=1):
            fetch = functools.partial(self.client.list_variants, wc_id)
            async for page in self.client.iter_pages(fetch, per_page=self.per_page):
                self._skip("variant", page)
                srcs = [v.image.src if v.image and v.image.src else None for v in page.items]
                urls = await asyncio.gather(*(
                    self.images.relocate(s, self.shop_id) if s else _none() for s in srcs
                ))
                async with self.sessionmaker() as session:
                    async with session.begin():
                        existing = await repo.load_existing(
                            session, ProductVariant, self.shop_id, [str(v.id) for v in page.items]
                        )
                        rows = []
                        for v, src, url in zip(page.items, srcs, urls):
                            row = variant_row(v, self.shop_id, pid)
                            if src and url is None and not self.overwrite_images_with_null:
                                current = existing.get(str(v.id))
                                row["image"] = current.image if current is not None else None
                            else:
                                row["image"] = url
                            rows.append(row)
                        tally.add(await repo.upsert_rows(session, ProductVariant, rows, existing=existing))
            await self._emit(STAGE_VARIANTS, n, total, message=f"Variants synced for product {wc_id}")


async def _none() -> None:
    return None
