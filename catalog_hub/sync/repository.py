# catalog_hub/sync/repository.py
# ==========================================================================
# Catalog persistence helpers for the reconciler and the taxonomy API.
# Upserts are INSERT ... ON CONFLICT keyed on (shop_id, woocommerce_id), so
# the database, not the caller, guarantees one row per remote entity.
# ==========================================================================
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Type

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_hub.errors import ValidationError
from catalog_hub.models.catalog import (
    Brand,
    Category,
    MediaFile,
    ProductBrand,
    ProductCategory,
    new_id,
    utcnow,
)

logger = logging.getLogger("uvicorn.error")

NATURAL_KEY = ("shop_id", "woocommerce_id")


def _insert_for(session: AsyncSession):
    """Dialect-specific insert() so on_conflict_* is available."""
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert
    if name == "sqlite":
        return sqlite.insert
    raise NotImplementedError(f"upserts are not supported on dialect {name!r}")


@dataclass
class UpsertResult:
    # remote id -> local id for every row in the batch
    ids: Dict[str, str] = field(default_factory=dict)
    created: Set[str] = field(default_factory=set)
    updated: Set[str] = field(default_factory=set)
    unchanged: Set[str] = field(default_factory=set)


async def load_existing(session: AsyncSession, model: Type[Any], shop_id: str,
                        remote_ids: Iterable[str]) -> Dict[str, Any]:
    remote_ids = list(remote_ids)
    if not remote_ids:
        return {}
    res = await session.execute(
        select(model).where(model.shop_id == shop_id, model.woocommerce_id.in_(remote_ids))
    )
    return {row.woocommerce_id: row for row in res.scalars()}


async def local_id_map(session: AsyncSession, model: Type[Any], shop_id: str) -> Dict[str, str]:
    """remote id -> local id for every row of model belonging to the shop."""
    res = await session.execute(select(model.woocommerce_id, model.id).where(model.shop_id == shop_id))
    return {wc: lid for wc, lid in res.all() if wc is not None}


def _differs(obj: Any, row: Dict[str, Any]) -> bool:
    return any(getattr(obj, k) != v for k, v in row.items() if k not in NATURAL_KEY)


async def upsert_rows(
    session: AsyncSession,
    model: Type[Any],
    rows: Sequence[Dict[str, Any]],
    *,
    existing: Optional[Dict[str, Any]] = None,
) -> UpsertResult:
    """
    Insert-or-update rows keyed on (shop_id, woocommerce_id). Rows whose
    mapped values already match the stored row only get last_synced_at
    touched and are reported as unchanged.
    """
    out = UpsertResult()
    if not rows:
        return out
    # last occurrence wins when a page repeats a remote id
    by_remote: Dict[str, Dict[str, Any]] = {}
    for r in rows:
        by_remote[r["woocommerce_id"]] = r
    shop_ids = {r["shop_id"] for r in by_remote.values()}
    if len(shop_ids) != 1:
        raise ValueError("upsert_rows expects rows of a single shop")
    shop_id = shop_ids.pop()

    if existing is None:
        existing = await load_existing(session, model, shop_id, by_remote.keys())

    now = utcnow()
    to_write: List[Dict[str, Any]] = []
    untouched: List[str] = []
    for wc_id, row in by_remote.items():
        current = existing.get(wc_id)
        if current is None or _differs(current, row):
            # id and created_at only apply on insert; a conflict keeps the stored ones
            to_write.append({"id": new_id(), "created_at": now, **row})
            if current is not None:
                out.updated.add(current.id)
        else:
            untouched.append(current.id)
            out.unchanged.add(current.id)

    if to_write:
        # every dict must carry the same keys for a multi-row VALUES clause
        for r in to_write:
            r["updated_at"] = now
            r["last_synced_at"] = now
        insert = _insert_for(session)
        stmt = insert(model).values(to_write)
        mutable = [k for k in to_write[0].keys() if k not in ("id", "created_at", *NATURAL_KEY)]
        stmt = stmt.on_conflict_do_update(
            index_elements=list(NATURAL_KEY),
            set_={k: stmt.excluded[k] for k in mutable},
        )
        await session.execute(stmt)

    if untouched:
        await session.execute(update(model).where(model.id.in_(untouched)).values(last_synced_at=now))

    out.ids = await _ids_for(session, model, shop_id, by_remote.keys())
    for wc_id in by_remote:
        if wc_id not in existing and wc_id in out.ids:
            out.created.add(out.ids[wc_id])
    return out


async def _ids_for(session: AsyncSession, model: Type[Any], shop_id: str,
                   remote_ids: Iterable[str]) -> Dict[str, str]:
    res = await session.execute(
        select(model.woocommerce_id, model.id).where(
            model.shop_id == shop_id, model.woocommerce_id.in_(list(remote_ids))
        )
    )
    return {wc: lid for wc, lid in res.all()}


# ---------------------------
# Category hierarchy
# ---------------------------

def _would_cycle(child: str, new_parent: str, parents: Dict[str, Optional[str]]) -> bool:
    seen = set()
    node: Optional[str] = new_parent
    while node is not None:
        if node == child:
            return True
        if node in seen:
            return True
        seen.add(node)
        node = parents.get(node)
    return False


async def link_category_parents(session: AsyncSession, shop_id: str,
                                remote_parents: Dict[str, str]) -> Tuple[Set[str], List[str]]:
    """
    Point parent_id at the local row of each category's remote parent.
    remote_parents maps remote id -> remote parent id ("0" for roots).
    Unknown parents leave parent_id null; links that would close a cycle are
    refused. Returns (local ids whose parent changed, refused remote ids).
    """
    res = await session.execute(
        select(Category.id, Category.woocommerce_id, Category.parent_id).where(Category.shop_id == shop_id)
    )
    rows = res.all()
    local = {wc: lid for lid, wc, _ in rows if wc is not None}
    parents: Dict[str, Optional[str]] = {lid: pid for lid, _, pid in rows}

    changed: Set[str] = set()
    refused: List[str] = []
    for wc_id, remote_parent in remote_parents.items():
        child = local.get(wc_id)
        if child is None:
            continue
        target = local.get(remote_parent) if remote_parent and remote_parent != "0" else None
        if target is not None and _would_cycle(child, target, parents):
            logger.warning("[SYNC] category %s: parent %s would create a cycle; left unlinked", wc_id, remote_parent)
            refused.append(wc_id)
            target = None
        if parents.get(child) == target:
            continue
        parents[child] = target
        await session.execute(update(Category).where(Category.id == child).values(parent_id=target))
        changed.add(child)
    return changed, refused


# ---------------------------
# Product associations + media
# ---------------------------

async def relink_terms(session: AsyncSession, assoc: Type[Any], term_col: str,
                       product_id: str, term_ids: Iterable[str]) -> None:
    """Make the product's associations exactly term_ids."""
    wanted = list(dict.fromkeys(term_ids))
    col = getattr(assoc, term_col)
    if wanted:
        insert = _insert_for(session)
        stmt = insert(assoc).values([{"product_id": product_id, term_col: t} for t in wanted])
        await session.execute(stmt.on_conflict_do_nothing(index_elements=["product_id", term_col]))
    stale = delete(assoc).where(assoc.product_id == product_id)
    if wanted:
        stale = stale.where(col.not_in(wanted))
    await session.execute(stale)


async def relink_categories(session: AsyncSession, product_id: str, category_ids: Iterable[str]) -> None:
    await relink_terms(session, ProductCategory, "category_id", product_id, category_ids)


async def relink_brands(session: AsyncSession, product_id: str, brand_ids: Iterable[str]) -> None:
    await relink_terms(session, ProductBrand, "brand_id", product_id, brand_ids)


async def register_media(session: AsyncSession, shop_id: str, product_id: Optional[str],
                         images: Iterable[Any]) -> int:
    """One media_files row per relocated object; existing object names are left alone."""
    rows = [
        {
            "id": new_id(),
            "object_name": img.object_name,
            "original_url": img.source_url,
            "url": img.url,
            "mime_type": img.mime_type,
            "file_size": img.file_size,
            "shop_id": shop_id,
            "product_id": product_id,
            "is_featured": img.is_featured,
            "created_at": utcnow(),
        }
        for img in images
    ]
    if not rows:
        return 0
    insert = _insert_for(session)
    stmt = insert(MediaFile).values(rows).on_conflict_do_nothing(index_elements=["object_name"])
    await session.execute(stmt)
    return len(rows)


# ---------------------------
# Taxonomy merges
# ---------------------------

async def _reparent_onto(session: AsyncSession, target_id: str, sources: Sequence[str]) -> None:
    """
    Children of the merged categories move under target. When target sits
    below one of the sources it is first lifted above the topmost of them.
    """
    chain: List[Optional[str]] = []
    node = await session.get(Category, target_id)
    seen = {target_id}
    while node is not None and node.parent_id and node.parent_id not in seen:
        seen.add(node.parent_id)
        chain.append(node.parent_id)
        node = await session.get(Category, node.parent_id)
    hits = [i for i, pid in enumerate(chain) if pid in sources]
    if hits:
        rest = chain[hits[-1] + 1:]
        await session.execute(
            update(Category).where(Category.id == target_id).values(parent_id=rest[0] if rest else None)
        )
    await session.execute(
        update(Category)
        .where(Category.parent_id.in_(sources), Category.id != target_id)
        .values(parent_id=target_id)
    )


async def _merge_terms(session: AsyncSession, model: Type[Any], assoc: Type[Any], term_col: str,
                       target_id: str, source_ids: Sequence[str]) -> int:
    sources = [s for s in dict.fromkeys(source_ids) if s]
    if not sources or not target_id:
        raise ValidationError("sourceIds[] and targetId are required")
    if target_id in sources:
        raise ValidationError("targetId must not be one of sourceIds")
    if await session.get(model, target_id) is None:
        raise ValidationError(f"{model.__tablename__} target not found: {target_id}")

    col = getattr(assoc, term_col)
    res = await session.execute(select(assoc.product_id).where(col.in_(sources)).distinct())
    product_ids = [pid for (pid,) in res.all()]
    if product_ids:
        insert = _insert_for(session)
        stmt = insert(assoc).values([{"product_id": pid, term_col: target_id} for pid in product_ids])
        await session.execute(stmt.on_conflict_do_nothing(index_elements=["product_id", term_col]))
    await session.execute(delete(assoc).where(col.in_(sources)))
    if model is Category:
        await _reparent_onto(session, target_id, sources)
    res =await session.execute(delete(model).where(model.id.in_(sources)))
    return res.rowcount or 0


async def merge_categories(session: AsyncSession, target_id: str, source_ids: Sequence[str]) -> int:
    """Move product links and child categories onto target, then delete sources."""
    return await _merge_terms(session, Category, ProductCategory, "category_id", target_id, source_ids)


async def merge_brands(session: AsyncSession, target_id: str, source_ids: Sequence[str]) -> int:
    return await _merge_terms(session, Brand, ProductBrand, "brand_id", target_id, source_ids)
