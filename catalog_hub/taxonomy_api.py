# catalog_hub/taxonomy_api.py
from __future__ import annotations

import logging
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_hub.routes import get_session, verify_admin
from catalog_hub.sync import repository as repo

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["Taxonomy"], dependencies=[Depends(verify_admin)])


class MergeRequest(BaseModel):
    source_ids: List[str] = Field(..., min_length=1, alias="sourceIds")
    target_id: str = Field(..., min_length=1, alias="targetId")
    class Config:
        populate_by_name = True


@router.post("/categories/merge")
async def merge_categories(body: MergeRequest, session: AsyncSession = Depends(get_session)):
    """Move product links (and child categories) from sources onto target, then delete sources."""
    async with session.begin():
        removed = await repo.merge_categories(session, body.target_id, body.source_ids)
    logger.info("[TAXONOMY] merged %d categor(ies) into %s", removed, body.target_id)
    return {"success": True, "target_id": body.target_id, "removed": removed}


@router.post("/brands/merge")
async def merge_brands(body: MergeRequest, session: AsyncSession = Depends(get_session)):
    async with session.begin():
        removed = await repo.merge_brands(session, body.target_id, body.source_ids)
    logger.info("[TAXONOMY] merged %d brand(s) into %s", removed, body.target_id)
    return {"success": True, "target_id": body.target_id, "removed": removed}
