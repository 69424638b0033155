# catalog_hub/shops_api.py
# Shop registry: register WooCommerce shops, rotate credentials, test connections.
from __future__ import annotations

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError as DbIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_hub.errors import ShopNotFound, VaultError
from catalog_hub.models.catalog import Shop, utcnow
from catalog_hub.routes import get_session, verify_admin
from catalog_hub.security.vault import CredentialVault
from catalog_hub.woo.client import WooClient

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api/shops", tags=["Shops"], dependencies=[Depends(verify_admin)])


def _normalize_url(v: str) -> str:
    v = (v or "").strip().rstrip("/")
    p = urlparse(v)
    if p.scheme not in ("http", "https") or not p.netloc:
        raise ValueError("url must be an absolute http(s) URL")
    return v


class ShopCreate(BaseModel):
    name: str = Field(..., min_length=1)
    url: str
    consumer_key: str = Field(..., min_length=1, alias="consumerKey")
    consumer_secret: str = Field(..., min_length=1, alias="consumerSecret")
    status: str = "active"
    class Config:
        populate_by_name = True

    @field_validator("url")
    @classmethod
    def _url(cls, v):
        return _normalize_url(v)

    @field_validator("status")
    @classmethod
    def _status(cls, v):
        if v not in ("active", "inactive", "error"):
            raise ValueError("status must be active, inactive or error")
        return v


class ShopCredentials(BaseModel):
    consumer_key: str = Field(..., min_length=1, alias="consumerKey")
    consumer_secret: str = Field(..., min_length=1, alias="consumerSecret")
    class Config:
        populate_by_name = True


def shop_out(shop: Shop) -> Dict[str, Any]:
    """Public view of a shop. Credentials are never returned."""
    return {
        "id": shop.id,
        "name": shop.name,
        "url": shop.url,
        "status": shop.status,
        "last_connection_ok": shop.last_connection_ok,
        "last_connection_check_at": shop.last_connection_check_at.isoformat() if shop.last_connection_check_at else None,
        "created_at": shop.created_at.isoformat() if shop.created_at else None,
        "updated_at": shop.updated_at.isoformat() if shop.updated_at else None,
    }


def get_vault(request: Request) -> CredentialVault:
    return request.app.state.vault


async def _load(session: AsyncSession, shop_id: str) -> Shop:
    shop = await session.get(Shop, shop_id)
    if shop is None:
        raise ShopNotFound(shop_id)
    return shop


@router.post("")
async def create_shop(
    body: ShopCreate,
    session: AsyncSession = Depends(get_session),
    vault: CredentialVault = Depends(get_vault),
):
    shop = Shop(
        name=body.name.strip(),
        url=body.url,
        consumer_key_enc=vault.encrypt(body.consumer_key),
        consumer_secret_enc=vault.encrypt(body.consumer_secret),
        status=body.status,
    )
    session.add(shop)
    try:
        await session.commit()
    except DbIntegrityError:
        await session.rollback()
        raise HTTPException(status_code=409, detail=f"A shop with url {body.url} already exists")
    logger.info("[SHOPS] registered shop %s (%s)", shop.id, shop.url)
    return JSONResponse(status_code=201, content=shop_out(shop))


@router.get("")
async def list_shops(session: AsyncSession = Depends(get_session)):
    res = await session.execute(select(Shop).order_by(Shop.created_at))
    return {"shops": [shop_out(s) for s in res.scalars()]}


@router.get("/{shop_id}")
async def get_shop(shop_id: str, session: AsyncSession = Depends(get_session)):
    return shop_out(await _load(session, shop_id))


@router.put("/{shop_id}/credentials")
async def update_credentials(
    shop_id: str,
    body: ShopCredentials,
    session: AsyncSession = Depends(get_session),
    vault: CredentialVault = Depends(get_vault),
):
    shop = await _load(session, shop_id)
    shop.consumer_key_enc = vault.encrypt(body.consumer_key)
    shop.consumer_secret_enc = vault.encrypt(body.consumer_secret)
    # the stored connection result no longer applies to the new keys
    shop.last_connection_ok = None
    shop.last_connection_check_at = None
    await session.commit()
    logger.info("[SHOPS] credentials rotated for shop %s", shop.id)
    return shop_out(shop)


@router.delete("/{shop_id}")
async def delete_shop(shop_id: str, session: AsyncSession = Depends(get_session)):
    shop = await _load(session, shop_id)
    await session.delete(shop)
    await session.commit()
    logger.info("[SHOPS] deleted shop %s with its catalog", shop_id)
    return {"deleted": True, "id": shop_id}


@router.post("/{shop_id}/test")
async def test_shop_connection(
    shop_id: str,
    request: Request,
    session: AsyncSession = Depends(get_session),
    vault: CredentialVault = Depends(get_vault),
):
    """Probe the shop's REST API and persist the outcome on the shop row."""
    shop = await _load(session, shop_id)
    try:
        key = vault.decrypt(shop.consumer_key_enc)
        secret = vault.decrypt(shop.consumer_secret_enc)
    except VaultError as e:
        raise HTTPException(status_code=400, detail=f"Stored credentials could not be decrypted: {e}")

    transport: Optional[Any] = getattr(request.app.state, "woo_transport", None)
    async with WooClient(shop.url, key, secret, transport=transport) as client:
        result = await client.test_connection()

    ok = result.reachable and result.authenticated
    shop.last_connection_ok = ok
    shop.last_connection_check_at = utcnow()
    shop.status = "active" if ok else "error"
    await session.commit()
    logger.info("[SHOPS] connection test for %s: reachable=%s authenticated=%s",
                shop.id, result.reachable, result.authenticated)
    return {"ok": ok, "shop": shop_out(shop), **result.model_dump(mode="json")}
