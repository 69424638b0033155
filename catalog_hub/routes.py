#=======================================================================================
# catalog_hub/routes.py
# Sync API: enqueue background catalog syncs and poll their jobs.
#
# IMPORTANT: In main_app.py, include with NO extra prefix to avoid /api/api duplication:
#   from catalog_hub.routes import router as api_router
#   app.include_router(api_router)   # <-- no prefix here
#=======================================================================================

import json
import logging
import secrets
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_hub.config import settings
from catalog_hub.errors import ShopNotFound, ValidationError
from catalog_hub.models.catalog import Shop
from catalog_hub.workers.sync_queue import SyncJobQueue

logger = logging.getLogger("uvicorn.error")

router = APIRouter(prefix="/api", tags=["Sync API"])

# ---------------------------
# HTTP Basic (admin)
# ---------------------------
security = HTTPBasic()


def verify_admin(credentials: HTTPBasicCredentials = Depends(security)):
    ok_user = secrets.compare_digest(credentials.username or "", settings.ADMIN_USER or "")
    ok_pass = secrets.compare_digest(credentials.password or "", settings.ADMIN_PASS or "")
    if not (ok_user and ok_pass):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Basic"},
        )


# ---------------------------
# Shared dependencies
# ---------------------------

def get_queue(request: Request) -> SyncJobQueue:
    queue = getattr(request.app.state, "sync_queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="sync queue not running")
    return queue


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    async with request.app.state.sessionmaker() as session:
        yield session


async def read_json_body(req: Request) -> Dict[str, Any]:
    """Empty body -> {}; anything but a JSON object -> ValidationError."""
    raw = await req.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"invalid JSON body: {e.msg}")
    if not isinstance(payload, dict):
        raise ValidationError("request body must be a JSON object")
    return payload


# ---------------------------
# Background sync
# ---------------------------

@router.post("/shops/sync/background", dependencies=[Depends(verify_admin)])
async def api_sync_background(
    request: Request,
    queue: SyncJobQueue = Depends(get_queue),
    session: AsyncSession = Depends(get_session),
):
    """
    Queue a catalog sync.

    Body: { "shopId"?: str }. Without shopId one job is queued per registered
    shop. Returns 202 { accepted, jobs }; poll GET /api/sync/status/{job_id}.
    """
    payload = await read_json_body(request)
    shop_id: Optional[Any] = payload.get("shopId")
    if shop_id is not None and not isinstance(shop_id, str):
        raise ValidationError("shopId must be a string")

    if shop_id:
        shop = await session.get(Shop, shop_id)
        if shop is None:
            raise ShopNotFound(shop_id)
        shops = [shop]
    else:
        res = await session.execute(select(Shop).order_by(Shop.created_at))
        shops = list(res.scalars())

    jobs = [queue.enqueue(s.id, shop_name=s.name) for s in shops]
    logger.info("[JOB][REGISTER] %d sync job(s) queued", len(jobs))
    return JSONResponse(
        status_code=202,
        content={"accepted": True, "jobs": [j.model_dump(mode="json") for j in jobs]},
    )


@router.get("/shops/sync/background", dependencies=[Depends(verify_admin)])
async def api_sync_background_status(
    jobId: Optional[str] = Query(default=None),
    queue: SyncJobQueue = Depends(get_queue),
):
    if jobId:
        job = queue.get(jobId)
        if job is None:
            raise HTTPException(status_code=404, detail="job not found")
        return JSONResponse(content=job.model_dump(mode="json"))
    return JSONResponse(content={"jobs": [j.model_dump(mode="json") for j in queue.list()]})


@router.get("/sync/jobs", dependencies=[Depends(verify_admin)])
async def api_sync_jobs(queue: SyncJobQueue = Depends(get_queue)):
    """All jobs, newest first."""
    jobs = [j.model_dump(mode="json") for j in reversed(queue.list())]
    return JSONResponse(content={"jobs": jobs})


@router.get("/sync/status/{job_id}", dependencies=[Depends(verify_admin)])
async def api_sync_status(job_id: str, queue: SyncJobQueue = Depends(get_queue)):
    job = queue.get(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="job not found")
    return JSONResponse(content=job.model_dump(mode="json"))


# ---------------------------
# Health
# ---------------------------

@router.get("/health")
async def api_health(request: Request):
    result: Dict[str, Any] = {"ok": True, "db": {}, "queue": {}}
    try:
        async with request.app.state.sessionmaker() as session:
            await session.execute(text("SELECT 1"))
        result["db"] = {"ok": True}
    except Exception as e:
        logger.warning("[HEALTH] database check failed: %s", e)
        result["db"] = {"ok": False, "error": str(e)}
        result["ok"] = False

    queue: Optional[SyncJobQueue] = getattr(request.app.state, "sync_queue", None)
    if queue is None:
        result["queue"] = {"ok": False}
        result["ok"] = False
    else:
        result["queue"] = {
            "ok": True,
            "current_job": queue.current_job_id,
            "jobs": len(queue.list()),
        }
    return JSONResponse(content=result, status_code=200 if result["ok"] else 503)
