#=================================================================
# catalog_hub/main_app.py
# FastAPI application entry-point.
#=================================================================

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from catalog_hub import logging_filters
from catalog_hub.config import settings
from catalog_hub.db import dispose_db, get_engine, get_sessionmaker, init_db
from catalog_hub.errors import ShopNotFound, ValidationError
from catalog_hub.images.relocation import ImageRelocationService
from catalog_hub.routes import router as api_router
from catalog_hub.security.vault import CredentialVault
from catalog_hub.shops_api import router as shops_router
from catalog_hub.storage.object_store import MinioObjectStore, ObjectStore
from catalog_hub.taxonomy_api import router as taxonomy_router
from catalog_hub.workers.sync_queue import SyncJobQueue, build_reconciler_factory

# --- Logging setup (console, INFO level) ---
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s | %(message)s"
)
logger = logging.getLogger("uvicorn.error")
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)
logging_filters.install()


def create_app(
    *,
    engine: Optional[AsyncEngine] = None,
    vault: Optional[CredentialVault] = None,
    store: Optional[ObjectStore] = None,
    woo_transport: Optional[Any] = None,
    image_transport: Optional[Any] = None,
) -> FastAPI:
    """
    Build the app. Collaborators left as None are created from settings at
    startup; tests pass their own.
    """
    app = FastAPI(
        title="WooCommerce Catalog Hub",
        description="Mirrors WooCommerce catalogs from many shops into one database.",
    )

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------------- Include routers ----------------
    app.include_router(api_router)       # /api/shops/sync/*, /api/sync/*, /api/health
    app.include_router(shops_router)     # /api/shops
    app.include_router(taxonomy_router)  # /api/categories/merge, /api/brands/merge

    # --- Root endpoint ---
    @app.get("/")
    async def home():
        return {"status": "running", "service": "WooCommerce Catalog Hub"}

    # --- Error mapping ---
    @app.exception_handler(ShopNotFound)
    async def shop_not_found_handler(request: Request, exc: ShopNotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    # --- Global error handler (keeps full stack trace in logs) ---
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled error", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": f"Request failed: {str(exc)}"},
        )

    # ---- Lifecycle: database, vault, object store, sync worker ----
    @app.on_event("startup")
    async def _startup():
        if engine is None:
            eng, sessionmaker = get_engine(), get_sessionmaker()
        else:
            eng, sessionmaker = engine, async_sessionmaker(engine, expire_on_commit=False)
        await init_db(eng)

        # fail fast on a missing/invalid ENCRYPTION_KEY
        v = vault or CredentialVault.from_env()

        s = store or MinioObjectStore()
        images = ImageRelocationService(s, transport=image_transport)
        try:
            await images.ensure_bucket()
        except Exception as e:
            # relocation degrades to "keep existing image" until the store is back
            logger.warning("[STORE] could not ensure bucket %s: %s", s.bucket, e)

        queue = SyncJobQueue(sessionmaker, build_reconciler_factory(v, images, sessionmaker, transport=woo_transport))
        queue.start()

        app.state.sessionmaker = sessionmaker
        app.state.vault = v
        app.state.images = images
        app.state.woo_transport = woo_transport
        app.state.sync_queue = queue
        logger.info("[APP] started")

    @app.on_event("shutdown")
    async def _shutdown():
        queue: Optional[SyncJobQueue] = getattr(app.state, "sync_queue", None)
        if queue is not None:
            await queue.stop()
            app.state.sync_queue = None
        if engine is None:
            await dispose_db()
        logger.info("[APP] stopped")

    return app


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run("catalog_hub.main_app:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
