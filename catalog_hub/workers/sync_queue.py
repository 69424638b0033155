# ---------------------------
# catalog_hub/workers/sync_queue.py
# ---------------------------
from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_hub.errors import ShopNotFound
from catalog_hub.images.relocation import ImageRelocationService
from catalog_hub.models.catalog import Shop
from catalog_hub.security.vault import CredentialVault
from catalog_hub.sync.reconciler import CatalogReconciler, SyncProgress
from catalog_hub.sync.util import maybe_await
from catalog_hub.woo.client import WooClient

logger = logging.getLogger("uvicorn.error")

JOB_QUEUED = "queued"
JOB_RUNNING = "running"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncJob(BaseModel):
    id: str
    shop_id: str
    shop_name: Optional[str] = None
    status: str = JOB_QUEUED
    enqueued_at: datetime = Field(default_factory=_now)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    message: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    progress: List[SyncProgress] = Field(default_factory=list)
    logs: List[str] = Field(default_factory=list)


ReconcilerFactory = Callable[
    [Shop, Callable[[SyncProgress], Any]],
    Union[CatalogReconciler, Awaitable[CatalogReconciler]],
]


def build_reconciler_factory(
    vault: CredentialVault,
    images: ImageRelocationService,
    sessionmaker: async_sessionmaker[AsyncSession],
    *,
    per_page: Optional[int] = None,
    overwrite_images_with_null: Optional[bool] = None,
    transport=None,
) -> ReconcilerFactory:
    """Decrypt the shop's credentials and wire a client + reconciler for it."""

    def factory(shop: Shop, progress: Callable[[SyncProgress], Any]) -> CatalogReconciler:
        client = WooClient(
            shop.url,
            vault.decrypt(shop.consumer_key_enc),
            vault.decrypt(shop.consumer_secret_enc),
            transport=transport,
        )
        return CatalogReconciler(
            shop.id,
            client,
            sessionmaker,
            images,
            per_page=per_page,
            progress=progress,
            overwrite_images_with_null=overwrite_images_with_null,
        )

    return factory


class SyncJobQueue:
    """
    FIFO of sync jobs drained by a single worker task, so at most one
    reconciliation runs at a time in this process. Jobs live in memory
    for the lifetime of the queue.
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        reconciler_factory: ReconcilerFactory,
        *,
        max_logs: int = 500,
    ):
        self.sessionmaker = sessionmaker
        self.reconciler_factory = reconciler_factory
        self.max_logs = max_logs
        self._jobs: Dict[str, SyncJob] = {}
        self._pending: "asyncio.Queue[str]" = asyncio.Queue()
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._stopped = False
        self.current_job_id: Optional[str] = None

    # ---------------------------
    # Lifecycle
    # ---------------------------

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError("sync queue has been stopped")
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._worker_loop(), name="sync-queue-worker")

    async def stop(self) -> None:
        """Let the running job finish, then stop the worker. Pending jobs stay queued."""
        self._stopped = True
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def wait_idle(self) -> None:
        await self._pending.join()

    # ---------------------------
    # Jobs
    # ---------------------------

    def enqueue(self, shop_id: str, *, shop_name: Optional[str] = None) -> SyncJob:
        if self._stopped:
            raise RuntimeError("sync queue has been stopped")
        job = SyncJob(id=str(uuid.uuid4()), shop_id=shop_id, shop_name=shop_name)
        self._jobs[job.id] = job
        self._pending.put_nowait(job.id)
        self._log(job, f"Queued sync for shop {shop_name or shop_id}")
        logger.info("[QUEUE] job %s queued for shop=%s (pending=%d)", job.id, shop_id, self._pending.qsize())
        return job

    def get(self, job_id: str) -> Optional[SyncJob]:
        return self._jobs.get(job_id)

    def list(self) -> List[SyncJob]:
        return sorted(self._jobs.values(), key=lambda j: j.enqueued_at)

    def _log(self, job: SyncJob, line: str) -> None:
        job.logs.append(f"{_now().isoformat(timespec='seconds')} {line}")
        if len(job.logs) > self.max_logs:
            del job.logs[: len(job.logs) - self.max_logs]

    # ---------------------------
    # Worker
    # ---------------------------

    async def _worker_loop(self) -> None:
        logger.info("[QUEUE] worker started")
        while not self._stop_event.is_set():
            try:
                job_id = await asyncio.wait_for(self._pending.get(), timeout=0.5)
            except asyncio.TimeoutError:
                continue
            try:
                job = self._jobs.get(job_id)
                if job is not None:
                    self.current_job_id = job_id
                    await self._run_job(job)
            finally:
                self.current_job_id = None
                self._pending.task_done()
        logger.info("[QUEUE] worker stopped")

    async def _run_job(self, job: SyncJob) -> None:
        job.status = JOB_RUNNING
        job.started_at = _now()
        self._log(job, "Sync started")

        def on_progress(p: SyncProgress) -> None:
            job.progress.append(p)
            self._log(job, f"[{p.stage}] {p.message}" if p.message else f"[{p.stage}] {p.current}/{p.total or '?'}")

        reconciler = None
        try:
            async with self.sessionmaker() as session:
                shop = await session.get(Shop, job.shop_id)
            if shop is None:
                raise ShopNotFound(job.shop_id)
            job.shop_name = shop.name

            reconciler = await maybe_await(self.reconciler_factory(shop, on_progress))
            summary = await reconciler.run()
            job.details = summary.model_dump(mode="json")
            job.message = summary.message
            job.status = JOB_COMPLETED
            self._log(job, f"Completed: {summary.message}")
            logger.info("[QUEUE] job %s completed: %s", job.id, summary.message)
        except Exception as e:
            job.status = JOB_FAILED
            job.error = str(e)
            job.message = f"Sync failed: {e}"
            self._log(job, f"Failed: {e}")
            logger.exception("[QUEUE] job %s for shop=%s failed", job.id, job.shop_id)
        finally:
            job.finished_at = _now()
            if reconciler is not None:
                await reconciler.aclose()
