#==========================================================================================
# catalog_hub/woo/client.py
# WooCommerce REST v3 client (one instance per shop).
# Paginated catalog reads, bounded retry with exponential backoff, connection test.
#==========================================================================================
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Type

import httpx
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from catalog_hub.config import settings
from catalog_hub.errors import RemoteApiError
from catalog_hub.logging_filters import trim_body
from catalog_hub.woo.models import WooBrand, WooCategory, WooProduct, WooVariation

logger = logging.getLogger("uvicorn.error")

USER_AGENT = "CatalogHub/1.0"


class ConnectionDiagnostics(BaseModel):
    wp_ok: bool = False
    wc_ok: bool = False
    products_ok: Optional[bool] = None
    http_status: Optional[int] = None
    elapsed_ms: int = 0
    error: Optional[str] = None


class ConnectionTestResult(BaseModel):
    reachable: bool = False
    authenticated: bool = False
    diagnostics: ConnectionDiagnostics = Field(default_factory=ConnectionDiagnostics)


class WooPage(BaseModel):
    """One page of a list endpoint. raw_count drives pagination, not len(items)."""
    page: int
    per_page: int
    raw_count: int
    items: List[Any] = Field(default_factory=list)
    rejected: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def is_last(self) -> bool:
        return self.raw_count == 0 or self.raw_count < self.per_page


PageFetcher = Callable[..., Awaitable[WooPage]]


class WooClient:
    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        *,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_base: float = 0.5,
        backoff_cap: float = 8.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_root = f"{self.base_url}/wp-json/wc/v3"
        self.max_attempts = max(1, max_attempts or settings.WC_MAX_ATTEMPTS)
        self.backoff_base = backoff_base
        self.backoff_cap = backoff_cap
        self._key = consumer_key
        self._secret = consumer_secret
        self._client = httpx.AsyncClient(
            timeout=timeout or settings.WC_TIMEOUT,
            transport=transport,
            follow_redirects=True,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        )

    async def __aenter__(self) -> "WooClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ---------------------------
    # Transport + retry
    # ---------------------------

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_cap, self.backoff_base * (2 ** (attempt - 1)))

    def _auth_kwargs(self, params: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        return {"params": dict(params or {}), "auth": (self._key, self._secret)}

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        authenticated: bool = True,
        raise_for_status: bool = True,
    ) -> httpx.Response:
        """
        Network errors and 5xx are retried with exponential backoff; 4xx is
        final. Raises RemoteApiError when retries run out (or on 4xx when
        raise_for_status is set).
        """
        kwargs = self._auth_kwargs(params) if authenticated else {"params": params}
        path = url[len(self.base_url):] if url.startswith(self.base_url) else url
        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = await self._client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                if attempt >= self.max_attempts:
                    raise RemoteApiError(f"Network error on {method} {path}: {e.__class__.__name__}: {e}") from e
                delay = self._backoff(attempt)
                logger.warning("[WOO][RETRY] %s %s failed (attempt %s/%s): %s; retrying in %.1fs",
                               method, path, attempt, self.max_attempts, e, delay)
                await asyncio.sleep(delay)
                continue

            if resp.status_code >= 500:
                if attempt >= self.max_attempts:
                    if not raise_for_status:
                        return resp
                    raise RemoteApiError(f"{method} {path} failed after {attempt} attempts",
                                         status=resp.status_code, body=trim_body(resp.text))
                delay = self._backoff(attempt)
                logger.warning("[WOO][RETRY] %s %s returned %s (attempt %s/%s); retrying in %.1fs",
                               method, path, resp.status_code, attempt, self.max_attempts, delay)
                await asyncio.sleep(delay)
                continue

            if resp.status_code >= 400 and raise_for_status:
                raise RemoteApiError(f"{method} {path} rejected",
                                     status=resp.status_code, body=trim_body(resp.text))
            return resp

        # unreachable: the loop either returns or raises
        raise RemoteApiError(f"{method} {path} failed")

    async def _get_list(self, path: str, params: Dict[str, Any]) -> List[Any]:
        resp = await self._request_with_retry("GET", f"{self.api_root}{path}", params=params)
        try:
            data = resp.json()
        except json.JSONDecodeError:
            raise RemoteApiError(f"GET {path} returned non-JSON body",
                                 status=resp.status_code, body=trim_body(resp.text))
        if not isinstance(data, list):
            raise RemoteApiError(f"GET {path} returned {type(data).__name__}, expected a JSON array",
                                 status=resp.status_code, body=trim_body(resp.text))
        return data

    async def _page(self, path: str, model: Type[BaseModel], page: int, per_page: int,
                    extra: Optional[Dict[str, Any]] = None) -> WooPage:
        if page < 1 or per_page < 1:
            raise ValueError("page and per_page are 1-based positive integers")
        params: Dict[str, Any] = {"page": page, "per_page": per_page}
        params.update(extra or {})
        raw = await self._get_list(path, params)
        items, rejected = [], []
        for obj in raw:
            try:
                items.append(model.model_validate(obj))
            except PydanticValidationError as e:
                rid = obj.get("id") if isinstance(obj, dict) else None
                rejected.append({"id": rid, "error": f"{model.__name__}: {e.error_count()} invalid field(s): "
                                 + ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())})
        if rejected:
            logger.warning("[WOO] %s page %s: %d item(s) rejected", path, page, len(rejected))
        return WooPage(page=page, per_page=per_page, raw_count=len(raw), items=items, rejected=rejected)

    # ---------------------------
    # Catalog endpoints
    # ---------------------------

    async def list_categories(self, page: int = 1, per_page: int = 100) -> WooPage:
        return await self._page("/products/categories", WooCategory, page, per_page, {"hide_empty": "false"})

    async def list_brands(self, page: int = 1, per_page: int = 100) -> WooPage:
        return await self._page("/products/brands", WooBrand, page, per_page, {"hide_empty": "false"})

    async def list_products(self, page: int = 1, per_page: int = 100) -> WooPage:
        return await self._page("/products", WooProduct, page, per_page)

    async def list_variants(self, product_remote_id: int | str, page: int = 1, per_page: int = 100) -> WooPage:
        return await self._page(f"/products/{product_remote_id}/variations", WooVariation, page, per_page)

    async def iter_pages(self, fetch: PageFetcher, *, per_page: int = 100) -> AsyncIterator[WooPage]:
        """
        Yield pages in order until one comes back empty or short.
        Pages are fetched strictly one after another.
        """
        page = 1
        while True:
            batch = await fetch(page=page, per_page=per_page)
            if batch.raw_count == 0:
                return
            yield batch
            if batch.is_last:
                return
            page += 1

    async def fetch_all(self, fetch: PageFetcher, *, per_page: int = 100) -> List[Any]:
        out: List[Any] = []
        async for batch in self.iter_pages(fetch, per_page=per_page):
            out.extend(batch.items)
        return out

    # ---------------------------
    # Connection test
    # ---------------------------

    async def test_connection(self) -> ConnectionTestResult:
        """
        Unauthenticated WP REST probe, then authenticated WC probe, then an
        optional products probe. Never raises.
        """
        started = time.monotonic()
        result = ConnectionTestResult()
        diag = result.diagnostics
        logger.info("[WOO] testing connection to %s", httpx.URL(self.base_url).host if self.base_url else "?")
        try:
            wp = await self._request_with_retry("GET", f"{self.base_url}/wp-json/",
                                                authenticated=False, raise_for_status=False)
            diag.http_status = wp.status_code
            diag.wp_ok = result.reachable = wp.is_success
            if not wp.is_success:
                diag.error = f"WordPress REST root returned HTTP {wp.status_code}"
                return result

            wc = await self._request_with_retry("GET", self.api_root, raise_for_status=False)
            diag.http_status = wc.status_code
            diag.wc_ok = result.authenticated = wc.is_success
            if not wc.is_success:
                diag.error = ("Authentication failed" if wc.status_code in (401, 403)
                              else f"WooCommerce API returned HTTP {wc.status_code}")
                return result

            try:
                await self._request_with_retry("GET", f"{self.api_root}/products",
                                               params={"per_page": 1, "_fields": "id"})
                diag.products_ok = True
            except RemoteApiError as e:
                logger.warning("[WOO] products probe failed: %s", e)
                diag.products_ok = False
        except (RemoteApiError, httpx.HTTPError, httpx.InvalidURL) as e:
            diag.error = str(e)
        finally:
            diag.elapsed_ms = int((time.monotonic() - started) * 1000)
        return result
