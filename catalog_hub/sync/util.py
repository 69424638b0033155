# catalog_hub/sync/util.py
from __future__ import annotations

import inspect
import os
import re
import unicodedata
from urllib.parse import urlparse


async def maybe_await(x):
    if inspect.isawaitable(x):
        return await x
    return x


def basename(url_or_path: str) -> str:
    if url_or_path.startswith(("http://", "https://")):
        return os.path.basename(urlparse(url_or_path).path) or "image.jpg"
    return os.path.basename(url_or_path)


def slugify(text: str | None, max_len: int = 60) -> str:
    s = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii")
    s = re.sub(r"[^a-zA-Z0-9]+", "-", s).strip("-").lower()
    return s[:max_len].rstrip("-") or "image"


def dedupe_preserve_order(items):
    seen = set()
    out = []
    for x in items or []:
        if not x or x in seen:
            continue
        seen.add(x)
        out.append(x)
    return out
