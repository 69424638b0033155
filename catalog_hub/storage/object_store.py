# catalog_hub/storage/object_store.py
# ===================================================
# Central object storage for relocated product images
# (MinIO / any S3-compatible endpoint).
# ===================================================
from __future__ import annotations

import asyncio
import io
import json
import logging
from typing import List, Optional

from minio import Minio
from minio.error import S3Error

from catalog_hub.config import settings

logger = logging.getLogger("uvicorn.error")

_MISSING_CODES = {"NoSuchKey", "NoSuchObject", "NotFound", "ResourceNotFound"}


def public_read_policy(bucket: str) -> str:
    return json.dumps({
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"AWS": ["*"]},
                "Action": ["s3:GetObject"],
                "Resource": [f"arn:aws:s3:::{bucket}/*"],
            }
        ],
    })


class ObjectStore:
    """put/get/delete blob service used by the image relocation service."""

    bucket: str = ""

    async def ensure_bucket(self) -> None:
        raise NotImplementedError

    async def put_object(self, path: str, data: bytes, content_type: str) -> str:
        """Store bytes at path and return the public URL."""
        raise NotImplementedError

    async def exists(self, path: str) -> bool:
        raise NotImplementedError

    async def delete_object(self, path: str) -> None:
        raise NotImplementedError

    async def list_objects(self, prefix: str = "") -> List[str]:
        raise NotImplementedError

    def public_url(self, path: str) -> str:
        raise NotImplementedError


class MinioObjectStore(ObjectStore):
    def __init__(
        self,
        *,
        endpoint: Optional[str] = None,
        port: Optional[int] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        secure: Optional[bool] = None,
        bucket: Optional[str] = None,
        public_base_url: Optional[str] = None,
        client: Optional[Minio] = None,
    ):
        host = endpoint or settings.MINIO_ENDPOINT
        port = port or settings.MINIO_PORT
        secure = settings.MINIO_USE_SSL if secure is None else secure
        self.bucket = bucket or settings.MINIO_BUCKET
        self._client = client or Minio(
            endpoint=f"{host}:{port}",
            access_key=access_key or settings.MINIO_ACCESS_KEY,
            secret_key=secret_key or settings.MINIO_SECRET_KEY,
            secure=secure,
        )
        scheme = "https" if secure else "http"
        self._public_base = (public_base_url or settings.MINIO_PUBLIC_URL or f"{scheme}://{host}:{port}").rstrip("/")

    def public_url(self, path: str) -> str:
        return f"{self._public_base}/{self.bucket}/{path.lstrip('/')}"

    async def ensure_bucket(self) -> None:
        def _ensure():
            if self._client.bucket_exists(bucket_name=self.bucket):
                return False
            self._client.make_bucket(bucket_name=self.bucket)
            self._client.set_bucket_policy(bucket_name=self.bucket, policy=public_read_policy(self.bucket))
            return True

        created = await asyncio.to_thread(_ensure)
        if created:
            logger.info("[STORE] created bucket %s with public-read policy", self.bucket)

    async def put_object(self, path: str, data: bytes, content_type: str) -> str:
        await asyncio.to_thread(
            lambda: self._client.put_object(
                bucket_name=self.bucket,
                object_name=path,
                data=io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        )
        return self.public_url(path)

    async def exists(self, path: str) -> bool:
        def _stat():
            try:
                self._client.stat_object(bucket_name=self.bucket, object_name=path)
                return True
            except S3Error as e:
                if e.code in _MISSING_CODES:
                    return False
                raise

        return await asyncio.to_thread(_stat)

    async def delete_object(self, path: str) -> None:
        await asyncio.to_thread(lambda: self._client.remove_object(bucket_name=self.bucket, object_name=path))

    async def list_objects(self, prefix: str = "") -> List[str]:
        def _list():
            return [
                o.object_name
                for o in self._client.list_objects(bucket_name=self.bucket, prefix=prefix or None, recursive=True)
                if o.object_name
            ]

        return await asyncio.to_thread(_list)
