from __future__ import annotations

import os
from pathlib import Path
from threading import Lock
from typing import Any, Optional
from uuid import UUID

from starlette.concurrency import run_in_threadpool

from keksobooking.core.config import settings
from keksobooking.services.attachments import ByteSource
from keksobooking.services.types import StoredImage

AVATAR = "avatar"
PREVIEW = "preview"


class ImageStorageError(RuntimeError):
    """Raised when an offer image cannot be written or removed."""


class BaseImageStorage:
    """Blob store for offer images, keyed by the offer's identity."""

    backend_name: str = "base"

    async def save_avatar(self, offer_id: UUID, source: ByteSource) -> None:
        await self.save(AVATAR, offer_id, source)

    async def save_preview(self, offer_id: UUID, source: ByteSource) -> None:
        await self.save(PREVIEW, offer_id, source)

    async def get_avatar(self, offer_id: UUID) -> Optional[StoredImage]:
        return await self.open(AVATAR, offer_id)

    async def save(self, kind: str, offer_id: UUID, source: ByteSource) -> None:
        raise NotImplementedError

    async def open(self, kind: str, offer_id: UUID) -> Optional[StoredImage]:
        raise NotImplementedError

    async def delete_images(self, offer_id: UUID) -> None:
        raise NotImplementedError


class LocalImageStorage(BaseImageStorage):
    backend_name = "local"

    def __init__(self, root_dir: Path, *, chunk_size: int = 64 * 1024) -> None:
        self.root_dir = root_dir
        self.chunk_size = max(1, chunk_size)
        self.root_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, kind: str, offer_id: UUID) -> Path:
        return self.root_dir / f"{kind}s" / offer_id.hex

    async def save(self, kind: str, offer_id: UUID, source: ByteSource) -> None:
        content = await source.read()
        await run_in_threadpool(self._write, self._path(kind, offer_id), content)

    def _write(self, target: Path, content: bytes) -> None:
        temp = target.with_suffix(".tmp")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            temp.write_bytes(content)
            temp.replace(target)
        except OSError as exc:
            try:
                if temp.exists():
                    temp.unlink()
            except OSError:
                pass
            raise ImageStorageError(f"failed to persist image to {target}") from exc

    async def open(self, kind: str, offer_id: UUID) -> Optional[StoredImage]:
        return await run_in_threadpool(self._open, self._path(kind, offer_id))

    def _open(self, path: Path) -> Optional[StoredImage]:
        try:
            handle = path.open("rb")
        except FileNotFoundError:
            return None
        length = os.fstat(handle.fileno()).st_size
        chunks = iter(lambda: handle.read(self.chunk_size), b"")
        return StoredImage(chunks=chunks, length=length, close=handle.close)

    async def delete_images(self, offer_id: UUID) -> None:
        await run_in_threadpool(self._delete, offer_id)

    def _delete(self, offer_id: UUID) -> None:
        for kind in (AVATAR, PREVIEW):
            try:
                self._path(kind, offer_id).unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise ImageStorageError(f"failed to remove {kind} of offer {offer_id}") from exc


class S3ImageStorage(BaseImageStorage):
    backend_name = "s3"

    def __init__(
        self,
        *,
        bucket: str,
        prefix: str,
        timeout_seconds: float,
        region: str | None,
        endpoint_url: str | None,
    ) -> None:
        try:
            import boto3
            from botocore.config import Config as BotoConfig
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise ImageStorageError(
                "S3 storage selected but boto3 is not installed; install keksobooking[storage] or set IMAGE_STORAGE_BACKEND to local"
            ) from exc

        normalized_prefix = prefix.strip("/")
        if normalized_prefix:
            normalized_prefix = normalized_prefix + "/"
        self.bucket = bucket
        self.prefix = normalized_prefix
        timeout = max(1.0, float(timeout_seconds))
        self.client = boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            config=BotoConfig(
                connect_timeout=timeout,
                read_timeout=timeout,
                retries={"max_attempts": 3, "mode": "adaptive"},
            ),
        )

    def _key(self, kind: str, offer_id: UUID) -> str:
        return f"{self.prefix}{kind}s/{offer_id.hex}"

    async def save(self, kind: str, offer_id: UUID, source: ByteSource) -> None:
        content = await source.read()
        await run_in_threadpool(self._put, self._key(kind, offer_id), content)

    def _put(self, key: str, content: bytes) -> None:
        try:
            self.client.put_object(Bucket=self.bucket, Key=key, Body=content)
        except Exception as exc:  # pragma: no cover - depends on runtime environment
            raise ImageStorageError(f"failed to upload image to s3://{self.bucket}/{key}") from exc

    async def open(self, kind: str, offer_id: UUID) -> Optional[StoredImage]:
        return await run_in_threadpool(self._get, self._key(kind, offer_id))

    def _get(self, key: str) -> Optional[StoredImage]:  # pragma: no cover - depends on runtime environment
        try:
            response: dict[str, Any] = self.client.get_object(Bucket=self.bucket, Key=key)
        except self.client.exceptions.NoSuchKey:
            return None
        body = response["Body"]
        return StoredImage(
            chunks=body.iter_chunks(chunk_size=settings.avatar_chunk_size),
            length=int(response.get("ContentLength", 0)),
            close=body.close,
        )

    async def delete_images(self, offer_id: UUID) -> None:
        keys = [{"Key": self._key(kind, offer_id)} for kind in (AVATAR, PREVIEW)]
        await run_in_threadpool(self._delete, keys)

    def _delete(self, keys: list[dict[str, str]]) -> None:  # pragma: no cover - depends on runtime environment
        try:
            self.client.delete_objects(Bucket=self.bucket, Delete={"Objects": keys, "Quiet": True})
        except Exception as exc:
            raise ImageStorageError(f"failed to remove images from s3://{self.bucket}") from exc


_storage_lock = Lock()
_storage_instance: BaseImageStorage | None = None


def _build_storage() -> BaseImageStorage:
    backend = settings.image_storage_backend
    if backend == "local":
        return LocalImageStorage(settings.storage_dir / "images", chunk_size=settings.avatar_chunk_size)
    if backend == "s3":
        bucket = settings.image_s3_bucket
        if not bucket:
            raise ImageStorageError("image_s3_bucket is required when using the s3 storage backend")
        return S3ImageStorage(
            bucket=bucket,
            prefix=settings.image_s3_prefix or "",
            timeout_seconds=settings.image_storage_timeout_seconds,
            region=settings.image_s3_region,
            endpoint_url=settings.image_s3_endpoint_url,
        )
    raise ImageStorageError(f"unsupported image storage backend: {backend}")


def get_image_storage() -> BaseImageStorage:
    global _storage_instance
    storage = _storage_instance
    if storage is not None:
        return storage
    with _storage_lock:
        storage = _storage_instance
        if storage is not None:
            return storage
        storage = _build_storage()
        _storage_instance = storage
        return storage
