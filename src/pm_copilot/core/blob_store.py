"""Key-value blob stores backing the meeting collection.

The meeting store reads and writes its whole collection as one JSON string
under a single key. Three interchangeable backends:

- InMemoryBlobStore: process-local dict (tests, ephemeral runs).
- FileBlobStore: one file per key under a directory, written atomically
  via a temp file and os.replace.
- RedisBlobStore: redis.asyncio GET/SET on a shared connection pool.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
from pathlib import Path
from typing import Protocol

import redis.asyncio as aioredis

from src.pm_copilot.config import Settings, StoreBackend, get_settings


class BlobStore(Protocol):
    """Minimal async key-value contract."""

    async def read(self, key: str) -> str | None: ...

    async def write(self, key: str, value: str) -> None: ...


class InMemoryBlobStore:
    """Dict-backed blob store."""

    def __init__(self) -> None:
        self.blobs: dict[str, str] = {}
        self.writes = 0

    async def read(self, key: str) -> str | None:
        return self.blobs.get(key)

    async def write(self, key: str, value: str) -> None:
        self.blobs[key] = value
        self.writes += 1


class FileBlobStore:
    """Stores each key as ``<key>.json`` inside a directory.

    Args:
        directory: Target directory, created on first write.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def _path(self, key: str) -> Path:
        return self._directory / f"{key}.json"

    async def read(self, key: str) -> str | None:
        return await asyncio.to_thread(self._read_sync, key)

    async def write(self, key: str, value: str) -> None:
        await asyncio.to_thread(self._write_sync, key, value)

    def _read_sync(self, key: str) -> str | None:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def _write_sync(self, key: str, value: str) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self._directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_path, self._path(key))
        except BaseException:
            os.unlink(tmp_path)
            raise


class RedisBlobStore:
    """Redis-backed blob store. SET replaces the value atomically."""

    def __init__(self, redis_client: aioredis.Redis) -> None:
        self._redis = redis_client

    async def read(self, key: str) -> str | None:
        return await self._redis.get(key)

    async def write(self, key: str, value: str) -> None:
        await self._redis.set(key, value)

    async def close(self) -> None:
        await self._redis.aclose()


def create_blob_store(settings: Settings | None = None) -> BlobStore:
    """Build the blob store selected by STORE_BACKEND."""
    settings = settings or get_settings()
    if settings.STORE_BACKEND == StoreBackend.redis:
        return RedisBlobStore(
            aioredis.from_url(settings.REDIS_URL, decode_responses=True)
        )
    if settings.STORE_BACKEND == StoreBackend.file:
        return FileBlobStore(settings.STORE_DIR)
    return InMemoryBlobStore()
