"""Backup storage backends."""

import asyncio
import os
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, List, Union

import aiofiles
import aiofiles.os

from ..utils.errors import NotFoundError, TransferError

CHUNK_SIZE = 1024 * 1024


@dataclass
class ObjectInfo:
    """Metadata of one stored object."""

    key: str
    size: int
    last_modified: datetime


class StorageBackend(ABC):
    """Contract for the object store that persists backups."""

    @abstractmethod
    async def list_objects(self, prefix: str = "") -> List[ObjectInfo]:
        """List objects whose key starts with prefix."""

    @abstractmethod
    def get_object(self, key: str) -> AsyncIterator[bytes]:
        """Stream an object's bytes. Raises NotFoundError for unknown keys."""

    @abstractmethod
    async def put_object(self, key: str, data: Union[bytes, str]) -> ObjectInfo:
        """Store bytes (or the contents of a local file path given as str) under key."""

    @abstractmethod
    async def head_object(self, key: str) -> ObjectInfo:
        """Return object metadata. Raises NotFoundError for unknown keys."""

    @abstractmethod
    async def delete_prefix(self, prefix: str) -> int:
        """Delete every object under prefix and return how many were removed."""

    async def read_object(self, key: str) -> bytes:
        """Read a whole object into memory."""
        chunks = []
        async for chunk in self.get_object(key):
            chunks.append(chunk)
        return b"".join(chunks)


class LocalStorageBackend(StorageBackend):
    """Stores objects as files below a root directory; keys map to relative paths."""

    def __init__(self, root: str):
        """
        Initialize local storage.

        Args:
            root: Directory that holds all objects
        """
        self.root = os.path.abspath(root)

    def _path_for(self, key: str) -> str:
        normalized = key.replace("\\", "/").lstrip("/")
        path = os.path.abspath(os.path.join(self.root, normalized))
        if path != self.root and not path.startswith(self.root + os.sep):
            raise TransferError(f"Object key escapes storage root: {key}")
        return path

    def _key_for(self, path: str) -> str:
        return os.path.relpath(path, self.root).replace(os.sep, "/")

    def _info(self, path: str) -> ObjectInfo:
        stat = os.stat(path)
        return ObjectInfo(
            key=self._key_for(path),
            size=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def _list(self, prefix: str) -> List[ObjectInfo]:
        objects = []
        if not os.path.isdir(self.root):
            return objects

        for dirpath, _, filenames in os.walk(self.root):
            for filename in filenames:
                path = os.path.join(dirpath, filename)
                key = self._key_for(path)
                if key.startswith(prefix) and not key.endswith(".partial"):
                    objects.append(self._info(path))

        objects.sort(key=lambda info: info.key)
        return objects

    async def list_objects(self, prefix: str = "") -> List[ObjectInfo]:
        try:
            return await asyncio.to_thread(self._list, prefix)
        except OSError as e:
            raise TransferError(f"Failed to list objects under '{prefix}': {e}") from e

    async def get_object(self, key: str) -> AsyncIterator[bytes]:
        path = self._path_for(key)
        if not os.path.isfile(path):
            raise NotFoundError(f"Object not found: {key}")

        try:
            async with aiofiles.open(path, "rb") as f:
                while True:
                    chunk = await f.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
        except OSError as e:
            raise TransferError(f"Failed to read object {key}: {e}") from e

    async def put_object(self, key: str, data: Union[bytes, str]) -> ObjectInfo:
        path = self._path_for(key)
        temp_path = f"{path}.partial"

        try:
            await aiofiles.os.makedirs(os.path.dirname(path), exist_ok=True)
            async with aiofiles.open(temp_path, "wb") as dst:
                if isinstance(data, bytes):
                    await dst.write(data)
                else:
                    async with aiofiles.open(data, "rb") as src:
                        while True:
                            chunk = await src.read(CHUNK_SIZE)
                            if not chunk:
                                break
                            await dst.write(chunk)
            await aiofiles.os.replace(temp_path, path)
        except OSError as e:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise TransferError(f"Failed to store object {key}: {e}") from e

        return self._info(path)

    async def head_object(self, key: str) -> ObjectInfo:
        path = self._path_for(key)
        if not os.path.isfile(path):
            raise NotFoundError(f"Object not found: {key}")
        return self._info(path)

    async def delete_prefix(self, prefix: str) -> int:
        objects = await self.list_objects(prefix)

        def _delete() -> int:
            for info in objects:
                os.remove(self._path_for(info.key))

            # Drop the directory too when the prefix names one
            directory = self._path_for(prefix.rstrip("/")) if prefix.strip("/") else None
            if directory and os.path.isdir(directory) and prefix.endswith("/"):
                shutil.rmtree(directory, ignore_errors=True)
            return len(objects)

        try:
            return await asyncio.to_thread(_delete)
        except OSError as e:
            raise TransferError(f"Failed to delete objects under '{prefix}': {e}") from e
