"""Archive creation and extraction for backups."""

import asyncio
import os
import tarfile
from abc import ABC, abstractmethod

from ..utils.errors import ExtractionError

ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar")


def is_archive_key(key: str) -> bool:
    return key.endswith(ARCHIVE_SUFFIXES)


def strip_archive_suffix(name: str) -> str:
    for suffix in ARCHIVE_SUFFIXES:
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


class ArchiveBackend(ABC):
    """Contract for the compress/extract collaborator."""

    @abstractmethod
    async def compress(self, source_dir: str, dest_archive: str, level: int = 6) -> str:
        """Pack source_dir into dest_archive and return the archive path."""

    @abstractmethod
    async def extract(self, archive_path: str, dest_dir: str) -> None:
        """Unpack archive_path into dest_dir."""


class TarArchiver(ArchiveBackend):
    """tar/gzip archives, run in a worker thread."""

    def _compress(self, source_dir: str, dest_archive: str, level: int) -> str:
        os.makedirs(os.path.dirname(os.path.abspath(dest_archive)), exist_ok=True)

        if level > 0:
            with tarfile.open(dest_archive, "w:gz", compresslevel=level) as tar:
                tar.add(source_dir, arcname=".")
        else:
            with tarfile.open(dest_archive, "w") as tar:
                tar.add(source_dir, arcname=".")
        return dest_archive

    def _extract(self, archive_path: str, dest_dir: str) -> None:
        os.makedirs(dest_dir, exist_ok=True)
        root = os.path.abspath(dest_dir)

        with tarfile.open(archive_path, "r:*") as tar:
            members = tar.getmembers()
            for member in members:
                target = os.path.abspath(os.path.join(root, member.name))
                if target != root and not target.startswith(root + os.sep):
                    raise ExtractionError(f"Archive member escapes destination: {member.name}")
                if member.issym() or member.islnk():
                    raise ExtractionError(f"Archive contains a link, refusing to extract: {member.name}")
            if hasattr(tarfile, "data_filter"):
                tar.extractall(root, members=members, filter="data")
            else:
                tar.extractall(root, members=members)

    async def compress(self, source_dir: str, dest_archive: str, level: int = 6) -> str:
        if not os.path.isdir(source_dir):
            raise ExtractionError(f"Cannot archive missing directory: {source_dir}")
        try:
            return await asyncio.to_thread(self._compress, source_dir, dest_archive, max(0, min(level, 9)))
        except (OSError, tarfile.TarError) as e:
            raise ExtractionError(f"Failed to create archive {dest_archive}: {e}") from e

    async def extract(self, archive_path: str, dest_dir: str) -> None:
        try:
            await asyncio.to_thread(self._extract, archive_path, dest_dir)
        except (OSError, EOFError, tarfile.TarError) as e:
            raise ExtractionError(f"Failed to extract archive {archive_path}: {e}") from e
