"""Backup, restore and retention for Strongbox."""

from .archive import ArchiveBackend, TarArchiver
from .manager import BackupManager, BackupState
from .recovery import RestoreManager, RestoreRegistry, RestoreStatus
from .retention import RetentionManager
from .sources import CommandSource, DataSource, FileSystemSource
from .storage import LocalStorageBackend, ObjectInfo, StorageBackend

__all__ = [
    "ArchiveBackend",
    "BackupManager",
    "BackupState",
    "CommandSource",
    "DataSource",
    "FileSystemSource",
    "LocalStorageBackend",
    "ObjectInfo",
    "RestoreManager",
    "RestoreRegistry",
    "RestoreStatus",
    "RetentionManager",
    "StorageBackend",
    "TarArchiver",
]
