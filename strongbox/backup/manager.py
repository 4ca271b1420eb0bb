"""Backup orchestration for full-system backups."""

import json
import logging
import os
import shutil
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

import aiofiles

from ..audit.logger import AuditLogger
from ..security.encryption import EncryptionService
from ..utils.errors import ConfigurationError
from ..utils.files import FileManager
from ..utils.timestamps import backup_timestamp, utc_now
from .archive import ArchiveBackend
from .sources import DataSource, FileSystemSource
from .storage import StorageBackend

SERVICE_NAME = "backup-system"
MANIFEST_NAME = "backup.json"
BACKUP_PREFIX = "backups/"
MANIFEST_VERSION = "1.0.0"

DEFAULT_BACKUP_CONFIG = {
    "backup_dir": "./backups",
    "name": "system",
    "include_paths": ["./src", "./config", "./docs"],
    "exclude_patterns": ["node_modules", ".git", "*.log", "tmp"],
    "encrypt": True,
    "compress": True,
    "compression_level": 6,
    "keep_local_copy": False,
}


class BackupState(Enum):
    """States of a single backup run."""

    INIT = "init"
    COLLECTING = "collecting"
    ENCRYPTING = "encrypting"
    COMPRESSING = "compressing"
    PERSISTING = "persisting"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class BackupRun:
    """Bookkeeping for one invocation of run_full_backup."""

    user_id: str
    timestamp: str
    requested_timestamp: str
    include_paths: List[str]
    exclude_patterns: List[str]
    encrypt: bool
    compress: bool
    state: BackupState = BackupState.INIT
    staging_dir: Optional[str] = None
    data: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    @property
    def failed_paths(self) -> List[str]:
        return [path for path, entry in self.data.items() if "error" in entry]


class BackupManager:
    """Collects configured sources into a manifest and persists it through the storage backend."""

    def __init__(
        self,
        storage: StorageBackend,
        archiver: ArchiveBackend,
        audit_logger: AuditLogger,
        encryption: Optional[EncryptionService] = None,
        config: Optional[Dict[str, Any]] = None,
        sources: Optional[Dict[str, DataSource]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize backup manager.

        Args:
            storage: Object store receiving manifests and archives
            archiver: Compress/extract collaborator
            audit_logger: Audit trail for every state change
            encryption: Required when a run asks for encryption
            config: Backup section of the configuration
            sources: Data sources keyed by include path; others use FileSystemSource
            logger: Diagnostic logger
        """
        self.storage = storage
        self.archiver = archiver
        self.audit = audit_logger
        self.encryption = encryption
        self.config = {**DEFAULT_BACKUP_CONFIG, **(config or {})}
        self.sources = dict(sources or {})
        self.default_source = FileSystemSource()
        self.file_manager = FileManager()
        self.logger = logger or logging.getLogger(__name__)

    def register_source(self, path: str, source: DataSource) -> None:
        self.sources[path] = source

    async def run_full_backup(self, user_id: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Run a full backup.

        Args:
            user_id: Who requested the backup
            options: include_paths, exclude_patterns, encrypt, compress

        Returns:
            Dict[str, Any]: Backup results; success is False only for unrecoverable errors
        """
        if not user_id:
            raise ValueError("user_id is required to run a backup")

        options = options or {}
        timestamp = backup_timestamp()
        run = BackupRun(
            user_id=user_id,
            timestamp=timestamp,
            requested_timestamp=timestamp,
            include_paths=list(options.get("include_paths", self.config["include_paths"])),
            exclude_patterns=list(options.get("exclude_patterns", self.config["exclude_patterns"])),
            encrypt=bool(options.get("encrypt", self.config["encrypt"])),
            compress=bool(options.get("compress", self.config["compress"])),
        )

        self._audit(
            "BACKUP_STARTED",
            "info",
            run,
            {
                "timestamp": run.timestamp,
                "includePaths": run.include_paths,
                "excludePatterns": run.exclude_patterns,
                "encrypt": run.encrypt,
                "compress": run.compress,
            },
        )

        archive_path = None
        try:
            if run.encrypt and self.encryption is None:
                raise ConfigurationError(
                    "Encryption requested but no encryption key is configured",
                    suggestions=["Set encryption.key or STRONGBOX_ENCRYPTION_KEY", "Or run with --no-encrypt"],
                )

            await self._allocate_staging(run)
            await self._collect(run)
            manifest = self._build_manifest(run)

            if run.encrypt:
                self._transition(run, BackupState.ENCRYPTING)
                manifest["data"] = self.encryption.encrypt(manifest["data"])

            manifest_path = os.path.join(run.staging_dir, MANIFEST_NAME)
            async with aiofiles.open(manifest_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(manifest, indent=2))

            if run.compress:
                self._transition(run, BackupState.COMPRESSING)
                archive_name = f"{self.config['name']}-{run.timestamp}.tar.gz"
                archive_path = os.path.join(self.config["backup_dir"], archive_name)
                await self.archiver.compress(run.staging_dir, archive_path, self.config["compression_level"])

            self._transition(run, BackupState.PERSISTING)
            backup_id = await self._persist(run, manifest_path, archive_path)

            self._transition(run, BackupState.COMPLETE)
            self._cleanup_local(run, archive_path)

        except Exception as e:
            run.state = BackupState.FAILED
            self.logger.error("Backup %s failed: %s", run.timestamp, e)
            self._audit(
                "BACKUP_FAILED",
                "failure",
                run,
                {"timestamp": run.timestamp, "requestedTimestamp": run.requested_timestamp, "error": str(e)},
            )
            if run.staging_dir:
                self._cleanup_local(run, archive_path)
            return {
                "success": False,
                "error": str(e),
                "timestamp": run.timestamp,
                "state": run.state.value,
            }

        manifest_key = f"{BACKUP_PREFIX}{run.timestamp}/{MANIFEST_NAME}"
        self._audit(
            "BACKUP_COMPLETED",
            "success",
            run,
            {
                "timestamp": run.timestamp,
                "requestedTimestamp": run.requested_timestamp,
                "backupPath": manifest_key,
                "dataSize": len(run.data),
                "failedPaths": run.failed_paths,
                "success": True,
            },
        )

        return {
            "success": True,
            "timestamp": run.timestamp,
            "backup_path": manifest_key,
            "backup_id": backup_id,
            "data_size": len(run.data),
            "failed_paths": run.failed_paths,
            "encrypted": run.encrypt,
            "compressed": run.compress,
            "state": run.state.value,
        }

    async def _allocate_staging(self, run: BackupRun) -> None:
        """
        Create the staging directory for the run.

        Two runs within the same timestamp resolution get -1, -2, ... suffixes;
        a name is only taken if it is free both locally and in storage.
        """
        backup_dir = self.config["backup_dir"]
        os.makedirs(backup_dir, exist_ok=True)

        base = run.timestamp
        suffix = 0
        while True:
            name = f"{base}-{suffix}" if suffix else base
            staging_dir = os.path.join(backup_dir, name)
            if not os.path.exists(staging_dir) and not await self.storage.list_objects(f"{BACKUP_PREFIX}{name}/"):
                try:
                    os.makedirs(staging_dir)
                except FileExistsError:
                    pass
                else:
                    run.timestamp = name
                    run.staging_dir = staging_dir
                    return
            suffix += 1

    async def _collect(self, run: BackupRun) -> None:
        """Collect every include path, recording per-path failures in the manifest."""
        self._transition(run, BackupState.COLLECTING)
        data_root = os.path.join(run.staging_dir, "data")
        taken: Set[str] = set()

        for include_path in run.include_paths:
            source = self.sources.get(include_path, self.default_source)
            name = self._staging_name(include_path, taken)
            destination = os.path.join(data_root, name)

            try:
                entry = await source.collect(include_path, destination, run.exclude_patterns)
                entry["path"] = include_path
                entry["location"] = f"data/{name}"
                run.data[include_path] = entry
                self.logger.debug("Collected %s (%s bytes)", include_path, entry.get("size"))
            except Exception as e:
                self.logger.warning("Backup path %s failed: %s", include_path, e)
                run.data[include_path] = {"path": include_path, "error": str(e)}
                self._audit("BACKUP_PATH_FAILED", "warning", run, {"path": include_path, "error": str(e)})
                shutil.rmtree(destination, ignore_errors=True)

    def _staging_name(self, include_path: str, taken: Set[str]) -> str:
        """Staging directory name for include_path, unique within the run."""
        base = self.file_manager.sanitize_name(include_path)
        name = base
        suffix = 0
        while name in taken:
            suffix += 1
            name = f"{base}-{suffix}"
        taken.add(name)
        return name

    def _build_manifest(self, run: BackupRun) -> Dict[str, Any]:
        return {
            "metadata": {
                "timestamp": run.timestamp,
                "userId": run.user_id,
                "version": self.config.get("version", MANIFEST_VERSION),
                "includePaths": run.include_paths,
                "excludePatterns": run.exclude_patterns,
                "encrypted": run.encrypt,
                "compressed": run.compress,
                "createdAt": utc_now().isoformat(),
            },
            "data": run.data,
        }

    async def _persist(self, run: BackupRun, manifest_path: str, archive_path: Optional[str]) -> Optional[str]:
        """Upload the run. Returns the archive key, or None for uncompressed runs."""
        prefix = f"{BACKUP_PREFIX}{run.timestamp}/"
        backup_id = None

        if archive_path:
            backup_id = f"{prefix}{os.path.basename(archive_path)}"
            await self.storage.put_object(backup_id, archive_path)
        else:
            data_root = os.path.join(run.staging_dir, "data")
            if os.path.isdir(data_root):
                for absolute, relative in self.file_manager.iter_files(data_root):
                    key = f"{prefix}data/{relative.replace(os.sep, '/')}"
                    await self.storage.put_object(key, absolute)

        # Manifest goes last so that its presence marks a complete upload
        await self.storage.put_object(f"{prefix}{MANIFEST_NAME}", manifest_path)
        return backup_id

    def _cleanup_local(self, run: BackupRun, archive_path: Optional[str]) -> None:
        if self.config["keep_local_copy"]:
            return
        shutil.rmtree(run.staging_dir, ignore_errors=True)
        if archive_path and os.path.exists(archive_path):
            os.remove(archive_path)

    def _transition(self, run: BackupRun, state: BackupState) -> None:
        self.logger.debug("Backup %s: %s -> %s", run.timestamp, run.state.value, state.value)
        run.state = state

    def _audit(self, event_type: str, status: str, run: BackupRun, details: Dict[str, Any]) -> None:
        self.audit.log_event(
            {
                "eventType": event_type,
                "status": status,
                "service": SERVICE_NAME,
                "userId": run.user_id,
                "details": details,
            }
        )
