"""Asynchronous, concurrency-capped restore of stored backups."""

import asyncio
import json
import logging
import os
import secrets
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

import aiofiles

from ..audit.logger import AuditLogger
from ..utils.errors import (
    CapacityError,
    ConfigurationError,
    ExtractionError,
    NotFoundError,
    StrongboxError,
    TransferError,
    ValidationError,
    create_error_suggestions,
)
from ..utils.files import FileManager
from ..utils.timestamps import utc_now
from .archive import ArchiveBackend, is_archive_key, strip_archive_suffix
from .manager import BACKUP_PREFIX, MANIFEST_NAME
from .storage import StorageBackend

SERVICE_NAME = "backup-restore"
WORKER_SHUTDOWN_ERROR = "Restore worker shut down"

DEFAULT_RESTORE_CONFIG = {
    "enabled": False,
    "temp_dir": "./temp",
    "max_concurrent_restores": 3,
    "validate_restore": False,
    "task_ttl_seconds": 3600,
    "transfer_timeout_seconds": None,
}


class RestoreStatus(Enum):
    """Lifecycle of a restore task."""

    PENDING = "pending"
    DOWNLOADING = "downloading"
    EXTRACTING = "extracting"
    VALIDATING = "validating"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = {RestoreStatus.COMPLETED, RestoreStatus.FAILED, RestoreStatus.CANCELLED}


@dataclass
class RestoreTask:
    """One restore invocation tracked by the registry."""

    id: str
    backup_id: str
    target_path: str
    temp_path: str
    start_time: datetime = field(default_factory=utc_now)
    end_time: Optional[datetime] = None
    status: RestoreStatus = RestoreStatus.PENDING
    progress: int = 0
    error: Optional[str] = None
    finished_at: Optional[float] = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "backup_id": self.backup_id,
            "target_path": self.target_path,
            "temp_path": self.temp_path,
            "status": self.status.value,
            "progress": self.progress,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "error": self.error,
        }


class RestoreRegistry:
    """
    In-memory table of restore tasks.

    Every read and mutation holds one lock and never awaits, so a
    check-then-register is atomic with respect to other coroutines and threads.
    Terminal tasks are evicted ttl_seconds after they finish.
    """

    def __init__(self, ttl_seconds: float = 3600):
        self.ttl_seconds = ttl_seconds
        self._tasks: Dict[str, RestoreTask] = {}
        self._done: Dict[str, asyncio.Event] = {}
        self._lock = threading.RLock()

    def _evict_expired(self) -> None:
        now = time.monotonic()
        expired = [
            task_id
            for task_id, task in self._tasks.items()
            if task.finished_at is not None and now - task.finished_at >= self.ttl_seconds
        ]
        for task_id in expired:
            del self._tasks[task_id]
            self._done.pop(task_id, None)

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for task in self._tasks.values() if not task.status.is_terminal)

    def register(self, task: RestoreTask, limit: int) -> None:
        """
        Add a task unless the number of active tasks has reached limit.

        Raises:
            CapacityError: If limit active tasks already exist
        """
        with self._lock:
            self._evict_expired()
            active = sum(1 for existing in self._tasks.values() if not existing.status.is_terminal)
            if active >= limit:
                raise CapacityError(
                    f"Maximum number of concurrent restore tasks ({limit}) reached",
                    suggestions=create_error_suggestions("restore_capacity", limit=limit),
                )
            self._tasks[task.id] = task
            self._done[task.id] = asyncio.Event()

    def get(self, task_id: str) -> Optional[RestoreTask]:
        with self._lock:
            self._evict_expired()
            return self._tasks.get(task_id)

    def snapshot(self, task_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            task = self.get(task_id)
            return task.snapshot() if task else None

    def list_snapshots(self) -> List[Dict[str, Any]]:
        with self._lock:
            self._evict_expired()
            return [task.snapshot() for task in self._tasks.values()]

    def advance(self, task_id: str, status: RestoreStatus, progress: Optional[int] = None) -> bool:
        """
        Move a non-terminal task to a non-terminal status.

        Returns:
            bool: False if the task is unknown or already terminal
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status.is_terminal:
                return False
            task.status = status
            if progress is not None:
                task.progress = progress
            return True

    def finish(self, task_id: str, status: RestoreStatus, error: Optional[str] = None) -> bool:
        """
        Move a non-terminal task to a terminal status.

        Returns:
            bool: False if the task is unknown or already terminal; its state is left unchanged
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"{status.value} is not a terminal status")

        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status.is_terminal:
                return False
            task.status = status
            task.error = error
            task.end_time = utc_now()
            task.finished_at = time.monotonic()
            if status is RestoreStatus.COMPLETED:
                task.progress = 100
            event = self._done.get(task_id)

        if event is not None:
            event.set()
        return True

    async def wait(self, task_id: str, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        """Wait until the task reaches a terminal state and return its snapshot."""
        with self._lock:
            event = self._done.get(task_id)
        if event is None:
            return self.snapshot(task_id)
        await asyncio.wait_for(event.wait(), timeout=timeout)
        return self.snapshot(task_id)


class RestoreWorkerPool:
    """A queue of restore ids drained by a fixed number of worker coroutines."""

    def __init__(self, size: int, handler, logger: logging.Logger):
        self.size = size
        self.handler = handler
        self.logger = logger
        self.queue: Optional[asyncio.Queue] = None
        self.workers: List[asyncio.Task] = []

    def _ensure_started(self) -> None:
        if self.workers and all(not worker.done() for worker in self.workers):
            return
        self.queue = self.queue or asyncio.Queue()
        self.workers = [
            asyncio.create_task(self._worker(index), name=f"restore-worker-{index}") for index in range(self.size)
        ]

    async def _worker(self, index: int) -> None:
        while True:
            task_id = await self.queue.get()
            try:
                await self.handler(task_id)
            except Exception:
                self.logger.exception("Restore worker %s crashed while handling %s", index, task_id)
            finally:
                self.queue.task_done()

    def submit(self, task_id: str) -> None:
        self._ensure_started()
        self.queue.put_nowait(task_id)

    async def join(self) -> None:
        if self.queue is not None:
            await self.queue.join()

    async def shutdown(self) -> None:
        for worker in self.workers:
            worker.cancel()
        if self.workers:
            await asyncio.gather(*self.workers, return_exceptions=True)
        self.workers = []


class RestoreManager:
    """Lists restorable backups and runs restore tasks through a bounded worker pool."""

    def __init__(
        self,
        storage: StorageBackend,
        archiver: ArchiveBackend,
        audit_logger: AuditLogger,
        config: Optional[Dict[str, Any]] = None,
        registry: Optional[RestoreRegistry] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize restore manager.

        Args:
            storage: Object store holding backup archives
            archiver: Compress/extract collaborator
            audit_logger: Audit trail for every state change
            config: Restore section of the configuration
            registry: Task registry; a private one is created if omitted
            logger: Diagnostic logger
        """
        self.storage = storage
        self.archiver = archiver
        self.audit = audit_logger
        self.config = {**DEFAULT_RESTORE_CONFIG, **(config or {})}
        self.registry = registry or RestoreRegistry(ttl_seconds=self.config["task_ttl_seconds"])
        self.logger = logger or logging.getLogger(__name__)
        self.file_manager = FileManager()
        self.max_concurrent_restores = int(self.config["max_concurrent_restores"])
        self.pool = RestoreWorkerPool(self.max_concurrent_restores, self._process_restore, self.logger)

    @property
    def enabled(self) -> bool:
        return bool(self.config["enabled"])

    async def list_available_backups(self) -> List[Dict[str, Any]]:
        """
        List restorable backup archives, newest first.

        Returns:
            List[Dict[str, Any]]: id, folder_name, timestamp, size, last_modified
        """
        if not self.enabled:
            self._audit("BACKUP_SYSTEM_DISABLED", "info", "Backup system is disabled")
            return []

        try:
            objects = await self.storage.list_objects(BACKUP_PREFIX)
        except StrongboxError as e:
            self._audit("BACKUP_LIST_FAILED", "error", f"Failed to list available backups: {e}")
            raise TransferError(f"Failed to list available backups: {e}") from e

        backups = []
        for info in objects:
            if not is_archive_key(info.key):
                continue
            parts = info.key[len(BACKUP_PREFIX) :].split("/")
            timestamp = parts[0] if len(parts) > 1 else ""
            file_name = parts[-1]
            folder_name = strip_archive_suffix(file_name)
            if timestamp and folder_name.endswith(f"-{timestamp}"):
                folder_name = folder_name[: -len(timestamp) - 1]

            backups.append(
                {
                    "id": info.key,
                    "folder_name": folder_name,
                    "timestamp": timestamp,
                    "size": info.size,
                    "last_modified": info.last_modified,
                }
            )

        backups.sort(key=lambda backup: backup["last_modified"], reverse=True)
        self._audit("BACKUP_LIST_RETRIEVED", "success", f"Retrieved {len(backups)} available backups")
        return backups

    async def restore_from_backup(self, backup_id: str, target_path: str) -> Dict[str, Any]:
        """
        Start restoring backup_id into target_path.

        Returns immediately with the restore id; progress is tracked in the registry.

        Raises:
            ConfigurationError: If the backup system is disabled
            NotFoundError: If backup_id does not exist in storage
            CapacityError: If max_concurrent_restores tasks are already active
        """
        if not backup_id or not target_path:
            raise ValueError("backup_id and target_path are required")

        try:
            if not self.enabled:
                raise ConfigurationError(
                    "Backup system is disabled",
                    suggestions=create_error_suggestions("backup_system_disabled"),
                )

            try:
                await self.storage.head_object(backup_id)
            except NotFoundError as e:
                raise NotFoundError(
                    f"Backup with ID {backup_id} not found",
                    suggestions=create_error_suggestions("backup_not_found"),
                ) from e

            restore_id = f"restore-{int(time.time() * 1000)}-{secrets.token_hex(4)}"
            full_target_path = os.path.abspath(target_path)
            temp_path = os.path.join(os.path.abspath(self.config["temp_dir"]), f"{restore_id}.archive")

            task = RestoreTask(
                id=restore_id,
                backup_id=backup_id,
                target_path=full_target_path,
                temp_path=temp_path,
            )
            self.registry.register(task, self.max_concurrent_restores)
        except StrongboxError as e:
            self._audit("RESTORE_INIT_FAILED", "error", f"Failed to initialize restore: {e}")
            raise

        self._audit(
            "RESTORE_STARTED",
            "info",
            f"Starting restore from {backup_id} to {full_target_path}, restore ID: {restore_id}",
        )
        self.pool.submit(restore_id)

        return {
            "restore_id": restore_id,
            "status": "started",
            "message": "Restore process started",
        }

    def get_restore_status(self, restore_id: str) -> Optional[Dict[str, Any]]:
        """Return a snapshot of the task, or None for unknown or evicted ids."""
        return self.registry.snapshot(restore_id)

    def cancel_restore(self, restore_id: str) -> bool:
        """
        Cancel a restore task.

        Advisory only: a download or extraction already in flight finishes, but
        the pipeline stops at the next stage boundary.

        Returns:
            bool: False if the task is unknown or already terminal
        """
        task = self.registry.get(restore_id)
        if task is None:
            return False
        if not self.registry.finish(restore_id, RestoreStatus.CANCELLED):
            return False

        self._remove_temp(task)
        self._audit("RESTORE_CANCELLED", "warning", f"Restore task {restore_id} cancelled by user")
        return True

    async def wait_for(self, restore_id: str, timeout: Optional[float] = None) -> Optional[Dict[str, Any]]:
        return await self.registry.wait(restore_id, timeout=timeout)

    async def join(self) -> None:
        """Wait until every submitted restore has been processed."""
        await self.pool.join()

    async def shutdown(self) -> None:
        """Stop the workers. Tasks that have not finished by then are marked failed."""
        await self.pool.shutdown()
        for snapshot in self.registry.list_snapshots():
            task = self.registry.get(snapshot["id"])
            if task is not None and not task.status.is_terminal:
                self._fail(task, WORKER_SHUTDOWN_ERROR)

    async def _process_restore(self, restore_id: str) -> None:
        task = self.registry.get(restore_id)
        if task is None:
            return

        try:
            if not self.registry.advance(restore_id, RestoreStatus.DOWNLOADING, progress=10):
                return self._abandon(task)
            await self._with_timeout(self._download(task))

            if not self.registry.advance(restore_id, RestoreStatus.EXTRACTING, progress=50):
                return self._abandon(task)
            os.makedirs(task.target_path, exist_ok=True)
            await self._with_timeout(self.archiver.extract(task.temp_path, task.target_path))

            if self.config["validate_restore"]:
                if not self.registry.advance(restore_id, RestoreStatus.VALIDATING, progress=80):
                    return self._abandon(task)
                await self._validate(task)

            self._remove_temp(task)

            if self.registry.finish(restore_id, RestoreStatus.COMPLETED):
                self._audit("RESTORE_COMPLETED", "success", f"Restore task {restore_id} completed successfully")

        except asyncio.CancelledError:
            self._fail(task, WORKER_SHUTDOWN_ERROR)
            raise
        except Exception as e:
            if isinstance(e, asyncio.TimeoutError):
                e = TransferError(f"Restore step timed out after {self.config['transfer_timeout_seconds']}s")
            self._fail(task, str(e))

    async def _download(self, task: RestoreTask) -> None:
        os.makedirs(os.path.dirname(task.temp_path), exist_ok=True)
        try:
            async with aiofiles.open(task.temp_path, "wb") as f:
                async for chunk in self.storage.get_object(task.backup_id):
                    await f.write(chunk)
        except TransferError:
            raise
        except (StrongboxError, OSError) as e:
            raise TransferError(f"Failed to download {task.backup_id}: {e}") from e

    async def _validate(self, task: RestoreTask) -> None:
        """Check that the restored tree carries a well-formed manifest."""
        manifest_path = os.path.join(task.target_path, MANIFEST_NAME)
        if not os.path.isfile(manifest_path):
            raise ValidationError(f"Restored data has no {MANIFEST_NAME}")

        async with aiofiles.open(manifest_path, encoding="utf-8") as f:
            content = await f.read()
        try:
            manifest = json.loads(content)
        except ValueError as e:
            raise ValidationError(f"Restored manifest is not valid JSON: {e}") from e

        if not isinstance(manifest, dict) or not isinstance(manifest.get("metadata"), dict):
            raise ValidationError("Restored manifest is missing its metadata section")
        if not isinstance(manifest.get("data"), dict):
            raise ValidationError("Restored manifest is missing its data section")

    async def _with_timeout(self, awaitable):
        timeout = self.config["transfer_timeout_seconds"]
        if timeout:
            return await asyncio.wait_for(awaitable, timeout=timeout)
        return await awaitable

    def _fail(self, task: RestoreTask, error: str) -> None:
        self._remove_temp(task)
        self.logger.error("Restore task %s failed: %s", task.id, error)
        if self.registry.finish(task.id, RestoreStatus.FAILED, error=error):
            self._audit("RESTORE_PROCESS_FAILED", "error", f"Restore task {task.id} failed: {error}")

    def _abandon(self, task: RestoreTask) -> None:
        self.logger.info("Restore task %s stopped after cancellation", task.id)
        self._remove_temp(task)

    def _remove_temp(self, task: RestoreTask) -> None:
        try:
            self.file_manager.remove_path(task.temp_path)
        except OSError as e:
            self.logger.warning("Could not remove temp file %s: %s", task.temp_path, e)

    def _audit(self, event_type: str, status: str, details: str) -> None:
        self.audit.log_event(
            {
                "eventType": event_type,
                "status": status,
                "service": SERVICE_NAME,
                "details": details,
            }
        )
