"""Retention policy and integrity verification for stored backups."""

import json
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..audit.logger import AuditLogger
from ..security.encryption import EncryptionService, is_envelope
from ..utils.errors import StrongboxError, ValidationError
from ..utils.timestamps import utc_now
from .manager import BACKUP_PREFIX, MANIFEST_NAME
from .storage import StorageBackend

SERVICE_NAME = "backup-retention"

DEFAULT_RETENTION_CONFIG = {
    "retention_days": 30,
}


def backup_timestamp_from_id(backup_id: str) -> str:
    """
    Reduce any key inside a backup (or its bare timestamp) to the timestamp.

    "backups/2024-01-01T00-00-00-000000Z/system.tar.gz" and
    "2024-01-01T00-00-00-000000Z" both yield "2024-01-01T00-00-00-000000Z".
    """
    value = backup_id.strip().strip("/")
    if value.startswith(BACKUP_PREFIX):
        value = value[len(BACKUP_PREFIX) :]
    return value.split("/", 1)[0]


class RetentionManager:
    """Deletes expired backups and checks that stored manifests are intact."""

    def __init__(
        self,
        storage: StorageBackend,
        audit_logger: AuditLogger,
        encryption: Optional[EncryptionService] = None,
        config: Optional[Dict[str, Any]] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize retention manager.

        Args:
            storage: Object store holding backups
            audit_logger: Audit trail for cleanup runs
            encryption: Used to open encrypted manifests during verification
            config: Backup section of the configuration
            logger: Diagnostic logger
        """
        self.storage = storage
        self.audit = audit_logger
        self.encryption = encryption
        self.config = {**DEFAULT_RETENTION_CONFIG, **(config or {})}
        self.logger = logger or logging.getLogger(__name__)

    async def list_backups(self) -> List[Dict[str, Any]]:
        """
        Group stored objects by backup.

        Returns:
            List[Dict[str, Any]]: timestamp, prefix, created_at, size, object_count,
            has_manifest; newest first
        """
        objects = await self.storage.list_objects(BACKUP_PREFIX)

        groups: Dict[str, Dict[str, Any]] = {}
        for info in objects:
            rest = info.key[len(BACKUP_PREFIX) :]
            if "/" not in rest:
                continue
            timestamp = rest.split("/", 1)[0]
            group = groups.setdefault(
                timestamp,
                {
                    "timestamp": timestamp,
                    "prefix": f"{BACKUP_PREFIX}{timestamp}/",
                    "created_at": None,
                    "size": 0,
                    "object_count": 0,
                    "has_manifest": False,
                    "_newest": info.last_modified,
                },
            )
            group["size"] += info.size
            group["object_count"] += 1
            group["_newest"] = max(group["_newest"], info.last_modified)
            if rest == f"{timestamp}/{MANIFEST_NAME}":
                group["created_at"] = info.last_modified
                group["has_manifest"] = True

        backups = []
        for group in groups.values():
            newest = group.pop("_newest")
            # Interrupted uploads have no manifest; age them by their newest object
            if group["created_at"] is None:
                group["created_at"] = newest
            backups.append(group)

        backups.sort(key=lambda backup: backup["created_at"], reverse=True)
        return backups

    async def cleanup_old_backups(
        self, retention_days: Optional[int] = None, now: Optional[datetime] = None
    ) -> Dict[str, Any]:
        """
        Delete backups created before now - retention_days.

        A backup created exactly at the cutoff is kept.

        Args:
            retention_days: Age limit in days; defaults to backup.retention_days
            now: Reference time, defaults to the current UTC time

        Returns:
            Dict[str, Any]: success, deleted_count, retention_days (and failed on partial errors)
        """
        if retention_days is None:
            retention_days = self.config["retention_days"]
        if retention_days < 0:
            raise ValueError("retention_days must not be negative")

        cutoff = (now or utc_now()) - timedelta(days=retention_days)

        try:
            backups = await self.list_backups()
        except StrongboxError as e:
            self.logger.error("Backup cleanup failed: %s", e)
            self._audit("BACKUP_CLEANUP_FAILED", "failure", {"error": str(e)})
            return {"success": False, "error": str(e), "retention_days": retention_days}

        expired = [backup for backup in backups if backup["created_at"] < cutoff]
        deleted = []
        failed = []

        for backup in expired:
            try:
                await self.storage.delete_prefix(backup["prefix"])
                deleted.append(backup["timestamp"])
                self.logger.info("Deleted expired backup %s", backup["timestamp"])
            except StrongboxError as e:
                self.logger.warning("Could not delete backup %s: %s", backup["timestamp"], e)
                failed.append(backup["timestamp"])
                self._audit(
                    "BACKUP_DELETE_FAILED",
                    "warning",
                    {"timestamp": backup["timestamp"], "error": str(e)},
                )

        self._audit(
            "BACKUP_CLEANUP_COMPLETED",
            "success",
            {
                "retentionDays": retention_days,
                "cutoff": cutoff.isoformat(),
                "deletedCount": len(deleted),
                "failed": failed,
            },
        )

        return {
            "success": True,
            "deleted_count": len(deleted),
            "deleted": deleted,
            "failed": failed,
            "retention_days": retention_days,
        }

    async def verify_backup_integrity(self, backup_id: str) -> Dict[str, Any]:
        """
        Check that a stored manifest is readable and well-formed.

        Args:
            backup_id: Backup timestamp or any key inside the backup

        Returns:
            Dict[str, Any]: is_valid plus metadata and data_keys, or the error
        """
        if not backup_id:
            raise ValueError("backup_id is required")

        timestamp = backup_timestamp_from_id(backup_id)
        manifest_key = f"{BACKUP_PREFIX}{timestamp}/{MANIFEST_NAME}"

        try:
            raw = await self.storage.read_object(manifest_key)
            try:
                manifest = json.loads(raw.decode("utf-8"))
            except ValueError as e:
                raise ValidationError(f"Manifest is not valid JSON: {e}") from e

            if not isinstance(manifest, dict):
                raise ValidationError("Invalid backup structure")
            metadata = manifest.get("metadata")
            data = manifest.get("data")
            if not isinstance(metadata, dict) or not isinstance(data, dict):
                raise ValidationError("Invalid backup structure")

            if is_envelope(data):
                if self.encryption is None:
                    data_keys = None
                else:
                    data = self.encryption.decrypt(data)
                    if not isinstance(data, dict):
                        raise ValidationError("Decrypted backup data is not a mapping")
                    data_keys = list(data)
            else:
                data_keys = list(data)

        except StrongboxError as e:
            self.logger.warning("Backup %s failed verification: %s", timestamp, e)
            return {"is_valid": False, "backup_id": timestamp, "error": str(e)}

        return {
            "is_valid": True,
            "backup_id": timestamp,
            "metadata": metadata,
            "data_keys": data_keys,
        }

    def _audit(self, event_type: str, status: str, details: Dict[str, Any]) -> None:
        self.audit.log_event(
            {
                "eventType": event_type,
                "status": status,
                "service": SERVICE_NAME,
                "userId": "system",
                "details": details,
            }
        )
