"""Wiring of Strongbox components from a loaded configuration."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .audit.logger import AuditLogger
from .backup.archive import TarArchiver
from .backup.manager import BackupManager
from .backup.recovery import RestoreManager, RestoreRegistry
from .backup.retention import RetentionManager
from .backup.sources import build_sources
from .backup.storage import LocalStorageBackend, StorageBackend
from .security.encryption import CryptoContext, EncryptionService
from .utils.errors import ConfigurationError


@dataclass
class BackupServices:
    """The collaborating components of one Strongbox process."""

    config: Dict[str, Any]
    audit: AuditLogger
    storage: StorageBackend
    encryption: Optional[EncryptionService]
    backup: BackupManager
    restore: RestoreManager
    retention: RetentionManager


def build_crypto_context(encryption_config: Dict[str, Any]) -> Optional[CryptoContext]:
    """
    Create the key holder from the encryption section.

    Returns None when neither a key nor a passphrase is configured.
    """
    key = encryption_config.get("key")
    passphrase = encryption_config.get("passphrase")

    if key:
        return CryptoContext.from_encoded_key(key)
    if passphrase:
        return CryptoContext.from_passphrase(
            passphrase,
            encryption_config.get("salt"),
            iterations=encryption_config.get("iterations", 100000),
        )
    return None


def build_storage(storage_config: Dict[str, Any]) -> StorageBackend:
    storage_type = storage_config.get("type", "local")
    if storage_type != "local":
        raise ConfigurationError(f"Unsupported storage type: {storage_type}")
    return LocalStorageBackend(storage_config.get("root", "./storage"))


def build_services(
    config: Dict[str, Any],
    storage: Optional[StorageBackend] = None,
    logger: Optional[logging.Logger] = None,
) -> BackupServices:
    """
    Build every component from an effective configuration.

    Args:
        config: Output of ConfigManager.load_config()
        storage: Storage backend override, mainly for tests
        logger: Diagnostic logger shared by the components

    Raises:
        ConfigurationError: If the key material or storage section is invalid
    """
    logger = logger or logging.getLogger("strongbox")
    audit_config = config.get("audit", {})

    audit = AuditLogger(
        log_directory=audit_config.get("log_directory", "logs"),
        log_file=audit_config.get("log_file", "security-audit.log"),
        environment=config.get("environment", "development"),
        application_name=audit_config.get("application_name", "strongbox"),
        logger=logger.getChild("audit"),
    )

    context = build_crypto_context(config.get("encryption", {}))
    encryption = EncryptionService(context) if context else None
    storage = storage or build_storage(config.get("storage", {}))
    archiver = TarArchiver()

    restore_config = config.get("restore", {})
    registry = RestoreRegistry(ttl_seconds=restore_config.get("task_ttl_seconds", 3600))

    backup = BackupManager(
        storage,
        archiver,
        audit,
        encryption=encryption,
        config=config.get("backup", {}),
        sources=build_sources(config.get("sources", {})),
        logger=logger.getChild("backup"),
    )
    restore = RestoreManager(
        storage,
        archiver,
        audit,
        config=restore_config,
        registry=registry,
        logger=logger.getChild("restore"),
    )
    retention = RetentionManager(
        storage,
        audit,
        encryption=encryption,
        config=config.get("backup", {}),
        logger=logger.getChild("retention"),
    )

    return BackupServices(
        config=config,
        audit=audit,
        storage=storage,
        encryption=encryption,
        backup=backup,
        restore=restore,
        retention=retention,
    )
