"""Pytest configuration and shared fixtures."""

import os
import shutil
import tempfile

import pytest

from strongbox.audit.logger import AuditLogger
from strongbox.backup.archive import TarArchiver
from strongbox.backup.storage import LocalStorageBackend
from strongbox.security.encryption import CryptoContext, EncryptionService


@pytest.fixture
def temp_directory():
    """Create a temporary directory for testing."""
    temp_dir = tempfile.mkdtemp()
    yield temp_dir
    # Cleanup
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def audit_logger(temp_directory):
    """Audit logger writing into the temporary directory."""
    return AuditLogger(log_directory=os.path.join(temp_directory, "logs"), environment="test")


@pytest.fixture
def storage(temp_directory):
    """Local storage backend rooted in the temporary directory."""
    return LocalStorageBackend(os.path.join(temp_directory, "storage"))


@pytest.fixture
def archiver():
    return TarArchiver()


@pytest.fixture
def encryption():
    """Encryption service with a fixed key."""
    return EncryptionService(CryptoContext.from_key(bytes(range(32))))


@pytest.fixture
def sample_config():
    """Sample strongbox.yml content for testing."""
    return {
        "environment": "test",
        "backup": {
            "backup_dir": "./backups",
            "name": "system",
            "include_paths": ["./src", "./config"],
            "exclude_patterns": ["*.log", "node_modules"],
            "encrypt": True,
            "compress": True,
            "compression_level": 6,
            "retention_days": 30,
        },
        "restore": {
            "enabled": True,
            "temp_dir": "./temp",
            "max_concurrent_restores": 2,
            "validate_restore": True,
        },
        "audit": {
            "log_directory": "logs",
            "retention_days": 90,
        },
        "storage": {
            "type": "local",
            "root": "./storage",
        },
        "encryption": {
            "key": bytes(range(32)).hex(),
        },
    }


@pytest.fixture
def mock_environment_variables(monkeypatch):
    """Mock environment variables for testing."""
    test_env = {
        "STRONGBOX_ENV": "test",
        "ENABLE_BACKUP_SYSTEM": "true",
        "MAX_CONCURRENT_RESTORES": "5",
    }

    for key, value in test_env.items():
        monkeypatch.setenv(key, value)

    return test_env


@pytest.fixture
def mock_file_system(temp_directory):
    """Project tree with files to back up."""
    file_structure = {
        "src": {
            "main.py": 'print("Hello, Strongbox!")',
            "config.py": 'CONFIG = {"debug": True}',
            "debug.log": "noise",
            "node_modules": {"dep.js": "module.exports = {}"},
        },
        "config": {
            "app.yml": "name: app\n",
        },
        "docs": {
            "README.md": "# Docs\n",
        },
    }

    def create_structure(base_path, structure):
        for name, content in structure.items():
            path = os.path.join(base_path, name)

            if isinstance(content, dict):
                os.makedirs(path, exist_ok=True)
                create_structure(path, content)
            else:
                os.makedirs(os.path.dirname(path), exist_ok=True)
                with open(path, "w", encoding="utf-8") as f:
                    f.write(content)

    create_structure(temp_directory, file_structure)
    return temp_directory


@pytest.fixture(autouse=True)
def isolate_filesystem(temp_directory, monkeypatch):
    """Isolate filesystem operations to temporary directory."""
    for variable in (
        "STRONGBOX_ENV",
        "STRONGBOX_ENCRYPTION_KEY",
        "STRONGBOX_ENCRYPTION_PASSPHRASE",
        "ENABLE_BACKUP_SYSTEM",
        "BACKUP_DIR",
        "BACKUP_STORAGE_ROOT",
        "MAX_CONCURRENT_RESTORES",
        "VALIDATE_RESTORE",
        "LOG_DIRECTORY",
    ):
        monkeypatch.delenv(variable, raising=False)
    monkeypatch.chdir(temp_directory)
    return temp_directory
