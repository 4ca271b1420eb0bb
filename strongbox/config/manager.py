"""Configuration management for Strongbox."""

import copy
import os
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .validator import ConfigValidationError, ConfigValidator

CONFIG_FILENAME = "strongbox.yml"

DEFAULT_CONFIG = {
    "environment": "development",
    "backup": {
        "backup_dir": "./backups",
        "name": "system",
        "include_paths": ["./src", "./config", "./docs"],
        "exclude_patterns": ["node_modules", ".git", "*.log", "tmp"],
        "encrypt": True,
        "compress": True,
        "compression_level": 6,
        "keep_local_copy": False,
        "retention_days": 30,
        "version": "1.0.0",
    },
    "restore": {
        "enabled": False,
        "temp_dir": "./temp",
        "max_concurrent_restores": 3,
        "validate_restore": False,
        "task_ttl_seconds": 3600,
        "transfer_timeout_seconds": None,
    },
    "audit": {
        "log_directory": "logs",
        "log_file": "security-audit.log",
        "application_name": "strongbox",
        "retention_days": 90,
    },
    "storage": {
        "type": "local",
        "root": "./storage",
    },
    "encryption": {
        "key": None,
        "passphrase": None,
        "salt": None,
        "iterations": 100000,
    },
    "sources": {},
}

# (variable, section, key, converter)
ENV_OVERRIDES = [
    ("STRONGBOX_ENV", None, "environment", str),
    ("STRONGBOX_ENCRYPTION_KEY", "encryption", "key", str),
    ("STRONGBOX_ENCRYPTION_PASSPHRASE", "encryption", "passphrase", str),
    ("ENABLE_BACKUP_SYSTEM", "restore", "enabled", "bool"),
    ("BACKUP_DIR", "backup", "backup_dir", str),
    ("BACKUP_STORAGE_ROOT", "storage", "root", str),
    ("MAX_CONCURRENT_RESTORES", "restore", "max_concurrent_restores", "int"),
    ("VALIDATE_RESTORE", "restore", "validate_restore", "bool"),
    ("LOG_DIRECTORY", "audit", "log_directory", str),
]

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off", ""}


def deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Return a copy of base with override merged in, recursing into nested dicts."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


class ConfigManager:
    """Loads strongbox.yml, applies defaults and environment overrides."""

    def __init__(self, path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        """
        Initialize configuration manager.

        Args:
            path: Config file or directory holding strongbox.yml (defaults to current directory)
            environ: Environment mapping (defaults to os.environ)
        """
        self.path = path or os.getcwd()
        self.environ = os.environ if environ is None else environ
        self.validator = ConfigValidator()
        self._config_cache: Optional[Dict[str, Any]] = None

    def get_config_path(self) -> Optional[str]:
        """Get path to the configuration file, or None when there is none."""
        if os.path.isdir(self.path):
            candidate = os.path.join(self.path, CONFIG_FILENAME)
            return candidate if os.path.isfile(candidate) else None
        return self.path

    def load_config(self, validate: bool = True) -> Dict[str, Any]:
        """
        Load the effective configuration.

        Returns:
            Dict[str, Any]: Defaults, merged with the file, then environment overrides

        Raises:
            ConfigValidationError: If validation fails
            FileNotFoundError: If an explicitly named config file doesn't exist
        """
        if self._config_cache is not None:
            return self._config_cache

        file_config = self.load_config_file() if self.get_config_path() else {}

        if validate:
            errors = self.validator.validate_config(file_config)
            if errors:
                raise ConfigValidationError(errors)

        config = deep_merge(DEFAULT_CONFIG, file_config)
        env_errors = self.apply_env_overrides(config)

        if validate:
            errors = env_errors + self.validator.validate_config(config)
            if errors:
                raise ConfigValidationError(errors)

        self._config_cache = config
        return config

    def load_config_file(self) -> Dict[str, Any]:
        """
        Read the YAML configuration file as-is.

        Raises:
            ConfigValidationError: If the file is not valid YAML or not a mapping
            FileNotFoundError: If the config file doesn't exist
        """
        config_path = self.get_config_path()
        if not config_path or not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path or self.path}")

        try:
            with open(config_path, encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigValidationError([f"Invalid YAML in {config_path}: {e}"])

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigValidationError([f"{config_path} must contain a mapping at the top level"])
        return config

    def apply_env_overrides(self, config: Dict[str, Any]) -> List[str]:
        """
        Apply environment variable overrides in place.

        Returns:
            List[str]: Variables whose values could not be converted
        """
        errors = []
        for variable, section, key, converter in ENV_OVERRIDES:
            if variable not in self.environ:
                continue
            raw = self.environ[variable]

            try:
                value = self._convert(raw, converter)
            except ValueError:
                errors.append(f"{variable}: invalid value {raw!r}")
                continue

            target = config if section is None else config.setdefault(section, {})
            target[key] = value
        return errors

    def _convert(self, raw: str, converter: Any) -> Any:
        if converter == "bool":
            lowered = raw.strip().lower()
            if lowered in TRUE_VALUES:
                return True
            if lowered in FALSE_VALUES:
                return False
            raise ValueError(raw)
        if converter == "int":
            return int(raw.strip())
        return converter(raw)

    def save_config(self, config: Dict[str, Any], config_path: Optional[str] = None) -> str:
        """
        Save configuration to file.

        Args:
            config: Configuration to save
            config_path: Optional custom path (defaults to strongbox.yml under path)

        Returns:
            str: Path written
        """
        errors = self.validator.validate_config(config)
        if errors:
            raise ConfigValidationError(errors)

        if config_path is None:
            config_path = self.path if not os.path.isdir(self.path) else os.path.join(self.path, CONFIG_FILENAME)

        directory = os.path.dirname(os.path.abspath(config_path))
        os.makedirs(directory, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(config, f, default_flow_style=False, sort_keys=False)

        self.clear_cache()
        return config_path

    def clear_cache(self) -> None:
        """Clear configuration cache."""
        self._config_cache = None
