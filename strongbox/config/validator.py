"""Configuration validation for Strongbox."""

from typing import Any, Dict, List

import jsonschema
import yaml

from ..utils.errors import ConfigurationError, create_error_suggestions, format_validation_errors
from .schemas import CONFIG_SCHEMA


class ConfigValidationError(ConfigurationError):
    """Raised when configuration validation fails."""

    def __init__(self, errors: List[str]):
        self.errors = errors
        super().__init__(
            f"Configuration validation failed: {'; '.join(errors)}",
            details=format_validation_errors(errors),
            suggestions=create_error_suggestions("configuration_invalid"),
        )


class ConfigValidator:
    """Validates Strongbox configuration files."""

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Validate a Strongbox configuration.

        Args:
            config: Configuration dictionary to validate

        Returns:
            List[str]: List of validation errors (empty if valid)
        """
        if not isinstance(config, dict):
            return ["Configuration must be a mapping"]

        validator = jsonschema.Draft7Validator(CONFIG_SCHEMA)
        errors = []
        for error in sorted(validator.iter_errors(config), key=lambda e: list(e.absolute_path)):
            location = ".".join(str(part) for part in error.absolute_path)
            errors.append(f"{location}: {error.message}" if location else error.message)

        # Checks the schema cannot express
        encryption = config.get("encryption") or {}
        if encryption.get("passphrase") and not encryption.get("salt"):
            errors.append("encryption.salt is required when encryption.passphrase is set")
        if encryption.get("key") and encryption.get("passphrase"):
            errors.append("Set either encryption.key or encryption.passphrase, not both")

        for name, source in (config.get("sources") or {}).items():
            if isinstance(source, dict) and source.get("type", "command") == "command" and "command" not in source:
                errors.append(f"sources.{name}: command sources need a command")

        return errors

    def validate_config_file(self, file_path: str) -> List[str]:
        """
        Validate configuration file.

        Args:
            file_path: Path to configuration file

        Returns:
            List[str]: List of validation errors (empty if valid)
        """
        try:
            with open(file_path, encoding="utf-8") as f:
                config = yaml.safe_load(f)
        except FileNotFoundError:
            return [f"Configuration file not found: {file_path}"]
        except yaml.YAMLError as e:
            return [f"YAML parsing error: {e}"]
        except OSError as e:
            return [f"Error reading configuration file: {e}"]

        if config is None:
            return []

        return self.validate_config(config)
