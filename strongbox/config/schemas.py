"""Configuration file schema for Strongbox."""

STRING_LIST = {
    "type": "array",
    "items": {"type": "string"}
}

CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "environment": {
            "type": "string",
            "description": "Deployment environment recorded on every audit event"
        },
        "backup": {
            "type": "object",
            "properties": {
                "backup_dir": {
                    "type": "string",
                    "description": "Local staging directory for backup runs"
                },
                "name": {
                    "type": "string",
                    "pattern": r"^[A-Za-z0-9][A-Za-z0-9_.-]*$"
                },
                "include_paths": STRING_LIST,
                "exclude_patterns": STRING_LIST,
                "encrypt": {"type": "boolean"},
                "compress": {"type": "boolean"},
                "compression_level": {
                    "type": "integer",
                    "minimum": 0,
                    "maximum": 9
                },
                "keep_local_copy": {"type": "boolean"},
                "retention_days": {
                    "type": "integer",
                    "minimum": 0
                },
                "version": {
                    "type": "string",
                    "pattern": r"^\d+\.\d+\.\d+$"
                }
            },
            "additionalProperties": False
        },
        "restore": {
            "type": "object",
            "properties": {
                "enabled": {"type": "boolean"},
                "temp_dir": {"type": "string"},
                "max_concurrent_restores": {
                    "type": "integer",
                    "minimum": 1
                },
                "validate_restore": {"type": "boolean"},
                "task_ttl_seconds": {
                    "type": "number",
                    "minimum": 0
                },
                "transfer_timeout_seconds": {
                    "type": ["number", "null"],
                    "exclusiveMinimum": 0
                }
            },
            "additionalProperties": False
        },
        "audit": {
            "type": "object",
            "properties": {
                "log_directory": {"type": "string"},
                "log_file": {"type": "string"},
                "application_name": {"type": "string"},
                "retention_days": {
                    "type": "integer",
                    "minimum": 0
                }
            },
            "additionalProperties": False
        },
        "storage": {
            "type": "object",
            "properties": {
                "type": {
                    "type": "string",
                    "enum": ["local"]
                },
                "root": {"type": "string"}
            },
            "additionalProperties": False
        },
        "encryption": {
            "type": "object",
            "properties": {
                "key": {
                    "type": ["string", "null"],
                    "description": "256-bit key as 64 hex characters or base64"
                },
                "passphrase": {"type": ["string", "null"]},
                "salt": {"type": ["string", "null"]},
                "iterations": {
                    "type": "integer",
                    "minimum": 10000
                }
            },
            "additionalProperties": False
        },
        "sources": {
            "type": "object",
            "description": "Non-filesystem sources keyed by the include path they replace",
            "additionalProperties": {
                "type": "object",
                "properties": {
                    "type": {
                        "type": "string",
                        "enum": ["command", "filesystem"]
                    },
                    "command": {
                        "type": "array",
                        "items": {"type": "string"},
                        "minItems": 1
                    },
                    "output": {"type": "string"},
                    "env": {
                        "type": "object",
                        "additionalProperties": {"type": "string"}
                    },
                    "timeout": {
                        "type": "number",
                        "exclusiveMinimum": 0
                    }
                },
                "additionalProperties": False
            }
        }
    },
    "additionalProperties": False
}
