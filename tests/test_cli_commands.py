"""Test CLI commands."""

import base64
import json
import os

import pytest
import yaml
from click.testing import CliRunner

from strongbox.cli import cli


class TestCLICommands:
    """Test CLI command functionality."""

    def setup_method(self):
        """Setup test environment."""
        self.runner = CliRunner()

    @pytest.fixture
    def project(self, mock_file_system):
        """Project tree with a strongbox.yml that keeps everything in the temp directory."""
        config = {
            "environment": "test",
            "backup": {
                "backup_dir": "./backups",
                "include_paths": ["./src", "./config"],
                "exclude_patterns": ["*.log", "node_modules"],
                "encrypt": False,
            },
            "restore": {"temp_dir": "./temp", "validate_restore": True},
            "storage": {"root": "./storage"},
            "audit": {"log_directory": "logs"},
        }
        with open(os.path.join(mock_file_system, "strongbox.yml"), "w", encoding="utf-8") as f:
            yaml.safe_dump(config, f)
        return mock_file_system

    def _run_backup(self, *args):
        result = self.runner.invoke(cli, ["backup", "run", "--json", *args])
        assert result.exit_code == 0, result.output
        return json.loads(result.stdout)

    def test_cli_version(self):
        """Test CLI version display."""
        result = self.runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert "version" in result.output.lower()

    def test_cli_help(self):
        """Test CLI help display."""
        result = self.runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        assert "Strongbox" in result.output
        for group in ("backup", "restore", "audit", "config", "keys"):
            assert group in result.output

    def test_cli_verbose_flag(self):
        result = self.runner.invoke(cli, ["--verbose", "--help"])

        assert result.exit_code == 0

    def test_keys_generate_hex(self):
        result = self.runner.invoke(cli, ["keys", "generate"])

        assert result.exit_code == 0
        key = result.output.strip()
        assert len(bytes.fromhex(key)) == 32

    def test_keys_generate_base64(self):
        result = self.runner.invoke(cli, ["keys", "generate", "--format", "base64"])

        assert result.exit_code == 0
        assert len(base64.b64decode(result.output.strip())) == 32

    def test_backup_run(self, project):
        result = self.runner.invoke(cli, ["backup", "run", "--user", "alice"])

        assert result.exit_code == 0, result.output
        assert "✓ Backup" in result.output
        assert "Backup id: backups/" in result.output

    def test_backup_run_reports_failed_paths(self, project):
        result = self.runner.invoke(cli, ["backup", "run", "--include", "./src", "--include", "./missing"])

        assert result.exit_code == 0
        assert "./missing could not be collected" in result.output

    def test_backup_run_encrypt_without_key(self, project):
        result = self.runner.invoke(cli, ["backup", "run", "--encrypt"])

        assert result.exit_code == 1
        assert "Backup failed" in result.output

    def test_backup_run_encrypted_with_env_key(self, project):
        key = bytes(range(32)).hex()
        result = self.runner.invoke(
            cli, ["backup", "run", "--encrypt", "--json"], env={"STRONGBOX_ENCRYPTION_KEY": key}
        )

        assert result.exit_code == 0, result.output
        assert json.loads(result.stdout)["encrypted"] is True

    def test_invalid_key_is_reported(self, project):
        result = self.runner.invoke(cli, ["backup", "run"], env={"STRONGBOX_ENCRYPTION_KEY": "short"})

        assert result.exit_code == 1
        assert "Malformed encryption key material" in result.output

    def test_invalid_config_is_reported(self, temp_directory):
        with open(os.path.join(temp_directory, "strongbox.yml"), "w", encoding="utf-8") as f:
            f.write("restore:\n  max_concurrent_restores: 0\n")

        result = self.runner.invoke(cli, ["backup", "list"])

        assert result.exit_code == 1
        assert "Configuration validation failed" in result.output

    def test_config_init_and_validate(self, temp_directory):
        result = self.runner.invoke(cli, ["config", "init"])

        assert result.exit_code == 0, result.output
        assert os.path.isfile(os.path.join(temp_directory, "strongbox.yml"))

        validate = self.runner.invoke(cli, ["config", "validate"])
        assert validate.exit_code == 0
        assert "Configuration is valid" in validate.output

        again = self.runner.invoke(cli, ["config", "init"])
        assert again.exit_code == 1
        assert "already exists" in again.output

        forced = self.runner.invoke(cli, ["config", "init", "--force"])
        assert forced.exit_code == 0

    def test_config_validate_lists_errors(self, temp_directory):
        with open(os.path.join(temp_directory, "strongbox.yml"), "w", encoding="utf-8") as f:
            f.write("restore:\n  max_concurrent_restores: 0\nbackup:\n  encrypt: maybe\n")

        result = self.runner.invoke(cli, ["config", "validate"])

        assert result.exit_code == 1
        assert "Details: Validation errors:" in result.output
        assert "  2. " in result.output

    def test_backup_list_and_verify(self, project):
        data = self._run_backup()

        listing = self.runner.invoke(cli, ["backup", "list"])
        assert listing.exit_code == 0
        assert data["timestamp"] in listing.output

        verify = self.runner.invoke(cli, ["backup", "verify", data["timestamp"]])
        assert verify.exit_code == 0, verify.output
        assert "is valid" in verify.output
        assert "./src" in verify.output

    def test_backup_verify_missing(self, project):
        result = self.runner.invoke(cli, ["backup", "verify", "no-such-backup"])

        assert result.exit_code == 1
        assert "is invalid" in result.output

    def test_backup_list_empty(self, project):
        result = self.runner.invoke(cli, ["backup", "list"])

        assert result.exit_code == 0
        assert "No backups found" in result.output

    def test_backup_cleanup(self, project):
        self._run_backup()

        result = self.runner.invoke(cli, ["backup", "cleanup", "--retention-days", "30"])

        assert result.exit_code == 0
        assert "Deleted 0 backups older than 30 days" in result.output

    def test_restore_list_disabled(self, project):
        result = self.runner.invoke(cli, ["restore", "list"])

        assert result.exit_code == 0
        assert "disabled" in result.output

    def test_restore_start_and_status(self, project):
        data = self._run_backup()
        env = {"ENABLE_BACKUP_SYSTEM": "true"}

        listing = self.runner.invoke(cli, ["restore", "list"], env=env)
        assert data["backup_id"] in listing.output

        result = self.runner.invoke(cli, ["restore", "start", data["backup_id"], "restored", "--json"], env=env)
        assert result.exit_code == 0, result.output
        task = json.loads(result.stdout)
        assert task["status"] == "completed"
        assert os.path.isfile(os.path.join("restored", "backup.json"))

        status = self.runner.invoke(cli, ["restore", "status", task["id"]], env=env)
        assert status.exit_code == 0
        assert "RESTORE_STARTED" in status.output
        assert "RESTORE_COMPLETED" in status.output

    def test_restore_start_unknown_backup(self, project):
        result = self.runner.invoke(
            cli, ["restore", "start", "backups/none/x.tar.gz", "restored"], env={"ENABLE_BACKUP_SYSTEM": "true"}
        )

        assert result.exit_code == 1
        assert "not found" in result.output

    def test_restore_start_disabled(self, project):
        result = self.runner.invoke(cli, ["restore", "start", "backups/none/x.tar.gz", "restored"])

        assert result.exit_code == 1
        assert "Backup system is disabled" in result.output

    def test_audit_query(self, project):
        self._run_backup()

        result = self.runner.invoke(cli, ["audit", "query", "--event-type", "BACKUP_COMPLETED"])

        assert result.exit_code == 0
        lines = [json.loads(line) for line in result.stdout.splitlines() if line.strip()]
        assert len(lines) == 1
        assert lines[0]["service"] == "backup-system"

    def test_audit_query_rejects_bad_timestamp(self, project):
        result = self.runner.invoke(cli, ["audit", "query", "--start", "yesterday"])

        assert result.exit_code == 2

    def test_audit_report(self, project):
        self._run_backup()

        result = self.runner.invoke(cli, ["audit", "report"])

        assert result.exit_code == 0
        report = json.loads(result.stdout)
        assert report["complianceScore"] == "low"
        assert "authentication" in report["missingEventTypes"]

    def test_audit_report_to_file(self, project):
        result = self.runner.invoke(cli, ["audit", "report", "--output", "report.json", "--fail-on-noncompliant"])

        assert result.exit_code == 2
        with open("report.json", encoding="utf-8") as f:
            assert json.load(f)["compliant"] is False

    def test_audit_cleanup(self, project):
        self._run_backup()

        result = self.runner.invoke(cli, ["audit", "cleanup", "--retention-days", "30"])

        assert result.exit_code == 0
        assert "older than 30 days" in result.output
