"""Main CLI entry point for Strongbox.

This module provides the command-line interface for Strongbox, a backup,
restore and security-audit tool. It includes commands for running and
verifying backups, enforcing retention, restoring archives, querying the
audit trail and generating encryption keys.

Scheduling is left to cron or a systemd timer invoking ``strongbox backup run``.
"""

import asyncio
import base64
import json
import os
from typing import Any, Dict, Optional

import click

from strongbox import __version__
from strongbox.config import DEFAULT_CONFIG, ConfigManager
from strongbox.config.manager import CONFIG_FILENAME
from strongbox.security.encryption import CryptoContext
from strongbox.services import BackupServices, build_services
from strongbox.utils.errors import ErrorHandler
from strongbox.utils.logging import setup_logging
from strongbox.utils.timestamps import parse_timestamp


def _services(ctx: click.Context) -> BackupServices:
    """Load configuration and build the components once per invocation."""
    if "services" not in ctx.obj:
        config = ConfigManager(ctx.obj["config_path"]).load_config()
        ctx.obj["services"] = build_services(config)
    return ctx.obj["services"]


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _parse_bound(value: Optional[str], option: str):
    if value is None:
        return None
    parsed = parse_timestamp(value)
    if parsed is None:
        raise click.BadParameter(f"Not an ISO-8601 timestamp: {value}", param_hint=option)
    return parsed


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option(
    "--config",
    "config_path",
    type=click.Path(),
    help="Configuration file (default: ./strongbox.yml if present)",
)
@click.option("--log-file", help="Log to file in addition to console")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_path: Optional[str], log_file: Optional[str]) -> None:
    """Strongbox - encrypted backups, restores and security audit trail.

    Args:
        ctx: Click context object containing shared state
        verbose: Enable verbose output for detailed logging
        config_path: Optional path to strongbox.yml
        log_file: Optional path to log file for additional logging
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_path"] = config_path
    ctx.obj["log_file"] = log_file
    ctx.obj["error_handler"] = ErrorHandler(verbose=verbose)

    setup_logging(verbose=verbose, log_file=log_file)


@cli.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def backup(ctx: click.Context) -> None:
    """Create, list, verify and expire backups."""
    pass


@backup.command("run")
@click.option("--include", "include_paths", multiple=True, help="Path to back up (repeatable)")
@click.option("--exclude", "exclude_patterns", multiple=True, help="Glob pattern to skip (repeatable)")
@click.option("--encrypt/--no-encrypt", default=None, help="Encrypt the manifest data section")
@click.option("--compress/--no-compress", default=None, help="Pack the backup into a tar.gz archive")
@click.option("--user", "user_id", default=None, help="User recorded in the audit trail (default: system)")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def backup_run(ctx, include_paths, exclude_patterns, encrypt, compress, user_id, as_json):
    """Run a full backup."""
    options: Dict[str, Any] = {}
    if include_paths:
        options["include_paths"] = list(include_paths)
    if exclude_patterns:
        options["exclude_patterns"] = list(exclude_patterns)
    if encrypt is not None:
        options["encrypt"] = encrypt
    if compress is not None:
        options["compress"] = compress

    try:
        services = _services(ctx)
        result = asyncio.run(services.backup.run_full_backup(user_id or "system", options))
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Backup run")

    if as_json:
        _echo_json(result)
    elif result["success"]:
        click.echo(f"✓ Backup {result['timestamp']} stored at {result['backup_path']}")
        if result["backup_id"]:
            click.echo(f"  Backup id: {result['backup_id']}")
        for path in result["failed_paths"]:
            click.echo(f"  ⚠️  {path} could not be collected")
    else:
        click.echo(f"✗ Backup failed: {result['error']}", err=True)

    if not result["success"]:
        ctx.exit(1)


@backup.command("list")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def backup_list(ctx, as_json):
    """List stored backups, newest first."""
    try:
        backups = asyncio.run(_services(ctx).retention.list_backups())
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Listing backups")

    if as_json:
        _echo_json(backups)
        return

    if not backups:
        click.echo("No backups found")
        return

    for entry in backups:
        marker = "" if entry["has_manifest"] else "  (incomplete)"
        click.echo(
            f"{entry['timestamp']}  {entry['created_at'].isoformat()}  "
            f"{entry['size']} bytes  {entry['object_count']} objects{marker}"
        )


@backup.command("verify")
@click.argument("backup_id")
@click.pass_context
def backup_verify(ctx, backup_id):
    """Check that a stored backup manifest is intact."""
    try:
        result = asyncio.run(_services(ctx).retention.verify_backup_integrity(backup_id))
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Backup verification")

    if result["is_valid"]:
        click.echo(f"✓ Backup {result['backup_id']} is valid")
        if result["data_keys"] is None:
            click.echo("  Data section is encrypted; configure a key to inspect it")
        else:
            for key in result["data_keys"]:
                click.echo(f"  - {key}")
    else:
        click.echo(f"✗ Backup {result['backup_id']} is invalid: {result['error']}", err=True)
        ctx.exit(1)


@backup.command("cleanup")
@click.option("--retention-days", type=click.IntRange(min=0), help="Delete backups older than this many days")
@click.pass_context
def backup_cleanup(ctx, retention_days):
    """Delete backups older than the retention period."""
    try:
        result = asyncio.run(_services(ctx).retention.cleanup_old_backups(retention_days))
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Backup cleanup")

    if not result["success"]:
        click.echo(f"✗ Cleanup failed: {result['error']}", err=True)
        ctx.exit(1)

    click.echo(f"✓ Deleted {result['deleted_count']} backups older than {result['retention_days']} days")
    for timestamp in result["failed"]:
        click.echo(f"  ⚠️  Could not delete {timestamp}")


@cli.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def restore(ctx: click.Context) -> None:
    """Restore backups into a target directory."""
    pass


@restore.command("list")
@click.option("--json", "as_json", is_flag=True, help="Print the result as JSON")
@click.pass_context
def restore_list(ctx, as_json):
    """List restorable backup archives."""
    services = None
    try:
        services = _services(ctx)
        backups = asyncio.run(services.restore.list_available_backups())
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Listing restorable backups")

    if as_json:
        _echo_json(backups)
        return

    if not backups and not services.restore.enabled:
        click.echo("Backup system is disabled (set restore.enabled or ENABLE_BACKUP_SYSTEM=true)")
        return

    if not backups:
        click.echo("No restorable backups found")
        return

    for entry in backups:
        click.echo(f"{entry['id']}  {entry['size']} bytes  {entry['last_modified'].isoformat()}")


async def _restore_and_wait(services: BackupServices, backup_id: str, target: str, timeout: Optional[float]):
    started = await services.restore.restore_from_backup(backup_id, target)
    try:
        return await services.restore.wait_for(started["restore_id"], timeout=timeout)
    finally:
        await services.restore.shutdown()


@restore.command("start")
@click.argument("backup_id")
@click.argument("target_path", type=click.Path())
@click.option("--timeout", type=float, default=None, help="Seconds to wait for the restore to finish")
@click.option("--json", "as_json", is_flag=True, help="Print the final task state as JSON")
@click.pass_context
def restore_start(ctx, backup_id, target_path, timeout, as_json):
    """Restore BACKUP_ID into TARGET_PATH and wait for it to finish."""
    try:
        services = _services(ctx)
        task = asyncio.run(_restore_and_wait(services, backup_id, target_path, timeout))
    except asyncio.TimeoutError:
        click.echo(f"✗ Restore did not finish within {timeout}s", err=True)
        ctx.exit(1)
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Restore")

    if as_json:
        _echo_json(task)
    elif task["status"] == "completed":
        click.echo(f"✓ Restore {task['id']} completed into {task['target_path']}")
    else:
        click.echo(f"✗ Restore {task['id']} {task['status']}: {task['error']}", err=True)

    if task["status"] != "completed":
        ctx.exit(1)


@restore.command("status")
@click.argument("restore_id")
@click.pass_context
def restore_status(ctx, restore_id):
    """Show the audit trail of a restore task."""
    try:
        services = _services(ctx)
        events = [
            event
            for event in services.audit.query_events()
            if event.get("service") == "backup-restore" and restore_id in str(event.get("details", ""))
        ]
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Restore status")

    if not events:
        click.echo(f"No audit events found for {restore_id}")
        ctx.exit(1)

    for event in events:
        click.echo(f"{event['timestamp']}  {event['eventType']}  {event['status']}")


@cli.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def audit(ctx: click.Context) -> None:
    """Query and report on the security audit trail."""
    pass


@audit.command("query")
@click.option("--start", help="Earliest timestamp (ISO-8601)")
@click.option("--end", help="Latest timestamp (ISO-8601)")
@click.option("--event-type", help="Only events of this type")
@click.option("--service", help="Only events from this service")
@click.pass_context
def audit_query(ctx, start, end, event_type, service):
    """Print audit events as newline-delimited JSON."""
    start_dt = _parse_bound(start, "--start")
    end_dt = _parse_bound(end, "--end")

    try:
        events = _services(ctx).audit.query_events(start_dt, end_dt)
        for event in events:
            if event_type and event.get("eventType") != event_type:
                continue
            if service and event.get("service") != service:
                continue
            click.echo(json.dumps(event, default=str))
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Audit query")


@audit.command("report")
@click.option("--start", help="Report period start (ISO-8601)")
@click.option("--end", help="Report period end (ISO-8601)")
@click.option("--output", "-o", type=click.Path(), help="Write the report to a file instead of stdout")
@click.option("--fail-on-noncompliant", is_flag=True, help="Exit non-zero when the report is not compliant")
@click.pass_context
def audit_report(ctx, start, end, output, fail_on_noncompliant):
    """Generate an ISO 27001 logging compliance report."""
    start_dt = _parse_bound(start, "--start")
    end_dt = _parse_bound(end, "--end")

    try:
        report = _services(ctx).audit.generate_compliance_report(start_dt, end_dt)
        payload = json.dumps(report.to_dict(), indent=2)
        if output:
            with open(output, "w", encoding="utf-8") as f:
                f.write(payload + "\n")
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Compliance report")

    if output:
        click.echo(f"✓ Report written to {output}")
        click.echo(f"  Compliance score: {report.compliance_score.value}")
    else:
        click.echo(payload)

    if fail_on_noncompliant and not report.compliant:
        ctx.exit(2)


@audit.command("cleanup")
@click.option("--retention-days", type=click.IntRange(min=0), help="Drop events older than this many days")
@click.pass_context
def audit_cleanup(ctx, retention_days):
    """Remove audit events older than the retention period."""
    try:
        services = _services(ctx)
        if retention_days is None:
            retention_days = services.config["audit"]["retention_days"]
        cleaned = services.audit.cleanup_old_events(retention_days)
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Audit cleanup")

    if not cleaned:
        click.echo("✗ Audit cleanup failed; see logs for details", err=True)
        ctx.exit(1)

    click.echo(f"✓ Removed audit events older than {retention_days} days")


@cli.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def config(ctx: click.Context) -> None:
    """Create and check strongbox.yml."""
    pass


@config.command("init")
@click.option("--force", is_flag=True, help="Overwrite an existing configuration file")
@click.pass_context
def config_init(ctx, force):
    """Write a configuration file holding the default settings."""
    target = ctx.obj["config_path"] or os.path.join(os.getcwd(), CONFIG_FILENAME)
    if os.path.exists(target) and not force:
        click.echo(f"✗ {target} already exists (use --force to overwrite)", err=True)
        ctx.exit(1)

    try:
        written = ConfigManager(target).save_config(DEFAULT_CONFIG)
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Writing configuration")

    click.echo(f"✓ Configuration written to {written}")


@config.command("validate")
@click.pass_context
def config_validate(ctx):
    """Validate the configuration file together with environment overrides."""
    try:
        ConfigManager(ctx.obj["config_path"]).load_config()
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Configuration validation")

    click.echo("✓ Configuration is valid")


@cli.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def keys(ctx: click.Context) -> None:
    """Encryption key management."""
    pass


@keys.command("generate")
@click.option("--format", "key_format", type=click.Choice(["hex", "base64"]), default="hex", help="Key encoding")
def keys_generate(key_format):
    """Generate a new 256-bit encryption key."""
    context = CryptoContext.generate()
    if key_format == "hex":
        click.echo(context.key_hex)
    else:
        click.echo(base64.b64encode(bytes.fromhex(context.key_hex)).decode("ascii"))


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
