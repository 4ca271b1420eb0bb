"""Append-only security audit log."""

import json
import logging
import os
import tempfile
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, Optional

from ..security.encryption import secure_hash
from ..utils.timestamps import parse_timestamp, utc_now
from .compliance import ComplianceReport, build_compliance_report

DEFAULT_LOG_FILE = "security-audit.log"
REQUIRED_FIELDS = ("eventType", "status", "service")


class AuditEventQuery:
    """
    Lazy, restartable view over the audit store.

    Every iteration re-reads the log file, so the same query object can be
    iterated again after new events have been appended.
    """

    def __init__(self, log_path: str, start: Optional[datetime] = None, end: Optional[datetime] = None):
        self.log_path = log_path
        self.start = start
        self.end = end

    def __iter__(self) -> Iterator[Dict[str, Any]]:
        if not os.path.exists(self.log_path):
            return

        with open(self.log_path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except ValueError:
                    continue
                if not isinstance(event, dict):
                    continue

                moment = parse_timestamp(event.get("timestamp"))
                if moment is None:
                    continue
                if self.start is not None and moment < self.start:
                    continue
                if self.end is not None and moment > self.end:
                    continue
                yield event


class AuditLogger:
    """Writes structured security events and derives compliance reports from them."""

    def __init__(
        self,
        log_directory: str = "logs",
        log_file: str = DEFAULT_LOG_FILE,
        environment: str = "development",
        application_name: str = "strongbox",
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize audit logger.

        Args:
            log_directory: Directory holding the audit store
            log_file: File name of the newline-delimited JSON store
            environment: Environment tag added to every event
            application_name: Application tag added to every event
            logger: Fallback diagnostic channel for write failures
        """
        self.log_directory = log_directory
        self.log_path = os.path.join(log_directory, log_file)
        self.environment = environment
        self.application_name = application_name
        self.logger = logger or logging.getLogger(__name__)

    def log_event(self, event: Dict[str, Any]) -> bool:
        """
        Enrich and append one event to the store.

        Returns:
            bool: False if the event could not be written; never raises for I/O errors

        Raises:
            ValueError: If eventType, status or service is missing
        """
        missing = [name for name in REQUIRED_FIELDS if not event or not event.get(name)]
        if missing:
            raise ValueError(f"Audit event is missing required fields: {', '.join(missing)}")

        enriched = dict(event)
        timestamp = enriched.get("timestamp")
        if isinstance(timestamp, datetime):
            timestamp = timestamp.isoformat()
        enriched["timestamp"] = timestamp or utc_now().isoformat()
        enriched.setdefault("details", None)
        enriched["environment"] = self.environment
        enriched["applicationName"] = self.application_name
        enriched["eventId"] = secure_hash(f"{enriched['eventType']}-{enriched['service']}-{enriched['timestamp']}")

        try:
            line = json.dumps(enriched, default=str)
            os.makedirs(self.log_directory, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except (OSError, TypeError, ValueError) as e:
            self.logger.error(
                "Security event logging failed: %s",
                e,
                extra={"audit_event": enriched},
            )
            return False

        self.logger.debug("[SECURITY AUDIT] %s %s %s", enriched["eventType"], enriched["status"], enriched["service"])
        return True

    def query_events(self, start: Optional[Any] = None, end: Optional[Any] = None) -> AuditEventQuery:
        """Return events with start <= timestamp <= end; omitted bounds are open."""
        return AuditEventQuery(self.log_path, parse_timestamp(start), parse_timestamp(end))

    def generate_compliance_report(self, start: Optional[Any] = None, end: Optional[Any] = None) -> ComplianceReport:
        """Build a compliance report over the events in the window."""
        return build_compliance_report(self.query_events(start, end), start, end)

    def cleanup_old_events(self, retention_days: int = 90) -> bool:
        """
        Rewrite the store keeping only events newer than the retention window.

        Returns:
            bool: True if the store was rewritten
        """
        cutoff = utc_now() - timedelta(days=retention_days)

        try:
            events = list(self.query_events())
            kept = [event for event in events if parse_timestamp(event["timestamp"]) >= cutoff]

            os.makedirs(self.log_directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=self.log_directory, prefix=".audit-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    for event in kept:
                        f.write(json.dumps(event, default=str) + "\n")
                os.replace(temp_path, self.log_path)
            except BaseException:
                if os.path.exists(temp_path):
                    os.remove(temp_path)
                raise
        except OSError as e:
            self.logger.error("Audit log cleanup failed: %s", e)
            return False

        self.log_event(
            {
                "eventType": "log_cleanup",
                "status": "success",
                "service": "audit_logger",
                "details": (
                    f"Cleaned up logs older than {retention_days} days. "
                    f"Kept {len(kept)} of {len(events)} logs."
                ),
            }
        )
        return True
