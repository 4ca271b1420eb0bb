"""Tests for the security audit logger."""

import json
import os
from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest

from strongbox.audit.logger import AuditLogger
from strongbox.security.encryption import secure_hash
from strongbox.utils.timestamps import utc_now


def _read_lines(audit_logger):
    with open(audit_logger.log_path, encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


class TestAuditLogger:
    """Test event writing and enrichment."""

    def test_log_event_enriches_and_appends(self, audit_logger):
        assert audit_logger.log_event({"eventType": "authentication", "status": "success", "service": "api"})

        events = _read_lines(audit_logger)
        assert len(events) == 1
        event = events[0]
        assert event["environment"] == "test"
        assert event["applicationName"] == "strongbox"
        assert event["details"] is None
        assert event["eventId"] == secure_hash(f"authentication-api-{event['timestamp']}")

    def test_log_event_keeps_extra_fields(self, audit_logger):
        audit_logger.log_event(
            {"eventType": "BACKUP_STARTED", "status": "info", "service": "backup-system", "userId": "alice"}
        )

        assert _read_lines(audit_logger)[0]["userId"] == "alice"

    def test_log_event_appends_one_line_per_event(self, audit_logger):
        for index in range(3):
            audit_logger.log_event({"eventType": "data_access", "status": "success", "service": f"svc-{index}"})

        assert len(_read_lines(audit_logger)) == 3

    @pytest.mark.parametrize("missing", ["eventType", "status", "service"])
    def test_log_event_requires_fields(self, audit_logger, missing):
        event = {"eventType": "authentication", "status": "success", "service": "api"}
        del event[missing]

        with pytest.raises(ValueError):
            audit_logger.log_event(event)

    def test_write_failure_is_not_fatal(self, temp_directory):
        """A store that cannot be written reports False through the fallback logger."""
        fallback = MagicMock()
        audit_logger = AuditLogger(log_directory=os.path.join(temp_directory, "logs"), logger=fallback)

        with patch("builtins.open", side_effect=PermissionError("read-only")):
            result = audit_logger.log_event({"eventType": "authentication", "status": "success", "service": "api"})

        assert result is False
        fallback.error.assert_called_once()


class TestAuditQueries:
    """Test querying, reports and retention of the store."""

    def _write(self, audit_logger, event_type, age_days, status="success"):
        audit_logger.log_event(
            {
                "eventType": event_type,
                "status": status,
                "service": "api",
                "timestamp": (utc_now() - timedelta(days=age_days)).isoformat(),
            }
        )

    def test_query_events_bounds_are_inclusive(self, audit_logger):
        moment = utc_now() - timedelta(days=1)
        audit_logger.log_event(
            {"eventType": "authentication", "status": "success", "service": "api", "timestamp": moment.isoformat()}
        )

        assert len(list(audit_logger.query_events(moment, moment))) == 1
        assert list(audit_logger.query_events(moment + timedelta(seconds=1))) == []
        assert list(audit_logger.query_events(end=moment - timedelta(seconds=1))) == []

    def test_query_is_restartable(self, audit_logger):
        query = audit_logger.query_events()
        assert list(query) == []

        self._write(audit_logger, "authentication", 0)

        assert len(list(query)) == 1
        assert len(list(query)) == 1

    def test_query_skips_malformed_lines(self, audit_logger):
        self._write(audit_logger, "authentication", 0)
        with open(audit_logger.log_path, "a", encoding="utf-8") as f:
            f.write("not json\n")
            f.write(json.dumps({"eventType": "no-timestamp"}) + "\n")
        self._write(audit_logger, "authorization", 0)

        assert [event["eventType"] for event in audit_logger.query_events()] == ["authentication", "authorization"]

    def test_cleanup_old_events(self, audit_logger):
        self._write(audit_logger, "authentication", 120)
        self._write(audit_logger, "authorization", 100)
        self._write(audit_logger, "data_access", 10)

        assert audit_logger.cleanup_old_events(retention_days=90)

        events = list(audit_logger.query_events())
        assert [event["eventType"] for event in events] == ["data_access", "log_cleanup"]
        assert "Kept 1 of 3 logs" in events[-1]["details"]
        assert not [name for name in os.listdir(audit_logger.log_directory) if name.endswith(".tmp")]

    def test_cleanup_failure_returns_false(self, audit_logger):
        self._write(audit_logger, "authentication", 0)

        with patch("strongbox.audit.logger.os.replace", side_effect=OSError("disk full")):
            assert audit_logger.cleanup_old_events() is False

        assert len(list(audit_logger.query_events())) == 1

    def test_generate_compliance_report(self, audit_logger):
        self._write(audit_logger, "authentication", 0)
        self._write(audit_logger, "BACKUP_FAILED", 0, status="failure")

        report = audit_logger.generate_compliance_report()

        assert report.total_events == 2
        assert report.event_types == {"authentication": 1, "BACKUP_FAILED": 1}
        assert not report.compliant
        assert "backup" not in report.missing_event_types
