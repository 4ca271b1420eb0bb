"""ISO 27001 oriented compliance scoring over audit events."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from ..utils.timestamps import parse_timestamp, utc_now

# Event categories an ISO 27001 (A.12.4) logging programme is expected to cover
REQUIRED_EVENT_TYPES = [
    "authentication",
    "authorization",
    "data_access",
    "configuration_change",
    "security_alert",
    "backup",
    "restore",
    "log_cleanup",
]

SUCCESS_STATUSES = {"success"}
FAILURE_STATUSES = {"failure", "failed", "error", "warning"}


class ComplianceScore(Enum):
    """Coarse rating of audit log coverage."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class ComplianceReport:
    """Compliance assessment plus the summary it was derived from."""

    compliant: bool
    compliance_score: ComplianceScore
    missing_event_types: List[str]
    recommendations: List[str]
    total_events: int = 0
    event_types: Dict[str, int] = field(default_factory=dict)
    services: Dict[str, int] = field(default_factory=dict)
    statuses: Dict[str, int] = field(default_factory=dict)
    timeline: List[Dict[str, Any]] = field(default_factory=list)
    period_start: Optional[str] = None
    period_end: Optional[str] = None
    generated_at: str = field(default_factory=lambda: utc_now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-serializable form consumed by dashboards."""
        return {
            "reportGeneratedAt": self.generated_at,
            "period": {
                "startDate": self.period_start or "beginning",
                "endDate": self.period_end or "now",
            },
            "summary": {
                "totalEvents": self.total_events,
                "eventTypes": dict(self.event_types),
                "services": dict(self.services),
                "statuses": dict(self.statuses),
            },
            "timeline": list(self.timeline),
            "compliant": self.compliant,
            "complianceScore": self.compliance_score.value,
            "missingEventTypes": list(self.missing_event_types),
            "recommendations": list(self.recommendations),
        }


def event_category(event_type: str, required_types: Iterable[str] = REQUIRED_EVENT_TYPES) -> Optional[str]:
    """
    Map an event type onto the required category it satisfies.

    BACKUP_COMPLETED -> backup, authentication -> authentication,
    RESTORE_CANCELLED -> restore. Longest match wins so that
    data_access is not swallowed by a shorter prefix.
    """
    normalized = (event_type or "").lower()
    best = None
    for required in required_types:
        if normalized == required or normalized.startswith(f"{required}_"):
            if best is None or len(required) > len(best):
                best = required
    return best


def score_compliance(
    event_types: Iterable[str],
    statuses: Iterable[str],
    required_types: Iterable[str] = REQUIRED_EVENT_TYPES,
) -> Dict[str, Any]:
    """Score compliance from the event types and statuses present in a window."""
    required = list(required_types)
    present = {event_category(event_type, required) for event_type in event_types}
    missing = [required_type for required_type in required if required_type not in present]

    normalized_statuses = {str(status).lower() for status in statuses}
    has_success = bool(normalized_statuses & SUCCESS_STATUSES)
    has_failure = bool(normalized_statuses & FAILURE_STATUSES)

    if not missing and has_success and has_failure:
        score = ComplianceScore.HIGH
    elif len(missing) <= 2:
        score = ComplianceScore.MEDIUM
    else:
        score = ComplianceScore.LOW

    return {
        "compliant": not missing,
        "compliance_score": score,
        "missing_event_types": missing,
        "recommendations": [f"Add audit logging for '{missing_type}' events" for missing_type in missing],
    }


def build_compliance_report(
    events: Iterable[Dict[str, Any]],
    start: Optional[Any] = None,
    end: Optional[Any] = None,
    required_types: Iterable[str] = REQUIRED_EVENT_TYPES,
) -> ComplianceReport:
    """Group events by type, service and status, build a timeline, and score it."""
    event_types: Dict[str, int] = {}
    services: Dict[str, int] = {}
    statuses: Dict[str, int] = {}
    timeline = []

    for event in events:
        event_type = event.get("eventType", "unknown")
        service = event.get("service", "unknown")
        status = event.get("status", "unknown")

        event_types[event_type] = event_types.get(event_type, 0) + 1
        services[service] = services.get(service, 0) + 1
        statuses[status] = statuses.get(status, 0) + 1

        timeline.append(
            {
                "timestamp": event.get("timestamp"),
                "eventType": event_type,
                "service": service,
                "status": status,
            }
        )

    timeline.sort(key=lambda entry: parse_timestamp(entry["timestamp"]) or utc_now())

    scored = score_compliance(event_types.keys(), statuses.keys(), required_types)

    start_dt = parse_timestamp(start)
    end_dt = parse_timestamp(end)

    return ComplianceReport(
        total_events=len(timeline),
        event_types=event_types,
        services=services,
        statuses=statuses,
        timeline=timeline,
        period_start=start_dt.isoformat() if start_dt else None,
        period_end=end_dt.isoformat() if end_dt else None,
        **scored,
    )
