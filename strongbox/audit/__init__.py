"""Security audit trail and compliance reporting for Strongbox."""

from .compliance import REQUIRED_EVENT_TYPES, ComplianceReport, ComplianceScore
from .logger import AuditEventQuery, AuditLogger

__all__ = [
    "AuditEventQuery",
    "AuditLogger",
    "ComplianceReport",
    "ComplianceScore",
    "REQUIRED_EVENT_TYPES",
]
