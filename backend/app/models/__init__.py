"""CI Compliance Engine - Data Models"""
from .ci_report import (
    # Field groups
    EMISSION_FIELDS, EDITABLE_FIELDS, DERIVED_FIELDS, WORKFLOW_FIELDS,
    # Domain objects
    Actor, CIReport, AuditLogEntry,
)
from .db_models import (
    UserRole, ReportStatus, Methodology, DataQualityLevel,
    VerificationLevel, FeedstockCategory, AuditAction,
)

__all__ = [
    "EMISSION_FIELDS", "EDITABLE_FIELDS", "DERIVED_FIELDS", "WORKFLOW_FIELDS",
    "Actor", "CIReport", "AuditLogEntry",
    "UserRole", "ReportStatus", "Methodology", "DataQualityLevel",
    "VerificationLevel", "FeedstockCategory", "AuditAction",
]
