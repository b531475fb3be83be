"""
CI Compliance Engine - Domain Models

Plain dataclasses shared by the validator, engine, state machine,
authorization gate and audit recorder. Persistence maps these to the
ORM rows in db_models; nothing upstream of the repository touches a session.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from .db_models import (
    AuditAction,
    DataQualityLevel,
    Methodology,
    ReportStatus,
    UserRole,
    VerificationLevel,
)


# =============================================================================
# FIELD GROUPS
# =============================================================================

SCOPE1_FIELDS = ("scope1_cultivation", "scope1_processing", "scope1_transport")
SCOPE2_FIELDS = ("scope2_electricity", "scope2_steam_heat")
SCOPE3_FIELDS = (
    "scope3_upstream_inputs",
    "scope3_land_use_change",
    "scope3_distribution",
    "scope3_end_of_life",
)
EMISSION_FIELDS = SCOPE1_FIELDS + SCOPE2_FIELDS + SCOPE3_FIELDS

# Fields whose change forces a recalculation
CALCULATION_FIELDS = EMISSION_FIELDS + ("methodology", "data_quality_level", "is_new_installation")

# Fields a supplier may set on a draft
EDITABLE_FIELDS = CALCULATION_FIELDS + (
    "reporting_period_start",
    "reporting_period_end",
    "reference_year",
    "methodology_version",
    "calculation_notes",
    "supporting_documents",
)

# Written only by the calculation engine
DERIVED_FIELDS = (
    "scope1_total",
    "scope2_total",
    "scope3_total",
    "total_ci_value",
    "ci_score",
    "ci_unit",
    "uncertainty_range_low",
    "uncertainty_range_high",
    "ci_rating",
    "ghg_savings_percentage",
    "compliance_threshold",
    "meets_compliance_threshold",
)

# Written only by the state machine
WORKFLOW_FIELDS = (
    "status",
    "verification_level",
    "submitted_at",
    "assigned_auditor_id",
    "verified_by",
    "verified_at",
    "expiry_date",
    "auditor_notes",
    "rejection_reason",
)


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the DateTime columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _iso(value):
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


# =============================================================================
# ACTOR
# =============================================================================

@dataclass(frozen=True)
class Actor:
    """Who is asking. supplier_id is set only for supplier accounts."""
    user_id: str
    role: UserRole
    supplier_id: Optional[str] = None

    @classmethod
    def system(cls) -> "Actor":
        return cls(user_id="system", role=UserRole.SYSTEM)


# =============================================================================
# CI REPORT
# =============================================================================

@dataclass
class CIReport:
    """Working copy of a CI report as read from (or written to) a store."""
    report_id: str
    supplier_id: str
    feedstock_id: str
    pk: Optional[int] = None
    version: int = 1

    reporting_period_start: Optional[date] = None
    reporting_period_end: Optional[date] = None
    reference_year: Optional[int] = None

    methodology: Optional[Methodology] = None
    methodology_version: Optional[str] = None
    data_quality_level: DataQualityLevel = DataQualityLevel.DEFAULT_VALUE
    is_new_installation: bool = False

    emissions: Dict[str, Optional[float]] = field(
        default_factory=lambda: {name: None for name in EMISSION_FIELDS}
    )

    # Derived
    scope1_total: Optional[float] = None
    scope2_total: Optional[float] = None
    scope3_total: Optional[float] = None
    total_ci_value: Optional[float] = None
    ci_score: Optional[float] = None
    ci_unit: Optional[str] = None
    uncertainty_range_low: Optional[float] = None
    uncertainty_range_high: Optional[float] = None
    ci_rating: Optional[str] = None
    ghg_savings_percentage: Optional[float] = None
    compliance_threshold: Optional[float] = None
    meets_compliance_threshold: Optional[bool] = None

    # Workflow
    status: ReportStatus = ReportStatus.DRAFT
    verification_level: Optional[VerificationLevel] = None
    submitted_at: Optional[datetime] = None
    assigned_auditor_id: Optional[str] = None
    verified_by: Optional[str] = None
    verified_at: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    auditor_notes: Optional[str] = None
    rejection_reason: Optional[str] = None

    calculation_notes: Optional[str] = None
    supporting_documents: List[str] = field(default_factory=list)

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def emission_values(self) -> Dict[str, float]:
        """All nine categories with absent values read as zero."""
        return {name: float(self.emissions.get(name) or 0.0) for name in EMISSION_FIELDS}

    def provided_categories(self) -> List[str]:
        return [name for name in EMISSION_FIELDS if self.emissions.get(name) is not None]

    def apply_calculation(self, result) -> None:
        """Copy every derived value from a CICalculationResult."""
        for name in DERIVED_FIELDS:
            setattr(self, name, getattr(result, name))

    def clear_calculation(self) -> None:
        for name in DERIVED_FIELDS:
            setattr(self, name, None)

    def derived_snapshot(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in DERIVED_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "report_id": self.report_id,
            "supplier_id": self.supplier_id,
            "feedstock_id": self.feedstock_id,
            "version": self.version,
            "reporting_period_start": _iso(self.reporting_period_start),
            "reporting_period_end": _iso(self.reporting_period_end),
            "reference_year": self.reference_year,
            "methodology": self.methodology.value if self.methodology else None,
            "methodology_version": self.methodology_version,
            "data_quality_level": self.data_quality_level.value,
            "is_new_installation": self.is_new_installation,
            "calculation_notes": self.calculation_notes,
            "supporting_documents": list(self.supporting_documents),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        data.update({name: self.emissions.get(name) for name in EMISSION_FIELDS})
        data.update(self.derived_snapshot())
        for name in WORKFLOW_FIELDS:
            value = getattr(self, name)
            data[name] = value.value if hasattr(value, "value") else _iso(value)
        return data


# =============================================================================
# AUDIT LOG ENTRY
# =============================================================================

@dataclass(frozen=True)
class AuditLogEntry:
    """One immutable line of a report's audit trail."""
    report_id: str
    actor_id: str
    actor_role: str
    action: AuditAction
    created_at: datetime
    previous_status: Optional[ReportStatus] = None
    new_status: Optional[ReportStatus] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "report_id": self.report_id,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "action": self.action.value,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "new_status": self.new_status.value if self.new_status else None,
            "metadata": dict(self.metadata),
            "timestamp": self.created_at.isoformat(),
        }
