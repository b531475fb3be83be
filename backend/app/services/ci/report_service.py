"""
CI Report Service

Main orchestrator for the CI compliance engine.
Sequences Authorization Gate → Validator → Calculation Engine →
State Machine → Audit Recorder for every external request.

Key responsibilities:
- Create / read / update / delete draft reports
- Workflow transitions (submit, claim for review, decide)
- Expiry sweep (system-only)
- Certificates for verified reports (read-only)

Every change and its audit entry share one unit of work. Denied mutating
attempts are recorded afterwards in a unit of their own.
"""
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import uuid4

from app.models.ci_report import (
    CALCULATION_FIELDS,
    EMISSION_FIELDS,
    Actor,
    AuditLogEntry,
    CIReport,
    utcnow,
)
from app.models.db_models import AuditAction, Methodology, ReportStatus
from .audit_log import AuditLogRecorder, reconcile
from .authorization import Operation, authorize, authorize_create, permitted_operations
from .calculator import calculate, fill_missing_with_defaults
from .constants import DEFAULT_VALIDITY_DAYS, MAX_VALIDITY_DAYS, MethodologyProfile, resolve_profiles
from .errors import (
    ComputationError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
)
from .repository import EXPIRABLE_STATUSES, UnitOfWork
from .state_machine import Decision, ReportStateMachine, TransitionResult
from .validator import check_reporting_period, validate_update

logger = logging.getLogger(__name__)
alert_logger = logging.getLogger("app.alerts")

DENIALS = (ForbiddenError, InvalidStateError, ConflictError)


def new_report_id() -> str:
    return f"CI-{uuid4().hex[:12].upper()}"


@dataclass
class ReportDetails:
    """Read model: the report, its trail, and what the reader may do next."""
    report: CIReport
    history: List[AuditLogEntry]
    permitted_operations: List[str]
    audit_consistent: bool
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        data = self.report.to_dict()
        data["audit_logs"] = [entry.to_dict() for entry in self.history]
        data["permitted_operations"] = list(self.permitted_operations)
        data["audit_consistent"] = self.audit_consistent
        if self.warnings:
            data["warnings"] = list(self.warnings)
        return data


class CIReportService:
    """
    Facade over the CI engine.

    Args:
        uow_factory: returns a fresh UnitOfWork per call
        profiles: methodology configuration (defaults to DEFAULT_PROFILES)
        clock: returns the current naive UTC time
        validity_days: default validity window for decisions
    """

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        profiles: Optional[Mapping[Methodology, MethodologyProfile]] = None,
        clock: Callable[[], datetime] = utcnow,
        validity_days: Optional[int] = None,
    ):
        self.uow_factory = uow_factory
        self.profiles = resolve_profiles(profiles)
        self.clock = clock
        if validity_days is None:
            raw = os.getenv("CI_REPORT_VALIDITY_DAYS", str(DEFAULT_VALIDITY_DAYS))
            try:
                validity_days = int(raw)
            except ValueError:
                raise ValueError(f"CI_REPORT_VALIDITY_DAYS must be a whole number of days, got '{raw}'")
        if (isinstance(validity_days, bool) or not isinstance(validity_days, int)
                or not 1 <= validity_days <= MAX_VALIDITY_DAYS):
            raise ValueError(f"validity_days must be between 1 and {MAX_VALIDITY_DAYS}, got {validity_days!r}")
        self.state_machine = ReportStateMachine(self.profiles, validity_days)

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _recorder(self, uow: UnitOfWork) -> AuditLogRecorder:
        return AuditLogRecorder(uow.audit_log, self.clock)

    @staticmethod
    def _load(uow: UnitOfWork, report_id: str) -> CIReport:
        report = uow.reports.get(report_id)
        if report is None:
            raise NotFoundError(f"CI report not found: {report_id}")
        return report

    @staticmethod
    def _merge(report: CIReport, changes: Mapping[str, Any]) -> None:
        for name, value in changes.items():
            if name in EMISSION_FIELDS:
                report.emissions[name] = value
            else:
                setattr(report, name, value)

    def _recalculate(self, report: CIReport) -> None:
        """Refresh derived values; without a methodology there is nothing to derive."""
        if report.methodology is None:
            report.clear_calculation()
            return
        try:
            result = calculate(
                report.emissions,
                report.methodology,
                report.data_quality_level,
                profiles=self.profiles,
                is_new_installation=report.is_new_installation,
            )
        except ComputationError as e:
            alert_logger.error(f"CI engine defect on report {report.report_id}: {e}")
            raise
        report.apply_calculation(result)

    def _record_denial(
        self,
        report_id: str,
        actor: Actor,
        action: AuditAction,
        error: Exception,
        status: Optional[ReportStatus],
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        metadata = {"error": error.code, "reason": error.message}
        metadata.update(extra or {})
        with self.uow_factory() as uow:
            self._recorder(uow).record(
                report_id, actor, action, metadata,
                previous_status=status, new_status=status,
            )
            uow.commit()
        logger.warning(f"Denied {action.value} on {report_id} by {actor.user_id}: {error.message}")

    def _guarded(
        self,
        actor: Actor,
        report_id: str,
        denial_action: AuditAction,
        work: Callable[[UnitOfWork, CIReport], Any],
        extra: Optional[Dict[str, Any]] = None,
    ):
        """Run work on a loaded report in one unit of work; audit any denial."""
        seen: Dict[str, ReportStatus] = {}
        try:
            with self.uow_factory() as uow:
                report = self._load(uow, report_id)
                seen["status"] = report.status
                result = work(uow, report)
                uow.commit()
                return result
        except DENIALS as e:
            self._record_denial(report_id, actor, denial_action, e, seen.get("status"), extra)
            raise

    def _persist_transition(self, uow: UnitOfWork, report: CIReport, expected_version: int,
                            actor: Actor, result: TransitionResult) -> CIReport:
        uow.reports.update(report, expected_version)
        self._recorder(uow).record(
            report.report_id, actor, result.audit_action, result.metadata,
            previous_status=result.previous_status, new_status=result.new_status,
            report_pk=report.pk,
        )
        logger.info(
            f"Report {report.report_id}: {result.previous_status.value} -> "
            f"{result.new_status.value} by {actor.user_id}"
        )
        return report

    # =========================================================================
    # CREATE
    # =========================================================================

    def create_report(
        self,
        actor: Actor,
        feedstock_id: str,
        fields: Optional[Mapping[str, Any]] = None,
        fill_defaults: bool = False,
    ) -> ReportDetails:
        """
        Open a new draft for one of the supplier's feedstocks.

        fill_defaults takes industry default factors for every emission
        category the supplier did not provide.
        """
        with self.uow_factory() as uow:
            feedstock = uow.references.feedstock(feedstock_id)
            if feedstock is None:
                raise NotFoundError(f"Feedstock not found: {feedstock_id}")
            authorize_create(actor, feedstock.supplier_id)

            changes, warnings = validate_update(fields) if fields else ({}, [])
            report = CIReport(
                report_id=new_report_id(),
                supplier_id=feedstock.supplier_id,
                feedstock_id=feedstock_id,
            )
            self._merge(report, changes)
            check_reporting_period(report.reporting_period_start, report.reporting_period_end)
            if fill_defaults:
                report.emissions = fill_missing_with_defaults(
                    report.emissions, feedstock.category, report.data_quality_level
                )
            self._recalculate(report)

            uow.reports.add(report)
            entry = self._recorder(uow).record(
                report.report_id, actor, AuditAction.CREATED,
                {"fields": sorted(changes), "defaults_applied": fill_defaults},
                new_status=ReportStatus.DRAFT, report_pk=report.pk,
            )
            uow.commit()

        logger.info(f"Created CI report {report.report_id} for feedstock {feedstock_id}")
        return ReportDetails(
            report=report,
            history=[entry],
            permitted_operations=sorted(op.value for op in permitted_operations(actor, report)),
            audit_consistent=True,
            warnings=warnings,
        )

    # =========================================================================
    # READ
    # =========================================================================

    def get_report(self, actor: Actor, report_id: str) -> ReportDetails:
        with self.uow_factory() as uow:
            report = self._load(uow, report_id)
            authorize(actor, report, Operation.VIEW)
            history = self._recorder(uow).history(report_id)

        consistent = reconcile(report, history)
        if not consistent:
            alert_logger.error(f"Audit trail of {report_id} does not reconcile with status {report.status.value}")
        return ReportDetails(
            report=report,
            history=history,
            permitted_operations=sorted(op.value for op in permitted_operations(actor, report)),
            audit_consistent=consistent,
        )

    def history(self, actor: Actor, report_id: str) -> List[AuditLogEntry]:
        return self.get_report(actor, report_id).history

    # =========================================================================
    # UPDATE
    # =========================================================================

    def update_report(self, actor: Actor, report_id: str, payload: Mapping[str, Any]) -> ReportDetails:
        """
        Merge new values into a draft and recalculate if any input changed.
        Field update and derived values are persisted together.
        """
        warnings: List[str] = []

        def work(uow: UnitOfWork, report: CIReport) -> CIReport:
            authorize(actor, report, Operation.EDIT)
            changes, found = validate_update(payload)
            warnings.extend(found)

            expected_version = report.version
            self._merge(report, changes)
            check_reporting_period(report.reporting_period_start, report.reporting_period_end)
            recalculated = any(name in CALCULATION_FIELDS for name in changes)
            if recalculated:
                self._recalculate(report)

            uow.reports.update(report, expected_version)
            self._recorder(uow).record(
                report.report_id, actor, AuditAction.UPDATED,
                {"updated_fields": sorted(changes), "recalculated": recalculated},
                previous_status=report.status, new_status=report.status,
                report_pk=report.pk,
            )
            return report

        report = self._guarded(actor, report_id, AuditAction.UPDATE_DENIED, work)
        logger.info(f"Updated CI report {report_id} (version {report.version})")
        details = self.get_report(actor, report_id)
        details.warnings = warnings
        return details

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def submit_report(self, actor: Actor, report_id: str) -> CIReport:
        def work(uow: UnitOfWork, report: CIReport) -> CIReport:
            authorize(actor, report, Operation.SUBMIT)
            expected_version = report.version
            result = self.state_machine.submit(report, actor, self.clock())
            return self._persist_transition(uow, report, expected_version, actor, result)

        return self._guarded(actor, report_id, AuditAction.TRANSITION_DENIED, work, {"attempted": "submit"})

    def claim_report(self, actor: Actor, report_id: str) -> CIReport:
        """Self-assign a submitted report. At most one concurrent claim wins."""
        def work(uow: UnitOfWork, report: CIReport) -> CIReport:
            authorize(actor, report, Operation.CLAIM)
            expected_version = report.version
            result = self.state_machine.claim(report, actor, self.clock())
            return self._persist_transition(uow, report, expected_version, actor, result)

        return self._guarded(actor, report_id, AuditAction.TRANSITION_DENIED, work, {"attempted": "claim"})

    def decide_report(
        self,
        actor: Actor,
        report_id: str,
        decision: Decision,
        notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
        validity_days: Optional[int] = None,
    ) -> CIReport:
        def work(uow: UnitOfWork, report: CIReport) -> CIReport:
            authorize(actor, report, Operation.DECIDE)
            expected_version = report.version
            result = self.state_machine.decide(
                report, actor, decision, self.clock(),
                notes=notes, rejection_reason=rejection_reason, validity_days=validity_days,
            )
            return self._persist_transition(uow, report, expected_version, actor, result)

        return self._guarded(actor, report_id, AuditAction.TRANSITION_DENIED, work, {"attempted": "decide"})

    # =========================================================================
    # DELETE
    # =========================================================================

    def delete_report(self, actor: Actor, report_id: str) -> None:
        """Hard delete a draft. The audit trail is kept."""
        def work(uow: UnitOfWork, report: CIReport) -> None:
            authorize(actor, report, Operation.DELETE)
            uow.reports.delete(report, report.version)
            self._recorder(uow).record(
                report.report_id, actor, AuditAction.DELETED,
                {"feedstock_id": report.feedstock_id},
                previous_status=report.status, new_status=None,
            )

        self._guarded(actor, report_id, AuditAction.DELETION_ATTEMPTED, work)
        logger.info(f"Deleted draft CI report {report_id}")

    # =========================================================================
    # EXPIRY SWEEP (SYSTEM-ONLY)
    # =========================================================================

    def expire_reports(self, now: Optional[datetime] = None) -> List[str]:
        """
        Move verified/rejected reports past their validity window to expired.
        Returns the ids that were expired.
        """
        now = now or self.clock()
        system = Actor.system()
        with self.uow_factory() as uow:
            due = [r.report_id for r in uow.reports.list_expirable(now)]

        expired = []
        for report_id in due:
            try:
                with self.uow_factory() as uow:
                    report = uow.reports.get(report_id)
                    if report is None or report.status not in EXPIRABLE_STATUSES:
                        continue
                    expected_version = report.version
                    result = self.state_machine.expire(report, system, now)
                    self._persist_transition(uow, report, expected_version, system, result)
                    uow.commit()
                    expired.append(report_id)
            except ConflictError as e:
                logger.warning(f"Skipped expiry of {report_id}: {e.message}")

        logger.info(f"Expiry sweep complete: {len(expired)} of {len(due)} reports expired")
        return expired

    # =========================================================================
    # CERTIFICATE (READ-ONLY)
    # =========================================================================

    def certificate(self, actor: Actor, report_id: str) -> Dict[str, Any]:
        """Machine-readable certificate for a verified report."""
        details = self.get_report(actor, report_id)
        report = details.report
        if report.status != ReportStatus.VERIFIED:
            raise InvalidStateError(f"Certificates are issued only for verified reports (status '{report.status.value}')")

        with self.uow_factory() as uow:
            feedstock = uow.references.feedstock(report.feedstock_id)
            supplier_name = uow.references.supplier_name(report.supplier_id)

        profile = self.profiles[report.methodology]
        return {
            "certificate": {
                "report_id": report.report_id,
                "issued_date": report.verified_at.isoformat() if report.verified_at else None,
                "expiry_date": report.expiry_date.isoformat() if report.expiry_date else None,
                "status": report.status.value,
                "methodology": report.methodology.value,
                "methodology_label": profile.label,
                "methodology_version": report.methodology_version,
            },
            "supplier": {"name": supplier_name or "Unknown"},
            "feedstock": {
                "name": feedstock.name if feedstock else "Unknown",
                "category": feedstock.category if feedstock else "Unknown",
            },
            "reporting_period": {
                "start": report.reporting_period_start.isoformat() if report.reporting_period_start else None,
                "end": report.reporting_period_end.isoformat() if report.reporting_period_end else None,
                "reference_year": report.reference_year,
            },
            "carbon_intensity": {
                "total_ci_value": report.total_ci_value,
                "ci_score": report.ci_score,
                "unit": report.ci_unit,
                "ci_rating": report.ci_rating,
                "ghg_savings_percentage": report.ghg_savings_percentage,
                "fossil_fuel_comparator": profile.fossil_comparator,
                "uncertainty_range": [report.uncertainty_range_low, report.uncertainty_range_high],
            },
            "emissions": {
                "scope1": {**{n: report.emissions.get(n) for n in EMISSION_FIELDS if n.startswith("scope1")},
                           "total": report.scope1_total},
                "scope2": {**{n: report.emissions.get(n) for n in EMISSION_FIELDS if n.startswith("scope2")},
                           "total": report.scope2_total},
                "scope3": {**{n: report.emissions.get(n) for n in EMISSION_FIELDS if n.startswith("scope3")},
                           "total": report.scope3_total},
            },
            "compliance": {
                "threshold": report.compliance_threshold,
                "meets_threshold": report.meets_compliance_threshold,
            },
            "verification": {
                "verified_by": report.verified_by,
                "verified_at": report.verified_at.isoformat() if report.verified_at else None,
                "level": report.verification_level.value if report.verification_level else None,
            },
        }
