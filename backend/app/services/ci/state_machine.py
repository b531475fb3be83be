"""
CI Report State Machine

Single ReportStatus enum is the source of truth.
State transitions:
    draft → submitted → under_review → verified | rejected → expired

Rules:
- Transitions only move forward; nothing returns to draft
- expired is reached only from verified/rejected, by the system sweep,
  once the validity window has elapsed
- Each transition writes its own workflow metadata and nothing else
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from app.models.ci_report import Actor, CIReport
from app.models.db_models import (
    AuditAction,
    Methodology,
    ReportStatus,
    UserRole,
    VerificationLevel,
)
from .constants import DEFAULT_VALIDITY_DAYS, MAX_VALIDITY_DAYS, MethodologyProfile, resolve_profiles
from .errors import InvalidStateError, ValidationError


class ReportAction(str, Enum):
    """Workflow actions that move a report between states."""
    SUBMIT = "submit"
    CLAIM = "claim"
    APPROVE = "approve"
    REJECT = "reject"
    EXPIRE = "expire"


class Decision(str, Enum):
    """Auditor's final determination."""
    APPROVE = "approve"
    REJECT = "reject"


@dataclass(frozen=True)
class TransitionResult:
    """What a transition did, ready to be written to the audit log."""
    action: ReportAction
    previous_status: ReportStatus
    new_status: ReportStatus
    audit_action: AuditAction
    metadata: Dict[str, Any] = field(default_factory=dict)


class ReportStateMachine:
    """
    CI report lifecycle with transition guards.

    Methods mutate the CIReport working copy in place; persisting it (and
    the audit entry) is the orchestrator's job.
    """

    # State transition map: (current_state, action) -> new_state
    TRANSITIONS = {
        (ReportStatus.DRAFT, ReportAction.SUBMIT): ReportStatus.SUBMITTED,
        (ReportStatus.SUBMITTED, ReportAction.CLAIM): ReportStatus.UNDER_REVIEW,
        (ReportStatus.UNDER_REVIEW, ReportAction.APPROVE): ReportStatus.VERIFIED,
        (ReportStatus.UNDER_REVIEW, ReportAction.REJECT): ReportStatus.REJECTED,
        (ReportStatus.VERIFIED, ReportAction.EXPIRE): ReportStatus.EXPIRED,
        (ReportStatus.REJECTED, ReportAction.EXPIRE): ReportStatus.EXPIRED,
    }

    AUDIT_ACTIONS = {
        ReportAction.SUBMIT: AuditAction.SUBMITTED,
        ReportAction.CLAIM: AuditAction.ASSIGNED,
        ReportAction.APPROVE: AuditAction.VERIFIED,
        ReportAction.REJECT: AuditAction.REJECTED,
        ReportAction.EXPIRE: AuditAction.EXPIRED,
    }

    def __init__(
        self,
        profiles: Optional[Mapping[Methodology, MethodologyProfile]] = None,
        validity_days: int = DEFAULT_VALIDITY_DAYS,
    ):
        self.profiles = resolve_profiles(profiles)
        self.validity_days = validity_days

    # =========================================================================
    # TABLE QUERIES
    # =========================================================================

    def can_transition(self, current_state: ReportStatus, action: ReportAction) -> Tuple[bool, Optional[str]]:
        if (current_state, action) not in self.TRANSITIONS:
            return False, f"Cannot {action.value} a report with status '{current_state.value}'"
        return True, None

    def get_available_actions(self, current_state: ReportStatus) -> List[ReportAction]:
        return [action for (state, action) in self.TRANSITIONS if state == current_state]

    def is_terminal(self, state: ReportStatus) -> bool:
        return not self.get_available_actions(state)

    def _apply(self, report: CIReport, action: ReportAction, metadata: Dict[str, Any]) -> TransitionResult:
        allowed, error = self.can_transition(report.status, action)
        if not allowed:
            raise InvalidStateError(error)
        previous = report.status
        report.status = self.TRANSITIONS[(previous, action)]
        return TransitionResult(
            action=action,
            previous_status=previous,
            new_status=report.status,
            audit_action=self.AUDIT_ACTIONS[action],
            metadata=metadata,
        )

    # =========================================================================
    # GUARDS
    # =========================================================================

    def missing_requirements(self, report: CIReport) -> List[str]:
        """Everything that still blocks submission of a draft."""
        if report.methodology is None:
            return ["methodology is required"]

        problems = []
        profile = self.profiles[report.methodology]
        provided = set(report.provided_categories())
        for name in profile.required_categories:
            if name not in provided:
                problems.append(f"{name} is required for {report.methodology.value}")

        if not any(report.emission_values().values()):
            problems.append("Report must have at least some emission data before submission")
        if report.ci_score is None:
            problems.append("Carbon intensity has not been calculated")
        return problems

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def submit(self, report: CIReport, actor: Actor, now: datetime) -> TransitionResult:
        allowed, error = self.can_transition(report.status, ReportAction.SUBMIT)
        if not allowed:
            raise InvalidStateError(error)
        problems = self.missing_requirements(report)
        if problems:
            raise ValidationError("Report is incomplete and cannot be submitted", problems)

        result = self._apply(report, ReportAction.SUBMIT, {"notes": "Report submitted for verification"})
        report.submitted_at = now
        report.verification_level = VerificationLevel.SELF_DECLARED
        return result

    def claim(self, report: CIReport, actor: Actor, now: datetime) -> TransitionResult:
        result = self._apply(report, ReportAction.CLAIM, {"auditor_id": actor.user_id})
        report.assigned_auditor_id = actor.user_id
        return result

    def decide(
        self,
        report: CIReport,
        actor: Actor,
        decision: Decision,
        now: datetime,
        notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
        validity_days: Optional[int] = None,
    ) -> TransitionResult:
        try:
            decision = Decision(decision)
        except ValueError:
            raise ValidationError("decision must be 'approve' or 'reject'")

        days = self.validity_days if validity_days is None else validity_days
        if isinstance(days, bool) or not isinstance(days, int) or not 1 <= days <= MAX_VALIDITY_DAYS:
            raise ValidationError(f"validity_days must be between 1 and {MAX_VALIDITY_DAYS}")
        if decision == Decision.REJECT and not (rejection_reason and rejection_reason.strip()):
            raise ValidationError("rejection_reason is required when rejecting")

        action = ReportAction.APPROVE if decision == Decision.APPROVE else ReportAction.REJECT
        metadata: Dict[str, Any] = {"decision": decision.value, "validity_days": days}
        if notes:
            metadata["notes"] = notes
        if rejection_reason:
            metadata["rejection_reason"] = rejection_reason

        result = self._apply(report, action, metadata)
        report.verified_by = actor.user_id
        report.verified_at = now
        report.expiry_date = now + timedelta(days=days)
        report.auditor_notes = notes
        if decision == Decision.APPROVE:
            report.verification_level = VerificationLevel.THIRD_PARTY_AUDITED
        else:
            report.rejection_reason = rejection_reason
        return result

    def expire(self, report: CIReport, actor: Actor, now: datetime) -> TransitionResult:
        if actor.role != UserRole.SYSTEM:
            raise InvalidStateError("Reports expire automatically and cannot be expired by a user")
        allowed, error = self.can_transition(report.status, ReportAction.EXPIRE)
        if not allowed:
            raise InvalidStateError(error)
        if report.expiry_date is None or report.expiry_date > now:
            raise InvalidStateError(f"Validity window of report {report.report_id} has not elapsed")
        return self._apply(
            report,
            ReportAction.EXPIRE,
            {"expiry_date": report.expiry_date.isoformat()},
        )
