"""
Authorization Gate

Capability table lookup: (principal, report status) -> permitted operations.
Consulted once per request, before any validation or calculation.

A denial is classified by the table itself:
- nobody may perform the operation in this status  -> InvalidStateError
- somebody may, but not this actor                  -> ForbiddenError
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional

from app.models.ci_report import Actor, CIReport
from app.models.db_models import ReportStatus, UserRole
from .errors import ForbiddenError, InvalidStateError


class Operation(str, Enum):
    VIEW = "view"
    EDIT = "edit"
    DELETE = "delete"
    SUBMIT = "submit"
    CLAIM = "claim"
    DECIDE = "decide"


class Principal(str, Enum):
    """An actor's relationship to one specific report."""
    OWNER = "owner"
    AUDITOR = "auditor"
    ASSIGNED_AUDITOR = "assigned_auditor"
    ADMIN = "admin"
    OBSERVER = "observer"  # Buyers, other suppliers, any other role


_NONE: FrozenSet[Operation] = frozenset()
_VIEW = frozenset({Operation.VIEW})
_COMPLETED = (ReportStatus.VERIFIED, ReportStatus.REJECTED, ReportStatus.EXPIRED)


def _auditor_row(can_decide: bool) -> Dict[ReportStatus, FrozenSet[Operation]]:
    row = {
        ReportStatus.DRAFT: _NONE,
        ReportStatus.SUBMITTED: frozenset({Operation.VIEW, Operation.CLAIM}),
        ReportStatus.UNDER_REVIEW: frozenset({Operation.VIEW, Operation.DECIDE}) if can_decide else _VIEW,
    }
    row.update({status: _VIEW for status in _COMPLETED})
    return row


CAPABILITIES: Dict[Principal, Dict[ReportStatus, FrozenSet[Operation]]] = {
    Principal.OWNER: {
        ReportStatus.DRAFT: frozenset({Operation.VIEW, Operation.EDIT, Operation.DELETE, Operation.SUBMIT}),
        ReportStatus.SUBMITTED: _VIEW,
        ReportStatus.UNDER_REVIEW: _VIEW,
        ReportStatus.VERIFIED: _VIEW,
        ReportStatus.REJECTED: _VIEW,
        ReportStatus.EXPIRED: _VIEW,
    },
    Principal.AUDITOR: _auditor_row(can_decide=False),
    Principal.ASSIGNED_AUDITOR: _auditor_row(can_decide=True),
    Principal.ADMIN: _auditor_row(can_decide=True),
    Principal.OBSERVER: {
        ReportStatus.DRAFT: _NONE,
        ReportStatus.SUBMITTED: _NONE,
        ReportStatus.UNDER_REVIEW: _NONE,
        ReportStatus.VERIFIED: _VIEW,
        ReportStatus.REJECTED: _NONE,
        ReportStatus.EXPIRED: _NONE,
    },
}


def resolve_principal(actor: Actor, report: CIReport) -> Principal:
    if actor.role == UserRole.ADMIN:
        return Principal.ADMIN
    if actor.role == UserRole.AUDITOR:
        if report.assigned_auditor_id == actor.user_id:
            return Principal.ASSIGNED_AUDITOR
        return Principal.AUDITOR
    if actor.role == UserRole.SUPPLIER and actor.supplier_id and actor.supplier_id == report.supplier_id:
        return Principal.OWNER
    return Principal.OBSERVER


def permitted_operations(actor: Actor, report: CIReport) -> FrozenSet[Operation]:
    return CAPABILITIES[resolve_principal(actor, report)].get(report.status, _NONE)


def is_permitted(actor: Actor, report: CIReport, operation: Operation) -> bool:
    return operation in permitted_operations(actor, report)


def authorize(actor: Actor, report: CIReport, operation: Operation) -> None:
    """Raise unless the actor may perform the operation on the report right now."""
    if is_permitted(actor, report, operation):
        return

    anyone_can = any(operation in row.get(report.status, _NONE) for row in CAPABILITIES.values())
    if not anyone_can:
        raise InvalidStateError(
            f"Cannot {operation.value} report {report.report_id} with status '{report.status.value}'"
        )
    raise ForbiddenError(f"Not authorized to {operation.value} report {report.report_id}")


def authorize_create(actor: Actor, feedstock_supplier_id: Optional[str]) -> None:
    """Only a supplier may open a draft, and only against its own feedstock."""
    if actor.role != UserRole.SUPPLIER or not actor.supplier_id:
        raise ForbiddenError("Only suppliers can create CI reports")
    if feedstock_supplier_id != actor.supplier_id:
        raise ForbiddenError("Feedstock belongs to another supplier")
