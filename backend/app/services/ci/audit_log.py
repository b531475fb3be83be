"""
CI Audit Log Recorder

Append-only ledger of every consequential action on a CI report.

Core Principles:
1. Entries are never updated or deleted.
2. An entry is written through the same unit of work as the change it
   documents; if the append fails, the change fails with it.
3. Replaying a report's entries in order reconstructs its status.
"""
from typing import Any, Callable, Dict, List, Optional, Sequence

from app.models.ci_report import Actor, AuditLogEntry, CIReport, utcnow
from app.models.db_models import AuditAction, ReportStatus


# Status each action leaves the report in. None means "no longer exists";
# actions missing from the map leave the status unchanged.
REPLAY_STATUS: Dict[AuditAction, Optional[ReportStatus]] = {
    AuditAction.CREATED: ReportStatus.DRAFT,
    AuditAction.SUBMITTED: ReportStatus.SUBMITTED,
    AuditAction.ASSIGNED: ReportStatus.UNDER_REVIEW,
    AuditAction.VERIFIED: ReportStatus.VERIFIED,
    AuditAction.REJECTED: ReportStatus.REJECTED,
    AuditAction.EXPIRED: ReportStatus.EXPIRED,
    AuditAction.DELETED: None,
}


class AuditLogRecorder:
    """
    Writes and reads audit entries through an audit store.

    The store is bound to a unit of work, so record() is only durable
    when that unit of work commits.
    """

    def __init__(self, store, clock: Callable = utcnow):
        self.store = store
        self.clock = clock

    def record(
        self,
        report_id: str,
        actor: Actor,
        action: AuditAction,
        metadata: Optional[Dict[str, Any]] = None,
        previous_status: Optional[ReportStatus] = None,
        new_status: Optional[ReportStatus] = None,
        report_pk: Optional[int] = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            report_id=report_id,
            actor_id=actor.user_id,
            actor_role=actor.role.value,
            action=action,
            created_at=self.clock(),
            previous_status=previous_status,
            new_status=new_status,
            metadata=dict(metadata or {}),
        )
        return self.store.append(entry, report_pk=report_pk)

    def history(self, report_id: str) -> List[AuditLogEntry]:
        """Entries for a report, oldest first."""
        return self.store.history(report_id)


# =============================================================================
# RECONCILIATION
# =============================================================================

def replay_status(entries: Sequence[AuditLogEntry]) -> Optional[ReportStatus]:
    """Status implied by applying entries in order to an empty report."""
    status: Optional[ReportStatus] = None
    for entry in entries:
        if entry.action in REPLAY_STATUS:
            status = REPLAY_STATUS[entry.action]
    return status


def reconcile(report: Optional[CIReport], entries: Sequence[AuditLogEntry]) -> bool:
    """True when the trail and the stored report agree on the current status."""
    replayed = replay_status(entries)
    if report is None:
        return replayed is None
    return replayed == report.status
