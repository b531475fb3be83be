"""
CI Report Repository

Explicit persistence interface injected into the report service:
- ReportStore: CI reports, written with compare-and-swap on `version`
- AuditStore: insert-only audit entries
- Reference lookups: suppliers and feedstocks

A UnitOfWork groups one report change and its audit entry so they commit
together or not at all. Two implementations:
- SqlAlchemyUnitOfWork: production, one SQLAlchemy session per unit
- InMemoryUnitOfWork: tests and local tooling, staged writes applied under
  one lock at commit time
"""
import copy
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import delete, update
from sqlalchemy.orm import Session

from app.models.ci_report import EMISSION_FIELDS, AuditLogEntry, CIReport, utcnow
from app.models.db_models import (
    AuditAction,
    CIAuditLogDB,
    CIReportDB,
    FeedstockDB,
    ReportStatus,
    SupplierDB,
)
from .errors import ConflictError

logger = logging.getLogger(__name__)

# Columns copied 1:1 between CIReport and CIReportDB
_SCALAR_COLUMNS = (
    "supplier_id",
    "feedstock_id",
    "reporting_period_start",
    "reporting_period_end",
    "reference_year",
    "methodology",
    "methodology_version",
    "data_quality_level",
    "is_new_installation",
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
    "status",
    "verification_level",
    "submitted_at",
    "assigned_auditor_id",
    "verified_by",
    "verified_at",
    "expiry_date",
    "auditor_notes",
    "rejection_reason",
    "calculation_notes",
)

EXPIRABLE_STATUSES = (ReportStatus.VERIFIED, ReportStatus.REJECTED)


@dataclass(frozen=True)
class FeedstockRef:
    id: str
    supplier_id: str
    name: str
    category: str


# =============================================================================
# INTERFACES
# =============================================================================

class ReportStore(ABC):

    @abstractmethod
    def get(self, report_id: str) -> Optional[CIReport]:
        ...

    @abstractmethod
    def add(self, report: CIReport) -> CIReport:
        """Insert a new report; sets pk and version 1."""

    @abstractmethod
    def update(self, report: CIReport, expected_version: int) -> CIReport:
        """Write every field if the stored version still equals expected_version."""

    @abstractmethod
    def delete(self, report: CIReport, expected_version: int) -> None:
        ...

    @abstractmethod
    def list_expirable(self, now: datetime) -> List[CIReport]:
        """Verified/rejected reports whose validity window has elapsed."""


class AuditStore(ABC):

    @abstractmethod
    def append(self, entry: AuditLogEntry, report_pk: Optional[int] = None) -> AuditLogEntry:
        ...

    @abstractmethod
    def history(self, report_id: str) -> List[AuditLogEntry]:
        ...


class ReferenceLookup(ABC):

    @abstractmethod
    def supplier_name(self, supplier_id: str) -> Optional[str]:
        ...

    @abstractmethod
    def feedstock(self, feedstock_id: str) -> Optional[FeedstockRef]:
        ...


class UnitOfWork(ABC):
    """Context manager; anything not committed is rolled back on exit."""
    reports: ReportStore
    audit_log: AuditStore
    references: ReferenceLookup

    def __enter__(self):
        self._committed = False
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is not None or not self._committed:
            self.rollback()
        self.close()
        return False

    def commit(self) -> None:
        self._commit()
        self._committed = True

    @abstractmethod
    def _commit(self) -> None:
        ...

    @abstractmethod
    def rollback(self) -> None:
        ...

    def close(self) -> None:
        pass


# =============================================================================
# SQLALCHEMY
# =============================================================================

def _row_to_report(row: CIReportDB) -> CIReport:
    report = CIReport(
        report_id=row.report_id,
        supplier_id=row.supplier_id,
        feedstock_id=row.feedstock_id,
        pk=row.id,
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
    for name in _SCALAR_COLUMNS:
        setattr(report, name, getattr(row, name))
    report.is_new_installation = bool(row.is_new_installation)
    report.emissions = {name: getattr(row, name) for name in EMISSION_FIELDS}
    report.supporting_documents = list(row.supporting_documents or [])
    return report


def _report_values(report: CIReport) -> Dict:
    values = {name: getattr(report, name) for name in _SCALAR_COLUMNS}
    values.update({name: report.emissions.get(name) for name in EMISSION_FIELDS})
    values["supporting_documents"] = list(report.supporting_documents)
    return values


def _row_to_entry(row: CIAuditLogDB) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        report_id=row.report_ref,
        actor_id=row.actor_id,
        actor_role=row.actor_role,
        action=AuditAction(row.action),
        created_at=row.created_at,
        previous_status=ReportStatus(row.previous_status) if row.previous_status else None,
        new_status=ReportStatus(row.new_status) if row.new_status else None,
        metadata=dict(row.event_metadata or {}),
    )


class SqlAlchemyReportStore(ReportStore):

    def __init__(self, db: Session):
        self.db = db

    def get(self, report_id: str) -> Optional[CIReport]:
        row = (
            self.db.query(CIReportDB)
            .filter(CIReportDB.report_id == report_id)
            .populate_existing()
            .first()
        )
        return _row_to_report(row) if row else None

    def add(self, report: CIReport) -> CIReport:
        now = utcnow()
        row = CIReportDB(
            report_id=report.report_id,
            version=1,
            created_at=now,
            updated_at=now,
            **_report_values(report),
        )
        self.db.add(row)
        self.db.flush()  # Get ID without committing
        report.pk = row.id
        report.version = 1
        report.created_at = now
        report.updated_at = now
        return report

    def update(self, report: CIReport, expected_version: int) -> CIReport:
        now = utcnow()
        values = _report_values(report)
        values["version"] = expected_version + 1
        values["updated_at"] = now
        result = self.db.execute(
            update(CIReportDB)
            .where(CIReportDB.report_id == report.report_id)
            .where(CIReportDB.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(f"Version check failed for {report.report_id} (expected {expected_version})")
            raise ConflictError(f"Report {report.report_id} was modified concurrently")
        report.version = expected_version + 1
        report.updated_at = now
        return report

    def delete(self, report: CIReport, expected_version: int) -> None:
        result = self.db.execute(
            delete(CIReportDB)
            .where(CIReportDB.report_id == report.report_id)
            .where(CIReportDB.version == expected_version)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(f"Version check failed for {report.report_id} (expected {expected_version})")
            raise ConflictError(f"Report {report.report_id} was modified concurrently")

    def list_expirable(self, now: datetime) -> List[CIReport]:
        rows = (
            self.db.query(CIReportDB)
            .filter(
                CIReportDB.status.in_(EXPIRABLE_STATUSES),
                CIReportDB.expiry_date.isnot(None),
                CIReportDB.expiry_date <= now,
            )
            .order_by(CIReportDB.expiry_date)
            .all()
        )
        return [_row_to_report(row) for row in rows]


class SqlAlchemyAuditStore(AuditStore):
    """Insert-only. There is deliberately no update or delete path."""

    def __init__(self, db: Session):
        self.db = db

    def append(self, entry: AuditLogEntry, report_pk: Optional[int] = None) -> AuditLogEntry:
        row = CIAuditLogDB(
            report_ref=entry.report_id,
            report_pk=report_pk,
            actor_id=entry.actor_id,
            actor_role=entry.actor_role,
            action=entry.action.value,
            previous_status=entry.previous_status.value if entry.previous_status else None,
            new_status=entry.new_status.value if entry.new_status else None,
            event_metadata=entry.metadata,
            created_at=entry.created_at,
        )
        self.db.add(row)
        self.db.flush()
        return replace(entry, id=row.id)

    def history(self, report_id: str) -> List[AuditLogEntry]:
        rows = (
            self.db.query(CIAuditLogDB)
            .filter(CIAuditLogDB.report_ref == report_id)
            .order_by(CIAuditLogDB.created_at, CIAuditLogDB.id)
            .all()
        )
        return [_row_to_entry(row) for row in rows]


class SqlAlchemyReferenceLookup(ReferenceLookup):

    def __init__(self, db: Session):
        self.db = db

    def supplier_name(self, supplier_id: str) -> Optional[str]:
        supplier = self.db.query(SupplierDB).filter(SupplierDB.id == supplier_id).first()
        return supplier.company_name if supplier else None

    def feedstock(self, feedstock_id: str) -> Optional[FeedstockRef]:
        row = self.db.query(FeedstockDB).filter(FeedstockDB.id == feedstock_id).first()
        if not row:
            return None
        return FeedstockRef(id=row.id, supplier_id=row.supplier_id, name=row.name, category=row.category)


class SqlAlchemyUnitOfWork(UnitOfWork):
    """
    Wraps a request-scoped session (see database.get_db).
    The session is left open on exit; its owner closes it.
    """

    def __init__(self, db: Session):
        self.db = db
        self.reports = SqlAlchemyReportStore(db)
        self.audit_log = SqlAlchemyAuditStore(db)
        self.references = SqlAlchemyReferenceLookup(db)

    def _commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryDatabase:
    """Shared state behind any number of InMemoryUnitOfWork instances."""

    def __init__(self):
        self.lock = threading.RLock()
        self.reports: Dict[str, CIReport] = {}
        self.audit_entries: List[AuditLogEntry] = []
        self.suppliers: Dict[str, Tuple[str, str]] = {}  # supplier_id -> (user_id, company_name)
        self.feedstocks: Dict[str, FeedstockRef] = {}
        self._next_report_pk = 1
        self._next_audit_id = 1

    def add_supplier(self, supplier_id: str, user_id: str, company_name: str = "") -> None:
        self.suppliers[supplier_id] = (user_id, company_name or supplier_id)

    def add_feedstock(self, feedstock_id: str, supplier_id: str, name: str = "", category: str = "other") -> None:
        self.feedstocks[feedstock_id] = FeedstockRef(
            id=feedstock_id, supplier_id=supplier_id, name=name or feedstock_id, category=category
        )

    def next_report_pk(self) -> int:
        with self.lock:
            pk = self._next_report_pk
            self._next_report_pk += 1
            return pk

    def next_audit_id(self) -> int:
        with self.lock:
            audit_id = self._next_audit_id
            self._next_audit_id += 1
            return audit_id


class InMemoryReportStore(ReportStore):

    def __init__(self, database: InMemoryDatabase, staged: list):
        self.database = database
        self.staged = staged

    def get(self, report_id: str) -> Optional[CIReport]:
        with self.database.lock:
            report = self.database.reports.get(report_id)
            return copy.deepcopy(report) if report else None

    def add(self, report: CIReport) -> CIReport:
        now = utcnow()
        report.pk = self.database.next_report_pk()
        report.version = 1
        report.created_at = now
        report.updated_at = now
        self.staged.append(("add", copy.deepcopy(report), None))
        return report

    def update(self, report: CIReport, expected_version: int) -> CIReport:
        report.version = expected_version + 1
        report.updated_at = utcnow()
        self.staged.append(("update", copy.deepcopy(report), expected_version))
        return report

    def delete(self, report: CIReport, expected_version: int) -> None:
        self.staged.append(("delete", copy.deepcopy(report), expected_version))

    def list_expirable(self, now: datetime) -> List[CIReport]:
        with self.database.lock:
            due = [
                copy.deepcopy(r) for r in self.database.reports.values()
                if r.status in EXPIRABLE_STATUSES and r.expiry_date is not None and r.expiry_date <= now
            ]
        return sorted(due, key=lambda r: r.expiry_date)


class InMemoryAuditStore(AuditStore):

    def __init__(self, database: InMemoryDatabase, staged: list):
        self.database = database
        self.staged = staged

    def append(self, entry: AuditLogEntry, report_pk: Optional[int] = None) -> AuditLogEntry:
        # Ids are handed out when staged, like a sequence; rolled-back entries leave gaps
        entry = replace(entry, id=self.database.next_audit_id())
        self.staged.append(("append", entry, None))
        return entry

    def history(self, report_id: str) -> List[AuditLogEntry]:
        with self.database.lock:
            return [e for e in self.database.audit_entries if e.report_id == report_id]


class InMemoryReferenceLookup(ReferenceLookup):

    def __init__(self, database: InMemoryDatabase):
        self.database = database

    def supplier_name(self, supplier_id: str) -> Optional[str]:
        supplier = self.database.suppliers.get(supplier_id)
        return supplier[1] if supplier else None

    def feedstock(self, feedstock_id: str) -> Optional[FeedstockRef]:
        return self.database.feedstocks.get(feedstock_id)


class InMemoryUnitOfWork(UnitOfWork):
    """
    Buffers writes and applies them atomically at commit.
    Version checks happen under the database lock, so two units racing on
    the same report cannot both commit.
    """

    def __init__(self, database: InMemoryDatabase):
        self.database = database
        self._staged: list = []
        self.reports = InMemoryReportStore(database, self._staged)
        self.audit_log = InMemoryAuditStore(database, self._staged)
        self.references = InMemoryReferenceLookup(database)

    def _commit(self) -> None:
        with self.database.lock:
            reports = self.database.reports
            for op, item, expected_version in self._staged:
                if op == "add" and item.report_id in reports:
                    raise ConflictError(f"Report {item.report_id} already exists")
                if op in ("update", "delete"):
                    current = reports.get(item.report_id)
                    if current is None or current.version != expected_version:
                        raise ConflictError(f"Report {item.report_id} was modified concurrently")

            for op, item, _ in self._staged:
                if op in ("add", "update"):
                    reports[item.report_id] = item
                elif op == "delete":
                    del reports[item.report_id]
                elif op == "append":
                    self.database.audit_entries.append(item)
            self._staged.clear()

    def rollback(self) -> None:
        self._staged.clear()
