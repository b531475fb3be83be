"""
Tests for the CI Report Service (orchestrator) over the in-memory unit of work.

Tests the complete flow from draft to expiry:
1. Create / update with recalculation
2. Full workflow audit trail (created → submitted → assigned → verified)
3. Frozen inputs after submission
4. Draft-only deletion, with denied attempts audited
5. Concurrent claims: exactly one winner
6. Atomicity when the audit append fails
7. Expiry sweep by the system actor
8. Certificates and engine-defect alerts
9. Validity window configuration
"""
import logging
import threading
from datetime import datetime, timedelta

import pytest

from app.models.ci_report import EMISSION_FIELDS, Actor
from app.models.db_models import AuditAction, ReportStatus, UserRole
from app.services.ci import report_service as report_service_module
from app.services.ci.errors import (
    ComputationError,
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from app.services.ci.report_service import CIReportService
from app.services.ci.repository import InMemoryAuditStore, InMemoryDatabase, InMemoryUnitOfWork
from app.services.ci.state_machine import Decision


SUPPLIER = Actor(user_id="user-s", role=UserRole.SUPPLIER, supplier_id="sup-1")
OTHER_SUPPLIER = Actor(user_id="user-t", role=UserRole.SUPPLIER, supplier_id="sup-2")
AUDITOR = Actor(user_id="user-a", role=UserRole.AUDITOR)
SECOND_AUDITOR = Actor(user_id="user-b", role=UserRole.AUDITOR)
BUYER = Actor(user_id="user-buyer", role=UserRole.BUYER)

FULL_INPUT = {
    "methodology": "RED_II",
    "data_quality_level": "primary_measured",
    "scope1_cultivation": 10,
    "scope1_processing": 5,
    "scope1_transport": 3,
    "scope2_electricity": 2,
    "scope2_steam_heat": 0,
    "scope3_upstream_inputs": 8,
    "scope3_land_use_change": 0,
    "scope3_distribution": 1,
    "scope3_end_of_life": 0,
}


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def database():
    db = InMemoryDatabase()
    db.add_supplier("sup-1", "user-s", "Green Oils Ltd")
    db.add_supplier("sup-2", "user-t", "Other Fuels")
    db.add_feedstock("fs-1", "sup-1", "Rapeseed batch 7", "oilseed")
    db.add_feedstock("fs-2", "sup-2", "UCO lot 3", "UCO")
    return db


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 9, 0, 0))


@pytest.fixture
def service(database, clock):
    return CIReportService(lambda: InMemoryUnitOfWork(database), clock=clock, validity_days=365)


@pytest.fixture
def draft(service):
    return service.create_report(SUPPLIER, "fs-1", FULL_INPUT).report


@pytest.fixture
def under_review(service, draft):
    service.submit_report(SUPPLIER, draft.report_id)
    service.claim_report(AUDITOR, draft.report_id)
    return draft


@pytest.fixture
def verified(service, under_review):
    service.decide_report(AUDITOR, under_review.report_id, Decision.APPROVE, notes="ok")
    return under_review


def actions(service, report_id, actor=SUPPLIER):
    return [e.action for e in service.history(actor, report_id)]


def raw_actions(database, report_id):
    return [e.action for e in database.audit_entries if e.report_id == report_id]


# =============================================================================
# TEST: CREATE / READ / UPDATE
# =============================================================================

class TestDrafts:

    def test_create_calculates(self, service, database):
        details = service.create_report(SUPPLIER, "fs-1", FULL_INPUT)
        report = details.report

        assert report.status == ReportStatus.DRAFT
        assert report.report_id.startswith("CI-")
        assert report.total_ci_value == pytest.approx(29.0)
        assert report.ghg_savings_percentage == pytest.approx(69.15, abs=0.01)
        assert [e.action for e in details.history] == [AuditAction.CREATED]
        assert raw_actions(database, report.report_id) == [AuditAction.CREATED]

    def test_create_returns_stored_audit_ids(self, service, database):
        details = service.create_report(SUPPLIER, "fs-1", FULL_INPUT)

        returned = details.to_dict()["audit_logs"][0]["id"]
        assert returned is not None
        assert returned == database.audit_entries[-1].id

    def test_create_without_fields(self, service):
        report = service.create_report(SUPPLIER, "fs-1").report

        assert report.methodology is None
        assert report.ci_score is None

    def test_create_with_defaults(self, service):
        report = service.create_report(
            SUPPLIER, "fs-1", {"methodology": "RTFO", "scope1_cultivation": 1.0}, fill_defaults=True
        ).report

        assert report.emissions["scope1_cultivation"] == 1.0
        assert all(report.emissions[name] is not None for name in EMISSION_FIELDS)
        assert report.ci_score > 1.0

    def test_create_unknown_feedstock(self, service):
        with pytest.raises(NotFoundError):
            service.create_report(SUPPLIER, "fs-404")

    def test_create_for_foreign_feedstock(self, service):
        with pytest.raises(ForbiddenError):
            service.create_report(SUPPLIER, "fs-2")

    def test_auditor_cannot_create(self, service):
        with pytest.raises(ForbiddenError):
            service.create_report(AUDITOR, "fs-1")

    def test_create_rejects_bad_input(self, service, database):
        with pytest.raises(ValidationError):
            service.create_report(SUPPLIER, "fs-1", {"scope1_cultivation": -3})
        assert database.reports == {}
        assert database.audit_entries == []

    def test_update_recalculates(self, service, draft):
        details = service.update_report(SUPPLIER, draft.report_id, {"scope1_cultivation": 20})

        assert details.report.total_ci_value == pytest.approx(39.0)
        assert details.report.version == draft.version + 1
        assert actions(service, draft.report_id) == [AuditAction.CREATED, AuditAction.UPDATED]

    def test_update_notes_does_not_recalculate(self, service, draft):
        service.update_report(SUPPLIER, draft.report_id, {"calculation_notes": "metered"})

        entry = service.history(SUPPLIER, draft.report_id)[-1]
        assert entry.metadata["recalculated"] is False
        assert entry.metadata["updated_fields"] == ["calculation_notes"]

    def test_removing_methodology_clears_derived_values(self, service, draft):
        report = service.update_report(SUPPLIER, draft.report_id, {"methodology": None}).report

        assert report.ci_score is None
        assert report.ci_rating is None

    def test_update_warns_on_implausible_total(self, service, draft):
        details = service.update_report(SUPPLIER, draft.report_id, {"scope1_cultivation": 250})

        assert len(details.warnings) == 1
        assert details.report.ci_rating == "F"

    def test_update_rejects_derived_fields(self, service, draft):
        with pytest.raises(ValidationError):
            service.update_report(SUPPLIER, draft.report_id, {"ci_score": 1.0})
        assert actions(service, draft.report_id) == [AuditAction.CREATED]

    def test_update_rejects_inverted_period(self, service, draft):
        service.update_report(SUPPLIER, draft.report_id, {"reporting_period_start": "2025-06-01"})

        with pytest.raises(ValidationError):
            service.update_report(SUPPLIER, draft.report_id, {"reporting_period_end": "2025-01-01"})

    def test_other_supplier_update_forbidden_and_audited(self, service, draft):
        with pytest.raises(ForbiddenError):
            service.update_report(OTHER_SUPPLIER, draft.report_id, {"scope1_cultivation": 1})

        assert actions(service, draft.report_id)[-1] == AuditAction.UPDATE_DENIED

    def test_read_denials_not_audited(self, service, draft):
        with pytest.raises(ForbiddenError):
            service.get_report(BUYER, draft.report_id)

        assert actions(service, draft.report_id) == [AuditAction.CREATED]

    def test_missing_report(self, service):
        with pytest.raises(NotFoundError):
            service.get_report(SUPPLIER, "CI-NOPE")


# =============================================================================
# TEST: WORKFLOW
# =============================================================================

class TestWorkflow:

    def test_full_workflow_trail(self, service, verified):
        details = service.get_report(SUPPLIER, verified.report_id)

        assert details.report.status == ReportStatus.VERIFIED
        assert [e.action for e in details.history] == [
            AuditAction.CREATED,
            AuditAction.SUBMITTED,
            AuditAction.ASSIGNED,
            AuditAction.VERIFIED,
        ]
        assert [e.actor_id for e in details.history] == ["user-s", "user-s", "user-a", "user-a"]
        assert details.audit_consistent is True
        assert details.history[-1].new_status == ReportStatus.VERIFIED

    def test_timestamps_from_clock(self, service, clock, verified):
        report = service.get_report(SUPPLIER, verified.report_id).report

        assert report.submitted_at == clock.now
        assert report.expiry_date == clock.now + timedelta(days=365)

    def test_buyer_sees_verified_report(self, service, verified):
        details = service.get_report(BUYER, verified.report_id)

        assert details.permitted_operations == ["view"]

    def test_edit_after_submit_is_invalid_state(self, service, draft):
        service.submit_report(SUPPLIER, draft.report_id)
        before = service.get_report(SUPPLIER, draft.report_id).report

        with pytest.raises(InvalidStateError):
            service.update_report(SUPPLIER, draft.report_id, {"scope1_cultivation": 0.5})

        after = service.get_report(SUPPLIER, draft.report_id).report
        assert after.derived_snapshot() == before.derived_snapshot()
        assert after.emissions == before.emissions
        assert actions(service, draft.report_id)[-1] == AuditAction.UPDATE_DENIED

    def test_incomplete_submit_not_audited(self, service):
        report = service.create_report(SUPPLIER, "fs-1", {"methodology": "RED_II", "scope1_cultivation": 4}).report

        with pytest.raises(ValidationError):
            service.submit_report(SUPPLIER, report.report_id)
        assert actions(service, report.report_id) == [AuditAction.CREATED]

    def test_supplier_cannot_claim(self, service, draft):
        service.submit_report(SUPPLIER, draft.report_id)

        with pytest.raises(ForbiddenError):
            service.claim_report(SUPPLIER, draft.report_id)

        entry = service.history(SUPPLIER, draft.report_id)[-1]
        assert entry.action == AuditAction.TRANSITION_DENIED
        assert entry.metadata["attempted"] == "claim"
        assert entry.metadata["error"] == "forbidden"

    def test_unassigned_auditor_cannot_decide(self, service, under_review):
        with pytest.raises(ForbiddenError):
            service.decide_report(SECOND_AUDITOR, under_review.report_id, Decision.APPROVE)

    def test_reject_requires_reason(self, service, under_review):
        with pytest.raises(ValidationError):
            service.decide_report(AUDITOR, under_review.report_id, Decision.REJECT)

        report = service.get_report(AUDITOR, under_review.report_id).report
        assert report.status == ReportStatus.UNDER_REVIEW

    def test_reject(self, service, under_review):
        report = service.decide_report(
            AUDITOR, under_review.report_id, Decision.REJECT, rejection_reason="No mass balance evidence"
        )

        assert report.status == ReportStatus.REJECTED
        assert actions(service, report.report_id, AUDITOR)[-1] == AuditAction.REJECTED


# =============================================================================
# TEST: DELETE
# =============================================================================

class TestDelete:

    def test_delete_draft_keeps_trail(self, service, database, draft):
        service.delete_report(SUPPLIER, draft.report_id)

        with pytest.raises(NotFoundError):
            service.get_report(SUPPLIER, draft.report_id)
        assert raw_actions(database, draft.report_id) == [AuditAction.CREATED, AuditAction.DELETED]

    def test_delete_verified_is_invalid_state(self, service, database, verified):
        with pytest.raises(InvalidStateError):
            service.delete_report(SUPPLIER, verified.report_id)

        assert service.get_report(SUPPLIER, verified.report_id).report.status == ReportStatus.VERIFIED
        assert raw_actions(database, verified.report_id)[-1] == AuditAction.DELETION_ATTEMPTED

    def test_admin_delete_of_submitted_is_invalid_state(self, service, database, draft):
        service.submit_report(SUPPLIER, draft.report_id)

        with pytest.raises(InvalidStateError):
            service.delete_report(Actor(user_id="user-admin", role=UserRole.ADMIN), draft.report_id)
        assert raw_actions(database, draft.report_id)[-1] == AuditAction.DELETION_ATTEMPTED

    def test_other_supplier_cannot_delete_draft(self, service, draft):
        with pytest.raises(ForbiddenError):
            service.delete_report(OTHER_SUPPLIER, draft.report_id)


# =============================================================================
# TEST: CONCURRENCY AND ATOMICITY
# =============================================================================

class TestConcurrency:

    def test_concurrent_claims_one_winner(self, service, database, draft, monkeypatch):
        service.submit_report(SUPPLIER, draft.report_id)

        # Both claimers load the report before either commits
        barrier = threading.Barrier(2, timeout=5)
        original_claim = service.state_machine.claim

        def claim_then_wait(report, actor, now):
            result = original_claim(report, actor, now)
            barrier.wait()
            return result

        monkeypatch.setattr(service.state_machine, "claim", claim_then_wait)

        outcomes = {}

        def claim(actor):
            try:
                service.claim_report(actor, draft.report_id)
                outcomes[actor.user_id] = "won"
            except (ConflictError, InvalidStateError) as e:
                outcomes[actor.user_id] = e.code

        threads = [threading.Thread(target=claim, args=(a,)) for a in (AUDITOR, SECOND_AUDITOR)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes.values()) == ["conflict", "won"]
        winner = next(user for user, outcome in outcomes.items() if outcome == "won")
        report = service.get_report(AUDITOR, draft.report_id).report
        assert report.status == ReportStatus.UNDER_REVIEW
        assert report.assigned_auditor_id == winner
        assert raw_actions(database, draft.report_id).count(AuditAction.ASSIGNED) == 1
        assert raw_actions(database, draft.report_id)[-1] == AuditAction.TRANSITION_DENIED

    def test_stale_write_conflicts(self, database, draft):
        first = InMemoryUnitOfWork(database)
        second = InMemoryUnitOfWork(database)
        with first, second:
            a = first.reports.get(draft.report_id)
            b = second.reports.get(draft.report_id)
            first.reports.update(a, a.version)
            second.reports.update(b, b.version)
            first.commit()
            with pytest.raises(ConflictError):
                second.commit()

    def test_failed_audit_append_rolls_back_change(self, service, database, draft, monkeypatch):
        def broken_append(self, entry, report_pk=None):
            raise RuntimeError("audit store unavailable")

        monkeypatch.setattr(InMemoryAuditStore, "append", broken_append)

        with pytest.raises(RuntimeError):
            service.update_report(SUPPLIER, draft.report_id, {"scope1_cultivation": 50})

        stored = database.reports[draft.report_id]
        assert stored.version == draft.version
        assert stored.emissions["scope1_cultivation"] == 10.0
        assert stored.total_ci_value == pytest.approx(29.0)


# =============================================================================
# TEST: EXPIRY SWEEP
# =============================================================================

class TestExpirySweep:

    def test_nothing_due(self, service, verified):
        assert service.expire_reports() == []

    def test_expires_after_window(self, service, clock, database, verified):
        clock.now = clock.now + timedelta(days=366)

        expired = service.expire_reports()

        assert expired == [verified.report_id]
        details = service.get_report(SUPPLIER, verified.report_id)
        assert details.report.status == ReportStatus.EXPIRED
        assert details.history[-1].action == AuditAction.EXPIRED
        assert details.history[-1].actor_role == UserRole.SYSTEM.value
        assert details.audit_consistent is True

    def test_rejected_reports_expire_too(self, service, under_review):
        service.decide_report(
            AUDITOR, under_review.report_id, Decision.REJECT,
            rejection_reason="Incomplete", validity_days=1,
        )

        expired = service.expire_reports(now=datetime(2026, 1, 17))

        assert expired == [under_review.report_id]

    def test_sweep_is_idempotent(self, service, clock, verified):
        clock.now = clock.now + timedelta(days=400)

        service.expire_reports()

        assert service.expire_reports() == []


# =============================================================================
# TEST: CONFIGURATION
# =============================================================================

class TestValidityConfiguration:

    def test_default_from_environment(self, database, monkeypatch):
        monkeypatch.setenv("CI_REPORT_VALIDITY_DAYS", "90")

        service = CIReportService(lambda: InMemoryUnitOfWork(database))

        assert service.state_machine.validity_days == 90

    @pytest.mark.parametrize("raw", ["soon", "0", "5000"])
    def test_bad_environment_value_refused_at_construction(self, database, monkeypatch, raw):
        monkeypatch.setenv("CI_REPORT_VALIDITY_DAYS", raw)

        with pytest.raises(ValueError):
            CIReportService(lambda: InMemoryUnitOfWork(database))

    def test_bad_explicit_value(self, database):
        with pytest.raises(ValueError):
            CIReportService(lambda: InMemoryUnitOfWork(database), validity_days=-1)


# =============================================================================
# TEST: CERTIFICATE AND ALERTS
# =============================================================================

class TestCertificate:

    def test_certificate_for_verified(self, service, verified):
        cert = service.certificate(BUYER, verified.report_id)

        assert cert["certificate"]["report_id"] == verified.report_id
        assert cert["certificate"]["methodology"] == "RED_II"
        assert cert["supplier"]["name"] == "Green Oils Ltd"
        assert cert["feedstock"]["category"] == "oilseed"
        assert cert["carbon_intensity"]["ci_score"] == pytest.approx(29.0)
        assert cert["carbon_intensity"]["fossil_fuel_comparator"] == 94.0
        assert cert["emissions"]["scope1"]["total"] == pytest.approx(18.0)
        assert cert["compliance"]["meets_threshold"] is True
        assert cert["verification"]["verified_by"] == "user-a"

    def test_no_certificate_for_draft(self, service, draft):
        with pytest.raises(InvalidStateError):
            service.certificate(SUPPLIER, draft.report_id)


class TestEngineAlerts:

    def test_computation_error_logged_to_alerts(self, service, draft, monkeypatch, caplog):
        def broken_calculate(*args, **kwargs):
            raise ComputationError("band does not contain score")

        monkeypatch.setattr(report_service_module, "calculate", broken_calculate)

        with caplog.at_level(logging.ERROR, logger="app.alerts"):
            with pytest.raises(ComputationError):
                service.update_report(SUPPLIER, draft.report_id, {"scope1_cultivation": 1})

        assert any(r.name == "app.alerts" for r in caplog.records)
        assert actions(service, draft.report_id) == [AuditAction.CREATED]
