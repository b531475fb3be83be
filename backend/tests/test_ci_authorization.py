"""
Tests for the CI Authorization Gate.

The capability table decides both whether an actor may act and how a
denial is classified (InvalidState when nobody could, Forbidden otherwise).
"""
import pytest

from app.models.ci_report import Actor, CIReport
from app.models.db_models import ReportStatus, UserRole
from app.services.ci.authorization import (
    CAPABILITIES,
    Operation,
    Principal,
    authorize,
    authorize_create,
    permitted_operations,
    resolve_principal,
)
from app.services.ci.errors import ForbiddenError, InvalidStateError


OWNER = Actor(user_id="user-owner", role=UserRole.SUPPLIER, supplier_id="sup-1")
OTHER_SUPPLIER = Actor(user_id="user-other", role=UserRole.SUPPLIER, supplier_id="sup-2")
AUDITOR = Actor(user_id="user-aud", role=UserRole.AUDITOR)
SECOND_AUDITOR = Actor(user_id="user-aud-2", role=UserRole.AUDITOR)
ADMIN = Actor(user_id="user-admin", role=UserRole.ADMIN)
BUYER = Actor(user_id="user-buyer", role=UserRole.BUYER)


def report_in(status, assigned=None):
    return CIReport(
        report_id="CI-AUTH",
        supplier_id="sup-1",
        feedstock_id="fs-1",
        status=status,
        assigned_auditor_id=assigned,
    )


class TestPrincipal:

    def test_resolution(self):
        report = report_in(ReportStatus.UNDER_REVIEW, assigned=AUDITOR.user_id)

        assert resolve_principal(OWNER, report) == Principal.OWNER
        assert resolve_principal(OTHER_SUPPLIER, report) == Principal.OBSERVER
        assert resolve_principal(AUDITOR, report) == Principal.ASSIGNED_AUDITOR
        assert resolve_principal(SECOND_AUDITOR, report) == Principal.AUDITOR
        assert resolve_principal(ADMIN, report) == Principal.ADMIN
        assert resolve_principal(BUYER, report) == Principal.OBSERVER

    def test_table_covers_every_status(self):
        for principal, row in CAPABILITIES.items():
            assert set(row) == set(ReportStatus), principal


class TestDraftAccess:

    def test_owner_has_full_draft_control(self):
        ops = permitted_operations(OWNER, report_in(ReportStatus.DRAFT))

        assert ops == {Operation.VIEW, Operation.EDIT, Operation.DELETE, Operation.SUBMIT}

    @pytest.mark.parametrize("actor", [OTHER_SUPPLIER, AUDITOR, ADMIN, BUYER])
    def test_drafts_private_to_owner(self, actor):
        with pytest.raises(ForbiddenError):
            authorize(actor, report_in(ReportStatus.DRAFT), Operation.VIEW)

    def test_other_supplier_cannot_edit(self):
        with pytest.raises(ForbiddenError):
            authorize(OTHER_SUPPLIER, report_in(ReportStatus.DRAFT), Operation.EDIT)


class TestStateLevelDenials:
    """Edits and deletes outside draft are state errors whoever asks."""

    @pytest.mark.parametrize("status", [
        ReportStatus.SUBMITTED, ReportStatus.UNDER_REVIEW, ReportStatus.VERIFIED,
        ReportStatus.REJECTED, ReportStatus.EXPIRED,
    ])
    @pytest.mark.parametrize("actor", [OWNER, OTHER_SUPPLIER, AUDITOR, ADMIN, BUYER])
    def test_edit_and_delete_outside_draft(self, status, actor):
        report = report_in(status)

        with pytest.raises(InvalidStateError):
            authorize(actor, report, Operation.EDIT)
        with pytest.raises(InvalidStateError):
            authorize(actor, report, Operation.DELETE)

    def test_claim_on_draft_is_invalid_state(self):
        with pytest.raises(InvalidStateError):
            authorize(AUDITOR, report_in(ReportStatus.DRAFT), Operation.CLAIM)


class TestReviewAccess:

    def test_auditor_claims_submitted(self):
        authorize(AUDITOR, report_in(ReportStatus.SUBMITTED), Operation.CLAIM)

    def test_supplier_cannot_claim(self):
        with pytest.raises(ForbiddenError):
            authorize(OWNER, report_in(ReportStatus.SUBMITTED), Operation.CLAIM)

    def test_only_assigned_auditor_decides(self):
        report = report_in(ReportStatus.UNDER_REVIEW, assigned=AUDITOR.user_id)

        authorize(AUDITOR, report, Operation.DECIDE)
        with pytest.raises(ForbiddenError):
            authorize(SECOND_AUDITOR, report, Operation.DECIDE)

    def test_admin_may_decide(self):
        authorize(ADMIN, report_in(ReportStatus.UNDER_REVIEW, assigned=AUDITOR.user_id), Operation.DECIDE)

    def test_buyers_see_only_verified(self):
        authorize(BUYER, report_in(ReportStatus.VERIFIED), Operation.VIEW)
        for status in (ReportStatus.SUBMITTED, ReportStatus.REJECTED, ReportStatus.EXPIRED):
            with pytest.raises(ForbiddenError):
                authorize(BUYER, report_in(status), Operation.VIEW)


class TestCreate:

    def test_supplier_creates_for_own_feedstock(self):
        authorize_create(OWNER, "sup-1")

    def test_foreign_feedstock_forbidden(self):
        with pytest.raises(ForbiddenError):
            authorize_create(OWNER, "sup-2")

    @pytest.mark.parametrize("actor", [AUDITOR, ADMIN, BUYER])
    def test_non_suppliers_forbidden(self, actor):
        with pytest.raises(ForbiddenError):
            authorize_create(actor, "sup-1")
