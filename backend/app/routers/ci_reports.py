"""
CI Report API Routes

Endpoints for carbon intensity reports.
Draft editing by suppliers, review by auditors, audit trail and certificates.
"""
from datetime import date
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, Body, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from ..auth import get_current_actor
from ..database import get_db
from ..models.ci_report import Actor
from ..models.db_models import DataQualityLevel, Methodology
from ..services.ci import CIEngineError, CIReportService, Decision, SqlAlchemyUnitOfWork


router = APIRouter(prefix="/ci-reports", tags=["ci-reports"])


def get_ci_service(db: Session = Depends(get_db)) -> CIReportService:
    """Service bound to the request's session."""
    return CIReportService(lambda: SqlAlchemyUnitOfWork(db))


def _http_error(e: CIEngineError) -> HTTPException:
    return HTTPException(status_code=e.http_status, detail=e.to_dict())


# =============================================================================
# REQUEST MODELS
# =============================================================================

class CreateCIReportRequest(BaseModel):
    """Request to open a draft CI report."""
    feedstock_id: str = Field(..., description="Feedstock batch the report covers")
    fill_defaults: bool = Field(default=False, description="Use industry default factors for missing categories")
    reporting_period_start: Optional[date] = None
    reporting_period_end: Optional[date] = None
    reference_year: Optional[int] = None
    methodology: Optional[Methodology] = None
    methodology_version: Optional[str] = None
    data_quality_level: Optional[DataQualityLevel] = None
    is_new_installation: Optional[bool] = None
    emissions: Dict[str, Any] = Field(default_factory=dict, description="gCO2e/MJ per category")
    calculation_notes: Optional[str] = None
    supporting_documents: Optional[List[str]] = None

    def report_fields(self) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        for name in (
            "reporting_period_start", "reporting_period_end", "reference_year",
            "methodology", "methodology_version", "data_quality_level",
            "is_new_installation", "calculation_notes", "supporting_documents",
        ):
            value = getattr(self, name)
            if value is not None:
                fields[name] = value.value if hasattr(value, "value") else value
        fields.update(self.emissions)
        return fields


class DecisionRequest(BaseModel):
    """Auditor decision on a report under review."""
    decision: Decision = Field(..., description="approve or reject")
    auditor_notes: Optional[str] = None
    rejection_reason: Optional[str] = Field(None, description="Required when rejecting")
    validity_days: Optional[int] = Field(None, description="Validity window, 1-1825 days")


# =============================================================================
# USER-AUTHORIZED ENDPOINTS
# =============================================================================

@router.post("", response_model=dict, status_code=201)
async def create_ci_report(
    request: CreateCIReportRequest,
    service: CIReportService = Depends(get_ci_service),
    actor: Actor = Depends(get_current_actor),
):
    """Create a draft report. Suppliers only, against their own feedstock."""
    try:
        details = service.create_report(
            actor, request.feedstock_id, request.report_fields(), fill_defaults=request.fill_defaults
        )
    except CIEngineError as e:
        raise _http_error(e)
    return details.to_dict()


@router.get("/{report_id}", response_model=dict)
async def get_ci_report(
    report_id: str,
    service: CIReportService = Depends(get_ci_service),
    actor: Actor = Depends(get_current_actor),
):
    try:
        return service.get_report(actor, report_id).to_dict()
    except CIEngineError as e:
        raise _http_error(e)


@router.patch("/{report_id}", response_model=dict)
async def update_ci_report(
    report_id: str,
    payload: Dict[str, Any] = Body(...),
    service: CIReportService = Depends(get_ci_service),
    actor: Actor = Depends(get_current_actor),
):
    """
    Update fields of a draft report.

    Derived values and workflow fields are rejected; the CI score is
    recalculated whenever an input changes.
    """
    try:
        return service.update_report(actor, report_id, payload).to_dict()
    except CIEngineError as e:
        raise _http_error(e)


@router.delete("/{report_id}", response_model=dict)
async def delete_ci_report(
    report_id: str,
    service: CIReportService = Depends(get_ci_service),
    actor: Actor = Depends(get_current_actor),
):
    """Delete a draft report. Its audit trail is kept."""
    try:
        service.delete_report(actor, report_id)
    except CIEngineError as e:
        raise _http_error(e)
    return {"report_id": report_id, "deleted": True}


@router.post("/{report_id}/submit", response_model=dict)
async def submit_ci_report(
    report_id: str,
    service: CIReportService = Depends(get_ci_service),
    actor: Actor = Depends(get_current_actor),
):
    try:
        report = service.submit_report(actor, report_id)
    except CIEngineError as e:
        raise _http_error(e)
    return report.to_dict()


@router.post("/{report_id}/claim", response_model=dict)
async def claim_ci_report(
    report_id: str,
    service: CIReportService = Depends(get_ci_service),
    actor: Actor = Depends(get_current_actor),
):
    """Self-assign a submitted report for review."""
    try:
        report = service.claim_report(actor, report_id)
    except CIEngineError as e:
        raise _http_error(e)
    return report.to_dict()


@router.post("/{report_id}/decision", response_model=dict)
async def decide_ci_report(
    report_id: str,
    request: DecisionRequest,
    service: CIReportService = Depends(get_ci_service),
    actor: Actor = Depends(get_current_actor),
):
    """Approve or reject a report under review. Assigned auditor or admin only."""
    try:
        report = service.decide_report(
            actor,
            report_id,
            request.decision,
            notes=request.auditor_notes,
            rejection_reason=request.rejection_reason,
            validity_days=request.validity_days,
        )
    except CIEngineError as e:
        raise _http_error(e)
    return report.to_dict()


@router.get("/{report_id}/history", response_model=dict)
async def get_ci_report_history(
    report_id: str,
    service: CIReportService = Depends(get_ci_service),
    actor: Actor = Depends(get_current_actor),
):
    try:
        entries = service.history(actor, report_id)
    except CIEngineError as e:
        raise _http_error(e)
    return {
        "report_id": report_id,
        "count": len(entries),
        "entries": [entry.to_dict() for entry in entries],
    }


@router.get("/{report_id}/certificate", response_model=dict)
async def get_ci_certificate(
    report_id: str,
    service: CIReportService = Depends(get_ci_service),
    actor: Actor = Depends(get_current_actor),
):
    """Certificate data for a verified report."""
    try:
        return service.certificate(actor, report_id)
    except CIEngineError as e:
        raise _http_error(e)
