"""
Scheduler API Routes

Internal endpoints for system-automatic tasks.
Expires verified/rejected CI reports whose validity window has elapsed.
"""
import os
from datetime import datetime, timezone
from fastapi import APIRouter, Depends, HTTPException, Header

from ..services.ci import CIReportService
from .ci_reports import get_ci_service


router = APIRouter(prefix="/internal", tags=["scheduler"])


# =============================================================================
# INTERNAL API KEY VALIDATION
# =============================================================================

INTERNAL_API_KEY = os.getenv("INTERNAL_API_KEY", "scheduler-internal-key-change-in-production")


async def verify_internal_key(x_internal_key: str = Header(...)):
    """Verify internal API key for scheduler endpoints."""
    if x_internal_key != INTERNAL_API_KEY:
        raise HTTPException(status_code=403, detail="Invalid internal API key")
    return True


# =============================================================================
# SCHEDULER ENDPOINTS (SYSTEM-ONLY)
# =============================================================================

@router.post("/expire-reports", response_model=dict)
async def run_expiry_sweep(
    service: CIReportService = Depends(get_ci_service),
    _: bool = Depends(verify_internal_key),
):
    """
    Run the daily CI report expiry sweep.

    System-automatic - no user confirmation required.
    Each expired report gets an audit entry from the system actor.
    """
    expired = service.expire_reports()

    return {
        "task": "expire_reports",
        "run_date": datetime.now(timezone.utc).isoformat(),
        "expired_count": len(expired),
        "expired_report_ids": expired,
    }
