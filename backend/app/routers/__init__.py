"""CI Compliance Engine - API Routers"""
from .ci_reports import router as ci_reports_router
from .scheduler import router as scheduler_router

__all__ = [
    "ci_reports_router",
    "scheduler_router",
]
