"""
CI Compliance Engine Services

Carbon intensity reporting for biofuel feedstocks:
- Validator: input normalization and rejection of bad values
- Calculator: scope totals, CI score, uncertainty, rating, GHG savings
- ReportStateMachine: draft → submitted → under_review → verified | rejected → expired
- Authorization gate: capability table per (principal, status)
- AuditLogRecorder: append-only trail, written with every change
- CIReportService: orchestrator over a UnitOfWork
"""

from .errors import (
    CIEngineError,
    NotFoundError,
    ForbiddenError,
    InvalidStateError,
    ConflictError,
    ValidationError,
    ComputationError,
)
from .constants import DEFAULT_PROFILES, MethodologyProfile
from .calculator import CICalculationResult, calculate, default_emissions
from .state_machine import ReportStateMachine, ReportAction, Decision
from .authorization import Operation, authorize, permitted_operations
from .audit_log import AuditLogRecorder, reconcile, replay_status
from .repository import (
    UnitOfWork,
    SqlAlchemyUnitOfWork,
    InMemoryDatabase,
    InMemoryUnitOfWork,
)
from .report_service import CIReportService, ReportDetails

__all__ = [
    # Errors
    'CIEngineError',
    'NotFoundError',
    'ForbiddenError',
    'InvalidStateError',
    'ConflictError',
    'ValidationError',
    'ComputationError',
    # Engine
    'DEFAULT_PROFILES',
    'MethodologyProfile',
    'CICalculationResult',
    'calculate',
    'default_emissions',
    # Workflow
    'ReportStateMachine',
    'ReportAction',
    'Decision',
    'Operation',
    'authorize',
    'permitted_operations',
    # Audit
    'AuditLogRecorder',
    'reconcile',
    'replay_status',
    # Persistence
    'UnitOfWork',
    'SqlAlchemyUnitOfWork',
    'InMemoryDatabase',
    'InMemoryUnitOfWork',
    # Orchestrator
    'CIReportService',
    'ReportDetails',
]
