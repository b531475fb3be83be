"""
CI Compliance Engine - SQLAlchemy ORM Models
Persistent storage for carbon intensity reports and their audit trail
"""
from datetime import datetime
from enum import Enum
from sqlalchemy import (
    Column, String, Integer, Float, DateTime, Date, Text, JSON, Boolean,
    ForeignKey, Enum as SQLEnum,
)
from sqlalchemy.orm import relationship
from ..database import Base


# =============================================================================
# ENUMS
# =============================================================================

class UserRole(str, Enum):
    """Platform roles relevant to CI reports."""
    SUPPLIER = "supplier"
    BUYER = "buyer"
    AUDITOR = "auditor"
    ADMIN = "admin"
    SYSTEM = "system"  # Time-driven transitions (expiry sweep)


class ReportStatus(str, Enum):
    """Lifecycle states of a CI report."""
    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under_review"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"


class Methodology(str, Enum):
    """Regulatory or standards frameworks a report is calculated under."""
    RED_II = "RED_II"
    RTFO = "RTFO"
    ISO_14064 = "ISO_14064"
    ISCC = "ISCC"
    RSB = "RSB"


class DataQualityLevel(str, Enum):
    """Provenance class of the emission inputs, best first."""
    PRIMARY_MEASURED = "primary_measured"
    INDUSTRY_AVERAGE = "industry_average"
    DEFAULT_VALUE = "default"
    ESTIMATED = "estimated"


class VerificationLevel(str, Enum):
    """How far the reported values have been checked."""
    SELF_DECLARED = "self_declared"
    THIRD_PARTY_AUDITED = "third_party_audited"


class FeedstockCategory(str, Enum):
    OILSEED = "oilseed"
    UCO = "UCO"
    TALLOW = "tallow"
    LIGNOCELLULOSIC = "lignocellulosic"
    WASTE = "waste"
    ALGAE = "algae"
    BAMBOO = "bamboo"
    OTHER = "other"


class AuditAction(str, Enum):
    """Action tags written to the CI audit log."""
    CREATED = "created"
    UPDATED = "updated"
    SUBMITTED = "submitted"
    ASSIGNED = "assigned"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"
    DELETED = "deleted"
    DELETION_ATTEMPTED = "deletion_attempted"
    UPDATE_DENIED = "update_denied"
    TRANSITION_DENIED = "transition_denied"


# =============================================================================
# REFERENCE TABLES
# =============================================================================

class UserDB(Base):
    """Platform account. Only the fields the CI engine reads."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)  # UUID
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.BUYER.value)
    created_at = Column(DateTime, default=datetime.utcnow)

    supplier = relationship("SupplierDB", back_populates="user", uselist=False)


class SupplierDB(Base):
    """Supplier organisation owned by one user account."""
    __tablename__ = "suppliers"

    id = Column(String(36), primary_key=True)  # UUID
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    company_name = Column(String(255), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("UserDB", back_populates="supplier")
    feedstocks = relationship("FeedstockDB", back_populates="supplier")


class FeedstockDB(Base):
    """Feedstock batch a CI report is calculated for."""
    __tablename__ = "feedstocks"

    id = Column(String(36), primary_key=True)  # UUID
    supplier_id = Column(String(36), ForeignKey("suppliers.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(50), nullable=False, default=FeedstockCategory.OTHER.value)
    created_at = Column(DateTime, default=datetime.utcnow)

    supplier = relationship("SupplierDB", back_populates="feedstocks")


# =============================================================================
# CI REPORTS
# =============================================================================

class CIReportDB(Base):
    """
    Carbon intensity report for one feedstock batch.

    Emission inputs and methodology are frozen once the report leaves draft.
    Derived columns are written only by the calculation engine.
    `version` is bumped on every write and used for compare-and-swap.
    """
    __tablename__ = "ci_reports"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_id = Column(String(32), unique=True, nullable=False, index=True)  # Stable public identifier
    version = Column(Integer, nullable=False, default=1)

    # Ownership
    supplier_id = Column(String(36), ForeignKey("suppliers.id"), nullable=False, index=True)
    feedstock_id = Column(String(36), ForeignKey("feedstocks.id"), nullable=False, index=True)

    # Temporal scope
    reporting_period_start = Column(Date, nullable=True)
    reporting_period_end = Column(Date, nullable=True)
    reference_year = Column(Integer, nullable=True)

    # Methodology
    methodology = Column(SQLEnum(Methodology, native_enum=False), nullable=True)
    methodology_version = Column(String(50), nullable=True)
    data_quality_level = Column(SQLEnum(DataQualityLevel, native_enum=False), nullable=False, default=DataQualityLevel.DEFAULT_VALUE)
    is_new_installation = Column(Boolean, default=False)

    # ==========================================================================
    # EMISSION INPUTS (gCO2e/MJ) - NULL means not provided, treated as zero
    # ==========================================================================
    scope1_cultivation = Column(Float, nullable=True)
    scope1_processing = Column(Float, nullable=True)
    scope1_transport = Column(Float, nullable=True)
    scope2_electricity = Column(Float, nullable=True)
    scope2_steam_heat = Column(Float, nullable=True)
    scope3_upstream_inputs = Column(Float, nullable=True)
    scope3_land_use_change = Column(Float, nullable=True)
    scope3_distribution = Column(Float, nullable=True)
    scope3_end_of_life = Column(Float, nullable=True)

    # ==========================================================================
    # DERIVED - written only by the calculation engine
    # ==========================================================================
    scope1_total = Column(Float, nullable=True)
    scope2_total = Column(Float, nullable=True)
    scope3_total = Column(Float, nullable=True)
    total_ci_value = Column(Float, nullable=True)
    ci_score = Column(Float, nullable=True)
    ci_unit = Column(String(30), nullable=True)
    uncertainty_range_low = Column(Float, nullable=True)
    uncertainty_range_high = Column(Float, nullable=True)
    ci_rating = Column(String(3), nullable=True)
    ghg_savings_percentage = Column(Float, nullable=True)
    compliance_threshold = Column(Float, nullable=True)
    meets_compliance_threshold = Column(Boolean, nullable=True)

    # Workflow
    status = Column(SQLEnum(ReportStatus, native_enum=False), nullable=False, default=ReportStatus.DRAFT, index=True)
    verification_level = Column(SQLEnum(VerificationLevel, native_enum=False), nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    assigned_auditor_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    verified_by = Column(String(36), ForeignKey("users.id"), nullable=True)
    verified_at = Column(DateTime, nullable=True)
    expiry_date = Column(DateTime, nullable=True)
    auditor_notes = Column(Text, nullable=True)
    rejection_reason = Column(Text, nullable=True)

    calculation_notes = Column(Text, nullable=True)
    supporting_documents = Column(JSON, nullable=True, default=list)  # Ordered document references

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class CIAuditLogDB(Base):
    """
    Immutable record of every consequential action on a CI report.
    Insert-only. Rows outlive a deleted draft: report_pk is nulled,
    report_ref keeps the stable identifier.
    """
    __tablename__ = "ci_audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    report_ref = Column(String(32), nullable=False, index=True)
    report_pk = Column(Integer, ForeignKey("ci_reports.id", ondelete="SET NULL"), nullable=True)

    actor_id = Column(String(36), nullable=False)
    actor_role = Column(String(20), nullable=False)
    action = Column(String(30), nullable=False)
    previous_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=True)

    # Renamed from 'metadata' which is reserved in SQLAlchemy
    event_metadata = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
