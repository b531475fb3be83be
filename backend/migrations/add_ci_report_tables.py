"""
Migration: Add CI report tables.

Creates the tables for carbon intensity reporting:
1. suppliers / feedstocks - minimal reference data reports point at
2. ci_reports - one report per feedstock batch, with a version column for
   compare-and-swap writes
3. ci_audit_logs - insert-only audit trail

Key design principles:
- Single status column is the source of truth for the report lifecycle
- Audit rows survive a deleted draft (report_pk is set NULL, report_ref kept)
- Enum columns hold the enum member name as VARCHAR
"""
from sqlalchemy import create_engine, text
import os

# Use same DB URL pattern as main app
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{os.getenv('USER', 'postgres')}@localhost:5432/ci_engine"
)


def table_exists(conn, table_name: str) -> bool:
    """Check if a table exists in the database."""
    result = conn.execute(text("""
        SELECT EXISTS (
            SELECT FROM information_schema.tables
            WHERE table_name = :table_name
        )
    """), {"table_name": table_name})
    return result.fetchone()[0]


def run_migration():
    """Create CI reporting tables."""
    engine = create_engine(DATABASE_URL)

    with engine.connect() as conn:
        # =================================================================
        # REFERENCE TABLES
        # =================================================================
        if table_exists(conn, "suppliers"):
            print("suppliers table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE suppliers (
                    id VARCHAR(36) PRIMARY KEY,
                    user_id VARCHAR(36) NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
                    company_name VARCHAR(255) NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            print("Created suppliers table")

        if table_exists(conn, "feedstocks"):
            print("feedstocks table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE feedstocks (
                    id VARCHAR(36) PRIMARY KEY,
                    supplier_id VARCHAR(36) NOT NULL REFERENCES suppliers(id) ON DELETE CASCADE,
                    name VARCHAR(255) NOT NULL,
                    category VARCHAR(50) NOT NULL DEFAULT 'other',
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_feedstocks_supplier ON feedstocks(supplier_id)
            """))
            print("Created feedstocks table")

        # =================================================================
        # ci_reports
        # =================================================================
        if table_exists(conn, "ci_reports"):
            print("ci_reports table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE ci_reports (
                    id SERIAL PRIMARY KEY,
                    report_id VARCHAR(32) NOT NULL UNIQUE,
                    version INTEGER NOT NULL DEFAULT 1,
                    supplier_id VARCHAR(36) NOT NULL REFERENCES suppliers(id),
                    feedstock_id VARCHAR(36) NOT NULL REFERENCES feedstocks(id),
                    reporting_period_start DATE,
                    reporting_period_end DATE,
                    reference_year INTEGER,
                    methodology VARCHAR(30),
                    methodology_version VARCHAR(50),
                    data_quality_level VARCHAR(30) NOT NULL DEFAULT 'DEFAULT_VALUE',
                    is_new_installation BOOLEAN DEFAULT FALSE,
                    scope1_cultivation DOUBLE PRECISION,
                    scope1_processing DOUBLE PRECISION,
                    scope1_transport DOUBLE PRECISION,
                    scope2_electricity DOUBLE PRECISION,
                    scope2_steam_heat DOUBLE PRECISION,
                    scope3_upstream_inputs DOUBLE PRECISION,
                    scope3_land_use_change DOUBLE PRECISION,
                    scope3_distribution DOUBLE PRECISION,
                    scope3_end_of_life DOUBLE PRECISION,
                    scope1_total DOUBLE PRECISION,
                    scope2_total DOUBLE PRECISION,
                    scope3_total DOUBLE PRECISION,
                    total_ci_value DOUBLE PRECISION,
                    ci_score DOUBLE PRECISION,
                    ci_unit VARCHAR(30),
                    uncertainty_range_low DOUBLE PRECISION,
                    uncertainty_range_high DOUBLE PRECISION,
                    ci_rating VARCHAR(3),
                    ghg_savings_percentage DOUBLE PRECISION,
                    compliance_threshold DOUBLE PRECISION,
                    meets_compliance_threshold BOOLEAN,
                    status VARCHAR(30) NOT NULL DEFAULT 'DRAFT',
                    verification_level VARCHAR(30),
                    submitted_at TIMESTAMP,
                    assigned_auditor_id VARCHAR(36) REFERENCES users(id),
                    verified_by VARCHAR(36) REFERENCES users(id),
                    verified_at TIMESTAMP,
                    expiry_date TIMESTAMP,
                    auditor_notes TEXT,
                    rejection_reason TEXT,
                    calculation_notes TEXT,
                    supporting_documents JSON,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_ci_reports_supplier ON ci_reports(supplier_id)
            """))
            conn.execute(text("""
                CREATE INDEX idx_ci_reports_feedstock ON ci_reports(feedstock_id)
            """))
            # Expiry sweep scans by status and expiry date
            conn.execute(text("""
                CREATE INDEX idx_ci_reports_expiry ON ci_reports(status, expiry_date)
            """))
            print("Created ci_reports table")

        # =================================================================
        # ci_audit_logs
        # =================================================================
        if table_exists(conn, "ci_audit_logs"):
            print("ci_audit_logs table already exists")
        else:
            conn.execute(text("""
                CREATE TABLE ci_audit_logs (
                    id SERIAL PRIMARY KEY,
                    report_ref VARCHAR(32) NOT NULL,
                    report_pk INTEGER REFERENCES ci_reports(id) ON DELETE SET NULL,
                    actor_id VARCHAR(36) NOT NULL,
                    actor_role VARCHAR(20) NOT NULL,
                    action VARCHAR(30) NOT NULL,
                    previous_status VARCHAR(20),
                    new_status VARCHAR(20),
                    event_metadata JSON,
                    created_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                )
            """))
            conn.execute(text("""
                CREATE INDEX idx_ci_audit_logs_report ON ci_audit_logs(report_ref, created_at)
            """))
            print("Created ci_audit_logs table")

        conn.commit()
        print("CI report migration complete")


if __name__ == "__main__":
    run_migration()
