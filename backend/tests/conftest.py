"""
Shared test setup.

Points the application at an in-memory SQLite database before any app
module builds its engine, and provides a SQLite session with foreign keys
enforced for persistence tests.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models.db_models import FeedstockDB, SupplierDB, UserDB


@pytest.fixture
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=sqlite_engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def seeded(db_session):
    """Supplier with one feedstock, a second supplier, two auditors, a buyer."""
    db_session.add_all([
        UserDB(id="user-s", email="supplier@example.com", role="supplier"),
        UserDB(id="user-t", email="other@example.com", role="supplier"),
        UserDB(id="user-a", email="auditor@example.com", role="auditor"),
        UserDB(id="user-b", email="auditor2@example.com", role="auditor"),
        UserDB(id="user-buyer", email="buyer@example.com", role="buyer"),
    ])
    db_session.flush()
    db_session.add_all([
        SupplierDB(id="sup-1", user_id="user-s", company_name="Green Oils Ltd"),
        SupplierDB(id="sup-2", user_id="user-t", company_name="Other Fuels"),
    ])
    db_session.flush()
    db_session.add_all([
        FeedstockDB(id="fs-1", supplier_id="sup-1", name="Rapeseed batch 7", category="oilseed"),
        FeedstockDB(id="fs-2", supplier_id="sup-2", name="UCO lot 3", category="UCO"),
    ])
    db_session.commit()
    return db_session
