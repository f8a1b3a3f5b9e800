from __future__ import annotations

import os
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# API tests must not start the background impact refresh job.
os.environ.setdefault("IMPACT_SCHEDULER_ENABLED", "false")

from supplyplan.models.base import Base  # noqa: E402
from supplyplan.models import models  # noqa: E402,F401


# In-memory SQLite shared across connections
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
    future=True,
)
SessionTesting = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def create_test_database() -> Generator[None, None, None]:
    """Create/drop all tables once per test session."""
    Base.metadata.create_all(bind=engine)
    try:
        yield
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session() -> Generator:
    """Provide a transactional SQLAlchemy Session for each test.

    Each test runs in its own transaction which is rolled back afterwards,
    so DB state is isolated between tests.
    """
    connection = engine.connect()
    trans = connection.begin()
    session = SessionTesting(bind=connection)
    try:
        yield session
    finally:
        session.close()
        trans.rollback()
        connection.close()
