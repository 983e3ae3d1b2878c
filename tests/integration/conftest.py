"""Integration test fixtures with real database and transaction-rollback isolation.

Provides:
- Session-scoped SQLite in-memory engine with foreign keys enforced
- Per-test transaction rollback so tests don't leak state
- Real FastAPI app with dependency override pointing at the test DB
- Async HTTP client for exercising endpoints end-to-end
- Seed factories and a fake test runner
"""

import inspect
import uuid

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session

from spec_companion.database import (
    Base,
    GeneratedTestDB,
    ProjectDB,
    RequirementDB,
    SpecDB,
    TestResultDB,
    utcnow,
)
from spec_companion.models import TestStatus
from spec_companion.services.test_runner import ExecutionOutcome


# ---------------------------------------------------------------------------
# Session-scoped engine: created once, tables applied
# ---------------------------------------------------------------------------

def _create_sqlite_engine():
    """Create a SQLite in-memory engine."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


@pytest.fixture(scope="session")
def integration_engine():
    """Create a real database engine for the test session."""
    engine = _create_sqlite_engine()
    Base.metadata.create_all(bind=engine)

    yield engine

    engine.dispose()


# ---------------------------------------------------------------------------
# Per-test session with transaction rollback
# ---------------------------------------------------------------------------

@pytest.fixture()
def integration_db(integration_engine):
    """Provide a real DB session that rolls back after each test."""
    connection = integration_engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection)

    yield session

    session.close()
    transaction.rollback()
    connection.close()


# ---------------------------------------------------------------------------
# Fake runner: outcome decided by the test code, no subprocesses
# ---------------------------------------------------------------------------

class FakeRunner:
    """Stands in for SubprocessTestRunner.

    Code containing ``assert False`` fails, ``pytest.skip`` skips, anything
    else passes.
    """

    def __init__(self, working_dir, timeout=120.0, temp_dir=None):
        self.working_dir = working_dir
        self.timeout = timeout

    def prepare(self):
        pass

    def run(self, job):
        if "assert False" in job.code:
            return ExecutionOutcome(status=TestStatus.FAILED, execution_time_ms=3, stdout="1 failed")
        if "pytest.skip" in job.code:
            return ExecutionOutcome(status=TestStatus.SKIPPED, execution_time_ms=1, stdout="1 skipped")
        return ExecutionOutcome(status=TestStatus.PASSED, execution_time_ms=2, stdout="1 passed")


# ---------------------------------------------------------------------------
# FastAPI app with real DB wired in
# ---------------------------------------------------------------------------

@pytest.fixture()
def integration_app(integration_db):
    """FastAPI app with get_db overridden to use the integration test session."""
    from spec_companion.app import app
    from spec_companion.database import get_db
    from spec_companion.routers import testing as testing_router

    def _override_get_db():
        yield integration_db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[testing_router.get_runner_factory] = lambda: FakeRunner
    yield app
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(testing_router.get_runner_factory, None)


# ---------------------------------------------------------------------------
# Async HTTP client (lifespan off to skip startup table creation)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def client(integration_app):
    """Async HTTP client that talks to the real app + real DB."""
    transport_kwargs = {"app": integration_app}
    if "lifespan" in inspect.signature(httpx.ASGITransport).parameters:
        transport_kwargs["lifespan"] = "off"

    transport = httpx.ASGITransport(**transport_kwargs)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


# ---------------------------------------------------------------------------
# Seed factories
# ---------------------------------------------------------------------------

@pytest.fixture()
def seed_project(integration_db, tmp_path):
    """Factory fixture: create a project row directly in the DB."""

    def _create(name="Test Project", codebase_path=None):
        project = ProjectDB(id=str(uuid.uuid4()), name=name, codebase_path=codebase_path or str(tmp_path))
        integration_db.add(project)
        integration_db.flush()
        return project

    return _create


@pytest.fixture()
def seed_spec(integration_db):
    """Factory fixture: create a spec row directly in the DB."""

    def _create(project_id, filename="spec.md", content="# Spec\n\nThe system must work."):
        spec = SpecDB(
            id=str(uuid.uuid4()),
            project_id=project_id,
            filename=filename,
            content=content,
            parsed_at=utcnow(),
        )
        integration_db.add(spec)
        integration_db.flush()
        return spec

    return _create


@pytest.fixture()
def seed_requirement(integration_db):
    """Factory fixture: create a requirement row directly in the DB."""

    def _create(spec_id, description="The system must work.", section="Spec", position=0):
        requirement = RequirementDB(
            id=str(uuid.uuid4()),
            spec_id=spec_id,
            position=position,
            section=section,
            description=description,
            req_type="functional",
            priority="medium",
        )
        integration_db.add(requirement)
        integration_db.flush()
        return requirement

    return _create


@pytest.fixture()
def seed_generated_test(integration_db):
    """Factory fixture: create a generated test row directly in the DB."""

    def _create(requirement_id, code="def test_ok():\n    assert True\n", framework="pytest"):
        test = GeneratedTestDB(
            id=str(uuid.uuid4()),
            requirement_id=requirement_id,
            framework=framework,
            code=code,
            generation_mode="template",
        )
        integration_db.add(test)
        integration_db.flush()
        return test

    return _create


@pytest.fixture()
def seed_test_result(integration_db):
    """Factory fixture: create a test result row directly in the DB."""

    def _create(generated_test_id, status="passed"):
        result = TestResultDB(
            id=str(uuid.uuid4()),
            generated_test_id=generated_test_id,
            status=status,
            execution_time_ms=5,
            stdout="",
            stderr="",
            executed_at=utcnow(),
        )
        integration_db.add(result)
        integration_db.flush()
        return result

    return _create
