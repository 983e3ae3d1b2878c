import inspect
from datetime import datetime, timezone
from unittest.mock import MagicMock

import httpx
import pytest
import pytest_asyncio

from spec_companion.models import (
    AppSettings,
    Framework,
    GeneratedTest,
    GenerationMode,
    Priority,
    Requirement,
    RequirementType,
)


@pytest.fixture(scope="session")
def app():
    # Import lazily so test collection doesn't accidentally trigger app startup.
    from spec_companion.app import app as fastapi_app

    return fastapi_app


@pytest.fixture()
def mock_db_session():
    # Session-like mock used for dependency overrides in router tests.
    db = MagicMock(name="db_session")
    db.rollback = MagicMock(name="rollback")
    db.close = MagicMock(name="close")
    return db


@pytest.fixture()
def override_get_db(app, mock_db_session):
    """
    Override FastAPI's `get_db` dependency so route tests don't touch a real DB.
    """
    from spec_companion.database import get_db

    def _override():
        yield mock_db_session

    app.dependency_overrides[get_db] = _override
    try:
        yield mock_db_session
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest_asyncio.fixture()
async def async_client(app):
    """
    ASGI test client (async) with lifespan disabled so startup doesn't create tables.
    """
    transport_kwargs = {"app": app}
    if "lifespan" in inspect.signature(httpx.ASGITransport).parameters:
        transport_kwargs["lifespan"] = "off"

    transport = httpx.ASGITransport(**transport_kwargs)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Point the settings file at a temp dir so tests never read the user's real settings."""
    from spec_companion.config import ServerConfig

    path = tmp_path / "settings.yaml"
    monkeypatch.setattr(ServerConfig, "SETTINGS_PATH", path)
    monkeypatch.setattr(ServerConfig, "TEST_TEMP_DIR", tmp_path / "spec-companion-tests")
    return path


@pytest.fixture()
def settings():
    return AppSettings(llm_backoff_seconds=0.0, max_parallel_tests=2, llm_max_workers=2)


@pytest.fixture()
def make_requirement():
    """Factory for Requirement models."""

    def _make(
        description="The system must authenticate users.",
        section="Spec > Authentication",
        req_id="req-1",
        req_type=RequirementType.FUNCTIONAL,
        priority=Priority.MEDIUM,
        position=0,
    ):
        return Requirement(
            id=req_id,
            spec_id="spec-1",
            position=position,
            section=section,
            description=description,
            req_type=req_type,
            priority=priority,
        )

    return _make


@pytest.fixture()
def make_generated_test():
    """Factory for GeneratedTest models."""

    def _make(test_id="test-1", requirement_id="req-1", framework=Framework.PYTEST, code="def test_x():\n    assert True\n", file_path=None):
        return GeneratedTest(
            id=test_id,
            requirement_id=requirement_id,
            framework=framework,
            code=code,
            generation_mode=GenerationMode.TEMPLATE,
            file_path=file_path,
            created_at=datetime.now(timezone.utc),
        )

    return _make
