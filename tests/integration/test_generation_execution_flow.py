"""Template generation, saving and synchronous execution against a real database."""

import asyncio
import time

import pytest

from spec_companion.routers import testing as testing_router
from spec_companion.services.llm_generator import GenerationProvider

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]


class SlowProvider(GenerationProvider):
    def generate(self, prompt: str) -> str:
        time.sleep(1.5)
        return "```python\ndef test_generated():\n    assert True\n```"


@pytest.fixture()
def project_with_requirements(seed_project, seed_spec, seed_requirement):
    project = seed_project()
    spec = seed_spec(project.id)
    login = seed_requirement(spec.id, description="Users must be able to log in.", section="Shop > Auth")
    logout = seed_requirement(spec.id, description="Users must be able to log out.", section="Shop > Auth", position=1)
    return project.id, login.id, logout.id


async def test_template_generation_stores_tests(client, project_with_requirements):
    project_id, login_id, logout_id = project_with_requirements

    resp = await client.post(
        f"/projects/{project_id}/tests/generate",
        json={"requirement_ids": [login_id, logout_id], "framework": "pytest", "mode": "template"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["failures"] == []
    assert [t["requirement_id"] for t in body["tests"]] == [login_id, logout_id]
    assert "class TestAuth:" in body["tests"][0]["code"]
    assert "Users must be able to log in." in body["tests"][0]["code"]

    for_login = (await client.get(f"/requirements/{login_id}/tests")).json()
    assert [t["id"] for t in for_login] == [body["tests"][0]["id"]]
    assert len((await client.get(f"/projects/{project_id}/tests")).json()) == 2


async def test_generation_rejections(client, project_with_requirements):
    project_id, login_id, _ = project_with_requirements

    empty = await client.post(f"/projects/{project_id}/tests/generate", json={"requirement_ids": []})
    foreign = await client.post(f"/projects/{project_id}/tests/generate", json={"requirement_ids": ["nope"]})
    unknown_project = await client.post("/projects/nope/tests/generate", json={"requirement_ids": [login_id]})

    assert empty.status_code == 400
    assert foreign.status_code == 404
    assert unknown_project.status_code == 404
    assert (await client.get(f"/projects/{project_id}/tests")).json() == []


async def test_save_test_to_disk(client, tmp_path, project_with_requirements):
    project_id, login_id, _ = project_with_requirements
    generated = (
        await client.post(
            f"/projects/{project_id}/tests/generate",
            json={"requirement_ids": [login_id], "framework": "jest", "mode": "template"},
        )
    ).json()["tests"][0]

    resp = await client.post(f"/tests/{generated['id']}/save", json={"path": "tests/login.test.js"})

    assert resp.status_code == 200
    target = tmp_path / "tests" / "login.test.js"
    assert resp.json()["file_path"] == str(target)
    assert target.read_text() == generated["code"]
    assert (await client.post("/tests/nope/save", json={"path": "x.js"})).status_code == 404


async def test_execute_records_results(client, project_with_requirements, seed_generated_test):
    project_id, login_id, logout_id = project_with_requirements
    passing = seed_generated_test(login_id).id
    failing = seed_generated_test(logout_id, code="def test_logout():\n    assert False\n").id
    skipped = seed_generated_test(logout_id, code="import pytest\npytest.skip('later')\n").id

    resp = await client.post(f"/projects/{project_id}/tests/execute", json={"test_ids": [passing, failing, skipped]})

    assert resp.status_code == 200
    statuses = {r["generated_test_id"]: r["status"] for r in resp.json()}
    assert statuses == {passing: "passed", failing: "failed", skipped: "skipped"}

    stored = (await client.get(f"/projects/{project_id}/results")).json()
    assert {r["id"] for r in stored} == {r["id"] for r in resp.json()}
    one = (await client.get(f"/results/{stored[0]['id']}")).json()
    assert one["stdout"] in ("1 passed", "1 failed", "1 skipped")


async def test_execute_rejections(client, project_with_requirements, seed_project, seed_spec, seed_requirement, seed_generated_test):
    project_id, login_id, _ = project_with_requirements
    other_project = seed_project(name="Other")
    other_requirement = seed_requirement(seed_spec(other_project.id).id)
    foreign_test = seed_generated_test(other_requirement.id).id

    empty = await client.post(f"/projects/{project_id}/tests/execute", json={"test_ids": []})
    foreign = await client.post(f"/projects/{project_id}/tests/execute", json={"test_ids": [foreign_test]})

    assert empty.status_code == 400
    assert foreign.status_code == 404
    assert (await client.get(f"/projects/{project_id}/results")).json() == []


async def test_llm_generation_does_not_block_other_requests(client, integration_app, project_with_requirements):
    project_id, login_id, _ = project_with_requirements
    integration_app.dependency_overrides[testing_router.get_generation_provider] = SlowProvider
    try:

        async def timed_health():
            await asyncio.sleep(0.1)
            start = time.monotonic()
            resp = await client.get("/health")
            return resp, time.monotonic() - start

        generated, (health, health_seconds) = await asyncio.gather(
            client.post(
                f"/projects/{project_id}/tests/generate",
                json={"requirement_ids": [login_id], "framework": "pytest", "mode": "llm"},
            ),
            timed_health(),
        )
    finally:
        integration_app.dependency_overrides.pop(testing_router.get_generation_provider, None)

    assert health.status_code == 200
    assert health_seconds < 0.5
    assert generated.status_code == 200
    assert [t["generation_mode"] for t in generated.json()["tests"]] == ["llm"]
