"""Spec upload, reparse and delete against a real database."""

import pytest
from sqlalchemy import func

from spec_companion.database import GeneratedTestDB, RequirementDB, SpecDB

pytestmark = [pytest.mark.integration, pytest.mark.asyncio]

SPEC = """# Checkout

## Functional Requirements

- Users must be able to add items to the cart.
- The cart should display a running total.
- REQ-7: Orders are persisted after payment.

## Notes

Some background prose that is not a requirement.
"""


async def test_upload_extracts_requirements_in_order(client, seed_project):
    project_id = seed_project().id

    resp = await client.post(
        f"/projects/{project_id}/specs", json={"filename": "../../etc/checkout.md", "content": SPEC}
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["spec"]["filename"] == "checkout.md"
    assert body["spec"]["parsed_at"] is not None
    requirements = body["requirements"]
    assert [r["position"] for r in requirements] == list(range(len(requirements)))
    assert requirements[0]["description"] == "Users must be able to add items to the cart."
    assert requirements[2]["description"] == "[REQ-7] Orders are persisted after payment."
    assert all(r["section"] == "Checkout > Functional Requirements" for r in requirements)

    fetched = (await client.get(f"/specs/{body['spec']['id']}")).json()
    assert fetched == body

    listed = (await client.get(f"/projects/{project_id}/specs")).json()
    assert [s["id"] for s in listed] == [body["spec"]["id"]]
    assert (await client.get(f"/projects/{project_id}")).json()["spec_count"] == 1


async def test_upload_without_requirements(client, seed_project):
    project_id = seed_project().id

    resp = await client.post(f"/projects/{project_id}/specs", json={"filename": "notes.md", "content": "Just prose."})

    assert resp.status_code == 200
    assert resp.json()["requirements"] == []


async def test_upload_rejections(client, seed_project):
    project_id = seed_project().id

    empty = await client.post(f"/projects/{project_id}/specs", json={"filename": "a.md", "content": "   "})
    no_name = await client.post(f"/projects/{project_id}/specs", json={"filename": "../", "content": SPEC})
    unknown = await client.post("/projects/nope/specs", json={"filename": "a.md", "content": SPEC})

    assert empty.status_code == 400
    assert no_name.status_code == 400
    assert unknown.status_code == 404
    assert (await client.get(f"/projects/{project_id}/specs")).json() == []


async def test_reparse_replaces_requirements_and_their_tests(
    client, integration_db, seed_project, seed_spec, seed_requirement, seed_generated_test
):
    project_id = seed_project().id
    spec_id = seed_spec(project_id, content=SPEC).id
    stale_id = seed_requirement(spec_id, description="Old requirement").id
    seed_generated_test(stale_id)

    resp = await client.post(f"/specs/{spec_id}/reparse")

    assert resp.status_code == 200
    requirements = resp.json()["requirements"]
    assert len(requirements) == 3
    assert stale_id not in {r["id"] for r in requirements}
    assert integration_db.query(func.count(GeneratedTestDB.id)).scalar() == 0
    assert integration_db.query(func.count(RequirementDB.id)).scalar() == 3


async def test_reparse_is_stable(client, seed_project):
    project_id = seed_project().id
    spec_id = (await client.post(f"/projects/{project_id}/specs", json={"filename": "c.md", "content": SPEC})).json()[
        "spec"
    ]["id"]

    first = (await client.post(f"/specs/{spec_id}/reparse")).json()["requirements"]
    second = (await client.post(f"/specs/{spec_id}/reparse")).json()["requirements"]

    def fields(reqs):
        return [(r["position"], r["section"], r["description"], r["req_type"], r["priority"]) for r in reqs]

    assert fields(first) == fields(second)


async def test_delete_spec(client, integration_db, seed_project, seed_spec, seed_requirement):
    project_id = seed_project().id
    spec_id = seed_spec(project_id).id
    seed_requirement(spec_id)

    assert (await client.delete(f"/specs/{spec_id}")).status_code == 200
    assert (await client.get(f"/specs/{spec_id}")).status_code == 404
    assert integration_db.query(func.count(SpecDB.id)).scalar() == 0
    assert integration_db.query(func.count(RequirementDB.id)).scalar() == 0
    assert (await client.delete(f"/specs/{spec_id}")).status_code == 404
