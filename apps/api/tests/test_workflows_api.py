from __future__ import annotations

import pytest
from httpx import AsyncClient

from tasktracker.workflows.store import ensure_default_workflow

KANBAN = {
  "name": "Kanban",
  "description": "Three columns",
  "statuses": [
    {"id": "todo", "name": "To do", "color": "#6b7280", "order": 1},
    {"id": "doing", "name": "Doing", "color": "#3b82f6", "order": 2},
    {"id": "done", "name": "Done", "color": "#10b981", "order": 3},
  ],
  "transitions": [{"from": "todo", "to": ["doing"]}, {"from": "doing", "to": ["done", "todo"]}],
  "roleRestrictions": {"doing->done": ["admin"]},
}


@pytest.mark.anyio
async def test_requires_token(client: AsyncClient) -> None:
  res = await client.get("/workflows")
  assert res.status_code == 401, res.text
  res = await client.get("/workflows", headers={"Authorization": "Bearer tt_nope"})
  assert res.status_code == 401, res.text


@pytest.mark.anyio
async def test_admin_manages_workflows(client: AsyncClient, db, make_user, auth_headers) -> None:
  default = await ensure_default_workflow(db)
  admin = await make_user("root", role="admin")
  h = await auth_headers(admin)

  created = await client.post("/workflows", json={**KANBAN, "isDefault": True}, headers=h)
  assert created.status_code == 201, created.text
  wf = created.json()
  assert wf["isDefault"] is True
  assert wf["transitions"][0] == {"from": "todo", "to": ["doing"]}

  listed = (await client.get("/workflows", headers=h)).json()
  assert [w["isDefault"] for w in listed] == [True, False]
  assert listed[1]["id"] == default.id
  assert (await client.get("/workflows/default", headers=h)).json()["id"] == wf["id"]

  patched = await client.patch(f"/workflows/{wf['id']}", json={"name": "Kanban v2"}, headers=h)
  assert patched.status_code == 200, patched.text
  assert patched.json()["name"] == "Kanban v2"
  assert patched.json()["roleRestrictions"] == {"doing->done": ["admin"]}

  refused = await client.delete(f"/workflows/{wf['id']}", headers=h)
  assert refused.status_code == 400, refused.text
  assert refused.json()["detail"]["code"] == "CANNOT_DELETE_DEFAULT"

  deleted = await client.delete(f"/workflows/{default.id}", headers=h)
  assert deleted.status_code == 200, deleted.text
  missing = await client.get(f"/workflows/{default.id}", headers=h)
  assert missing.status_code == 404, missing.text
  assert missing.json()["detail"]["code"] == "WORKFLOW_NOT_FOUND"


@pytest.mark.anyio
async def test_invalid_workflow_is_422(client: AsyncClient, make_user, auth_headers) -> None:
  admin = await make_user("root", role="admin")
  h = await auth_headers(admin)
  bad = {**KANBAN, "transitions": [{"from": "todo", "to": ["archived"]}]}
  res = await client.post("/workflows", json=bad, headers=h)
  assert res.status_code == 422, res.text
  assert res.json()["detail"]["code"] == "VALIDATION_ERROR"


@pytest.mark.anyio
async def test_members_cannot_mutate(client: AsyncClient, make_user, auth_headers) -> None:
  member = await make_user("mia")
  h = await auth_headers(member)
  res = await client.post("/workflows", json=KANBAN, headers=h)
  assert res.status_code == 403, res.text


@pytest.mark.anyio
async def test_validate_transition_endpoint(client: AsyncClient, db, make_user, auth_headers) -> None:
  admin = await make_user("root", role="admin")
  member = await make_user("mia")
  wf = (await client.post("/workflows", json=KANBAN, headers=await auth_headers(admin))).json()
  h = await auth_headers(member)

  ok = await client.post(f"/workflows/{wf['id']}/validate-transition", json={"fromStatus": "todo", "toStatus": "doing"}, headers=h)
  assert ok.json() == {"valid": True, "reason": None, "allowedTargets": ["doing"]}

  denied = await client.post(f"/workflows/{wf['id']}/validate-transition", json={"fromStatus": "doing", "toStatus": "done"}, headers=h)
  assert denied.json()["valid"] is False
  assert denied.json()["reason"] == "role not authorized"
  assert denied.json()["allowedTargets"] == ["todo"]

  as_admin = await client.post(
    f"/workflows/{wf['id']}/validate-transition",
    json={"fromStatus": "doing", "toStatus": "done", "role": "admin"},
    headers=h,
  )
  assert as_admin.json()["valid"] is True
