from __future__ import annotations

import pytest
from httpx import AsyncClient

from tasktracker.notifications.dispatcher import NotificationEvent, dispatch


async def _seed_inbox(db, user_id: str, actor_id: str, n: int) -> list[str]:
  ids = []
  for i in range(n):
    ids.append(await dispatch(db, NotificationEvent(user_id=user_id, actor_id=actor_id, type="mentioned", title=f"Ping {i}")))
  await db.commit()
  return ids


@pytest.mark.anyio
async def test_inbox_paging_and_read_state(client: AsyncClient, db, make_user, auth_headers) -> None:
  alice = await make_user("alice")
  bob = await make_user("bob")
  ids = await _seed_inbox(db, alice.id, bob.id, 3)
  await _seed_inbox(db, bob.id, alice.id, 1)
  h = await auth_headers(alice)

  page = (await client.get("/notifications", params={"page": 1, "pageSize": 2}, headers=h)).json()
  assert page["total"] == 3
  assert page["unreadCount"] == 3
  assert len(page["items"]) == 2
  assert {i["type"] for i in page["items"]} == {"mentioned"}

  read = await client.post(f"/notifications/{ids[0]}/read", headers=h)
  assert read.status_code == 200, read.text
  assert read.json()["isRead"] is True
  assert read.json()["readAt"] is not None
  assert (await client.get("/notifications/unread-count", headers=h)).json() == {"count": 2}

  unread = (await client.get("/notifications", params={"unreadOnly": "true"}, headers=h)).json()
  assert sorted(i["id"] for i in unread["items"]) == sorted(ids[1:])

  assert (await client.post("/notifications/read-all", headers=h)).json() == {"ok": True, "updated": 2}
  assert (await client.get("/notifications/unread-count", headers=h)).json() == {"count": 0}


@pytest.mark.anyio
async def test_cannot_touch_other_users_notifications(client: AsyncClient, db, make_user, auth_headers) -> None:
  alice = await make_user("alice")
  bob = await make_user("bob")
  [theirs] = await _seed_inbox(db, bob.id, alice.id, 1)
  h = await auth_headers(alice)

  res = await client.post(f"/notifications/{theirs}/read", headers=h)
  assert res.status_code == 404, res.text
  assert res.json()["detail"]["code"] == "NOTIFICATION_NOT_FOUND"
  res = await client.delete(f"/notifications/{theirs}", headers=h)
  assert res.status_code == 404, res.text

  hb = await auth_headers(bob)
  assert (await client.delete(f"/notifications/{theirs}", headers=hb)).json() == {"ok": True}
  assert (await client.get("/notifications", headers=hb)).json()["total"] == 0


@pytest.mark.anyio
async def test_preferences_roundtrip(client: AsyncClient, make_user, auth_headers) -> None:
  alice = await make_user("alice")
  h = await auth_headers(alice)

  body = (await client.get("/notifications/preferences", headers=h)).json()
  assert body["dueSoonEmail"] is True
  assert body["taskAssignedEmail"] is False
  assert body["dueSoonDays"] == 1

  res = await client.patch("/notifications/preferences", json={"mentionedEmail": True, "dueSoonDays": 0}, headers=h)
  assert res.status_code == 200, res.text
  updated = res.json()
  assert updated["mentionedEmail"] is True
  assert updated["dueSoonDays"] == 0
  assert updated["overdueInApp"] is True

  bad = await client.patch("/notifications/preferences", json={"dueSoonDays": -2}, headers=h)
  assert bad.status_code == 422, bad.text
