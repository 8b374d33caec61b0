from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from tasktracker.db import SessionLocal
from tasktracker.errors import ValidationError
from tasktracker.models import NotificationPreference
from tasktracker.notifications import preferences
from tasktracker.notifications.preferences import DEFAULT_PREFERENCES, flags_for


async def _rows(db, user_id: str) -> int:
  res = await db.execute(select(func.count()).select_from(NotificationPreference).where(NotificationPreference.user_id == user_id))
  return int(res.scalar_one())


@pytest.mark.anyio
async def test_resolve_creates_defaults_once(db, make_user):
  alice = await make_user("alice")
  first = await preferences.resolve(db, alice.id)
  await db.commit()
  second = await preferences.resolve(db, alice.id)

  assert first == second == DEFAULT_PREFERENCES
  assert first.due_soon_email is True
  assert first.task_assigned_email is False
  assert first.due_soon_days == 1
  assert await _rows(db, alice.id) == 1


@pytest.mark.anyio
async def test_concurrent_first_reads_leave_one_row(db, make_user):
  bob = await make_user("bob")

  async def _resolve():
    async with SessionLocal() as s:
      snap = await preferences.resolve(s, bob.id)
      await s.commit()
      return snap

  results = await asyncio.gather(_resolve(), _resolve(), _resolve())
  assert all(r == DEFAULT_PREFERENCES for r in results)
  assert await _rows(db, bob.id) == 1


@pytest.mark.anyio
async def test_partial_update_touches_only_supplied_fields(db, make_user):
  carol = await make_user("carol")
  updated = await preferences.update(db, carol.id, {"mentioned_email": True, "due_soon_days": 3})
  await db.commit()

  assert updated.mentioned_email is True
  assert updated.due_soon_days == 3
  assert updated.mentioned_in_app is True
  assert updated.overdue_email is True
  assert await preferences.resolve(db, carol.id) == updated


@pytest.mark.anyio
async def test_update_rejects_bad_values(db, make_user):
  dave = await make_user("dave")
  with pytest.raises(ValidationError):
    await preferences.update(db, dave.id, {"due_soon_days": -1})
  with pytest.raises(ValidationError):
    await preferences.update(db, dave.id, {"quiet_hours": True})
  # Only real booleans: "false" must not silently become True.
  with pytest.raises(ValidationError):
    await preferences.update(db, dave.id, {"mentioned_email": "false"})
  with pytest.raises(ValidationError):
    await preferences.update(db, dave.id, {"overdue_in_app": 0})
  assert (await preferences.resolve(db, dave.id)).mentioned_email is False


def test_flags_for_types_without_matrix_entry():
  assert flags_for(DEFAULT_PREFERENCES, "priority_changed") == (True, False)
  assert flags_for(DEFAULT_PREFERENCES, "comment_added") == (True, False)
  assert flags_for(DEFAULT_PREFERENCES, "overdue") == (True, True)
  assert flags_for(DEFAULT_PREFERENCES, "status_changed") == (True, False)
