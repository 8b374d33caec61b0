from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.db import insert_if_absent
from tasktracker.errors import ValidationError
from tasktracker.models import NotificationPreference, utcnow

NOTIFICATION_TYPES = (
  "task_assigned",
  "mentioned",
  "status_changed",
  "priority_changed",
  "due_soon",
  "overdue",
  "comment_added",
)


@dataclass(frozen=True)
class PreferenceSnapshot:
  task_assigned_in_app: bool = True
  task_assigned_email: bool = False
  mentioned_in_app: bool = True
  mentioned_email: bool = False
  status_changed_in_app: bool = True
  status_changed_email: bool = False
  due_soon_in_app: bool = True
  due_soon_email: bool = True
  overdue_in_app: bool = True
  overdue_email: bool = True
  due_soon_days: int = 1


DEFAULT_PREFERENCES = PreferenceSnapshot()
PREFERENCE_FIELDS = tuple(f.name for f in fields(PreferenceSnapshot))

# Types with a row in the preference matrix. priority_changed and comment_added
# have no toggle yet: in-app on, email only when the caller forces it.
_MATRIX_TYPES = {"task_assigned", "mentioned", "status_changed", "due_soon", "overdue"}


def _snapshot(row: NotificationPreference) -> PreferenceSnapshot:
  return PreferenceSnapshot(**{name: getattr(row, name) for name in PREFERENCE_FIELDS})


def flags_for(prefs: PreferenceSnapshot, notification_type: str) -> tuple[bool, bool]:
  """(in_app, email) for a notification type."""
  if notification_type in _MATRIX_TYPES:
    return bool(getattr(prefs, f"{notification_type}_in_app")), bool(getattr(prefs, f"{notification_type}_email"))
  return True, False


async def resolve(db: AsyncSession, user_id: str) -> PreferenceSnapshot:
  res = await db.execute(select(NotificationPreference).where(NotificationPreference.user_id == user_id))
  row = res.scalar_one_or_none()
  if row is not None:
    return _snapshot(row)

  values: dict[str, Any] = {name: getattr(DEFAULT_PREFERENCES, name) for name in PREFERENCE_FIELDS}
  # A concurrent first read may win the insert; either way one row exists afterwards.
  await insert_if_absent(db, NotificationPreference, values={"user_id": user_id, **values}, index_elements=["user_id"])
  return DEFAULT_PREFERENCES


async def update(db: AsyncSession, user_id: str, changes: dict[str, Any]) -> PreferenceSnapshot:
  unknown = sorted(set(changes) - set(PREFERENCE_FIELDS))
  if unknown:
    raise ValidationError(f"Unknown preference field '{unknown[0]}'")
  if "due_soon_days" in changes:
    days = changes["due_soon_days"]
    if isinstance(days, bool) or not isinstance(days, int) or days < 0:
      raise ValidationError("dueSoonDays must be a non-negative integer")
  for key, val in changes.items():
    if key != "due_soon_days" and not isinstance(val, bool):
      raise ValidationError(f"Preference '{key}' must be true or false")

  await resolve(db, user_id)
  res = await db.execute(select(NotificationPreference).where(NotificationPreference.user_id == user_id))
  row = res.scalar_one()
  if changes:
    for key, val in changes.items():
      setattr(row, key, val)
    row.updated_at = utcnow()
  await db.flush()
  return _snapshot(row)
