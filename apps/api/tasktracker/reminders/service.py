from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.db import insert_if_absent
from tasktracker.models import DueDateReminder, Task, User
from tasktracker.notifications import preferences
from tasktracker.notifications.dispatcher import NotificationEvent, dispatch
from tasktracker.notifications.push import Pusher

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "cancelled")


@dataclass(frozen=True)
class ScanResult:
  due_soon: int = 0
  overdue: int = 0


async def _candidates(db: AsyncSession, *, user_id: str, reminder_type: str, reminder_date: date, due_clause: Any) -> list[Any]:
  already = (
    select(DueDateReminder.id)
    .where(
      DueDateReminder.task_id == Task.id,
      DueDateReminder.user_id == user_id,
      DueDateReminder.reminder_type == reminder_type,
      DueDateReminder.reminder_date == reminder_date,
    )
    .exists()
  )
  res = await db.execute(
    select(Task.id, Task.title, Task.due_date)
    .where(
      Task.assignee_id == user_id,
      due_clause,
      Task.status.notin_(TERMINAL_STATUSES),
      Task.deleted_at.is_(None),
      ~already,
    )
    .order_by(Task.due_date.asc(), Task.created_at.asc())
  )
  return list(res.all())


async def _remind_once(
  db: AsyncSession,
  *,
  user_id: str,
  task_id: str,
  reminder_type: str,
  reminder_date: date,
  event: NotificationEvent,
  pusher: Pusher | None,
) -> bool:
  # The dedupe row is the claim: whoever inserts it first notifies, everyone else skips.
  claimed = await insert_if_absent(
    db,
    DueDateReminder,
    values={"task_id": task_id, "user_id": user_id, "reminder_type": reminder_type, "reminder_date": reminder_date},
    index_elements=["task_id", "user_id", "reminder_type", "reminder_date"],
  )
  if not claimed:
    await db.rollback()
    return False
  await dispatch(db, event, pusher=pusher)
  await db.commit()
  return True


async def scan_due_soon_and_overdue(db: AsyncSession, *, pusher: Pusher | None = None, today: date | None = None) -> ScanResult:
  """
  Due-soon and overdue reminders for every active user.

  - Idempotent per (task, user, reminder type, date): a dedupe row is inserted
    in the same transaction as the notification.
  - Each item commits on its own; one failing item is rolled back (dedupe row
    included, so the next run retries it) and the scan moves on.
  """
  today = today or datetime.now(timezone.utc).date()
  res = await db.execute(select(User.id).where(User.active.is_(True)).order_by(User.created_at.asc()))
  user_ids = list(res.scalars().all())
  await db.commit()

  due_soon = 0
  overdue = 0
  for uid in user_ids:
    try:
      prefs = await preferences.resolve(db, uid)
      await db.commit()

      if prefs.due_soon_in_app or prefs.due_soon_email:
        threshold = today + timedelta(days=prefs.due_soon_days)
        rows = await _candidates(db, user_id=uid, reminder_type="due_soon", reminder_date=threshold, due_clause=Task.due_date == threshold)
        for task_id, title, due in rows:
          try:
            sent = await _remind_once(
              db,
              user_id=uid,
              task_id=task_id,
              reminder_type="due_soon",
              reminder_date=threshold,
              event=NotificationEvent(
                user_id=uid,
                type="due_soon",
                title=f"Task Due Soon: {title}",
                content=f"This task is due on {due.isoformat()}",
                task_id=task_id,
                metadata={"dueDate": due.isoformat()},
                force_email=prefs.due_soon_email,
              ),
              pusher=pusher,
            )
            if sent:
              due_soon += 1
          except Exception:
            logger.exception("due-soon reminder failed for task %s user %s", task_id, uid)
            await db.rollback()

      if prefs.overdue_in_app or prefs.overdue_email:
        rows = await _candidates(db, user_id=uid, reminder_type="overdue", reminder_date=today, due_clause=Task.due_date < today)
        for task_id, title, due in rows:
          try:
            sent = await _remind_once(
              db,
              user_id=uid,
              task_id=task_id,
              reminder_type="overdue",
              reminder_date=today,
              event=NotificationEvent(
                user_id=uid,
                type="overdue",
                title=f"Task Overdue: {title}",
                content=f"This task was due on {due.isoformat()}",
                task_id=task_id,
                metadata={"dueDate": due.isoformat()},
                force_email=prefs.overdue_email,
              ),
              pusher=pusher,
            )
            if sent:
              overdue += 1
          except Exception:
            logger.exception("overdue reminder failed for task %s user %s", task_id, uid)
            await db.rollback()
    except Exception:
      logger.exception("reminder scan failed for user %s", uid)
      await db.rollback()

  if due_soon or overdue:
    logger.info("reminder scan: %d due soon, %d overdue", due_soon, overdue)
  return ScanResult(due_soon=due_soon, overdue=overdue)
