from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.config import settings
from tasktracker.errors import NotFoundError, ValidationError
from tasktracker.mail.queue import enqueue
from tasktracker.models import Notification, Task, User
from tasktracker.notifications import preferences
from tasktracker.notifications.preferences import NOTIFICATION_TYPES
from tasktracker.notifications.push import Pusher, default_pusher, push_after_commit
from tasktracker.notifications.templates import TaskSummary, render_email

logger = logging.getLogger(__name__)

MENTION_CONTEXT_CHARS = 50
_USERNAME_MENTION = re.compile(r"@(\w+)")
_DISPLAY_NAME_MENTION = re.compile(r"@\[([^\]]+)\]")


@dataclass(frozen=True)
class NotificationEvent:
  user_id: str
  type: str
  title: str
  content: str | None = None
  task_id: str | None = None
  actor_id: str | None = None
  metadata: dict[str, Any] = field(default_factory=dict)
  force_email: bool = False


async def _user(db: AsyncSession, user_id: str | None) -> User | None:
  if not user_id:
    return None
  res = await db.execute(select(User).where(User.id == user_id))
  return res.scalar_one_or_none()


async def _task(db: AsyncSession, task_id: str | None) -> Task | None:
  if not task_id:
    return None
  res = await db.execute(select(Task).where(Task.id == task_id))
  return res.scalar_one_or_none()


async def dispatch(db: AsyncSession, event: NotificationEvent, *, pusher: Pusher | None = None) -> str | None:
  """
  Turn one event into an in-app record and/or a queued email for one user.

  Returns the notification id, or None when nothing was recorded in-app
  (self-notification, both channels off, or email-only delivery). Does not
  commit: the caller owns the transaction, and the realtime push only starts
  once it commits.
  """
  # Never notify a user about their own action.
  if event.actor_id and event.actor_id == event.user_id:
    return None
  if event.type not in NOTIFICATION_TYPES:
    raise ValidationError(f"Unknown notification type '{event.type}'")
  if not (event.title or "").strip():
    raise ValidationError("Notification title is required")
  recipient = await _user(db, event.user_id)
  if recipient is None:
    raise NotFoundError("User not found", code="USER_NOT_FOUND")

  prefs = await preferences.resolve(db, event.user_id)
  in_app_enabled, email_pref = preferences.flags_for(prefs, event.type)
  email_enabled = bool(event.force_email or email_pref)
  if not in_app_enabled and not email_enabled:
    logger.debug("%s for user %s suppressed by preferences", event.type, event.user_id)
    return None

  notification_id: str | None = None
  if in_app_enabled:
    n = Notification(
      user_id=event.user_id,
      type=event.type,
      title=event.title,
      content=event.content,
      task_id=event.task_id,
      actor_id=event.actor_id,
      meta=dict(event.metadata or {}),
    )
    db.add(n)
    await db.flush()
    notification_id = n.id
    push_after_commit(
      db,
      pusher or default_pusher(),
      event.user_id,
      {
        "id": n.id,
        "type": event.type,
        "title": event.title,
        "content": event.content,
        "taskId": event.task_id,
        "actorId": event.actor_id,
      },
    )

  if email_enabled:
    task = await _task(db, event.task_id)
    actor = await _user(db, event.actor_id)
    rendered = render_email(
      event.type,
      event.title,
      event.content,
      TaskSummary(title=task.title, description=task.description) if task else None,
      actor.name if actor else None,
      app_name=settings.app_name,
    )
    await enqueue(
      db,
      to_email=recipient.email,
      to_name=recipient.name,
      subject=rendered.subject,
      html_body=rendered.html,
      text_body=rendered.text,
      notification_id=notification_id,
    )

  return notification_id


async def notify_task_assignment(
  db: AsyncSession,
  *,
  task_id: str,
  task_title: str,
  assignee_id: str,
  actor_id: str,
  pusher: Pusher | None = None,
) -> str | None:
  actor = await _user(db, actor_id)
  return await dispatch(
    db,
    NotificationEvent(
      user_id=assignee_id,
      type="task_assigned",
      title=f"New Task Assigned: {task_title}",
      content=f"{actor.name} assigned this task to you" if actor else "A task has been assigned to you",
      task_id=task_id,
      actor_id=actor_id,
      metadata={"taskTitle": task_title},
    ),
    pusher=pusher,
  )


async def notify_mention(
  db: AsyncSession,
  *,
  task_id: str,
  task_title: str,
  mentioned_user_id: str,
  actor_id: str,
  context: str | None = None,
  pusher: Pusher | None = None,
) -> str | None:
  return await dispatch(
    db,
    NotificationEvent(
      user_id=mentioned_user_id,
      type="mentioned",
      title=f"You were mentioned in: {task_title}",
      content=context or "You were mentioned in a task",
      task_id=task_id,
      actor_id=actor_id,
      metadata={"taskTitle": task_title, "context": context},
    ),
    pusher=pusher,
  )


def _is_uuid(value: str) -> bool:
  try:
    uuid.UUID(value)
  except ValueError:
    return False
  return True


def mention_context(content: str, index: int) -> str:
  return content[max(0, index - MENTION_CONTEXT_CHARS) : index + MENTION_CONTEXT_CHARS]


async def process_mentions(
  db: AsyncSession,
  *,
  content: str,
  task_id: str,
  task_title: str,
  actor_id: str,
  pusher: Pusher | None = None,
) -> list[str]:
  """
  Notify users mentioned as @token (exact name, email or id) or @[Display Name].

  Matching is literal. Each user is notified at most once per call; returns
  the mentioned user ids in first-mention order.
  """
  mentioned: list[str] = []
  text = content or ""

  for m in _USERNAME_MENTION.finditer(text):
    token = m.group(1)
    clauses = [User.name == token, User.email == token]
    if _is_uuid(token):
      clauses.append(User.id == token)
    res = await db.execute(select(User.id).where(or_(*clauses)).limit(1))
    uid = res.scalar_one_or_none()
    if uid and uid not in mentioned:
      mentioned.append(uid)
      await notify_mention(
        db, task_id=task_id, task_title=task_title, mentioned_user_id=uid, actor_id=actor_id,
        context=mention_context(text, m.start()), pusher=pusher,
      )

  for m in _DISPLAY_NAME_MENTION.finditer(text):
    display_name = m.group(1)
    res = await db.execute(select(User.id).where(User.name == display_name).limit(1))
    uid = res.scalar_one_or_none()
    if uid and uid not in mentioned:
      mentioned.append(uid)
      await notify_mention(
        db, task_id=task_id, task_title=task_title, mentioned_user_id=uid, actor_id=actor_id,
        context=mention_context(text, m.start()), pusher=pusher,
      )

  return mentioned


async def notify_status_change(
  db: AsyncSession,
  *,
  task: Task,
  old_status: str,
  new_status: str,
  actor_id: str | None,
  pusher: Pusher | None = None,
) -> str | None:
  if not task.assignee_id or old_status == new_status:
    return None
  return await dispatch(
    db,
    NotificationEvent(
      user_id=task.assignee_id,
      type="status_changed",
      title=f"Task Status Updated: {task.title}",
      content=f"{old_status} → {new_status}",
      task_id=task.id,
      actor_id=actor_id,
      metadata={"from": old_status, "to": new_status},
    ),
    pusher=pusher,
  )


async def notify_priority_change(
  db: AsyncSession,
  *,
  task: Task,
  old_priority: str,
  new_priority: str,
  actor_id: str | None,
  pusher: Pusher | None = None,
) -> str | None:
  if not task.assignee_id or old_priority == new_priority:
    return None
  return await dispatch(
    db,
    NotificationEvent(
      user_id=task.assignee_id,
      type="priority_changed",
      title=f"Task Priority Changed: {task.title}",
      content=f"{old_priority} → {new_priority}",
      task_id=task.id,
      actor_id=actor_id,
      metadata={"from": old_priority, "to": new_priority},
    ),
    pusher=pusher,
  )


async def notify_comment_added(
  db: AsyncSession,
  *,
  task: Task,
  comment: str,
  actor_id: str,
  pusher: Pusher | None = None,
) -> list[str]:
  """Mentions first, then the assignee (unless already notified as a mention)."""
  mentioned = await process_mentions(
    db, content=comment, task_id=task.id, task_title=task.title, actor_id=actor_id, pusher=pusher
  )
  if task.assignee_id and task.assignee_id not in mentioned:
    actor = await _user(db, actor_id)
    await dispatch(
      db,
      NotificationEvent(
        user_id=task.assignee_id,
        type="comment_added",
        title=f"New Comment on: {task.title}",
        content=f"{actor.name}: {comment[:200]}" if actor else comment[:200],
        task_id=task.id,
        actor_id=actor_id,
        metadata={"taskTitle": task.title},
      ),
      pusher=pusher,
    )
  return mentioned
