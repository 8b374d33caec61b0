from __future__ import annotations

import pytest
from sqlalchemy import select

from tasktracker.errors import NotFoundError, ValidationError
from tasktracker.models import EmailJob, Notification, NotificationPreference
from tasktracker.notifications import preferences
from tasktracker.notifications.dispatcher import (
  NotificationEvent,
  dispatch,
  notify_comment_added,
  notify_priority_change,
  notify_status_change,
  notify_task_assignment,
)
from tasktracker.notifications.push import wait_for_pending_pushes

from conftest import RecordingPusher


async def _notifications(db, user_id: str) -> list[Notification]:
  res = await db.execute(select(Notification).where(Notification.user_id == user_id).order_by(Notification.created_at.asc()))
  return list(res.scalars().all())


async def _jobs(db) -> list[EmailJob]:
  res = await db.execute(select(EmailJob).order_by(EmailJob.created_at.asc()))
  return list(res.scalars().all())


@pytest.mark.anyio
async def test_self_notification_writes_nothing(db, make_user, pusher):
  alice = await make_user("alice")
  out = await dispatch(
    db,
    NotificationEvent(user_id=alice.id, actor_id=alice.id, type="task_assigned", title="Mine", force_email=True),
    pusher=pusher,
  )
  await db.commit()
  assert out is None
  assert await _notifications(db, alice.id) == []
  assert await _jobs(db) == []


@pytest.mark.anyio
async def test_in_app_only_by_default_for_assignment(db, make_user, make_task, pusher):
  alice = await make_user("alice")
  bob = await make_user("Bob Builder", email="bob@example.com")
  task = await make_task("Fix login", assignee=alice)

  nid = await notify_task_assignment(db, task_id=task.id, task_title=task.title, assignee_id=alice.id, actor_id=bob.id, pusher=pusher)
  await db.commit()
  await wait_for_pending_pushes()

  [n] = await _notifications(db, alice.id)
  assert n.id == nid
  assert n.title == "New Task Assigned: Fix login"
  assert n.content == "Bob Builder assigned this task to you"
  assert n.is_read is False
  assert await _jobs(db) == []
  assert pusher.pushed == [(alice.id, {"id": nid, "type": "task_assigned", "title": n.title, "content": n.content, "taskId": task.id, "actorId": bob.id})]


@pytest.mark.anyio
async def test_email_preference_enqueues_job_linked_to_notification(db, make_user, make_task, pusher):
  alice = await make_user("alice")
  bob = await make_user("bob")
  task = await make_task("Fix login", assignee=alice, description="Users cannot log in")
  await preferences.update(db, alice.id, {"task_assigned_email": True})
  await db.commit()

  nid = await notify_task_assignment(db, task_id=task.id, task_title=task.title, assignee_id=alice.id, actor_id=bob.id, pusher=pusher)
  await db.commit()

  [job] = await _jobs(db)
  assert job.status == "pending"
  assert job.attempts == 0
  assert job.to_email == "alice@example.com"
  assert job.to_name == "alice"
  assert job.notification_id == nid
  assert job.subject == "New Task Assigned: Fix login"
  assert "Users cannot log in" in job.text_body


@pytest.mark.anyio
async def test_email_only_returns_none_and_unlinked_job(db, make_user, pusher):
  alice = await make_user("alice")
  await preferences.update(db, alice.id, {"overdue_in_app": False})
  await db.commit()

  out = await dispatch(db, NotificationEvent(user_id=alice.id, type="overdue", title="Task Overdue: X"), pusher=pusher)
  await db.commit()

  assert out is None
  assert await _notifications(db, alice.id) == []
  [job] = await _jobs(db)
  assert job.notification_id is None


@pytest.mark.anyio
async def test_both_channels_off_writes_nothing(db, make_user, pusher):
  alice = await make_user("alice")
  await preferences.update(db, alice.id, {"status_changed_in_app": False, "status_changed_email": False})
  await db.commit()

  out = await dispatch(db, NotificationEvent(user_id=alice.id, type="status_changed", title="Moved"), pusher=pusher)
  assert out is None
  assert await _notifications(db, alice.id) == []
  assert await _jobs(db) == []


@pytest.mark.anyio
async def test_force_email_overrides_preference(db, make_user, pusher):
  alice = await make_user("alice")
  await dispatch(db, NotificationEvent(user_id=alice.id, type="comment_added", title="New comment", force_email=True), pusher=pusher)
  await db.commit()
  assert len(await _notifications(db, alice.id)) == 1
  assert len(await _jobs(db)) == 1


@pytest.mark.anyio
async def test_priority_and_comment_defaults_are_in_app_only(db, make_user, make_task, pusher):
  alice = await make_user("alice")
  bob = await make_user("bob")
  task = await make_task("Fix login", assignee=alice)

  await notify_priority_change(db, task=task, old_priority="low", new_priority="high", actor_id=bob.id, pusher=pusher)
  await notify_comment_added(db, task=task, comment="Looks good to me", actor_id=bob.id, pusher=pusher)
  await db.commit()

  types = [n.type for n in await _notifications(db, alice.id)]
  assert sorted(types) == ["comment_added", "priority_changed"]
  assert await _jobs(db) == []


@pytest.mark.anyio
async def test_status_change_notifies_assignee(db, make_user, make_task, pusher):
  alice = await make_user("alice")
  bob = await make_user("bob")
  task = await make_task("Fix login", assignee=alice, status="in_progress")

  assert await notify_status_change(db, task=task, old_status="pending", new_status="pending", actor_id=bob.id, pusher=pusher) is None
  nid = await notify_status_change(db, task=task, old_status="pending", new_status="in_progress", actor_id=bob.id, pusher=pusher)
  await db.commit()

  [n] = await _notifications(db, alice.id)
  assert n.id == nid
  assert n.content == "pending → in_progress"
  assert n.meta == {"from": "pending", "to": "in_progress"}


@pytest.mark.anyio
async def test_push_failure_does_not_break_dispatch(db, make_user):
  alice = await make_user("alice")
  broken = RecordingPusher(fail=True)
  nid = await dispatch(db, NotificationEvent(user_id=alice.id, type="mentioned", title="Hi"), pusher=broken)
  await db.commit()
  await wait_for_pending_pushes()
  assert nid is not None
  assert len(await _notifications(db, alice.id)) == 1


@pytest.mark.anyio
async def test_invalid_events_are_rejected(db, make_user, pusher):
  alice = await make_user("alice")
  with pytest.raises(ValidationError):
    await dispatch(db, NotificationEvent(user_id=alice.id, type="birthday", title="Cake"), pusher=pusher)
  with pytest.raises(ValidationError):
    await dispatch(db, NotificationEvent(user_id=alice.id, type="mentioned", title="   "), pusher=pusher)


@pytest.mark.anyio
@pytest.mark.parametrize("notification_type", ["overdue", "mentioned"])
async def test_unknown_user_raises_without_side_effects(db, pusher, notification_type):
  # overdue goes to both channels by default, mentioned is in-app only.
  ghost = "00000000-0000-0000-0000-000000000000"
  with pytest.raises(NotFoundError):
    await dispatch(db, NotificationEvent(user_id=ghost, type=notification_type, title="Late"), pusher=pusher)
  await db.commit()
  await wait_for_pending_pushes()

  assert pusher.pushed == []
  assert await _notifications(db, ghost) == []
  assert await _jobs(db) == []
  prefs = (await db.execute(select(NotificationPreference).where(NotificationPreference.user_id == ghost))).scalars().all()
  assert prefs == []


@pytest.mark.anyio
async def test_push_waits_for_commit_and_is_dropped_on_rollback(db, make_user, pusher):
  alice = await make_user("alice")
  # rollback expires ORM instances on this session
  alice_id = alice.id

  await dispatch(db, NotificationEvent(user_id=alice_id, type="mentioned", title="Rolled back"), pusher=pusher)
  await wait_for_pending_pushes()
  assert pusher.pushed == []
  await db.rollback()
  await wait_for_pending_pushes()
  assert pusher.pushed == []
  assert await _notifications(db, alice_id) == []

  nid = await dispatch(db, NotificationEvent(user_id=alice_id, type="mentioned", title="Kept"), pusher=pusher)
  await db.commit()
  await wait_for_pending_pushes()
  assert [(uid, s["id"]) for uid, s in pusher.pushed] == [(alice_id, nid)]
