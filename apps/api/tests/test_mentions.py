from __future__ import annotations

import pytest
from sqlalchemy import select

from tasktracker.models import Notification
from tasktracker.notifications.dispatcher import mention_context, notify_comment_added, process_mentions


async def _mentions(db) -> list[Notification]:
  res = await db.execute(select(Notification).where(Notification.type == "mentioned").order_by(Notification.created_at.asc()))
  return list(res.scalars().all())


@pytest.mark.anyio
async def test_username_mention_notifies_once_with_context(db, make_user, make_task, pusher):
  alice = await make_user("alice")
  bob = await make_user("bob")
  task = await make_task("Quarterly report")

  ids = await process_mentions(
    db, content="ping @alice please review", task_id=task.id, task_title=task.title, actor_id=bob.id, pusher=pusher
  )
  await db.commit()

  assert ids == [alice.id]
  [n] = await _mentions(db)
  assert n.user_id == alice.id
  assert n.title == "You were mentioned in: Quarterly report"
  assert "ping @alice please" in n.content


@pytest.mark.anyio
async def test_each_user_notified_once_per_call(db, make_user, make_task, pusher):
  alice = await make_user("Alice Smith", email="alice@example.com")
  bob = await make_user("bob")
  task = await make_task()

  text = "@[Alice Smith] can you check? cc @alice@example.com and @[Alice Smith] again"
  ids = await process_mentions(db, content=text, task_id=task.id, task_title=task.title, actor_id=bob.id, pusher=pusher)
  await db.commit()

  assert ids == [alice.id]
  assert len(await _mentions(db)) == 1


@pytest.mark.anyio
async def test_mention_by_id_and_unknown_tokens(db, make_user, make_task, pusher):
  carol = await make_user("carol")
  bob = await make_user("bob")
  task = await make_task()

  text = f"@nobody and @{carol.id.replace('-', '_')} and @[Ghost User]"
  ids = await process_mentions(db, content=text, task_id=task.id, task_title=task.title, actor_id=bob.id, pusher=pusher)
  assert ids == []

  # Hyphens end a \w token, so plain ids only match when written without them.
  ids = await process_mentions(
    db, content=f"@{carol.id.replace('-', '')}", task_id=task.id, task_title=task.title, actor_id=bob.id, pusher=pusher
  )
  await db.commit()
  assert ids == [carol.id]


@pytest.mark.anyio
async def test_mentioning_yourself_is_suppressed(db, make_user, make_task, pusher):
  bob = await make_user("bob")
  task = await make_task()
  ids = await process_mentions(db, content="note to @bob", task_id=task.id, task_title=task.title, actor_id=bob.id, pusher=pusher)
  await db.commit()
  assert ids == [bob.id]
  assert await _mentions(db) == []


@pytest.mark.anyio
async def test_mentioned_assignee_gets_no_extra_comment_notification(db, make_user, make_task, pusher):
  alice = await make_user("alice")
  bob = await make_user("bob")
  task = await make_task("Fix login", assignee=alice)

  await notify_comment_added(db, task=task, comment="@alice done?", actor_id=bob.id, pusher=pusher)
  await db.commit()

  res = await db.execute(select(Notification.type).where(Notification.user_id == alice.id))
  assert list(res.scalars().all()) == ["mentioned"]


def test_mention_context_window():
  text = "x" * 80 + "@alice" + "y" * 80
  snippet = mention_context(text, 80)
  assert snippet == "x" * 50 + "@alice" + "y" * 44
  assert mention_context("@alice hi", 0) == "@alice hi"
