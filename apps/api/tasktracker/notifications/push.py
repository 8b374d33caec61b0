from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, SessionTransaction

from tasktracker.config import settings

logger = logging.getLogger(__name__)

_PENDING_KEY = "tasktracker.pending_pushes"

# Strong refs so in-flight pushes are not garbage collected mid-await.
_background: set[asyncio.Task] = set()


class Pusher(Protocol):
  async def push_to_user(self, user_id: str, summary: dict[str, Any]) -> None: ...


class LoggingPusher:
  async def push_to_user(self, user_id: str, summary: dict[str, Any]) -> None:
    logger.debug("push to user %s: %s", user_id, summary.get("title"))


class WebhookPusher:
  """Hands the summary to a realtime gateway over HTTP; the gateway owns the socket fan-out."""

  def __init__(self, url: str, *, timeout: float = 5.0) -> None:
    self.url = url
    self.timeout = timeout

  async def push_to_user(self, user_id: str, summary: dict[str, Any]) -> None:
    async with httpx.AsyncClient(timeout=self.timeout) as client:
      r = await client.post(self.url, json={"userId": user_id, "type": "notification", "data": summary})
      r.raise_for_status()


def default_pusher() -> Pusher:
  if settings.push_webhook_url:
    return WebhookPusher(settings.push_webhook_url, timeout=settings.push_webhook_timeout_seconds)
  return LoggingPusher()


async def _push_quietly(pusher: Pusher, user_id: str, summary: dict[str, Any]) -> None:
  try:
    await pusher.push_to_user(user_id, summary)
  except Exception:
    logger.warning("push to user %s failed", user_id, exc_info=True)


def push_in_background(pusher: Pusher, user_id: str, summary: dict[str, Any]) -> asyncio.Task:
  task = asyncio.create_task(_push_quietly(pusher, user_id, summary))
  _background.add(task)
  task.add_done_callback(_background.discard)
  return task


async def wait_for_pending_pushes() -> None:
  if _background:
    await asyncio.gather(*list(_background), return_exceptions=True)


def push_after_commit(db: AsyncSession, pusher: Pusher, user_id: str, summary: dict[str, Any]) -> None:
  """Queue a push on the session; it starts when the transaction commits and is dropped on rollback."""
  db.sync_session.info.setdefault(_PENDING_KEY, []).append((pusher, user_id, summary))


@event.listens_for(Session, "after_commit")
def _start_pending_pushes(session: Session) -> None:
  for pusher, user_id, summary in session.info.pop(_PENDING_KEY, []):
    push_in_background(pusher, user_id, summary)


@event.listens_for(Session, "after_transaction_end")
def _drop_pending_pushes(session: Session, transaction: SessionTransaction) -> None:
  # Runs after after_commit, so anything left here belongs to a rolled back or closed transaction.
  if transaction.parent is None:
    session.info.pop(_PENDING_KEY, None)
