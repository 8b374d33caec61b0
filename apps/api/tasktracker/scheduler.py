from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tasktracker.config import settings
from tasktracker.mail.queue import DrainResult, EmailQueue
from tasktracker.notifications.push import Pusher
from tasktracker.reminders.service import ScanResult, scan_due_soon_and_overdue

logger = logging.getLogger(__name__)

REMINDER_SCAN = "reminder_scan"
EMAIL_DRAIN = "email_drain"


class Scheduler:
  """
  Two independent timers (reminder scan, email drain) plus one delayed run of
  both at start. Manual triggers call the same run_* entry points.

  stop() stops issuing new runs and waits for in-flight ones; a running drain
  is never cancelled.
  """

  def __init__(
    self,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    queue: EmailQueue,
    pusher: Pusher | None = None,
    reminder_interval: float | None = None,
    drain_interval: float | None = None,
    initial_delay: float | None = None,
  ) -> None:
    self.session_factory = session_factory
    self.queue = queue
    self.pusher = pusher
    self.reminder_interval = float(reminder_interval if reminder_interval is not None else settings.reminder_scan_interval_seconds)
    self.drain_interval = float(drain_interval if drain_interval is not None else settings.email_drain_interval_seconds)
    self.initial_delay = float(initial_delay if initial_delay is not None else settings.scheduler_initial_delay_seconds)
    self.last_runs: dict[str, datetime] = {}
    self._stop_event: asyncio.Event | None = None
    self._tasks: list[asyncio.Task] = []

  @property
  def running(self) -> bool:
    return bool(self._tasks)

  async def run_reminder_scan(self) -> ScanResult:
    async with self.session_factory() as db:
      result = await scan_due_soon_and_overdue(db, pusher=self.pusher)
    self.last_runs[REMINDER_SCAN] = datetime.now(timezone.utc)
    return result

  async def run_email_drain(self) -> DrainResult:
    async with self.session_factory() as db:
      result = await self.queue.drain(db)
    self.last_runs[EMAIL_DRAIN] = datetime.now(timezone.utc)
    return result

  def start(self) -> None:
    if self._tasks:
      logger.info("scheduler already running")
      return
    self._stop_event = asyncio.Event()
    self._tasks = [
      asyncio.create_task(self._initial_runs(), name="scheduler-initial"),
      asyncio.create_task(self._every(self.reminder_interval, REMINDER_SCAN, self.run_reminder_scan), name="scheduler-reminders"),
      asyncio.create_task(self._every(self.drain_interval, EMAIL_DRAIN, self.run_email_drain), name="scheduler-email"),
    ]
    logger.info(
      "scheduler started (reminders every %ss, email drain every %ss)",
      f"{self.reminder_interval:g}",
      f"{self.drain_interval:g}",
    )

  async def stop(self) -> None:
    if not self._tasks:
      return
    assert self._stop_event is not None
    self._stop_event.set()
    await asyncio.gather(*self._tasks, return_exceptions=True)
    self._tasks = []
    logger.info("scheduler stopped")

  def status(self) -> dict[str, Any]:
    return {
      "running": self.running,
      "reminderIntervalSeconds": self.reminder_interval,
      "drainIntervalSeconds": self.drain_interval,
      "lastRuns": {k: v.isoformat() for k, v in self.last_runs.items()},
    }

  async def _wait_or_stop(self, seconds: float) -> bool:
    """Sleep up to `seconds`; True when stop() was requested meanwhile."""
    assert self._stop_event is not None
    try:
      await asyncio.wait_for(self._stop_event.wait(), timeout=max(0.0, seconds))
    except asyncio.TimeoutError:
      return False
    return True

  async def _guarded(self, name: str, job: Callable[[], Awaitable[Any]]) -> None:
    try:
      result = await job()
      logger.debug("%s finished: %s", name, result)
    except Exception:
      # Never let one failed run kill the loop.
      logger.exception("%s failed", name)

  async def _every(self, interval: float, name: str, job: Callable[[], Awaitable[Any]]) -> None:
    while not await self._wait_or_stop(interval):
      await self._guarded(name, job)

  async def _initial_runs(self) -> None:
    if await self._wait_or_stop(self.initial_delay):
      return
    logger.info("running initial reminder scan and email drain")
    await self._guarded(REMINDER_SCAN, self.run_reminder_scan)
    await self._guarded(EMAIL_DRAIN, self.run_email_drain)
