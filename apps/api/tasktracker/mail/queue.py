from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.config import settings
from tasktracker.errors import ConfigurationAbsent, DeliveryFailure
from tasktracker.mail.config_store import load_smtp_settings
from tasktracker.mail.transport import DeliveryResult, MailTransport, SmtpSettings, SmtpTransport
from tasktracker.models import EmailJob, EmailLogEntry
from tasktracker.security import SecretDecryptError

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3

TransportFactory = Callable[[SmtpSettings], MailTransport]


@dataclass(frozen=True)
class DrainResult:
  sent: int = 0
  failed: int = 0


@dataclass
class MailSession:
  """A verified transport plus the config version it was built from."""

  transport: MailTransport
  version: str


async def enqueue(
  db: AsyncSession,
  *,
  to_email: str,
  to_name: str | None,
  subject: str,
  html_body: str,
  text_body: str,
  notification_id: str | None = None,
) -> str:
  job = EmailJob(
    to_email=to_email,
    to_name=to_name,
    subject=subject,
    html_body=html_body,
    text_body=text_body,
    status="pending",
    attempts=0,
    notification_id=notification_id,
  )
  db.add(job)
  await db.flush()
  return job.id


async def queue_stats(db: AsyncSession) -> dict[str, int]:
  res = await db.execute(select(EmailJob.status, func.count()).group_by(EmailJob.status))
  out = {"pending": 0, "sending": 0, "sent": 0, "failed": 0}
  for status, n in res.all():
    out[str(status)] = int(n)
  return out


def _log_entry(job: EmailJob, *, status: str, error: str | None = None) -> EmailLogEntry:
  return EmailLogEntry(
    job_id=job.id,
    to_email=job.to_email,
    to_name=job.to_name,
    subject=job.subject,
    status=status,
    error_message=error,
    notification_id=job.notification_id,
  )


class EmailQueue:
  def __init__(
    self,
    *,
    transport_factory: TransportFactory = SmtpTransport,
    send_timeout: float | None = None,
    claim_timeout_minutes: int | None = None,
    batch_size: int | None = None,
  ) -> None:
    self.transport_factory = transport_factory
    self.send_timeout = float(send_timeout if send_timeout is not None else settings.email_send_timeout_seconds)
    self.claim_timeout = timedelta(
      minutes=claim_timeout_minutes if claim_timeout_minutes is not None else settings.email_claim_timeout_minutes
    )
    self.batch_size = int(batch_size if batch_size is not None else settings.email_drain_batch_size)
    self._session: MailSession | None = None
    self._session_lock = asyncio.Lock()

  async def enqueue(self, db: AsyncSession, **job) -> str:
    return await enqueue(db, **job)

  async def session(self, db: AsyncSession) -> MailSession:
    """
    The cached transport, rebuilt when the stored config changes.

    Raises ConfigurationAbsent when email is disabled, unconfigured or the
    transport cannot be verified.
    """
    try:
      loaded = await load_smtp_settings(db, timeout=self.send_timeout)
    except SecretDecryptError as e:
      await self.reset()
      raise ConfigurationAbsent(str(e)) from e
    if loaded is None:
      await self.reset()
      raise ConfigurationAbsent("Email service disabled or not configured")
    cfg, version = loaded

    async with self._session_lock:
      if self._session is not None and self._session.version == version:
        return self._session
      await self._close_session()
      try:
        transport = self.transport_factory(cfg)
      except ValueError as e:
        raise ConfigurationAbsent(str(e)) from e
      if not await transport.verify():
        await transport.close()
        raise ConfigurationAbsent("Email transport could not be verified")
      self._session = MailSession(transport=transport, version=version)
      logger.info("email transport ready (%s:%s)", cfg.host, cfg.port)
      return self._session

  async def _close_session(self) -> None:
    if self._session is not None:
      try:
        await self._session.transport.close()
      except Exception:
        logger.warning("closing email transport failed", exc_info=True)
      self._session = None

  async def reset(self) -> None:
    async with self._session_lock:
      await self._close_session()

  async def release_stale_claims(self, db: AsyncSession, *, now: datetime | None = None) -> int:
    """Jobs left in `sending` by a drain that died mid-batch go back to pending."""
    now = now or datetime.now(timezone.utc)
    res = await db.execute(
      update(EmailJob)
      .where(EmailJob.status == "sending", EmailJob.claimed_at < now - self.claim_timeout)
      .values(status="pending", claimed_at=None)
      .execution_options(synchronize_session=False)
    )
    await db.commit()
    n = int(res.rowcount or 0)
    if n:
      logger.warning("released %d stale email claims", n)
    return n

  async def _claim(self, db: AsyncSession, job_id: str, now: datetime) -> bool:
    res = await db.execute(
      update(EmailJob)
      .where(EmailJob.id == job_id, EmailJob.status == "pending", EmailJob.attempts < MAX_ATTEMPTS)
      .values(status="sending", claimed_at=now)
      .execution_options(synchronize_session=False)
    )
    await db.commit()
    return res.rowcount == 1

  async def _deliver(self, mail: MailSession, job: EmailJob) -> DeliveryResult:
    try:
      return await asyncio.wait_for(
        mail.transport.send(to=job.to_email, to_name=job.to_name, subject=job.subject, html=job.html_body, text=job.text_body),
        timeout=self.send_timeout,
      )
    except asyncio.TimeoutError:
      # wait_for cannot stop the SMTP worker thread, which may still deliver after
      # the job goes back to pending. Delivery is at-least-once. A hung connection
      # is not reused.
      await self.reset()
      return DeliveryResult(ok=False, error=f"Timed out after {self.send_timeout:g}s")
    except DeliveryFailure as e:
      return DeliveryResult(ok=False, error=e.message)
    except Exception as e:
      logger.warning("email transport raised for job %s", job.id, exc_info=True)
      return DeliveryResult(ok=False, error=str(e) or e.__class__.__name__)

  async def _record_success(self, db: AsyncSession, job: EmailJob, now: datetime) -> None:
    await db.execute(
      update(EmailJob)
      .where(EmailJob.id == job.id)
      .values(status="sent", sent_at=now, claimed_at=None, last_error=None)
      .execution_options(synchronize_session=False)
    )
    db.add(_log_entry(job, status="sent"))
    await db.commit()

  async def _record_failure(self, db: AsyncSession, job: EmailJob, error: str) -> None:
    await db.execute(
      update(EmailJob)
      .where(EmailJob.id == job.id)
      .values(
        attempts=EmailJob.attempts + 1,
        status=case((EmailJob.attempts + 1 >= MAX_ATTEMPTS, "failed"), else_="pending"),
        last_error=error,
        claimed_at=None,
      )
      .execution_options(synchronize_session=False)
    )
    db.add(_log_entry(job, status="failed", error=error))
    await db.commit()

  async def drain(self, db: AsyncSession, *, batch_size: int | None = None, now: datetime | None = None) -> DrainResult:
    try:
      mail = await self.session(db)
    except ConfigurationAbsent as e:
      logger.info("email drain skipped: %s", e.message)
      await db.rollback()
      return DrainResult()

    await self.release_stale_claims(db, now=now)

    limit = int(batch_size if batch_size is not None else self.batch_size)
    res = await db.execute(
      select(EmailJob)
      .where(EmailJob.status == "pending", EmailJob.attempts < MAX_ATTEMPTS)
      .order_by(EmailJob.created_at.asc())
      .limit(limit)
    )
    jobs = list(res.scalars().all())
    await db.commit()

    sent = 0
    failed = 0
    for job in jobs:
      ts = now or datetime.now(timezone.utc)
      try:
        # Claim before sending so an overlapping drain skips this job.
        if not await self._claim(db, job.id, ts):
          continue
        result = await self._deliver(mail, job)
        if result.ok:
          await self._record_success(db, job, ts)
          sent += 1
        else:
          await self._record_failure(db, job, result.error or "Unknown error")
          logger.warning("email %s to %s failed: %s", job.id, job.to_email, result.error)
          failed += 1
      except Exception:
        logger.exception("email job %s could not be processed", job.id)
        await db.rollback()

    if sent or failed:
      logger.info("email queue processed: %d sent, %d failed", sent, failed)
    return DrainResult(sent=sent, failed=failed)

  async def send_test_email(self, db: AsyncSession, to: str) -> DeliveryResult:
    """Build a throwaway transport from the stored config (enabled or not) and send a test message."""
    try:
      loaded = await load_smtp_settings(db, timeout=self.send_timeout, require_enabled=False)
    except SecretDecryptError as e:
      return DeliveryResult(ok=False, error=str(e))
    if loaded is None:
      return DeliveryResult(ok=False, error="Email not configured")
    cfg, _version = loaded
    try:
      transport = self.transport_factory(cfg)
    except ValueError as e:
      return DeliveryResult(ok=False, error=str(e))
    try:
      if not await transport.verify():
        return DeliveryResult(ok=False, error="Could not connect to the SMTP server")
      stamp = datetime.now(timezone.utc).isoformat()
      return await asyncio.wait_for(
        transport.send(
          to=to,
          to_name=None,
          subject=f"{cfg.from_name} - Email Test",
          html=(
            '<div style="font-family: sans-serif; padding: 20px;">'
            "<h2>Email Configuration Test</h2>"
            "<p>If you received this email, your email configuration is working correctly!</p>"
            f"<p>Sent at: {stamp}</p></div>"
          ),
          text=f"Email Configuration Test\n\nIf you received this email, your email configuration is working correctly!\n\nSent at: {stamp}",
        ),
        timeout=self.send_timeout,
      )
    except asyncio.TimeoutError:
      return DeliveryResult(ok=False, error=f"Timed out after {self.send_timeout:g}s")
    except DeliveryFailure as e:
      return DeliveryResult(ok=False, error=e.message)
    finally:
      await transport.close()
