from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.audit import write_audit
from tasktracker.deps import get_db, get_email_queue, get_scheduler, require_admin
from tasktracker.mail import config_store
from tasktracker.mail.queue import EmailQueue, queue_stats
from tasktracker.models import User
from tasktracker.scheduler import Scheduler
from tasktracker.schemas import (
  DrainResultOut,
  EmailConfigIn,
  EmailConfigOut,
  EmailTestIn,
  EmailTestOut,
  ScanResultOut,
  SchedulerStatusOut,
)

router = APIRouter(prefix="/admin", tags=["admin"])

_EMAIL_FIELDS = {
  "smtpHost": "smtp_host",
  "smtpPort": "smtp_port",
  "smtpSecure": "smtp_secure",
  "smtpUser": "smtp_user",
  "smtpPassword": "smtp_password",
  "fromEmail": "from_email",
  "fromName": "from_name",
  "isEnabled": "is_enabled",
}


def _email_config_out(view: config_store.EmailConfigView | None) -> EmailConfigOut:
  if view is None:
    return EmailConfigOut(configured=False)
  return EmailConfigOut(
    configured=bool(view.smtp_host and view.from_email),
    smtpHost=view.smtp_host,
    smtpPort=view.smtp_port,
    smtpSecure=view.smtp_secure,
    smtpUser=view.smtp_user,
    hasPassword=view.has_password,
    fromEmail=view.from_email,
    fromName=view.from_name,
    isEnabled=view.is_enabled,
  )


@router.get("/email-config", response_model=EmailConfigOut)
async def get_email_config(_: User = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> EmailConfigOut:
  return _email_config_out(await config_store.get_email_config(db))


@router.put("/email-config", response_model=EmailConfigOut)
async def put_email_config(
  payload: EmailConfigIn,
  admin: User = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
  queue: EmailQueue = Depends(get_email_queue),
) -> EmailConfigOut:
  changes = {}
  for camel in payload.model_fields_set:
    val = getattr(payload, camel)
    # Only smtpPassword may be explicitly cleared.
    if val is None and camel != "smtpPassword":
      continue
    changes[_EMAIL_FIELDS[camel]] = val
  view = await config_store.update_email_config(db, changes, actor_id=admin.id)
  # The next drain rebuilds the transport from the new settings.
  await queue.reset()
  return _email_config_out(view)


@router.post("/email-config/test", response_model=EmailTestOut)
async def send_test_email(
  payload: EmailTestIn,
  admin: User = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
  queue: EmailQueue = Depends(get_email_queue),
) -> EmailTestOut:
  result = await queue.send_test_email(db, payload.to)
  await write_audit(
    db,
    event_type="email.test.sent" if result.ok else "email.test.error",
    entity_type="EmailConfig",
    entity_id=None,
    actor_id=admin.id,
    payload={"to": payload.to, "error": result.error},
  )
  await db.commit()
  return EmailTestOut(ok=result.ok, error=result.error)


@router.post("/scheduler/reminders/run", response_model=ScanResultOut)
async def run_reminders(
  _: User = Depends(require_admin),
  scheduler: Scheduler = Depends(get_scheduler),
) -> ScanResultOut:
  result = await scheduler.run_reminder_scan()
  return ScanResultOut(dueSoon=result.due_soon, overdue=result.overdue)


@router.post("/scheduler/email/run", response_model=DrainResultOut)
async def run_email_drain(
  _: User = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
  scheduler: Scheduler = Depends(get_scheduler),
) -> DrainResultOut:
  result = await scheduler.run_email_drain()
  return DrainResultOut(sent=result.sent, failed=result.failed, queue=await queue_stats(db))


@router.get("/scheduler/status", response_model=SchedulerStatusOut)
async def scheduler_status(
  _: User = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
  scheduler: Scheduler = Depends(get_scheduler),
) -> SchedulerStatusOut:
  return SchedulerStatusOut(**scheduler.status(), queue=await queue_stats(db))
