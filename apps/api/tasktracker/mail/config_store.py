from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.audit import write_audit
from tasktracker.errors import ValidationError
from tasktracker.mail.transport import SmtpSettings
from tasktracker.models import EmailConfig, utcnow
from tasktracker.security import decrypt_secret, encrypt_secret

_FIELDS = ("smtp_host", "smtp_port", "smtp_secure", "smtp_user", "smtp_password", "from_email", "from_name", "is_enabled")


@dataclass(frozen=True)
class EmailConfigView:
  smtp_host: str
  smtp_port: int
  smtp_secure: bool
  smtp_user: str
  has_password: bool
  from_email: str
  from_name: str
  is_enabled: bool
  version: str


def _view(row: EmailConfig) -> EmailConfigView:
  return EmailConfigView(
    smtp_host=row.smtp_host,
    smtp_port=row.smtp_port,
    smtp_secure=row.smtp_secure,
    smtp_user=row.smtp_user,
    has_password=bool(row.smtp_password_encrypted),
    from_email=row.from_email,
    from_name=row.from_name,
    is_enabled=row.is_enabled,
    version=row.updated_at.isoformat() if row.updated_at else "",
  )


async def _row(db: AsyncSession) -> EmailConfig | None:
  res = await db.execute(select(EmailConfig).order_by(EmailConfig.updated_at.asc()).limit(1))
  return res.scalar_one_or_none()


async def get_email_config(db: AsyncSession) -> EmailConfigView | None:
  row = await _row(db)
  return _view(row) if row else None


async def load_smtp_settings(db: AsyncSession, *, timeout: float = 15.0, require_enabled: bool = True) -> tuple[SmtpSettings, str] | None:
  """SMTP settings plus a version key, or None when email is disabled or unconfigured."""
  row = await _row(db)
  if row is None or not row.smtp_host or not row.from_email:
    return None
  if require_enabled and not row.is_enabled:
    return None
  cfg = SmtpSettings(
    host=row.smtp_host,
    port=int(row.smtp_port or 587),
    secure=bool(row.smtp_secure),
    username=row.smtp_user or "",
    password=decrypt_secret(row.smtp_password_encrypted) if row.smtp_password_encrypted else "",
    from_email=row.from_email,
    from_name=row.from_name or "Task Tracker",
    timeout=timeout,
  )
  version = f"{row.id}:{row.updated_at.isoformat() if row.updated_at else ''}"
  return cfg, version


async def update_email_config(db: AsyncSession, changes: dict[str, Any], *, actor_id: str | None = None) -> EmailConfigView:
  unknown = sorted(set(changes) - set(_FIELDS))
  if unknown:
    raise ValidationError(f"Unknown email config field '{unknown[0]}'")
  if "smtp_port" in changes:
    port = changes["smtp_port"]
    if not isinstance(port, int) or isinstance(port, bool) or not (0 < port < 65536):
      raise ValidationError("smtpPort must be between 1 and 65535")
  for key in ("smtp_secure", "is_enabled"):
    if key in changes and not isinstance(changes[key], bool):
      raise ValidationError(f"'{key}' must be true or false")

  row = await _row(db)
  if row is None:
    row = EmailConfig()
    db.add(row)

  for key, val in changes.items():
    if key == "smtp_password":
      row.smtp_password_encrypted = encrypt_secret(val) if val else None
    elif key in ("smtp_secure", "is_enabled"):
      setattr(row, key, val)
    elif key == "smtp_port":
      row.smtp_port = int(val)
    else:
      setattr(row, key, (val or "").strip())

  if row.is_enabled and (not (row.smtp_host or "").strip() or not (row.from_email or "").strip()):
    raise ValidationError("SMTP host and sender address are required to enable email")

  row.updated_at = utcnow()
  await db.flush()
  await write_audit(
    db,
    event_type="email.config.updated",
    entity_type="EmailConfig",
    entity_id=row.id,
    actor_id=actor_id,
    payload={"changed": sorted(changes)},
  )
  await db.commit()
  return _view(row)
