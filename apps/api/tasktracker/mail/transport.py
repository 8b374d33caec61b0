from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from typing import Protocol

from tasktracker.errors import DeliveryFailure


@dataclass(frozen=True)
class DeliveryResult:
  ok: bool
  error: str | None = None


@dataclass(frozen=True)
class SmtpSettings:
  host: str
  port: int = 587
  secure: bool = False  # implicit TLS (465); otherwise STARTTLS when offered
  username: str = ""
  password: str = ""
  from_email: str = ""
  from_name: str = "Task Tracker"
  timeout: float = 15.0


class MailTransport(Protocol):
  """send() may report a failed delivery either as DeliveryResult(ok=False) or by raising DeliveryFailure."""

  async def verify(self) -> bool: ...

  async def send(self, *, to: str, to_name: str | None, subject: str, html: str, text: str) -> DeliveryResult: ...

  async def close(self) -> None: ...


def build_message(cfg: SmtpSettings, *, to: str, to_name: str | None, subject: str, html: str, text: str) -> EmailMessage:
  m = EmailMessage()
  m["Subject"] = subject
  m["From"] = formataddr((cfg.from_name, cfg.from_email))
  m["To"] = formataddr((to_name, to)) if to_name else to
  m.set_content(text or "")
  if html:
    m.add_alternative(html, subtype="html")
  return m


class SmtpTransport:
  """
  smtplib over a worker thread. One connection per send; verify() does a
  connect + login round-trip and closes.
  """

  def __init__(self, cfg: SmtpSettings) -> None:
    if not cfg.host or not cfg.from_email:
      raise ValueError("SMTP host and sender address are required")
    self.cfg = cfg

  def _connect(self) -> smtplib.SMTP:
    cfg = self.cfg
    if cfg.secure:
      s: smtplib.SMTP = smtplib.SMTP_SSL(host=cfg.host, port=cfg.port, timeout=cfg.timeout)
      s.ehlo()
    else:
      s = smtplib.SMTP(host=cfg.host, port=cfg.port, timeout=cfg.timeout)
      s.ehlo()
      if s.has_extn("starttls"):
        s.starttls()
        s.ehlo()
    if cfg.username and cfg.password:
      s.login(cfg.username, cfg.password)
    return s

  async def verify(self) -> bool:
    def _verify_sync() -> None:
      s = self._connect()
      try:
        s.noop()
      finally:
        s.quit()

    try:
      await asyncio.to_thread(_verify_sync)
    except (OSError, smtplib.SMTPException):
      return False
    return True

  async def send(self, *, to: str, to_name: str | None, subject: str, html: str, text: str) -> DeliveryResult:
    msg = build_message(self.cfg, to=to, to_name=to_name, subject=subject, html=html, text=text)

    def _send_sync() -> None:
      s = self._connect()
      try:
        s.send_message(msg)
      finally:
        s.quit()

    try:
      await asyncio.to_thread(_send_sync)
    except (OSError, smtplib.SMTPException) as e:
      raise DeliveryFailure(str(e) or e.__class__.__name__) from e
    return DeliveryResult(ok=True)

  async def close(self) -> None:
    return None
