from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator


class WorkflowStatusIn(BaseModel):
  id: str = Field(min_length=1, max_length=64)
  name: str = Field(min_length=1, max_length=120)
  color: str = Field(default="#6b7280", max_length=32)
  order: int = 0


class WorkflowTransitionIn(BaseModel):
  # `from` is a keyword, hence the alias.
  from_: str = Field(alias="from", min_length=1, max_length=64)
  to: list[str] = Field(default_factory=list)

  model_config = {"populate_by_name": True}

  def as_config(self) -> dict[str, Any]:
    return {"from": self.from_, "to": list(self.to)}


class WorkflowCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=200)
  description: str | None = Field(default=None, max_length=2000)
  statuses: list[WorkflowStatusIn]
  transitions: list[WorkflowTransitionIn] = Field(default_factory=list)
  roleRestrictions: dict[str, list[str]] = Field(default_factory=dict)
  isDefault: bool = False


class WorkflowUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = Field(default=None, max_length=2000)
  statuses: list[WorkflowStatusIn] | None = None
  transitions: list[WorkflowTransitionIn] | None = None
  roleRestrictions: dict[str, list[str]] | None = None
  isDefault: bool | None = None


class WorkflowOut(BaseModel):
  id: str
  name: str
  description: str | None = None
  isDefault: bool
  statuses: list[dict[str, Any]]
  transitions: list[dict[str, Any]]
  roleRestrictions: dict[str, list[str]]
  createdAt: datetime
  updatedAt: datetime


class TransitionCheckIn(BaseModel):
  fromStatus: str = Field(min_length=1, max_length=64)
  toStatus: str = Field(min_length=1, max_length=64)
  role: str | None = Field(default=None, max_length=64)


class TransitionCheckOut(BaseModel):
  valid: bool
  reason: str | None = None
  allowedTargets: list[str] = Field(default_factory=list)


class NotificationOut(BaseModel):
  id: str
  type: str
  title: str
  content: str | None = None
  taskId: str | None = None
  actorId: str | None = None
  metadata: dict[str, Any] = Field(default_factory=dict)
  isRead: bool
  createdAt: datetime
  readAt: datetime | None = None


class NotificationPageOut(BaseModel):
  items: list[NotificationOut]
  page: int
  pageSize: int
  total: int
  unreadCount: int


class NotificationPreferencesOut(BaseModel):
  taskAssignedInApp: bool
  taskAssignedEmail: bool
  mentionedInApp: bool
  mentionedEmail: bool
  statusChangedInApp: bool
  statusChangedEmail: bool
  dueSoonInApp: bool
  dueSoonEmail: bool
  overdueInApp: bool
  overdueEmail: bool
  dueSoonDays: int


class NotificationPreferencesIn(BaseModel):
  taskAssignedInApp: bool | None = None
  taskAssignedEmail: bool | None = None
  mentionedInApp: bool | None = None
  mentionedEmail: bool | None = None
  statusChangedInApp: bool | None = None
  statusChangedEmail: bool | None = None
  dueSoonInApp: bool | None = None
  dueSoonEmail: bool | None = None
  overdueInApp: bool | None = None
  overdueEmail: bool | None = None
  dueSoonDays: int | None = Field(default=None, ge=0, le=365)


class EmailConfigOut(BaseModel):
  configured: bool
  smtpHost: str = ""
  smtpPort: int = 587
  smtpSecure: bool = False
  smtpUser: str = ""
  hasPassword: bool = False
  fromEmail: str = ""
  fromName: str = ""
  isEnabled: bool = False


class EmailConfigIn(BaseModel):
  smtpHost: str | None = Field(default=None, max_length=255)
  smtpPort: int | None = Field(default=None, ge=1, le=65535)
  smtpSecure: bool | None = None
  smtpUser: str | None = Field(default=None, max_length=255)
  # Empty string clears the stored password.
  smtpPassword: str | None = Field(default=None, max_length=400)
  fromEmail: str | None = Field(default=None, max_length=320)
  fromName: str | None = Field(default=None, max_length=120)
  isEnabled: bool | None = None


class EmailTestIn(BaseModel):
  to: str = Field(min_length=3, max_length=320)

  @field_validator("to")
  @classmethod
  def _looks_like_email(cls, v: str) -> str:
    s = v.strip()
    if "@" not in s:
      raise ValueError("Invalid email address")
    return s


class EmailTestOut(BaseModel):
  ok: bool
  error: str | None = None


class DrainResultOut(BaseModel):
  sent: int
  failed: int
  queue: dict[str, int] = Field(default_factory=dict)


class ScanResultOut(BaseModel):
  dueSoon: int
  overdue: int


class SchedulerStatusOut(BaseModel):
  running: bool
  reminderIntervalSeconds: float
  drainIntervalSeconds: float
  lastRuns: dict[str, str] = Field(default_factory=dict)
  queue: dict[str, int] = Field(default_factory=dict)
