from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.audit import write_audit
from tasktracker.deps import get_current_user, get_db
from tasktracker.errors import NotFoundError
from tasktracker.models import Notification, User, utcnow
from tasktracker.notifications import preferences
from tasktracker.notifications.preferences import PreferenceSnapshot
from tasktracker.schemas import NotificationOut, NotificationPageOut, NotificationPreferencesIn, NotificationPreferencesOut

router = APIRouter(prefix="/notifications", tags=["notifications"])

_PREF_FIELDS = {
  "taskAssignedInApp": "task_assigned_in_app",
  "taskAssignedEmail": "task_assigned_email",
  "mentionedInApp": "mentioned_in_app",
  "mentionedEmail": "mentioned_email",
  "statusChangedInApp": "status_changed_in_app",
  "statusChangedEmail": "status_changed_email",
  "dueSoonInApp": "due_soon_in_app",
  "dueSoonEmail": "due_soon_email",
  "overdueInApp": "overdue_in_app",
  "overdueEmail": "overdue_email",
  "dueSoonDays": "due_soon_days",
}


def _notification_out(n: Notification) -> NotificationOut:
  return NotificationOut(
    id=n.id,
    type=n.type,
    title=n.title,
    content=n.content,
    taskId=n.task_id,
    actorId=n.actor_id,
    metadata=dict(n.meta or {}),
    isRead=n.is_read,
    createdAt=n.created_at,
    readAt=n.read_at,
  )


def _prefs_out(p: PreferenceSnapshot) -> NotificationPreferencesOut:
  return NotificationPreferencesOut(**{camel: getattr(p, snake) for camel, snake in _PREF_FIELDS.items()})


async def _unread_count(db: AsyncSession, user_id: str) -> int:
  res = await db.execute(
    select(func.count()).select_from(Notification).where(Notification.user_id == user_id, Notification.is_read.is_(False))
  )
  return int(res.scalar_one())


@router.get("", response_model=NotificationPageOut)
async def list_notifications(
  page: int = Query(default=1, ge=1),
  pageSize: int = Query(default=20, ge=1, le=100),
  unreadOnly: bool = False,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> NotificationPageOut:
  where = [Notification.user_id == actor.id]
  if unreadOnly:
    where.append(Notification.is_read.is_(False))
  total = int((await db.execute(select(func.count()).select_from(Notification).where(*where))).scalar_one())
  res = await db.execute(
    select(Notification)
    .where(*where)
    .order_by(Notification.created_at.desc())
    .offset((page - 1) * pageSize)
    .limit(pageSize)
  )
  return NotificationPageOut(
    items=[_notification_out(n) for n in res.scalars().all()],
    page=page,
    pageSize=pageSize,
    total=total,
    unreadCount=await _unread_count(db, actor.id),
  )


@router.get("/unread-count")
async def unread_count(actor: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  return {"count": await _unread_count(db, actor.id)}


@router.get("/preferences", response_model=NotificationPreferencesOut)
async def get_notification_preferences(
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> NotificationPreferencesOut:
  prefs = await preferences.resolve(db, actor.id)
  await db.commit()
  return _prefs_out(prefs)


@router.patch("/preferences", response_model=NotificationPreferencesOut)
async def update_notification_preferences(
  payload: NotificationPreferencesIn,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> NotificationPreferencesOut:
  changes = {}
  for camel in payload.model_fields_set:
    val = getattr(payload, camel)
    if val is not None:
      changes[_PREF_FIELDS[camel]] = val
  prefs = await preferences.update(db, actor.id, changes)
  await write_audit(
    db,
    event_type="notifications.preferences.updated",
    entity_type="NotificationPreference",
    entity_id=actor.id,
    actor_id=actor.id,
    payload={"changed": sorted(changes)},
  )
  await db.commit()
  return _prefs_out(prefs)


@router.post("/read-all")
async def mark_all_read(actor: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  res = await db.execute(
    update(Notification)
    .where(Notification.user_id == actor.id, Notification.is_read.is_(False))
    .values(is_read=True, read_at=utcnow())
  )
  await db.commit()
  return {"ok": True, "updated": int(res.rowcount or 0)}


@router.post("/{notification_id}/read", response_model=NotificationOut)
async def mark_read(
  notification_id: str,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> NotificationOut:
  res = await db.execute(select(Notification).where(Notification.id == notification_id, Notification.user_id == actor.id))
  n = res.scalar_one_or_none()
  if not n:
    raise NotFoundError("Notification not found", code="NOTIFICATION_NOT_FOUND")
  if not n.is_read:
    n.is_read = True
    n.read_at = utcnow()
    await db.commit()
  return _notification_out(n)


@router.delete("/{notification_id}")
async def delete_notification(
  notification_id: str,
  actor: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  res = await db.execute(delete(Notification).where(Notification.id == notification_id, Notification.user_id == actor.id))
  if not res.rowcount:
    raise NotFoundError("Notification not found", code="NOTIFICATION_NOT_FOUND")
  await db.commit()
  return {"ok": True}
