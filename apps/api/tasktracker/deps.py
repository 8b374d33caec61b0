from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.db import SessionLocal
from tasktracker.mail.queue import EmailQueue
from tasktracker.models import ApiToken, User
from tasktracker.scheduler import Scheduler
from tasktracker.security import api_token_hash


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


async def get_current_user(request: Request, db: AsyncSession = Depends(get_db)) -> User:
  auth = request.headers.get("authorization")
  if not auth or not auth.lower().startswith("bearer "):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
  token = auth.split(" ", 1)[1].strip()
  if not token:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  tres = await db.execute(select(ApiToken).where(ApiToken.token_hash == api_token_hash(token), ApiToken.revoked_at.is_(None)))
  t = tres.scalar_one_or_none()
  if not t:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
  ures = await db.execute(select(User).where(User.id == t.user_id))
  u = ures.scalar_one_or_none()
  if not u:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
  if not u.active:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User disabled")
  return u


async def require_admin(user: User = Depends(get_current_user)) -> User:
  if user.role != "admin":
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin required")
  return user


def get_email_queue(request: Request) -> EmailQueue:
  return request.app.state.email_queue


def get_scheduler(request: Request) -> Scheduler:
  return request.app.state.scheduler
