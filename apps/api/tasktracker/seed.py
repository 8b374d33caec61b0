from __future__ import annotations

import asyncio
import os

from sqlalchemy import select

from tasktracker.db import SessionLocal
from tasktracker.models import ApiToken, User
from tasktracker.security import api_token_hash, api_token_new
from tasktracker.workflows.store import ensure_default_workflow


async def seed() -> None:
  async with SessionLocal() as db:
    wf = await ensure_default_workflow(db)
    print(f"Default workflow: {wf.name} ({wf.id})")

    admin_email = (os.getenv("SEED_ADMIN_EMAIL") or "admin@tasktracker.local").strip().lower()
    res = await db.execute(select(User).where(User.email == admin_email))
    admin = res.scalar_one_or_none()
    if not admin:
      admin = User(email=admin_email, name=os.getenv("SEED_ADMIN_NAME") or "Admin", role="admin")
      db.add(admin)
      await db.flush()

      # Tokens are stored hashed; this is the only time the plain value is shown.
      token = api_token_new()
      db.add(ApiToken(user_id=admin.id, name="seed", token_hash=api_token_hash(token)))
      await db.commit()
      print("Task Tracker admin created:")
      print(f"  {admin_email}")
      print(f"  API token: {token}")
    else:
      await db.commit()


def main() -> None:
  asyncio.run(seed())


if __name__ == "__main__":
  main()
