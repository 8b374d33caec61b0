from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import CursorResult
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tasktracker.config import settings


def _connect_args() -> dict[str, Any]:
  if settings.is_sqlite():
    return {"check_same_thread": False, "timeout": 30}
  return {}


engine = create_async_engine(settings.database_url, pool_pre_ping=True, connect_args=_connect_args())
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def insert_if_absent(db: AsyncSession, model: Any, *, values: dict[str, Any], index_elements: list[str]) -> bool:
  """
  INSERT ... ON CONFLICT DO NOTHING for the session's dialect.

  Returns True when this call created the row, False when a row with the same
  unique key already existed (or a concurrent writer got there first).
  """
  dialect = db.get_bind().dialect.name
  if dialect == "postgresql":
    stmt = postgresql.insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements)
  elif dialect == "sqlite":
    stmt = sqlite.insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements)
  else:
    raise RuntimeError(f"insert_if_absent not supported for dialect {dialect!r}")
  res: CursorResult = await db.execute(stmt)
  return (res.rowcount or 0) > 0
