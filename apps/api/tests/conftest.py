from __future__ import annotations

import asyncio
import os
import sys
import tempfile
from datetime import date
from pathlib import Path
from typing import Any

import pytest
from cryptography.fernet import Fernet
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

# Throwaway database; the name must contain "test" or the reset fixture refuses to run.
_TMP = Path(tempfile.mkdtemp(prefix="tasktracker-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP / 'tasktracker_test.db'}"
os.environ.setdefault("APP_SECRET", "test-secret")
os.environ.setdefault("FERNET_KEY", Fernet.generate_key().decode("utf-8"))
os.environ["SCHEDULER_ENABLED"] = "false"

from tasktracker.config import settings  # noqa: E402
from tasktracker.db import SessionLocal, engine  # noqa: E402
from tasktracker.mail.config_store import update_email_config  # noqa: E402
from tasktracker.mail.queue import EmailQueue  # noqa: E402
from tasktracker.mail.transport import DeliveryResult  # noqa: E402
from tasktracker.main import app  # noqa: E402
from tasktracker.models import ApiToken, Base, Task, User, utcnow  # noqa: E402
from tasktracker.notifications.push import wait_for_pending_pushes  # noqa: E402
from tasktracker.scheduler import Scheduler  # noqa: E402
from tasktracker.security import api_token_hash, api_token_new  # noqa: E402


class FakeTransport:
  """In-memory MailTransport. `fail_for` addresses fail; `hang` never returns."""

  instances: list["FakeTransport"] = []

  def __init__(self, cfg: Any = None, *, verify_ok: bool = True, fail_for: set[str] | None = None, hang: bool = False) -> None:
    self.cfg = cfg
    self.verify_ok = verify_ok
    self.fail_for = set(fail_for or ())
    self.hang = hang
    self.sent: list[dict[str, Any]] = []
    self.closed = False
    FakeTransport.instances.append(self)

  async def verify(self) -> bool:
    return self.verify_ok

  async def send(self, *, to: str, to_name: str | None, subject: str, html: str, text: str) -> DeliveryResult:
    if self.hang:
      await asyncio.sleep(3600)
    # Yield so overlapping drains interleave like a real network call.
    await asyncio.sleep(0)
    if to in self.fail_for:
      return DeliveryResult(ok=False, error="550 mailbox unavailable")
    self.sent.append({"to": to, "to_name": to_name, "subject": subject, "html": html, "text": text})
    return DeliveryResult(ok=True)

  async def close(self) -> None:
    self.closed = True


class RecordingPusher:
  def __init__(self, *, fail: bool = False) -> None:
    self.fail = fail
    self.pushed: list[tuple[str, dict[str, Any]]] = []

  async def push_to_user(self, user_id: str, summary: dict[str, Any]) -> None:
    if self.fail:
      raise RuntimeError("push backend down")
    self.pushed.append((user_id, summary))


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


async def _reset_db() -> None:
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
    await conn.run_sync(Base.metadata.create_all)
  await engine.dispose()


@pytest.fixture
async def clean_db() -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError(
      "Refusing to run destructive tests against non-test DB. "
      "Set DATABASE_URL to a *_test database (e.g. tasktracker_test)."
    )
  FakeTransport.instances.clear()
  await _reset_db()
  yield
  await wait_for_pending_pushes()
  await engine.dispose()


@pytest.fixture
async def db(clean_db):
  async with SessionLocal() as session:
    yield session


@pytest.fixture
def pusher() -> RecordingPusher:
  return RecordingPusher()


@pytest.fixture
def make_user(db):
  async def _make(name: str, *, email: str | None = None, role: str = "member", active: bool = True) -> User:
    u = User(email=email or f"{name.lower().replace(' ', '.')}@example.com", name=name, role=role, active=active)
    db.add(u)
    await db.commit()
    return u

  return _make


@pytest.fixture
def make_task(db):
  async def _make(
    title: str = "Write report",
    *,
    assignee: User | None = None,
    status: str = "pending",
    due: date | None = None,
    description: str | None = None,
    deleted: bool = False,
  ) -> Task:
    t = Task(
      title=title,
      description=description,
      status=status,
      assignee_id=assignee.id if assignee else None,
      due_date=due,
    )
    if deleted:
      t.deleted_at = utcnow()
    db.add(t)
    await db.commit()
    return t

  return _make


@pytest.fixture
def auth_headers(db):
  async def _headers(user: User) -> dict[str, str]:
    token = api_token_new()
    db.add(ApiToken(user_id=user.id, name="test", token_hash=api_token_hash(token)))
    await db.commit()
    return {"Authorization": f"Bearer {token}"}

  return _headers


@pytest.fixture
def enable_email(db):
  async def _enable(**overrides: Any) -> None:
    changes = {
      "smtp_host": "smtp.example.com",
      "smtp_port": 587,
      "smtp_user": "mailer",
      "smtp_password": "s3cret",
      "from_email": "noreply@example.com",
      "from_name": "Task Tracker",
      "is_enabled": True,
    }
    changes.update(overrides)
    await update_email_config(db, changes)

  return _enable


@pytest.fixture
def fake_queue() -> EmailQueue:
  return EmailQueue(transport_factory=lambda cfg: FakeTransport(cfg), send_timeout=1.0, batch_size=10)


@pytest.fixture
async def client(clean_db, fake_queue, pusher):
  app.state.email_queue = fake_queue
  app.state.pusher = pusher
  app.state.scheduler = Scheduler(SessionLocal, queue=fake_queue, pusher=pusher, initial_delay=3600)
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c
