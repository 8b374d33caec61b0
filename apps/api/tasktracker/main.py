from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tasktracker.config import settings
from tasktracker.db import SessionLocal
from tasktracker.errors import CannotDeleteDefault, NotFoundError, ValidationError
from tasktracker.logging_setup import setup_logging
from tasktracker.mail.queue import EmailQueue
from tasktracker.notifications.push import default_pusher, wait_for_pending_pushes
from tasktracker.routers.admin import router as admin_router
from tasktracker.routers.notifications import router as notifications_router
from tasktracker.routers.workflows import router as workflows_router
from tasktracker.scheduler import Scheduler
from tasktracker.security import SecretDecryptError
from tasktracker.workflows.store import ensure_default_workflow

logger = logging.getLogger(__name__)

app = FastAPI(title="Task Tracker API", version=settings.app_version)

app.state.email_queue = EmailQueue()
app.state.pusher = default_pusher()
app.state.scheduler = Scheduler(SessionLocal, queue=app.state.email_queue, pusher=app.state.pusher)


def _error_body(exc: ValidationError | NotFoundError) -> dict:
  return {"detail": {"code": exc.code, "message": exc.message}}


@app.exception_handler(ValidationError)
async def _validation_error_handler(_, exc: ValidationError) -> JSONResponse:
  status_code = 400 if isinstance(exc, CannotDeleteDefault) else 422
  return JSONResponse(status_code=status_code, content=_error_body(exc))


@app.exception_handler(NotFoundError)
async def _not_found_handler(_, exc: NotFoundError) -> JSONResponse:
  return JSONResponse(status_code=404, content=_error_body(exc))


@app.exception_handler(SecretDecryptError)
async def _secret_error_handler(_, exc: SecretDecryptError) -> JSONResponse:
  return JSONResponse(status_code=400, content={"detail": str(exc)})


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)

app.include_router(workflows_router)
app.include_router(notifications_router)
app.include_router(admin_router)


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version}


def _is_test_db() -> bool:
  try:
    db_name = settings.database_url.rsplit("/", 1)[-1]
    return "test" in db_name
  except Exception:
    return False


@app.on_event("startup")
async def _startup() -> None:
  if _is_test_db():
    return
  setup_logging(level=settings.log_level, log_dir=settings.log_dir)
  if not settings.app_secret or settings.app_secret.strip().lower() in {"dev-secret-change-me", "replace_with_strong_random_secret"}:
    raise RuntimeError("APP_SECRET is required and must not be a placeholder")
  if not settings.fernet_key or settings.fernet_key.strip() in {"AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA=", "REPLACE_WITH_FERNET_KEY"}:
    raise RuntimeError("FERNET_KEY is required and must not be a placeholder")
  async with SessionLocal() as db:
    await ensure_default_workflow(db)
  if settings.scheduler_enabled:
    app.state.scheduler.start()
  logger.info("%s %s started", settings.app_name, settings.app_version)


@app.on_event("shutdown")
async def _shutdown() -> None:
  await app.state.scheduler.stop()
  await wait_for_pending_pushes()
  await app.state.email_queue.reset()
