from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://tasktracker:tasktracker@db:5432/tasktracker"
  app_secret: str = "dev-secret-change-me"
  fernet_key: str = "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA="
  app_name: str = "Task Tracker"
  app_version: str = "0.1.0"

  log_level: str = "INFO"
  log_dir: str | None = None

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

  scheduler_enabled: bool = True
  scheduler_initial_delay_seconds: float = 5.0
  reminder_scan_interval_seconds: float = 3600.0
  email_drain_interval_seconds: float = 300.0

  email_drain_batch_size: int = 10
  email_send_timeout_seconds: float = 30.0
  email_claim_timeout_minutes: int = 15

  push_webhook_url: str | None = None
  push_webhook_timeout_seconds: float = 5.0

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def is_sqlite(self) -> bool:
    return self.database_url.startswith("sqlite")


settings = Settings()
