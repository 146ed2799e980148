from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://kinnotify:kinnotify@db:5432/kinnotify"
  app_secret: str = "dev-secret-change-me"
  app_version: str = "v2026-10-17"
  build_sha: str = "dev"
  api_docs_enabled: bool = True
  log_level: str = "INFO"

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
  cors_origin_regex: str = r"^http://(localhost|127\.0\.0\.1):3000$"
  trusted_hosts: str = "localhost,127.0.0.1,0.0.0.0,api,web"

  # Wall clock used for quiet hours and rendered reminder times when a user has no timezone.
  default_timezone: str = "UTC"

  reminder_scheduler_enabled: bool = True
  reminder_interval_seconds: int = 60
  reminder_batch_limit: int = 200
  notifications_list_limit: int = 100

  push_provider: str = "local"  # local | fcm
  fcm_project_id: str | None = None
  fcm_credentials_path: str | None = None
  fcm_credentials_base64: str | None = None
  fcm_android_channel_id: str = "family_tree_notifications"
  fcm_timeout_seconds: float = 10.0

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def trusted_host_list(self) -> list[str]:
    return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]

  def is_test_db(self) -> bool:
    url = self.database_url
    if url.startswith("sqlite") and ":memory:" in url:
      return True
    name = url.split("?", 1)[0].rsplit("/", 1)[-1]
    if url.startswith("sqlite"):
      name = Path(name).stem
    name = name.lower()
    return name == "test" or name.endswith("_test") or name.startswith("test_")


settings = Settings()
