from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
  model_config = SettingsConfigDict(env_file=".env", extra="ignore")

  database_url: str = "postgresql+asyncpg://taskboard:taskboard@db:5432/taskboard"
  database_echo: bool = False
  app_secret: str = "dev-secret-change-me"
  app_version: str = "v2026-10-19"
  build_sha: str = "dev"
  api_docs_enabled: bool = True

  cors_origins: str = "http://localhost:3000,http://127.0.0.1:3000"
  cors_origin_regex: str = r"^http://(localhost|127\.0\.0\.1):3000$"
  trusted_hosts: str = "localhost,127.0.0.1,api,web,test"

  log_level: str = "INFO"
  log_format: str = "console"  # console | json
  log_file: str | None = None
  log_rotation_size_mb: int = 50
  log_retention_count: int = 5

  # Sparse order keys: appends step by order_key_step, renormalization spaces
  # keys order_key_spacing apart, and a gap at or below order_key_min_gap is
  # treated as exhausted.
  order_key_step: float = 1.0
  order_key_spacing: float = 1024.0
  order_key_min_gap: float = 1e-9
  move_max_attempts: int = 3

  def cors_origin_list(self) -> list[str]:
    return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

  def trusted_host_list(self) -> list[str]:
    return [h.strip() for h in self.trusted_hosts.split(",") if h.strip()]
