"""Application configuration loaded from environment variables."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any

from orbit.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_TEN_MEGABYTES = 10 * 1024 * 1024

# Credit costs per generation step; "lesson.guide"/"lesson.full"/"sub_plan" price the primary step per kind.
DEFAULT_STEP_COSTS: dict[str, int] = {
  "lesson.guide": 3000,
  "lesson.full": 12000,
  "sub_plan": 4000,
  "script": 2000,
  "quiz": 1500,
  "flashcards": 1500,
  "infographic": 2500,
  "activities": 1500,
  "audio": 3000,
}


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Orbit service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  storage_backend: str
  generation_service_url: str | None
  generation_api_key: str | None
  generation_timeout_seconds: float
  gemini_api_key: str | None
  extraction_model: str
  max_upload_bytes: int
  dev_credit_balance: int
  flashcard_count: int
  step_costs: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_STEP_COSTS), hash=False)


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    return ("http://localhost:5173",)

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("ORBIT_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("ORBIT_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None:
    return False

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  return value or None


def _parse_step_costs(raw: str | None) -> dict[str, int]:
  """Merge operator cost overrides onto the defaults."""
  costs = dict(DEFAULT_STEP_COSTS)
  if not raw:
    return costs
  try:
    overrides: Any = json.loads(raw)
  except json.JSONDecodeError as exc:
    raise ValueError("ORBIT_STEP_COSTS must be a JSON object.") from exc
  if not isinstance(overrides, dict):
    raise ValueError("ORBIT_STEP_COSTS must be a JSON object.")
  for key, value in overrides.items():
    cost = int(value)
    if cost < 0:
      raise ValueError(f"ORBIT_STEP_COSTS[{key}] must not be negative.")
    costs[str(key)] = cost
  return costs


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("ORBIT_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("ORBIT_DEBUG"))

  log_max_bytes = int(os.getenv("ORBIT_LOG_MAX_BYTES", "5242880"))  # 5MB default
  if log_max_bytes <= 0:
    raise ValueError("ORBIT_LOG_MAX_BYTES must be a positive integer.")

  log_backup_count = int(os.getenv("ORBIT_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("ORBIT_LOG_BACKUP_COUNT must be zero or a positive integer.")

  pg_dsn = _optional_str(os.getenv("ORBIT_PG_DSN"))
  storage_backend = (os.getenv("ORBIT_STORAGE_BACKEND") or ("postgres" if pg_dsn else "memory")).strip().lower()
  if storage_backend not in {"memory", "postgres"}:
    raise ValueError("ORBIT_STORAGE_BACKEND must be 'memory' or 'postgres'.")
  if storage_backend == "postgres" and not pg_dsn:
    raise ValueError("ORBIT_PG_DSN must be set when ORBIT_STORAGE_BACKEND is 'postgres'.")

  generation_timeout_seconds = float(os.getenv("ORBIT_GENERATION_TIMEOUT_SECONDS", "120"))
  if generation_timeout_seconds <= 0:
    raise ValueError("ORBIT_GENERATION_TIMEOUT_SECONDS must be positive.")

  max_upload_bytes = int(os.getenv("ORBIT_MAX_UPLOAD_BYTES", str(_TEN_MEGABYTES)))
  if max_upload_bytes <= 0:
    raise ValueError("ORBIT_MAX_UPLOAD_BYTES must be a positive integer.")

  dev_credit_balance = int(os.getenv("ORBIT_DEV_CREDIT_BALANCE", "100000"))
  if dev_credit_balance < 0:
    raise ValueError("ORBIT_DEV_CREDIT_BALANCE must be zero or a positive integer.")

  flashcard_count = int(os.getenv("ORBIT_FLASHCARD_COUNT", "15"))
  if flashcard_count <= 0:
    raise ValueError("ORBIT_FLASHCARD_COUNT must be a positive integer.")

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("ORBIT_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=_parse_bool(os.getenv("ORBIT_LOG_HTTP_4XX")),
    pg_dsn=pg_dsn,
    storage_backend=storage_backend,
    generation_service_url=_optional_str(os.getenv("ORBIT_GENERATION_SERVICE_URL")),
    generation_api_key=_optional_str(os.getenv("ORBIT_GENERATION_API_KEY")),
    generation_timeout_seconds=generation_timeout_seconds,
    gemini_api_key=_optional_str(os.getenv("GEMINI_API_KEY")),
    extraction_model=(os.getenv("ORBIT_EXTRACTION_MODEL") or "gemini-2.0-flash-lite").strip(),
    max_upload_bytes=max_upload_bytes,
    dev_credit_balance=dev_credit_balance,
    flashcard_count=flashcard_count,
    step_costs=_parse_step_costs(os.getenv("ORBIT_STEP_COSTS")),
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without validating unrelated service configuration."""

  return DatabaseSettings(debug=_parse_bool(os.getenv("ORBIT_DEBUG")), pg_dsn=_optional_str(os.getenv("ORBIT_PG_DSN")))
