import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from orbit.core.database import create_tables, dispose_engine
from orbit.core.logging import _initialize_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and storage once uvicorn starts; release the engine on shutdown."""
  from orbit.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("orbit.core.lifespan")

  try:
    _initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
  except Exception:
    # Logging failures should not prevent the service from starting.
    logger.warning("Initial logging setup failed; continuing with default handlers.", exc_info=True)

  if settings.storage_backend == "postgres":
    logger.info("Ensuring artifact tables exist; ORBIT_PG_DSN=%s", _redact_dsn(settings.pg_dsn))
    await create_tables()

  yield

  if settings.storage_backend == "postgres":
    await dispose_engine()
  logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
