from __future__ import annotations

from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from orbit import __version__
from orbit.api.routes import artifacts, sources
from orbit.config import get_settings
from orbit.core.errors import OrbitError
from orbit.core.exceptions import global_exception_handler, http_exception_handler, orbit_exception_handler, request_validation_exception_handler
from orbit.core.lifespan import lifespan
from orbit.core.middleware import RequestLoggingMiddleware

settings = get_settings()

app = FastAPI(title="Orbit Engine", version=__version__, lifespan=lifespan)

app.add_middleware(CORSMiddleware, allow_origins=list(settings.allowed_origins), allow_credentials=True, allow_methods=["GET", "POST", "DELETE", "OPTIONS"], allow_headers=["content-type", "authorization", "x-request-id"], expose_headers=["content-length", "x-request-id"])


# Add exception handlers
app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(OrbitError, orbit_exception_handler)
app.add_exception_handler(RequestValidationError, request_validation_exception_handler)

# Add middleware
app.add_middleware(RequestLoggingMiddleware)


@app.get("/health", include_in_schema=False)
async def health_check() -> dict[str, str]:
  """Return a simple health status."""
  return {"status": "ok", "version": __version__}


app.include_router(artifacts.router, prefix="/v1/artifacts", tags=["artifacts"])
app.include_router(sources.router, prefix="/v1/sources", tags=["sources"])
