import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from orbit.core.errors import ErrorKind, OrbitError

# Specific codes take precedence over the kind-level default.
_CODE_STATUS: dict[str, int] = {
  "INVALID_FILE_TYPE": status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
  "FILE_TOO_LARGE": status.HTTP_413_CONTENT_TOO_LARGE,
  "EMPTY_FILE": status.HTTP_400_BAD_REQUEST,
  "EXTRACTION_FAILED": status.HTTP_502_BAD_GATEWAY,
}

_KIND_STATUS: dict[ErrorKind, int] = {
  ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
  ErrorKind.INGESTION: status.HTTP_400_BAD_REQUEST,
  ErrorKind.QUOTA: status.HTTP_403_FORBIDDEN,
  ErrorKind.PRIMARY_STEP_FAILURE: status.HTTP_502_BAD_GATEWAY,
  ErrorKind.OPTIONAL_STEP_FAILURE: status.HTTP_502_BAD_GATEWAY,
  ErrorKind.PRECONDITION: status.HTTP_409_CONFLICT,
  ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
  ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def status_for_error(exc: OrbitError) -> int:
  """Map a typed engine error to its HTTP status."""
  if exc.code in _CODE_STATUS:
    return _CODE_STATUS[exc.code]
  return _KIND_STATUS.get(exc.kind, status.HTTP_400_BAD_REQUEST)


def _coerce_json_safe(value: Any) -> Any:
  """Convert unsupported values into JSON-safe primitives for error responses."""
  # Keep native JSON primitives unchanged.
  if value is None or isinstance(value, bool | int | float | str):
    return value
  # Recursively sanitize mapping values so nested details remain serializable.
  if isinstance(value, dict):
    return {str(key): _coerce_json_safe(item) for key, item in value.items()}
  # Normalize iterable containers to lists for deterministic JSON encoding.
  if isinstance(value, list | tuple | set):
    return [_coerce_json_safe(item) for item in value]
  # Serialize exception instances explicitly to avoid leaking non-serializable objects.
  if isinstance(value, BaseException):
    error_message = str(value)
    if error_message:
      return f"{type(value).__name__}: {error_message}"
    return type(value).__name__
  # Fall back to string coercion for arbitrary custom objects.
  return str(value)


def _error_payload(detail: Any, *, request_id: str | None = None) -> dict[str, Any]:
  """Build a safe error payload that avoids leaking internal details to clients."""
  payload: dict[str, Any] = {"detail": detail}
  # Attach a request id so support can correlate client reports to server logs.
  if request_id:
    payload["requestId"] = request_id
  return payload


def _sanitize_validation_errors(errors: Any) -> list[dict[str, Any]]:
  """Return validation errors without raw input payloads."""
  sanitized: list[dict[str, Any]] = []
  # Strip payload values so logs are useful without leaking request bodies.
  for error in errors:
    scrubbed = {key: value for key, value in error.items() if key != "input"}
    # Remove nested input values from context payloads as well.
    if "ctx" in scrubbed and isinstance(scrubbed["ctx"], dict):
      scrubbed_ctx = dict(scrubbed["ctx"])
      scrubbed_ctx.pop("input", None)
      scrubbed["ctx"] = scrubbed_ctx

    sanitized.append(_coerce_json_safe(scrubbed))

  return sanitized


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
  """Global exception handler to catch unhandled errors."""
  logger = logging.getLogger("uvicorn.error")
  request_id = getattr(request.state, "request_id", None)
  logger.error("Global exception request_id=%s path=%s error_type=%s", request_id, request.url.path, type(exc).__name__, exc_info=True)
  return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_error_payload("Internal Server Error", request_id=request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
  """Log request validation errors for debugging without leaking payloads."""
  request_id = getattr(request.state, "request_id", None)
  sanitized_errors = _sanitize_validation_errors(exc.errors())
  logger = logging.getLogger("uvicorn.error")
  logger.warning("Request validation failed request_id=%s path=%s method=%s errors=%s", request_id, request.url.path, request.method, sanitized_errors)
  return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_CONTENT, content=_error_payload(sanitized_errors, request_id=request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
  """Handle FastAPI HTTPExceptions while avoiding leaking internal diagnostics."""
  from orbit.config import get_settings

  request_id = getattr(request.state, "request_id", None)
  if exc.status_code >= 500:
    logger = logging.getLogger("uvicorn.error")
    logger.error("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail, exc_info=True)
    return JSONResponse(status_code=exc.status_code, content=_error_payload("Internal Server Error", request_id=request_id))

  # Log 4xx HTTPExceptions when explicitly enabled for debugging.
  if get_settings().log_http_4xx:
    logging.getLogger("uvicorn.error").warning("HTTPException request_id=%s path=%s status_code=%s detail=%s", request_id, request.url.path, exc.status_code, exc.detail)

  return JSONResponse(status_code=exc.status_code, content=_error_payload(exc.detail, request_id=request_id))


async def orbit_exception_handler(request: Request, exc: OrbitError) -> JSONResponse:
  """Return the typed error code and message for engine failures."""
  request_id = getattr(request.state, "request_id", None)
  status_code = status_for_error(exc)
  logger = logging.getLogger("uvicorn.error")
  if status_code >= 500:
    logger.error("Engine failure request_id=%s path=%s code=%s message=%s", request_id, request.url.path, exc.code, exc.message, exc_info=exc)
  else:
    logger.info("Rejected request_id=%s path=%s code=%s message=%s", request_id, request.url.path, exc.code, exc.message)
  detail: dict[str, Any] = {"error": exc.code, "message": exc.message}
  if exc.details:
    detail["details"] = _coerce_json_safe(exc.details)
  return JSONResponse(status_code=status_code, content=_error_payload(detail, request_id=request_id))
