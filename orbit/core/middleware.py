import logging
import re
import time
import uuid
from typing import Any

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Receive, Scope, Send

logger = logging.getLogger("orbit.core.middleware")

REQUEST_ID_HEADER = "x-request-id"
# Client-supplied ids are reused only when they look like a sane token.
_REQUEST_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{8,64}$")


def _request_id_for(scope: Scope) -> str:
  supplied = Headers(scope=scope).get(REQUEST_ID_HEADER)
  if supplied and _REQUEST_ID_PATTERN.match(supplied):
    return supplied
  return uuid.uuid4().hex


def _request_target(scope: Scope) -> str:
  target = scope.get("path", "")
  query_string = scope.get("query_string", b"")
  if query_string:
    target = f"{target}?{query_string.decode('latin-1')}"
  return target


class RequestLoggingMiddleware:
  """Tag every HTTP request with an id, echo it back, and log one line per request and response.

  Plain ASGI rather than BaseHTTPMiddleware so streamed SSE bodies pass through untouched.
  """

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    request_id = _request_id_for(scope)
    scope.setdefault("state", {})["request_id"] = request_id
    method = scope.get("method", "UNKNOWN")
    target = _request_target(scope)
    started = time.perf_counter()
    logger.info("-> %s %s request_id=%s", method, target, request_id)

    status_code = 0

    async def send_with_request_id(message: dict[str, Any]) -> None:
      nonlocal status_code
      if message["type"] == "http.response.start":
        status_code = message.get("status", 0)
        headers = MutableHeaders(scope=message)
        if REQUEST_ID_HEADER not in headers:
          headers[REQUEST_ID_HEADER] = request_id
      await send(message)

    try:
      await self.app(scope, receive, send_with_request_id)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      level = logging.WARNING if status_code >= 500 or status_code == 0 else logging.INFO
      logger.log(level, "<- %s %s status=%s request_id=%s (%.1fms)", method, target, status_code, request_id, elapsed_ms)
