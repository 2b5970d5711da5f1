from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from orbit.config import Settings
from orbit.jobs.models import StepName
from orbit.schema.generation import GenerationKind
from orbit.utils.backoff import DEFAULT_DELAYS, retry_with_backoff

logger = logging.getLogger(__name__)


class GenerationServiceError(RuntimeError):
  """The remote generation service answered but reported a failure."""


@dataclass(frozen=True)
class StepContext:
  """Everything one remote generation step needs."""

  artifact_id: str
  run_id: str
  kind: GenerationKind
  request: dict[str, Any]
  options: dict[str, Any] = field(default_factory=dict)
  source_text: str | None = None
  primary: dict[str, Any] | None = None
  references: list[dict[str, Any]] = field(default_factory=list)

  def to_dict(self) -> dict[str, Any]:
    return {
      "artifactId": self.artifact_id,
      "runId": self.run_id,
      "kind": self.kind.value,
      "request": self.request,
      "options": self.options,
      "sourceText": self.source_text,
      "primary": self.primary,
      "references": self.references,
    }


class GenerationClient(Protocol):
  """Remote AI service that produces one step's content."""

  async def generate(self, step: StepName, context: StepContext) -> dict[str, Any]:
    """Return the step's result object; raise on any failure."""


class HttpGenerationClient(GenerationClient):
  """POST each step to ``{base_url}/generate/{step}`` and unwrap the ``{success, data, error}`` envelope."""

  def __init__(self, *, base_url: str | None, api_key: str | None = None, timeout: float = 120.0, transport: httpx.AsyncBaseTransport | None = None, delays: tuple[float, ...] = DEFAULT_DELAYS) -> None:
    self._base_url = base_url.rstrip("/") if base_url else None
    self._api_key = api_key
    self._timeout = timeout
    self._transport = transport
    self._delays = delays

  @classmethod
  def from_settings(cls, settings: Settings) -> HttpGenerationClient:
    return cls(base_url=settings.generation_service_url, api_key=settings.generation_api_key, timeout=settings.generation_timeout_seconds)

  def _build_client(self) -> httpx.AsyncClient:
    """Build an httpx client for the generation service."""
    headers = {"authorization": f"Bearer {self._api_key}"} if self._api_key else {}
    # Never trust environment proxy variables for service-to-service calls.
    return httpx.AsyncClient(base_url=self._base_url or "", headers=headers, timeout=self._timeout, transport=self._transport, trust_env=False)

  async def _post(self, client: httpx.AsyncClient, step: StepName, body: dict[str, Any]) -> httpx.Response:
    response = await client.post(f"/generate/{step.value}", json=body)
    response.raise_for_status()
    return response

  async def generate(self, step: StepName, context: StepContext) -> dict[str, Any]:
    if not self._base_url:
      raise RuntimeError("Generation service URL not configured (ORBIT_GENERATION_SERVICE_URL).")

    try:
      async with self._build_client() as client:
        response = await retry_with_backoff(self._post, client, step, context.to_dict(), delays=self._delays)
    except httpx.HTTPStatusError as e:
      logger.error("Generation step %s returned %s for artifact %s: %s", step.value, e.response.status_code, context.artifact_id, e.response.text)
      raise
    except httpx.RequestError as e:
      logger.error("Generation step %s failed for artifact %s: %s", step.value, context.artifact_id, e)
      raise

    body = response.json()
    if not isinstance(body, dict):
      raise GenerationServiceError(f"Generation step {step.value} returned a non-object body.")
    if body.get("success") is False:
      raise GenerationServiceError(str(body.get("error") or f"Generation step {step.value} failed."))

    data = body.get("data", body)
    if not isinstance(data, dict):
      raise GenerationServiceError(f"Generation step {step.value} returned malformed data.")
    return data
