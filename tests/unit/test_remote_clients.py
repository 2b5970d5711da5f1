"""Tests for the HTTP generation client and the Gemini extraction client."""

from __future__ import annotations

import json
from types import SimpleNamespace

import httpx
import pytest

from orbit.jobs.models import StepName
from orbit.schema.generation import ExtractionMethod, GenerationKind, MimeCategory
from orbit.services.extraction_client import GeminiExtractor, IncomingFile
from orbit.services.generation_client import GenerationServiceError, HttpGenerationClient, StepContext
from orbit.utils.backoff import is_rate_limit_error, retry_with_backoff


def _context() -> StepContext:
  return StepContext(artifact_id="art-1", run_id="run-1", kind=GenerationKind.FULL_LESSON, request={"topic": "Cells"}, options={"lessonType": "full"})


@pytest.mark.anyio
async def test_generation_client_posts_step_and_unwraps_envelope() -> None:
  seen: list[httpx.Request] = []

  def handler(request: httpx.Request) -> httpx.Response:
    seen.append(request)
    return httpx.Response(200, json={"success": True, "data": {"title": "Cells"}})

  client = HttpGenerationClient(base_url="https://gen.example.test/", api_key="k-1", transport=httpx.MockTransport(handler), delays=())
  result = await client.generate(StepName.LESSON, _context())

  assert result == {"title": "Cells"}
  assert seen[0].url.path == "/generate/lesson"
  assert seen[0].headers["authorization"] == "Bearer k-1"
  body = json.loads(seen[0].content)
  assert body["artifactId"] == "art-1"
  assert body["options"] == {"lessonType": "full"}


@pytest.mark.anyio
async def test_generation_client_raises_on_failed_envelope() -> None:
  transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"success": False, "error": "content policy"}))
  client = HttpGenerationClient(base_url="https://gen.example.test", transport=transport, delays=())
  with pytest.raises(GenerationServiceError, match="content policy"):
    await client.generate(StepName.QUIZ, _context())


@pytest.mark.anyio
async def test_generation_client_retries_rate_limits() -> None:
  attempts = {"count": 0}

  def handler(request: httpx.Request) -> httpx.Response:
    attempts["count"] += 1
    if attempts["count"] == 1:
      return httpx.Response(429, json={"error": "slow down"})
    return httpx.Response(200, json={"success": True, "data": {"cards": []}})

  client = HttpGenerationClient(base_url="https://gen.example.test", transport=httpx.MockTransport(handler), delays=(0,))
  assert await client.generate(StepName.FLASHCARDS, _context()) == {"cards": []}
  assert attempts["count"] == 2


@pytest.mark.anyio
async def test_generation_client_surfaces_server_errors() -> None:
  transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
  client = HttpGenerationClient(base_url="https://gen.example.test", transport=transport, delays=(0, 0))
  with pytest.raises(httpx.HTTPStatusError):
    await client.generate(StepName.LESSON, _context())


@pytest.mark.anyio
async def test_generation_client_requires_base_url() -> None:
  with pytest.raises(RuntimeError):
    await HttpGenerationClient(base_url=None).generate(StepName.LESSON, _context())


@pytest.mark.anyio
async def test_retry_gives_up_after_last_delay() -> None:
  calls = {"count": 0}

  async def always_throttled() -> None:
    calls["count"] += 1
    raise RuntimeError("429 Too Many Requests")

  with pytest.raises(RuntimeError):
    await retry_with_backoff(always_throttled, delays=(0, 0))
  assert calls["count"] == 3
  assert is_rate_limit_error(RuntimeError("Resource Exhausted"))
  assert not is_rate_limit_error(ValueError("bad input"))


class _FakeModels:
  def __init__(self, text: str) -> None:
    self.text = text
    self.calls: list[dict] = []

  async def generate_content(self, **kwargs):
    self.calls.append(kwargs)
    return SimpleNamespace(text=self.text)


@pytest.mark.anyio
async def test_gemini_extractor_sends_file_inline() -> None:
  models = _FakeModels("  Slide 1: Cells  ")
  fake_client = SimpleNamespace(aio=SimpleNamespace(models=models))
  extractor = GeminiExtractor(api_key=None, model_name="gemini-test", client=fake_client, delays=())

  outcome = await extractor.extract(IncomingFile(file_name="deck.pptx", data=b"PK", mime_type="application/vnd.ms-powerpoint"), MimeCategory.PPT)

  assert outcome.text == "Slide 1: Cells"
  assert outcome.method is ExtractionMethod.SERVER
  assert models.calls[0]["model"] == "gemini-test"
  assert len(models.calls[0]["contents"]) == 2


@pytest.mark.anyio
async def test_gemini_extractor_requires_api_key() -> None:
  extractor = GeminiExtractor(api_key=None)
  with pytest.raises(RuntimeError):
    await extractor.extract(IncomingFile(file_name="a.png", data=b"x", mime_type="image/png"), MimeCategory.IMAGE)
