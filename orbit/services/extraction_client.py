"""Server-side text extraction backed by Gemini multimodal calls."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

from google import genai
from google.genai import types

from orbit.schema.generation import ExtractionMethod, MimeCategory
from orbit.utils.backoff import DEFAULT_DELAYS, retry_with_backoff

logger = logging.getLogger(__name__)

_DEFAULT_MODEL_NAME = "gemini-2.0-flash-lite"

_PROMPTS: dict[MimeCategory, str] = {
  MimeCategory.PDF: "Extract all readable text from this PDF document. Preserve headings, lists, and reading order. Return plain text only.",
  MimeCategory.PPT: "Extract the text of every slide in this presentation, in slide order, including speaker notes. Return plain text only.",
  MimeCategory.IMAGE: "Transcribe all text visible in this image. If it contains diagrams, describe their labels briefly. Return plain text only.",
  MimeCategory.TEXT: "Return the text content of this file unchanged.",
}


@dataclass(frozen=True)
class IncomingFile:
  """Raw upload handed to the ingestion dispatcher."""

  file_name: str
  data: bytes
  mime_type: str

  @property
  def size_bytes(self) -> int:
    return len(self.data)


@dataclass(frozen=True)
class ExtractionOutcome:
  text: str
  method: ExtractionMethod


class TextExtractor(Protocol):
  """One extraction strategy for a file category."""

  async def extract(self, file: IncomingFile, category: MimeCategory) -> ExtractionOutcome:
    """Return the text of ``file``; raise when the call itself fails."""


class GeminiExtractor:
  """Send file bytes inline to Gemini with a category-specific extraction prompt."""

  def __init__(self, *, api_key: str | None, model_name: str = _DEFAULT_MODEL_NAME, client: Any | None = None, delays: tuple[float, ...] = DEFAULT_DELAYS) -> None:
    self._api_key = api_key
    self._model_name = model_name
    self._client = client
    self._delays = delays

  @property
  def model_name(self) -> str:
    return self._model_name

  def _get_client(self) -> Any:
    if self._client is None:
      if not self._api_key:
        raise RuntimeError("GEMINI_API_KEY environment variable is required for server-side extraction")
      self._client = genai.Client(api_key=self._api_key)
    return self._client

  async def extract(self, file: IncomingFile, category: MimeCategory) -> ExtractionOutcome:
    client = self._get_client()
    part = types.Part.from_bytes(data=file.data, mime_type=file.mime_type)
    response = await retry_with_backoff(client.aio.models.generate_content, model=self._model_name, contents=[part, _PROMPTS[category]], delays=self._delays)
    text = (response.text or "").strip()
    logger.info("Gemini extracted %s chars from %s (%s)", len(text), file.file_name, category.value)
    return ExtractionOutcome(text=text, method=ExtractionMethod.SERVER)
