"""Upload validation, classification, and text extraction."""

from __future__ import annotations

import logging
from pathlib import PurePath

import pymupdf
from fastapi.concurrency import run_in_threadpool

from orbit.core.errors import IngestionError
from orbit.schema.generation import ExtractionMethod, GenerationKind, MimeCategory, UploadedSource
from orbit.services.extraction_client import ExtractionOutcome, IncomingFile, TextExtractor

logger = logging.getLogger(__name__)

_ONE_MEGABYTE = 1024 * 1024
MAX_UPLOAD_BYTES = 10 * _ONE_MEGABYTE
_GENERIC_MIME_TYPES = {"", "application/octet-stream", "binary/octet-stream"}

MIME_CATEGORIES: dict[str, MimeCategory] = {
  "application/pdf": MimeCategory.PDF,
  "application/vnd.ms-powerpoint": MimeCategory.PPT,
  "application/vnd.openxmlformats-officedocument.presentationml.presentation": MimeCategory.PPT,
  "image/png": MimeCategory.IMAGE,
  "image/jpeg": MimeCategory.IMAGE,
  "image/jpg": MimeCategory.IMAGE,
  "image/gif": MimeCategory.IMAGE,
  "image/webp": MimeCategory.IMAGE,
  "text/plain": MimeCategory.TEXT,
}

EXTENSION_MIME_TYPES: dict[str, str] = {
  ".pdf": "application/pdf",
  ".ppt": "application/vnd.ms-powerpoint",
  ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
  ".png": "image/png",
  ".jpg": "image/jpeg",
  ".jpeg": "image/jpeg",
  ".gif": "image/gif",
  ".webp": "image/webp",
  ".txt": "text/plain",
}

CATEGORY_SIZE_LIMITS: dict[MimeCategory, int] = {
  MimeCategory.PDF: 10 * _ONE_MEGABYTE,
  MimeCategory.PPT: 10 * _ONE_MEGABYTE,
  MimeCategory.IMAGE: 5 * _ONE_MEGABYTE,
  MimeCategory.TEXT: _ONE_MEGABYTE,
}

# pdf and ppt are accepted by every flow; images and plain text only where the flow reads them.
FLOW_CATEGORIES: dict[GenerationKind, frozenset[MimeCategory]] = {
  GenerationKind.LESSON_GUIDE: frozenset({MimeCategory.PDF, MimeCategory.PPT}),
  GenerationKind.FULL_LESSON: frozenset({MimeCategory.PDF, MimeCategory.PPT}),
  GenerationKind.AUDIO_SCRIPT: frozenset(MimeCategory),
  GenerationKind.SUB_PLAN: frozenset(MimeCategory),
}


def normalize_mime_type(file_name: str, content_type: str | None) -> str:
  """Drop parameters and resolve generic types from the file extension."""
  mime_type = (content_type or "").split(";", 1)[0].strip().lower()
  if mime_type in _GENERIC_MIME_TYPES:
    return EXTENSION_MIME_TYPES.get(PurePath(file_name).suffix.lower(), mime_type or "application/octet-stream")
  return mime_type


def source_title(file_name: str) -> str | None:
  stem = PurePath(file_name).stem.strip()
  return stem or None


class PyMuPdfExtractor:
  """Local PDF text layer extraction."""

  async def extract(self, file: IncomingFile, category: MimeCategory) -> ExtractionOutcome:
    # PyMuPDF is CPU-bound; keep it off the event loop.
    text = await run_in_threadpool(self._read_text, file.data)
    return ExtractionOutcome(text=text.strip(), method=ExtractionMethod.CLIENT)

  @staticmethod
  def _read_text(data: bytes) -> str:
    with pymupdf.open(stream=data, filetype="pdf") as document:
      return "\n".join(page.get_text() for page in document)


class PlainTextExtractor:
  """Decode plain-text uploads without a remote call."""

  async def extract(self, file: IncomingFile, category: MimeCategory) -> ExtractionOutcome:
    try:
      text = file.data.decode("utf-8-sig")
    except UnicodeDecodeError:
      text = file.data.decode("latin-1")
    return ExtractionOutcome(text=text.strip(), method=ExtractionMethod.CLIENT)


class FallbackExtractor:
  """Try a cheap local extractor first and delegate to a remote one on empty or failed output."""

  def __init__(self, local: TextExtractor, remote: TextExtractor) -> None:
    self._local = local
    self._remote = remote

  async def extract(self, file: IncomingFile, category: MimeCategory) -> ExtractionOutcome:
    try:
      outcome = await self._local.extract(file, category)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Local extraction failed for %s, falling back to server: %s", file.file_name, exc)
    else:
      if outcome.text:
        return outcome
      logger.info("Local extraction returned no text for %s, falling back to server", file.file_name)

    return await self._remote.extract(file, category)


class SourceIngestionDispatcher:
  """Validate an upload, pick the strategy for its category, and produce an UploadedSource."""

  def __init__(self, *, remote: TextExtractor, local_pdf: TextExtractor | None = None, local_text: TextExtractor | None = None, max_upload_bytes: int = MAX_UPLOAD_BYTES) -> None:
    self._max_upload_bytes = max_upload_bytes
    self._strategies: dict[MimeCategory, TextExtractor] = {
      MimeCategory.PDF: FallbackExtractor(local_pdf or PyMuPdfExtractor(), remote),
      MimeCategory.PPT: remote,
      MimeCategory.IMAGE: remote,
      MimeCategory.TEXT: local_text or PlainTextExtractor(),
    }
    missing = set(MimeCategory) - set(self._strategies)
    if missing:
      raise RuntimeError(f"No extraction strategy for: {sorted(item.value for item in missing)}")

  def classify(self, file: IncomingFile, *, kind: GenerationKind, hint: MimeCategory | None = None) -> MimeCategory:
    """Validate size and type; raises IngestionError without touching any extractor."""

    if file.size_bytes == 0:
      raise IngestionError("The uploaded file is empty.", code="EMPTY_FILE", details={"fileName": file.file_name})

    if file.size_bytes > self._max_upload_bytes:
      raise IngestionError(f"File exceeds the {self._max_upload_bytes} byte limit.", code="FILE_TOO_LARGE", details={"fileName": file.file_name, "sizeBytes": file.size_bytes})

    category = MIME_CATEGORIES.get(file.mime_type)
    if category is None:
      raise IngestionError(f"Unsupported file type: {file.mime_type}.", code="INVALID_FILE_TYPE", details={"fileName": file.file_name, "mimeType": file.mime_type})

    if hint is not None and hint != category:
      raise IngestionError(f"File type {file.mime_type} does not match the declared category {hint.value}.", code="INVALID_FILE_TYPE", details={"fileName": file.file_name, "mimeType": file.mime_type})

    if category not in FLOW_CATEGORIES[kind]:
      raise IngestionError(f"{category.value} uploads are not supported for {kind.value}.", code="INVALID_FILE_TYPE", details={"fileName": file.file_name, "mimeType": file.mime_type})

    limit = min(CATEGORY_SIZE_LIMITS[category], self._max_upload_bytes)
    if file.size_bytes > limit:
      raise IngestionError(f"{category.value} files must be at most {limit} bytes.", code="FILE_TOO_LARGE", details={"fileName": file.file_name, "sizeBytes": file.size_bytes})

    return category

  async def ingest(self, data: bytes, *, file_name: str, content_type: str | None, kind: GenerationKind, hint: MimeCategory | None = None) -> UploadedSource:
    """Validate, extract, and describe one uploaded file."""

    file = IncomingFile(file_name=file_name, data=data, mime_type=normalize_mime_type(file_name, content_type))
    category = self.classify(file, kind=kind, hint=hint)
    strategy = self._strategies[category]

    try:
      outcome = await strategy.extract(file, category)
    except IngestionError:
      raise
    except Exception as exc:
      logger.error("Extraction failed for %s (%s)", file_name, category.value, exc_info=True)
      raise IngestionError(f"Text extraction failed: {exc}", code="EXTRACTION_FAILED", details={"fileName": file_name}) from exc

    if not outcome.text.strip():
      raise IngestionError("No text could be extracted from the file.", code="EXTRACTION_FAILED", details={"fileName": file_name})

    logger.info("Ingested %s as %s via %s extraction (%s chars)", file_name, category.value, outcome.method.value, len(outcome.text))
    return UploadedSource(file_name=file_name, size_bytes=file.size_bytes, mime_category=category, extracted_text=outcome.text, extraction_method=outcome.method, title=source_title(file_name))
