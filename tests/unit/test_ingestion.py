"""Tests for upload classification and extraction routing."""

from __future__ import annotations

import pytest

from orbit.core.errors import IngestionError
from orbit.schema.generation import ExtractionMethod, GenerationKind, MimeCategory
from orbit.services.extraction_client import ExtractionOutcome, IncomingFile
from orbit.services.ingestion import SourceIngestionDispatcher, normalize_mime_type, source_title
from tests.fakes import FakeRemoteExtractor

_MB = 1024 * 1024


class StaticLocalExtractor:
  def __init__(self, text: str = "", error: Exception | None = None) -> None:
    self.text = text
    self.error = error
    self.calls = 0

  async def extract(self, file: IncomingFile, category: MimeCategory) -> ExtractionOutcome:
    self.calls += 1
    if self.error is not None:
      raise self.error
    return ExtractionOutcome(text=self.text, method=ExtractionMethod.CLIENT)


@pytest.mark.anyio
async def test_executable_upload_is_rejected_without_any_extraction(dispatcher, remote_extractor) -> None:
  with pytest.raises(IngestionError) as excinfo:
    await dispatcher.ingest(b"MZ\x90\x00", file_name="setup.exe", content_type="application/x-msdownload", kind=GenerationKind.FULL_LESSON)

  assert excinfo.value.code == "INVALID_FILE_TYPE"
  assert remote_extractor.calls == []


@pytest.mark.anyio
async def test_empty_upload_is_rejected(dispatcher) -> None:
  with pytest.raises(IngestionError) as excinfo:
    await dispatcher.ingest(b"", file_name="notes.txt", content_type="text/plain", kind=GenerationKind.SUB_PLAN)
  assert excinfo.value.code == "EMPTY_FILE"


@pytest.mark.anyio
async def test_category_size_limits_apply(dispatcher, remote_extractor) -> None:
  # Images are capped below the global limit.
  with pytest.raises(IngestionError) as excinfo:
    await dispatcher.ingest(b"\x89PNG" + b"0" * (5 * _MB), file_name="board.png", content_type="image/png", kind=GenerationKind.AUDIO_SCRIPT)
  assert excinfo.value.code == "FILE_TOO_LARGE"

  with pytest.raises(IngestionError) as excinfo:
    await dispatcher.ingest(b"a" * (_MB + 1), file_name="notes.txt", content_type="text/plain", kind=GenerationKind.SUB_PLAN)
  assert excinfo.value.code == "FILE_TOO_LARGE"
  assert remote_extractor.calls == []


@pytest.mark.anyio
async def test_global_upload_limit_is_checked_before_type() -> None:
  remote = FakeRemoteExtractor()
  dispatcher = SourceIngestionDispatcher(remote=remote, max_upload_bytes=10)
  with pytest.raises(IngestionError) as excinfo:
    await dispatcher.ingest(b"x" * 11, file_name="virus.exe", content_type="application/x-msdownload", kind=GenerationKind.FULL_LESSON)
  assert excinfo.value.code == "FILE_TOO_LARGE"


@pytest.mark.anyio
async def test_pdf_uses_local_text_when_available(remote_extractor) -> None:
  local = StaticLocalExtractor(text="Chapter 1: Cells")
  dispatcher = SourceIngestionDispatcher(remote=remote_extractor, local_pdf=local)

  source = await dispatcher.ingest(b"%PDF-1.7 fake", file_name="cells.pdf", content_type="application/pdf", kind=GenerationKind.LESSON_GUIDE)

  assert source.extracted_text == "Chapter 1: Cells"
  assert source.extraction_method is ExtractionMethod.CLIENT
  assert source.mime_category is MimeCategory.PDF
  assert source.title == "cells"
  assert remote_extractor.calls == []


@pytest.mark.anyio
async def test_pdf_falls_back_to_server_on_empty_local_text(remote_extractor) -> None:
  local = StaticLocalExtractor(text="")
  dispatcher = SourceIngestionDispatcher(remote=remote_extractor, local_pdf=local)

  source = await dispatcher.ingest(b"%PDF-1.7 scanned", file_name="scan.pdf", content_type="application/pdf", kind=GenerationKind.FULL_LESSON)

  assert local.calls == 1
  assert len(remote_extractor.calls) == 1
  assert source.extraction_method is ExtractionMethod.SERVER


@pytest.mark.anyio
async def test_pdf_falls_back_to_server_when_local_parser_raises(remote_extractor) -> None:
  local = StaticLocalExtractor(error=ValueError("broken xref table"))
  dispatcher = SourceIngestionDispatcher(remote=remote_extractor, local_pdf=local)

  source = await dispatcher.ingest(b"%PDF-1.7 broken", file_name="broken.pdf", content_type="application/pdf", kind=GenerationKind.FULL_LESSON)

  assert source.extracted_text == "Extracted by the server."
  assert len(remote_extractor.calls) == 1


@pytest.mark.anyio
async def test_presentations_are_always_sent_to_the_server(dispatcher, remote_extractor) -> None:
  source = await dispatcher.ingest(b"PK\x03\x04slides", file_name="deck.pptx", content_type="application/octet-stream", kind=GenerationKind.FULL_LESSON)

  assert source.mime_category is MimeCategory.PPT
  assert source.extraction_method is ExtractionMethod.SERVER
  assert remote_extractor.calls[0][1] is MimeCategory.PPT


@pytest.mark.anyio
async def test_plain_text_is_decoded_locally(dispatcher, remote_extractor) -> None:
  source = await dispatcher.ingest("Bring gloves for the lab.\n".encode(), file_name="notes.txt", content_type="text/plain; charset=utf-8", kind=GenerationKind.SUB_PLAN)

  assert source.extracted_text == "Bring gloves for the lab."
  assert source.extraction_method is ExtractionMethod.CLIENT
  assert remote_extractor.calls == []


@pytest.mark.anyio
async def test_images_are_not_accepted_by_lesson_flows(dispatcher) -> None:
  with pytest.raises(IngestionError) as excinfo:
    await dispatcher.ingest(b"\x89PNG....", file_name="board.png", content_type="image/png", kind=GenerationKind.LESSON_GUIDE)
  assert excinfo.value.code == "INVALID_FILE_TYPE"


@pytest.mark.anyio
async def test_declared_category_must_match_detected_type(dispatcher) -> None:
  with pytest.raises(IngestionError) as excinfo:
    await dispatcher.ingest(b"%PDF-1.7", file_name="cells.pdf", content_type="application/pdf", kind=GenerationKind.SUB_PLAN, hint=MimeCategory.IMAGE)
  assert excinfo.value.code == "INVALID_FILE_TYPE"


@pytest.mark.anyio
async def test_server_failure_surfaces_as_extraction_failed(dispatcher, remote_extractor) -> None:
  remote_extractor.error = RuntimeError("upstream unavailable")
  with pytest.raises(IngestionError) as excinfo:
    await dispatcher.ingest(b"\x89PNG....", file_name="board.png", content_type="image/png", kind=GenerationKind.AUDIO_SCRIPT)
  assert excinfo.value.code == "EXTRACTION_FAILED"
  assert isinstance(excinfo.value.__cause__, RuntimeError)


@pytest.mark.anyio
async def test_blank_extraction_result_is_a_failure(dispatcher, remote_extractor) -> None:
  remote_extractor.text = "   "
  with pytest.raises(IngestionError) as excinfo:
    await dispatcher.ingest(b"\x89PNG....", file_name="board.png", content_type="image/png", kind=GenerationKind.SUB_PLAN)
  assert excinfo.value.code == "EXTRACTION_FAILED"


def test_mime_type_falls_back_to_extension_for_generic_types() -> None:
  assert normalize_mime_type("deck.PPTX", "application/octet-stream") == "application/vnd.openxmlformats-officedocument.presentationml.presentation"
  assert normalize_mime_type("notes.txt", None) == "text/plain"
  assert normalize_mime_type("photo.jpg", "IMAGE/JPEG") == "image/jpeg"


def test_source_title_uses_file_stem() -> None:
  assert source_title("Unit 3 - Cells.pdf") == "Unit 3 - Cells"
