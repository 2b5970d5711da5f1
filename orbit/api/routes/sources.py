import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile

from orbit.api.deps import get_ingestion_dispatcher
from orbit.schema.generation import GenerationKind, MimeCategory, UploadedSource
from orbit.services.ingestion import SourceIngestionDispatcher

router = APIRouter()
logger = logging.getLogger("orbit.api.routes.sources")


@router.post("", response_model=UploadedSource)
async def upload_source(
  file: UploadFile = File(...),  # noqa: B008
  kind: GenerationKind = Form(...),  # noqa: B008
  mime_category: MimeCategory | None = Form(default=None, alias="mimeCategory"),  # noqa: B008
  dispatcher: SourceIngestionDispatcher = Depends(get_ingestion_dispatcher),  # noqa: B008
) -> UploadedSource:
  """Extract text from an uploaded file so it can seed a generation request."""
  data = await file.read()
  file_name = file.filename or "upload"
  logger.info("Received source upload %s (%s, %d bytes) for %s", file_name, file.content_type, len(data), kind.value)
  return await dispatcher.ingest(data, file_name=file_name, content_type=file.content_type, kind=kind, hint=mime_category)
