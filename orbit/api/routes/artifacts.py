import json
import logging
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import StreamingResponse

from orbit.api.deps import get_lifecycle_manager
from orbit.api.models import ArtifactListResponse, ArtifactResponse, DeleteResponse, ProgressEventResponse, ProgressPollResponse, RegenerateRequest, SubmitResponse
from orbit.core.errors import NotFoundError
from orbit.jobs.models import ArtifactRecord, ArtifactStatus, ContentType, ProgressEvent, RunPhase
from orbit.schema.generation import GenerationRequest
from orbit.services.lifecycle import ArtifactLifecycleManager, DeleteOutcome

router = APIRouter()
logger = logging.getLogger("orbit.api.routes.artifacts")


def _format_sse(event: str, data: dict[str, Any]) -> str:
  return f"event: {event}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


def _artifact_json(record: ArtifactRecord) -> dict[str, Any]:
  return ArtifactResponse.from_record(record).model_dump(mode="json", by_alias=True)


async def _terminal_frame(manager: ArtifactLifecycleManager, artifact_id: str, event: ProgressEvent) -> str:
  """Build the closing SSE frame for a terminal progress event."""
  if event.step is RunPhase.FAILED:
    return _format_sse("error", {"error": event.message, **event.to_dict()})
  try:
    record = await manager.get(artifact_id)
  except NotFoundError:
    return _format_sse("error", {"error": "Artifact was deleted.", **event.to_dict()})
  return _format_sse("complete", {**event.to_dict(), "artifact": _artifact_json(record)})


async def _event_stream(manager: ArtifactLifecycleManager, record: ArtifactRecord) -> AsyncIterator[str]:
  artifact_id = record.artifact_id
  # Nothing to follow when no run is active or recorded; report the stored outcome once.
  if manager.latest_event(artifact_id) is None and record.status != ArtifactStatus.GENERATING:
    if record.status == ArtifactStatus.FAILED:
      message = (record.last_error or {}).get("message", "Generation failed.")
      yield _format_sse("error", {"artifactId": artifact_id, "error": message})
    else:
      yield _format_sse("complete", {"artifactId": artifact_id, "artifact": _artifact_json(record)})
    return

  async for event in manager.broker.subscribe(artifact_id):
    if event.is_terminal:
      yield await _terminal_frame(manager, artifact_id, event)
      return
    yield _format_sse("progress", event.to_dict())


@router.post("", response_model=SubmitResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_artifact(
  payload: GenerationRequest,
  manager: ArtifactLifecycleManager = Depends(get_lifecycle_manager),  # noqa: B008
) -> SubmitResponse:
  """Validate a generation request and start its run in the background."""
  record = await manager.submit(payload)
  return SubmitResponse(artifact_id=record.artifact_id, status=record.status)


@router.get("", response_model=ArtifactListResponse)
async def list_artifacts(
  content_type: ContentType | None = Query(default=None, alias="contentType"),  # noqa: B008
  artifact_status: ArtifactStatus | None = Query(default=None, alias="status"),  # noqa: B008
  limit: int = Query(default=20, ge=1, le=100),
  offset: int = Query(default=0, ge=0),
  manager: ArtifactLifecycleManager = Depends(get_lifecycle_manager),  # noqa: B008
) -> ArtifactListResponse:
  """List artifacts newest first."""
  items, total = await manager.list_artifacts(content_type=content_type, status=artifact_status, limit=limit, offset=offset)
  return ArtifactListResponse(items=[ArtifactResponse.from_record(item) for item in items], total=total, limit=limit, offset=offset)


@router.get("/{artifact_id}", response_model=ArtifactResponse)
async def get_artifact(artifact_id: str, manager: ArtifactLifecycleManager = Depends(get_lifecycle_manager)) -> ArtifactResponse:  # noqa: B008
  return ArtifactResponse.from_record(await manager.get(artifact_id))


@router.get("/{artifact_id}/progress", response_model=ProgressPollResponse)
async def poll_progress(artifact_id: str, manager: ArtifactLifecycleManager = Depends(get_lifecycle_manager)) -> ProgressPollResponse:  # noqa: B008
  """Return the latest progress event of the current or most recent run."""
  record = await manager.get(artifact_id)
  event = manager.latest_event(artifact_id)
  return ProgressPollResponse(artifact_id=artifact_id, status=record.status, event=ProgressEventResponse.from_event(event) if event else None)


@router.get("/{artifact_id}/events")
async def stream_progress(artifact_id: str, manager: ArtifactLifecycleManager = Depends(get_lifecycle_manager)) -> StreamingResponse:  # noqa: B008
  """Stream progress as Server-Sent Events until the run completes or fails."""
  record = await manager.get(artifact_id)
  return StreamingResponse(_event_stream(manager, record), media_type="text/event-stream", headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"})


@router.post("/{artifact_id}/publish", response_model=ArtifactResponse)
async def publish_artifact(artifact_id: str, manager: ArtifactLifecycleManager = Depends(get_lifecycle_manager)) -> ArtifactResponse:  # noqa: B008
  return ArtifactResponse.from_record(await manager.publish(artifact_id))


@router.post("/{artifact_id}/unpublish", response_model=ArtifactResponse)
async def unpublish_artifact(artifact_id: str, manager: ArtifactLifecycleManager = Depends(get_lifecycle_manager)) -> ArtifactResponse:  # noqa: B008
  return ArtifactResponse.from_record(await manager.unpublish(artifact_id))


@router.post("/{artifact_id}/regenerate", response_model=SubmitResponse, status_code=status.HTTP_202_ACCEPTED)
async def regenerate_artifact(
  artifact_id: str,
  payload: RegenerateRequest | None = None,
  manager: ArtifactLifecycleManager = Depends(get_lifecycle_manager),  # noqa: B008
) -> SubmitResponse:
  """Re-run the pipeline (full, primary only, or one optional step)."""
  payload = payload or RegenerateRequest()
  record = await manager.regenerate(artifact_id, scope=payload.scope, step=payload.step)
  return SubmitResponse(artifact_id=record.artifact_id, status=record.status)


@router.post("/{artifact_id}/duplicate", response_model=ArtifactResponse, status_code=status.HTTP_201_CREATED)
async def duplicate_artifact(artifact_id: str, manager: ArtifactLifecycleManager = Depends(get_lifecycle_manager)) -> ArtifactResponse:  # noqa: B008
  return ArtifactResponse.from_record(await manager.duplicate(artifact_id))


@router.delete("/{artifact_id}", response_model=DeleteResponse)
async def delete_artifact(artifact_id: str, manager: ArtifactLifecycleManager = Depends(get_lifecycle_manager)) -> DeleteResponse:  # noqa: B008
  """Delete an artifact; deleting twice reports NOT_FOUND as a normal outcome."""
  outcome = await manager.delete(artifact_id)
  if outcome is DeleteOutcome.NOT_FOUND:
    logger.info("Delete requested for missing artifact %s", artifact_id)
  return DeleteResponse(artifact_id=artifact_id, outcome=outcome)
