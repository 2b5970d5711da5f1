"""Artifact status state machine and the operations that drive it."""

from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import replace
from datetime import UTC, datetime
from enum import Enum

from orbit.core.errors import ConflictError, NotFoundError, PreconditionFailedError
from orbit.jobs.broker import ProgressBroker
from orbit.jobs.models import ArtifactRecord, ArtifactStatus, ContentType, ProgressEvent, StepName
from orbit.jobs.progress import PRIMARY_STEPS, ProgressSink, RegenerateScope, build_step_plan
from orbit.pipeline.orchestrator import PipelineOrchestrator, build_artifact_record
from orbit.schema.generation import GenerationRequest
from orbit.services.request_validation import GenerationRequestValidator
from orbit.storage.artifacts_repo import ArtifactsRepository, StatusTransition
from orbit.utils.ids import generate_artifact_id

logger = logging.getLogger(__name__)

_REGENERATE_FROM = frozenset({ArtifactStatus.READY, ArtifactStatus.PUBLISHED, ArtifactStatus.FAILED})
_DUPLICATE_FROM = frozenset({ArtifactStatus.READY, ArtifactStatus.PUBLISHED})


class DeleteOutcome(str, Enum):
  DELETED = "DELETED"
  NOT_FOUND = "NOT_FOUND"


def _not_found(artifact_id: str) -> NotFoundError:
  return NotFoundError(f"Artifact {artifact_id} not found.", details={"artifactId": artifact_id})


class ArtifactLifecycleManager:
  """Own status transitions and launch pipeline runs; at most one run per artifact id."""

  def __init__(self, *, repo: ArtifactsRepository, orchestrator: PipelineOrchestrator, validator: GenerationRequestValidator, broker: ProgressBroker | None = None) -> None:
    self._repo = repo
    self._orchestrator = orchestrator
    self._validator = validator
    self._broker = broker or ProgressBroker()
    self._runs: dict[str, asyncio.Task[ArtifactRecord]] = {}

  @property
  def broker(self) -> ProgressBroker:
    return self._broker

  async def submit(self, request: GenerationRequest, sink: ProgressSink | None = None) -> ArtifactRecord:
    """Validate, persist as DRAFT, claim GENERATING, and start the run in the background."""

    await self._validator.validate(request)
    record = build_artifact_record(request, status=ArtifactStatus.DRAFT)
    await self._repo.create_artifact(record)
    claimed = await self._claim(record.artifact_id, allowed_from={ArtifactStatus.DRAFT})
    logger.info("Submitted %s artifact %s", request.kind.value, record.artifact_id)
    self._start_run(claimed, request, sink, scope=RegenerateScope.FULL, step=None)
    return claimed

  async def generate(self, request: GenerationRequest, sink: ProgressSink | None = None) -> ArtifactRecord:
    """Submit and wait for the run to finish."""

    claimed = await self.submit(request, sink)
    return await self.wait_for_run(claimed.artifact_id)

  async def regenerate(self, artifact_id: str, *, scope: RegenerateScope = RegenerateScope.FULL, step: StepName | None = None, sink: ProgressSink | None = None) -> ArtifactRecord:
    """Re-run the full pipeline, only the primary step, or a single optional step."""

    record = await self._repo.get_artifact(artifact_id)
    if record is None:
      raise _not_found(artifact_id)
    self._ensure_regenerable(record)

    request = GenerationRequest.model_validate(record.request)
    plan = build_step_plan(request, scope=scope, step=step)
    if scope is RegenerateScope.STEP and PRIMARY_STEPS[request.kind].payload_key not in record.payload:
      raise PreconditionFailedError("Regenerate the primary content before regenerating a single step.", details={"artifactId": artifact_id})

    await self._validator.validate(request, plan=plan)
    claimed = await self._claim(artifact_id, allowed_from=_REGENERATE_FROM)
    logger.info("Regenerating artifact %s (scope=%s, step=%s)", artifact_id, scope.value, step.value if step else None)
    self._start_run(claimed, request, sink, scope=scope, step=step)
    return claimed

  async def publish(self, artifact_id: str) -> ArtifactRecord:
    return await self._transition(artifact_id, allowed_from={ArtifactStatus.READY}, to=ArtifactStatus.PUBLISHED, action="publish")

  async def unpublish(self, artifact_id: str) -> ArtifactRecord:
    return await self._transition(artifact_id, allowed_from={ArtifactStatus.PUBLISHED}, to=ArtifactStatus.READY, action="unpublish")

  async def delete(self, artifact_id: str) -> DeleteOutcome:
    """Remove an artifact; a second delete reports NOT_FOUND instead of raising."""

    deleted = await self._repo.delete_artifact(artifact_id)
    if not deleted:
      logger.info("Delete of %s found nothing", artifact_id)
      return DeleteOutcome.NOT_FOUND
    self._broker.forget(artifact_id)
    logger.info("Deleted artifact %s", artifact_id)
    return DeleteOutcome.DELETED

  async def duplicate(self, artifact_id: str) -> ArtifactRecord:
    """Copy a finished artifact into a new READY artifact."""

    record = await self._repo.get_artifact(artifact_id)
    if record is None:
      raise _not_found(artifact_id)
    if record.status == ArtifactStatus.GENERATING:
      raise ConflictError(f"Artifact {artifact_id} is still generating.", details={"artifactId": artifact_id})
    if record.status not in _DUPLICATE_FROM:
      raise PreconditionFailedError(f"Cannot duplicate an artifact in status {record.status.value}.", details={"artifactId": artifact_id, "status": record.status.value})

    now = datetime.now(UTC)
    copy = replace(record, artifact_id=generate_artifact_id(), title=f"{record.title} (Copy)", status=ArtifactStatus.READY, created_at=now, updated_at=now, run_id=None, last_error=None, logs=[])
    await self._repo.create_artifact(copy)
    logger.info("Duplicated artifact %s as %s", artifact_id, copy.artifact_id)
    return copy

  async def get(self, artifact_id: str) -> ArtifactRecord:
    record = await self._repo.get_artifact(artifact_id)
    if record is None:
      raise _not_found(artifact_id)
    return record

  async def list_artifacts(self, *, content_type: ContentType | None = None, status: ArtifactStatus | None = None, limit: int = 20, offset: int = 0) -> tuple[list[ArtifactRecord], int]:
    return await self._repo.list_artifacts(limit=limit, offset=offset, content_type=content_type, status=status)

  def latest_event(self, artifact_id: str) -> ProgressEvent | None:
    return self._broker.latest(artifact_id)

  async def wait_for_run(self, artifact_id: str) -> ArtifactRecord:
    """Wait for the in-flight run (if any) and return the current artifact."""

    task = self._runs.get(artifact_id)
    if task is not None:
      return await task
    return await self.get(artifact_id)

  def _ensure_regenerable(self, record: ArtifactRecord) -> None:
    if record.status == ArtifactStatus.GENERATING:
      raise ConflictError(f"Artifact {record.artifact_id} is already generating.", details={"artifactId": record.artifact_id})
    if record.status not in _REGENERATE_FROM:
      raise PreconditionFailedError(f"Cannot regenerate an artifact in status {record.status.value}.", details={"artifactId": record.artifact_id, "status": record.status.value})

  async def _claim(self, artifact_id: str, *, allowed_from: set[ArtifactStatus] | frozenset[ArtifactStatus]) -> ArtifactRecord:
    """Atomically move the artifact to GENERATING; this is the single-in-flight guard."""

    outcome = await self._repo.transition_status(artifact_id, allowed_from=allowed_from, to=ArtifactStatus.GENERATING)
    if outcome.applied and outcome.record is not None:
      self._broker.reset(artifact_id)
      return outcome.record
    if outcome.record is None:
      raise _not_found(artifact_id)
    self._ensure_regenerable(outcome.record)
    raise PreconditionFailedError(f"Cannot start a run from status {outcome.record.status.value}.", details={"artifactId": artifact_id})

  async def _transition(self, artifact_id: str, *, allowed_from: set[ArtifactStatus], to: ArtifactStatus, action: str) -> ArtifactRecord:
    outcome: StatusTransition = await self._repo.transition_status(artifact_id, allowed_from=allowed_from, to=to)
    if outcome.record is None:
      raise _not_found(artifact_id)
    if not outcome.applied:
      expected = " or ".join(sorted(status.value for status in allowed_from))
      raise PreconditionFailedError(f"Cannot {action} an artifact in status {outcome.record.status.value}; it must be {expected}.", details={"artifactId": artifact_id, "status": outcome.record.status.value})
    logger.info("Artifact %s: %s -> %s", artifact_id, action, to.value)
    return outcome.record

  def _start_run(self, claimed: ArtifactRecord, request: GenerationRequest, sink: ProgressSink | None, *, scope: RegenerateScope, step: StepName | None) -> None:
    broker_sink = self._fan_out(sink)
    task = asyncio.create_task(self._orchestrator.run(request, broker_sink, artifact_id=claimed.artifact_id, scope=scope, step=step), name=f"orbit-run-{claimed.artifact_id}")
    self._runs[claimed.artifact_id] = task
    task.add_done_callback(lambda finished, artifact_id=claimed.artifact_id: self._on_run_done(artifact_id, finished))

  def _fan_out(self, sink: ProgressSink | None) -> ProgressSink:
    """Deliver each event to the broker first, then to the caller's sink."""

    async def deliver(event: ProgressEvent) -> None:
      self._broker.publish(event)
      if sink is not None:
        result = sink(event)
        if inspect.isawaitable(result):
          await result

    return deliver

  def _on_run_done(self, artifact_id: str, task: asyncio.Task[ArtifactRecord]) -> None:
    if self._runs.get(artifact_id) is task:
      self._runs.pop(artifact_id, None)
    if task.cancelled():
      logger.warning("Run for artifact %s was cancelled", artifact_id)
      return
    exc = task.exception()
    if isinstance(exc, NotFoundError):
      # The closing event of a deleted artifact must not outlive it.
      self._broker.forget(artifact_id)
      logger.info("Run for deleted artifact %s stopped", artifact_id)
    elif exc is not None:
      logger.error("Run for artifact %s ended with an error", artifact_id, exc_info=exc)
