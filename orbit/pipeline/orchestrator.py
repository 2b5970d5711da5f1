"""Run the primary and optional generation steps for one artifact."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import replace
from datetime import UTC, datetime
from typing import Any

from orbit.core.errors import NotFoundError, OptionalStepError, PreconditionFailedError, PrimaryStepError
from orbit.jobs.models import CONTENT_TYPE_BY_KIND, STEP_ORDER, ArtifactRecord, ArtifactStatus, StepName
from orbit.jobs.progress import PRIMARY_STEPS, ProgressSink, RegenerateScope, RunProgressTracker, StepPlan, build_step_plan
from orbit.schema.generation import GenerationKind, GenerationRequest
from orbit.services.generation_client import GenerationClient, GenerationServiceError, StepContext
from orbit.services.quotas import QuotaGateway
from orbit.storage.artifacts_repo import ArtifactsRepository
from orbit.utils.ids import generate_artifact_id, generate_run_id

logger = logging.getLogger(__name__)

DEFAULT_FLASHCARD_COUNT = 15
MIN_INFOGRAPHIC_POINTS = 3
MAX_INFOGRAPHIC_POINTS = 8

_STEP_LABELS: dict[StepName, str] = {
  StepName.LESSON: "lesson",
  StepName.SCRIPT: "script",
  StepName.QUIZ: "quiz questions",
  StepName.FLASHCARDS: "flashcards",
  StepName.INFOGRAPHIC: "infographic",
  StepName.ACTIVITIES: "activities",
  StepName.AUDIO: "audio",
}

_LESSON_TYPES: dict[GenerationKind, str] = {
  GenerationKind.LESSON_GUIDE: "guide",
  GenerationKind.FULL_LESSON: "full",
  GenerationKind.SUB_PLAN: "sub_plan",
}


def _utc_now() -> datetime:
  return datetime.now(UTC)


def build_artifact_record(request: GenerationRequest, *, status: ArtifactStatus = ArtifactStatus.DRAFT, artifact_id: str | None = None) -> ArtifactRecord:
  """Create the initial record for a submitted request."""
  now = _utc_now()
  return ArtifactRecord(
    artifact_id=artifact_id or generate_artifact_id(),
    title=request.effective_title,
    content_type=CONTENT_TYPE_BY_KIND[request.kind],
    kind=request.kind,
    status=status,
    created_at=now,
    updated_at=now,
    request=request.model_dump(mode="json", by_alias=True),
  )


def merge_completed_steps(previous: list[StepName], current: list[StepName]) -> list[StepName]:
  """Union of two step lists in canonical step order."""
  merged = set(previous) | set(current)
  return [step for step in STEP_ORDER if step in merged]


def infographic_key_points(lesson: Mapping[str, Any]) -> list[str]:
  """Pick headline points for an infographic from a lesson body."""
  points: list[str] = []
  for objective in list(lesson.get("objectives") or [])[:3]:
    if isinstance(objective, str) and objective.strip():
      points.append(objective.strip())
  for section in list(lesson.get("sections") or [])[:4]:
    if isinstance(section, Mapping) and section.get("title"):
      points.append(str(section["title"]))
  for entry in list(lesson.get("vocabulary") or [])[:3]:
    if isinstance(entry, Mapping) and entry.get("term"):
      definition = entry.get("definition")
      points.append(f"{entry['term']}: {definition}" if definition else str(entry["term"]))
  return points[:MAX_INFOGRAPHIC_POINTS]


def _step_value(step: StepName, result: dict[str, Any]) -> Any:
  """Extract the payload value stored for a step's result."""
  if step is StepName.AUDIO:
    audio_url = result.get("audioUrl") or result.get("url")
    if not isinstance(audio_url, str) or not audio_url:
      raise GenerationServiceError("Audio step returned no audioUrl.")
    return audio_url
  if not result:
    raise GenerationServiceError(f"{step.value} step returned an empty result.")
  return result


class PipelineOrchestrator:
  """Execute one generation run: primary step, then toggled optional steps, then billing."""

  def __init__(self, *, repo: ArtifactsRepository, generation_client: GenerationClient, quota_gateway: QuotaGateway, step_costs: Mapping[str, int], flashcard_count: int = DEFAULT_FLASHCARD_COUNT) -> None:
    self._repo = repo
    self._client = generation_client
    self._quota_gateway = quota_gateway
    self._step_costs = dict(step_costs)
    self._flashcard_count = flashcard_count

  async def run(self, request: GenerationRequest, sink: ProgressSink | None = None, *, artifact_id: str | None = None, scope: RegenerateScope = RegenerateScope.FULL, step: StepName | None = None) -> ArtifactRecord:
    """Run the pipeline and return the finalized artifact.

    Without ``artifact_id`` a new GENERATING artifact is created. With one, the artifact must
    already be GENERATING (claimed by the lifecycle manager). Primary-step failure does not raise;
    it returns the FAILED artifact with ``last_error`` set. Any other error inside the run ends the
    same way, with a ``RUN_ABORTED`` error naming the stage it broke in.
    """

    plan = build_step_plan(request, scope=scope, step=step)
    if artifact_id is None:
      record = build_artifact_record(request, status=ArtifactStatus.GENERATING)
      await self._repo.create_artifact(record)
    else:
      existing = await self._repo.get_artifact(artifact_id)
      if existing is None:
        raise NotFoundError(f"Artifact {artifact_id} not found.")
      if existing.status != ArtifactStatus.GENERATING:
        raise PreconditionFailedError(f"Artifact {artifact_id} must be GENERATING before a run starts (is {existing.status.value}).")
      record = existing

    run_id = generate_run_id()
    tracker = RunProgressTracker(artifact_id=record.artifact_id, run_id=run_id, plan=plan, sink=sink)
    logger.info("Run %s started for artifact %s (%s, scope=%s, steps=%s)", run_id, record.artifact_id, request.kind.value, scope.value, [item.value for item in plan.steps])

    if scope is RegenerateScope.FULL:
      record = replace(record, payload={}, completed_steps=[])
    record = replace(record, run_id=run_id, last_error=None, warnings=[], request=request.model_dump(mode="json", by_alias=True))

    try:
      await tracker.start(f"Starting {request.kind.value.lower().replace('_', ' ')} generation")
      record = await self._persist(record, tracker)
      return await self._execute(record, request, plan, tracker)
    except NotFoundError:
      logger.warning("Artifact %s was deleted during run %s", record.artifact_id, run_id)
      await tracker.fail("Artifact was deleted during generation.")
      raise
    except Exception as exc:  # noqa: BLE001
      return await self._abort_run(record.artifact_id, plan, tracker, exc)

  async def _execute(self, record: ArtifactRecord, request: GenerationRequest, plan: StepPlan, tracker: RunProgressTracker) -> ArtifactRecord:
    payload = dict(record.payload)
    primary_key = PRIMARY_STEPS[request.kind].payload_key
    primary_result = payload.get(primary_key)

    if plan.primary is not None:
      references = await self._load_references(request, tracker)
      await tracker.begin_step(plan.primary, f"Generating {_STEP_LABELS[plan.primary]}...")
      try:
        result = await self._client.generate(plan.primary, self._context(record, request, plan.primary, primary=None, references=references))
        primary_result = _step_value(plan.primary, result)
      except Exception as exc:  # noqa: BLE001
        return await self._fail_primary(record, plan, plan.primary, tracker, exc)

      payload[primary_key] = primary_result
      tracker.complete_step(plan.primary, f"{_STEP_LABELS[plan.primary].capitalize()} generated")
      record = await self._persist(replace(record, payload=dict(payload), completed_steps=merge_completed_steps(record.completed_steps, [plan.primary])), tracker)

    for optional_step in plan.optional:
      await tracker.begin_step(optional_step, f"Generating {_STEP_LABELS[optional_step]}...")
      try:
        result = await self._client.generate(optional_step, self._context(record, request, optional_step, primary=primary_result))
        value = _step_value(optional_step, result)
      except Exception as exc:  # noqa: BLE001
        error = exc if isinstance(exc, OptionalStepError) else OptionalStepError(f"{_STEP_LABELS[optional_step].capitalize()} generation failed: {exc}", details={"step": optional_step.value})
        logger.warning("Optional step %s failed for artifact %s: %s", optional_step.value, record.artifact_id, exc)
        tracker.warn(error.message)
        continue

      payload[optional_step.payload_key] = value
      tracker.complete_step(optional_step, f"{_STEP_LABELS[optional_step].capitalize()} generated")
      record = await self._persist(replace(record, payload=dict(payload), completed_steps=merge_completed_steps(record.completed_steps, [optional_step])), tracker)

    actual_cost = plan.cost(self._step_costs, tracker.completed_steps)
    message = "Generation complete" if not tracker.warnings else f"Generation complete with {len(tracker.warnings)} warning(s)"
    tracker.add_logs(message)
    record = await self._persist(replace(record, status=ArtifactStatus.READY), tracker)
    try:
      await self._quota_gateway.report_usage(actual_cost, metadata={"artifactId": record.artifact_id, "runId": record.run_id, "steps": [item.value for item in tracker.completed_steps]})
    except Exception:  # noqa: BLE001
      # Billing failures leave the artifact READY.
      logger.exception("Usage report of %s credits failed for artifact %s run %s", actual_cost, record.artifact_id, record.run_id)
    await tracker.finish(message)
    logger.info("Run %s completed for artifact %s (steps=%s, cost=%s)", record.run_id, record.artifact_id, [item.value for item in tracker.completed_steps], actual_cost)
    return record

  async def _fail_primary(self, record: ArtifactRecord, plan: StepPlan, step: StepName, tracker: RunProgressTracker, exc: Exception) -> ArtifactRecord:
    """Abort the run: FAILED status, last_error set, no optional steps."""

    logger.error("Primary step %s failed for artifact %s", step.value, record.artifact_id, exc_info=exc)
    error = exc if isinstance(exc, PrimaryStepError) else PrimaryStepError(f"{_STEP_LABELS[step].capitalize()} generation failed: {exc}", details={"step": step.value})
    tracker.add_logs(error.message)
    failed = replace(record, status=ArtifactStatus.FAILED, last_error=error.to_dict())
    if plan.scope is RegenerateScope.FULL:
      failed = replace(failed, payload={}, completed_steps=[])
    failed = await self._persist(failed, tracker)
    await tracker.fail(error.message)
    return failed

  async def _abort_run(self, artifact_id: str, plan: StepPlan, tracker: RunProgressTracker, exc: Exception) -> ArtifactRecord:
    """Close a run that broke outside a generation step.

    The artifact is re-read so the FAILED write keeps whatever the run persisted last. Observers
    always get the terminal ``failed`` event, even when the failure itself cannot be stored.
    """

    stage = tracker.phase.value
    logger.error("Run %s for artifact %s aborted during %s", tracker.run_id, artifact_id, stage, exc_info=exc)
    error = PrimaryStepError(f"Generation aborted during {stage}: {exc}", code="RUN_ABORTED", details={"stage": stage})
    tracker.add_logs(error.message)
    try:
      current = await self._repo.get_artifact(artifact_id)
      if current is None:
        saved = None
      else:
        failed = replace(current, status=ArtifactStatus.FAILED, last_error=error.to_dict(), logs=tracker.logs, warnings=tracker.warnings, updated_at=_utc_now())
        if plan.scope is RegenerateScope.FULL:
          failed = replace(failed, payload={}, completed_steps=[])
        saved = await self._repo.save_artifact(failed, expected_status=ArtifactStatus.GENERATING)
    except Exception:
      logger.exception("Could not record the failure of run %s for artifact %s", tracker.run_id, artifact_id)
      await tracker.fail(error.message)
      raise

    await tracker.fail(error.message)
    if current is None:
      raise NotFoundError(f"Artifact {artifact_id} not found.") from exc
    # Another writer moved the artifact on; report what is stored.
    return saved or current

  async def _persist(self, record: ArtifactRecord, tracker: RunProgressTracker) -> ArtifactRecord:
    """Write the record while the run still owns it."""

    updated = replace(record, logs=tracker.logs, warnings=tracker.warnings, updated_at=_utc_now())
    saved = await self._repo.save_artifact(updated, expected_status=ArtifactStatus.GENERATING)
    if saved is None:
      raise NotFoundError(f"Artifact {record.artifact_id} not found.")
    return saved

  async def _load_references(self, request: GenerationRequest, tracker: RunProgressTracker) -> list[dict[str, Any]]:
    """Fetch referenced lesson artifacts to hand to the primary step."""

    if not request.lesson_ids:
      return []
    found = {record.artifact_id: record for record in await self._repo.get_artifacts(list(request.lesson_ids))}
    references: list[dict[str, Any]] = []
    for lesson_id in request.lesson_ids:
      lesson = found.get(lesson_id)
      if lesson is None or "lesson" not in lesson.payload:
        tracker.warn(f"Referenced lesson {lesson_id} was not found and was skipped.")
        continue
      references.append({"id": lesson.artifact_id, "title": lesson.title, "lesson": lesson.payload["lesson"]})
    return references

  def _context(self, record: ArtifactRecord, request: GenerationRequest, step: StepName, *, primary: Any, references: list[dict[str, Any]] | None = None) -> StepContext:
    return StepContext(
      artifact_id=record.artifact_id,
      run_id=record.run_id or "",
      kind=request.kind,
      request=request.model_dump(mode="json", by_alias=True, exclude={"source"}),
      options=self._step_options(step, request, primary),
      source_text=request.source.extracted_text if request.source is not None else None,
      primary=primary if isinstance(primary, dict) else None,
      references=list(references or []),
    )

  def _step_options(self, step: StepName, request: GenerationRequest, primary: Any) -> dict[str, Any]:
    """Per-step parameters sent alongside the shared context."""

    if step is StepName.LESSON:
      options: dict[str, Any] = {"lessonType": _LESSON_TYPES[request.kind], "durationMinutes": request.duration_minutes, "language": request.language}
      if request.kind is GenerationKind.SUB_PLAN:
        options["scheduledDate"] = request.scheduled_date.isoformat() if request.scheduled_date else None
      else:
        # Activities are part of the lesson body for lesson kinds.
        options["includeActivities"] = request.include_activities
      return options
    if step is StepName.SCRIPT or step is StepName.AUDIO:
      return {"language": request.language, "voiceId": request.voice_id}
    if step is StepName.FLASHCARDS:
      return {"cardCount": self._flashcard_count, "includeHints": True}
    if step is StepName.INFOGRAPHIC:
      key_points = infographic_key_points(primary) if isinstance(primary, Mapping) else []
      if len(key_points) < MIN_INFOGRAPHIC_POINTS:
        raise OptionalStepError("Infographic skipped: the lesson has too few key points.", details={"step": step.value, "keyPoints": len(key_points)})
      return {"keyPoints": key_points, "style": "colorful"}
    return {}
