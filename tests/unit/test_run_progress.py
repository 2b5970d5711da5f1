from __future__ import annotations

import pytest

from orbit.config import DEFAULT_STEP_COSTS
from orbit.core.errors import RequestValidationFailure
from orbit.jobs.models import ProgressEvent, RunPhase, StepName
from orbit.jobs.progress import MAX_TRACKED_LOGS, RegenerateScope, RunProgressTracker, build_step_plan
from orbit.schema.generation import GenerationKind
from tests.fakes import make_request


def test_full_plan_follows_toggles_in_execution_order() -> None:
  plan = build_step_plan(make_request(include_flashcards=True, include_quiz=True))
  assert plan.steps == (StepName.LESSON, StepName.QUIZ, StepName.FLASHCARDS)
  assert [plan.percent_for(position) for position in (1, 2, 3)] == [25, 50, 75]
  assert plan.cost(DEFAULT_STEP_COSTS) == 15000


def test_audio_script_plan_has_script_then_audio() -> None:
  plan = build_step_plan(make_request(GenerationKind.AUDIO_SCRIPT, include_audio=True))
  assert plan.primary is StepName.SCRIPT
  assert plan.optional == (StepName.AUDIO,)


def test_activities_toggle_is_a_step_only_for_sub_plans() -> None:
  assert build_step_plan(make_request(include_activities=True)).optional == ()
  assert build_step_plan(make_request(GenerationKind.SUB_PLAN, include_activities=True)).optional == (StepName.ACTIVITIES,)


def test_scoped_plans() -> None:
  request = make_request(include_quiz=True)
  assert build_step_plan(request, scope=RegenerateScope.PRIMARY).steps == (StepName.LESSON,)
  assert build_step_plan(request, scope=RegenerateScope.STEP, step=StepName.INFOGRAPHIC).steps == (StepName.INFOGRAPHIC,)

  with pytest.raises(RequestValidationFailure) as excinfo:
    build_step_plan(request, scope=RegenerateScope.STEP, step=StepName.AUDIO)
  assert excinfo.value.code == "INVALID_FIELD"


@pytest.mark.anyio
async def test_tracker_reports_steps_and_completion() -> None:
  events: list[ProgressEvent] = []
  plan = build_step_plan(make_request(include_quiz=True))
  tracker = RunProgressTracker(artifact_id="art-1", run_id="run-1", plan=plan, sink=events.append)

  await tracker.start("Starting")
  await tracker.begin_step(StepName.LESSON, "Generating lesson...")
  tracker.complete_step(StepName.LESSON, "Lesson generated")
  await tracker.begin_step(StepName.QUIZ, "Generating quiz...")
  tracker.complete_step(StepName.QUIZ)
  await tracker.finish("Generation complete")

  assert [event.step for event in events] == [RunPhase.STARTING, RunPhase.GENERATING_LESSON, RunPhase.GENERATING_QUIZ, RunPhase.COMPLETED]
  assert [event.percent for event in events] == [0, 33, 67, 100]
  assert events[2].completed_steps == (StepName.LESSON,)
  assert events[-1].completed_steps == (StepName.LESSON, StepName.QUIZ)
  assert events[-1].is_terminal
  assert tracker.logs == ["Starting", "Generating lesson...", "Lesson generated", "Generating quiz..."]


@pytest.mark.anyio
async def test_failing_sink_does_not_stop_the_run() -> None:
  def broken_sink(event: ProgressEvent) -> None:
    raise ConnectionResetError("client went away")

  tracker = RunProgressTracker(artifact_id="art-1", run_id="run-1", plan=build_step_plan(make_request()), sink=broken_sink)
  await tracker.start("Starting")
  await tracker.begin_step(StepName.LESSON, "Generating lesson...")
  assert tracker.percent == 50


@pytest.mark.anyio
async def test_async_sink_is_awaited() -> None:
  received: list[str] = []

  async def sink(event: ProgressEvent) -> None:
    received.append(event.step.value)

  tracker = RunProgressTracker(artifact_id="art-1", run_id="run-1", plan=build_step_plan(make_request()), sink=sink)
  await tracker.start("Starting")
  await tracker.fail("Lesson generation failed")
  assert received == ["starting", "failed"]


def test_logs_keep_a_rolling_window() -> None:
  tracker = RunProgressTracker(artifact_id="art-1", run_id="run-1", plan=build_step_plan(make_request()))
  tracker.add_logs(*(f"line {index}" for index in range(MAX_TRACKED_LOGS + 50)))
  tracker.warn("Quiz generation failed")
  assert len(tracker.logs) == MAX_TRACKED_LOGS
  assert tracker.logs[-1] == "WARNING: Quiz generation failed"
  assert tracker.warnings == ["Quiz generation failed"]


def test_event_serializes_with_wire_keys() -> None:
  event = ProgressEvent(artifact_id="art-1", run_id="run-1", step=RunPhase.GENERATING_QUIZ, message="Generating quiz questions...", percent=50, completed_steps=(StepName.LESSON,))
  assert event.to_dict() == {"artifactId": "art-1", "runId": "run-1", "step": "generating_quiz", "message": "Generating quiz questions...", "percent": 50, "completedSteps": ["lesson"]}
