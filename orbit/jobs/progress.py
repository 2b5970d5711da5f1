"""Run planning and progress tracking utilities."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from enum import Enum

from orbit.core.errors import RequestValidationFailure
from orbit.jobs.models import ProgressEvent, RunPhase, StepName
from orbit.schema.generation import GenerationKind, GenerationRequest

MAX_TRACKED_LOGS = 100

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressEvent], Awaitable[None] | None]


class RegenerateScope(str, Enum):
  """How much of the pipeline a run re-executes."""

  FULL = "full"
  PRIMARY = "primary"
  STEP = "step"


PRIMARY_STEPS: dict[GenerationKind, StepName] = {
  GenerationKind.LESSON_GUIDE: StepName.LESSON,
  GenerationKind.FULL_LESSON: StepName.LESSON,
  GenerationKind.AUDIO_SCRIPT: StepName.SCRIPT,
  GenerationKind.SUB_PLAN: StepName.LESSON,
}

# Optional steps per kind, in execution order.
OPTIONAL_STEPS: dict[GenerationKind, tuple[StepName, ...]] = {
  GenerationKind.LESSON_GUIDE: (StepName.QUIZ, StepName.FLASHCARDS, StepName.INFOGRAPHIC),
  GenerationKind.FULL_LESSON: (StepName.QUIZ, StepName.FLASHCARDS, StepName.INFOGRAPHIC),
  GenerationKind.AUDIO_SCRIPT: (StepName.AUDIO,),
  GenerationKind.SUB_PLAN: (StepName.ACTIVITIES,),
}

_TOGGLES: dict[StepName, str] = {
  StepName.QUIZ: "include_quiz",
  StepName.FLASHCARDS: "include_flashcards",
  StepName.INFOGRAPHIC: "include_infographic",
  StepName.ACTIVITIES: "include_activities",
  StepName.AUDIO: "include_audio",
}


def cost_key(kind: GenerationKind, step: StepName) -> str:
  """Return the price-list key for a step; primary steps are priced per kind."""
  if step is StepName.LESSON:
    if kind is GenerationKind.LESSON_GUIDE:
      return "lesson.guide"
    if kind is GenerationKind.FULL_LESSON:
      return "lesson.full"
    return "sub_plan"
  return step.value


@dataclass(frozen=True)
class StepPlan:
  """Ordered steps scheduled for one run."""

  kind: GenerationKind
  scope: RegenerateScope
  primary: StepName | None
  optional: tuple[StepName, ...]

  @property
  def steps(self) -> tuple[StepName, ...]:
    if self.primary is None:
      return self.optional
    return (self.primary, *self.optional)

  @property
  def total_units(self) -> int:
    """Generation steps plus the completion slot."""

    return len(self.steps) + 1

  def percent_for(self, position: int) -> int:
    """Percent reported when the step at ``position`` (1-based) begins."""

    return min(round(position * 100 / self.total_units), 100)

  def cost(self, step_costs: Mapping[str, int], steps: Iterable[StepName] | None = None) -> int:
    """Sum the credit cost of the given steps (defaults to every scheduled step)."""

    selected = self.steps if steps is None else tuple(steps)
    return sum(int(step_costs.get(cost_key(self.kind, step), 0)) for step in selected)


def build_step_plan(request: GenerationRequest, *, scope: RegenerateScope = RegenerateScope.FULL, step: StepName | None = None) -> StepPlan:
  """Derive the scheduled steps for a run from the request toggles and scope."""

  primary = PRIMARY_STEPS[request.kind]
  if scope is RegenerateScope.PRIMARY:
    return StepPlan(kind=request.kind, scope=scope, primary=primary, optional=())

  if scope is RegenerateScope.STEP:
    if step is None or step not in OPTIONAL_STEPS[request.kind]:
      allowed = ", ".join(item.value for item in OPTIONAL_STEPS[request.kind])
      raise RequestValidationFailure(f"Step must be one of: {allowed}.", code="INVALID_FIELD", details={"field": "step"})
    return StepPlan(kind=request.kind, scope=scope, primary=None, optional=(step,))

  optional = tuple(item for item in OPTIONAL_STEPS[request.kind] if getattr(request, _TOGGLES[item]))
  return StepPlan(kind=request.kind, scope=scope, primary=primary, optional=optional)


class RunProgressTracker:
  """Track run progress, completed steps, warnings, and log updates."""

  def __init__(self, *, artifact_id: str, run_id: str, plan: StepPlan, sink: ProgressSink | None = None) -> None:
    self._artifact_id = artifact_id
    self._run_id = run_id
    self._plan = plan
    self._sink = sink
    self._position = 0
    self._percent = 0
    self._phase = RunPhase.STARTING
    self._completed_steps: list[StepName] = []
    self._warnings: list[str] = []
    self._logs: list[str] = []

  def add_logs(self, *messages: str) -> None:
    """Append log lines while preserving the rolling window."""

    self._logs.extend(messages)
    if len(self._logs) > MAX_TRACKED_LOGS:
      self._logs = self._logs[-MAX_TRACKED_LOGS:]

  def warn(self, message: str) -> None:
    self._warnings.append(message)
    self.add_logs(f"WARNING: {message}")

  async def start(self, message: str) -> None:
    self.add_logs(message)
    await self._emit(RunPhase.STARTING, message, 0)

  async def begin_step(self, step: StepName, message: str) -> None:
    """Announce a generation step and advance percent to its slot."""

    self.add_logs(message)
    self._position += 1
    await self._emit(RunPhase.for_step(step), message, self._plan.percent_for(self._position))

  def complete_step(self, step: StepName, message: str | None = None) -> None:
    """Record a finished step; observers see it on the next event."""

    if message:
      self.add_logs(message)
    if step not in self._completed_steps:
      self._completed_steps.append(step)

  async def finish(self, message: str) -> None:
    """Emit the terminal event; callers log and persist before announcing it."""

    await self._emit(RunPhase.COMPLETED, message, 100)

  async def fail(self, message: str) -> None:
    await self._emit(RunPhase.FAILED, message, 100)

  async def _emit(self, phase: RunPhase, message: str, percent: int) -> None:
    # Clamp so a sink never observes percent moving backwards within a run.
    self._percent = max(self._percent, percent)
    self._phase = phase
    event = ProgressEvent(artifact_id=self._artifact_id, run_id=self._run_id, step=phase, message=message, percent=self._percent, completed_steps=tuple(self._completed_steps))
    if self._sink is None:
      return
    try:
      result = self._sink(event)
      if inspect.isawaitable(result):
        await result
    except Exception:
      # Observers may disconnect mid-run; the run itself keeps going.
      logger.exception("Progress sink failed for artifact %s at %s", self._artifact_id, phase.value)

  @property
  def run_id(self) -> str:
    return self._run_id

  @property
  def phase(self) -> RunPhase:
    """Phase of the last emitted event."""

    return self._phase

  @property
  def percent(self) -> int:
    return self._percent

  @property
  def completed_steps(self) -> list[StepName]:
    return list(self._completed_steps)

  @property
  def warnings(self) -> list[str]:
    return list(self._warnings)

  @property
  def logs(self) -> list[str]:
    """Return a copy of the tracked logs."""

    return list(self._logs)
