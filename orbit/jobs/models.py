"""Domain models for content artifacts and generation runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from orbit.schema.generation import GenerationKind


class ContentType(str, Enum):
  """What kind of content an artifact holds."""

  LESSON = "LESSON"
  QUIZ = "QUIZ"
  FLASHCARD_DECK = "FLASHCARD_DECK"
  AUDIO_UPDATE = "AUDIO_UPDATE"
  SUB_PLAN = "SUB_PLAN"


class ArtifactStatus(str, Enum):
  """Persisted lifecycle status of an artifact."""

  DRAFT = "DRAFT"
  GENERATING = "GENERATING"
  READY = "READY"
  PUBLISHED = "PUBLISHED"
  FAILED = "FAILED"


class StepName(str, Enum):
  """Generation steps; the value is also the name reported in completedSteps."""

  LESSON = "lesson"
  QUIZ = "quiz"
  FLASHCARDS = "flashcards"
  INFOGRAPHIC = "infographic"
  SCRIPT = "script"
  AUDIO = "audio"
  ACTIVITIES = "activities"

  @property
  def payload_key(self) -> str:
    """Key of this step's result inside the artifact payload."""
    if self is StepName.AUDIO:
      return "audioUrl"
    return self.value


# Canonical order used whenever completed steps from different runs are merged.
STEP_ORDER: tuple[StepName, ...] = (StepName.LESSON, StepName.SCRIPT, StepName.QUIZ, StepName.FLASHCARDS, StepName.INFOGRAPHIC, StepName.ACTIVITIES, StepName.AUDIO)


class RunPhase(str, Enum):
  """Internal progression of one run, reported as ProgressEvent.step."""

  STARTING = "starting"
  GENERATING_LESSON = "generating_lesson"
  GENERATING_SCRIPT = "generating_script"
  GENERATING_QUIZ = "generating_quiz"
  GENERATING_FLASHCARDS = "generating_flashcards"
  GENERATING_INFOGRAPHIC = "generating_infographic"
  GENERATING_ACTIVITIES = "generating_activities"
  GENERATING_AUDIO = "generating_audio"
  COMPLETED = "completed"
  FAILED = "failed"

  @classmethod
  def for_step(cls, step: StepName) -> RunPhase:
    return cls(f"generating_{step.value}")

  @property
  def is_terminal(self) -> bool:
    return self in (RunPhase.COMPLETED, RunPhase.FAILED)


CONTENT_TYPE_BY_KIND: dict[GenerationKind, ContentType] = {
  GenerationKind.LESSON_GUIDE: ContentType.LESSON,
  GenerationKind.FULL_LESSON: ContentType.LESSON,
  GenerationKind.AUDIO_SCRIPT: ContentType.AUDIO_UPDATE,
  GenerationKind.SUB_PLAN: ContentType.SUB_PLAN,
}


@dataclass(frozen=True)
class ProgressEvent:
  """One observation of a run's progression."""

  artifact_id: str
  run_id: str
  step: RunPhase
  message: str
  percent: int
  completed_steps: tuple[StepName, ...] = ()

  @property
  def is_terminal(self) -> bool:
    return self.step.is_terminal

  def to_dict(self) -> dict[str, Any]:
    """Serialize with the camelCase keys used on the wire."""
    return {
      "artifactId": self.artifact_id,
      "runId": self.run_id,
      "step": self.step.value,
      "message": self.message,
      "percent": self.percent,
      "completedSteps": [step.value for step in self.completed_steps],
    }


@dataclass
class ArtifactRecord:
  """Represents one persisted content artifact."""

  artifact_id: str
  title: str
  content_type: ContentType
  kind: GenerationKind
  status: ArtifactStatus
  created_at: datetime
  updated_at: datetime
  request: dict[str, Any] = field(default_factory=dict)
  payload: dict[str, Any] = field(default_factory=dict)
  completed_steps: list[StepName] = field(default_factory=list)
  warnings: list[str] = field(default_factory=list)
  logs: list[str] = field(default_factory=list)
  last_error: dict[str, Any] | None = None
  run_id: str | None = None
