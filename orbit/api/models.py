from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from orbit.jobs.models import ArtifactRecord, ArtifactStatus, ContentType, ProgressEvent, RunPhase, StepName
from orbit.jobs.progress import RegenerateScope
from orbit.schema.generation import GenerationKind
from orbit.services.lifecycle import DeleteOutcome


class ArtifactResponse(BaseModel):
  """Wire representation of a content artifact."""

  id: str
  title: str
  content_type: ContentType = Field(alias="contentType")
  kind: GenerationKind
  status: ArtifactStatus
  payload: dict[str, Any]
  completed_steps: list[StepName] = Field(alias="completedSteps")
  warnings: list[str]
  logs: list[str]
  last_error: dict[str, Any] | None = Field(default=None, alias="lastError")
  request: dict[str, Any]
  run_id: str | None = Field(default=None, alias="runId")
  created_at: datetime = Field(alias="createdAt")
  updated_at: datetime = Field(alias="updatedAt")
  model_config = ConfigDict(populate_by_name=True)

  @classmethod
  def from_record(cls, record: ArtifactRecord) -> ArtifactResponse:
    return cls(
      id=record.artifact_id,
      title=record.title,
      content_type=record.content_type,
      kind=record.kind,
      status=record.status,
      payload=record.payload,
      completed_steps=list(record.completed_steps),
      warnings=list(record.warnings),
      logs=list(record.logs),
      last_error=record.last_error,
      request=record.request,
      run_id=record.run_id,
      created_at=record.created_at,
      updated_at=record.updated_at,
    )


class ArtifactListResponse(BaseModel):
  items: list[ArtifactResponse]
  total: int
  limit: int
  offset: int


class SubmitResponse(BaseModel):
  """Response payload for a submitted or regenerated artifact."""

  artifact_id: str = Field(alias="artifactId")
  status: ArtifactStatus
  model_config = ConfigDict(populate_by_name=True)


class RegenerateRequest(BaseModel):
  """Request payload for regenerating an artifact."""

  scope: RegenerateScope = RegenerateScope.FULL
  step: StepName | None = None
  model_config = ConfigDict(extra="forbid")

  @model_validator(mode="after")
  def _step_matches_scope(self) -> RegenerateRequest:
    if self.scope is RegenerateScope.STEP and self.step is None:
      raise ValueError("step is required when scope is 'step'")
    if self.scope is not RegenerateScope.STEP and self.step is not None:
      raise ValueError("step is only allowed when scope is 'step'")
    return self


class DeleteResponse(BaseModel):
  artifact_id: str = Field(alias="artifactId")
  outcome: DeleteOutcome
  model_config = ConfigDict(populate_by_name=True)


class ProgressEventResponse(BaseModel):
  artifact_id: str = Field(alias="artifactId")
  run_id: str = Field(alias="runId")
  step: RunPhase
  message: str
  percent: int
  completed_steps: list[StepName] = Field(alias="completedSteps")
  model_config = ConfigDict(populate_by_name=True)

  @classmethod
  def from_event(cls, event: ProgressEvent) -> ProgressEventResponse:
    return cls(artifact_id=event.artifact_id, run_id=event.run_id, step=event.step, message=event.message, percent=event.percent, completed_steps=list(event.completed_steps))


class ProgressPollResponse(BaseModel):
  """Latest progress of the artifact's current or most recent run."""

  artifact_id: str = Field(alias="artifactId")
  status: ArtifactStatus
  event: ProgressEventResponse | None = None
  model_config = ConfigDict(populate_by_name=True)
