"""Typed error taxonomy shared by ingestion, generation, and lifecycle operations."""

from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
  """Top-level failure classes surfaced to callers."""

  VALIDATION = "VALIDATION"
  INGESTION = "INGESTION"
  QUOTA = "QUOTA"
  PRIMARY_STEP_FAILURE = "PRIMARY_STEP_FAILURE"
  OPTIONAL_STEP_FAILURE = "OPTIONAL_STEP_FAILURE"
  PRECONDITION = "PRECONDITION"
  CONFLICT = "CONFLICT"
  NOT_FOUND = "NOT_FOUND"


class OrbitError(Exception):
  """Base class for every failure the engine reports to a caller."""

  kind: ErrorKind = ErrorKind.VALIDATION
  default_code: str = "INVALID_FIELD"

  def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None) -> None:
    super().__init__(message)
    self.message = message
    self.code = code or self.default_code
    self.details = details or {}

  def to_dict(self) -> dict[str, Any]:
    """Return a JSON-safe description of the error."""
    payload: dict[str, Any] = {"error": self.code, "kind": self.kind.value, "message": self.message}
    if self.details:
      payload["details"] = self.details
    return payload


class RequestValidationFailure(OrbitError):
  """A generation request is malformed; rejected before any remote call."""

  kind = ErrorKind.VALIDATION
  default_code = "INVALID_FIELD"


class IngestionError(OrbitError):
  """An uploaded file was rejected or its text could not be extracted."""

  kind = ErrorKind.INGESTION
  default_code = "EXTRACTION_FAILED"


class QuotaExceededError(OrbitError):
  """The caller cannot afford the requested generation."""

  kind = ErrorKind.QUOTA
  default_code = "INSUFFICIENT_QUOTA"


class PrimaryStepError(OrbitError):
  """The mandatory step of a run failed; the run is aborted."""

  kind = ErrorKind.PRIMARY_STEP_FAILURE
  default_code = "PRIMARY_STEP_FAILED"


class OptionalStepError(OrbitError):
  """An optional step failed; recorded as a warning and never raised out of a run."""

  kind = ErrorKind.OPTIONAL_STEP_FAILURE
  default_code = "OPTIONAL_STEP_FAILED"


class PreconditionFailedError(OrbitError):
  """A lifecycle transition is illegal from the artifact's current status."""

  kind = ErrorKind.PRECONDITION
  default_code = "PRECONDITION_FAILED"


class ConflictError(OrbitError):
  """A run is already in flight for the artifact."""

  kind = ErrorKind.CONFLICT
  default_code = "ALREADY_IN_PROGRESS"


class NotFoundError(OrbitError):
  """The artifact does not exist or was deleted."""

  kind = ErrorKind.NOT_FOUND
  default_code = "NOT_FOUND"
