"""Storage interfaces for content artifacts."""

from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass
from typing import Protocol

from orbit.jobs.models import ArtifactRecord, ArtifactStatus, ContentType


@dataclass(frozen=True)
class StatusTransition:
  """Outcome of a compare-and-set status change."""

  applied: bool
  record: ArtifactRecord | None


class ArtifactsRepository(Protocol):
  """Repository contract for artifact persistence."""

  async def create_artifact(self, record: ArtifactRecord) -> None:
    """Persist a new artifact record."""

  async def get_artifact(self, artifact_id: str) -> ArtifactRecord | None:
    """Fetch an artifact by identifier."""

  async def get_artifacts(self, artifact_ids: Sequence[str]) -> list[ArtifactRecord]:
    """Fetch the existing artifacts among the ids, in the order given."""

  async def save_artifact(self, record: ArtifactRecord, *, expected_status: ArtifactStatus | None = None) -> ArtifactRecord | None:
    """Replace a stored artifact; returns None when it is missing or its status differs from expected_status."""

  async def transition_status(self, artifact_id: str, *, allowed_from: Collection[ArtifactStatus], to: ArtifactStatus) -> StatusTransition:
    """Atomically move an artifact to ``to`` if its current status is in ``allowed_from``."""

  async def delete_artifact(self, artifact_id: str) -> bool:
    """Remove an artifact; returns False when it did not exist."""

  async def list_artifacts(self, *, limit: int, offset: int, content_type: ContentType | None = None, status: ArtifactStatus | None = None) -> tuple[list[ArtifactRecord], int]:
    """Return one page of artifacts (newest first) and the total matching count."""
