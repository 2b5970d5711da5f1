"""In-process artifact repository used by default and in tests."""

from __future__ import annotations

import asyncio
import copy
from collections.abc import Collection, Sequence
from dataclasses import replace
from datetime import UTC, datetime

from orbit.jobs.models import ArtifactRecord, ArtifactStatus, ContentType
from orbit.storage.artifacts_repo import ArtifactsRepository, StatusTransition


class InMemoryArtifactsRepository(ArtifactsRepository):
  """Keep artifacts in a dict guarded by an asyncio lock."""

  def __init__(self) -> None:
    self._records: dict[str, ArtifactRecord] = {}
    self._order: dict[str, int] = {}
    self._counter = 0
    self._lock = asyncio.Lock()

  async def create_artifact(self, record: ArtifactRecord) -> None:
    async with self._lock:
      if record.artifact_id in self._records:
        raise ValueError(f"Artifact {record.artifact_id} already exists.")
      self._counter += 1
      self._order[record.artifact_id] = self._counter
      self._records[record.artifact_id] = copy.deepcopy(record)

  async def get_artifact(self, artifact_id: str) -> ArtifactRecord | None:
    async with self._lock:
      record = self._records.get(artifact_id)
      return copy.deepcopy(record) if record is not None else None

  async def get_artifacts(self, artifact_ids: Sequence[str]) -> list[ArtifactRecord]:
    async with self._lock:
      return [copy.deepcopy(self._records[artifact_id]) for artifact_id in artifact_ids if artifact_id in self._records]

  async def save_artifact(self, record: ArtifactRecord, *, expected_status: ArtifactStatus | None = None) -> ArtifactRecord | None:
    async with self._lock:
      current = self._records.get(record.artifact_id)
      if current is None:
        return None
      if expected_status is not None and current.status != expected_status:
        return None
      stored = copy.deepcopy(record)
      self._records[record.artifact_id] = stored
      return copy.deepcopy(stored)

  async def transition_status(self, artifact_id: str, *, allowed_from: Collection[ArtifactStatus], to: ArtifactStatus) -> StatusTransition:
    async with self._lock:
      current = self._records.get(artifact_id)
      if current is None:
        return StatusTransition(applied=False, record=None)
      if current.status not in allowed_from:
        return StatusTransition(applied=False, record=copy.deepcopy(current))
      updated = replace(current, status=to, updated_at=datetime.now(UTC))
      self._records[artifact_id] = updated
      return StatusTransition(applied=True, record=copy.deepcopy(updated))

  async def delete_artifact(self, artifact_id: str) -> bool:
    async with self._lock:
      self._order.pop(artifact_id, None)
      return self._records.pop(artifact_id, None) is not None

  async def list_artifacts(self, *, limit: int, offset: int, content_type: ContentType | None = None, status: ArtifactStatus | None = None) -> tuple[list[ArtifactRecord], int]:
    async with self._lock:
      matches = [record for record in self._records.values() if (content_type is None or record.content_type == content_type) and (status is None or record.status == status)]
      # Insertion order breaks ties between records created within the same clock tick.
      matches.sort(key=lambda record: (record.created_at, self._order[record.artifact_id]), reverse=True)
      page = matches[offset : offset + limit]
      return [copy.deepcopy(record) for record in page], len(matches)
