"""Postgres-backed repository for artifact persistence using SQLAlchemy."""

from __future__ import annotations

import logging
from collections.abc import Collection, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, select, update

from orbit.core.database import get_session_factory
from orbit.jobs.models import ArtifactRecord, ArtifactStatus, ContentType, StepName
from orbit.schema.generation import GenerationKind
from orbit.schema.sql import ContentArtifactRow
from orbit.storage.artifacts_repo import ArtifactsRepository, StatusTransition

logger = logging.getLogger(__name__)


def record_to_row_values(record: ArtifactRecord) -> dict[str, Any]:
  """Flatten a record into column values."""
  return {
    "artifact_id": record.artifact_id,
    "title": record.title,
    "content_type": record.content_type.value,
    "kind": record.kind.value,
    "status": record.status.value,
    "request": dict(record.request),
    "payload": dict(record.payload),
    "completed_steps": [step.value for step in record.completed_steps],
    "warnings": list(record.warnings),
    "logs": list(record.logs),
    "last_error": dict(record.last_error) if record.last_error is not None else None,
    "run_id": record.run_id,
    "created_at": record.created_at,
    "updated_at": record.updated_at,
  }


def row_to_record(row: ContentArtifactRow) -> ArtifactRecord:
  """Rebuild a record from a table row."""
  return ArtifactRecord(
    artifact_id=row.artifact_id,
    title=row.title,
    content_type=ContentType(row.content_type),
    kind=GenerationKind(row.kind),
    status=ArtifactStatus(row.status),
    created_at=row.created_at,
    updated_at=row.updated_at,
    request=dict(row.request or {}),
    payload=dict(row.payload or {}),
    completed_steps=[StepName(step) for step in row.completed_steps or []],
    warnings=list(row.warnings or []),
    logs=list(row.logs or []),
    last_error=dict(row.last_error) if row.last_error is not None else None,
    run_id=row.run_id,
  )


class PostgresArtifactsRepository(ArtifactsRepository):
  """Persist artifacts to Postgres using SQLAlchemy."""

  def __init__(self) -> None:
    self._session_factory = get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def create_artifact(self, record: ArtifactRecord) -> None:
    """Insert an artifact row."""
    async with self._session_factory() as session:
      session.add(ContentArtifactRow(**record_to_row_values(record)))
      await session.commit()

  async def get_artifact(self, artifact_id: str) -> ArtifactRecord | None:
    async with self._session_factory() as session:
      row = await session.get(ContentArtifactRow, artifact_id)
      if row is None:
        return None
      return row_to_record(row)

  async def get_artifacts(self, artifact_ids: Sequence[str]) -> list[ArtifactRecord]:
    if not artifact_ids:
      return []
    async with self._session_factory() as session:
      result = await session.execute(select(ContentArtifactRow).where(ContentArtifactRow.artifact_id.in_(list(artifact_ids))))
      rows = {row.artifact_id: row for row in result.scalars().all()}
    return [row_to_record(rows[artifact_id]) for artifact_id in artifact_ids if artifact_id in rows]

  async def save_artifact(self, record: ArtifactRecord, *, expected_status: ArtifactStatus | None = None) -> ArtifactRecord | None:
    """Replace an artifact row, optionally only while it still has the expected status."""
    values = record_to_row_values(record)
    values.pop("artifact_id")
    values.pop("created_at")
    stmt = update(ContentArtifactRow).where(ContentArtifactRow.artifact_id == record.artifact_id)
    if expected_status is not None:
      stmt = stmt.where(ContentArtifactRow.status == expected_status.value)
    stmt = stmt.values(**values).returning(ContentArtifactRow)
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      row = result.scalars().first()
      await session.commit()
      if row is None:
        return None
      return row_to_record(row)

  async def transition_status(self, artifact_id: str, *, allowed_from: Collection[ArtifactStatus], to: ArtifactStatus) -> StatusTransition:
    """Compare-and-set the status with a conditional UPDATE."""
    stmt = (
      update(ContentArtifactRow)
      .where(ContentArtifactRow.artifact_id == artifact_id, ContentArtifactRow.status.in_([status.value for status in allowed_from]))
      .values(status=to.value, updated_at=datetime.now(UTC))
      .returning(ContentArtifactRow)
    )
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      row = result.scalars().first()
      await session.commit()
      if row is not None:
        return StatusTransition(applied=True, record=row_to_record(row))

      current = await session.get(ContentArtifactRow, artifact_id)
      if current is None:
        return StatusTransition(applied=False, record=None)
      logger.debug("Status transition for %s rejected from %s", artifact_id, current.status)
      return StatusTransition(applied=False, record=row_to_record(current))

  async def delete_artifact(self, artifact_id: str) -> bool:
    async with self._session_factory() as session:
      result = await session.execute(delete(ContentArtifactRow).where(ContentArtifactRow.artifact_id == artifact_id).returning(ContentArtifactRow.artifact_id))
      deleted = result.scalar_one_or_none()
      await session.commit()
      return deleted is not None

  async def list_artifacts(self, *, limit: int, offset: int, content_type: ContentType | None = None, status: ArtifactStatus | None = None) -> tuple[list[ArtifactRecord], int]:
    filters = []
    if content_type is not None:
      filters.append(ContentArtifactRow.content_type == content_type.value)
    if status is not None:
      filters.append(ContentArtifactRow.status == status.value)

    async with self._session_factory() as session:
      count_stmt = select(func.count()).select_from(ContentArtifactRow).where(*filters)
      total = (await session.execute(count_stmt)).scalar_one()
      stmt = select(ContentArtifactRow).where(*filters).order_by(ContentArtifactRow.created_at.desc(), ContentArtifactRow.artifact_id.desc()).limit(limit).offset(offset)
      rows = (await session.execute(stmt)).scalars().all()
    return [row_to_record(row) for row in rows], int(total)
