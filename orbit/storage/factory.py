"""Repository selection based on the configured storage backend."""

from __future__ import annotations

import logging

from orbit.config import Settings
from orbit.storage.artifacts_repo import ArtifactsRepository

logger = logging.getLogger(__name__)

_REPOS: dict[str, ArtifactsRepository] = {}


def _get_artifacts_repo(settings: Settings) -> ArtifactsRepository:
  """Return the process-wide artifacts repository for the configured backend."""
  repo = _REPOS.get(settings.storage_backend)
  if repo is not None:
    return repo

  if settings.storage_backend == "postgres":
    from orbit.storage.postgres_artifacts_repo import PostgresArtifactsRepository

    repo = PostgresArtifactsRepository()
  else:
    from orbit.storage.memory_artifacts_repo import InMemoryArtifactsRepository

    repo = InMemoryArtifactsRepository()

  logger.info("Using %s artifact storage", settings.storage_backend)
  _REPOS[settings.storage_backend] = repo
  return repo
