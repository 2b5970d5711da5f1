"""Identifier utilities."""

from __future__ import annotations

import uuid


def generate_artifact_id() -> str:
  """Return a new artifact identifier."""
  return str(uuid.uuid4())


def generate_run_id() -> str:
  """Return a new generation run identifier."""
  return uuid.uuid4().hex[:12]
