"""Local `.env` support; variables already exported in the shell always take precedence."""

from __future__ import annotations

import os
from pathlib import Path

ENV_FILE_VARIABLE = "ORBIT_ENV_FILE"
_QUOTES = ('"', "'")


def default_env_path() -> Path:
  """Path of the `.env` file to load: ``ORBIT_ENV_FILE`` when set, else the repo root."""
  configured = os.getenv(ENV_FILE_VARIABLE)
  if configured:
    return Path(configured).expanduser()
  return Path(__file__).resolve().parents[2] / ".env"


def _parse_line(raw_line: str) -> tuple[str, str] | None:
  line = raw_line.strip()
  if not line or line.startswith("#"):
    return None
  line = line.removeprefix("export ").lstrip()
  name, sep, value = line.partition("=")
  name = name.strip()
  if not sep or not name:
    return None

  value = value.strip()
  if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
    return name, value[1:-1]
  # Unquoted values may carry a trailing comment.
  value = value.split(" #", 1)[0].rstrip()
  return name, value


def load_env_file(path: Path, *, override: bool = False) -> list[str]:
  """Export ``NAME=value`` entries from ``path`` and return the names that were set."""
  if not path.is_file():
    return []

  loaded: list[str] = []
  for raw_line in path.read_text(encoding="utf-8").splitlines():
    parsed = _parse_line(raw_line)
    if parsed is None:
      continue
    name, value = parsed
    if name in os.environ and not override:
      continue
    os.environ[name] = value
    loaded.append(name)
  return loaded
