"""In-process fan-out of run progress events."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from orbit.jobs.models import ProgressEvent

logger = logging.getLogger(__name__)


class ProgressBroker:
  """Keep each artifact's current-run event history and stream it to subscribers."""

  def __init__(self) -> None:
    self._history: dict[str, list[ProgressEvent]] = {}
    self._subscribers: dict[str, set[asyncio.Queue[ProgressEvent]]] = {}

  def reset(self, artifact_id: str) -> None:
    """Start a fresh history when a new run claims the artifact."""

    self._history[artifact_id] = []

  def publish(self, event: ProgressEvent) -> None:
    """Record an event and hand it to every live subscriber."""

    history = self._history.setdefault(event.artifact_id, [])
    if history and history[-1].run_id != event.run_id:
      history.clear()
    history.append(event)
    for queue in self._subscribers.get(event.artifact_id, set()):
      queue.put_nowait(event)

  def latest(self, artifact_id: str) -> ProgressEvent | None:
    history = self._history.get(artifact_id)
    if not history:
      return None
    return history[-1]

  def history(self, artifact_id: str) -> list[ProgressEvent]:
    return list(self._history.get(artifact_id, []))

  def forget(self, artifact_id: str) -> None:
    """Drop history for a deleted artifact."""

    self._history.pop(artifact_id, None)

  async def subscribe(self, artifact_id: str) -> AsyncIterator[ProgressEvent]:
    """Replay the current run and follow live events until a terminal one."""

    # Snapshot and register without awaiting in between so no event is missed or repeated.
    replay = list(self._history.get(artifact_id, []))
    queue: asyncio.Queue[ProgressEvent] = asyncio.Queue()
    self._subscribers.setdefault(artifact_id, set()).add(queue)
    try:
      for event in replay:
        yield event
        if event.is_terminal:
          return
      while True:
        event = await queue.get()
        yield event
        if event.is_terminal:
          return
    finally:
      subscribers = self._subscribers.get(artifact_id)
      if subscribers is not None:
        subscribers.discard(queue)
        if not subscribers:
          self._subscribers.pop(artifact_id, None)
      logger.debug("Progress subscriber for %s detached", artifact_id)
