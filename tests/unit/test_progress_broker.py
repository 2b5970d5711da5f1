from __future__ import annotations

import asyncio

import pytest

from orbit.jobs.broker import ProgressBroker
from orbit.jobs.models import ProgressEvent, RunPhase


def _event(step: RunPhase, percent: int, run_id: str = "run-1") -> ProgressEvent:
  return ProgressEvent(artifact_id="art-1", run_id=run_id, step=step, message=step.value, percent=percent)


@pytest.mark.anyio
async def test_late_subscriber_gets_replay_then_live_events() -> None:
  broker = ProgressBroker()
  broker.publish(_event(RunPhase.STARTING, 0))
  broker.publish(_event(RunPhase.GENERATING_LESSON, 50))

  received: list[RunPhase] = []

  async def consume() -> None:
    async for event in broker.subscribe("art-1"):
      received.append(event.step)

  task = asyncio.create_task(consume())
  await asyncio.sleep(0)
  broker.publish(_event(RunPhase.COMPLETED, 100))
  await asyncio.wait_for(task, timeout=1)

  assert received == [RunPhase.STARTING, RunPhase.GENERATING_LESSON, RunPhase.COMPLETED]


@pytest.mark.anyio
async def test_finished_run_replays_and_stops() -> None:
  broker = ProgressBroker()
  broker.publish(_event(RunPhase.STARTING, 0))
  broker.publish(_event(RunPhase.FAILED, 100))

  received = [event.step async for event in broker.subscribe("art-1")]
  assert received == [RunPhase.STARTING, RunPhase.FAILED]


def test_new_run_replaces_history() -> None:
  broker = ProgressBroker()
  broker.publish(_event(RunPhase.STARTING, 0, run_id="run-1"))
  broker.publish(_event(RunPhase.COMPLETED, 100, run_id="run-1"))
  broker.publish(_event(RunPhase.STARTING, 0, run_id="run-2"))

  assert [event.run_id for event in broker.history("art-1")] == ["run-2"]
  assert broker.latest("art-1").step is RunPhase.STARTING


def test_forget_drops_history() -> None:
  broker = ProgressBroker()
  broker.publish(_event(RunPhase.STARTING, 0))
  broker.forget("art-1")
  assert broker.latest("art-1") is None
