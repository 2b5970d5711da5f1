"""End-to-end tests of the HTTP surface against in-memory storage and fake remote services."""

from __future__ import annotations

import json

import pytest
from httpx import AsyncClient

from orbit.jobs.models import StepName

LESSON_BODY = {"kind": "FULL_LESSON", "topic": "Photosynthesis", "gradeLevel": "7", "durationMinutes": 45, "includeQuiz": True, "includeFlashcards": True}


def _sse_frames(text: str) -> list[tuple[str, dict]]:
  frames = []
  for block in text.strip().split("\n\n"):
    lines = dict(line.split(": ", 1) for line in block.splitlines())
    frames.append((lines["event"], json.loads(lines["data"])))
  return frames


async def _submit(async_client: AsyncClient, manager, body: dict | None = None) -> str:
  response = await async_client.post("/v1/artifacts", json=body or LESSON_BODY)
  assert response.status_code == 202
  artifact_id = response.json()["artifactId"]
  await manager.wait_for_run(artifact_id)
  return artifact_id


@pytest.mark.anyio
async def test_health(async_client: AsyncClient) -> None:
  response = await async_client.get("/health")
  assert response.status_code == 200
  assert response.json()["status"] == "ok"
  assert "x-request-id" in response.headers

  traced = await async_client.get("/health", headers={"X-Request-ID": "trace-0001"})
  assert traced.headers["x-request-id"] == "trace-0001"


@pytest.mark.anyio
async def test_submit_then_fetch_ready_artifact(async_client: AsyncClient, manager) -> None:
  artifact_id = await _submit(async_client, manager)

  response = await async_client.get(f"/v1/artifacts/{artifact_id}")
  assert response.status_code == 200
  body = response.json()
  assert body["status"] == "READY"
  assert body["contentType"] == "LESSON"
  assert body["completedSteps"] == ["lesson", "quiz", "flashcards"]
  assert body["request"]["includeQuiz"] is True


@pytest.mark.anyio
async def test_progress_poll_and_event_stream(async_client: AsyncClient, manager) -> None:
  artifact_id = await _submit(async_client, manager)

  poll = await async_client.get(f"/v1/artifacts/{artifact_id}/progress")
  assert poll.json()["event"]["step"] == "completed"
  assert poll.json()["event"]["percent"] == 100

  stream = await async_client.get(f"/v1/artifacts/{artifact_id}/events")
  assert stream.headers["content-type"].startswith("text/event-stream")
  frames = _sse_frames(stream.text)
  assert [name for name, _ in frames] == ["progress", "progress", "progress", "progress", "complete"]
  assert [data["percent"] for _, data in frames] == [0, 25, 50, 75, 100]
  assert frames[-1][1]["artifact"]["status"] == "READY"


@pytest.mark.anyio
async def test_event_stream_for_failed_run_ends_with_error(async_client: AsyncClient, manager, generation_client) -> None:
  generation_client.failures[StepName.LESSON] = RuntimeError("model overloaded")
  artifact_id = await _submit(async_client, manager)

  frames = _sse_frames((await async_client.get(f"/v1/artifacts/{artifact_id}/events")).text)
  assert frames[-1][0] == "error"
  assert "model overloaded" in frames[-1][1]["error"]

  body = (await async_client.get(f"/v1/artifacts/{artifact_id}")).json()
  assert body["status"] == "FAILED"
  assert body["lastError"]["error"] == "PRIMARY_STEP_FAILED"


@pytest.mark.anyio
async def test_event_stream_without_run_history_reports_stored_state(async_client: AsyncClient, manager) -> None:
  artifact_id = await _submit(async_client, manager)
  copy = await async_client.post(f"/v1/artifacts/{artifact_id}/duplicate")
  assert copy.status_code == 201

  frames = _sse_frames((await async_client.get(f"/v1/artifacts/{copy.json()['id']}/events")).text)
  assert [name for name, _ in frames] == ["complete"]


@pytest.mark.anyio
async def test_validation_errors_map_to_codes(async_client: AsyncClient) -> None:
  response = await async_client.post("/v1/artifacts", json={"kind": "SUB_PLAN", "topic": "Fractions"})
  assert response.status_code == 400
  assert response.json()["detail"]["error"] == "MISSING_REQUIRED_FIELD"

  response = await async_client.post("/v1/artifacts", json={"kind": "PODCAST", "topic": "Fractions"})
  assert response.status_code == 422


@pytest.mark.anyio
async def test_publish_lifecycle_over_http(async_client: AsyncClient, manager) -> None:
  artifact_id = await _submit(async_client, manager)

  assert (await async_client.post(f"/v1/artifacts/{artifact_id}/publish")).json()["status"] == "PUBLISHED"
  again = await async_client.post(f"/v1/artifacts/{artifact_id}/publish")
  assert again.status_code == 409
  assert again.json()["detail"]["error"] == "PRECONDITION_FAILED"
  assert (await async_client.post(f"/v1/artifacts/{artifact_id}/unpublish")).json()["status"] == "READY"

  listed = await async_client.get("/v1/artifacts", params={"status": "READY", "contentType": "LESSON"})
  assert listed.json()["total"] == 1


@pytest.mark.anyio
async def test_regenerate_single_step(async_client: AsyncClient, manager, generation_client) -> None:
  artifact_id = await _submit(async_client, manager)
  generation_client.calls.clear()

  response = await async_client.post(f"/v1/artifacts/{artifact_id}/regenerate", json={"scope": "step", "step": "quiz"})
  assert response.status_code == 202
  assert response.json()["status"] == "GENERATING"
  await manager.wait_for_run(artifact_id)
  assert generation_client.steps_called == [StepName.QUIZ]

  invalid = await async_client.post(f"/v1/artifacts/{artifact_id}/regenerate", json={"scope": "step"})
  assert invalid.status_code == 422


@pytest.mark.anyio
async def test_delete_is_idempotent(async_client: AsyncClient, manager) -> None:
  artifact_id = await _submit(async_client, manager)

  first = await async_client.delete(f"/v1/artifacts/{artifact_id}")
  second = await async_client.delete(f"/v1/artifacts/{artifact_id}")
  assert first.json()["outcome"] == "DELETED"
  assert second.json()["outcome"] == "NOT_FOUND"
  assert (await async_client.get(f"/v1/artifacts/{artifact_id}")).status_code == 404


@pytest.mark.anyio
async def test_upload_text_source_then_generate_audio_update(async_client: AsyncClient, manager, remote_extractor) -> None:
  upload = await async_client.post("/v1/sources", data={"kind": "AUDIO_SCRIPT"}, files={"file": ("week.txt", b"We planted beans this week.", "text/plain")})
  assert upload.status_code == 200
  source = upload.json()
  assert source["extractedText"] == "We planted beans this week."
  assert source["extractionMethod"] == "client"
  assert remote_extractor.calls == []

  artifact_id = await _submit(async_client, manager, {"kind": "AUDIO_SCRIPT", "topic": "Week 12", "includeAudio": True, "source": source})
  body = (await async_client.get(f"/v1/artifacts/{artifact_id}")).json()
  assert body["contentType"] == "AUDIO_UPDATE"
  assert body["payload"]["audioUrl"].endswith(".mp3")


@pytest.mark.anyio
async def test_upload_rejects_executables(async_client: AsyncClient, remote_extractor) -> None:
  response = await async_client.post("/v1/sources", data={"kind": "FULL_LESSON"}, files={"file": ("setup.exe", b"MZ\x90\x00", "application/x-msdownload")})
  assert response.status_code == 415
  assert response.json()["detail"]["error"] == "INVALID_FILE_TYPE"
  assert remote_extractor.calls == []
