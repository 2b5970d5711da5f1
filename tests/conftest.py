"""Shared fixtures: in-memory storage, fake remote services, and an ASGI test client."""

from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from orbit.api.deps import get_ingestion_dispatcher, get_lifecycle_manager
from orbit.config import DEFAULT_STEP_COSTS
from orbit.jobs.broker import ProgressBroker
from orbit.main import app
from orbit.pipeline.orchestrator import PipelineOrchestrator
from orbit.services.ingestion import SourceIngestionDispatcher
from orbit.services.lifecycle import ArtifactLifecycleManager
from orbit.services.quotas import InMemoryQuotaGateway
from orbit.services.request_validation import GenerationRequestValidator
from orbit.storage.memory_artifacts_repo import InMemoryArtifactsRepository
from tests.fakes import FakeGenerationClient, FakeRemoteExtractor


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def repo() -> InMemoryArtifactsRepository:
  return InMemoryArtifactsRepository()


@pytest.fixture
def quota() -> InMemoryQuotaGateway:
  return InMemoryQuotaGateway(1_000_000)


@pytest.fixture
def generation_client() -> FakeGenerationClient:
  return FakeGenerationClient()


@pytest.fixture
def orchestrator(repo, generation_client, quota) -> PipelineOrchestrator:
  return PipelineOrchestrator(repo=repo, generation_client=generation_client, quota_gateway=quota, step_costs=DEFAULT_STEP_COSTS)


@pytest.fixture
def manager(repo, orchestrator, quota) -> ArtifactLifecycleManager:
  validator = GenerationRequestValidator(quota, DEFAULT_STEP_COSTS)
  return ArtifactLifecycleManager(repo=repo, orchestrator=orchestrator, validator=validator, broker=ProgressBroker())


@pytest.fixture
def remote_extractor() -> FakeRemoteExtractor:
  return FakeRemoteExtractor()


@pytest.fixture
def dispatcher(remote_extractor) -> SourceIngestionDispatcher:
  return SourceIngestionDispatcher(remote=remote_extractor)


@pytest.fixture
async def async_client(manager, dispatcher):
  app.dependency_overrides[get_lifecycle_manager] = lambda: manager
  app.dependency_overrides[get_ingestion_dispatcher] = lambda: dispatcher
  async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
    yield client
  app.dependency_overrides.clear()
