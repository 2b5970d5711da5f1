"""Shared FastAPI dependencies wiring the engine components together."""

from __future__ import annotations

import logging
from functools import lru_cache

from orbit.config import get_settings
from orbit.jobs.broker import ProgressBroker
from orbit.pipeline.orchestrator import PipelineOrchestrator
from orbit.services.extraction_client import GeminiExtractor
from orbit.services.generation_client import HttpGenerationClient
from orbit.services.ingestion import SourceIngestionDispatcher
from orbit.services.lifecycle import ArtifactLifecycleManager
from orbit.services.quotas import InMemoryQuotaGateway, QuotaGateway
from orbit.services.request_validation import GenerationRequestValidator
from orbit.storage.factory import _get_artifacts_repo

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_quota_gateway() -> QuotaGateway:
  """Process-wide credit balance seeded from ORBIT_DEV_CREDIT_BALANCE."""
  settings = get_settings()
  logger.info("Using in-process quota gateway with %s credits", settings.dev_credit_balance)
  return InMemoryQuotaGateway(settings.dev_credit_balance)


@lru_cache(maxsize=1)
def get_lifecycle_manager() -> ArtifactLifecycleManager:
  settings = get_settings()
  repo = _get_artifacts_repo(settings)
  quota_gateway = get_quota_gateway()
  orchestrator = PipelineOrchestrator(repo=repo, generation_client=HttpGenerationClient.from_settings(settings), quota_gateway=quota_gateway, step_costs=settings.step_costs, flashcard_count=settings.flashcard_count)
  validator = GenerationRequestValidator(quota_gateway, settings.step_costs)
  return ArtifactLifecycleManager(repo=repo, orchestrator=orchestrator, validator=validator, broker=ProgressBroker())


@lru_cache(maxsize=1)
def get_ingestion_dispatcher() -> SourceIngestionDispatcher:
  settings = get_settings()
  remote = GeminiExtractor(api_key=settings.gemini_api_key, model_name=settings.extraction_model)
  return SourceIngestionDispatcher(remote=remote, max_upload_bytes=settings.max_upload_bytes)
