"""Pre-flight validation of generation requests."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from orbit.core.errors import QuotaExceededError, RequestValidationFailure
from orbit.jobs.progress import StepPlan, build_step_plan, cost_key
from orbit.schema.generation import MAX_NOTES_CHARS, GenerationKind, GenerationRequest
from orbit.services.quotas import QuotaGateway

logger = logging.getLogger(__name__)

MIN_DURATION_MINUTES = 5
MAX_DURATION_MINUTES = 240


@dataclass(frozen=True)
class CostEstimate:
  """Credits a run is expected to consume, per step."""

  total: int
  breakdown: dict[str, int]


def estimate_cost(plan: StepPlan, step_costs: Mapping[str, int]) -> CostEstimate:
  breakdown = {step.value: int(step_costs.get(cost_key(plan.kind, step), 0)) for step in plan.steps}
  return CostEstimate(total=sum(breakdown.values()), breakdown=breakdown)


def _missing(field: str, message: str) -> RequestValidationFailure:
  return RequestValidationFailure(message, code="MISSING_REQUIRED_FIELD", details={"field": field})


def _invalid(field: str, message: str) -> RequestValidationFailure:
  return RequestValidationFailure(message, code="INVALID_FIELD", details={"field": field})


def check_request_fields(request: GenerationRequest) -> None:
  """Reject malformed requests; never touches the quota gateway."""

  if not request.topic and not (request.title and request.title.strip()):
    raise _missing("topic", "A topic or title is required.")

  if request.kind is GenerationKind.AUDIO_SCRIPT and not request.lesson_ids and request.source is None:
    raise _missing("lessonIds", "Select at least one lesson or upload a source file.")

  if request.kind is GenerationKind.SUB_PLAN and request.scheduled_date is None:
    raise _missing("scheduledDate", "A scheduled date is required for substitute plans.")

  if request.duration_minutes is not None and not MIN_DURATION_MINUTES <= request.duration_minutes <= MAX_DURATION_MINUTES:
    raise _invalid("durationMinutes", f"Duration must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES} minutes.")

  if len(request.additional_notes) > MAX_NOTES_CHARS:
    raise _invalid("additionalNotes", f"Additional notes must be at most {MAX_NOTES_CHARS} characters.")


class GenerationRequestValidator:
  """Approve a request only when it is well-formed and affordable."""

  def __init__(self, quota_gateway: QuotaGateway, step_costs: Mapping[str, int]) -> None:
    self._quota_gateway = quota_gateway
    self._step_costs = dict(step_costs)

  async def validate(self, request: GenerationRequest, *, plan: StepPlan | None = None) -> CostEstimate:
    """Return the cost estimate, or raise RequestValidationFailure / QuotaExceededError."""

    # Field checks run first so malformed requests never reach the quota gateway.
    check_request_fields(request)
    plan = plan or build_step_plan(request)
    estimate = estimate_cost(plan, self._step_costs)

    if not await self._quota_gateway.check_affordability(estimate.total):
      logger.info("Rejected %s request: estimated %s credits not affordable", request.kind.value, estimate.total)
      raise QuotaExceededError(f"Insufficient credits: this generation needs about {estimate.total} credits.", details={"estimatedCost": estimate.total})

    return estimate
