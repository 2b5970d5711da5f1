"""Quota gateway contract and the in-process credit balance used outside production billing."""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)

MAX_USAGE_ENTRIES = 500


class QuotaGateway(Protocol):
  """Externally owned credit balance; the engine only calls these two functions."""

  async def check_affordability(self, estimated_cost: int) -> bool:
    """Return True when the balance covers the estimate."""

  async def report_usage(self, actual_cost: int, *, metadata: dict[str, Any] | None = None) -> None:
    """Record credits consumed by successful steps."""


@dataclass(frozen=True)
class UsageEntry:
  amount: int
  metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class QuotaSnapshot:
  """Balance view of the in-process gateway."""

  balance: int
  used: int


class InMemoryQuotaGateway(QuotaGateway):
  """Track a single credit balance in memory; only the most recent usage entries are kept."""

  def __init__(self, balance: int, *, max_entries: int = MAX_USAGE_ENTRIES) -> None:
    if balance < 0:
      raise ValueError("Credit balance must not be negative.")
    self._balance = balance
    self._used = 0
    self._entries: deque[UsageEntry] = deque(maxlen=max_entries)
    self._lock = asyncio.Lock()

  async def check_affordability(self, estimated_cost: int) -> bool:
    async with self._lock:
      return estimated_cost <= self._balance

  async def report_usage(self, actual_cost: int, *, metadata: dict[str, Any] | None = None) -> None:
    if actual_cost < 0:
      raise ValueError("Usage must not be negative.")
    async with self._lock:
      # The ledger may go negative if an estimate undershot; the next check will reject.
      self._balance -= actual_cost
      self._used += actual_cost
      self._entries.append(UsageEntry(amount=actual_cost, metadata=dict(metadata or {})))
    logger.info("Recorded %s credits of usage; balance now %s", actual_cost, self._balance)

  def snapshot(self) -> QuotaSnapshot:
    return QuotaSnapshot(balance=self._balance, used=self._used)

  @property
  def entries(self) -> list[UsageEntry]:
    return list(self._entries)
