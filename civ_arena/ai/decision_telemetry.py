# Copyright 2025 The civ_arena Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Counters describing what the AI decided and how execution went.

Example usage:
    >>> telemetry = DecisionTelemetry()
    >>> telemetry.record_decisions(CivId(1), turn=3, count=4)
    >>> telemetry.record_execution(CivId(1), "research", success=True)
    >>> telemetry.get_summary()["total_executed"]
    1
"""

import threading
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from absl import logging

from civ_arena.ai.civ_actions import ExecutionFailure
from civ_arena.ai.civ_state import CivId


@dataclass(frozen=True)
class ExecutionRecord:
  """Outcome of one dequeued action."""
  civ_id: CivId
  turn: int
  action_kind: str
  success: bool
  failure: Optional[str] = None


class DecisionTelemetry:
  """Thread-safe collector of decision and execution statistics."""

  def __init__(self, max_history: int = 1000):
    """Initialize the collector.

    Args:
      max_history: Maximum number of execution records kept in memory
    """
    self.max_history = max_history
    self._lock = threading.Lock()
    self._history = deque(maxlen=max_history)

    self._decisions_by_civ = defaultdict(int)
    self._decision_batches = 0
    self._cooldown_skips = defaultdict(int)
    self._executed_by_kind = defaultdict(int)
    self._failures_by_kind = defaultdict(int)
    self._dropped_by_civ = defaultdict(int)
    self._rejected_by_civ = defaultdict(int)
    self._total_executed = 0
    self._total_failed = 0

  def record_decisions(self, civ_id: CivId, turn: int, count: int) -> None:
    with self._lock:
      self._decisions_by_civ[civ_id] += count
      self._decision_batches += 1
    logging.debug("Turn %d: civ %s generated %d decisions", turn, civ_id,
                  count)

  def record_cooldown_skip(self, civ_id: CivId) -> None:
    with self._lock:
      self._cooldown_skips[civ_id] += 1

  def record_execution(self, civ_id: CivId, action_kind: str, success: bool,
                       failure: Optional[ExecutionFailure] = None,
                       turn: int = 0) -> None:
    """Record the outcome of executing one action."""
    with self._lock:
      record = ExecutionRecord(
          civ_id=civ_id,
          turn=turn,
          action_kind=action_kind,
          success=success,
          failure=failure.value if failure is not None else None,
      )
      self._history.append(record)
      if success:
        self._total_executed += 1
        self._executed_by_kind[action_kind] += 1
      else:
        self._total_failed += 1
        self._failures_by_kind[record.failure or "unknown"] += 1

  def record_drop(self, civ_id: CivId) -> None:
    with self._lock:
      self._dropped_by_civ[civ_id] += 1

  def record_rejection(self, civ_id: CivId) -> None:
    with self._lock:
      self._rejected_by_civ[civ_id] += 1

  def recent_executions(self, civ_id: Optional[CivId] = None,
                        limit: int = 20) -> List[ExecutionRecord]:
    with self._lock:
      records = [r for r in self._history
                 if civ_id is None or r.civ_id == civ_id]
    return records[-limit:]

  def get_summary(self) -> Dict[str, Any]:
    """Aggregated counters.

    Returns:
      Dictionary with current totals and per-civilization breakdowns
    """
    with self._lock:
      attempts = self._total_executed + self._total_failed
      return {
          "decision_batches": self._decision_batches,
          "decisions_by_civ": dict(self._decisions_by_civ),
          "cooldown_skips": dict(self._cooldown_skips),
          "total_executed": self._total_executed,
          "total_failed": self._total_failed,
          "success_rate": self._total_executed / max(1, attempts),
          "executed_by_kind": dict(self._executed_by_kind),
          "failures_by_kind": dict(self._failures_by_kind),
          "dropped_by_civ": dict(self._dropped_by_civ),
          "rejected_by_civ": dict(self._rejected_by_civ),
          "history_size": len(self._history),
      }

  def reset(self) -> None:
    with self._lock:
      self._history.clear()
      for counter in (self._decisions_by_civ, self._cooldown_skips,
                      self._executed_by_kind, self._failures_by_kind,
                      self._dropped_by_civ, self._rejected_by_civ):
        counter.clear()
      self._decision_batches = 0
      self._total_executed = 0
      self._total_failed = 0
