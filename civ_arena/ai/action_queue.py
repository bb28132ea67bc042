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

"""Durable per-civilization queue of decided actions.

Each civilization owns one ``ActionQueue``. Decisions wait in its backlog
until they are eligible, at most ``actions_per_turn`` of them are handed out
per turn, and failed actions come back with one less retry and a later
earliest-eligible turn until their budget runs out.

Example usage:
    >>> queue = ActionQueue(CivId(1))
    >>> queue.queue_action(research, turn=5)
    True
    >>> queue.reset_turn_processing()
    >>> while queue.can_process_more_actions():
    ...   queued = queue.dequeue_next_action(turn=5)
    ...   if queued is None:
    ...     break
    ...   execute(queued.action)
    ...   queue.increment_turn_processing()
"""

import itertools
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from absl import logging

from civ_arena.ai.civ_actions import (AIAction, ActionExecutionError,
                                      ActionExecutor, ExecutionFailure,
                                      describe_action)
from civ_arena.ai.civ_state import CivId
from civ_arena.ai.config import QueueConfig
from civ_arena.ai.decision_telemetry import DecisionTelemetry


@dataclass
class QueuedAction:
  """An action waiting in a civilization's backlog."""
  action: AIAction
  queued_turn: int
  not_before_turn: Optional[int] = None  # None means eligible immediately
  retry_budget: int = 2  # Retries left after the next failure
  sequence: int = 0

  def is_ready(self, turn: int) -> bool:
    return self.not_before_turn is None or turn >= self.not_before_turn

  @property
  def priority(self) -> float:
    return self.action.priority


class ActionQueue:
  """Backlog, per-turn budget and retry bookkeeping of one civilization."""

  def __init__(self, civ_id: CivId, config: Optional[QueueConfig] = None):
    self.civ_id = civ_id
    self.config = config or QueueConfig()
    self._backlog: List[QueuedAction] = []
    self._sequence = itertools.count()
    self.actions_processed_this_turn = 0
    self.actions_dequeued_this_turn = 0

  def __len__(self) -> int:
    return len(self._backlog)

  def __iter__(self) -> Iterator[QueuedAction]:
    return iter(list(self._backlog))

  @property
  def max_queue_size(self) -> int:
    return self.config.max_queue_size

  @property
  def actions_per_turn(self) -> int:
    return self.config.actions_per_turn

  def has_capacity(self) -> bool:
    return len(self._backlog) < self.config.max_queue_size

  def queue_action(self, action: AIAction, turn: int) -> bool:
    """Insert ``action`` eligible immediately with the default retry budget.

    Returns:
      False if the backlog is full and the action was dropped
    """
    return self.queue_action_with_settings(
        action, turn, None, self.config.default_retry_budget)

  def queue_action_with_settings(self, action: AIAction, turn: int,
                                 not_before_turn: Optional[int],
                                 retry_budget: int) -> bool:
    """Insert ``action`` with an explicit earliest turn and retry budget."""
    if not self.has_capacity():
      logging.debug("Civ %s queue full (%d); dropping %s", self.civ_id,
                    len(self._backlog), describe_action(action))
      return False
    if retry_budget < 0:
      raise ValueError(
          f"retry_budget must not be negative, got {retry_budget}")
    self._insert(QueuedAction(
        action=action,
        queued_turn=turn,
        not_before_turn=not_before_turn,
        retry_budget=retry_budget,
    ))
    return True

  def queue_urgent(self, action: AIAction, turn: int) -> bool:
    """Insert an action eligible this turn with the urgent retry budget."""
    return self.queue_action_with_settings(
        action, turn, None, self.config.urgent_retry_budget)

  def queue_actions(self, actions: Iterable[AIAction], turn: int) -> int:
    """Insert actions in order until the backlog is full.

    Returns:
      Number of actions accepted
    """
    return sum(1 for action in actions if self.queue_action(action, turn))

  def _insert(self, queued: QueuedAction) -> None:
    queued.sequence = next(self._sequence)
    self._backlog.append(queued)

  def reset_turn_processing(self) -> None:
    self.actions_processed_this_turn = 0
    self.actions_dequeued_this_turn = 0

  def increment_turn_processing(self) -> None:
    self.actions_processed_this_turn += 1

  def can_process_more_actions(self) -> bool:
    cap = self.config.actions_per_turn
    return (self.actions_processed_this_turn < cap
            and self.actions_dequeued_this_turn < cap
            and bool(self._backlog))

  def _best_ready_index(self, turn: int) -> Optional[int]:
    best = None
    for index, queued in enumerate(self._backlog):
      if not queued.is_ready(turn):
        continue
      if best is None:
        best = index
        continue
      current = self._backlog[best]
      if (queued.priority > current.priority
          or (queued.priority == current.priority
              and queued.sequence < current.sequence)):
        best = index
    return best

  def peek_next_action(self, turn: int) -> Optional[QueuedAction]:
    index = self._best_ready_index(turn)
    return None if index is None else self._backlog[index]

  def dequeue_next_action(self, turn: int) -> Optional[QueuedAction]:
    """Remove and return the best eligible action for ``turn``.

    The best action has the highest priority, and the lowest sequence
    number among equal priorities. Returns None when nothing is eligible
    or when this turn's dequeue budget is spent.
    """
    if self.actions_dequeued_this_turn >= self.config.actions_per_turn:
      return None
    index = self._best_ready_index(turn)
    if index is None:
      return None
    self.actions_dequeued_this_turn += 1
    return self._backlog.pop(index)

  def requeue_failed_action(self, queued: QueuedAction, turn: int) -> bool:
    """Put a failed action back for a later turn, consuming one retry.

    Returns:
      True if the action was requeued, False if its budget is exhausted
      and it was dropped
    """
    if queued.retry_budget <= 0:
      logging.info("Civ %s dropped %s after exhausting its retries",
                   self.civ_id, describe_action(queued.action))
      return False
    remaining = queued.retry_budget - 1
    self._insert(QueuedAction(
        action=queued.action,
        queued_turn=queued.queued_turn,
        not_before_turn=turn + self.config.retry_delay_turns,
        retry_budget=remaining,
    ))
    logging.debug("Civ %s requeued %s for turn %d (%d retries left)",
                  self.civ_id, describe_action(queued.action),
                  turn + self.config.retry_delay_turns, remaining)
    return True

  def ready_count(self, turn: int) -> int:
    return sum(1 for queued in self._backlog if queued.is_ready(turn))

  def clear(self) -> None:
    self._backlog.clear()


class ActionQueueRegistry:
  """Owns the queue of every civilization, created on first use."""

  def __init__(self, config: Optional[QueueConfig] = None):
    self.config = config or QueueConfig()
    self._queues: Dict[CivId, ActionQueue] = {}

  def ensure(self, civ_id: CivId) -> ActionQueue:
    queue = self._queues.get(civ_id)
    if queue is None:
      queue = ActionQueue(civ_id, self.config)
      self._queues[civ_id] = queue
    return queue

  def get(self, civ_id: CivId) -> Optional[ActionQueue]:
    return self._queues.get(civ_id)

  def remove(self, civ_id: CivId) -> Optional[ActionQueue]:
    return self._queues.pop(civ_id, None)

  def __contains__(self, civ_id: CivId) -> bool:
    return civ_id in self._queues

  def __len__(self) -> int:
    return len(self._queues)

  def civ_ids(self) -> Tuple[CivId, ...]:
    return tuple(sorted(self._queues))


@dataclass
class DrainReport:
  """What happened while draining one queue for one turn."""
  civ_id: CivId
  turn: int
  executed: List[AIAction] = field(default_factory=list)
  failed: List[Tuple[AIAction, ExecutionFailure]] = field(default_factory=list)
  requeued: int = 0
  dropped: List[AIAction] = field(default_factory=list)

  @property
  def attempted(self) -> int:
    return len(self.executed) + len(self.failed)


def drain_action_queue(queue: ActionQueue, civ_id: CivId,
                       executor: ActionExecutor, turn: int,
                       telemetry: Optional[DecisionTelemetry] = None
                      ) -> DrainReport:
  """Execute up to the per-turn budget of eligible actions.

  Failed actions are requeued after the loop, so none of them can be
  retried within the same turn.
  """
  report = DrainReport(civ_id=civ_id, turn=turn)
  failures: List[QueuedAction] = []
  while queue.can_process_more_actions():
    queued = queue.dequeue_next_action(turn)
    if queued is None:
      break
    action = queued.action
    try:
      executor.execute(civ_id, action)
    except ActionExecutionError as e:
      failure = e.kind
      logging.debug("Civ %s failed to %s: %s", civ_id,
                    describe_action(action), e.message)
    except Exception as e:  # pylint: disable=broad-exception-caught
      failure = ExecutionFailure.TECHNICAL_FAILURE
      logging.warning("Civ %s: executor raised %s while trying to %s",
                      civ_id, type(e).__name__, describe_action(action))
    else:
      queue.increment_turn_processing()
      report.executed.append(action)
      if telemetry is not None:
        telemetry.record_execution(civ_id, action.kind, True, turn=turn)
      continue
    report.failed.append((action, failure))
    failures.append(queued)
    if telemetry is not None:
      telemetry.record_execution(civ_id, action.kind, False, failure,
                                 turn=turn)

  for queued in failures:
    if queue.requeue_failed_action(queued, turn):
      report.requeued += 1
    else:
      report.dropped.append(queued.action)
      if telemetry is not None:
        telemetry.record_drop(civ_id)
  return report
