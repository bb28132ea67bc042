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

"""Coordinates the decision strategies for every AI civilization.

Once per turn the coordinator runs the utility scorer, the GOAP planner and
the HTN planner against each eligible civilization's snapshot, merges their
proposals, ranks them by how much the civilization's personality favours
each kind of action and rate-limits civilizations through a
per-civilization cooldown. It never touches the action queues; the caller
enqueues the returned decisions.

Example usage:
    >>> coordinator = AICoordinator()
    >>> decisions = coordinator.generate_turn_decisions(world)
    >>> for civ_id, actions in decisions.items():
    ...   registry.ensure(civ_id).queue_actions(actions, world.turn)
"""

from typing import Dict, Hashable, Iterable, List, Optional, Sequence, Tuple

from absl import logging

from civ_arena.ai.civ_actions import (AIAction, Attack, BuildBuilding,
                                      BuildUnit, Defend, Diplomacy, Explore,
                                      Expand, Research, Trade, describe_action)
from civ_arena.ai.civ_state import (CivId, CivilizationSnapshot,
                                    CivPersonality, WorldState,
                                    build_snapshot)
from civ_arena.ai.config import (CooldownConfig, CoordinatorConfig,
                                 PlannerConfig)
from civ_arena.ai.decision_telemetry import DecisionTelemetry
from civ_arena.ai.goap_planner import GoapPlanner
from civ_arena.ai.htn_planner import HtnPlanner
from civ_arena.ai.planning_strategy import DecisionStrategy
from civ_arena.ai.utility_scorer import UtilityScorer


class CooldownTracker:
  """Per-civilization decision cooldown, in turns, never below zero."""

  def __init__(self, config: Optional[CooldownConfig] = None):
    self.config = config or CooldownConfig()
    self._cooldowns: Dict[CivId, int] = {}

  def get(self, civ_id: CivId) -> int:
    return self._cooldowns.get(civ_id, 0)

  def set(self, civ_id: CivId, turns: int) -> None:
    self._cooldowns[civ_id] = max(0, turns)

  def tick(self, civ_id: CivId) -> bool:
    """Start-of-turn check for ``civ_id``.

    Decrements the cooldown and reports whether it was active before the
    decrement, in which case the civilization must not generate decisions.
    """
    remaining = self._cooldowns.get(civ_id, 0)
    if remaining > 0:
      self._cooldowns[civ_id] = remaining - 1
      return True
    return False

  def duration_for(self, action_count: int) -> int:
    config = self.config
    if action_count <= config.max_actions_no_cooldown:
      return 0
    if action_count <= config.max_actions_short_cooldown:
      return config.short_cooldown
    return config.long_cooldown

  def refresh(self, civ_id: CivId, action_count: int) -> int:
    duration = self.duration_for(action_count)
    self.set(civ_id, duration)
    return duration

  def remove(self, civ_id: CivId) -> None:
    self._cooldowns.pop(civ_id, None)

  def __contains__(self, civ_id: CivId) -> bool:
    return civ_id in self._cooldowns


def merge_decisions(actions: Iterable[AIAction],
                    limit: Optional[int] = None) -> List[AIAction]:
  """Deduplicate by ``dedup_key`` and rank by priority.

  Among duplicates the highest priority survives; on equal priority the
  first one seen wins. The result is stably sorted by priority, descending,
  and optionally truncated to ``limit`` entries.
  """
  best: Dict[Tuple[str, Hashable], AIAction] = {}
  order: List[Tuple[str, Hashable]] = []
  for action in actions:
    key = action.dedup_key()
    current = best.get(key)
    if current is None:
      best[key] = action
      order.append(key)
    elif action.priority > current.priority:
      best[key] = action
  merged = sorted((best[key] for key in order),
                  key=lambda action: action.priority, reverse=True)
  if limit is not None:
    merged = merged[:limit]
  return merged


def rank_score(action: AIAction, personality: CivPersonality,
               config: CoordinatorConfig) -> float:
  """How strongly ``personality`` favours the kind of ``action``."""
  if isinstance(action, Expand):
    return personality.land_hunger * config.priority_weight_expand
  elif isinstance(action, Research):
    return personality.tech_focus * config.priority_weight_research
  elif isinstance(action, BuildUnit):
    return personality.militarism * config.priority_weight_build_unit
  elif isinstance(action, BuildBuilding):
    return personality.industry_focus * config.priority_weight_build_building
  elif isinstance(action, Trade):
    return personality.industry_focus * config.priority_weight_trade
  elif isinstance(action, Attack):
    return (personality.militarism * personality.risk_tolerance
            * config.priority_weight_attack)
  elif isinstance(action, Diplomacy):
    return (1.0 - personality.isolationism) * config.priority_weight_diplomacy
  elif isinstance(action, Defend):
    return config.priority_base_defend
  elif isinstance(action, Explore):
    return personality.exploration_drive * config.priority_weight_explore
  raise TypeError(f"Unknown action variant: {type(action).__name__}")


def prioritize_decisions(actions: Sequence[AIAction],
                         personality: CivPersonality,
                         config: CoordinatorConfig) -> List[AIAction]:
  """Rank merged decisions by personality, then priority, and truncate.

  The sort is stable, so decisions with the same rank score and priority
  keep their merged order. At most ``config.max_decisions_per_turn``
  decisions survive.
  """
  ranked = sorted(
      actions,
      key=lambda action: (rank_score(action, personality, config),
                          action.priority),
      reverse=True,
  )
  return ranked[:config.max_decisions_per_turn]


class AICoordinator:
  """Runs every strategy for every AI civilization, once per turn."""

  def __init__(self, config: Optional[PlannerConfig] = None,
               strategies: Optional[Sequence[DecisionStrategy]] = None,
               telemetry: Optional[DecisionTelemetry] = None):
    """Initialize the coordinator.

    Args:
      config: Planner configuration, validated on construction
      strategies: Strategies in the order they are run; defaults to the
        utility scorer, the GOAP planner and the HTN planner
      telemetry: Optional collector of decision counters

    Raises:
      ValueError: If the configuration is invalid
    """
    self.config = config or PlannerConfig()
    self.config.validate()
    research = self.config.utility.research_candidates
    if strategies is None:
      strategies = (
          UtilityScorer(self.config.utility),
          GoapPlanner(self.config.goap, self.config.coordinator, research),
          HtnPlanner(self.config.htn, self.config.coordinator, research),
      )
    self.strategies: Tuple[DecisionStrategy, ...] = tuple(strategies)
    self.cooldowns = CooldownTracker(self.config.cooldown)
    self.telemetry = telemetry
    self.last_decisions: Dict[CivId, List[AIAction]] = {}

  def generate_turn_decisions(
      self, world: WorldState) -> Dict[CivId, List[AIAction]]:
    """Decisions for every eligible civilization of ``world``.

    Civilizations are visited in ascending id order. Player civilizations,
    civilizations on cooldown and civilizations with missing or malformed
    data are skipped, as are those with nothing to do.
    """
    decisions: Dict[CivId, List[AIAction]] = {}
    for civ_id in world.civ_ids():
      actions = self.decide_for_civ(world, civ_id)
      if actions:
        decisions[civ_id] = actions
    self.last_decisions = dict(decisions)
    if decisions:
      logging.info("Turn %d: decisions for %d civilizations", world.turn,
                   len(decisions))
    return decisions

  def decide_for_civ(self, world: WorldState,
                     civ_id: CivId) -> List[AIAction]:
    """Start-of-turn decision cycle for a single civilization.

    The cached decisions of ``civ_id`` are replaced by the result of this
    call, so a civilization that decides nothing has no cache entry.
    """
    self.last_decisions.pop(civ_id, None)
    if world.is_player(civ_id):
      return []
    if self.cooldowns.tick(civ_id):
      logging.debug("Turn %d: civ %s on cooldown, no new decisions",
                    world.turn, civ_id)
      if self.telemetry is not None:
        self.telemetry.record_cooldown_skip(civ_id)
      return []

    snapshot = build_snapshot(world, civ_id)
    if snapshot is None:
      return []

    actions = prioritize_decisions(
        merge_decisions(self._run_strategies(snapshot)),
        snapshot.personality,
        self.config.coordinator,
    )
    self.cooldowns.refresh(civ_id, len(actions))
    if actions:
      self.last_decisions[civ_id] = actions
      if self.telemetry is not None:
        self.telemetry.record_decisions(civ_id, world.turn, len(actions))
      for action in actions:
        logging.debug("Civ %s decided to %s (priority %.2f)", civ_id,
                      describe_action(action), action.priority)
    return actions

  def _run_strategies(self,
                      snapshot: CivilizationSnapshot) -> List[AIAction]:
    proposals: List[AIAction] = []
    for strategy in self.strategies:
      try:
        proposals.extend(strategy.propose(snapshot))
      except Exception as e:  # pylint: disable=broad-exception-caught
        logging.warning("Strategy %s failed for civ %s: %s", strategy.name,
                        snapshot.civ_id, e)
    return proposals

  def clear_cache(self) -> None:
    """Forget the decisions of the last cycle."""
    self.last_decisions.clear()

  def remove_civ(self, civ_id: CivId) -> None:
    self.cooldowns.remove(civ_id)
    self.last_decisions.pop(civ_id, None)
