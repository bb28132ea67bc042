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

"""Goal-oriented action planning (GOAP).

The planner abstracts a snapshot into a small numeric planning state, picks
strategic goals from the civilization's personality and searches, cheapest
first, for a sequence of abstract actions that reaches each goal. Only the
first step of every plan is emitted; the next turn plans again from the new
situation.

Example usage:
    >>> planner = GoapPlanner()
    >>> planner.select_goals(snapshot)
    [<StrategicGoal.BUILD_MILITARY: 'build_military'>]
    >>> plan = planner.plan(snapshot, StrategicGoal.BUILD_MILITARY)
    >>> [step.name for step in plan]
    ['build_military_unit']
"""

import enum
import heapq
import itertools
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from absl import logging

from civ_arena.ai.civ_actions import (AIAction, BuildBuilding, BuildingType,
                                      BuildUnit, Explore, Expand, Research,
                                      ResourceKind, Trade, UnitType)
from civ_arena.ai.civ_state import CivilizationSnapshot
from civ_arena.ai.config import CoordinatorConfig, GoapConfig, UtilityConfig
from civ_arena.ai.planning_strategy import (DecisionStrategy, clamp_priority,
                                            home_position, sort_by_priority)
from civ_arena.ai.utility_scorer import EXPLORE_OFFSETS

# Fixed-point scale of planning state values.
STATE_SCALE = 100


class StrategicGoal(str, enum.Enum):
  EXPAND_TERRITORY = "expand_territory"
  ADVANCE_TECHNOLOGY = "advance_technology"
  DEVELOP_ECONOMY = "develop_economy"
  BUILD_MILITARY = "build_military"
  EXPLORE_TERRITORY = "explore_territory"


class PlanningState:
  """Hashable map of named quantities, stored as scaled integers."""

  __slots__ = ("_values", "_key")

  def __init__(self, values: Optional[Mapping[str, int]] = None):
    self._values: Dict[str, int] = dict(values or {})
    self._key = tuple(sorted(self._values.items()))

  @classmethod
  def from_floats(cls, values: Mapping[str, float]) -> "PlanningState":
    return cls({key: int(value * STATE_SCALE)
                for key, value in values.items()})

  def get(self, key: str) -> float:
    return self._values.get(key, 0) / STATE_SCALE

  def with_deltas(self, deltas: Mapping[str, float]) -> "PlanningState":
    values = dict(self._values)
    for key, delta in deltas.items():
      values[key] = int((self.get(key) + delta) * STATE_SCALE)
    return PlanningState(values)

  def __eq__(self, other) -> bool:
    return isinstance(other, PlanningState) and self._key == other._key

  def __hash__(self) -> int:
    return hash(self._key)

  def __repr__(self) -> str:
    body = ", ".join(f"{k}={v / STATE_SCALE:g}" for k, v in self._key)
    return f"PlanningState({body})"


@dataclass(frozen=True)
class GoapAction:
  """Abstract planning step with ``>=`` preconditions and additive effects."""
  name: str
  cost: float
  preconditions: Tuple[Tuple[str, float], ...]
  effects: Tuple[Tuple[str, float], ...]

  def preconditions_met(self, state: PlanningState) -> bool:
    return all(state.get(key) >= required
               for key, required in self.preconditions)

  def apply(self, state: PlanningState, gold_cost_scale: float
           ) -> PlanningState:
    deltas = dict(self.effects)
    deltas["gold"] = deltas.get("gold", 0.0) - self.cost * gold_cost_scale
    return state.with_deltas(deltas)


GOAP_ACTIONS = (
    GoapAction("expand_territory", 2.0,
               (("has_capital", 1.0), ("gold", 10.0)),
               (("territory_count", 1.0),)),
    GoapAction("research_technology", 3.0,
               (("gold", 50.0),),
               (("technology_level", 1.0),)),
    GoapAction("build_military_unit", 2.5,
               (("gold", 30.0), ("city_count", 1.0)),
               (("military_strength", 10.0),)),
    GoapAction("establish_trade", 1.5,
               (("city_count", 1.0),),
               (("trade_routes", 1.0), ("income", 5.0))),
    GoapAction("build_economic_building", 2.0,
               (("gold", 25.0), ("city_count", 1.0)),
               (("income", 3.0),)),
    GoapAction("explore_territory", 1.0,
               (("has_capital", 1.0),),
               (("explored_tiles", 5.0),)),
)


def extract_state(snapshot: CivilizationSnapshot) -> PlanningState:
  """Abstract the quantities the planner reasons about."""
  return PlanningState.from_floats({
      "territory_count": len(snapshot.territories),
      "military_strength": snapshot.military_strength,
      "gold": snapshot.economy.gold,
      "income": snapshot.economy.income,
      "technology_level": len(snapshot.known_technologies),
      "city_count": len(snapshot.cities),
      "has_capital": 1.0 if snapshot.capital is not None else 0.0,
      "trade_routes": snapshot.economy.trade_routes,
      "explored_tiles": snapshot.explored_tiles,
  })


class GoapPlanner(DecisionStrategy):
  """Plans toward personality-driven goals and emits each plan's first step."""

  name = "goap"

  def __init__(self, config: Optional[GoapConfig] = None,
               coordinator_config: Optional[CoordinatorConfig] = None,
               research_candidates: Optional[Tuple[str, ...]] = None):
    self.config = config or GoapConfig()
    self.thresholds = coordinator_config or CoordinatorConfig()
    self.research_candidates = (research_candidates
                                or UtilityConfig().research_candidates)
    self.actions = GOAP_ACTIONS

  def select_goals(self, snapshot: CivilizationSnapshot
                  ) -> List[StrategicGoal]:
    personality = snapshot.personality
    thresholds = self.thresholds
    goals = []
    if personality.militarism > thresholds.personality_threshold_moderate:
      goals.append(StrategicGoal.BUILD_MILITARY)
    if personality.industry_focus > thresholds.personality_threshold_high:
      goals.append(StrategicGoal.DEVELOP_ECONOMY)
    if (personality.exploration_drive
        > thresholds.exploration_personality_threshold
        and snapshot.turn < thresholds.early_game_exploration_turn_limit):
      goals.append(StrategicGoal.EXPLORE_TERRITORY)
    if personality.land_hunger > thresholds.personality_threshold_high:
      goals.append(StrategicGoal.EXPAND_TERRITORY)
    if personality.tech_focus > thresholds.personality_threshold_high:
      goals.append(StrategicGoal.ADVANCE_TECHNOLOGY)
    return goals

  def goal_targets(self, goal: StrategicGoal,
                   state: PlanningState) -> Dict[str, float]:
    """Minimum values the planning state must reach to satisfy ``goal``."""
    config = self.config
    if goal is StrategicGoal.EXPAND_TERRITORY:
      return {"territory_count": state.get("territory_count")
                                 + config.territory_expansion_target}
    elif goal is StrategicGoal.ADVANCE_TECHNOLOGY:
      return {"technology_level": state.get("technology_level")
                                  + config.technology_advancement_target}
    elif goal is StrategicGoal.DEVELOP_ECONOMY:
      return {
          "income": state.get("income") * config.income_multiplier,
          "trade_routes": state.get("trade_routes")
                          + config.trade_routes_target,
      }
    elif goal is StrategicGoal.BUILD_MILITARY:
      return {"military_strength": state.get("military_strength")
                                   * config.military_multiplier}
    elif goal is StrategicGoal.EXPLORE_TERRITORY:
      return {"explored_tiles": state.get("explored_tiles")
                                + config.exploration_target}
    raise TypeError(f"Unknown goal: {goal!r}")

  def search(self, start: PlanningState,
             targets: Mapping[str, float]) -> Optional[List[GoapAction]]:
    """Uniform-cost search from ``start`` to a state meeting ``targets``.

    Returns:
      The cheapest plan found, an empty list when ``start`` already meets
      the targets, or None when no plan exists within the search bounds
    """
    def satisfied(state: PlanningState) -> bool:
      return all(state.get(key) >= value for key, value in targets.items())

    counter = itertools.count()
    frontier = [(0.0, next(counter), 0, start)]
    best_cost = {start: 0.0}
    came_from: Dict[PlanningState, Tuple[PlanningState, GoapAction]] = {}
    closed = set()
    iterations = 0

    while frontier:
      iterations += 1
      if iterations > self.config.max_iterations:
        logging.debug("GOAP search hit the iteration cap (%d)",
                      self.config.max_iterations)
        break
      cost, _, depth, state = heapq.heappop(frontier)
      if state in closed:
        continue
      if satisfied(state):
        return self._reconstruct(came_from, state)
      closed.add(state)
      if depth >= self.config.max_planning_depth:
        continue

      for action in self.actions:
        if not action.preconditions_met(state):
          continue
        successor = action.apply(state, self.config.gold_cost_scale)
        if successor in closed:
          continue
        new_cost = cost + action.cost
        if new_cost < best_cost.get(successor, float("inf")):
          best_cost[successor] = new_cost
          came_from[successor] = (state, action)
          heapq.heappush(frontier, (new_cost, next(counter), depth + 1,
                                    successor))
    return None

  @staticmethod
  def _reconstruct(came_from, state: PlanningState) -> List[GoapAction]:
    plan = []
    while state in came_from:
      state, action = came_from[state]
      plan.append(action)
    plan.reverse()
    return plan

  def plan(self, snapshot: CivilizationSnapshot,
           goal: StrategicGoal) -> Optional[List[GoapAction]]:
    start = extract_state(snapshot)
    return self.search(start, self.goal_targets(goal, start))

  def propose(self, snapshot: CivilizationSnapshot) -> List[AIAction]:
    actions = []
    for goal in self.select_goals(snapshot):
      plan = self.plan(snapshot, goal)
      if not plan:
        logging.debug("Civ %s: no GOAP step toward %s", snapshot.civ_id,
                      goal.value)
        continue
      action = self.to_ai_action(plan[0], snapshot)
      if action is not None:
        actions.append(action)
    return sort_by_priority(actions)

  def to_ai_action(self, step: GoapAction,
                   snapshot: CivilizationSnapshot) -> Optional[AIAction]:
    """Concrete action for an abstract planning step."""
    priority = clamp_priority(1.0 - step.cost / 10.0)
    base = home_position(snapshot)
    if step.name == "research_technology":
      for technology in self.research_candidates:
        if technology not in snapshot.known_technologies:
          return Research(technology=technology, priority=priority)
      return None
    if step.name == "establish_trade":
      if not snapshot.rivals:
        return None
      return Trade(partner=snapshot.rivals[0].civ_id,
                   resource=ResourceKind.GOLD, priority=priority)
    if base is None:
      return None
    if step.name == "expand_territory":
      return Expand(target_position=base.offset(1, 0), priority=priority)
    elif step.name == "build_military_unit":
      return BuildUnit(unit_type=UnitType.INFANTRY, position=base,
                       priority=priority)
    elif step.name == "build_economic_building":
      return BuildBuilding(building_type=BuildingType.MARKET, position=base,
                           priority=priority)
    elif step.name == "explore_territory":
      dx, dy = EXPLORE_OFFSETS[snapshot.turn % len(EXPLORE_OFFSETS)]
      return Explore(target_position=base.offset(dx, dy), priority=priority)
    raise TypeError(f"Unknown planning step: {step.name}")
