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

"""Hierarchical task network (HTN) planning for multi-turn strategies.

High-level tasks are decomposed through a fixed network of methods. The
first method whose preconditions hold is used; its subtasks are either
primitive actions, turned directly into ``AIAction`` values with fixed
priorities, or further compound tasks.

Example usage:
    >>> planner = HtnPlanner()
    >>> planner.select_tasks(snapshot)
    [<HtnTask.GROW_EMPIRE: 'grow_empire'>]
    >>> planner.decompose(snapshot, HtnTask.GROW_EMPIRE)
    [Expand(...), BuildUnit(...), Research(...), Explore(...)]
"""

import enum
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple, Union

from absl import logging

from civ_arena.ai.civ_actions import (AIAction, Attack, BuildBuilding,
                                      BuildingType, BuildUnit, Defend,
                                      Diplomacy, DiplomaticAction, Explore,
                                      Expand, Research, ResourceKind, Trade,
                                      UnitType)
from civ_arena.ai.civ_state import CivilizationSnapshot
from civ_arena.ai.config import CoordinatorConfig, HtnConfig, UtilityConfig
from civ_arena.ai.planning_strategy import (DecisionStrategy, home_position,
                                            sort_by_priority)
from civ_arena.ai.utility_scorer import EXPLORE_OFFSETS


class HtnTask(str, enum.Enum):
  CONQUEST_CAMPAIGN = "conquest_campaign"
  DIPLOMATIC_CAMPAIGN = "diplomatic_campaign"
  ECONOMIC_DEVELOPMENT = "economic_development"
  TECHNOLOGICAL_ADVANCEMENT = "technological_advancement"
  DEFENSIVE_PREPARATION = "defensive_preparation"
  GROW_EMPIRE = "grow_empire"


class Primitive(str, enum.Enum):
  BUILD_ARMY = "build_army"
  EXPAND_TERRITORY = "expand_territory"
  RESEARCH_TECHNOLOGY = "research_technology"
  ESTABLISH_TRADE = "establish_trade"
  BUILD_INFRASTRUCTURE = "build_infrastructure"
  FORM_ALLIANCE = "form_alliance"
  DECLARE_WAR = "declare_war"
  DEFEND_TERRITORY = "defend_territory"
  EXPLORE = "explore"


class ConditionKind(enum.Enum):
  HAS_GOLD = "has_gold"
  HAS_MILITARY_STRENGTH = "has_military_strength"
  HAS_CITIES = "has_cities"
  HAS_CAPITAL = "has_capital"
  HAS_TECHNOLOGY = "has_technology"
  HAS_ENEMIES = "has_enemies"
  HAS_ALLIES = "has_allies"
  TURN_GREATER_THAN = "turn_greater_than"


@dataclass(frozen=True)
class TaskCondition:
  kind: ConditionKind
  value: Union[float, str, None] = None


@dataclass(frozen=True)
class HtnMethod:
  """One way of accomplishing a task."""
  name: str
  preconditions: Tuple[TaskCondition, ...]
  subtasks: Tuple[Union[Primitive, HtnTask], ...]


def _when(kind: ConditionKind, value=None) -> TaskCondition:
  return TaskCondition(kind, value)


TASK_NETWORKS: Dict[HtnTask, Tuple[HtnMethod, ...]] = {
    HtnTask.CONQUEST_CAMPAIGN: (
        HtnMethod(
            "aggressive_conquest",
            (_when(ConditionKind.HAS_MILITARY_STRENGTH, 50.0),
             _when(ConditionKind.HAS_GOLD, 100.0)),
            (Primitive.BUILD_ARMY, Primitive.RESEARCH_TECHNOLOGY,
             Primitive.DECLARE_WAR),
        ),
        HtnMethod(
            "preparation_phase",
            (_when(ConditionKind.HAS_CITIES, 1),),
            (Primitive.BUILD_ARMY, Primitive.BUILD_INFRASTRUCTURE,
             HtnTask.ECONOMIC_DEVELOPMENT),
        ),
    ),
    HtnTask.DIPLOMATIC_CAMPAIGN: (
        HtnMethod(
            "alliance_building",
            (_when(ConditionKind.TURN_GREATER_THAN, 10),),
            (Primitive.ESTABLISH_TRADE, Primitive.FORM_ALLIANCE),
        ),
    ),
    HtnTask.ECONOMIC_DEVELOPMENT: (
        HtnMethod(
            "infrastructure_focus",
            (_when(ConditionKind.HAS_CITIES, 1),),
            (Primitive.BUILD_INFRASTRUCTURE, Primitive.ESTABLISH_TRADE,
             Primitive.EXPAND_TERRITORY),
        ),
    ),
    HtnTask.TECHNOLOGICAL_ADVANCEMENT: (
        HtnMethod(
            "research_focus",
            (_when(ConditionKind.HAS_GOLD, 50.0),),
            (Primitive.RESEARCH_TECHNOLOGY, Primitive.BUILD_INFRASTRUCTURE),
        ),
    ),
    HtnTask.DEFENSIVE_PREPARATION: (
        HtnMethod(
            "defensive_buildup",
            (_when(ConditionKind.HAS_ENEMIES),),
            (Primitive.BUILD_ARMY, Primitive.DEFEND_TERRITORY,
             Primitive.FORM_ALLIANCE),
        ),
    ),
    HtnTask.GROW_EMPIRE: (
        HtnMethod(
            "steady_growth",
            (_when(ConditionKind.HAS_CAPITAL),),
            (Primitive.EXPAND_TERRITORY, Primitive.BUILD_ARMY,
             Primitive.RESEARCH_TECHNOLOGY, Primitive.EXPLORE),
        ),
    ),
}


class HtnPlanner(DecisionStrategy):
  """Decomposes personality-selected tasks into concrete actions."""

  name = "htn"

  def __init__(self, config: Optional[HtnConfig] = None,
               coordinator_config: Optional[CoordinatorConfig] = None,
               research_candidates: Optional[Tuple[str, ...]] = None):
    self.config = config or HtnConfig()
    self.thresholds = coordinator_config or CoordinatorConfig()
    self.research_candidates = (research_candidates
                                or UtilityConfig().research_candidates)
    self.networks = TASK_NETWORKS

  def has_enemies(self, snapshot: CivilizationSnapshot) -> bool:
    return any(
        relation.at_war
        or relation.relation_value < self.config.hostility_threshold
        for relation in snapshot.relations
    )

  def select_tasks(self, snapshot: CivilizationSnapshot) -> List[HtnTask]:
    personality = snapshot.personality
    thresholds = self.thresholds
    tasks = []
    if personality.interventionism > thresholds.personality_threshold_moderate:
      tasks.append(HtnTask.DIPLOMATIC_CAMPAIGN)
    if (personality.land_hunger > thresholds.land_hunger_conquest_threshold
        and personality.militarism
        > thresholds.personality_threshold_moderate):
      tasks.append(HtnTask.CONQUEST_CAMPAIGN)
    if personality.industry_focus > thresholds.industry_focus_economy_threshold:
      tasks.append(HtnTask.ECONOMIC_DEVELOPMENT)
    if personality.tech_focus > thresholds.personality_threshold_high:
      tasks.append(HtnTask.TECHNOLOGICAL_ADVANCEMENT)
    if self.has_enemies(snapshot):
      tasks.append(HtnTask.DEFENSIVE_PREPARATION)
    if (personality.land_hunger > thresholds.personality_threshold_moderate
        or personality.exploration_drive
        > thresholds.exploration_personality_threshold):
      tasks.append(HtnTask.GROW_EMPIRE)
    return tasks

  def condition_holds(self, condition: TaskCondition,
                      snapshot: CivilizationSnapshot) -> bool:
    kind = condition.kind
    if kind is ConditionKind.HAS_GOLD:
      return snapshot.economy.gold >= condition.value
    elif kind is ConditionKind.HAS_MILITARY_STRENGTH:
      return snapshot.military_strength >= condition.value
    elif kind is ConditionKind.HAS_CITIES:
      return len(snapshot.cities) >= condition.value
    elif kind is ConditionKind.HAS_CAPITAL:
      return snapshot.capital is not None
    elif kind is ConditionKind.HAS_TECHNOLOGY:
      return condition.value in snapshot.known_technologies
    elif kind is ConditionKind.HAS_ENEMIES:
      return self.has_enemies(snapshot)
    elif kind is ConditionKind.HAS_ALLIES:
      return any(r.has_treaty("alliance") for r in snapshot.relations)
    elif kind is ConditionKind.TURN_GREATER_THAN:
      return snapshot.turn > condition.value
    raise TypeError(f"Unknown task condition: {kind!r}")

  def decompose(self, snapshot: CivilizationSnapshot, task: HtnTask,
                depth: int = 0) -> Optional[List[AIAction]]:
    """Actions for ``task`` via its first applicable method, or None."""
    if depth >= self.config.max_decomposition_depth:
      logging.warning("HTN decomposition of %s exceeded depth %d",
                      task.value, self.config.max_decomposition_depth)
      return None
    for method in self.networks.get(task, ()):
      if not all(self.condition_holds(c, snapshot)
                 for c in method.preconditions):
        continue
      actions = []
      for subtask in method.subtasks:
        if isinstance(subtask, HtnTask):
          actions.extend(self.decompose(snapshot, subtask, depth + 1) or [])
        else:
          action = self.primitive_action(subtask, snapshot)
          if action is not None:
            actions.append(action)
      return actions or None
    return None

  def propose(self, snapshot: CivilizationSnapshot) -> List[AIAction]:
    actions = []
    for task in self.select_tasks(snapshot):
      plan = self.decompose(snapshot, task)
      if plan:
        actions.extend(plan)
      else:
        logging.debug("Civ %s: no HTN method applies to %s", snapshot.civ_id,
                      task.value)
    return sort_by_priority(actions)

  def primitive_action(self, primitive: Primitive,
                       snapshot: CivilizationSnapshot) -> Optional[AIAction]:
    """Concrete action for a primitive subtask, or None without a target."""
    config = self.config
    if primitive is Primitive.RESEARCH_TECHNOLOGY:
      for technology in self.research_candidates:
        if technology not in snapshot.known_technologies:
          return Research(technology=technology,
                          priority=config.research_tech_priority)
      return None
    elif primitive is Primitive.ESTABLISH_TRADE:
      if not snapshot.rivals:
        return None
      return Trade(partner=snapshot.rivals[0].civ_id,
                   resource=ResourceKind.GOLD, priority=config.trade_priority)
    elif primitive is Primitive.FORM_ALLIANCE:
      return self._form_alliance(snapshot)
    elif primitive is Primitive.DECLARE_WAR:
      return self._declare_war(snapshot)

    base = home_position(snapshot)
    if base is None:
      return None
    if primitive is Primitive.BUILD_ARMY:
      return BuildUnit(unit_type=UnitType.INFANTRY, position=base,
                       priority=config.build_unit_priority)
    elif primitive is Primitive.EXPAND_TERRITORY:
      target = snapshot.free_tiles[0] if snapshot.free_tiles else base.offset(
          1, 0)
      return Expand(target_position=target,
                    priority=config.establish_city_priority)
    elif primitive is Primitive.BUILD_INFRASTRUCTURE:
      return BuildBuilding(building_type=BuildingType.WORKSHOP, position=base,
                           priority=config.infrastructure_priority)
    elif primitive is Primitive.DEFEND_TERRITORY:
      return Defend(position=base, priority=config.defend_priority)
    elif primitive is Primitive.EXPLORE:
      dx, dy = EXPLORE_OFFSETS[snapshot.turn % len(EXPLORE_OFFSETS)]
      return Explore(target_position=base.offset(dx, dy),
                     priority=config.explore_priority)
    raise TypeError(f"Unknown primitive: {primitive!r}")

  def _form_alliance(self, snapshot: CivilizationSnapshot
                    ) -> Optional[AIAction]:
    best_candidate = None
    best_relation = self.config.initial_worst_relation
    for relation in snapshot.relations:
      if relation.at_war or relation.has_treaty("alliance"):
        continue
      if (relation.relation_value > best_relation
          and relation.relation_value > self.config.alliance_threshold):
        best_relation = relation.relation_value
        best_candidate = relation.other_civ
    if best_candidate is None:
      return None
    return Diplomacy(target=best_candidate,
                     action=DiplomaticAction.PROPOSE_ALLIANCE,
                     priority=self.config.diplomacy_priority)

  def _declare_war(self, snapshot: CivilizationSnapshot
                  ) -> Optional[AIAction]:
    limit = snapshot.military_strength * self.config.strength_weakness_threshold
    weakest = None
    for rival in snapshot.rivals:
      if rival.capital is None or rival.military_strength >= limit:
        continue
      if weakest is None or rival.military_strength < weakest.military_strength:
        weakest = rival
    if weakest is None:
      return None
    return Attack(target=weakest.civ_id, target_position=weakest.capital,
                  priority=self.config.military_action_priority)
