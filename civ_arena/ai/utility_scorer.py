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

"""Utility scoring strategy for immediate decisions.

Each consideration scores one kind of move from the civilization's
personality and situation. Scores are clamped to [0, 1]; considerations
scoring under the threshold are dropped and the rest become actions whose
priority is their score.

Example usage:
    >>> scorer = UtilityScorer()
    >>> scorer.evaluate(snapshot)
    {'expand': 0.25, 'research': 0.5, ...}
    >>> actions = scorer.propose(snapshot)
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from absl import logging

from civ_arena.ai.civ_actions import (AIAction, BuildBuilding, BuildingType,
                                      BuildUnit, Explore, Expand, Research,
                                      ResourceKind, Trade, UnitType)
from civ_arena.ai.civ_state import CivilizationSnapshot
from civ_arena.ai.config import UtilityConfig
from civ_arena.ai.planning_strategy import (DecisionStrategy, clamp_priority,
                                            home_position, sort_by_priority)

# Exploration targets relative to the capital, cycled by turn number.
EXPLORE_OFFSETS = ((5, 0), (-5, 0), (0, 5), (0, -5), (3, 3), (-3, 3))


@dataclass(frozen=True)
class Consideration:
  """A named scoring function paired with the action it recommends."""
  name: str
  score: Callable[[CivilizationSnapshot], float]
  create_action: Callable[[CivilizationSnapshot, float], Optional[AIAction]]


class UtilityScorer(DecisionStrategy):
  """Scores a fixed set of considerations against a snapshot."""

  name = "utility"

  def __init__(self, config: Optional[UtilityConfig] = None):
    self.config = config or UtilityConfig()
    self.considerations = (
        Consideration("expand", self._score_expand, self._expand_action),
        Consideration("research", self._score_research, self._research_action),
        Consideration("build_military", self._score_military,
                      self._military_action),
        Consideration("develop_economy", self._score_economy,
                      self._economy_action),
        Consideration("establish_trade", self._score_trade,
                      self._trade_action),
        Consideration("explore", self._score_explore, self._explore_action),
    )

  def evaluate(self, snapshot: CivilizationSnapshot) -> Dict[str, float]:
    """Clamped score of every consideration, keyed by name."""
    return {
        consideration.name: clamp_priority(consideration.score(snapshot))
        for consideration in self.considerations
    }

  def propose(self, snapshot: CivilizationSnapshot) -> List[AIAction]:
    actions = []
    for consideration in self.considerations:
      score = clamp_priority(consideration.score(snapshot))
      if score < self.config.consideration_threshold:
        continue
      action = consideration.create_action(snapshot, score)
      if action is None:
        logging.debug("Civ %s: %s scored %.2f but has no target",
                      snapshot.civ_id, consideration.name, score)
        continue
      actions.append(action)
    return sort_by_priority(actions)

  # Expansion

  def _score_expand(self, snapshot: CivilizationSnapshot) -> float:
    available = len(snapshot.free_tiles)
    return snapshot.personality.land_hunger * min(
        available / self.config.max_expansion_factor, 1.0)

  def _expand_action(self, snapshot: CivilizationSnapshot,
                     score: float) -> Optional[AIAction]:
    if not snapshot.free_tiles:
      return None
    return Expand(target_position=snapshot.free_tiles[0], priority=score)

  # Research

  def _score_research(self, snapshot: CivilizationSnapshot) -> float:
    capacity = min(snapshot.economy.gold / self.config.gold_to_research_divisor,
                   1.0)
    return snapshot.personality.tech_focus * max(capacity, 0.0)

  def _research_action(self, snapshot: CivilizationSnapshot,
                       score: float) -> Optional[AIAction]:
    for technology in self.config.research_candidates:
      if technology not in snapshot.known_technologies:
        return Research(technology=technology, priority=score)
    return None

  # Military

  def threat_factor(self, snapshot: CivilizationSnapshot) -> float:
    """Nearby rival strength relative to our own, capped."""
    origin = home_position(snapshot)
    if origin is None:
      return 0.0
    nearby = 0.0
    for rival in snapshot.rivals:
      if rival.capital is None:
        continue
      distance = origin.distance_to(rival.capital)
      if distance < self.config.proximity_threshold:
        nearby += rival.military_strength / (distance + 1.0)
    return min(nearby / (snapshot.military_strength + 1.0),
               self.config.threat_factor_max)

  def _score_military(self, snapshot: CivilizationSnapshot) -> float:
    base = self.config.base_militarism_weight
    return snapshot.personality.militarism * (
        base + self.threat_factor(snapshot) * (1.0 - base))

  def _military_action(self, snapshot: CivilizationSnapshot,
                       score: float) -> Optional[AIAction]:
    position = home_position(snapshot)
    if position is None:
      return None
    if len(snapshot.units) < self.config.initial_unit_count_threshold:
      unit_type = UnitType.INFANTRY
    else:
      unit_type = UnitType.ARCHER
    return BuildUnit(unit_type=unit_type, position=position, priority=score)

  # Economy

  def _score_economy(self, snapshot: CivilizationSnapshot) -> float:
    economy = snapshot.economy
    if economy.income > 0.0:
      pressure = min(economy.expenses / economy.income,
                     self.config.economic_pressure_max)
    else:
      pressure = self.config.economic_pressure_max
    return snapshot.personality.industry_focus * (
        self.config.economic_pressure_base_weight
        + pressure * self.config.economic_pressure_variable_weight)

  def _economy_action(self, snapshot: CivilizationSnapshot,
                      score: float) -> Optional[AIAction]:
    position = home_position(snapshot)
    if position is None:
      return None
    if snapshot.has_building(BuildingType.MARKET.value):
      building = BuildingType.WORKSHOP
    else:
      building = BuildingType.MARKET
    return BuildBuilding(building_type=building, position=position,
                         priority=score)

  # Trade

  def _score_trade(self, snapshot: CivilizationSnapshot) -> float:
    if not snapshot.rivals:
      return 0.0
    saturation = min(snapshot.economy.trade_routes
                     / self.config.trade_route_saturation_divisor, 1.0)
    return (snapshot.personality.industry_focus * (1.0 - saturation)
            * self.config.trade_utility_multiplier)

  def _trade_action(self, snapshot: CivilizationSnapshot,
                    score: float) -> Optional[AIAction]:
    origin = home_position(snapshot)
    if origin is None:
      return None
    best_partner = None
    best_distance = float("inf")
    for rival in snapshot.rivals:
      if rival.capital is None:
        continue
      distance = origin.distance_to(rival.capital)
      if distance < best_distance and distance < self.config.max_trade_distance:
        best_distance = distance
        best_partner = rival.civ_id
    if best_partner is None:
      return None
    return Trade(partner=best_partner, resource=ResourceKind.GOLD,
                 priority=score)

  # Exploration

  def _score_explore(self, snapshot: CivilizationSnapshot) -> float:
    config = self.config
    if snapshot.turn < config.early_game_turn_threshold:
      phase = config.early_game_exploration_multiplier
    elif snapshot.turn < config.mid_game_turn_threshold:
      phase = config.mid_game_exploration_multiplier
    else:
      phase = config.late_game_exploration_multiplier

    territories = len(snapshot.territories)
    if territories < config.few_territories_threshold:
      territory = config.few_territories_multiplier
    elif territories < config.moderate_territories_threshold:
      territory = config.moderate_territories_multiplier
    else:
      territory = config.many_territories_multiplier
    return snapshot.personality.exploration_drive * phase * territory

  def _explore_action(self, snapshot: CivilizationSnapshot,
                      score: float) -> Optional[AIAction]:
    origin = home_position(snapshot)
    if origin is None:
      return None
    dx, dy = EXPLORE_OFFSETS[snapshot.turn % len(EXPLORE_OFFSETS)]
    return Explore(target_position=origin.offset(dx, dy), priority=score)
