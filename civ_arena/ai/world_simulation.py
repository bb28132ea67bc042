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

"""Minimal world layer: per-turn world views and action execution.

``WorldSimulation`` keeps just enough mutable state to close the decision
loop. It assembles the read-only ``WorldState`` handed to the coordinator
and implements the ``ActionExecutor`` protocol, raising
``ActionExecutionError`` whenever an action cannot be carried out.

Example usage:
    >>> world = WorldSimulation(width=30, height=20)
    >>> world.add_civilization(CivId(1), "Rome", Position(x=5, y=5))
    >>> world.add_civilization(CivId(2), "Carthage", Position(x=20, y=10))
    >>> view = world.world_state()
    >>> world.execute(CivId(1), Research(technology="Writing", priority=0.6))
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from absl import logging

from civ_arena.ai.civ_actions import (UNIT_BASE_STRENGTH, AIAction,
                                      ActionExecutionError, Attack,
                                      BuildBuilding, BuildUnit, Defend,
                                      Diplomacy, ExecutionFailure, Explore,
                                      Expand, Research, Trade)
from civ_arena.ai.civ_state import (CivId, CivPersonality, Position,
                                    WorldState)
from civ_arena.ai.diplomacy import DiplomacyRegistry, TreatyKind

RESEARCH_COST = 50.0
UNIT_COST = 30.0
BUILDING_COST = 25.0
TRADE_INCOME_BONUS = 5.0
EXPLORE_REVEAL = 5
DEFENSIVE_POSITIONING_DISTANCE = 5.0

_NEIGHBOR_OFFSETS = ((1, 0), (-1, 0), (0, 1), (0, -1),
                     (1, 1), (1, -1), (-1, 1), (-1, -1))


@dataclass
class CityState:
  name: str
  position: Position
  buildings: List[str] = field(default_factory=list)


@dataclass
class UnitState:
  unit_type: str
  position: Position
  strength: float = 10.0


@dataclass
class CivilizationState:
  """Mutable state of one civilization, owned by the simulation."""
  civ_id: CivId
  name: str
  personality: CivPersonality = field(default_factory=CivPersonality)
  capital: Optional[Position] = None
  gold: float = 100.0
  income: float = 10.0
  expenses: float = 5.0
  production: float = 8.0
  research_rate: float = 0.0
  trade_partners: List[CivId] = field(default_factory=list)
  cities: List[CityState] = field(default_factory=list)
  territories: List[Position] = field(default_factory=list)
  units: List[UnitState] = field(default_factory=list)
  technologies: Set[str] = field(default_factory=set)
  explored_tiles: int = 0
  is_player: bool = False

  @property
  def military_strength(self) -> float:
    return sum(unit.strength for unit in self.units)


def _fail(kind: ExecutionFailure, message: str) -> ActionExecutionError:
  return ActionExecutionError(kind, message)


class WorldSimulation:
  """Reference world collaborator for the decision core."""

  def __init__(self, width: int = 40, height: int = 25,
               diplomacy: Optional[DiplomacyRegistry] = None,
               turn: int = 1):
    self.width = width
    self.height = height
    self.diplomacy = diplomacy or DiplomacyRegistry()
    self.turn = turn
    self.civilizations: Dict[CivId, CivilizationState] = {}
    self._owners: Dict[Position, CivId] = {}

  # World construction

  def add_civilization(self, civ_id: CivId, name: str,
                       capital: Optional[Position] = None,
                       personality: Optional[CivPersonality] = None,
                       is_player: bool = False,
                       **economy: Any) -> CivilizationState:
    """Found a civilization, with a capital city when ``capital`` is given.

    Raises:
      ValueError: If the id is taken or the capital tile is unusable
    """
    if civ_id in self.civilizations:
      raise ValueError(f"Civilization {civ_id} already exists")
    civ = CivilizationState(civ_id=civ_id, name=name,
                            personality=personality or CivPersonality(),
                            is_player=is_player, **economy)
    if capital is not None:
      if not self.in_bounds(capital) or capital in self._owners:
        raise ValueError(f"Cannot found a capital at {capital}")
      civ.capital = capital
      civ.cities.append(CityState(name=name, position=capital))
      self._claim(civ, capital)
    self.civilizations[civ_id] = civ
    self.diplomacy.ensure_pairs(self.civilizations)
    return civ

  def remove_civilization(self, civ_id: CivId) -> None:
    civ = self.civilizations.pop(civ_id, None)
    if civ is None:
      return
    for tile in civ.territories:
      self._owners.pop(tile, None)
    for other in self.civilizations.values():
      if civ_id in other.trade_partners:
        other.trade_partners.remove(civ_id)
    self.diplomacy.remove_civ(civ_id)

  def in_bounds(self, position: Position) -> bool:
    return 0 <= position.x < self.width and 0 <= position.y < self.height

  def owner_of(self, position: Position) -> Optional[CivId]:
    return self._owners.get(position)

  def _claim(self, civ: CivilizationState, position: Position) -> None:
    self._owners[position] = civ.civ_id
    civ.territories.append(position)

  def free_tiles_near(self, civ: CivilizationState) -> List[Position]:
    """Unowned, in-bounds tiles adjacent to the capital."""
    if civ.capital is None:
      return []
    tiles = []
    for dx, dy in _NEIGHBOR_OFFSETS:
      x, y = civ.capital.x + dx, civ.capital.y + dy
      if 0 <= x < self.width and 0 <= y < self.height:
        tile = Position(x=x, y=y)
        if tile not in self._owners:
          tiles.append(tile)
    return tiles

  # Views

  def personalities(self) -> Dict[CivId, CivPersonality]:
    return {civ_id: civ.personality
            for civ_id, civ in self.civilizations.items()}

  def military_strengths(self) -> Dict[CivId, float]:
    return {civ_id: civ.military_strength
            for civ_id, civ in self.civilizations.items()}

  def civ_record(self, civ_id: CivId) -> Dict[str, Any]:
    """Raw snapshot fields of one civilization."""
    civ = self.civilizations[civ_id]
    return {
        "civ_id": civ_id,
        "name": civ.name,
        "turn": self.turn,
        "personality": civ.personality,
        "economy": {
            "gold": civ.gold,
            "income": civ.income,
            "expenses": civ.expenses,
            "production": civ.production,
            "research_rate": civ.research_rate,
            "trade_routes": len(civ.trade_partners),
        },
        "capital": civ.capital,
        "cities": [
            {"name": city.name, "position": city.position,
             "buildings": tuple(city.buildings)}
            for city in civ.cities
        ],
        "territories": tuple(civ.territories),
        "units": [
            {"unit_type": unit.unit_type, "position": unit.position,
             "strength": unit.strength}
            for unit in civ.units
        ],
        "known_technologies": frozenset(civ.technologies),
        "explored_tiles": civ.explored_tiles,
        "free_tiles": tuple(self.free_tiles_near(civ)),
        "relations": self.diplomacy.views_for(civ_id),
        "rivals": [
            {"civ_id": other.civ_id, "capital": other.capital,
             "military_strength": other.military_strength}
            for other_id, other in sorted(self.civilizations.items())
            if other_id != civ_id
        ],
    }

  def world_state(self) -> WorldState:
    """Read-only per-turn view for the coordinator."""
    return WorldState(
        turn=self.turn,
        civilizations={civ_id: self.civ_record(civ_id)
                       for civ_id in sorted(self.civilizations)},
        player_civs=frozenset(civ_id for civ_id, civ
                              in self.civilizations.items()
                              if civ.is_player),
    )

  # Turn upkeep

  def collect_income(self) -> None:
    for civ in self.civilizations.values():
      civ.gold = max(0.0, civ.gold + civ.income - civ.expenses)

  def end_round(self) -> None:
    """Economy and diplomacy upkeep once every civilization has played."""
    self.collect_income()
    self.diplomacy.end_of_round(self.personalities(), self.turn)
    self.turn += 1

  # Execution

  def execute(self, civ_id: CivId, action: AIAction) -> None:
    """Carry out ``action`` for ``civ_id``.

    Raises:
      ActionExecutionError: If the action cannot be carried out
      TypeError: If ``action`` is not an ``AIAction`` variant
    """
    civ = self.civilizations.get(civ_id)
    if civ is None:
      raise _fail(ExecutionFailure.TECHNICAL_FAILURE,
                  f"civilization {civ_id} not found")
    if isinstance(action, Expand):
      self._expand(civ, action)
    elif isinstance(action, Research):
      self._research(civ, action)
    elif isinstance(action, BuildUnit):
      self._build_unit(civ, action)
    elif isinstance(action, BuildBuilding):
      self._build_building(civ, action)
    elif isinstance(action, Trade):
      self._trade(civ, action)
    elif isinstance(action, Attack):
      self._attack(civ, action)
    elif isinstance(action, Diplomacy):
      self._diplomacy(civ, action)
    elif isinstance(action, Defend):
      self._defend(civ, action)
    elif isinstance(action, Explore):
      self._explore(civ, action)
    else:
      raise TypeError(f"Unknown action variant: {type(action).__name__}")

  def _spend(self, civ: CivilizationState, cost: float, what: str) -> None:
    if civ.gold < cost:
      raise _fail(ExecutionFailure.INSUFFICIENT_RESOURCES,
                  f"{what} costs {cost:.0f} gold, {civ.gold:.0f} available")
    civ.gold -= cost

  def _expand(self, civ: CivilizationState, action: Expand) -> None:
    target = action.target_position
    if not self.in_bounds(target):
      raise _fail(ExecutionFailure.INVALID_TARGET, f"{target} is off the map")
    if target in self._owners:
      raise _fail(ExecutionFailure.TILE_OCCUPIED,
                  f"{target} belongs to civ {self._owners[target]}")
    if not any(max(abs(tile.x - target.x), abs(tile.y - target.y)) <= 1
               for tile in civ.territories):
      raise _fail(ExecutionFailure.INVALID_TARGET,
                  f"{target} does not border civ {civ.civ_id}")
    self._claim(civ, target)
    logging.debug("Civ %s claimed %s", civ.civ_id, target)

  def _research(self, civ: CivilizationState, action: Research) -> None:
    if action.technology in civ.technologies:
      raise _fail(ExecutionFailure.INVALID_TARGET,
                  f"{action.technology} is already known")
    self._spend(civ, RESEARCH_COST, f"researching {action.technology}")
    civ.technologies.add(action.technology)

  def _build_unit(self, civ: CivilizationState, action: BuildUnit) -> None:
    if action.position not in civ.territories:
      raise _fail(ExecutionFailure.INVALID_TARGET,
                  f"{action.position} is outside civ {civ.civ_id}")
    self._spend(civ, UNIT_COST, f"a {action.unit_type.value} unit")
    civ.units.append(UnitState(
        unit_type=action.unit_type.value,
        position=action.position,
        strength=UNIT_BASE_STRENGTH[action.unit_type],
    ))

  def _build_building(self, civ: CivilizationState,
                      action: BuildBuilding) -> None:
    if not civ.cities:
      raise _fail(ExecutionFailure.INVALID_TARGET,
                  f"civ {civ.civ_id} has no city")
    city = next((c for c in civ.cities if c.position == action.position),
                civ.cities[0])
    building = action.building_type.value
    if building in city.buildings:
      raise _fail(ExecutionFailure.INVALID_TARGET,
                  f"{city.name} already has a {building}")
    self._spend(civ, BUILDING_COST, f"a {building}")
    city.buildings.append(building)

  def _trade(self, civ: CivilizationState, action: Trade) -> None:
    partner = self.civilizations.get(CivId(action.partner))
    if partner is None or partner.civ_id == civ.civ_id:
      raise _fail(ExecutionFailure.INVALID_TARGET,
                  f"no trade partner {action.partner}")
    if partner.civ_id in civ.trade_partners:
      raise _fail(ExecutionFailure.INVALID_TARGET,
                  f"already trading with {partner.civ_id}")
    relation = self.diplomacy.relation(civ.civ_id, partner.civ_id)
    if relation is not None and relation.at_war:
      raise _fail(ExecutionFailure.DIPLOMATIC_RESTRICTION,
                  f"at war with {partner.civ_id}")
    civ.trade_partners.append(partner.civ_id)
    civ.income += TRADE_INCOME_BONUS

  def _attack(self, civ: CivilizationState, action: Attack) -> None:
    target = self.civilizations.get(CivId(action.target))
    if (target is None or target.civ_id == civ.civ_id
        or target.capital is None):
      raise _fail(ExecutionFailure.INVALID_TARGET,
                  f"civ {action.target} cannot be attacked")
    if not civ.units:
      raise _fail(ExecutionFailure.INSUFFICIENT_RESOURCES,
                  f"civ {civ.civ_id} has no units")
    relation = self.diplomacy.get_or_create(civ.civ_id, target.civ_id)
    if not relation.at_war:
      if (relation.has_treaty(TreatyKind.NON_AGGRESSION)
          or relation.has_treaty(TreatyKind.ALLIANCE)):
        raise _fail(ExecutionFailure.DIPLOMATIC_RESTRICTION,
                    f"treaty with {target.civ_id} forbids an attack")
      self.diplomacy.declare_war(civ.civ_id, target.civ_id, self.turn)

  def _diplomacy(self, civ: CivilizationState, action: Diplomacy) -> None:
    if CivId(action.target) not in self.civilizations:
      raise _fail(ExecutionFailure.INVALID_TARGET,
                  f"no civilization {action.target}")
    self.diplomacy.apply_diplomatic_action(civ.civ_id, action.target,
                                           action.action)

  def _defend(self, civ: CivilizationState, action: Defend) -> None:
    if action.position not in civ.territories:
      raise _fail(ExecutionFailure.INVALID_TARGET,
                  f"{action.position} is outside civ {civ.civ_id}")
    for unit in civ.units:
      if (unit.position.distance_to(action.position)
          < DEFENSIVE_POSITIONING_DISTANCE):
        unit.position = action.position

  def _explore(self, civ: CivilizationState, action: Explore) -> None:
    if not civ.units:
      raise _fail(ExecutionFailure.INSUFFICIENT_RESOURCES,
                  f"civ {civ.civ_id} has no units to explore with")
    civ.explored_tiles += EXPLORE_REVEAL
