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

"""Strategic actions a civilization can decide on, and their failure modes.

``AIAction`` is a closed union of nine frozen variants discriminated by the
``kind`` field. Consumers match on the concrete class and raise
``TypeError`` for anything else:

    >>> action = parse_action({"kind": "research", "technology": "Writing",
    ...                        "priority": 0.6})
    >>> action.dedup_key()
    ('research', 'Writing')
"""

import enum
from typing import (Annotated, Any, Dict, Hashable, Literal, Mapping, Protocol,
                    Tuple, Union)

from pydantic import BaseModel, Field, TypeAdapter

from civ_arena.ai.civ_state import CivId, Position


class UnitType(str, enum.Enum):
  INFANTRY = "infantry"
  CAVALRY = "cavalry"
  ARCHER = "archer"
  SIEGE = "siege"
  NAVAL = "naval"


# Base attack + defense strength of a freshly built unit.
UNIT_BASE_STRENGTH = {
    UnitType.INFANTRY: 10.0,
    UnitType.CAVALRY: 12.0,
    UnitType.ARCHER: 8.0,
    UnitType.SIEGE: 15.0,
    UnitType.NAVAL: 20.0,
}


class BuildingType(str, enum.Enum):
  GRANARY = "granary"
  BARRACKS = "barracks"
  WORKSHOP = "workshop"
  LIBRARY = "library"
  WALLS = "walls"
  MARKET = "market"
  TEMPLE = "temple"


class ResourceKind(str, enum.Enum):
  IRON = "iron"
  GOLD = "gold"
  HORSES = "horses"
  WHEAT = "wheat"
  FISH = "fish"
  STONE = "stone"
  WOOD = "wood"
  SPICES = "spices"


class DiplomaticAction(str, enum.Enum):
  PROPOSE_ALLIANCE = "propose_alliance"
  PROPOSE_NON_AGGRESSION = "propose_non_aggression"
  PROPOSE_TRADE_PACT = "propose_trade_pact"
  DECLARE_WAR = "declare_war"
  MAKE_PEACE = "make_peace"
  BREAK_TREATY = "break_treaty"


class _ActionBase(BaseModel):
  """Fields shared by every action variant."""

  priority: float = Field(..., ge=0.0, le=1.0)

  class Config:
    frozen = True
    extra = "forbid"
    use_enum_values = False

  def dedup_key(self) -> Tuple[str, Hashable]:
    """(action kind, target) pair used to merge duplicate decisions."""
    raise NotImplementedError

  def with_priority(self, priority: float) -> "AIAction":
    return self.model_copy(update={"priority": priority})


class Expand(_ActionBase):
  kind: Literal["expand"] = "expand"
  target_position: Position

  def dedup_key(self) -> Tuple[str, Hashable]:
    return (self.kind, self.target_position)


class Research(_ActionBase):
  kind: Literal["research"] = "research"
  technology: str = Field(..., min_length=1, max_length=50)

  def dedup_key(self) -> Tuple[str, Hashable]:
    return (self.kind, self.technology)


class BuildUnit(_ActionBase):
  kind: Literal["build_unit"] = "build_unit"
  unit_type: UnitType
  position: Position

  def dedup_key(self) -> Tuple[str, Hashable]:
    return (self.kind, (self.unit_type, self.position))


class BuildBuilding(_ActionBase):
  kind: Literal["build_building"] = "build_building"
  building_type: BuildingType
  position: Position

  def dedup_key(self) -> Tuple[str, Hashable]:
    return (self.kind, (self.building_type, self.position))


class Trade(_ActionBase):
  kind: Literal["trade"] = "trade"
  partner: int = Field(..., ge=0)
  resource: ResourceKind = ResourceKind.GOLD

  def dedup_key(self) -> Tuple[str, Hashable]:
    return (self.kind, (self.partner, self.resource))


class Attack(_ActionBase):
  kind: Literal["attack"] = "attack"
  target: int = Field(..., ge=0)
  target_position: Position

  def dedup_key(self) -> Tuple[str, Hashable]:
    return (self.kind, (self.target, self.target_position))


class Diplomacy(_ActionBase):
  kind: Literal["diplomacy"] = "diplomacy"
  target: int = Field(..., ge=0)
  action: DiplomaticAction

  def dedup_key(self) -> Tuple[str, Hashable]:
    return (self.kind, (self.target, self.action))


class Defend(_ActionBase):
  kind: Literal["defend"] = "defend"
  position: Position

  def dedup_key(self) -> Tuple[str, Hashable]:
    return (self.kind, self.position)


class Explore(_ActionBase):
  kind: Literal["explore"] = "explore"
  target_position: Position

  def dedup_key(self) -> Tuple[str, Hashable]:
    return (self.kind, self.target_position)


AIAction = Annotated[
    Union[Expand, Research, BuildUnit, BuildBuilding, Trade, Attack,
          Diplomacy, Defend, Explore],
    Field(discriminator="kind"),
]

ACTION_TYPES = (Expand, Research, BuildUnit, BuildBuilding, Trade, Attack,
                Diplomacy, Defend, Explore)

_ACTION_ADAPTER = TypeAdapter(AIAction)


def parse_action(data: Union[str, Mapping[str, Any]]) -> "AIAction":
  """Validate a JSON string or mapping into the matching action variant.

  Raises:
    pydantic.ValidationError: If the payload is not a valid action
  """
  if isinstance(data, str):
    return _ACTION_ADAPTER.validate_json(data)
  return _ACTION_ADAPTER.validate_python(dict(data))


def describe_action(action: "AIAction") -> str:
  """Short human-readable description used in logs and reports."""
  if isinstance(action, Expand):
    return f"expand to {action.target_position}"
  elif isinstance(action, Research):
    return f"research {action.technology}"
  elif isinstance(action, BuildUnit):
    return f"build {action.unit_type.value} at {action.position}"
  elif isinstance(action, BuildBuilding):
    return f"build {action.building_type.value} at {action.position}"
  elif isinstance(action, Trade):
    return f"trade {action.resource.value} with civ {action.partner}"
  elif isinstance(action, Attack):
    return f"attack civ {action.target} at {action.target_position}"
  elif isinstance(action, Diplomacy):
    return f"{action.action.value} with civ {action.target}"
  elif isinstance(action, Defend):
    return f"defend {action.position}"
  elif isinstance(action, Explore):
    return f"explore towards {action.target_position}"
  raise TypeError(f"Unknown action variant: {type(action).__name__}")


class ExecutionFailure(enum.Enum):
  """Why the world layer refused to carry out an action."""
  INSUFFICIENT_RESOURCES = "insufficient_resources"
  INVALID_TARGET = "invalid_target"
  TILE_OCCUPIED = "tile_occupied"
  DIPLOMATIC_RESTRICTION = "diplomatic_restriction"
  TECHNICAL_FAILURE = "technical_failure"


class ActionExecutionError(Exception):
  """Raised by an executor when an action cannot currently succeed.

  Every kind is recoverable: the queue consumes one unit of retry budget and
  defers the action to a later turn.
  """

  def __init__(self, kind: ExecutionFailure, message: str = ""):
    self.kind = kind
    self.message = message or kind.value
    super().__init__(f"{kind.value}: {self.message}")


class ActionExecutor(Protocol):
  """Execution entry point owned by the world layer."""

  def execute(self, civ_id: CivId, action: "AIAction") -> None:
    """Apply ``action`` for ``civ_id``.

    Raises:
      ActionExecutionError: If the action cannot be carried out this turn
    """
    ...


def action_to_dict(action: "AIAction") -> Dict[str, Any]:
  return action.model_dump(mode="json")
