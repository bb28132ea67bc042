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

"""Read-only state models consumed by the decision strategies.

The world layer assembles a ``WorldState`` once per turn. The coordinator
turns every entry of it into a ``CivilizationSnapshot``, a frozen projection
that strategies can read but never mutate:

    >>> world = WorldState(turn=4,
    ...                    civilizations={1: {"civ_id": 1, "name": "Rome"}})
    >>> snapshot = build_snapshot(world, CivId(1))
    >>> snapshot.economy.gold
    100.0
"""

import math
from dataclasses import dataclass, field
from typing import (Any, FrozenSet, Mapping, NewType, Optional, Tuple,
                    Union)

from absl import logging
from pydantic import BaseModel, Field, ValidationError, field_validator

CivId = NewType("CivId", int)

MAX_CIV_ID = 10_000
MAX_COORDINATE = 10_000


class Position(BaseModel):
  """A map tile coordinate."""

  x: int = Field(..., ge=-MAX_COORDINATE, le=MAX_COORDINATE)
  y: int = Field(..., ge=-MAX_COORDINATE, le=MAX_COORDINATE)

  class Config:
    frozen = True
    extra = "forbid"

  def distance_to(self, other: "Position") -> float:
    """Euclidean distance between two tiles."""
    return math.hypot(self.x - other.x, self.y - other.y)

  def offset(self, dx: int, dy: int) -> "Position":
    return Position(x=self.x + dx, y=self.y + dy)

  def __repr__(self) -> str:
    return f"Position({self.x}, {self.y})"


class CivPersonality(BaseModel):
  """Personality traits that drive decision making, each in [0, 1]."""

  land_hunger: float = Field(0.5, ge=0.0, le=1.0)
  industry_focus: float = Field(0.5, ge=0.0, le=1.0)
  tech_focus: float = Field(0.5, ge=0.0, le=1.0)
  interventionism: float = Field(0.5, ge=0.0, le=1.0)
  risk_tolerance: float = Field(0.5, ge=0.0, le=1.0)
  honor_treaties: float = Field(0.5, ge=0.0, le=1.0)
  militarism: float = Field(0.5, ge=0.0, le=1.0)
  isolationism: float = Field(0.5, ge=0.0, le=1.0)
  exploration_drive: float = Field(0.5, ge=0.0, le=1.0)

  class Config:
    frozen = True
    extra = "forbid"


class Economy(BaseModel):
  """Treasury and output figures of a civilization."""

  gold: float = 100.0
  income: float = 10.0
  expenses: float = 5.0
  production: float = 8.0
  research_rate: float = 0.0
  trade_routes: int = Field(0, ge=0)

  class Config:
    frozen = True
    extra = "forbid"


class CitySummary(BaseModel):
  """A city as seen by the planners."""

  name: str = Field(..., min_length=1, max_length=50)
  position: Position
  buildings: Tuple[str, ...] = ()

  class Config:
    frozen = True
    extra = "forbid"

  def has_building(self, building: str) -> bool:
    return building in self.buildings


class UnitSummary(BaseModel):
  """A military unit as seen by the planners."""

  unit_type: str
  position: Position
  strength: float = Field(10.0, ge=0.0)

  class Config:
    frozen = True
    extra = "forbid"


class RivalSummary(BaseModel):
  """What a civilization knows about another civilization."""

  civ_id: int = Field(..., ge=0, le=MAX_CIV_ID)
  capital: Optional[Position] = None
  military_strength: float = Field(0.0, ge=0.0)

  class Config:
    frozen = True
    extra = "forbid"


class RelationView(BaseModel):
  """One diplomatic relation seen from the owning civilization's side."""

  other_civ: int = Field(..., ge=0, le=MAX_CIV_ID)
  relation_value: float = Field(0.0, ge=-100.0, le=100.0)
  treaties: Tuple[str, ...] = ()
  trade_agreement: bool = False

  class Config:
    frozen = True
    extra = "forbid"

  def has_treaty(self, kind: str) -> bool:
    return kind in self.treaties

  @property
  def at_war(self) -> bool:
    return self.has_treaty("war")


class CivilizationSnapshot(BaseModel):
  """Immutable point-in-time projection of a civilization.

  Built fresh every decision cycle. Any attempt to assign to a field raises
  a ``ValidationError``, so strategies cannot corrupt shared world state.
  """

  civ_id: int = Field(..., ge=0, le=MAX_CIV_ID)
  name: str = Field("", max_length=50)
  turn: int = Field(0, ge=0)
  personality: CivPersonality = Field(default_factory=CivPersonality)
  economy: Economy = Field(default_factory=Economy)
  capital: Optional[Position] = None
  cities: Tuple[CitySummary, ...] = ()
  territories: Tuple[Position, ...] = ()
  units: Tuple[UnitSummary, ...] = ()
  known_technologies: FrozenSet[str] = frozenset()
  explored_tiles: int = Field(0, ge=0)
  free_tiles: Tuple[Position, ...] = ()
  relations: Tuple[RelationView, ...] = ()
  rivals: Tuple[RivalSummary, ...] = ()

  class Config:
    frozen = True
    extra = "forbid"

  @field_validator("rivals")
  @classmethod
  def validate_rivals(cls, v):
    ids = [rival.civ_id for rival in v]
    if len(ids) != len(set(ids)):
      raise ValueError(f"Duplicate rival entries: {ids}")
    return tuple(sorted(v, key=lambda rival: rival.civ_id))

  @property
  def military_strength(self) -> float:
    return sum(unit.strength for unit in self.units)

  def relation_with(self, other: int) -> Optional[RelationView]:
    for relation in self.relations:
      if relation.other_civ == other:
        return relation
    return None

  def rival(self, civ_id: int) -> Optional[RivalSummary]:
    for rival in self.rivals:
      if rival.civ_id == civ_id:
        return rival
    return None

  def has_building(self, building: str) -> bool:
    return any(city.has_building(building) for city in self.cities)


@dataclass(frozen=True)
class WorldState:
  """Per-turn world view handed to the coordinator by the game layer.

  ``civilizations`` holds the raw record for every civilization, either an
  already-built snapshot or a mapping of snapshot fields. Entries are
  validated one by one so that a single malformed civilization never blocks
  the others.
  """
  turn: int = 0
  civilizations: Mapping[int, Union[CivilizationSnapshot, Mapping[str, Any],
                                    None]] = field(default_factory=dict)
  player_civs: FrozenSet[int] = frozenset()

  def civ_ids(self) -> Tuple[CivId, ...]:
    """Civilization ids in deterministic (ascending) order."""
    return tuple(CivId(civ_id) for civ_id in sorted(self.civilizations))

  def is_player(self, civ_id: int) -> bool:
    return civ_id in self.player_civs


def build_snapshot(world: WorldState, civ_id: CivId
                  ) -> Optional[CivilizationSnapshot]:
  """Validate one civilization entry of ``world`` into a snapshot.

  Args:
    world: The world view for the current turn
    civ_id: Civilization to project

  Returns:
    The snapshot, or None when the entry is missing or malformed
  """
  record = world.civilizations.get(civ_id)
  if record is None:
    logging.warning("No world data for civilization %s; skipping", civ_id)
    return None

  if isinstance(record, CivilizationSnapshot):
    if record.civ_id != civ_id:
      logging.warning(
          "Snapshot keyed as civilization %s belongs to %s; skipping",
          civ_id,
          record.civ_id,
      )
      return None
    if record.turn != world.turn:
      return record.model_copy(update={"turn": world.turn})
    return record

  if not isinstance(record, Mapping):
    logging.warning(
        "World data for civilization %s has unexpected type %s; skipping",
        civ_id,
        type(record).__name__,
    )
    return None

  data = dict(record)
  data.setdefault("civ_id", civ_id)
  data["turn"] = world.turn
  try:
    snapshot = CivilizationSnapshot.model_validate(data)
  except ValidationError as e:
    logging.warning(
        "Malformed world data for civilization %s (%d errors); skipping",
        civ_id,
        e.error_count(),
    )
    return None

  if snapshot.civ_id != civ_id:
    logging.warning(
        "World data keyed as civilization %s claims id %s; skipping",
        civ_id,
        snapshot.civ_id,
    )
    return None
  return snapshot
