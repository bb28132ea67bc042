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

"""Turn rotation and the turn phase state machine.

``TurnOrder`` is the rotation of civilizations; ``TurnPhaseController``
moves between the three phases in response to events sent by the game
layer. The controller never polls: every change goes through
``advance_turn``.

    CivilizationTurn(c) --complete(c)-->
        WaitingForNextTurn(next)   when next is an AI civilization
        CivilizationTurn(next)     when next is a player
        TurnTransition             when the rotation wrapped
    WaitingForNextTurn(n) --ProcessAITurn(n) | StartPlayerTurn-->
        CivilizationTurn(n)
    TurnTransition --AllAITurnsComplete | StartPlayerTurn-->
        first civilization of the round
"""

from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Union

from absl import logging

from civ_arena.ai.civ_state import CivId


class TurnOrder:
  """Ordered rotation of civilizations with a current index."""

  def __init__(self, civilizations: Iterable[CivId], current_index: int = 0,
               player_civs: Iterable[CivId] = ()):
    self.civilizations: List[CivId] = list(civilizations)
    if len(set(self.civilizations)) != len(self.civilizations):
      raise ValueError(f"Duplicate civilizations in turn order: "
                       f"{self.civilizations}")
    if self.civilizations and not 0 <= current_index < len(self.civilizations):
      raise ValueError(f"current_index {current_index} out of range")
    self.current_index = current_index if self.civilizations else 0
    self.player_civs: FrozenSet[CivId] = frozenset(player_civs)

  def __len__(self) -> int:
    return len(self.civilizations)

  def __contains__(self, civ_id: CivId) -> bool:
    return civ_id in self.civilizations

  def current_civ(self) -> Optional[CivId]:
    if not self.civilizations:
      return None
    return self.civilizations[self.current_index]

  def peek_next(self) -> Optional[CivId]:
    """Civilization that ``advance`` would move to, without moving."""
    if not self.civilizations:
      return None
    return self.civilizations[(self.current_index + 1)
                              % len(self.civilizations)]

  def advance(self) -> bool:
    """Move to the next civilization.

    Returns:
      True exactly when the rotation wrapped back to the first civilization
    """
    if not self.civilizations:
      return False
    self.current_index += 1
    if self.current_index >= len(self.civilizations):
      self.current_index = 0
      return True
    return False

  def is_player_civ(self, civ_id: CivId) -> bool:
    return civ_id in self.player_civs

  def first_player_index(self) -> Optional[int]:
    for index, civ_id in enumerate(self.civilizations):
      if civ_id in self.player_civs:
        return index
    return None

  def remove(self, civ_id: CivId) -> bool:
    """Drop an eliminated civilization from the rotation.

    The current index keeps pointing at the same civilization, or at the
    one after it when the current civilization is removed.

    Returns:
      True if removing the current, last civilization wrapped the rotation
    """
    if civ_id not in self.civilizations:
      return False
    index = self.civilizations.index(civ_id)
    del self.civilizations[index]
    self.player_civs = self.player_civs - {civ_id}
    if index < self.current_index:
      self.current_index -= 1
    if self.current_index >= len(self.civilizations):
      self.current_index = 0
      return bool(self.civilizations)
    return False

  def __repr__(self) -> str:
    return (f"TurnOrder({self.civilizations}, "
            f"current_index={self.current_index})")


@dataclass(frozen=True)
class CivilizationTurn:
  current_civ: CivId


@dataclass(frozen=True)
class WaitingForNextTurn:
  next_civ: Optional[CivId]


@dataclass(frozen=True)
class TurnTransition:
  pass


TurnPhase = Union[CivilizationTurn, WaitingForNextTurn, TurnTransition]


@dataclass(frozen=True)
class ProcessAITurn:
  civ_id: CivId


@dataclass(frozen=True)
class AITurnComplete:
  civ_id: CivId


@dataclass(frozen=True)
class PlayerEndedTurn:
  civ_id: CivId


@dataclass(frozen=True)
class AllAITurnsComplete:
  pass


@dataclass(frozen=True)
class StartPlayerTurn:
  pass


TurnEvent = Union[ProcessAITurn, AITurnComplete, PlayerEndedTurn,
                  AllAITurnsComplete, StartPlayerTurn]


class TurnPhaseController:
  """Single transition function over ``TurnPhase``."""

  def __init__(self, order: TurnOrder, turn: int = 1):
    self.order = order
    self.turn = turn
    player_index = order.first_player_index()
    if player_index is not None:
      order.current_index = player_index
    self.phase: TurnPhase = self._phase_for_current()
    logging.info("Turn order %s, starting in %s", order.civilizations,
                 self.phase)

  def _phase_for(self, civ_id: Optional[CivId]) -> TurnPhase:
    if civ_id is None:
      return TurnTransition()
    if self.order.is_player_civ(civ_id):
      return CivilizationTurn(civ_id)
    return WaitingForNextTurn(civ_id)

  def _phase_for_current(self) -> TurnPhase:
    return self._phase_for(self.order.current_civ())

  def advance_turn(self, event: TurnEvent) -> TurnPhase:
    """Apply ``event`` to the current phase and return the new phase.

    Events that do not apply to the current phase leave it unchanged.
    """
    phase = self.phase
    if isinstance(phase, CivilizationTurn):
      new_phase = self._on_civilization_turn(phase, event)
    elif isinstance(phase, WaitingForNextTurn):
      new_phase = self._on_waiting(phase, event)
    elif isinstance(phase, TurnTransition):
      new_phase = self._on_transition(event)
    else:
      raise TypeError(f"Unknown turn phase: {phase!r}")

    if new_phase is None:
      logging.warning("Ignoring %s during %s", event, phase)
      return phase
    logging.debug("Turn %d: %s --%s--> %s", self.turn, phase, event,
                  new_phase)
    self.phase = new_phase
    return new_phase

  def _on_civilization_turn(self, phase: CivilizationTurn,
                            event: TurnEvent) -> Optional[TurnPhase]:
    civ_id = phase.current_civ
    is_player = self.order.is_player_civ(civ_id)
    if isinstance(event, AITurnComplete):
      completes = not is_player and event.civ_id == civ_id
    elif isinstance(event, PlayerEndedTurn):
      completes = is_player and event.civ_id == civ_id
    else:
      completes = False
    if not completes:
      return None

    next_civ = self.order.peek_next()
    if self.order.advance():
      self.turn += 1
      logging.info("Round complete, starting turn %d", self.turn)
      return TurnTransition()
    return self._phase_for(next_civ)

  def _on_waiting(self, phase: WaitingForNextTurn,
                  event: TurnEvent) -> Optional[TurnPhase]:
    next_civ = phase.next_civ
    if next_civ is None:
      return None
    if isinstance(event, ProcessAITurn):
      if event.civ_id == next_civ and not self.order.is_player_civ(next_civ):
        return CivilizationTurn(next_civ)
    elif isinstance(event, StartPlayerTurn):
      if self.order.is_player_civ(next_civ):
        return CivilizationTurn(next_civ)
    return None

  def _on_transition(self, event: TurnEvent) -> Optional[TurnPhase]:
    if not isinstance(event, (AllAITurnsComplete, StartPlayerTurn)):
      return None
    if not self.order.civilizations:
      return None
    return self._phase_for_current()

  def remove_civ(self, civ_id: CivId) -> TurnPhase:
    """Drop an eliminated civilization and repair the phase if needed."""
    if civ_id not in self.order:
      return self.phase
    wrapped = self.order.remove(civ_id)
    phase = self.phase
    if isinstance(phase, CivilizationTurn):
      affected = phase.current_civ == civ_id
    elif isinstance(phase, WaitingForNextTurn):
      affected = phase.next_civ == civ_id
    else:
      affected = False
    if not affected:
      return phase
    if wrapped:
      self.turn += 1
      self.phase = TurnTransition()
    else:
      self.phase = self._phase_for_current()
    logging.info("Civilization %s removed; phase is now %s", civ_id,
                 self.phase)
    return self.phase
