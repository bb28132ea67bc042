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

"""Drives AI turns through the coordinator, the queues and the world.

For each AI civilization whose turn it is the runner resets its queue's
turn counter, asks the coordinator for new decisions, enqueues them,
drains the queue against the world and reports the turn complete to the
phase controller.

Example usage:
    >>> runner = TurnRunner(world)
    >>> reports = runner.run_round()
    >>> runner.end_player_turn(CivId(0))
"""

from typing import List, Optional

from absl import logging

from civ_arena.ai.action_queue import (ActionQueueRegistry, DrainReport,
                                       drain_action_queue)
from civ_arena.ai.ai_coordinator import AICoordinator
from civ_arena.ai.civ_state import CivId
from civ_arena.ai.config import PlannerConfig
from civ_arena.ai.decision_telemetry import DecisionTelemetry
from civ_arena.ai.turn_phase import (AITurnComplete, AllAITurnsComplete,
                                     CivilizationTurn, PlayerEndedTurn,
                                     ProcessAITurn, StartPlayerTurn, TurnOrder,
                                     TurnPhase, TurnPhaseController,
                                     TurnTransition, WaitingForNextTurn)
from civ_arena.ai.world_simulation import WorldSimulation


class TurnRunner:
  """Wires the turn controller, coordinator, queues and world together."""

  def __init__(self, world: WorldSimulation,
               coordinator: Optional[AICoordinator] = None,
               registry: Optional[ActionQueueRegistry] = None,
               controller: Optional[TurnPhaseController] = None,
               telemetry: Optional[DecisionTelemetry] = None,
               config: Optional[PlannerConfig] = None):
    self.world = world
    if config is None:
      config = coordinator.config if coordinator else PlannerConfig()
    self.config = config
    self.telemetry = telemetry or DecisionTelemetry()
    self.coordinator = coordinator or AICoordinator(config,
                                                    telemetry=self.telemetry)
    self.queues = registry or ActionQueueRegistry(config.queue)
    if controller is None:
      order = TurnOrder(
          sorted(world.civilizations),
          player_civs=[civ_id for civ_id, civ in world.civilizations.items()
                       if civ.is_player],
      )
      controller = TurnPhaseController(order, turn=world.turn)
    self.controller = controller
    self.reports: List[DrainReport] = []

  @property
  def phase(self) -> TurnPhase:
    return self.controller.phase

  def run_ai_turn(self, civ_id: CivId) -> DrainReport:
    """Decide, enqueue and execute for one AI civilization."""
    turn = self.world.turn
    queue = self.queues.ensure(civ_id)
    queue.reset_turn_processing()

    decisions = self.coordinator.decide_for_civ(self.world.world_state(),
                                                civ_id)
    accepted = queue.queue_actions(decisions, turn)
    for _ in range(len(decisions) - accepted):
      self.telemetry.record_rejection(civ_id)

    report = drain_action_queue(queue, civ_id, self.world, turn,
                                self.telemetry)
    self.reports.append(report)
    logging.info(
        "Turn %d civ %s: %d decided, %d executed, %d failed, %d dropped, "
        "%d waiting",
        turn, civ_id, len(decisions), len(report.executed),
        len(report.failed), len(report.dropped), len(queue),
    )
    return report

  def run_round(self) -> List[DrainReport]:
    """Play AI turns until the player is up or the round ends.

    When the round ends the world's end-of-round upkeep (income and
    diplomacy) runs and the controller moves on to the next round.
    """
    reports = []
    # Each civilization needs at most two transitions per round.
    for _ in range(2 * len(self.controller.order) + 2):
      phase = self.controller.phase
      if isinstance(phase, CivilizationTurn):
        civ_id = phase.current_civ
        if self.controller.order.is_player_civ(civ_id):
          break
        reports.append(self.run_ai_turn(civ_id))
        self.controller.advance_turn(AITurnComplete(civ_id))
      elif isinstance(phase, WaitingForNextTurn):
        if phase.next_civ is None:
          break
        if self.controller.order.is_player_civ(phase.next_civ):
          self.controller.advance_turn(StartPlayerTurn())
        else:
          self.controller.advance_turn(ProcessAITurn(phase.next_civ))
      elif isinstance(phase, TurnTransition):
        self.world.end_round()
        self.controller.advance_turn(AllAITurnsComplete())
        break
      else:
        raise TypeError(f"Unknown turn phase: {phase!r}")
    return reports

  def end_player_turn(self, civ_id: CivId) -> TurnPhase:
    return self.controller.advance_turn(PlayerEndedTurn(civ_id))

  def eliminate(self, civ_id: CivId) -> None:
    """Remove a civilization from the rotation, the queues and the world."""
    self.controller.remove_civ(civ_id)
    self.queues.remove(civ_id)
    self.coordinator.remove_civ(civ_id)
    self.world.remove_civilization(civ_id)
    logging.info("Civilization %s eliminated", civ_id)
