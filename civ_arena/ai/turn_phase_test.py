"""Tests for the turn order and the turn phase state machine."""

from absl.testing import absltest, parameterized

from civ_arena.ai import turn_phase
from civ_arena.ai.civ_state import CivId
from civ_arena.ai.turn_phase import (AITurnComplete, AllAITurnsComplete,
                                     CivilizationTurn, PlayerEndedTurn,
                                     ProcessAITurn, StartPlayerTurn,
                                     TurnTransition, WaitingForNextTurn)


def _order(*civs, players=(), current_index=0):
  return turn_phase.TurnOrder([CivId(c) for c in civs],
                              current_index=current_index,
                              player_civs=[CivId(p) for p in players])


class TurnOrderTest(parameterized.TestCase):

  @parameterized.named_parameters(
      ("one", 1),
      ("three", 3),
      ("seven", 7),
  )
  def test_advance_wraps_once_per_rotation(self, size):
    """Test that advancing wraps exactly once per rotation."""
    order = _order(*range(size))
    for _ in range(3):
      wraps = [order.advance() for _ in range(size)]
      self.assertEqual(wraps, [False] * (size - 1) + [True])
      self.assertEqual(order.current_civ(), 0)

  def test_empty_order(self):
    """Test that an empty order has no current or next civilization."""
    order = _order()
    self.assertIsNone(order.current_civ())
    self.assertIsNone(order.peek_next())
    self.assertFalse(order.advance())

  def test_rejects_duplicates(self):
    """Test that duplicate civilizations are rejected."""
    with self.assertRaises(ValueError):
      _order(1, 2, 1)

  def test_rejects_out_of_range_index(self):
    """Test that an out-of-range current index is rejected."""
    with self.assertRaises(ValueError):
      _order(1, 2, current_index=2)

  def test_peek_does_not_move(self):
    """Test that peeking does not move the current position."""
    order = _order(1, 2, 3, current_index=2)
    self.assertEqual(order.peek_next(), 1)
    self.assertEqual(order.current_civ(), 3)

  def test_remove_before_current_keeps_current(self):
    """Test that removing an earlier civilization keeps the current one."""
    order = _order(1, 2, 3, current_index=2)
    self.assertFalse(order.remove(CivId(1)))
    self.assertEqual(order.current_civ(), 3)

  def test_remove_current_moves_to_next(self):
    """Test that removing the current civilization moves to the next."""
    order = _order(1, 2, 3, current_index=1)
    self.assertFalse(order.remove(CivId(2)))
    self.assertEqual(order.current_civ(), 3)

  def test_remove_current_last_wraps(self):
    """Test that removing the last current civilization wraps around."""
    order = _order(1, 2, 3, players=(3,), current_index=2)
    self.assertTrue(order.remove(CivId(3)))
    self.assertEqual(order.current_civ(), 1)
    self.assertFalse(order.is_player_civ(CivId(3)))

  def test_remove_unknown_is_noop(self):
    """Test that removing an unknown civilization changes nothing."""
    order = _order(1, 2)
    self.assertFalse(order.remove(CivId(9)))
    self.assertLen(order, 2)


class TurnPhaseControllerTest(absltest.TestCase):

  def test_starts_on_player_turn(self):
    """Test that the controller starts on the first player turn."""
    controller = turn_phase.TurnPhaseController(_order(1, 2, 3, players=(2,)))
    self.assertEqual(controller.phase, CivilizationTurn(2))
    self.assertEqual(controller.order.current_index, 1)

  def test_starts_waiting_without_player(self):
    """Test that without players the controller waits for the first AI."""
    controller = turn_phase.TurnPhaseController(_order(4, 5))
    self.assertEqual(controller.phase, WaitingForNextTurn(4))

  def test_empty_roster_is_transition(self):
    """Test that an empty roster stays in transition."""
    controller = turn_phase.TurnPhaseController(_order())
    self.assertEqual(controller.phase, TurnTransition())
    self.assertEqual(controller.advance_turn(AllAITurnsComplete()),
                     TurnTransition())

  def test_full_round(self):
    """Test that a full round visits every civilization in order."""
    controller = turn_phase.TurnPhaseController(_order(0, 1, 2, players=(0,)),
                                                turn=5)

    self.assertEqual(controller.advance_turn(PlayerEndedTurn(0)),
                     WaitingForNextTurn(1))
    self.assertEqual(controller.advance_turn(ProcessAITurn(1)),
                     CivilizationTurn(1))
    self.assertEqual(controller.advance_turn(AITurnComplete(1)),
                     WaitingForNextTurn(2))
    self.assertEqual(controller.advance_turn(ProcessAITurn(2)),
                     CivilizationTurn(2))
    self.assertEqual(controller.turn, 5)
    self.assertEqual(controller.advance_turn(AITurnComplete(2)),
                     TurnTransition())
    self.assertEqual(controller.turn, 6)
    self.assertEqual(controller.advance_turn(AllAITurnsComplete()),
                     CivilizationTurn(0))

  def test_player_follows_ai_directly(self):
    """Test that a player turn follows the preceding AI turn."""
    controller = turn_phase.TurnPhaseController(_order(0, 1, 2, players=(2,)))
    controller.advance_turn(PlayerEndedTurn(2))
    self.assertEqual(controller.phase, TurnTransition())
    controller.advance_turn(AllAITurnsComplete())
    self.assertEqual(controller.phase, WaitingForNextTurn(0))
    controller.advance_turn(ProcessAITurn(0))
    controller.advance_turn(AITurnComplete(0))
    controller.advance_turn(ProcessAITurn(1))
    self.assertEqual(controller.advance_turn(AITurnComplete(1)),
                     CivilizationTurn(2))

  def test_start_player_turn_from_waiting(self):
    """Test that a waiting player civilization can start its turn."""
    controller = turn_phase.TurnPhaseController(_order(0, 1))
    controller.order.player_civs = frozenset({CivId(0)})
    self.assertEqual(controller.advance_turn(StartPlayerTurn()),
                     CivilizationTurn(0))

  def test_invalid_events_leave_phase_unchanged(self):
    """Test that invalid events leave the phase unchanged."""
    controller = turn_phase.TurnPhaseController(_order(0, 1, players=(0,)))
    start = controller.phase
    for event in (AITurnComplete(0), PlayerEndedTurn(1), ProcessAITurn(1),
                  AllAITurnsComplete(), StartPlayerTurn()):
      self.assertEqual(controller.advance_turn(event), start)
    self.assertEqual(controller.turn, 1)

    controller.advance_turn(PlayerEndedTurn(0))
    waiting = controller.phase
    for event in (ProcessAITurn(0), StartPlayerTurn(), AITurnComplete(1)):
      self.assertEqual(controller.advance_turn(event), waiting)

  def test_each_civ_takes_one_turn_per_round(self):
    """Test that each civilization takes one turn per round."""
    controller = turn_phase.TurnPhaseController(_order(0, 1, 2, 3))
    taken = []
    while not isinstance(controller.phase, TurnTransition):
      phase = controller.phase
      if isinstance(phase, WaitingForNextTurn):
        controller.advance_turn(ProcessAITurn(phase.next_civ))
      else:
        taken.append(phase.current_civ)
        controller.advance_turn(AITurnComplete(phase.current_civ))
    self.assertEqual(taken, [0, 1, 2, 3])
    self.assertEqual(controller.turn, 2)

  def test_remove_current_civ_repairs_phase(self):
    """Test that removing the acting civilization repairs the phase."""
    controller = turn_phase.TurnPhaseController(_order(0, 1, 2))
    controller.advance_turn(ProcessAITurn(0))
    self.assertEqual(controller.remove_civ(CivId(0)), WaitingForNextTurn(1))

  def test_remove_waiting_last_civ_ends_round(self):
    """Test that removing the last waiting civilization ends the round."""
    controller = turn_phase.TurnPhaseController(_order(0, 1))
    controller.advance_turn(ProcessAITurn(0))
    controller.advance_turn(AITurnComplete(0))
    self.assertEqual(controller.phase, WaitingForNextTurn(1))
    self.assertEqual(controller.remove_civ(CivId(1)), TurnTransition())
    self.assertEqual(controller.turn, 2)

  def test_remove_other_civ_keeps_phase(self):
    """Test that removing another civilization keeps the phase."""
    controller = turn_phase.TurnPhaseController(_order(0, 1, 2))
    self.assertEqual(controller.remove_civ(CivId(2)), WaitingForNextTurn(0))
    self.assertEqual(controller.remove_civ(CivId(8)), WaitingForNextTurn(0))


if __name__ == "__main__":
  absltest.main()
