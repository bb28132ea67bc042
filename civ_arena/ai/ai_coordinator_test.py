"""Tests for the AI coordinator, cooldowns and decision merging."""

from absl.testing import absltest, parameterized

from civ_arena.ai import ai_coordinator
from civ_arena.ai.civ_actions import (Attack, BuildBuilding, BuildingType,
                                      BuildUnit, Defend, Diplomacy,
                                      DiplomaticAction, Expand, Trade,
                                      UnitType)
from civ_arena.ai.civ_state import CivId, WorldState
from civ_arena.ai.config import (CooldownConfig, CoordinatorConfig,
                                 PlannerConfig, QueueConfig)
from civ_arena.ai.decision_telemetry import DecisionTelemetry
from civ_arena.ai.planning_strategy import DecisionStrategy
from civ_arena.ai.tests import test_helpers
from civ_arena.ai.tests.test_helpers import StaticStrategy, personality


class BrokenStrategy(DecisionStrategy):

  name = "broken"

  def propose(self, snapshot):
    raise RuntimeError("strategy crashed")


def _world(*civ_ids, turn=3, players=()):
  return WorldState(
      turn=turn,
      civilizations={c: test_helpers.make_snapshot(civ_id=c) for c in civ_ids},
      player_civs=frozenset(players),
  )


class CooldownTrackerTest(parameterized.TestCase):

  @parameterized.named_parameters(
      ("none", 0, 0),
      ("one", 1, 0),
      ("two", 2, 1),
      ("three", 3, 1),
      ("four", 4, 2),
      ("eight", 8, 2),
  )
  def test_duration_for(self, count, expected):
    """Test that the cooldown length follows the decision count."""
    tracker = ai_coordinator.CooldownTracker()
    self.assertEqual(tracker.duration_for(count), expected)

  def test_tick_decrements_to_zero(self):
    """Test that ticking counts the cooldown down to zero."""
    tracker = ai_coordinator.CooldownTracker()
    tracker.set(CivId(1), 2)
    self.assertEqual([tracker.tick(CivId(1)) for _ in range(4)],
                     [True, True, False, False])
    self.assertEqual(tracker.get(CivId(1)), 0)

  def test_never_negative(self):
    """Test that cooldowns never go negative."""
    tracker = ai_coordinator.CooldownTracker()
    tracker.set(CivId(1), -5)
    self.assertEqual(tracker.get(CivId(1)), 0)
    self.assertFalse(tracker.tick(CivId(2)))

  def test_remove(self):
    """Test that removed civilizations lose their cooldown."""
    tracker = ai_coordinator.CooldownTracker(CooldownConfig(long_cooldown=4))
    self.assertEqual(tracker.refresh(CivId(1), 6), 4)
    self.assertIn(CivId(1), tracker)
    tracker.remove(CivId(1))
    self.assertNotIn(CivId(1), tracker)


class MergeDecisionsTest(absltest.TestCase):

  def test_duplicates_keep_highest_priority(self):
    """Test that duplicates keep the highest priority."""
    merged = ai_coordinator.merge_decisions([
        test_helpers.research(0.4),
        test_helpers.explore(0.5),
        test_helpers.research(0.9),
    ])
    self.assertEqual(merged, [test_helpers.research(0.9),
                              test_helpers.explore(0.5)])

  def test_equal_priority_duplicate_keeps_first(self):
    """Test that an equal-priority duplicate keeps the first seen."""
    first = test_helpers.explore(0.5, x=1)
    merged = ai_coordinator.merge_decisions([first, first.with_priority(0.5)])
    self.assertLen(merged, 1)
    self.assertIs(merged[0], first)

  def test_ties_keep_input_order(self):
    """Test that equal priorities keep their input order."""
    actions = test_helpers.numbered_actions(4, priority=0.6)
    self.assertEqual(ai_coordinator.merge_decisions(actions), actions)

  def test_limit(self):
    """Test that merging can be limited to the top decisions."""
    actions = [test_helpers.explore(i / 10, x=i) for i in range(10)]
    merged = ai_coordinator.merge_decisions(actions, limit=3)
    self.assertEqual([a.priority for a in merged], [0.9, 0.8, 0.7])

  def test_keys_are_unique(self):
    """Test that merged decisions have unique dedup keys."""
    actions = [test_helpers.explore(0.1 * (i % 5), x=i % 3)
               for i in range(15)]
    keys = [a.dedup_key() for a in ai_coordinator.merge_decisions(actions)]
    self.assertLen(keys, len(set(keys)))
    self.assertLen(keys, 3)


class PrioritizeDecisionsTest(parameterized.TestCase):

  TRAITS = personality(land_hunger=0.5, tech_focus=0.25, militarism=0.5,
                       industry_focus=0.4, risk_tolerance=0.5,
                       isolationism=0.75, exploration_drive=0.2)

  @parameterized.named_parameters(
      ("expand", Expand(target_position=test_helpers.pos(1, 1),
                        priority=0.5), 0.5 * 1.3),
      ("research", test_helpers.research(0.5), 0.25 * 1.2),
      ("build_unit", BuildUnit(unit_type=UnitType.ARCHER,
                               position=test_helpers.pos(1, 1),
                               priority=0.5), 0.5 * 1.1),
      ("build_building", BuildBuilding(building_type=BuildingType.MARKET,
                                       position=test_helpers.pos(1, 1),
                                       priority=0.5), 0.4),
      ("trade", Trade(partner=2, priority=0.5), 0.4 * 0.9),
      ("attack", Attack(target=2, target_position=test_helpers.pos(1, 1),
                        priority=0.5), 0.5 * 0.5 * 1.4),
      ("diplomacy", Diplomacy(target=2,
                              action=DiplomaticAction.PROPOSE_TRADE_PACT,
                              priority=0.5), 0.25 * 0.8),
      ("defend", Defend(position=test_helpers.pos(1, 1), priority=0.5), 1.5),
      ("explore", test_helpers.explore(0.5), 0.2 * 1.15),
  )
  def test_rank_score(self, action, expected):
    """Test that each action kind is weighted by its matching trait."""
    self.assertAlmostEqual(
        ai_coordinator.rank_score(action, self.TRAITS, CoordinatorConfig()),
        expected)

  def test_rank_score_unknown_variant(self):
    """Test that an unknown action variant is rejected."""
    with self.assertRaises(TypeError):
      ai_coordinator.rank_score("research", self.TRAITS, CoordinatorConfig())

  def test_personalities_keep_different_top_decisions(self):
    """Test that two personalities keep different decisions past the cap."""
    actions = ([test_helpers.research(0.5, technology=f"Tech {i}")
                for i in range(5)]
               + test_helpers.numbered_actions(5, priority=0.5))
    scholar = ai_coordinator.prioritize_decisions(
        actions, personality(tech_focus=0.9, exploration_drive=0.1),
        CoordinatorConfig())
    explorer = ai_coordinator.prioritize_decisions(
        actions, personality(tech_focus=0.1, exploration_drive=0.9),
        CoordinatorConfig())

    self.assertLen(scholar, 8)
    self.assertLen(explorer, 8)
    self.assertEqual(scholar, actions[:8])
    self.assertEqual(explorer, actions[5:] + actions[:3])
    self.assertNotEqual(set(a.dedup_key() for a in scholar),
                        set(a.dedup_key() for a in explorer))

  def test_priority_breaks_rank_ties(self):
    """Test that equal rank scores fall back to priority, then input order."""
    actions = [test_helpers.explore(0.3, x=0), test_helpers.explore(0.7, x=1),
               test_helpers.explore(0.3, x=2)]
    ranked = ai_coordinator.prioritize_decisions(
        actions, personality(), CoordinatorConfig())
    self.assertEqual([a.target_position.x for a in ranked], [1, 0, 2])

  def test_defend_outranks_higher_priority(self):
    """Test that a defence decision outranks a weakly favoured one."""
    defend = Defend(position=test_helpers.pos(1, 1), priority=0.2)
    research = test_helpers.research(0.9)
    ranked = ai_coordinator.prioritize_decisions(
        [research, defend], personality(tech_focus=1.0), CoordinatorConfig())
    self.assertEqual(ranked, [defend, research])

  def test_truncates_to_configured_limit(self):
    """Test that at most max_decisions_per_turn decisions survive."""
    ranked = ai_coordinator.prioritize_decisions(
        test_helpers.numbered_actions(6), personality(),
        CoordinatorConfig(max_decisions_per_turn=4))
    self.assertLen(ranked, 4)


class AICoordinatorTest(absltest.TestCase):

  def test_empty_world(self):
    """Test that an empty world yields no decisions."""
    coordinator = ai_coordinator.AICoordinator()
    self.assertEqual(coordinator.generate_turn_decisions(WorldState()), {})

  def test_invalid_config_rejected(self):
    """Test that an invalid configuration is rejected."""
    with self.assertRaises(ValueError):
      ai_coordinator.AICoordinator(
          PlannerConfig(queue=QueueConfig(actions_per_turn=0)))

  def test_default_strategies(self):
    """Test that the default strategies run in a fixed order."""
    coordinator = ai_coordinator.AICoordinator()
    self.assertEqual([s.name for s in coordinator.strategies],
                     ["utility", "goap", "htn"])

  def test_player_civs_are_skipped(self):
    """Test that player civilizations are not planned for."""
    strategy = StaticStrategy([test_helpers.research(0.5)])
    coordinator = ai_coordinator.AICoordinator(strategies=[strategy])

    decisions = coordinator.generate_turn_decisions(
        _world(1, 2, 3, players=(2,)))

    self.assertEqual(sorted(decisions), [1, 3])
    self.assertEqual(strategy.calls, [1, 3])

  def test_civs_without_decisions_omitted(self):
    """Test that civilizations without decisions are omitted."""
    coordinator = ai_coordinator.AICoordinator(strategies=[StaticStrategy([])])
    self.assertEqual(coordinator.generate_turn_decisions(_world(1, 2)), {})

  def test_malformed_civ_does_not_block_others(self):
    """Test that a malformed civilization does not block the others."""
    world = WorldState(turn=2, civilizations={
        1: {"personality": {"militarism": 3.0}},
        2: test_helpers.make_snapshot(civ_id=2),
    })
    coordinator = ai_coordinator.AICoordinator(
        strategies=[StaticStrategy([test_helpers.research(0.5)])])
    self.assertEqual(list(coordinator.generate_turn_decisions(world)), [2])

  def test_failing_strategy_is_tolerated(self):
    """Test that a failing strategy does not stop the others."""
    coordinator = ai_coordinator.AICoordinator(strategies=[
        BrokenStrategy(), StaticStrategy([test_helpers.research(0.5)])])
    decisions = coordinator.generate_turn_decisions(_world(1))
    self.assertEqual(decisions, {1: [test_helpers.research(0.5)]})

  def test_merges_and_truncates_to_eight(self):
    """Test that decisions are merged and truncated to eight."""
    actions = [test_helpers.explore(i / 20, x=i) for i in range(12)]
    actions.append(test_helpers.explore(0.99, x=0))
    coordinator = ai_coordinator.AICoordinator(
        strategies=[StaticStrategy(actions), StaticStrategy(actions)])

    decisions = coordinator.generate_turn_decisions(_world(1))[1]

    self.assertLen(decisions, 8)
    self.assertEqual(decisions[0].priority, 0.99)
    keys = [a.dedup_key() for a in decisions]
    self.assertLen(set(keys), 8)
    priorities = [a.priority for a in decisions]
    self.assertEqual(priorities, sorted(priorities, reverse=True))

  def test_cooldown_suppresses_following_turns(self):
    """Test that a long cooldown suppresses the following turns."""
    telemetry = DecisionTelemetry()
    coordinator = ai_coordinator.AICoordinator(
        strategies=[StaticStrategy(test_helpers.numbered_actions(5))],
        telemetry=telemetry)

    generated = []
    for turn in range(1, 8):
      decisions = coordinator.generate_turn_decisions(_world(1, turn=turn))
      generated.append(bool(decisions))

    # Five actions set the long cooldown of two turns.
    self.assertEqual(generated, [True, False, False, True, False, False, True])
    summary = telemetry.get_summary()
    self.assertEqual(summary["cooldown_skips"], {1: 4})
    self.assertEqual(summary["decisions_by_civ"], {1: 15})

  def test_short_cooldown(self):
    """Test that two decisions set a one-turn cooldown."""
    coordinator = ai_coordinator.AICoordinator(
        strategies=[StaticStrategy(test_helpers.numbered_actions(2))])
    generated = [bool(coordinator.generate_turn_decisions(_world(1, turn=t)))
                 for t in range(1, 5)]
    self.assertEqual(generated, [True, False, True, False])

  def test_single_decision_has_no_cooldown(self):
    """Test that a single decision sets no cooldown."""
    coordinator = ai_coordinator.AICoordinator(
        strategies=[StaticStrategy([test_helpers.research(0.5)])])
    for turn in range(1, 4):
      self.assertTrue(coordinator.generate_turn_decisions(
          _world(1, turn=turn)))
    self.assertEqual(coordinator.cooldowns.get(CivId(1)), 0)

  def test_remove_civ_clears_state(self):
    """Test that removing a civilization clears its state."""
    coordinator = ai_coordinator.AICoordinator(
        strategies=[StaticStrategy(test_helpers.numbered_actions(5))])
    coordinator.generate_turn_decisions(_world(1))
    self.assertIn(CivId(1), coordinator.last_decisions)
    coordinator.remove_civ(CivId(1))
    self.assertNotIn(CivId(1), coordinator.cooldowns)
    self.assertNotIn(CivId(1), coordinator.last_decisions)
    coordinator.clear_cache()
    self.assertEmpty(coordinator.last_decisions)

  def test_personality_decides_which_decisions_survive(self):
    """Test that each civilization keeps the decisions its traits favour."""
    actions = ([test_helpers.research(0.5, technology=f"Tech {i}")
                for i in range(5)]
               + test_helpers.numbered_actions(5, priority=0.5))
    world = WorldState(turn=3, civilizations={
        1: test_helpers.make_snapshot(
            civ_id=1, personality=personality(tech_focus=0.9)),
        2: test_helpers.make_snapshot(
            civ_id=2, personality=personality(exploration_drive=0.9)),
    })
    coordinator = ai_coordinator.AICoordinator(
        strategies=[StaticStrategy(actions)])

    decisions = coordinator.generate_turn_decisions(world)

    self.assertEqual(decisions[1], actions[:8])
    self.assertEqual(decisions[2], actions[5:] + actions[:3])

  def test_decide_for_civ_on_cooldown_clears_cached_decisions(self):
    """Test that a civilization on cooldown loses its cached decisions."""
    coordinator = ai_coordinator.AICoordinator(
        strategies=[StaticStrategy(test_helpers.numbered_actions(5))])
    self.assertTrue(coordinator.decide_for_civ(_world(1, turn=1), CivId(1)))
    self.assertIn(CivId(1), coordinator.last_decisions)

    self.assertEqual(
        coordinator.decide_for_civ(_world(1, turn=2), CivId(1)), [])

    self.assertNotIn(CivId(1), coordinator.last_decisions)

  def test_decide_for_civ_replaces_cached_decisions(self):
    """Test that a new decision cycle overwrites the cached decisions."""
    strategy = StaticStrategy([test_helpers.research(0.5)])
    coordinator = ai_coordinator.AICoordinator(strategies=[strategy])
    coordinator.decide_for_civ(_world(1, turn=1), CivId(1))

    strategy.actions = [test_helpers.explore(0.7)]
    coordinator.decide_for_civ(_world(1, turn=2), CivId(1))

    self.assertEqual(coordinator.last_decisions[CivId(1)],
                     [test_helpers.explore(0.7)])

  def test_real_strategies_produce_valid_decisions(self):
    """Test that the default strategies produce valid decisions."""
    world = WorldState(turn=4, civilizations={
        1: test_helpers.make_snapshot(
            civ_id=1,
            personality=personality(militarism=0.8, tech_focus=0.9,
                                    land_hunger=0.9, exploration_drive=0.7,
                                    industry_focus=0.8),
            free_tiles=[test_helpers.pos(11, 10), test_helpers.pos(9, 10)],
            rivals=[{"civ_id": 2, "capital": test_helpers.pos(20, 10)}],
        ),
    })
    decisions = ai_coordinator.AICoordinator().generate_turn_decisions(world)

    actions = decisions[1]
    self.assertBetween(len(actions), 1, 8)
    keys = [a.dedup_key() for a in actions]
    self.assertLen(set(keys), len(keys))
    for action in actions:
      self.assertBetween(action.priority, 0.0, 1.0)


if __name__ == "__main__":
  absltest.main()
