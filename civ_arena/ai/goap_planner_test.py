"""Tests for the goal-oriented action planner."""

from absl.testing import absltest, parameterized

from civ_arena.ai import goap_planner
from civ_arena.ai.civ_actions import (BuildUnit, Expand, Explore, Research,
                                      Trade)
from civ_arena.ai.config import GoapConfig
from civ_arena.ai.goap_planner import PlanningState, StrategicGoal
from civ_arena.ai.tests import test_helpers
from civ_arena.ai.tests.test_helpers import personality, pos


def _army(count=1):
  return [{"unit_type": "infantry", "position": pos(10, 10), "strength": 10}
          for _ in range(count)]


class PlanningStateTest(absltest.TestCase):

  def test_equal_states_hash_equal(self):
    """Test that equal planning states hash equal."""
    a = PlanningState.from_floats({"gold": 12.5, "income": 3})
    b = PlanningState.from_floats({"income": 3.0, "gold": 12.5})
    self.assertEqual(a, b)
    self.assertEqual(hash(a), hash(b))

  def test_with_deltas_is_pure(self):
    """Test that applying deltas leaves the original state unchanged."""
    state = PlanningState.from_floats({"gold": 100})
    after = state.with_deltas({"gold": -15, "technology_level": 1})
    self.assertEqual(state.get("gold"), 100.0)
    self.assertEqual(after.get("gold"), 85.0)
    self.assertEqual(after.get("technology_level"), 1.0)
    self.assertEqual(after.get("missing"), 0.0)

  def test_action_apply_spends_gold(self):
    """Test that applying a step spends its scaled gold cost."""
    research = goap_planner.GOAP_ACTIONS[1]
    state = PlanningState.from_floats({"gold": 60})
    self.assertTrue(research.preconditions_met(state))
    after = research.apply(state, gold_cost_scale=5.0)
    self.assertEqual(after.get("gold"), 45.0)
    self.assertFalse(research.preconditions_met(after))


class GoalSelectionTest(parameterized.TestCase):

  def test_no_goals_for_indifferent_civ(self):
    """Test that a civilization without strong traits has no goals."""
    planner = goap_planner.GoapPlanner()
    self.assertEmpty(planner.select_goals(test_helpers.make_snapshot()))

  @parameterized.named_parameters(
      ("militarism", {"militarism": 0.6}, StrategicGoal.BUILD_MILITARY),
      ("industry", {"industry_focus": 0.8}, StrategicGoal.DEVELOP_ECONOMY),
      ("exploration", {"exploration_drive": 0.5},
       StrategicGoal.EXPLORE_TERRITORY),
      ("land_hunger", {"land_hunger": 0.8}, StrategicGoal.EXPAND_TERRITORY),
      ("tech", {"tech_focus": 0.8}, StrategicGoal.ADVANCE_TECHNOLOGY),
  )
  def test_goal_triggers(self, traits, goal):
    """Test that each strong trait selects its goal."""
    planner = goap_planner.GoapPlanner()
    snapshot = test_helpers.make_snapshot(personality=personality(**traits))
    self.assertEqual(planner.select_goals(snapshot), [goal])

  def test_exploration_ends_after_early_game(self):
    """Test that exploration is not a goal after the early game."""
    planner = goap_planner.GoapPlanner()
    snapshot = test_helpers.make_snapshot(
        turn=30, personality=personality(exploration_drive=0.9))
    self.assertEmpty(planner.select_goals(snapshot))


class SearchTest(parameterized.TestCase):

  def setUp(self):
    super().setUp()
    self.planner = goap_planner.GoapPlanner()

  @parameterized.named_parameters(
      ("military", StrategicGoal.BUILD_MILITARY, ["build_military_unit"]),
      ("technology", StrategicGoal.ADVANCE_TECHNOLOGY,
       ["research_technology"] * 2),
      ("territory", StrategicGoal.EXPAND_TERRITORY,
       ["expand_territory"] * 3),
      ("exploration", StrategicGoal.EXPLORE_TERRITORY,
       ["explore_territory"] * 2),
      ("economy", StrategicGoal.DEVELOP_ECONOMY, ["establish_trade"] * 2),
  )
  def test_cheapest_plan(self, goal, expected):
    """Test that the search finds the cheapest plan for each goal."""
    snapshot = test_helpers.make_snapshot(units=_army())
    plan = self.planner.plan(snapshot, goal)
    self.assertEqual([step.name for step in plan], expected)

  def test_plan_reaches_targets(self):
    """Test that every step is applicable and the plan reaches its targets."""
    snapshot = test_helpers.make_snapshot(units=_army())
    start = goap_planner.extract_state(snapshot)
    targets = self.planner.goal_targets(StrategicGoal.DEVELOP_ECONOMY, start)
    state = start
    for step in self.planner.search(start, targets):
      self.assertTrue(step.preconditions_met(state))
      state = step.apply(state, self.planner.config.gold_cost_scale)
    for key, value in targets.items():
      self.assertGreaterEqual(state.get(key), value)

  def test_already_satisfied_goal_is_empty_plan(self):
    """Test that a satisfied goal needs an empty plan."""
    snapshot = test_helpers.make_snapshot()
    self.assertEqual(self.planner.plan(snapshot, StrategicGoal.BUILD_MILITARY),
                     [])

  def test_no_plan_without_gold(self):
    """Test that no plan is found without gold."""
    snapshot = test_helpers.make_snapshot(economy={"gold": 0})
    self.assertIsNone(
        self.planner.plan(snapshot, StrategicGoal.ADVANCE_TECHNOLOGY))

  def test_depth_limit(self):
    """Test that plans longer than the depth limit are not found."""
    planner = goap_planner.GoapPlanner(GoapConfig(max_planning_depth=2))
    snapshot = test_helpers.make_snapshot()
    self.assertIsNone(planner.plan(snapshot, StrategicGoal.EXPAND_TERRITORY))

  def test_iteration_cap(self):
    """Test that the search gives up after the iteration cap."""
    planner = goap_planner.GoapPlanner(GoapConfig(max_iterations=1))
    snapshot = test_helpers.make_snapshot()
    self.assertIsNone(planner.plan(snapshot, StrategicGoal.EXPLORE_TERRITORY))


class ProposeTest(absltest.TestCase):

  def test_first_steps_become_actions(self):
    """Test that the first step of each plan becomes an action."""
    planner = goap_planner.GoapPlanner()
    snapshot = test_helpers.make_snapshot(
        units=_army(),
        personality=personality(militarism=0.9, exploration_drive=0.9,
                                land_hunger=0.9, tech_focus=0.9),
        known_technologies={"Agriculture"},
    )

    actions = planner.propose(snapshot)

    by_type = {type(action): action for action in actions}
    self.assertEqual(set(by_type), {BuildUnit, Explore, Expand, Research})
    self.assertAlmostEqual(by_type[Explore].priority, 0.9)
    self.assertAlmostEqual(by_type[Expand].priority, 0.8)
    self.assertAlmostEqual(by_type[BuildUnit].priority, 0.75)
    self.assertAlmostEqual(by_type[Research].priority, 0.7)
    self.assertEqual(by_type[Research].technology, "Bronze Working")
    self.assertEqual(by_type[Expand].target_position, pos(11, 10))
    self.assertEqual(by_type[Explore].target_position, pos(7, 13))
    self.assertEqual([type(a) for a in actions],
                     [Explore, Expand, BuildUnit, Research])

  def test_trade_step_needs_a_rival(self):
    """Test that a trade step needs a rival to trade with."""
    planner = goap_planner.GoapPlanner()
    step = goap_planner.GOAP_ACTIONS[3]
    lonely = test_helpers.make_snapshot()
    social = test_helpers.make_snapshot(rivals=[{"civ_id": 4}, {"civ_id": 2}])
    self.assertIsNone(planner.to_ai_action(step, lonely))
    trade = planner.to_ai_action(step, social)
    self.assertIsInstance(trade, Trade)
    self.assertEqual(trade.partner, 2)

  def test_positional_steps_need_a_home(self):
    """Test that positional steps need a capital."""
    planner = goap_planner.GoapPlanner()
    homeless = test_helpers.make_snapshot(capital=None)
    for step in goap_planner.GOAP_ACTIONS:
      if step.name in ("research_technology", "establish_trade"):
        continue
      self.assertIsNone(planner.to_ai_action(step, homeless))


if __name__ == "__main__":
  absltest.main()
