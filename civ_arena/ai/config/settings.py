"""Configuration constants and settings for the civilization AI core.

This module consolidates the tunable numbers of the decision strategies,
the action queue, the cooldown rules and the diplomatic model into typed
dataclasses. Every section can be overridden from environment variables
with the ``CIV_AI_`` prefix.
"""

import os
from dataclasses import dataclass, field
from typing import Tuple


@dataclass
class QueueConfig:
  """Per-civilization action queue limits."""
  max_queue_size: int = 20  # Backlog capacity; inserts beyond it are no-ops
  actions_per_turn: int = 3  # Dequeues allowed per civilization per turn
  default_retry_budget: int = 2  # Retries after a normal insertion fails
  urgent_retry_budget: int = 1  # Retries after an urgent insertion fails
  retry_delay_turns: int = 1  # Linear backoff applied on requeue

  @classmethod
  def from_env(cls) -> 'QueueConfig':
    """Create configuration from environment variables."""
    return cls(
        max_queue_size=int(os.getenv('CIV_AI_MAX_QUEUE_SIZE', '20')),
        actions_per_turn=int(os.getenv('CIV_AI_ACTIONS_PER_TURN', '3')),
        default_retry_budget=int(os.getenv('CIV_AI_RETRY_BUDGET', '2')),
        urgent_retry_budget=int(os.getenv('CIV_AI_URGENT_RETRY_BUDGET', '1')),
    )


@dataclass
class CooldownConfig:
  """Decision cooldown derived from the size of the last decision batch.

  0..max_actions_no_cooldown actions leave no cooldown, up to
  max_actions_short_cooldown actions set the short cooldown, anything
  larger sets the long cooldown.
  """
  max_actions_no_cooldown: int = 1
  max_actions_short_cooldown: int = 3
  short_cooldown: int = 1
  long_cooldown: int = 2

  @classmethod
  def from_env(cls) -> 'CooldownConfig':
    """Create configuration from environment variables."""
    return cls(
        short_cooldown=int(os.getenv('CIV_AI_SHORT_COOLDOWN', '1')),
        long_cooldown=int(os.getenv('CIV_AI_LONG_COOLDOWN', '2')),
    )


@dataclass
class CoordinatorConfig:
  """Personality thresholds and weights used to pick and rank decisions."""
  max_decisions_per_turn: int = 8
  personality_threshold_moderate: float = 0.5
  personality_threshold_high: float = 0.7
  exploration_personality_threshold: float = 0.4
  early_game_exploration_turn_limit: int = 30
  land_hunger_conquest_threshold: float = 0.7
  industry_focus_economy_threshold: float = 0.7

  # Ranking weight per action kind, multiplied by the matching trait
  priority_weight_expand: float = 1.3
  priority_weight_research: float = 1.2
  priority_weight_build_unit: float = 1.1
  priority_weight_build_building: float = 1.0
  priority_weight_trade: float = 0.9
  priority_weight_attack: float = 1.4
  priority_weight_diplomacy: float = 0.8
  priority_base_defend: float = 1.5  # Not scaled by personality
  priority_weight_explore: float = 1.15

  @classmethod
  def from_env(cls) -> 'CoordinatorConfig':
    """Create configuration from environment variables."""
    return cls(
        max_decisions_per_turn=int(
            os.getenv('CIV_AI_MAX_DECISIONS_PER_TURN', '8')
        ),
    )


@dataclass
class UtilityConfig:
  """Weights and bounds of the utility scorer."""
  consideration_threshold: float = 0.3  # Scores below this are discarded
  max_expansion_factor: float = 8.0
  gold_to_research_divisor: float = 100.0
  proximity_threshold: float = 20.0  # Rival capitals closer than this threaten
  threat_factor_max: float = 2.0
  base_militarism_weight: float = 0.5
  initial_unit_count_threshold: int = 2
  trade_route_saturation_divisor: float = 5.0
  max_trade_distance: float = 30.0
  economic_pressure_max: float = 2.0
  economic_pressure_base_weight: float = 0.3
  economic_pressure_variable_weight: float = 0.7
  trade_utility_multiplier: float = 0.8
  early_game_turn_threshold: int = 20
  mid_game_turn_threshold: int = 50
  early_game_exploration_multiplier: float = 1.5
  mid_game_exploration_multiplier: float = 1.0
  late_game_exploration_multiplier: float = 0.5
  few_territories_threshold: int = 3
  moderate_territories_threshold: int = 6
  few_territories_multiplier: float = 1.2
  moderate_territories_multiplier: float = 1.0
  many_territories_multiplier: float = 0.7
  research_candidates: Tuple[str, ...] = (
      'Agriculture',
      'Bronze Working',
      'Writing',
      'Mathematics',
      'Iron Working',
  )

  @classmethod
  def from_env(cls) -> 'UtilityConfig':
    """Create configuration from environment variables."""
    return cls(
        consideration_threshold=float(
            os.getenv('CIV_AI_UTILITY_THRESHOLD', '0.3')
        ),
    )


@dataclass
class GoapConfig:
  """Search bounds and goal targets of the GOAP planner."""
  max_planning_depth: int = 10
  max_iterations: int = 1000
  territory_expansion_target: float = 3.0
  technology_advancement_target: float = 2.0
  income_multiplier: float = 1.5
  trade_routes_target: float = 2.0
  military_multiplier: float = 1.5
  exploration_target: float = 10.0
  gold_cost_scale: float = 5.0  # Gold spent per unit of action cost

  @classmethod
  def from_env(cls) -> 'GoapConfig':
    """Create configuration from environment variables."""
    return cls(
        max_planning_depth=int(os.getenv('CIV_AI_GOAP_MAX_DEPTH', '10')),
        max_iterations=int(os.getenv('CIV_AI_GOAP_MAX_ITERATIONS', '1000')),
    )


@dataclass
class HtnConfig:
  """Fixed priority weights of the HTN planner."""
  establish_city_priority: float = 0.8
  build_unit_priority: float = 0.7
  diplomacy_priority: float = 0.7
  research_tech_priority: float = 0.6
  military_action_priority: float = 0.6
  infrastructure_priority: float = 0.6
  trade_priority: float = 0.5
  explore_priority: float = 0.5
  defend_priority: float = 1.0
  initial_worst_relation: float = -100.0
  alliance_threshold: float = 20.0
  hostility_threshold: float = -30.0
  strength_weakness_threshold: float = 0.7
  max_decomposition_depth: int = 4

  @classmethod
  def from_env(cls) -> 'HtnConfig':
    """Create configuration from environment variables."""
    return cls(
        alliance_threshold=float(
            os.getenv('CIV_AI_ALLIANCE_THRESHOLD', '20.0')
        ),
    )


@dataclass
class DiplomacyConfig:
  """Relation drift, treaty lengths and negotiation settings."""
  relation_decay: float = 0.5
  compatibility_drift: float = 0.1
  non_aggression_turns: int = 50
  alliance_turns: int = 100
  trade_pact_turns: int = 30
  negotiation_turns: int = 3
  war_declaration_penalty: float = 50.0
  seed: int = 0

  @classmethod
  def from_env(cls) -> 'DiplomacyConfig':
    """Create configuration from environment variables."""
    return cls(
        relation_decay=float(os.getenv('CIV_AI_RELATION_DECAY', '0.5')),
        seed=int(os.getenv('CIV_AI_SEED', '0')),
    )


@dataclass
class PlannerConfig:
  """Root configuration aggregating all sub-configurations."""
  queue: QueueConfig = field(default_factory=QueueConfig)
  cooldown: CooldownConfig = field(default_factory=CooldownConfig)
  coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
  utility: UtilityConfig = field(default_factory=UtilityConfig)
  goap: GoapConfig = field(default_factory=GoapConfig)
  htn: HtnConfig = field(default_factory=HtnConfig)
  diplomacy: DiplomacyConfig = field(default_factory=DiplomacyConfig)

  @classmethod
  def from_env(cls) -> 'PlannerConfig':
    """Create complete configuration from environment variables.

    Returns:
        PlannerConfig with all sub-configs populated from environment.
    """
    return cls(
        queue=QueueConfig.from_env(),
        cooldown=CooldownConfig.from_env(),
        coordinator=CoordinatorConfig.from_env(),
        utility=UtilityConfig.from_env(),
        goap=GoapConfig.from_env(),
        htn=HtnConfig.from_env(),
        diplomacy=DiplomacyConfig.from_env(),
    )

  def validate(self) -> None:
    """Validate configuration values are sensible.

    Raises:
        ValueError: If configuration contains invalid values.
    """
    # Queue validations
    if self.queue.max_queue_size <= 0:
      raise ValueError("max_queue_size must be positive")
    if self.queue.actions_per_turn <= 0:
      raise ValueError("actions_per_turn must be positive")
    if self.queue.default_retry_budget < 0:
      raise ValueError("default_retry_budget must not be negative")
    if self.queue.urgent_retry_budget < 0:
      raise ValueError("urgent_retry_budget must not be negative")
    if self.queue.retry_delay_turns <= 0:
      raise ValueError("retry_delay_turns must be positive")

    # Cooldown validations
    if self.cooldown.short_cooldown < 0 or self.cooldown.long_cooldown < 0:
      raise ValueError("cooldown durations cannot be negative")
    if (self.cooldown.max_actions_short_cooldown
        < self.cooldown.max_actions_no_cooldown):
      raise ValueError(
          "max_actions_short_cooldown must be >= max_actions_no_cooldown"
      )

    # Coordinator validations
    if self.coordinator.max_decisions_per_turn <= 0:
      raise ValueError("max_decisions_per_turn must be positive")

    # Strategy validations
    if not 0.0 <= self.utility.consideration_threshold <= 1.0:
      raise ValueError("consideration_threshold must be in range [0, 1]")
    if self.utility.max_expansion_factor <= 0:
      raise ValueError("max_expansion_factor must be positive")
    if self.goap.max_planning_depth <= 0:
      raise ValueError("max_planning_depth must be positive")
    if self.goap.max_iterations <= 0:
      raise ValueError("max_iterations must be positive")
    if self.htn.max_decomposition_depth <= 0:
      raise ValueError("max_decomposition_depth must be positive")

    # Diplomacy validations
    if self.diplomacy.relation_decay < 0:
      raise ValueError("relation_decay cannot be negative")
    if self.diplomacy.negotiation_turns <= 0:
      raise ValueError("negotiation_turns must be positive")


# Default configuration instance
DEFAULT_CONFIG = PlannerConfig()
