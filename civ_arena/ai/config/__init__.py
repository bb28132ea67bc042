"""Configuration for the civilization AI core.

This package provides the typed settings shared by the strategies, the
coordinator, the action queues and the diplomatic model.
"""

from civ_arena.ai.config.settings import (
    CoordinatorConfig,
    CooldownConfig,
    DEFAULT_CONFIG,
    DiplomacyConfig,
    GoapConfig,
    HtnConfig,
    PlannerConfig,
    QueueConfig,
    UtilityConfig,
)

__all__ = [
    "CoordinatorConfig",
    "CooldownConfig",
    "DEFAULT_CONFIG",
    "DiplomacyConfig",
    "GoapConfig",
    "HtnConfig",
    "PlannerConfig",
    "QueueConfig",
    "UtilityConfig",
]
