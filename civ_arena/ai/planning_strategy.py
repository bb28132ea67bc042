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

"""Common interface of the decision strategies.

A strategy maps one civilization's snapshot to a ranked list of candidate
actions. Finding no good move is a normal outcome and yields an empty list.
"""

import abc
from typing import List, Optional

from civ_arena.ai.civ_actions import AIAction
from civ_arena.ai.civ_state import CivilizationSnapshot, Position


class DecisionStrategy(abc.ABC):
  """Base class of the utility, GOAP and HTN strategies."""

  name: str = "strategy"

  @abc.abstractmethod
  def propose(self, snapshot: CivilizationSnapshot) -> List[AIAction]:
    """Candidate actions for ``snapshot``, highest priority first."""

  def __repr__(self) -> str:
    return f"{type(self).__name__}(name={self.name!r})"


def sort_by_priority(actions: List[AIAction]) -> List[AIAction]:
  """Stable sort, highest priority first."""
  return sorted(actions, key=lambda action: action.priority, reverse=True)


def clamp_priority(value: float) -> float:
  return max(0.0, min(1.0, value))


def home_position(snapshot: CivilizationSnapshot) -> Optional[Position]:
  """Capital if known, else the first city, else the first territory."""
  if snapshot.capital is not None:
    return snapshot.capital
  if snapshot.cities:
    return snapshot.cities[0].position
  if snapshot.territories:
    return snapshot.territories[0]
  return None
