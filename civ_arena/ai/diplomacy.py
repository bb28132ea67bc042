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

"""Diplomatic relations between civilizations.

Exactly one ``DiplomaticRelation`` exists per unordered pair of
civilizations, owned by the ``DiplomacyRegistry``. Both sides read the same
record and every change is a single update to it. The relation value is
clamped to [-100, 100] on every assignment.

Example usage:
    >>> registry = DiplomacyRegistry()
    >>> registry.adjust_relation(CivId(1), CivId(2), 250.0).relation_value
    100.0
    >>> registry.relation(CivId(2), CivId(1)).relation_value
    100.0
"""

import enum
import random
from collections import deque
from dataclasses import dataclass
from typing import (Callable, Deque, Dict, Iterable, List, Mapping, Optional,
                    Tuple)

from absl import logging

from civ_arena.ai.civ_actions import (ActionExecutionError, DiplomaticAction,
                                      ExecutionFailure)
from civ_arena.ai.civ_state import CivId, CivPersonality, RelationView
from civ_arena.ai.config import DiplomacyConfig

MIN_RELATION = -100.0
MAX_RELATION = 100.0

# Chance per round that a random incident touches one relation.
_INCIDENT_CHANCE = 0.02
_INSULT_PENALTY = 10.0
_INCIDENT_TRADE_BONUS = 5.0
_BREAK_TREATY_PENALTY = 20.0


def clamp_relation(value: float) -> float:
  return max(MIN_RELATION, min(MAX_RELATION, value))


def pair_key(civ_a: int, civ_b: int) -> Tuple[CivId, CivId]:
  """Canonical (low, high) key for an unordered civilization pair."""
  if civ_a == civ_b:
    raise ValueError(f"A civilization has no relation with itself: {civ_a}")
  low, high = sorted((civ_a, civ_b))
  return CivId(low), CivId(high)


class TreatyKind(str, enum.Enum):
  NON_AGGRESSION = "non_aggression"
  ALLIANCE = "alliance"
  TRADE_PACT = "trade_pact"
  WAR = "war"


@dataclass
class Treaty:
  """An active treaty. Timed treaties count down, wars carry their start."""
  kind: TreatyKind
  turns_remaining: Optional[int] = None
  started_turn: Optional[int] = None

  @classmethod
  def war(cls, started_turn: int) -> "Treaty":
    return cls(TreatyKind.WAR, started_turn=started_turn)

  @classmethod
  def timed(cls, kind: TreatyKind, turns: int) -> "Treaty":
    if kind is TreatyKind.WAR:
      raise ValueError("War is not a timed treaty")
    return cls(kind, turns_remaining=turns)


class Proposal(str, enum.Enum):
  TRADE_PACT = "trade_pact"
  NON_AGGRESSION = "non_aggression"
  ALLIANCE = "alliance"
  PEACE = "peace"


# Acceptance chance before relation and personality modifiers.
_BASE_ACCEPTANCE = {
    Proposal.TRADE_PACT: 0.6,
    Proposal.NON_AGGRESSION: 0.4,
    Proposal.ALLIANCE: 0.2,
    Proposal.PEACE: 0.8,
}


def _personality_modifier(proposal: Proposal, target: CivPersonality) -> float:
  if proposal is Proposal.TRADE_PACT:
    return target.industry_focus * 0.5
  elif proposal is Proposal.NON_AGGRESSION:
    return target.honor_treaties * 0.3
  elif proposal is Proposal.ALLIANCE:
    return (target.honor_treaties + target.interventionism) * 0.25
  elif proposal is Proposal.PEACE:
    return target.honor_treaties * 0.4
  raise TypeError(f"Unknown proposal: {proposal!r}")


@dataclass
class Negotiation:
  initiator: CivId
  target: CivId
  proposal: Proposal
  turns_remaining: int


class EventKind(str, enum.Enum):
  WAR_DECLARED = "war_declared"
  PEACE_SIGNED = "peace_signed"
  ALLIANCE_FORMED = "alliance_formed"
  NON_AGGRESSION_SIGNED = "non_aggression_signed"
  TRADE_AGREEMENT_SIGNED = "trade_agreement_signed"
  TREATY_BROKEN = "treaty_broken"
  DIPLOMATIC_INSULT = "diplomatic_insult"


@dataclass(frozen=True)
class DiplomaticEvent:
  kind: EventKind
  civs: Tuple[CivId, CivId]
  turn: int


@dataclass(frozen=True)
class DiplomaticRecommendation:
  target: CivId
  action: DiplomaticAction
  priority: float


class DiplomaticRelation:
  """The single shared record for one unordered civilization pair."""

  def __init__(self, civ_a: int, civ_b: int, relation_value: float = 0.0):
    self.civ_a, self.civ_b = pair_key(civ_a, civ_b)
    self._relation_value = clamp_relation(relation_value)
    self.treaties: List[Treaty] = []
    self.trade_agreement = False

  @property
  def relation_value(self) -> float:
    return self._relation_value

  @relation_value.setter
  def relation_value(self, value: float) -> None:
    self._relation_value = clamp_relation(value)

  def adjust(self, delta: float) -> float:
    self.relation_value = self._relation_value + delta
    return self._relation_value

  def involves(self, civ_id: int) -> bool:
    return civ_id in (self.civ_a, self.civ_b)

  def other(self, civ_id: int) -> CivId:
    if civ_id == self.civ_a:
      return self.civ_b
    if civ_id == self.civ_b:
      return self.civ_a
    raise ValueError(f"Civilization {civ_id} is not part of {self!r}")

  def has_treaty(self, kind: TreatyKind) -> bool:
    return any(treaty.kind is kind for treaty in self.treaties)

  @property
  def at_war(self) -> bool:
    return self.has_treaty(TreatyKind.WAR)

  def to_view(self, owner: int) -> RelationView:
    """Read-only view of this record from ``owner``'s side."""
    return RelationView(
        other_civ=self.other(owner),
        relation_value=self._relation_value,
        treaties=tuple(treaty.kind.value for treaty in self.treaties),
        trade_agreement=self.trade_agreement,
    )

  def __repr__(self) -> str:
    treaties = ",".join(treaty.kind.value for treaty in self.treaties)
    return (f"DiplomaticRelation({self.civ_a}<->{self.civ_b}, "
            f"value={self._relation_value:.1f}, treaties=[{treaties}])")


def personality_compatibility(a: CivPersonality, b: CivPersonality) -> float:
  """How well two personalities get along, in [-1, 1]."""
  compatibility = 1.0 - abs(a.tech_focus - b.tech_focus)
  compatibility -= abs(a.interventionism - b.interventionism) * 0.5
  compatibility += (a.honor_treaties + b.honor_treaties) * 0.25
  compatibility -= abs(a.militarism - b.militarism) * 0.3
  return max(-1.0, min(1.0, compatibility))


class DiplomacyRegistry:
  """Owns every diplomatic relation and the pending negotiations."""

  def __init__(self, config: Optional[DiplomacyConfig] = None,
               rng: Optional[random.Random] = None,
               max_events: int = 500):
    self.config = config or DiplomacyConfig()
    self._rng = rng or random.Random(self.config.seed)
    self._relations: Dict[Tuple[CivId, CivId], DiplomaticRelation] = {}
    self.negotiations: List[Negotiation] = []
    self.events: Deque[DiplomaticEvent] = deque(maxlen=max_events)
    self.turn = 0

  def __len__(self) -> int:
    return len(self._relations)

  def relation(self, civ_a: int, civ_b: int) -> Optional[DiplomaticRelation]:
    return self._relations.get(pair_key(civ_a, civ_b))

  def get_or_create(self, civ_a: int, civ_b: int) -> DiplomaticRelation:
    key = pair_key(civ_a, civ_b)
    relation = self._relations.get(key)
    if relation is None:
      relation = DiplomaticRelation(*key)
      self._relations[key] = relation
    return relation

  def relations_for(self, civ_id: int) -> List[DiplomaticRelation]:
    """Records involving ``civ_id``, ordered by the other civilization."""
    found = [r for r in self._relations.values() if r.involves(civ_id)]
    return sorted(found, key=lambda r: r.other(civ_id))

  def views_for(self, civ_id: int) -> Tuple[RelationView, ...]:
    return tuple(r.to_view(civ_id) for r in self.relations_for(civ_id))

  def remove_civ(self, civ_id: int) -> None:
    """Forget every relation and negotiation of an eliminated civilization."""
    for key in [k for k in self._relations if civ_id in k]:
      del self._relations[key]
    self.negotiations = [
        n for n in self.negotiations
        if civ_id not in (n.initiator, n.target)
    ]

  def update(self, civ_a: int, civ_b: int,
             fn: Callable[[DiplomaticRelation], None]) -> DiplomaticRelation:
    """Apply ``fn`` to the one record of the pair as a single update."""
    relation = self.get_or_create(civ_a, civ_b)
    fn(relation)
    return relation

  def adjust_relation(self, civ_a: int, civ_b: int,
                      delta: float) -> DiplomaticRelation:
    return self.update(civ_a, civ_b, lambda r: r.adjust(delta))

  def _record(self, kind: EventKind, civ_a: int, civ_b: int) -> None:
    self.events.append(DiplomaticEvent(kind, pair_key(civ_a, civ_b),
                                       self.turn))

  def declare_war(self, aggressor: int, target: int,
                  turn: Optional[int] = None) -> DiplomaticRelation:
    """Start a war, cancelling every other treaty of the pair."""
    started = self.turn if turn is None else turn

    def _declare(relation: DiplomaticRelation) -> None:
      relation.treaties = [Treaty.war(started)]
      relation.trade_agreement = False
      relation.adjust(-self.config.war_declaration_penalty)

    relation = self.update(aggressor, target, _declare)
    self._record(EventKind.WAR_DECLARED, aggressor, target)
    logging.info("Civilization %s declared war on %s (turn %d)",
                 aggressor, target, started)
    return relation

  def make_peace(self, civ_a: int, civ_b: int) -> DiplomaticRelation:
    def _peace(relation: DiplomaticRelation) -> None:
      relation.treaties = [
          t for t in relation.treaties if t.kind is not TreatyKind.WAR
      ]
      relation.adjust(20.0)

    relation = self.update(civ_a, civ_b, _peace)
    self._record(EventKind.PEACE_SIGNED, civ_a, civ_b)
    return relation

  def break_treaty(self, initiator: int, target: int) -> DiplomaticRelation:
    """Drop the most recent non-war treaty of the pair."""
    relation = self.relation(initiator, target)
    if relation is None or not any(
        t.kind is not TreatyKind.WAR for t in relation.treaties):
      raise ActionExecutionError(
          ExecutionFailure.INVALID_TARGET,
          f"no treaty between {initiator} and {target} to break",
      )

    def _break(relation: DiplomaticRelation) -> None:
      for index in range(len(relation.treaties) - 1, -1, -1):
        if relation.treaties[index].kind is not TreatyKind.WAR:
          del relation.treaties[index]
          break
      relation.adjust(-_BREAK_TREATY_PENALTY)

    relation = self.update(initiator, target, _break)
    self._record(EventKind.TREATY_BROKEN, initiator, target)
    return relation

  def propose(self, initiator: int, target: int,
              proposal: Proposal) -> Negotiation:
    """Open a negotiation, resolved after ``negotiation_turns`` rounds."""
    for negotiation in self.negotiations:
      if (negotiation.initiator == initiator
          and negotiation.target == target
          and negotiation.proposal is proposal):
        return negotiation
    self.get_or_create(initiator, target)
    negotiation = Negotiation(
        initiator=CivId(initiator),
        target=CivId(target),
        proposal=proposal,
        turns_remaining=self.config.negotiation_turns,
    )
    self.negotiations.append(negotiation)
    logging.debug("Civilization %s proposed %s to %s", initiator,
                  proposal.value, target)
    return negotiation

  def negotiation_success_chance(
      self, negotiation: Negotiation,
      personalities: Mapping[int, CivPersonality]) -> float:
    initiator = personalities.get(negotiation.initiator)
    target = personalities.get(negotiation.target)
    if initiator is None or target is None:
      return 0.0
    relation = self.relation(negotiation.initiator, negotiation.target)
    relation_value = relation.relation_value if relation else 0.0
    chance = (_BASE_ACCEPTANCE[negotiation.proposal]
              + relation_value / 100.0 * 0.5
              + _personality_modifier(negotiation.proposal, target) * 0.3)
    return max(0.0, min(1.0, chance))

  def _accept(self, negotiation: Negotiation) -> None:
    proposal = negotiation.proposal
    a, b = negotiation.initiator, negotiation.target
    if proposal is Proposal.TRADE_PACT:
      def _trade(relation: DiplomaticRelation) -> None:
        relation.trade_agreement = True
        relation.treaties.append(Treaty.timed(
            TreatyKind.TRADE_PACT, self.config.trade_pact_turns))
        relation.adjust(10.0)
      self.update(a, b, _trade)
      self._record(EventKind.TRADE_AGREEMENT_SIGNED, a, b)
    elif proposal is Proposal.NON_AGGRESSION:
      def _pact(relation: DiplomaticRelation) -> None:
        relation.treaties.append(Treaty.timed(
            TreatyKind.NON_AGGRESSION, self.config.non_aggression_turns))
        relation.adjust(15.0)
      self.update(a, b, _pact)
      self._record(EventKind.NON_AGGRESSION_SIGNED, a, b)
    elif proposal is Proposal.ALLIANCE:
      def _ally(relation: DiplomaticRelation) -> None:
        relation.treaties.append(Treaty.timed(
            TreatyKind.ALLIANCE, self.config.alliance_turns))
        relation.adjust(25.0)
      self.update(a, b, _ally)
      self._record(EventKind.ALLIANCE_FORMED, a, b)
    elif proposal is Proposal.PEACE:
      self.make_peace(a, b)
    else:
      raise TypeError(f"Unknown proposal: {proposal!r}")

  def process_negotiations(
      self, personalities: Mapping[int, CivPersonality]) -> List[Negotiation]:
    """Count down negotiations and resolve the ones that finish.

    Returns:
      The negotiations that were accepted this round
    """
    accepted = []
    pending = []
    for negotiation in self.negotiations:
      negotiation.turns_remaining = max(0, negotiation.turns_remaining - 1)
      if negotiation.turns_remaining > 0:
        pending.append(negotiation)
        continue
      chance = self.negotiation_success_chance(negotiation, personalities)
      if self._rng.random() < chance:
        self._accept(negotiation)
        accepted.append(negotiation)
        logging.info("Civilization %s accepted %s from %s",
                     negotiation.target, negotiation.proposal.value,
                     negotiation.initiator)
      else:
        logging.debug("Civilization %s rejected %s from %s (chance %.2f)",
                      negotiation.target, negotiation.proposal.value,
                      negotiation.initiator, chance)
    self.negotiations = pending
    return accepted

  def update_relation_values(
      self, personalities: Mapping[int, CivPersonality]) -> None:
    """Decay every relation toward neutral and apply personality drift."""
    decay = self.config.relation_decay
    for key in sorted(self._relations):
      relation = self._relations[key]
      value = relation.relation_value
      if value > 0.0:
        value = max(0.0, value - decay)
      elif value < 0.0:
        value = min(0.0, value + decay)
      a = personalities.get(relation.civ_a)
      b = personalities.get(relation.civ_b)
      if a is not None and b is not None:
        value += (personality_compatibility(a, b)
                  * self.config.compatibility_drift)
      relation.relation_value = value

  def update_treaty_durations(self) -> None:
    """Count down timed treaties; expired ones are removed, wars persist."""
    for relation in self._relations.values():
      kept = []
      for treaty in relation.treaties:
        if treaty.kind is TreatyKind.WAR:
          kept.append(treaty)
          continue
        treaty.turns_remaining = max(0, (treaty.turns_remaining or 0) - 1)
        if treaty.turns_remaining > 0:
          kept.append(treaty)
        elif treaty.kind is TreatyKind.TRADE_PACT:
          relation.trade_agreement = False
      relation.treaties = kept

  def generate_incidents(self, personalities: Mapping[int, CivPersonality]
                        ) -> Optional[DiplomaticEvent]:
    """Occasionally insult or reward a random pair of civilizations."""
    if self._rng.random() >= _INCIDENT_CHANCE:
      return None
    civ_ids = sorted(personalities)
    if len(civ_ids) < 2:
      return None
    civ_a = civ_ids[self._rng.randrange(len(civ_ids))]
    civ_b = civ_ids[self._rng.randrange(len(civ_ids))]
    if civ_a == civ_b:
      return None
    relation = self.relation(civ_a, civ_b)
    if relation is None:
      return None

    kind = self._rng.choice(
        (EventKind.DIPLOMATIC_INSULT, EventKind.TRADE_AGREEMENT_SIGNED))
    a, b = personalities[civ_a], personalities[civ_b]
    if kind is EventKind.DIPLOMATIC_INSULT:
      probability = a.interventionism * 0.5 + (1.0 - a.honor_treaties) * 0.3
    else:
      probability = (a.industry_focus + b.industry_focus) * 0.25
    if self._rng.random() >= probability:
      return None

    if kind is EventKind.DIPLOMATIC_INSULT:
      self.adjust_relation(civ_a, civ_b, -_INSULT_PENALTY)
    else:
      def _sign(relation: DiplomaticRelation) -> None:
        relation.trade_agreement = True
        relation.adjust(_INCIDENT_TRADE_BONUS)
      self.update(civ_a, civ_b, _sign)
    self._record(kind, civ_a, civ_b)
    logging.info("Diplomatic incident %s between %s and %s", kind.value,
                 civ_a, civ_b)
    return self.events[-1]

  def war_likelihood(self, civ_id: int, other: int,
                     personalities: Mapping[int, CivPersonality],
                     military_strengths: Mapping[int, float]) -> float:
    """Likelihood in [0, 1] that ``civ_id`` starts a war with ``other``."""
    relation = self.relation(civ_id, other)
    if relation is None:
      return 0.0
    if any(relation.has_treaty(kind) for kind in
           (TreatyKind.NON_AGGRESSION, TreatyKind.ALLIANCE, TreatyKind.WAR)):
      return 0.0
    personality = personalities.get(civ_id)
    if personality is None or other not in personalities:
      return 0.0

    likelihood = 0.0
    if relation.relation_value < -20.0:
      likelihood += (-relation.relation_value - 20.0) / 80.0
    likelihood += personality.militarism * 0.3
    likelihood += personality.land_hunger * 0.2
    likelihood += (1.0 - personality.honor_treaties) * 0.2
    own = military_strengths.get(civ_id, 0.0)
    theirs = military_strengths.get(other, 0.0)
    if own > theirs * 1.5:
      likelihood += 0.3
    return max(0.0, min(1.0, likelihood))

  def recommendations(
      self, civ_id: int, personalities: Mapping[int, CivPersonality],
      military_strengths: Mapping[int, float]
  ) -> List[DiplomaticRecommendation]:
    """Diplomatic moves worth considering for ``civ_id``, best first."""
    personality = personalities.get(civ_id)
    if personality is None:
      return []
    found = []
    for other in sorted(personalities):
      if other == civ_id:
        continue
      relation = self.relation(civ_id, other)
      if relation is None:
        continue
      if personality.industry_focus > 0.6 and not relation.trade_agreement:
        found.append(DiplomaticRecommendation(
            CivId(other), DiplomaticAction.PROPOSE_TRADE_PACT,
            personality.industry_focus))
      if (relation.relation_value > 30.0
          and personality.honor_treaties > 0.5
          and not relation.has_treaty(TreatyKind.ALLIANCE)):
        found.append(DiplomaticRecommendation(
            CivId(other), DiplomaticAction.PROPOSE_ALLIANCE,
            relation.relation_value / 100.0))
      if relation.relation_value < -30.0 and personality.militarism > 0.6:
        likelihood = self.war_likelihood(civ_id, other, personalities,
                                         military_strengths)
        if likelihood > 0.3:
          found.append(DiplomaticRecommendation(
              CivId(other), DiplomaticAction.DECLARE_WAR, likelihood))
    found.sort(key=lambda rec: rec.priority, reverse=True)
    return found

  def apply_diplomatic_action(self, initiator: int, target: int,
                              action: DiplomaticAction) -> None:
    """Carry out a decided diplomatic action.

    Raises:
      ActionExecutionError: If the action is not allowed for this pair
    """
    if initiator == target:
      raise ActionExecutionError(ExecutionFailure.INVALID_TARGET,
                                 f"civilization {initiator} targets itself")
    relation = self.get_or_create(initiator, target)
    proposals = {
        DiplomaticAction.PROPOSE_ALLIANCE: Proposal.ALLIANCE,
        DiplomaticAction.PROPOSE_NON_AGGRESSION: Proposal.NON_AGGRESSION,
        DiplomaticAction.PROPOSE_TRADE_PACT: Proposal.TRADE_PACT,
    }
    if action in proposals:
      if relation.at_war:
        raise ActionExecutionError(
            ExecutionFailure.DIPLOMATIC_RESTRICTION,
            f"{initiator} and {target} are at war",
        )
      self.propose(initiator, target, proposals[action])
    elif action is DiplomaticAction.DECLARE_WAR:
      if relation.at_war:
        raise ActionExecutionError(
            ExecutionFailure.INVALID_TARGET,
            f"{initiator} is already at war with {target}",
        )
      if (relation.has_treaty(TreatyKind.NON_AGGRESSION)
          or relation.has_treaty(TreatyKind.ALLIANCE)):
        raise ActionExecutionError(
            ExecutionFailure.DIPLOMATIC_RESTRICTION,
            f"treaty forbids war between {initiator} and {target}",
        )
      self.declare_war(initiator, target)
    elif action is DiplomaticAction.MAKE_PEACE:
      if not relation.at_war:
        raise ActionExecutionError(
            ExecutionFailure.INVALID_TARGET,
            f"{initiator} is not at war with {target}",
        )
      self.propose(initiator, target, Proposal.PEACE)
    elif action is DiplomaticAction.BREAK_TREATY:
      self.break_treaty(initiator, target)
    else:
      raise TypeError(f"Unknown diplomatic action: {action!r}")

  def end_of_round(self, personalities: Mapping[int, CivPersonality],
                   turn: int) -> List[Negotiation]:
    """Once-per-round upkeep: negotiations, drift, treaty decay, incidents."""
    self.turn = turn
    accepted = self.process_negotiations(personalities)
    self.update_relation_values(personalities)
    self.update_treaty_durations()
    self.generate_incidents(personalities)
    return accepted

  def ensure_pairs(self, civ_ids: Iterable[int]) -> None:
    """Create neutral records for every pair of ``civ_ids``."""
    ids = sorted(set(civ_ids))
    for index, civ_a in enumerate(ids):
      for civ_b in ids[index + 1:]:
        self.get_or_create(civ_a, civ_b)
