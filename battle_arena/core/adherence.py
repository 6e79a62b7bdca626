"""
Gameplan Adherence.

Decides whether a character follows the coach's planned action, deviates
slightly, improvises or goes rogue. The score is a bounded linear function
of training, mental health, team trust, stress and the relationships present
on the field. An optional jitter from the injected dice can move scores that
sit close to a threshold, but never one more than 20 points away from every
threshold.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Dict, Any

from battle_arena.core.bounds import BoundsPolicy
from battle_arena.core.dice import DiceRoller
from battle_arena.core.stats import CharacterSnapshot, RelationshipKind

logger = logging.getLogger(__name__)


class AdherenceResult(str, Enum):
    """Outcome of an adherence check, from most to least obedient."""
    FOLLOWS_STRATEGY = "follows_strategy"
    SLIGHT_DEVIATION = "slight_deviation"
    IMPROVISES = "improvises"
    GOES_ROGUE = "goes_rogue"


class ReasonTag(str, Enum):
    """Why a character is (or might be) off-plan."""
    LOW_MENTAL_HEALTH = "low_mental_health"
    HIGH_STRESS = "high_stress"
    HIGH_EGO = "high_ego"
    LOW_MORALE = "low_morale"
    NONE = "none"


FOLLOWS_THRESHOLD = 80
SLIGHT_DEVIATION_THRESHOLD = 60
IMPROVISE_THRESHOLD = 30
THRESHOLDS = (FOLLOWS_THRESHOLD, SLIGHT_DEVIATION_THRESHOLD, IMPROVISE_THRESHOLD)

MAX_JITTER = 10.0
JITTER_SAFE_DISTANCE = 20.0

ENEMY_PRESENCE_PENALTY = -20    # enemy edge with strength < -50
ALLY_PRESENCE_BONUS = 10        # ally edge with strength > 50
RELATIONSHIP_MODIFIER_CAP = 20


@dataclass
class AdherenceCheck:
    """Every component of one adherence decision."""
    character_id: str
    base_adherence: float
    mental_health_modifier: float
    team_trust_modifier: float
    stress_modifier: float
    relationship_modifier: float
    unjittered_score: float
    jitter: float
    score: float
    result: AdherenceResult
    reason: ReasonTag

    @property
    def follows(self) -> bool:
        return self.result == AdherenceResult.FOLLOWS_STRATEGY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character_id": self.character_id,
            "base_adherence": self.base_adherence,
            "mental_health_modifier": round(self.mental_health_modifier, 2),
            "team_trust_modifier": round(self.team_trust_modifier, 2),
            "stress_modifier": round(self.stress_modifier, 2),
            "relationship_modifier": self.relationship_modifier,
            "unjittered_score": round(self.unjittered_score, 2),
            "jitter": round(self.jitter, 2),
            "score": round(self.score, 2),
            "result": self.result.value,
            "reason": self.reason.value,
        }


def classify_score(score: float) -> AdherenceResult:
    """Map an adherence score to its outcome tier."""
    if score >= FOLLOWS_THRESHOLD:
        return AdherenceResult.FOLLOWS_STRATEGY
    if score >= SLIGHT_DEVIATION_THRESHOLD:
        return AdherenceResult.SLIGHT_DEVIATION
    if score >= IMPROVISE_THRESHOLD:
        return AdherenceResult.IMPROVISES
    return AdherenceResult.GOES_ROGUE


def distance_to_nearest_threshold(score: float) -> float:
    return min(abs(score - t) for t in THRESHOLDS)


class AdherenceEvaluator:
    """
    Gameplan adherence check.

    Args:
        policy: Bounds policy for the score clamp
        dice: Random source for jitter
        jitter: Jitter amplitude, clamped to [0, 10]. 0 disables jitter.
    """

    def __init__(
        self,
        policy: Optional[BoundsPolicy] = None,
        dice: Optional[DiceRoller] = None,
        jitter: float = 0.0,
    ):
        self.policy = policy or BoundsPolicy()
        self.dice = dice or DiceRoller()
        self.jitter_amplitude = max(0.0, min(MAX_JITTER, float(jitter)))

    def relationship_modifier(
        self,
        character: CharacterSnapshot,
        present_ids: Optional[Iterable[str]] = None,
    ) -> float:
        """
        Sum of relationship presence effects, clamped to [-20, 20].

        Only edges to characters on the field count when ``present_ids`` is
        given.
        """
        present = set(present_ids) if present_ids is not None else None
        total = 0
        for rel in character.relationships:
            if present is not None and rel.target_id not in present:
                continue
            if rel.kind == RelationshipKind.ENEMY and rel.strength < -50:
                total += ENEMY_PRESENCE_PENALTY
            elif rel.kind == RelationshipKind.ALLY and rel.strength > 50:
                total += ALLY_PRESENCE_BONUS
        return max(-RELATIONSHIP_MODIFIER_CAP, min(RELATIONSHIP_MODIFIER_CAP, total))

    def reason_tag(self, character: CharacterSnapshot, team_morale: float) -> ReasonTag:
        psych = character.psych
        if psych.mental_health < 40:
            return ReasonTag.LOW_MENTAL_HEALTH
        if psych.stress > 70:
            return ReasonTag.HIGH_STRESS
        if character.traits.ego > 80:
            return ReasonTag.HIGH_EGO
        if team_morale < 30 or psych.team_trust < 30:
            return ReasonTag.LOW_MORALE
        return ReasonTag.NONE

    def unjittered_score(
        self,
        character: CharacterSnapshot,
        present_ids: Optional[Iterable[str]] = None,
    ) -> float:
        """The deterministic part of the score, clamped to [0, 100]."""
        return self._components(character, present_ids)[-1]

    def _components(self, character: CharacterSnapshot, present_ids):
        psych = character.psych
        base = character.gameplan_adherence
        mental = 0.4 * (psych.mental_health - 50)
        trust = 0.3 * (psych.team_trust - 50)
        stress = -0.4 * psych.stress
        relationship = self.relationship_modifier(character, present_ids)
        total = round(base + mental + trust + stress + relationship, 6)
        score = self.policy.clamp("psychology", total, report=False)
        return base, mental, trust, stress, relationship, score

    def evaluate(
        self,
        character: CharacterSnapshot,
        team_morale: float = 50,
        present_ids: Optional[Iterable[str]] = None,
    ) -> AdherenceCheck:
        """
        Run the adherence check for one character.

        Args:
            character: Character about to act
            team_morale: Morale of the character's team
            present_ids: Ids of characters on the field

        Returns:
            AdherenceCheck with every component and the outcome tier
        """
        base, mental, trust, stress, relationship, unjittered = self._components(character, present_ids)

        jitter = 0.0
        if self.jitter_amplitude > 0 and distance_to_nearest_threshold(unjittered) <= JITTER_SAFE_DISTANCE:
            jitter = self.dice.jitter(self.jitter_amplitude)
        score = self.policy.clamp("psychology", unjittered + jitter, report=False)

        check = AdherenceCheck(
            character_id=character.id,
            base_adherence=base,
            mental_health_modifier=mental,
            team_trust_modifier=trust,
            stress_modifier=stress,
            relationship_modifier=relationship,
            unjittered_score=unjittered,
            jitter=jitter,
            score=score,
            result=classify_score(score),
            reason=self.reason_tag(character, team_morale),
        )
        logger.debug(
            f"Adherence {character.id}: {check.score:.1f} -> {check.result.value} ({check.reason.value})"
        )
        return check
