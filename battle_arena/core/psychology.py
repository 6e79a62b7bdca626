"""
Psychology -> Combat Modifier.

The single bounded multiplier through which mental state touches physical
damage, plus the mental speed modifier used for initiative. Both are pure
functions of the attacker's psych state, team context and relationship edge.
"""
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from battle_arena.core.bounds import BoundsPolicy
from battle_arena.core.stats import PsychState, Relationship, RelationshipKind


# Additive deltas on a base multiplier of 1.0
HIGH_CONFIDENCE = (75, 0.2)        # confidence > 75
LOW_CONFIDENCE = (40, -0.3)        # confidence < 40
HIGH_STRESS = (70, -0.25)          # stress > 70
LOW_STRESS = (25, 0.1)             # stress < 25, not 30: stress 25 must stay at x1.0
MENTAL_HEALTH_FLOOR = 50           # -0.01 per point below
HIGH_FOCUS = (80, 0.15)            # battle_focus > 80
LOW_FOCUS = (40, -0.2)             # battle_focus < 40
GOOD_SYNERGY = 0.1                 # morale > 70 and trust > 70
POOR_SYNERGY = -0.15               # morale < 40 or trust < 30

RELATIONSHIP_DELTAS = {
    RelationshipKind.ENEMY: 0.1,
    RelationshipKind.RIVAL: 0.05,
    RelationshipKind.ALLY: -0.4,
}


@dataclass
class PsychologyModifier:
    """Bounded multiplier with the factors that produced it."""
    value: float
    unclamped: float
    factors: List[Tuple[str, float]] = field(default_factory=list)

    def describe(self) -> str:
        if not self.factors:
            return "neutral"
        return ", ".join(f"{name} {delta:+.2f}" for name, delta in self.factors)


def calculate_psychology_modifier(
    psych: PsychState,
    team_morale: float,
    relationship: Optional[Relationship] = None,
    attacker_id: Optional[str] = None,
    target_id: Optional[str] = None,
    policy: Optional[BoundsPolicy] = None,
) -> PsychologyModifier:
    """
    Compute the attacker's psychology multiplier.

    Args:
        psych: Attacker's current psych state
        team_morale: Attacker's team morale (0-100)
        relationship: Attacker -> target edge, if any
        attacker_id: Attacker id, used to exempt self-targeting from the ally penalty
        target_id: Target id
        policy: Bounds policy for the final clamp

    Returns:
        PsychologyModifier with value in [0.1, 2.0]
    """
    policy = policy or BoundsPolicy()
    factors: List[Tuple[str, float]] = []

    if psych.confidence > HIGH_CONFIDENCE[0]:
        factors.append(("high_confidence", HIGH_CONFIDENCE[1]))
    elif psych.confidence < LOW_CONFIDENCE[0]:
        factors.append(("low_confidence", LOW_CONFIDENCE[1]))

    if psych.stress > HIGH_STRESS[0]:
        factors.append(("high_stress", HIGH_STRESS[1]))
    elif psych.stress < LOW_STRESS[0]:
        factors.append(("low_stress", LOW_STRESS[1]))

    if psych.mental_health < MENTAL_HEALTH_FLOOR:
        factors.append(("low_mental_health", -(MENTAL_HEALTH_FLOOR - psych.mental_health) * 0.01))

    if psych.battle_focus > HIGH_FOCUS[0]:
        factors.append(("sharp_focus", HIGH_FOCUS[1]))
    elif psych.battle_focus < LOW_FOCUS[0]:
        factors.append(("poor_focus", LOW_FOCUS[1]))

    if team_morale > 70 and psych.team_trust > 70:
        factors.append(("team_synergy", GOOD_SYNERGY))
    elif team_morale < 40 or psych.team_trust < 30:
        factors.append(("poor_team_dynamics", POOR_SYNERGY))

    if relationship is not None:
        delta = RELATIONSHIP_DELTAS.get(relationship.kind)
        if relationship.kind == RelationshipKind.ALLY and attacker_id is not None and attacker_id == target_id:
            delta = None
        if delta is not None:
            factors.append((f"relationship_{relationship.kind.value}", delta))

    unclamped = 1.0 + sum(delta for _, delta in factors)
    # Round away float noise so 1.0 + 0.2 + 0.15 is exactly 1.35
    unclamped = round(unclamped, 6)
    value = policy.clamp("multiplier", unclamped, report=False)
    return PsychologyModifier(value=value, unclamped=unclamped, factors=factors)


def mental_speed_modifier(psych: PsychState) -> int:
    """
    Initiative adjustment from mental state.

    floor(-stress * 0.2 + (confidence - 50) * 0.1 + (battle_focus - 50) * 0.15)
    """
    value = (
        -psych.stress * 0.2
        + (psych.confidence - 50) * 0.1
        + (psych.battle_focus - 50) * 0.15
    )
    return int(math.floor(round(value, 6)))
