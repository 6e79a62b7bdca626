"""
Coaching System.

Pre-battle huddle assessment and mid-battle coaching timeouts.

A timeout opens when the coach asks for one, when a character breaks down
(mental health < 20 or stress > 90) or when team chemistry collapses
(< 30). Each timeout carries an advisory real-time budget and offers a
bounded set of interventions. Every intervention rolls for success and its
effects pass through the bounds policy.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any

from battle_arena.core.adherence import AdherenceEvaluator, classify_score
from battle_arena.core.battle_state import TeamState
from battle_arena.core.bounds import BoundsPolicy
from battle_arena.core.dice import DiceRoller
from battle_arena.core.errors import InvalidInterventionError, ValidationError
from battle_arena.core.morale import MoraleEngine, calculate_team_chemistry
from battle_arena.core.stats import CharacterSnapshot

logger = logging.getLogger(__name__)


class TimeoutTrigger(str, Enum):
    """Why a coaching timeout opened."""
    PLAYER_REQUESTED = "player_requested"
    CHARACTER_BREAKDOWN = "character_breakdown"
    MORALE_COLLAPSE = "morale_collapse"


class InterventionType(str, Enum):
    """Coaching interventions available during a timeout or huddle."""
    MOTIVATIONAL_SPEECH = "motivational_speech"
    EMERGENCY_COUNSELING = "emergency_counseling"
    STRESS_MANAGEMENT = "stress_management"
    TEAM_MEETING = "team_meeting"
    STRATEGIC_REMINDER = "strategic_reminder"


INTERVENTION_SUCCESS_CHANCE: Dict[InterventionType, float] = {
    InterventionType.MOTIVATIONAL_SPEECH: 0.9,
    InterventionType.EMERGENCY_COUNSELING: 0.7,
    InterventionType.STRESS_MANAGEMENT: 0.8,
    InterventionType.TEAM_MEETING: 0.6,
    InterventionType.STRATEGIC_REMINDER: 0.85,
}
MAX_SUCCESS_CHANCE = 0.95
COACHING_POINT_BONUS = 0.01

BREAKDOWN_MENTAL_HEALTH = 20
BREAKDOWN_STRESS = 90
COLLAPSE_CHEMISTRY = 30

# Issue type -> recommended intervention
ISSUE_RECOMMENDATIONS: Dict[str, InterventionType] = {
    "critical_mental_health": InterventionType.EMERGENCY_COUNSELING,
    "extreme_stress": InterventionType.STRESS_MANAGEMENT,
    "trust_breakdown": InterventionType.TEAM_MEETING,
    "team_cohesion_failure": InterventionType.TEAM_MEETING,
    "low_morale": InterventionType.MOTIVATIONAL_SPEECH,
    "severe_injury": InterventionType.STRATEGIC_REMINDER,
}


@dataclass
class CoachingIssue:
    """Something the coach should address."""
    issue_type: str
    severity: str
    description: str
    character_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "issue_type": self.issue_type,
            "severity": self.severity,
            "description": self.description,
            "character_id": self.character_id,
        }


@dataclass
class InterventionResult:
    """Outcome of one coaching intervention."""
    intervention: InterventionType
    team_id: str
    success: bool
    success_chance: float
    character_id: Optional[str] = None
    effects: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intervention": self.intervention.value,
            "team_id": self.team_id,
            "success": self.success,
            "success_chance": round(self.success_chance, 3),
            "character_id": self.character_id,
            "effects": list(self.effects),
        }


@dataclass
class CoachingTimeout:
    """An open coaching timeout."""
    team_id: str
    trigger: TimeoutTrigger
    round_number: int
    budget_seconds: int
    issues: List[CoachingIssue] = field(default_factory=list)
    recommended: List[InterventionType] = field(default_factory=list)
    applied: List[InterventionResult] = field(default_factory=list)
    character_id: Optional[str] = None

    @property
    def available_interventions(self) -> List[InterventionType]:
        """Every intervention not yet used in this timeout."""
        used = {r.intervention for r in self.applied}
        return [i for i in InterventionType if i not in used]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_id": self.team_id,
            "trigger": self.trigger.value,
            "round_number": self.round_number,
            "budget_seconds": self.budget_seconds,
            "character_id": self.character_id,
            "issues": [i.to_dict() for i in self.issues],
            "recommended": [i.value for i in self.recommended],
            "available_interventions": [i.value for i in self.available_interventions],
            "applied": [r.to_dict() for r in self.applied],
        }


# =============================================================================
# Huddle
# =============================================================================

@dataclass
class CharacterReadiness:
    character_id: str
    name: str
    mental_readiness: float
    physical_readiness: float
    concerns: List[str]
    predicted_behavior: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character_id": self.character_id,
            "name": self.name,
            "mental_readiness": round(self.mental_readiness, 1),
            "physical_readiness": round(self.physical_readiness, 1),
            "concerns": list(self.concerns),
            "predicted_behavior": self.predicted_behavior,
        }


@dataclass
class HuddleReport:
    """Pre-battle assessment of one team."""
    team_id: str
    team_chemistry: float
    conflicts: List[Dict[str, Any]]
    synergies: List[Dict[str, Any]]
    readiness: List[CharacterReadiness]
    coaching_options: List[InterventionType]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_id": self.team_id,
            "team_chemistry": round(self.team_chemistry, 2),
            "conflicts": self.conflicts,
            "synergies": self.synergies,
            "readiness": [r.to_dict() for r in self.readiness],
            "coaching_options": [o.value for o in self.coaching_options],
        }


class CoachingEngine:
    """
    Huddles, timeouts and interventions.

    Args:
        policy: Bounds policy for intervention effects
        dice: Random source for success rolls
        morale: Morale engine used to recompute chemistry after a team meeting
        budget_seconds: Advisory real-time budget per timeout
    """

    def __init__(
        self,
        policy: Optional[BoundsPolicy] = None,
        dice: Optional[DiceRoller] = None,
        morale: Optional[MoraleEngine] = None,
        budget_seconds: int = 90,
    ):
        self.policy = policy or BoundsPolicy()
        self.dice = dice or DiceRoller()
        self.morale = morale or MoraleEngine(self.policy)
        self.budget_seconds = budget_seconds

    # =========================================================================
    # Issues and triggers
    # =========================================================================

    def assess_issues(self, team: TeamState) -> List[CoachingIssue]:
        """Problems on a team that an intervention could address."""
        issues: List[CoachingIssue] = []
        for member in team.living_members:
            psych = member.psych
            if psych.mental_health < BREAKDOWN_MENTAL_HEALTH:
                issues.append(CoachingIssue(
                    "critical_mental_health", "critical",
                    f"{member.name} is close to breaking down", member.id,
                ))
            if psych.stress > BREAKDOWN_STRESS:
                issues.append(CoachingIssue(
                    "extreme_stress", "high",
                    f"{member.name} is overwhelmed by stress", member.id,
                ))
            if psych.team_trust < 20:
                issues.append(CoachingIssue(
                    "trust_breakdown", "moderate",
                    f"{member.name} no longer trusts the team", member.id,
                ))
            if member.health_fraction < 0.15:
                issues.append(CoachingIssue(
                    "severe_injury", "high",
                    f"{member.name} is badly injured", member.id,
                ))
        if team.team_chemistry < COLLAPSE_CHEMISTRY:
            issues.append(CoachingIssue(
                "team_cohesion_failure", "critical", f"{team.name} is falling apart",
            ))
        if team.current_morale < 30:
            issues.append(CoachingIssue("low_morale", "moderate", f"{team.name} morale is low"))
        return issues

    def detect_trigger(self, team: TeamState) -> Optional[Dict[str, Any]]:
        """
        Automatic timeout trigger for a team, if any.

        Character breakdown takes precedence over morale collapse.
        """
        for member in team.living_members:
            if member.psych.mental_health < BREAKDOWN_MENTAL_HEALTH or member.psych.stress > BREAKDOWN_STRESS:
                return {"trigger": TimeoutTrigger.CHARACTER_BREAKDOWN, "character_id": member.id}
        if team.team_chemistry < COLLAPSE_CHEMISTRY:
            return {"trigger": TimeoutTrigger.MORALE_COLLAPSE, "character_id": None}
        return None

    def open_timeout(
        self,
        team: TeamState,
        trigger: TimeoutTrigger,
        round_number: int,
        character_id: Optional[str] = None,
    ) -> CoachingTimeout:
        issues = self.assess_issues(team)
        recommended: List[InterventionType] = []
        for issue in issues:
            rec = ISSUE_RECOMMENDATIONS.get(issue.issue_type)
            if rec is not None and rec not in recommended:
                recommended.append(rec)
        timeout = CoachingTimeout(
            team_id=team.team_id,
            trigger=trigger,
            round_number=round_number,
            budget_seconds=self.budget_seconds,
            issues=issues,
            recommended=recommended,
            character_id=character_id,
        )
        logger.info(f"Coaching timeout for {team.team_id} ({trigger.value}), {len(issues)} issue(s)")
        return timeout

    # =========================================================================
    # Interventions
    # =========================================================================

    def success_chance(self, intervention: InterventionType, coaching_points: int) -> float:
        chance = INTERVENTION_SUCCESS_CHANCE[intervention] + coaching_points * COACHING_POINT_BONUS
        return min(MAX_SUCCESS_CHANCE, max(0.0, chance))

    def apply_intervention(
        self,
        team: TeamState,
        intervention: str,
        character_id: Optional[str] = None,
    ) -> InterventionResult:
        """
        Roll for and apply one intervention.

        Args:
            team: Team being coached
            intervention: InterventionType value
            character_id: Target for one-character interventions. Defaults
                to the member most in need.

        Returns:
            InterventionResult with the applied effects (empty on failure)
        """
        try:
            kind = InterventionType(intervention)
        except ValueError:
            raise InvalidInterventionError(str(intervention))

        target: Optional[CharacterSnapshot] = None
        if character_id is not None:
            target = team.get_member(character_id)
            if target is None or not target.is_alive:
                raise ValidationError("character_id", f"No living team member '{character_id}'", character_id)

        chance = self.success_chance(kind, team.coaching_points)
        success = self.dice.chance(chance)
        result = InterventionResult(
            intervention=kind, team_id=team.team_id, success=success, success_chance=chance,
        )
        if not success:
            logger.info(f"{kind.value} for {team.team_id} failed (chance {chance:.2f})")
            return result

        living = team.living_members
        if kind == InterventionType.MOTIVATIONAL_SPEECH:
            self.morale.adjust_morale(team, 15)
            result.effects.append({"team_morale": 15})
            for member in living:
                member.adjust_psych("confidence", 10, self.policy)
            result.effects.append({"confidence": 10, "members": [m.id for m in living]})

        elif kind == InterventionType.EMERGENCY_COUNSELING:
            target = target or self._most_in_need(living, "mental_health")
            if target is not None:
                target.adjust_psych("mental_health", 20, self.policy)
                result.character_id = target.id
                result.effects.append({"mental_health": 20, "character_id": target.id})

        elif kind == InterventionType.STRESS_MANAGEMENT:
            target = target or self._most_in_need(living, "stress")
            if target is not None:
                target.adjust_psych("stress", -30, self.policy)
                result.character_id = target.id
                result.effects.append({"stress": -30, "character_id": target.id})

        elif kind == InterventionType.TEAM_MEETING:
            team.environmental_penalty = max(0, team.environmental_penalty - 15)
            for member in living:
                member.adjust_psych("team_trust", 10, self.policy)
            self.morale.update_chemistry(team)
            result.effects.append({"environmental_penalty": -15, "team_trust": 10})

        elif kind == InterventionType.STRATEGIC_REMINDER:
            for member in living:
                member.gameplan_adherence = self.policy.clamp(
                    "psychology", member.gameplan_adherence + 15, report=False
                )
            result.effects.append({"gameplan_adherence": 15, "members": [m.id for m in living]})

        logger.info(f"{kind.value} for {team.team_id} succeeded: {result.effects}")
        return result

    @staticmethod
    def _most_in_need(members: List[CharacterSnapshot], field_name: str) -> Optional[CharacterSnapshot]:
        if not members:
            return None
        if field_name == "stress":
            return max(members, key=lambda m: m.psych.stress)
        return min(members, key=lambda m: getattr(m.psych, field_name))

    # =========================================================================
    # Pre-battle huddle
    # =========================================================================

    def huddle(self, team: TeamState, adherence: Optional[AdherenceEvaluator] = None) -> HuddleReport:
        """
        Assess a team before the first round.

        Conflicts are teammate edges with strength below -30, synergies
        above 30. Predicted behavior uses the unjittered adherence score.
        """
        adherence = adherence or AdherenceEvaluator(self.policy)
        member_ids = {m.id for m in team.members}
        conflicts: List[Dict[str, Any]] = []
        synergies: List[Dict[str, Any]] = []
        for member in team.members:
            for rel in member.relationships:
                if rel.target_id not in member_ids:
                    continue
                entry = {
                    "from": member.id,
                    "to": rel.target_id,
                    "kind": rel.kind.value,
                    "strength": rel.strength,
                }
                if rel.strength < -30:
                    conflicts.append(entry)
                elif rel.strength > 30:
                    synergies.append(entry)

        conflicted = {c["from"] for c in conflicts}
        readiness = []
        for member in team.members:
            psych = member.psych
            concerns = []
            if psych.mental_health < 40:
                concerns.append("mental_health")
            if psych.stress > 70:
                concerns.append("stress")
            if member.traits.ego > 80:
                concerns.append("ego")
            if psych.team_trust < 30:
                concerns.append("trust")
            if member.health_fraction < 0.5:
                concerns.append("injured")
            if member.id in conflicted:
                concerns.append("teammate_conflict")
            score = adherence.unjittered_score(member, member_ids)
            readiness.append(CharacterReadiness(
                character_id=member.id,
                name=member.name,
                mental_readiness=(psych.mental_health + psych.confidence + (100 - psych.stress) + psych.battle_focus) / 4,
                physical_readiness=member.health_fraction * 100,
                concerns=concerns,
                predicted_behavior=classify_score(score).value,
            ))

        chemistry = calculate_team_chemistry(team.living_members, team.environmental_penalty, self.policy)
        return HuddleReport(
            team_id=team.team_id,
            team_chemistry=chemistry,
            conflicts=conflicts,
            synergies=synergies,
            readiness=readiness,
            coaching_options=list(InterventionType),
        )
