"""
Post-Battle Evaluation.

Turns a finished BattleState and its round history into the analysis handed
to the persistence collaborator: the result, team metrics, per-character
grades, relationship drift, psychological consequences, training
recommendations and chemistry evolution. Pure computation, no I/O.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, Tuple

from battle_arena.core.battle_state import BattleState, EndReason, TeamState
from battle_arena.core.bounds import BoundsPolicy
from battle_arena.core.stats import CharacterSnapshot, RelationshipKind


FRIENDLY_FIRE_DRIFT = -15
SHARED_SUCCESS_DRIFT = 5
RIVAL_RESPECT_DRIFT = 3

# (minimum score, grade), highest first
GRADE_THRESHOLDS = [
    (90, "S"),
    (75, "A"),
    (60, "B"),
    (40, "C"),
]
LOWEST_GRADE = "D"


def grade_for(score: float) -> str:
    for threshold, grade in GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return LOWEST_GRADE


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _floor_pct(value: float) -> int:
    return int(max(0, min(100, value)) // 1)


# =============================================================================
# Analysis Records
# =============================================================================

@dataclass
class CharacterEvaluation:
    character_id: str
    team_id: str
    damage_dealt: int
    damage_taken: int
    hit_rate: float
    deviations: int
    adherence_rate: float
    score: float
    grade: str
    highlights: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character_id": self.character_id,
            "team_id": self.team_id,
            "damage_dealt": self.damage_dealt,
            "damage_taken": self.damage_taken,
            "hit_rate": round(self.hit_rate, 3),
            "deviations": self.deviations,
            "adherence_rate": round(self.adherence_rate, 1),
            "score": round(self.score, 1),
            "grade": self.grade,
            "highlights": list(self.highlights),
        }


@dataclass
class RelationshipChange:
    """Drift on one directed relationship edge."""
    from_id: str
    to_id: str
    old_strength: float
    new_strength: float
    reasons: List[str] = field(default_factory=list)

    @property
    def change(self) -> float:
        return self.new_strength - self.old_strength

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_id,
            "to": self.to_id,
            "old_strength": self.old_strength,
            "new_strength": self.new_strength,
            "change": self.change,
            "reasons": list(self.reasons),
        }


@dataclass
class PsychologicalConsequence:
    character_id: str
    consequence_type: str
    severity: str
    mental_health_impact: int
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character_id": self.character_id,
            "type": self.consequence_type,
            "severity": self.severity,
            "mental_health_impact": self.mental_health_impact,
            "description": self.description,
        }


@dataclass
class TrainingRecommendation:
    character_id: str
    recommendation_type: str
    priority: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character_id": self.character_id,
            "type": self.recommendation_type,
            "priority": self.priority,
            "description": self.description,
        }


@dataclass
class PostBattleAnalysis:
    """Everything the persistence collaborator stores after a battle."""
    battle_id: str
    battle_result: Dict[str, Any]
    team_metrics: Dict[str, Dict[str, int]]
    character_evaluations: List[CharacterEvaluation]
    relationship_changes: List[RelationshipChange]
    psychological_consequences: List[PsychologicalConsequence]
    training_recommendations: List[TrainingRecommendation]
    chemistry_evolution: Dict[str, Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "battle_id": self.battle_id,
            "battle_result": dict(self.battle_result),
            "team_metrics": {k: dict(v) for k, v in self.team_metrics.items()},
            "character_evaluations": [e.to_dict() for e in self.character_evaluations],
            "relationship_changes": [c.to_dict() for c in self.relationship_changes],
            "psychological_consequences": [c.to_dict() for c in self.psychological_consequences],
            "training_recommendations": [r.to_dict() for r in self.training_recommendations],
            "chemistry_evolution": {k: dict(v) for k, v in self.chemistry_evolution.items()},
        }


# =============================================================================
# Evaluator
# =============================================================================

class PostBattleEvaluator:
    """Builds a PostBattleAnalysis from battle state and round history."""

    def __init__(self, policy: Optional[BoundsPolicy] = None):
        self.policy = policy or BoundsPolicy()

    def evaluate(self, state: BattleState) -> PostBattleAnalysis:
        return PostBattleAnalysis(
            battle_id=state.battle_id,
            battle_result=self.battle_result(state),
            team_metrics={t.team_id: self.team_metrics(t) for t in state.teams},
            character_evaluations=[self.evaluate_character(c) for c in state.all_characters()],
            relationship_changes=self.relationship_changes(state),
            psychological_consequences=self.psychological_consequences(state),
            training_recommendations=self.training_recommendations(state),
            chemistry_evolution={t.team_id: self.chemistry_evolution(t) for t in state.teams},
        )

    # -------------------------------------------------------------------------
    # Result and team metrics
    # -------------------------------------------------------------------------

    def battle_result(self, state: BattleState) -> Dict[str, Any]:
        """Outcome from the home team's perspective."""
        home = state.teams[0].team_id
        if state.winner is None:
            outcome = "draw"
        elif state.winner == home:
            outcome = "victory"
        else:
            outcome = "defeat"
        return {
            "result": outcome,
            "winner": state.winner,
            "end_reason": state.end_reason.value if state.end_reason else None,
            "rounds": state.current_round,
            "finished": state.end_reason is not None and state.end_reason != EndReason.ABORTED,
        }

    @staticmethod
    def adherence_rate(character: CharacterSnapshot) -> float:
        perf = character.performance
        if perf.actions_taken == 0:
            return float(character.gameplan_adherence)
        return perf.followed_strategy / perf.actions_taken * 100

    @staticmethod
    def _hit_rate(character: CharacterSnapshot, neutral: float = 0.5) -> float:
        perf = character.performance
        if perf.attacks_attempted == 0:
            return neutral
        return perf.successful_hits / perf.attacks_attempted

    def team_metrics(self, team: TeamState) -> Dict[str, int]:
        """Six 0-100 metrics for one team."""
        members = team.members
        teamwork = _mean([min(100, m.performance.teamplay_actions * 10 + 30) for m in members])
        adherence = _mean([self.adherence_rate(m) for m in members])
        execution = _mean([self._hit_rate(m) * 50 + m.health_fraction * 50 for m in members])
        return {
            "overall_teamwork": _floor_pct(teamwork),
            "gameplan_adherence": _floor_pct(adherence),
            "strategic_execution": _floor_pct(execution),
            "morale_management": _floor_pct(team.current_morale),
            "conflict_resolution": self._conflict_resolution(members),
            "adaptability": self._adaptability(members),
        }

    @staticmethod
    def _conflict_resolution(members: List[CharacterSnapshot]) -> int:
        if not members:
            return 0
        count = len(members)
        score = 50.0
        score += sum(1 for m in members if m.psych.team_trust > 60) / count * 30
        score += sum(1 for m in members if m.performance.teamplay_actions > 2) / count * 20
        score -= sum(1 for m in members if m.psych.stress > 70) / count * 25
        return _floor_pct(score)

    @staticmethod
    def _adaptability(members: List[CharacterSnapshot]) -> int:
        if not members:
            return 0
        count = len(members)
        deviations = [m.performance.strategy_deviations for m in members]
        score = 50.0
        score += sum(1 for d in deviations if 0 < d < 3) / count * 25
        score += sum(1 for m in members if m.psych.confidence > 60) / count * 15
        if all(d == 0 for d in deviations):
            score -= 20
        score -= sum(1 for d in deviations if d > 4) / count * 30
        return _floor_pct(score)

    # -------------------------------------------------------------------------
    # Characters
    # -------------------------------------------------------------------------

    def evaluate_character(self, character: CharacterSnapshot) -> CharacterEvaluation:
        """
        Grade one character.

        score = hit rate x 40 + adherence rate x 0.3 + health fraction x 20
                + min(10, teamplay x 2)
        """
        perf = character.performance
        hit_rate = self._hit_rate(character, neutral=0.0)
        adherence = self.adherence_rate(character)
        score = (
            hit_rate * 40
            + adherence * 0.3
            + character.health_fraction * 20
            + min(10, perf.teamplay_actions * 2)
        )
        highlights = []
        if perf.critical_hits:
            highlights.append(f"{perf.critical_hits} critical hit(s)")
        if perf.counter_attacks:
            highlights.append(f"{perf.counter_attacks} counter attack(s)")
        if perf.actions_taken and perf.strategy_deviations == 0:
            highlights.append("followed the game plan every turn")
        if character.is_alive and not character.fled:
            highlights.append("survived the battle")
        if perf.friendly_fire_dealt:
            highlights.append(f"dealt {perf.friendly_fire_dealt} friendly fire damage")

        return CharacterEvaluation(
            character_id=character.id,
            team_id=character.team_id,
            damage_dealt=perf.damage_dealt,
            damage_taken=perf.damage_taken,
            hit_rate=hit_rate,
            deviations=perf.strategy_deviations,
            adherence_rate=adherence,
            score=score,
            grade=grade_for(score),
            highlights=highlights,
        )

    # -------------------------------------------------------------------------
    # Relationships
    # -------------------------------------------------------------------------

    def relationship_changes(self, state: BattleState) -> List[RelationshipChange]:
        """
        Relationship drift from the battle.

        Friendly fire costs the victim's edge to the attacker; teammates who
        both succeed in consecutive rounds grow closer; defeating a rival
        earns respect. New strengths are clamped to [-100, 100].
        """
        deltas: Dict[Tuple[str, str], float] = {}
        reasons: Dict[Tuple[str, str], List[str]] = {}

        def add(from_id: str, to_id: str, amount: float, reason: str) -> None:
            key = (from_id, to_id)
            deltas[key] = deltas.get(key, 0) + amount
            reasons.setdefault(key, []).append(reason)

        successes_by_round: List[set] = []
        for record in state.rounds:
            succeeded = set()
            for action in record.actions:
                if action.success:
                    succeeded.add(action.character_id)
                for breakdown in action.damage_breakdowns:
                    attacker = state.get_character(breakdown.attacker_id)
                    target = state.get_character(breakdown.target_id)
                    if attacker is None or target is None or attacker.id == target.id:
                        continue
                    if attacker.team_id == target.team_id and breakdown.health_change > 0:
                        add(target.id, attacker.id, FRIENDLY_FIRE_DRIFT, "friendly_fire")
                    elif breakdown.target_defeated:
                        rel = attacker.relationship_to(target.id)
                        if rel is not None and rel.kind == RelationshipKind.RIVAL:
                            add(attacker.id, target.id, RIVAL_RESPECT_DRIFT, "defeated_rival")
            successes_by_round.append(succeeded)

        for team in state.teams:
            ids = [m.id for m in team.members]
            for i, first in enumerate(ids):
                for second in ids[i + 1:]:
                    for previous, current in zip(successes_by_round, successes_by_round[1:]):
                        if {first, second} <= previous and {first, second} <= current:
                            add(first, second, SHARED_SUCCESS_DRIFT, "shared_success")
                            add(second, first, SHARED_SUCCESS_DRIFT, "shared_success")

        changes = []
        for (from_id, to_id), delta in deltas.items():
            source = state.get_character(from_id)
            rel = source.relationship_to(to_id) if source else None
            old = rel.strength if rel else 0.0
            new = self.policy.clamp("relationship", old + delta, report=False)
            changes.append(RelationshipChange(from_id, to_id, old, new, reasons[(from_id, to_id)]))
        return changes

    # -------------------------------------------------------------------------
    # Psychology and training
    # -------------------------------------------------------------------------

    def psychological_consequences(self, state: BattleState) -> List[PsychologicalConsequence]:
        consequences = []
        for character in state.all_characters():
            perf = character.performance
            if character.current_health < character.stats.max_health * 0.2:
                consequences.append(PsychologicalConsequence(
                    character.id, "combat_trauma", "major", -25,
                    f"{character.name} was badly hurt and may dread the next fight",
                ))
            if perf.strategy_deviations > 5:
                consequences.append(PsychologicalConsequence(
                    character.id, "authority_resistance", "moderate", -10,
                    f"{character.name} kept ignoring the coach",
                ))
            if perf.successful_hits > 8 and perf.teamplay_actions > 3:
                consequences.append(PsychologicalConsequence(
                    character.id, "confidence_boost", "minor", 15,
                    f"{character.name} played well and knows it",
                ))
        return consequences

    def training_recommendations(self, state: BattleState) -> List[TrainingRecommendation]:
        recommendations = []
        for character in state.all_characters():
            perf = character.performance
            hit_rate = perf.successful_hits / max(1, perf.attacks_attempted)
            if hit_rate < 0.5:
                recommendations.append(TrainingRecommendation(
                    character.id, "combat_skills", "high",
                    f"Hit rate was {round(hit_rate * 100)}%",
                ))
            if perf.strategy_deviations > 2:
                recommendations.append(TrainingRecommendation(
                    character.id, "strategy_focus", "medium",
                    f"Deviated from the plan {perf.strategy_deviations} times",
                ))
            if character.psych.mental_health < 50:
                recommendations.append(TrainingRecommendation(
                    character.id, "mental_health", "high",
                    f"Mental health at {character.psych.mental_health:.0f}",
                ))
            if perf.teamplay_actions < 2:
                recommendations.append(TrainingRecommendation(
                    character.id, "team_chemistry", "medium",
                    f"Only {perf.teamplay_actions} team play action(s)",
                ))
        return recommendations

    # -------------------------------------------------------------------------
    # Chemistry
    # -------------------------------------------------------------------------

    def chemistry_evolution(self, team: TeamState) -> Dict[str, Any]:
        """Where the team's chemistry is headed after this battle."""
        members = team.members
        old = team.team_chemistry
        delta = 0.0
        factors = []

        if members and _mean([m.performance.teamplay_actions for m in members]) > 3:
            delta += 5
            factors.append("strong_teamwork")
        if sum(1 for m in members if m.psych.stress < 50) > len(members) / 2:
            delta += 3
            factors.append("stress_managed")
        deviators = sum(1 for m in members if m.performance.strategy_deviations > 2)
        if deviators:
            delta -= deviators * 2
            factors.append("strategy_friction")
        low_trust = sum(1 for m in members if m.psych.team_trust < 40)
        if low_trust:
            delta -= low_trust * 3
            factors.append("trust_issues")

        return {
            "old_chemistry": round(old, 2),
            "new_chemistry": round(self.policy.clamp("chemistry", old + delta, report=False), 2),
            "factors": factors,
            "history": [round(c, 2) for c in team.chemistry_history],
        }
