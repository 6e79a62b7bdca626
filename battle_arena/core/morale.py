"""
Morale Engine.

Aggregates what happened in a round into team morale, team chemistry and
individual psychology deltas. Every change is clamped through the bounds
policy as soon as it is combined.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Dict

from battle_arena.core.actions import ActionType, ExecutedAction, RogueType
from battle_arena.core.battle_state import ActionRecord, MoraleEvent, TeamState
from battle_arena.core.bounds import BoundsPolicy
from battle_arena.core.damage import DamageBreakdown
from battle_arena.core.stats import CharacterSnapshot

logger = logging.getLogger(__name__)


# (chemistry threshold, damage multiplier), highest first
CHEMISTRY_MULTIPLIERS = [
    (90, 1.25),
    (75, 1.15),
    (60, 1.05),
    (40, 0.95),
    (25, 0.85),
]
CHEMISTRY_FLOOR_MULTIPLIER = 0.75

HIGH_SUCCESS_RATE = 0.8
LOW_SUCCESS_RATE = 0.3
CRITICAL_HEALTH_FRACTION = 0.3

MORALE_EVENTS: Dict[str, float] = {
    "round_success": 10,
    "round_failure": -15,
    "critical_health": -5,       # per member newly below 30% health
    "ally_down": -20,
    "panic_spread": -10,
    "inspiring_action": 5,
    "betrayal": -25,
}
BETRAYAL_ENVIRONMENT_PENALTY = 10


def chemistry_damage_multiplier(chemistry: float) -> float:
    """Team-wide damage multiplier for a chemistry value."""
    for threshold, multiplier in CHEMISTRY_MULTIPLIERS:
        if chemistry >= threshold:
            return multiplier
    return CHEMISTRY_FLOOR_MULTIPLIER


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def calculate_team_chemistry(
    members: List[CharacterSnapshot],
    environmental_penalty: float = 0,
    policy: Optional[BoundsPolicy] = None,
) -> float:
    """
    Team cohesion from member traits and mental health.

    clamp(mean(team_player, communication, mental_health)
          - max(0, mean(ego) - 50) * 0.3 - environmental_penalty, 0, 100)
    """
    policy = policy or BoundsPolicy()
    if not members:
        return 0.0
    cohesion = _mean([
        _mean([m.traits.team_player for m in members]),
        _mean([m.traits.communication for m in members]),
        _mean([m.psych.mental_health for m in members]),
    ])
    ego_penalty = max(0.0, _mean([m.traits.ego for m in members]) - 50) * 0.3
    return policy.clamp("chemistry", round(cohesion - ego_penalty - environmental_penalty, 6), report=False)


@dataclass
class RoundTally:
    """Per-team counts collected over one round."""
    actions: int = 0
    successes: int = 0
    damage_dealt: int = 0
    damage_taken: int = 0

    @property
    def success_rate(self) -> float:
        if self.actions == 0:
            return 0.0
        return self.successes / self.actions


@dataclass
class RoundMoraleResult:
    team_id: str
    success_rate: float
    morale_before: float
    morale_after: float
    chemistry_before: float
    chemistry_after: float
    events: List[MoraleEvent] = field(default_factory=list)


class MoraleEngine:
    """Applies morale and psychology consequences of battle outcomes."""

    def __init__(self, policy: Optional[BoundsPolicy] = None):
        self.policy = policy or BoundsPolicy()

    def adjust_morale(self, team: TeamState, delta: float) -> float:
        team.current_morale = self.policy.clamp("morale", team.current_morale + delta, report=False)
        return team.current_morale

    def _event(
        self,
        team: TeamState,
        event_type: str,
        character_id: Optional[str] = None,
        description: str = "",
        delta: Optional[float] = None,
    ) -> MoraleEvent:
        change = MORALE_EVENTS[event_type] if delta is None else delta
        self.adjust_morale(team, change)
        return MoraleEvent(
            event_type=event_type,
            team_id=team.team_id,
            morale_change=change,
            character_id=character_id,
            description=description,
        )

    # =========================================================================
    # Per-action updates
    # =========================================================================

    def apply_hit(self, attacker: CharacterSnapshot, target: CharacterSnapshot, breakdown: DamageBreakdown) -> None:
        """Dealing damage builds confidence; taking it builds stress."""
        if breakdown.health_change <= 0:
            return
        if attacker.id != target.id:
            attacker.adjust_psych("confidence", 8, self.policy)
            attacker.adjust_psych("stress", -5, self.policy)
        target.adjust_psych("stress", 10, self.policy)
        target.adjust_psych("confidence", -5, self.policy)

    def action_events(
        self,
        actor: CharacterSnapshot,
        action: ExecutedAction,
        actor_team: TeamState,
        breakdowns: List[DamageBreakdown],
        teams: List[TeamState],
        success: bool,
    ) -> List[MoraleEvent]:
        """
        Morale events triggered by a single action.

        Applied immediately so later characters in the round see them.
        """
        events: List[MoraleEvent] = []

        for breakdown in breakdowns:
            if not breakdown.target_defeated or breakdown.target_id is None:
                continue
            fallen_team = next((t for t in teams if t.get_member(breakdown.target_id)), None)
            if fallen_team is not None:
                events.append(self._event(
                    fallen_team, "ally_down", breakdown.target_id,
                    f"{breakdown.target_id} has fallen",
                ))

        if action.action_type == ActionType.FLEE or action.rogue_type == RogueType.FLEES_BATTLE:
            events.append(self._event(actor_team, "panic_spread", actor.id, f"{actor.name} fled"))

        if action.action_type == ActionType.ABILITY and success:
            events.append(self._event(actor_team, "inspiring_action", actor.id, f"{actor.name} inspires the team"))

        if action.action_type == ActionType.ATTACK_TEAMMATE and action.target_id is not None:
            actor_team.environmental_penalty += BETRAYAL_ENVIRONMENT_PENALTY
            events.append(self._event(
                actor_team, "betrayal", actor.id,
                f"{actor.name} attacked teammate {action.target_id}",
            ))

        return events

    # =========================================================================
    # End of round
    # =========================================================================

    def tally(self, team: TeamState, records: List[ActionRecord]) -> RoundTally:
        tally = RoundTally()
        member_ids = {m.id for m in team.members}
        for record in records:
            if record.team_id == team.team_id and record.skipped_reason is None:
                tally.actions += 1
                if record.success:
                    tally.successes += 1
                tally.damage_dealt += sum(
                    b.health_change for b in record.damage_breakdowns
                    if b.target_id not in member_ids
                )
            for breakdown in record.damage_breakdowns:
                if breakdown.target_id in member_ids:
                    tally.damage_taken += breakdown.health_change
        return tally

    def end_of_round(self, team: TeamState, records: List[ActionRecord]) -> RoundMoraleResult:
        """
        Recompute a team's morale and chemistry after a round.

        Args:
            team: Team to update
            records: Every action record of the round (both teams)

        Returns:
            RoundMoraleResult with the events applied
        """
        morale_before = team.current_morale
        chemistry_before = team.team_chemistry
        tally = self.tally(team, records)
        events: List[MoraleEvent] = []
        living = team.living_members

        if tally.actions > 0:
            if tally.success_rate >= HIGH_SUCCESS_RATE:
                events.append(self._event(team, "round_success", description="The team executed well"))
                for member in living:
                    member.adjust_psych("confidence", 5, self.policy)
            elif tally.success_rate <= LOW_SUCCESS_RATE:
                events.append(self._event(team, "round_failure", description="The team struggled"))
                for member in living:
                    member.adjust_psych("confidence", -5, self.policy)

        newly_critical = [
            m for m in living
            if m.health_fraction < CRITICAL_HEALTH_FRACTION and m.id not in team.critical_member_ids
        ]
        if newly_critical:
            count = len(newly_critical)
            events.append(self._event(
                team, "critical_health",
                description=f"{count} member(s) badly hurt",
                delta=MORALE_EVENTS["critical_health"] * count,
            ))
            critical_ids = {m.id for m in newly_critical}
            for member in living:
                if member.id not in critical_ids:
                    member.adjust_psych("stress", 5 * count, self.policy)
            team.critical_member_ids.extend(m.id for m in newly_critical)

        if tally.damage_taken > tally.damage_dealt:
            team.consecutive_losses += 1
        else:
            team.consecutive_losses = 0

        self.update_chemistry(team)

        logger.debug(
            f"Team {team.team_id}: success {tally.success_rate:.2f}, morale "
            f"{morale_before:.0f} -> {team.current_morale:.0f}, chemistry "
            f"{chemistry_before:.0f} -> {team.team_chemistry:.0f}"
        )
        return RoundMoraleResult(
            team_id=team.team_id,
            success_rate=tally.success_rate,
            morale_before=morale_before,
            morale_after=team.current_morale,
            chemistry_before=chemistry_before,
            chemistry_after=team.team_chemistry,
            events=events,
        )

    def update_chemistry(self, team: TeamState) -> float:
        team.environmental_penalty = max(0, team.environmental_penalty)
        team.team_chemistry = calculate_team_chemistry(
            team.living_members, team.environmental_penalty, self.policy
        )
        team.chemistry_history.append(team.team_chemistry)
        return team.team_chemistry
