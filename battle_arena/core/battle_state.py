"""
Battle State.

Complete state of one battle: the two team aggregates, the phase, the
append-only round history and the event log. The scheduler owns the only
mutable reference to a BattleState; everything else reads it.
"""
import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any

from battle_arena.core.actions import ExecutedAction, PlannedAction
from battle_arena.core.adherence import AdherenceCheck
from battle_arena.core.damage import DamageBreakdown
from battle_arena.core.judge import JudgeDecision, PrecedentLog
from battle_arena.core.rogue_actions import BattleView
from battle_arena.core.stats import CharacterSnapshot


class BattlePhase(str, Enum):
    """Scheduler state machine phases."""
    PRE_BATTLE = "pre_battle"
    HUDDLE = "huddle"
    ROUND_COMBAT = "round_combat"
    COACHING_TIMEOUT = "coaching_timeout"
    POST_BATTLE = "post_battle"


class EndReason(str, Enum):
    """Why a battle ended."""
    TOTAL_VICTORY = "total_victory"
    MUTUAL_DESTRUCTION = "mutual_destruction"
    FORFEIT = "forfeit"
    TIME_LIMIT = "time_limit"
    ABORTED = "aborted"


class ArenaCondition(str, Enum):
    PRISTINE = "pristine"
    DAMAGED = "damaged"
    DESTROYED = "destroyed"


# =============================================================================
# Team Aggregate
# =============================================================================

@dataclass
class TeamState:
    """
    A team and its aggregate state.

    Morale and chemistry are recomputed by the morale engine every round and
    never edited directly by outside callers.
    """
    team_id: str
    name: str
    members: List[CharacterSnapshot] = field(default_factory=list)
    team_chemistry: float = 50
    current_morale: float = 50
    coaching_points: int = 0
    consecutive_losses: int = 0
    environmental_penalty: float = 0
    chemistry_history: List[float] = field(default_factory=list)
    critical_member_ids: List[str] = field(default_factory=list)

    @property
    def living_members(self) -> List[CharacterSnapshot]:
        return [m for m in self.members if m.is_alive]

    @property
    def active_members(self) -> List[CharacterSnapshot]:
        """Members who can still act this round."""
        return [m for m in self.members if m.is_active]

    @property
    def standing_members(self) -> List[CharacterSnapshot]:
        """Alive and not fled. Temporarily removed members still count."""
        return [m for m in self.members if m.is_alive and not m.fled]

    @property
    def health_fraction(self) -> float:
        total_max = sum(m.stats.max_health for m in self.members)
        if total_max <= 0:
            return 0.0
        return sum(m.current_health for m in self.members if not m.fled) / total_max

    def get_member(self, character_id: str) -> Optional[CharacterSnapshot]:
        for member in self.members:
            if member.id == character_id:
                return member
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_id": self.team_id,
            "name": self.name,
            "members": [m.to_dict() for m in self.members],
            "team_chemistry": round(self.team_chemistry, 2),
            "current_morale": round(self.current_morale, 2),
            "coaching_points": self.coaching_points,
            "consecutive_losses": self.consecutive_losses,
            "environmental_penalty": self.environmental_penalty,
            "chemistry_history": [round(c, 2) for c in self.chemistry_history],
        }

    def summary(self) -> Dict[str, Any]:
        """Compact per-round snapshot for the round record."""
        return {
            "team_id": self.team_id,
            "team_chemistry": round(self.team_chemistry, 2),
            "current_morale": round(self.current_morale, 2),
            "members": {
                m.id: {
                    "current_health": m.current_health,
                    "psychology": m.psych.to_dict(),
                    "fled": m.fled,
                    "removed_rounds": m.removed_rounds,
                }
                for m in self.members
            },
        }


# =============================================================================
# Round Records
# =============================================================================

@dataclass
class MoraleEvent:
    """A morale change caused by something that happened in battle."""
    event_type: str
    team_id: str
    morale_change: float
    character_id: Optional[str] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "team_id": self.team_id,
            "morale_change": self.morale_change,
            "character_id": self.character_id,
            "description": self.description,
        }


@dataclass
class ActionRecord:
    """One character's turn within a round."""
    character_id: str
    team_id: str
    planned_action: Optional[PlannedAction]
    executed_action: ExecutedAction
    adherence_check: Optional[AdherenceCheck] = None
    damage_breakdowns: List[DamageBreakdown] = field(default_factory=list)
    judge_decision: Optional[JudgeDecision] = None
    morale_events: List[MoraleEvent] = field(default_factory=list)
    deviation_type: Optional[str] = None
    success: bool = False
    skipped_reason: Optional[str] = None

    @property
    def damage_breakdown(self) -> Optional[DamageBreakdown]:
        """First hit, if any. Area attacks record several."""
        return self.damage_breakdowns[0] if self.damage_breakdowns else None

    @property
    def total_damage(self) -> int:
        return sum(b.health_change for b in self.damage_breakdowns)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character_id": self.character_id,
            "team_id": self.team_id,
            "planned_action": self.planned_action.to_dict() if self.planned_action else None,
            "executed_action": self.executed_action.to_dict(),
            "adherence_check": self.adherence_check.to_dict() if self.adherence_check else None,
            "damage_breakdowns": [b.to_dict() for b in self.damage_breakdowns],
            "judge_decision": self.judge_decision.to_dict() if self.judge_decision else None,
            "morale_events": [e.to_dict() for e in self.morale_events],
            "deviation_type": self.deviation_type,
            "success": self.success,
            "skipped_reason": self.skipped_reason,
        }


@dataclass
class RoundRecord:
    """An ordered, append-only record of one round."""
    round_number: int
    initiative: List[str] = field(default_factory=list)
    actions: List[ActionRecord] = field(default_factory=list)
    morale_events: List[MoraleEvent] = field(default_factory=list)
    team_snapshots: List[Dict[str, Any]] = field(default_factory=list)

    def actions_for_team(self, team_id: str) -> List[ActionRecord]:
        return [a for a in self.actions if a.team_id == team_id]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "round_number": self.round_number,
            "initiative": list(self.initiative),
            "actions": [a.to_dict() for a in self.actions],
            "morale_events": [e.to_dict() for e in self.morale_events],
            "team_snapshots": copy.deepcopy(self.team_snapshots),
        }


@dataclass
class BattleEvent:
    """An entry in the battle's event log."""
    event_type: str
    round_number: int
    description: str
    character_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "round_number": self.round_number,
            "description": self.description,
            "character_id": self.character_id,
            "data": self.data,
        }


# =============================================================================
# Battle State
# =============================================================================

@dataclass
class BattleState:
    """
    Complete state of a battle.

    Exactly two teams. ``teams[0]`` is the home side used for
    victory/defeat reporting.
    """
    teams: List[TeamState]
    battle_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    phase: BattlePhase = BattlePhase.PRE_BATTLE
    current_round: int = 0
    round_cap: int = 20
    rounds: List[RoundRecord] = field(default_factory=list)
    winner: Optional[str] = None
    end_reason: Optional[EndReason] = None
    arena_condition: ArenaCondition = ArenaCondition.PRISTINE
    arena_damage: int = 0
    seed: Optional[int] = None
    judge_name: str = "Judge Wisdom"
    timeouts_used: int = 0
    max_timeouts: int = 3
    active_timeout: Optional[Any] = None        # CoachingTimeout while in coaching_timeout
    timeout_history: List[Any] = field(default_factory=list)
    huddle_interventions: Dict[str, List[str]] = field(default_factory=dict)
    precedents: PrecedentLog = field(default_factory=PrecedentLog)
    event_log: List[BattleEvent] = field(default_factory=list)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def __post_init__(self):
        if len(self.teams) != 2:
            raise ValueError(f"A battle needs exactly two teams, got {len(self.teams)}")
        for team in self.teams:
            for member in team.members:
                member.team_id = team.team_id

    # =========================================================================
    # Lookups
    # =========================================================================

    @property
    def is_over(self) -> bool:
        return self.phase == BattlePhase.POST_BATTLE

    def all_characters(self) -> List[CharacterSnapshot]:
        """Every participant in submission order (team A roster, then team B)."""
        return [m for team in self.teams for m in team.members]

    def get_character(self, character_id: Optional[str]) -> Optional[CharacterSnapshot]:
        if character_id is None:
            return None
        for team in self.teams:
            member = team.get_member(character_id)
            if member is not None:
                return member
        return None

    def get_team(self, team_id: str) -> Optional[TeamState]:
        for team in self.teams:
            if team.team_id == team_id:
                return team
        return None

    def team_of(self, character_id: str) -> Optional[TeamState]:
        for team in self.teams:
            if team.get_member(character_id) is not None:
                return team
        return None

    def opponent_of(self, team_id: str) -> TeamState:
        return self.teams[1] if self.teams[0].team_id == team_id else self.teams[0]

    def view_for(self, character: CharacterSnapshot) -> BattleView:
        """Active enemies and teammates from one character's side."""
        own = self.get_team(character.team_id)
        enemy = self.opponent_of(character.team_id)
        return BattleView(
            enemies=enemy.active_members,
            teammates=[m for m in own.active_members if m.id != character.id] if own else [],
        )

    def present_ids(self) -> List[str]:
        return [c.id for c in self.all_characters() if c.is_active]

    # =========================================================================
    # Event log and rollback
    # =========================================================================

    def add_event(
        self,
        event_type: str,
        description: str,
        character_id: Optional[str] = None,
        data: Optional[Dict[str, Any]] = None
    ) -> BattleEvent:
        """Add an event to the battle log."""
        event = BattleEvent(
            event_type=event_type,
            round_number=self.current_round,
            description=description,
            character_id=character_id,
            data=data or {},
        )
        self.event_log.append(event)
        return event

    def snapshot(self) -> Dict[str, Any]:
        """Copy of everything a round can mutate."""
        return {
            "phase": self.phase,
            "teams": copy.deepcopy(self.teams),
            "arena_condition": self.arena_condition,
            "arena_damage": self.arena_damage,
            "precedents": copy.deepcopy(self.precedents),
            "event_count": len(self.event_log),
        }

    def restore(self, snapshot: Dict[str, Any]) -> None:
        """Roll back to a snapshot taken with ``snapshot()``."""
        self.phase = snapshot["phase"]
        self.teams = snapshot["teams"]
        self.arena_condition = snapshot["arena_condition"]
        self.arena_damage = snapshot["arena_damage"]
        self.precedents = snapshot["precedents"]
        del self.event_log[snapshot["event_count"]:]

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self, include_rounds: bool = False) -> Dict[str, Any]:
        result = {
            "battle_id": self.battle_id,
            "phase": self.phase.value,
            "current_round": self.current_round,
            "round_cap": self.round_cap,
            "teams": [t.to_dict() for t in self.teams],
            "winner": self.winner,
            "end_reason": self.end_reason.value if self.end_reason else None,
            "arena_condition": self.arena_condition.value,
            "arena_damage": self.arena_damage,
            "seed": self.seed,
            "judge": self.judge_name,
            "timeouts_used": self.timeouts_used,
            "max_timeouts": self.max_timeouts,
            "active_timeout": self.active_timeout.to_dict() if self.active_timeout else None,
            "timeout_history": [t.to_dict() for t in self.timeout_history],
            "created_at": self.created_at,
            "event_count": len(self.event_log),
        }
        if include_rounds:
            result["rounds"] = [r.to_dict() for r in self.rounds]
        return result
