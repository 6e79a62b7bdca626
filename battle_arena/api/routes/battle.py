"""
Battle API Routes.

Endpoints for running psychology arena battles:
- Create battles and read their state
- Pre-battle huddle and coaching interventions
- Submit rounds (planned actions plus optional chaos descriptions)
- Coaching timeouts, forfeit and abort
- Round history, post-battle analysis and judge ruling previews

Handlers are plain functions so FastAPI runs them in its thread pool; the
battle actor lock then rejects a second concurrent writer on the same battle.
"""
from fastapi import APIRouter
from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

from battle_arena.core.actions import ActionType, PlannedAction
from battle_arena.core.battle_storage import active_battles
from battle_arena.core.errors import InvalidPhaseError, ValidationError
from battle_arena.core.judge import list_judges
from battle_arena.core.post_battle import PostBattleEvaluator
from battle_arena.core.rules_config import BattleRules, PRESET_RULES, get_preset

router = APIRouter()


# =============================================================================
# Request/Response Models
# =============================================================================

class CharacterData(BaseModel):
    """Roster entry for one character."""
    id: str
    name: str
    archetype: str = "warrior"
    stats: Dict[str, Any] = Field(default_factory=dict)
    attributes: Dict[str, Any] = Field(default_factory=dict)
    psychology: Dict[str, Any] = Field(default_factory=dict)
    personality: Dict[str, Any] = Field(default_factory=dict)
    weapon: Optional[Dict[str, Any]] = None
    armor: Optional[Dict[str, Any]] = None
    abilities: List[Dict[str, Any]] = Field(default_factory=list)
    relationships: List[Dict[str, Any]] = Field(default_factory=list)
    current_health: Optional[int] = None
    gameplan_adherence: Optional[float] = None


class TeamData(BaseModel):
    team_id: Optional[str] = None
    name: Optional[str] = None
    coaching_points: int = 0
    members: List[CharacterData]


class CreateBattleRequest(BaseModel):
    """Request to create a battle."""
    team_a: TeamData
    team_b: TeamData
    seed: Optional[int] = None
    judge: Optional[str] = None
    preset: Optional[str] = None
    rules: Dict[str, Any] = Field(default_factory=dict)


class PlannedActionData(BaseModel):
    action_type: ActionType = ActionType.BASIC_ATTACK
    target_id: Optional[str] = None
    ability_id: Optional[str] = None


class RoundRequest(BaseModel):
    """Coach input for one round."""
    planned_actions: Dict[str, PlannedActionData] = Field(default_factory=dict)
    chaos_descriptions: Dict[str, str] = Field(default_factory=dict)


class RoundResponse(BaseModel):
    round: Dict[str, Any]
    battle: Dict[str, Any]


class TeamRequest(BaseModel):
    team_id: str


class InterventionRequest(BaseModel):
    team_id: str
    intervention: str
    character_id: Optional[str] = None


class ChaosPreviewRequest(BaseModel):
    character_id: str
    description: str = Field(min_length=1)


def _team_dict(team: TeamData, default_id: str) -> Dict[str, Any]:
    members = [{k: v for k, v in m.model_dump().items() if v is not None} for m in team.members]
    return {
        "team_id": team.team_id or default_id,
        "name": team.name or team.team_id or default_id,
        "coaching_points": team.coaching_points,
        "members": members,
    }


# =============================================================================
# Battle Lifecycle
# =============================================================================

@router.post("")
def create_battle(request: CreateBattleRequest):
    """Create a battle from two rosters."""
    if request.preset is not None and request.preset not in PRESET_RULES:
        raise ValidationError("preset", f"Unknown rules preset '{request.preset}'", request.preset)
    base = get_preset(request.preset) if request.preset else BattleRules.from_settings()
    rules = BattleRules.from_dict(request.rules, base=base)

    actor = active_battles.create_battle(
        _team_dict(request.team_a, "team_a"),
        _team_dict(request.team_b, "team_b"),
        rules=rules,
        seed=request.seed,
        judge_name=request.judge,
    )
    return {
        "battle_id": actor.battle_id,
        "rules": rules.to_dict(),
        "battle": actor.state.to_dict(),
    }


@router.get("")
def list_battles():
    return {"battles": active_battles.list()}


@router.get("/judges")
def get_judges():
    """Available judge personalities."""
    return {"judges": list_judges()}


@router.get("/{battle_id}")
def get_battle(battle_id: str):
    """Current battle state."""
    actor = active_battles.get(battle_id)
    return actor.execute(lambda s: s.state.to_dict())


@router.delete("/{battle_id}")
def delete_battle(battle_id: str):
    active_battles.remove(battle_id)
    return {"success": True, "battle_id": battle_id}


@router.post("/{battle_id}/huddle")
def huddle(battle_id: str):
    """Enter the pre-battle huddle and get each team's assessment."""
    actor = active_battles.get(battle_id)
    reports = actor.execute(lambda s: s.huddle())
    return {"phase": actor.state.phase.value, "teams": reports}


@router.post("/{battle_id}/start")
def start_combat(battle_id: str):
    actor = active_battles.get(battle_id)
    actor.execute(lambda s: s.start_combat())
    return {"phase": actor.state.phase.value}


# =============================================================================
# Rounds
# =============================================================================

@router.post("/{battle_id}/rounds", response_model=RoundResponse)
def submit_round(battle_id: str, request: RoundRequest):
    """
    Resolve one round.

    Characters without a planned action attack the default target. A bad
    planned action rejects the whole round and leaves the battle unchanged.
    """
    actor = active_battles.get(battle_id)
    planned = {
        character_id: PlannedAction(a.action_type, a.target_id, a.ability_id)
        for character_id, a in request.planned_actions.items()
    }
    record = actor.execute(lambda s: s.run_round(planned, request.chaos_descriptions))
    return RoundResponse(round=record.to_dict(), battle=actor.state.to_dict())


@router.get("/{battle_id}/rounds")
def get_rounds(battle_id: str):
    actor = active_battles.get(battle_id)
    return actor.execute(lambda s: {"rounds": [r.to_dict() for r in s.state.rounds]})


@router.get("/{battle_id}/initiative")
def get_initiative(battle_id: str):
    """Turn order the next round would use."""
    actor = active_battles.get(battle_id)
    entries = actor.execute(lambda s: s.calculate_initiative())
    return {"round": actor.state.current_round + 1, "order": [e.to_dict() for e in entries]}


@router.get("/{battle_id}/events")
def get_events(battle_id: str, count: int = 20):
    actor = active_battles.get(battle_id)
    events = actor.state.event_log[-count:] if count > 0 else []
    return {"events": [e.to_dict() for e in events]}


# =============================================================================
# Coaching
# =============================================================================

@router.post("/{battle_id}/timeout")
def request_timeout(battle_id: str, request: TeamRequest):
    actor = active_battles.get(battle_id)
    timeout = actor.execute(lambda s: s.request_timeout(request.team_id))
    return {
        "timeout": timeout.to_dict(),
        "timeouts_remaining": actor.state.max_timeouts - actor.state.timeouts_used,
    }


@router.post("/{battle_id}/timeout/end")
def end_timeout(battle_id: str):
    actor = active_battles.get(battle_id)
    actor.execute(lambda s: s.end_timeout())
    return {"phase": actor.state.phase.value}


@router.post("/{battle_id}/interventions")
def apply_intervention(battle_id: str, request: InterventionRequest):
    """Apply a coaching intervention during the huddle or a timeout."""
    actor = active_battles.get(battle_id)
    result = actor.execute(
        lambda s: s.apply_intervention(request.team_id, request.intervention, request.character_id)
    )
    team = actor.state.get_team(request.team_id)
    return {"result": result.to_dict(), "team": team.summary()}


# =============================================================================
# Ending
# =============================================================================

@router.post("/{battle_id}/forfeit")
def forfeit(battle_id: str, request: TeamRequest):
    actor = active_battles.get(battle_id)
    actor.execute(lambda s: s.forfeit(request.team_id))
    return {"winner": actor.state.winner, "end_reason": actor.state.end_reason.value}


@router.post("/{battle_id}/abort")
def abort(battle_id: str):
    actor = active_battles.get(battle_id)
    actor.execute(lambda s: s.abort())
    return {"winner": None, "end_reason": actor.state.end_reason.value}


@router.get("/{battle_id}/analysis")
def get_analysis(battle_id: str):
    """Post-battle analysis. Only available once the battle has ended."""
    actor = active_battles.get(battle_id)

    def analyse(scheduler):
        if not scheduler.state.is_over:
            raise InvalidPhaseError(scheduler.state.phase.value, "analyse the battle")
        return PostBattleEvaluator(scheduler.policy).evaluate(scheduler.state)

    return actor.execute(analyse).to_dict()


# =============================================================================
# Judge
# =============================================================================

@router.post("/{battle_id}/judge/preview")
def preview_ruling(battle_id: str, request: ChaosPreviewRequest):
    """Show how the battle's judge would rule on a chaos description."""
    actor = active_battles.get(battle_id)
    decision = actor.execute(lambda s: s.preview_ruling(request.character_id, request.description))
    return {"decision": decision.to_dict()}
