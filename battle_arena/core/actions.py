"""
Battle Actions.

Planned actions come from the coach once per character per round and are
immutable. Executed actions are what the simulation actually applies: the
planned action unchanged, or a substitute produced by the rogue action
generator or the judge. Each executed action carries a typed mechanical
effect payload.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any


class ActionType(str, Enum):
    """Kinds of action a character can take."""
    BASIC_ATTACK = "basic_attack"
    ABILITY = "ability"
    DEFEND = "defend"
    FLEE = "flee"
    ATTACK_TEAMMATE = "attack_teammate"
    SKIP = "skip"
    SPECIAL = "special"


ATTACK_ACTIONS = {ActionType.BASIC_ATTACK, ActionType.ABILITY, ActionType.ATTACK_TEAMMATE, ActionType.SPECIAL}


class EffectType(str, Enum):
    """Typed payload kinds for mechanical effects."""
    DAMAGE = "damage"
    HEAL = "heal"
    SKIP_TURN = "skip_turn"
    REDIRECT_ATTACK = "redirect_attack"
    STAT_CHANGE = "stat_change"
    ENVIRONMENTAL = "environmental"
    SPECIAL = "special"


class EffectTarget(str, Enum):
    """Who a mechanical effect applies to."""
    SELF = "self"
    TEAMMATE = "teammate"
    OPPONENT = "opponent"
    ALL = "all"
    ENVIRONMENT = "environment"
    JUDGES = "judges"


class ActionSource(str, Enum):
    """Where an executed action came from."""
    PLANNED = "planned"
    IMPROVISED = "improvised"
    ROGUE = "rogue"
    JUDGED = "judged"


class RogueType(str, Enum):
    """Fixed taxonomy of rogue substitutions."""
    REFUSES_ORDERS = "refuses_orders"
    ATTACKS_TEAMMATE = "attacks_teammate"
    FLEES_BATTLE = "flees_battle"
    GOES_BERSERK = "goes_berserk"
    DEFENDS_CONFUSED = "defends_confused"
    RETARGETS = "retargets"


@dataclass(frozen=True)
class PlannedAction:
    """Coach-selected action for one character in one round."""
    action_type: ActionType = ActionType.BASIC_ATTACK
    target_id: Optional[str] = None
    ability_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type.value,
            "target_id": self.target_id,
            "ability_id": self.ability_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlannedAction":
        return cls(
            action_type=ActionType(data.get("action_type", "basic_attack")),
            target_id=data.get("target_id"),
            ability_id=data.get("ability_id"),
        )


@dataclass
class StatChange:
    """A single stat delta inside a mechanical effect."""
    stat: str
    change: int
    duration: int = 1

    def to_dict(self) -> Dict[str, Any]:
        return {"stat": self.stat, "change": self.change, "duration": self.duration}


@dataclass
class MechanicalEffect:
    """Typed payload applied to the simulation."""
    effect_type: EffectType
    target: Optional[EffectTarget] = None
    amount: Optional[int] = None
    duration: Optional[int] = None
    stat_changes: List[StatChange] = field(default_factory=list)
    special_effect: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.effect_type.value,
            "target": self.target.value if self.target else None,
            "amount": self.amount,
            "duration": self.duration,
            "stat_changes": [s.to_dict() for s in self.stat_changes],
            "special_effect": self.special_effect,
        }


@dataclass
class ExecutedAction:
    """
    The action actually applied this turn.

    Attributes:
        action_type: Kind of action resolved
        target_id: Character hit by the action, if any
        ability_id: Ability used, if any
        narrative: Human-readable description
        mechanical_effect: Typed payload
        source: planned, improvised, rogue or judged
        rogue_type: Taxonomy entry when the action is a substitute
    """
    action_type: ActionType
    target_id: Optional[str] = None
    ability_id: Optional[str] = None
    narrative: str = ""
    mechanical_effect: Optional[MechanicalEffect] = None
    source: ActionSource = ActionSource.PLANNED
    rogue_type: Optional[RogueType] = None

    @property
    def is_attack(self) -> bool:
        return self.action_type in ATTACK_ACTIONS

    @classmethod
    def from_planned(cls, planned: PlannedAction, narrative: str = "") -> "ExecutedAction":
        """Execute a planned action unchanged."""
        if planned.action_type == ActionType.DEFEND:
            effect = MechanicalEffect(effect_type=EffectType.SKIP_TURN, target=EffectTarget.SELF, amount=0)
        else:
            effect = MechanicalEffect(effect_type=EffectType.DAMAGE, target=EffectTarget.OPPONENT)
        return cls(
            action_type=planned.action_type,
            target_id=planned.target_id,
            ability_id=planned.ability_id,
            narrative=narrative,
            mechanical_effect=effect,
            source=ActionSource.PLANNED,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type.value,
            "target_id": self.target_id,
            "ability_id": self.ability_id,
            "narrative": self.narrative,
            "mechanical_effect": self.mechanical_effect.to_dict() if self.mechanical_effect else None,
            "source": self.source.value,
            "rogue_type": self.rogue_type.value if self.rogue_type else None,
        }
