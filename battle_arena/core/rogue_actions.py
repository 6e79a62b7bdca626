"""
Rogue Action Generator.

Turns a failed adherence check into a concrete substitute action from a
fixed taxonomy. Selection is a short priority list over stress, mental
health and ego, then falls back on the severity of the adherence result.
There is no "no action" outcome: a confused defend is always available.

The generator is pure. It reads the character and a view of the field and
returns a new ExecutedAction; nothing is mutated.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Dict, Any

from battle_arena.core.actions import (
    ActionSource,
    ActionType,
    EffectTarget,
    EffectType,
    ExecutedAction,
    MechanicalEffect,
    PlannedAction,
    RogueType,
)
from battle_arena.core.adherence import AdherenceCheck, AdherenceResult, ReasonTag
from battle_arena.core.dice import DiceRoller
from battle_arena.core.stats import CharacterSnapshot


class DeviationType(str, Enum):
    """Categories of strategy deviation used by the judge and reports."""
    MINOR_INSUBORDINATION = "minor_insubordination"
    STRATEGY_OVERRIDE = "strategy_override"
    FRIENDLY_FIRE = "friendly_fire"
    PACIFIST_MODE = "pacifist_mode"
    BERSERKER_RAGE = "berserker_rage"
    IDENTITY_CRISIS = "identity_crisis"
    DIMENSIONAL_ESCAPE = "dimensional_escape"
    ENVIRONMENTAL_CHAOS = "environmental_chaos"
    COMPLETE_BREAKDOWN = "complete_breakdown"


class Severity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    EXTREME = "extreme"


DEVIATION_SEVERITY: Dict[DeviationType, Severity] = {
    DeviationType.MINOR_INSUBORDINATION: Severity.MINOR,
    DeviationType.STRATEGY_OVERRIDE: Severity.MODERATE,
    DeviationType.FRIENDLY_FIRE: Severity.MODERATE,
    DeviationType.PACIFIST_MODE: Severity.MAJOR,
    DeviationType.BERSERKER_RAGE: Severity.MAJOR,
    DeviationType.IDENTITY_CRISIS: Severity.MAJOR,
    DeviationType.DIMENSIONAL_ESCAPE: Severity.MAJOR,
    DeviationType.ENVIRONMENTAL_CHAOS: Severity.EXTREME,
    DeviationType.COMPLETE_BREAKDOWN: Severity.EXTREME,
}

ROGUE_DEVIATIONS: Dict[RogueType, DeviationType] = {
    RogueType.REFUSES_ORDERS: DeviationType.PACIFIST_MODE,
    RogueType.ATTACKS_TEAMMATE: DeviationType.FRIENDLY_FIRE,
    RogueType.FLEES_BATTLE: DeviationType.DIMENSIONAL_ESCAPE,
    RogueType.GOES_BERSERK: DeviationType.BERSERKER_RAGE,
    RogueType.DEFENDS_CONFUSED: DeviationType.STRATEGY_OVERRIDE,
    RogueType.RETARGETS: DeviationType.MINOR_INSUBORDINATION,
}

# Text handed to the judge when no narrative generator supplied any
CANONICAL_DESCRIPTIONS: Dict[DeviationType, str] = {
    DeviationType.MINOR_INSUBORDINATION: "ignores part of the plan and picks a different target",
    DeviationType.STRATEGY_OVERRIDE: "abandons the strategy and does their own thing",
    DeviationType.FRIENDLY_FIRE: "turns on a teammate",
    DeviationType.PACIFIST_MODE: "refuses to fight",
    DeviationType.BERSERKER_RAGE: "tries to attack everyone in a blind rage",
    DeviationType.IDENTITY_CRISIS: "decides to become a tree",
    DeviationType.DIMENSIONAL_ESCAPE: "tries to teleport out of the fight",
    DeviationType.ENVIRONMENTAL_CHAOS: "starts to destroy the arena",
    DeviationType.COMPLETE_BREAKDOWN: "has a complete breakdown",
}


def severity_of(deviation: DeviationType) -> Severity:
    return DEVIATION_SEVERITY.get(deviation, Severity.MODERATE)


@dataclass
class BattleView:
    """Read-only view of the field from one character's perspective."""
    enemies: List[CharacterSnapshot] = field(default_factory=list)      # active, roster order
    teammates: List[CharacterSnapshot] = field(default_factory=list)    # active, excluding self

    def enemy_ids(self) -> List[str]:
        return [c.id for c in self.enemies]


@dataclass
class RogueOutcome:
    """A substitute action and how it is classified."""
    action: ExecutedAction
    rogue_type: RogueType
    deviation_type: DeviationType
    severity: Severity
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.to_dict(),
            "rogue_type": self.rogue_type.value,
            "deviation_type": self.deviation_type.value,
            "severity": self.severity.value,
            "description": self.description,
        }


class RogueActionGenerator:
    """Picks substitute actions for characters who are off-plan."""

    def __init__(self, dice: Optional[DiceRoller] = None):
        self.dice = dice or DiceRoller()

    def select_rogue_type(
        self,
        character: CharacterSnapshot,
        check: AdherenceCheck,
        view: BattleView,
    ) -> RogueType:
        """
        Priority rules, first hit wins.

        1. stress > 80 -> flee
        2. mental health < 30 -> berserk (needs a living enemy)
        3. goes_rogue with big ego and a teammate in reach -> attack teammate
        4. goes_rogue or improvises with low morale -> refuse orders
        5. severity: goes_rogue refuses, improvises defends confused,
           slight_deviation keeps the plan (retargeting if needed)
        """
        psych = character.psych
        result = check.result

        if psych.stress > 80:
            return RogueType.FLEES_BATTLE
        if psych.mental_health < 30 and view.enemies:
            return RogueType.GOES_BERSERK
        if (
            result == AdherenceResult.GOES_ROGUE
            and (character.traits.ego > 80 or check.reason == ReasonTag.HIGH_EGO)
            and view.teammates
        ):
            return RogueType.ATTACKS_TEAMMATE
        if result in (AdherenceResult.GOES_ROGUE, AdherenceResult.IMPROVISES) and check.reason == ReasonTag.LOW_MORALE:
            return RogueType.REFUSES_ORDERS
        if result == AdherenceResult.GOES_ROGUE:
            return RogueType.REFUSES_ORDERS
        if result == AdherenceResult.SLIGHT_DEVIATION and view.enemies:
            return RogueType.RETARGETS
        return RogueType.DEFENDS_CONFUSED

    def generate(
        self,
        character: CharacterSnapshot,
        check: AdherenceCheck,
        view: BattleView,
        planned: Optional[PlannedAction] = None,
    ) -> RogueOutcome:
        """
        Produce the substitute action for a non-following character.

        Args:
            character: Character that failed its adherence check
            check: The adherence check result
            view: Active enemies and teammates
            planned: The coach's planned action (used by slight deviations)

        Returns:
            RogueOutcome with the ExecutedAction and its deviation category
        """
        rogue_type = self.select_rogue_type(character, check, view)
        name = character.name

        if rogue_type == RogueType.FLEES_BATTLE:
            action = ExecutedAction(
                action_type=ActionType.FLEE,
                narrative=f"{name} panics and tries to flee the battle!",
                mechanical_effect=MechanicalEffect(
                    effect_type=EffectType.SPECIAL,
                    target=EffectTarget.SELF,
                    special_effect="flee",
                ),
                source=ActionSource.ROGUE,
                rogue_type=rogue_type,
            )
        elif rogue_type == RogueType.GOES_BERSERK:
            target = self.dice.choice(view.enemies)
            action = ExecutedAction(
                action_type=ActionType.BASIC_ATTACK,
                target_id=target.id,
                narrative=f"{name} goes berserk and charges {target.name}!",
                mechanical_effect=MechanicalEffect(effect_type=EffectType.DAMAGE, target=EffectTarget.OPPONENT),
                source=ActionSource.ROGUE,
                rogue_type=rogue_type,
            )
        elif rogue_type == RogueType.ATTACKS_TEAMMATE:
            target = self.dice.choice(view.teammates)
            action = ExecutedAction(
                action_type=ActionType.ATTACK_TEAMMATE,
                target_id=target.id,
                narrative=f"{name} turns on teammate {target.name}!",
                mechanical_effect=MechanicalEffect(
                    effect_type=EffectType.REDIRECT_ATTACK,
                    target=EffectTarget.TEAMMATE,
                ),
                source=ActionSource.ROGUE,
                rogue_type=rogue_type,
            )
        elif rogue_type == RogueType.REFUSES_ORDERS:
            action = ExecutedAction(
                action_type=ActionType.SKIP,
                narrative=f"{name} refuses to follow the coach's orders.",
                mechanical_effect=MechanicalEffect(
                    effect_type=EffectType.SKIP_TURN,
                    target=EffectTarget.SELF,
                    duration=1,
                ),
                source=ActionSource.ROGUE,
                rogue_type=rogue_type,
            )
        elif rogue_type == RogueType.RETARGETS:
            action = self._adjusted_plan(character, planned, view)
        else:
            action = ExecutedAction(
                action_type=ActionType.DEFEND,
                narrative=f"{name} hesitates and defends in confusion.",
                mechanical_effect=MechanicalEffect(
                    effect_type=EffectType.SKIP_TURN,
                    target=EffectTarget.SELF,
                    amount=0,
                ),
                source=ActionSource.ROGUE,
                rogue_type=RogueType.DEFENDS_CONFUSED,
            )
            rogue_type = RogueType.DEFENDS_CONFUSED

        deviation = ROGUE_DEVIATIONS[rogue_type]
        return RogueOutcome(
            action=action,
            rogue_type=rogue_type,
            deviation_type=deviation,
            severity=severity_of(deviation),
            description=CANONICAL_DESCRIPTIONS[deviation],
        )

    def _adjusted_plan(
        self,
        character: CharacterSnapshot,
        planned: Optional[PlannedAction],
        view: BattleView,
    ) -> ExecutedAction:
        """Keep the planned action, picking a new enemy if its target is gone."""
        planned = planned or PlannedAction()
        target_id = planned.target_id
        retargeted = target_id not in view.enemy_ids()
        if retargeted:
            target_id = self.dice.choice(view.enemies).id

        action_type = planned.action_type
        if action_type == ActionType.ABILITY and character.get_ability(planned.ability_id) is None:
            action_type = ActionType.BASIC_ATTACK
        if action_type == ActionType.ATTACK_TEAMMATE and retargeted:
            action_type = ActionType.BASIC_ATTACK

        if action_type == ActionType.DEFEND:
            effect = MechanicalEffect(effect_type=EffectType.SKIP_TURN, target=EffectTarget.SELF, amount=0)
            target_id = None
        else:
            effect = MechanicalEffect(effect_type=EffectType.DAMAGE, target=EffectTarget.OPPONENT)

        narrative = f"{character.name} mostly sticks to the plan"
        narrative += ", but picks a different target." if retargeted else " with minor adjustments."
        return ExecutedAction(
            action_type=action_type,
            target_id=target_id,
            ability_id=planned.ability_id if action_type == ActionType.ABILITY else None,
            narrative=narrative,
            mechanical_effect=effect,
            source=ActionSource.IMPROVISED,
            rogue_type=RogueType.RETARGETS if retargeted else None,
        )
