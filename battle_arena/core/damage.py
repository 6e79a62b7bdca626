"""
Damage Resolver.

Physical damage for one hit, with every arithmetic step clamped:
1. Base damage from the action type
2. Weapon damage with archetype compatibility
3. Strength bonus
4. Armor reduction
5. Psychology modifier (times team chemistry multiplier)
6. Raw and final damage (final in [1, 9999])
7. Health change applied to the target (never below 0)
8. Critical hit roll
9. Counter-attack roll if the target survived
"""
import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any

from battle_arena.core.actions import ActionType, ExecutedAction
from battle_arena.core.bounds import BoundsPolicy
from battle_arena.core.dice import DiceRoller
from battle_arena.core.errors import PreconditionViolation
from battle_arena.core.psychology import calculate_psychology_modifier
from battle_arena.core.stats import CharacterSnapshot, StatusEffect

logger = logging.getLogger(__name__)


# Preferred weapon types per archetype
WEAPON_COMPATIBILITY: Dict[str, List[str]] = {
    "warrior": ["sword", "hammer", "spear", "shield"],
    "mage": ["staff", "orb", "tome"],
    "assassin": ["dagger", "bow", "knife"],
    "trickster": ["whip", "claws", "sonic"],
    "detective": ["cane", "revolver", "magnifying_glass"],
}

COMPATIBLE_WEAPON_BONUS = 10
INCOMPATIBLE_WEAPON_PENALTY = -5

FOCUS_CRIT_BONUS = 0.02        # battle_focus > 80
CONFIDENCE_CRIT_BONUS = 0.01   # confidence > 75

INJURY_THRESHOLD = 0.3         # fraction of target max health
SHAKEN_THRESHOLD = 0.5


@dataclass
class DamageBreakdown:
    """Every intermediate of one damage computation."""
    attacker_id: Optional[str] = None
    target_id: Optional[str] = None
    base_damage: int = 0
    weapon_damage: int = 0
    strength_bonus: int = 0
    armor_reduction: int = 0
    psychology_modifier: float = 1.0
    chemistry_multiplier: float = 1.0
    raw_damage: float = 0.0
    final_damage: int = 0
    health_change: int = 0
    previous_health: int = 0
    new_health: int = 0
    critical: bool = False
    counter_attack: bool = False
    target_defeated: bool = False
    judge_amount: Optional[int] = None
    status_effects: List[str] = field(default_factory=list)
    breakdown_lines: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attacker_id": self.attacker_id,
            "target_id": self.target_id,
            "base_damage": self.base_damage,
            "weapon_damage": self.weapon_damage,
            "strength_bonus": self.strength_bonus,
            "armor_reduction": self.armor_reduction,
            "psychology_modifier": self.psychology_modifier,
            "chemistry_multiplier": self.chemistry_multiplier,
            "raw_damage": round(self.raw_damage, 2),
            "final_damage": self.final_damage,
            "health_change": self.health_change,
            "previous_health": self.previous_health,
            "new_health": self.new_health,
            "critical": self.critical,
            "counter_attack": self.counter_attack,
            "target_defeated": self.target_defeated,
            "judge_amount": self.judge_amount,
            "status_effects": list(self.status_effects),
            "breakdown": list(self.breakdown_lines),
        }


def weapon_compatibility_bonus(archetype: str, weapon_type: str) -> int:
    """+10 if the weapon type is preferred by the archetype, otherwise -5."""
    preferred = WEAPON_COMPATIBILITY.get(archetype.lower(), [])
    if weapon_type.lower() in preferred:
        return COMPATIBLE_WEAPON_BONUS
    return INCOMPATIBLE_WEAPON_PENALTY


class DamageResolver:
    """
    Computes physical damage from attacker, target and executed action.

    The resolver mutates only the target's health, status effects and (on
    very heavy hits) confidence and stress. Team-level consequences are left
    to the morale engine.
    """

    def __init__(self, policy: Optional[BoundsPolicy] = None, dice: Optional[DiceRoller] = None):
        self.policy = policy or BoundsPolicy()
        self.dice = dice or DiceRoller()

    # =========================================================================
    # Steps 1-4
    # =========================================================================

    def base_damage(self, attacker: CharacterSnapshot, action: ExecutedAction) -> int:
        attack = attacker.effective_attack(self.policy)
        if action.action_type in (ActionType.BASIC_ATTACK, ActionType.ATTACK_TEAMMATE):
            return attack
        if action.action_type == ActionType.ABILITY:
            ability = attacker.get_ability(action.ability_id)
            if ability is None:
                raise PreconditionViolation(
                    f"Unknown ability '{action.ability_id}' for {attacker.id}",
                    character_id=attacker.id,
                    ability_id=action.ability_id,
                )
            power = self.policy.floor_clamp("ability_power", ability.power)
            return self.policy.floor_clamp("attack", attack + power)
        if action.action_type == ActionType.DEFEND:
            return 0
        # Reduced damage for any other action used as an attack
        return self.policy.floor_clamp("attack", math.floor(attack * 0.5))

    def weapon_damage(self, attacker: CharacterSnapshot) -> int:
        weapon = attacker.weapon
        if weapon is None:
            return 0
        weapon_attack = self.policy.floor_clamp("equipment", weapon.attack)
        bonus = weapon_compatibility_bonus(attacker.archetype, weapon.item_type)
        return self.policy.floor_clamp("equipment", weapon_attack + bonus, report=False)

    def strength_bonus(self, attacker: CharacterSnapshot) -> int:
        strength = attacker.effective_strength(self.policy)
        return self.policy.floor_clamp("strength_bonus", math.floor(strength * 0.5))

    def armor_reduction(self, target: CharacterSnapshot) -> int:
        defense = target.effective_defense(self.policy)
        armor = 0
        if target.armor is not None:
            armor = self.policy.floor_clamp("equipment", target.armor.defense)
        return self.policy.floor_clamp("equipment", defense + armor, report=False)

    # =========================================================================
    # Rolls
    # =========================================================================

    def critical_chance(self, attacker: CharacterSnapshot) -> float:
        chance = attacker.stats.critical_chance
        if attacker.psych.battle_focus > 80:
            chance += FOCUS_CRIT_BONUS
        if attacker.psych.confidence > 75:
            chance += CONFIDENCE_CRIT_BONUS
        return self.policy.clamp("probability", chance)

    def counter_chance(self, target: CharacterSnapshot, health_change: int) -> float:
        speed = target.effective_speed(self.policy)
        chance = speed * 0.001 + target.psych.battle_focus * 0.0005
        if health_change > 50:
            chance += 0.1
        return self.policy.clamp("probability", chance, report=False)

    # =========================================================================
    # Resolution
    # =========================================================================

    def resolve(
        self,
        attacker: Optional[CharacterSnapshot],
        target: Optional[CharacterSnapshot],
        action: Optional[ExecutedAction],
        team_morale: float = 50,
        chemistry_multiplier: float = 1.0,
        amount_override: Optional[int] = None,
    ) -> DamageBreakdown:
        """
        Resolve one hit and apply it to the target.

        Args:
            attacker: Acting character
            target: Character being hit
            action: Executed action (defend short-circuits to zero)
            team_morale: Attacker's team morale for the psychology modifier
            chemistry_multiplier: Team chemistry damage multiplier
            amount_override: Judge-specified amount replacing the
                base + weapon + strength sum

        Returns:
            DamageBreakdown with the new target health

        Raises:
            PreconditionViolation: If attacker, target or action is missing
        """
        if attacker is None or target is None or action is None:
            raise PreconditionViolation(
                "Damage resolution needs an attacker, a target and an action",
                attacker=getattr(attacker, "id", None),
                target=getattr(target, "id", None),
            )

        previous = target.current_health
        if not action.is_attack:
            return DamageBreakdown(
                attacker_id=attacker.id,
                target_id=target.id,
                previous_health=previous,
                new_health=previous,
                breakdown_lines=[f"{action.action_type.value}: no damage"],
            )

        breakdown = DamageBreakdown(attacker_id=attacker.id, target_id=target.id, previous_health=previous)

        if amount_override is not None:
            breakdown.judge_amount = self.policy.floor_clamp("damage", amount_override)
            offense = breakdown.judge_amount
            breakdown.breakdown_lines.append(f"Judge ruling: {breakdown.judge_amount}")
        else:
            breakdown.base_damage = self.base_damage(attacker, action)
            breakdown.weapon_damage = self.weapon_damage(attacker)
            breakdown.strength_bonus = self.strength_bonus(attacker)
            offense = breakdown.base_damage + breakdown.weapon_damage + breakdown.strength_bonus
            breakdown.breakdown_lines.extend([
                f"Base: {breakdown.base_damage}",
                f"Weapon: +{breakdown.weapon_damage}",
                f"Strength: +{breakdown.strength_bonus}",
            ])

        breakdown.armor_reduction = self.armor_reduction(target)
        breakdown.breakdown_lines.append(f"Armor: -{breakdown.armor_reduction}")

        psych = calculate_psychology_modifier(
            attacker.psych,
            team_morale,
            relationship=attacker.relationship_to(target.id),
            attacker_id=attacker.id,
            target_id=target.id,
            policy=self.policy,
        )
        breakdown.psychology_modifier = psych.value
        breakdown.chemistry_multiplier = chemistry_multiplier
        breakdown.breakdown_lines.append(f"Psychology: x{psych.value:.2f} ({psych.describe()})")
        if chemistry_multiplier != 1.0:
            breakdown.breakdown_lines.append(f"Chemistry: x{chemistry_multiplier:.2f}")

        raw = (offense - breakdown.armor_reduction) * psych.value * chemistry_multiplier
        breakdown.raw_damage = round(raw, 6)
        # Any attack deals at least 1 even when armor exceeds offense
        breakdown.final_damage = self.policy.floor_clamp("damage", breakdown.raw_damage, report=raw > 9999)

        breakdown.health_change = min(previous, breakdown.final_damage)
        breakdown.new_health = target.set_health(previous - breakdown.health_change, self.policy)
        breakdown.target_defeated = not target.is_alive

        breakdown.critical = self.dice.chance(self.critical_chance(attacker))
        self._apply_status_effects(target, breakdown)

        if target.is_alive:
            breakdown.counter_attack = self.dice.chance(
                self.counter_chance(target, breakdown.health_change)
            )

        logger.debug(
            f"{attacker.id} -> {target.id}: {breakdown.final_damage} damage "
            f"({previous} -> {breakdown.new_health}), crit={breakdown.critical}"
        )
        return breakdown

    def _apply_status_effects(self, target: CharacterSnapshot, breakdown: DamageBreakdown) -> None:
        max_health = target.stats.max_health
        if breakdown.critical and target.is_alive:
            target.add_status(StatusEffect.STUNNED.value)
            breakdown.status_effects.append(StatusEffect.STUNNED.value)
        if breakdown.final_damage > max_health * INJURY_THRESHOLD:
            target.add_status(StatusEffect.INJURED.value)
            breakdown.status_effects.append(StatusEffect.INJURED.value)
        if breakdown.final_damage > max_health * SHAKEN_THRESHOLD:
            target.adjust_psych("confidence", -15, self.policy)
            target.adjust_psych("stress", 20, self.policy)
            target.add_status(StatusEffect.SHAKEN.value)
            breakdown.status_effects.append(StatusEffect.SHAKEN.value)
