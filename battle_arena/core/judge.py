"""
Judge Arbiter.

Maps open-ended chaotic behavior onto one bounded mechanical effect.

Resolution runs through an ordered registry of chaos patterns (first match
wins). Text no pattern understands falls through to a generic
interpretation biased by the judge's personality and is recorded as an
unresolved precedent. Rulings for known deviation types without free text use
fixed templates.

Every ruling draws from a fresh random source seeded by (battle seed,
normalized text, judge name), so identical inputs always produce identical
decisions.
"""
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, List, Optional, Dict, Any, Tuple

from battle_arena.core.actions import EffectTarget, EffectType, MechanicalEffect, StatChange
from battle_arena.core.bounds import BoundsPolicy
from battle_arena.core.dice import DiceRoller, derive_seed, new_seed
from battle_arena.core.errors import ErrorCode
from battle_arena.core.rogue_actions import (
    CANONICAL_DESCRIPTIONS,
    DeviationType,
    Severity,
    severity_of,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Judge Personalities
# =============================================================================

class JudgeStyle(str, Enum):
    """Ruling temperament."""
    STRICT = "strict"
    CHAOTIC = "chaotic"
    LOGICAL = "logical"
    THEATRICAL = "theatrical"
    LENIENT = "lenient"


@dataclass
class JudgePersonality:
    """
    Configurable judge bias.

    All four weights live in [0, 100].
    """
    name: str
    style: JudgeStyle = JudgeStyle.LOGICAL
    strictness: float = 50
    creativity: float = 50
    damage_favor: float = 50
    narrative_focus: float = 50
    description: str = ""

    def __post_init__(self):
        for attr in ("strictness", "creativity", "damage_favor", "narrative_focus"):
            value = getattr(self, attr)
            setattr(self, attr, max(0.0, min(100.0, float(value))))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "style": self.style.value,
            "strictness": self.strictness,
            "creativity": self.creativity,
            "damage_favor": self.damage_favor,
            "narrative_focus": self.narrative_focus,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "JudgePersonality":
        return cls(
            name=data.get("name", "Custom Judge"),
            style=JudgeStyle(data.get("style", "logical")),
            strictness=data.get("strictness", 50),
            creativity=data.get("creativity", 50),
            damage_favor=data.get("damage_favor", 50),
            narrative_focus=data.get("narrative_focus", 50),
            description=data.get("description", ""),
        )


JUDGE_PRESETS: Dict[str, JudgePersonality] = {
    "Judge Executioner": JudgePersonality(
        name="Judge Executioner",
        style=JudgeStyle.STRICT,
        strictness=90,
        creativity=20,
        damage_favor=70,
        narrative_focus=40,
        description="Harsh and by the book. Punishes deviation severely.",
    ),
    "Judge Chaos": JudgePersonality(
        name="Judge Chaos",
        style=JudgeStyle.CHAOTIC,
        strictness=10,
        creativity=95,
        damage_favor=60,
        narrative_focus=80,
        description="Loves unpredictability and rewards wild behavior.",
    ),
    "Judge Wisdom": JudgePersonality(
        name="Judge Wisdom",
        style=JudgeStyle.LOGICAL,
        strictness=70,
        creativity=60,
        damage_favor=50,
        narrative_focus=30,
        description="Measured rulings grounded in cause and effect.",
    ),
    "Judge Spectacle": JudgePersonality(
        name="Judge Spectacle",
        style=JudgeStyle.THEATRICAL,
        strictness=30,
        creativity=85,
        damage_favor=80,
        narrative_focus=95,
        description="Rules for the crowd. Big moments get big effects.",
    ),
    "Judge Mercy": JudgePersonality(
        name="Judge Mercy",
        style=JudgeStyle.LENIENT,
        strictness=40,
        creativity=70,
        damage_favor=20,
        narrative_focus=60,
        description="Looks for the gentlest reasonable outcome.",
    ),
}


def get_judge(name: Optional[str]) -> JudgePersonality:
    """Look up a preset judge. Unknown names fall back to Judge Wisdom."""
    if name in JUDGE_PRESETS:
        return JUDGE_PRESETS[name]
    logger.warning(f"Unknown judge '{name}', using Judge Wisdom")
    return JUDGE_PRESETS["Judge Wisdom"]


def list_judges() -> List[Dict[str, Any]]:
    return [judge.to_dict() for judge in JUDGE_PRESETS.values()]


FLAVOR: Dict[JudgeStyle, Dict[str, str]] = {
    JudgeStyle.STRICT: {
        "extreme": " This conduct will not be tolerated.",
        "major": " A serious breach of discipline.",
        "other": " Noted for the record.",
    },
    JudgeStyle.CHAOTIC: {
        "extreme": " Now this is a fight!",
        "major": " The crowd loves it.",
        "other": " Could be wilder.",
    },
    JudgeStyle.LOGICAL: {
        "extreme": " An outcome far outside expected parameters.",
        "major": " A significant deviation with predictable costs.",
        "other": " Consequences follow from choices.",
    },
    JudgeStyle.THEATRICAL: {
        "extreme": " What a moment for the arena!",
        "major": " A dramatic turn of events!",
        "other": " The story continues.",
    },
    JudgeStyle.LENIENT: {
        "extreme": " Troubling, but we must be understanding.",
        "major": " Everyone has difficult moments.",
        "other": " No harm intended, none taken.",
    },
}


def flavor_suffix(style: JudgeStyle, severity: Severity) -> str:
    key = severity.value if severity in (Severity.EXTREME, Severity.MAJOR) else "other"
    return FLAVOR[style][key]


# =============================================================================
# Context, Decisions and Precedents
# =============================================================================

@dataclass
class ChaosContext:
    """What the judge knows about the actor and the situation."""
    character_id: str = ""
    character_name: str = "The fighter"
    strength: int = 0
    deviation_type: Optional[DeviationType] = None
    round_number: int = 0

    @property
    def severity(self) -> Severity:
        if self.deviation_type is None:
            return Severity.MODERATE
        return severity_of(self.deviation_type)


@dataclass
class JudgeDecision:
    """A ruling with its bounded mechanical effect."""
    ruling: str
    mechanical_effect: MechanicalEffect
    narrative: str
    pattern: str
    precedent: Optional[str] = None
    unresolved: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruling": self.ruling,
            "mechanical_effect": self.mechanical_effect.to_dict(),
            "narrative": self.narrative,
            "pattern": self.pattern,
            "precedent": self.precedent,
            "unresolved": self.unresolved,
        }


@dataclass
class Precedent:
    """One recorded ruling."""
    key: str
    effect_type: str
    pattern: str
    ruling: str
    round_number: int
    unresolved: bool = False
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "effect_type": self.effect_type,
            "pattern": self.pattern,
            "ruling": self.ruling,
            "round_number": self.round_number,
            "unresolved": self.unresolved,
            "error_code": self.error_code,
        }


class PrecedentLog:
    """
    Rulings keyed by ``<deviation_type>_<judge name>``.

    Owned by one battle and injected into its judge, so precedents never
    leak between battles.
    """

    def __init__(self):
        self._entries: Dict[str, List[Precedent]] = {}

    def record(self, precedent: Precedent) -> None:
        self._entries.setdefault(precedent.key, []).append(precedent)

    def get(self, key: str) -> List[Precedent]:
        return list(self._entries.get(key, []))

    def unresolved(self) -> List[Precedent]:
        return [p for entries in self._entries.values() for p in entries if p.unresolved]

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._entries.values())

    def to_dict(self) -> Dict[str, List[Dict[str, Any]]]:
        return {key: [p.to_dict() for p in entries] for key, entries in self._entries.items()}


# =============================================================================
# Chaos Patterns
# =============================================================================

# resolve(context, rng, text) -> (ruling, effect)
PatternResolver = Callable[[ChaosContext, DiceRoller, str], Tuple[str, MechanicalEffect]]


@dataclass
class ChaosPattern:
    """
    A text pattern and the effect shape it maps to.

    Args:
        name: Pattern identifier recorded in decisions
        keywords: Substrings to look for in the normalized text
        resolve: Builds the ruling and effect
        require_all: Match only if every keyword is present
    """
    name: str
    keywords: List[str]
    resolve: PatternResolver
    require_all: bool = False

    def matches(self, text: str) -> bool:
        if self.require_all:
            return all(k in text for k in self.keywords)
        return any(k in text for k in self.keywords)


def _attack_everyone(ctx: ChaosContext, rng: DiceRoller, text: str):
    return (
        f"{ctx.character_name}'s wild attack hits everyone nearby",
        MechanicalEffect(
            effect_type=EffectType.REDIRECT_ATTACK,
            target=EffectTarget.ALL,
            amount=int(ctx.strength * 0.7),
        ),
    )


def _refuse(ctx: ChaosContext, rng: DiceRoller, text: str):
    return (
        f"{ctx.character_name} refuses to fight and forfeits the turn",
        MechanicalEffect(effect_type=EffectType.SKIP_TURN, target=EffectTarget.SELF, duration=1),
    )


def _teammate(ctx: ChaosContext, rng: DiceRoller, text: str):
    return (
        f"{ctx.character_name} attacks a teammate",
        MechanicalEffect(
            effect_type=EffectType.REDIRECT_ATTACK,
            target=EffectTarget.TEAMMATE,
            amount=int(ctx.strength * 0.8),
        ),
    )


def _escape(ctx: ChaosContext, rng: DiceRoller, text: str):
    if rng.chance(0.6):
        return (
            f"{ctx.character_name} slips out of the fight for a while",
            MechanicalEffect(
                effect_type=EffectType.SPECIAL,
                target=EffectTarget.SELF,
                duration=rng.randint(1, 3),
                special_effect="temporary_removal",
            ),
        )
    return (
        f"{ctx.character_name}'s escape attempt backfires",
        MechanicalEffect(effect_type=EffectType.DAMAGE, target=EffectTarget.SELF, amount=15),
    )


def _destroy_environment(ctx: ChaosContext, rng: DiceRoller, text: str):
    return (
        f"{ctx.character_name} tears into the arena itself",
        MechanicalEffect(
            effect_type=EffectType.ENVIRONMENTAL,
            target=EffectTarget.ENVIRONMENT,
            amount=25,
            special_effect="arena_damage",
        ),
    )


def _attack_officials(ctx: ChaosContext, rng: DiceRoller, text: str):
    return (
        f"{ctx.character_name} threatens the officials",
        MechanicalEffect(
            effect_type=EffectType.SPECIAL,
            target=EffectTarget.JUDGES,
            amount=50,
            special_effect="judge_threatened",
        ),
    )


def _identity_change(ctx: ChaosContext, rng: DiceRoller, text: str):
    return (
        f"{ctx.character_name} is convinced they have become something else",
        MechanicalEffect(
            effect_type=EffectType.STAT_CHANGE,
            target=EffectTarget.SELF,
            duration=3,
            stat_changes=[
                StatChange(stat="speed", change=-50, duration=3),
                StatChange(stat="defense", change=20, duration=3),
            ],
        ),
    )


def default_patterns() -> List[ChaosPattern]:
    """Built-in patterns in resolution order."""
    return [
        ChaosPattern("attack_everyone", ["attack", "everyone"], _attack_everyone, require_all=True),
        ChaosPattern("refuse", ["refuse", "won't fight"], _refuse),
        ChaosPattern("teammate", ["teammate", "friend"], _teammate),
        ChaosPattern("escape", ["teleport", "dimension", "escape"], _escape),
        ChaosPattern("destroy_environment", ["destroy", "arena", "environment"], _destroy_environment),
        ChaosPattern("attack_officials", ["judge", "referee"], _attack_officials),
        ChaosPattern("identity_change", ["grass", "tree", "become"], _identity_change),
    ]


def normalize_text(text: str) -> str:
    return " ".join(text.lower().replace("’", "'").split())


# =============================================================================
# Arbiter
# =============================================================================

class JudgeArbiter:
    """
    Converts chaotic behavior into bounded mechanical effects.

    Args:
        personality: Judge bias used by the generic fallback and flavor text
        policy: Bounds policy applied to every produced magnitude
        precedents: Battle-owned precedent log
        seed: Battle seed mixed into every ruling's random source (drawn
            fresh when omitted)
        patterns: Ordered pattern registry (defaults to the built-ins)
    """

    def __init__(
        self,
        personality: Optional[JudgePersonality] = None,
        policy: Optional[BoundsPolicy] = None,
        precedents: Optional[PrecedentLog] = None,
        seed: Optional[int] = None,
        patterns: Optional[List[ChaosPattern]] = None,
    ):
        self.personality = personality or JUDGE_PRESETS["Judge Wisdom"]
        self.policy = policy or BoundsPolicy()
        self.precedents = precedents if precedents is not None else PrecedentLog()
        self.seed = seed if seed is not None else new_seed()
        self.patterns = list(patterns) if patterns is not None else default_patterns()

    def register_pattern(self, pattern: ChaosPattern, index: Optional[int] = None) -> None:
        """Add a pattern. Without an index it is tried after the existing ones."""
        if index is None:
            self.patterns.append(pattern)
        else:
            self.patterns.insert(index, pattern)

    def _rng(self, text: str, context: ChaosContext) -> DiceRoller:
        """Random source for one ruling, distinct per round and actor."""
        return DiceRoller(derive_seed(
            self.seed, context.round_number, context.character_id, text, self.personality.name,
        ))

    # -------------------------------------------------------------------------
    # Free text
    # -------------------------------------------------------------------------

    def rule(self, text: str, context: Optional[ChaosContext] = None) -> JudgeDecision:
        """
        Rule on a free-text description of a chaotic action.

        Args:
            text: What the character is trying to do
            context: Actor and situation

        Returns:
            JudgeDecision with a bounded effect
        """
        context = context or ChaosContext()
        normalized = normalize_text(text or "")
        rng = self._rng(normalized, context)

        pattern_name = "fallback"
        unresolved = True
        for pattern in self.patterns:
            if pattern.matches(normalized):
                ruling, effect = pattern.resolve(context, rng, normalized)
                pattern_name = pattern.name
                unresolved = False
                break
        else:
            ruling, effect = self._generic_interpretation(context, rng, normalized)

        return self._finish(ruling, effect, pattern_name, unresolved, context, normalized)

    def _generic_interpretation(self, ctx: ChaosContext, rng: DiceRoller, text: str):
        judge = self.personality
        weights = [
            judge.damage_favor,
            judge.creativity,
            max(1.0, judge.strictness + judge.narrative_focus) / 2,
        ]
        choice = rng.weighted_choice(["damage", "creative", "stat_change"], weights)

        if choice == "damage":
            target = rng.choice([EffectTarget.OPPONENT, EffectTarget.SELF])
            return (
                f"The judge rules the chaos causes harm to {'an opponent' if target == EffectTarget.OPPONENT else ctx.character_name}",
                MechanicalEffect(effect_type=EffectType.DAMAGE, target=target, amount=rng.randint(10, 39)),
            )
        if choice == "creative":
            return (
                "The judge invents a consequence for the unexpected move",
                MechanicalEffect(
                    effect_type=EffectType.SPECIAL,
                    target=EffectTarget.SELF,
                    duration=rng.randint(1, 3),
                    special_effect=f"creative_chaos:{text[:50]}",
                ),
            )
        stat = rng.choice(["strength", "speed", "defense"])
        change = rng.randint(-20, 20)
        return (
            f"The judge adjusts {ctx.character_name}'s {stat}",
            MechanicalEffect(
                effect_type=EffectType.STAT_CHANGE,
                target=EffectTarget.SELF,
                duration=2,
                stat_changes=[StatChange(stat=stat, change=change, duration=2)],
            ),
        )

    # -------------------------------------------------------------------------
    # Deviation templates
    # -------------------------------------------------------------------------

    def rule_deviation(
        self,
        deviation: DeviationType,
        context: Optional[ChaosContext] = None,
        text: Optional[str] = None,
    ) -> JudgeDecision:
        """
        Rule on a classified deviation.

        Free text, when given, always goes through the pattern pipeline.
        Otherwise known deviation types use a fixed template and the rest are
        resolved from their canonical description.
        """
        context = replace(context or ChaosContext(), deviation_type=deviation)
        if text:
            return self.rule(text, context)

        rng = self._rng(f"template:{deviation.value}", context)
        name = context.character_name
        template = None

        if deviation == DeviationType.MINOR_INSUBORDINATION:
            template = (
                f"{name} is penalized for minor insubordination",
                MechanicalEffect(
                    effect_type=EffectType.STAT_CHANGE,
                    target=EffectTarget.SELF,
                    duration=1,
                    stat_changes=[StatChange(stat="effectiveness", change=-10, duration=1)],
                ),
            )
        elif deviation == DeviationType.STRATEGY_OVERRIDE:
            template = (
                f"{name} loses the team's strategy bonuses",
                MechanicalEffect(
                    effect_type=EffectType.SPECIAL,
                    target=EffectTarget.SELF,
                    duration=1,
                    special_effect="lose_strategy_bonuses",
                ),
            )
        elif deviation == DeviationType.FRIENDLY_FIRE:
            template = (
                f"{name} strikes a teammate",
                MechanicalEffect(
                    effect_type=EffectType.REDIRECT_ATTACK,
                    target=EffectTarget.TEAMMATE,
                    amount=int(context.strength * 0.6),
                ),
            )
        elif deviation == DeviationType.BERSERKER_RAGE:
            target = rng.choice([EffectTarget.OPPONENT, EffectTarget.TEAMMATE, EffectTarget.ENVIRONMENT])
            template = (
                f"{name} lashes out in a berserker rage",
                MechanicalEffect(
                    effect_type=EffectType.REDIRECT_ATTACK,
                    target=target,
                    amount=int(context.strength * 1.2),
                ),
            )
        elif deviation == DeviationType.PACIFIST_MODE:
            template = (
                f"{name} will not fight this turn",
                MechanicalEffect(effect_type=EffectType.SKIP_TURN, target=EffectTarget.SELF, duration=1),
            )
        elif deviation in (
            DeviationType.DIMENSIONAL_ESCAPE,
            DeviationType.ENVIRONMENTAL_CHAOS,
            DeviationType.IDENTITY_CRISIS,
        ):
            return self.rule(CANONICAL_DESCRIPTIONS[deviation], context)

        if template is None:
            template = (
                f"{name}'s behavior needs interpretation",
                MechanicalEffect(
                    effect_type=EffectType.SPECIAL,
                    target=EffectTarget.SELF,
                    duration=1,
                    special_effect="ai_interpretation_required",
                ),
            )
        ruling, effect = template
        return self._finish(ruling, effect, f"template:{deviation.value}", False, context, deviation.value)

    # -------------------------------------------------------------------------
    # Bounds, flavor, precedent
    # -------------------------------------------------------------------------

    def bound_effect(self, effect: MechanicalEffect) -> MechanicalEffect:
        """Clamp every magnitude in an effect."""
        if effect.amount is not None:
            if effect.effect_type in (EffectType.SKIP_TURN,):
                effect.amount = max(0, int(effect.amount))
            else:
                effect.amount = self.policy.floor_clamp("damage", effect.amount)
        if effect.duration is not None:
            effect.duration = self.policy.floor_clamp("duration", effect.duration)
        for change in effect.stat_changes:
            change.change = self.policy.floor_clamp("stat_change", change.change)
            change.duration = self.policy.floor_clamp("duration", change.duration)
        return effect

    def _finish(
        self,
        ruling: str,
        effect: MechanicalEffect,
        pattern: str,
        unresolved: bool,
        context: ChaosContext,
        text: str,
    ) -> JudgeDecision:
        effect = self.bound_effect(effect)
        ruling = ruling + flavor_suffix(self.personality.style, context.severity)

        deviation = context.deviation_type.value if context.deviation_type else "free_text"
        key = f"{deviation}_{self.personality.name}"
        self.precedents.record(Precedent(
            key=key,
            effect_type=effect.effect_type.value,
            pattern=pattern,
            ruling=ruling,
            round_number=context.round_number,
            unresolved=unresolved,
            error_code=ErrorCode.UNRESOLVED_CHAOS.value if unresolved else None,
        ))

        if unresolved:
            logger.info(
                f"{ErrorCode.UNRESOLVED_CHAOS.value}: no pattern for '{text[:60]}', "
                f"{self.personality.name} ruled {effect.effect_type.value}",
                extra={"error_code": ErrorCode.UNRESOLVED_CHAOS.value, "precedent": key},
            )
        else:
            logger.debug(f"{self.personality.name} ruled {pattern} -> {effect.effect_type.value}")

        return JudgeDecision(
            ruling=ruling,
            mechanical_effect=effect,
            narrative=f"{self.personality.name}: {ruling}",
            pattern=pattern,
            precedent=key,
            unresolved=unresolved,
        )
