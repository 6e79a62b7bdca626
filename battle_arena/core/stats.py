"""
Character Stat Model.

Per-character combat snapshot used for one battle: combat stats, equipped
items, the psychological state vector, static personality traits, outgoing
relationship edges, temporary stat modifiers and battle counters.

Snapshots are built from roster-provider dicts at battle setup and only
mutated through the round pipeline. Every mutation goes through a
BoundsPolicy so psych scalars stay in [0, 100] and health in
[0, max_health].
"""
import copy
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import List, Optional, Dict, Any

from battle_arena.core.bounds import BoundsPolicy


PSYCH_FIELDS = ("mental_health", "stress", "confidence", "battle_focus", "team_trust")


class RelationshipKind(str, Enum):
    """Kind of a directed relationship edge."""
    ALLY = "ally"
    RIVAL = "rival"
    ENEMY = "enemy"
    NEUTRAL = "neutral"
    MENTOR = "mentor"
    FRIEND = "friend"


class StatusEffect(str, Enum):
    """Status flags applied during a battle."""
    INJURED = "injured"
    SHAKEN = "shaken"
    STUNNED = "stunned"
    BERSERK = "berserk"
    CONFUSED = "confused"


@dataclass
class CombatStats:
    """Physical combat stats from the roster provider."""
    attack: int = 50
    defense: int = 30
    speed: int = 50
    accuracy: int = 75
    max_health: int = 100
    critical_chance: float = 0.05


@dataclass
class BaseAttributes:
    """Traditional attributes. Only strength feeds the damage formula."""
    strength: int = 0
    vitality: int = 0
    dexterity: int = 0
    intelligence: int = 0
    charisma: int = 0
    spirit: int = 0


@dataclass
class EquipmentItem:
    """An equipped weapon or armor piece."""
    name: str
    item_type: str = ""   # weapon type like "sword", or armor class like "plate"
    attack: int = 0
    defense: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "item_type": self.item_type,
            "attack": self.attack,
            "defense": self.defense,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional["EquipmentItem"]:
        if not data:
            return None
        return cls(
            name=data.get("name", "Unknown"),
            item_type=str(data.get("item_type", data.get("type", ""))).lower(),
            attack=data.get("attack", 0),
            defense=data.get("defense", 0),
        )


@dataclass
class PsychState:
    """
    Mutable psychological state vector.

    All five scalars live in [0, 100].
    """
    mental_health: float = 80
    stress: float = 20
    confidence: float = 50
    battle_focus: float = 50
    team_trust: float = 50

    def clamp(self, policy: BoundsPolicy) -> None:
        for name in PSYCH_FIELDS:
            setattr(self, name, policy.clamp("psychology", getattr(self, name)))

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in PSYCH_FIELDS}


@dataclass
class PersonalityTraits:
    """Static traits. They never change mid-battle."""
    ego: float = 50
    team_player: float = 50
    training: float = 75
    independence: float = 50
    volatility: float = 50
    communication: float = 50

    def to_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class Relationship:
    """Directed edge owned by the source character."""
    target_id: str
    kind: RelationshipKind = RelationshipKind.NEUTRAL
    strength: float = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target_id": self.target_id,
            "kind": self.kind.value,
            "strength": self.strength,
        }


@dataclass
class Ability:
    """A usable ability. Power is clamped to [0, 999]."""
    id: str
    name: str = ""
    power: int = 0
    ability_type: str = "attack"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "power": self.power,
            "ability_type": self.ability_type,
        }


@dataclass
class TemporaryModifier:
    """A stat change that expires after a number of rounds."""
    stat: str
    change: int
    rounds_remaining: int
    source: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stat": self.stat,
            "change": self.change,
            "rounds_remaining": self.rounds_remaining,
            "source": self.source,
        }


@dataclass
class BattlePerformance:
    """Counters accumulated over a battle, read by the post-battle report."""
    damage_dealt: int = 0
    damage_taken: int = 0
    attacks_attempted: int = 0
    successful_hits: int = 0
    critical_hits: int = 0
    counter_attacks: int = 0
    actions_taken: int = 0
    abilities_used: int = 0
    strategy_deviations: int = 0
    followed_strategy: int = 0
    teamplay_actions: int = 0
    rogue_actions: int = 0
    friendly_fire_dealt: int = 0
    rounds_survived: int = 0

    @property
    def hit_rate(self) -> float:
        if self.attacks_attempted == 0:
            return 0.0
        return self.successful_hits / self.attacks_attempted

    def to_dict(self) -> Dict[str, Any]:
        result = {f.name: getattr(self, f.name) for f in fields(self)}
        result["hit_rate"] = round(self.hit_rate, 3)
        return result


@dataclass
class CharacterSnapshot:
    """
    A battle participant.

    Attributes:
        id: Unique identifier
        name: Display name
        team_id: Owning team
        archetype: Tag used for weapon compatibility and rogue flavor
        stats: Physical combat stats
        attributes: Traditional attributes (strength feeds damage)
        psych: Mutable psychological state
        traits: Static personality traits
        gameplan_adherence: Training base for the adherence score
        removed_rounds: Rounds left out of battle after a successful escape
        skip_turns: Pending skipped turns from judge rulings
    """
    id: str
    name: str
    team_id: str = ""
    archetype: str = "warrior"
    stats: CombatStats = field(default_factory=CombatStats)
    attributes: BaseAttributes = field(default_factory=BaseAttributes)
    psych: PsychState = field(default_factory=PsychState)
    traits: PersonalityTraits = field(default_factory=PersonalityTraits)
    weapon: Optional[EquipmentItem] = None
    armor: Optional[EquipmentItem] = None
    abilities: List[Ability] = field(default_factory=list)
    relationships: List[Relationship] = field(default_factory=list)
    current_health: int = -1
    gameplan_adherence: float = -1
    temporary_modifiers: List[TemporaryModifier] = field(default_factory=list)
    status_effects: List[str] = field(default_factory=list)
    removed_rounds: int = 0
    skip_turns: int = 0
    fled: bool = False
    performance: BattlePerformance = field(default_factory=BattlePerformance)

    def __post_init__(self):
        if self.current_health < 0:
            self.current_health = self.stats.max_health
        if self.gameplan_adherence < 0:
            self.gameplan_adherence = self.traits.training

    # =========================================================================
    # State queries
    # =========================================================================

    @property
    def is_alive(self) -> bool:
        return self.current_health > 0

    @property
    def is_active(self) -> bool:
        """Alive, still on the field and not temporarily removed."""
        return self.is_alive and not self.fled and self.removed_rounds <= 0

    @property
    def health_fraction(self) -> float:
        if self.stats.max_health <= 0:
            return 0.0
        return self.current_health / self.stats.max_health

    def relationship_to(self, target_id: str) -> Optional[Relationship]:
        """Outgoing edge to another character, if any."""
        for rel in self.relationships:
            if rel.target_id == target_id:
                return rel
        return None

    def get_ability(self, ability_id: Optional[str]) -> Optional[Ability]:
        if ability_id is None:
            return None
        for ability in self.abilities:
            if ability.id == ability_id:
                return ability
        return None

    def modifier_total(self, stat: str) -> int:
        """Sum of active temporary modifiers for a stat."""
        return sum(m.change for m in self.temporary_modifiers if m.stat == stat)

    def effective_attack(self, policy: BoundsPolicy) -> int:
        """
        Attack including temporary modifiers.

        An ``effectiveness`` modifier scales attack by percentage points.
        """
        attack = self.stats.attack + self.modifier_total("attack")
        effectiveness = self.modifier_total("effectiveness")
        if effectiveness:
            attack = attack * (100 + effectiveness) / 100
        return policy.floor_clamp("attack", attack)

    def effective_defense(self, policy: BoundsPolicy) -> int:
        return policy.floor_clamp("defense", self.stats.defense + self.modifier_total("defense"))

    def effective_speed(self, policy: BoundsPolicy) -> int:
        return policy.floor_clamp("speed", self.stats.speed + self.modifier_total("speed"))

    def effective_strength(self, policy: BoundsPolicy) -> int:
        return policy.floor_clamp("stat", self.attributes.strength + self.modifier_total("strength"))

    # =========================================================================
    # Mutations (always bounded)
    # =========================================================================

    def adjust_psych(self, name: str, delta: float, policy: BoundsPolicy) -> float:
        """Add a delta to one psych scalar and clamp it. Returns the new value."""
        if name not in PSYCH_FIELDS:
            raise KeyError(f"Unknown psychology field: {name}")
        value = policy.clamp("psychology", getattr(self.psych, name) + delta, report=False)
        setattr(self.psych, name, value)
        return value

    def set_health(self, value: float, policy: BoundsPolicy) -> int:
        self.current_health = policy.floor_clamp("health", value, self.stats.max_health)
        return self.current_health

    def add_status(self, status: str) -> None:
        if status not in self.status_effects:
            self.status_effects.append(status)

    def add_modifier(self, stat: str, change: int, rounds: int, source: str = "") -> None:
        self.temporary_modifiers.append(
            TemporaryModifier(stat=stat, change=change, rounds_remaining=rounds, source=source)
        )

    def tick_modifiers(self) -> List[TemporaryModifier]:
        """
        Advance one round: count down modifiers and removal.

        Returns:
            Modifiers that expired this round
        """
        expired = []
        remaining = []
        for mod in self.temporary_modifiers:
            mod.rounds_remaining -= 1
            if mod.rounds_remaining <= 0:
                expired.append(mod)
            else:
                remaining.append(mod)
        self.temporary_modifiers = remaining
        if self.removed_rounds > 0:
            self.removed_rounds -= 1
        if StatusEffect.STUNNED.value in self.status_effects:
            self.status_effects.remove(StatusEffect.STUNNED.value)
        return expired

    def clamp_all(self, policy: BoundsPolicy) -> None:
        """Re-clamp every bounded field. Used on roster input."""
        self.stats.attack = policy.floor_clamp("attack", self.stats.attack)
        self.stats.defense = policy.floor_clamp("defense", self.stats.defense)
        self.stats.speed = policy.floor_clamp("speed", self.stats.speed)
        self.stats.accuracy = policy.floor_clamp("stat", self.stats.accuracy)
        self.stats.max_health = max(1, policy.floor_clamp("stat", self.stats.max_health))
        self.stats.critical_chance = policy.clamp("probability", self.stats.critical_chance)
        self.attributes.strength = policy.floor_clamp("stat", self.attributes.strength)
        self.current_health = policy.floor_clamp("health", self.current_health, self.stats.max_health)
        self.psych.clamp(policy)
        for f in fields(self.traits):
            setattr(self.traits, f.name, policy.clamp("psychology", getattr(self.traits, f.name)))
        self.gameplan_adherence = policy.clamp("psychology", self.gameplan_adherence)
        for item in (self.weapon, self.armor):
            if item is not None:
                item.attack = policy.floor_clamp("equipment", item.attack)
                item.defense = policy.floor_clamp("equipment", item.defense)
        for ability in self.abilities:
            ability.power = policy.floor_clamp("ability_power", ability.power)
        for rel in self.relationships:
            rel.strength = policy.clamp("relationship", rel.strength)

    def copy(self) -> "CharacterSnapshot":
        return copy.deepcopy(self)

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for the host."""
        return {
            "id": self.id,
            "name": self.name,
            "team_id": self.team_id,
            "archetype": self.archetype,
            "stats": {
                "attack": self.stats.attack,
                "defense": self.stats.defense,
                "speed": self.stats.speed,
                "accuracy": self.stats.accuracy,
                "max_health": self.stats.max_health,
                "critical_chance": self.stats.critical_chance,
            },
            "attributes": {f.name: getattr(self.attributes, f.name) for f in fields(self.attributes)},
            "psychology": self.psych.to_dict(),
            "personality": self.traits.to_dict(),
            "weapon": self.weapon.to_dict() if self.weapon else None,
            "armor": self.armor.to_dict() if self.armor else None,
            "abilities": [a.to_dict() for a in self.abilities],
            "relationships": [r.to_dict() for r in self.relationships],
            "current_health": self.current_health,
            "is_alive": self.is_alive,
            "fled": self.fled,
            "removed_rounds": self.removed_rounds,
            "gameplan_adherence": self.gameplan_adherence,
            "temporary_modifiers": [m.to_dict() for m in self.temporary_modifiers],
            "status_effects": list(self.status_effects),
            "performance": self.performance.to_dict(),
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        team_id: Optional[str] = None,
        policy: Optional[BoundsPolicy] = None,
    ) -> "CharacterSnapshot":
        """
        Build a snapshot from a roster-provider dict.

        Values are re-clamped even though the provider should have validated
        them already.

        Args:
            data: Character data with nested stats/psychology/personality
            team_id: Overrides the team id in the data
            policy: Bounds policy used for the defensive clamp

        Returns:
            A clamped CharacterSnapshot
        """
        stats_data = data.get("stats", {})
        attr_data = data.get("attributes", {})
        psych_data = data.get("psychology", {})
        trait_data = data.get("personality", {})

        stats = CombatStats(**{
            f.name: stats_data[f.name] for f in fields(CombatStats) if f.name in stats_data
        })
        attributes = BaseAttributes(**{
            f.name: attr_data[f.name] for f in fields(BaseAttributes) if f.name in attr_data
        })
        psych = PsychState(**{name: psych_data[name] for name in PSYCH_FIELDS if name in psych_data})
        traits = PersonalityTraits(**{
            f.name: trait_data[f.name] for f in fields(PersonalityTraits) if f.name in trait_data
        })

        abilities = [
            Ability(
                id=a["id"],
                name=a.get("name", a["id"]),
                power=a.get("power", 0),
                ability_type=a.get("ability_type", "attack"),
            )
            for a in data.get("abilities", [])
        ]
        relationships = [
            Relationship(
                target_id=r["target_id"],
                kind=RelationshipKind(r.get("kind", "neutral")),
                strength=r.get("strength", 0),
            )
            for r in data.get("relationships", [])
        ]

        snapshot = cls(
            id=data["id"],
            name=data.get("name", data["id"]),
            team_id=team_id or data.get("team_id", ""),
            archetype=str(data.get("archetype", "warrior")).lower(),
            stats=stats,
            attributes=attributes,
            psych=psych,
            traits=traits,
            weapon=EquipmentItem.from_dict(data.get("weapon")),
            armor=EquipmentItem.from_dict(data.get("armor")),
            abilities=abilities,
            relationships=relationships,
            current_health=data.get("current_health", -1),
            gameplan_adherence=data.get("gameplan_adherence", -1),
        )
        snapshot.clamp_all(policy or BoundsPolicy())
        return snapshot
